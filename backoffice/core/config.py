from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import Optional
from decimal import Decimal
from pydantic import field_validator

class Settings(BaseSettings):
    # Database settings
    POSTGRES_USER: str = 'backoffice_user'
    POSTGRES_PASSWORD: str = 'backoffice_pass'
    POSTGRES_DB: str = 'backoffice_db'
    POSTGRES_HOST: str = 'postgres'
    POSTGRES_PORT: int = 5432
    DATABASE_URL: Optional[str] = None  # Overrides the composed PostgreSQL URL (tests use sqlite://)

    # Redis settings
    REDIS_HOST: str = 'redis'
    REDIS_PORT: int = 6379
    REDIS_DB: int = 0
    REDIS_PASSWORD: Optional[str] = None

    # JWT settings
    APP_SECRET_STRING: str = 'your-super-secret-key-here-change-in-production-2024'
    ALGORITHM: str = 'HS256'
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 30

    # Pagination
    DEFAULT_PAGE_SIZE: int = 50
    MAX_PAGE_SIZE: int = 100

    # Email settings
    EMAIL_SMTP_SERVER: str = 'smtp.gmail.com'
    EMAIL_SMTP_PORT: int = 587
    EMAIL_USE_TLS: bool = True
    EMAIL_USERNAME: str = ''
    EMAIL_PASSWORD: str = ''
    EMAIL_FROM: str = ''
    EMAIL_FROM_NAME: str = 'Backoffice'
    FRONTEND_URL: str = 'http://localhost:3000'

    # PIN security
    PIN_BCRYPT_ROUNDS: int = 10
    PIN_MAX_FAILED_ATTEMPTS: int = 5
    PIN_LOCKOUT_MINUTES: int = 15

    # Supplier payment alerts
    LARGE_PAYMENT_ALERT_THRESHOLD: Decimal = Decimal("5000")
    HIGH_PRIORITY_PAYMENT_THRESHOLD: Decimal = Decimal("10000")
    CURRENCY_SYMBOL: str = "₹"

    # Transactions
    PO_RECEIVE_TIMEOUT_MS: int = 10000
    TX_RETRY_ATTEMPTS: int = 3

    # Transfer quantity policy
    TRANSFER_RECONCILE_QUANTITIES: bool = False  # False: approved/received quantities are not checked against the previous step
    TRANSFER_STRICT_SKU_MATCH: bool = False  # True: receipt fails when the destination has no product with the same SKU

    # Environment
    ENVIRONMENT: str = "development"
    DEBUG: bool = True

    @property
    def database_url(self) -> str:
        if self.DATABASE_URL:
            return self.DATABASE_URL
        return (
            f"postgresql+psycopg2://{self.POSTGRES_USER}:{self.POSTGRES_PASSWORD}"
            f"@{self.POSTGRES_HOST}:{self.POSTGRES_PORT}/{self.POSTGRES_DB}"
        )

    @property
    def redis_url(self) -> str:
        if self.REDIS_PASSWORD:
            return f"redis://:{self.REDIS_PASSWORD}@{self.REDIS_HOST}:{self.REDIS_PORT}/{self.REDIS_DB}"
        return f"redis://{self.REDIS_HOST}:{self.REDIS_PORT}/{self.REDIS_DB}"

    model_config = SettingsConfigDict(
        extra="allow",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True
    )

    @field_validator(
        "DEBUG",
        "EMAIL_USE_TLS",
        "TRANSFER_RECONCILE_QUANTITIES",
        "TRANSFER_STRICT_SKU_MATCH",
        mode="before"
    )
    @classmethod
    def parse_bool(cls, v):
        if isinstance(v, str):
            return v.lower().strip('"').strip("'") in ("true", "1", "yes", "on")
        return bool(v)

settings = Settings()
