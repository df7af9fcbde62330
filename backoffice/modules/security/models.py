from backoffice.database.database import Base
from sqlalchemy import Column, String, Integer, DateTime, ForeignKey, Boolean, Enum, Text, JSON, Uuid
from uuid import uuid4
from backoffice.common.mixins import TenantMixin, TimestampMixin, AppendOnlyMixin
import enum


class PinAction(str, enum.Enum):
    """Sensitive actions gated by the acting user's PIN."""
    EDIT_ORDER = "EDIT_ORDER"
    VOID_ORDER = "VOID_ORDER"
    WITHDRAWAL = "WITHDRAWAL"
    PRICE_OVERRIDE = "PRICE_OVERRIDE"
    STOCK_ADJUSTMENT = "STOCK_ADJUSTMENT"
    REFUND = "REFUND"
    MODIFY_CLOSING = "MODIFY_CLOSING"
    SUPPLIER_PAYMENT = "SUPPLIER_PAYMENT"
    MANUAL_DISCOUNT = "MANUAL_DISCOUNT"


class PinActionStatus(str, enum.Enum):
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"    # wrong PIN
    DENIED = "DENIED"    # attempted while locked


class UserPIN(Base, TenantMixin, TimestampMixin):
    """bcrypt-hashed 4-digit PIN with the failed-attempt lockout state."""
    __tablename__ = "user_pins"

    id = Column(Uuid, primary_key=True, default=uuid4)
    user_id = Column(Uuid, ForeignKey("users.id"), nullable=False, unique=True)
    pin_hash = Column(String(255), nullable=False)
    failed_attempts = Column(Integer, nullable=False, default=0)
    locked_until = Column(DateTime(timezone=True), nullable=True)
    last_used_at = Column(DateTime(timezone=True), nullable=True)


class PINActionLog(Base, TenantMixin, AppendOnlyMixin):
    """Audit trail of every PIN-gated attempt, successful or not."""
    __tablename__ = "pin_action_logs"

    id = Column(Uuid, primary_key=True, default=uuid4)
    outlet_id = Column(Uuid, ForeignKey("outlets.id"), nullable=True, index=True)
    user_id = Column(Uuid, ForeignKey("users.id"), nullable=False, index=True)
    user_name = Column(String(150), nullable=False)
    action = Column(Enum(PinAction), nullable=False, index=True)
    status = Column(Enum(PinActionStatus), nullable=False)
    target_id = Column(String(100), nullable=True)
    target_details = Column(JSON, nullable=True)
    reason = Column(Text, nullable=True)


class SecuritySettings(Base, TenantMixin, TimestampMixin):
    """Per-outlet alerting preferences."""
    __tablename__ = "security_settings"

    id = Column(Uuid, primary_key=True, default=uuid4)
    outlet_id = Column(Uuid, ForeignKey("outlets.id"), nullable=False, unique=True)
    notify_on_withdrawal = Column(Boolean, nullable=False, default=True)
    manager_user_ids = Column(JSON, nullable=False, default=list)  # user ids (str) that receive alerts
