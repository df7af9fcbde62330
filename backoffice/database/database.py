from contextlib import contextmanager
from typing import Callable, Optional, TypeVar
import logging
import time

from fastapi import HTTPException
from sqlalchemy import create_engine, text
from sqlalchemy.exc import DBAPIError, IntegrityError, OperationalError
from sqlalchemy.orm import Session, sessionmaker, declarative_base
from sqlalchemy.orm.exc import StaleDataError
from sqlalchemy.pool import StaticPool

from backoffice.core.config import settings
from backoffice.common.exceptions import ResourceConflictError

logger = logging.getLogger(__name__)

T = TypeVar("T")

# serialization_failure, deadlock_detected, lock_not_available, query_canceled, unique_violation
CONFLICT_SQLSTATES = {"40001", "40P01", "55P03", "57014", "23505"}


def _engine_options(url: str) -> dict:
    if url.startswith("sqlite"):
        # Single shared connection so an in-memory database survives across sessions and threads
        return {"connect_args": {"check_same_thread": False}, "poolclass": StaticPool}
    return {"pool_pre_ping": True, "pool_size": 10, "max_overflow": 20}


sync_engine = create_engine(
    settings.database_url,
    echo=settings.DEBUG,
    **_engine_options(settings.database_url)
)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=sync_engine)

Base = declarative_base()


def get_db():
    """Yield a database session for one request."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def is_conflict_error(exc: Exception) -> bool:
    """True when the database rejected a write because of a concurrent one."""
    if isinstance(exc, StaleDataError):
        return True
    if isinstance(exc, DBAPIError):
        if getattr(exc.orig, "pgcode", None) in CONFLICT_SQLSTATES:
            return True
        message = str(exc.orig)
        if isinstance(exc, IntegrityError) and "UNIQUE constraint failed" in message:
            return True
        if isinstance(exc, OperationalError) and "database is locked" in message:
            return True
    return False


@contextmanager
def transaction(db: Session, isolation_level: Optional[str] = None, timeout_ms: Optional[int] = None):
    """
    Run a block as one database transaction.

    Commits when the block exits cleanly. Any exception rolls back every
    write made in the block and is re-raised; database errors caused by a
    concurrent writer are re-raised as ResourceConflictError.

    `isolation_level` (e.g. "SERIALIZABLE") applies to this transaction only.
    `timeout_ms` sets statement and lock timeouts on PostgreSQL so the
    transaction aborts instead of holding locks indefinitely.
    """
    if isolation_level and db.in_transaction():
        # Isolation can only be chosen before the first statement of a transaction
        if db.new or db.dirty or db.deleted:
            raise RuntimeError(
                f"Cannot start a {isolation_level} transaction while the session holds unsaved changes"
            )
        db.rollback()
    if isolation_level:
        db.connection(execution_options={"isolation_level": isolation_level})
    if timeout_ms and db.get_bind().dialect.name == "postgresql":
        db.execute(text(f"SET LOCAL statement_timeout = {int(timeout_ms)}"))
        db.execute(text(f"SET LOCAL lock_timeout = {int(timeout_ms)}"))

    try:
        yield db
        db.commit()
    except HTTPException:
        db.rollback()
        raise
    except (StaleDataError, DBAPIError) as exc:
        db.rollback()
        if is_conflict_error(exc):
            logger.warning(f"Transaction aborted by concurrent update: {exc}")
            raise ResourceConflictError(
                "The record was modified by another operation. Please retry."
            ) from exc
        raise
    except Exception:
        db.rollback()
        raise


def run_with_retry(operation: Callable[[], T], attempts: Optional[int] = None, backoff_seconds: float = 0.05) -> T:
    """Call `operation` again when it fails with a resource conflict."""
    attempts = attempts or settings.TX_RETRY_ATTEMPTS
    for attempt in range(1, attempts + 1):
        try:
            return operation()
        except ResourceConflictError:
            if attempt >= attempts:
                raise
            logger.warning(f"Resource conflict, retrying ({attempt}/{attempts})")
            time.sleep(backoff_seconds * attempt)
