"""
Common mixins for multi-tenant models
"""
from sqlalchemy import Column, DateTime, Uuid, event
from sqlalchemy.orm import object_session
from sqlalchemy.sql import func

from backoffice.common.exceptions import AppendOnlyError


class TenantMixin:
    """Scopes a row to one organization (tenant)."""

    tenant_id = Column(Uuid, nullable=False, index=True)


class TimestampMixin:
    """Mixin for models that need timestamp tracking"""

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)


class AppendOnlyMixin:
    """Audit rows: written once, corrected only by writing new rows."""

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)


@event.listens_for(AppendOnlyMixin, "before_update", propagate=True)
def _reject_update(mapper, connection, target):
    session = object_session(target)
    if session is not None and not session.is_modified(target, include_collections=False):
        return
    raise AppendOnlyError(f"{type(target).__name__} records are append-only and cannot be modified")


@event.listens_for(AppendOnlyMixin, "before_delete", propagate=True)
def _reject_delete(mapper, connection, target):
    raise AppendOnlyError(f"{type(target).__name__} records are append-only and cannot be deleted")
