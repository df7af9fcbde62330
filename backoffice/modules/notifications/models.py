from backoffice.database.database import Base
from sqlalchemy import Column, String, DateTime, ForeignKey, Boolean, Numeric, Enum, Text, JSON, Uuid
from uuid import uuid4
from backoffice.common.mixins import TenantMixin, TimestampMixin
import enum


class NotificationPriority(str, enum.Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"


class ManagerNotification(Base, TenantMixin, TimestampMixin):
    __tablename__ = "manager_notifications"

    id = Column(Uuid, primary_key=True, default=uuid4)
    manager_id = Column(Uuid, ForeignKey("users.id"), nullable=False, index=True)
    outlet_id = Column(Uuid, ForeignKey("outlets.id"), nullable=False, index=True)
    type = Column(String(50), nullable=False)  # SUPPLIER_PAYMENT, PIN_LOCKOUT
    priority = Column(Enum(NotificationPriority), nullable=False, default=NotificationPriority.MEDIUM)
    title = Column(String(200), nullable=False)
    message = Column(Text, nullable=False)
    amount = Column(Numeric(15, 2), nullable=True)
    action_by = Column(Uuid, ForeignKey("users.id"), nullable=True)
    action_by_name = Column(String(150), nullable=True)
    # "metadata" is reserved on declarative classes
    details = Column("metadata", JSON, nullable=True)
    is_read = Column(Boolean, nullable=False, default=False)
    delivered_at = Column(DateTime(timezone=True), nullable=True)
