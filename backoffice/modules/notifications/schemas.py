from pydantic import BaseModel, Field
from decimal import Decimal
from typing import Optional, Dict, Any
from uuid import UUID
from datetime import datetime

from backoffice.modules.notifications.models import NotificationPriority


class NotificationOut(BaseModel):
    id: UUID
    outlet_id: UUID
    type: str
    priority: NotificationPriority
    title: str
    message: str
    amount: Optional[Decimal] = None
    action_by: Optional[UUID] = None
    action_by_name: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = Field(None, validation_alias="details")
    is_read: bool
    delivered_at: Optional[datetime] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True
        populate_by_name = True
