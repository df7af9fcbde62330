from pydantic import BaseModel, Field, field_validator
from typing import Optional, List, Dict, Any
from uuid import UUID
from datetime import datetime

from backoffice.common.validators import validate_pin
from backoffice.modules.security.models import PinAction, PinActionStatus


class PinStatusOut(BaseModel):
    has_pin: bool
    is_locked: bool
    locked_until: Optional[datetime] = None
    failed_attempts: int = 0


class PinSet(BaseModel):
    new_pin: str
    current_pin: Optional[str] = None

    @field_validator("new_pin")
    @classmethod
    def check_new_pin(cls, v):
        if not validate_pin(v):
            raise ValueError("PIN must be 4 digits")
        return v

    @field_validator("current_pin")
    @classmethod
    def check_current_pin(cls, v):
        if v is not None and not validate_pin(v):
            raise ValueError("PIN must be 4 digits")
        return v


class PinVerify(BaseModel):
    pin: str
    action: PinAction
    target_id: Optional[str] = None
    target_details: Optional[Dict[str, Any]] = None
    reason: Optional[str] = None

    @field_validator("pin")
    @classmethod
    def check_pin(cls, v):
        if not validate_pin(v):
            raise ValueError("PIN must be 4 digits")
        return v


class PinVerifyResult(BaseModel):
    verified: bool
    action: PinAction


class MessageOut(BaseModel):
    message: str


class SecuritySettingsUpdate(BaseModel):
    notify_on_withdrawal: Optional[bool] = None
    manager_user_ids: Optional[List[UUID]] = None


class SecuritySettingsOut(BaseModel):
    outlet_id: UUID
    notify_on_withdrawal: bool
    manager_user_ids: List[UUID] = Field(default_factory=list)

    class Config:
        from_attributes = True


class PinActionLogOut(BaseModel):
    id: UUID
    outlet_id: Optional[UUID] = None
    user_id: UUID
    user_name: str
    action: PinAction
    status: PinActionStatus
    target_id: Optional[str] = None
    target_details: Optional[Dict[str, Any]] = None
    reason: Optional[str] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True
