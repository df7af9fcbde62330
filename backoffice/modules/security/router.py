from fastapi import APIRouter, Depends, Query
from typing import List, Optional
from uuid import UUID
from sqlalchemy.orm import Session

from backoffice.core.config import settings
from backoffice.database.database import get_db
from backoffice.modules.auth.dependencies import AuthDependencies, outlet_of
from backoffice.modules.auth.schemas import AuthContext, MANAGER_ROLES
from backoffice.modules.security.models import PinAction, PinActionStatus
from backoffice.modules.security.schemas import (
    PinStatusOut, PinSet, PinVerify, PinVerifyResult, MessageOut,
    SecuritySettingsOut, SecuritySettingsUpdate, PinActionLogOut
)
from backoffice.modules.security.service import PinService, SecuritySettingsService

security_router = APIRouter(prefix="/security", tags=["Security"])


# ===== PIN =====

@security_router.get("/pin/status", response_model=PinStatusOut)
def get_pin_status(
    db: Session = Depends(get_db),
    auth_context: AuthContext = Depends(AuthDependencies.require_any_role())
):
    return PinService(db).get_status(auth_context)


@security_router.post("/pin", response_model=MessageOut)
def set_pin(
    data: PinSet,
    db: Session = Depends(get_db),
    auth_context: AuthContext = Depends(AuthDependencies.require_any_role())
):
    """
    Set the caller's 4-digit PIN.

    Changing an existing PIN requires `current_pin`.
    """
    PinService(db).set_pin(auth_context, data)
    return MessageOut(message="PIN set successfully")


@security_router.post("/pin/verify", response_model=PinVerifyResult)
def verify_pin(
    data: PinVerify,
    db: Session = Depends(get_db),
    auth_context: AuthContext = Depends(AuthDependencies.require_any_role())
):
    """Verify the caller's PIN for a sensitive action. Wrong PINs count toward lockout."""
    PinService(db).verify(
        auth_context,
        data.pin,
        data.action,
        target_id=data.target_id,
        target_details=data.target_details,
        reason=data.reason
    )
    return PinVerifyResult(verified=True, action=data.action)


# ===== SETTINGS & AUDIT =====

@security_router.get("/settings", response_model=SecuritySettingsOut)
def get_security_settings(
    db: Session = Depends(get_db),
    auth_context: AuthContext = Depends(AuthDependencies.require_role(MANAGER_ROLES))
):
    return SecuritySettingsService(db).get_settings(auth_context, outlet_of(auth_context))


@security_router.put("/settings", response_model=SecuritySettingsOut)
def update_security_settings(
    data: SecuritySettingsUpdate,
    db: Session = Depends(get_db),
    auth_context: AuthContext = Depends(AuthDependencies.require_role(MANAGER_ROLES))
):
    """Choose which managers receive payment and lockout alerts for the outlet."""
    return SecuritySettingsService(db).update_settings(auth_context, outlet_of(auth_context), data)


@security_router.get("/logs", response_model=List[PinActionLogOut])
def get_action_log(
    user_id: Optional[UUID] = Query(None),
    action: Optional[PinAction] = Query(None),
    status: Optional[PinActionStatus] = Query(None),
    limit: int = Query(settings.DEFAULT_PAGE_SIZE, ge=1, le=settings.MAX_PAGE_SIZE),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_db),
    auth_context: AuthContext = Depends(AuthDependencies.require_role(MANAGER_ROLES))
):
    return SecuritySettingsService(db).get_action_log(
        auth_context, outlet_of(auth_context), user_id, action, status, limit, offset
    )
