from fastapi import APIRouter, Depends, Query
from typing import List
from uuid import UUID
from sqlalchemy.orm import Session

from backoffice.core.config import settings
from backoffice.database.database import get_db
from backoffice.modules.auth.dependencies import AuthDependencies
from backoffice.modules.auth.schemas import AuthContext
from backoffice.modules.notifications.schemas import NotificationOut
from backoffice.modules.notifications.service import NotificationService

notifications_router = APIRouter(prefix="/notifications", tags=["Notifications"])


@notifications_router.get("/", response_model=List[NotificationOut])
def list_notifications(
    unread_only: bool = Query(False),
    limit: int = Query(settings.DEFAULT_PAGE_SIZE, ge=1, le=settings.MAX_PAGE_SIZE),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_db),
    auth_context: AuthContext = Depends(AuthDependencies.require_any_role())
):
    """Notifications addressed to the current user, newest first."""
    return NotificationService(db).list_notifications(auth_context, unread_only, limit, offset)


@notifications_router.post("/{notification_id}/read", response_model=NotificationOut)
def mark_notification_read(
    notification_id: UUID,
    db: Session = Depends(get_db),
    auth_context: AuthContext = Depends(AuthDependencies.require_any_role())
):
    return NotificationService(db).mark_read(auth_context, notification_id)
