"""
Manager notifications.

Rows are written inside the caller's transaction. Email delivery is a
Celery task queued with `dispatch` once that transaction has committed, so
a rolled back payment never produces an alert.
"""
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional
from uuid import UUID
import logging

from sqlalchemy.orm import Session

from backoffice.common.exceptions import NotFoundError
from backoffice.database.database import transaction
from backoffice.modules.auth.schemas import AuthContext
from backoffice.modules.notifications.models import ManagerNotification, NotificationPriority

logger = logging.getLogger(__name__)


class NotificationService:

    def __init__(self, db: Session):
        self.db = db

    def notify_managers(
        self,
        tenant_id: UUID,
        outlet_id: UUID,
        manager_ids: Iterable,
        type: str,
        title: str,
        message: str,
        priority: NotificationPriority = NotificationPriority.MEDIUM,
        amount: Optional[Decimal] = None,
        action_by: Optional[UUID] = None,
        action_by_name: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None
    ) -> List[ManagerNotification]:
        """One notification per manager; flushed, not committed."""
        notifications = []
        for manager_id in manager_ids:
            notification = ManagerNotification(
                tenant_id=tenant_id,
                outlet_id=outlet_id,
                manager_id=manager_id if isinstance(manager_id, UUID) else UUID(str(manager_id)),
                type=type,
                priority=priority,
                title=title,
                message=message,
                amount=amount,
                action_by=action_by,
                action_by_name=action_by_name,
                details=details,
                is_read=False
            )
            self.db.add(notification)
            notifications.append(notification)

        if notifications:
            self.db.flush()
            logger.info(
                f"Queued {len(notifications)} {priority.value} '{type}' notifications for outlet {outlet_id}"
            )
        return notifications

    @staticmethod
    def dispatch(notifications: Iterable[ManagerNotification]):
        """Hand committed notifications to the email worker."""
        from backoffice.modules.notifications.tasks import send_manager_alert_task

        for notification in notifications:
            try:
                send_manager_alert_task.delay(str(notification.id))
            except Exception as e:
                # The row is stored and visible in-app; only the email is lost
                logger.error(f"Could not queue alert email for notification {notification.id}: {e}")

    def list_notifications(
        self,
        auth: AuthContext,
        unread_only: bool = False,
        limit: int = 50,
        offset: int = 0
    ) -> List[ManagerNotification]:
        query = self.db.query(ManagerNotification).filter(
            ManagerNotification.tenant_id == auth.tenant_id,
            ManagerNotification.manager_id == auth.user_id
        )
        if unread_only:
            query = query.filter(ManagerNotification.is_read == False)
        return query.order_by(ManagerNotification.created_at.desc()).offset(offset).limit(limit).all()

    def mark_read(self, auth: AuthContext, notification_id: UUID) -> ManagerNotification:
        with transaction(self.db):
            notification = self.db.query(ManagerNotification).filter(
                ManagerNotification.id == notification_id,
                ManagerNotification.tenant_id == auth.tenant_id,
                ManagerNotification.manager_id == auth.user_id
            ).first()
            if not notification:
                raise NotFoundError("Notification not found")
            notification.is_read = True

        self.db.refresh(notification)
        return notification
