"""
Celery tasks for manager alert delivery.
"""
import logging
from uuid import UUID

from backoffice.common.utils import utcnow
from backoffice.core.celery import celery_app
from backoffice.database.database import SessionLocal
from backoffice.modules.auth.models import User
from backoffice.modules.email.service import email_service
from backoffice.modules.notifications.models import ManagerNotification
from backoffice.modules.outlets.models import Outlet
import backoffice.database.models  # noqa: F401  (registers every mapper for the worker)

logger = logging.getLogger(__name__)


@celery_app.task(bind=True, max_retries=3)
def send_manager_alert_task(self, notification_id: str):
    """
    Email one manager notification and stamp delivered_at.
    """
    db = SessionLocal()
    try:
        notification = db.query(ManagerNotification).filter(
            ManagerNotification.id == UUID(notification_id)
        ).first()
        if not notification:
            logger.warning(f"Notification {notification_id} no longer exists")
            return {"status": "skipped", "notification_id": notification_id}
        if notification.delivered_at:
            return {"status": "already_delivered", "notification_id": notification_id}

        manager = db.query(User).filter(User.id == notification.manager_id).first()
        if not manager or not manager.email:
            logger.warning(f"Manager {notification.manager_id} has no email; notification {notification_id} stays in-app")
            return {"status": "skipped", "notification_id": notification_id}

        outlet = db.query(Outlet).filter(Outlet.id == notification.outlet_id).first()

        success = email_service.send_manager_alert(
            manager, notification, outlet_name=outlet.name if outlet else None
        )
        if not success:
            raise Exception("Failed to send manager alert email")

        notification.delivered_at = utcnow()
        db.commit()

        logger.info(f"Manager alert {notification_id} delivered to {manager.email}")
        return {"status": "success", "notification_id": notification_id}

    except Exception as exc:
        db.rollback()
        logger.error(f"Manager alert {notification_id} failed: {str(exc)}")

        # Retry with exponential backoff
        if self.request.retries < self.max_retries:
            raise self.retry(exc=exc, countdown=60 * (2 ** self.request.retries))

        return {"status": "failed", "error": str(exc), "notification_id": notification_id}
    finally:
        db.close()
