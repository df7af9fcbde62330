"""
Celery application. The only queue is `notifications` (manager alert emails).

Run a worker with:
    celery -A backoffice.core.celery worker -Q notifications --loglevel=info
"""
from celery import Celery
import logging

from backoffice.core.config import settings

logger = logging.getLogger(__name__)

celery_app = Celery(
    "backoffice",
    broker=settings.redis_url,
    backend=settings.redis_url,
    include=["backoffice.modules.notifications.tasks"]
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,

    # An alert is acknowledged only once delivered_at is stamped
    task_acks_late=True,
    task_reject_on_worker_lost=True,
    task_time_limit=2 * 60,
    task_soft_time_limit=90,
    worker_prefetch_multiplier=1,

    task_default_queue="notifications",
    task_routes={
        "backoffice.modules.notifications.tasks.*": {"queue": "notifications"},
    },
    result_expires=24 * 3600,
)

if __name__ == "__main__":
    celery_app.start()
