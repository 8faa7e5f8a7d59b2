from celery import Celery
from celery.schedules import crontab
from celery.signals import setup_logging
from kombu import Exchange, Queue

from oonjai.core.logging_config import configure_logging
from .config import settings


celery_app = Celery(
    "oonjai_notifications",
    broker=settings.CELERY_BROKER_URL,
    backend=settings.CELERY_RESULT_BACKEND or None,
)

exchange = Exchange(settings.CELERY_QUEUE, type="direct", durable=True)

celery_app.conf.update(
    task_acks_late=True,
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    worker_prefetch_multiplier=1,
    task_default_queue=settings.CELERY_QUEUE,
    task_default_exchange=settings.CELERY_QUEUE,
    task_default_routing_key=settings.CELERY_QUEUE,
    include=["oonjai.reminders.tasks"],
    task_queues=(
        Queue(settings.CELERY_QUEUE, exchange=exchange, routing_key=settings.CELERY_QUEUE, durable=True),
    ),
)

# Each run is stateless; overlapping runs are made safe by the ledger
celery_app.conf.beat_schedule = {
    "dispatch-due-reminders": {
        "task": "reminders.dispatch_due",
        "schedule": settings.SCAN_INTERVAL_SECONDS,
    },
    "check-missed-activity": {
        "task": "reminders.check_missed_activity",
        "schedule": crontab(minute=settings.MISSED_ACTIVITY_CRON_MINUTE),
    },
}


@setup_logging.connect
def _configure_worker_logging(**kwargs) -> None:
    configure_logging()
