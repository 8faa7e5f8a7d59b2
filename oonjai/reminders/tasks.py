from celery import shared_task
from celery.utils.log import get_task_logger

from .config import settings
from .dispatcher import ReminderDispatcher
from .missed_activity import MissedActivityDetector

logger = get_task_logger(__name__)

# Leave headroom past the invocation budget for in-flight sends to resolve
_SOFT_LIMIT = (settings.INVOCATION_BUDGET_SECONDS or settings.SCAN_INTERVAL_SECONDS) + settings.TRANSPORT_TIMEOUT_SECONDS


@shared_task(name="reminders.dispatch_due", soft_time_limit=_SOFT_LIMIT, ignore_result=False)
def dispatch_due_reminders_task() -> dict:
    """Run one reminder dispatch pass for the current minute. Returns the summary."""
    summary = ReminderDispatcher.from_settings().run()
    if summary.errors:
        logger.warning(f"[Reminders] {summary.errors} occurrence(s) failed this pass")
    return summary.model_dump(mode="json")


@shared_task(name="reminders.check_missed_activity", soft_time_limit=_SOFT_LIMIT, ignore_result=False)
def check_missed_activity_task() -> dict:
    """Run one missed-activity pass. Returns the summary."""
    summary = MissedActivityDetector.from_settings().run()
    if summary.errors:
        logger.warning(f"[MissedActivity] {summary.errors} alert(s) failed this pass")
    return summary.model_dump(mode="json")
