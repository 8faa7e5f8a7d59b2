from fastapi import APIRouter, Depends

from oonjai.core.security import verify_api_key_dependency
from .dispatcher import ReminderDispatcher
from .missed_activity import MissedActivityDetector
from .schemas import DispatchSummary


router = APIRouter(dependencies=[Depends(verify_api_key_dependency)])


def get_reminder_dispatcher() -> ReminderDispatcher:
    return ReminderDispatcher.from_settings()


def get_missed_activity_detector() -> MissedActivityDetector:
    return MissedActivityDetector.from_settings()


@router.post("/reminders", response_model=DispatchSummary)
def dispatch_reminders_endpoint(dispatcher: ReminderDispatcher = Depends(get_reminder_dispatcher)):
    """Run one reminder pass for the current minute (external cron trigger)."""
    return dispatcher.run()


@router.post("/missed-activity", response_model=DispatchSummary)
def check_missed_activity_endpoint(detector: MissedActivityDetector = Depends(get_missed_activity_detector)):
    return detector.run()
