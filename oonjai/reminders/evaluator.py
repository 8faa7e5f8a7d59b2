"""
Schedule evaluation: which reminders are due this minute, and which of those
were already delivered inside their dedup window.
"""
from dataclasses import dataclass, field
from datetime import datetime, time, timedelta
from typing import Iterable, List, Optional, Tuple
import logging

from .schemas import (
    Frequency,
    OccurrenceDetail,
    OccurrenceKey,
    OccurrenceKind,
    ReminderSnapshot,
    WEEKDAY_NAMES,
)

logger = logging.getLogger(__name__)


def local_weekday(now: datetime) -> str:
    return WEEKDAY_NAMES[now.weekday()]


def runs_on(reminder: ReminderSnapshot, now: datetime) -> bool:
    """Whether the reminder's frequency includes now's local day."""
    if reminder.frequency == Frequency.DAILY or reminder.days is None:
        return True
    return local_weekday(now) in reminder.days


def is_due(reminder: ReminderSnapshot, now: datetime) -> Tuple[bool, Optional[str]]:
    """Return (due, reason-if-not-due) for `now` in the reminder's local timezone."""
    if not reminder.is_active:
        return False, "inactive"
    current = now.time().replace(second=0, microsecond=0, tzinfo=None)
    if reminder.time_of_day != current:
        return False, "not_due_time"
    if not runs_on(reminder, now):
        return False, "not_scheduled_day"
    return True, None


def dedup_window(time_of_day: time, now: datetime, minutes: int = 30) -> Tuple[datetime, datetime]:
    """[time - minutes, time + minutes] on now's local day, clamped to that day.

    Anchored to the reminder's configured time so an edited time gets a fresh
    window. Windows near midnight are clamped rather than wrapped.
    """
    tz = now.tzinfo
    day = now.date()
    anchor = datetime.combine(day, time_of_day, tzinfo=tz)
    day_start = datetime.combine(day, time.min, tzinfo=tz)
    day_end = datetime.combine(day, time.max, tzinfo=tz)
    span = timedelta(minutes=minutes)
    return max(anchor - span, day_start), min(anchor + span, day_end)


def occurrence_key(reminder: ReminderSnapshot, now: datetime) -> OccurrenceKey:
    return OccurrenceKey(
        kind=OccurrenceKind.REMINDER,
        subject_id=reminder.id,
        occurrence_date=now.date(),
        slot=reminder.time_of_day,
        patient_id=reminder.patient_id,
    )


@dataclass(frozen=True)
class DueOccurrence:
    key: OccurrenceKey
    reminder: ReminderSnapshot


@dataclass
class Evaluation:
    due: List[DueOccurrence] = field(default_factory=list)
    skipped: List[OccurrenceDetail] = field(default_factory=list)


class ScheduleEvaluator:
    def __init__(self, ledger, window_minutes: int = 30):
        self.ledger = ledger
        self.window_minutes = window_minutes

    def evaluate(self, reminders: Iterable[ReminderSnapshot], now: datetime) -> Evaluation:
        result = Evaluation()
        for reminder in reminders:
            due, reason = is_due(reminder, now)
            if not due:
                result.skipped.append(OccurrenceDetail(id=str(reminder.id), status="skipped", reason=reason))
                continue
            start, end = dedup_window(reminder.time_of_day, now, self.window_minutes)
            if self.ledger.sent_within(reminder.id, start, end):
                logger.debug(f"[Evaluator] {reminder.id} already sent between {start:%H:%M} and {end:%H:%M}")
                result.skipped.append(OccurrenceDetail(id=str(reminder.id), status="skipped", reason="already_sent"))
                continue
            result.due.append(DueOccurrence(key=occurrence_key(reminder, now), reminder=reminder))
        return result
