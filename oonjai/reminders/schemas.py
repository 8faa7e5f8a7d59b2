"""
Value types shared by the evaluator, ledger, pipeline and triggers
"""
from dataclasses import dataclass, field
from datetime import date, datetime, time
from enum import Enum
from typing import FrozenSet, List, Literal, Optional, Union
import uuid

from pydantic import BaseModel, Field

from .errors import MalformedInput


WEEKDAY_NAMES = ("monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday")


class ReminderType(str, Enum):
    """Closed set of reminder kinds; every member must have a presentation"""
    MEDICATION = "medication"
    VITALS = "vitals"
    WATER = "water"
    EXERCISE = "exercise"
    MEAL = "meal"
    GLUCOSE = "glucose"


class Frequency(str, Enum):
    DAILY = "daily"
    SPECIFIC_DAYS = "specific_days"


class LedgerStatus(str, Enum):
    PENDING = "pending"
    SENT = "sent"
    ERROR = "error"


class DeliveryChannel(str, Enum):
    GROUP = "group"
    DIRECT = "direct"


class OccurrenceKind(str, Enum):
    REMINDER = "reminder"
    MISSED_ACTIVITY = "missed_activity"


@dataclass(frozen=True)
class OccurrenceKey:
    """Identity of one deliverable occurrence.

    Reminders are keyed by (reminder, local date, slot time); missed-activity
    alerts by (patient, local date) with no slot.
    """
    kind: OccurrenceKind
    subject_id: uuid.UUID
    occurrence_date: date
    slot: Optional[time] = None
    patient_id: Optional[uuid.UUID] = field(default=None, compare=False)

    def __str__(self) -> str:
        slot = self.slot.strftime("%H:%M") if self.slot else "-"
        return f"{self.kind.value}:{self.subject_id}@{self.occurrence_date.isoformat()}T{slot}"


@dataclass(frozen=True)
class Claimed:
    key: OccurrenceKey
    attempt: int


@dataclass(frozen=True)
class Conflict:
    key: OccurrenceKey
    status: Optional[LedgerStatus] = None


ClaimResult = Union[Claimed, Conflict]


def _parse_days(record_id, raw) -> Optional[FrozenSet[str]]:
    """Normalize a days_of_week JSON value to lowercase weekday names."""
    if raw is None:
        return None
    if not isinstance(raw, (list, tuple)):
        raise MalformedInput(record_id, "days_of_week must be a list of weekday names")
    days = set()
    for entry in raw:
        if not isinstance(entry, str):
            raise MalformedInput(record_id, "days_of_week must be a list of weekday names")
        name = entry.strip().lower()
        if name not in WEEKDAY_NAMES:
            raise MalformedInput(record_id, f"unknown weekday {entry!r}")
        days.add(name)
    return frozenset(days)


@dataclass(frozen=True)
class ReminderSnapshot:
    """Immutable copy of a reminder row, safe to hand to worker threads"""
    id: uuid.UUID
    patient_id: uuid.UUID
    type: ReminderType
    time_of_day: time
    frequency: Frequency
    # None: no day list stored, runs every day like daily
    days: Optional[FrozenSet[str]] = None
    is_active: bool = True
    title: Optional[str] = None
    description: Optional[str] = None
    patient_name: Optional[str] = None
    medication_id: Optional[uuid.UUID] = None
    medication_name: Optional[str] = None
    dosage: Optional[str] = None
    note: Optional[str] = None

    @classmethod
    def from_model(cls, row) -> "ReminderSnapshot":
        """Build from a `Reminder` ORM row; raises MalformedInput on bad fields."""
        if row.patient_id is None:
            raise MalformedInput(row.id, "missing patient_id")
        if row.time is None:
            raise MalformedInput(row.id, "missing time")
        try:
            reminder_type = ReminderType(str(row.type).strip().lower())
        except ValueError:
            raise MalformedInput(row.id, f"unknown type {row.type!r}")
        try:
            frequency = Frequency(str(row.frequency or Frequency.DAILY.value).strip().lower())
        except ValueError:
            raise MalformedInput(row.id, f"unknown frequency {row.frequency!r}")

        time_of_day = row.time
        if isinstance(time_of_day, str):
            try:
                time_of_day = time.fromisoformat(time_of_day)
            except ValueError:
                raise MalformedInput(row.id, f"unparseable time {row.time!r}")

        days = _parse_days(row.id, row.days_of_week)

        patient = getattr(row, "patient", None)
        medication = getattr(row, "medication", None)
        dosage = None
        if medication is not None:
            if medication.dosage_amount and medication.dosage_unit:
                dosage = f"{medication.dosage_amount} {medication.dosage_unit}"
            else:
                dosage = medication.dosage

        return cls(
            id=row.id,
            patient_id=row.patient_id,
            type=reminder_type,
            time_of_day=time_of_day.replace(second=0, microsecond=0, tzinfo=None),
            frequency=frequency,
            days=days,
            is_active=bool(row.is_active),
            title=row.title,
            description=row.description,
            patient_name=patient.first_name if patient is not None else None,
            medication_id=row.medication_id,
            medication_name=medication.name if medication is not None else None,
            dosage=dosage,
            note=row.note,
        )


DetailStatus = Literal["sent", "skipped", "error", "ok"]


class OccurrenceDetail(BaseModel):
    id: str
    status: DetailStatus
    reason: Optional[str] = None
    channel: Optional[DeliveryChannel] = None
    destinations: Optional[int] = None


class DispatchSummary(BaseModel):
    """Aggregate result of one invocation; `ok` details are not counted"""
    checked: int = 0
    sent: int = 0
    skipped: int = 0
    errors: int = 0
    details: List[OccurrenceDetail] = Field(default_factory=list)
    started_at: Optional[datetime] = None

    def record(self, detail: OccurrenceDetail) -> None:
        self.details.append(detail)
        if detail.status == "sent":
            self.sent += 1
        elif detail.status == "skipped":
            self.skipped += 1
        elif detail.status == "error":
            self.errors += 1
