"""
Idempotency ledger: the claim-before-send gate.

`claim()` is an insert-if-absent keyed by the occurrence. Whoever inserts the
row owns the occurrence until it resolves it. A conflicting insert only wins
when the existing row is re-claimable: an `error` row, or a `pending` row whose
claimant stalled past the stale timeout, and in both cases only while
`attempts < max_attempts`. Re-claiming is a single conditional UPDATE so two
contenders cannot both win it.
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Any, Dict, List, Optional
import logging
import threading
import uuid

from sqlalchemy import and_, exists, or_, select, update
from sqlalchemy.exc import IntegrityError

from oonjai.utils.timezone import to_utc_aware
from .models import MissedActivityAlert, ReminderLog
from .schemas import (
    Claimed,
    ClaimResult,
    Conflict,
    DeliveryChannel,
    LedgerStatus,
    OccurrenceKey,
    OccurrenceKind,
)

logger = logging.getLogger(__name__)


class Ledger(ABC):
    """Contract shared by the SQL and in-memory ledgers."""

    def __init__(self, max_attempts: int = 2, stale_after: timedelta = timedelta(minutes=5)):
        self.max_attempts = max_attempts
        self.stale_after = stale_after

    @abstractmethod
    def claim(self, key: OccurrenceKey, now: datetime, attributes: Optional[Dict[str, Any]] = None) -> ClaimResult:
        raise NotImplementedError

    @abstractmethod
    def resolve(
        self,
        claim: Claimed,
        status: LedgerStatus,
        now: datetime,
        channel: Optional[DeliveryChannel] = None,
        error: Optional[str] = None,
    ) -> bool:
        raise NotImplementedError

    @abstractmethod
    def sent_within(self, reminder_id: uuid.UUID, start: datetime, end: datetime) -> bool:
        raise NotImplementedError

    @abstractmethod
    def sent_on(self, patient_id: uuid.UUID, day: date) -> bool:
        raise NotImplementedError

    @abstractmethod
    def retry_candidates(self, kind: OccurrenceKind, day: date, now: datetime) -> List[OccurrenceKey]:
        raise NotImplementedError

    @abstractmethod
    def status_of(self, key: OccurrenceKey) -> Optional[LedgerStatus]:
        raise NotImplementedError


# ---------------------------------------------------------------------------
# SQLAlchemy
# ---------------------------------------------------------------------------

class SqlAlchemyLedger(Ledger):
    """Ledger backed by the reminder_logs / missed_activity_alerts tables."""

    def __init__(self, session_factory, max_attempts: int = 2, stale_after: timedelta = timedelta(minutes=5)):
        super().__init__(max_attempts=max_attempts, stale_after=stale_after)
        self.session_factory = session_factory

    @staticmethod
    def _model(kind: OccurrenceKind):
        return ReminderLog if kind == OccurrenceKind.REMINDER else MissedActivityAlert

    def _key_filters(self, key: OccurrenceKey) -> list:
        if key.kind == OccurrenceKind.REMINDER:
            return [
                ReminderLog.reminder_id == key.subject_id,
                ReminderLog.occurrence_date == key.occurrence_date,
                ReminderLog.slot_time == key.slot,
            ]
        return [
            MissedActivityAlert.patient_id == key.subject_id,
            MissedActivityAlert.alert_date == key.occurrence_date,
        ]

    def _new_row(self, key: OccurrenceKey, claimed_at: datetime, attributes: Dict[str, Any]):
        common = dict(status=LedgerStatus.PENDING.value, attempts=1, claimed_at=claimed_at, **attributes)
        if key.kind == OccurrenceKind.REMINDER:
            return ReminderLog(
                reminder_id=key.subject_id,
                patient_id=key.patient_id,
                occurrence_date=key.occurrence_date,
                slot_time=key.slot,
                **common,
            )
        return MissedActivityAlert(patient_id=key.subject_id, alert_date=key.occurrence_date, **common)

    def _reclaimable(self, model, cutoff: datetime):
        return and_(
            model.attempts < self.max_attempts,
            or_(
                model.status == LedgerStatus.ERROR.value,
                and_(model.status == LedgerStatus.PENDING.value, model.claimed_at < cutoff),
            ),
        )

    def claim(self, key: OccurrenceKey, now: datetime, attributes: Optional[Dict[str, Any]] = None) -> ClaimResult:
        attributes = attributes or {}
        claimed_at = to_utc_aware(now)
        model = self._model(key.kind)
        with self.session_factory() as db:
            db.add(self._new_row(key, claimed_at, attributes))
            try:
                db.commit()
                return Claimed(key=key, attempt=1)
            except IntegrityError:
                db.rollback()

            stmt = (
                update(model)
                .where(*self._key_filters(key), self._reclaimable(model, claimed_at - self.stale_after))
                .values(
                    status=LedgerStatus.PENDING.value,
                    attempts=model.attempts + 1,
                    claimed_at=claimed_at,
                    error_message=None,
                    **attributes,
                )
                .returning(model.attempts)
            )
            attempt = db.execute(stmt).scalar_one_or_none()
            db.commit()
            if attempt is not None:
                logger.info(f"[Ledger] Re-claimed {key} (attempt {attempt})")
                return Claimed(key=key, attempt=attempt)

            current = db.execute(select(model.status).where(*self._key_filters(key))).scalar_one_or_none()
            return Conflict(key=key, status=LedgerStatus(current) if current else None)

    def resolve(
        self,
        claim: Claimed,
        status: LedgerStatus,
        now: datetime,
        channel: Optional[DeliveryChannel] = None,
        error: Optional[str] = None,
    ) -> bool:
        key = claim.key
        model = self._model(key.kind)
        values: Dict[str, Any] = dict(
            status=status.value,
            channel=channel.value if channel else None,
            error_message=error,
        )
        if status == LedgerStatus.SENT:
            values["sent_at"] = to_utc_aware(now)
        with self.session_factory() as db:
            result = db.execute(
                update(model)
                .where(
                    *self._key_filters(key),
                    model.status == LedgerStatus.PENDING.value,
                    model.attempts == claim.attempt,
                )
                .values(**values)
            )
            db.commit()
        if result.rowcount != 1:
            # Another invocation re-claimed after our claim went stale
            logger.warning(f"[Ledger] Claim on {key} (attempt {claim.attempt}) was superseded; outcome {status.value} not recorded")
            return False
        return True

    def sent_within(self, reminder_id: uuid.UUID, start: datetime, end: datetime) -> bool:
        stmt = select(
            exists().where(
                ReminderLog.reminder_id == reminder_id,
                ReminderLog.status == LedgerStatus.SENT.value,
                ReminderLog.sent_at >= to_utc_aware(start),
                ReminderLog.sent_at <= to_utc_aware(end),
            )
        )
        with self.session_factory() as db:
            return bool(db.execute(stmt).scalar())

    def sent_on(self, patient_id: uuid.UUID, day: date) -> bool:
        stmt = select(
            exists().where(
                MissedActivityAlert.patient_id == patient_id,
                MissedActivityAlert.alert_date == day,
                MissedActivityAlert.status == LedgerStatus.SENT.value,
            )
        )
        with self.session_factory() as db:
            return bool(db.execute(stmt).scalar())

    def retry_candidates(self, kind: OccurrenceKind, day: date, now: datetime) -> List[OccurrenceKey]:
        model = self._model(kind)
        cutoff = to_utc_aware(now) - self.stale_after
        with self.session_factory() as db:
            if kind == OccurrenceKind.REMINDER:
                rows = db.execute(
                    select(ReminderLog.reminder_id, ReminderLog.patient_id, ReminderLog.slot_time)
                    .where(ReminderLog.occurrence_date == day, self._reclaimable(model, cutoff))
                ).all()
                return [
                    OccurrenceKey(kind=kind, subject_id=r.reminder_id, occurrence_date=day, slot=r.slot_time, patient_id=r.patient_id)
                    for r in rows
                ]
            rows = db.execute(
                select(MissedActivityAlert.patient_id)
                .where(MissedActivityAlert.alert_date == day, self._reclaimable(model, cutoff))
            ).all()
            return [OccurrenceKey(kind=kind, subject_id=r.patient_id, occurrence_date=day, patient_id=r.patient_id) for r in rows]

    def status_of(self, key: OccurrenceKey) -> Optional[LedgerStatus]:
        model = self._model(key.kind)
        with self.session_factory() as db:
            value = db.execute(select(model.status).where(*self._key_filters(key))).scalar_one_or_none()
        return LedgerStatus(value) if value else None


# ---------------------------------------------------------------------------
# In-memory
# ---------------------------------------------------------------------------

@dataclass
class _Entry:
    patient_id: Optional[uuid.UUID]
    status: LedgerStatus
    attempts: int
    claimed_at: datetime
    sent_at: Optional[datetime] = None
    channel: Optional[DeliveryChannel] = None
    error: Optional[str] = None


class InMemoryLedger(Ledger):
    """Process-local ledger for single-process runs; one lock guards every transition."""

    def __init__(self, max_attempts: int = 2, stale_after: timedelta = timedelta(minutes=5)):
        super().__init__(max_attempts=max_attempts, stale_after=stale_after)
        self._entries: Dict[OccurrenceKey, _Entry] = {}
        self._lock = threading.Lock()

    def _reclaimable(self, entry: _Entry, now: datetime) -> bool:
        if entry.attempts >= self.max_attempts:
            return False
        if entry.status == LedgerStatus.ERROR:
            return True
        return entry.status == LedgerStatus.PENDING and entry.claimed_at < now - self.stale_after

    def claim(self, key: OccurrenceKey, now: datetime, attributes: Optional[Dict[str, Any]] = None) -> ClaimResult:
        now = to_utc_aware(now)
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self._entries[key] = _Entry(patient_id=key.patient_id, status=LedgerStatus.PENDING, attempts=1, claimed_at=now)
                return Claimed(key=key, attempt=1)
            if not self._reclaimable(entry, now):
                return Conflict(key=key, status=entry.status)
            entry.status = LedgerStatus.PENDING
            entry.attempts += 1
            entry.claimed_at = now
            entry.error = None
            return Claimed(key=key, attempt=entry.attempts)

    def resolve(
        self,
        claim: Claimed,
        status: LedgerStatus,
        now: datetime,
        channel: Optional[DeliveryChannel] = None,
        error: Optional[str] = None,
    ) -> bool:
        with self._lock:
            entry = self._entries.get(claim.key)
            if entry is None or entry.status != LedgerStatus.PENDING or entry.attempts != claim.attempt:
                return False
            entry.status = status
            entry.channel = channel
            entry.error = error
            if status == LedgerStatus.SENT:
                entry.sent_at = to_utc_aware(now)
            return True

    def sent_within(self, reminder_id: uuid.UUID, start: datetime, end: datetime) -> bool:
        start, end = to_utc_aware(start), to_utc_aware(end)
        with self._lock:
            return any(
                key.kind == OccurrenceKind.REMINDER
                and key.subject_id == reminder_id
                and entry.status == LedgerStatus.SENT
                and start <= entry.sent_at <= end
                for key, entry in self._entries.items()
            )

    def sent_on(self, patient_id: uuid.UUID, day: date) -> bool:
        key = OccurrenceKey(kind=OccurrenceKind.MISSED_ACTIVITY, subject_id=patient_id, occurrence_date=day)
        with self._lock:
            entry = self._entries.get(key)
            return entry is not None and entry.status == LedgerStatus.SENT

    def retry_candidates(self, kind: OccurrenceKind, day: date, now: datetime) -> List[OccurrenceKey]:
        now = to_utc_aware(now)
        with self._lock:
            return [
                OccurrenceKey(kind=key.kind, subject_id=key.subject_id, occurrence_date=key.occurrence_date, slot=key.slot, patient_id=entry.patient_id)
                for key, entry in self._entries.items()
                if key.kind == kind and key.occurrence_date == day and self._reclaimable(entry, now)
            ]

    def status_of(self, key: OccurrenceKey) -> Optional[LedgerStatus]:
        with self._lock:
            entry = self._entries.get(key)
            return entry.status if entry else None
