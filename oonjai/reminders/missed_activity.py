"""
Missed-activity detection: alert caregivers when a patient has logged nothing
for longer than the inactivity threshold, at most once per patient per local day.
"""
from dataclasses import dataclass
from datetime import timedelta
from typing import Optional
import logging
import uuid

from oonjai.db.session import SessionLocal
from . import repository
from .clock import Clock
from .composer import compose_missed_activity
from .config import settings
from .dispatcher import NotificationJob, NotificationPipeline, Occurrence
from .ledger import Ledger, SqlAlchemyLedger
from .recipients import RecipientResolver
from .schemas import DispatchSummary, OccurrenceDetail, OccurrenceKey, OccurrenceKind
from .transport import LineMessagingClient

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PatientRef:
    id: uuid.UUID
    first_name: Optional[str] = None


class MissedActivityDetector(NotificationJob):
    job = "missed_activity"

    def __init__(
        self,
        session_factory,
        ledger: Ledger,
        transport,
        clock: Clock,
        threshold: timedelta = timedelta(hours=4),
        allow_direct: bool = False,
        concurrency: int = 4,
        budget_seconds: Optional[float] = None,
        use_flex: bool = True,
    ):
        super().__init__(clock, concurrency=concurrency, budget_seconds=budget_seconds)
        self.session_factory = session_factory
        self.ledger = ledger
        self.threshold = threshold
        # Groups only unless direct fallback is switched on
        self.pipeline = NotificationPipeline(
            self.job,
            ledger,
            RecipientResolver(session_factory, allow_direct=allow_direct),
            transport,
            clock,
            use_flex=use_flex,
        )

    @classmethod
    def from_settings(cls, session_factory=None) -> "MissedActivityDetector":
        session_factory = session_factory or SessionLocal
        ledger = SqlAlchemyLedger(
            session_factory,
            max_attempts=settings.MAX_DELIVERY_ATTEMPTS,
            stale_after=timedelta(minutes=settings.STALE_CLAIM_MINUTES),
        )
        return cls(
            session_factory,
            ledger,
            LineMessagingClient(),
            Clock(settings.TIMEZONE),
            threshold=timedelta(hours=settings.INACTIVITY_THRESHOLD_HOURS),
            allow_direct=settings.MISSED_ACTIVITY_DIRECT_FALLBACK,
            concurrency=settings.WORKER_CONCURRENCY,
            budget_seconds=settings.INVOCATION_BUDGET_SECONDS,
            use_flex=settings.USE_FLEX_MESSAGES,
        )

    def check_patient(self, patient: PatientRef) -> OccurrenceDetail:
        now = self.clock.now()
        with self.session_factory() as db:
            last_activity_at = repository.get_last_activity_at(db, patient.id)

        if last_activity_at is not None and now - last_activity_at < self.threshold:
            return OccurrenceDetail(id=str(patient.id), status="ok")

        today = now.date()
        if self.ledger.sent_on(patient.id, today):
            return OccurrenceDetail(id=str(patient.id), status="skipped", reason="already_sent_today")

        logger.info(f"[{self.job}] ⚠️ No activity for {patient.id} since {last_activity_at}")
        occurrence = Occurrence(
            key=OccurrenceKey(
                kind=OccurrenceKind.MISSED_ACTIVITY,
                subject_id=patient.id,
                occurrence_date=today,
                patient_id=patient.id,
            ),
            detail_id=str(patient.id),
            compose=lambda recipient: compose_missed_activity(patient.first_name, last_activity_at, now, self.threshold),
            claim_attributes={"last_activity_at": last_activity_at},
        )
        return self.pipeline.deliver(occurrence)

    def run(self) -> DispatchSummary:
        started = self.clock.monotonic()
        now = self.clock.now()
        summary = DispatchSummary(started_at=now)
        logger.info(f"[{self.job}] Checking for patients inactive since {now - self.threshold:%Y-%m-%d %H:%M}")

        with self.session_factory() as db:
            patients = [PatientRef(id=p.id, first_name=p.first_name) for p in repository.list_patients(db)]
        summary.checked = len(patients)

        self._run_batch(patients, self.check_patient, lambda patient: str(patient.id), summary, started)
        return self._finish(summary)
