"""
Reminder dispatch orchestration.

One invocation: load the reminders configured for this minute, evaluate them
on the calling thread, then push every due occurrence through the
claim -> resolve recipients -> compose -> send -> record pipeline on a bounded
thread pool. A failing occurrence is recorded and the batch carries on.
"""
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Iterable, List, Optional
import logging

from oonjai.db.session import SessionLocal
from . import repository
from .clock import Clock
from .composer import ComposedMessage, build_line_messages, compose_reminder
from .config import settings
from .errors import ClaimConflict, DispatchError, MalformedInput, TransportFailure
from .evaluator import ScheduleEvaluator, dedup_window, runs_on
from .ledger import Ledger, SqlAlchemyLedger
from .metrics import (
    claim_conflicts_total,
    dispatcher_runs_total,
    notifications_failed_total,
    notifications_sent_total,
    notifications_skipped_total,
)
from .recipients import Recipient, RecipientResolver
from .schemas import (
    Claimed,
    Conflict,
    DeliveryChannel,
    DispatchSummary,
    LedgerStatus,
    OccurrenceDetail,
    OccurrenceKey,
    OccurrenceKind,
    ReminderSnapshot,
)
from .transport import LineMessagingClient, retry_key_for

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Occurrence:
    """A claimable unit of work plus how to render it per recipient."""
    key: OccurrenceKey
    detail_id: str
    compose: Callable[[Recipient], ComposedMessage]
    claim_attributes: Dict[str, Any] = field(default_factory=dict)


class NotificationPipeline:
    """Claim-before-send delivery of a single occurrence."""

    def __init__(self, job: str, ledger: Ledger, resolver: RecipientResolver, transport, clock: Clock, use_flex: bool = True):
        self.job = job
        self.ledger = ledger
        self.resolver = resolver
        self.transport = transport
        self.clock = clock
        self.use_flex = use_flex

    def deliver(self, occurrence: Occurrence) -> OccurrenceDetail:
        key = occurrence.key
        claim = self.ledger.claim(key, self.clock.now(), occurrence.claim_attributes)
        if isinstance(claim, Conflict):
            conflict = ClaimConflict(key, claim.status.value if claim.status else None)
            claim_conflicts_total.labels(self.job).inc()
            logger.info(f"[{self.job}] {key} skipped: {conflict}")
            return OccurrenceDetail(id=occurrence.detail_id, status="skipped", reason=conflict.reason)

        try:
            recipients = self.resolver.resolve(key.patient_id)
            channel, failures = self._send_all(occurrence, recipients)
        except DispatchError as e:
            logger.warning(f"[{self.job}] {key} failed: {e}")
            if not self.ledger.resolve(claim, LedgerStatus.ERROR, self.clock.now(), error=str(e)):
                return self._superseded(occurrence, claim)
            return OccurrenceDetail(id=occurrence.detail_id, status="error", reason=e.reason)
        except Exception as e:
            logger.exception(f"[{self.job}] {key} failed unexpectedly")
            if not self.ledger.resolve(claim, LedgerStatus.ERROR, self.clock.now(), error=repr(e)):
                return self._superseded(occurrence, claim)
            return OccurrenceDetail(id=occurrence.detail_id, status="error", reason="unexpected_error")

        note = "; ".join(failures) if failures else None
        if not self.ledger.resolve(claim, LedgerStatus.SENT, self.clock.now(), channel=channel, error=note):
            return self._superseded(occurrence, claim)
        logger.info(f"[{self.job}] ✅ {key} sent via {channel.value} to {len(recipients) - len(failures)} destination(s)")
        return OccurrenceDetail(
            id=occurrence.detail_id,
            status="sent",
            reason="partial_delivery" if failures else None,
            channel=channel,
            destinations=len(recipients) - len(failures),
        )

    def _superseded(self, occurrence: Occurrence, claim: Claimed) -> OccurrenceDetail:
        # A later attempt reclaimed the row; its outcome is the one on record
        logger.warning(f"[{self.job}] {occurrence.key} attempt {claim.attempt} was superseded; outcome not recorded")
        return OccurrenceDetail(id=occurrence.detail_id, status="skipped", reason="claim_superseded")

    def _send_all(self, occurrence: Occurrence, recipients: List[Recipient]):
        """Push to every recipient; raise only if none of them accepted."""
        failures: List[str] = []
        first_error: Optional[TransportFailure] = None
        for recipient in recipients:
            message = occurrence.compose(recipient)
            result = self.transport.push(
                recipient.destination_id,
                build_line_messages(message, self.use_flex),
                retry_key=retry_key_for(str(occurrence.key), recipient.destination_id),
            )
            try:
                result.raise_for_failure()
            except TransportFailure as e:
                failures.append(f"{recipient.destination_id}: {e}")
                first_error = first_error or e
        if len(failures) == len(recipients):
            raise first_error
        return recipients[0].channel, failures


class NotificationJob:
    """Shared batch mechanics: bounded pool, invocation budget, summary and metrics."""

    job = "notifications"

    def __init__(self, clock: Clock, concurrency: int = 4, budget_seconds: Optional[float] = None):
        self.clock = clock
        self.concurrency = max(1, concurrency)
        self.budget_seconds = budget_seconds

    def _record(self, summary: DispatchSummary, detail: OccurrenceDetail) -> None:
        summary.record(detail)
        if detail.status == "sent":
            notifications_sent_total.labels(self.job, detail.channel.value).inc()
        elif detail.status == "skipped":
            notifications_skipped_total.labels(self.job, detail.reason or "").inc()
        elif detail.status == "error":
            notifications_failed_total.labels(self.job, detail.reason or "").inc()

    def _run_batch(self, items: List[Any], handler: Callable[[Any], OccurrenceDetail], detail_id: Callable[[Any], str], summary: DispatchSummary, started: float) -> None:
        def guarded(item) -> OccurrenceDetail:
            if self.budget_seconds is not None and self.clock.monotonic() - started >= self.budget_seconds:
                return OccurrenceDetail(id=detail_id(item), status="skipped", reason="deadline_exceeded")
            try:
                return handler(item)
            except Exception:
                logger.exception(f"[{self.job}] Unhandled failure for {detail_id(item)}")
                return OccurrenceDetail(id=detail_id(item), status="error", reason="unexpected_error")

        if not items:
            return
        with ThreadPoolExecutor(max_workers=min(self.concurrency, len(items)), thread_name_prefix=self.job) as pool:
            futures = [pool.submit(guarded, item) for item in items]
            for future in futures:
                self._record(summary, future.result())

    def _finish(self, summary: DispatchSummary) -> DispatchSummary:
        dispatcher_runs_total.labels(self.job).inc()
        logger.info(
            f"[{self.job}] Results: checked={summary.checked}, sent={summary.sent}, "
            f"skipped={summary.skipped}, errors={summary.errors}"
        )
        return summary


class ReminderDispatcher(NotificationJob):
    job = "reminders"

    def __init__(
        self,
        session_factory,
        ledger: Ledger,
        transport,
        clock: Clock,
        window_minutes: int = 30,
        concurrency: int = 4,
        budget_seconds: Optional[float] = None,
        use_flex: bool = True,
        bot_mention: str = "",
    ):
        super().__init__(clock, concurrency=concurrency, budget_seconds=budget_seconds)
        self.session_factory = session_factory
        self.ledger = ledger
        self.window_minutes = window_minutes
        self.bot_mention = bot_mention
        self.evaluator = ScheduleEvaluator(ledger, window_minutes=window_minutes)
        self.pipeline = NotificationPipeline(
            self.job,
            ledger,
            RecipientResolver(session_factory, allow_direct=True),
            transport,
            clock,
            use_flex=use_flex,
        )

    @classmethod
    def from_settings(cls, session_factory=None) -> "ReminderDispatcher":
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
            window_minutes=settings.DEDUP_WINDOW_MINUTES,
            concurrency=settings.WORKER_CONCURRENCY,
            budget_seconds=settings.INVOCATION_BUDGET_SECONDS,
            use_flex=settings.USE_FLEX_MESSAGES,
            bot_mention=settings.BOT_MENTION,
        )

    def _occurrence(self, key: OccurrenceKey, reminder: ReminderSnapshot) -> Occurrence:
        def compose(recipient: Recipient) -> ComposedMessage:
            return compose_reminder(
                reminder,
                include_patient_name=recipient.channel == DeliveryChannel.GROUP,
                bot_mention=self.bot_mention,
            )
        return Occurrence(key=key, detail_id=str(reminder.id), compose=compose)

    def _snapshots(self, rows: Iterable, summary: DispatchSummary) -> List[ReminderSnapshot]:
        snapshots = []
        for row in rows:
            try:
                snapshots.append(ReminderSnapshot.from_model(row))
            except MalformedInput as e:
                logger.error(f"[{self.job}] ❌ {e}")
                self._record(summary, OccurrenceDetail(id=str(row.id), status="error", reason=e.reason))
            except Exception:
                logger.exception(f"[{self.job}] ❌ Could not read reminder {row.id}")
                self._record(summary, OccurrenceDetail(id=str(row.id), status="error", reason="unexpected_error"))
        return snapshots

    def _retry_occurrences(self, now: datetime, scheduled: Iterable[OccurrenceKey], summary: DispatchSummary) -> List[Occurrence]:
        """Earlier occurrences today whose claim failed or stalled and may be tried once more."""
        already = set(scheduled)
        candidates = [k for k in self.ledger.retry_candidates(OccurrenceKind.REMINDER, now.date(), now) if k not in already]
        if not candidates:
            return []
        with self.session_factory() as db:
            rows = repository.get_reminders_by_ids(db, {k.subject_id for k in candidates})
            reminders = {s.id: s for s in self._snapshots(rows, summary)}

        retries = []
        for key in candidates:
            reminder = reminders.get(key.subject_id)
            # Edited, deactivated or rescheduled reminders keep their failed row as history
            if reminder is None or not reminder.is_active or reminder.time_of_day != key.slot or not runs_on(reminder, now):
                logger.debug(f"[{self.job}] Not retrying {key}: reminder changed")
                continue
            start, end = dedup_window(reminder.time_of_day, now, self.window_minutes)
            if self.ledger.sent_within(reminder.id, start, end):
                continue
            retries.append(self._occurrence(key, reminder))
        if retries:
            logger.info(f"[{self.job}] Retrying {len(retries)} earlier occurrence(s)")
        return retries

    def run(self) -> DispatchSummary:
        started = self.clock.monotonic()
        now = self.clock.now()
        summary = DispatchSummary(started_at=now)
        logger.info(f"[{self.job}] Checking at {now:%H:%M} ({now:%A})")

        with self.session_factory() as db:
            rows = repository.get_reminders_at(db, now.time())
            snapshots = self._snapshots(rows, summary)
        summary.checked = len(rows)

        evaluation = self.evaluator.evaluate(snapshots, now)
        for detail in evaluation.skipped:
            self._record(summary, detail)

        occurrences = [self._occurrence(d.key, d.reminder) for d in evaluation.due]
        retries = self._retry_occurrences(now, [d.key for d in evaluation.due], summary)
        summary.checked += len(retries)

        self._run_batch(
            occurrences + retries,
            self.pipeline.deliver,
            lambda occurrence: occurrence.detail_id,
            summary,
            started,
        )
        return self._finish(summary)
