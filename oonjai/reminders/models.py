"""
Ledger tables owned by the dispatcher.

Each row is the claim for one occurrence; the unique constraints are what
make the claim atomic across concurrent invocations.
"""
from datetime import datetime, timezone
from sqlalchemy import Column, String, Text, Date, Time, DateTime, Integer, Uuid, Index, UniqueConstraint
import uuid

from oonjai.db.base import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ReminderLog(Base):
    __tablename__ = "reminder_logs"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    reminder_id = Column(Uuid, nullable=False)
    patient_id = Column(Uuid, nullable=True, index=True)
    occurrence_date = Column(Date, nullable=False)
    slot_time = Column(Time, nullable=False)
    status = Column(String(16), nullable=False, default="pending")
    channel = Column(String(16), nullable=True)
    attempts = Column(Integer, nullable=False, default=1)
    error_message = Column(Text, nullable=True)
    claimed_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    sent_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow, nullable=False)

    __table_args__ = (
        UniqueConstraint("reminder_id", "occurrence_date", "slot_time", name="uq_reminder_logs_occurrence"),
        Index("ix_reminder_logs_reminder_sent", "reminder_id", "sent_at"),
        Index("ix_reminder_logs_date_status", "occurrence_date", "status"),
    )


class MissedActivityAlert(Base):
    __tablename__ = "missed_activity_alerts"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    patient_id = Column(Uuid, nullable=False)
    alert_date = Column(Date, nullable=False)
    status = Column(String(16), nullable=False, default="pending")
    channel = Column(String(16), nullable=True)
    attempts = Column(Integer, nullable=False, default=1)
    error_message = Column(Text, nullable=True)
    last_activity_at = Column(DateTime(timezone=True), nullable=True)
    claimed_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    sent_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow, nullable=False)

    __table_args__ = (
        UniqueConstraint("patient_id", "alert_date", name="uq_missed_activity_alerts_patient_day"),
        Index("ix_missed_activity_alerts_date_status", "alert_date", "status"),
    )
