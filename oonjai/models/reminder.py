from sqlalchemy import Column, String, Boolean, Time, JSON, Uuid, ForeignKey, Index
from sqlalchemy.orm import relationship
import uuid

from oonjai.db.base import ExternalBase


class Medication(ExternalBase):
    __tablename__ = "medications"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    patient_id = Column(Uuid, ForeignKey("patient_profiles.id"), nullable=True)
    name = Column(String, nullable=False)
    dosage = Column(String, nullable=True)
    dosage_amount = Column(String, nullable=True)
    dosage_unit = Column(String, nullable=True)


class Reminder(ExternalBase):
    """Patient reminder schedule as edited in the LIFF app.

    `time` is a local wall-clock time with zero seconds; `days_of_week` holds
    lowercase English weekday names and is only consulted when
    frequency == "specific_days".
    """
    __tablename__ = "reminders"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    patient_id = Column(Uuid, ForeignKey("patient_profiles.id"), nullable=False)
    type = Column(String, nullable=False)
    title = Column(String, nullable=True)
    description = Column(String, nullable=True)
    time = Column(Time, nullable=False)
    frequency = Column(String, nullable=False, default="daily")
    days_of_week = Column(JSON, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    medication_id = Column(Uuid, ForeignKey("medications.id"), nullable=True)
    note = Column(String, nullable=True)

    patient = relationship("PatientProfile", lazy="joined")
    medication = relationship("Medication", lazy="joined")

    __table_args__ = (
        Index("ix_reminders_active_time", "is_active", "time"),
    )
