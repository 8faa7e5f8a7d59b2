from sqlalchemy import Column, String, DateTime, Uuid, ForeignKey, Index
import uuid

from oonjai.db.base import ExternalBase


class ActivityLog(ExternalBase):
    """Any health-logging action (medication, vitals, water, ...) by or for a patient."""
    __tablename__ = "activity_logs"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    patient_id = Column(Uuid, ForeignKey("patient_profiles.id"), nullable=False)
    task_type = Column(String, nullable=True)
    timestamp = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        Index("ix_activity_logs_patient_created", "patient_id", "created_at"),
    )
