from sqlalchemy import Column, String, Boolean, Uuid, ForeignKey, Index
from sqlalchemy.orm import relationship
import uuid

from oonjai.db.base import ExternalBase


class Group(ExternalBase):
    """A LINE group chat where caregivers follow one or more patients."""
    __tablename__ = "groups"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    line_group_id = Column(String, nullable=True, unique=True)
    group_name = Column(String, nullable=True)


class GroupPatient(ExternalBase):
    __tablename__ = "group_patients"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    group_id = Column(Uuid, ForeignKey("groups.id"), nullable=False)
    patient_id = Column(Uuid, ForeignKey("patient_profiles.id"), nullable=False)
    is_active = Column(Boolean, nullable=False, default=True)

    group = relationship("Group", lazy="joined")

    __table_args__ = (
        Index("ix_group_patients_patient_active", "patient_id", "is_active"),
    )
