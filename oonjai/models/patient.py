from sqlalchemy import Column, String, Uuid, ForeignKey
from sqlalchemy.orm import relationship
import uuid

from oonjai.db.base import ExternalBase


class User(ExternalBase):
    """LINE account of a patient or caregiver."""
    __tablename__ = "users"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    line_user_id = Column(String, nullable=True, index=True)
    display_name = Column(String, nullable=True)


class PatientProfile(ExternalBase):
    __tablename__ = "patient_profiles"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id = Column(Uuid, ForeignKey("users.id"), nullable=True)
    first_name = Column(String, nullable=True)
    last_name = Column(String, nullable=True)
    # Set for patients who linked LINE without a users row
    line_user_id = Column(String, nullable=True)

    user = relationship("User", lazy="joined")
