from .patient import PatientProfile, User
from .group import Group, GroupPatient
from .reminder import Reminder, Medication
from .activity import ActivityLog

__all__ = [
    "PatientProfile",
    "User",
    "Group",
    "GroupPatient",
    "Reminder",
    "Medication",
    "ActivityLog",
]
