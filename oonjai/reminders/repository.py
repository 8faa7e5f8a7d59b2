from datetime import datetime, time
from typing import Iterable, List, Optional, Tuple
import uuid

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from oonjai.models import ActivityLog, Group, GroupPatient, PatientProfile, Reminder, User
from oonjai.utils.timezone import to_utc_aware


def get_reminders_at(db: Session, time_of_day: time) -> List[Reminder]:
    """Active reminders whose configured time equals `time_of_day` (minute precision)."""
    stmt = (
        select(Reminder)
        .where(Reminder.is_active.is_(True), Reminder.time == time_of_day.replace(second=0, microsecond=0))
        .order_by(Reminder.id)
    )
    return list(db.execute(stmt).scalars())


def get_reminders_by_ids(db: Session, reminder_ids: Iterable[uuid.UUID]) -> List[Reminder]:
    ids = list(reminder_ids)
    if not ids:
        return []
    return list(db.execute(select(Reminder).where(Reminder.id.in_(ids))).scalars())


def list_patients(db: Session) -> List[PatientProfile]:
    return list(db.execute(select(PatientProfile).order_by(PatientProfile.id)).scalars())


def get_group_channels(db: Session, patient_id: uuid.UUID) -> List[Tuple[uuid.UUID, str]]:
    """(group id, LINE group id) for every active membership with a usable channel."""
    stmt = (
        select(Group.id, Group.line_group_id)
        .join(GroupPatient, GroupPatient.group_id == Group.id)
        .where(
            GroupPatient.patient_id == patient_id,
            GroupPatient.is_active.is_(True),
            Group.line_group_id.is_not(None),
            Group.line_group_id != "",
        )
        .order_by(Group.id)
    )
    return [(row.id, row.line_group_id) for row in db.execute(stmt)]


def get_direct_channel(db: Session, patient_id: uuid.UUID) -> Optional[str]:
    """The patient's personal LINE user id, preferring the linked users row."""
    row = db.execute(
        select(User.line_user_id, PatientProfile.line_user_id.label("profile_line_user_id"))
        .select_from(PatientProfile)
        .outerjoin(User, User.id == PatientProfile.user_id)
        .where(PatientProfile.id == patient_id)
    ).first()
    if row is None:
        return None
    return row.line_user_id or row.profile_line_user_id or None


def get_last_activity_at(db: Session, patient_id: uuid.UUID) -> Optional[datetime]:
    latest = db.execute(
        select(func.max(func.coalesce(ActivityLog.created_at, ActivityLog.timestamp)))
        .where(ActivityLog.patient_id == patient_id)
    ).scalar()
    if isinstance(latest, str):
        # SQLite returns aggregate datetimes as text
        latest = datetime.fromisoformat(latest)
    return to_utc_aware(latest)
