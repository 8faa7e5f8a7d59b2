import os
import threading
import uuid
from datetime import datetime, time, timezone
from zoneinfo import ZoneInfo

# Settings are read at import time; point them at throwaway values first
os.environ.setdefault("SQLALCHEMY_DATABASE_URI", "sqlite:///./oonjai-test.db")
os.environ.setdefault("VALID_API_KEYS", "test-key")
os.environ.setdefault("REMINDER_LINE_CHANNEL_ACCESS_TOKEN", "test-token")

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from oonjai.db.base import Base, ExternalBase
from oonjai.models import ActivityLog, Group, GroupPatient, Medication, PatientProfile, Reminder, User
from oonjai.reminders import models as ledger_models  # noqa: F401
from oonjai.reminders.clock import FixedClock
from oonjai.reminders.ledger import SqlAlchemyLedger
from oonjai.reminders.transport import PushResult

BANGKOK = ZoneInfo("Asia/Bangkok")

# 2026-10-19 is a Monday
MONDAY = (2026, 10, 19)
TUESDAY = (2026, 10, 20)


def bangkok(year, month, day, hour=0, minute=0, second=0) -> datetime:
    return datetime(year, month, day, hour, minute, second, tzinfo=BANGKOK)


class FakeTransport:
    """Records every push; destinations in `failing` get a 500."""

    def __init__(self, failing=(), on_push=None):
        self.failing = set(failing)
        self.on_push = on_push
        self.pushes = []
        self._lock = threading.Lock()

    def push(self, destination_id, messages, retry_key=None):
        with self._lock:
            self.pushes.append({"to": destination_id, "messages": messages, "retry_key": retry_key})
        if self.on_push:
            self.on_push(destination_id)
        if destination_id in self.failing:
            return PushResult(ok=False, status_code=500, body="upstream error")
        return PushResult(ok=True, status_code=200)

    @property
    def destinations(self):
        return [p["to"] for p in self.pushes]


class Seed:
    """Insert rows into the product tables the dispatcher reads."""

    def __init__(self, session_factory):
        self.session_factory = session_factory

    def _add(self, obj):
        with self.session_factory() as db:
            db.add(obj)
            db.commit()
        return obj.id

    def patient(self, first_name="สมชาย", line_user_id=None):
        user_id = None
        if line_user_id:
            user_id = self._add(User(id=uuid.uuid4(), line_user_id=line_user_id))
        return self._add(PatientProfile(id=uuid.uuid4(), first_name=first_name, user_id=user_id))

    def group(self, patient_id, line_group_id, is_active=True):
        group_id = self._add(Group(id=uuid.uuid4(), line_group_id=line_group_id))
        self._add(GroupPatient(id=uuid.uuid4(), group_id=group_id, patient_id=patient_id, is_active=is_active))
        return group_id

    def medication(self, patient_id, name="Metformin", dosage_amount="500", dosage_unit="mg"):
        return self._add(Medication(id=uuid.uuid4(), patient_id=patient_id, name=name, dosage_amount=dosage_amount, dosage_unit=dosage_unit))

    def reminder(self, patient_id, at=time(8, 0), type="medication", frequency="daily", days=None, is_active=True, **extra):
        return self._add(
            Reminder(
                id=uuid.uuid4(),
                patient_id=patient_id,
                type=type,
                time=at,
                frequency=frequency,
                days_of_week=days,
                is_active=is_active,
                **extra,
            )
        )

    def update_reminder(self, reminder_id, **values):
        with self.session_factory() as db:
            row = db.get(Reminder, reminder_id)
            for name, value in values.items():
                setattr(row, name, value)
            db.commit()

    def activity(self, patient_id, at: datetime):
        # SQLite keeps no offset; store UTC like the product database does
        at = at.astimezone(timezone.utc)
        return self._add(ActivityLog(id=uuid.uuid4(), patient_id=patient_id, created_at=at, timestamp=at))


@pytest.fixture
def engine(tmp_path):
    engine = create_engine(
        f"sqlite:///{tmp_path / 'oonjai.db'}",
        connect_args={"check_same_thread": False, "timeout": 30},
    )
    ExternalBase.metadata.create_all(engine)
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


@pytest.fixture
def ledger(session_factory):
    return SqlAlchemyLedger(session_factory)


@pytest.fixture
def seed(session_factory):
    return Seed(session_factory)


@pytest.fixture
def transport():
    return FakeTransport()


@pytest.fixture
def monday_8am():
    return FixedClock(bangkok(*MONDAY, 8, 0), tz_name="Asia/Bangkok")
