from datetime import datetime, timedelta
from typing import Optional
import time

from oonjai.utils.timezone import get_zoneinfo


class Clock:
    """Source of "now" in the configured local timezone."""

    def __init__(self, tz_name: Optional[str] = None):
        self.tz = get_zoneinfo(tz_name)

    def now(self) -> datetime:
        return datetime.now(self.tz)

    def monotonic(self) -> float:
        return time.monotonic()


class FixedClock(Clock):
    """Clock pinned to an instant; used for replays and tests."""

    def __init__(self, instant: datetime, tz_name: Optional[str] = None):
        super().__init__(tz_name)
        if instant.tzinfo is None:
            instant = instant.replace(tzinfo=self.tz)
        self._instant = instant.astimezone(self.tz)
        self._elapsed = 0.0

    def now(self) -> datetime:
        return self._instant

    def monotonic(self) -> float:
        return self._elapsed

    def advance(self, **kwargs) -> datetime:
        delta = timedelta(**kwargs)
        self._instant = self._instant + delta
        self._elapsed += delta.total_seconds()
        return self._instant
