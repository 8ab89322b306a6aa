"""
Injectable time source.
"""
from datetime import date, datetime, timedelta, timezone, tzinfo
from zoneinfo import ZoneInfo

from app.core import config


class Clock:
    """Wall clock. Reminder dates are calendar days in the scheduler's timezone."""

    def __init__(self, tz: tzinfo | str | None = None):
        if tz is None:
            tz = config.SCHEDULER_TIMEZONE
        self.tz = ZoneInfo(tz) if isinstance(tz, str) else tz

    def now(self) -> datetime:
        return datetime.now(timezone.utc)

    def today(self) -> date:
        return self.now().astimezone(self.tz).date()


class FixedClock(Clock):
    """Clock frozen at a given instant; used for deterministic deadline maths."""

    def __init__(self, at: datetime, tz: tzinfo | str = timezone.utc):
        super().__init__(tz)
        if at.tzinfo is None:
            at = at.replace(tzinfo=timezone.utc)
        self._now = at

    def now(self) -> datetime:
        return self._now

    def advance(self, **kwargs) -> datetime:
        self._now = self._now + timedelta(**kwargs)
        return self._now
