"""
Clock / time zone adapter

Every "is it in the past" question in the booking core is answered in one
fixed civil time zone, whatever the server zone is. Comparisons are by
calendar date and hour, never by elapsed time, so 23:59 local "today" is
still today.

The clock is passed into the availability engine and the command
handlers; tests pin it with ``FixedClock``.
"""

from abc import ABC, abstractmethod
from datetime import date, datetime, time, timedelta
from zoneinfo import ZoneInfo

from django.conf import settings
from django.utils import timezone

DEFAULT_TIME_ZONE = 'Asia/Tashkent'


class Clock(ABC):
    """Current local date and time in a fixed zone."""

    def __init__(self, tz_name: str | None = None):
        self.tz_name = tz_name or getattr(settings, 'BOOKING_TIME_ZONE', DEFAULT_TIME_ZONE)
        self.tz = ZoneInfo(self.tz_name)

    @abstractmethod
    def now(self) -> datetime:
        """Aware datetime in ``self.tz``."""

    def today(self) -> date:
        return self.now().date()

    def earliest_start_hour(self) -> int:
        """Next full hour at or after now; 24 means nothing is left today."""
        current = self.now()
        return current.hour + 1 if current.minute > 0 else current.hour

    def is_past_date(self, day: date) -> bool:
        return day < self.today()

    def is_past_time(self, day: date, hour: int) -> bool:
        today = self.today()
        if day != today:
            return day < today
        return hour < self.earliest_start_hour()

    def localize(self, day: date, at: time) -> datetime:
        return datetime.combine(day, at, tzinfo=self.tz)


class SystemClock(Clock):
    def now(self) -> datetime:
        return timezone.now().astimezone(self.tz)


class FixedClock(Clock):
    """Clock pinned to one instant. Naive values are read as local time."""

    def __init__(self, instant: datetime, tz_name: str | None = None):
        super().__init__(tz_name)
        if timezone.is_naive(instant):
            instant = instant.replace(tzinfo=self.tz)
        self._instant = instant.astimezone(self.tz)

    def now(self) -> datetime:
        return self._instant

    def advance(self, **delta) -> None:
        self._instant = self._instant + timedelta(**delta)


def get_clock() -> Clock:
    return SystemClock()
