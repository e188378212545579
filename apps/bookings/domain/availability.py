"""
Availability Engine

Pure functions answering two questions for a space:
- which calendar dates can be booked at all
- which hour-aligned start times are still bookable on a given date

"Now" always comes from the injected clock. Weekdays are numbered
0 = Sunday ... 6 = Saturday, the numbering stored in space configuration.
"""

from dataclasses import dataclass, field
from datetime import date, time, timedelta
from typing import Iterable, List, Mapping

from shared.domain.base import ValueObject
from shared.domain.clock import Clock
from shared.domain.exceptions import ValidationError
from shared.domain.value_objects import TimeSlot, minutes_of_day, parse_clock_time

DEFAULT_CHECK_IN = '09:00'
DEFAULT_CHECK_OUT = '17:00'
DEFAULT_MINIMUM_HOURS = 1
DEFAULT_COOLDOWN_MINUTES = 30
CALENDAR_HORIZON_DAYS = 365


def weekday_index(day: date) -> int:
    """0 = Sunday ... 6 = Saturday."""
    return day.isoweekday() % 7


@dataclass(frozen=True)
class WorkingHours(ValueObject):
    start: time
    end: time

    def __post_init__(self):
        if self.end_minutes <= self.start_minutes:
            raise ValueError(
                f"Working hours end ({self.end:%H:%M}) must be after start ({self.start:%H:%M})"
            )

    @classmethod
    def parse(cls, raw: Mapping | None) -> 'WorkingHours | None':
        """``{"start": "09:00", "end": "17:00"}``; blank values mean "not configured"."""
        if not raw:
            return None
        start, end = raw.get('start'), raw.get('end')
        if not start or not end:
            return None
        return cls(parse_clock_time(start), parse_clock_time(end))

    @property
    def start_minutes(self) -> int:
        return minutes_of_day(self.start)

    @property
    def end_minutes(self) -> int:
        # 00:00 as an end means midnight
        return minutes_of_day(self.end) or 24 * 60

    def to_dict(self) -> dict:
        return {'start': self.start.strftime('%H:%M'), 'end': self.end.strftime('%H:%M')}


@dataclass(frozen=True)
class AvailabilityRules(ValueObject):
    """Availability configuration of one space, as the engine sees it."""
    default_hours: WorkingHours
    weekday_hours: Mapping[int, WorkingHours] = field(default_factory=dict)
    minimum_hours: int = DEFAULT_MINIMUM_HOURS
    cooldown_minutes: int = DEFAULT_COOLDOWN_MINUTES
    blocked_dates: frozenset = frozenset()
    blocked_weekdays: frozenset = frozenset()
    start_date: date | None = None
    end_date: date | None = None

    def __post_init__(self):
        if self.minimum_hours < 0:
            raise ValueError("Minimum booking duration cannot be negative")
        if self.cooldown_minutes < 0:
            raise ValueError("Cooldown cannot be negative")
        bad_weekdays = [d for d in self.blocked_weekdays if not 0 <= d <= 6]
        if bad_weekdays:
            raise ValueError(f"Blocked weekdays must be within 0..6, got {bad_weekdays}")

    @classmethod
    def from_space(cls, space) -> 'AvailabilityRules':
        default_hours = WorkingHours(
            parse_clock_time(space.check_in or DEFAULT_CHECK_IN),
            parse_clock_time(space.check_out or DEFAULT_CHECK_OUT),
        )
        weekday_hours = {}
        for key, raw in (space.weekday_time_slots or {}).items():
            hours = WorkingHours.parse(raw)
            if hours is not None:
                weekday_hours[int(key)] = hours
        return cls(
            default_hours=default_hours,
            weekday_hours=weekday_hours,
            minimum_hours=space.minimum_hours if space.minimum_hours is not None else DEFAULT_MINIMUM_HOURS,
            cooldown_minutes=space.cooldown if space.cooldown is not None else DEFAULT_COOLDOWN_MINUTES,
            blocked_dates=frozenset(_as_date(d) for d in (space.blocked_dates or [])),
            blocked_weekdays=frozenset(int(d) for d in (space.blocked_weekdays or [])),
            start_date=space.start_date,
            end_date=space.end_date,
        )

    def hours_for(self, day: date) -> WorkingHours:
        return self.weekday_hours.get(weekday_index(day), self.default_hours)

    def is_blocked(self, day: date) -> bool:
        return day in self.blocked_dates or weekday_index(day) in self.blocked_weekdays


def _as_date(value) -> date:
    return value if isinstance(value, date) else date.fromisoformat(str(value))


def list_available_dates(
    start: date,
    end: date,
    blocked_dates: Iterable[date],
    blocked_weekdays: Iterable[int],
    clock: Clock,
) -> List[date]:
    """Chronological dates of ``[start, end]`` that are not past and not blocked."""
    blocked_dates = {_as_date(d) for d in blocked_dates}
    blocked_weekdays = set(blocked_weekdays)
    today = clock.today()

    dates = []
    current = max(start, today)
    while current <= end:
        if current not in blocked_dates and weekday_index(current) not in blocked_weekdays:
            dates.append(current)
        current += timedelta(days=1)
    return dates


def list_available_start_times(
    day: date,
    working_hours: WorkingHours,
    minimum_hours: int,
    cooldown_minutes: int,
    clock: Clock,
) -> List[time]:
    """
    Hour-aligned starts ``t`` in ``[start, end)`` such that
    ``t + minimum_hours + cooldown <= end``.

    For today the first candidate is the next full hour at or after now;
    a past date has no start times left.
    """
    if clock.is_past_date(day):
        return []

    first_hour = -(-working_hours.start_minutes // 60)
    if day == clock.today():
        first_hour = max(first_hour, clock.earliest_start_hour())

    required_minutes = minimum_hours * 60 + cooldown_minutes
    starts = []
    hour = first_hour
    while hour < 24 and hour * 60 < working_hours.end_minutes:
        if hour * 60 + required_minutes > working_hours.end_minutes:
            break
        starts.append(time(hour=hour))
        hour += 1
    return starts


def calendar_window(rules: AvailabilityRules, clock: Clock) -> tuple[date, date]:
    """Bookable calendar span: the space's own bounds, else today .. one year ahead."""
    today = clock.today()
    start = rules.start_date or today
    end = rules.end_date or today + timedelta(days=CALENDAR_HORIZON_DAYS)
    return start, end


def validate_slot(slot: TimeSlot, rules: AvailabilityRules, clock: Clock) -> None:
    """Raise ``ValidationError`` unless ``slot`` can be requested at all."""
    if clock.is_past_date(slot.date):
        raise ValidationError(f"Cannot book a past date: {slot.date.isoformat()}", field='time_slots', slot=slot)
    if rules.is_blocked(slot.date):
        raise ValidationError(f"{slot.date.isoformat()} is not available for booking", field='time_slots', slot=slot)
    if slot.start_time.minute or slot.start_time.second:
        raise ValidationError("Bookings start on the hour", field='time_slots', slot=slot)
    if clock.is_past_time(slot.date, slot.start_time.hour):
        raise ValidationError(
            f"Cannot book a past time: {slot.start_time:%H:%M} on {slot.date.isoformat()}",
            field='time_slots',
            slot=slot,
        )

    hours = rules.hours_for(slot.date)
    if slot.start_time < hours.start or minutes_of_day(slot.end_time) > hours.end_minutes:
        raise ValidationError(
            f"{slot} is outside working hours {hours.start:%H:%M}-{hours.end:%H:%M}",
            field='time_slots',
            slot=slot,
        )
    if slot.duration < timedelta(hours=rules.minimum_hours):
        raise ValidationError(
            f"Minimum booking duration is {rules.minimum_hours} hour(s)", field='time_slots', slot=slot
        )

    offered = list_available_start_times(slot.date, hours, rules.minimum_hours, rules.cooldown_minutes, clock)
    if slot.start_time not in offered:
        raise ValidationError(
            f"{slot.start_time:%H:%M} on {slot.date.isoformat()} is not an available start time",
            field='time_slots',
            slot=slot,
        )
