"""
Common Value Objects

- Money: monetary amount with currency (UZS by default)
- TimeSlot: one reservable interval on a calendar date
"""

from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from decimal import Decimal, ROUND_HALF_UP

from shared.domain.base import ValueObject

SUPPORTED_CURRENCIES = ('UZS', 'USD', 'EUR', 'RUB')
TIME_FORMAT = '%H:%M'


@dataclass(frozen=True)
class Money(ValueObject):
    """
    Money value object

    Amounts are kept in major units (sums). Payme works in tiyin,
    see ``to_minor_units`` / ``from_minor_units``.
    """
    amount: Decimal
    currency: str = 'UZS'

    def __post_init__(self):
        if not isinstance(self.amount, Decimal):
            object.__setattr__(self, 'amount', Decimal(str(self.amount)))
        if self.amount < 0:
            raise ValueError("Amount cannot be negative")
        if self.currency not in SUPPORTED_CURRENCIES:
            raise ValueError(f"Unsupported currency: {self.currency}")

    def __add__(self, other: 'Money') -> 'Money':
        if not isinstance(other, Money):
            raise TypeError("Can only add Money to Money")
        if self.currency != other.currency:
            raise ValueError(f"Cannot add different currencies: {self.currency} and {other.currency}")
        return Money(self.amount + other.amount, self.currency)

    def to_minor_units(self) -> int:
        return int((self.amount * 100).quantize(Decimal('1'), rounding=ROUND_HALF_UP))

    @classmethod
    def from_minor_units(cls, value: int, currency: str = 'UZS') -> 'Money':
        return cls(Decimal(value) / Decimal(100), currency)

    def matches(self, other: 'Money') -> bool:
        """Equal to the tiyin, same currency."""
        return self.currency == other.currency and self.to_minor_units() == other.to_minor_units()

    def __str__(self):
        return f"{self.amount:,.2f} {self.currency}"


def parse_clock_time(value) -> time:
    """Accepts ``time`` or an "HH:MM" / "HH:MM:SS" string."""
    if isinstance(value, time):
        return value
    text = str(value).strip()
    for fmt in (TIME_FORMAT, '%H:%M:%S'):
        try:
            return datetime.strptime(text, fmt).time()
        except ValueError:
            continue
    raise ValueError(f"Invalid time value: {value!r}")


def minutes_of_day(value: time) -> int:
    return value.hour * 60 + value.minute


@dataclass(frozen=True)
class TimeSlot(ValueObject):
    """
    Time slot value object

    ``[start_time, end_time)`` on a single calendar date. Adjacent slots
    do not overlap.
    """
    date: date
    start_time: time
    end_time: time

    def __post_init__(self):
        if self.start_time >= self.end_time:
            raise ValueError(
                f"Slot start ({self.start_time:%H:%M}) must be before end ({self.end_time:%H:%M})"
            )

    @classmethod
    def from_dict(cls, data: dict) -> 'TimeSlot':
        raw_date = data.get('date')
        slot_date = raw_date if isinstance(raw_date, date) else date.fromisoformat(str(raw_date))
        return cls(
            date=slot_date,
            start_time=parse_clock_time(data.get('start_time') or data.get('startTime')),
            end_time=parse_clock_time(data.get('end_time') or data.get('endTime')),
        )

    @property
    def day_of_week(self) -> int:
        """0 = Sunday ... 6 = Saturday."""
        return self.date.isoweekday() % 7

    @property
    def duration(self) -> timedelta:
        return timedelta(minutes=minutes_of_day(self.end_time) - minutes_of_day(self.start_time))

    def overlaps_with(self, other: 'TimeSlot', cooldown_minutes: int = 0) -> bool:
        """
        Same date and intersecting ranges.

        With a cooldown each slot is padded at its end, so a booking that
        starts inside another one's cooldown also conflicts.
        """
        if not isinstance(other, TimeSlot):
            raise TypeError("Can only check overlap with another TimeSlot")
        if self.date != other.date:
            return False
        start, end = minutes_of_day(self.start_time), minutes_of_day(self.end_time)
        other_start, other_end = minutes_of_day(other.start_time), minutes_of_day(other.end_time)
        return start < other_end + cooldown_minutes and other_start < end + cooldown_minutes

    def to_dict(self) -> dict:
        return {
            'date': self.date.isoformat(),
            'start_time': self.start_time.strftime(TIME_FORMAT),
            'end_time': self.end_time.strftime(TIME_FORMAT),
            'day_of_week': self.day_of_week,
        }

    def __str__(self):
        return f"{self.date.isoformat()} {self.start_time:%H:%M}-{self.end_time:%H:%M}"
