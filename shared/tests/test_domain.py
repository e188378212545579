"""Clock and value objects."""

from __future__ import annotations

from datetime import date, datetime, time
from decimal import Decimal
from zoneinfo import ZoneInfo

import pytest

from shared.domain.clock import FixedClock
from shared.domain.exceptions import ConflictError
from shared.domain.value_objects import Money, TimeSlot, parse_clock_time


def test_fixed_clock_reads_naive_values_as_local_time() -> None:
    clock = FixedClock(datetime(2030, 6, 3, 23, 59), tz_name="Asia/Tashkent")

    assert clock.now().tzinfo == ZoneInfo("Asia/Tashkent")
    assert clock.today() == date(2030, 6, 3)


def test_local_date_differs_from_utc_date() -> None:
    # 20:30 UTC is already the next day in Tashkent (UTC+5)
    clock = FixedClock(datetime(2030, 6, 3, 20, 30, tzinfo=ZoneInfo("UTC")), tz_name="Asia/Tashkent")

    assert clock.today() == date(2030, 6, 4)
    assert clock.is_past_date(date(2030, 6, 3))


def test_past_time_is_judged_by_hour() -> None:
    clock = FixedClock(datetime(2030, 6, 3, 10, 15))

    assert clock.earliest_start_hour() == 11
    assert clock.is_past_time(date(2030, 6, 3), 10)
    assert not clock.is_past_time(date(2030, 6, 3), 11)
    assert not clock.is_past_time(date(2030, 6, 4), 0)
    assert clock.is_past_time(date(2030, 6, 2), 23)


def test_money_minor_units() -> None:
    money = Money("1234.565")

    assert money.to_minor_units() == 123457
    assert Money.from_minor_units(10_000_000) == Money(Decimal("100000"))
    assert Money("100000.00").matches(Money(100000))
    assert not Money(1, "USD").matches(Money(1, "UZS"))


def test_money_rejects_bad_values() -> None:
    with pytest.raises(ValueError):
        Money(-1)
    with pytest.raises(ValueError):
        Money(1, "GBP")
    with pytest.raises(ValueError):
        Money(1, "UZS") + Money(1, "USD")


def test_time_slot_from_dict_accepts_camel_case() -> None:
    slot = TimeSlot.from_dict({"date": "2030-06-04", "startTime": "10:00", "endTime": "12:30:00"})

    assert slot == TimeSlot(date(2030, 6, 4), time(10), time(12, 30))
    assert slot.to_dict() == {"date": "2030-06-04", "start_time": "10:00", "end_time": "12:30", "day_of_week": 2}


def test_time_slot_must_have_positive_length() -> None:
    with pytest.raises(ValueError):
        TimeSlot(date(2030, 6, 4), time(12), time(12))
    with pytest.raises(ValueError):
        parse_clock_time("25:00")


def test_conflict_error_payload() -> None:
    slot = TimeSlot(date(2030, 6, 4), time(10), time(11))

    data = ConflictError("taken", conflicting_slot=slot).to_dict()

    assert data["error"] == "slot_conflict"
    assert data["conflicting_slot"]["start_time"] == "10:00"
    assert data["conflicting_booking_id"] is None
