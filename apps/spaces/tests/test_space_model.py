"""Availability configuration stored on a space."""

from __future__ import annotations

from datetime import date, time

from django.core.exceptions import ValidationError
from django.test import TestCase

from apps.bookings.tests.factories import make_space, make_user
from apps.users.models import User


class SpaceAvailabilityConfigTests(TestCase):

    def setUp(self) -> None:
        self.host = make_user("host@example.com", "+998900000201", User.RoleChoices.HOST)

    def test_rules_read_from_space(self) -> None:
        space = make_space(
            self.host,
            weekday_time_slots={"6": {"start": "12:00", "end": "15:00"}, "1": {"start": "", "end": ""}},
            blocked_dates=["2030-06-05"],
            blocked_weekdays=[0],
            cooldown=0,
        )

        rules = space.availability_rules()

        self.assertEqual(rules.hours_for(date(2030, 6, 8)).start, time(12))
        self.assertEqual(rules.hours_for(date(2030, 6, 3)).start, time(9))
        self.assertTrue(rules.is_blocked(date(2030, 6, 5)))
        self.assertTrue(rules.is_blocked(date(2030, 6, 9)))
        self.assertFalse(rules.is_blocked(date(2030, 6, 4)))
        self.assertEqual(rules.cooldown_minutes, 0)

    def test_clean_rejects_inverted_hours(self) -> None:
        space = make_space(self.host, check_in="18:00", check_out="09:00")

        with self.assertRaises(ValidationError):
            space.clean()

    def test_clean_rejects_bad_blocked_date(self) -> None:
        space = make_space(self.host, blocked_dates=["next friday"])

        with self.assertRaises(ValidationError):
            space.clean()

    def test_clean_rejects_unknown_weekday(self) -> None:
        space = make_space(self.host, blocked_weekdays=[7])

        with self.assertRaises(ValidationError):
            space.clean()

    def test_clean_rejects_inverted_date_range(self) -> None:
        space = make_space(self.host, start_date=date(2030, 7, 1), end_date=date(2030, 6, 1))

        with self.assertRaises(ValidationError):
            space.clean()
