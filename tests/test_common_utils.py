"""Tests for common utility functions."""

import unittest
from datetime import date, datetime, timedelta, timezone

from capacity_planner.utils.common import (
    APP_TZ,
    app_now,
    app_today,
    parse_iso_date,
    to_float,
    to_local_date,
)

SYDNEY_SUMMER = timezone(timedelta(hours=11))


class AppTimeTests(unittest.TestCase):
    """Tests for application timezone helpers."""

    def test_app_now_is_aware(self):
        result = app_now()
        self.assertIsInstance(result, datetime)
        self.assertIsNotNone(result.tzinfo)

    def test_app_now_defaults_to_app_timezone(self):
        self.assertEqual(app_now().utcoffset(), datetime.now(APP_TZ).utcoffset())

    def test_app_today_matches_app_now(self):
        """app_today is the calendar date of app_now in the same zone."""
        self.assertEqual(app_today(SYDNEY_SUMMER), app_now(SYDNEY_SUMMER).date())


class ToLocalDateTests(unittest.TestCase):
    def test_aware_datetime_converted_before_truncating(self):
        """23:30 UTC on Sunday is already Monday in Sydney."""
        instant = datetime(2025, 3, 9, 23, 30, tzinfo=timezone.utc)
        self.assertEqual(to_local_date(instant, SYDNEY_SUMMER), date(2025, 3, 10))
        self.assertEqual(to_local_date(instant, timezone.utc), date(2025, 3, 9))

    def test_naive_datetime_keeps_its_date(self):
        self.assertEqual(to_local_date(datetime(2025, 3, 9, 23, 30), SYDNEY_SUMMER), date(2025, 3, 9))

    def test_date_passes_through(self):
        self.assertEqual(to_local_date(date(2025, 1, 15)), date(2025, 1, 15))

    def test_rejects_other_types(self):
        with self.assertRaises(TypeError):
            to_local_date("2025-01-15")


class ParseIsoDateTests(unittest.TestCase):
    def test_date_and_timestamp_strings(self):
        self.assertEqual(parse_iso_date("2025-01-15"), date(2025, 1, 15))
        self.assertEqual(parse_iso_date("2025-01-15T10:00:00Z"), date(2025, 1, 15))

    def test_invalid_values(self):
        self.assertIsNone(parse_iso_date(""))
        self.assertIsNone(parse_iso_date(None))
        self.assertIsNone(parse_iso_date("15/01/2025"))
        self.assertIsNone(parse_iso_date(20250115))


class ToFloatTests(unittest.TestCase):
    def test_numbers_and_numeric_strings(self):
        self.assertEqual(to_float(8), 8.0)
        self.assertEqual(to_float("37.50"), 37.5)
        self.assertEqual(to_float(" 4 "), 4.0)

    def test_fallbacks(self):
        self.assertEqual(to_float(None), 0.0)
        self.assertEqual(to_float(True, default=-1.0), -1.0)
        self.assertEqual(to_float("n/a", default=40.0), 40.0)
        self.assertEqual(to_float(float("nan")), 0.0)
        self.assertEqual(to_float("inf"), 0.0)
        self.assertEqual(to_float([1]), 0.0)


if __name__ == "__main__":
    unittest.main()
