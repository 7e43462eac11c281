import datetime as dt
import unittest

from salonbook.ledger.errors import ValidationError
from salonbook.ledger.periods import Granularity, add_months, resolve_window, step


class ResolveWindowTestCase(unittest.TestCase):
    def setUp(self) -> None:
        self.reference = dt.date(2026, 10, 18)

    def test_day_window(self) -> None:
        window = resolve_window(self.reference, "day")
        self.assertEqual(window.start, dt.datetime(2026, 10, 18))
        self.assertEqual(window.end, dt.datetime(2026, 10, 18, 23, 59, 59, 999999))
        self.assertEqual(window.label, "18 October 2026")

    def test_week_starts_on_monday(self) -> None:
        window = resolve_window(self.reference, Granularity.WEEK)
        self.assertEqual(window.start, dt.datetime(2026, 10, 12))
        self.assertEqual(window.end.date(), dt.date(2026, 10, 18))
        self.assertEqual(window.label, "Week starting 12 October 2026")

        monday = resolve_window(dt.date(2026, 10, 12), "week")
        self.assertEqual(monday.start, window.start)

    def test_month_window(self) -> None:
        window = resolve_window(dt.datetime(2024, 2, 10, 15, 30), "month")
        self.assertEqual(window.start, dt.datetime(2024, 2, 1))
        self.assertEqual(window.end, dt.datetime(2024, 2, 29, 23, 59, 59, 999999))
        self.assertEqual(window.label, "February 2024")

    def test_year_window(self) -> None:
        window = resolve_window(self.reference, "year")
        self.assertEqual(window.start, dt.datetime(2026, 1, 1))
        self.assertEqual(window.end, dt.datetime(2026, 12, 31, 23, 59, 59, 999999))
        self.assertEqual(window.label, "2026")

    def test_bounds_are_inclusive(self) -> None:
        window = resolve_window(self.reference, "month")
        self.assertTrue(window.contains(dt.date(2026, 10, 1)))
        self.assertTrue(window.contains(dt.date(2026, 10, 31)))
        self.assertTrue(window.contains(window.end))
        self.assertFalse(window.contains(dt.date(2026, 11, 1)))
        self.assertFalse(window.contains(dt.date(2026, 9, 30)))

    def test_unknown_granularity(self) -> None:
        with self.assertRaises(ValidationError):
            resolve_window(self.reference, "quarter")


class StepTestCase(unittest.TestCase):
    def test_day_and_week_steps(self) -> None:
        reference = dt.date(2026, 3, 1)
        self.assertEqual(step(reference, "day", "prev"), dt.datetime(2026, 2, 28))
        self.assertEqual(step(reference, "week", "next"), dt.datetime(2026, 3, 8))

    def test_month_end_clamps_to_february(self) -> None:
        self.assertEqual(step(dt.date(2025, 1, 31), "month", "next"), dt.datetime(2025, 2, 28))
        self.assertEqual(step(dt.date(2024, 1, 31), "month", "next"), dt.datetime(2024, 2, 29))
        self.assertEqual(step(dt.date(2024, 3, 31), "month", "prev"), dt.datetime(2024, 2, 29))

    def test_month_step_crosses_year(self) -> None:
        self.assertEqual(step(dt.date(2026, 12, 15), "month", "next"), dt.datetime(2027, 1, 15))
        self.assertEqual(step(dt.date(2026, 1, 15), "month", "prev"), dt.datetime(2025, 12, 15))

    def test_year_step_from_leap_day(self) -> None:
        self.assertEqual(step(dt.date(2024, 2, 29), "year", "next"), dt.datetime(2025, 2, 28))
        self.assertEqual(step(dt.date(2026, 6, 1), "year", "prev"), dt.datetime(2025, 6, 1))

    def test_time_of_day_is_kept(self) -> None:
        moment = dt.datetime(2026, 5, 31, 14, 45)
        self.assertEqual(add_months(moment, 1), dt.datetime(2026, 6, 30, 14, 45))

    def test_unknown_direction(self) -> None:
        with self.assertRaises(ValidationError):
            step(dt.date(2026, 1, 1), "day", "sideways")


if __name__ == "__main__":
    unittest.main()
