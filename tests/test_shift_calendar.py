from __future__ import annotations

import unittest
from datetime import date, time

from db_support import MONDAY, SUNDAY, utc

from attendance_payroll.errors import ValidationError
from attendance_payroll.models import DayStatus, Shift
from attendance_payroll.services.shift_calendar import (
    crosses_midnight,
    expected_window,
    is_work_day,
    local_date,
    non_work_status,
    shift_day_for_instant,
    validate_shift_rules,
    weekday_index,
)


def _shift(**overrides: object) -> Shift:
    values: dict[str, object] = {
        "name": "Day",
        "time_zone": "UTC",
        "work_days": [1, 2, 3, 4, 5, 6],
        "start_time_local": time(9, 0),
        "end_time_local": time(17, 0),
        "grace_period_minutes": 10,
        "late_after_minutes": 10,
        "half_day_after_minutes": 240,
    }
    values.update(overrides)
    return Shift(**values)


class ShiftCalendarTests(unittest.TestCase):
    def test_weekday_index_counts_from_sunday(self) -> None:
        self.assertEqual(weekday_index(SUNDAY), 0)
        self.assertEqual(weekday_index(MONDAY), 1)
        self.assertEqual(weekday_index(date(2026, 2, 7)), 6)

    def test_work_day_respects_weekdays_and_off_dates(self) -> None:
        shift = _shift()
        self.assertTrue(is_work_day(shift, MONDAY))
        self.assertFalse(is_work_day(shift, SUNDAY))
        self.assertFalse(is_work_day(shift, MONDAY, {MONDAY}))

    def test_non_work_status_prefers_holiday_for_off_dates(self) -> None:
        self.assertEqual(non_work_status(MONDAY, {MONDAY}), DayStatus.HOLIDAY)
        self.assertEqual(non_work_status(SUNDAY, set()), DayStatus.WEEKEND)

    def test_expected_window_converts_local_times_to_utc(self) -> None:
        shift = _shift(time_zone="Asia/Dhaka")
        window = expected_window(shift, MONDAY)
        self.assertEqual(window.start_utc, utc(2026, 2, 2, 3, 0))
        self.assertEqual(window.end_utc, utc(2026, 2, 2, 11, 0))
        self.assertEqual(window.length_minutes, 480)

    def test_overnight_window_ends_next_day(self) -> None:
        shift = _shift(start_time_local=time(22, 0), end_time_local=time(6, 0))
        self.assertTrue(crosses_midnight(shift))
        window = expected_window(shift, MONDAY)
        self.assertEqual(window.start_utc, utc(2026, 2, 2, 22, 0))
        self.assertEqual(window.end_utc, utc(2026, 2, 3, 6, 0))

    def test_overnight_early_morning_belongs_to_start_date(self) -> None:
        shift = _shift(start_time_local=time(22, 0), end_time_local=time(6, 0))
        self.assertEqual(shift_day_for_instant(shift, utc(2026, 2, 2, 23, 0)), MONDAY)
        self.assertEqual(shift_day_for_instant(shift, utc(2026, 2, 3, 2, 0)), MONDAY)
        self.assertEqual(shift_day_for_instant(shift, utc(2026, 2, 3, 7, 0)), date(2026, 2, 3))

    def test_local_date_uses_shift_zone(self) -> None:
        shift = _shift(time_zone="Asia/Dhaka")
        self.assertEqual(local_date(shift, utc(2026, 2, 1, 19, 0)), MONDAY)

    def test_validate_rejects_late_threshold_below_grace(self) -> None:
        with self.assertRaises(ValidationError) as ctx:
            validate_shift_rules(_shift(grace_period_minutes=15, late_after_minutes=10))
        self.assertEqual(ctx.exception.code, "INVALID_SHIFT_CONFIG")

    def test_validate_rejects_half_day_not_after_late(self) -> None:
        with self.assertRaises(ValidationError):
            validate_shift_rules(_shift(half_day_after_minutes=10))

    def test_validate_rejects_unknown_zone(self) -> None:
        with self.assertRaises(ValidationError):
            validate_shift_rules(_shift(time_zone="Mars/Olympus"))

    def test_validate_accepts_default_shift(self) -> None:
        validate_shift_rules(_shift())


if __name__ == "__main__":
    unittest.main()
