from __future__ import annotations

import unittest

from db_support import utc

from attendance_payroll.models import DayStatus
from attendance_payroll.services.attendance_rules import (
    classify_check_in,
    compute_check_out,
    compute_overtime_minutes,
    early_stop_gap,
)


def _classify(minutes: int):  # type: ignore[no-untyped-def]
    return classify_check_in(
        minutes_after_start=minutes,
        grace_period_minutes=10,
        late_after_minutes=10,
        half_day_after_minutes=240,
    )


class CheckInClassificationTests(unittest.TestCase):
    def test_inside_grace_is_present(self) -> None:
        result = _classify(8)
        self.assertEqual(result.status, DayStatus.PRESENT)
        self.assertEqual(result.late_minutes, 0)

    def test_early_arrival_is_present(self) -> None:
        self.assertEqual(_classify(-30).status, DayStatus.PRESENT)

    def test_late_minutes_count_past_grace(self) -> None:
        result = _classify(25)
        self.assertEqual(result.status, DayStatus.LATE)
        self.assertEqual(result.late_minutes, 15)

    def test_half_day_threshold(self) -> None:
        result = _classify(240)
        self.assertEqual(result.status, DayStatus.HALF_DAY)
        self.assertEqual(result.late_minutes, 230)


class CheckOutComputationTests(unittest.TestCase):
    def test_early_exit(self) -> None:
        result = compute_check_out(
            check_in_at=utc(2026, 2, 2, 9, 0),
            check_out_at=utc(2026, 2, 2, 16, 30),
            expected_end=utc(2026, 2, 2, 17, 0),
            check_in_status=DayStatus.PRESENT,
            half_day_after_minutes=240,
        )
        self.assertEqual(result.status, DayStatus.EARLY_EXIT)
        self.assertEqual(result.total_minutes, 450)
        self.assertEqual(result.early_exit_minutes, 30)
        self.assertEqual(result.ot_minutes, 0)

    def test_staying_late_keeps_check_in_status(self) -> None:
        result = compute_check_out(
            check_in_at=utc(2026, 2, 2, 9, 25),
            check_out_at=utc(2026, 2, 2, 17, 45),
            expected_end=utc(2026, 2, 2, 17, 0),
            check_in_status=DayStatus.LATE,
            half_day_after_minutes=240,
        )
        self.assertEqual(result.status, DayStatus.LATE)
        self.assertEqual(result.ot_minutes, 45)
        self.assertEqual(result.early_exit_minutes, 0)

    def test_leaving_far_too_early_is_half_day(self) -> None:
        result = compute_check_out(
            check_in_at=utc(2026, 2, 2, 9, 0),
            check_out_at=utc(2026, 2, 2, 12, 0),
            expected_end=utc(2026, 2, 2, 17, 0),
            check_in_status=DayStatus.PRESENT,
            half_day_after_minutes=240,
        )
        self.assertEqual(result.status, DayStatus.HALF_DAY)
        self.assertEqual(result.early_exit_minutes, 300)


class OvertimeMinutesTests(unittest.TestCase):
    def test_rounds_down_to_step(self) -> None:
        self.assertEqual(
            compute_overtime_minutes(raw_minutes=47, early_stop_minutes=0, min_ot_minutes=30, round_ot_to=30),
            30,
        )

    def test_below_minimum_counts_nothing(self) -> None:
        self.assertEqual(
            compute_overtime_minutes(raw_minutes=20, early_stop_minutes=0, min_ot_minutes=30, round_ot_to=30),
            0,
        )

    def test_zero_step_keeps_exact_minutes(self) -> None:
        self.assertEqual(
            compute_overtime_minutes(raw_minutes=47, early_stop_minutes=0, min_ot_minutes=30, round_ot_to=0),
            47,
        )

    def test_early_stop_is_subtracted_before_rounding(self) -> None:
        self.assertEqual(
            compute_overtime_minutes(raw_minutes=90, early_stop_minutes=20, min_ot_minutes=30, round_ot_to=30),
            60,
        )

    def test_early_stop_gap_ignores_tolerance(self) -> None:
        planned_end = utc(2026, 2, 2, 9, 0)
        self.assertEqual(
            early_stop_gap(stopped_at=utc(2026, 2, 2, 8, 50), planned_end=planned_end, tolerance_minutes=15),
            0,
        )
        self.assertEqual(
            early_stop_gap(stopped_at=utc(2026, 2, 2, 8, 30), planned_end=planned_end, tolerance_minutes=15),
            30,
        )
        self.assertEqual(
            early_stop_gap(stopped_at=utc(2026, 2, 2, 8, 30), planned_end=None, tolerance_minutes=15),
            0,
        )


if __name__ == "__main__":
    unittest.main()
