from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from attendance_payroll.models import DayStatus


@dataclass(frozen=True)
class CheckInClassification:
    status: DayStatus
    late_minutes: int


@dataclass(frozen=True)
class CheckOutComputation:
    status: DayStatus
    total_minutes: int
    early_exit_minutes: int
    ot_minutes: int


def minutes_between(start: datetime, end: datetime) -> int:
    return int((end - start).total_seconds() // 60)


def classify_check_in(
    *,
    minutes_after_start: int,
    grace_period_minutes: int,
    late_after_minutes: int,
    half_day_after_minutes: int,
) -> CheckInClassification:
    raw = max(0, minutes_after_start)
    if raw >= half_day_after_minutes:
        status = DayStatus.HALF_DAY
    elif raw > late_after_minutes:
        status = DayStatus.LATE
    else:
        return CheckInClassification(status=DayStatus.PRESENT, late_minutes=0)
    return CheckInClassification(status=status, late_minutes=max(0, raw - grace_period_minutes))


def classify_check_out(
    *,
    check_in_status: DayStatus,
    early_exit_minutes: int,
    half_day_after_minutes: int,
) -> DayStatus:
    # Half day is measured against the threshold from shift start, not worked duration.
    if early_exit_minutes >= half_day_after_minutes:
        return DayStatus.HALF_DAY
    if early_exit_minutes > 0 and check_in_status in (DayStatus.PRESENT, DayStatus.LATE):
        return DayStatus.EARLY_EXIT
    return check_in_status


def compute_check_out(
    *,
    check_in_at: datetime,
    check_out_at: datetime,
    expected_end: datetime,
    check_in_status: DayStatus,
    half_day_after_minutes: int,
) -> CheckOutComputation:
    total_minutes = max(0, minutes_between(check_in_at, check_out_at))
    early_exit_minutes = max(0, minutes_between(check_out_at, expected_end))
    ot_minutes = max(0, minutes_between(expected_end, check_out_at))
    status = classify_check_out(
        check_in_status=check_in_status,
        early_exit_minutes=early_exit_minutes,
        half_day_after_minutes=half_day_after_minutes,
    )
    return CheckOutComputation(
        status=status,
        total_minutes=total_minutes,
        early_exit_minutes=early_exit_minutes,
        ot_minutes=ot_minutes,
    )


def compute_overtime_minutes(
    *,
    raw_minutes: int,
    early_stop_minutes: int,
    min_ot_minutes: int,
    round_ot_to: int,
) -> int:
    counted = max(0, raw_minutes - max(0, early_stop_minutes))
    if counted < min_ot_minutes:
        return 0
    if round_ot_to <= 0:
        return counted
    return (counted // round_ot_to) * round_ot_to


def early_stop_gap(*, stopped_at: datetime, planned_end: datetime | None, tolerance_minutes: int) -> int:
    """Minutes a session stopped before its planned end, ignored within tolerance."""
    if planned_end is None:
        return 0
    gap = minutes_between(stopped_at, planned_end)
    if gap <= tolerance_minutes:
        return 0
    return gap
