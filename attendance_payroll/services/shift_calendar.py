"""Pure shift schedule evaluation.

Everything here works on plain values (a shift-like object, a calendar date, a
set of off dates) and never touches the database, so the check-in handler and
the reconciliation pass share exactly the same notion of "work day" and
"expected window".
"""

from __future__ import annotations

from collections.abc import Collection
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from functools import lru_cache
from typing import Protocol
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from attendance_payroll.errors import ValidationError
from attendance_payroll.models import DayStatus
from attendance_payroll.settings import get_settings


class ShiftLike(Protocol):
    time_zone: str
    work_days: list[int]
    start_time_local: time
    end_time_local: time
    grace_period_minutes: int
    late_after_minutes: int
    half_day_after_minutes: int


@dataclass(frozen=True)
class ShiftWindow:
    start_utc: datetime
    end_utc: datetime

    @property
    def length_minutes(self) -> int:
        return int((self.end_utc - self.start_utc).total_seconds() // 60)


@lru_cache
def _default_timezone() -> ZoneInfo:
    raw_name = (get_settings().default_timezone or "").strip() or "Asia/Dhaka"
    try:
        return ZoneInfo(raw_name)
    except ZoneInfoNotFoundError:
        return ZoneInfo("Asia/Dhaka")


@lru_cache(maxsize=64)
def _zone(name: str) -> ZoneInfo | None:
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        return None


def shift_timezone(shift: ShiftLike) -> ZoneInfo:
    raw_name = (shift.time_zone or "").strip()
    if raw_name:
        zone = _zone(raw_name)
        if zone is not None:
            return zone
    return _default_timezone()


def normalize_ts(ts_utc: datetime | None) -> datetime:
    if ts_utc is None:
        return datetime.now(timezone.utc)
    if ts_utc.tzinfo is None:
        return ts_utc.replace(tzinfo=timezone.utc)
    return ts_utc.astimezone(timezone.utc)


def weekday_index(day: date) -> int:
    """0 = Sunday ... 6 = Saturday."""
    return (day.weekday() + 1) % 7


def crosses_midnight(shift: ShiftLike) -> bool:
    return shift.end_time_local <= shift.start_time_local


def validate_shift_rules(shift: ShiftLike) -> None:
    if any(not isinstance(item, int) or item < 0 or item > 6 for item in shift.work_days):
        raise ValidationError("INVALID_SHIFT_CONFIG", "work_days must contain weekday indices 0-6.")
    if shift.grace_period_minutes < 0:
        raise ValidationError("INVALID_SHIFT_CONFIG", "grace_period_minutes cannot be negative.")
    if shift.late_after_minutes < shift.grace_period_minutes:
        raise ValidationError(
            "INVALID_SHIFT_CONFIG",
            "late_after_minutes must be greater than or equal to grace_period_minutes.",
        )
    if shift.half_day_after_minutes <= shift.late_after_minutes:
        raise ValidationError(
            "INVALID_SHIFT_CONFIG",
            "half_day_after_minutes must be greater than late_after_minutes.",
        )
    if _zone((shift.time_zone or "").strip()) is None:
        raise ValidationError("INVALID_SHIFT_CONFIG", f"Unknown time zone {shift.time_zone!r}.")


def is_work_day(shift: ShiftLike, day: date, off_dates: Collection[date] = ()) -> bool:
    return weekday_index(day) in set(shift.work_days) and day not in off_dates


def non_work_status(day: date, off_dates: Collection[date] = ()) -> DayStatus:
    if day in off_dates:
        return DayStatus.HOLIDAY
    return DayStatus.WEEKEND


def expected_window(shift: ShiftLike, day: date) -> ShiftWindow:
    tz = shift_timezone(shift)
    start_local = datetime.combine(day, shift.start_time_local, tzinfo=tz)
    end_day = day + timedelta(days=1) if crosses_midnight(shift) else day
    end_local = datetime.combine(end_day, shift.end_time_local, tzinfo=tz)
    return ShiftWindow(
        start_utc=start_local.astimezone(timezone.utc),
        end_utc=end_local.astimezone(timezone.utc),
    )


def local_date(shift: ShiftLike, at: datetime) -> date:
    return normalize_ts(at).astimezone(shift_timezone(shift)).date()


def local_day_start_utc(shift: ShiftLike, day: date) -> datetime:
    return datetime.combine(day, time.min, tzinfo=shift_timezone(shift)).astimezone(timezone.utc)


def shift_day_for_instant(shift: ShiftLike, at: datetime) -> date:
    """Calendar date (in the shift's zone) that owns the instant.

    An overnight shift keys its record to the date it starts on, so the early
    morning part before the shift's end time belongs to the previous date.
    """
    local_at = normalize_ts(at).astimezone(shift_timezone(shift))
    if crosses_midnight(shift) and local_at.time() < shift.end_time_local:
        return local_at.date() - timedelta(days=1)
    return local_at.date()


def default_local_date(at: datetime) -> date:
    """Local date in the configured default zone, for staff without a shift."""
    return normalize_ts(at).astimezone(_default_timezone()).date()


def default_day_start_utc(day: date) -> datetime:
    return datetime.combine(day, time.min, tzinfo=_default_timezone()).astimezone(timezone.utc)
