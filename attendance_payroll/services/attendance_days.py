from __future__ import annotations

import logging
from datetime import date, datetime, time, timedelta, timezone
from decimal import Decimal
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from attendance_payroll.db import insert_for
from attendance_payroll.errors import ValidationError
from attendance_payroll.models import AttendanceDay, DayStatus, LeaveApplication, Shift, Staff
from attendance_payroll.schemas import AttendanceOverrideRequest
from attendance_payroll.services.attendance_rules import minutes_between
from attendance_payroll.services.day_status import TransitionCause, transition
from attendance_payroll.services.payroll_calc import day_amounts, per_day_rate
from attendance_payroll.services.payroll_locks import ensure_date_unlocked
from attendance_payroll.services.shift_calendar import crosses_midnight, shift_timezone
from attendance_payroll.services.shifts import get_staff, resolve_shift_for_date
from attendance_payroll.settings import get_settings

logger = logging.getLogger("attendance_payroll.attendance")


def staff_day_rate(staff: Staff) -> Decimal:
    return per_day_rate(
        salary=staff.salary,
        per_day_override=staff.per_day_salary_rate,
        days_per_month=get_settings().salary_days_per_month,
    )


def get_day(db: Session, *, staff_id: int, day_date: date, for_update: bool = False) -> AttendanceDay | None:
    stmt = select(AttendanceDay).where(
        AttendanceDay.staff_id == staff_id,
        AttendanceDay.day_date == day_date,
    )
    if for_update:
        stmt = stmt.with_for_update()
    return db.scalar(stmt)


def insert_day_if_missing(db: Session, *, staff_id: int, day_date: date, **values: Any) -> bool:
    """Create the (staff, date) row unless one exists. True when this call created it."""
    result = db.execute(
        insert_for(db, AttendanceDay)
        .values(staff_id=staff_id, day_date=day_date, **values)
        .on_conflict_do_nothing(index_elements=["staff_id", "day_date"])
    )
    return result.rowcount == 1


def apply_day_amounts(db: Session, day: AttendanceDay, *, staff: Staff) -> None:
    leave = db.get(LeaveApplication, day.leave_request_id) if day.leave_request_id is not None else None
    payable, deduction = day_amounts(
        day.status,
        day_rate=staff_day_rate(staff),
        leave_is_paid=leave.is_paid if leave is not None else True,
        leave_affects_salary=leave.affects_salary if leave is not None else False,
    )
    day.payable_amount = payable
    day.deduction_amount = deduction


def append_note(current: str | None, note: str | None) -> str | None:
    if not note:
        return current
    if not current:
        return note[:1000]
    return f"{current}\n{note}"[:1000]


def _parse_hhmm(value: str) -> time:
    hour_str, minute_str = value.split(":")
    hour = int(hour_str)
    minute = int(minute_str)
    if hour < 0 or hour > 23 or minute < 0 or minute > 59:
        raise ValidationError("INVALID_TIME", "Invalid time format.")
    return time(hour=hour, minute=minute)


def _combine_utc(shift: Shift | None, day_date: date, hhmm: str | None, *, next_day: bool = False) -> datetime | None:
    if hhmm is None:
        return None
    target_day = day_date + timedelta(days=1) if next_day else day_date
    tz = shift_timezone(shift) if shift is not None else timezone.utc
    local_dt = datetime.combine(target_day, _parse_hhmm(hhmm), tzinfo=tz)
    return local_dt.astimezone(timezone.utc)


def upsert_manual_override(
    db: Session,
    *,
    staff_id: int,
    day_date: date,
    payload: AttendanceOverrideRequest,
    actor_id: str,
    now_utc: datetime,
) -> AttendanceDay:
    staff = get_staff(db, staff_id)
    ensure_date_unlocked(db, day_date)
    shift = resolve_shift_for_date(db, staff_id, day_date)

    check_in_at = _combine_utc(shift, day_date, payload.check_in_time)
    rolls_over = (
        shift is not None
        and crosses_midnight(shift)
        and payload.check_out_time is not None
        and payload.check_in_time is not None
        and _parse_hhmm(payload.check_out_time) <= _parse_hhmm(payload.check_in_time)
    )
    check_out_at = _combine_utc(shift, day_date, payload.check_out_time, next_day=rolls_over)
    if check_in_at is not None and check_out_at is not None and check_out_at < check_in_at:
        raise ValidationError("INVALID_TIME", "Check-out must not be earlier than check-in.")

    insert_day_if_missing(
        db,
        staff_id=staff_id,
        day_date=day_date,
        shift_id=shift.id if shift is not None else None,
        status=payload.status,
        is_manual=True,
    )
    day = get_day(db, staff_id=staff_id, day_date=day_date, for_update=True)
    if day is None:
        raise RuntimeError("attendance day vanished after upsert")

    day.status = transition(day.status, payload.status, TransitionCause.MANUAL)
    day.is_manual = True
    day.is_auto_absent = False
    if payload.status is not DayStatus.ON_LEAVE:
        day.leave_request_id = None
    if payload.check_in_time is not None or payload.check_out_time is not None:
        day.check_in_at = check_in_at
        day.check_out_at = check_out_at
    if day.check_in_at is not None and day.check_out_at is not None:
        day.total_minutes = max(0, minutes_between(day.check_in_at, day.check_out_at))
    else:
        day.total_minutes = 0
    apply_day_amounts(db, day, staff=staff)
    day.notes = append_note(day.notes, payload.note or f"Manual override by {actor_id}")
    day.processed_at = now_utc
    db.commit()
    db.refresh(day)
    logger.info(
        "attendance_day_overridden",
        extra={"staff_id": staff_id, "day_date": day_date.isoformat(), "status": day.status.value, "actor_id": actor_id},
    )
    return day


def grace_day(
    db: Session,
    *,
    staff_id: int,
    day_date: date,
    note: str | None,
    actor_id: str,
    now_utc: datetime,
) -> AttendanceDay:
    """Force a day to present with full pay and pin it against scheduler rewrites."""
    staff = get_staff(db, staff_id)
    ensure_date_unlocked(db, day_date)
    shift = resolve_shift_for_date(db, staff_id, day_date)
    insert_day_if_missing(
        db,
        staff_id=staff_id,
        day_date=day_date,
        shift_id=shift.id if shift is not None else None,
        status=DayStatus.PRESENT,
        is_manual=True,
    )
    day = get_day(db, staff_id=staff_id, day_date=day_date, for_update=True)
    if day is None:
        raise RuntimeError("attendance day vanished after upsert")

    previous_status = day.status
    day.status = transition(day.status, DayStatus.PRESENT, TransitionCause.MANUAL)
    day.is_manual = True
    day.is_auto_absent = False
    day.leave_request_id = None
    day.late_minutes = 0
    day.early_exit_minutes = 0
    apply_day_amounts(db, day, staff=staff)
    day.notes = append_note(day.notes, note or f"Graced by {actor_id} (was {previous_status.value})")
    day.processed_at = now_utc
    db.commit()
    db.refresh(day)
    logger.info(
        "attendance_day_graced",
        extra={
            "staff_id": staff_id,
            "day_date": day_date.isoformat(),
            "previous_status": previous_status.value,
            "actor_id": actor_id,
        },
    )
    return day


def list_days(db: Session, *, staff_id: int, start: date, end: date) -> list[AttendanceDay]:
    """Days in [start, end)."""
    return list(
        db.scalars(
            select(AttendanceDay)
            .where(
                AttendanceDay.staff_id == staff_id,
                AttendanceDay.day_date >= start,
                AttendanceDay.day_date < end,
            )
            .order_by(AttendanceDay.day_date.asc())
        ).all()
    )
