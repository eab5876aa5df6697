from __future__ import annotations

import logging
from datetime import date, datetime, timedelta
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from attendance_payroll.db import insert_for
from attendance_payroll.errors import ConflictError, ValidationError
from attendance_payroll.models import (
    AttendanceDay,
    AttendanceEvent,
    AttendanceEventSource,
    AttendanceEventType,
    DayStatus,
    Overtime,
    OvertimeStatus,
    Shift,
    Staff,
    StaffStatus,
)
from attendance_payroll.services.attendance_days import (
    apply_day_amounts,
    get_day,
    insert_day_if_missing,
    list_days,
)
from attendance_payroll.services.attendance_rules import (
    CheckInClassification,
    classify_check_in,
    compute_check_out,
    minutes_between,
)
from attendance_payroll.services.day_status import TransitionCause, is_worked, transition
from attendance_payroll.services.payroll_locks import ensure_date_unlocked, parse_month
from attendance_payroll.services.shift_calendar import (
    crosses_midnight,
    expected_window,
    is_work_day,
    non_work_status,
    normalize_ts,
    shift_day_for_instant,
)
from attendance_payroll.services.shifts import (
    get_staff,
    load_off_dates,
    resolve_active_shift,
    resolve_shift_for_date,
)
from attendance_payroll.settings import get_settings

logger = logging.getLogger("attendance_payroll.attendance")


def _lock_staff(db: Session, staff_id: int) -> Staff:
    """Serialize check-in/check-out per staff member for the rest of the transaction."""
    get_staff(db, staff_id)
    staff = db.scalar(select(Staff).where(Staff.id == staff_id).with_for_update())
    if staff is None:
        raise RuntimeError("staff row vanished while locking")
    if staff.status != StaffStatus.ACTIVE:
        raise ValidationError("STAFF_INACTIVE", "Inactive staff cannot record attendance.")
    return staff


def resolve_shift_at(db: Session, *, staff_id: int, at: datetime) -> tuple[Shift, date]:
    anchor = resolve_active_shift(db, staff_id)
    if anchor is None:
        raise ValidationError("NO_ACTIVE_SHIFT", "Staff has no active shift assignment.")
    day_date = shift_day_for_instant(anchor, at)
    shift = resolve_shift_for_date(db, staff_id, day_date)
    if shift is None:
        raise ValidationError("NO_ACTIVE_SHIFT", f"Staff has no shift on {day_date.isoformat()}.")
    if shift.id != anchor.id:
        day_date = shift_day_for_instant(shift, at)
    return shift, day_date


def _find_event(
    db: Session,
    *,
    staff_id: int,
    event_type: AttendanceEventType,
    at: datetime,
) -> AttendanceEvent | None:
    return db.scalar(
        select(AttendanceEvent).where(
            AttendanceEvent.staff_id == staff_id,
            AttendanceEvent.type == event_type,
            AttendanceEvent.at == at,
        )
    )


def _resolve_latest_event(db: Session, *, staff_id: int, reference_ts: datetime) -> AttendanceEvent | None:
    return db.scalar(
        select(AttendanceEvent)
        .where(
            AttendanceEvent.staff_id == staff_id,
            AttendanceEvent.at <= reference_ts,
        )
        .order_by(AttendanceEvent.at.desc(), AttendanceEvent.id.desc())
    )


def resolve_open_check_in(
    db: Session,
    *,
    staff_id: int,
    reference_ts: datetime,
    shift: Shift,
    day_date: date,
) -> AttendanceEvent | None:
    latest_event = _resolve_latest_event(db, staff_id=staff_id, reference_ts=reference_ts)
    if latest_event is None or latest_event.type != AttendanceEventType.CHECK_IN:
        return None
    if latest_event.attendance_date == day_date:
        return latest_event
    previous = day_date - timedelta(days=1)
    if not crosses_midnight(shift) or latest_event.attendance_date != previous:
        return None

    # An overnight session stays open only until its window ends or the scheduler closes the day.
    previous_shift = shift
    if latest_event.shift_id is not None and latest_event.shift_id != shift.id:
        previous_shift = db.get(Shift, latest_event.shift_id) or shift
    margin = timedelta(minutes=get_settings().reconciliation_safety_margin_minutes)
    if reference_ts >= expected_window(previous_shift, previous).end_utc + margin:
        return None
    previous_day = get_day(db, staff_id=staff_id, day_date=previous)
    if previous_day is not None and previous_day.processed_at is not None:
        return None
    return latest_event


def _record_event(
    db: Session,
    *,
    staff_id: int,
    shift_id: int | None,
    event_type: AttendanceEventType,
    at: datetime,
    attendance_date: date,
    source: AttendanceEventSource,
    ip: str | None,
    user_agent: str | None,
) -> bool:
    result = db.execute(
        insert_for(db, AttendanceEvent)
        .values(
            staff_id=staff_id,
            shift_id=shift_id,
            type=event_type,
            at=at,
            attendance_date=attendance_date,
            source=source,
            ip=ip,
            user_agent=user_agent,
        )
        .on_conflict_do_nothing(index_elements=["staff_id", "type", "at"])
    )
    return result.rowcount == 1


def _classify_from_check_in(shift: Shift, day_date: date, check_in_at: datetime) -> CheckInClassification:
    window = expected_window(shift, day_date)
    return classify_check_in(
        minutes_after_start=minutes_between(window.start_utc, check_in_at),
        grace_period_minutes=shift.grace_period_minutes,
        late_after_minutes=shift.late_after_minutes,
        half_day_after_minutes=shift.half_day_after_minutes,
    )


def check_in(
    db: Session,
    *,
    staff_id: int,
    at: datetime | None = None,
    source: AttendanceEventSource = AttendanceEventSource.WEB,
    ip: str | None = None,
    user_agent: str | None = None,
) -> AttendanceDay:
    at_utc = normalize_ts(at)
    staff = _lock_staff(db, staff_id)
    shift, day_date = resolve_shift_at(db, staff_id=staff.id, at=at_utc)

    if _find_event(db, staff_id=staff.id, event_type=AttendanceEventType.CHECK_IN, at=at_utc) is not None:
        # Same submission replayed; answer with the current state.
        existing = get_day(db, staff_id=staff.id, day_date=day_date)
        if existing is not None:
            db.commit()
            return existing

    day = get_day(db, staff_id=staff.id, day_date=day_date, for_update=True)
    if day is not None and day.status is DayStatus.ON_LEAVE:
        raise ConflictError("ALREADY_ON_LEAVE", f"Staff is on leave on {day_date.isoformat()}.")
    if resolve_open_check_in(db, staff_id=staff.id, reference_ts=at_utc, shift=shift, day_date=day_date) is not None:
        raise ConflictError("DUPLICATE_CHECK_IN", "Already checked in. Check out before checking in again.")
    ensure_date_unlocked(db, day_date)

    _record_event(
        db,
        staff_id=staff.id,
        shift_id=shift.id,
        event_type=AttendanceEventType.CHECK_IN,
        at=at_utc,
        attendance_date=day_date,
        source=source,
        ip=ip,
        user_agent=user_agent,
    )

    off_dates = load_off_dates(db, shift.id, start=day_date, end=day_date)
    if not is_work_day(shift, day_date, off_dates):
        target_status = non_work_status(day_date, off_dates)
        late_minutes = 0
    else:
        classification = _classify_from_check_in(shift, day_date, at_utc)
        target_status = classification.status
        late_minutes = classification.late_minutes

    created = False
    if day is None:
        created = insert_day_if_missing(
            db,
            staff_id=staff.id,
            day_date=day_date,
            shift_id=shift.id,
            status=transition(None, target_status, TransitionCause.CHECK_IN),
            check_in_at=at_utc,
            late_minutes=late_minutes,
        )
        # A concurrent scheduler pass may have created the row first; merge into it then.
        day = get_day(db, staff_id=staff.id, day_date=day_date, for_update=True)
        if day is None:
            raise RuntimeError("attendance day vanished after upsert")
        if not created and day.status is DayStatus.ON_LEAVE:
            raise ConflictError("ALREADY_ON_LEAVE", f"Staff is on leave on {day_date.isoformat()}.")
    if not created:
        earliest = day.check_in_at is None or at_utc < day.check_in_at
        if earliest:
            day.check_in_at = at_utc
        # Manual rows and scheduler absences keep their status; the punch is still kept.
        reclassify = earliest and not day.is_manual and is_worked(day.status) and is_worked(target_status)
        if reclassify:
            day.status = transition(day.status, target_status, TransitionCause.CHECK_IN)
            day.late_minutes = late_minutes
            if day.check_out_at is not None:
                _apply_check_out(db, day=day, staff=staff, shift=shift)

    db.commit()
    db.refresh(day)
    logger.info(
        "check_in_recorded",
        extra={
            "staff_id": staff.id,
            "day_date": day_date.isoformat(),
            "status": day.status.value,
            "late_minutes": day.late_minutes,
            "source": source.value,
        },
    )
    return day


def _apply_check_out(db: Session, *, day: AttendanceDay, staff: Staff, shift: Shift) -> None:
    if day.check_in_at is None or day.check_out_at is None:
        return
    window = expected_window(shift, day.day_date)
    if is_worked(day.status) and not day.is_manual:
        check_in_status = _classify_from_check_in(shift, day.day_date, day.check_in_at).status
        computation = compute_check_out(
            check_in_at=day.check_in_at,
            check_out_at=day.check_out_at,
            expected_end=window.end_utc,
            check_in_status=check_in_status,
            half_day_after_minutes=shift.half_day_after_minutes,
        )
        day.status = transition(day.status, computation.status, TransitionCause.CHECK_OUT)
        day.early_exit_minutes = computation.early_exit_minutes
        day.ot_minutes = computation.ot_minutes
        day.total_minutes = computation.total_minutes
    else:
        day.total_minutes = max(0, minutes_between(day.check_in_at, day.check_out_at))
    apply_day_amounts(db, day, staff=staff)


def check_out(
    db: Session,
    *,
    staff_id: int,
    at: datetime | None = None,
    source: AttendanceEventSource = AttendanceEventSource.WEB,
    ip: str | None = None,
    user_agent: str | None = None,
) -> AttendanceDay:
    at_utc = normalize_ts(at)
    staff = _lock_staff(db, staff_id)
    shift, day_date = resolve_shift_at(db, staff_id=staff.id, at=at_utc)

    replayed = _find_event(db, staff_id=staff.id, event_type=AttendanceEventType.CHECK_OUT, at=at_utc)
    if replayed is not None:
        existing = get_day(db, staff_id=staff.id, day_date=replayed.attendance_date)
        if existing is not None:
            db.commit()
            return existing

    open_event = resolve_open_check_in(db, staff_id=staff.id, reference_ts=at_utc, shift=shift, day_date=day_date)
    if open_event is None:
        raise ConflictError("NO_OPEN_CHECK_IN", "No open check-in to close.")

    day = get_day(db, staff_id=staff.id, day_date=open_event.attendance_date, for_update=True)
    if day is None or day.check_in_at is None:
        raise ConflictError("NO_OPEN_CHECK_IN", "No open check-in to close.")
    ensure_date_unlocked(db, day.day_date)

    day_shift = shift
    if day.shift_id is not None and day.shift_id != shift.id:
        day_shift = db.get(Shift, day.shift_id) or shift

    _record_event(
        db,
        staff_id=staff.id,
        shift_id=day_shift.id,
        event_type=AttendanceEventType.CHECK_OUT,
        at=at_utc,
        attendance_date=day.day_date,
        source=source,
        ip=ip,
        user_agent=user_agent,
    )
    if day.check_out_at is None or at_utc > day.check_out_at:
        day.check_out_at = at_utc
    _apply_check_out(db, day=day, staff=staff, shift=day_shift)
    day.processed_at = at_utc

    db.commit()
    db.refresh(day)
    logger.info(
        "check_out_recorded",
        extra={
            "staff_id": staff.id,
            "day_date": day.day_date.isoformat(),
            "status": day.status.value,
            "total_minutes": day.total_minutes,
            "early_exit_minutes": day.early_exit_minutes,
        },
    )
    return day


def get_today(db: Session, *, staff_id: int, now_utc: datetime) -> dict[str, Any]:
    get_staff(db, staff_id)
    now = normalize_ts(now_utc)
    shift, day_date = resolve_shift_at(db, staff_id=staff_id, at=now)
    day = get_day(db, staff_id=staff_id, day_date=day_date)
    events = list(
        db.scalars(
            select(AttendanceEvent)
            .where(
                AttendanceEvent.staff_id == staff_id,
                AttendanceEvent.attendance_date == day_date,
            )
            .order_by(AttendanceEvent.at.asc(), AttendanceEvent.id.asc())
        ).all()
    )
    open_event = resolve_open_check_in(db, staff_id=staff_id, reference_ts=now, shift=shift, day_date=day_date)
    return {
        "staff_id": staff_id,
        "day_date": day_date,
        "day": day,
        "events": events,
        "has_open_session": open_event is not None,
    }


def get_monthly_stats(db: Session, *, staff_id: int, month: str) -> dict[str, Any]:
    start, end = parse_month(month)
    get_staff(db, staff_id)
    days = list_days(db, staff_id=staff_id, start=start, end=end)
    status_counts: dict[str, int] = {}
    worked_minutes = 0
    late_minutes = 0
    for day in days:
        status_counts[day.status.value] = status_counts.get(day.status.value, 0) + 1
        worked_minutes += day.total_minutes
        late_minutes += day.late_minutes

    approved_ot_minutes = sum(
        db.scalars(
            select(Overtime.duration_minutes).where(
                Overtime.staff_id == staff_id,
                Overtime.status == OvertimeStatus.APPROVED,
                Overtime.ot_date >= start,
                Overtime.ot_date < end,
            )
        ).all()
    )
    return {
        "staff_id": staff_id,
        "month": month,
        "status_counts": status_counts,
        "worked_minutes": worked_minutes,
        "late_minutes": late_minutes,
        "approved_ot_minutes": int(approved_ot_minutes),
    }
