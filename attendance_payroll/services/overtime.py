from __future__ import annotations

import logging
from datetime import date, datetime, timedelta

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from attendance_payroll.errors import ConflictError, NotFoundError, ValidationError
from attendance_payroll.models import (
    Overtime,
    OvertimeStatus,
    OvertimeType,
    Shift,
    Staff,
    StaffStatus,
)
from attendance_payroll.schemas import OvertimeCreateRequest
from attendance_payroll.services.attendance import resolve_shift_at
from attendance_payroll.services.attendance_days import get_day, staff_day_rate
from attendance_payroll.services.attendance_rules import (
    compute_overtime_minutes,
    early_stop_gap,
    minutes_between,
)
from attendance_payroll.services.notifications import KIND_OVERTIME_APPROVAL_NEEDED, notify
from attendance_payroll.services.payroll_calc import hourly_rate, overtime_pay
from attendance_payroll.services.payroll_locks import ensure_date_unlocked
from attendance_payroll.services.shift_calendar import (
    ShiftWindow,
    expected_window,
    is_work_day,
    normalize_ts,
)
from attendance_payroll.services.shifts import get_staff, load_off_dates, resolve_shift_for_date
from attendance_payroll.settings import get_settings

logger = logging.getLogger("attendance_payroll.overtime")


def resolve_overtime_slot(shift: Shift, *, at: datetime, day_date: date, off_dates: set[date]) -> tuple[date, OvertimeType]:
    """Decide which day and overtime type an instant belongs to.

    Off days give weekend/holiday. Between two shifts the instant goes to whichever
    boundary is closer: after the previous shift's end or before the next start.
    """
    if not is_work_day(shift, day_date, off_dates):
        if day_date in off_dates:
            return day_date, OvertimeType.HOLIDAY
        return day_date, OvertimeType.WEEKEND

    window = expected_window(shift, day_date)
    if at >= window.end_utc:
        return day_date, OvertimeType.POST_SHIFT
    if at >= window.start_utc:
        raise ConflictError("OVERTIME_DURING_SHIFT", "Overtime cannot start during the scheduled shift.")

    previous_day = day_date - timedelta(days=1)
    if is_work_day(shift, previous_day, off_dates):
        previous_window = expected_window(shift, previous_day)
        if previous_window.end_utc <= at and (at - previous_window.end_utc) < (window.start_utc - at):
            return previous_day, OvertimeType.POST_SHIFT
    return day_date, OvertimeType.PRE_SHIFT


def _planned_end(shift: Shift | None, overtime: Overtime) -> datetime | None:
    """Pre-shift sessions are expected to run until the shift starts."""
    if shift is None or overtime.type is not OvertimeType.PRE_SHIFT:
        return None
    window: ShiftWindow = expected_window(shift, overtime.ot_date)
    return window.start_utc


def _get_open_session(db: Session, staff_id: int, *, for_update: bool = False) -> Overtime | None:
    stmt = (
        select(Overtime)
        .where(
            Overtime.staff_id == staff_id,
            Overtime.end_time.is_(None),
        )
        .order_by(Overtime.start_time.desc(), Overtime.id.desc())
    )
    if for_update:
        stmt = stmt.with_for_update()
    return db.scalar(stmt)


def get_overtime(db: Session, overtime_id: int) -> Overtime:
    overtime = db.get(Overtime, overtime_id)
    if overtime is None:
        raise NotFoundError("OVERTIME_NOT_FOUND", "Overtime record not found.")
    return overtime


def start_overtime(db: Session, *, staff_id: int, now_utc: datetime | None = None) -> Overtime:
    now = normalize_ts(now_utc)
    staff = get_staff(db, staff_id)
    if staff.status != StaffStatus.ACTIVE:
        raise ValidationError("STAFF_INACTIVE", "Inactive staff cannot record overtime.")
    db.scalar(select(Staff.id).where(Staff.id == staff_id).with_for_update())

    shift, day_date = resolve_shift_at(db, staff_id=staff_id, at=now)
    if not shift.ot_enabled:
        raise ValidationError("OVERTIME_DISABLED", "Overtime is not enabled for this shift.")

    off_dates = load_off_dates(db, shift.id, start=day_date - timedelta(days=1), end=day_date)
    ot_date, ot_type = resolve_overtime_slot(shift, at=now, day_date=day_date, off_dates=off_dates)
    ensure_date_unlocked(db, ot_date)

    if _get_open_session(db, staff_id) is not None:
        raise ConflictError("OVERTIME_SESSION_OPEN", "An overtime session is already running.")
    existing = db.scalar(
        select(Overtime.id).where(
            Overtime.staff_id == staff_id,
            Overtime.ot_date == ot_date,
            Overtime.type == ot_type,
        )
    )
    if existing is not None:
        raise ConflictError(
            "OVERTIME_ALREADY_RECORDED",
            f"{ot_type.value} overtime is already recorded for {ot_date.isoformat()}.",
        )

    overtime = Overtime(
        staff_id=staff_id,
        shift_id=shift.id,
        ot_date=ot_date,
        type=ot_type,
        start_time=now,
        actual_start_time=now,
        status=OvertimeStatus.PENDING,
        created_by=str(staff_id),
    )
    db.add(overtime)
    try:
        db.flush()
    except IntegrityError as exc:
        db.rollback()
        raise ConflictError(
            "OVERTIME_ALREADY_RECORDED",
            f"{ot_type.value} overtime is already recorded for {ot_date.isoformat()}.",
        ) from exc
    db.commit()
    db.refresh(overtime)
    logger.info(
        "overtime_started",
        extra={"staff_id": staff_id, "ot_date": ot_date.isoformat(), "ot_type": ot_type.value},
    )
    return overtime


def finalize_session(
    db: Session,
    overtime: Overtime,
    *,
    end_time: datetime,
    auto_closed: bool = False,
) -> Overtime:
    """Close an open session and apply early-stop, minimum and rounding rules."""
    shift = db.get(Shift, overtime.shift_id) if overtime.shift_id is not None else None
    started = overtime.actual_start_time or overtime.start_time
    raw_minutes = max(0, minutes_between(started, end_time))
    early_stop = early_stop_gap(
        stopped_at=end_time,
        planned_end=_planned_end(shift, overtime),
        tolerance_minutes=get_settings().overtime_early_stop_tolerance_minutes,
    )
    overtime.end_time = end_time
    overtime.early_stop_minutes = early_stop
    overtime.duration_minutes = compute_overtime_minutes(
        raw_minutes=raw_minutes,
        early_stop_minutes=early_stop,
        min_ot_minutes=shift.min_ot_minutes if shift is not None else 0,
        round_ot_to=shift.round_ot_to if shift is not None else 0,
    )
    overtime.is_auto_closed = auto_closed
    return overtime


def stop_overtime(db: Session, *, staff_id: int, now_utc: datetime | None = None) -> Overtime:
    now = normalize_ts(now_utc)
    get_staff(db, staff_id)
    overtime = _get_open_session(db, staff_id, for_update=True)
    if overtime is None:
        raise ConflictError("NO_OPEN_OVERTIME", "No running overtime session.")
    ensure_date_unlocked(db, overtime.ot_date)

    finalize_session(db, overtime, end_time=now)
    if overtime.duration_minutes > 0:
        notify(
            db,
            kind=KIND_OVERTIME_APPROVAL_NEEDED,
            staff_id=staff_id,
            local_day=overtime.ot_date,
            payload={
                "overtime_id": overtime.id,
                "ot_type": overtime.type.value,
                "duration_minutes": overtime.duration_minutes,
            },
            suffix=overtime.type.value,
        )
    db.commit()
    db.refresh(overtime)
    logger.info(
        "overtime_stopped",
        extra={
            "staff_id": staff_id,
            "overtime_id": overtime.id,
            "duration_minutes": overtime.duration_minutes,
            "early_stop_minutes": overtime.early_stop_minutes,
        },
    )
    return overtime


def _refresh_day_overtime(db: Session, *, staff: Staff, ot_date: date) -> None:
    day = get_day(db, staff_id=staff.id, day_date=ot_date)
    if day is None:
        return
    minutes = sum(
        db.scalars(
            select(Overtime.duration_minutes).where(
                Overtime.staff_id == staff.id,
                Overtime.ot_date == ot_date,
                Overtime.status == OvertimeStatus.APPROVED,
            )
        ).all()
    )
    rate = hourly_rate(day_rate=staff_day_rate(staff), hours_per_day=get_settings().overtime_hours_per_day)
    day.ot_amount = overtime_pay(minutes=int(minutes), hour_rate=rate)


def decide_overtime(
    db: Session,
    *,
    overtime_id: int,
    approve: bool,
    decided_by: str,
    now_utc: datetime,
) -> Overtime:
    overtime = get_overtime(db, overtime_id)
    if overtime.end_time is None:
        raise ConflictError("OVERTIME_NOT_FINISHED", "Overtime session is still running.")
    if overtime.status is not OvertimeStatus.PENDING:
        raise ConflictError("INVALID_STATUS_TRANSITION", f"Overtime is already {overtime.status.value}.")
    ensure_date_unlocked(db, overtime.ot_date)

    overtime.status = OvertimeStatus.APPROVED if approve else OvertimeStatus.REJECTED
    overtime.approved_by = decided_by
    overtime.decided_at = normalize_ts(now_utc)
    db.flush()
    _refresh_day_overtime(db, staff=get_staff(db, overtime.staff_id), ot_date=overtime.ot_date)
    db.commit()
    db.refresh(overtime)
    logger.info(
        "overtime_decided",
        extra={"overtime_id": overtime.id, "status": overtime.status.value, "decided_by": decided_by},
    )
    return overtime


def create_overtime(db: Session, *, payload: OvertimeCreateRequest, created_by: str, now_utc: datetime) -> Overtime:
    """Admin-recorded finished session; approved on creation."""
    staff = get_staff(db, payload.staff_id)
    start = normalize_ts(payload.start_time)
    end = normalize_ts(payload.end_time)
    if end <= start:
        raise ValidationError("INVALID_DATE_RANGE", "end_time must be after start_time.")
    ensure_date_unlocked(db, payload.ot_date)

    shift = resolve_shift_for_date(db, staff.id, payload.ot_date)
    overtime = Overtime(
        staff_id=staff.id,
        shift_id=shift.id if shift is not None else None,
        ot_date=payload.ot_date,
        type=payload.type,
        start_time=start,
        actual_start_time=start,
        status=OvertimeStatus.APPROVED,
        reason=payload.reason,
        created_by=created_by,
        approved_by=created_by,
        decided_at=normalize_ts(now_utc),
    )
    finalize_session(db, overtime, end_time=end)
    db.add(overtime)
    try:
        db.flush()
    except IntegrityError as exc:
        db.rollback()
        raise ConflictError(
            "OVERTIME_ALREADY_RECORDED",
            f"{payload.type.value} overtime is already recorded for {payload.ot_date.isoformat()}.",
        ) from exc
    _refresh_day_overtime(db, staff=staff, ot_date=payload.ot_date)
    db.commit()
    db.refresh(overtime)
    return overtime


def list_open_sessions_older_than(db: Session, *, staff_id: int, cutoff: datetime) -> list[Overtime]:
    return list(
        db.scalars(
            select(Overtime).where(
                Overtime.staff_id == staff_id,
                Overtime.end_time.is_(None),
                Overtime.start_time <= cutoff,
            )
        ).all()
    )


def list_overtime(db: Session, *, staff_id: int | None, status: OvertimeStatus | None) -> list[Overtime]:
    stmt = select(Overtime).order_by(Overtime.ot_date.desc(), Overtime.id.desc())
    if staff_id is not None:
        stmt = stmt.where(Overtime.staff_id == staff_id)
    if status is not None:
        stmt = stmt.where(Overtime.status == status)
    return list(db.scalars(stmt).all())
