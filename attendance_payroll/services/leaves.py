from __future__ import annotations

import logging
from datetime import date, datetime, timedelta

from sqlalchemy import delete, select, update
from sqlalchemy.orm import Session

from attendance_payroll.db import insert_for
from attendance_payroll.errors import ConflictError, NotFoundError, ValidationError
from attendance_payroll.models import (
    AttendanceDay,
    DayStatus,
    LeaveApplication,
    LeaveStatus,
    ReconciliationCursor,
)
from attendance_payroll.schemas import LeaveCreateRequest
from attendance_payroll.services.attendance_days import staff_day_rate
from attendance_payroll.services.payroll_calc import day_amounts
from attendance_payroll.services.payroll_locks import is_date_locked
from attendance_payroll.services.shift_calendar import (
    default_day_start_utc,
    default_local_date,
    is_work_day,
    normalize_ts,
)
from attendance_payroll.services.shifts import get_staff, load_off_dates, resolve_shift_for_date
from attendance_payroll.settings import get_settings

logger = logging.getLogger("attendance_payroll.leaves")


def _date_range(start: date, end: date) -> list[date]:
    return [start + timedelta(days=offset) for offset in range((end - start).days + 1)]


def get_leave(db: Session, leave_id: int) -> LeaveApplication:
    leave = db.get(LeaveApplication, leave_id)
    if leave is None:
        raise NotFoundError("LEAVE_NOT_FOUND", "Leave application not found.")
    return leave


def leave_expires_at(created_at: datetime) -> datetime:
    """Pending applications lapse at the end of the local day they were filed on."""
    grace_days = max(0, get_settings().leave_pending_expiry_days)
    return default_day_start_utc(default_local_date(created_at) + timedelta(days=1 + grace_days))


def create_leave(db: Session, payload: LeaveCreateRequest, *, now_utc: datetime | None = None) -> LeaveApplication:
    now_utc = normalize_ts(now_utc)
    get_staff(db, payload.staff_id)
    if payload.end_date < payload.start_date:
        raise ValidationError("INVALID_DATE_RANGE", "end_date must be greater than or equal to start_date.")

    leave = LeaveApplication(
        staff_id=payload.staff_id,
        start_date=payload.start_date,
        end_date=payload.end_date,
        leave_type=payload.leave_type,
        status=LeaveStatus.PENDING,
        is_paid=payload.is_paid,
        affects_salary=payload.affects_salary,
        reason=payload.reason,
        expires_at=leave_expires_at(now_utc),
    )
    db.add(leave)
    db.commit()
    db.refresh(leave)
    return leave


def _leave_work_dates(db: Session, leave: LeaveApplication, dates: list[date]) -> list[date]:
    """Drop dates the staff member would not have worked anyway."""
    kept: list[date] = []
    for day in dates:
        shift = resolve_shift_for_date(db, leave.staff_id, day)
        if shift is None:
            kept.append(day)
            continue
        if is_work_day(shift, day, load_off_dates(db, shift.id, start=day, end=day)):
            kept.append(day)
    return kept


def approve_leave(
    db: Session,
    *,
    leave_id: int,
    reviewed_by: str,
    dates: list[date] | None = None,
    now_utc: datetime | None = None,
) -> LeaveApplication:
    """Approve all or part of a leave and project it onto attendance days as on_leave."""
    now_utc = normalize_ts(now_utc)
    leave = get_leave(db, leave_id)
    if leave.status not in (LeaveStatus.PENDING, LeaveStatus.PARTIALLY_APPROVED):
        raise ConflictError("INVALID_STATUS_TRANSITION", f"Leave is already {leave.status.value}.")
    if leave.status is LeaveStatus.PENDING and leave.expires_at is not None and now_utc >= leave.expires_at:
        leave.status = LeaveStatus.EXPIRED
        db.commit()
        raise ConflictError("LEAVE_EXPIRED", "Leave application has expired and cannot be approved.")

    requested = _date_range(leave.start_date, leave.end_date)
    if dates:
        outside = sorted(set(dates) - set(requested))
        if outside:
            raise ValidationError("INVALID_DATE_RANGE", "Approved dates must fall inside the leave range.")
        approved = sorted(set(dates))
    else:
        approved = requested

    staff = get_staff(db, leave.staff_id)
    payable, deduction = day_amounts(
        DayStatus.ON_LEAVE,
        day_rate=staff_day_rate(staff),
        leave_is_paid=leave.is_paid,
        leave_affects_salary=leave.affects_salary,
    )
    projected: list[date] = []
    skipped_locked: list[date] = []
    for day in _leave_work_dates(db, leave, approved):
        if is_date_locked(db, day):
            skipped_locked.append(day)
            continue
        shift = resolve_shift_for_date(db, leave.staff_id, day)
        values = {
            "status": DayStatus.ON_LEAVE,
            "leave_request_id": leave.id,
            "payable_amount": payable,
            "deduction_amount": deduction,
            "is_auto_absent": False,
        }
        db.execute(
            insert_for(db, AttendanceDay)
            .values(
                staff_id=leave.staff_id,
                day_date=day,
                shift_id=shift.id if shift is not None else None,
                **values,
            )
            .on_conflict_do_update(index_elements=["staff_id", "day_date"], set_=values)
        )
        projected.append(day)

    leave.status = LeaveStatus.APPROVED if approved == requested else LeaveStatus.PARTIALLY_APPROVED
    leave.approved_dates = [day.isoformat() for day in approved]
    leave.reviewed_by = reviewed_by
    db.commit()
    db.refresh(leave)
    logger.info(
        "leave_approved",
        extra={
            "leave_id": leave.id,
            "staff_id": leave.staff_id,
            "projected_days": len(projected),
            "skipped_locked_days": [day.isoformat() for day in skipped_locked],
        },
    )
    return leave


def reject_leave(db: Session, *, leave_id: int, reviewed_by: str) -> LeaveApplication:
    leave = get_leave(db, leave_id)
    if leave.status is not LeaveStatus.PENDING:
        raise ConflictError("INVALID_STATUS_TRANSITION", f"Leave is already {leave.status.value}.")
    leave.status = LeaveStatus.REJECTED
    leave.reviewed_by = reviewed_by
    db.commit()
    db.refresh(leave)
    return leave


def revoke_leave(db: Session, *, leave_id: int, reviewed_by: str, now_utc: datetime) -> LeaveApplication:
    """Withdraw an approved leave; the scheduler re-derives the freed days."""
    leave = get_leave(db, leave_id)
    if leave.status not in (LeaveStatus.APPROVED, LeaveStatus.PARTIALLY_APPROVED):
        raise ConflictError("INVALID_STATUS_TRANSITION", f"Leave is {leave.status.value}, not approved.")

    unlocked_dates = [
        day for day in _date_range(leave.start_date, leave.end_date) if not is_date_locked(db, day)
    ]
    removed = 0
    if unlocked_dates:
        result = db.execute(
            delete(AttendanceDay).where(
                AttendanceDay.staff_id == leave.staff_id,
                AttendanceDay.leave_request_id == leave.id,
                AttendanceDay.status == DayStatus.ON_LEAVE,
                AttendanceDay.day_date.in_(unlocked_dates),
            )
        )
        removed = int(result.rowcount or 0)
        rewind_to = min(unlocked_dates) - timedelta(days=1)
        db.execute(
            update(ReconciliationCursor)
            .where(
                ReconciliationCursor.staff_id == leave.staff_id,
                ReconciliationCursor.settled_through > rewind_to,
            )
            .values(settled_through=rewind_to, updated_at=now_utc)
        )

    leave.status = LeaveStatus.REVOKED
    leave.reviewed_by = reviewed_by
    db.commit()
    db.refresh(leave)
    logger.info(
        "leave_revoked",
        extra={"leave_id": leave.id, "staff_id": leave.staff_id, "removed_days": removed},
    )
    return leave


def list_leaves(db: Session, *, staff_id: int | None, status: LeaveStatus | None) -> list[LeaveApplication]:
    stmt = select(LeaveApplication).order_by(LeaveApplication.start_date.asc(), LeaveApplication.id.asc())
    if staff_id is not None:
        stmt = stmt.where(LeaveApplication.staff_id == staff_id)
    if status is not None:
        stmt = stmt.where(LeaveApplication.status == status)
    return list(db.scalars(stmt).all())


def expire_stale_leaves(db: Session, *, staff_id: int, now_utc: datetime) -> list[LeaveApplication]:
    """Mark pending applications past their expiry as expired. The caller commits."""
    stale = list(
        db.scalars(
            select(LeaveApplication)
            .where(
                LeaveApplication.staff_id == staff_id,
                LeaveApplication.status == LeaveStatus.PENDING,
                LeaveApplication.expires_at.is_not(None),
                LeaveApplication.expires_at <= now_utc,
            )
            .order_by(LeaveApplication.id.asc())
            .with_for_update()
        ).all()
    )
    for leave in stale:
        leave.status = LeaveStatus.EXPIRED
    if stale:
        db.flush()
        logger.info(
            "leave_applications_expired",
            extra={"staff_id": staff_id, "leave_ids": [leave.id for leave in stale]},
        )
    return stale
