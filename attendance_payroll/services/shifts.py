from __future__ import annotations

import logging
from datetime import date

from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from attendance_payroll.db import insert_for
from attendance_payroll.errors import NotFoundError
from attendance_payroll.models import Shift, ShiftAssignment, ShiftOffDate, Staff, StaffStatus
from attendance_payroll.schemas import ShiftCreateRequest
from attendance_payroll.services.shift_calendar import validate_shift_rules

logger = logging.getLogger("attendance_payroll.shifts")


def normalize_dates(raw_dates: list[date] | None) -> list[date]:
    return sorted(set(raw_dates or []))


def get_shift(db: Session, shift_id: int) -> Shift:
    shift = db.get(Shift, shift_id)
    if shift is None:
        raise NotFoundError("SHIFT_NOT_FOUND", "Shift not found.")
    return shift


def get_staff(db: Session, staff_id: int) -> Staff:
    staff = db.get(Staff, staff_id)
    if staff is None:
        raise NotFoundError("STAFF_NOT_FOUND", "Staff not found.")
    return staff


def list_active_staff(db: Session, *, branch_id: int | None = None) -> list[Staff]:
    stmt = select(Staff).where(Staff.status == StaffStatus.ACTIVE).order_by(Staff.id.asc())
    if branch_id is not None:
        stmt = stmt.where(Staff.branch_id == branch_id)
    return list(db.scalars(stmt).all())


def create_shift(db: Session, payload: ShiftCreateRequest) -> Shift:
    shift = Shift(
        branch_id=payload.branch_id,
        name=payload.name,
        time_zone=payload.time_zone,
        work_days=sorted(set(payload.work_days)),
        start_time_local=payload.start_time,
        end_time_local=payload.end_time,
        grace_period_minutes=payload.grace_period_minutes,
        late_after_minutes=payload.late_after_minutes,
        half_day_after_minutes=payload.half_day_after_minutes,
        ot_enabled=payload.ot_enabled,
        min_ot_minutes=payload.min_ot_minutes,
        round_ot_to=payload.round_ot_to,
    )
    validate_shift_rules(shift)
    db.add(shift)
    db.commit()
    db.refresh(shift)
    return shift


def resolve_active_shift(db: Session, staff_id: int) -> Shift | None:
    assignment = db.scalar(
        select(ShiftAssignment).where(
            ShiftAssignment.staff_id == staff_id,
            ShiftAssignment.is_active.is_(True),
        )
    )
    if assignment is None:
        return None
    return assignment.shift


def resolve_shift_for_date(db: Session, staff_id: int, day: date) -> Shift | None:
    assignment = db.scalar(
        select(ShiftAssignment)
        .where(
            ShiftAssignment.staff_id == staff_id,
            ShiftAssignment.start_date <= day,
            (ShiftAssignment.end_date.is_(None)) | (ShiftAssignment.end_date >= day),
        )
        .order_by(ShiftAssignment.start_date.desc(), ShiftAssignment.id.desc())
    )
    if assignment is None:
        return None
    return assignment.shift


def load_off_dates(db: Session, shift_id: int, *, start: date, end: date) -> set[date]:
    """Off dates in [start, end] inclusive."""
    return set(
        db.scalars(
            select(ShiftOffDate.off_date).where(
                ShiftOffDate.shift_id == shift_id,
                ShiftOffDate.off_date >= start,
                ShiftOffDate.off_date <= end,
            )
        ).all()
    )


def is_date_off(db: Session, shift_id: int, day: date) -> bool:
    return day in load_off_dates(db, shift_id, start=day, end=day)


def add_off_dates(db: Session, *, shift_id: int, dates: list[date], reason: str | None) -> list[ShiftOffDate]:
    get_shift(db, shift_id)
    normalized = normalize_dates(dates)
    for off_date in normalized:
        db.execute(
            insert_for(db, ShiftOffDate)
            .values(shift_id=shift_id, off_date=off_date, reason=reason)
            .on_conflict_do_nothing(index_elements=["shift_id", "off_date"])
        )
    db.commit()
    logger.info("shift_off_dates_added", extra={"shift_id": shift_id, "dates": [item.isoformat() for item in normalized]})
    return list_off_dates(db, shift_id=shift_id, from_date=None)


def remove_off_dates(db: Session, *, shift_id: int, dates: list[date]) -> int:
    get_shift(db, shift_id)
    normalized = normalize_dates(dates)
    if not normalized:
        return 0
    result = db.execute(
        delete(ShiftOffDate).where(
            ShiftOffDate.shift_id == shift_id,
            ShiftOffDate.off_date.in_(normalized),
        )
    )
    db.commit()
    return int(result.rowcount or 0)


def list_off_dates(db: Session, *, shift_id: int, from_date: date | None) -> list[ShiftOffDate]:
    stmt = (
        select(ShiftOffDate)
        .where(ShiftOffDate.shift_id == shift_id)
        .order_by(ShiftOffDate.off_date.asc())
    )
    if from_date is not None:
        stmt = stmt.where(ShiftOffDate.off_date >= from_date)
    return list(db.scalars(stmt).all())
