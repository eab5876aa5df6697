from __future__ import annotations

import logging
from datetime import date, timedelta

from sqlalchemy import select
from sqlalchemy.orm import Session

from attendance_payroll.errors import NotFoundError, ValidationError
from attendance_payroll.models import ShiftAssignment, Staff
from attendance_payroll.services.shifts import get_shift

logger = logging.getLogger("attendance_payroll.shifts")


def normalize_staff_ids(raw_staff_ids: list[int] | None) -> list[int]:
    normalized: list[int] = []
    seen: set[int] = set()
    for raw_staff_id in raw_staff_ids or []:
        staff_id = int(raw_staff_id)
        if staff_id <= 0 or staff_id in seen:
            continue
        seen.add(staff_id)
        normalized.append(staff_id)
    return normalized


def assign_shift(
    db: Session,
    *,
    staff_ids: list[int],
    shift_id: int,
    start_date: date,
    assigned_by: str,
) -> list[ShiftAssignment]:
    """Give every staff member the shift from start_date on, closing what it supersedes.

    All or nothing: any unknown staff member or bad date aborts the whole batch.
    """
    shift = get_shift(db, shift_id)
    normalized_ids = normalize_staff_ids(staff_ids)
    if not normalized_ids:
        raise ValidationError("INVALID_STAFF_IDS", "At least one staff id is required.")

    found_ids = set(db.scalars(select(Staff.id).where(Staff.id.in_(normalized_ids))).all())
    missing = [staff_id for staff_id in normalized_ids if staff_id not in found_ids]
    if missing:
        raise NotFoundError("STAFF_NOT_FOUND", f"Staff not found: {', '.join(str(item) for item in missing)}.")

    created: list[ShiftAssignment] = []
    try:
        for staff_id in normalized_ids:
            current = db.scalar(
                select(ShiftAssignment)
                .where(
                    ShiftAssignment.staff_id == staff_id,
                    ShiftAssignment.is_active.is_(True),
                )
                .with_for_update()
            )
            if current is not None:
                if current.start_date >= start_date:
                    raise ValidationError(
                        "INVALID_DATE_RANGE",
                        f"Staff {staff_id} already has an assignment starting {current.start_date.isoformat()}.",
                    )
                current.end_date = start_date - timedelta(days=1)
                current.is_active = False
                # The active-assignment index must see the closed row before the new one lands.
                db.flush()

            assignment = ShiftAssignment(
                staff_id=staff_id,
                shift_id=shift.id,
                start_date=start_date,
                end_date=None,
                is_active=True,
                assigned_by=assigned_by,
            )
            db.add(assignment)
            db.flush()
            created.append(assignment)
    except Exception:
        db.rollback()
        raise

    db.commit()
    for assignment in created:
        db.refresh(assignment)
    logger.info(
        "shift_assigned",
        extra={
            "shift_id": shift.id,
            "staff_ids": normalized_ids,
            "start_date": start_date.isoformat(),
            "assigned_by": assigned_by,
        },
    )
    return created


def list_assignments(db: Session, *, staff_id: int) -> list[ShiftAssignment]:
    return list(
        db.scalars(
            select(ShiftAssignment)
            .where(ShiftAssignment.staff_id == staff_id)
            .order_by(ShiftAssignment.start_date.desc(), ShiftAssignment.id.desc())
        ).all()
    )
