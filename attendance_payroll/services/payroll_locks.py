from __future__ import annotations

import logging
import re
from datetime import date, datetime

from sqlalchemy import delete, exists, select
from sqlalchemy.orm import Session

from attendance_payroll.db import insert_for
from attendance_payroll.errors import ConflictError, ValidationError
from attendance_payroll.models import PayrollLock

logger = logging.getLogger("attendance_payroll.payroll")

MONTH_PATTERN = re.compile(r"^\d{4}-(0[1-9]|1[0-2])$")


def parse_month(month: str) -> tuple[date, date]:
    """Return [first day, first day of next month) for a YYYY-MM key."""
    if not isinstance(month, str) or not MONTH_PATTERN.match(month):
        raise ValidationError("INVALID_MONTH", "Month must use the YYYY-MM format.")
    year, month_number = (int(part) for part in month.split("-"))
    start = date(year, month_number, 1)
    if month_number == 12:
        return start, date(year + 1, 1, 1)
    return start, date(year, month_number + 1, 1)


def month_key(day: date) -> str:
    return f"{day.year:04d}-{day.month:02d}"


def lock_exists_clause(month: str):  # type: ignore[no-untyped-def]
    return exists().where(PayrollLock.month == month)


def is_month_locked(db: Session, month: str) -> bool:
    return bool(db.scalar(select(lock_exists_clause(month))))


def is_date_locked(db: Session, day: date) -> bool:
    return is_month_locked(db, month_key(day))


def ensure_month_unlocked(db: Session, month: str) -> None:
    if is_month_locked(db, month):
        raise ConflictError("MONTH_LOCKED", f"Payroll for {month} is locked.")


def ensure_date_unlocked(db: Session, day: date) -> None:
    ensure_month_unlocked(db, month_key(day))


def get_lock(db: Session, month: str) -> PayrollLock | None:
    parse_month(month)
    return db.scalar(select(PayrollLock).where(PayrollLock.month == month))


def lock_month(db: Session, month: str, *, locked_by: str, now_utc: datetime) -> PayrollLock:
    parse_month(month)
    result = db.execute(
        insert_for(db, PayrollLock)
        .values(month=month, locked_by=locked_by, locked_at=now_utc)
        .on_conflict_do_nothing(index_elements=["month"])
    )
    if result.rowcount != 1:
        db.rollback()
        raise ConflictError("MONTH_ALREADY_LOCKED", f"Payroll for {month} is already locked.")
    db.commit()
    logger.info("payroll_month_locked", extra={"month": month, "locked_by": locked_by})
    return db.scalars(select(PayrollLock).where(PayrollLock.month == month)).one()


def unlock_month(db: Session, month: str, *, unlocked_by: str) -> None:
    parse_month(month)
    result = db.execute(delete(PayrollLock).where(PayrollLock.month == month))
    if result.rowcount != 1:
        db.rollback()
        raise ConflictError("MONTH_NOT_LOCKED", f"Payroll for {month} is not locked.")
    db.commit()
    logger.info("payroll_month_unlocked", extra={"month": month, "unlocked_by": unlocked_by})
