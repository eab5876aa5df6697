from __future__ import annotations

import os

os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("RECONCILIATION_WORKER_ENABLED", "false")

from datetime import date, datetime, time, timezone
from decimal import Decimal

from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from attendance_payroll import models  # noqa: F401
from attendance_payroll.db import Base, build_engine
from attendance_payroll.models import (
    AttendanceDay,
    DayStatus,
    PayrollLock,
    Shift,
    ShiftAssignment,
    Staff,
    StaffStatus,
)

# 2026-02-02 is a Monday; the default shift works Monday to Saturday.
MONDAY = date(2026, 2, 2)
SUNDAY = date(2026, 2, 1)


def build_session_factory() -> sessionmaker:
    engine = build_engine("sqlite://", poolclass=StaticPool)
    Base.metadata.create_all(engine)
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=True)


def utc(year: int, month: int, day: int, hour: int = 0, minute: int = 0) -> datetime:
    return datetime(year, month, day, hour, minute, tzinfo=timezone.utc)


def add_staff(
    db: Session,
    *,
    full_name: str = "Rahim Uddin",
    salary: str = "30000",
    join_date: date = MONDAY,
    status: StaffStatus = StaffStatus.ACTIVE,
) -> Staff:
    staff = Staff(full_name=full_name, salary=Decimal(salary), join_date=join_date, status=status)
    db.add(staff)
    db.commit()
    db.refresh(staff)
    return staff


def add_shift(db: Session, **overrides: object) -> Shift:
    values: dict[str, object] = {
        "name": "Day",
        "time_zone": "UTC",
        "work_days": [1, 2, 3, 4, 5, 6],
        "start_time_local": time(9, 0),
        "end_time_local": time(17, 0),
        "grace_period_minutes": 10,
        "late_after_minutes": 10,
        "half_day_after_minutes": 240,
        "ot_enabled": True,
        "min_ot_minutes": 30,
        "round_ot_to": 30,
    }
    values.update(overrides)
    shift = Shift(**values)
    db.add(shift)
    db.commit()
    db.refresh(shift)
    return shift


def assign(db: Session, staff: Staff, shift: Shift, *, start_date: date | None = None) -> ShiftAssignment:
    assignment = ShiftAssignment(
        staff_id=staff.id,
        shift_id=shift.id,
        start_date=start_date or staff.join_date,
        is_active=True,
        assigned_by="test",
    )
    db.add(assignment)
    db.commit()
    db.refresh(assignment)
    return assignment


def add_day(db: Session, staff: Staff, day_date: date, status: DayStatus, **values: object) -> AttendanceDay:
    day = AttendanceDay(staff_id=staff.id, day_date=day_date, status=status, **values)
    db.add(day)
    db.commit()
    db.refresh(day)
    return day


def lock(db: Session, month: str) -> None:
    db.add(PayrollLock(month=month, locked_by="test", locked_at=utc(2026, 3, 1)))
    db.commit()
