from __future__ import annotations

import enum
from datetime import date, datetime, time, timezone
from decimal import Decimal
from typing import Any

from sqlalchemy import (
    JSON,
    Boolean,
    Date,
    Enum,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Time,
    UniqueConstraint,
    text,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column, relationship

from attendance_payroll.db import Base, UTCDateTime

JSONType = JSON().with_variant(JSONB(), "postgresql")
Money = Numeric(12, 2)


class StaffStatus(str, enum.Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    TERMINATED = "terminated"


class AttendanceEventType(str, enum.Enum):
    CHECK_IN = "check_in"
    CHECK_OUT = "check_out"


class AttendanceEventSource(str, enum.Enum):
    WEB = "web"
    MOBILE = "mobile"
    ADMIN = "admin"
    BIOMETRIC = "biometric"


class DayStatus(str, enum.Enum):
    PRESENT = "present"
    LATE = "late"
    HALF_DAY = "half_day"
    EARLY_EXIT = "early_exit"
    ABSENT = "absent"
    ON_LEAVE = "on_leave"
    WEEKEND = "weekend"
    HOLIDAY = "holiday"


class OvertimeType(str, enum.Enum):
    PRE_SHIFT = "pre_shift"
    POST_SHIFT = "post_shift"
    WEEKEND = "weekend"
    HOLIDAY = "holiday"


class OvertimeStatus(str, enum.Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class LeaveStatus(str, enum.Enum):
    PENDING = "pending"
    APPROVED = "approved"
    PARTIALLY_APPROVED = "partially_approved"
    REJECTED = "rejected"
    REVOKED = "revoked"
    EXPIRED = "expired"


class PaymentType(str, enum.Enum):
    SALARY = "salary"
    OVERTIME = "overtime"


class AuditActorType(str, enum.Enum):
    ADMIN = "ADMIN"
    STAFF = "STAFF"
    SYSTEM = "SYSTEM"


class Branch(Base):
    __tablename__ = "branches"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime(),
        nullable=False,
        server_default=text("CURRENT_TIMESTAMP"),
    )

    staff: Mapped[list[Staff]] = relationship(back_populates="branch")
    shifts: Mapped[list[Shift]] = relationship(back_populates="branch")


class Staff(Base):
    __tablename__ = "staff"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    full_name: Mapped[str] = mapped_column(String(255), nullable=False)
    branch_id: Mapped[int | None] = mapped_column(
        ForeignKey("branches.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    status: Mapped[StaffStatus] = mapped_column(
        Enum(StaffStatus, name="staff_status"),
        nullable=False,
        default=StaffStatus.ACTIVE,
        server_default=text("'ACTIVE'"),
    )
    join_date: Mapped[date] = mapped_column(Date, nullable=False)
    salary: Mapped[Decimal] = mapped_column(Money, nullable=False, default=Decimal("0"), server_default=text("0"))
    per_day_salary_rate: Mapped[Decimal | None] = mapped_column(Money, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime(),
        nullable=False,
        server_default=text("CURRENT_TIMESTAMP"),
    )

    branch: Mapped[Branch | None] = relationship(back_populates="staff")
    shift_assignments: Mapped[list[ShiftAssignment]] = relationship(back_populates="staff")


class Shift(Base):
    __tablename__ = "shifts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    branch_id: Mapped[int | None] = mapped_column(
        ForeignKey("branches.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    time_zone: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
        default="Asia/Dhaka",
        server_default=text("'Asia/Dhaka'"),
    )
    # Weekday indices with 0 = Sunday.
    work_days: Mapped[list[int]] = mapped_column(JSONType, nullable=False, default=lambda: [1, 2, 3, 4, 5, 6])
    start_time_local: Mapped[time] = mapped_column(Time(timezone=False), nullable=False)
    end_time_local: Mapped[time] = mapped_column(Time(timezone=False), nullable=False)
    grace_period_minutes: Mapped[int] = mapped_column(Integer, nullable=False, default=10, server_default=text("10"))
    late_after_minutes: Mapped[int] = mapped_column(Integer, nullable=False, default=10, server_default=text("10"))
    half_day_after_minutes: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=240,
        server_default=text("240"),
    )
    ot_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default=text("false"))
    min_ot_minutes: Mapped[int] = mapped_column(Integer, nullable=False, default=30, server_default=text("30"))
    round_ot_to: Mapped[int] = mapped_column(Integer, nullable=False, default=30, server_default=text("30"))
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default=text("true"))
    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime(),
        nullable=False,
        server_default=text("CURRENT_TIMESTAMP"),
    )
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime(),
        nullable=False,
        server_default=text("CURRENT_TIMESTAMP"),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    branch: Mapped[Branch | None] = relationship(back_populates="shifts")
    off_dates: Mapped[list[ShiftOffDate]] = relationship(
        back_populates="shift",
        cascade="all, delete-orphan",
    )


class ShiftOffDate(Base):
    __tablename__ = "shift_off_dates"
    __table_args__ = (
        UniqueConstraint("shift_id", "off_date", name="uq_shift_off_dates_shift_date"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    shift_id: Mapped[int] = mapped_column(
        ForeignKey("shifts.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    off_date: Mapped[date] = mapped_column(Date, nullable=False)
    reason: Mapped[str | None] = mapped_column(String(255), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime(),
        nullable=False,
        server_default=text("CURRENT_TIMESTAMP"),
    )

    shift: Mapped[Shift] = relationship(back_populates="off_dates")


class ShiftAssignment(Base):
    __tablename__ = "shift_assignments"
    __table_args__ = (
        Index(
            "uq_shift_assignments_active_staff",
            "staff_id",
            unique=True,
            postgresql_where=text("is_active"),
            sqlite_where=text("is_active = 1"),
        ),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    staff_id: Mapped[int] = mapped_column(
        ForeignKey("staff.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    shift_id: Mapped[int] = mapped_column(ForeignKey("shifts.id", ondelete="CASCADE"), nullable=False)
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    # Inclusive; null while the assignment is open ended.
    end_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default=text("true"))
    assigned_by: Mapped[str] = mapped_column(String(255), nullable=False, default="system")
    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime(),
        nullable=False,
        server_default=text("CURRENT_TIMESTAMP"),
    )

    staff: Mapped[Staff] = relationship(back_populates="shift_assignments")
    shift: Mapped[Shift] = relationship()


class LeaveApplication(Base):
    __tablename__ = "leave_applications"
    __table_args__ = (
        Index("ix_leave_applications_status_expires_at", "status", "expires_at"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    staff_id: Mapped[int] = mapped_column(
        ForeignKey("staff.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[date] = mapped_column(Date, nullable=False)
    leave_type: Mapped[str] = mapped_column(String(50), nullable=False, default="casual")
    status: Mapped[LeaveStatus] = mapped_column(
        Enum(LeaveStatus, name="leave_status"),
        nullable=False,
        default=LeaveStatus.PENDING,
        server_default=text("'PENDING'"),
    )
    is_paid: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default=text("true"))
    affects_salary: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
        server_default=text("false"),
    )
    approved_dates: Mapped[list[str] | None] = mapped_column(JSONType, nullable=True)
    reason: Mapped[str | None] = mapped_column(String(1000), nullable=True)
    reviewed_by: Mapped[str | None] = mapped_column(String(255), nullable=True)
    expires_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime(),
        nullable=False,
        server_default=text("CURRENT_TIMESTAMP"),
    )
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime(),
        nullable=False,
        server_default=text("CURRENT_TIMESTAMP"),
        onupdate=lambda: datetime.now(timezone.utc),
    )


class AttendanceEvent(Base):
    __tablename__ = "attendance_events"
    __table_args__ = (
        UniqueConstraint("staff_id", "type", "at", name="uq_attendance_events_staff_type_at"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    staff_id: Mapped[int] = mapped_column(
        ForeignKey("staff.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    shift_id: Mapped[int | None] = mapped_column(ForeignKey("shifts.id", ondelete="SET NULL"), nullable=True)
    type: Mapped[AttendanceEventType] = mapped_column(
        Enum(AttendanceEventType, name="attendance_event_type"),
        nullable=False,
    )
    at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False, index=True)
    attendance_date: Mapped[date] = mapped_column(Date, nullable=False, index=True)
    source: Mapped[AttendanceEventSource] = mapped_column(
        Enum(AttendanceEventSource, name="attendance_event_source"),
        nullable=False,
        default=AttendanceEventSource.WEB,
        server_default=text("'WEB'"),
    )
    ip: Mapped[str | None] = mapped_column(String(128), nullable=True)
    user_agent: Mapped[str | None] = mapped_column(String(1024), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime(),
        nullable=False,
        server_default=text("CURRENT_TIMESTAMP"),
    )


class AttendanceDay(Base):
    __tablename__ = "attendance_days"
    __table_args__ = (
        UniqueConstraint("staff_id", "day_date", name="uq_attendance_days_staff_date"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    staff_id: Mapped[int] = mapped_column(
        ForeignKey("staff.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    day_date: Mapped[date] = mapped_column(Date, nullable=False, index=True)
    shift_id: Mapped[int | None] = mapped_column(ForeignKey("shifts.id", ondelete="SET NULL"), nullable=True)
    status: Mapped[DayStatus] = mapped_column(Enum(DayStatus, name="attendance_day_status"), nullable=False)
    check_in_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    check_out_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    total_minutes: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default=text("0"))
    late_minutes: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default=text("0"))
    early_exit_minutes: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default=text("0"))
    ot_minutes: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default=text("0"))
    payable_amount: Mapped[Decimal] = mapped_column(
        Money,
        nullable=False,
        default=Decimal("0"),
        server_default=text("0"),
    )
    deduction_amount: Mapped[Decimal] = mapped_column(
        Money,
        nullable=False,
        default=Decimal("0"),
        server_default=text("0"),
    )
    ot_amount: Mapped[Decimal] = mapped_column(Money, nullable=False, default=Decimal("0"), server_default=text("0"))
    is_manual: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default=text("false"))
    is_auto_absent: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
        server_default=text("false"),
    )
    leave_request_id: Mapped[int | None] = mapped_column(
        ForeignKey("leave_applications.id", ondelete="SET NULL"),
        nullable=True,
    )
    notes: Mapped[str | None] = mapped_column(String(1000), nullable=True)
    processed_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime(),
        nullable=False,
        server_default=text("CURRENT_TIMESTAMP"),
    )
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime(),
        nullable=False,
        server_default=text("CURRENT_TIMESTAMP"),
        onupdate=lambda: datetime.now(timezone.utc),
    )


class Overtime(Base):
    __tablename__ = "overtimes"
    __table_args__ = (
        UniqueConstraint("staff_id", "ot_date", "type", name="uq_overtimes_staff_date_type"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    staff_id: Mapped[int] = mapped_column(
        ForeignKey("staff.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    shift_id: Mapped[int | None] = mapped_column(ForeignKey("shifts.id", ondelete="SET NULL"), nullable=True)
    ot_date: Mapped[date] = mapped_column(Date, nullable=False, index=True)
    type: Mapped[OvertimeType] = mapped_column(Enum(OvertimeType, name="overtime_type"), nullable=False)
    start_time: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
    actual_start_time: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    end_time: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    duration_minutes: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default=text("0"))
    early_stop_minutes: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default=text("0"))
    status: Mapped[OvertimeStatus] = mapped_column(
        Enum(OvertimeStatus, name="overtime_status"),
        nullable=False,
        default=OvertimeStatus.PENDING,
        server_default=text("'PENDING'"),
        index=True,
    )
    is_auto_closed: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
        server_default=text("false"),
    )
    reason: Mapped[str | None] = mapped_column(String(1000), nullable=True)
    created_by: Mapped[str | None] = mapped_column(String(255), nullable=True)
    approved_by: Mapped[str | None] = mapped_column(String(255), nullable=True)
    decided_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime(),
        nullable=False,
        server_default=text("CURRENT_TIMESTAMP"),
    )
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime(),
        nullable=False,
        server_default=text("CURRENT_TIMESTAMP"),
        onupdate=lambda: datetime.now(timezone.utc),
    )


class PayrollLock(Base):
    __tablename__ = "payroll_locks"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    month: Mapped[str] = mapped_column(String(7), nullable=False, unique=True)
    locked_by: Mapped[str] = mapped_column(String(255), nullable=False, default="system")
    locked_at: Mapped[datetime] = mapped_column(
        UTCDateTime(),
        nullable=False,
        server_default=text("CURRENT_TIMESTAMP"),
    )


class PayrollPayment(Base):
    __tablename__ = "payroll_payments"
    __table_args__ = (
        Index("ix_payroll_payments_staff_month", "staff_id", "month"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    staff_id: Mapped[int] = mapped_column(ForeignKey("staff.id", ondelete="CASCADE"), nullable=False)
    month: Mapped[str] = mapped_column(String(7), nullable=False)
    payment_type: Mapped[PaymentType] = mapped_column(
        Enum(PaymentType, name="payroll_payment_type"),
        nullable=False,
        default=PaymentType.SALARY,
    )
    amount: Mapped[Decimal] = mapped_column(Money, nullable=False)
    bonus: Mapped[Decimal] = mapped_column(Money, nullable=False, default=Decimal("0"), server_default=text("0"))
    deduction: Mapped[Decimal] = mapped_column(Money, nullable=False, default=Decimal("0"), server_default=text("0"))
    note: Mapped[str | None] = mapped_column(String(1000), nullable=True)
    paid_by: Mapped[str] = mapped_column(String(255), nullable=False, default="system")
    paid_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)


class Notification(Base):
    __tablename__ = "notifications"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    staff_id: Mapped[int | None] = mapped_column(
        ForeignKey("staff.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    kind: Mapped[str] = mapped_column(String(100), nullable=False)
    payload: Mapped[dict[str, Any]] = mapped_column(JSONType, nullable=False, default=dict)
    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default="PENDING",
        server_default=text("'PENDING'"),
        index=True,
    )
    idempotency_key: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime(),
        nullable=False,
        server_default=text("CURRENT_TIMESTAMP"),
    )


class ReconciliationCursor(Base):
    __tablename__ = "reconciliation_cursors"

    staff_id: Mapped[int] = mapped_column(ForeignKey("staff.id", ondelete="CASCADE"), primary_key=True)
    settled_through: Mapped[date] = mapped_column(Date, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime(),
        nullable=False,
        server_default=text("CURRENT_TIMESTAMP"),
        onupdate=lambda: datetime.now(timezone.utc),
    )


class AuditLog(Base):
    __tablename__ = "audit_logs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    ts_utc: Mapped[datetime] = mapped_column(
        UTCDateTime(),
        nullable=False,
        server_default=text("CURRENT_TIMESTAMP"),
        index=True,
    )
    actor_type: Mapped[AuditActorType] = mapped_column(
        Enum(AuditActorType, name="audit_actor_type"),
        nullable=False,
    )
    actor_id: Mapped[str] = mapped_column(String(255), nullable=False)
    action: Mapped[str] = mapped_column(String(255), nullable=False)
    entity_type: Mapped[str | None] = mapped_column(String(255), nullable=True)
    entity_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    ip: Mapped[str | None] = mapped_column(String(128), nullable=True)
    user_agent: Mapped[str | None] = mapped_column(String(1024), nullable=True)
    success: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default=text("true"))
    details: Mapped[dict[str, Any]] = mapped_column(JSONType, nullable=False, default=dict)
