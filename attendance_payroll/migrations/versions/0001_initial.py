"""Initial attendance and payroll schema

Revision ID: 0001_initial
Revises:
Create Date: 2026-10-19 00:00:00
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "0001_initial"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

staff_status = postgresql.ENUM("ACTIVE", "INACTIVE", "TERMINATED", name="staff_status", create_type=False)
attendance_event_type = postgresql.ENUM("CHECK_IN", "CHECK_OUT", name="attendance_event_type", create_type=False)
attendance_event_source = postgresql.ENUM(
    "WEB",
    "MOBILE",
    "ADMIN",
    "BIOMETRIC",
    name="attendance_event_source",
    create_type=False,
)
attendance_day_status = postgresql.ENUM(
    "PRESENT",
    "LATE",
    "HALF_DAY",
    "EARLY_EXIT",
    "ABSENT",
    "ON_LEAVE",
    "WEEKEND",
    "HOLIDAY",
    name="attendance_day_status",
    create_type=False,
)
overtime_type = postgresql.ENUM(
    "PRE_SHIFT",
    "POST_SHIFT",
    "WEEKEND",
    "HOLIDAY",
    name="overtime_type",
    create_type=False,
)
overtime_status = postgresql.ENUM("PENDING", "APPROVED", "REJECTED", name="overtime_status", create_type=False)
leave_status = postgresql.ENUM(
    "PENDING",
    "APPROVED",
    "PARTIALLY_APPROVED",
    "REJECTED",
    "REVOKED",
    "EXPIRED",
    name="leave_status",
    create_type=False,
)
payroll_payment_type = postgresql.ENUM("SALARY", "OVERTIME", name="payroll_payment_type", create_type=False)
audit_actor_type = postgresql.ENUM("ADMIN", "STAFF", "SYSTEM", name="audit_actor_type", create_type=False)

ALL_ENUMS = (
    staff_status,
    attendance_event_type,
    attendance_event_source,
    attendance_day_status,
    overtime_type,
    overtime_status,
    leave_status,
    payroll_payment_type,
    audit_actor_type,
)


def _created_at() -> sa.Column:
    return sa.Column(
        "created_at",
        sa.DateTime(timezone=True),
        nullable=False,
        server_default=sa.text("CURRENT_TIMESTAMP"),
    )


def _updated_at() -> sa.Column:
    return sa.Column(
        "updated_at",
        sa.DateTime(timezone=True),
        nullable=False,
        server_default=sa.text("CURRENT_TIMESTAMP"),
    )


def upgrade() -> None:
    bind = op.get_bind()
    for enum_type in ALL_ENUMS:
        enum_type.create(bind, checkfirst=True)

    op.create_table(
        "branches",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        _created_at(),
        sa.UniqueConstraint("name", name="uq_branches_name"),
    )

    op.create_table(
        "staff",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("full_name", sa.String(length=255), nullable=False),
        sa.Column("branch_id", sa.Integer(), nullable=True),
        sa.Column("status", staff_status, nullable=False, server_default=sa.text("'ACTIVE'")),
        sa.Column("join_date", sa.Date(), nullable=False),
        sa.Column("salary", sa.Numeric(12, 2), nullable=False, server_default=sa.text("0")),
        sa.Column("per_day_salary_rate", sa.Numeric(12, 2), nullable=True),
        _created_at(),
        sa.ForeignKeyConstraint(["branch_id"], ["branches.id"], ondelete="SET NULL"),
    )
    op.create_index("ix_staff_branch_id", "staff", ["branch_id"], unique=False)

    op.create_table(
        "shifts",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("branch_id", sa.Integer(), nullable=True),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("time_zone", sa.String(length=64), nullable=False, server_default=sa.text("'Asia/Dhaka'")),
        sa.Column("work_days", postgresql.JSONB(), nullable=False),
        sa.Column("start_time_local", sa.Time(timezone=False), nullable=False),
        sa.Column("end_time_local", sa.Time(timezone=False), nullable=False),
        sa.Column("grace_period_minutes", sa.Integer(), nullable=False, server_default=sa.text("10")),
        sa.Column("late_after_minutes", sa.Integer(), nullable=False, server_default=sa.text("10")),
        sa.Column("half_day_after_minutes", sa.Integer(), nullable=False, server_default=sa.text("240")),
        sa.Column("ot_enabled", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("min_ot_minutes", sa.Integer(), nullable=False, server_default=sa.text("30")),
        sa.Column("round_ot_to", sa.Integer(), nullable=False, server_default=sa.text("30")),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        _created_at(),
        _updated_at(),
        sa.ForeignKeyConstraint(["branch_id"], ["branches.id"], ondelete="SET NULL"),
    )
    op.create_index("ix_shifts_branch_id", "shifts", ["branch_id"], unique=False)

    op.create_table(
        "shift_off_dates",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("shift_id", sa.Integer(), nullable=False),
        sa.Column("off_date", sa.Date(), nullable=False),
        sa.Column("reason", sa.String(length=255), nullable=True),
        _created_at(),
        sa.ForeignKeyConstraint(["shift_id"], ["shifts.id"], ondelete="CASCADE"),
        sa.UniqueConstraint("shift_id", "off_date", name="uq_shift_off_dates_shift_date"),
    )
    op.create_index("ix_shift_off_dates_shift_id", "shift_off_dates", ["shift_id"], unique=False)

    op.create_table(
        "shift_assignments",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("staff_id", sa.Integer(), nullable=False),
        sa.Column("shift_id", sa.Integer(), nullable=False),
        sa.Column("start_date", sa.Date(), nullable=False),
        sa.Column("end_date", sa.Date(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("assigned_by", sa.String(length=255), nullable=False),
        _created_at(),
        sa.ForeignKeyConstraint(["staff_id"], ["staff.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["shift_id"], ["shifts.id"], ondelete="CASCADE"),
    )
    op.create_index("ix_shift_assignments_staff_id", "shift_assignments", ["staff_id"], unique=False)
    op.create_index(
        "uq_shift_assignments_active_staff",
        "shift_assignments",
        ["staff_id"],
        unique=True,
        postgresql_where=sa.text("is_active"),
    )

    op.create_table(
        "leave_applications",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("staff_id", sa.Integer(), nullable=False),
        sa.Column("start_date", sa.Date(), nullable=False),
        sa.Column("end_date", sa.Date(), nullable=False),
        sa.Column("leave_type", sa.String(length=50), nullable=False),
        sa.Column("status", leave_status, nullable=False, server_default=sa.text("'PENDING'")),
        sa.Column("is_paid", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("affects_salary", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("approved_dates", postgresql.JSONB(), nullable=True),
        sa.Column("reason", sa.String(length=1000), nullable=True),
        sa.Column("reviewed_by", sa.String(length=255), nullable=True),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        _created_at(),
        _updated_at(),
        sa.ForeignKeyConstraint(["staff_id"], ["staff.id"], ondelete="CASCADE"),
    )
    op.create_index("ix_leave_applications_staff_id", "leave_applications", ["staff_id"], unique=False)
    op.create_index(
        "ix_leave_applications_status_expires_at",
        "leave_applications",
        ["status", "expires_at"],
        unique=False,
    )

    op.create_table(
        "attendance_events",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("staff_id", sa.Integer(), nullable=False),
        sa.Column("shift_id", sa.Integer(), nullable=True),
        sa.Column("type", attendance_event_type, nullable=False),
        sa.Column("at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("attendance_date", sa.Date(), nullable=False),
        sa.Column("source", attendance_event_source, nullable=False, server_default=sa.text("'WEB'")),
        sa.Column("ip", sa.String(length=128), nullable=True),
        sa.Column("user_agent", sa.String(length=1024), nullable=True),
        _created_at(),
        sa.ForeignKeyConstraint(["staff_id"], ["staff.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["shift_id"], ["shifts.id"], ondelete="SET NULL"),
        sa.UniqueConstraint("staff_id", "type", "at", name="uq_attendance_events_staff_type_at"),
    )
    op.create_index("ix_attendance_events_staff_id", "attendance_events", ["staff_id"], unique=False)
    op.create_index("ix_attendance_events_at", "attendance_events", ["at"], unique=False)
    op.create_index("ix_attendance_events_attendance_date", "attendance_events", ["attendance_date"], unique=False)

    op.create_table(
        "attendance_days",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("staff_id", sa.Integer(), nullable=False),
        sa.Column("day_date", sa.Date(), nullable=False),
        sa.Column("shift_id", sa.Integer(), nullable=True),
        sa.Column("status", attendance_day_status, nullable=False),
        sa.Column("check_in_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("check_out_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("total_minutes", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("late_minutes", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("early_exit_minutes", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("ot_minutes", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("payable_amount", sa.Numeric(12, 2), nullable=False, server_default=sa.text("0")),
        sa.Column("deduction_amount", sa.Numeric(12, 2), nullable=False, server_default=sa.text("0")),
        sa.Column("ot_amount", sa.Numeric(12, 2), nullable=False, server_default=sa.text("0")),
        sa.Column("is_manual", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("is_auto_absent", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("leave_request_id", sa.Integer(), nullable=True),
        sa.Column("notes", sa.String(length=1000), nullable=True),
        sa.Column("processed_at", sa.DateTime(timezone=True), nullable=True),
        _created_at(),
        _updated_at(),
        sa.ForeignKeyConstraint(["staff_id"], ["staff.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["shift_id"], ["shifts.id"], ondelete="SET NULL"),
        sa.ForeignKeyConstraint(["leave_request_id"], ["leave_applications.id"], ondelete="SET NULL"),
        sa.UniqueConstraint("staff_id", "day_date", name="uq_attendance_days_staff_date"),
    )
    op.create_index("ix_attendance_days_staff_id", "attendance_days", ["staff_id"], unique=False)
    op.create_index("ix_attendance_days_day_date", "attendance_days", ["day_date"], unique=False)

    op.create_table(
        "overtimes",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("staff_id", sa.Integer(), nullable=False),
        sa.Column("shift_id", sa.Integer(), nullable=True),
        sa.Column("ot_date", sa.Date(), nullable=False),
        sa.Column("type", overtime_type, nullable=False),
        sa.Column("start_time", sa.DateTime(timezone=True), nullable=False),
        sa.Column("actual_start_time", sa.DateTime(timezone=True), nullable=True),
        sa.Column("end_time", sa.DateTime(timezone=True), nullable=True),
        sa.Column("duration_minutes", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("early_stop_minutes", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("status", overtime_status, nullable=False, server_default=sa.text("'PENDING'")),
        sa.Column("is_auto_closed", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("reason", sa.String(length=1000), nullable=True),
        sa.Column("created_by", sa.String(length=255), nullable=True),
        sa.Column("approved_by", sa.String(length=255), nullable=True),
        sa.Column("decided_at", sa.DateTime(timezone=True), nullable=True),
        _created_at(),
        _updated_at(),
        sa.ForeignKeyConstraint(["staff_id"], ["staff.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["shift_id"], ["shifts.id"], ondelete="SET NULL"),
        sa.UniqueConstraint("staff_id", "ot_date", "type", name="uq_overtimes_staff_date_type"),
    )
    op.create_index("ix_overtimes_staff_id", "overtimes", ["staff_id"], unique=False)
    op.create_index("ix_overtimes_ot_date", "overtimes", ["ot_date"], unique=False)
    op.create_index("ix_overtimes_status", "overtimes", ["status"], unique=False)

    op.create_table(
        "payroll_locks",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("month", sa.String(length=7), nullable=False),
        sa.Column("locked_by", sa.String(length=255), nullable=False),
        sa.Column(
            "locked_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("CURRENT_TIMESTAMP"),
        ),
        sa.UniqueConstraint("month", name="uq_payroll_locks_month"),
    )

    op.create_table(
        "payroll_payments",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("staff_id", sa.Integer(), nullable=False),
        sa.Column("month", sa.String(length=7), nullable=False),
        sa.Column("payment_type", payroll_payment_type, nullable=False),
        sa.Column("amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("bonus", sa.Numeric(12, 2), nullable=False, server_default=sa.text("0")),
        sa.Column("deduction", sa.Numeric(12, 2), nullable=False, server_default=sa.text("0")),
        sa.Column("note", sa.String(length=1000), nullable=True),
        sa.Column("paid_by", sa.String(length=255), nullable=False),
        sa.Column("paid_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["staff_id"], ["staff.id"], ondelete="CASCADE"),
    )
    op.create_index("ix_payroll_payments_staff_month", "payroll_payments", ["staff_id", "month"], unique=False)

    op.create_table(
        "notifications",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("staff_id", sa.Integer(), nullable=True),
        sa.Column("kind", sa.String(length=100), nullable=False),
        sa.Column("payload", postgresql.JSONB(), nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False, server_default=sa.text("'PENDING'")),
        sa.Column("idempotency_key", sa.String(length=255), nullable=False),
        _created_at(),
        sa.ForeignKeyConstraint(["staff_id"], ["staff.id"], ondelete="SET NULL"),
        sa.UniqueConstraint("idempotency_key", name="uq_notifications_idempotency_key"),
    )
    op.create_index("ix_notifications_staff_id", "notifications", ["staff_id"], unique=False)
    op.create_index("ix_notifications_status", "notifications", ["status"], unique=False)

    op.create_table(
        "reconciliation_cursors",
        sa.Column("staff_id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("settled_through", sa.Date(), nullable=False),
        _updated_at(),
        sa.ForeignKeyConstraint(["staff_id"], ["staff.id"], ondelete="CASCADE"),
    )

    op.create_table(
        "audit_logs",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column(
            "ts_utc",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("CURRENT_TIMESTAMP"),
        ),
        sa.Column("actor_type", audit_actor_type, nullable=False),
        sa.Column("actor_id", sa.String(length=255), nullable=False),
        sa.Column("action", sa.String(length=255), nullable=False),
        sa.Column("entity_type", sa.String(length=255), nullable=True),
        sa.Column("entity_id", sa.String(length=255), nullable=True),
        sa.Column("ip", sa.String(length=128), nullable=True),
        sa.Column("user_agent", sa.String(length=1024), nullable=True),
        sa.Column("success", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("details", postgresql.JSONB(), nullable=False),
    )
    op.create_index("ix_audit_logs_ts_utc", "audit_logs", ["ts_utc"], unique=False)


def downgrade() -> None:
    op.drop_index("ix_audit_logs_ts_utc", table_name="audit_logs")
    op.drop_table("audit_logs")
    op.drop_table("reconciliation_cursors")
    op.drop_index("ix_notifications_status", table_name="notifications")
    op.drop_index("ix_notifications_staff_id", table_name="notifications")
    op.drop_table("notifications")
    op.drop_index("ix_payroll_payments_staff_month", table_name="payroll_payments")
    op.drop_table("payroll_payments")
    op.drop_table("payroll_locks")
    op.drop_index("ix_overtimes_status", table_name="overtimes")
    op.drop_index("ix_overtimes_ot_date", table_name="overtimes")
    op.drop_index("ix_overtimes_staff_id", table_name="overtimes")
    op.drop_table("overtimes")
    op.drop_index("ix_attendance_days_day_date", table_name="attendance_days")
    op.drop_index("ix_attendance_days_staff_id", table_name="attendance_days")
    op.drop_table("attendance_days")
    op.drop_index("ix_attendance_events_attendance_date", table_name="attendance_events")
    op.drop_index("ix_attendance_events_at", table_name="attendance_events")
    op.drop_index("ix_attendance_events_staff_id", table_name="attendance_events")
    op.drop_table("attendance_events")
    op.drop_index("ix_leave_applications_status_expires_at", table_name="leave_applications")
    op.drop_index("ix_leave_applications_staff_id", table_name="leave_applications")
    op.drop_table("leave_applications")
    op.drop_index("uq_shift_assignments_active_staff", table_name="shift_assignments")
    op.drop_index("ix_shift_assignments_staff_id", table_name="shift_assignments")
    op.drop_table("shift_assignments")
    op.drop_index("ix_shift_off_dates_shift_id", table_name="shift_off_dates")
    op.drop_table("shift_off_dates")
    op.drop_index("ix_shifts_branch_id", table_name="shifts")
    op.drop_table("shifts")
    op.drop_index("ix_staff_branch_id", table_name="staff")
    op.drop_table("staff")
    op.drop_table("branches")

    bind = op.get_bind()
    for enum_type in reversed(ALL_ENUMS):
        enum_type.drop(bind, checkfirst=True)
