from __future__ import annotations

from datetime import date, datetime, time
from decimal import Decimal
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from attendance_payroll.models import (
    AttendanceEventSource,
    AttendanceEventType,
    DayStatus,
    LeaveStatus,
    OvertimeStatus,
    OvertimeType,
    PaymentType,
)

MONTH_REGEX = r"^\d{4}-(0[1-9]|1[0-2])$"
HHMM_REGEX = r"^\d{2}:\d{2}$"


class ShiftCreateRequest(BaseModel):
    name: str = Field(min_length=1, max_length=100)
    branch_id: int | None = Field(default=None, ge=1)
    time_zone: str = "Asia/Dhaka"
    work_days: list[int] = Field(default_factory=lambda: [1, 2, 3, 4, 5, 6])
    start_time: time
    end_time: time
    grace_period_minutes: int = Field(default=10, ge=0)
    late_after_minutes: int = Field(default=10, ge=0)
    half_day_after_minutes: int = Field(default=240, ge=1)
    ot_enabled: bool = False
    min_ot_minutes: int = Field(default=30, ge=0)
    round_ot_to: int = Field(default=30, ge=0)

    @field_validator("work_days")
    @classmethod
    def _validate_work_days(cls, value: list[int]) -> list[int]:
        if any(item < 0 or item > 6 for item in value):
            raise ValueError("work_days must contain weekday indices 0-6 (0 = Sunday)")
        return value


class ShiftRead(BaseModel):
    id: int
    branch_id: int | None
    name: str
    time_zone: str
    work_days: list[int]
    start_time_local: time
    end_time_local: time
    grace_period_minutes: int
    late_after_minutes: int
    half_day_after_minutes: int
    ot_enabled: bool
    min_ot_minutes: int
    round_ot_to: int
    is_active: bool

    model_config = ConfigDict(from_attributes=True)


class ShiftAssignmentRequest(BaseModel):
    staff_ids: list[int] = Field(min_length=1)
    shift_id: int = Field(ge=1)
    start_date: date


class ShiftAssignmentRead(BaseModel):
    id: int
    staff_id: int
    shift_id: int
    start_date: date
    end_date: date | None
    is_active: bool
    assigned_by: str

    model_config = ConfigDict(from_attributes=True)


class ShiftOffDatesRequest(BaseModel):
    dates: list[date] = Field(min_length=1)
    reason: str | None = Field(default=None, max_length=255)


class ShiftOffDateRead(BaseModel):
    id: int
    shift_id: int
    off_date: date
    reason: str | None

    model_config = ConfigDict(from_attributes=True)


class CheckInRequest(BaseModel):
    at: datetime | None = None
    source: AttendanceEventSource = AttendanceEventSource.WEB


class CheckOutRequest(BaseModel):
    at: datetime | None = None
    source: AttendanceEventSource = AttendanceEventSource.WEB


class AttendanceEventRead(BaseModel):
    id: int
    staff_id: int
    shift_id: int | None
    type: AttendanceEventType
    at: datetime
    attendance_date: date
    source: AttendanceEventSource

    model_config = ConfigDict(from_attributes=True)


class AttendanceDayRead(BaseModel):
    id: int
    staff_id: int
    day_date: date
    shift_id: int | None
    status: DayStatus
    check_in_at: datetime | None
    check_out_at: datetime | None
    total_minutes: int
    late_minutes: int
    early_exit_minutes: int
    ot_minutes: int
    payable_amount: Decimal
    deduction_amount: Decimal
    ot_amount: Decimal
    is_manual: bool
    is_auto_absent: bool
    leave_request_id: int | None
    notes: str | None
    processed_at: datetime | None

    model_config = ConfigDict(from_attributes=True)


class TodayAttendanceResponse(BaseModel):
    staff_id: int
    day_date: date
    day: AttendanceDayRead | None
    events: list[AttendanceEventRead] = Field(default_factory=list)
    has_open_session: bool


class MonthlyStatsResponse(BaseModel):
    staff_id: int
    month: str
    status_counts: dict[str, int] = Field(default_factory=dict)
    worked_minutes: int
    late_minutes: int
    approved_ot_minutes: int


class AttendanceOverrideRequest(BaseModel):
    status: DayStatus
    check_in_time: str | None = Field(default=None, pattern=HHMM_REGEX)
    check_out_time: str | None = Field(default=None, pattern=HHMM_REGEX)
    note: str | None = Field(default=None, max_length=1000)


class LeaveCreateRequest(BaseModel):
    staff_id: int = Field(ge=1)
    start_date: date
    end_date: date
    leave_type: str = Field(default="casual", max_length=50)
    is_paid: bool = True
    affects_salary: bool = False
    reason: str | None = Field(default=None, max_length=1000)


class LeaveApproveRequest(BaseModel):
    dates: list[date] | None = None


class LeaveRead(BaseModel):
    id: int
    staff_id: int
    start_date: date
    end_date: date
    leave_type: str
    status: LeaveStatus
    is_paid: bool
    affects_salary: bool
    approved_dates: list[str] | None
    reason: str | None
    reviewed_by: str | None
    expires_at: datetime | None = None

    model_config = ConfigDict(from_attributes=True)


class OvertimeCreateRequest(BaseModel):
    staff_id: int = Field(ge=1)
    ot_date: date
    type: OvertimeType
    start_time: datetime
    end_time: datetime
    reason: str | None = Field(default=None, max_length=1000)


class OvertimeRead(BaseModel):
    id: int
    staff_id: int
    shift_id: int | None
    ot_date: date
    type: OvertimeType
    start_time: datetime
    actual_start_time: datetime | None
    end_time: datetime | None
    duration_minutes: int
    early_stop_minutes: int
    status: OvertimeStatus
    is_auto_closed: bool
    reason: str | None
    approved_by: str | None

    model_config = ConfigDict(from_attributes=True)


class PaymentRequest(BaseModel):
    staff_id: int = Field(ge=1)
    month: str = Field(pattern=MONTH_REGEX)
    amount: Decimal
    payment_type: PaymentType = PaymentType.SALARY
    bonus: Decimal = Decimal("0")
    deduction: Decimal = Decimal("0")
    note: str | None = Field(default=None, max_length=1000)


class BulkPaymentItem(BaseModel):
    staff_id: int = Field(ge=1)
    amount: Decimal
    payment_type: PaymentType = PaymentType.SALARY
    bonus: Decimal = Decimal("0")
    deduction: Decimal = Decimal("0")
    note: str | None = Field(default=None, max_length=1000)


class BulkPaymentRequest(BaseModel):
    month: str = Field(pattern=MONTH_REGEX)
    payments: list[BulkPaymentItem] = Field(min_length=1)


class PaymentRead(BaseModel):
    id: int
    staff_id: int
    month: str
    payment_type: PaymentType
    amount: Decimal
    bonus: Decimal
    deduction: Decimal
    note: str | None
    paid_by: str
    paid_at: datetime

    model_config = ConfigDict(from_attributes=True)


class PaymentResult(BaseModel):
    payment: PaymentRead
    total_paid: Decimal


class BulkPaymentFailure(BaseModel):
    staff_id: int
    code: str
    message: str


class BulkPaymentResponse(BaseModel):
    month: str
    succeeded: list[PaymentResult] = Field(default_factory=list)
    failed: list[BulkPaymentFailure] = Field(default_factory=list)


class UndoPaymentRequest(BaseModel):
    staff_id: int = Field(ge=1)
    month: str = Field(pattern=MONTH_REGEX)
    payment_type: PaymentType = PaymentType.SALARY


class GraceRequest(BaseModel):
    staff_id: int = Field(ge=1)
    day_date: date
    note: str | None = Field(default=None, max_length=1000)


class PayrollPreviewItem(BaseModel):
    staff_id: int
    full_name: str
    month: str
    salary: Decimal
    per_day_rate: Decimal
    payable_total: Decimal
    deduction_total: Decimal
    salary_payable: Decimal
    approved_ot_minutes: int
    ot_amount: Decimal
    net_payable: Decimal
    status_counts: dict[str, int] = Field(default_factory=dict)
    salary_paid: Decimal
    overtime_paid: Decimal
    salary_status: str
    overtime_status: str


class PayrollLockRead(BaseModel):
    month: str
    locked_by: str
    locked_at: datetime

    model_config = ConfigDict(from_attributes=True)


class LockStatusResponse(BaseModel):
    month: str
    is_locked: bool
    lock: PayrollLockRead | None = None


class AbsentDatesResponse(BaseModel):
    staff_id: int
    month: str
    dates: list[date] = Field(default_factory=list)


class ReconciliationRunResponse(BaseModel):
    started_at: datetime
    finished_at: datetime
    staff_processed: int
    staff_failed: list[int] = Field(default_factory=list)
    days_created: int
    days_upgraded: int
    days_closed: int
    overtime_closed: int
    leaves_expired: int = 0


class NotificationRead(BaseModel):
    id: int
    staff_id: int | None
    kind: str
    payload: dict[str, Any] = Field(default_factory=dict)
    status: str
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)
