from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import date
from decimal import ROUND_HALF_UP, Decimal

from attendance_payroll.models import DayStatus

CENT = Decimal("0.01")
ZERO = Decimal("0.00")


def quantize_money(value: Decimal | int | float | str) -> Decimal:
    return Decimal(str(value)).quantize(CENT, rounding=ROUND_HALF_UP)


def per_day_rate(
    *,
    salary: Decimal,
    per_day_override: Decimal | None,
    days_per_month: int,
) -> Decimal:
    if per_day_override is not None and per_day_override > 0:
        return quantize_money(per_day_override)
    if days_per_month <= 0:
        return ZERO
    return quantize_money(Decimal(salary) / Decimal(days_per_month))


def hourly_rate(*, day_rate: Decimal, hours_per_day: int) -> Decimal:
    if hours_per_day <= 0:
        return ZERO
    return Decimal(day_rate) / Decimal(hours_per_day)


def overtime_pay(*, minutes: int, hour_rate: Decimal) -> Decimal:
    if minutes <= 0:
        return ZERO
    return quantize_money(Decimal(minutes) / Decimal(60) * hour_rate)


def day_amounts(
    status: DayStatus,
    *,
    day_rate: Decimal,
    leave_is_paid: bool = True,
    leave_affects_salary: bool = False,
) -> tuple[Decimal, Decimal]:
    """Return (payable, deduction) for one attendance day."""
    rate = quantize_money(day_rate)
    if status in (DayStatus.PRESENT, DayStatus.LATE, DayStatus.EARLY_EXIT):
        return rate, ZERO
    if status is DayStatus.HALF_DAY:
        half = quantize_money(rate / 2)
        return half, rate - half
    if status is DayStatus.ABSENT:
        return ZERO, rate
    if status is DayStatus.ON_LEAVE:
        if leave_is_paid and not leave_affects_salary:
            return rate, ZERO
        return ZERO, rate
    return ZERO, ZERO


@dataclass(frozen=True)
class DayAmountRow:
    day_date: date
    status: DayStatus
    payable_amount: Decimal
    deduction_amount: Decimal


@dataclass
class StaffPayrollBreakdown:
    staff_id: int
    full_name: str
    month: str
    salary: Decimal
    per_day_rate: Decimal
    payable_total: Decimal = ZERO
    deduction_total: Decimal = ZERO
    approved_ot_minutes: int = 0
    ot_amount: Decimal = ZERO
    status_counts: dict[str, int] = field(default_factory=dict)
    salary_paid: Decimal = ZERO
    overtime_paid: Decimal = ZERO

    @property
    def salary_payable(self) -> Decimal:
        return max(ZERO, quantize_money(self.salary - self.deduction_total))

    @property
    def net_payable(self) -> Decimal:
        return quantize_money(self.salary_payable + self.ot_amount)

    @property
    def total_paid(self) -> Decimal:
        return quantize_money(self.salary_paid + self.overtime_paid)


def summarize_days(breakdown: StaffPayrollBreakdown, rows: Iterable[DayAmountRow]) -> StaffPayrollBreakdown:
    payable = ZERO
    deduction = ZERO
    counts: dict[str, int] = {}
    for row in rows:
        payable += Decimal(row.payable_amount)
        deduction += Decimal(row.deduction_amount)
        counts[row.status.value] = counts.get(row.status.value, 0) + 1
    breakdown.payable_total = quantize_money(payable)
    breakdown.deduction_total = quantize_money(deduction)
    breakdown.status_counts = counts
    return breakdown


def payment_status(*, paid: Decimal, payable: Decimal, tolerance: Decimal) -> str:
    if paid <= ZERO:
        return "pending" if payable > ZERO else "paid"
    if paid + tolerance >= payable:
        return "paid"
    return "partial"


def exceeds_payable(
    *,
    already_paid: Decimal,
    amount: Decimal,
    payable: Decimal,
    tolerance: Decimal,
) -> bool:
    return quantize_money(already_paid + amount) > quantize_money(payable + tolerance)
