from __future__ import annotations

import logging
from datetime import date, datetime
from decimal import Decimal
from typing import Any

from sqlalchemy import cast, delete, func, insert, literal, select
from sqlalchemy.orm import Session

from attendance_payroll.db import UTCDateTime
from attendance_payroll.errors import ApiError, ConflictError, NotFoundError, ValidationError
from attendance_payroll.models import (
    AttendanceDay,
    DayStatus,
    Money,
    Overtime,
    OvertimeStatus,
    PayrollPayment,
    PaymentType,
    Staff,
)
from attendance_payroll.schemas import BulkPaymentItem, PaymentRequest
from attendance_payroll.services.attendance_days import staff_day_rate
from attendance_payroll.services.payroll_calc import (
    ZERO,
    DayAmountRow,
    StaffPayrollBreakdown,
    exceeds_payable,
    hourly_rate,
    overtime_pay,
    payment_status,
    quantize_money,
    summarize_days,
)
from attendance_payroll.services.payroll_locks import (
    ensure_month_unlocked,
    get_lock,
    lock_exists_clause,
    parse_month,
)
from attendance_payroll.services.shifts import get_staff, list_active_staff
from attendance_payroll.settings import get_settings

logger = logging.getLogger("attendance_payroll.payroll")


def _day_rows(db: Session, *, staff_id: int, start: date, end: date) -> list[DayAmountRow]:
    rows = db.execute(
        select(
            AttendanceDay.day_date,
            AttendanceDay.status,
            AttendanceDay.payable_amount,
            AttendanceDay.deduction_amount,
        ).where(
            AttendanceDay.staff_id == staff_id,
            AttendanceDay.day_date >= start,
            AttendanceDay.day_date < end,
        )
    ).all()
    return [
        DayAmountRow(
            day_date=row.day_date,
            status=row.status,
            payable_amount=Decimal(row.payable_amount or 0),
            deduction_amount=Decimal(row.deduction_amount or 0),
        )
        for row in rows
    ]


def _approved_ot_minutes(db: Session, *, staff_id: int, start: date, end: date) -> int:
    total = db.scalar(
        select(func.coalesce(func.sum(Overtime.duration_minutes), 0)).where(
            Overtime.staff_id == staff_id,
            Overtime.status == OvertimeStatus.APPROVED,
            Overtime.ot_date >= start,
            Overtime.ot_date < end,
        )
    )
    return int(total or 0)


def paid_total(db: Session, *, staff_id: int, month: str, payment_type: PaymentType) -> Decimal:
    total = db.scalar(
        select(func.coalesce(func.sum(PayrollPayment.amount), 0)).where(
            PayrollPayment.staff_id == staff_id,
            PayrollPayment.month == month,
            PayrollPayment.payment_type == payment_type,
        )
    )
    return quantize_money(total or 0)


def staff_breakdown(db: Session, staff: Staff, month: str) -> StaffPayrollBreakdown:
    start, end = parse_month(month)
    day_rate = staff_day_rate(staff)
    breakdown = StaffPayrollBreakdown(
        staff_id=staff.id,
        full_name=staff.full_name,
        month=month,
        salary=quantize_money(staff.salary or 0),
        per_day_rate=day_rate,
    )
    summarize_days(breakdown, _day_rows(db, staff_id=staff.id, start=start, end=end))
    breakdown.approved_ot_minutes = _approved_ot_minutes(db, staff_id=staff.id, start=start, end=end)
    breakdown.ot_amount = overtime_pay(
        minutes=breakdown.approved_ot_minutes,
        hour_rate=hourly_rate(day_rate=day_rate, hours_per_day=get_settings().overtime_hours_per_day),
    )
    breakdown.salary_paid = paid_total(db, staff_id=staff.id, month=month, payment_type=PaymentType.SALARY)
    breakdown.overtime_paid = paid_total(db, staff_id=staff.id, month=month, payment_type=PaymentType.OVERTIME)
    return breakdown


def preview(db: Session, month: str, *, branch_id: int | None = None) -> list[dict[str, Any]]:
    """Per-staff breakdown for a month. Read only."""
    parse_month(month)
    tolerance = Decimal(get_settings().payment_tolerance)
    items: list[dict[str, Any]] = []
    for staff in list_active_staff(db, branch_id=branch_id):
        breakdown = staff_breakdown(db, staff, month)
        items.append(
            {
                "staff_id": breakdown.staff_id,
                "full_name": breakdown.full_name,
                "month": month,
                "salary": breakdown.salary,
                "per_day_rate": breakdown.per_day_rate,
                "payable_total": breakdown.payable_total,
                "deduction_total": breakdown.deduction_total,
                "salary_payable": breakdown.salary_payable,
                "approved_ot_minutes": breakdown.approved_ot_minutes,
                "ot_amount": breakdown.ot_amount,
                "net_payable": breakdown.net_payable,
                "status_counts": breakdown.status_counts,
                "salary_paid": breakdown.salary_paid,
                "overtime_paid": breakdown.overtime_paid,
                "salary_status": payment_status(
                    paid=breakdown.salary_paid,
                    payable=breakdown.salary_payable,
                    tolerance=tolerance,
                ),
                "overtime_status": payment_status(
                    paid=breakdown.overtime_paid,
                    payable=breakdown.ot_amount,
                    tolerance=tolerance,
                ),
            }
        )
    return items


def _payable_for(breakdown: StaffPayrollBreakdown, payment_type: PaymentType) -> Decimal:
    if payment_type is PaymentType.OVERTIME:
        return breakdown.ot_amount
    return breakdown.salary_payable


def _insert_payment(
    db: Session,
    *,
    staff_id: int,
    month: str,
    amount: Decimal,
    payment_type: PaymentType,
    bonus: Decimal,
    deduction: Decimal,
    note: str | None,
    paid_by: str,
    now_utc: datetime,
) -> tuple[PayrollPayment, Decimal]:
    """Verify and append one payment. The lock check and the insert are one statement."""
    amount = quantize_money(amount)
    bonus = quantize_money(bonus)
    deduction = quantize_money(deduction)
    if amount <= ZERO:
        raise ValidationError("INVALID_AMOUNT", "Payment amount must be greater than zero.")
    if bonus < ZERO or deduction < ZERO:
        raise ValidationError("INVALID_AMOUNT", "Bonus and deduction must not be negative.")

    staff = get_staff(db, staff_id)
    breakdown = staff_breakdown(db, staff, month)
    already_paid = breakdown.overtime_paid if payment_type is PaymentType.OVERTIME else breakdown.salary_paid
    payable = _payable_for(breakdown, payment_type) + bonus - deduction
    if exceeds_payable(
        already_paid=already_paid,
        amount=amount,
        payable=payable,
        tolerance=Decimal(get_settings().payment_tolerance),
    ):
        raise ValidationError(
            "AMOUNT_EXCEEDS_PAYABLE",
            f"Paid total would exceed the payable amount of {quantize_money(payable)} for {month}.",
        )

    # PostgreSQL resolves untyped SELECT-list parameters as text, so spell the types out there.
    typed = db.get_bind().dialect.name == "postgresql"

    def bind(value: Any, type_: Any) -> Any:
        bound = literal(value, type_)
        return cast(bound, type_) if typed else bound

    table = PayrollPayment.__table__
    columns = table.c
    source = select(
        bind(staff_id, columns.staff_id.type),
        bind(month, columns.month.type),
        bind(payment_type, columns.payment_type.type),
        bind(amount, Money),
        bind(bonus, Money),
        bind(deduction, Money),
        bind(note, columns.note.type),
        bind(paid_by, columns.paid_by.type),
        bind(now_utc, UTCDateTime()),
    ).where(~lock_exists_clause(month))
    payment_id = db.execute(
        insert(table)
        .from_select(
            ["staff_id", "month", "payment_type", "amount", "bonus", "deduction", "note", "paid_by", "paid_at"],
            source,
        )
        .returning(columns.id)
    ).scalar_one_or_none()
    if payment_id is None:
        raise ConflictError("MONTH_LOCKED", f"Payroll for {month} is locked.")

    payment = db.get(PayrollPayment, payment_id)
    if payment is None:
        raise RuntimeError("payment row vanished after insert")
    return payment, quantize_money(already_paid + amount)


def process_payment(db: Session, *, payload: PaymentRequest, paid_by: str, now_utc: datetime) -> dict[str, Any]:
    parse_month(payload.month)
    ensure_month_unlocked(db, payload.month)
    try:
        payment, total_paid = _insert_payment(
            db,
            staff_id=payload.staff_id,
            month=payload.month,
            amount=payload.amount,
            payment_type=payload.payment_type,
            bonus=payload.bonus,
            deduction=payload.deduction,
            note=payload.note,
            paid_by=paid_by,
            now_utc=now_utc,
        )
    except Exception:
        db.rollback()
        raise
    db.commit()
    db.refresh(payment)
    logger.info(
        "payroll_payment_recorded",
        extra={
            "staff_id": payment.staff_id,
            "month": payment.month,
            "payment_type": payment.payment_type.value,
            "amount": payment.amount,
            "total_paid": total_paid,
        },
    )
    return {"payment": payment, "total_paid": total_paid}


def bulk_process(
    db: Session,
    *,
    month: str,
    items: list[BulkPaymentItem],
    paid_by: str,
    now_utc: datetime,
) -> dict[str, Any]:
    """Apply each payment in its own savepoint and report failures per staff."""
    parse_month(month)
    ensure_month_unlocked(db, month)

    succeeded: list[dict[str, Any]] = []
    failed: list[dict[str, Any]] = []
    for item in items:
        try:
            with db.begin_nested():
                payment, total_paid = _insert_payment(
                    db,
                    staff_id=item.staff_id,
                    month=month,
                    amount=item.amount,
                    payment_type=item.payment_type,
                    bonus=item.bonus,
                    deduction=item.deduction,
                    note=item.note,
                    paid_by=paid_by,
                    now_utc=now_utc,
                )
        except ApiError as exc:
            failed.append({"staff_id": item.staff_id, "code": exc.code, "message": exc.message})
            continue
        succeeded.append({"payment": payment, "total_paid": total_paid})

    db.commit()
    for result in succeeded:
        db.refresh(result["payment"])
    logger.info(
        "payroll_bulk_processed",
        extra={"month": month, "succeeded": len(succeeded), "failed": len(failed), "paid_by": paid_by},
    )
    return {"month": month, "succeeded": succeeded, "failed": failed}


def undo_payment(
    db: Session,
    *,
    staff_id: int,
    month: str,
    payment_type: PaymentType,
    undone_by: str,
) -> dict[str, Any]:
    """Remove the most recent payment of a type for a staff month and return what was removed."""
    parse_month(month)
    ensure_month_unlocked(db, month)
    payment = db.scalar(
        select(PayrollPayment)
        .where(
            PayrollPayment.staff_id == staff_id,
            PayrollPayment.month == month,
            PayrollPayment.payment_type == payment_type,
        )
        .order_by(PayrollPayment.paid_at.desc(), PayrollPayment.id.desc())
        .limit(1)
    )
    if payment is None:
        raise NotFoundError("PAYMENT_NOT_FOUND", f"No {payment_type.value} payment recorded for {month}.")

    removed = {
        "id": payment.id,
        "staff_id": payment.staff_id,
        "month": payment.month,
        "payment_type": payment.payment_type,
        "amount": payment.amount,
        "bonus": payment.bonus,
        "deduction": payment.deduction,
        "note": payment.note,
        "paid_by": payment.paid_by,
        "paid_at": payment.paid_at,
    }
    result = db.execute(
        delete(PayrollPayment)
        .where(
            PayrollPayment.id == payment.id,
            ~lock_exists_clause(month),
        )
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        db.rollback()
        raise ConflictError("MONTH_LOCKED", f"Payroll for {month} is locked.")
    db.expunge(payment)
    db.commit()
    logger.info(
        "payroll_payment_undone",
        extra={
            "staff_id": staff_id,
            "month": month,
            "payment_type": payment_type.value,
            "amount": removed["amount"],
            "undone_by": undone_by,
        },
    )
    return removed


def absent_dates(db: Session, *, staff_id: int, month: str) -> list[date]:
    start, end = parse_month(month)
    get_staff(db, staff_id)
    return list(
        db.scalars(
            select(AttendanceDay.day_date)
            .where(
                AttendanceDay.staff_id == staff_id,
                AttendanceDay.status == DayStatus.ABSENT,
                AttendanceDay.day_date >= start,
                AttendanceDay.day_date < end,
            )
            .order_by(AttendanceDay.day_date.asc())
        ).all()
    )


def lock_status(db: Session, month: str) -> dict[str, Any]:
    lock = get_lock(db, month)
    return {"month": month, "is_locked": lock is not None, "lock": lock}
