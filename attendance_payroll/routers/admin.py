from datetime import date, datetime, timezone
from typing import Any

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.orm import Session

from attendance_payroll.audit import log_audit, request_actor_id
from attendance_payroll.db import get_db
from attendance_payroll.models import AuditActorType, LeaveStatus, OvertimeStatus
from attendance_payroll.schemas import (
    MONTH_REGEX,
    AbsentDatesResponse,
    AttendanceDayRead,
    AttendanceOverrideRequest,
    BulkPaymentRequest,
    BulkPaymentResponse,
    GraceRequest,
    LeaveApproveRequest,
    LeaveCreateRequest,
    LeaveRead,
    LockStatusResponse,
    NotificationRead,
    OvertimeCreateRequest,
    OvertimeRead,
    PaymentRead,
    PaymentRequest,
    PaymentResult,
    PayrollLockRead,
    PayrollPreviewItem,
    ReconciliationRunResponse,
    ShiftAssignmentRead,
    ShiftAssignmentRequest,
    ShiftCreateRequest,
    ShiftOffDateRead,
    ShiftOffDatesRequest,
    ShiftRead,
    UndoPaymentRequest,
)
from attendance_payroll.services import leaves, overtime, payroll
from attendance_payroll.services.attendance_days import grace_day, upsert_manual_override
from attendance_payroll.services.notifications import list_pending_notifications
from attendance_payroll.services.payroll_locks import lock_month, unlock_month
from attendance_payroll.services.reconciliation import ReconciliationScheduler
from attendance_payroll.services.shift_assignments import assign_shift
from attendance_payroll.services.shifts import add_off_dates, create_shift, list_off_dates, remove_off_dates

router = APIRouter(prefix="/api/admin", tags=["admin"])


def get_reconciliation_scheduler() -> ReconciliationScheduler:
    return ReconciliationScheduler()


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


def _audit(
    db: Session,
    request: Request,
    *,
    action: str,
    entity_type: str,
    entity_id: Any,
    details: dict[str, Any] | None = None,
) -> None:
    log_audit(
        db,
        actor_type=AuditActorType.ADMIN,
        actor_id=request_actor_id(request),
        action=action,
        success=True,
        entity_type=entity_type,
        entity_id=str(entity_id),
        request=request,
        details=details,
    )


@router.post("/shifts", response_model=ShiftRead, status_code=201)
def admin_create_shift(
    payload: ShiftCreateRequest,
    request: Request,
    db: Session = Depends(get_db),
) -> ShiftRead:
    shift = create_shift(db, payload)
    _audit(db, request, action="SHIFT_CREATED", entity_type="shift", entity_id=shift.id, details=payload.model_dump(mode="json"))
    return ShiftRead.model_validate(shift)


@router.post("/shift-assignments", response_model=list[ShiftAssignmentRead])
def admin_assign_shift(
    payload: ShiftAssignmentRequest,
    request: Request,
    db: Session = Depends(get_db),
) -> list[ShiftAssignmentRead]:
    assignments = assign_shift(
        db,
        staff_ids=payload.staff_ids,
        shift_id=payload.shift_id,
        start_date=payload.start_date,
        assigned_by=request_actor_id(request),
    )
    results = [ShiftAssignmentRead.model_validate(item) for item in assignments]
    _audit(
        db,
        request,
        action="SHIFT_ASSIGNED",
        entity_type="shift",
        entity_id=payload.shift_id,
        details={"staff_ids": payload.staff_ids, "start_date": payload.start_date},
    )
    return results


@router.post("/shifts/{shift_id}/off-dates", response_model=list[ShiftOffDateRead])
def admin_add_off_dates(
    shift_id: int,
    payload: ShiftOffDatesRequest,
    request: Request,
    db: Session = Depends(get_db),
) -> list[ShiftOffDateRead]:
    rows = [
        ShiftOffDateRead.model_validate(item)
        for item in add_off_dates(db, shift_id=shift_id, dates=payload.dates, reason=payload.reason)
    ]
    _audit(
        db,
        request,
        action="SHIFT_OFF_DATES_ADDED",
        entity_type="shift",
        entity_id=shift_id,
        details={"dates": payload.dates, "reason": payload.reason},
    )
    return rows


@router.delete("/shifts/{shift_id}/off-dates")
def admin_remove_off_dates(
    shift_id: int,
    payload: ShiftOffDatesRequest,
    request: Request,
    db: Session = Depends(get_db),
) -> dict[str, int]:
    removed = remove_off_dates(db, shift_id=shift_id, dates=payload.dates)
    _audit(
        db,
        request,
        action="SHIFT_OFF_DATES_REMOVED",
        entity_type="shift",
        entity_id=shift_id,
        details={"dates": payload.dates, "removed": removed},
    )
    return {"removed": removed}


@router.get("/shifts/{shift_id}/off-dates", response_model=list[ShiftOffDateRead])
def admin_list_off_dates(
    shift_id: int,
    from_date: date | None = Query(default=None),
    db: Session = Depends(get_db),
) -> list[ShiftOffDateRead]:
    return [ShiftOffDateRead.model_validate(item) for item in list_off_dates(db, shift_id=shift_id, from_date=from_date)]


@router.get("/leaves", response_model=list[LeaveRead])
def admin_list_leaves(
    staff_id: int | None = Query(default=None, ge=1),
    status: LeaveStatus | None = Query(default=None),
    db: Session = Depends(get_db),
) -> list[LeaveRead]:
    return [LeaveRead.model_validate(item) for item in leaves.list_leaves(db, staff_id=staff_id, status=status)]


@router.post("/leaves", response_model=LeaveRead, status_code=201)
def admin_create_leave(
    payload: LeaveCreateRequest,
    request: Request,
    db: Session = Depends(get_db),
) -> LeaveRead:
    leave = leaves.create_leave(db, payload, now_utc=_now_utc())
    result = LeaveRead.model_validate(leave)
    _audit(db, request, action="LEAVE_CREATED", entity_type="leave", entity_id=leave.id)
    return result


@router.post("/leaves/{leave_id}/approve", response_model=LeaveRead)
def admin_approve_leave(
    leave_id: int,
    request: Request,
    payload: LeaveApproveRequest | None = None,
    db: Session = Depends(get_db),
) -> LeaveRead:
    leave = leaves.approve_leave(
        db,
        leave_id=leave_id,
        reviewed_by=request_actor_id(request),
        dates=payload.dates if payload is not None else None,
        now_utc=_now_utc(),
    )
    result = LeaveRead.model_validate(leave)
    _audit(
        db,
        request,
        action="LEAVE_APPROVED",
        entity_type="leave",
        entity_id=leave_id,
        details={"approved_dates": result.approved_dates},
    )
    return result


@router.post("/leaves/{leave_id}/reject", response_model=LeaveRead)
def admin_reject_leave(leave_id: int, request: Request, db: Session = Depends(get_db)) -> LeaveRead:
    result = LeaveRead.model_validate(leaves.reject_leave(db, leave_id=leave_id, reviewed_by=request_actor_id(request)))
    _audit(db, request, action="LEAVE_REJECTED", entity_type="leave", entity_id=leave_id)
    return result


@router.post("/leaves/{leave_id}/revoke", response_model=LeaveRead)
def admin_revoke_leave(leave_id: int, request: Request, db: Session = Depends(get_db)) -> LeaveRead:
    leave = leaves.revoke_leave(db, leave_id=leave_id, reviewed_by=request_actor_id(request), now_utc=_now_utc())
    result = LeaveRead.model_validate(leave)
    _audit(db, request, action="LEAVE_REVOKED", entity_type="leave", entity_id=leave_id)
    return result


@router.put("/attendance/{staff_id}/{day_date}", response_model=AttendanceDayRead)
def admin_override_attendance(
    staff_id: int,
    day_date: date,
    payload: AttendanceOverrideRequest,
    request: Request,
    db: Session = Depends(get_db),
) -> AttendanceDayRead:
    day = upsert_manual_override(
        db,
        staff_id=staff_id,
        day_date=day_date,
        payload=payload,
        actor_id=request_actor_id(request),
        now_utc=_now_utc(),
    )
    result = AttendanceDayRead.model_validate(day)
    _audit(
        db,
        request,
        action="ATTENDANCE_OVERRIDDEN",
        entity_type="attendance_day",
        entity_id=day.id,
        details={"staff_id": staff_id, "day_date": day_date, "status": payload.status},
    )
    return result


@router.get("/overtime", response_model=list[OvertimeRead])
def admin_list_overtime(
    staff_id: int | None = Query(default=None, ge=1),
    status: OvertimeStatus | None = Query(default=None),
    db: Session = Depends(get_db),
) -> list[OvertimeRead]:
    return [OvertimeRead.model_validate(item) for item in overtime.list_overtime(db, staff_id=staff_id, status=status)]


@router.post("/overtime", response_model=OvertimeRead, status_code=201)
def admin_create_overtime(
    payload: OvertimeCreateRequest,
    request: Request,
    db: Session = Depends(get_db),
) -> OvertimeRead:
    record = overtime.create_overtime(
        db,
        payload=payload,
        created_by=request_actor_id(request),
        now_utc=_now_utc(),
    )
    result = OvertimeRead.model_validate(record)
    _audit(db, request, action="OVERTIME_RECORDED", entity_type="overtime", entity_id=record.id)
    return result


def _decide_overtime(db: Session, request: Request, overtime_id: int, *, approve: bool) -> OvertimeRead:
    record = overtime.decide_overtime(
        db,
        overtime_id=overtime_id,
        approve=approve,
        decided_by=request_actor_id(request),
        now_utc=_now_utc(),
    )
    result = OvertimeRead.model_validate(record)
    _audit(
        db,
        request,
        action="OVERTIME_APPROVED" if approve else "OVERTIME_REJECTED",
        entity_type="overtime",
        entity_id=overtime_id,
        details={"duration_minutes": result.duration_minutes},
    )
    return result


@router.post("/overtime/{overtime_id}/approve", response_model=OvertimeRead)
def admin_approve_overtime(overtime_id: int, request: Request, db: Session = Depends(get_db)) -> OvertimeRead:
    return _decide_overtime(db, request, overtime_id, approve=True)


@router.post("/overtime/{overtime_id}/reject", response_model=OvertimeRead)
def admin_reject_overtime(overtime_id: int, request: Request, db: Session = Depends(get_db)) -> OvertimeRead:
    return _decide_overtime(db, request, overtime_id, approve=False)


@router.get("/payroll/preview", response_model=list[PayrollPreviewItem])
def admin_payroll_preview(
    month: str = Query(pattern=MONTH_REGEX),
    branch_id: int | None = Query(default=None, ge=1),
    db: Session = Depends(get_db),
) -> list[PayrollPreviewItem]:
    return [PayrollPreviewItem(**item) for item in payroll.preview(db, month, branch_id=branch_id)]


@router.post("/payroll/process", response_model=PaymentResult)
def admin_process_payment(
    payload: PaymentRequest,
    request: Request,
    db: Session = Depends(get_db),
) -> PaymentResult:
    outcome = payroll.process_payment(db, payload=payload, paid_by=request_actor_id(request), now_utc=_now_utc())
    result = PaymentResult.model_validate(outcome, from_attributes=True)
    _audit(
        db,
        request,
        action="PAYROLL_PAYMENT_RECORDED",
        entity_type="payroll_payment",
        entity_id=result.payment.id,
        details={
            "staff_id": payload.staff_id,
            "month": payload.month,
            "payment_type": payload.payment_type,
            "amount": result.payment.amount,
        },
    )
    return result


@router.post("/payroll/bulk-process", response_model=BulkPaymentResponse)
def admin_bulk_process(
    payload: BulkPaymentRequest,
    request: Request,
    db: Session = Depends(get_db),
) -> BulkPaymentResponse:
    outcome = payroll.bulk_process(
        db,
        month=payload.month,
        items=payload.payments,
        paid_by=request_actor_id(request),
        now_utc=_now_utc(),
    )
    result = BulkPaymentResponse.model_validate(outcome, from_attributes=True)
    _audit(
        db,
        request,
        action="PAYROLL_BULK_PROCESSED",
        entity_type="payroll_month",
        entity_id=payload.month,
        details={
            "succeeded": [item.payment.staff_id for item in result.succeeded],
            "failed": [item.model_dump() for item in result.failed],
        },
    )
    return result


@router.post("/payroll/undo", response_model=PaymentRead)
def admin_undo_payment(
    payload: UndoPaymentRequest,
    request: Request,
    db: Session = Depends(get_db),
) -> PaymentRead:
    removed = payroll.undo_payment(
        db,
        staff_id=payload.staff_id,
        month=payload.month,
        payment_type=payload.payment_type,
        undone_by=request_actor_id(request),
    )
    result = PaymentRead.model_validate(removed)
    _audit(
        db,
        request,
        action="PAYROLL_PAYMENT_UNDONE",
        entity_type="payroll_payment",
        entity_id=result.id,
        details={"staff_id": payload.staff_id, "month": payload.month, "amount": result.amount},
    )
    return result


@router.post("/payroll/grace", response_model=AttendanceDayRead)
def admin_grace_attendance(
    payload: GraceRequest,
    request: Request,
    db: Session = Depends(get_db),
) -> AttendanceDayRead:
    day = grace_day(
        db,
        staff_id=payload.staff_id,
        day_date=payload.day_date,
        note=payload.note,
        actor_id=request_actor_id(request),
        now_utc=_now_utc(),
    )
    result = AttendanceDayRead.model_validate(day)
    _audit(
        db,
        request,
        action="ATTENDANCE_GRACED",
        entity_type="attendance_day",
        entity_id=day.id,
        details={"staff_id": payload.staff_id, "day_date": payload.day_date},
    )
    return result


@router.get("/payroll/absent-dates", response_model=AbsentDatesResponse)
def admin_absent_dates(
    staff_id: int = Query(ge=1),
    month: str = Query(pattern=MONTH_REGEX),
    db: Session = Depends(get_db),
) -> AbsentDatesResponse:
    return AbsentDatesResponse(
        staff_id=staff_id,
        month=month,
        dates=payroll.absent_dates(db, staff_id=staff_id, month=month),
    )


@router.get("/payroll/locks/{month}", response_model=LockStatusResponse)
def admin_lock_status(month: str, db: Session = Depends(get_db)) -> LockStatusResponse:
    return LockStatusResponse.model_validate(payroll.lock_status(db, month), from_attributes=True)


@router.post("/payroll/locks/{month}", response_model=PayrollLockRead, status_code=201)
def admin_lock_month(month: str, request: Request, db: Session = Depends(get_db)) -> PayrollLockRead:
    lock = lock_month(db, month, locked_by=request_actor_id(request), now_utc=_now_utc())
    result = PayrollLockRead.model_validate(lock)
    _audit(db, request, action="PAYROLL_MONTH_LOCKED", entity_type="payroll_month", entity_id=month)
    return result


@router.delete("/payroll/locks/{month}")
def admin_unlock_month(month: str, request: Request, db: Session = Depends(get_db)) -> dict[str, Any]:
    unlock_month(db, month, unlocked_by=request_actor_id(request))
    _audit(db, request, action="PAYROLL_MONTH_UNLOCKED", entity_type="payroll_month", entity_id=month)
    return {"month": month, "is_locked": False}


@router.post("/reconciliation/run", response_model=ReconciliationRunResponse)
def admin_run_reconciliation(
    request: Request,
    db: Session = Depends(get_db),
    scheduler: ReconciliationScheduler = Depends(get_reconciliation_scheduler),
) -> ReconciliationRunResponse:
    report = scheduler.run()
    result = ReconciliationRunResponse.model_validate(report, from_attributes=True)
    _audit(
        db,
        request,
        action="RECONCILIATION_RUN",
        entity_type="reconciliation",
        entity_id=result.started_at.isoformat(),
        details=result.model_dump(mode="json"),
    )
    return result


@router.get("/notifications", response_model=list[NotificationRead])
def admin_pending_notifications(
    limit: int = Query(default=100, ge=1, le=500),
    db: Session = Depends(get_db),
) -> list[NotificationRead]:
    return [NotificationRead.model_validate(item) for item in list_pending_notifications(db, limit=limit)]
