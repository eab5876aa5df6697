from datetime import datetime, timezone

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.orm import Session

from attendance_payroll.db import get_db
from attendance_payroll.schemas import (
    MONTH_REGEX,
    AttendanceDayRead,
    CheckInRequest,
    CheckOutRequest,
    MonthlyStatsResponse,
    OvertimeRead,
    TodayAttendanceResponse,
)
from attendance_payroll.services.attendance import check_in, check_out, get_monthly_stats, get_today
from attendance_payroll.services.overtime import start_overtime, stop_overtime

router = APIRouter(prefix="/api/staff/{staff_id}", tags=["staff"])


def _client_ip(request: Request) -> str | None:
    forwarded_for = request.headers.get("x-forwarded-for")
    if forwarded_for:
        return forwarded_for.split(",")[0].strip()
    if request.client:
        return request.client.host
    return None


def _user_agent(request: Request) -> str | None:
    return request.headers.get("user-agent")


@router.post("/check-in", response_model=AttendanceDayRead)
def staff_check_in(
    staff_id: int,
    payload: CheckInRequest,
    request: Request,
    db: Session = Depends(get_db),
) -> AttendanceDayRead:
    day = check_in(
        db,
        staff_id=staff_id,
        at=payload.at,
        source=payload.source,
        ip=_client_ip(request),
        user_agent=_user_agent(request),
    )
    return AttendanceDayRead.model_validate(day)


@router.post("/check-out", response_model=AttendanceDayRead)
def staff_check_out(
    staff_id: int,
    payload: CheckOutRequest,
    request: Request,
    db: Session = Depends(get_db),
) -> AttendanceDayRead:
    day = check_out(
        db,
        staff_id=staff_id,
        at=payload.at,
        source=payload.source,
        ip=_client_ip(request),
        user_agent=_user_agent(request),
    )
    return AttendanceDayRead.model_validate(day)


@router.get("/attendance/today", response_model=TodayAttendanceResponse)
def staff_today(staff_id: int, db: Session = Depends(get_db)) -> TodayAttendanceResponse:
    return TodayAttendanceResponse.model_validate(
        get_today(db, staff_id=staff_id, now_utc=datetime.now(timezone.utc)),
        from_attributes=True,
    )


@router.get("/attendance/monthly-stats", response_model=MonthlyStatsResponse)
def staff_monthly_stats(
    staff_id: int,
    month: str = Query(pattern=MONTH_REGEX),
    db: Session = Depends(get_db),
) -> MonthlyStatsResponse:
    return MonthlyStatsResponse(**get_monthly_stats(db, staff_id=staff_id, month=month))


@router.post("/overtime/start", response_model=OvertimeRead)
def staff_start_overtime(staff_id: int, db: Session = Depends(get_db)) -> OvertimeRead:
    return OvertimeRead.model_validate(start_overtime(db, staff_id=staff_id))


@router.post("/overtime/stop", response_model=OvertimeRead)
def staff_stop_overtime(staff_id: int, db: Session = Depends(get_db)) -> OvertimeRead:
    return OvertimeRead.model_validate(stop_overtime(db, staff_id=staff_id))
