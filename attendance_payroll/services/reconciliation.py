"""Recurring attendance reconciliation.

One pass walks every active staff member, fills in the days nobody punched
(weekend/holiday rows, late placeholders, auto-absent rows), upgrades stale late
placeholders to absent, closes days with a check-in but no check-out,
auto-closes overtime sessions left running, and expires leave applications
nobody reviewed in time. Every write is keyed on
(staff_id, day_date) or guarded by a conditional UPDATE, so re-running a pass or
overlapping it with live check-ins only ever produces redundant no-ops.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone

from sqlalchemy import select, update
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session, sessionmaker

from attendance_payroll.db import SessionLocal, insert_for
from attendance_payroll.errors import TransientError
from attendance_payroll.models import (
    AttendanceDay,
    DayStatus,
    ReconciliationCursor,
    Shift,
    Staff,
    StaffStatus,
)
from attendance_payroll.services.attendance_days import (
    append_note,
    apply_day_amounts,
    get_day,
    insert_day_if_missing,
    staff_day_rate,
)
from attendance_payroll.services.day_status import TransitionCause, can_transition, transition
from attendance_payroll.services.notifications import (
    KIND_AUTO_ABSENT,
    KIND_LEAVE_EXPIRED,
    KIND_MISSED_CHECKOUT,
    KIND_OVERTIME_AUTO_CLOSED,
    notify,
)
from attendance_payroll.services.leaves import expire_stale_leaves
from attendance_payroll.services.overtime import finalize_session, list_open_sessions_older_than
from attendance_payroll.services.payroll_calc import day_amounts
from attendance_payroll.services.payroll_locks import is_month_locked, month_key
from attendance_payroll.services.shift_calendar import (
    default_day_start_utc,
    default_local_date,
    expected_window,
    is_work_day,
    local_date,
    local_day_start_utc,
    non_work_status,
    normalize_ts,
)
from attendance_payroll.services.shifts import load_off_dates, resolve_active_shift, resolve_shift_for_date
from attendance_payroll.settings import Settings, get_settings

logger = logging.getLogger("attendance_payroll.reconciliation")

Clock = Callable[[], datetime]


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class StaffOutcome:
    days_created: int = 0
    days_upgraded: int = 0
    days_closed: int = 0
    overtime_closed: int = 0
    leaves_expired: int = 0
    settled_through: date | None = None


@dataclass
class RunReport:
    started_at: datetime
    finished_at: datetime | None = None
    staff_processed: int = 0
    staff_failed: list[int] = field(default_factory=list)
    days_created: int = 0
    days_upgraded: int = 0
    days_closed: int = 0
    overtime_closed: int = 0
    leaves_expired: int = 0

    def add(self, outcome: StaffOutcome) -> None:
        self.staff_processed += 1
        self.days_created += outcome.days_created
        self.days_upgraded += outcome.days_upgraded
        self.days_closed += outcome.days_closed
        self.overtime_closed += outcome.overtime_closed
        self.leaves_expired += outcome.leaves_expired


class ReconciliationScheduler:
    def __init__(
        self,
        session_factory: sessionmaker | Callable[[], Session] = SessionLocal,
        clock: Clock | None = None,
        settings: Settings | None = None,
    ):
        self._session_factory = session_factory
        self._clock = clock or _utc_now
        self._settings = settings or get_settings()

    def now(self) -> datetime:
        return normalize_ts(self._clock())

    def run(self) -> RunReport:
        now = self.now()
        report = RunReport(started_at=now)
        try:
            with self._session_factory() as db:
                staff_ids = list(
                    db.scalars(
                        select(Staff.id).where(Staff.status == StaffStatus.ACTIVE).order_by(Staff.id.asc())
                    ).all()
                )
        except OperationalError:
            logger.exception("reconciliation_staff_list_failed", extra={"code": "STORAGE_UNAVAILABLE"})
            report.finished_at = self.now()
            return report

        for staff_id in staff_ids:
            outcome = self._run_staff(staff_id, now)
            if outcome is None:
                report.staff_failed.append(staff_id)
                continue
            report.add(outcome)

        report.finished_at = self.now()
        logger.info(
            "reconciliation_run_complete",
            extra={
                "staff_processed": report.staff_processed,
                "staff_failed": len(report.staff_failed),
                "days_created": report.days_created,
                "days_upgraded": report.days_upgraded,
                "days_closed": report.days_closed,
                "overtime_closed": report.overtime_closed,
                "leaves_expired": report.leaves_expired,
            },
        )
        return report

    def _run_staff(self, staff_id: int, now: datetime) -> StaffOutcome | None:
        db = self._session_factory()
        try:
            staff = db.get(Staff, staff_id)
            if staff is None or staff.status != StaffStatus.ACTIVE:
                db.rollback()
                return StaffOutcome()
            outcome = self.reconcile_staff(db, staff, now)
            db.commit()
            return outcome
        except OperationalError as exc:
            db.rollback()
            error = TransientError("STORAGE_UNAVAILABLE", str(exc.orig or exc))
            logger.exception(
                "reconciliation_staff_failed",
                extra={"staff_id": staff_id, "code": error.code, "transient": True},
            )
            return None
        except Exception:
            db.rollback()
            logger.exception("reconciliation_staff_failed", extra={"staff_id": staff_id, "transient": False})
            return None
        finally:
            db.close()

    def reconcile_staff(self, db: Session, staff: Staff, now: datetime) -> StaffOutcome:
        outcome = StaffOutcome()
        deadline = time.monotonic() + max(1, self._settings.reconciliation_staff_time_budget_seconds)
        margin = timedelta(minutes=self._settings.reconciliation_safety_margin_minutes)

        anchor = resolve_active_shift(db, staff.id)
        today = local_date(anchor, now) if anchor is not None else default_local_date(now)
        cursor = db.get(ReconciliationCursor, staff.id)
        start = staff.join_date
        if cursor is not None:
            start = max(start, cursor.settled_through + timedelta(days=1))
        start = max(start, today - timedelta(days=self._settings.reconciliation_max_backfill_days))

        lock_cache: dict[str, bool] = {}
        settled_through = cursor.settled_through if cursor is not None else None
        contiguous = True

        day = start
        while day <= today:
            if time.monotonic() > deadline:
                logger.warning(
                    "reconciliation_staff_budget_exhausted",
                    extra={"staff_id": staff.id, "stopped_at": day.isoformat()},
                )
                break
            settled = self._reconcile_day(db, staff, day, now, margin, lock_cache, outcome)
            if settled and contiguous:
                settled_through = day
            else:
                contiguous = False
            day += timedelta(days=1)

        self._close_stale_overtime(db, staff, now, lock_cache, outcome)
        self._expire_leaves(db, staff, now, outcome)
        if settled_through is not None and (cursor is None or settled_through > cursor.settled_through):
            db.execute(
                insert_for(db, ReconciliationCursor)
                .values(staff_id=staff.id, settled_through=settled_through, updated_at=now)
                .on_conflict_do_update(
                    index_elements=["staff_id"],
                    set_={"settled_through": settled_through, "updated_at": now},
                )
            )
        outcome.settled_through = settled_through
        return outcome

    def _is_locked(self, db: Session, day: date, cache: dict[str, bool]) -> bool:
        key = month_key(day)
        if key not in cache:
            cache[key] = is_month_locked(db, key)
        return cache[key]

    def _reconcile_day(
        self,
        db: Session,
        staff: Staff,
        day: date,
        now: datetime,
        margin: timedelta,
        lock_cache: dict[str, bool],
        outcome: StaffOutcome,
    ) -> bool:
        """Bring one day up to date. Returns True once nothing about the day can change."""
        shift = resolve_shift_for_date(db, staff.id, day)
        if shift is None:
            return now >= default_day_start_utc(day + timedelta(days=1)) + margin

        window = expected_window(shift, day)
        half_day_at = window.start_utc + timedelta(minutes=shift.half_day_after_minutes)
        settle_at = max(window.end_utc, half_day_at, local_day_start_utc(shift, day + timedelta(days=1))) + margin
        settled = now >= settle_at
        if self._is_locked(db, day, lock_cache):
            return settled

        off_dates = load_off_dates(db, shift.id, start=day, end=day)
        row = get_day(db, staff_id=staff.id, day_date=day)

        if not is_work_day(shift, day, off_dates):
            if row is None:
                status = transition(None, non_work_status(day, off_dates), TransitionCause.SCHEDULER)
                if insert_day_if_missing(db, staff_id=staff.id, day_date=day, shift_id=shift.id, status=status):
                    outcome.days_created += 1
            return settled

        if row is None:
            if now >= half_day_at:
                self._create_absent(db, staff, shift, day, now, outcome)
            elif now > window.start_utc + timedelta(minutes=shift.late_after_minutes):
                status = transition(None, DayStatus.LATE, TransitionCause.SCHEDULER)
                if insert_day_if_missing(db, staff_id=staff.id, day_date=day, shift_id=shift.id, status=status):
                    outcome.days_created += 1
            return settled

        if row.is_manual:
            return settled
        if row.check_in_at is None and row.status in (DayStatus.LATE, DayStatus.PRESENT) and now >= half_day_at:
            self._upgrade_to_absent(db, staff, row, now, outcome)
        elif (
            row.check_in_at is not None
            and row.check_out_at is None
            and row.processed_at is None
            and now >= window.end_utc + margin
        ):
            self._close_missed_check_out(db, staff, row, now, outcome)
        return settled

    def _create_absent(
        self,
        db: Session,
        staff: Staff,
        shift: Shift,
        day: date,
        now: datetime,
        outcome: StaffOutcome,
    ) -> None:
        status = transition(None, DayStatus.ABSENT, TransitionCause.SCHEDULER)
        payable, deduction = day_amounts(status, day_rate=staff_day_rate(staff))
        created = insert_day_if_missing(
            db,
            staff_id=staff.id,
            day_date=day,
            shift_id=shift.id,
            status=status,
            is_auto_absent=True,
            payable_amount=payable,
            deduction_amount=deduction,
            processed_at=now,
        )
        if not created:
            return
        outcome.days_created += 1
        notify(
            db,
            kind=KIND_AUTO_ABSENT,
            staff_id=staff.id,
            local_day=day,
            payload={"day_date": day.isoformat(), "deduction_amount": deduction},
        )

    def _upgrade_to_absent(
        self,
        db: Session,
        staff: Staff,
        row: AttendanceDay,
        now: datetime,
        outcome: StaffOutcome,
    ) -> None:
        if not can_transition(row.status, DayStatus.ABSENT, TransitionCause.SCHEDULER):
            return
        payable, deduction = day_amounts(DayStatus.ABSENT, day_rate=staff_day_rate(staff))
        result = db.execute(
            update(AttendanceDay)
            .where(
                AttendanceDay.id == row.id,
                AttendanceDay.is_manual.is_(False),
                AttendanceDay.check_in_at.is_(None),
                AttendanceDay.status.in_([DayStatus.LATE, DayStatus.PRESENT]),
            )
            .values(
                status=DayStatus.ABSENT,
                is_auto_absent=True,
                payable_amount=payable,
                deduction_amount=deduction,
                processed_at=now,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            return
        db.expire(row)
        outcome.days_upgraded += 1
        notify(
            db,
            kind=KIND_AUTO_ABSENT,
            staff_id=staff.id,
            local_day=row.day_date,
            payload={"day_date": row.day_date.isoformat(), "deduction_amount": deduction},
        )

    def _close_missed_check_out(
        self,
        db: Session,
        staff: Staff,
        row: AttendanceDay,
        now: datetime,
        outcome: StaffOutcome,
    ) -> None:
        day = get_day(db, staff_id=staff.id, day_date=row.day_date, for_update=True)
        if day is None or day.is_manual or day.check_out_at is not None or day.processed_at is not None:
            return
        apply_day_amounts(db, day, staff=staff)
        day.notes = append_note(day.notes, "Closed without check-out")
        day.processed_at = now
        outcome.days_closed += 1
        notify(
            db,
            kind=KIND_MISSED_CHECKOUT,
            staff_id=staff.id,
            local_day=day.day_date,
            payload={"day_date": day.day_date.isoformat(), "status": day.status.value},
        )

    def _close_stale_overtime(
        self,
        db: Session,
        staff: Staff,
        now: datetime,
        lock_cache: dict[str, bool],
        outcome: StaffOutcome,
    ) -> None:
        max_open = timedelta(hours=self._settings.overtime_auto_close_hours)
        for overtime in list_open_sessions_older_than(db, staff_id=staff.id, cutoff=now - max_open):
            if self._is_locked(db, overtime.ot_date, lock_cache):
                continue
            started = overtime.actual_start_time or overtime.start_time
            finalize_session(db, overtime, end_time=started + max_open, auto_closed=True)
            outcome.overtime_closed += 1
            notify(
                db,
                kind=KIND_OVERTIME_AUTO_CLOSED,
                staff_id=staff.id,
                local_day=overtime.ot_date,
                payload={"overtime_id": overtime.id, "duration_minutes": overtime.duration_minutes},
                suffix=overtime.type.value,
            )


    def _expire_leaves(self, db: Session, staff: Staff, now: datetime, outcome: StaffOutcome) -> None:
        for leave in expire_stale_leaves(db, staff_id=staff.id, now_utc=now):
            outcome.leaves_expired += 1
            notify(
                db,
                kind=KIND_LEAVE_EXPIRED,
                staff_id=staff.id,
                local_day=leave.start_date,
                payload={
                    "leave_id": leave.id,
                    "leave_type": leave.leave_type,
                    "start_date": leave.start_date.isoformat(),
                    "end_date": leave.end_date.isoformat(),
                },
                suffix=str(leave.id),
            )

def run_reconciliation_once(
    session_factory: sessionmaker | Callable[[], Session] = SessionLocal,
    clock: Clock | None = None,
) -> RunReport:
    return ReconciliationScheduler(session_factory=session_factory, clock=clock).run()
