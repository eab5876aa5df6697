from __future__ import annotations

import unittest
from datetime import date, datetime, time
from decimal import Decimal
from unittest.mock import patch

from db_support import MONDAY, SUNDAY, add_shift, add_staff, assign, build_session_factory, lock, utc
from sqlalchemy import select
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session

from attendance_payroll.models import (
    AttendanceDay,
    DayStatus,
    LeaveApplication,
    LeaveStatus,
    Notification,
    Overtime,
    OvertimeStatus,
    OvertimeType,
    ReconciliationCursor,
    Shift,
    ShiftOffDate,
)
from attendance_payroll.schemas import AttendanceOverrideRequest, LeaveCreateRequest
from attendance_payroll.services.attendance import check_in
from attendance_payroll.services.attendance_days import upsert_manual_override
from attendance_payroll.services.leaves import create_leave
from attendance_payroll.services.notifications import (
    KIND_AUTO_ABSENT,
    KIND_LEAVE_EXPIRED,
    KIND_MISSED_CHECKOUT,
    KIND_OVERTIME_AUTO_CLOSED,
)
from attendance_payroll.services.reconciliation import ReconciliationScheduler
from attendance_payroll.settings import Settings


class ReconciliationSchedulerTests(unittest.TestCase):
    def setUp(self) -> None:
        self.session_factory = build_session_factory()
        with self.session_factory() as db:
            shift = add_shift(db)
            staff = add_staff(db)
            assign(db, staff, shift)
            self.shift_id = shift.id
            self.staff_id = staff.id

    def _shift(self, db: Session) -> Shift:
        return db.get(Shift, self.shift_id)

    def _run(self, now: datetime, **settings: object):  # type: ignore[no-untyped-def]
        scheduler = ReconciliationScheduler(
            session_factory=self.session_factory,
            clock=lambda: now,
            settings=Settings(**settings) if settings else None,
        )
        return scheduler.run()

    def _days(self, staff_id: int | None = None) -> list[AttendanceDay]:
        with self.session_factory() as db:
            return list(
                db.scalars(
                    select(AttendanceDay)
                    .where(AttendanceDay.staff_id == (staff_id or self.staff_id))
                    .order_by(AttendanceDay.day_date.asc())
                ).all()
            )

    def _notifications(self, kind: str) -> list[Notification]:
        with self.session_factory() as db:
            return list(db.scalars(select(Notification).where(Notification.kind == kind)).all())

    def test_absent_after_half_day_point(self) -> None:
        report = self._run(utc(2026, 2, 2, 13, 0))
        self.assertEqual(report.days_created, 1)
        (day,) = self._days()
        self.assertEqual(day.day_date, MONDAY)
        self.assertEqual(day.status, DayStatus.ABSENT)
        self.assertTrue(day.is_auto_absent)
        self.assertEqual(day.deduction_amount, Decimal("1000.00"))
        self.assertEqual(len(self._notifications(KIND_AUTO_ABSENT)), 1)

    def test_nothing_before_late_threshold(self) -> None:
        self._run(utc(2026, 2, 2, 9, 5))
        self.assertEqual(self._days(), [])

    def test_late_placeholder_is_upgraded(self) -> None:
        self._run(utc(2026, 2, 2, 12, 0))
        (day,) = self._days()
        self.assertEqual(day.status, DayStatus.LATE)
        self.assertIsNone(day.check_in_at)

        report = self._run(utc(2026, 2, 2, 13, 30))
        self.assertEqual(report.days_upgraded, 1)
        (day,) = self._days()
        self.assertEqual(day.status, DayStatus.ABSENT)
        self.assertTrue(day.is_auto_absent)

    def test_rerun_is_idempotent(self) -> None:
        self._run(utc(2026, 2, 2, 13, 0))
        report = self._run(utc(2026, 2, 2, 13, 0))
        self.assertEqual(report.days_created, 0)
        self.assertEqual(report.days_upgraded, 0)
        self.assertEqual(len(self._days()), 1)
        self.assertEqual(len(self._notifications(KIND_AUTO_ABSENT)), 1)

    def test_backfills_week_and_advances_cursor(self) -> None:
        report = self._run(utc(2026, 2, 9, 12, 0))
        days = self._days()
        self.assertEqual(report.days_created, 8)
        self.assertEqual([day.status for day in days[:6]], [DayStatus.ABSENT] * 6)
        self.assertEqual(days[6].day_date, date(2026, 2, 8))
        self.assertEqual(days[6].status, DayStatus.WEEKEND)
        self.assertEqual(days[7].status, DayStatus.LATE)
        with self.session_factory() as db:
            cursor = db.get(ReconciliationCursor, self.staff_id)
            self.assertEqual(cursor.settled_through, date(2026, 2, 8))

    def test_off_date_becomes_holiday(self) -> None:
        with self.session_factory() as db:
            db.add(ShiftOffDate(shift_id=self.shift_id, off_date=MONDAY, reason="Founders day"))
            db.commit()
        self._run(utc(2026, 2, 2, 13, 0))
        (day,) = self._days()
        self.assertEqual(day.status, DayStatus.HOLIDAY)

    def test_backfill_is_capped(self) -> None:
        with self.session_factory() as db:
            staff = add_staff(db, full_name="Veteran", join_date=date(2025, 1, 1))
            assign(db, staff, self._shift(db))
            staff_id = staff.id
        self._run(utc(2026, 2, 2, 13, 0), reconciliation_max_backfill_days=3)
        days = self._days(staff_id)
        self.assertEqual(days[0].day_date, date(2026, 1, 30))
        self.assertEqual(days[-1].day_date, MONDAY)

    def test_locked_month_is_frozen(self) -> None:
        with self.session_factory() as db:
            lock(db, "2026-02")
        report = self._run(utc(2026, 2, 2, 13, 0))
        self.assertEqual(report.days_created, 0)
        self.assertEqual(self._days(), [])

    def test_manual_row_is_not_overwritten(self) -> None:
        with self.session_factory() as db:
            upsert_manual_override(
                db,
                staff_id=self.staff_id,
                day_date=MONDAY,
                payload=AttendanceOverrideRequest(status=DayStatus.PRESENT),
                actor_id="admin",
                now_utc=utc(2026, 2, 2, 8, 0),
            )
        self._run(utc(2026, 2, 2, 15, 0))
        (day,) = self._days()
        self.assertEqual(day.status, DayStatus.PRESENT)
        self.assertFalse(day.is_auto_absent)

    def test_missed_check_out_is_closed(self) -> None:
        with self.session_factory() as db:
            check_in(db, staff_id=self.staff_id, at=utc(2026, 2, 2, 9, 5))
        report = self._run(utc(2026, 2, 2, 18, 30))
        self.assertEqual(report.days_closed, 1)
        (day,) = self._days()
        self.assertEqual(day.status, DayStatus.PRESENT)
        self.assertIsNone(day.check_out_at)
        self.assertIsNotNone(day.processed_at)
        self.assertIn("Closed without check-out", day.notes)
        self.assertEqual(len(self._notifications(KIND_MISSED_CHECKOUT)), 1)

        again = self._run(utc(2026, 2, 2, 19, 0))
        self.assertEqual(again.days_closed, 0)

    def test_closed_night_shift_does_not_block_next_night(self) -> None:
        with self.session_factory() as db:
            night = add_shift(
                db,
                name="Night",
                work_days=[0, 1, 2, 3, 4, 5, 6],
                start_time_local=time(22, 0),
                end_time_local=time(6, 0),
            )
            staff = add_staff(db, full_name="Night Guard")
            assign(db, staff, night)
            staff_id = staff.id
            check_in(db, staff_id=staff_id, at=utc(2026, 2, 2, 22, 0))

        report = self._run(utc(2026, 2, 3, 12, 0))
        self.assertEqual(report.days_closed, 1)

        with self.session_factory() as db:
            day = check_in(db, staff_id=staff_id, at=utc(2026, 2, 3, 22, 0))
            self.assertEqual(day.day_date, date(2026, 2, 3))
            self.assertEqual(day.status, DayStatus.PRESENT)
        closed = self._days(staff_id)[0]
        self.assertEqual(closed.day_date, MONDAY)
        self.assertIsNone(closed.check_out_at)
        self.assertEqual(closed.total_minutes, 0)

    def test_open_check_in_is_not_marked_absent(self) -> None:
        with self.session_factory() as db:
            check_in(db, staff_id=self.staff_id, at=utc(2026, 2, 2, 9, 5))
        self._run(utc(2026, 2, 2, 14, 0))
        (day,) = self._days()
        self.assertEqual(day.status, DayStatus.PRESENT)

    def test_stale_overtime_is_auto_closed(self) -> None:
        with self.session_factory() as db:
            db.add(
                Overtime(
                    staff_id=self.staff_id,
                    shift_id=self.shift_id,
                    ot_date=MONDAY,
                    type=OvertimeType.POST_SHIFT,
                    start_time=utc(2026, 2, 2, 17, 30),
                    actual_start_time=utc(2026, 2, 2, 17, 30),
                    status=OvertimeStatus.PENDING,
                )
            )
            db.commit()
        report = self._run(utc(2026, 2, 3, 6, 0))
        self.assertEqual(report.overtime_closed, 1)
        with self.session_factory() as db:
            overtime = db.scalars(select(Overtime)).one()
            self.assertTrue(overtime.is_auto_closed)
            self.assertEqual(overtime.end_time, utc(2026, 2, 3, 5, 30))
            self.assertEqual(overtime.duration_minutes, 720)
            self.assertEqual(overtime.status, OvertimeStatus.PENDING)
        self.assertEqual(len(self._notifications(KIND_OVERTIME_AUTO_CLOSED)), 1)

    def test_unreviewed_leave_expires(self) -> None:
        with self.session_factory() as db:
            leave = create_leave(
                db,
                LeaveCreateRequest(staff_id=self.staff_id, start_date=date(2026, 2, 10), end_date=date(2026, 2, 11)),
                now_utc=utc(2026, 2, 2, 4, 0),
            )
            leave_id = leave.id

        report = self._run(utc(2026, 2, 2, 13, 0))
        self.assertEqual(report.leaves_expired, 0)

        report = self._run(utc(2026, 2, 2, 18, 0))
        self.assertEqual(report.leaves_expired, 1)
        with self.session_factory() as db:
            self.assertEqual(db.get(LeaveApplication, leave_id).status, LeaveStatus.EXPIRED)
        (notification,) = self._notifications(KIND_LEAVE_EXPIRED)
        self.assertEqual(notification.staff_id, self.staff_id)
        self.assertEqual(notification.payload["leave_id"], str(leave_id))

        again = self._run(utc(2026, 2, 2, 19, 0))
        self.assertEqual(again.leaves_expired, 0)
        self.assertEqual(len(self._notifications(KIND_LEAVE_EXPIRED)), 1)

    def test_failing_staff_does_not_stop_the_run(self) -> None:
        with self.session_factory() as db:
            other = add_staff(db, full_name="Karim")
            assign(db, other, self._shift(db))
            other_id = other.id

        original = ReconciliationScheduler.reconcile_staff

        def flaky(scheduler, db, staff, now):  # type: ignore[no-untyped-def]
            if staff.id == self.staff_id:
                raise OperationalError("SELECT 1", {}, Exception("db down"))
            return original(scheduler, db, staff, now)

        with patch.object(ReconciliationScheduler, "reconcile_staff", autospec=True, side_effect=flaky):
            with self.assertLogs("attendance_payroll.reconciliation", level="ERROR") as logs:
                report = self._run(utc(2026, 2, 2, 13, 0))

        self.assertEqual(report.staff_failed, [self.staff_id])
        self.assertEqual(report.staff_processed, 1)
        self.assertTrue(any("reconciliation_staff_failed" in line for line in logs.output))
        self.assertEqual(self._days(), [])
        self.assertEqual([day.status for day in self._days(other_id)], [DayStatus.ABSENT])

    def test_broken_notification_sink_keeps_attendance_write(self) -> None:
        with patch(
            "attendance_payroll.services.notifications.insert_for",
            side_effect=RuntimeError("sink down"),
        ):
            report = self._run(utc(2026, 2, 2, 13, 0))
        self.assertEqual(report.staff_failed, [])
        (day,) = self._days()
        self.assertEqual(day.status, DayStatus.ABSENT)
        self.assertEqual(self._notifications(KIND_AUTO_ABSENT), [])

    def test_join_date_bounds_the_walk(self) -> None:
        with self.session_factory() as db:
            staff = add_staff(db, full_name="New Hire", join_date=date(2026, 2, 4))
            assign(db, staff, self._shift(db))
            staff_id = staff.id
        self._run(utc(2026, 2, 4, 13, 0))
        self.assertEqual([day.day_date for day in self._days(staff_id)], [date(2026, 2, 4)])

    def test_sunday_join_gets_weekend_row(self) -> None:
        with self.session_factory() as db:
            staff = add_staff(db, full_name="Weekend Starter", join_date=SUNDAY)
            assign(db, staff, self._shift(db))
            staff_id = staff.id
        self._run(utc(2026, 2, 1, 13, 0))
        (day,) = self._days(staff_id)
        self.assertEqual(day.status, DayStatus.WEEKEND)


if __name__ == "__main__":
    unittest.main()
