from __future__ import annotations

import unittest
from datetime import date
from decimal import Decimal

from db_support import MONDAY, SUNDAY, add_shift, add_staff, assign, build_session_factory, lock, utc
from sqlalchemy import select

from attendance_payroll.errors import ConflictError, ValidationError
from attendance_payroll.models import Notification, OvertimeStatus, OvertimeType
from attendance_payroll.schemas import OvertimeCreateRequest
from attendance_payroll.services.attendance import check_in, check_out
from attendance_payroll.services.attendance_days import get_day
from attendance_payroll.services.notifications import KIND_OVERTIME_APPROVAL_NEEDED
from attendance_payroll.services.overtime import (
    create_overtime,
    decide_overtime,
    resolve_overtime_slot,
    start_overtime,
    stop_overtime,
)

TUESDAY = date(2026, 2, 3)


class OvertimeSlotTests(unittest.TestCase):
    def setUp(self) -> None:
        self.session_factory = build_session_factory()
        self.db = self.session_factory()
        self.shift = add_shift(self.db)

    def tearDown(self) -> None:
        self.db.close()

    def test_after_shift_end_is_post_shift(self) -> None:
        self.assertEqual(
            resolve_overtime_slot(self.shift, at=utc(2026, 2, 2, 17, 30), day_date=MONDAY, off_dates=set()),
            (MONDAY, OvertimeType.POST_SHIFT),
        )

    def test_before_start_after_day_off_is_pre_shift(self) -> None:
        self.assertEqual(
            resolve_overtime_slot(self.shift, at=utc(2026, 2, 2, 7, 0), day_date=MONDAY, off_dates=set()),
            (MONDAY, OvertimeType.PRE_SHIFT),
        )

    def test_just_after_midnight_belongs_to_previous_shift(self) -> None:
        self.assertEqual(
            resolve_overtime_slot(self.shift, at=utc(2026, 2, 3, 0, 0), day_date=TUESDAY, off_dates=set()),
            (MONDAY, OvertimeType.POST_SHIFT),
        )

    def test_closer_to_next_start_is_pre_shift(self) -> None:
        self.assertEqual(
            resolve_overtime_slot(self.shift, at=utc(2026, 2, 3, 6, 0), day_date=TUESDAY, off_dates=set()),
            (TUESDAY, OvertimeType.PRE_SHIFT),
        )

    def test_during_shift_is_rejected(self) -> None:
        with self.assertRaises(ConflictError) as ctx:
            resolve_overtime_slot(self.shift, at=utc(2026, 2, 2, 12, 0), day_date=MONDAY, off_dates=set())
        self.assertEqual(ctx.exception.code, "OVERTIME_DURING_SHIFT")

    def test_off_days(self) -> None:
        self.assertEqual(
            resolve_overtime_slot(self.shift, at=utc(2026, 2, 1, 12, 0), day_date=SUNDAY, off_dates=set()),
            (SUNDAY, OvertimeType.WEEKEND),
        )
        self.assertEqual(
            resolve_overtime_slot(self.shift, at=utc(2026, 2, 2, 12, 0), day_date=MONDAY, off_dates={MONDAY}),
            (MONDAY, OvertimeType.HOLIDAY),
        )


class OvertimeSessionTests(unittest.TestCase):
    def setUp(self) -> None:
        self.session_factory = build_session_factory()
        self.db = self.session_factory()
        self.staff = add_staff(self.db)
        self.shift = add_shift(self.db)
        assign(self.db, self.staff, self.shift)

    def tearDown(self) -> None:
        self.db.close()

    def test_start_and_stop_rounds_duration(self) -> None:
        started = start_overtime(self.db, staff_id=self.staff.id, now_utc=utc(2026, 2, 2, 17, 5))
        self.assertEqual(started.type, OvertimeType.POST_SHIFT)
        self.assertEqual(started.ot_date, MONDAY)
        self.assertIsNone(started.end_time)

        stopped = stop_overtime(self.db, staff_id=self.staff.id, now_utc=utc(2026, 2, 2, 17, 52))
        self.assertEqual(stopped.duration_minutes, 30)
        self.assertEqual(stopped.status, OvertimeStatus.PENDING)
        notifications = list(self.db.scalars(select(Notification)).all())
        self.assertEqual([item.kind for item in notifications], [KIND_OVERTIME_APPROVAL_NEEDED])

    def test_short_session_counts_nothing(self) -> None:
        start_overtime(self.db, staff_id=self.staff.id, now_utc=utc(2026, 2, 2, 17, 5))
        stopped = stop_overtime(self.db, staff_id=self.staff.id, now_utc=utc(2026, 2, 2, 17, 25))
        self.assertEqual(stopped.duration_minutes, 0)
        self.assertEqual(list(self.db.scalars(select(Notification)).all()), [])

    def test_pre_shift_early_stop_is_deducted(self) -> None:
        start_overtime(self.db, staff_id=self.staff.id, now_utc=utc(2026, 2, 2, 6, 30))
        stopped = stop_overtime(self.db, staff_id=self.staff.id, now_utc=utc(2026, 2, 2, 8, 0))
        self.assertEqual(stopped.type, OvertimeType.PRE_SHIFT)
        self.assertEqual(stopped.early_stop_minutes, 60)
        self.assertEqual(stopped.duration_minutes, 30)

    def test_only_one_open_session(self) -> None:
        start_overtime(self.db, staff_id=self.staff.id, now_utc=utc(2026, 2, 2, 17, 5))
        with self.assertRaises(ConflictError) as ctx:
            start_overtime(self.db, staff_id=self.staff.id, now_utc=utc(2026, 2, 2, 17, 10))
        self.assertEqual(ctx.exception.code, "OVERTIME_SESSION_OPEN")

    def test_one_session_per_slot(self) -> None:
        start_overtime(self.db, staff_id=self.staff.id, now_utc=utc(2026, 2, 2, 17, 5))
        stop_overtime(self.db, staff_id=self.staff.id, now_utc=utc(2026, 2, 2, 18, 0))
        with self.assertRaises(ConflictError) as ctx:
            start_overtime(self.db, staff_id=self.staff.id, now_utc=utc(2026, 2, 2, 19, 0))
        self.assertEqual(ctx.exception.code, "OVERTIME_ALREADY_RECORDED")

    def test_disabled_shift(self) -> None:
        staff = add_staff(self.db, full_name="Karim")
        assign(self.db, staff, add_shift(self.db, name="No OT", ot_enabled=False))
        with self.assertRaises(ValidationError) as ctx:
            start_overtime(self.db, staff_id=staff.id, now_utc=utc(2026, 2, 2, 17, 5))
        self.assertEqual(ctx.exception.code, "OVERTIME_DISABLED")

    def test_locked_month(self) -> None:
        lock(self.db, "2026-02")
        with self.assertRaises(ConflictError) as ctx:
            start_overtime(self.db, staff_id=self.staff.id, now_utc=utc(2026, 2, 2, 17, 5))
        self.assertEqual(ctx.exception.code, "MONTH_LOCKED")

    def test_stop_without_session(self) -> None:
        with self.assertRaises(ConflictError) as ctx:
            stop_overtime(self.db, staff_id=self.staff.id, now_utc=utc(2026, 2, 2, 18, 0))
        self.assertEqual(ctx.exception.code, "NO_OPEN_OVERTIME")

    def test_approval_needs_finished_session(self) -> None:
        overtime = start_overtime(self.db, staff_id=self.staff.id, now_utc=utc(2026, 2, 2, 17, 5))
        with self.assertRaises(ConflictError) as ctx:
            decide_overtime(self.db, overtime_id=overtime.id, approve=True, decided_by="admin", now_utc=utc(2026, 2, 2, 18, 0))
        self.assertEqual(ctx.exception.code, "OVERTIME_NOT_FINISHED")

    def test_approval_updates_day_amount(self) -> None:
        check_in(self.db, staff_id=self.staff.id, at=utc(2026, 2, 2, 9, 0))
        check_out(self.db, staff_id=self.staff.id, at=utc(2026, 2, 2, 17, 0))
        overtime = start_overtime(self.db, staff_id=self.staff.id, now_utc=utc(2026, 2, 2, 17, 5))
        stop_overtime(self.db, staff_id=self.staff.id, now_utc=utc(2026, 2, 2, 17, 40))

        approved = decide_overtime(
            self.db,
            overtime_id=overtime.id,
            approve=True,
            decided_by="admin",
            now_utc=utc(2026, 2, 3, 9, 0),
        )
        self.assertEqual(approved.status, OvertimeStatus.APPROVED)
        self.assertEqual(approved.approved_by, "admin")
        day = get_day(self.db, staff_id=self.staff.id, day_date=MONDAY)
        self.assertEqual(day.ot_amount, Decimal("62.50"))

        with self.assertRaises(ConflictError) as ctx:
            decide_overtime(self.db, overtime_id=overtime.id, approve=False, decided_by="admin", now_utc=utc(2026, 2, 3, 9, 5))
        self.assertEqual(ctx.exception.code, "INVALID_STATUS_TRANSITION")

    def test_admin_created_overtime_is_approved(self) -> None:
        overtime = create_overtime(
            self.db,
            payload=OvertimeCreateRequest(
                staff_id=self.staff.id,
                ot_date=date(2026, 2, 7),
                type=OvertimeType.POST_SHIFT,
                start_time=utc(2026, 2, 7, 17, 0),
                end_time=utc(2026, 2, 7, 21, 10),
            ),
            created_by="admin",
            now_utc=utc(2026, 2, 2, 9, 0),
        )
        self.assertEqual(overtime.status, OvertimeStatus.APPROVED)
        self.assertEqual(overtime.duration_minutes, 240)

    def test_admin_created_overtime_rejects_inverted_times(self) -> None:
        with self.assertRaises(ValidationError) as ctx:
            create_overtime(
                self.db,
                payload=OvertimeCreateRequest(
                    staff_id=self.staff.id,
                    ot_date=MONDAY,
                    type=OvertimeType.POST_SHIFT,
                    start_time=utc(2026, 2, 2, 19, 0),
                    end_time=utc(2026, 2, 2, 18, 0),
                ),
                created_by="admin",
                now_utc=utc(2026, 2, 2, 20, 0),
            )
        self.assertEqual(ctx.exception.code, "INVALID_DATE_RANGE")


if __name__ == "__main__":
    unittest.main()
