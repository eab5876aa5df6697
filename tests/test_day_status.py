from __future__ import annotations

import unittest

import db_support  # noqa: F401

from attendance_payroll.errors import ConflictError
from attendance_payroll.models import DayStatus
from attendance_payroll.services.day_status import TransitionCause, can_transition, is_worked, transition


class DayStatusTransitionTests(unittest.TestCase):
    def test_scheduler_creates_absent_and_placeholders(self) -> None:
        self.assertEqual(transition(None, DayStatus.ABSENT, TransitionCause.SCHEDULER), DayStatus.ABSENT)
        self.assertTrue(can_transition(None, DayStatus.LATE, TransitionCause.SCHEDULER))
        self.assertTrue(can_transition(None, DayStatus.WEEKEND, TransitionCause.SCHEDULER))

    def test_scheduler_upgrades_placeholder_to_absent(self) -> None:
        self.assertTrue(can_transition(DayStatus.LATE, DayStatus.ABSENT, TransitionCause.SCHEDULER))

    def test_scheduler_never_rewrites_half_day(self) -> None:
        with self.assertRaises(ConflictError) as ctx:
            transition(DayStatus.HALF_DAY, DayStatus.ABSENT, TransitionCause.SCHEDULER)
        self.assertEqual(ctx.exception.code, "INVALID_STATUS_TRANSITION")

    def test_check_in_does_not_revive_absent_or_leave(self) -> None:
        self.assertFalse(can_transition(DayStatus.ABSENT, DayStatus.PRESENT, TransitionCause.CHECK_IN))
        self.assertFalse(can_transition(DayStatus.ON_LEAVE, DayStatus.PRESENT, TransitionCause.CHECK_IN))

    def test_check_out_moves_between_worked_states(self) -> None:
        self.assertTrue(can_transition(DayStatus.LATE, DayStatus.EARLY_EXIT, TransitionCause.CHECK_OUT))
        self.assertTrue(can_transition(DayStatus.PRESENT, DayStatus.HALF_DAY, TransitionCause.CHECK_OUT))

    def test_manual_may_set_anything(self) -> None:
        self.assertTrue(can_transition(DayStatus.ABSENT, DayStatus.PRESENT, TransitionCause.MANUAL))
        self.assertTrue(can_transition(None, DayStatus.HOLIDAY, TransitionCause.MANUAL))

    def test_leave_only_targets_on_leave(self) -> None:
        self.assertTrue(can_transition(DayStatus.ABSENT, DayStatus.ON_LEAVE, TransitionCause.LEAVE))
        self.assertFalse(can_transition(DayStatus.ABSENT, DayStatus.PRESENT, TransitionCause.LEAVE))

    def test_is_worked(self) -> None:
        self.assertTrue(is_worked(DayStatus.EARLY_EXIT))
        self.assertFalse(is_worked(DayStatus.ABSENT))
        self.assertFalse(is_worked(None))


if __name__ == "__main__":
    unittest.main()
