"""Allowed AttendanceDay status transitions, keyed by what caused them."""

from __future__ import annotations

import enum

from attendance_payroll.errors import ConflictError
from attendance_payroll.models import DayStatus


class TransitionCause(str, enum.Enum):
    CHECK_IN = "check_in"
    CHECK_OUT = "check_out"
    SCHEDULER = "scheduler"
    LEAVE = "leave"
    MANUAL = "manual"


WORKED_STATUSES = frozenset(
    {DayStatus.PRESENT, DayStatus.LATE, DayStatus.HALF_DAY, DayStatus.EARLY_EXIT}
)
NON_WORK_STATUSES = frozenset({DayStatus.WEEKEND, DayStatus.HOLIDAY})
# Rows in these states are settled and left alone by the scheduler.
SETTLED_STATUSES = frozenset({DayStatus.ABSENT, DayStatus.ON_LEAVE}) | NON_WORK_STATUSES

_CHECK_IN_TARGETS = frozenset({DayStatus.PRESENT, DayStatus.LATE, DayStatus.HALF_DAY})

_TRANSITIONS: dict[tuple[DayStatus | None, TransitionCause], frozenset[DayStatus]] = {
    (None, TransitionCause.CHECK_IN): _CHECK_IN_TARGETS | NON_WORK_STATUSES,
    (None, TransitionCause.SCHEDULER): frozenset({DayStatus.LATE, DayStatus.ABSENT}) | NON_WORK_STATUSES,
    (DayStatus.LATE, TransitionCause.SCHEDULER): frozenset({DayStatus.ABSENT}),
    (DayStatus.PRESENT, TransitionCause.SCHEDULER): frozenset({DayStatus.ABSENT}),
}
for _status in WORKED_STATUSES:
    # First check-in and last check-out are re-derived, so worked states move among themselves.
    _TRANSITIONS[(_status, TransitionCause.CHECK_IN)] = _CHECK_IN_TARGETS
    _TRANSITIONS[(_status, TransitionCause.CHECK_OUT)] = WORKED_STATUSES


def can_transition(current: DayStatus | None, target: DayStatus, cause: TransitionCause) -> bool:
    if cause in (TransitionCause.MANUAL, TransitionCause.LEAVE):
        return cause is TransitionCause.MANUAL or target is DayStatus.ON_LEAVE
    if current is target:
        return True
    return target in _TRANSITIONS.get((current, cause), frozenset())


def transition(current: DayStatus | None, target: DayStatus, cause: TransitionCause) -> DayStatus:
    if not can_transition(current, target, cause):
        current_label = current.value if current is not None else "none"
        raise ConflictError(
            "INVALID_STATUS_TRANSITION",
            f"Cannot move attendance day from {current_label} to {target.value} on {cause.value}.",
        )
    return target


def is_worked(status: DayStatus | None) -> bool:
    return status in WORKED_STATUSES
