from __future__ import annotations

import logging
from datetime import date
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from attendance_payroll.db import insert_for
from attendance_payroll.models import Notification

logger = logging.getLogger("attendance_payroll.notifications")

KIND_AUTO_ABSENT = "attendance_auto_absent"
KIND_MISSED_CHECKOUT = "attendance_missed_checkout"
KIND_OVERTIME_APPROVAL_NEEDED = "overtime_approval_needed"
KIND_OVERTIME_AUTO_CLOSED = "overtime_auto_closed"
KIND_LEAVE_EXPIRED = "leave_application_expired"


def _build_idempotency_key(*, kind: str, staff_id: int | None, local_day: date, suffix: str | None = None) -> str:
    key = f"{kind}:{staff_id if staff_id is not None else '-'}:{local_day.isoformat()}"
    if suffix:
        key = f"{key}:{suffix}"
    return key


def notify(
    db: Session,
    *,
    kind: str,
    staff_id: int | None,
    local_day: date,
    payload: dict[str, Any],
    suffix: str | None = None,
) -> bool:
    """Queue a notification without ever failing the caller.

    Runs in a savepoint so a broken sink only loses the notification, never the
    attendance or payroll write around it. Returns True when a new row was queued.
    """
    idempotency_key = _build_idempotency_key(kind=kind, staff_id=staff_id, local_day=local_day, suffix=suffix)
    try:
        with db.begin_nested():
            result = db.execute(
                insert_for(db, Notification)
                .values(
                    staff_id=staff_id,
                    kind=kind,
                    payload={key: str(value) for key, value in payload.items()},
                    status="PENDING",
                    idempotency_key=idempotency_key,
                )
                .on_conflict_do_nothing(index_elements=["idempotency_key"])
            )
    except Exception:
        logger.exception(
            "notification_create_failed",
            extra={"kind": kind, "staff_id": staff_id, "idempotency_key": idempotency_key},
        )
        return False

    queued = result.rowcount == 1
    if queued:
        logger.info(
            "notification_queued",
            extra={"kind": kind, "staff_id": staff_id, "idempotency_key": idempotency_key},
        )
    return queued


def list_pending_notifications(db: Session, *, limit: int = 100) -> list[Notification]:
    return list(
        db.scalars(
            select(Notification)
            .where(Notification.status == "PENDING")
            .order_by(Notification.created_at.asc(), Notification.id.asc())
            .limit(limit)
        ).all()
    )
