from __future__ import annotations

import unittest

from db_support import add_staff, build_session_factory, utc
from fastapi.testclient import TestClient
from sqlalchemy import select

from attendance_payroll.db import get_db
from attendance_payroll.main import app
from attendance_payroll.models import AuditLog
from attendance_payroll.routers import admin
from attendance_payroll.services.reconciliation import ReconciliationScheduler


class ApiTests(unittest.TestCase):
    def setUp(self) -> None:
        self.session_factory = build_session_factory()

        def override_get_db():  # type: ignore[no-untyped-def]
            db = self.session_factory()
            try:
                yield db
            finally:
                db.close()

        app.dependency_overrides[get_db] = override_get_db
        self.client = TestClient(app)
        with self.session_factory() as db:
            self.staff_id = add_staff(db).id

    def tearDown(self) -> None:
        app.dependency_overrides.clear()

    def _create_shift(self) -> int:
        response = self.client.post(
            "/api/admin/shifts",
            json={"name": "Day", "time_zone": "UTC", "start_time": "09:00", "end_time": "17:00", "ot_enabled": True},
            headers={"X-Actor-Id": "hr-admin"},
        )
        self.assertEqual(response.status_code, 201, response.text)
        return response.json()["id"]

    def _assign(self, shift_id: int) -> None:
        response = self.client.post(
            "/api/admin/shift-assignments",
            json={"staff_ids": [self.staff_id], "shift_id": shift_id, "start_date": "2026-02-02"},
        )
        self.assertEqual(response.status_code, 200, response.text)

    def test_shift_creation_is_audited(self) -> None:
        shift_id = self._create_shift()
        with self.session_factory() as db:
            entry = db.scalars(select(AuditLog).where(AuditLog.action == "SHIFT_CREATED")).one()
        self.assertEqual(entry.actor_id, "hr-admin")
        self.assertEqual(entry.entity_id, str(shift_id))

    def test_invalid_shift_config_uses_error_envelope(self) -> None:
        response = self.client.post(
            "/api/admin/shifts",
            json={
                "name": "Broken",
                "time_zone": "UTC",
                "start_time": "09:00",
                "end_time": "17:00",
                "grace_period_minutes": 30,
                "late_after_minutes": 10,
            },
        )
        self.assertEqual(response.status_code, 422)
        self.assertEqual(response.json()["error"]["code"], "INVALID_SHIFT_CONFIG")
        self.assertIn("X-Request-Id", response.headers)

    def test_check_in_and_out(self) -> None:
        self._assign(self._create_shift())
        response = self.client.post(
            f"/api/staff/{self.staff_id}/check-in",
            json={"at": "2026-02-02T09:25:00Z"},
        )
        self.assertEqual(response.status_code, 200, response.text)
        self.assertEqual(response.json()["status"], "late")
        self.assertEqual(response.json()["late_minutes"], 15)

        response = self.client.post(
            f"/api/staff/{self.staff_id}/check-out",
            json={"at": "2026-02-02T17:00:00Z"},
        )
        self.assertEqual(response.status_code, 200, response.text)
        self.assertEqual(response.json()["total_minutes"], 455)

    def test_check_out_without_check_in_is_conflict(self) -> None:
        self._assign(self._create_shift())
        response = self.client.post(
            f"/api/staff/{self.staff_id}/check-out",
            json={"at": "2026-02-02T17:00:00Z"},
        )
        self.assertEqual(response.status_code, 409)
        self.assertEqual(response.json()["error"]["code"], "NO_OPEN_CHECK_IN")

    def test_unknown_staff(self) -> None:
        response = self.client.post("/api/staff/9999/check-in", json={})
        self.assertEqual(response.status_code, 404)
        self.assertEqual(response.json()["error"]["code"], "STAFF_NOT_FOUND")

    def test_monthly_stats_validates_month(self) -> None:
        response = self.client.get(f"/api/staff/{self.staff_id}/attendance/monthly-stats", params={"month": "2026-2"})
        self.assertEqual(response.status_code, 422)
        self.assertEqual(response.json()["error"]["code"], "VALIDATION_ERROR")

    def test_locked_month_blocks_payment(self) -> None:
        response = self.client.post("/api/admin/payroll/locks/2026-02")
        self.assertEqual(response.status_code, 201, response.text)
        self.assertTrue(self.client.get("/api/admin/payroll/locks/2026-02").json()["is_locked"])

        response = self.client.post(
            "/api/admin/payroll/process",
            json={"staff_id": self.staff_id, "month": "2026-02", "amount": "1000"},
        )
        self.assertEqual(response.status_code, 409)
        self.assertEqual(response.json()["error"]["code"], "MONTH_LOCKED")

    def test_payment_and_undo(self) -> None:
        response = self.client.post(
            "/api/admin/payroll/process",
            json={"staff_id": self.staff_id, "month": "2026-02", "amount": "1000"},
        )
        self.assertEqual(response.status_code, 200, response.text)
        self.assertEqual(float(response.json()["total_paid"]), 1000.0)

        response = self.client.post(
            "/api/admin/payroll/undo",
            json={"staff_id": self.staff_id, "month": "2026-02"},
        )
        self.assertEqual(response.status_code, 200, response.text)
        self.assertEqual(float(response.json()["amount"]), 1000.0)

        preview = self.client.get("/api/admin/payroll/preview", params={"month": "2026-02"}).json()
        self.assertEqual(float(preview[0]["salary_paid"]), 0.0)

    def test_manual_reconciliation_run(self) -> None:
        self._assign(self._create_shift())
        scheduler = ReconciliationScheduler(session_factory=self.session_factory, clock=lambda: utc(2026, 2, 2, 13, 0))
        app.dependency_overrides[admin.get_reconciliation_scheduler] = lambda: scheduler

        response = self.client.post("/api/admin/reconciliation/run")
        self.assertEqual(response.status_code, 200, response.text)
        body = response.json()
        self.assertEqual(body["days_created"], 1)
        self.assertEqual(body["staff_failed"], [])

        notifications = self.client.get("/api/admin/notifications").json()
        self.assertEqual([item["kind"] for item in notifications], ["attendance_auto_absent"])

    def test_health(self) -> None:
        response = self.client.get("/health")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["status"], "ok")
        self.assertFalse(response.json()["reconciliation_worker"]["running"])


if __name__ == "__main__":
    unittest.main()
