from __future__ import annotations

import json
import logging
import sys
import unittest
from datetime import date
from decimal import Decimal

from attendance_payroll.logging_utils import JsonFormatter


def _record(message: str, **extra: object) -> logging.LogRecord:
    record = logging.LogRecord("attendance_payroll.payroll", logging.INFO, __file__, 10, message, (), None)
    record.__dict__.update(extra)
    return record


class JsonFormatterTests(unittest.TestCase):
    def test_extra_fields_are_emitted(self) -> None:
        line = JsonFormatter(service="AttendancePayroll").format(
            _record("payment_processed", staff_id=7, amount=Decimal("1250.50"), month_start=date(2026, 2, 1))
        )
        payload = json.loads(line)
        self.assertEqual(payload["message"], "payment_processed")
        self.assertEqual(payload["logger"], "attendance_payroll.payroll")
        self.assertEqual(payload["service"], "AttendancePayroll")
        self.assertEqual(payload["staff_id"], 7)
        self.assertEqual(payload["amount"], "1250.50")
        self.assertEqual(payload["month_start"], "2026-02-01")

    def test_standard_record_fields_are_left_out(self) -> None:
        payload = json.loads(JsonFormatter().format(_record("tick")))
        self.assertEqual(set(payload), {"ts", "level", "logger", "message"})

    def test_exception_is_formatted(self) -> None:
        try:
            raise RuntimeError("db down")
        except RuntimeError:
            record = logging.LogRecord(
                "attendance_payroll.reconciliation",
                logging.ERROR,
                __file__,
                20,
                "reconciliation_staff_failed",
                (),
                sys.exc_info(),
            )
        payload = json.loads(JsonFormatter().format(record))
        self.assertEqual(payload["level"], "ERROR")
        self.assertIn("RuntimeError: db down", payload["exception"])


if __name__ == "__main__":
    unittest.main()
