from __future__ import annotations

import unittest
from decimal import Decimal

import db_support  # noqa: F401

from attendance_payroll.models import DayStatus
from attendance_payroll.services.payroll_calc import (
    StaffPayrollBreakdown,
    day_amounts,
    exceeds_payable,
    hourly_rate,
    overtime_pay,
    payment_status,
    per_day_rate,
)


class PerDayRateTests(unittest.TestCase):
    def test_salary_split_over_days(self) -> None:
        self.assertEqual(
            per_day_rate(salary=Decimal("30000"), per_day_override=None, days_per_month=30),
            Decimal("1000.00"),
        )

    def test_rounds_half_up_to_cents(self) -> None:
        self.assertEqual(
            per_day_rate(salary=Decimal("1000"), per_day_override=None, days_per_month=30),
            Decimal("33.33"),
        )

    def test_override_wins(self) -> None:
        self.assertEqual(
            per_day_rate(salary=Decimal("30000"), per_day_override=Decimal("1200"), days_per_month=30),
            Decimal("1200.00"),
        )


class DayAmountTests(unittest.TestCase):
    def test_present_pays_full_day(self) -> None:
        self.assertEqual(day_amounts(DayStatus.LATE, day_rate=Decimal("1000")), (Decimal("1000.00"), Decimal("0.00")))

    def test_half_day_splits_rate(self) -> None:
        payable, deduction = day_amounts(DayStatus.HALF_DAY, day_rate=Decimal("33.33"))
        self.assertEqual(payable, Decimal("16.67"))
        self.assertEqual(deduction, Decimal("16.66"))

    def test_absent_deducts_full_day(self) -> None:
        self.assertEqual(day_amounts(DayStatus.ABSENT, day_rate=Decimal("1000")), (Decimal("0.00"), Decimal("1000.00")))

    def test_leave_depends_on_pay_flags(self) -> None:
        self.assertEqual(
            day_amounts(DayStatus.ON_LEAVE, day_rate=Decimal("1000")),
            (Decimal("1000.00"), Decimal("0.00")),
        )
        self.assertEqual(
            day_amounts(DayStatus.ON_LEAVE, day_rate=Decimal("1000"), leave_is_paid=False),
            (Decimal("0.00"), Decimal("1000.00")),
        )

    def test_weekend_is_neutral(self) -> None:
        self.assertEqual(day_amounts(DayStatus.WEEKEND, day_rate=Decimal("1000")), (Decimal("0.00"), Decimal("0.00")))


class PayrollTotalsTests(unittest.TestCase):
    def test_overtime_pay_uses_hourly_rate(self) -> None:
        rate = hourly_rate(day_rate=Decimal("1000"), hours_per_day=8)
        self.assertEqual(overtime_pay(minutes=90, hour_rate=rate), Decimal("187.50"))
        self.assertEqual(overtime_pay(minutes=0, hour_rate=rate), Decimal("0.00"))

    def test_net_payable(self) -> None:
        breakdown = StaffPayrollBreakdown(
            staff_id=1,
            full_name="Rahim Uddin",
            month="2026-02",
            salary=Decimal("30000.00"),
            per_day_rate=Decimal("1000.00"),
            deduction_total=Decimal("2000.00"),
            ot_amount=Decimal("187.50"),
        )
        self.assertEqual(breakdown.salary_payable, Decimal("28000.00"))
        self.assertEqual(breakdown.net_payable, Decimal("28187.50"))

    def test_salary_payable_never_negative(self) -> None:
        breakdown = StaffPayrollBreakdown(
            staff_id=1,
            full_name="Rahim Uddin",
            month="2026-02",
            salary=Decimal("1000.00"),
            per_day_rate=Decimal("1000.00"),
            deduction_total=Decimal("3000.00"),
        )
        self.assertEqual(breakdown.salary_payable, Decimal("0.00"))

    def test_payment_status(self) -> None:
        tolerance = Decimal("2")
        self.assertEqual(payment_status(paid=Decimal("0"), payable=Decimal("100"), tolerance=tolerance), "pending")
        self.assertEqual(payment_status(paid=Decimal("0"), payable=Decimal("0"), tolerance=tolerance), "paid")
        self.assertEqual(payment_status(paid=Decimal("99"), payable=Decimal("100"), tolerance=tolerance), "paid")
        self.assertEqual(payment_status(paid=Decimal("50"), payable=Decimal("100"), tolerance=tolerance), "partial")

    def test_exceeds_payable_honours_tolerance(self) -> None:
        tolerance = Decimal("2")
        self.assertFalse(
            exceeds_payable(already_paid=Decimal("90"), amount=Decimal("12"), payable=Decimal("100"), tolerance=tolerance)
        )
        self.assertTrue(
            exceeds_payable(already_paid=Decimal("90"), amount=Decimal("13"), payable=Decimal("100"), tolerance=tolerance)
        )


if __name__ == "__main__":
    unittest.main()
