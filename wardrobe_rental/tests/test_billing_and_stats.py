import sys
import unittest
from datetime import date
from pathlib import Path

from sqlalchemy.exc import IntegrityError

sys.path.insert(0, str(Path(__file__).resolve().parent))

import rental_harness  # noqa: E402,F401
from services.billing_service import compute_booking_totals, compute_receipt_totals, resolve_discount  # noqa: E402
from services.booking_service import generate_booking_code, is_invoice_collision, resolve_date_filter  # noqa: E402
from services.export_service import export_filename  # noqa: E402
from services.ledger_errors import ValidationError as LedgerValidationError  # noqa: E402
from services.stats_service import RevenueRow, aggregate_weekly_revenue, week_bounds  # noqa: E402


class BillingTests(unittest.TestCase):
    def test_rent_amount_applies_discount_then_charges(self):
        totals = compute_booking_totals([500, 300], discount=100, additional_charges=50, advance_payment=1000)
        self.assertEqual(totals.rentAmount, 750.0)
        self.assertEqual(totals.returnAmount, 250.0)
        self.assertEqual(totals.remainingPayment, -250.0)

    def test_return_amount_may_be_negative(self):
        totals = compute_booking_totals([900], advance_payment=100, security_deposit=200)
        self.assertEqual(totals.totalDeposit, 300.0)
        self.assertEqual(totals.returnAmount, -600.0)

    def test_discount_larger_than_total_floors_at_zero(self):
        totals = compute_booking_totals([200], discount=500, additional_charges=40)
        self.assertEqual(totals.rentAmount, 40.0)

    def test_percent_discount(self):
        self.assertEqual(resolve_discount(800, 25, "percent"), 200.0)
        self.assertEqual(resolve_discount(800, 25, "flat"), 25.0)

    def test_receipt_view_differs_from_booking_view(self):
        kwargs = dict(discount=100, additional_charges=50, advance_payment=300, security_deposit=200)
        receipt = compute_receipt_totals([500, 300], **kwargs)
        self.assertEqual(receipt.total, 950.0)
        self.assertEqual(receipt.remainingPayment, 650.0)
        self.assertEqual(receipt.returnAmount, 350.0)
        self.assertEqual(compute_receipt_totals([500, 300], **kwargs), receipt)
        self.assertNotEqual(compute_booking_totals([500, 300], **kwargs).returnAmount, receipt.returnAmount)


class WeeklyRevenueTests(unittest.TestCase):
    def test_week_bounds_start_on_monday(self):
        self.assertEqual(week_bounds(date(2026, 3, 5)), (date(2026, 3, 2), date(2026, 3, 8)))
        self.assertEqual(week_bounds(date(2026, 3, 8)), (date(2026, 3, 2), date(2026, 3, 8)))

    def test_same_booking_counts_once_per_week(self):
        rows = [
            RevenueRow(booking_id=1, delivery_date=date(2026, 3, 2), price=500, payment_method="Cash"),
            RevenueRow(booking_id=1, delivery_date=date(2026, 3, 6), price=500, payment_method="Cash"),
            RevenueRow(booking_id=2, delivery_date=date(2026, 3, 10), price=300, payment_method="Card"),
        ]
        report = aggregate_weekly_revenue(rows)
        self.assertEqual([week["bookings"] for week in report["weeklyStats"]], [1, 1])
        self.assertEqual(report["weeklyStats"][0]["revenue"], 1000.0)
        self.assertEqual(report["weeklyStats"][0]["week"], "02 Mar - 08 Mar 2026")
        self.assertEqual(report["total"]["totalBookingCount"], 2)
        self.assertEqual(report["total"]["revenue"], {"revenueInCash": 1000.0, "revenueInBank": 300.0})

    def test_empty_range(self):
        report = aggregate_weekly_revenue([])
        self.assertEqual(report["weeklyStats"], [])
        self.assertEqual(report["total"]["totalRevenue"], 0)


class HelperTests(unittest.TestCase):
    def test_booking_code_uses_name_fragment(self):
        code = generate_booking_code("Asha Verma", "bk")
        self.assertTrue(code.startswith("BKerma"))
        self.assertEqual(len(code), 10)
        self.assertTrue(generate_booking_code("Al").startswith("BKxxal"))

    def test_custom_filter_needs_both_bounds(self):
        with self.assertRaises(LedgerValidationError):
            resolve_date_filter("custom", date(2026, 1, 1), None)
        with self.assertRaises(LedgerValidationError):
            resolve_date_filter("next-week")
        self.assertEqual(
            resolve_date_filter("custom", date(2026, 1, 1), date(2026, 1, 3)),
            (date(2026, 1, 1), date(2026, 1, 3)),
        )
        self.assertIsNone(resolve_date_filter(None))

    def test_only_invoice_constraint_counts_as_collision(self):
        invoice = IntegrityError("INSERT", {}, Exception("UNIQUE constraint failed: Bookings.InvoiceNumber"))
        foreign_key = IntegrityError("INSERT", {}, Exception("FOREIGN KEY constraint failed"))
        self.assertTrue(is_invoice_collision(invoice))
        self.assertFalse(is_invoice_collision(foreign_key))

    def test_export_filename(self):
        self.assertEqual(export_filename(date(2026, 1, 1), None), "bookings_export_2026-01-01_to_all.xlsx")


if __name__ == "__main__":
    unittest.main()
