import sys
import unittest
from pathlib import Path

from sqlalchemy import func, select

sys.path.insert(0, str(Path(__file__).resolve().parent))

from rental_harness import RentalApiTestCase, day  # noqa: E402
from models.rental_models import Booking, ProductLock  # noqa: E402


class BookingLedgerTests(RentalApiTestCase):
    def setUp(self):
        super().setUp()
        self.lehenga = self.add_product("Red Lehenga", "LH-001", 500)
        self.sherwani = self.add_product("Ivory Sherwani", "SH-001", 300)

    def _lock_count(self, product_id=None):
        stmt = select(func.count(ProductLock.ProductLockID))
        if product_id is not None:
            stmt = stmt.where(ProductLock.ProductID == product_id)
        with self.SessionLocal() as db:
            return db.execute(stmt).scalar()

    def test_overlapping_request_is_rejected(self):
        first = self.book([(self.lehenga, "2025-03-10", "2025-03-12")])
        self.assertEqual(first.status_code, 200, first.text)

        clash = self.book([(self.lehenga, "2025-03-12", "2025-03-14")])
        self.assertEqual(clash.status_code, 409)
        conflicts = clash.json()["detail"]["conflicts"]
        self.assertEqual(conflicts[0]["productID"], self.lehenga)
        self.assertEqual(conflicts[0]["reason"], "overlap")

    def test_adjacent_window_is_accepted(self):
        self.assertEqual(self.book([(self.lehenga, "2025-03-10", "2025-03-12")]).status_code, 200)
        adjacent = self.book([(self.lehenga, "2025-03-13", "2025-03-15")])
        self.assertEqual(adjacent.status_code, 200, adjacent.text)

    def test_creation_is_all_or_nothing(self):
        self.assertEqual(self.book([(self.sherwani, "2025-04-01", "2025-04-03")]).status_code, 200)

        response = self.book(
            [
                (self.lehenga, "2025-04-02", "2025-04-02"),
                (self.sherwani, "2025-04-02", "2025-04-04"),
            ]
        )
        self.assertEqual(response.status_code, 409)
        self.assertEqual(self._lock_count(self.lehenga), 0)
        with self.SessionLocal() as db:
            self.assertEqual(db.execute(select(func.count(Booking.BookingID))).scalar(), 1)

    def test_unavailable_status_blocks_booking(self):
        laundry = self.add_product("Blue Gown", "GW-001", 400, status="in laundry")
        response = self.book([(laundry, "2025-05-01", "2025-05-02")])
        self.assertEqual(response.status_code, 409)
        self.assertEqual(response.json()["detail"]["conflicts"][0]["reason"], "unavailable")

    def test_invoice_numbers_are_sequential(self):
        invoices = []
        for offset in range(4):
            start = f"2025-06-{10 + offset * 3:02d}"
            response = self.book([(self.lehenga, start, start)])
            self.assertEqual(response.status_code, 200, response.text)
            invoices.append(response.json()["data"]["invoiceNumber"])
        self.assertEqual(invoices, [1, 2, 3, 4])

    def test_create_computes_rent_and_return_amount(self):
        response = self.book(
            [
                (self.lehenga, "2025-07-01", "2025-07-02"),
                (self.sherwani, "2025-07-01", "2025-07-02"),
            ],
            discount=100,
            additionalCharges=50,
            advancePayment=1000,
            securityDeposit=0,
        )
        self.assertEqual(response.status_code, 200, response.text)
        data = response.json()["data"]
        self.assertEqual(data["rentAmount"], 750.0)
        self.assertEqual(data["totalDeposit"], 1000.0)
        self.assertEqual(data["returnAmount"], 250.0)
        self.assertEqual(len(data["productLocks"]), 2)
        self.assertTrue(data["bookingCode"].startswith("BK"))

    def test_missing_customer_name_is_rejected(self):
        response = self.book([(self.lehenga, "2025-07-01", "2025-07-02")], customerName="   ")
        self.assertEqual(response.status_code, 400)

    def test_unknown_product_on_create_is_not_found(self):
        response = self.book([(9999, "2025-07-01", "2025-07-02")])
        self.assertEqual(response.status_code, 404)

    def test_reversed_window_is_rejected(self):
        response = self.book([(self.lehenga, "2025-07-05", "2025-07-01")])
        self.assertEqual(response.status_code, 400)

    def test_notes_only_update_leaves_other_fields(self):
        created = self.book(
            [(self.lehenga, "2025-08-01", "2025-08-03")],
            discount=50,
            advancePayment=200,
        ).json()["data"]

        response = self.client.put(
            f"/api/bookings/{created['bookingID']}",
            json={"notes": "Steam before pickup"},
            headers=self.headers,
        )
        self.assertEqual(response.status_code, 200, response.text)
        updated = response.json()["data"]
        self.assertEqual(updated["notes"], "Steam before pickup")
        for key in ("rentAmount", "returnAmount", "totalDeposit", "customerName", "discount", "invoiceNumber"):
            self.assertEqual(updated[key], created[key], key)
        self.assertEqual(
            [(lock["productLockID"], lock["deliveryDate"], lock["returnDate"]) for lock in updated["productLocks"]],
            [(lock["productLockID"], lock["deliveryDate"], lock["returnDate"]) for lock in created["productLocks"]],
        )

    def test_update_can_extend_own_lock_without_self_conflict(self):
        created = self.book([(self.lehenga, "2025-08-10", "2025-08-12")]).json()["data"]
        lock_id = created["productLocks"][0]["productLockID"]

        response = self.client.put(
            f"/api/bookings/{created['bookingID']}",
            json={"products": [{"productID": self.lehenga, "productLockID": lock_id, "returnDate": "2025-08-14"}]},
            headers=self.headers,
        )
        self.assertEqual(response.status_code, 200, response.text)
        locks = response.json()["data"]["productLocks"]
        self.assertEqual(len(locks), 1)
        self.assertEqual(locks[0]["returnDate"], "2025-08-14")
        self.assertEqual(locks[0]["deliveryDate"], "2025-08-10")

    def test_update_adding_conflicting_product_changes_nothing(self):
        self.book([(self.sherwani, "2025-09-01", "2025-09-05")])
        created = self.book([(self.lehenga, "2025-09-01", "2025-09-05")]).json()["data"]

        response = self.client.put(
            f"/api/bookings/{created['bookingID']}",
            json={
                "notes": "add sherwani",
                "products": [{"productID": self.sherwani, "deliveryDate": "2025-09-03", "returnDate": "2025-09-04"}],
            },
            headers=self.headers,
        )
        self.assertEqual(response.status_code, 409)
        current = self.client.get(f"/api/bookings/{created['bookingID']}", headers=self.headers).json()["data"]
        self.assertEqual(current["notes"], created["notes"])
        self.assertEqual(len(current["productLocks"]), 1)

    def test_update_cannot_move_lock_onto_own_sibling_lock(self):
        created = self.book(
            [
                (self.lehenga, "2025-03-01", "2025-03-02"),
                (self.lehenga, "2025-03-10", "2025-03-12"),
            ]
        ).json()["data"]
        second_lock = created["productLocks"][1]["productLockID"]

        response = self.client.put(
            f"/api/bookings/{created['bookingID']}",
            json={
                "products": [
                    {
                        "productID": self.lehenga,
                        "productLockID": second_lock,
                        "deliveryDate": "2025-03-01",
                        "returnDate": "2025-03-11",
                    }
                ]
            },
            headers=self.headers,
        )
        self.assertEqual(response.status_code, 409)
        self.assertEqual(response.json()["detail"]["conflicts"][0]["reason"], "overlap")
        current = self.client.get(f"/api/bookings/{created['bookingID']}", headers=self.headers).json()["data"]
        self.assertEqual(
            [(lock["deliveryDate"], lock["returnDate"]) for lock in current["productLocks"]],
            [("2025-03-01", "2025-03-02"), ("2025-03-10", "2025-03-12")],
        )

    def test_update_mixes_new_and_moved_lines(self):
        created = self.book([(self.lehenga, "2025-03-20", "2025-03-22")]).json()["data"]
        first_lock = created["productLocks"][0]["productLockID"]

        response = self.client.put(
            f"/api/bookings/{created['bookingID']}",
            json={
                "products": [
                    {"productID": self.sherwani, "deliveryDate": "2025-03-21", "returnDate": "2025-03-21"},
                    {"productID": self.lehenga, "productLockID": first_lock, "returnDate": "2025-03-23"},
                ]
            },
            headers=self.headers,
        )
        self.assertEqual(response.status_code, 200, response.text)

        again = self.client.put(
            f"/api/bookings/{created['bookingID']}",
            json={"products": [{"productID": self.sherwani, "deliveryDate": "2025-03-21", "returnDate": "2025-03-24"}]},
            headers=self.headers,
        )
        self.assertEqual(again.status_code, 200, again.text)
        self.assertEqual(len(again.json()["data"]["productLocks"]), 2)

    def test_update_adding_second_lock_over_own_lock_is_rejected(self):
        created = self.book([(self.lehenga, "2025-04-10", "2025-04-12")]).json()["data"]
        first_lock = created["productLocks"][0]["productLockID"]

        response = self.client.put(
            f"/api/bookings/{created['bookingID']}",
            json={
                "products": [
                    {"productID": self.lehenga, "productLockID": first_lock},
                    {"productID": self.lehenga, "deliveryDate": "2025-04-11", "returnDate": "2025-04-13"},
                ]
            },
            headers=self.headers,
        )
        self.assertEqual(response.status_code, 409)
        self.assertEqual(self._lock_count(self.lehenga), 1)

    def test_product_sent_to_laundry_blocks_line_changes_only(self):
        created = self.book([(self.lehenga, "2025-05-10", "2025-05-12")]).json()["data"]
        lock_id = created["productLocks"][0]["productLockID"]
        laundry = self.client.put(
            f"/api/products/{self.lehenga}",
            json={"status": "in laundry"},
            headers=self.headers,
        )
        self.assertEqual(laundry.status_code, 200)

        notes_only = self.client.put(
            f"/api/bookings/{created['bookingID']}",
            json={"notes": "dry clean first"},
            headers=self.headers,
        )
        self.assertEqual(notes_only.status_code, 200)
        self.assertEqual(len(notes_only.json()["data"]["productLocks"]), 1)

        keep_line = self.client.put(
            f"/api/bookings/{created['bookingID']}",
            json={"products": [{"productID": self.lehenga, "productLockID": lock_id, "returnDate": "2025-05-13"}]},
            headers=self.headers,
        )
        self.assertEqual(keep_line.status_code, 409)
        self.assertEqual(keep_line.json()["detail"]["conflicts"][0]["reason"], "unavailable")
        current = self.client.get(f"/api/bookings/{created['bookingID']}", headers=self.headers).json()["data"]
        self.assertEqual(current["productLocks"][0]["returnDate"], "2025-05-12")

    def test_unknown_organization_is_rejected(self):
        response = self.book([(self.lehenga, "2025-05-20", "2025-05-21")], organizationID=999)
        self.assertEqual(response.status_code, 400)
        self.assertEqual(self._lock_count(), 0)

    def test_remove_line_item_frees_product(self):
        created = self.book(
            [
                (self.lehenga, "2025-10-01", "2025-10-02"),
                (self.sherwani, "2025-10-01", "2025-10-02"),
            ]
        ).json()["data"]
        lock_id = next(lock["productLockID"] for lock in created["productLocks"] if lock["productID"] == self.sherwani)

        removed = self.client.delete(f"/api/product-locks/{lock_id}", headers=self.headers)
        self.assertEqual(removed.status_code, 200)
        self.assertEqual(self.client.delete(f"/api/product-locks/{lock_id}", headers=self.headers).status_code, 404)
        self.assertEqual(self.book([(self.sherwani, "2025-10-01", "2025-10-02")]).status_code, 200)

    def test_delete_booking_removes_its_locks(self):
        created = self.book([(self.lehenga, "2025-11-01", "2025-11-03")]).json()["data"]

        response = self.client.delete(f"/api/bookings/{created['bookingID']}", headers=self.headers)
        self.assertEqual(response.status_code, 200)
        self.assertEqual(self._lock_count(), 0)
        self.assertEqual(self.client.get(f"/api/products/{self.lehenga}/locks", headers=self.headers).status_code, 404)
        self.assertEqual(self.client.get(f"/api/bookings/{created['bookingID']}", headers=self.headers).status_code, 404)

    def test_soft_delete_frees_products(self):
        created = self.book([(self.lehenga, "2025-11-10", "2025-11-12")]).json()["data"]

        response = self.client.delete(f"/api/bookings/{created['bookingID']}?soft=true", headers=self.headers)
        self.assertEqual(response.status_code, 200)
        self.assertEqual(self._lock_count(self.lehenga), 1)
        self.assertEqual(self.book([(self.lehenga, "2025-11-11", "2025-11-11")]).status_code, 200)

    def test_availability_reports_overlap(self):
        self.book([(self.lehenga, "2025-12-01", "2025-12-04")])
        busy = self.client.get(
            f"/api/bookings/availability?productID={self.lehenga}&deliveryDate=2025-12-04&returnDate=2025-12-06",
            headers=self.headers,
        ).json()
        free = self.client.get(
            f"/api/bookings/availability?productID={self.lehenga}&deliveryDate=2025-12-05&returnDate=2025-12-06",
            headers=self.headers,
        ).json()
        self.assertFalse(busy["available"])
        self.assertEqual(busy["reason"], "overlap")
        self.assertTrue(free["available"])

    def test_totals_recompute_is_stable(self):
        created = self.book(
            [(self.lehenga, "2026-01-05", "2026-01-06")],
            discount=10,
            discountType="percent",
            securityDeposit=200,
            advancePayment=100,
        ).json()["data"]
        url = f"/api/bookings/{created['bookingID']}/totals"
        first = self.client.get(url, headers=self.headers).json()
        second = self.client.get(url, headers=self.headers).json()
        self.assertEqual(first, second)
        self.assertEqual(first["bookingTotals"]["rentAmount"], 450.0)
        self.assertEqual(first["receiptTotals"]["total"], 650.0)
        self.assertEqual(first["receiptTotals"]["remainingPayment"], 550.0)

    def test_e_receipt_is_public(self):
        created = self.book([(self.lehenga, "2026-01-10", "2026-01-11")]).json()["data"]
        self.client.post("/api/auth/logout", headers=self.headers)
        response = self.client.get(f"/api/bookings/{created['bookingID']}/e-receipt")
        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertEqual(body["data"]["invoiceNumber"], created["invoiceNumber"])
        self.assertEqual(body["organization"]["organizationName"], "Drape House")

    def test_delivery_filter_custom_window(self):
        self.book([(self.lehenga, "2026-02-02", "2026-02-04")])
        self.book([(self.sherwani, "2026-02-20", "2026-02-21")])
        response = self.client.get(
            "/api/bookings/delivery?filter=custom&start=2026-02-01&end=2026-02-05",
            headers=self.headers,
        )
        self.assertEqual(response.status_code, 200)
        rows = response.json()["data"]
        self.assertEqual(len(rows), 1)
        self.assertEqual(rows[0]["productLocks"][0]["productID"], self.lehenga)

    def test_weekly_stats_count_distinct_bookings(self):
        self.book(
            [
                (self.lehenga, "2026-03-02", "2026-03-02"),
                (self.lehenga, "2026-03-04", "2026-03-05"),
            ],
            advancePaymentMethod="Cash",
        )
        response = self.client.get("/api/bookings/stats?from=2026-03-01&to=2026-03-31", headers=self.headers)
        self.assertEqual(response.status_code, 200, response.text)
        body = response.json()
        self.assertEqual(len(body["weeklyStats"]), 1)
        self.assertEqual(body["weeklyStats"][0]["bookings"], 1)
        self.assertEqual(body["weeklyStats"][0]["revenue"], 1000.0)
        self.assertEqual(body["total"]["revenue"]["revenueInCash"], 1000.0)

    def test_incomplete_date_filters_are_rejected(self):
        self.book([(self.lehenga, "2026-02-02", "2026-02-04")])
        for url in (
            "/api/bookings/delivery?filter=custom",
            "/api/bookings/return?filter=custom&start=2026-02-01",
            "/api/bookings?deliveryDate=yesterday",
            "/api/bookings/delivery?filter=custom&start=2026-02-05&end=2026-02-01",
        ):
            response = self.client.get(url, headers=self.headers)
            self.assertEqual(response.status_code, 400, url)

    def test_stats_requires_both_dates(self):
        response = self.client.get("/api/bookings/stats?from=2026-03-01", headers=self.headers)
        self.assertEqual(response.status_code, 400)

    def test_export_returns_workbook(self):
        self.book([(self.lehenga, "2026-04-01", "2026-04-02")], securityDeposit=300)
        response = self.client.get("/api/bookings/export", headers=self.headers)
        self.assertEqual(response.status_code, 200)
        self.assertIn("bookings_export_all_to_all.xlsx", response.headers["content-disposition"])
        self.assertTrue(response.content.startswith(b"PK"))


if __name__ == "__main__":
    unittest.main()
