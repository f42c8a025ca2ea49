#!/usr/bin/env python3
"""Database overview and integrity checks for the wardrobe rental ledger."""

from __future__ import annotations

import argparse
import os
import sys
from dataclasses import dataclass
from typing import Iterable

from sqlalchemy import create_engine, inspect, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError


EXPECTED_TABLES = [
    "Organizations",
    "Products",
    "Bookings",
    "ProductLocks",
    "Users",
    "AuditLogs",
]

EXPECTED_COLUMNS: dict[str, list[str]] = {
    "Products": ["ProductID", "Name", "SKU", "Price", "Status", "IsDeleted"],
    "Bookings": [
        "BookingID",
        "BookingCode",
        "CustomerName",
        "PhoneNumberPrimary",
        "InvoiceNumber",
        "RentAmount",
        "TotalDeposit",
        "ReturnAmount",
        "IsDeleted",
        "CreatedDate",
    ],
    "ProductLocks": ["ProductLockID", "BookingID", "ProductID", "DeliveryDate", "ReturnDate"],
    "Users": ["UserID", "Email", "PasswordHash", "PasswordSalt", "Role", "IsActive"],
    "AuditLogs": ["AuditID", "EntityType", "EntityID", "Action", "Details", "UserID", "CreatedAt"],
}


@dataclass
class CheckResult:
    name: str
    ok: bool
    detail: str


def _print_section(title: str) -> None:
    print(f"\n=== {title} ===")


def _get_engine(db_url: str) -> Engine:
    return create_engine(db_url, pool_pre_ping=True, future=True)


def _scalar(engine: Engine, sql: str, params: dict | None = None):
    with engine.connect() as conn:
        return conn.execute(text(sql), params or {}).scalar()


def _rows(engine: Engine, sql: str, params: dict | None = None):
    with engine.connect() as conn:
        return conn.execute(text(sql), params or {}).all()


def _run_existence_checks(tables: set[str]) -> list[CheckResult]:
    return [
        CheckResult(f"table:{table}", table in tables, "present" if table in tables else "missing")
        for table in EXPECTED_TABLES
    ]


def _run_column_checks(engine: Engine, tables: set[str]) -> list[CheckResult]:
    inspector = inspect(engine)
    results: list[CheckResult] = []
    for table, expected in EXPECTED_COLUMNS.items():
        if table not in tables:
            results.append(CheckResult(f"columns:{table}", False, "table missing"))
            continue
        actual = {column["name"] for column in inspector.get_columns(table)}
        missing = [name for name in expected if name not in actual]
        results.append(
            CheckResult(
                f"columns:{table}",
                not missing,
                "ok" if not missing else f"missing={','.join(missing)}",
            )
        )
    return results


def _count_check(engine: Engine, name: str, sql: str) -> CheckResult:
    count = int(_scalar(engine, sql) or 0)
    return CheckResult(name, count == 0, f"count={count}")


def _run_integrity_checks(engine: Engine, tables: set[str]) -> list[CheckResult]:
    checks: list[CheckResult] = []

    if {"ProductLocks", "Bookings"} <= tables:
        checks.append(
            _count_check(
                engine,
                "productlocks:overlapping_windows",
                """
                SELECT COUNT(*)
                FROM ProductLocks a
                JOIN ProductLocks b
                  ON a.ProductID = b.ProductID
                 AND a.ProductLockID < b.ProductLockID
                 AND a.DeliveryDate <= b.ReturnDate
                 AND a.ReturnDate >= b.DeliveryDate
                JOIN Bookings ba ON ba.BookingID = a.BookingID
                JOIN Bookings bb ON bb.BookingID = b.BookingID
                WHERE ba.IsDeleted = 0 AND bb.IsDeleted = 0
                """,
            )
        )
        checks.append(
            _count_check(
                engine,
                "productlocks:reversed_window",
                "SELECT COUNT(*) FROM ProductLocks WHERE DeliveryDate > ReturnDate",
            )
        )
        checks.append(
            _count_check(
                engine,
                "productlocks:orphan_bookingid",
                """
                SELECT COUNT(*)
                FROM ProductLocks pl
                LEFT JOIN Bookings b ON b.BookingID = pl.BookingID
                WHERE b.BookingID IS NULL
                """,
            )
        )

    if "Bookings" in tables:
        checks.append(
            _count_check(
                engine,
                "bookings:duplicate_invoice_number",
                """
                SELECT COUNT(*)
                FROM (
                    SELECT InvoiceNumber
                    FROM Bookings
                    GROUP BY InvoiceNumber
                    HAVING COUNT(*) > 1
                ) d
                """,
            )
        )

    return checks


def _print_results(title: str, rows: Iterable[CheckResult]) -> None:
    _print_section(title)
    for row in rows:
        status = "OK" if row.ok else "FAIL"
        print(f"[{status}] {row.name} :: {row.detail}")


def _print_row_counts(engine: Engine, tables: set[str]) -> None:
    _print_section("Row Counts")
    for table in EXPECTED_TABLES:
        if table not in tables:
            print(f"{table}: missing")
            continue
        count = _scalar(engine, f"SELECT COUNT(*) FROM {table}")
        print(f"{table}: {int(count or 0)}")


def _print_index_summary(engine: Engine, tables: set[str]) -> None:
    _print_section("Index Summary (key tables)")
    inspector = inspect(engine)
    for table in ["Bookings", "ProductLocks", "Users"]:
        if table not in tables:
            print(f"{table}: missing")
            continue
        print(f"{table}:")
        for index in inspector.get_indexes(table):
            print(f"  - {index['name']} unique={bool(index.get('unique'))} cols={','.join(index['column_names'])}")
        for constraint in inspector.get_unique_constraints(table):
            print(f"  - {constraint['name']} unique=True cols={','.join(constraint['column_names'])}")


def _print_samples(engine: Engine, tables: set[str], sample_size: int) -> None:
    _print_section("Sample Values")
    sample_size = max(1, sample_size)

    if "Bookings" in tables:
        rows = _rows(
            engine,
            """
            SELECT BookingID, InvoiceNumber, BookingCode, CustomerName, RentAmount, IsDeleted
            FROM Bookings
            ORDER BY BookingID DESC
            LIMIT :n
            """,
            {"n": sample_size},
        )
        print("Bookings (recent):")
        for row in rows:
            print(f"  - {tuple(row)}")

    if "AuditLogs" in tables:
        rows = _rows(
            engine,
            """
            SELECT AuditID, EntityType, Action, UserID, CreatedAt
            FROM AuditLogs
            ORDER BY AuditID DESC
            LIMIT :n
            """,
            {"n": sample_size},
        )
        print("AuditLogs (recent):")
        for row in rows:
            print(f"  - {tuple(row)}")


def main() -> int:
    parser = argparse.ArgumentParser(description="Wardrobe rental DB overview")
    parser.add_argument("--db-url", default=os.environ.get("RENTAL_DB_URL", ""))
    parser.add_argument("--samples", type=int, default=5)
    args = parser.parse_args()

    db_url = (args.db_url or "").strip()
    if not db_url:
        print("RENTAL_DB_URL is not set. Provide --db-url or export env first.")
        return 2

    try:
        engine = _get_engine(db_url)
        # Force a quick connectivity check first.
        _scalar(engine, "SELECT 1")
    except SQLAlchemyError as exc:
        print(f"Could not connect to DB: {exc}")
        return 3

    tables = set(inspect(engine).get_table_names())
    _print_results("Table Existence", _run_existence_checks(tables))
    _print_results("Column Checks", _run_column_checks(engine, tables))
    _print_results("Integrity Checks", _run_integrity_checks(engine, tables))
    _print_row_counts(engine, tables)
    _print_index_summary(engine, tables)
    _print_samples(engine, tables, args.samples)
    return 0


if __name__ == "__main__":
    sys.exit(main())
