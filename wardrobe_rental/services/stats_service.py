from __future__ import annotations

from dataclasses import dataclass
from datetime import date, timedelta
from typing import Iterable

from sqlalchemy import select
from sqlalchemy.orm import Session

from models.rental_models import Booking, Product, ProductLock


CASH_METHOD = "Cash"
CARD_METHOD = "Card"


@dataclass(frozen=True)
class RevenueRow:
    booking_id: int
    delivery_date: date
    price: float
    payment_method: str | None = None


def week_bounds(day: date) -> tuple[date, date]:
    start = day - timedelta(days=day.weekday())
    return start, start + timedelta(days=6)


def week_label(start: date, end: date) -> str:
    return f"{start:%d %b} - {end:%d %b %Y}"


def load_revenue_rows(db: Session, start: date, end: date) -> list[RevenueRow]:
    stmt = (
        select(ProductLock.BookingID, ProductLock.DeliveryDate, Product.Price, Booking.AdvancePaymentMethod)
        .join(Booking, Booking.BookingID == ProductLock.BookingID)
        .join(Product, Product.ProductID == ProductLock.ProductID)
        .where(ProductLock.DeliveryDate >= start)
        .where(ProductLock.DeliveryDate <= end)
        .where(Booking.IsDeleted.is_(False))
    )
    return [
        RevenueRow(
            booking_id=int(booking_id),
            delivery_date=delivery_date,
            price=float(price or 0),
            payment_method=payment_method,
        )
        for booking_id, delivery_date, price, payment_method in db.execute(stmt).all()
    ]


def aggregate_weekly_revenue(rows: Iterable[RevenueRow]) -> dict:
    weeks: dict[date, dict] = {}
    all_bookings: set[int] = set()
    total_revenue = 0.0
    revenue_cash = 0.0
    revenue_card = 0.0

    for row in rows:
        start, end = week_bounds(row.delivery_date)
        bucket = weeks.setdefault(start, {"end": end, "revenue": 0.0, "bookings": set()})
        bucket["revenue"] += row.price
        bucket["bookings"].add(row.booking_id)

        all_bookings.add(row.booking_id)
        total_revenue += row.price
        if row.payment_method == CASH_METHOD:
            revenue_cash += row.price
        elif row.payment_method == CARD_METHOD:
            revenue_card += row.price

    weekly = []
    for start in sorted(weeks):
        bucket = weeks[start]
        weekly.append(
            {
                "week": week_label(start, bucket["end"]),
                "weekStart": start,
                "weekEnd": bucket["end"],
                "date": start,
                "revenue": round(bucket["revenue"], 2),
                "bookings": len(bucket["bookings"]),
            }
        )

    return {
        "weeklyStats": weekly,
        "total": {
            "totalRevenue": round(total_revenue, 2),
            "totalBookingCount": len(all_bookings),
            "revenue": {
                "revenueInCash": round(revenue_cash, 2),
                "revenueInBank": round(revenue_card, 2),
            },
        },
    }


def weekly_revenue_report(db: Session, start: date, end: date) -> dict:
    return aggregate_weekly_revenue(load_revenue_rows(db, start, end))
