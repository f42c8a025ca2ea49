"""Booking money math.

Two views exist and are kept apart on purpose: the booking view feeds the
stored RentAmount/TotalDeposit/ReturnAmount columns, the receipt view is what
the printed e-receipt shows. They disagree on "return amount".
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Iterable


@dataclass(frozen=True)
class BookingTotals:
    productTotal: float
    discountAmount: float
    rentAmount: float
    totalDeposit: float
    returnAmount: float
    remainingPayment: float

    def as_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True)
class ReceiptTotals:
    productTotal: float
    total: float
    remainingPayment: float
    returnAmount: float

    def as_dict(self) -> dict:
        return asdict(self)


def _money(value) -> float:
    return round(float(value or 0), 2)


def resolve_discount(product_total: float, discount: float, discount_type: str | None = "flat") -> float:
    if (discount_type or "flat").lower() == "percent":
        return _money(product_total * float(discount or 0) / 100)
    return _money(discount)


def compute_booking_totals(
    prices: Iterable,
    *,
    discount: float = 0,
    discount_type: str | None = "flat",
    additional_charges: float = 0,
    advance_payment: float = 0,
    security_deposit: float = 0,
) -> BookingTotals:
    product_total = _money(sum(float(price or 0) for price in prices))
    discount_amount = resolve_discount(product_total, discount, discount_type)
    rent_amount = _money(max(product_total - discount_amount, 0) + float(additional_charges or 0))
    total_deposit = _money(float(advance_payment or 0) + float(security_deposit or 0))
    # Negative means the customer still owes money.
    return_amount = _money(total_deposit - rent_amount)
    return BookingTotals(
        productTotal=product_total,
        discountAmount=discount_amount,
        rentAmount=rent_amount,
        totalDeposit=total_deposit,
        returnAmount=return_amount,
        remainingPayment=_money(rent_amount - total_deposit),
    )


def compute_receipt_totals(
    prices: Iterable,
    *,
    discount: float = 0,
    discount_type: str | None = "flat",
    additional_charges: float = 0,
    advance_payment: float = 0,
    security_deposit: float = 0,
) -> ReceiptTotals:
    product_total = _money(sum(float(price or 0) for price in prices))
    discount_amount = resolve_discount(product_total, discount, discount_type)
    total = _money(product_total + float(additional_charges or 0) + float(security_deposit or 0) - discount_amount)
    remaining = _money(total - float(advance_payment or 0))
    return ReceiptTotals(
        productTotal=product_total,
        total=total,
        remainingPayment=remaining,
        returnAmount=_money(remaining - float(advance_payment or 0)),
    )


def booking_totals_for(booking) -> BookingTotals:
    return compute_booking_totals(
        [lock.Product.Price if lock.Product else 0 for lock in booking.ProductLocks],
        discount=booking.Discount,
        discount_type=booking.DiscountType,
        additional_charges=booking.AdditionalCharges,
        advance_payment=booking.AdvancePayment,
        security_deposit=booking.SecurityDeposit,
    )


def receipt_totals_for(booking) -> ReceiptTotals:
    return compute_receipt_totals(
        [lock.Product.Price if lock.Product else 0 for lock in booking.ProductLocks],
        discount=booking.Discount,
        discount_type=booking.DiscountType,
        additional_charges=booking.AdditionalCharges,
        advance_payment=booking.AdvancePayment,
        security_deposit=booking.SecurityDeposit,
    )
