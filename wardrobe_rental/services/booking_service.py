from __future__ import annotations

import logging
import secrets
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from zoneinfo import ZoneInfo

from sqlalchemy import and_, func, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, selectinload

from models.rental_models import Booking, Organization, Product, ProductLock
from schemas.bookings import CreateBookingDto, UpdateBookingDto
from services.billing_service import compute_booking_totals
from services.ledger_errors import ConflictError, InternalError, LedgerError, NotFoundError, ValidationError


LOGGER = logging.getLogger("wardrobe_rental.bookings")

BOOKING_CODE_FILLER = "x"
AVAILABLE_STATUS = "available"

UPDATABLE_FIELDS = {
    "customerName": "CustomerName",
    "phoneNumberPrimary": "PhoneNumberPrimary",
    "phoneNumberSecondary": "PhoneNumberSecondary",
    "notes": "Notes",
    "rentAmount": "RentAmount",
    "totalDeposit": "TotalDeposit",
    "securityDeposit": "SecurityDeposit",
    "returnAmount": "ReturnAmount",
    "advancePayment": "AdvancePayment",
    "discount": "Discount",
    "discountType": "DiscountType",
    "additionalCharges": "AdditionalCharges",
    "rentalType": "RentalType",
    "advancePaymentMethod": "AdvancePaymentMethod",
    "deliveryPaymentMethod": "DeliveryPaymentMethod",
    "returnPaymentMethod": "ReturnPaymentMethod",
}
REQUIRED_TEXT_FIELDS = ("customerName", "phoneNumberPrimary")
DATE_FILTER_KINDS = ("today", "tomorrow", "custom")
INVOICE_CONSTRAINT_MARKERS = ("uq_bookings_invoice_number", "invoicenumber")


@dataclass
class Availability:
    productID: int
    productName: str | None
    status: str | None
    available: bool
    reason: str | None = None
    conflictingLockIDs: list[int] = field(default_factory=list)

    def as_conflict(self, delivery_date: date, return_date: date) -> dict:
        return {
            "productID": self.productID,
            "productName": self.productName,
            "status": self.status,
            "reason": self.reason,
            "deliveryDate": delivery_date.isoformat(),
            "returnDate": return_date.isoformat(),
        }


@dataclass
class _PlannedLine:
    product_id: int
    delivery_date: date
    return_date: date
    existing: ProductLock | None = None


def generate_invoice_number(db: Session) -> int:
    current_max = db.execute(select(func.max(Booking.InvoiceNumber))).scalar()
    return int(current_max or 0) + 1


def generate_booking_code(customer_name: str, prefix: str = "BK") -> str:
    compact = "".join((customer_name or "").split()).lower()
    fragment = compact[-4:].rjust(4, BOOKING_CODE_FILLER)
    return f"{(prefix or 'BK').upper()}{fragment}{secrets.randbelow(10000):04d}"


def local_today(timezone_name: str | None = None) -> date:
    return datetime.now(ZoneInfo(timezone_name or "UTC")).date()


def resolve_date_filter(
    kind: str | None,
    start: date | None = None,
    end: date | None = None,
    timezone_name: str | None = None,
) -> tuple[date, date] | None:
    if not kind:
        return None
    if kind not in DATE_FILTER_KINDS:
        raise ValidationError("Date filter must be one of: " + ", ".join(DATE_FILTER_KINDS))
    today = local_today(timezone_name)
    if kind == "today":
        return today, today
    if kind == "tomorrow":
        tomorrow = today + timedelta(days=1)
        return tomorrow, tomorrow
    if not start or not end:
        raise ValidationError("A custom date filter needs both start and end dates.")
    if start > end:
        raise ValidationError("Start date must be on or before end date.")
    return start, end


def _require_window(product_id: int, delivery_date: date, return_date: date) -> None:
    if delivery_date > return_date:
        raise ValidationError(f"deliveryDate must be on or before returnDate for product {product_id}.")


def _lock_products(db: Session, product_ids: list[int]) -> dict[int, Product]:
    # Sorted so concurrent requests take row locks in the same order.
    wanted = sorted(set(product_ids))
    if not wanted:
        return {}
    rows = db.execute(
        select(Product)
        .where(Product.ProductID.in_(wanted))
        .order_by(Product.ProductID)
        .with_for_update()
    ).scalars().all()
    return {product.ProductID: product for product in rows if not product.IsDeleted}


def _overlapping_lock_ids(
    db: Session,
    product_id: int,
    delivery_date: date,
    return_date: date,
    exclude_booking_id: int | None = None,
) -> list[int]:
    stmt = (
        select(ProductLock.ProductLockID)
        .join(Booking, Booking.BookingID == ProductLock.BookingID)
        .where(ProductLock.ProductID == product_id)
        .where(ProductLock.DeliveryDate <= return_date)
        .where(ProductLock.ReturnDate >= delivery_date)
        .where(Booking.IsDeleted.is_(False))
    )
    if exclude_booking_id:
        stmt = stmt.where(ProductLock.BookingID != exclude_booking_id)
    return [row[0] for row in db.execute(stmt).all()]


def check_availability(
    db: Session,
    product_id: int,
    delivery_date: date,
    return_date: date,
    exclude_booking_id: int | None = None,
    product: Product | None = None,
) -> Availability:
    _require_window(product_id, delivery_date, return_date)
    if product is None:
        product = db.get(Product, product_id)
    if product is None or product.IsDeleted:
        raise NotFoundError(f"Product not found: {product_id}")

    if (product.Status or "") != AVAILABLE_STATUS:
        return Availability(
            productID=product.ProductID,
            productName=product.Name,
            status=product.Status,
            available=False,
            reason="unavailable",
        )

    lock_ids = _overlapping_lock_ids(db, product.ProductID, delivery_date, return_date, exclude_booking_id)
    return Availability(
        productID=product.ProductID,
        productName=product.Name,
        status=product.Status,
        available=not lock_ids,
        reason="overlap" if lock_ids else None,
        conflictingLockIDs=lock_ids,
    )


def _overlaps_any(windows: list[tuple[date, date]], delivery_date: date, return_date: date) -> bool:
    return any(start <= return_date and end >= delivery_date for start, end in windows)


def _collect_conflicts(
    db: Session,
    products: dict[int, Product],
    planned: list[_PlannedLine],
    exclude_booking_id: int | None = None,
    kept_locks: list[ProductLock] | None = None,
) -> list[dict]:
    """Check every planned line and return all conflicts found.

    With ``exclude_booking_id`` the store lookup skips that booking's locks;
    ``kept_locks`` then carries the ones the update leaves untouched so the
    booking's final lock set is still checked against itself.
    """
    conflicts: list[dict] = []
    kept: dict[int, list[tuple[date, date]]] = {}
    for lock in kept_locks or []:
        kept.setdefault(lock.ProductID, []).append((lock.DeliveryDate, lock.ReturnDate))
    accepted: dict[int, list[tuple[date, date]]] = {}
    for line in planned:
        product = products.get(line.product_id)
        if product is None:
            conflicts.append(
                {
                    "productID": line.product_id,
                    "productName": None,
                    "status": None,
                    "reason": "not_found",
                    "deliveryDate": line.delivery_date.isoformat(),
                    "returnDate": line.return_date.isoformat(),
                }
            )
            continue

        availability = check_availability(
            db,
            line.product_id,
            line.delivery_date,
            line.return_date,
            exclude_booking_id=exclude_booking_id,
            product=product,
        )
        if not availability.available:
            conflicts.append(availability.as_conflict(line.delivery_date, line.return_date))
            continue

        if _overlaps_any(kept.get(line.product_id, []), line.delivery_date, line.return_date):
            availability.available = False
            availability.reason = "overlap"
            conflicts.append(availability.as_conflict(line.delivery_date, line.return_date))
            continue

        windows = accepted.setdefault(line.product_id, [])
        if _overlaps_any(windows, line.delivery_date, line.return_date):
            availability.available = False
            availability.reason = "duplicate_in_request"
            conflicts.append(availability.as_conflict(line.delivery_date, line.return_date))
            continue
        windows.append((line.delivery_date, line.return_date))
    return conflicts


def _conflict_error(conflicts: list[dict]) -> ConflictError:
    names = []
    for item in conflicts:
        label = item.get("productName") or f"Product {item.get('productID')}"
        if item.get("reason") == "unavailable":
            label = f"{label} ({item.get('status')})"
        if label not in names:
            names.append(label)
    return ConflictError(
        "Selected products are not available for the selected dates: " + ", ".join(names),
        conflicts=conflicts,
    )


def is_invoice_collision(exc: IntegrityError) -> bool:
    message = str(exc.orig or exc).lower()
    return any(marker in message for marker in INVOICE_CONSTRAINT_MARKERS)


def load_booking(db: Session, booking_id: int, include_deleted: bool = False) -> Booking | None:
    stmt = (
        select(Booking)
        .options(selectinload(Booking.ProductLocks).selectinload(ProductLock.Product))
        .where(Booking.BookingID == booking_id)
    )
    if not include_deleted:
        stmt = stmt.where(Booking.IsDeleted.is_(False))
    return db.execute(stmt).scalars().first()


def create_booking(db: Session, payload: CreateBookingDto, code_prefix: str = "BK") -> Booking:
    customer_name = (payload.customerName or "").strip()
    phone_primary = (payload.phoneNumberPrimary or "").strip()
    if not customer_name or not phone_primary:
        raise ValidationError("Missing required fields: customerName and phoneNumberPrimary.")
    if not payload.products:
        raise ValidationError("Products list cannot be empty.")
    for line in payload.products:
        _require_window(line.productID, line.deliveryDate, line.returnDate)
    if payload.organizationID is not None and db.get(Organization, payload.organizationID) is None:
        raise ValidationError(f"Unknown organizationID: {payload.organizationID}")

    try:
        products = _lock_products(db, [line.productID for line in payload.products])
        missing = [line.productID for line in payload.products if line.productID not in products]
        if missing:
            raise NotFoundError("Product not found: " + ", ".join(str(product_id) for product_id in dict.fromkeys(missing)))

        planned = [_PlannedLine(line.productID, line.deliveryDate, line.returnDate) for line in payload.products]
        conflicts = _collect_conflicts(db, products, planned)
        if conflicts:
            raise _conflict_error(conflicts)

        totals = compute_booking_totals(
            [products[line.product_id].Price for line in planned],
            discount=payload.discount,
            discount_type=payload.discountType,
            additional_charges=payload.additionalCharges,
            advance_payment=payload.advancePayment,
            security_deposit=payload.securityDeposit,
        )
        now = datetime.now()
        booking = Booking(
            BookingCode=generate_booking_code(customer_name, code_prefix),
            CustomerName=customer_name,
            PhoneNumberPrimary=phone_primary,
            PhoneNumberSecondary=payload.phoneNumberSecondary or "",
            Notes=payload.notes or "",
            RentAmount=totals.rentAmount,
            TotalDeposit=totals.totalDeposit,
            SecurityDeposit=payload.securityDeposit,
            ReturnAmount=totals.returnAmount,
            AdvancePayment=payload.advancePayment,
            Discount=payload.discount,
            DiscountType=payload.discountType,
            AdditionalCharges=payload.additionalCharges,
            RentalType=payload.rentalType or "",
            AdvancePaymentMethod=payload.advancePaymentMethod or "",
            OrganizationID=payload.organizationID,
            IsDeleted=False,
            CreatedDate=now,
            UpdatedDate=now,
        )
        booking.InvoiceNumber = generate_invoice_number(db)
        for line in planned:
            booking.ProductLocks.append(
                ProductLock(
                    ProductID=line.product_id,
                    DeliveryDate=line.delivery_date,
                    ReturnDate=line.return_date,
                )
            )
        db.add(booking)
        db.commit()
    except LedgerError as exc:
        db.rollback()
        LOGGER.warning("Booking rejected customer=%s reason=%s", customer_name, exc.message)
        raise
    except IntegrityError as exc:
        db.rollback()
        if not is_invoice_collision(exc):
            LOGGER.exception("Booking insert violated a constraint customer=%s", customer_name)
            raise InternalError("Could not save booking.") from exc
        LOGGER.warning("Booking insert collided customer=%s error=%s", customer_name, exc.orig)
        raise ConflictError("Invoice number was taken by a concurrent booking. Please retry.") from exc
    except SQLAlchemyError as exc:
        db.rollback()
        LOGGER.exception("Booking insert failed customer=%s", customer_name)
        raise InternalError("Could not save booking.") from exc

    LOGGER.info(
        "Booking created booking_id=%s invoice=%s lines=%s",
        booking.BookingID,
        booking.InvoiceNumber,
        len(planned),
    )
    return load_booking(db, booking.BookingID) or booking


def _match_existing_lock(booking: Booking, product_id: int, lock_id: int | None, used: set[int]) -> ProductLock | None:
    for lock in booking.ProductLocks:
        if lock.ProductLockID in used:
            continue
        if lock_id is not None:
            if lock.ProductLockID == lock_id:
                return lock
            continue
        if lock.ProductID == product_id:
            return lock
    return None


def update_booking(db: Session, booking_id: int, payload: UpdateBookingDto) -> Booking:
    changes = payload.model_dump(exclude_unset=True, exclude={"products"})
    for key in REQUIRED_TEXT_FIELDS:
        if key in changes and not str(changes[key] or "").strip():
            raise ValidationError(f"{key} cannot be empty.")

    try:
        booking = load_booking(db, booking_id)
        if not booking:
            raise NotFoundError("Booking not found")

        planned: list[_PlannedLine] = []
        if "products" in payload.model_fields_set and payload.products:
            products = _lock_products(db, [line.productID for line in payload.products])
            used: set[int] = set()
            for line in payload.products:
                existing = _match_existing_lock(booking, line.productID, line.productLockID, used)
                if line.productLockID is not None and existing is None:
                    raise NotFoundError(f"Product lock {line.productLockID} does not belong to this booking.")
                if existing is not None:
                    used.add(existing.ProductLockID)
                delivery_date = line.deliveryDate or (existing.DeliveryDate if existing else None)
                return_date = line.returnDate or (existing.ReturnDate if existing else None)
                if delivery_date is None or return_date is None:
                    raise ValidationError(f"deliveryDate and returnDate are required for new product {line.productID}.")
                _require_window(line.productID, delivery_date, return_date)
                planned.append(_PlannedLine(line.productID, delivery_date, return_date, existing))

            kept_locks = [lock for lock in booking.ProductLocks if lock.ProductLockID not in used]
            conflicts = _collect_conflicts(
                db,
                products,
                planned,
                exclude_booking_id=booking.BookingID,
                kept_locks=kept_locks,
            )
            if conflicts:
                raise _conflict_error(conflicts)

        for key, value in changes.items():
            column = UPDATABLE_FIELDS.get(key)
            if column:
                setattr(booking, column, value.strip() if isinstance(value, str) and key in REQUIRED_TEXT_FIELDS else value)

        for line in planned:
            if line.existing is not None:
                line.existing.ProductID = line.product_id
                line.existing.DeliveryDate = line.delivery_date
                line.existing.ReturnDate = line.return_date
                continue
            booking.ProductLocks.append(
                ProductLock(
                    ProductID=line.product_id,
                    DeliveryDate=line.delivery_date,
                    ReturnDate=line.return_date,
                )
            )

        booking.UpdatedDate = datetime.now()
        db.commit()
    except LedgerError as exc:
        db.rollback()
        LOGGER.warning("Booking update rejected booking_id=%s reason=%s", booking_id, exc.message)
        raise
    except SQLAlchemyError as exc:
        db.rollback()
        LOGGER.exception("Booking update failed booking_id=%s", booking_id)
        raise InternalError("Could not update booking.") from exc

    LOGGER.info("Booking updated booking_id=%s fields=%s lines=%s", booking_id, sorted(changes), len(planned))
    db.expire_all()
    return load_booking(db, booking_id) or booking


def remove_product_lock(db: Session, product_lock_id: int) -> ProductLock:
    lock = db.get(ProductLock, product_lock_id)
    if not lock:
        raise NotFoundError("Product lock not found")
    try:
        db.delete(lock)
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        LOGGER.exception("Product lock removal failed product_lock_id=%s", product_lock_id)
        raise InternalError("Could not remove product from booking.") from exc
    LOGGER.info("Product lock removed product_lock_id=%s booking_id=%s", product_lock_id, lock.BookingID)
    return lock


def delete_booking(db: Session, booking_id: int, soft: bool = False) -> Booking:
    booking = load_booking(db, booking_id)
    if not booking:
        raise NotFoundError("Booking ID not found")
    try:
        if soft:
            booking.IsDeleted = True
            booking.UpdatedDate = datetime.now()
        else:
            db.delete(booking)
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        LOGGER.exception("Booking delete failed booking_id=%s", booking_id)
        raise InternalError("Could not delete booking.") from exc
    LOGGER.info("Booking deleted booking_id=%s soft=%s", booking_id, soft)
    return booking


def _lock_window_clause(delivery_window: tuple[date, date] | None, return_window: tuple[date, date] | None):
    clauses = []
    if delivery_window:
        clauses.append(ProductLock.DeliveryDate >= delivery_window[0])
        clauses.append(ProductLock.DeliveryDate <= delivery_window[1])
    if return_window:
        clauses.append(ProductLock.ReturnDate >= return_window[0])
        clauses.append(ProductLock.ReturnDate <= return_window[1])
    return and_(*clauses) if clauses else None


def list_bookings(
    db: Session,
    delivery_window: tuple[date, date] | None = None,
    return_window: tuple[date, date] | None = None,
    newest_first: bool = True,
    require_lock: bool = False,
) -> list[Booking]:
    stmt = (
        select(Booking)
        .options(selectinload(Booking.ProductLocks).selectinload(ProductLock.Product))
        .where(Booking.IsDeleted.is_(False))
    )
    clause = _lock_window_clause(delivery_window, return_window)
    if clause is not None:
        stmt = stmt.where(Booking.ProductLocks.any(clause))
    elif require_lock:
        stmt = stmt.where(Booking.ProductLocks.any())
    order = Booking.CreatedDate.desc() if newest_first else Booking.CreatedDate.asc()
    stmt = stmt.order_by(order, Booking.BookingID.desc() if newest_first else Booking.BookingID.asc())
    return list(db.execute(stmt).scalars().all())


def list_return_locks(db: Session, return_window: tuple[date, date] | None = None) -> list[ProductLock]:
    stmt = (
        select(ProductLock)
        .join(Booking, Booking.BookingID == ProductLock.BookingID)
        .options(selectinload(ProductLock.Booking), selectinload(ProductLock.Product))
        .where(Booking.IsDeleted.is_(False))
    )
    clause = _lock_window_clause(None, return_window)
    if clause is not None:
        stmt = stmt.where(clause)
    stmt = stmt.order_by(ProductLock.ReturnDate.asc(), ProductLock.ProductLockID.asc())
    return list(db.execute(stmt).scalars().all())


def list_product_locks(db: Session, product_id: int) -> list[ProductLock]:
    stmt = (
        select(ProductLock)
        .join(Booking, Booking.BookingID == ProductLock.BookingID)
        .options(selectinload(ProductLock.Product))
        .where(ProductLock.ProductID == product_id)
        .where(Booking.IsDeleted.is_(False))
        .order_by(ProductLock.DeliveryDate.asc())
    )
    return list(db.execute(stmt).scalars().all())


def _money(value) -> float:
    return float(value) if value is not None else 0.0


def serialize_product_lock(lock: ProductLock, include_booking: bool = False) -> dict:
    payload = {
        "productLockID": lock.ProductLockID,
        "bookingID": lock.BookingID,
        "productID": lock.ProductID,
        "deliveryDate": lock.DeliveryDate,
        "returnDate": lock.ReturnDate,
        "product": {
            "productID": lock.Product.ProductID,
            "name": lock.Product.Name,
            "sku": lock.Product.SKU,
            "price": _money(lock.Product.Price),
            "status": lock.Product.Status,
        } if lock.Product else None,
    }
    if include_booking and lock.Booking is not None:
        payload["booking"] = serialize_booking(lock.Booking, include_locks=False)
    return payload


def serialize_booking(booking: Booking, include_locks: bool = True) -> dict:
    payload = {
        "bookingID": booking.BookingID,
        "bookingCode": booking.BookingCode,
        "invoiceNumber": booking.InvoiceNumber,
        "customerName": booking.CustomerName,
        "phoneNumberPrimary": booking.PhoneNumberPrimary,
        "phoneNumberSecondary": booking.PhoneNumberSecondary,
        "notes": booking.Notes,
        "rentAmount": _money(booking.RentAmount),
        "totalDeposit": _money(booking.TotalDeposit),
        "securityDeposit": _money(booking.SecurityDeposit),
        "returnAmount": _money(booking.ReturnAmount),
        "advancePayment": _money(booking.AdvancePayment),
        "discount": _money(booking.Discount),
        "discountType": booking.DiscountType,
        "additionalCharges": _money(booking.AdditionalCharges),
        "rentalType": booking.RentalType,
        "advancePaymentMethod": booking.AdvancePaymentMethod,
        "deliveryPaymentMethod": booking.DeliveryPaymentMethod,
        "returnPaymentMethod": booking.ReturnPaymentMethod,
        "organizationID": booking.OrganizationID,
        "isDeleted": bool(booking.IsDeleted),
        "createdDate": booking.CreatedDate,
        "updatedDate": booking.UpdatedDate,
    }
    if include_locks:
        payload["productLocks"] = [serialize_product_lock(lock) for lock in booking.ProductLocks]
    return payload
