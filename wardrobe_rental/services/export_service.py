from __future__ import annotations

from datetime import date, datetime, time
from io import BytesIO

from openpyxl import Workbook
from openpyxl.styles import Alignment, Border, Font, PatternFill, Side
from openpyxl.utils import get_column_letter
from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload

from models.rental_models import Booking, ProductLock


XLSX_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"
EXPORT_HEADERS = [
    "Invoice No.",
    "Booking Date",
    "Customer Name",
    "Mobile No.",
    "Alternate No.",
    "Amount",
    "Deposit",
]
CURRENCY_FORMAT = '"₹"#,##0.00'
_THIN = Side(style="thin")


def load_export_bookings(db: Session, from_date: date | None, to_date: date | None) -> list[Booking]:
    stmt = (
        select(Booking)
        .options(selectinload(Booking.ProductLocks).selectinload(ProductLock.Product))
        .where(Booking.IsDeleted.is_(False))
    )
    if from_date:
        stmt = stmt.where(Booking.CreatedDate >= datetime.combine(from_date, time.min))
    if to_date:
        stmt = stmt.where(Booking.CreatedDate <= datetime.combine(to_date, time.max))
    stmt = stmt.order_by(Booking.CreatedDate.asc(), Booking.BookingID.asc())
    return list(db.execute(stmt).scalars().all())


def build_export_rows(bookings: list[Booking]) -> list[list]:
    rows = []
    for booking in bookings:
        amount = sum(float(lock.Product.Price or 0) for lock in booking.ProductLocks if lock.Product)
        created = booking.CreatedDate
        rows.append(
            [
                booking.InvoiceNumber or "",
                created.strftime("%d/%m/%Y") if created else "",
                booking.CustomerName or "",
                booking.PhoneNumberPrimary or "",
                booking.PhoneNumberSecondary or "",
                round(amount, 2),
                float(booking.SecurityDeposit or 0),
            ]
        )
    return rows


def build_workbook(rows: list[list]) -> bytes:
    workbook = Workbook()
    worksheet = workbook.active
    worksheet.title = "Bookings"
    worksheet.append(EXPORT_HEADERS)
    for row in rows:
        worksheet.append(row)

    header_fill = PatternFill(fill_type="solid", fgColor="FFFF99")
    for cell in worksheet[1]:
        cell.font = Font(bold=True)
        cell.alignment = Alignment(horizontal="center")
        cell.fill = header_fill

    for row in worksheet.iter_rows(min_row=2, min_col=6, max_col=7):
        for cell in row:
            cell.number_format = CURRENCY_FORMAT

    for column_cells in worksheet.columns:
        width = max(len(str(cell.value)) if cell.value is not None else 0 for cell in column_cells)
        worksheet.column_dimensions[get_column_letter(column_cells[0].column)].width = width + 2

    border = Border(top=_THIN, left=_THIN, bottom=_THIN, right=_THIN)
    for row in worksheet.iter_rows():
        for cell in row:
            cell.border = border

    buffer = BytesIO()
    workbook.save(buffer)
    return buffer.getvalue()


def export_filename(from_date: date | None, to_date: date | None) -> str:
    start = from_date.isoformat() if from_date else "all"
    end = to_date.isoformat() if to_date else "all"
    return f"bookings_export_{start}_to_{end}.xlsx"


def export_bookings(db: Session, from_date: date | None, to_date: date | None) -> tuple[str, bytes]:
    rows = build_export_rows(load_export_bookings(db, from_date, to_date))
    return export_filename(from_date, to_date), build_workbook(rows)
