import logging
import os
import threading
import time
from contextlib import asynccontextmanager
from datetime import date, datetime
from zoneinfo import ZoneInfo

from fastapi import Depends, FastAPI, File, Header, HTTPException, Query, Request, Response, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles
from pydantic import BaseModel, ValidationError
from sqlalchemy import text
from sqlalchemy.orm import Session
from starlette.middleware.sessions import SessionMiddleware

try:
    from dotenv import load_dotenv

    load_dotenv()
except ImportError:
    pass

from db.deps import get_rental_db
from models.rental_models import AuditLog
from schemas.auth import AuthLoginRequest, ChangePasswordRequest
from schemas.bookings import CreateBookingDto, UpdateBookingDto
from schemas.organization import OrganizationUpdateDto
from schemas.products import ProductCreate, ProductUpdate
from services.billing_service import booking_totals_for, receipt_totals_for
from services.booking_service import (
    check_availability,
    create_booking,
    delete_booking,
    list_bookings,
    list_product_locks,
    list_return_locks,
    load_booking,
    remove_product_lock,
    resolve_date_filter,
    serialize_booking,
    serialize_product_lock,
    update_booking,
)
from services.export_service import XLSX_MEDIA_TYPE, export_bookings
from services.ledger_errors import LedgerError
from services.media_service import delete_image, store_image, uploads_root
from services.organization_service import (
    get_organization,
    list_organizations,
    primary_organization,
    serialize_organization,
    update_organization,
)
from services.product_service import (
    add_product_images,
    create_product,
    get_product,
    list_products,
    product_images,
    serialize_product,
    soft_delete_product,
    update_product,
)
from services.stats_service import weekly_revenue_report
from services.user_access_service import (
    change_password,
    create_session,
    get_session,
    get_user_by_email,
    remove_session,
    serialize_user,
    verify_password,
)


@asynccontextmanager
async def lifespan(_app: FastAPI):
    if AUTO_CREATE_SCHEMA:
        from db.session import init_schema

        init_schema()
    yield


app = FastAPI(title="Wardrobe Rental Desk", lifespan=lifespan)


def _parse_csv_env(name: str, default: str) -> list[str]:
    raw = os.environ.get(name, default)
    return [item.strip() for item in str(raw).split(",") if item.strip()]


def _env_flag(name: str, default: str) -> bool:
    return str(os.environ.get(name, default)).strip().lower() in {"1", "true", "yes", "on"}


_CORS_ALLOW_ORIGINS = _parse_csv_env(
    "CORS_ALLOW_ORIGINS",
    "http://127.0.0.1,http://localhost,http://127.0.0.1:3000,http://localhost:3000",
)
_CORS_ALLOW_CREDENTIALS = _env_flag("CORS_ALLOW_CREDENTIALS", "true")
if "*" in _CORS_ALLOW_ORIGINS:
    # Browsers reject wildcard origins with credentials; force safe behavior.
    _CORS_ALLOW_CREDENTIALS = False

app.add_middleware(
    CORSMiddleware,
    allow_origins=_CORS_ALLOW_ORIGINS,
    allow_credentials=_CORS_ALLOW_CREDENTIALS,
    allow_methods=["*"],
    allow_headers=["*"]
)
_APP_SESSION_SECRET = (os.environ.get("SESSION_SIGNING_SECRET") or "").strip()
if len(_APP_SESSION_SECRET) >= 32:
    app.add_middleware(
        SessionMiddleware,
        secret_key=_APP_SESSION_SECRET,
        session_cookie="wardrobe_rental_session",
        same_site="lax",
        https_only=_env_flag("SESSION_HTTPS_ONLY", "false"),
    )

RENTAL_TIMEZONE = (os.environ.get("RENTAL_TIMEZONE") or "UTC").strip()
ZoneInfo(RENTAL_TIMEZONE)
BOOKING_CODE_PREFIX = (os.environ.get("BOOKING_CODE_PREFIX") or "BK").strip()
AUTO_CREATE_SCHEMA = _env_flag("RENTAL_AUTO_CREATE_SCHEMA", "true")

AUTH_ATTEMPT_WINDOW_SECONDS = int(os.environ.get("AUTH_ATTEMPT_WINDOW_SECONDS") or "300")
AUTH_MAX_ATTEMPTS_PER_IP = int(os.environ.get("AUTH_MAX_ATTEMPTS_PER_IP") or "50")
AUTH_MAX_ATTEMPTS_PER_ACCOUNT = int(os.environ.get("AUTH_MAX_ATTEMPTS_PER_ACCOUNT") or "8")
AUTH_LOCKOUT_SECONDS = int(os.environ.get("AUTH_LOCKOUT_SECONDS") or "900")
AUTH_LOGGER = logging.getLogger("wardrobe_rental.auth")
BOOKING_LOGGER = logging.getLogger("wardrobe_rental.bookings")
_AUTH_GUARD_LOCK = threading.Lock()
_AUTH_ATTEMPTS_BY_IP: dict[str, list[float]] = {}
_AUTH_ATTEMPTS_BY_ACCOUNT: dict[str, list[float]] = {}
_AUTH_LOCKOUT_UNTIL_BY_ACCOUNT: dict[str, float] = {}


def log_audit(db: Session, entity_type: str, entity_id: int, action: str, details: str | None = None, user_id: int | None = None) -> None:
    db.add(
        AuditLog(
            EntityType=entity_type,
            EntityID=entity_id,
            Action=action,
            Details=details,
            UserID=user_id,
            CreatedAt=datetime.now(),
        )
    )


def _get_client_ip(request: Request) -> str:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        candidate = forwarded.split(",")[0].strip()
        if candidate:
            return candidate
    return request.client.host if request.client and request.client.host else "unknown"


def _prune_attempts(attempts: list[float], now_ts: float) -> list[float]:
    cutoff = now_ts - max(AUTH_ATTEMPT_WINDOW_SECONDS, 1)
    return [ts for ts in attempts if ts >= cutoff]


def _check_login_guard(client_ip: str, account_key: str) -> int | None:
    now_ts = time.time()
    with _AUTH_GUARD_LOCK:
        lockout_until = _AUTH_LOCKOUT_UNTIL_BY_ACCOUNT.get(account_key)
        if lockout_until and lockout_until > now_ts:
            return max(1, int(lockout_until - now_ts))
        if lockout_until and lockout_until <= now_ts:
            _AUTH_LOCKOUT_UNTIL_BY_ACCOUNT.pop(account_key, None)

        ip_attempts = _prune_attempts(_AUTH_ATTEMPTS_BY_IP.get(client_ip, []), now_ts)
        account_attempts = _prune_attempts(_AUTH_ATTEMPTS_BY_ACCOUNT.get(account_key, []), now_ts)
        _AUTH_ATTEMPTS_BY_IP[client_ip] = ip_attempts
        _AUTH_ATTEMPTS_BY_ACCOUNT[account_key] = account_attempts

        if len(ip_attempts) >= max(AUTH_MAX_ATTEMPTS_PER_IP, 1):
            oldest = ip_attempts[0]
            retry_after = max(1, int((oldest + AUTH_ATTEMPT_WINDOW_SECONDS) - now_ts))
            return retry_after
        if len(account_attempts) >= max(AUTH_MAX_ATTEMPTS_PER_ACCOUNT, 1):
            _AUTH_LOCKOUT_UNTIL_BY_ACCOUNT[account_key] = now_ts + max(AUTH_LOCKOUT_SECONDS, 1)
            return max(AUTH_LOCKOUT_SECONDS, 1)
    return None


def _record_login_failure(client_ip: str, account_key: str) -> None:
    now_ts = time.time()
    with _AUTH_GUARD_LOCK:
        ip_attempts = _prune_attempts(_AUTH_ATTEMPTS_BY_IP.get(client_ip, []), now_ts)
        account_attempts = _prune_attempts(_AUTH_ATTEMPTS_BY_ACCOUNT.get(account_key, []), now_ts)
        ip_attempts.append(now_ts)
        account_attempts.append(now_ts)
        _AUTH_ATTEMPTS_BY_IP[client_ip] = ip_attempts
        _AUTH_ATTEMPTS_BY_ACCOUNT[account_key] = account_attempts
        if len(account_attempts) >= max(AUTH_MAX_ATTEMPTS_PER_ACCOUNT, 1):
            _AUTH_LOCKOUT_UNTIL_BY_ACCOUNT[account_key] = now_ts + max(AUTH_LOCKOUT_SECONDS, 1)


def _record_login_success(account_key: str) -> None:
    with _AUTH_GUARD_LOCK:
        _AUTH_ATTEMPTS_BY_ACCOUNT.pop(account_key, None)
        _AUTH_LOCKOUT_UNTIL_BY_ACCOUNT.pop(account_key, None)


def _audit_auth_event(db: Session, *, action: str, details: str, user_id: int | None = None) -> None:
    try:
        log_audit(db, "Auth", int(user_id or 0), action, details, user_id=user_id)
        db.commit()
    except Exception:
        AUTH_LOGGER.exception("Auth audit write failed action=%s", action)
        db.rollback()


def _invalid_login_error() -> HTTPException:
    return HTTPException(status_code=401, detail="Invalid credentials.")


def _ledger_http_error(exc: LedgerError) -> HTTPException:
    return HTTPException(status_code=exc.status_code, detail=exc.to_detail())


def _date_window(kind: str | None, start: date | None, end: date | None) -> tuple[date, date] | None:
    try:
        return resolve_date_filter(kind, start, end, RENTAL_TIMEZONE)
    except LedgerError as exc:
        raise _ledger_http_error(exc) from exc


def _parse_payload(model: type[BaseModel], payload: dict) -> BaseModel:
    try:
        return model.model_validate(payload)
    except ValidationError as exc:
        problems = [
            {"field": ".".join(str(part) for part in error.get("loc", ())), "message": error.get("msg")}
            for error in exc.errors()
        ]
        raise HTTPException(status_code=400, detail={"message": "Invalid request payload.", "errors": problems}) from exc


def _get_active_session(request: Request, session_token: str | None) -> dict | None:
    session_from_token = get_session(session_token)
    if session_from_token:
        if "session" in request.scope:
            request.session["user"] = dict(session_from_token)
        return dict(session_from_token)
    if "session" in request.scope:
        session_from_cookie = request.session.get("user")
        if isinstance(session_from_cookie, dict) and get_session(session_from_cookie.get("token")):
            return dict(session_from_cookie)
    return None


def require_session(
    request: Request,
    x_session_token: str | None = Header(None, alias="X-Session-Token"),
) -> dict:
    session = _get_active_session(request, x_session_token)
    if not session:
        raise HTTPException(status_code=401, detail="Not logged in.")
    return session


def _require_right_or_403(session: dict, right: str) -> None:
    if not (session.get("rights") or {}).get(right):
        raise HTTPException(status_code=403, detail=f"Missing right: {right}.")


def _actor_id(session: dict | None) -> int | None:
    if not session:
        return None
    try:
        value = int(session.get("userID") or 0)
    except (TypeError, ValueError):
        return None
    return value if value > 0 else None


@app.get("/healthz")
def healthcheck():
    return {"status": "ok"}


@app.get("/api/healthz")
def healthcheck_api(db: Session = Depends(get_rental_db)):
    try:
        db.execute(text("SELECT 1"))
        return {"status": "ok"}
    except Exception as exc:
        raise HTTPException(status_code=503, detail=f"db_unavailable: {exc}") from exc


@app.post("/api/auth/login")
def auth_login(payload: dict, request: Request, db: Session = Depends(get_rental_db)):
    client_ip = _get_client_ip(request)
    try:
        parsed = AuthLoginRequest.model_validate(payload)
    except ValidationError:
        _audit_auth_event(db, action="LoginRejected", details=f"ip={client_ip} reason=invalid_payload", user_id=None)
        raise HTTPException(status_code=400, detail="Invalid login request.")

    email = str(parsed.email or "").strip().lower()
    password = str(parsed.password or "")
    if not email or not password:
        _audit_auth_event(db, action="LoginRejected", details=f"ip={client_ip} reason=missing_identity", user_id=None)
        raise HTTPException(status_code=400, detail="Invalid login request.")

    account_key = f"user:{email}"
    retry_after = _check_login_guard(client_ip, account_key)
    if retry_after is not None:
        _audit_auth_event(db, action="LoginThrottled", details=f"ip={client_ip} key={account_key} retry_after={retry_after}", user_id=None)
        AUTH_LOGGER.warning("Login throttled ip=%s key=%s retry_after=%s", client_ip, account_key, retry_after)
        raise HTTPException(
            status_code=429,
            detail="Too many login attempts. Please try again later.",
            headers={"Retry-After": str(retry_after)},
        )

    user = get_user_by_email(db, email)
    if not verify_password(user, password):
        reason = "unknown_user" if user is None else "invalid_password"
        _record_login_failure(client_ip, account_key)
        _audit_auth_event(db, action="LoginFailed", details=f"ip={client_ip} key={account_key} reason={reason}", user_id=user.UserID if user else None)
        AUTH_LOGGER.warning("Login failed ip=%s key=%s reason=%s", client_ip, account_key, reason)
        raise _invalid_login_error()

    session_payload = serialize_user(user)
    token = create_session(session_payload)
    if "session" in request.scope:
        request.session["user"] = dict(session_payload, token=token)
    _record_login_success(account_key)
    _audit_auth_event(db, action="LoginSuccess", details=f"ip={client_ip} key={account_key}", user_id=user.UserID)
    AUTH_LOGGER.info("Login success ip=%s key=%s user_id=%s", client_ip, account_key, user.UserID)
    return {"message": "User login successfully", "sessionToken": token, "user": session_payload}


@app.post("/api/auth/logout")
def auth_logout(request: Request, x_session_token: str | None = Header(None, alias="X-Session-Token")):
    if "session" in request.scope:
        cookie_user = request.session.get("user")
        if isinstance(cookie_user, dict):
            remove_session(cookie_user.get("token"))
        request.session.clear()
    remove_session(x_session_token)
    return {"ok": True}


@app.get("/api/auth/me")
def auth_me(session: dict = Depends(require_session)):
    return {"user": session}


@app.post("/api/auth/change-password")
def auth_change_password(
    payload: ChangePasswordRequest,
    session: dict = Depends(require_session),
    db: Session = Depends(get_rental_db),
):
    user_id = _actor_id(session)
    if user_id is None:
        raise HTTPException(status_code=401, detail="Not logged in.")
    try:
        change_password(db, user_id, payload.currentPassword, payload.newPassword)
    except LookupError as exc:
        raise HTTPException(status_code=404, detail="User not found") from exc
    except PermissionError as exc:
        raise HTTPException(status_code=400, detail="Current password is incorrect") from exc
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    log_audit(db, "User", user_id, "ChangePassword", None, user_id=user_id)
    db.commit()
    return {"message": "Password changed successfully"}


@app.get("/api/products")
def get_products(session: dict = Depends(require_session), db: Session = Depends(get_rental_db)):
    return {"data": [serialize_product(product) for product in list_products(db)]}


@app.post("/api/products")
def create_product_record(
    payload: ProductCreate,
    session: dict = Depends(require_session),
    db: Session = Depends(get_rental_db),
):
    _require_right_or_403(session, "manageProducts")
    try:
        product = create_product(db, payload)
    except LedgerError as exc:
        raise _ledger_http_error(exc) from exc
    log_audit(db, "Product", product.ProductID, "CreateProduct", f"sku={product.SKU}", user_id=_actor_id(session))
    db.commit()
    return {"message": "Product created successfully", "data": serialize_product(product)}


@app.post("/api/products/upload-image")
def upload_product_image(
    file: UploadFile = File(...),
    product_id: int | None = Query(None, alias="productID"),
    session: dict = Depends(require_session),
    db: Session = Depends(get_rental_db),
):
    _require_right_or_403(session, "manageProducts")
    try:
        if product_id is not None:
            get_product(db, product_id)
        url = store_image(file.file.read(), file.content_type, "products", file.filename)
        if product_id is not None:
            add_product_images(db, product_id, [url])
    except LedgerError as exc:
        raise _ledger_http_error(exc) from exc
    return {"path": url}


@app.get("/api/products/{product_id}")
def get_product_record(product_id: int, session: dict = Depends(require_session), db: Session = Depends(get_rental_db)):
    try:
        product = get_product(db, product_id)
    except LedgerError as exc:
        raise _ledger_http_error(exc) from exc
    return {"data": serialize_product(product)}


@app.put("/api/products/{product_id}")
def update_product_record(
    product_id: int,
    payload: ProductUpdate,
    session: dict = Depends(require_session),
    db: Session = Depends(get_rental_db),
):
    _require_right_or_403(session, "manageProducts")
    try:
        product = update_product(db, product_id, payload)
    except LedgerError as exc:
        raise _ledger_http_error(exc) from exc
    log_audit(db, "Product", product_id, "UpdateProduct", f"status={product.Status}", user_id=_actor_id(session))
    db.commit()
    return {"message": "Product updated successfully", "data": serialize_product(product)}


@app.delete("/api/products/{product_id}")
def delete_product_record(product_id: int, session: dict = Depends(require_session), db: Session = Depends(get_rental_db)):
    _require_right_or_403(session, "manageProducts")
    try:
        product = soft_delete_product(db, product_id)
    except LedgerError as exc:
        raise _ledger_http_error(exc) from exc
    for url in product_images(product):
        if not delete_image(url):
            logging.getLogger("wardrobe_rental.products").warning("Image not removed product_id=%s url=%s", product_id, url)
    log_audit(db, "Product", product_id, "DeleteProduct", None, user_id=_actor_id(session))
    db.commit()
    return {"message": "Product deleted successfully"}


@app.get("/api/products/{product_id}/locks")
def get_product_locks(product_id: int, session: dict = Depends(require_session), db: Session = Depends(get_rental_db)):
    locks = list_product_locks(db, product_id)
    if not locks:
        raise HTTPException(status_code=404, detail="No bookings found for this product")
    return {"data": [serialize_product_lock(lock) for lock in locks]}


@app.get("/api/bookings")
def get_bookings(
    delivery_filter: str | None = Query(None, alias="deliveryDate"),
    delivery_start: date | None = Query(None, alias="deliveryStart"),
    delivery_end: date | None = Query(None, alias="deliveryEnd"),
    return_filter: str | None = Query(None, alias="returnDate"),
    return_start: date | None = Query(None, alias="returnStart"),
    return_end: date | None = Query(None, alias="returnEnd"),
    session: dict = Depends(require_session),
    db: Session = Depends(get_rental_db),
):
    bookings = list_bookings(
        db,
        delivery_window=_date_window(delivery_filter, delivery_start, delivery_end),
        return_window=_date_window(return_filter, return_start, return_end),
    )
    return {"success": True, "data": [serialize_booking(booking) for booking in bookings]}


@app.post("/api/bookings")
def create_booking_record(payload: dict, session: dict = Depends(require_session), db: Session = Depends(get_rental_db)):
    _require_right_or_403(session, "manageBookings")
    parsed = _parse_payload(CreateBookingDto, payload)
    if parsed.organizationID is None:
        parsed.organizationID = session.get("organizationID")
    try:
        booking = create_booking(db, parsed, code_prefix=BOOKING_CODE_PREFIX)
    except LedgerError as exc:
        raise _ledger_http_error(exc) from exc
    log_audit(
        db,
        "Booking",
        booking.BookingID,
        "CreateBooking",
        f"invoice={booking.InvoiceNumber} lines={len(booking.ProductLocks)}",
        user_id=_actor_id(session),
    )
    db.commit()
    return {"message": "Booking created successfully", "data": serialize_booking(booking)}


@app.get("/api/bookings/orders")
def get_booking_orders(session: dict = Depends(require_session), db: Session = Depends(get_rental_db)):
    return {"data": [serialize_booking(booking) for booking in list_bookings(db)]}


@app.get("/api/bookings/delivery")
def get_booking_deliveries(
    filter_kind: str = Query("tomorrow", alias="filter"),
    start: date | None = Query(None, alias="start"),
    end: date | None = Query(None, alias="end"),
    session: dict = Depends(require_session),
    db: Session = Depends(get_rental_db),
):
    bookings = list_bookings(
        db,
        delivery_window=_date_window(filter_kind, start, end),
        newest_first=False,
        require_lock=True,
    )
    return {"data": [serialize_booking(booking) for booking in bookings]}


@app.get("/api/bookings/return")
def get_booking_returns(
    filter_kind: str = Query("tomorrow", alias="filter"),
    start: date | None = Query(None, alias="start"),
    end: date | None = Query(None, alias="end"),
    session: dict = Depends(require_session),
    db: Session = Depends(get_rental_db),
):
    locks = list_return_locks(db, _date_window(filter_kind, start, end))
    return {"data": [serialize_product_lock(lock, include_booking=True) for lock in locks]}


@app.get("/api/bookings/availability")
def get_booking_availability(
    product_id: int = Query(..., alias="productID"),
    delivery_date: date = Query(..., alias="deliveryDate"),
    return_date: date = Query(..., alias="returnDate"),
    exclude_booking_id: int | None = Query(None, alias="excludeBookingID"),
    session: dict = Depends(require_session),
    db: Session = Depends(get_rental_db),
):
    try:
        result = check_availability(db, product_id, delivery_date, return_date, exclude_booking_id=exclude_booking_id)
    except LedgerError as exc:
        raise _ledger_http_error(exc) from exc
    return {
        "productID": result.productID,
        "productName": result.productName,
        "status": result.status,
        "deliveryDate": delivery_date,
        "returnDate": return_date,
        "available": result.available,
        "reason": result.reason,
        "conflictingLockIDs": result.conflictingLockIDs,
    }


@app.get("/api/bookings/stats")
def get_booking_stats(
    from_date: date | None = Query(None, alias="from"),
    to_date: date | None = Query(None, alias="to"),
    session: dict = Depends(require_session),
    db: Session = Depends(get_rental_db),
):
    _require_right_or_403(session, "viewStats")
    if not from_date or not to_date:
        raise HTTPException(status_code=400, detail="Please provide both 'from' and 'to' dates")
    if to_date < from_date:
        raise HTTPException(status_code=400, detail="'to' must be on or after 'from'.")
    return weekly_revenue_report(db, from_date, to_date)


@app.get("/api/bookings/export")
def export_booking_workbook(
    from_date: date | None = Query(None, alias="from_date"),
    to_date: date | None = Query(None, alias="to_date"),
    session: dict = Depends(require_session),
    db: Session = Depends(get_rental_db),
):
    _require_right_or_403(session, "viewStats")
    filename, content = export_bookings(db, from_date, to_date)
    return Response(
        content=content,
        media_type=XLSX_MEDIA_TYPE,
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@app.get("/api/bookings/{booking_id}")
def get_booking_record(booking_id: int, session: dict = Depends(require_session), db: Session = Depends(get_rental_db)):
    booking = load_booking(db, booking_id)
    if not booking:
        raise HTTPException(status_code=404, detail="Booking not found")
    return {"data": serialize_booking(booking)}


@app.put("/api/bookings/{booking_id}")
def update_booking_record(
    booking_id: int,
    payload: dict,
    session: dict = Depends(require_session),
    db: Session = Depends(get_rental_db),
):
    _require_right_or_403(session, "manageBookings")
    parsed = _parse_payload(UpdateBookingDto, payload)
    try:
        booking = update_booking(db, booking_id, parsed)
    except LedgerError as exc:
        raise _ledger_http_error(exc) from exc
    log_audit(
        db,
        "Booking",
        booking_id,
        "UpdateBooking",
        "fields=" + ",".join(sorted(parsed.model_fields_set)),
        user_id=_actor_id(session),
    )
    db.commit()
    return {"success": True, "message": "Booking updated successfully", "data": serialize_booking(booking)}


@app.delete("/api/bookings/{booking_id}")
def delete_booking_record(
    booking_id: int,
    soft: bool = Query(False),
    session: dict = Depends(require_session),
    db: Session = Depends(get_rental_db),
):
    _require_right_or_403(session, "manageBookings")
    try:
        delete_booking(db, booking_id, soft=soft)
    except LedgerError as exc:
        raise _ledger_http_error(exc) from exc
    log_audit(db, "Booking", booking_id, "DeleteBooking", f"soft={soft}", user_id=_actor_id(session))
    db.commit()
    return {"message": "Booking deleted successfully"}


@app.get("/api/bookings/{booking_id}/totals")
def get_booking_totals(booking_id: int, session: dict = Depends(require_session), db: Session = Depends(get_rental_db)):
    booking = load_booking(db, booking_id)
    if not booking:
        raise HTTPException(status_code=404, detail="Booking not found")
    return {
        "bookingID": booking.BookingID,
        "bookingTotals": booking_totals_for(booking).as_dict(),
        "receiptTotals": receipt_totals_for(booking).as_dict(),
        "stored": {
            "rentAmount": float(booking.RentAmount or 0),
            "totalDeposit": float(booking.TotalDeposit or 0),
            "returnAmount": float(booking.ReturnAmount or 0),
        },
    }


@app.get("/api/bookings/{booking_id}/e-receipt")
def get_booking_receipt(booking_id: int, db: Session = Depends(get_rental_db)):
    booking = load_booking(db, booking_id)
    if not booking:
        raise HTTPException(status_code=404, detail="Booking not found")
    organization = primary_organization(db, booking.OrganizationID)
    return {
        "data": serialize_booking(booking),
        "receipt": receipt_totals_for(booking).as_dict(),
        "organization": serialize_organization(organization) if organization else None,
    }


@app.delete("/api/product-locks/{product_lock_id}")
def delete_product_lock(product_lock_id: int, session: dict = Depends(require_session), db: Session = Depends(get_rental_db)):
    _require_right_or_403(session, "manageBookings")
    try:
        lock = remove_product_lock(db, product_lock_id)
    except LedgerError as exc:
        raise _ledger_http_error(exc) from exc
    log_audit(db, "ProductLock", product_lock_id, "RemoveProductLock", f"booking={lock.BookingID}", user_id=_actor_id(session))
    db.commit()
    BOOKING_LOGGER.info("Line item removed product_lock_id=%s", product_lock_id)
    return {"message": "Product removed from booking"}


@app.get("/api/organization")
def get_organization_info(organization_id: int | None = Query(None, alias="id"), db: Session = Depends(get_rental_db)):
    if organization_id is not None:
        try:
            organization = get_organization(db, organization_id)
        except LedgerError as exc:
            raise _ledger_http_error(exc) from exc
        return {"success": True, "data": serialize_organization(organization)}
    return {"success": True, "data": [serialize_organization(item) for item in list_organizations(db)]}


@app.put("/api/organization")
def update_organization_info(
    payload: OrganizationUpdateDto,
    session: dict = Depends(require_session),
    db: Session = Depends(get_rental_db),
):
    _require_right_or_403(session, "manageOrganization")
    try:
        organization = update_organization(db, payload)
    except LedgerError as exc:
        raise _ledger_http_error(exc) from exc
    log_audit(db, "Organization", organization.OrganizationID, "UpdateOrganization", None, user_id=_actor_id(session))
    db.commit()
    return {"success": True, "data": serialize_organization(organization)}


app.mount("/uploads", StaticFiles(directory=str(uploads_root()), check_dir=False), name="uploads")
