from __future__ import annotations

import base64
import hashlib
import hmac
import json
import os
import secrets
import threading
import time
from datetime import datetime
from pathlib import Path
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from models.rental_models import User


SESSION_TTL_SECONDS = 60 * 60 * 12
DEFAULT_ROLE = "staff"
MIN_PASSWORD_LENGTH = 4

RIGHTS_BY_ROLE = {
    "superAdmin": {
        "manageUsers": True,
        "manageOrganization": True,
        "manageProducts": True,
        "manageBookings": True,
        "viewStats": True,
    },
    "admin": {
        "manageUsers": False,
        "manageOrganization": True,
        "manageProducts": True,
        "manageBookings": True,
        "viewStats": True,
    },
    "staff": {
        "manageUsers": False,
        "manageOrganization": False,
        "manageProducts": True,
        "manageBookings": True,
        "viewStats": False,
    },
}

_BASE_DIR = Path(__file__).resolve().parent.parent
_DATA_DIR = Path((os.environ.get("RENTAL_DATA_DIR") or "").strip() or _BASE_DIR / "data")
_REVOKED_TOKENS_PATH = _DATA_DIR / "revoked_sessions.json"
_LOCK = threading.Lock()
_SESSIONS: dict[str, dict[str, Any]] = {}


def _require_session_secret() -> bytes:
    raw = (os.environ.get("SESSION_SIGNING_SECRET") or "").strip()
    if len(raw) < 32:
        raise RuntimeError("SESSION_SIGNING_SECRET must be set and at least 32 characters long.")
    return raw.encode("utf-8")


_SESSION_SECRET = _require_session_secret()


def _ensure_data_dir() -> None:
    _DATA_DIR.mkdir(parents=True, exist_ok=True)


def normalize_role(raw_role: str | None) -> str:
    role = (raw_role or "").strip()
    if role in RIGHTS_BY_ROLE:
        return role
    return DEFAULT_ROLE


def rights_for_role(role: str | None) -> dict[str, bool]:
    return dict(RIGHTS_BY_ROLE[normalize_role(role)])


def password_hash(password: str, salt: str) -> str:
    raw = hashlib.pbkdf2_hmac(
        "sha256",
        (password or "").encode("utf-8"),
        salt.encode("utf-8"),
        120000,
    )
    return raw.hex()


def _load_revoked_tokens_unlocked() -> dict[str, float]:
    _ensure_data_dir()
    if not _REVOKED_TOKENS_PATH.exists():
        return {}
    try:
        payload = json.loads(_REVOKED_TOKENS_PATH.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError, ValueError):
        return {}
    if not isinstance(payload, dict):
        return {}
    out: dict[str, float] = {}
    for token, expires_at in payload.items():
        try:
            out[str(token)] = float(expires_at)
        except (TypeError, ValueError):
            continue
    return out


def _save_revoked_tokens_unlocked(tokens: dict[str, float]) -> None:
    _ensure_data_dir()
    _REVOKED_TOKENS_PATH.write_text(json.dumps(tokens, ensure_ascii=True, indent=2), encoding="utf-8")


def get_user_by_email(db: Session, email: str) -> User | None:
    candidate = (email or "").strip().lower()
    if not candidate:
        return None
    return db.execute(select(User).where(func.lower(User.Email) == candidate)).scalars().first()


def serialize_user(user: User) -> dict[str, Any]:
    role = normalize_role(user.Role)
    return {
        "userID": user.UserID,
        "name": user.Name or "",
        "email": user.Email,
        "role": role,
        "rights": rights_for_role(role),
        "organizationID": user.OrganizationID,
        "isActive": bool(user.IsActive),
    }


def verify_password(user: User | None, password: str) -> bool:
    candidate = password or ""
    if not user or not user.IsActive:
        return False
    if not user.PasswordHash or not user.PasswordSalt:
        return False
    return hmac.compare_digest(password_hash(candidate, user.PasswordSalt), user.PasswordHash)


def set_password(user: User, password: str) -> None:
    trimmed = str(password or "").strip()
    if len(trimmed) < MIN_PASSWORD_LENGTH:
        raise ValueError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters.")
    salt = secrets.token_hex(16)
    user.PasswordSalt = salt
    user.PasswordHash = password_hash(trimmed, salt)
    user.PasswordUpdatedAt = int(time.time())
    user.UpdatedAt = datetime.now()


def change_password(db: Session, user_id: int, current_password: str, new_password: str) -> User:
    user = db.get(User, user_id)
    if not user:
        raise LookupError("User not found")
    if not verify_password(user, current_password):
        raise PermissionError("Current password is incorrect")
    set_password(user, new_password)
    db.commit()
    return user


def create_session(payload: dict[str, Any]) -> str:
    expires_at = time.time() + SESSION_TTL_SECONDS
    session_payload = dict(payload)
    session_payload["expiresAt"] = expires_at
    body = json.dumps(session_payload, ensure_ascii=True, separators=(",", ":")).encode("utf-8")
    encoded = base64.urlsafe_b64encode(body).decode("ascii").rstrip("=")
    signature = hmac.new(_SESSION_SECRET, encoded.encode("ascii"), hashlib.sha256).digest()
    encoded_sig = base64.urlsafe_b64encode(signature).decode("ascii").rstrip("=")
    token = f"{encoded}.{encoded_sig}"
    with _LOCK:
        _SESSIONS[token] = session_payload
    return token


def get_session(token: str | None) -> dict[str, Any] | None:
    if not token:
        return None
    now = time.time()
    try:
        encoded, encoded_sig = token.split(".", 1)
        expected_sig = hmac.new(_SESSION_SECRET, encoded.encode("ascii"), hashlib.sha256).digest()
        supplied_sig = base64.urlsafe_b64decode(encoded_sig + "=" * (-len(encoded_sig) % 4))
        if not hmac.compare_digest(expected_sig, supplied_sig):
            return None
        payload_raw = base64.urlsafe_b64decode(encoded + "=" * (-len(encoded) % 4))
        decoded_session = json.loads(payload_raw.decode("utf-8"))
    except (ValueError, UnicodeError):
        return None

    if not isinstance(decoded_session, dict):
        return None

    expires_at = float(decoded_session.get("expiresAt") or 0.0)
    if now >= expires_at:
        with _LOCK:
            _SESSIONS.pop(token, None)
        return None

    with _LOCK:
        revoked = _load_revoked_tokens_unlocked()
        changed = False
        for revoked_token, revoked_exp in list(revoked.items()):
            if now >= float(revoked_exp):
                revoked.pop(revoked_token, None)
                changed = True
        if token in revoked:
            if changed:
                _save_revoked_tokens_unlocked(revoked)
            _SESSIONS.pop(token, None)
            return None
        if changed:
            _save_revoked_tokens_unlocked(revoked)

        # Cache for this process; cross-process validation remains token-based.
        _SESSIONS[token] = decoded_session
        return dict(decoded_session)


def remove_session(token: str | None) -> None:
    if not token:
        return
    with _LOCK:
        _SESSIONS.pop(token, None)
        now = time.time()
        revoked = _load_revoked_tokens_unlocked()
        try:
            encoded = token.split(".", 1)[0]
            payload_raw = base64.urlsafe_b64decode(encoded + "=" * (-len(encoded) % 4))
            decoded = json.loads(payload_raw.decode("utf-8"))
            expires_at = float(decoded.get("expiresAt") or 0.0)
        except (ValueError, UnicodeError, AttributeError, TypeError):
            expires_at = now + SESSION_TTL_SECONDS
        if expires_at <= now:
            return
        revoked[token] = expires_at
        _save_revoked_tokens_unlocked(revoked)
