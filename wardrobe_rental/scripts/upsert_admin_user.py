#!/usr/bin/env python3
from __future__ import annotations

import argparse
import hashlib
import os
import secrets
import sys
import time
from datetime import datetime
from pathlib import Path

from sqlalchemy import create_engine, func, select
from sqlalchemy.orm import Session

APP_DIR = Path(__file__).resolve().parents[1]
if str(APP_DIR) not in sys.path:
    sys.path.insert(0, str(APP_DIR))

from db.base import Base  # noqa: E402
from models.rental_models import Organization, User  # noqa: E402


ROLES = ["superAdmin", "admin", "staff"]


def _password_hash(password: str, salt: str) -> str:
    raw = hashlib.pbkdf2_hmac(
        "sha256",
        password.encode("utf-8"),
        salt.encode("utf-8"),
        120000,
    )
    return raw.hex()


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Create/update one Users record (and its organization) directly from terminal.",
    )
    parser.add_argument("--email", required=True, help="Login email of the user")
    parser.add_argument("--name", default=None, help="Display name")
    parser.add_argument("--role", choices=ROLES, default="superAdmin")
    parser.add_argument(
        "--password",
        default=None,
        help="Password to set. Required when the user does not exist yet.",
    )
    parser.add_argument(
        "--organization",
        default=None,
        help="Organization name; created when no organization with that name exists.",
    )
    parser.add_argument(
        "--create-schema",
        action="store_true",
        help="Create missing tables before writing.",
    )
    parser.add_argument(
        "--db-url",
        default=os.environ.get("RENTAL_DB_URL", "").strip(),
        help="SQLAlchemy DB URL; defaults to RENTAL_DB_URL env var.",
    )
    return parser


def _ensure_organization(db: Session, name: str | None) -> Organization | None:
    if not name:
        return None
    organization = db.execute(
        select(Organization).where(func.lower(Organization.OrganizationName) == name.strip().lower())
    ).scalars().first()
    if organization:
        return organization
    organization = Organization(OrganizationName=name.strip(), IsActive=True)
    db.add(organization)
    db.flush()
    return organization


def main() -> int:
    parser = _build_parser()
    args = parser.parse_args()

    email = (args.email or "").strip().lower()
    if "@" not in email:
        parser.error("--email must be a valid address.")
    if not args.db_url:
        parser.error("Missing DB URL. Set RENTAL_DB_URL or pass --db-url.")
    if args.password is not None and len(args.password.strip()) < 4:
        parser.error("--password must be at least 4 characters.")

    engine = create_engine(args.db_url, pool_pre_ping=True, future=True)
    if args.create_schema:
        Base.metadata.create_all(bind=engine)

    with Session(engine) as db, db.begin():
        organization = _ensure_organization(db, args.organization)
        user = db.execute(select(User).where(func.lower(User.Email) == email)).scalars().first()
        if user is None:
            if args.password is None:
                parser.error("--password is required when creating a new user.")
            user = User(Email=email, IsActive=True, CreatedAt=datetime.now())
            db.add(user)

        user.Role = args.role
        if args.name:
            user.Name = args.name.strip()
        if organization is not None:
            user.OrganizationID = organization.OrganizationID
        if args.password is not None:
            user.PasswordSalt = secrets.token_hex(16)
            user.PasswordHash = _password_hash(args.password.strip(), user.PasswordSalt)
            user.PasswordUpdatedAt = int(time.time())
        user.UpdatedAt = datetime.now()
        db.flush()

        print(
            f"OK user_id={user.UserID} email={user.Email} role={user.Role} "
            f"organization_id={user.OrganizationID} has_password={bool(user.PasswordHash)}"
        )
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
