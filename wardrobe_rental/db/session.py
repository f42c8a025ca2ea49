import os

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker


def _require_env(name: str) -> str:
    value = os.environ.get(name)
    if not value:
        raise RuntimeError(f"Missing required environment variable: {name}")
    return value


def _engine_options(url: str) -> dict:
    options = {"pool_pre_ping": True, "future": True}
    if url.startswith("sqlite"):
        # TestClient and uvicorn workers hand the connection across threads.
        options["connect_args"] = {"check_same_thread": False}
    return options


RENTAL_DB_URL = _require_env("RENTAL_DB_URL")

engine_rental = create_engine(RENTAL_DB_URL, **_engine_options(RENTAL_DB_URL))

SessionLocalRental = sessionmaker(
    bind=engine_rental,
    autoflush=False,
    autocommit=False,
    expire_on_commit=False,
    future=True,
)


def init_schema() -> None:
    from db.base import Base
    import models.rental_models  # noqa: F401

    Base.metadata.create_all(bind=engine_rental)
