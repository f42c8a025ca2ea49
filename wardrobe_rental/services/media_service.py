from __future__ import annotations

import base64
import binascii
import logging
import os
import re
import uuid
from pathlib import Path

from services.ledger_errors import ValidationError


LOGGER = logging.getLogger("wardrobe_rental.media")

ALLOWED_IMAGE_TYPES = {
    "image/jpeg": ".jpg",
    "image/png": ".png",
    "image/webp": ".webp",
    "image/gif": ".gif",
}
URL_PREFIX = "/uploads"
_FOLDER_PATTERN = re.compile(r"^[a-z0-9][a-z0-9_-]*$")


def uploads_root() -> Path:
    configured = (os.environ.get("RENTAL_UPLOADS_DIR") or "").strip()
    if configured:
        return Path(configured)
    return Path(__file__).resolve().parent.parent / "static" / "uploads"


def _folder_dir(folder: str) -> Path:
    name = (folder or "").strip().lower()
    if not _FOLDER_PATTERN.match(name):
        raise ValidationError("Invalid upload folder.")
    target = uploads_root() / name
    target.mkdir(parents=True, exist_ok=True)
    return target


def store_image(blob: bytes, content_type: str | None, folder: str, original_name: str | None = None) -> str:
    if content_type not in ALLOWED_IMAGE_TYPES:
        raise ValidationError("Unsupported file type. Please upload an image (jpg, png, webp, gif).")
    if not blob:
        raise ValidationError("Uploaded file is empty.")

    ext = ALLOWED_IMAGE_TYPES[content_type]
    filename = f"{uuid.uuid4().hex}{ext}"
    target = _folder_dir(folder) / filename
    with target.open("wb") as output:
        output.write(blob)
    LOGGER.info("Image stored folder=%s file=%s source=%s bytes=%s", folder, filename, original_name, len(blob))
    return f"{URL_PREFIX}/{folder}/{filename}"


def store_data_url_image(data_url: str, folder: str) -> str:
    raw = (data_url or "").strip()
    if not raw.startswith("data:image/"):
        raise ValidationError("Invalid image payload format.")

    parts = raw.split(",", 1)
    if len(parts) != 2:
        raise ValidationError("Invalid data URL payload.")

    meta, b64_data = parts
    content_type = meta[len("data:"):].split(";", 1)[0]
    try:
        binary = base64.b64decode(b64_data, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise ValidationError("Invalid base64 image data.") from exc
    return store_image(binary, content_type, folder)


def delete_image(url: str) -> bool:
    if not url or not url.startswith(f"{URL_PREFIX}/"):
        return False
    relative = url[len(URL_PREFIX) + 1:]
    root = uploads_root().resolve()
    target = (root / relative).resolve()
    if root not in target.parents:
        LOGGER.warning("Refusing to delete image outside uploads root url=%s", url)
        return False
    try:
        target.unlink()
    except FileNotFoundError:
        return False
    except OSError as exc:
        LOGGER.warning("Failed to delete image url=%s error=%s", url, exc)
        return False
    return True
