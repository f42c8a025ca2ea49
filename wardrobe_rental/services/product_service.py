from __future__ import annotations

import json
import logging
from datetime import datetime

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from models.rental_models import PRODUCT_STATUSES, Product
from schemas.products import ProductCreate, ProductUpdate
from services.ledger_errors import InternalError, NotFoundError, ValidationError


LOGGER = logging.getLogger("wardrobe_rental.products")

PRODUCT_FIELDS = {
    "name": "Name",
    "sku": "SKU",
    "description": "Description",
    "price": "Price",
    "gender": "Gender",
    "category": "Category",
    "status": "Status",
}


def _dump_list(values: list[str] | None) -> str:
    cleaned = [str(value).strip() for value in (values or []) if str(value).strip()]
    return json.dumps(cleaned, ensure_ascii=True)


def _parse_list(raw: str | None) -> list[str]:
    if not raw:
        return []
    try:
        parsed = json.loads(raw)
    except (ValueError, json.JSONDecodeError):
        return [raw.strip()] if raw.strip() else []
    if isinstance(parsed, list):
        return [str(item) for item in parsed]
    return [str(parsed)]


def sku_in_use(db: Session, sku: str, exclude_product_id: int | None = None) -> bool:
    stmt = (
        select(func.count(Product.ProductID))
        .where(func.lower(Product.SKU) == sku.strip().lower())
        .where(Product.IsDeleted.is_(False))
    )
    if exclude_product_id:
        stmt = stmt.where(Product.ProductID != exclude_product_id)
    return int(db.execute(stmt).scalar() or 0) > 0


def list_products(db: Session) -> list[Product]:
    stmt = (
        select(Product)
        .where(Product.IsDeleted.is_(False))
        .order_by(Product.CreatedDate.desc(), Product.ProductID.desc())
    )
    return list(db.execute(stmt).scalars().all())


def get_product(db: Session, product_id: int) -> Product:
    product = db.get(Product, product_id)
    if not product or product.IsDeleted:
        raise NotFoundError("Product not found")
    return product


def _save(db: Session, product: Product, action: str) -> Product:
    try:
        db.add(product)
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        raise ValidationError(f'SKU "{product.SKU}" already exists. Please use a different SKU.') from exc
    except SQLAlchemyError as exc:
        db.rollback()
        LOGGER.exception("Product %s failed sku=%s", action, product.SKU)
        raise InternalError(f"Failed to {action} product") from exc
    db.refresh(product)
    LOGGER.info("Product %s product_id=%s sku=%s", action, product.ProductID, product.SKU)
    return product


def create_product(db: Session, payload: ProductCreate) -> Product:
    name = payload.name.strip()
    sku = payload.sku.strip()
    if not name or not sku:
        raise ValidationError("name and sku are required.")
    if payload.price < 0:
        raise ValidationError("price cannot be negative.")
    if sku_in_use(db, sku):
        raise ValidationError(f'SKU "{sku}" already exists. Please use a different SKU.')

    now = datetime.now()
    product = Product(
        Name=name,
        SKU=sku,
        Description=payload.description,
        Price=payload.price,
        Gender=payload.gender,
        Category=payload.category,
        Sizes=_dump_list(payload.size),
        Images=_dump_list(payload.images),
        Status=payload.status,
        IsDeleted=False,
        OrganizationID=payload.organizationID,
        CreatedDate=now,
        UpdatedDate=now,
    )
    return _save(db, product, "create")


def update_product(db: Session, product_id: int, payload: ProductUpdate) -> Product:
    product = get_product(db, product_id)
    changes = payload.model_dump(exclude_unset=True)

    if "sku" in changes:
        sku = (changes["sku"] or "").strip()
        if not sku:
            raise ValidationError("sku cannot be empty.")
        if sku_in_use(db, sku, exclude_product_id=product.ProductID):
            raise ValidationError(f'SKU "{sku}" already exists. Use a different SKU.')
        changes["sku"] = sku
    if "price" in changes and (changes["price"] is None or changes["price"] < 0):
        raise ValidationError("price cannot be negative.")
    if "status" in changes and changes["status"] not in PRODUCT_STATUSES:
        raise ValidationError("status must be one of: " + ", ".join(PRODUCT_STATUSES))

    for key, column in PRODUCT_FIELDS.items():
        if key in changes and changes[key] is not None:
            setattr(product, column, changes[key])
    if changes.get("size") is not None:
        product.Sizes = _dump_list(changes["size"])
    if changes.get("images"):
        product.Images = _dump_list(changes["images"])
    product.UpdatedDate = datetime.now()
    return _save(db, product, "update")


def add_product_images(db: Session, product_id: int, urls: list[str]) -> Product:
    product = get_product(db, product_id)
    product.Images = _dump_list(_parse_list(product.Images) + list(urls))
    product.UpdatedDate = datetime.now()
    return _save(db, product, "update")


def soft_delete_product(db: Session, product_id: int) -> Product:
    product = get_product(db, product_id)
    product.IsDeleted = True
    product.UpdatedDate = datetime.now()
    return _save(db, product, "delete")


def product_images(product: Product) -> list[str]:
    return _parse_list(product.Images)


def serialize_product(product: Product) -> dict:
    return {
        "productID": product.ProductID,
        "name": product.Name,
        "sku": product.SKU,
        "description": product.Description,
        "price": float(product.Price) if product.Price is not None else 0.0,
        "gender": product.Gender,
        "category": product.Category,
        "size": _parse_list(product.Sizes),
        "images": _parse_list(product.Images),
        "status": product.Status,
        "isDeleted": bool(product.IsDeleted),
        "organizationID": product.OrganizationID,
        "createdDate": product.CreatedDate,
        "updatedDate": product.UpdatedDate,
    }
