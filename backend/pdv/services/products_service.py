# Overview: Service-layer operations for products; encapsulates business logic and database work.

"""
Product catalog.

Stock is not writable through update_product: after creation it only moves
through the inventory ledger, so every change has a movement behind it.
"""
from __future__ import annotations

from sqlalchemy import or_

from ..extensions import db
from ..errors import NotFoundError
from ..models import Product
from ..validation import ModelValidationPolicy, enforce_rules_product, validate_payload
from .concurrency import commit_or_raise, run_with_retry

PRODUCT_CREATE_POLICY = ModelValidationPolicy(
    writable_fields={
        "name", "description", "category", "price_cents", "stock",
        "min_stock", "barcode", "supplier",
    },
    required_on_create={"name", "price_cents"},
)

PRODUCT_UPDATE_POLICY = ModelValidationPolicy(
    writable_fields={
        "name", "description", "category", "price_cents",
        "min_stock", "barcode", "supplier",
    },
)


def get_product(product_id: int) -> Product:
    product = db.session.get(Product, product_id)
    if product is None:
        raise NotFoundError(f"Product #{product_id} not found")
    return product


def create_product(payload: dict) -> Product:
    patch = validate_payload(model=Product, payload=payload, policy=PRODUCT_CREATE_POLICY, partial=False)
    enforce_rules_product(patch)
    if patch.get("barcode") == "":
        patch["barcode"] = None

    product = Product(**patch)
    db.session.add(product)
    commit_or_raise()
    return product


def update_product(product_id: int, payload: dict) -> Product:
    patch = validate_payload(model=Product, payload=payload, policy=PRODUCT_UPDATE_POLICY, partial=True)
    enforce_rules_product(patch)
    if patch.get("barcode") == "":
        patch["barcode"] = None

    def _apply() -> Product:
        product = get_product(product_id)
        for key, value in patch.items():
            setattr(product, key, value)
        commit_or_raise()
        return product

    return run_with_retry(_apply)


def list_products(search: str | None = None, category: str | None = None) -> list[Product]:
    query = db.session.query(Product)
    if search:
        like = f"%{search.strip()}%"
        query = query.filter(or_(Product.name.ilike(like), Product.barcode == search.strip()))
    if category:
        query = query.filter(Product.category == category)
    return query.order_by(Product.name.asc(), Product.id.asc()).all()


def list_low_stock_products() -> list[Product]:
    return (
        db.session.query(Product)
        .filter(Product.stock <= Product.min_stock)
        .order_by(Product.stock.asc(), Product.name.asc())
        .all()
    )
