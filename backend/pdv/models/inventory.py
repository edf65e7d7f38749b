from __future__ import annotations

from sqlalchemy.orm import validates

from ..extensions import db
from ..errors import ValidationError
from pdv.time_utils import to_utc_z

STOCK_IN = "in"
STOCK_OUT = "out"
STOCK_MOVEMENT_TYPES = (STOCK_IN, STOCK_OUT)


class Product(db.Model):
    """
    Product master data.

    `stock` is a mutable on-hand count moved only by the inventory service
    (every change pairs with a StockMovement). It may dip below zero when
    concurrent sales oversell; no floor is enforced at the ledger layer.

    `version_id` makes every stock write a compare-and-swap: a concurrent
    writer gets StaleDataError and the operation is retried on fresh data.
    """
    __tablename__ = "products"
    __table_args__ = (
        db.Index("ix_products_category_name", "category", "name"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    name = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=True)
    category = db.Column(db.String(128), nullable=False, default="Geral")

    # Authoritative storage in cents (frontend may only format for display)
    price_cents = db.Column(db.Integer, nullable=False)

    stock = db.Column(db.Integer, nullable=False, default=0)
    # Reorder threshold
    min_stock = db.Column(db.Integer, nullable=False, default=0)

    barcode = db.Column(db.String(64), nullable=True, unique=True)
    supplier = db.Column(db.String(255), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    __mapper_args__ = {"version_id_col": version_id}

    @validates("price_cents", "min_stock")
    def _validate_non_negative(self, key, value):
        if value is None or value < 0:
            raise ValidationError(f"{key} must be >= 0")
        return value

    @property
    def is_low_stock(self) -> bool:
        return self.stock <= self.min_stock

    def __repr__(self) -> str:
        return f"<Product id={self.id} name={self.name!r} stock={self.stock}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "category": self.category,
            "price_cents": self.price_cents,
            "stock": self.stock,
            "min_stock": self.min_stock,
            "is_low_stock": self.is_low_stock,
            "barcode": self.barcode,
            "supplier": self.supplier,
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class StockMovement(db.Model):
    """Append-only audit entry for one stock change of one product."""
    __tablename__ = "stock_movements"
    __table_args__ = (
        db.Index("ix_stock_movements_product_created", "product_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    # Snapshot so the log reads the same after a rename
    product_name = db.Column(db.String(255), nullable=False)

    type = db.Column(db.String(8), nullable=False, index=True)
    quantity = db.Column(db.Integer, nullable=False)

    # Free text naming the originating document, e.g. "Sale #12"
    reason = db.Column(db.String(255), nullable=False)

    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    product = db.relationship("Product")

    @validates("type")
    def _validate_type(self, key, value):
        if value not in STOCK_MOVEMENT_TYPES:
            raise ValidationError(f"type must be one of: {', '.join(STOCK_MOVEMENT_TYPES)}")
        return value

    @validates("quantity")
    def _validate_quantity(self, key, value):
        if value is None or value <= 0:
            raise ValidationError("quantity must be > 0")
        return value

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "product_name": self.product_name,
            "type": self.type,
            "quantity": self.quantity,
            "reason": self.reason,
            "created_by_user_id": self.created_by_user_id,
            "created_at": to_utc_z(self.created_at),
        }
