from __future__ import annotations

from sqlalchemy.orm import validates

from ..extensions import db
from ..errors import ValidationError
from pdv.time_utils import to_utc_z

PAYMENT_CASH = "cash"
PAYMENT_CARD = "card"
PAYMENT_PIX = "pix"
PAYMENT_CREDIT = "credit"
PAYMENT_METHODS = (PAYMENT_CASH, PAYMENT_CARD, PAYMENT_PIX, PAYMENT_CREDIT)


class Sale(db.Model):
    """
    Sale record (append-only fact).

    WHY: A sale is committed once with its items and never edited. Returns
    and exchanges reference it; stock and credit are side effects recorded
    elsewhere.

    total_cents = subtotal_cents - discount_cents, where subtotal_cents is the
    sum of the item line totals.
    """
    __tablename__ = "sales"
    __table_args__ = (
        db.Index("ix_sales_customer_created", "customer_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    payment_method = db.Column(db.String(16), nullable=False, index=True)

    subtotal_cents = db.Column(db.Integer, nullable=False)
    discount_cents = db.Column(db.Integer, nullable=False, default=0)
    total_cents = db.Column(db.Integer, nullable=False)

    # Required for credit sales, optional otherwise
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=True, index=True)

    # Credit sales only
    installments = db.Column(db.Integer, nullable=True)
    installment_value_cents = db.Column(db.Integer, nullable=True)

    # Operator
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)

    user = db.relationship("User")
    customer = db.relationship("Customer")
    items = db.relationship(
        "SaleItem",
        backref="sale",
        cascade="all, delete-orphan",
        order_by="SaleItem.id",
        lazy=True,
    )

    @validates("payment_method")
    def _validate_payment_method(self, key, value):
        if value not in PAYMENT_METHODS:
            raise ValidationError(f"payment_method must be one of: {', '.join(PAYMENT_METHODS)}")
        return value

    @validates("discount_cents")
    def _validate_discount(self, key, value):
        if value is None or value < 0:
            raise ValidationError("discount_cents must be >= 0")
        return value

    def item_for_product(self, product_id: int) -> "SaleItem | None":
        for item in self.items:
            if item.product_id == product_id:
                return item
        return None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "payment_method": self.payment_method,
            "subtotal_cents": self.subtotal_cents,
            "discount_cents": self.discount_cents,
            "total_cents": self.total_cents,
            "customer_id": self.customer_id,
            "installments": self.installments,
            "installment_value_cents": self.installment_value_cents,
            "user_id": self.user_id,
            "created_at": to_utc_z(self.created_at),
            "items": [item.to_dict() for item in self.items],
        }


class SaleItem(db.Model):
    """Line item owned by a Sale; product name and price are snapshots."""
    __tablename__ = "sale_items"
    __table_args__ = (
        db.UniqueConstraint("sale_id", "product_id", name="uq_sale_items_sale_product"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False)
    product_name = db.Column(db.String(255), nullable=False)

    quantity = db.Column(db.Integer, nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False)
    line_total_cents = db.Column(db.Integer, nullable=False)

    @validates("quantity")
    def _validate_quantity(self, key, value):
        if value is None or value <= 0:
            raise ValidationError("quantity must be > 0")
        return value

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sale_id": self.sale_id,
            "product_id": self.product_id,
            "product_name": self.product_name,
            "quantity": self.quantity,
            "unit_price_cents": self.unit_price_cents,
            "line_total_cents": self.line_total_cents,
        }
