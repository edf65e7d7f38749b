from __future__ import annotations

from sqlalchemy.orm import validates

from ..extensions import db
from ..errors import ValidationError
from pdv.time_utils import to_utc_z

RETURN_TYPE_RETURN = "return"
RETURN_TYPE_EXCHANGE = "exchange"
RETURN_TYPES = (RETURN_TYPE_RETURN, RETURN_TYPE_EXCHANGE)

CONDITION_NEW = "new"
CONDITION_USED = "used"
CONDITION_DAMAGED = "damaged"
ITEM_CONDITIONS = (CONDITION_NEW, CONDITION_USED, CONDITION_DAMAGED)

RETURN_STATUS_PENDING = "pending"
RETURN_STATUS_PROCESSED = "processed"
RETURN_STATUS_CANCELLED = "cancelled"
RETURN_STATUSES = (RETURN_STATUS_PENDING, RETURN_STATUS_PROCESSED, RETURN_STATUS_CANCELLED)


class Return(db.Model):
    """
    Return or exchange request tied to an original sale.

    LIFECYCLE: pending -> processed | cancelled (both terminal).
    total_refund_cents uses the sale's price snapshot, never the current
    product price.
    """
    __tablename__ = "returns"
    __table_args__ = (
        db.Index("ix_returns_sale_status", "sale_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=False)
    type = db.Column(db.String(16), nullable=False, default=RETURN_TYPE_RETURN)
    reason = db.Column(db.String(255), nullable=False)

    total_refund_cents = db.Column(db.Integer, nullable=False, default=0)
    status = db.Column(db.String(16), nullable=False, default=RETURN_STATUS_PENDING, index=True)

    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    processed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    sale = db.relationship("Sale", backref=db.backref("returns", lazy=True))
    lines = db.relationship(
        "ReturnLine",
        backref="return_doc",
        cascade="all, delete-orphan",
        order_by="ReturnLine.id",
        lazy=True,
    )

    @validates("type")
    def _validate_type(self, key, value):
        if value not in RETURN_TYPES:
            raise ValidationError(f"type must be one of: {', '.join(RETURN_TYPES)}")
        return value

    @validates("status")
    def _validate_status(self, key, value):
        if value not in RETURN_STATUSES:
            raise ValidationError(f"status must be one of: {', '.join(RETURN_STATUSES)}")
        return value

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sale_id": self.sale_id,
            "type": self.type,
            "reason": self.reason,
            "total_refund_cents": self.total_refund_cents,
            "status": self.status,
            "user_id": self.user_id,
            "customer_id": self.customer_id,
            "created_at": to_utc_z(self.created_at),
            "processed_at": to_utc_z(self.processed_at) if self.processed_at else None,
            "lines": [line.to_dict() for line in self.lines],
        }


class ReturnLine(db.Model):
    """Quantity of one sale item coming back, with its condition."""
    __tablename__ = "return_lines"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    return_id = db.Column(db.Integer, db.ForeignKey("returns.id"), nullable=False, index=True)
    sale_item_id = db.Column(db.Integer, db.ForeignKey("sale_items.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False)
    product_name = db.Column(db.String(255), nullable=False)

    quantity = db.Column(db.Integer, nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False)
    line_refund_cents = db.Column(db.Integer, nullable=False)
    condition = db.Column(db.String(16), nullable=False, default=CONDITION_NEW)
    # Units actually put back on the shelf; cancellation reverses exactly this.
    restocked_quantity = db.Column(db.Integer, nullable=False, default=0)

    @validates("condition")
    def _validate_condition(self, key, value):
        if value not in ITEM_CONDITIONS:
            raise ValidationError(f"condition must be one of: {', '.join(ITEM_CONDITIONS)}")
        return value

    @validates("quantity")
    def _validate_quantity(self, key, value):
        if value is None or value <= 0:
            raise ValidationError("quantity must be > 0")
        return value

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "return_id": self.return_id,
            "sale_item_id": self.sale_item_id,
            "product_id": self.product_id,
            "product_name": self.product_name,
            "quantity": self.quantity,
            "unit_price_cents": self.unit_price_cents,
            "line_refund_cents": self.line_refund_cents,
            "condition": self.condition,
            "restocked_quantity": self.restocked_quantity,
        }


class Exchange(db.Model):
    """
    Exchange of returned goods for a replacement sale.

    returned_items / new_items are JSON snapshots; new_sale_id is set once
    the replacement sale has been finalized.
    """
    __tablename__ = "exchanges"
    __table_args__ = (
        db.UniqueConstraint("return_id", name="uq_exchanges_return"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    return_id = db.Column(db.Integer, db.ForeignKey("returns.id"), nullable=True)
    original_sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=False, index=True)
    new_sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=True)

    reason = db.Column(db.String(255), nullable=False)
    returned_items = db.Column(db.JSON, nullable=False, default=list)
    new_items = db.Column(db.JSON, nullable=False, default=list)

    status = db.Column(db.String(16), nullable=False, default=RETURN_STATUS_PENDING, index=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    processed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    return_doc = db.relationship("Return", backref=db.backref("exchange", uselist=False))
    original_sale = db.relationship("Sale", foreign_keys=[original_sale_id])
    new_sale = db.relationship("Sale", foreign_keys=[new_sale_id])

    @validates("status")
    def _validate_status(self, key, value):
        if value not in RETURN_STATUSES:
            raise ValidationError(f"status must be one of: {', '.join(RETURN_STATUSES)}")
        return value

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "return_id": self.return_id,
            "original_sale_id": self.original_sale_id,
            "new_sale_id": self.new_sale_id,
            "reason": self.reason,
            "returned_items": self.returned_items,
            "new_items": self.new_items,
            "status": self.status,
            "user_id": self.user_id,
            "customer_id": self.customer_id,
            "created_at": to_utc_z(self.created_at),
            "processed_at": to_utc_z(self.processed_at) if self.processed_at else None,
        }
