from __future__ import annotations

from datetime import datetime

from sqlalchemy.orm import validates

from ..extensions import db
from ..errors import ValidationError
from pdv.time_utils import to_utc_z, utcnow

CREDITOR_STATUS_PENDING = "pending"
CREDITOR_STATUS_OVERDUE = "overdue"
CREDITOR_STATUS_PAID = "paid"
CREDITOR_STATUSES = (CREDITOR_STATUS_PENDING, CREDITOR_STATUS_OVERDUE, CREDITOR_STATUS_PAID)

# Only these are ever written; "overdue" is projected at read time.
STORED_CREDITOR_STATUSES = (CREDITOR_STATUS_PENDING, CREDITOR_STATUS_PAID)


class Creditor(db.Model):
    """
    Outstanding balance a customer owes the store.

    Invariants:
    - remaining_amount_cents == total_debt_cents - paid_amount_cents
    - stored status is "paid" iff remaining_amount_cents == 0
    - "overdue" is never stored: effective_status() reports it for pending
      creditors whose due_date has passed

    sale_id links a creditor opened at checkout to its sale (unique, so a
    credit sale opens at most one creditor). Manual creditors have no sale.
    """
    __tablename__ = "creditors"
    __table_args__ = (
        db.UniqueConstraint("sale_id", name="uq_creditors_sale"),
        db.Index("ix_creditors_status_due", "status", "due_date"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=False, index=True)
    customer_name = db.Column(db.String(255), nullable=False)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=True)

    total_debt_cents = db.Column(db.Integer, nullable=False)
    paid_amount_cents = db.Column(db.Integer, nullable=False, default=0)
    remaining_amount_cents = db.Column(db.Integer, nullable=False)

    due_date = db.Column(db.DateTime(timezone=True), nullable=False)
    description = db.Column(db.String(255), nullable=False, default="")
    status = db.Column(db.String(16), nullable=False, default=CREDITOR_STATUS_PENDING)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    customer = db.relationship("Customer")
    sale = db.relationship("Sale")
    installments = db.relationship(
        "CarneInstallment",
        backref="creditor",
        cascade="all, delete-orphan",
        order_by="CarneInstallment.installment_number",
        lazy=True,
    )
    payments = db.relationship(
        "CreditorPayment",
        backref="creditor",
        cascade="all, delete-orphan",
        order_by="CreditorPayment.id",
        lazy=True,
    )

    __mapper_args__ = {"version_id_col": version_id}

    @validates("total_debt_cents", "paid_amount_cents", "remaining_amount_cents")
    def _validate_amount(self, key, value):
        if value is None or value < 0:
            raise ValidationError(f"{key} must be >= 0")
        return value

    @validates("status")
    def _validate_status(self, key, value):
        if value not in STORED_CREDITOR_STATUSES:
            raise ValidationError(f"status must be one of: {', '.join(STORED_CREDITOR_STATUSES)}")
        return value

    def effective_status(self, now: datetime | None = None) -> str:
        now = now or utcnow()
        if self.status == CREDITOR_STATUS_PENDING and self.due_date < now:
            return CREDITOR_STATUS_OVERDUE
        return self.status

    def to_dict(self, now: datetime | None = None) -> dict:
        return {
            "id": self.id,
            "customer_id": self.customer_id,
            "customer_name": self.customer_name,
            "sale_id": self.sale_id,
            "total_debt_cents": self.total_debt_cents,
            "paid_amount_cents": self.paid_amount_cents,
            "remaining_amount_cents": self.remaining_amount_cents,
            "due_date": to_utc_z(self.due_date),
            "description": self.description,
            "status": self.effective_status(now),
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class CarneInstallment(db.Model):
    """One slip of a creditor's installment booklet (carnê)."""
    __tablename__ = "carne_installments"
    __table_args__ = (
        db.UniqueConstraint("creditor_id", "installment_number", name="uq_carne_creditor_number"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    creditor_id = db.Column(db.Integer, db.ForeignKey("creditors.id"), nullable=False, index=True)
    installment_number = db.Column(db.Integer, nullable=False)

    due_date = db.Column(db.DateTime(timezone=True), nullable=False)
    amount_cents = db.Column(db.Integer, nullable=False)

    paid = db.Column(db.Boolean, nullable=False, default=False)
    paid_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    @validates("installment_number")
    def _validate_number(self, key, value):
        if value is None or value < 1:
            raise ValidationError("installment_number must be >= 1")
        return value

    @validates("amount_cents")
    def _validate_amount(self, key, value):
        if value is None or value < 0:
            raise ValidationError("amount_cents must be >= 0")
        return value

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "creditor_id": self.creditor_id,
            "installment_number": self.installment_number,
            "due_date": to_utc_z(self.due_date),
            "amount_cents": self.amount_cents,
            "paid": self.paid,
            "paid_at": to_utc_z(self.paid_at) if self.paid_at else None,
            "created_at": to_utc_z(self.created_at),
        }


class CreditorPayment(db.Model):
    """Payment history entry: money received against a creditor balance."""
    __tablename__ = "creditor_payments"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    creditor_id = db.Column(db.Integer, db.ForeignKey("creditors.id"), nullable=False, index=True)
    amount_cents = db.Column(db.Integer, nullable=False)
    payment_date = db.Column(db.DateTime(timezone=True), nullable=False)
    notes = db.Column(db.String(255), nullable=True)

    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    @validates("amount_cents")
    def _validate_amount(self, key, value):
        if value is None or value <= 0:
            raise ValidationError("amount_cents must be > 0")
        return value

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "creditor_id": self.creditor_id,
            "amount_cents": self.amount_cents,
            "payment_date": to_utc_z(self.payment_date),
            "notes": self.notes,
            "created_by_user_id": self.created_by_user_id,
            "created_at": to_utc_z(self.created_at),
        }
