from __future__ import annotations

from ..extensions import db
from pdv.time_utils import to_utc_z


class Customer(db.Model):
    """
    Customer master data.

    WHY: Credit sales, creditor records and returns snapshot the customer
    name from here.
    """
    __tablename__ = "customers"
    __table_args__ = (
        db.Index("ix_customers_name", "name"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    name = db.Column(db.String(255), nullable=False)
    phone = db.Column(db.String(32), nullable=True)
    email = db.Column(db.String(255), nullable=True)
    # Brazilian taxpayer id, stored as typed
    cpf = db.Column(db.String(20), nullable=True, unique=True)
    address = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "phone": self.phone,
            "email": self.email,
            "cpf": self.cpf,
            "address": self.address,
            "created_at": to_utc_z(self.created_at),
        }
