# Overview: Service-layer operations for customers; encapsulates business logic and database work.

from __future__ import annotations

from sqlalchemy import or_

from ..extensions import db
from ..errors import NotFoundError
from ..models import Customer
from ..validation import ModelValidationPolicy, validate_payload
from .concurrency import commit_or_raise

CUSTOMER_POLICY = ModelValidationPolicy(
    writable_fields={"name", "phone", "email", "cpf", "address"},
    required_on_create={"name"},
)


def _normalize_blanks(patch: dict) -> dict:
    # Empty optional strings are stored as NULL so the unique cpf index ignores them
    for key in ("phone", "email", "cpf", "address"):
        if patch.get(key) == "":
            patch[key] = None
    return patch


def get_customer(customer_id: int) -> Customer:
    customer = db.session.get(Customer, customer_id)
    if customer is None:
        raise NotFoundError(f"Customer #{customer_id} not found")
    return customer


def create_customer(payload: dict) -> Customer:
    patch = _normalize_blanks(
        validate_payload(model=Customer, payload=payload, policy=CUSTOMER_POLICY, partial=False)
    )
    customer = Customer(**patch)
    db.session.add(customer)
    commit_or_raise()
    return customer


def update_customer(customer_id: int, payload: dict) -> Customer:
    patch = _normalize_blanks(
        validate_payload(model=Customer, payload=payload, policy=CUSTOMER_POLICY, partial=True)
    )
    customer = get_customer(customer_id)
    for key, value in patch.items():
        setattr(customer, key, value)
    commit_or_raise()
    return customer


def list_customers(search: str | None = None) -> list[Customer]:
    query = db.session.query(Customer)
    if search:
        like = f"%{search.strip()}%"
        query = query.filter(or_(
            Customer.name.ilike(like),
            Customer.cpf.ilike(like),
            Customer.phone.ilike(like),
        ))
    return query.order_by(Customer.name.asc(), Customer.id.asc()).all()
