# Overview: Service-layer operations for printable documents; builds payloads and hands them to the renderer.

"""
Document payloads (carnê booklet, sale report).

Layout and PDF generation are not done here. A payload is a plain dict; the
optional DOCUMENT_RENDERER config (a callable or a "module:attr" /
"module.attr" path) turns it into whatever the deployment prints. Without a
renderer the payload itself is the document.

Rendering runs after the ledger rows are committed; callers treat a
rendering failure as a warning, never as a reason to undo ledger state.
"""

from __future__ import annotations

from importlib import import_module

from flask import current_app

from ..errors import ValidationError
from ..models import Creditor, CarneInstallment, Sale
from pdv.time_utils import to_utc_z, utcnow

DELIVERY_CUSTOMER = "customer"
DELIVERY_STORE = "store"
DELIVERY_BOTH = "both"
DELIVERY_OPTIONS = (DELIVERY_CUSTOMER, DELIVERY_STORE, DELIVERY_BOTH)

DOCUMENT_CARNE = "carne"
DOCUMENT_SALE_REPORT = "sale_report"


def _copies_for(via: str) -> list[str]:
    if via == DELIVERY_BOTH:
        return [DELIVERY_CUSTOMER, DELIVERY_STORE]
    if via in (DELIVERY_CUSTOMER, DELIVERY_STORE):
        return [via]
    raise ValidationError(f"delivery_via must be one of: {', '.join(DELIVERY_OPTIONS)}")


def build_carne_payload(
    creditor: Creditor,
    installments: list[CarneInstallment],
    via: str = DELIVERY_CUSTOMER,
) -> dict:
    """
    Structured carnê: one slip per installment, repeated per requested copy.
    """
    slips = [
        {
            "installment_number": inst.installment_number,
            "installment_count": len(installments),
            "due_date": to_utc_z(inst.due_date),
            "amount_cents": inst.amount_cents,
            "paid": inst.paid,
        }
        for inst in installments
    ]
    return {
        "kind": DOCUMENT_CARNE,
        "generated_at": to_utc_z(utcnow()),
        "creditor_id": creditor.id,
        "customer_id": creditor.customer_id,
        "customer_name": creditor.customer_name,
        "description": creditor.description,
        "total_cents": sum(inst.amount_cents for inst in installments),
        "copies": [{"via": copy, "slips": slips} for copy in _copies_for(via)],
    }


def build_sale_report(sale: Sale) -> dict:
    return {
        "kind": DOCUMENT_SALE_REPORT,
        "generated_at": to_utc_z(utcnow()),
        "sale_id": sale.id,
        "created_at": to_utc_z(sale.created_at),
        "payment_method": sale.payment_method,
        "operator": sale.user.username if sale.user else None,
        "customer_name": sale.customer.name if sale.customer else None,
        "lines": [
            {
                "product_name": item.product_name,
                "quantity": item.quantity,
                "unit_price_cents": item.unit_price_cents,
                "line_total_cents": item.line_total_cents,
            }
            for item in sale.items
        ],
        "subtotal_cents": sale.subtotal_cents,
        "discount_cents": sale.discount_cents,
        "total_cents": sale.total_cents,
        "installments": sale.installments,
        "installment_value_cents": sale.installment_value_cents,
    }


def _resolve_renderer(renderer):
    if renderer is None or callable(renderer):
        return renderer
    module_name, _, attr = str(renderer).replace(":", ".").rpartition(".")
    return getattr(import_module(module_name), attr)


def render_document(kind: str, payload: dict):
    """Hand a payload to the configured renderer (identity when none is set)."""
    renderer = _resolve_renderer(current_app.config.get("DOCUMENT_RENDERER"))
    if renderer is None:
        return payload
    return renderer(kind, payload)
