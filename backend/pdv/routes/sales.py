# Overview: Flask API routes for sales operations; parses input and returns JSON responses.

# backend/pdv/routes/sales.py
"""
Checkout API Routes

POST /api/sales finalizes a cart in one call. The response always carries
the committed sale; partial failures of secondary steps (stock movement
log, credit ledger entry) are reported in "warnings" with HTTP 201, so the
client clears the cart and shows the operator what to fix by hand.
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..errors import PdvError
from ..services import sales_service
from ..services.document_service import DOCUMENT_SALE_REPORT, build_sale_report, render_document
from ..decorators import require_auth, require_permission, require_any_permission


sales_bp = Blueprint("sales", __name__, url_prefix="/api/sales")


@sales_bp.post("")
@require_auth
@require_permission("SALES")
def finalize_sale_route():
    """
    Request body:
    {
        "items": [{"product_id": 1, "quantity": 2}],
        "payment_method": "credit",
        "discount_cents": 0,          (optional)
        "customer_id": 3,             (credit sales)
        "installments": 4             (credit sales)
    }

    Returns:
        201: {"sale": ..., "creditor": ..., "stock_movements": [...], "warnings": [...]}
        400/404: nothing was recorded
    """
    try:
        data = request.get_json(silent=True) or {}
        outcome = sales_service.finalize_sale(
            sales_service.parse_cart(data.get("items")),
            data.get("payment_method"),
            g.operator,
            discount_cents=data.get("discount_cents", 0),
            customer_id=data.get("customer_id"),
            installments=data.get("installments"),
        )
        return jsonify(outcome.to_dict()), 201
    except PdvError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to finalize sale")
        return jsonify({"error": "Internal server error"}), 500


@sales_bp.get("")
@require_auth
@require_any_permission("SALES", "REPORTS")
def list_sales_route():
    try:
        sales = sales_service.list_sales(
            customer_id=request.args.get("customer_id", type=int),
            payment_method=request.args.get("payment_method"),
            limit=min(request.args.get("limit", default=200, type=int), 1000),
        )
        return jsonify({"items": [s.to_dict() for s in sales], "count": len(sales)}), 200
    except PdvError as e:
        return jsonify(e.to_dict()), e.status_code


@sales_bp.get("/<int:sale_id>")
@require_auth
@require_any_permission("SALES", "REPORTS")
def get_sale_route(sale_id: int):
    try:
        return jsonify(sales_service.get_sale(sale_id).to_dict()), 200
    except PdvError as e:
        return jsonify(e.to_dict()), e.status_code


@sales_bp.get("/<int:sale_id>/report")
@require_auth
@require_any_permission("SALES", "REPORTS")
def sale_report_route(sale_id: int):
    try:
        sale = sales_service.get_sale(sale_id)
        document = render_document(DOCUMENT_SALE_REPORT, build_sale_report(sale))
        return jsonify({"document": document}), 200
    except PdvError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to render sale report")
        return jsonify({"error": "Document could not be generated"}), 500
