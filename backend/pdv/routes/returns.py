# Overview: Flask API routes for returns operations; parses input and returns JSON responses.

# backend/pdv/routes/returns.py
"""
Return / Exchange API Routes

DESIGN:
- Create a return (or exchange) against an original sale in one call
- Move it to processed or cancelled (terminal)
- Ring up the replacement sale of an exchange

SECURITY:
- SALES permission required; operator is stamped on every document
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..errors import PdvError
from ..services import return_service, sales_service
from ..decorators import require_auth, require_permission


returns_bp = Blueprint("returns", __name__, url_prefix="/api/returns")


# =============================================================================
# RETURN CREATION
# =============================================================================

@returns_bp.post("")
@require_auth
@require_permission("SALES")
def create_return_route():
    """
    Request body:
    {
        "sale_id": 123,
        "type": "return",                 (return | exchange)
        "reason": "defeito",
        "items": [{"product_id": 1, "quantity": 1, "condition": "new"}]
    }

    Returns:
        201: {"return": ..., "exchange": ..., "stock_movements": [...], "warnings": [...]}
    """
    try:
        data = request.get_json(silent=True) or {}
        sale_id = data.get("sale_id")
        if sale_id is None:
            return jsonify({"error": "sale_id required"}), 400

        outcome = return_service.process_return(
            sale_id,
            return_service.parse_selections(data.get("items")),
            data.get("reason"),
            g.operator,
            return_type=data.get("type") or "return",
        )
        return jsonify(outcome.to_dict()), 201
    except PdvError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to create return")
        return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# STATUS
# =============================================================================

@returns_bp.post("/<int:return_id>/status")
@require_auth
@require_permission("SALES")
def set_return_status_route(return_id: int):
    """Request body: {"status": "processed" | "cancelled"}"""
    try:
        data = request.get_json(silent=True) or {}
        outcome = return_service.set_return_status(return_id, data.get("status"), g.operator)
        return jsonify(outcome.to_dict()), 200
    except PdvError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to update return status")
        return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# EXCHANGES
# =============================================================================

@returns_bp.post("/exchanges/<int:exchange_id>/sale")
@require_auth
@require_permission("SALES")
def complete_exchange_route(exchange_id: int):
    """
    Request body is a checkout without customer_id (the exchange's customer
    is used): {"items": [...], "payment_method": "cash", ...}
    """
    try:
        data = request.get_json(silent=True) or {}
        outcome = return_service.complete_exchange(
            exchange_id,
            sales_service.parse_cart(data.get("items")),
            data.get("payment_method"),
            g.operator,
            discount_cents=data.get("discount_cents", 0),
            installments=data.get("installments"),
        )
        return jsonify(outcome.to_dict()), 201
    except PdvError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to complete exchange")
        return jsonify({"error": "Internal server error"}), 500


@returns_bp.get("/exchanges")
@require_auth
@require_permission("SALES")
def list_exchanges_route():
    try:
        exchanges = return_service.list_exchanges(status=request.args.get("status"))
        return jsonify({"items": [e.to_dict() for e in exchanges], "count": len(exchanges)}), 200
    except PdvError as e:
        return jsonify(e.to_dict()), e.status_code


# =============================================================================
# QUERIES
# =============================================================================

@returns_bp.get("")
@require_auth
@require_permission("SALES")
def list_returns_route():
    try:
        returns = return_service.list_returns(
            status=request.args.get("status"),
            sale_id=request.args.get("sale_id", type=int),
        )
        return jsonify({"items": [r.to_dict() for r in returns], "count": len(returns)}), 200
    except PdvError as e:
        return jsonify(e.to_dict()), e.status_code


@returns_bp.get("/<int:return_id>")
@require_auth
@require_permission("SALES")
def get_return_route(return_id: int):
    try:
        return jsonify(return_service.get_return(return_id).to_dict()), 200
    except PdvError as e:
        return jsonify(e.to_dict()), e.status_code
