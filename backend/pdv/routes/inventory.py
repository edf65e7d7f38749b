# Overview: Flask API routes for inventory operations; parses input and returns JSON responses.

"""
Inventory API Routes

- POST /api/inventory/adjust: manual entry/exit through the stock ledger
- GET /api/inventory/movements: movement log, newest first
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..errors import PdvError
from ..services import inventory_service
from ..validation import coerce_int
from ..decorators import require_auth, require_permission, require_any_permission


inventory_bp = Blueprint("inventory", __name__, url_prefix="/api/inventory")


@inventory_bp.post("/adjust")
@require_auth
@require_permission("STOCK")
def adjust_route():
    """
    Request body:
    {
        "product_id": 1,
        "quantity_delta": -3,
        "reason": "Breakage"
    }
    """
    try:
        data = request.get_json(silent=True) or {}
        result = inventory_service.adjust_stock(
            coerce_int(data.get("product_id"), "product_id"),
            data.get("quantity_delta"),
            data.get("reason"),
            g.operator,
        )
        return jsonify({
            "product": result.product.to_dict(),
            "movement": result.movement.to_dict() if result.movement else None,
            "warnings": [result.warning] if result.warning else [],
        }), 200
    except PdvError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to adjust stock")
        return jsonify({"error": "Internal server error"}), 500


@inventory_bp.get("/movements")
@require_auth
@require_any_permission("STOCK", "REPORTS")
def movements_route():
    product_id = request.args.get("product_id", type=int)
    limit = min(request.args.get("limit", default=200, type=int), 1000)
    movements = inventory_service.list_movements(product_id=product_id, limit=limit)
    return jsonify({"items": [m.to_dict() for m in movements], "count": len(movements)}), 200
