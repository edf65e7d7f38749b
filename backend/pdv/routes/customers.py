# Overview: Flask API routes for customers operations; parses input and returns JSON responses.

from flask import Blueprint, request, jsonify, current_app

from ..errors import PdvError
from ..services import customer_service
from ..decorators import require_auth, require_any_permission


customers_bp = Blueprint("customers", __name__, url_prefix="/api/customers")


@customers_bp.get("")
@require_auth
@require_any_permission("SALES", "REPORTS")
def list_customers_route():
    customers = customer_service.list_customers(search=request.args.get("search"))
    return jsonify({"items": [c.to_dict() for c in customers], "count": len(customers)}), 200


@customers_bp.get("/<int:customer_id>")
@require_auth
@require_any_permission("SALES", "REPORTS")
def get_customer_route(customer_id: int):
    try:
        return jsonify(customer_service.get_customer(customer_id).to_dict()), 200
    except PdvError as e:
        return jsonify(e.to_dict()), e.status_code


@customers_bp.post("")
@require_auth
@require_any_permission("SALES")
def create_customer_route():
    try:
        customer = customer_service.create_customer(request.get_json(silent=True))
        return jsonify(customer.to_dict()), 201
    except PdvError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to create customer")
        return jsonify({"error": "Internal server error"}), 500


@customers_bp.patch("/<int:customer_id>")
@require_auth
@require_any_permission("SALES")
def update_customer_route(customer_id: int):
    try:
        customer = customer_service.update_customer(customer_id, request.get_json(silent=True))
        return jsonify(customer.to_dict()), 200
    except PdvError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to update customer")
        return jsonify({"error": "Internal server error"}), 500
