# Overview: Flask API routes for creditors operations; parses input and returns JSON responses.

# backend/pdv/routes/creditors.py
"""
Credit Ledger (crediário) API Routes

DESIGN:
- Listing and detail report the effective status ("overdue" is computed
  on read, never stored)
- Carnê generation splits the outstanding balance into monthly slips
- Paying a slip does not move the creditor balance; payments and
  settlement do
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..errors import PdvError
from ..services import credit_service
from ..decorators import require_auth, require_permission, require_any_permission


creditors_bp = Blueprint("creditors", __name__, url_prefix="/api/creditors")


def _error(e: PdvError):
    return jsonify(e.to_dict()), e.status_code


# =============================================================================
# CREDITORS
# =============================================================================

@creditors_bp.get("")
@require_auth
@require_any_permission("SALES", "REPORTS")
def list_creditors_route():
    try:
        creditors = credit_service.list_creditors(
            status=request.args.get("status"),
            customer_id=request.args.get("customer_id", type=int),
        )
        return jsonify({"items": [c.to_dict() for c in creditors], "count": len(creditors)}), 200
    except PdvError as e:
        return _error(e)


@creditors_bp.get("/overview")
@require_auth
@require_any_permission("SALES", "REPORTS")
def overview_route():
    return jsonify(credit_service.ledger_overview()), 200


@creditors_bp.get("/<int:creditor_id>")
@require_auth
@require_any_permission("SALES", "REPORTS")
def get_creditor_route(creditor_id: int):
    try:
        creditor = credit_service.get_creditor(creditor_id)
        return jsonify(credit_service.creditor_summary(creditor)), 200
    except PdvError as e:
        return _error(e)


@creditors_bp.post("")
@require_auth
@require_permission("SALES")
def create_creditor_route():
    try:
        creditor = credit_service.create_creditor(request.get_json(silent=True))
        return jsonify(creditor.to_dict()), 201
    except PdvError as e:
        return _error(e)
    except Exception:
        current_app.logger.exception("Failed to create creditor")
        return jsonify({"error": "Internal server error"}), 500


@creditors_bp.patch("/<int:creditor_id>")
@require_auth
@require_permission("SALES")
def update_creditor_route(creditor_id: int):
    try:
        creditor = credit_service.update_creditor(creditor_id, request.get_json(silent=True))
        return jsonify(creditor.to_dict()), 200
    except PdvError as e:
        return _error(e)
    except Exception:
        current_app.logger.exception("Failed to update creditor")
        return jsonify({"error": "Internal server error"}), 500


@creditors_bp.delete("/<int:creditor_id>")
@require_auth
@require_permission("SETTINGS")
def delete_creditor_route(creditor_id: int):
    try:
        credit_service.delete_creditor(creditor_id)
        return jsonify({"deleted": creditor_id}), 200
    except PdvError as e:
        return _error(e)


@creditors_bp.post("/<int:creditor_id>/mark-paid")
@require_auth
@require_permission("SALES")
def mark_creditor_paid_route(creditor_id: int):
    try:
        return jsonify(credit_service.mark_creditor_paid(creditor_id).to_dict()), 200
    except PdvError as e:
        return _error(e)
    except Exception:
        current_app.logger.exception("Failed to settle creditor")
        return jsonify({"error": "Internal server error"}), 500


@creditors_bp.post("/<int:creditor_id>/payments")
@require_auth
@require_permission("SALES")
def record_payment_route(creditor_id: int):
    """
    Request body:
    {
        "amount_cents": 5000,
        "notes": "Paid at the counter"   (optional)
    }
    """
    try:
        data = request.get_json(silent=True) or {}
        payment = credit_service.record_payment(
            creditor_id,
            data.get("amount_cents"),
            operator=g.operator,
            notes=data.get("notes"),
        )
        creditor = credit_service.get_creditor(creditor_id)
        return jsonify({"payment": payment.to_dict(), "creditor": creditor.to_dict()}), 201
    except PdvError as e:
        return _error(e)
    except Exception:
        current_app.logger.exception("Failed to record creditor payment")
        return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# CARNÊ
# =============================================================================

@creditors_bp.post("/<int:creditor_id>/carne")
@require_auth
@require_permission("SALES")
def generate_carne_route(creditor_id: int):
    """
    Request body:
    {
        "count": 4,
        "delivery_via": "customer"   (customer | store | both)
    }
    """
    try:
        data = request.get_json(silent=True) or {}
        schedule = credit_service.generate_installment_schedule(
            creditor_id,
            data.get("count"),
            data.get("delivery_via") or "customer",
        )
        return jsonify(schedule.to_dict()), 201
    except PdvError as e:
        return _error(e)
    except Exception:
        current_app.logger.exception("Failed to generate carnê")
        return jsonify({"error": "Internal server error"}), 500


@creditors_bp.get("/<int:creditor_id>/installments")
@require_auth
@require_any_permission("SALES", "REPORTS")
def list_installments_route(creditor_id: int):
    try:
        installments = credit_service.list_installments(creditor_id)
        return jsonify({"items": [i.to_dict() for i in installments], "count": len(installments)}), 200
    except PdvError as e:
        return _error(e)


@creditors_bp.post("/installments/<int:installment_id>/pay")
@require_auth
@require_permission("SALES")
def pay_installment_route(installment_id: int):
    try:
        return jsonify(credit_service.mark_installment_paid(installment_id).to_dict()), 200
    except PdvError as e:
        return _error(e)


@creditors_bp.patch("/installments/<int:installment_id>")
@require_auth
@require_permission("SALES")
def reschedule_installment_route(installment_id: int):
    try:
        data = request.get_json(silent=True) or {}
        installment = credit_service.reschedule_installment(installment_id, data.get("due_date"))
        return jsonify(installment.to_dict()), 200
    except PdvError as e:
        return _error(e)
