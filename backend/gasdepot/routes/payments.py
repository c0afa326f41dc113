# Overview: Flask API routes for payments operations; parses input and returns JSON responses.

"""
Payment API Routes

- Customers submit payment proofs (opaque reference from file storage)
- Accounting (contabilidad) and managers verify or reject payments
- Approving the payment that settles an order credits its earned points
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..errors import OrderingError
from ..models.auth import ROLE_ACCOUNTING, ROLE_CUSTOMER, ROLE_MANAGER
from ..money import parse_amount_to_cents
from ..services import payment_service
from ..decorators import require_auth, require_role


payments_bp = Blueprint("payments", __name__, url_prefix="/api/payments")


# =============================================================================
# PROOF SUBMISSION
# =============================================================================

@payments_bp.post("/orders/<int:order_id>/proof")
@require_auth
@require_role(ROLE_CUSTOMER)
def submit_proof_route(order_id: int):
    """
    Request body:
    {
        "amount": "97.00",
        "payment_method": "yape_plin",     (yape_plin | transfer | other)
        "proof_ref": "uploads/2026/01/abc.jpg",
        "transaction_reference": "OP-123",   (optional)
        "notes": "..."                       (optional)
    }
    """
    try:
        data = request.get_json(silent=True) or {}
        amount_cents = parse_amount_to_cents(data.get("amount"), "amount")

        payment = payment_service.submit_payment_proof(
            order_id,
            g.actor,
            amount_cents=amount_cents,
            payment_method=data.get("payment_method"),
            proof_ref=data.get("proof_ref"),
            transaction_reference=data.get("transaction_reference"),
            notes=data.get("notes"),
        )

        current_app.logger.info(
            "Payment proof submitted",
            extra={"order_id": order_id, "payment_id": payment["id"], "amount_cents": amount_cents},
        )
        return jsonify({"payment": payment}), 201
    except OrderingError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to submit payment proof")
        return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# VERIFICATION
# =============================================================================

@payments_bp.post("/<int:payment_id>/verify")
@require_auth
@require_role(ROLE_ACCOUNTING, ROLE_MANAGER)
def verify_payment_route(payment_id: int):
    """
    Request body: {"approved": true, "notes": "..."}

    Returns:
        200: payment, order and the approved total for the order
        409: payment already verified
    """
    try:
        data = request.get_json(silent=True) or {}

        result = payment_service.verify_payment(
            payment_id,
            g.actor,
            approved=data.get("approved"),
            notes=data.get("notes"),
        )

        current_app.logger.info(
            "Payment verified",
            extra={
                "payment_id": payment_id,
                "status": result["payment"]["status"],
                "order_id": result["order"]["id"],
                "payment_status": result["order"]["payment_status"],
                "user_id": g.actor.user_id,
            },
        )
        return jsonify(result), 200
    except OrderingError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to verify payment")
        return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# QUERIES
# =============================================================================

@payments_bp.get("/unverified")
@require_auth
@require_role(ROLE_ACCOUNTING, ROLE_MANAGER)
def unverified_payments_route():
    try:
        page = request.args.get("page", 1, type=int)
        per_page = request.args.get("per_page", 20, type=int)
        return jsonify(payment_service.list_unverified_payments(page=page, per_page=per_page)), 200
    except OrderingError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to list unverified payments")
        return jsonify({"error": "Internal server error"}), 500


@payments_bp.get("/orders/<int:order_id>")
@require_auth
def payment_history_route(order_id: int):
    try:
        return jsonify(payment_service.get_payment_history(order_id, g.actor)), 200
    except OrderingError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to get payment history")
        return jsonify({"error": "Internal server error"}), 500
