# Overview: Flask API routes for customer and loyalty operations; parses input and returns JSON responses.

"""
Customer API Routes

- Customer directory and profile for staff
- Loyalty balance and ledger (own for customers, any for staff)
- Standalone point redemption by the customer
- Manual loyalty adjustments (gerente)
- Customer-specific exchange prices (gerente)
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..errors import OrderingError
from ..models.auth import ROLE_CUSTOMER, ROLE_MANAGER, STAFF_ROLES
from ..services import catalog_service, loyalty_service
from ..validation import require_int
from ..decorators import require_auth, require_role


customers_bp = Blueprint("customers", __name__, url_prefix="/api/customers")


# =============================================================================
# DIRECTORY
# =============================================================================

@customers_bp.get("")
@require_auth
@require_role(*STAFF_ROLES)
def list_customers_route():
    """Query params: search (name, phone, email or DNI/RUC), page, per_page"""
    try:
        result = loyalty_service.list_customers(
            search=request.args.get("search"),
            page=request.args.get("page", 1, type=int),
            per_page=request.args.get("per_page", 25, type=int),
        )
        return jsonify(result), 200
    except OrderingError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to list customers")
        return jsonify({"error": "Internal server error"}), 500


@customers_bp.get("/<int:customer_id>")
@require_auth
@require_role(*STAFF_ROLES)
def get_customer_route(customer_id: int):
    try:
        return jsonify(loyalty_service.get_customer_details(customer_id)), 200
    except OrderingError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to get customer")
        return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# LOYALTY
# =============================================================================

@customers_bp.get("/me/loyalty")
@require_auth
@require_role(ROLE_CUSTOMER)
def my_loyalty_route():
    try:
        result = loyalty_service.list_transactions(
            g.actor.user_id,
            page=request.args.get("page", 1, type=int),
            per_page=request.args.get("per_page", 20, type=int),
        )
        return jsonify(result), 200
    except OrderingError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to get loyalty history")
        return jsonify({"error": "Internal server error"}), 500


@customers_bp.post("/me/redeem-points")
@require_auth
@require_role(ROLE_CUSTOMER)
def redeem_points_route():
    """Request body: {"points_to_redeem": 100}"""
    try:
        data = request.get_json(silent=True) or {}
        points = require_int(data, "points_to_redeem", minimum=1)

        result = loyalty_service.redeem_points(g.actor.user_id, points, user_id=g.actor.user_id)

        current_app.logger.info(
            "Loyalty points redeemed",
            extra={"customer_id": g.actor.user_id, "points": points},
        )
        return jsonify(result), 200
    except OrderingError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to redeem loyalty points")
        return jsonify({"error": "Internal server error"}), 500


@customers_bp.get("/<int:customer_id>/loyalty")
@require_auth
@require_role(*STAFF_ROLES)
def customer_loyalty_route(customer_id: int):
    try:
        result = loyalty_service.list_transactions(
            customer_id,
            page=request.args.get("page", 1, type=int),
            per_page=request.args.get("per_page", 20, type=int),
        )
        return jsonify(result), 200
    except OrderingError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to get loyalty history")
        return jsonify({"error": "Internal server error"}), 500


@customers_bp.post("/<int:customer_id>/loyalty/adjust")
@require_auth
@require_role(ROLE_MANAGER)
def adjust_loyalty_route(customer_id: int):
    """Request body: {"points_change": -20, "notes": "Duplicate referral"}"""
    try:
        data = request.get_json(silent=True) or {}
        delta = require_int(data, "points_change")

        result = loyalty_service.adjust_points(
            customer_id,
            delta,
            notes=data.get("notes"),
            user_id=g.actor.user_id,
        )

        current_app.logger.info(
            "Loyalty points adjusted",
            extra={"customer_id": customer_id, "delta": delta, "user_id": g.actor.user_id},
        )
        return jsonify(result), 200
    except OrderingError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to adjust loyalty points")
        return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# SPECIAL PRICES
# =============================================================================

@customers_bp.get("/<int:customer_id>/special-prices")
@require_auth
@require_role(*STAFF_ROLES)
def list_special_prices_route(customer_id: int):
    try:
        items = catalog_service.list_special_prices(customer_id)
        return jsonify({"items": items, "count": len(items)}), 200
    except OrderingError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to list special prices")
        return jsonify({"error": "Internal server error"}), 500


@customers_bp.put("/<int:customer_id>/special-prices")
@require_auth
@require_role(ROLE_MANAGER)
def set_special_prices_route(customer_id: int):
    """
    Replace the customer's exchange-price overrides.

    Request body: {"prices": [{"cylinder_type_id": 1, "price_exchange": "40.00"}]}
    """
    try:
        data = request.get_json(silent=True) or {}
        items = catalog_service.set_special_prices(customer_id, data.get("prices"))
        current_app.logger.info(
            "Special prices set",
            extra={"customer_id": customer_id, "count": len(items), "user_id": g.actor.user_id},
        )
        return jsonify({"items": items, "count": len(items)}), 200
    except OrderingError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to set special prices")
        return jsonify({"error": "Internal server error"}), 500


@customers_bp.delete("/<int:customer_id>/special-prices")
@require_auth
@require_role(ROLE_MANAGER)
def clear_special_prices_route(customer_id: int):
    try:
        deleted = catalog_service.clear_special_prices(customer_id)
        current_app.logger.info(
            "Special prices cleared",
            extra={"customer_id": customer_id, "deleted": deleted, "user_id": g.actor.user_id},
        )
        return jsonify({"deleted": deleted}), 200
    except OrderingError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to clear special prices")
        return jsonify({"error": "Internal server error"}), 500
