# Overview: Flask API routes for orders operations; parses input and returns JSON responses.

"""
Order API Routes

- Customers place, list and cancel their own orders
- Dispatch (base) and managers approve orders and work the status queues
- Creation and cancellation move stock and loyalty points in the same
  transaction as the order itself
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..errors import OrderingError
from ..models.auth import ROLE_CUSTOMER, ROLE_DISPATCH, ROLE_MANAGER, STAFF_ROLES
from ..services import order_service
from ..services.order_service import OrderRequest
from ..decorators import require_auth, require_role


orders_bp = Blueprint("orders", __name__, url_prefix="/api/orders")


# =============================================================================
# ORDER CREATION
# =============================================================================

@orders_bp.post("")
@require_auth
@require_role(ROLE_CUSTOMER)
def create_order_route():
    """
    Place an order for the authenticated customer.

    Request body:
    {
        "delivery_address_text": "Av. Lima 123, Miraflores",
        "cylinder_type_id": 1,            (optional if other_items given)
        "action_type": "exchange",        (new_purchase | exchange | loan_purchase)
        "cylinder_quantity": 1,
        "other_items": [{"product_id": 2, "quantity": 1}],
        "delivery_instructions": "...",   (optional)
        "latitude": -12.1, "longitude": -77.0,   (optional)
        "points_to_redeem": 100,          (optional)
        "voucher_code": "ABC"             (optional, stored only)
    }

    Returns:
        201: {order_id, total, total_cents, points_earned, points_redeemed}
        400: Invalid input
        404: Catalog item missing or unavailable
        409: Insufficient stock or points
    """
    try:
        data = request.get_json(silent=True)
        order_request = OrderRequest.from_payload(data)

        receipt = order_service.create_order(
            g.actor.user_id,
            order_request,
            actor_user_id=g.actor.user_id,
        )

        current_app.logger.info(
            "Order created",
            extra={
                "order_id": receipt.order_id,
                "customer_id": g.actor.user_id,
                "total_cents": receipt.total_cents,
                "points_redeemed": receipt.points_redeemed,
            },
        )
        return jsonify(receipt.to_dict()), 201

    except OrderingError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to create order")
        return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# ORDER QUERIES
# =============================================================================

@orders_bp.get("/mine")
@require_auth
@require_role(ROLE_CUSTOMER)
def my_orders_route():
    """Order history of the authenticated customer, newest first."""
    try:
        page = request.args.get("page", 1, type=int)
        per_page = request.args.get("per_page", 10, type=int)
        return jsonify(order_service.list_customer_orders(g.actor.user_id, page=page, per_page=per_page)), 200
    except OrderingError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to list customer orders")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.get("")
@require_auth
@require_role(*STAFF_ROLES)
def list_orders_route():
    """
    Staff queues.

    Query params:
    - status: comma-separated order statuses (default: pending_approval)
    - page, per_page
    """
    try:
        raw = request.args.get("status", "pending_approval")
        statuses = [s.strip() for s in raw.split(",") if s.strip()]
        page = request.args.get("page", 1, type=int)
        per_page = request.args.get("per_page", 20, type=int)
        return jsonify(order_service.list_orders_by_status(statuses, page=page, per_page=per_page)), 200
    except OrderingError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to list orders")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.get("/<int:order_id>")
@require_auth
def get_order_route(order_id: int):
    try:
        return jsonify(order_service.get_order(order_id, g.actor)), 200
    except OrderingError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to get order")
        return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# STATE CHANGES
# =============================================================================

@orders_bp.post("/<int:order_id>/approve")
@require_auth
@require_role(ROLE_DISPATCH, ROLE_MANAGER)
def approve_order_route(order_id: int):
    try:
        order = order_service.approve_order(order_id, g.actor)
        current_app.logger.info("Order approved", extra={"order_id": order_id, "user_id": g.actor.user_id})
        return jsonify({"order": order}), 200
    except OrderingError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to approve order")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.post("/bulk-approve")
@require_auth
@require_role(ROLE_DISPATCH, ROLE_MANAGER)
def bulk_approve_route():
    """
    Request body: {"order_ids": [1, 2, 3]}
    Orders not in pending_approval are reported under "skipped".
    """
    try:
        data = request.get_json(silent=True) or {}
        result = order_service.bulk_approve_orders(data.get("order_ids"), g.actor)
        current_app.logger.info(
            "Orders bulk approved",
            extra={"approved": result["approved"], "skipped": len(result["skipped"]), "user_id": g.actor.user_id},
        )
        return jsonify(result), 200
    except OrderingError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to bulk approve orders")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.post("/<int:order_id>/cancel")
@require_auth
def cancel_order_route(order_id: int):
    """
    Cancel an order. Request body: {"reason": "..."} (optional).

    Refunds redeemed points, reverses credited points and restocks every
    non-exchange line.
    """
    try:
        data = request.get_json(silent=True) or {}
        order = order_service.cancel_order(order_id, g.actor, data.get("reason"))
        current_app.logger.info(
            "Order cancelled",
            extra={"order_id": order_id, "user_id": g.actor.user_id, "role": g.actor.role},
        )
        return jsonify({"order": order}), 200
    except OrderingError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to cancel order")
        return jsonify({"error": "Internal server error"}), 500
