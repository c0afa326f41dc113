# Overview: Flask API routes for delivery operations; parses input and returns JSON responses.

"""
Delivery API Routes

Assignment (dispatch/manager or self-assignment by a repartidor), departure,
completion with on-delivery collection, issue reports and late collections.
Only the assigned delivery person moves an order past `assigned`.
"""

from datetime import datetime

from flask import Blueprint, request, jsonify, g, current_app

from ..errors import OrderingError, ValidationError
from ..models.auth import ROLE_ACCOUNTING, ROLE_DELIVERY, ROLE_DISPATCH, ROLE_MANAGER
from ..money import parse_amount_to_cents
from ..services import delivery_service
from ..validation import require_int
from ..decorators import require_auth, require_role


deliveries_bp = Blueprint("deliveries", __name__, url_prefix="/api/deliveries")


# =============================================================================
# ASSIGNMENT
# =============================================================================

@deliveries_bp.post("/orders/<int:order_id>/assign")
@require_auth
@require_role(ROLE_DISPATCH, ROLE_MANAGER)
def assign_route(order_id: int):
    """Request body: {"delivery_person_id": 7}"""
    try:
        data = request.get_json(silent=True) or {}
        person_id = require_int(data, "delivery_person_id", minimum=1)

        result = delivery_service.assign(order_id, person_id, g.actor)

        current_app.logger.info(
            "Order assigned",
            extra={"order_id": order_id, "delivery_person_id": person_id, "user_id": g.actor.user_id},
        )
        return jsonify(result), 200
    except OrderingError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to assign order")
        return jsonify({"error": "Internal server error"}), 500


@deliveries_bp.post("/orders/<int:order_id>/take")
@require_auth
@require_role(ROLE_DELIVERY)
def take_route(order_id: int):
    try:
        result = delivery_service.take(order_id, g.actor)
        current_app.logger.info("Order taken", extra={"order_id": order_id, "delivery_person_id": g.actor.user_id})
        return jsonify(result), 200
    except OrderingError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to take order")
        return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# DELIVERY PROGRESS
# =============================================================================

@deliveries_bp.post("/orders/<int:order_id>/start")
@require_auth
@require_role(ROLE_DELIVERY)
def start_route(order_id: int):
    try:
        result = delivery_service.start(order_id, g.actor)
        current_app.logger.info("Delivery started", extra={"order_id": order_id, "delivery_person_id": g.actor.user_id})
        return jsonify(result), 200
    except OrderingError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to start delivery")
        return jsonify({"error": "Internal server error"}), 500


@deliveries_bp.post("/orders/<int:order_id>/complete")
@require_auth
@require_role(ROLE_DELIVERY)
def complete_route(order_id: int):
    """
    Complete a delivery.

    Request body:
    {
        "collection_method": "cash",       (cash | yape_plin | transfer | deferred | not_collected)
        "amount_collected": "97.00",       (required for cash, yape_plin, transfer)
        "payment_proof_ref": "...",        (optional)
        "scheduled_collection_time": "2026-01-10T15:00:00Z",  (optional, deferred only)
        "delivery_notes": "..."            (optional)
    }
    """
    try:
        data = request.get_json(silent=True) or {}
        raw_amount = data.get("amount_collected")
        amount_cents = None
        if raw_amount is not None and raw_amount != "":
            amount_cents = parse_amount_to_cents(raw_amount, "amount_collected")

        result = delivery_service.complete(
            order_id,
            g.actor,
            collection_method=data.get("collection_method"),
            amount_cents=amount_cents,
            payment_proof_ref=data.get("payment_proof_ref"),
            scheduled_collection_time=data.get("scheduled_collection_time"),
            delivery_notes=data.get("delivery_notes"),
        )

        current_app.logger.info(
            "Delivery completed",
            extra={
                "order_id": order_id,
                "collection_method": data.get("collection_method"),
                "amount_cents": amount_cents,
                "delivery_person_id": g.actor.user_id,
            },
        )
        return jsonify(result), 200
    except OrderingError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to complete delivery")
        return jsonify({"error": "Internal server error"}), 500


@deliveries_bp.post("/orders/<int:order_id>/issue")
@require_auth
@require_role(ROLE_DELIVERY)
def report_issue_route(order_id: int):
    """Request body: {"notes": "Customer not at home"}"""
    try:
        data = request.get_json(silent=True) or {}
        result = delivery_service.report_issue(order_id, g.actor, data.get("notes"))
        current_app.logger.warning(
            "Delivery issue reported",
            extra={"order_id": order_id, "delivery_person_id": g.actor.user_id},
        )
        return jsonify(result), 200
    except OrderingError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to report delivery issue")
        return jsonify({"error": "Internal server error"}), 500


@deliveries_bp.post("/orders/<int:order_id>/collect")
@require_auth
@require_role(ROLE_DELIVERY)
def collect_late_payment_route(order_id: int):
    """
    Record money collected after delivery.

    Request body: {"amount_collected": "50.00", "payment_method": "cash", "notes": "..."}
    """
    try:
        data = request.get_json(silent=True) or {}
        amount_cents = parse_amount_to_cents(data.get("amount_collected"), "amount_collected")

        result = delivery_service.collect_late_payment(
            order_id,
            g.actor,
            amount_cents=amount_cents,
            payment_method=data.get("payment_method"),
            notes=data.get("notes"),
        )

        current_app.logger.info(
            "Late payment collected",
            extra={"order_id": order_id, "amount_cents": amount_cents, "delivery_person_id": g.actor.user_id},
        )
        return jsonify(result), 200
    except OrderingError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to collect late payment")
        return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# QUERIES
# =============================================================================

@deliveries_bp.get("/orders/<int:order_id>")
@require_auth
def delivery_details_route(order_id: int):
    try:
        return jsonify(delivery_service.get_delivery_details(order_id, g.actor)), 200
    except OrderingError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to get delivery details")
        return jsonify({"error": "Internal server error"}), 500


@deliveries_bp.get("/mine")
@require_auth
@require_role(ROLE_DELIVERY)
def my_assignments_route():
    try:
        items = delivery_service.get_my_assignments(g.actor)
        return jsonify({"items": items, "count": len(items)}), 200
    except OrderingError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to list assignments")
        return jsonify({"error": "Internal server error"}), 500


@deliveries_bp.get("/pending-collections")
@require_auth
@require_role(ROLE_DELIVERY, ROLE_DISPATCH, ROLE_ACCOUNTING, ROLE_MANAGER)
def pending_collections_route():
    try:
        items = delivery_service.list_pending_collections(g.actor)
        return jsonify({"items": items, "count": len(items)}), 200
    except OrderingError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to list pending collections")
        return jsonify({"error": "Internal server error"}), 500


@deliveries_bp.get("/history")
@require_auth
@require_role(ROLE_DELIVERY)
def daily_history_route():
    """Query params: date=YYYY-MM-DD (default: today, UTC)."""
    try:
        raw_date = request.args.get("date")
        day = None
        if raw_date:
            try:
                day = datetime.strptime(raw_date, "%Y-%m-%d")
            except ValueError:
                raise ValidationError("date must be YYYY-MM-DD")
        items = delivery_service.get_daily_history(g.actor, day)
        return jsonify({"items": items, "count": len(items)}), 200
    except OrderingError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to get delivery history")
        return jsonify({"error": "Internal server error"}), 500
