# Overview: Flask API routes for inventory operations; parses input and returns JSON responses.

"""
Inventory API Routes

Stock views, manual movements (restock, adjustment, transfer) and cylinders
borrowed from suppliers. Every movement writes an inventory log row in the
same transaction as the quantity change; order debits and cancel restocks
happen in the order routes, not here. Supplier loans never touch warehouse
stock.
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..errors import OrderingError
from ..extensions import db
from ..models import Warehouse
from ..models.auth import ROLE_ACCOUNTING, ROLE_DISPATCH, ROLE_MANAGER, STAFF_ROLES
from ..models.inventory import TX_RESTOCK
from ..services import inventory_service
from ..services.inventory_service import StockKey
from ..validation import optional_int, optional_str, require_int
from ..decorators import require_auth, require_role


inventory_bp = Blueprint("inventory", __name__, url_prefix="/api/inventory")


def _stock_key(data: dict) -> StockKey:
    return StockKey(
        warehouse_id=require_int(data, "warehouse_id", minimum=1),
        item_type=data.get("item_type"),
        item_id=require_int(data, "item_id", minimum=1),
        state=data.get("state"),
    )


# =============================================================================
# STOCK VIEWS
# =============================================================================

@inventory_bp.get("/warehouses")
@require_auth
@require_role(*STAFF_ROLES)
def list_warehouses_route():
    warehouses = db.session.query(Warehouse).order_by(Warehouse.id.asc()).all()
    return jsonify({"items": [w.to_dict() for w in warehouses], "count": len(warehouses)}), 200


@inventory_bp.get("/warehouses/<int:warehouse_id>/stock")
@require_auth
@require_role(*STAFF_ROLES)
def warehouse_stock_route(warehouse_id: int):
    try:
        return jsonify(inventory_service.get_stock_by_warehouse(warehouse_id)), 200
    except OrderingError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to get warehouse stock")
        return jsonify({"error": "Internal server error"}), 500


@inventory_bp.get("/stock")
@require_auth
@require_role(*STAFF_ROLES)
def default_stock_route():
    """Stock of the default (order fulfilment) warehouse."""
    try:
        warehouse = inventory_service.get_default_warehouse()
        return jsonify(inventory_service.get_stock_by_warehouse(warehouse.id)), 200
    except OrderingError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to get stock")
        return jsonify({"error": "Internal server error"}), 500


@inventory_bp.get("/stock/total")
@require_auth
@require_role(ROLE_DISPATCH, ROLE_ACCOUNTING, ROLE_MANAGER)
def total_stock_route():
    """Stock summed over every warehouse, with open supplier loans."""
    try:
        return jsonify(inventory_service.get_total_stock()), 200
    except OrderingError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to get total stock")
        return jsonify({"error": "Internal server error"}), 500


@inventory_bp.get("/log")
@require_auth
@require_role(*STAFF_ROLES)
def inventory_log_route():
    """
    Query params: warehouse_id, item_type, item_id, order_id, page, per_page
    """
    try:
        args = request.args
        result = inventory_service.list_inventory_log(
            warehouse_id=optional_int(args, "warehouse_id", minimum=1),
            item_type=args.get("item_type") or None,
            item_id=optional_int(args, "item_id", minimum=1),
            related_order_id=optional_int(args, "order_id", minimum=1),
            page=args.get("page", 1, type=int),
            per_page=args.get("per_page", 50, type=int),
        )
        return jsonify(result), 200
    except OrderingError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to list inventory log")
        return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# MOVEMENTS
# =============================================================================

@inventory_bp.post("/restock")
@require_auth
@require_role(ROLE_DISPATCH, ROLE_MANAGER)
def restock_route():
    """
    Request body:
    {
        "warehouse_id": 1, "item_type": "cylinder", "item_id": 1,
        "state": "full", "quantity": 20, "notes": "Supplier delivery"
    }
    """
    try:
        data = request.get_json(silent=True) or {}
        key = _stock_key(data)
        qty = require_int(data, "quantity", minimum=1)

        row = inventory_service.credit(
            key,
            qty,
            TX_RESTOCK,
            user_id=g.actor.user_id,
            reason="Restock",
            notes=optional_str(data, "notes"),
        )

        current_app.logger.info(
            "Stock restocked",
            extra={"warehouse_id": key.warehouse_id, "item_type": key.item_type, "item_id": key.item_id,
                   "state": key.state, "quantity": qty, "user_id": g.actor.user_id},
        )
        return jsonify({"stock": row.to_dict()}), 200
    except OrderingError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to restock")
        return jsonify({"error": "Internal server error"}), 500


@inventory_bp.post("/adjust")
@require_auth
@require_role(ROLE_MANAGER)
def adjust_route():
    """
    Signed manual correction.

    Request body: warehouse_id, item_type, item_id, state,
    "quantity_change": -2, "reason": "Damaged in storage", "notes" (optional)
    """
    try:
        data = request.get_json(silent=True) or {}
        key = _stock_key(data)
        delta = require_int(data, "quantity_change")

        row = inventory_service.adjust(
            key,
            delta,
            reason=optional_str(data, "reason", max_length=255),
            user_id=g.actor.user_id,
            notes=optional_str(data, "notes"),
        )

        current_app.logger.info(
            "Stock adjusted",
            extra={"warehouse_id": key.warehouse_id, "item_type": key.item_type, "item_id": key.item_id,
                   "state": key.state, "delta": delta, "user_id": g.actor.user_id},
        )
        return jsonify({"stock": row.to_dict()}), 200
    except OrderingError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to adjust stock")
        return jsonify({"error": "Internal server error"}), 500


@inventory_bp.post("/transfer")
@require_auth
@require_role(ROLE_MANAGER)
def transfer_route():
    """
    Request body: source_warehouse_id, target_warehouse_id, item_type,
    item_id, state, quantity, notes (optional)
    """
    try:
        data = request.get_json(silent=True) or {}

        result = inventory_service.transfer(
            source_warehouse_id=require_int(data, "source_warehouse_id", minimum=1),
            target_warehouse_id=require_int(data, "target_warehouse_id", minimum=1),
            item_type=data.get("item_type"),
            item_id=require_int(data, "item_id", minimum=1),
            state=data.get("state"),
            qty=require_int(data, "quantity", minimum=1),
            user_id=g.actor.user_id,
            notes=optional_str(data, "notes"),
        )

        current_app.logger.info(
            "Stock transferred",
            extra={"source_warehouse_id": result["source"]["warehouse_id"],
                   "target_warehouse_id": result["target"]["warehouse_id"], "user_id": g.actor.user_id},
        )
        return jsonify(result), 200
    except OrderingError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to transfer stock")
        return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# SUPPLIER LOANS
# =============================================================================

@inventory_bp.get("/supplier-loans")
@require_auth
@require_role(ROLE_ACCOUNTING, ROLE_MANAGER)
def list_supplier_loans_route():
    try:
        return jsonify(inventory_service.list_supplier_loans()), 200
    except OrderingError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to list supplier loans")
        return jsonify({"error": "Internal server error"}), 500


@inventory_bp.post("/supplier-loans")
@require_auth
@require_role(ROLE_MANAGER)
def add_supplier_loan_route():
    """
    Request body:
    {
        "cylinder_type_id": 1, "quantity": 20, "loan_date": "2026-03-15",
        "supplier_info": "Solgas Trujillo", "notes": "Peak season"
    }
    loan_date defaults to today (UTC).
    """
    try:
        data = request.get_json(silent=True) or {}
        loan = inventory_service.add_supplier_loan(
            cylinder_type_id=require_int(data, "cylinder_type_id", minimum=1),
            quantity=require_int(data, "quantity", minimum=1),
            loan_date=data.get("loan_date"),
            supplier_info=optional_str(data, "supplier_info", max_length=255),
            notes=optional_str(data, "notes", max_length=255),
            user_id=g.actor.user_id,
        )

        current_app.logger.info(
            "Supplier loan recorded",
            extra={"loan_id": loan.id, "cylinder_type_id": loan.cylinder_type_id,
                   "quantity": loan.quantity, "user_id": g.actor.user_id},
        )
        return jsonify({"loan": loan.to_dict()}), 201
    except OrderingError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to record supplier loan")
        return jsonify({"error": "Internal server error"}), 500


@inventory_bp.delete("/supplier-loans/<int:loan_id>")
@require_auth
@require_role(ROLE_MANAGER)
def return_supplier_loan_route(loan_id: int):
    """Loan returned to the supplier; the record is removed."""
    try:
        loan = inventory_service.return_supplier_loan(loan_id)

        current_app.logger.info(
            "Supplier loan returned",
            extra={"loan_id": loan_id, "cylinder_type_id": loan["cylinder_type_id"],
                   "quantity": loan["quantity"], "user_id": g.actor.user_id},
        )
        return jsonify({"loan": loan}), 200
    except OrderingError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to return supplier loan")
        return jsonify({"error": "Internal server error"}), 500
