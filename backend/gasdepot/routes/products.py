# Overview: Flask API routes for catalog operations; parses input and returns JSON responses.

from flask import Blueprint, request, jsonify, g, current_app

from ..errors import OrderingError
from ..models.auth import ROLE_MANAGER, STAFF_ROLES
from ..services import catalog_service
from ..decorators import require_auth, require_role


products_bp = Blueprint("products", __name__, url_prefix="/api/products")


def _include_unavailable() -> bool:
    """Staff may ask for unavailable items too; customers only ever see available ones."""
    wanted = request.args.get("include_unavailable", "false").lower() == "true"
    return wanted and g.actor.role in STAFF_ROLES


# =============================================================================
# CYLINDER TYPES
# =============================================================================

@products_bp.get("/cylinders")
@require_auth
def list_cylinders_route():
    items = catalog_service.list_cylinder_types(include_unavailable=_include_unavailable())
    return jsonify({"items": items, "count": len(items)}), 200


@products_bp.post("/cylinders")
@require_auth
@require_role(ROLE_MANAGER)
def create_cylinder_route():
    """
    Request body:
    {
        "name": "10 kg", "description": "...",
        "price_new_cents": 15000, "price_exchange_cents": 4500,
        "price_loan_cents": 6000, "is_available": true
    }
    """
    try:
        cylinder = catalog_service.create_cylinder_type(request.get_json(silent=True))
        current_app.logger.info("Cylinder type created", extra={"cylinder_type_id": cylinder["id"]})
        return jsonify({"cylinder_type": cylinder}), 201
    except OrderingError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to create cylinder type")
        return jsonify({"error": "Internal server error"}), 500


@products_bp.patch("/cylinders/<int:cylinder_type_id>")
@require_auth
@require_role(ROLE_MANAGER)
def update_cylinder_route(cylinder_type_id: int):
    try:
        cylinder = catalog_service.update_cylinder_type(cylinder_type_id, request.get_json(silent=True))
        current_app.logger.info("Cylinder type updated", extra={"cylinder_type_id": cylinder_type_id})
        return jsonify({"cylinder_type": cylinder}), 200
    except OrderingError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to update cylinder type")
        return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# OTHER PRODUCTS
# =============================================================================

@products_bp.get("/other")
@require_auth
def list_other_products_route():
    items = catalog_service.list_other_products(include_unavailable=_include_unavailable())
    return jsonify({"items": items, "count": len(items)}), 200


@products_bp.post("/other")
@require_auth
@require_role(ROLE_MANAGER)
def create_other_product_route():
    try:
        product = catalog_service.create_other_product(request.get_json(silent=True))
        current_app.logger.info("Product created", extra={"product_id": product["id"]})
        return jsonify({"product": product}), 201
    except OrderingError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to create product")
        return jsonify({"error": "Internal server error"}), 500


@products_bp.patch("/other/<int:product_id>")
@require_auth
@require_role(ROLE_MANAGER)
def update_other_product_route(product_id: int):
    try:
        product = catalog_service.update_other_product(product_id, request.get_json(silent=True))
        current_app.logger.info("Product updated", extra={"product_id": product_id})
        return jsonify({"product": product}), 200
    except OrderingError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to update product")
        return jsonify({"error": "Internal server error"}), 500
