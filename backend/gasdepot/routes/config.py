# Overview: Flask API routes for configuration settings; parses input and returns JSON responses.

from flask import Blueprint, request, jsonify, g, current_app

from ..errors import OrderingError
from ..models.auth import ROLE_MANAGER
from ..services import settings_service
from ..services.concurrency import run_in_transaction
from ..decorators import require_auth, require_role


config_bp = Blueprint("config", __name__, url_prefix="/api/config")


@config_bp.get("/public")
def public_config_route():
    """Company contact details and loyalty blurb. No authentication."""
    return jsonify(settings_service.get_public_settings()), 200


@config_bp.get("")
@require_auth
@require_role(ROLE_MANAGER)
def list_config_route():
    return jsonify({"items": settings_service.list_settings()}), 200


@config_bp.put("")
@require_auth
@require_role(ROLE_MANAGER)
def update_config_route():
    """
    Request body: {"points_min_redeem": "150", "points_discount_value": "0.10"}

    All keys are validated before any is written.
    """
    try:
        data = request.get_json(silent=True)

        items = run_in_transaction(
            lambda: settings_service.update_settings(data, user_id=g.actor.user_id)
        )

        current_app.logger.info(
            "Configuration updated",
            extra={"keys": [i["key"] for i in items], "user_id": g.actor.user_id},
        )
        return jsonify({"items": items}), 200
    except OrderingError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to update configuration")
        return jsonify({"error": "Internal server error"}), 500
