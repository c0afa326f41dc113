# Overview: Flask API routes for auth operations; parses input and returns JSON responses.

"""
Authentication API routes

- Customer self-registration (with optional referral code)
- Login throttling and temporary lockout after repeated failures
- Token-based sessions; logout revokes the presented token
- Staff account management for managers
"""

from flask import Blueprint, request, jsonify, current_app, g

from ..errors import OrderingError
from ..models.auth import ROLE_MANAGER
from ..services import auth_service
from ..services import session_service
from ..services import login_throttle_service
from ..decorators import require_auth, require_role


auth_bp = Blueprint("auth", __name__, url_prefix="/api/auth")


@auth_bp.post("/register")
def register_route():
    """
    Customer self-registration.

    Request body:
    {
        "username": "ana",
        "full_name": "Ana Torres",
        "password": "Secret123",
        "email": "ana@example.com",      (optional)
        "phone": "999888777",            (optional)
        "address_text": "Av. Lima 123",  (optional)
        "dni_ruc": "44556677",           (optional)
        "referral_code": "ANATOR1234"    (optional)
    }
    """
    try:
        data = request.get_json(silent=True) or {}

        result = auth_service.register_customer(
            username=data.get("username"),
            full_name=data.get("full_name"),
            password=data.get("password"),
            email=data.get("email"),
            phone=data.get("phone"),
            address_text=data.get("address_text"),
            dni_ruc=data.get("dni_ruc"),
            referral_code=data.get("referral_code"),
        )

        current_app.logger.info(
            "Customer registered",
            extra={"user_id": result["user"]["id"], "referral_bonus": result["referral_bonus_awarded"]},
        )
        return jsonify(result), 201

    except OrderingError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to register customer")
        return jsonify({"error": "Internal server error"}), 500


@auth_bp.post("/login")
def login_route():
    """
    Authenticate user and create session token.

    The token must be sent as `Authorization: Bearer <token>` on protected routes.
    """
    try:
        data = request.get_json(silent=True) or {}
        username = data.get("username") or data.get("email")
        password = data.get("password")

        if not all([username, password]):
            return jsonify({"error": "username/email and password required"}), 400

        is_locked, seconds_remaining = login_throttle_service.is_account_locked(username)
        if is_locked:
            minutes_remaining = (seconds_remaining // 60) + 1 if seconds_remaining else 15
            return jsonify({
                "error": "Account temporarily locked due to too many failed login attempts",
                "locked": True,
                "retry_after_seconds": seconds_remaining,
                "retry_after_minutes": minutes_remaining,
            }), 429

        user = auth_service.authenticate(username, password)

        if not user:
            failed_count = login_throttle_service.record_failed_attempt(username)
            remaining = login_throttle_service.MAX_FAILED_ATTEMPTS - failed_count

            if remaining <= 0:
                return jsonify({
                    "error": "Account locked due to too many failed login attempts",
                    "locked": True,
                    "retry_after_minutes": int(login_throttle_service.LOCKOUT_DURATION.total_seconds() // 60),
                }), 429
            elif remaining <= 3:
                return jsonify({
                    "error": "Invalid credentials",
                    "warning": f"{remaining} attempts remaining before account lockout"
                }), 401
            else:
                return jsonify({"error": "Invalid credentials"}), 401

        login_throttle_service.record_successful_login(username)

        session, token = session_service.create_session(
            user_id=user.id,
            user_agent=request.headers.get("User-Agent"),
            ip_address=request.remote_addr,
        )

        current_app.logger.info("User logged in", extra={"user_id": user.id, "role": user.role})
        return jsonify({
            "user": user.to_dict(),
            "token": token,
            "session": session.to_dict(),
            "message": "Login successful"
        }), 200

    except OrderingError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to login user")
        return jsonify({"error": "Internal server error"}), 500


@auth_bp.post("/logout")
@require_auth
def logout_route():
    try:
        token = request.headers.get("Authorization", "").split(" ", 1)[1].strip()
        session_service.revoke_session(token)
        return jsonify({"message": "Logged out"}), 200
    except Exception:
        current_app.logger.exception("Failed to logout user")
        return jsonify({"error": "Internal server error"}), 500


@auth_bp.get("/me")
@require_auth
def me_route():
    user = g.current_user
    data = {"user": user.to_dict()}
    if user.customer is not None:
        data["customer"] = user.customer.to_dict()
    return jsonify(data), 200


@auth_bp.get("/lockout-status/<identifier>")
def lockout_status_route(identifier: str):
    return jsonify(login_throttle_service.get_lockout_status(identifier)), 200


# =============================================================================
# STAFF ACCOUNT MANAGEMENT
# =============================================================================

@auth_bp.post("/users")
@require_auth
@require_role(ROLE_MANAGER)
def create_user_route():
    """
    Create any account (staff or customer). Managers only.

    Request body: username, full_name, password, role, email, phone,
    default_warehouse_id (all but the first four optional).
    """
    try:
        data = request.get_json(silent=True) or {}

        user = auth_service.create_user(
            username=data.get("username"),
            full_name=data.get("full_name"),
            password=data.get("password"),
            role=data.get("role"),
            email=data.get("email"),
            phone=data.get("phone"),
            default_warehouse_id=data.get("default_warehouse_id"),
        )

        current_app.logger.info(
            "User created",
            extra={"user_id": user.id, "role": user.role, "created_by": g.actor.user_id},
        )
        return jsonify({"user": user.to_dict()}), 201

    except OrderingError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to create user")
        return jsonify({"error": "Internal server error"}), 500


@auth_bp.patch("/users/<int:user_id>/active")
@require_auth
@require_role(ROLE_MANAGER)
def set_user_active_route(user_id: int):
    """Activate or deactivate an account; deactivation revokes its sessions."""
    try:
        data = request.get_json(silent=True) or {}
        is_active = data.get("is_active")
        if not isinstance(is_active, bool):
            return jsonify({"error": "is_active must be true or false"}), 400

        user = auth_service.set_user_active(user_id, is_active)
        revoked = 0
        if not is_active:
            revoked = session_service.revoke_all_user_sessions(user_id)

        current_app.logger.info(
            "User active flag changed",
            extra={"user_id": user_id, "is_active": is_active, "sessions_revoked": revoked},
        )
        return jsonify({"user": user.to_dict(), "sessions_revoked": revoked}), 200

    except OrderingError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to update user")
        return jsonify({"error": "Internal server error"}), 500
