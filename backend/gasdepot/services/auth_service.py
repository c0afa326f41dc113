# Overview: Identity collaborator; accounts, bcrypt password hashing and customer registration.

"""
Authentication service

Every request is attributable to an Actor (user id + role). Passwords are
hashed with bcrypt; session tokens live in session_service.

SECURITY NOTES:
- Passwords hashed with bcrypt (cost factor from BCRYPT_ROUNDS, default 12)
- Minimum 8 characters with upper, lower and digit
- Deactivated users cannot authenticate
"""
from __future__ import annotations

import re
import secrets
import string
from dataclasses import dataclass

import bcrypt
from flask import current_app

from ..errors import NotFound, PermissionDenied, ValidationError
from ..extensions import db
from ..models import Customer, User, Warehouse
from ..models.auth import ROLE_CUSTOMER, STAFF_ROLES, VALID_ROLES
from ..models.customers import REASON_REFERRAL_BONUS
from ..time_utils import utcnow
from . import loyalty_service, settings_service
from .concurrency import run_in_transaction


@dataclass(frozen=True)
class Actor:
    """Authenticated identity attached to a request."""
    user_id: int
    role: str

    @property
    def is_customer(self) -> bool:
        return self.role == ROLE_CUSTOMER

    @property
    def is_staff(self) -> bool:
        return self.role in STAFF_ROLES


class PasswordValidationError(ValidationError):
    """Raised when password doesn't meet strength requirements."""


def validate_password_strength(password: str) -> None:
    if not isinstance(password, str) or len(password) < 8:
        raise PasswordValidationError("Password must be at least 8 characters long")
    if not re.search(r"[A-Z]", password):
        raise PasswordValidationError("Password must contain at least one uppercase letter")
    if not re.search(r"[a-z]", password):
        raise PasswordValidationError("Password must contain at least one lowercase letter")
    if not re.search(r"\d", password):
        raise PasswordValidationError("Password must contain at least one digit")


def _bcrypt_rounds() -> int:
    return int(current_app.config.get("BCRYPT_ROUNDS", 12))


def hash_password(password: str) -> str:
    """Validate strength, then hash with bcrypt."""
    validate_password_strength(password)
    salt = bcrypt.gensalt(rounds=_bcrypt_rounds())
    return bcrypt.hashpw(password.encode("utf-8"), salt).decode("utf-8")


def verify_password(password: str, password_hash: str) -> bool:
    if not password or not password_hash:
        return False
    try:
        return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
    except ValueError:
        # Malformed hash in the database
        return False


def generate_referral_code(full_name: str) -> str:
    """Three letters from the name plus three random digits, e.g. ANA482."""
    letters = "".join(ch for ch in full_name.upper() if ch in string.ascii_uppercase)
    prefix = (letters + "XXX")[:3]
    return f"{prefix}{secrets.randbelow(900) + 100}"


def _unique_referral_code(full_name: str) -> str:
    for _ in range(10):
        code = generate_referral_code(full_name)
        if db.session.query(Customer.user_id).filter_by(referral_code=code).first() is None:
            return code
    return f"{generate_referral_code(full_name)}{secrets.token_hex(2).upper()}"


def _check_username_free(username: str) -> None:
    if db.session.query(User.id).filter_by(username=username).first() is not None:
        raise ValidationError("Username already exists", {"username": username})


def create_user(
    *,
    username: str,
    full_name: str,
    password: str,
    role: str,
    email: str | None = None,
    phone: str | None = None,
    default_warehouse_id: int | None = None,
) -> User:
    """
    Create an account. Customers also get their `customers` profile row.
    """
    username = (username or "").strip()
    full_name = (full_name or "").strip()
    if not username or not full_name:
        raise ValidationError("username and full_name are required")
    if role not in VALID_ROLES:
        raise ValidationError(f"Invalid role: {role}", {"allowed": list(VALID_ROLES)})
    password_hash = hash_password(password)

    def _op():
        _check_username_free(username)
        if default_warehouse_id is not None and db.session.get(Warehouse, default_warehouse_id) is None:
            raise NotFound("Warehouse not found", {"warehouse_id": default_warehouse_id})
        user = User(
            username=username,
            full_name=full_name,
            email=email,
            phone=phone,
            password_hash=password_hash,
            role=role,
            default_warehouse_id=default_warehouse_id,
        )
        db.session.add(user)
        db.session.flush()
        if role == ROLE_CUSTOMER:
            db.session.add(Customer(user_id=user.id, loyalty_points=0, referral_code=_unique_referral_code(full_name)))
            db.session.flush()
        return user

    return run_in_transaction(_op)


def register_customer(
    *,
    username: str,
    full_name: str,
    password: str,
    email: str | None = None,
    phone: str | None = None,
    address_text: str | None = None,
    dni_ruc: str | None = None,
    referral_code: str | None = None,
) -> dict:
    """
    Customer self-registration.

    A valid referral code credits points_for_referral to the referring
    customer in the same transaction. An unknown code is rejected.
    """
    username = (username or "").strip()
    full_name = (full_name or "").strip()
    if not username or not full_name:
        raise ValidationError("username and full_name are required")
    password_hash = hash_password(password)
    referral_code = (referral_code or "").strip().upper() or None

    def _op():
        _check_username_free(username)

        referrer_id = None
        if referral_code:
            referrer_id = (
                db.session.query(Customer.user_id).filter_by(referral_code=referral_code).scalar()
            )
            if referrer_id is None:
                raise ValidationError("Unknown referral code", {"referral_code": referral_code})

        user = User(
            username=username,
            full_name=full_name,
            email=email,
            phone=phone,
            password_hash=password_hash,
            role=ROLE_CUSTOMER,
        )
        db.session.add(user)
        db.session.flush()

        customer = Customer(
            user_id=user.id,
            dni_ruc=dni_ruc,
            address_text=address_text,
            loyalty_points=0,
            referral_code=_unique_referral_code(full_name),
            referred_by_user_id=referrer_id,
        )
        db.session.add(customer)
        db.session.flush()

        bonus_awarded = 0
        if referrer_id is not None:
            bonus = settings_service.get_loyalty_settings().points_for_referral
            if bonus > 0:
                referrer = loyalty_service.lock_customer(referrer_id)
                loyalty_service.append_entry_locked(
                    referrer,
                    bonus,
                    REASON_REFERRAL_BONUS,
                    notes=f"Referral of user {user.id}",
                    user_id=user.id,
                )
                bonus_awarded = bonus

        return {
            "user": user.to_dict(),
            "customer": customer.to_dict(),
            "referral_bonus_awarded": bonus_awarded,
        }

    return run_in_transaction(_op)


def authenticate(username: str, password: str) -> User | None:
    """
    Returns the active User for valid credentials, None otherwise.
    Updates last_login_at on success.
    """
    user = (
        db.session.query(User)
        .filter(
            db.or_(User.username == username, User.email == username),
            User.is_active.is_(True),
        )
        .first()
    )
    if user is None:
        return None
    if not verify_password(password, user.password_hash):
        return None
    user.last_login_at = utcnow()
    db.session.commit()
    return user


def get_user(user_id: int) -> User:
    user = db.session.get(User, user_id)
    if user is None:
        raise NotFound("User not found", {"user_id": user_id})
    return user


def set_user_active(user_id: int, is_active: bool) -> User:
    def _op():
        user = get_user(user_id)
        user.is_active = bool(is_active)
        return user

    return run_in_transaction(_op)


def require_actor_role(actor: Actor, *roles: str) -> None:
    """Raise PermissionDenied unless the actor holds one of `roles`."""
    if actor is None or actor.role not in roles:
        raise PermissionDenied(
            "Role not allowed for this operation",
            {"role": actor.role if actor else None, "allowed_roles": list(roles)},
        )
