from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
import re

from ..errors import ValidationError
from ..extensions import db
from ..models import ConfigurationSetting


KEY_POINTS_PER_CURRENCY_UNIT = "points_per_currency_unit"
KEY_POINTS_FOR_REFERRAL = "points_for_referral"
KEY_POINTS_MIN_REDEEM = "points_min_redeem"
KEY_POINTS_DISCOUNT_VALUE = "points_discount_value"

# key -> (default stored value, description)
DEFAULT_SETTINGS = {
    KEY_POINTS_PER_CURRENCY_UNIT: ("1", "Loyalty points earned per currency unit of order total"),
    KEY_POINTS_FOR_REFERRAL: ("50", "Points awarded to a customer for a successful referral"),
    KEY_POINTS_MIN_REDEEM: ("100", "Minimum points that can be redeemed on one order"),
    KEY_POINTS_DISCOUNT_VALUE: ("0.10", "Currency value of one redeemed point"),
    "benefits_description": (
        "Every 100 points give you 10.00 off your next purchase.",
        "Loyalty program text shown to customers",
    ),
    "whatsapp_number": ("", "Contact number shown to customers"),
    "company_name": ("GasDepot", "Company name"),
    "company_address": ("", "Company address"),
}

PUBLIC_KEYS = ("benefits_description", "whatsapp_number", "company_name", "company_address")

DIGITS_RE = re.compile(r"^\d*$")


@dataclass(frozen=True)
class LoyaltySettings:
    points_per_currency_unit: Decimal
    points_for_referral: int
    points_min_redeem: int
    points_discount_value: Decimal


def _as_decimal(key: str, value) -> Decimal:
    if isinstance(value, bool):
        raise ValidationError(f"{key} must be a number", {"key": key})
    try:
        dec = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        raise ValidationError(f"{key} must be a number", {"key": key})
    if not dec.is_finite():
        raise ValidationError(f"{key} must be a number", {"key": key})
    return dec


def _as_int(key: str, value) -> int:
    dec = _as_decimal(key, value)
    if dec != dec.to_integral_value():
        raise ValidationError(f"{key} must be an integer", {"key": key})
    return int(dec)


def validate_setting(key: str, value) -> str:
    """
    Validate a single value for `key` and return its stored text form.

    Raises ValidationError describing the first rule broken.
    """
    if value is None:
        raise ValidationError(f"{key} is required", {"key": key})

    if key == KEY_POINTS_PER_CURRENCY_UNIT:
        dec = _as_decimal(key, value)
        if dec < 0:
            raise ValidationError(f"{key} cannot be negative", {"key": key})
        return str(dec)
    if key == KEY_POINTS_FOR_REFERRAL:
        num = _as_int(key, value)
        if num < 0:
            raise ValidationError(f"{key} cannot be negative", {"key": key})
        return str(num)
    if key == KEY_POINTS_MIN_REDEEM:
        num = _as_int(key, value)
        if num <= 0:
            raise ValidationError(f"{key} must be positive", {"key": key})
        return str(num)
    if key == KEY_POINTS_DISCOUNT_VALUE:
        dec = _as_decimal(key, value)
        if dec <= 0:
            raise ValidationError(f"{key} must be positive", {"key": key})
        return str(dec)
    if key == "benefits_description":
        if not isinstance(value, str) or len(value) > 1000:
            raise ValidationError(f"{key} must be text up to 1000 characters", {"key": key})
        return value
    if key == "whatsapp_number":
        text = str(value).strip()
        if not DIGITS_RE.match(text):
            raise ValidationError(f"{key} must contain digits only", {"key": key})
        return text

    if isinstance(value, (dict, list)):
        raise ValidationError(f"{key} must be a scalar value", {"key": key})
    return str(value)


def _stored_value(key: str) -> str | None:
    row = db.session.get(ConfigurationSetting, key)
    if row is not None:
        return row.value
    default = DEFAULT_SETTINGS.get(key)
    return default[0] if default else None


def get_setting(key: str) -> str | None:
    return _stored_value(key)


def get_loyalty_settings() -> LoyaltySettings:
    """Read the loyalty knobs inside the caller's transaction, falling back to defaults."""
    return LoyaltySettings(
        points_per_currency_unit=_as_decimal(
            KEY_POINTS_PER_CURRENCY_UNIT, _stored_value(KEY_POINTS_PER_CURRENCY_UNIT)
        ),
        points_for_referral=_as_int(KEY_POINTS_FOR_REFERRAL, _stored_value(KEY_POINTS_FOR_REFERRAL)),
        points_min_redeem=_as_int(KEY_POINTS_MIN_REDEEM, _stored_value(KEY_POINTS_MIN_REDEEM)),
        points_discount_value=_as_decimal(
            KEY_POINTS_DISCOUNT_VALUE, _stored_value(KEY_POINTS_DISCOUNT_VALUE)
        ),
    )


def list_settings() -> list[dict]:
    rows = {r.key: r for r in db.session.query(ConfigurationSetting).all()}
    keys = sorted(set(rows) | set(DEFAULT_SETTINGS))
    out = []
    for key in keys:
        row = rows.get(key)
        if row is not None:
            data = row.to_dict()
            data["is_default"] = False
        else:
            value, description = DEFAULT_SETTINGS[key]
            data = {
                "key": key,
                "value": value,
                "description": description,
                "updated_by_user_id": None,
                "updated_at": None,
                "is_default": True,
            }
        out.append(data)
    return out


def get_public_settings() -> dict:
    return {key: _stored_value(key) for key in PUBLIC_KEYS}


def update_settings(updates: dict, *, user_id: int | None) -> list[dict]:
    """
    Validate every entry first, then upsert them all. Nothing is written if
    any value is invalid. Does not commit.
    """
    if not isinstance(updates, dict) or not updates:
        raise ValidationError("Expected an object of key/value pairs")

    cleaned = {}
    errors = {}
    for key, value in updates.items():
        if not isinstance(key, str) or not key or key.startswith("_"):
            continue
        try:
            cleaned[key] = validate_setting(key, value)
        except ValidationError as e:
            errors[key] = str(e)
    if errors:
        raise ValidationError("Invalid configuration values", {"errors": errors})
    if not cleaned:
        raise ValidationError("No configuration keys to update")

    rows = []
    for key, value in cleaned.items():
        row = db.session.get(ConfigurationSetting, key)
        if row is None:
            description = DEFAULT_SETTINGS.get(key, (None, None))[1]
            row = ConfigurationSetting(key=key, value=value, description=description)
            db.session.add(row)
        else:
            row.value = value
        row.updated_by_user_id = user_id
        rows.append(row)
    db.session.flush()
    return [r.to_dict() for r in rows]


def ensure_defaults_seeded() -> int:
    """Insert any missing default keys. Returns the number inserted. Does not commit."""
    existing = {k for (k,) in db.session.query(ConfigurationSetting.key).all()}
    added = 0
    for key, (value, description) in DEFAULT_SETTINGS.items():
        if key in existing:
            continue
        db.session.add(ConfigurationSetting(key=key, value=value, description=description))
        added += 1
    db.session.flush()
    return added
