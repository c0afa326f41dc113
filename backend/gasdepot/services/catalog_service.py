# Overview: Catalog administration; product edits through typed patches and customer-specific prices.

from __future__ import annotations

from ..errors import NotFound, ValidationError
from ..extensions import db
from ..models import CustomerSpecificPrice, CylinderType, OtherProduct
from ..money import parse_amount_to_cents
from ..validation import (
    MAX_PRICE_CENTS,
    ModelValidationPolicy,
    Patch,
    coerce_int,
    enforce_price_rules,
    validate_payload,
)
from . import loyalty_service
from .concurrency import run_in_transaction


CYLINDER_POLICY = ModelValidationPolicy(
    writable_fields=frozenset({
        "name", "description", "price_new_cents", "price_exchange_cents", "price_loan_cents", "is_available",
    }),
    required_on_create=frozenset({"name", "price_new_cents", "price_exchange_cents"}),
)

PRODUCT_POLICY = ModelValidationPolicy(
    writable_fields=frozenset({"name", "description", "price_cents", "stock_unit", "is_available"}),
    required_on_create=frozenset({"name", "price_cents"}),
)


def list_cylinder_types(*, include_unavailable: bool = False) -> list[dict]:
    query = db.session.query(CylinderType)
    if not include_unavailable:
        query = query.filter(CylinderType.is_available.is_(True))
    return [c.to_dict() for c in query.order_by(CylinderType.name.asc()).all()]


def list_other_products(*, include_unavailable: bool = False) -> list[dict]:
    query = db.session.query(OtherProduct)
    if not include_unavailable:
        query = query.filter(OtherProduct.is_available.is_(True))
    return [p.to_dict() for p in query.order_by(OtherProduct.name.asc()).all()]


def _get_or_404(model, obj_id: int, label: str):
    obj = db.session.get(model, obj_id)
    if obj is None:
        raise NotFound(f"{label} not found", {"id": obj_id})
    return obj


def create_cylinder_type(payload: dict) -> dict:
    patch = validate_payload(model=CylinderType, payload=payload, policy=CYLINDER_POLICY, partial=False)
    enforce_price_rules(patch)

    def _op():
        cyl = CylinderType(is_available=True)
        patch.apply_to(cyl)
        db.session.add(cyl)
        db.session.flush()
        return cyl.to_dict()

    return run_in_transaction(_op)


def update_cylinder_type(cylinder_type_id: int, payload: dict) -> dict:
    """Apply only the fields present in the payload, in one UPDATE."""
    patch = validate_payload(model=CylinderType, payload=payload, policy=CYLINDER_POLICY, partial=True)
    enforce_price_rules(patch)
    return _apply_patch(CylinderType, cylinder_type_id, patch, "Cylinder type")


def create_other_product(payload: dict) -> dict:
    patch = validate_payload(model=OtherProduct, payload=payload, policy=PRODUCT_POLICY, partial=False)
    enforce_price_rules(patch)

    def _op():
        product = OtherProduct(is_available=True)
        patch.apply_to(product)
        db.session.add(product)
        db.session.flush()
        return product.to_dict()

    return run_in_transaction(_op)


def update_other_product(product_id: int, payload: dict) -> dict:
    patch = validate_payload(model=OtherProduct, payload=payload, policy=PRODUCT_POLICY, partial=True)
    enforce_price_rules(patch)
    return _apply_patch(OtherProduct, product_id, patch, "Product")


def _apply_patch(model, obj_id: int, patch: Patch, label: str) -> dict:
    def _op():
        obj = _get_or_404(model, obj_id, label)
        if patch:
            patch.apply_to(obj)
            db.session.flush()
        return obj.to_dict()

    return run_in_transaction(_op)


# --- customer-specific exchange prices --------------------------------------

def _parse_price_entry(idx: int, entry) -> tuple[int, int]:
    if not isinstance(entry, dict):
        raise ValidationError(f"prices[{idx}] must be an object")
    cylinder_type_id = coerce_int(entry.get("cylinder_type_id"), f"prices[{idx}].cylinder_type_id", minimum=1)
    if entry.get("price_exchange_cents") is not None:
        cents = coerce_int(entry["price_exchange_cents"], f"prices[{idx}].price_exchange_cents", minimum=0)
    else:
        cents = parse_amount_to_cents(entry.get("price_exchange"), f"prices[{idx}].price_exchange")
    if cents < 0 or cents > MAX_PRICE_CENTS:
        raise ValidationError(f"prices[{idx}] price out of range")
    return cylinder_type_id, cents


def list_special_prices(customer_id: int) -> list[dict]:
    loyalty_service.get_customer(customer_id)
    rows = (
        db.session.query(CustomerSpecificPrice)
        .filter_by(customer_user_id=customer_id)
        .order_by(CustomerSpecificPrice.cylinder_type_id.asc())
        .all()
    )
    return [r.to_dict() for r in rows]


def set_special_prices(customer_id: int, prices) -> list[dict]:
    """Replace the customer's whole override set with `prices`."""
    if not isinstance(prices, list) or not prices:
        raise ValidationError("prices must be a non-empty list")
    parsed = dict(_parse_price_entry(i, p) for i, p in enumerate(prices))

    def _op():
        customer = loyalty_service.get_customer(customer_id)
        if customer.user is None or not customer.user.is_active:
            raise NotFound("Customer not found or inactive", {"customer_id": customer_id})
        for cylinder_type_id in parsed:
            _get_or_404(CylinderType, cylinder_type_id, "Cylinder type")

        db.session.query(CustomerSpecificPrice).filter_by(customer_user_id=customer_id).delete(
            synchronize_session=False
        )
        rows = []
        for cylinder_type_id, cents in sorted(parsed.items()):
            row = CustomerSpecificPrice(
                customer_user_id=customer_id,
                cylinder_type_id=cylinder_type_id,
                price_exchange_cents=cents,
            )
            db.session.add(row)
            rows.append(row)
        db.session.flush()
        return [r.to_dict() for r in rows]

    return run_in_transaction(_op)


def clear_special_prices(customer_id: int) -> int:
    def _op():
        loyalty_service.get_customer(customer_id)
        return (
            db.session.query(CustomerSpecificPrice)
            .filter_by(customer_user_id=customer_id)
            .delete(synchronize_session=False)
        )

    return run_in_transaction(_op)
