# Overview: Unit price resolution per price class and customer override. Read-only.

from __future__ import annotations

from ..errors import ItemUnavailable, ValidationError
from ..extensions import db
from ..models import CylinderType, OtherProduct, CustomerSpecificPrice
from ..models.inventory import ITEM_CYLINDER, ITEM_OTHER_PRODUCT
from ..models.orders import (
    ACTION_EXCHANGE,
    ACTION_NEW_PURCHASE,
    ACTION_LOAN_PURCHASE,
    ACTION_SALE,
)


def get_available_cylinder(cylinder_type_id: int) -> CylinderType:
    cyl = db.session.get(CylinderType, cylinder_type_id)
    if cyl is None or not cyl.is_available:
        raise ItemUnavailable(
            "Cylinder type not found or not available",
            {"item_type": ITEM_CYLINDER, "item_id": cylinder_type_id},
        )
    return cyl


def get_available_product(product_id: int) -> OtherProduct:
    product = db.session.get(OtherProduct, product_id)
    if product is None or not product.is_available:
        raise ItemUnavailable(
            "Product not found or not available",
            {"item_type": ITEM_OTHER_PRODUCT, "item_id": product_id},
        )
    return product


def _customer_exchange_override(customer_id: int, cylinder_type_id: int) -> int | None:
    row = (
        db.session.query(CustomerSpecificPrice)
        .filter_by(customer_user_id=customer_id, cylinder_type_id=cylinder_type_id)
        .first()
    )
    return row.price_exchange_cents if row is not None else None


def resolve_unit_price(customer_id: int, item_type: str, item_id: int, action: str) -> int:
    """
    Unit price in cents for one line.

    Cylinders:
        new_purchase  -> price_new
        loan_purchase -> price_loan, or price_new when no loan price is set
        exchange      -> customer-specific exchange price, else price_exchange
    Other products: catalog price (action "sale").

    Raises ItemUnavailable when the item is missing or switched off.
    """
    if item_type == ITEM_CYLINDER:
        cyl = get_available_cylinder(item_id)
        if action == ACTION_NEW_PURCHASE:
            return cyl.price_new_cents
        if action == ACTION_LOAN_PURCHASE:
            return cyl.price_loan_cents if cyl.price_loan_cents is not None else cyl.price_new_cents
        if action == ACTION_EXCHANGE:
            override = _customer_exchange_override(customer_id, item_id)
            return override if override is not None else cyl.price_exchange_cents
        raise ValidationError(f"Invalid action for cylinder: {action}", {"action_type": action})

    if item_type == ITEM_OTHER_PRODUCT:
        if action != ACTION_SALE:
            raise ValidationError(f"Invalid action for product: {action}", {"action_type": action})
        return get_available_product(item_id).price_cents

    raise ValidationError(f"Unknown item type: {item_type}", {"item_type": item_type})
