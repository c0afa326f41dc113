# Overview: Order engine; creates orders atomically across pricing, stock and loyalty, and cancels them.

"""
Order engine

create_order runs as one transaction:
  validate -> lock customer -> price lines -> lock stock rows (sorted) ->
  check stock -> redemption discount -> totals -> persist order + items ->
  debit non-exchange lines -> redemption_spend row -> pending purchase_earn row

Lock order used everywhere in this package: payment -> order -> customer ->
stock rows in sorted key order. Any failure rolls the whole thing back.

Exchange lines are stock-neutral: the customer hands back an empty for each
full cylinder, so full stock is checked but not debited and empties are not
credited.
"""
from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass, field

from ..errors import (
    InsufficientStock,
    InvalidStateTransition,
    NotFound,
    PermissionDenied,
    ValidationError,
)
from ..extensions import db
from ..models import Order, OrderItem, Payment
from ..models.auth import ROLE_DELIVERY, ROLE_DISPATCH, ROLE_MANAGER
from ..models.customers import REASON_EARN_REVERSAL, REASON_PURCHASE_EARN, REASON_REFUND
from ..models.inventory import (
    ITEM_CYLINDER,
    ITEM_OTHER_PRODUCT,
    STATE_AVAILABLE,
    STATE_FULL,
    TX_ORDER_CANCEL_RESTOCK,
    TX_ORDER_DEBIT,
)
from ..models.orders import (
    ACTION_EXCHANGE,
    ACTION_SALE,
    CYLINDER_ACTIONS,
    ORDER_ASSIGNED,
    ORDER_CANCELLED,
    ORDER_DELIVERING,
    ORDER_PENDING_APPROVAL,
    ORDER_PENDING_ASSIGNMENT,
    PAYMENT_PENDING,
    RECORD_APPROVED,
    VALID_ORDER_STATUSES,
)
from ..money import cents_times_rate_floor, format_cents, points_value_cents
from ..time_utils import utcnow
from ..validation import coerce_int, optional_float, optional_int, optional_str
from . import inventory_service, loyalty_service, pricing_service, settings_service
from .auth_service import Actor, require_actor_role
from .concurrency import lock_for_update, run_in_transaction
from .inventory_service import StockKey


CANCELLABLE_STATUSES = (ORDER_PENDING_APPROVAL, ORDER_PENDING_ASSIGNMENT, ORDER_ASSIGNED)
ACTIVE_STATUSES = (ORDER_ASSIGNED, ORDER_DELIVERING)

MAX_CYLINDER_QUANTITY = 10
MAX_PRODUCT_QUANTITY = 20
ADDRESS_MIN_LENGTH = 5
ADDRESS_MAX_LENGTH = 255


@dataclass(frozen=True)
class OtherItemRequest:
    product_id: int
    quantity: int


@dataclass(frozen=True)
class OrderRequest:
    """
    Customer order request.

    A primary cylinder (cylinder_type_id + action_type + cylinder_quantity)
    and/or any number of other products. voucher_code is stored only.
    """
    delivery_address: str
    cylinder_type_id: int | None = None
    action_type: str | None = None
    cylinder_quantity: int | None = None
    other_items: tuple = field(default_factory=tuple)
    delivery_instructions: str | None = None
    latitude: float | None = None
    longitude: float | None = None
    points_to_redeem: int = 0
    voucher_code: str | None = None

    @property
    def has_cylinder(self) -> bool:
        return self.cylinder_type_id is not None

    @classmethod
    def from_payload(cls, data: dict) -> "OrderRequest":
        if not isinstance(data, dict):
            raise ValidationError("Invalid JSON payload")

        address = data.get("delivery_address_text", data.get("delivery_address"))
        if address is not None and not isinstance(address, str):
            raise ValidationError("delivery_address_text must be a string")

        raw_items = data.get("other_items") or []
        if not isinstance(raw_items, list):
            raise ValidationError("other_items must be a list")
        items = []
        for idx, raw in enumerate(raw_items):
            if not isinstance(raw, dict):
                raise ValidationError(f"other_items[{idx}] must be an object")
            items.append(OtherItemRequest(
                product_id=coerce_int(raw.get("product_id"), f"other_items[{idx}].product_id", minimum=1),
                quantity=coerce_int(raw.get("quantity"), f"other_items[{idx}].quantity", minimum=1),
            ))

        request = cls(
            delivery_address=(address or "").strip(),
            cylinder_type_id=optional_int(data, "cylinder_type_id", minimum=1),
            action_type=optional_str(data, "action_type"),
            cylinder_quantity=optional_int(data, "cylinder_quantity"),
            other_items=tuple(items),
            delivery_instructions=optional_str(data, "delivery_instructions"),
            latitude=optional_float(data, "latitude"),
            longitude=optional_float(data, "longitude"),
            points_to_redeem=optional_int(data, "points_to_redeem", minimum=0) or 0,
            voucher_code=optional_str(data, "voucher_code", max_length=64),
        )
        request.validate()
        return request

    def validate(self) -> None:
        """Structural checks only; everything that needs the database happens in create_order."""
        address = (self.delivery_address or "").strip()
        if not address:
            raise ValidationError("Delivery address is required")
        if not (ADDRESS_MIN_LENGTH <= len(address) <= ADDRESS_MAX_LENGTH):
            raise ValidationError(
                f"Delivery address must be between {ADDRESS_MIN_LENGTH} and {ADDRESS_MAX_LENGTH} characters"
            )

        if not self.has_cylinder and not self.other_items:
            raise ValidationError("Order must include a cylinder or at least one other product")

        if self.has_cylinder:
            if self.action_type not in CYLINDER_ACTIONS:
                raise ValidationError(
                    "Invalid action_type",
                    {"action_type": self.action_type, "allowed": list(CYLINDER_ACTIONS)},
                )
            qty = self.cylinder_quantity
            if isinstance(qty, bool) or not isinstance(qty, int) or not (1 <= qty <= MAX_CYLINDER_QUANTITY):
                raise ValidationError(f"cylinder_quantity must be between 1 and {MAX_CYLINDER_QUANTITY}")

        for item in self.other_items:
            if isinstance(item.quantity, bool) or not (1 <= item.quantity <= MAX_PRODUCT_QUANTITY):
                raise ValidationError(
                    f"Product quantity must be between 1 and {MAX_PRODUCT_QUANTITY}",
                    {"product_id": item.product_id},
                )

        points = self.points_to_redeem
        if isinstance(points, bool) or not isinstance(points, int) or points < 0:
            raise ValidationError("points_to_redeem must be a non-negative integer")


@dataclass(frozen=True)
class OrderReceipt:
    order_id: int
    total_cents: int
    points_earned: int
    points_redeemed: int

    def to_dict(self) -> dict:
        return {
            "order_id": self.order_id,
            "total_cents": self.total_cents,
            "total": format_cents(self.total_cents),
            "points_earned": self.points_earned,
            "points_redeemed": self.points_redeemed,
        }


@dataclass(frozen=True)
class _PricedLine:
    item_type: str
    item_id: int
    action_type: str
    stock_state: str
    quantity: int
    unit_price_cents: int

    @property
    def line_total_cents(self) -> int:
        return self.unit_price_cents * self.quantity

    def stock_key(self, warehouse_id: int) -> StockKey:
        return StockKey(warehouse_id, self.item_type, self.item_id, self.stock_state)


def _price_lines(customer_id: int, request: OrderRequest) -> list[_PricedLine]:
    lines = []
    if request.has_cylinder:
        lines.append(_PricedLine(
            item_type=ITEM_CYLINDER,
            item_id=request.cylinder_type_id,
            action_type=request.action_type,
            stock_state=STATE_FULL,
            quantity=request.cylinder_quantity,
            unit_price_cents=pricing_service.resolve_unit_price(
                customer_id, ITEM_CYLINDER, request.cylinder_type_id, request.action_type
            ),
        ))
    for item in request.other_items:
        lines.append(_PricedLine(
            item_type=ITEM_OTHER_PRODUCT,
            item_id=item.product_id,
            action_type=ACTION_SALE,
            stock_state=STATE_AVAILABLE,
            quantity=item.quantity,
            unit_price_cents=pricing_service.resolve_unit_price(
                customer_id, ITEM_OTHER_PRODUCT, item.product_id, ACTION_SALE
            ),
        ))
    return lines


def _check_stock(lines: list[_PricedLine], warehouse_id: int) -> None:
    """Lock every touched stock row (sorted) and verify the summed requirement per key."""
    required = defaultdict(int)
    for line in lines:
        required[line.stock_key(warehouse_id)] += line.quantity

    locked = inventory_service.lock_stock_rows(required.keys())
    for key in sorted(required):
        row = locked[key]
        current = row.quantity if row is not None else 0
        if current < required[key]:
            raise InsufficientStock(
                "Insufficient stock",
                {
                    "warehouse_id": key.warehouse_id,
                    "item_type": key.item_type,
                    "item_id": key.item_id,
                    "state": key.state,
                    "requested": required[key],
                    "current_quantity": current,
                },
            )


def create_order(customer_id: int, request: OrderRequest, *, actor_user_id: int | None = None) -> OrderReceipt:
    """
    Create an order and apply its stock and loyalty effects atomically.

    Raises ValidationError (before any transaction), NotFound, ItemUnavailable,
    InsufficientStock, InsufficientPoints or PersistenceError.
    """
    request.validate()
    actor_user_id = actor_user_id if actor_user_id is not None else customer_id

    def _op():
        customer = loyalty_service.lock_customer(customer_id)
        warehouse = inventory_service.get_default_warehouse()
        settings = settings_service.get_loyalty_settings()

        lines = _price_lines(customer_id, request)
        _check_stock(lines, warehouse.id)

        subtotal = sum(line.line_total_cents for line in lines)

        points = request.points_to_redeem
        discount = 0
        if points > 0:
            loyalty_service.check_redeemable(customer, points, settings.points_min_redeem)
            discount = min(points_value_cents(points, settings.points_discount_value), subtotal)

        total = max(0, subtotal - discount)
        points_earned = cents_times_rate_floor(total, settings.points_per_currency_unit)

        order = Order(
            customer_user_id=customer_id,
            warehouse_id=warehouse.id,
            delivery_address_text=request.delivery_address.strip(),
            delivery_instructions=request.delivery_instructions,
            latitude=request.latitude,
            longitude=request.longitude,
            voucher_code=request.voucher_code,
            subtotal_cents=subtotal,
            discount_cents=discount,
            total_cents=total,
            order_status=ORDER_PENDING_APPROVAL,
            payment_status=PAYMENT_PENDING,
            points_earned=points_earned,
            points_redeemed=points,
            points_credited=False,
        )
        db.session.add(order)
        db.session.flush()

        for line in lines:
            db.session.add(OrderItem(
                order_id=order.id,
                item_type=line.item_type,
                item_id=line.item_id,
                action_type=line.action_type,
                stock_state=line.stock_state,
                quantity=line.quantity,
                unit_price_cents=line.unit_price_cents,
                line_total_cents=line.line_total_cents,
            ))

        for line in sorted(lines, key=lambda l: l.stock_key(warehouse.id)):
            if line.action_type == ACTION_EXCHANGE:
                continue
            inventory_service.debit_locked(
                line.stock_key(warehouse.id),
                line.quantity,
                TX_ORDER_DEBIT,
                user_id=actor_user_id,
                related_order_id=order.id,
                reason=f"Order #{order.id}",
            )

        if points > 0:
            loyalty_service.redeem_locked(
                customer,
                points,
                min_redeem=settings.points_min_redeem,
                related_order_id=order.id,
                user_id=actor_user_id,
            )

        if points_earned > 0:
            loyalty_service.append_entry_locked(
                customer,
                points_earned,
                REASON_PURCHASE_EARN,
                related_order_id=order.id,
                is_pending=True,
                notes="Pending until the order is paid",
                user_id=actor_user_id,
            )

        customer.last_purchase_at = utcnow()
        db.session.flush()

        return OrderReceipt(
            order_id=order.id,
            total_cents=total,
            points_earned=points_earned,
            points_redeemed=points,
        )

    return run_in_transaction(_op)


def lock_order(order_id: int) -> Order:
    order = lock_for_update(db.session.query(Order).filter_by(id=order_id)).first()
    if order is None:
        raise NotFound("Order not found", {"order_id": order_id})
    return order


def require_status(order: Order, allowed, action: str) -> None:
    if order.order_status not in allowed:
        raise InvalidStateTransition(
            f"Cannot {action} an order in status '{order.order_status}'",
            {"order_id": order.id, "current_status": order.order_status, "allowed": list(allowed)},
        )


def approve_order(order_id: int, actor: Actor) -> dict:
    """pending_approval -> pending_assignment (dispatch or manager)."""
    require_actor_role(actor, ROLE_DISPATCH, ROLE_MANAGER)

    def _op():
        order = lock_order(order_id)
        require_status(order, (ORDER_PENDING_APPROVAL,), "approve")
        order.order_status = ORDER_PENDING_ASSIGNMENT
        return order.to_dict()

    return run_in_transaction(_op)


def bulk_approve_orders(order_ids, actor: Actor) -> dict:
    """
    Approve every listed order still in pending_approval, in one transaction.
    Orders in any other status (or missing) are reported as skipped.
    """
    require_actor_role(actor, ROLE_DISPATCH, ROLE_MANAGER)
    if not isinstance(order_ids, (list, tuple)) or not order_ids:
        raise ValidationError("order_ids must be a non-empty list")
    ids = sorted({coerce_int(i, "order_ids", minimum=1) for i in order_ids})

    def _op():
        approved, skipped = [], []
        for oid in ids:
            order = lock_for_update(db.session.query(Order).filter_by(id=oid)).first()
            if order is None:
                skipped.append({"order_id": oid, "reason": "not_found"})
            elif order.order_status != ORDER_PENDING_APPROVAL:
                skipped.append({"order_id": oid, "reason": "invalid_status", "current_status": order.order_status})
            else:
                order.order_status = ORDER_PENDING_ASSIGNMENT
                approved.append(oid)
        return {"approved": approved, "skipped": skipped}

    return run_in_transaction(_op)


def _has_approved_payment(order_id: int) -> bool:
    return (
        db.session.query(Payment.id)
        .filter(Payment.order_id == order_id, Payment.status == RECORD_APPROVED)
        .first()
        is not None
    )


def cancel_order(order_id: int, actor: Actor, reason: str | None = None) -> dict:
    """
    Cancel an order and reverse its ledger effects.

    - status must be pending_approval, pending_assignment or assigned
    - customers may cancel only their own order, and only while no payment
      on it has been approved; dispatch and managers may cancel any
    - redeemed points come back as a `refund` row
    - earned points already credited are taken back as `earn_reversal`
      (InsufficientPoints if they were spent meanwhile)
    - every non-exchange line is restocked into its original warehouse/state
    """
    if not (actor.is_customer or actor.role in (ROLE_DISPATCH, ROLE_MANAGER)):
        raise PermissionDenied("Role not allowed to cancel orders", {"role": actor.role})
    reason = (reason or "").strip()[:255] or None

    def _op():
        order = lock_order(order_id)
        if actor.is_customer and order.customer_user_id != actor.user_id:
            raise PermissionDenied("Order does not belong to this customer", {"order_id": order_id})
        require_status(order, CANCELLABLE_STATUSES, "cancel")
        if actor.is_customer and _has_approved_payment(order.id):
            raise PermissionDenied(
                "Order has a verified payment; contact the store to cancel",
                {"order_id": order_id},
            )

        customer = loyalty_service.lock_customer(order.customer_user_id)

        restock = [item for item in order.items if item.action_type != ACTION_EXCHANGE]
        keys = {StockKey(order.warehouse_id, i.item_type, i.item_id, i.stock_state) for i in restock}
        inventory_service.lock_stock_rows(keys)

        if order.points_redeemed > 0:
            loyalty_service.append_entry_locked(
                customer,
                order.points_redeemed,
                REASON_REFUND,
                related_order_id=order.id,
                notes=f"Refund for cancelled order #{order.id}",
                user_id=actor.user_id,
            )

        if order.points_credited and order.points_earned > 0:
            loyalty_service.append_entry_locked(
                customer,
                -order.points_earned,
                REASON_EARN_REVERSAL,
                related_order_id=order.id,
                notes=f"Reversal for cancelled order #{order.id}",
                user_id=actor.user_id,
            )
            order.points_credited = False

        for item in sorted(restock, key=lambda i: (i.item_type, i.item_id, i.stock_state, i.id)):
            inventory_service.credit_locked(
                StockKey(order.warehouse_id, item.item_type, item.item_id, item.stock_state),
                item.quantity,
                TX_ORDER_CANCEL_RESTOCK,
                user_id=actor.user_id,
                related_order_id=order.id,
                reason=f"Cancelled order #{order.id}",
            )

        order.order_status = ORDER_CANCELLED
        order.cancelled_at = utcnow()
        order.cancelled_by_user_id = actor.user_id
        order.cancel_reason = reason
        db.session.flush()
        return order.to_dict(include_items=True)

    return run_in_transaction(_op)


# --- reads ------------------------------------------------------------------

def check_order_access(order: Order, actor: Actor) -> None:
    """Customers see their own orders, delivery staff the ones assigned to them, other staff all."""
    if actor.is_customer:
        if order.customer_user_id != actor.user_id:
            raise PermissionDenied("Order does not belong to this customer", {"order_id": order.id})
    elif actor.role == ROLE_DELIVERY:
        delivery = order.delivery
        if delivery is None or delivery.delivery_person_user_id != actor.user_id:
            raise PermissionDenied("Order is not assigned to you", {"order_id": order.id})
    elif not actor.is_staff:
        raise PermissionDenied("Role not allowed", {"role": actor.role})


def get_order(order_id: int, actor: Actor) -> dict:
    order = db.session.get(Order, order_id)
    if order is None:
        raise NotFound("Order not found", {"order_id": order_id})
    check_order_access(order, actor)
    data = order.to_dict(include_items=True)
    data["payments"] = [p.to_dict() for p in order.payments]
    return data


def _paginate(query, page: int, per_page: int, *, max_per_page: int = 100) -> dict:
    per_page = min(max(per_page, 1), max_per_page)
    page = max(page, 1)
    total = query.count()
    total_pages = (total + per_page - 1) // per_page if total > 0 else 1
    rows = query.offset((page - 1) * per_page).limit(per_page).all()
    return {
        "items": [o.to_dict() for o in rows],
        "count": len(rows),
        "pagination": {
            "page": page,
            "per_page": per_page,
            "total": total,
            "total_pages": total_pages,
            "has_next": page < total_pages,
            "has_prev": page > 1,
        },
    }


def list_customer_orders(customer_id: int, *, page: int = 1, per_page: int = 10) -> dict:
    query = (
        db.session.query(Order)
        .filter(Order.customer_user_id == customer_id)
        .order_by(Order.created_at.desc(), Order.id.desc())
    )
    return _paginate(query, page, per_page)


def list_orders_by_status(statuses, *, page: int = 1, per_page: int = 20) -> dict:
    """Oldest first, so queues are worked in arrival order."""
    statuses = list(statuses)
    unknown = [s for s in statuses if s not in VALID_ORDER_STATUSES]
    if unknown or not statuses:
        raise ValidationError("Invalid order status filter", {"invalid": unknown})
    query = (
        db.session.query(Order)
        .filter(Order.order_status.in_(statuses))
        .order_by(Order.created_at.asc(), Order.id.asc())
    )
    return _paginate(query, page, per_page)
