# Overview: Delivery side of the order state machine; assignment, departure, completion, issues, collections.

from __future__ import annotations

from datetime import datetime, timedelta

from sqlalchemy import func

from ..errors import InvalidStateTransition, NotFound, PermissionDenied, ValidationError
from ..extensions import db
from ..models import Delivery, Order, Payment, User
from ..models.auth import ROLE_DELIVERY, ROLE_DISPATCH, ROLE_MANAGER
from ..models.orders import (
    COLLECT_DEFERRED,
    IMMEDIATE_COLLECTION_METHODS,
    LATE_COLLECTION_METHODS,
    ORDER_ASSIGNED,
    ORDER_DELIVERED,
    ORDER_DELIVERING,
    ORDER_DELIVERY_ISSUE,
    ORDER_PENDING_APPROVAL,
    ORDER_PENDING_ASSIGNMENT,
    PAYMENT_LATE_SCHEDULED,
    PAYMENT_PAID,
    PAYMENT_PARTIALLY_PAID,
    PAYMENT_PENDING,
    RECORD_REJECTED,
    RECORD_UNVERIFIED,
    VALID_COLLECTION_METHODS,
)
from ..time_utils import parse_iso_datetime, utcnow
from .auth_service import Actor, require_actor_role
from .concurrency import run_in_transaction
from .order_service import check_order_access, lock_order, require_status


ASSIGNABLE_STATUSES = (ORDER_PENDING_APPROVAL, ORDER_PENDING_ASSIGNMENT)
IN_PROGRESS_STATUSES = (ORDER_ASSIGNED, ORDER_DELIVERING)
COLLECTIBLE_PAYMENT_STATUSES = (PAYMENT_PENDING, PAYMENT_PARTIALLY_PAID, PAYMENT_LATE_SCHEDULED)


def _require_assigned_person(order: Order, actor: Actor) -> Delivery:
    delivery = order.delivery
    if delivery is None or delivery.delivery_person_user_id != actor.user_id:
        raise PermissionDenied("Delivery is not assigned to you", {"order_id": order.id})
    return delivery


def _require_delivery_person(user_id: int) -> User:
    person = db.session.get(User, user_id)
    if person is None:
        raise NotFound("Delivery person not found", {"user_id": user_id})
    if not person.is_active or person.role != ROLE_DELIVERY:
        raise ValidationError(
            "User is not an active delivery person",
            {"user_id": user_id, "role": person.role, "is_active": person.is_active},
        )
    return person


def _assign_locked(order: Order, person: User) -> Delivery:
    require_status(order, ASSIGNABLE_STATUSES, "assign")
    now = utcnow()
    delivery = order.delivery
    if delivery is None:
        delivery = Delivery(order_id=order.id, delivery_person_user_id=person.id, assigned_at=now)
        db.session.add(delivery)
    else:
        delivery.delivery_person_user_id = person.id
        delivery.assigned_at = now
    order.order_status = ORDER_ASSIGNED
    db.session.flush()
    return delivery


def assign(order_id: int, delivery_person_id: int, actor: Actor) -> dict:
    """pending_approval/pending_assignment -> assigned (dispatch or manager)."""
    require_actor_role(actor, ROLE_DISPATCH, ROLE_MANAGER)

    def _op():
        order = lock_order(order_id)
        require_status(order, ASSIGNABLE_STATUSES, "assign")
        person = _require_delivery_person(delivery_person_id)
        delivery = _assign_locked(order, person)
        return {"order": order.to_dict(), "delivery": delivery.to_dict()}

    return run_in_transaction(_op)


def take(order_id: int, actor: Actor) -> dict:
    """A delivery person assigns an order to themselves."""
    require_actor_role(actor, ROLE_DELIVERY)

    def _op():
        order = lock_order(order_id)
        require_status(order, ASSIGNABLE_STATUSES, "take")
        person = _require_delivery_person(actor.user_id)
        delivery = _assign_locked(order, person)
        return {"order": order.to_dict(), "delivery": delivery.to_dict()}

    return run_in_transaction(_op)


def start(order_id: int, actor: Actor) -> dict:
    """assigned -> delivering, by the assigned person only."""
    def _op():
        order = lock_order(order_id)
        require_status(order, (ORDER_ASSIGNED,), "start")
        delivery = _require_assigned_person(order, actor)
        delivery.departed_at = utcnow()
        order.order_status = ORDER_DELIVERING
        db.session.flush()
        return {"order": order.to_dict(), "delivery": delivery.to_dict()}

    return run_in_transaction(_op)


def _parse_schedule(value) -> datetime | None:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value
    try:
        return parse_iso_datetime(str(value))
    except ValueError:
        raise ValidationError("scheduled_collection_time must be an ISO-8601 datetime")


def complete(
    order_id: int,
    actor: Actor,
    *,
    collection_method: str,
    amount_cents: int | None = None,
    payment_proof_ref: str | None = None,
    scheduled_collection_time=None,
    delivery_notes: str | None = None,
) -> dict:
    """
    assigned/delivering -> delivered.

    cash, yape_plin, transfer: amount required (> 0), payment_status paid, and
    the amount is recorded as an unverified Payment. Nothing collected means
    deferred or not_collected: payment_status late_payment_scheduled.
    """
    if collection_method not in VALID_COLLECTION_METHODS:
        raise ValidationError(
            "Invalid collection method",
            {"collection_method": collection_method, "allowed": list(VALID_COLLECTION_METHODS)},
        )
    if collection_method in IMMEDIATE_COLLECTION_METHODS:
        if amount_cents is None or amount_cents <= 0:
            raise ValidationError(
                "amount_collected must be greater than zero for an immediate collection",
                {"collection_method": collection_method, "amount_collected": amount_cents},
            )
    elif amount_cents is not None and amount_cents < 0:
        raise ValidationError("amount_collected cannot be negative")
    scheduled = _parse_schedule(scheduled_collection_time) if collection_method == COLLECT_DEFERRED else None

    def _op():
        order = lock_order(order_id)
        require_status(order, IN_PROGRESS_STATUSES, "complete")
        delivery = _require_assigned_person(order, actor)

        now = utcnow()
        delivery.completed_at = now
        delivery.collection_method = collection_method
        delivery.amount_collected_cents = amount_cents
        delivery.payment_proof_ref = payment_proof_ref
        delivery.scheduled_collection_time = scheduled
        delivery.delivery_notes = delivery_notes

        order.order_status = ORDER_DELIVERED
        payment = None
        if collection_method in IMMEDIATE_COLLECTION_METHODS:
            order.payment_status = PAYMENT_PAID
            payment = Payment(
                order_id=order.id,
                amount_cents=amount_cents,
                payment_method=collection_method,
                transaction_reference="Collected on delivery",
                proof_ref=payment_proof_ref,
                status=RECORD_UNVERIFIED,
                recorded_by_user_id=actor.user_id,
            )
            db.session.add(payment)
        else:
            order.payment_status = PAYMENT_LATE_SCHEDULED
        db.session.flush()
        return {
            "order": order.to_dict(),
            "delivery": delivery.to_dict(),
            "payment": payment.to_dict() if payment else None,
        }

    return run_in_transaction(_op)


def report_issue(order_id: int, actor: Actor, notes: str) -> dict:
    """assigned/delivering -> delivery_issue. No ledger is reversed."""
    notes = (notes or "").strip()
    if not notes:
        raise ValidationError("Issue notes are required")

    def _op():
        order = lock_order(order_id)
        require_status(order, IN_PROGRESS_STATUSES, "report an issue on")
        delivery = _require_assigned_person(order, actor)
        delivery.has_issue = True
        delivery.issue_notes = notes
        order.order_status = ORDER_DELIVERY_ISSUE
        db.session.flush()
        return {"order": order.to_dict(), "delivery": delivery.to_dict()}

    return run_in_transaction(_op)


def _collected_so_far(order_id: int) -> int:
    total = (
        db.session.query(func.coalesce(func.sum(Payment.amount_cents), 0))
        .filter(Payment.order_id == order_id, Payment.status != RECORD_REJECTED)
        .scalar()
    )
    return int(total or 0)


def collect_late_payment(
    order_id: int,
    actor: Actor,
    *,
    amount_cents: int,
    payment_method: str,
    notes: str | None = None,
) -> dict:
    """
    The assigned delivery person records money collected after delivery.
    payment_status becomes paid once non-rejected payments cover the total,
    partially_paid otherwise.
    """
    if payment_method not in IMMEDIATE_COLLECTION_METHODS:
        raise ValidationError(
            "Invalid payment method",
            {"payment_method": payment_method, "allowed": list(IMMEDIATE_COLLECTION_METHODS)},
        )
    if amount_cents is None or amount_cents <= 0:
        raise ValidationError("amount_collected must be greater than zero")

    def _op():
        order = lock_order(order_id)
        if order.payment_status not in COLLECTIBLE_PAYMENT_STATUSES:
            raise InvalidStateTransition(
                "Order is not pending collection",
                {"order_id": order.id, "payment_status": order.payment_status},
            )
        delivery = _require_assigned_person(order, actor)

        payment = Payment(
            order_id=order.id,
            amount_cents=amount_cents,
            payment_method=payment_method,
            transaction_reference="Late collection",
            status=RECORD_UNVERIFIED,
            recorded_by_user_id=actor.user_id,
            notes=notes,
        )
        db.session.add(payment)
        db.session.flush()

        # collection_method keeps the late method so open balances stay listed
        delivery.amount_collected_cents = (delivery.amount_collected_cents or 0) + amount_cents

        collected = _collected_so_far(order.id)
        order.payment_status = PAYMENT_PAID if collected >= order.total_cents else PAYMENT_PARTIALLY_PAID
        db.session.flush()
        return {"order": order.to_dict(), "payment": payment.to_dict(), "collected_cents": collected}

    return run_in_transaction(_op)


# --- reads ------------------------------------------------------------------

def get_delivery_details(order_id: int, actor: Actor) -> dict:
    order = db.session.get(Order, order_id)
    if order is None:
        raise NotFound("Order not found", {"order_id": order_id})
    check_order_access(order, actor)
    if order.delivery is None:
        raise NotFound("Order has no delivery yet", {"order_id": order_id})
    data = order.delivery.to_dict()
    data["order_status"] = order.order_status
    data["payment_status"] = order.payment_status
    data["total_cents"] = order.total_cents
    return data


def get_my_assignments(actor: Actor) -> list[dict]:
    """Orders currently assigned to or in transit with this delivery person."""
    require_actor_role(actor, ROLE_DELIVERY)
    rows = (
        db.session.query(Order)
        .join(Delivery, Delivery.order_id == Order.id)
        .filter(
            Delivery.delivery_person_user_id == actor.user_id,
            Order.order_status.in_(IN_PROGRESS_STATUSES),
        )
        .order_by(Delivery.assigned_at.asc())
        .all()
    )
    return [o.to_dict(include_items=True) for o in rows]


def list_pending_collections(actor: Actor) -> list[dict]:
    """
    Delivered orders whose collection was deferred and is still open.
    Delivery staff only see their own.
    """
    query = (
        db.session.query(Order, Delivery)
        .join(Delivery, Delivery.order_id == Order.id)
        .filter(
            Delivery.collection_method.in_(LATE_COLLECTION_METHODS),
            Order.payment_status.in_(COLLECTIBLE_PAYMENT_STATUSES),
        )
    )
    if actor.role == ROLE_DELIVERY:
        query = query.filter(Delivery.delivery_person_user_id == actor.user_id)
    rows = query.order_by(Delivery.completed_at.desc()).all()

    out = []
    for order, delivery in rows:
        data = order.to_dict()
        data["delivery"] = delivery.to_dict()
        data["amount_pending_cents"] = max(0, order.total_cents - _collected_so_far(order.id))
        out.append(data)
    return out


def get_daily_history(actor: Actor, day: datetime | None = None) -> list[dict]:
    """Deliveries this person completed on `day` (UTC date, default today)."""
    require_actor_role(actor, ROLE_DELIVERY)
    day = (day or utcnow()).replace(hour=0, minute=0, second=0, microsecond=0)
    next_day = day + timedelta(days=1)
    rows = (
        db.session.query(Order)
        .join(Delivery, Delivery.order_id == Order.id)
        .filter(
            Delivery.delivery_person_user_id == actor.user_id,
            Delivery.completed_at >= day,
            Delivery.completed_at < next_day,
        )
        .order_by(Delivery.completed_at.desc())
        .all()
    )
    return [o.to_dict(include_items=True) for o in rows]
