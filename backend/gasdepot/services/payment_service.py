# Overview: Payment side of the order state machine; proof submission and one-time verification.

"""
Payment verification

DESIGN PRINCIPLES:
- Payments are separate from orders (many-to-one)
- Every payment starts unverified; verification is a one-time terminal
  transition (verified_by_user_id null before, non-null after)
- Only approved payments count toward the order's payment_status
- Earned loyalty points become spendable exactly once, when verification
  first brings the order to paid
"""
from __future__ import annotations

from sqlalchemy import func

from ..errors import AlreadyVerified, InvalidStateTransition, NotFound, PermissionDenied, ValidationError
from ..extensions import db
from ..models import Order, Payment
from ..models.auth import ROLE_ACCOUNTING, ROLE_MANAGER
from ..models.customers import REASON_PURCHASE_EARN
from ..models.orders import (
    ORDER_CANCELLED,
    ORDER_DELIVERY_ISSUE,
    PAYMENT_PAID,
    PAYMENT_PARTIALLY_PAID,
    RECORD_APPROVED,
    RECORD_REJECTED,
    RECORD_UNVERIFIED,
)
from ..time_utils import utcnow
from . import loyalty_service
from .auth_service import Actor, require_actor_role
from .concurrency import lock_for_update, run_in_transaction
from .order_service import check_order_access, lock_order


# =============================================================================
# PAYMENT METHODS (CONSTANTS)
# =============================================================================

PROOF_METHOD_YAPE_PLIN = "yape_plin"
PROOF_METHOD_TRANSFER = "transfer"
PROOF_METHOD_OTHER = "other"

VALID_PROOF_METHODS = (PROOF_METHOD_YAPE_PLIN, PROOF_METHOD_TRANSFER, PROOF_METHOD_OTHER)


# =============================================================================
# CUSTOMER PROOF SUBMISSION
# =============================================================================

def submit_payment_proof(
    order_id: int,
    actor: Actor,
    *,
    amount_cents: int,
    payment_method: str,
    proof_ref: str,
    transaction_reference: str | None = None,
    notes: str | None = None,
) -> dict:
    """
    The owning customer records a payment with an opaque proof reference
    (returned by the file-storage collaborator). The payment waits for
    accounting; payment_status is untouched until it is verified.
    """
    if not actor.is_customer:
        raise PermissionDenied("Only customers submit payment proofs", {"role": actor.role})
    if payment_method not in VALID_PROOF_METHODS:
        raise ValidationError(
            "Invalid payment method",
            {"payment_method": payment_method, "allowed": list(VALID_PROOF_METHODS)},
        )
    if amount_cents is None or amount_cents <= 0:
        raise ValidationError("amount must be greater than zero")
    proof_ref = (proof_ref or "").strip()
    if not proof_ref:
        raise ValidationError("proof_ref is required")

    def _op():
        order = lock_order(order_id)
        if order.customer_user_id != actor.user_id:
            raise PermissionDenied("Order does not belong to this customer", {"order_id": order_id})
        if order.order_status in (ORDER_CANCELLED, ORDER_DELIVERY_ISSUE):
            raise InvalidStateTransition(
                "Cannot add a payment to this order",
                {"order_id": order.id, "current_status": order.order_status},
            )
        if order.payment_status == PAYMENT_PAID:
            raise InvalidStateTransition(
                "Order is already paid",
                {"order_id": order.id, "payment_status": order.payment_status},
            )

        payment = Payment(
            order_id=order.id,
            amount_cents=amount_cents,
            payment_method=payment_method,
            transaction_reference=transaction_reference,
            proof_ref=proof_ref[:255],
            status=RECORD_UNVERIFIED,
            recorded_by_user_id=actor.user_id,
            notes=notes,
        )
        db.session.add(payment)
        db.session.flush()
        return payment.to_dict()

    return run_in_transaction(_op)


# =============================================================================
# VERIFICATION
# =============================================================================

def _approved_total(order_id: int) -> int:
    total = (
        db.session.query(func.coalesce(func.sum(Payment.amount_cents), 0))
        .filter(Payment.order_id == order_id, Payment.status == RECORD_APPROVED)
        .scalar()
    )
    return int(total or 0)


def _credit_earned_points(order: Order, actor: Actor) -> None:
    """Move the order's earned points into the spendable balance, once."""
    if order.points_credited or order.points_earned <= 0 or order.order_status == ORDER_CANCELLED:
        return
    customer = loyalty_service.lock_customer(order.customer_user_id)
    loyalty_service.append_entry_locked(
        customer,
        order.points_earned,
        REASON_PURCHASE_EARN,
        related_order_id=order.id,
        notes=f"Points credited for paid order #{order.id}",
        user_id=actor.user_id,
    )
    order.points_credited = True


def verify_payment(payment_id: int, actor: Actor, *, approved: bool, notes: str | None = None) -> dict:
    """
    Approve or reject an unverified payment (accounting or manager).

    Approve: recompute payment_status from approved payments vs total
    (paid if >= total, else partially_paid); on reaching paid, credit the
    order's earned points. Reject: no ledger effect.

    Raises AlreadyVerified if the payment was verified before, and
    InvalidStateTransition when approving on a cancelled order.
    """
    require_actor_role(actor, ROLE_ACCOUNTING, ROLE_MANAGER)
    if not isinstance(approved, bool):
        raise ValidationError("approved must be true or false")

    def _op():
        payment = lock_for_update(db.session.query(Payment).filter_by(id=payment_id)).first()
        if payment is None:
            raise NotFound("Payment not found", {"payment_id": payment_id})
        if payment.verified_by_user_id is not None:
            raise AlreadyVerified(
                "Payment already verified",
                {"payment_id": payment.id, "status": payment.status},
            )

        order = lock_order(payment.order_id)
        if approved and order.order_status == ORDER_CANCELLED:
            raise InvalidStateTransition(
                "Cannot approve a payment on a cancelled order",
                {"order_id": order.id, "payment_id": payment.id, "current_status": order.order_status},
            )

        payment.verified_by_user_id = actor.user_id
        payment.verified_at = utcnow()
        if notes:
            payment.notes = notes

        if not approved:
            payment.status = RECORD_REJECTED
            db.session.flush()
            return {"payment": payment.to_dict(), "order": order.to_dict()}

        payment.status = RECORD_APPROVED
        db.session.flush()

        approved_total = _approved_total(order.id)
        order.payment_status = PAYMENT_PAID if approved_total >= order.total_cents else PAYMENT_PARTIALLY_PAID
        if order.payment_status == PAYMENT_PAID:
            _credit_earned_points(order, actor)
        db.session.flush()
        return {
            "payment": payment.to_dict(),
            "order": order.to_dict(),
            "approved_total_cents": approved_total,
        }

    return run_in_transaction(_op)


# =============================================================================
# QUERIES
# =============================================================================

def get_payment_history(order_id: int, actor: Actor) -> dict:
    order = db.session.get(Order, order_id)
    if order is None:
        raise NotFound("Order not found", {"order_id": order_id})
    check_order_access(order, actor)
    payments = (
        db.session.query(Payment)
        .filter_by(order_id=order_id)
        .order_by(Payment.created_at.asc(), Payment.id.asc())
        .all()
    )
    return {
        "order_id": order.id,
        "total_cents": order.total_cents,
        "payment_status": order.payment_status,
        "approved_total_cents": _approved_total(order.id),
        "payments": [p.to_dict() for p in payments],
    }


def list_unverified_payments(*, page: int = 1, per_page: int = 20) -> dict:
    """Accounting queue, oldest first."""
    query = db.session.query(Payment).filter(Payment.status == RECORD_UNVERIFIED)
    per_page = min(max(per_page, 1), 100)
    page = max(page, 1)
    total = query.count()
    rows = (
        query.order_by(Payment.created_at.asc(), Payment.id.asc())
        .offset((page - 1) * per_page)
        .limit(per_page)
        .all()
    )
    return {
        "items": [p.to_dict() for p in rows],
        "count": len(rows),
        "pagination": {"page": page, "per_page": per_page, "total": total},
    }
