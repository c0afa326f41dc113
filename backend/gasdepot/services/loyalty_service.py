# Overview: Loyalty ledger; append-only point deltas with a synchronously maintained balance cache.

"""
Loyalty invariants

- LoyaltyTransaction rows are never updated or deleted.
- Customer.loyalty_points == SUM(points_change) over the customer's rows with
  is_pending = false. The cache is moved by exactly the row's delta, in the
  same transaction, while the customer row is locked.
- Pending rows are audit markers only. The balance never goes below zero.
"""
from __future__ import annotations

from sqlalchemy import func

from ..errors import InsufficientPoints, NotFound, ValidationError
from ..extensions import db
from ..money import format_cents, points_value_cents
from ..models import Customer, LoyaltyTransaction, User
from ..models.customers import (
    REASON_MANUAL_ADJUSTMENT,
    REASON_REDEMPTION_SPEND,
    REASON_REFERRAL_BONUS,
    VALID_LOYALTY_REASONS,
)
from . import settings_service
from .concurrency import lock_for_update, run_in_transaction


def get_customer(customer_id: int) -> Customer:
    customer = db.session.get(Customer, customer_id)
    if customer is None:
        raise NotFound("Customer not found", {"customer_id": customer_id})
    return customer


def lock_customer(customer_id: int) -> Customer:
    customer = lock_for_update(db.session.query(Customer).filter_by(user_id=customer_id)).first()
    if customer is None:
        raise NotFound("Customer not found", {"customer_id": customer_id})
    return customer


def append_entry_locked(
    customer: Customer,
    points_change: int,
    reason: str,
    *,
    related_order_id: int | None = None,
    is_pending: bool = False,
    notes: str | None = None,
    user_id: int | None = None,
) -> LoyaltyTransaction:
    """
    Insert one ledger row for an already-locked customer and move the cached
    balance by the same delta (pending rows leave the balance alone).

    Raises InsufficientPoints if a settled delta would take the balance below zero.
    """
    if reason not in VALID_LOYALTY_REASONS:
        raise ValidationError(f"Invalid loyalty reason: {reason}")
    if isinstance(points_change, bool) or not isinstance(points_change, int):
        raise ValidationError("points_change must be an integer")

    if not is_pending:
        new_balance = customer.loyalty_points + points_change
        if new_balance < 0:
            raise InsufficientPoints(
                "Insufficient loyalty points",
                {"current_points": customer.loyalty_points, "points_change": points_change},
            )
        customer.loyalty_points = new_balance

    entry = LoyaltyTransaction(
        customer_user_id=customer.user_id,
        points_change=points_change,
        reason=reason,
        is_pending=is_pending,
        related_order_id=related_order_id,
        notes=notes,
        user_id=user_id,
    )
    db.session.add(entry)
    db.session.flush()
    return entry


def check_redeemable(customer: Customer, points: int, min_redeem: int) -> None:
    """Guard for redemption: below the minimum or above the balance is InsufficientPoints."""
    if points > customer.loyalty_points:
        raise InsufficientPoints(
            "Insufficient loyalty points",
            {"current_points": customer.loyalty_points, "requested": points},
        )
    if points < min_redeem:
        raise InsufficientPoints(
            f"At least {min_redeem} points are required to redeem",
            {"current_points": customer.loyalty_points, "requested": points, "min_redeem": min_redeem},
        )


def redeem_locked(
    customer: Customer,
    points: int,
    *,
    min_redeem: int,
    related_order_id: int | None = None,
    user_id: int | None = None,
) -> LoyaltyTransaction:
    check_redeemable(customer, points, min_redeem)
    return append_entry_locked(
        customer,
        -points,
        REASON_REDEMPTION_SPEND,
        related_order_id=related_order_id,
        notes=f"Redeemed on order {related_order_id}" if related_order_id else None,
        user_id=user_id,
    )


def redeem_points(customer_id: int, points: int, *, user_id: int | None = None) -> dict:
    """
    Spend points outside an order. Same guards as order redemption: at least
    points_min_redeem and no more than the balance. The discount is reported
    at points_discount_value per point.
    """
    if isinstance(points, bool) or not isinstance(points, int) or points <= 0:
        raise ValidationError("points_to_redeem must be a positive integer")

    def _op():
        customer = lock_customer(customer_id)
        settings = settings_service.get_loyalty_settings()
        previous = customer.loyalty_points
        discount = points_value_cents(points, settings.points_discount_value)
        check_redeemable(customer, points, settings.points_min_redeem)
        entry = append_entry_locked(
            customer,
            -points,
            REASON_REDEMPTION_SPEND,
            notes=f"Redeemed for a discount of {format_cents(discount)}",
            user_id=user_id,
        )
        return {
            "transaction": entry.to_dict(),
            "previous_points": previous,
            "points_redeemed": points,
            "loyalty_points": customer.loyalty_points,
            "discount_amount": format_cents(discount),
        }

    return run_in_transaction(_op)

def adjust_points(customer_id: int, delta: int, *, notes: str | None, user_id: int | None) -> dict:
    """Manual correction by a manager. Non-zero delta; the balance may not go negative."""
    if isinstance(delta, bool) or not isinstance(delta, int) or delta == 0:
        raise ValidationError("points_change must be a non-zero integer")
    if not notes or not notes.strip():
        raise ValidationError("notes are required for a manual adjustment")

    def _op():
        customer = lock_customer(customer_id)
        entry = append_entry_locked(
            customer, delta, REASON_MANUAL_ADJUSTMENT, notes=notes.strip(), user_id=user_id,
        )
        return {"transaction": entry.to_dict(), "loyalty_points": customer.loyalty_points}

    return run_in_transaction(_op)


def award_referral_bonus(customer_id: int, *, referred_user_id: int | None, user_id: int | None) -> dict:
    """Credit points_for_referral to the referring customer."""
    def _op():
        customer = lock_customer(customer_id)
        bonus = settings_service.get_loyalty_settings().points_for_referral
        if bonus <= 0:
            raise ValidationError("Referral bonus is disabled", {"points_for_referral": bonus})
        notes = f"Referral of user {referred_user_id}" if referred_user_id else "Referral bonus"
        entry = append_entry_locked(customer, bonus, REASON_REFERRAL_BONUS, notes=notes, user_id=user_id)
        return {"transaction": entry.to_dict(), "loyalty_points": customer.loyalty_points}

    return run_in_transaction(_op)


def ledger_balance(customer_id: int) -> int:
    total = (
        db.session.query(func.coalesce(func.sum(LoyaltyTransaction.points_change), 0))
        .filter(
            LoyaltyTransaction.customer_user_id == customer_id,
            LoyaltyTransaction.is_pending.is_(False),
        )
        .scalar()
    )
    return int(total or 0)


def reconcile() -> list[dict]:
    """Customers whose cached balance disagrees with their settled ledger sum."""
    sums = dict(
        db.session.query(
            LoyaltyTransaction.customer_user_id,
            func.coalesce(func.sum(LoyaltyTransaction.points_change), 0),
        )
        .filter(LoyaltyTransaction.is_pending.is_(False))
        .group_by(LoyaltyTransaction.customer_user_id)
        .all()
    )
    mismatches = []
    for customer in db.session.query(Customer).order_by(Customer.user_id.asc()).all():
        expected = int(sums.get(customer.user_id, 0))
        if customer.loyalty_points != expected:
            mismatches.append({
                "customer_user_id": customer.user_id,
                "cached": customer.loyalty_points,
                "ledger": expected,
            })
    return mismatches


def list_transactions(customer_id: int, *, page: int = 1, per_page: int = 20) -> dict:
    customer = get_customer(customer_id)
    query = db.session.query(LoyaltyTransaction).filter_by(customer_user_id=customer_id)
    per_page = min(max(per_page, 1), 100)
    page = max(page, 1)
    total = query.count()
    rows = (
        query.order_by(LoyaltyTransaction.created_at.desc(), LoyaltyTransaction.id.desc())
        .offset((page - 1) * per_page)
        .limit(per_page)
        .all()
    )
    return {
        "loyalty_points": customer.loyalty_points,
        "items": [r.to_dict() for r in rows],
        "count": len(rows),
        "pagination": {"page": page, "per_page": per_page, "total": total},
    }


def list_customers(*, search: str | None = None, page: int = 1, per_page: int = 25) -> dict:
    query = db.session.query(Customer).join(User, User.id == Customer.user_id).filter(User.is_active.is_(True))
    if search:
        term = f"%{search.strip()}%"
        query = query.filter(db.or_(
            User.full_name.ilike(term),
            User.phone.ilike(term),
            User.email.ilike(term),
            Customer.dni_ruc.ilike(term),
        ))
    per_page = min(max(per_page, 1), 100)
    page = max(page, 1)
    total = query.count()
    rows = query.order_by(User.full_name.asc()).offset((page - 1) * per_page).limit(per_page).all()
    return {
        "items": [c.to_dict() for c in rows],
        "count": len(rows),
        "pagination": {"page": page, "per_page": per_page, "total": total},
    }


def get_customer_details(customer_id: int) -> dict:
    customer = get_customer(customer_id)
    data = customer.to_dict()
    data["special_prices"] = [
        p.to_dict() for p in customer.special_prices
    ]
    return data
