from __future__ import annotations

from ..extensions import db
from gasdepot.time_utils import to_utc_z

# Loyalty ledger reasons
REASON_PURCHASE_EARN = "purchase_earn"
REASON_REFERRAL_BONUS = "referral_bonus_earn"
REASON_REDEMPTION_SPEND = "redemption_spend"
REASON_REFUND = "refund"
REASON_MANUAL_ADJUSTMENT = "manual_adjustment"
REASON_EARN_REVERSAL = "earn_reversal"

VALID_LOYALTY_REASONS = (
    REASON_PURCHASE_EARN,
    REASON_REFERRAL_BONUS,
    REASON_REDEMPTION_SPEND,
    REASON_REFUND,
    REASON_MANUAL_ADJUSTMENT,
    REASON_EARN_REVERSAL,
)


class Customer(db.Model):
    """
    Customer profile, 1:1 with a `cliente` user.

    loyalty_points is a cache of the settled loyalty ledger:
        loyalty_points == SUM(points_change) over this customer's
        LoyaltyTransaction rows with is_pending = false.
    It is only ever moved together with a ledger insert, in the same
    transaction, while the row is locked.
    """
    __tablename__ = "customers"

    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), primary_key=True)

    dni_ruc = db.Column(db.String(20), nullable=True)
    address_text = db.Column(db.String(255), nullable=True)
    latitude = db.Column(db.Float, nullable=True)
    longitude = db.Column(db.Float, nullable=True)

    loyalty_points = db.Column(db.Integer, nullable=False, default=0)
    referral_code = db.Column(db.String(32), nullable=True, unique=True)
    referred_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)

    last_purchase_at = db.Column(db.DateTime(timezone=True), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    version_id = db.Column(db.Integer, nullable=False, default=1)

    user = db.relationship("User", foreign_keys=[user_id], backref=db.backref("customer", uselist=False, lazy=True))
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "user_id": self.user_id,
            "full_name": self.user.full_name if self.user else None,
            "dni_ruc": self.dni_ruc,
            "address_text": self.address_text,
            "loyalty_points": self.loyalty_points,
            "referral_code": self.referral_code,
            "referred_by_user_id": self.referred_by_user_id,
            "last_purchase_at": to_utc_z(self.last_purchase_at) if self.last_purchase_at else None,
            "created_at": to_utc_z(self.created_at),
        }


class LoyaltyTransaction(db.Model):
    """
    Append-only ledger of loyalty point deltas.

    is_pending rows are audit markers (points earned by an order that is not
    paid yet); they never count toward the balance. Settlement writes a new,
    non-pending row instead of flipping the marker.

    IMMUTABLE: Records are never updated or deleted.
    """
    __tablename__ = "loyalty_transactions"
    __table_args__ = (
        db.Index("ix_loyalty_txns_customer_created", "customer_user_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    customer_user_id = db.Column(db.Integer, db.ForeignKey("customers.user_id"), nullable=False, index=True)

    points_change = db.Column(db.Integer, nullable=False)  # Positive for earn/refund, negative for spend
    reason = db.Column(db.String(32), nullable=False, index=True)
    is_pending = db.Column(db.Boolean, nullable=False, default=False)

    related_order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=True, index=True)
    notes = db.Column(db.String(255), nullable=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)

    customer = db.relationship("Customer", backref=db.backref("loyalty_transactions", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "customer_user_id": self.customer_user_id,
            "points_change": self.points_change,
            "reason": self.reason,
            "is_pending": self.is_pending,
            "related_order_id": self.related_order_id,
            "notes": self.notes,
            "user_id": self.user_id,
            "created_at": to_utc_z(self.created_at),
        }
