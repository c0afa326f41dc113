from __future__ import annotations

from ..extensions import db
from gasdepot.money import format_cents
from gasdepot.time_utils import to_utc_z

# Order status
ORDER_PENDING_APPROVAL = "pending_approval"
ORDER_PENDING_ASSIGNMENT = "pending_assignment"
ORDER_ASSIGNED = "assigned"
ORDER_DELIVERING = "delivering"
ORDER_DELIVERED = "delivered"
ORDER_CANCELLED = "cancelled"
ORDER_DELIVERY_ISSUE = "delivery_issue"

VALID_ORDER_STATUSES = (
    ORDER_PENDING_APPROVAL,
    ORDER_PENDING_ASSIGNMENT,
    ORDER_ASSIGNED,
    ORDER_DELIVERING,
    ORDER_DELIVERED,
    ORDER_CANCELLED,
    ORDER_DELIVERY_ISSUE,
)

# Payment status (aggregate, on the order)
PAYMENT_PENDING = "pending"
PAYMENT_PARTIALLY_PAID = "partially_paid"
PAYMENT_PAID = "paid"
PAYMENT_LATE_SCHEDULED = "late_payment_scheduled"

# Payment record status
RECORD_UNVERIFIED = "unverified"
RECORD_APPROVED = "approved"
RECORD_REJECTED = "rejected"

# Order line actions
ACTION_EXCHANGE = "exchange"
ACTION_NEW_PURCHASE = "new_purchase"
ACTION_LOAN_PURCHASE = "loan_purchase"
ACTION_SALE = "sale"

CYLINDER_ACTIONS = (ACTION_EXCHANGE, ACTION_NEW_PURCHASE, ACTION_LOAN_PURCHASE)

# Collection methods at delivery
COLLECT_CASH = "cash"
COLLECT_YAPE_PLIN = "yape_plin"
COLLECT_TRANSFER = "transfer"
COLLECT_DEFERRED = "deferred"
COLLECT_NOT_COLLECTED = "not_collected"

IMMEDIATE_COLLECTION_METHODS = (COLLECT_CASH, COLLECT_YAPE_PLIN, COLLECT_TRANSFER)
LATE_COLLECTION_METHODS = (COLLECT_DEFERRED, COLLECT_NOT_COLLECTED)
VALID_COLLECTION_METHODS = IMMEDIATE_COLLECTION_METHODS + LATE_COLLECTION_METHODS


class Order(db.Model):
    """
    Customer order header.

    LIFECYCLE:
    pending_approval -> pending_assignment -> assigned -> delivering -> delivered
    cancelled is reachable from the first three; delivery_issue from
    assigned/delivering.

    Totals are computed once at creation:
        total_cents = max(0, subtotal_cents - discount_cents)

    Orders are never deleted; cancellation is a status with compensating
    ledger entries.
    """
    __tablename__ = "orders"
    __table_args__ = (
        db.Index("ix_orders_status_created", "order_status", "created_at"),
        db.Index("ix_orders_customer_created", "customer_user_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    customer_user_id = db.Column(db.Integer, db.ForeignKey("customers.user_id"), nullable=False, index=True)
    warehouse_id = db.Column(db.Integer, db.ForeignKey("warehouses.id"), nullable=False, index=True)

    delivery_address_text = db.Column(db.String(255), nullable=False)
    delivery_instructions = db.Column(db.Text, nullable=True)
    latitude = db.Column(db.Float, nullable=True)
    longitude = db.Column(db.Float, nullable=True)
    voucher_code = db.Column(db.String(64), nullable=True)

    subtotal_cents = db.Column(db.Integer, nullable=False)
    discount_cents = db.Column(db.Integer, nullable=False, default=0)
    total_cents = db.Column(db.Integer, nullable=False)

    order_status = db.Column(db.String(32), nullable=False, default=ORDER_PENDING_APPROVAL, index=True)
    payment_status = db.Column(db.String(32), nullable=False, default=PAYMENT_PENDING, index=True)

    points_earned = db.Column(db.Integer, nullable=False, default=0)
    points_redeemed = db.Column(db.Integer, nullable=False, default=0)
    points_credited = db.Column(db.Boolean, nullable=False, default=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    cancelled_at = db.Column(db.DateTime(timezone=True), nullable=True)
    cancelled_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    cancel_reason = db.Column(db.String(255), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    customer = db.relationship("Customer", backref=db.backref("orders", lazy=True))
    warehouse = db.relationship("Warehouse")
    items = db.relationship("OrderItem", backref="order", lazy=True, order_by="OrderItem.id")
    delivery = db.relationship("Delivery", backref="order", uselist=False, lazy=True)
    payments = db.relationship("Payment", backref="order", lazy=True, order_by="Payment.id")
    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<Order id={self.id} status={self.order_status!r} payment={self.payment_status!r}>"

    def to_dict(self, include_items: bool = False) -> dict:
        data = {
            "id": self.id,
            "customer_user_id": self.customer_user_id,
            "warehouse_id": self.warehouse_id,
            "delivery_address_text": self.delivery_address_text,
            "delivery_instructions": self.delivery_instructions,
            "latitude": self.latitude,
            "longitude": self.longitude,
            "voucher_code": self.voucher_code,
            "subtotal_cents": self.subtotal_cents,
            "subtotal": format_cents(self.subtotal_cents),
            "discount_cents": self.discount_cents,
            "discount": format_cents(self.discount_cents),
            "total_cents": self.total_cents,
            "total": format_cents(self.total_cents),
            "order_status": self.order_status,
            "payment_status": self.payment_status,
            "points_earned": self.points_earned,
            "points_redeemed": self.points_redeemed,
            "points_credited": self.points_credited,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
            "cancelled_at": to_utc_z(self.cancelled_at) if self.cancelled_at else None,
            "cancelled_by_user_id": self.cancelled_by_user_id,
            "cancel_reason": self.cancel_reason,
        }
        if include_items:
            data["items"] = [item.to_dict() for item in self.items]
            data["delivery"] = self.delivery.to_dict() if self.delivery else None
        return data


class OrderItem(db.Model):
    """
    One order line. IMMUTABLE once written.

    stock_state is the inventory state the line draws from (full cylinders,
    available products); cancellation restocks into the same state.
    """
    __tablename__ = "order_items"
    __table_args__ = (
        db.CheckConstraint("quantity > 0", name="ck_order_items_quantity_positive"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)

    item_type = db.Column(db.String(16), nullable=False)
    item_id = db.Column(db.Integer, nullable=False)
    action_type = db.Column(db.String(16), nullable=False)
    stock_state = db.Column(db.String(32), nullable=False)

    quantity = db.Column(db.Integer, nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False)
    line_total_cents = db.Column(db.Integer, nullable=False)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "item_type": self.item_type,
            "item_id": self.item_id,
            "action_type": self.action_type,
            "stock_state": self.stock_state,
            "quantity": self.quantity,
            "unit_price_cents": self.unit_price_cents,
            "unit_price": format_cents(self.unit_price_cents),
            "line_total_cents": self.line_total_cents,
            "line_total": format_cents(self.line_total_cents),
        }


class Delivery(db.Model):
    """Delivery record, created on first assignment (1:1 with the order)."""
    __tablename__ = "deliveries"
    __table_args__ = (
        db.UniqueConstraint("order_id", name="uq_deliveries_order"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False)
    delivery_person_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)

    assigned_at = db.Column(db.DateTime(timezone=True), nullable=False)
    departed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    collection_method = db.Column(db.String(16), nullable=True)
    amount_collected_cents = db.Column(db.Integer, nullable=True)
    payment_proof_ref = db.Column(db.String(255), nullable=True)
    scheduled_collection_time = db.Column(db.DateTime(timezone=True), nullable=True)

    delivery_notes = db.Column(db.Text, nullable=True)
    has_issue = db.Column(db.Boolean, nullable=False, default=False)
    issue_notes = db.Column(db.Text, nullable=True)

    delivery_person = db.relationship("User")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "delivery_person_user_id": self.delivery_person_user_id,
            "delivery_person_name": self.delivery_person.full_name if self.delivery_person else None,
            "assigned_at": to_utc_z(self.assigned_at),
            "departed_at": to_utc_z(self.departed_at) if self.departed_at else None,
            "completed_at": to_utc_z(self.completed_at) if self.completed_at else None,
            "collection_method": self.collection_method,
            "amount_collected_cents": self.amount_collected_cents,
            "amount_collected": format_cents(self.amount_collected_cents),
            "payment_proof_ref": self.payment_proof_ref,
            "scheduled_collection_time": (
                to_utc_z(self.scheduled_collection_time) if self.scheduled_collection_time else None
            ),
            "delivery_notes": self.delivery_notes,
            "has_issue": self.has_issue,
            "issue_notes": self.issue_notes,
        }


class Payment(db.Model):
    """
    Money recorded against an order (delivery collection, late collection,
    customer-submitted proof). Starts unverified; accounting approves or
    rejects it exactly once.
    """
    __tablename__ = "payments"
    __table_args__ = (
        db.Index("ix_payments_status_created", "status", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)

    amount_cents = db.Column(db.Integer, nullable=False)
    payment_method = db.Column(db.String(16), nullable=False)
    transaction_reference = db.Column(db.String(128), nullable=True)
    proof_ref = db.Column(db.String(255), nullable=True)

    status = db.Column(db.String(16), nullable=False, default=RECORD_UNVERIFIED, index=True)

    recorded_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    verified_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    verified_at = db.Column(db.DateTime(timezone=True), nullable=True)
    notes = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    version_id = db.Column(db.Integer, nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "amount_cents": self.amount_cents,
            "amount": format_cents(self.amount_cents),
            "payment_method": self.payment_method,
            "transaction_reference": self.transaction_reference,
            "proof_ref": self.proof_ref,
            "status": self.status,
            "recorded_by_user_id": self.recorded_by_user_id,
            "verified_by_user_id": self.verified_by_user_id,
            "verified_at": to_utc_z(self.verified_at) if self.verified_at else None,
            "notes": self.notes,
            "created_at": to_utc_z(self.created_at),
        }
