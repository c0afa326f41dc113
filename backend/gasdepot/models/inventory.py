from __future__ import annotations

from ..extensions import db
from gasdepot.time_utils import to_utc_z

ITEM_CYLINDER = "cylinder"
ITEM_OTHER_PRODUCT = "other_product"
VALID_ITEM_TYPES = (ITEM_CYLINDER, ITEM_OTHER_PRODUCT)

STATE_FULL = "full"
STATE_EMPTY = "empty"
STATE_DAMAGED = "damaged"
STATE_LOANED = "loaned_to_customer"
STATE_AVAILABLE = "available"

CYLINDER_STATES = (STATE_FULL, STATE_EMPTY, STATE_DAMAGED, STATE_LOANED)
PRODUCT_STATES = (STATE_AVAILABLE,)

# Inventory log transaction types
TX_ORDER_DEBIT = "order_debit"
TX_ORDER_CANCEL_RESTOCK = "order_cancel_restock"
TX_ADJUSTMENT = "adjustment"
TX_TRANSFER_OUT = "transfer_out"
TX_TRANSFER_IN = "transfer_in"
TX_RESTOCK = "restock"


def valid_states_for(item_type: str) -> tuple:
    return CYLINDER_STATES if item_type == ITEM_CYLINDER else PRODUCT_STATES


class InventoryStock(db.Model):
    """
    Current quantity of one item in one physical state at one warehouse.

    Quantity never goes below zero: the service checks under a row lock and
    the CHECK constraint backs it up. version_id turns a lost update into a
    StaleDataError on back ends that ignore FOR UPDATE.
    """
    __tablename__ = "inventory_stock"
    __table_args__ = (
        db.UniqueConstraint("warehouse_id", "item_type", "item_id", "state", name="uq_inventory_stock_key"),
        db.CheckConstraint("quantity >= 0", name="ck_inventory_stock_quantity_nonneg"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    warehouse_id = db.Column(db.Integer, db.ForeignKey("warehouses.id"), nullable=False, index=True)
    item_type = db.Column(db.String(16), nullable=False)
    item_id = db.Column(db.Integer, nullable=False)
    state = db.Column(db.String(32), nullable=False)

    quantity = db.Column(db.Integer, nullable=False, default=0)

    version_id = db.Column(db.Integer, nullable=False, default=1)
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    warehouse = db.relationship("Warehouse")
    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return (
            f"<InventoryStock wh={self.warehouse_id} {self.item_type}:{self.item_id} "
            f"{self.state} qty={self.quantity}>"
        )

    def to_dict(self) -> dict:
        return {
            "warehouse_id": self.warehouse_id,
            "item_type": self.item_type,
            "item_id": self.item_id,
            "state": self.state,
            "quantity": self.quantity,
            "updated_at": to_utc_z(self.updated_at),
        }


class InventoryLog(db.Model):
    """
    Audit trail for every stock mutation.

    IMMUTABLE: one row per change, signed quantity_change. Never updated.
    """
    __tablename__ = "inventory_log"
    __table_args__ = (
        db.Index("ix_inventory_log_wh_item_created", "warehouse_id", "item_type", "item_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    warehouse_id = db.Column(db.Integer, db.ForeignKey("warehouses.id"), nullable=False, index=True)
    item_type = db.Column(db.String(16), nullable=False)
    item_id = db.Column(db.Integer, nullable=False)
    state = db.Column(db.String(32), nullable=False)

    quantity_change = db.Column(db.Integer, nullable=False)
    transaction_type = db.Column(db.String(32), nullable=False, index=True)
    reason = db.Column(db.String(255), nullable=True)
    notes = db.Column(db.String(255), nullable=True)

    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    related_order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=True, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "warehouse_id": self.warehouse_id,
            "item_type": self.item_type,
            "item_id": self.item_id,
            "state": self.state,
            "quantity_change": self.quantity_change,
            "transaction_type": self.transaction_type,
            "reason": self.reason,
            "notes": self.notes,
            "user_id": self.user_id,
            "related_order_id": self.related_order_id,
            "created_at": to_utc_z(self.created_at),
        }


class SupplierLoan(db.Model):
    """
    Cylinders borrowed from a supplier. Not part of any warehouse's stock;
    the row is deleted when the loan is returned.
    """
    __tablename__ = "supplier_loans"
    __table_args__ = (
        db.CheckConstraint("quantity > 0", name="ck_supplier_loans_quantity_positive"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    cylinder_type_id = db.Column(db.Integer, db.ForeignKey("cylinder_types.id"), nullable=False, index=True)
    quantity = db.Column(db.Integer, nullable=False)
    loan_date = db.Column(db.Date, nullable=False)
    supplier_info = db.Column(db.String(255), nullable=True)
    notes = db.Column(db.String(255), nullable=True)

    recorded_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    cylinder_type = db.relationship("CylinderType")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "cylinder_type_id": self.cylinder_type_id,
            "cylinder_name": self.cylinder_type.name if self.cylinder_type else None,
            "quantity": self.quantity,
            "loan_date": self.loan_date.isoformat() if self.loan_date else None,
            "supplier_info": self.supplier_info,
            "notes": self.notes,
            "recorded_by_user_id": self.recorded_by_user_id,
            "created_at": to_utc_z(self.created_at),
        }
