# Overview: Inventory ledger; per-warehouse stock by (item, physical state) with an audit row per change.

"""
Inventory invariants

- A stock row is keyed by (warehouse_id, item_type, item_id, state) and holds
  a non-negative quantity.
- Every mutation locks the row (SELECT ... FOR UPDATE), checks, then writes.
  Callers that touch several rows lock them in sorted key order.
- Every mutation appends exactly one InventoryLog row in the same transaction.
- *_locked functions neither commit nor retry; they run inside the caller's
  transaction. The public wrappers run them through run_in_transaction().
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import date

from sqlalchemy import func

from ..errors import InsufficientStock, NotFound, ValidationError
from ..extensions import db
from ..models import (
    CylinderType,
    InventoryLog,
    InventoryStock,
    OtherProduct,
    SupplierLoan,
    Warehouse,
)
from ..models.inventory import (
    ITEM_CYLINDER,
    ITEM_OTHER_PRODUCT,
    VALID_ITEM_TYPES,
    CYLINDER_STATES,
    TX_ADJUSTMENT,
    TX_RESTOCK,
    TX_TRANSFER_IN,
    TX_TRANSFER_OUT,
    valid_states_for,
)
from ..time_utils import utcnow
from .concurrency import lock_for_update, run_in_transaction


@dataclass(frozen=True, order=True)
class StockKey:
    warehouse_id: int
    item_type: str
    item_id: int
    state: str


def _validate_key(key: StockKey) -> None:
    if key.item_type not in VALID_ITEM_TYPES:
        raise ValidationError(f"Invalid item_type: {key.item_type}", {"item_type": key.item_type})
    if key.state not in valid_states_for(key.item_type):
        raise ValidationError(
            f"Invalid state '{key.state}' for {key.item_type}",
            {"state": key.state, "allowed": list(valid_states_for(key.item_type))},
        )


def _validate_positive_qty(qty) -> None:
    if isinstance(qty, bool) or not isinstance(qty, int) or qty <= 0:
        raise ValidationError("quantity must be a positive integer", {"quantity": qty})


def require_warehouse(warehouse_id: int) -> Warehouse:
    wh = db.session.get(Warehouse, warehouse_id)
    if wh is None:
        raise NotFound("Warehouse not found", {"warehouse_id": warehouse_id})
    return wh


def get_default_warehouse() -> Warehouse:
    wh = (
        db.session.query(Warehouse)
        .filter(Warehouse.is_default.is_(True), Warehouse.is_active.is_(True))
        .order_by(Warehouse.id.asc())
        .first()
    )
    if wh is None:
        raise NotFound("No default warehouse configured")
    return wh


def _require_catalog_item(item_type: str, item_id: int) -> None:
    model = CylinderType if item_type == ITEM_CYLINDER else OtherProduct
    if db.session.get(model, item_id) is None:
        raise NotFound(f"{item_type} not found", {"item_type": item_type, "item_id": item_id})


def get_quantity(warehouse_id: int, item_type: str, item_id: int, state: str) -> int:
    """Unlocked read; absent row means zero."""
    qty = (
        db.session.query(InventoryStock.quantity)
        .filter_by(warehouse_id=warehouse_id, item_type=item_type, item_id=item_id, state=state)
        .scalar()
    )
    return int(qty or 0)


def lock_stock_row(key: StockKey, *, create: bool = False) -> InventoryStock | None:
    """
    Lock and return the stock row for `key`. With create=True a missing row is
    inserted at quantity 0 (and returned); otherwise None.
    """
    row = lock_for_update(
        db.session.query(InventoryStock).filter_by(
            warehouse_id=key.warehouse_id,
            item_type=key.item_type,
            item_id=key.item_id,
            state=key.state,
        )
    ).first()
    if row is None and create:
        row = InventoryStock(
            warehouse_id=key.warehouse_id,
            item_type=key.item_type,
            item_id=key.item_id,
            state=key.state,
            quantity=0,
        )
        db.session.add(row)
        db.session.flush()
    return row


def lock_stock_rows(keys) -> dict:
    """Lock several rows in deterministic (sorted) order. Missing rows map to None."""
    return {key: lock_stock_row(key) for key in sorted(set(keys))}


def _write_log(
    key: StockKey,
    change: int,
    transaction_type: str,
    *,
    user_id: int | None,
    related_order_id: int | None,
    reason: str | None,
    notes: str | None,
) -> InventoryLog:
    log = InventoryLog(
        warehouse_id=key.warehouse_id,
        item_type=key.item_type,
        item_id=key.item_id,
        state=key.state,
        quantity_change=change,
        transaction_type=transaction_type,
        reason=reason,
        notes=notes,
        user_id=user_id,
        related_order_id=related_order_id,
    )
    db.session.add(log)
    return log


def debit_locked(
    key: StockKey,
    qty: int,
    transaction_type: str,
    *,
    user_id: int | None = None,
    related_order_id: int | None = None,
    reason: str | None = None,
    notes: str | None = None,
) -> InventoryStock:
    """Decrement `key` by qty or raise InsufficientStock (details carry the current quantity)."""
    _validate_key(key)
    _validate_positive_qty(qty)
    row = lock_stock_row(key)
    current = row.quantity if row is not None else 0
    if current < qty:
        raise InsufficientStock(
            "Insufficient stock",
            {
                "warehouse_id": key.warehouse_id,
                "item_type": key.item_type,
                "item_id": key.item_id,
                "state": key.state,
                "requested": qty,
                "current_quantity": current,
            },
        )
    row.quantity = current - qty
    _write_log(
        key, -qty, transaction_type,
        user_id=user_id, related_order_id=related_order_id, reason=reason, notes=notes,
    )
    db.session.flush()
    return row


def credit_locked(
    key: StockKey,
    qty: int,
    transaction_type: str,
    *,
    user_id: int | None = None,
    related_order_id: int | None = None,
    reason: str | None = None,
    notes: str | None = None,
) -> InventoryStock:
    """Increment `key` by qty, creating the row if needed. Always succeeds."""
    _validate_key(key)
    _validate_positive_qty(qty)
    row = lock_stock_row(key, create=True)
    row.quantity = row.quantity + qty
    _write_log(
        key, qty, transaction_type,
        user_id=user_id, related_order_id=related_order_id, reason=reason, notes=notes,
    )
    db.session.flush()
    return row


def debit(key: StockKey, qty: int, transaction_type: str, **kwargs) -> InventoryStock:
    def _op():
        require_warehouse(key.warehouse_id)
        return debit_locked(key, qty, transaction_type, **kwargs)

    return run_in_transaction(_op)


def credit(key: StockKey, qty: int, transaction_type: str = TX_RESTOCK, **kwargs) -> InventoryStock:
    def _op():
        require_warehouse(key.warehouse_id)
        _require_catalog_item(key.item_type, key.item_id)
        return credit_locked(key, qty, transaction_type, **kwargs)

    return run_in_transaction(_op)


def transfer(
    *,
    source_warehouse_id: int,
    target_warehouse_id: int,
    item_type: str,
    item_id: int,
    state: str,
    qty: int,
    user_id: int | None = None,
    notes: str | None = None,
) -> dict:
    """
    Move qty between warehouses atomically: transfer_out on the source,
    transfer_in on the target. Both rows are locked in key order first.
    """
    if source_warehouse_id == target_warehouse_id:
        raise ValidationError("Source and target warehouse must differ")
    src = StockKey(source_warehouse_id, item_type, item_id, state)
    dst = StockKey(target_warehouse_id, item_type, item_id, state)
    _validate_key(src)
    _validate_positive_qty(qty)

    def _op():
        require_warehouse(source_warehouse_id)
        require_warehouse(target_warehouse_id)
        _require_catalog_item(item_type, item_id)
        for key in sorted((src, dst)):
            lock_stock_row(key, create=(key == dst))
        reason = f"Transfer {source_warehouse_id} -> {target_warehouse_id}"
        src_row = debit_locked(src, qty, TX_TRANSFER_OUT, user_id=user_id, reason=reason, notes=notes)
        dst_row = credit_locked(dst, qty, TX_TRANSFER_IN, user_id=user_id, reason=reason, notes=notes)
        return {"source": src_row.to_dict(), "target": dst_row.to_dict()}

    return run_in_transaction(_op)


def adjust(
    key: StockKey,
    delta: int,
    *,
    reason: str,
    user_id: int | None = None,
    notes: str | None = None,
) -> InventoryStock:
    """Manual signed correction. Fails with InsufficientStock if the result would be negative."""
    _validate_key(key)
    if isinstance(delta, bool) or not isinstance(delta, int) or delta == 0:
        raise ValidationError("quantity_change must be a non-zero integer")
    if not reason or not str(reason).strip():
        raise ValidationError("reason is required")

    def _op():
        require_warehouse(key.warehouse_id)
        _require_catalog_item(key.item_type, key.item_id)
        if delta > 0:
            return credit_locked(key, delta, TX_ADJUSTMENT, user_id=user_id, reason=reason, notes=notes)
        return debit_locked(key, -delta, TX_ADJUSTMENT, user_id=user_id, reason=reason, notes=notes)

    return run_in_transaction(_op)


def get_stock_by_warehouse(warehouse_id: int) -> dict:
    """
    Stock view for one warehouse: cylinders with a quantity per state,
    products with their available quantity. Catalog items with no stock row
    show zeros.
    """
    wh = require_warehouse(warehouse_id)
    rows = db.session.query(InventoryStock).filter_by(warehouse_id=warehouse_id).all()
    qty = {(r.item_type, r.item_id, r.state): r.quantity for r in rows}

    cylinders = []
    for cyl in db.session.query(CylinderType).order_by(CylinderType.name.asc()).all():
        cylinders.append({
            "cylinder_type_id": cyl.id,
            "name": cyl.name,
            "is_available": cyl.is_available,
            "states": {s: qty.get((ITEM_CYLINDER, cyl.id, s), 0) for s in CYLINDER_STATES},
        })

    products = []
    for p in db.session.query(OtherProduct).order_by(OtherProduct.name.asc()).all():
        products.append({
            "product_id": p.id,
            "name": p.name,
            "stock_unit": p.stock_unit,
            "is_available": p.is_available,
            "available": qty.get((ITEM_OTHER_PRODUCT, p.id, "available"), 0),
        })

    return {"warehouse": wh.to_dict(), "cylinders": cylinders, "other_products": products}


def get_total_stock() -> dict:
    """
    Combined stock over every warehouse: cylinders summed per state,
    products per available quantity, plus open supplier loans per cylinder type.
    """
    totals = dict(
        ((item_type, item_id, state), int(total))
        for item_type, item_id, state, total in db.session.query(
            InventoryStock.item_type,
            InventoryStock.item_id,
            InventoryStock.state,
            func.sum(InventoryStock.quantity),
        )
        .group_by(InventoryStock.item_type, InventoryStock.item_id, InventoryStock.state)
        .all()
    )
    loaned = dict(
        (cylinder_type_id, int(total))
        for cylinder_type_id, total in db.session.query(
            SupplierLoan.cylinder_type_id, func.sum(SupplierLoan.quantity)
        )
        .group_by(SupplierLoan.cylinder_type_id)
        .all()
    )

    cylinders = []
    for cyl in db.session.query(CylinderType).order_by(CylinderType.id.asc()).all():
        cylinders.append({
            "cylinder_type_id": cyl.id,
            "name": cyl.name,
            "states": {s: totals.get((ITEM_CYLINDER, cyl.id, s), 0) for s in CYLINDER_STATES},
            "supplier_loaned": loaned.get(cyl.id, 0),
        })

    products = []
    for p in db.session.query(OtherProduct).order_by(OtherProduct.name.asc()).all():
        products.append({
            "product_id": p.id,
            "name": p.name,
            "stock_unit": p.stock_unit,
            "available": totals.get((ITEM_OTHER_PRODUCT, p.id, "available"), 0),
        })

    return {
        "cylinders": cylinders,
        "other_products": products,
        "supplier_loans_total": sum(loaned.values()),
    }


def list_inventory_log(
    *,
    warehouse_id: int | None = None,
    item_type: str | None = None,
    item_id: int | None = None,
    related_order_id: int | None = None,
    page: int = 1,
    per_page: int = 50,
) -> dict:
    query = db.session.query(InventoryLog)
    if warehouse_id is not None:
        query = query.filter(InventoryLog.warehouse_id == warehouse_id)
    if item_type is not None:
        query = query.filter(InventoryLog.item_type == item_type)
    if item_id is not None:
        query = query.filter(InventoryLog.item_id == item_id)
    if related_order_id is not None:
        query = query.filter(InventoryLog.related_order_id == related_order_id)

    per_page = min(max(per_page, 1), 200)
    page = max(page, 1)
    total = query.count()
    rows = (
        query.order_by(InventoryLog.created_at.desc(), InventoryLog.id.desc())
        .offset((page - 1) * per_page)
        .limit(per_page)
        .all()
    )
    return {
        "items": [r.to_dict() for r in rows],
        "count": len(rows),
        "pagination": {"page": page, "per_page": per_page, "total": total},
    }


# =============================================================================
# SUPPLIER LOANS
# =============================================================================

def _parse_loan_date(value) -> date:
    if value is None or value == "":
        return utcnow().date()
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value).strip())
    except ValueError:
        raise ValidationError("loan_date must be a YYYY-MM-DD date", {"loan_date": value})


def list_supplier_loans() -> dict:
    rows = (
        db.session.query(SupplierLoan)
        .join(CylinderType, CylinderType.id == SupplierLoan.cylinder_type_id)
        .order_by(CylinderType.name.asc(), SupplierLoan.loan_date.desc(), SupplierLoan.id.desc())
        .all()
    )
    return {"items": [r.to_dict() for r in rows], "count": len(rows)}


def add_supplier_loan(
    *,
    cylinder_type_id: int,
    quantity: int,
    loan_date=None,
    supplier_info: str | None = None,
    notes: str | None = None,
    user_id: int | None = None,
) -> SupplierLoan:
    """Record cylinders borrowed from a supplier. Warehouse stock is not touched."""
    _validate_positive_qty(quantity)
    parsed_date = _parse_loan_date(loan_date)

    def _op():
        _require_catalog_item(ITEM_CYLINDER, cylinder_type_id)
        loan = SupplierLoan(
            cylinder_type_id=cylinder_type_id,
            quantity=quantity,
            loan_date=parsed_date,
            supplier_info=supplier_info,
            notes=notes,
            recorded_by_user_id=user_id,
        )
        db.session.add(loan)
        db.session.flush()
        return loan

    return run_in_transaction(_op)


def return_supplier_loan(loan_id: int) -> dict:
    """Close a supplier loan by deleting it. Returns the loan as it was."""
    def _op():
        loan = lock_for_update(db.session.query(SupplierLoan).filter_by(id=loan_id)).first()
        if loan is None:
            raise NotFound("Supplier loan not found", {"loan_id": loan_id})
        data = loan.to_dict()
        db.session.delete(loan)
        db.session.flush()
        return data

    return run_in_transaction(_op)
