import pytest

from gasdepot.errors import InsufficientStock, NotFound, ValidationError
from gasdepot.extensions import db
from gasdepot.models import InventoryLog, SupplierLoan
from gasdepot.models.inventory import (
    ITEM_CYLINDER,
    ITEM_OTHER_PRODUCT,
    STATE_AVAILABLE,
    STATE_EMPTY,
    STATE_FULL,
    TX_ADJUSTMENT,
    TX_ORDER_DEBIT,
    TX_RESTOCK,
    TX_TRANSFER_IN,
    TX_TRANSFER_OUT,
)
from gasdepot.services import inventory_service
from gasdepot.services.inventory_service import StockKey


def _full(warehouse, cylinder):
    return StockKey(warehouse.id, ITEM_CYLINDER, cylinder.id, STATE_FULL)


def test_credit_creates_row_and_logs(db_session, warehouse, cylinder):
    key = _full(warehouse, cylinder)

    row = inventory_service.credit(key, 4)

    assert row.quantity == 4
    logs = db_session.query(InventoryLog).all()
    assert len(logs) == 1
    assert logs[0].quantity_change == 4
    assert logs[0].transaction_type == TX_RESTOCK


def test_debit_reduces_and_logs_negative_change(db_session, warehouse, cylinder):
    key = _full(warehouse, cylinder)
    inventory_service.credit(key, 5)

    row = inventory_service.debit(key, 3, TX_ORDER_DEBIT, related_order_id=None)

    assert row.quantity == 2
    changes = [log.quantity_change for log in db_session.query(InventoryLog).order_by(InventoryLog.id).all()]
    assert changes == [5, -3]


def test_debit_below_zero_raises_with_current_quantity(db_session, warehouse, cylinder):
    key = _full(warehouse, cylinder)
    inventory_service.credit(key, 2)

    with pytest.raises(InsufficientStock) as exc:
        inventory_service.debit(key, 3, TX_ORDER_DEBIT)

    assert exc.value.details["current_quantity"] == 2
    assert inventory_service.get_quantity(warehouse.id, ITEM_CYLINDER, cylinder.id, STATE_FULL) == 2
    assert db_session.query(InventoryLog).count() == 1


def test_debit_missing_row_is_insufficient(db_session, warehouse, cylinder):
    with pytest.raises(InsufficientStock) as exc:
        inventory_service.debit(_full(warehouse, cylinder), 1, TX_ORDER_DEBIT)
    assert exc.value.details["current_quantity"] == 0


def test_invalid_state_for_item_type_rejected(db_session, warehouse, cylinder):
    with pytest.raises(ValidationError):
        inventory_service.credit(StockKey(warehouse.id, ITEM_CYLINDER, cylinder.id, "available"), 1)


def test_non_positive_quantity_rejected(db_session, warehouse, cylinder):
    with pytest.raises(ValidationError):
        inventory_service.credit(_full(warehouse, cylinder), 0)


def test_unknown_warehouse_rejected(db_session, cylinder):
    with pytest.raises(NotFound):
        inventory_service.credit(StockKey(999, ITEM_CYLINDER, cylinder.id, STATE_FULL), 1)


def test_transfer_moves_stock_atomically(db_session, warehouse, other_warehouse, cylinder):
    inventory_service.credit(_full(warehouse, cylinder), 6)

    result = inventory_service.transfer(
        source_warehouse_id=warehouse.id,
        target_warehouse_id=other_warehouse.id,
        item_type=ITEM_CYLINDER,
        item_id=cylinder.id,
        state=STATE_FULL,
        qty=4,
    )

    assert result["source"]["quantity"] == 2
    assert result["target"]["quantity"] == 4
    types = {log.transaction_type for log in db_session.query(InventoryLog).all()}
    assert {TX_TRANSFER_OUT, TX_TRANSFER_IN} <= types


def test_transfer_insufficient_leaves_both_sides_untouched(db_session, warehouse, other_warehouse, cylinder):
    inventory_service.credit(_full(warehouse, cylinder), 1)

    with pytest.raises(InsufficientStock):
        inventory_service.transfer(
            source_warehouse_id=warehouse.id,
            target_warehouse_id=other_warehouse.id,
            item_type=ITEM_CYLINDER,
            item_id=cylinder.id,
            state=STATE_FULL,
            qty=3,
        )

    assert inventory_service.get_quantity(warehouse.id, ITEM_CYLINDER, cylinder.id, STATE_FULL) == 1
    assert inventory_service.get_quantity(other_warehouse.id, ITEM_CYLINDER, cylinder.id, STATE_FULL) == 0


def test_adjust_signed_delta(db_session, warehouse, cylinder):
    key = StockKey(warehouse.id, ITEM_CYLINDER, cylinder.id, STATE_EMPTY)

    assert inventory_service.adjust(key, 3, reason="Count correction").quantity == 3
    assert inventory_service.adjust(key, -1, reason="Damaged").quantity == 2
    with pytest.raises(InsufficientStock):
        inventory_service.adjust(key, -5, reason="Too much")

    logs = db_session.query(InventoryLog).filter_by(transaction_type=TX_ADJUSTMENT).all()
    assert [log.quantity_change for log in logs] == [3, -1]


def test_adjust_requires_reason(db_session, warehouse, cylinder):
    with pytest.raises(ValidationError):
        inventory_service.adjust(_full(warehouse, cylinder), 1, reason="")


def test_stock_view_lists_states(db_session, stocked, cylinder, regulator):
    view = inventory_service.get_stock_by_warehouse(stocked.id)

    cyl = view["cylinders"][0]
    assert cyl["states"][STATE_FULL] == 10
    assert cyl["states"][STATE_EMPTY] == 0
    assert view["other_products"][0]["available"] == 5


def test_log_sum_matches_quantity(db_session, warehouse, cylinder):
    key = _full(warehouse, cylinder)
    inventory_service.credit(key, 7)
    inventory_service.debit(key, 2, TX_ORDER_DEBIT)
    inventory_service.adjust(key, -1, reason="Leak")

    total = sum(
        log.quantity_change
        for log in db.session.query(InventoryLog).filter_by(warehouse_id=warehouse.id, item_id=cylinder.id).all()
    )
    assert total == inventory_service.get_quantity(warehouse.id, ITEM_CYLINDER, cylinder.id, STATE_FULL) == 4


# =============================================================================
# COMBINED STOCK AND SUPPLIER LOANS
# =============================================================================

def test_total_stock_sums_every_warehouse(db_session, stocked, other_warehouse, cylinder, regulator):
    inventory_service.credit(_full(other_warehouse, cylinder), 3)
    inventory_service.credit(StockKey(other_warehouse.id, ITEM_CYLINDER, cylinder.id, STATE_EMPTY), 2)
    inventory_service.credit(StockKey(other_warehouse.id, ITEM_OTHER_PRODUCT, regulator.id, STATE_AVAILABLE), 4)
    inventory_service.add_supplier_loan(cylinder_type_id=cylinder.id, quantity=6, supplier_info="Solgas")

    total = inventory_service.get_total_stock()

    cyl = total["cylinders"][0]
    assert cyl["states"][STATE_FULL] == 13
    assert cyl["states"][STATE_EMPTY] == 2
    assert cyl["supplier_loaned"] == 6
    assert total["other_products"][0]["available"] == 9
    assert total["supplier_loans_total"] == 6


def test_supplier_loan_lifecycle_leaves_stock_alone(db_session, stocked, cylinder, manager):
    loan = inventory_service.add_supplier_loan(
        cylinder_type_id=cylinder.id,
        quantity=20,
        loan_date="2026-03-15",
        supplier_info="Solgas Trujillo",
        notes="Peak season",
        user_id=manager.id,
    )

    listed = inventory_service.list_supplier_loans()
    assert listed["count"] == 1
    assert listed["items"][0]["loan_date"] == "2026-03-15"
    assert listed["items"][0]["cylinder_name"] == "10 kg"
    assert inventory_service.get_quantity(stocked.id, ITEM_CYLINDER, cylinder.id, STATE_FULL) == 10

    returned = inventory_service.return_supplier_loan(loan.id)

    assert returned["quantity"] == 20
    assert db_session.query(SupplierLoan).count() == 0
    with pytest.raises(NotFound):
        inventory_service.return_supplier_loan(loan.id)


def test_supplier_loan_defaults_to_today(db_session, cylinder):
    loan = inventory_service.add_supplier_loan(cylinder_type_id=cylinder.id, quantity=1)
    assert loan.loan_date is not None


@pytest.mark.parametrize("kwargs, error", [
    ({"quantity": 0}, ValidationError),
    ({"quantity": 5, "loan_date": "15/03/2026"}, ValidationError),
    ({"quantity": 5, "cylinder_type_id": 999}, NotFound),
])
def test_supplier_loan_validation(db_session, cylinder, kwargs, error):
    params = {"cylinder_type_id": cylinder.id, **kwargs}
    with pytest.raises(error):
        inventory_service.add_supplier_loan(**params)
    assert db_session.query(SupplierLoan).count() == 0
