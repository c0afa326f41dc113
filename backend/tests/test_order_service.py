import pytest

from gasdepot.errors import (
    InsufficientPoints,
    InsufficientStock,
    InvalidStateTransition,
    ItemUnavailable,
    PermissionDenied,
    ValidationError,
)
from gasdepot.models import Customer, InventoryLog, LoyaltyTransaction, Order, OrderItem
from gasdepot.models.customers import REASON_PURCHASE_EARN, REASON_REDEMPTION_SPEND, REASON_REFUND
from gasdepot.models.inventory import ITEM_CYLINDER, ITEM_OTHER_PRODUCT, STATE_AVAILABLE, STATE_FULL
from gasdepot.services import inventory_service, order_service
from gasdepot.services.order_service import OrderRequest


ADDRESS = "Av. Arequipa 1234, Lima"


def _exchange(cylinder, qty=1, **extra):
    payload = {
        "delivery_address_text": ADDRESS,
        "cylinder_type_id": cylinder.id,
        "action_type": "exchange",
        "cylinder_quantity": qty,
    }
    payload.update(extra)
    return OrderRequest.from_payload(payload)


def _full_qty(warehouse, cylinder):
    return inventory_service.get_quantity(warehouse.id, ITEM_CYLINDER, cylinder.id, STATE_FULL)


# =============================================================================
# CREATION
# =============================================================================

def test_exchange_order_is_stock_neutral(db_session, stocked, cylinder, customer):
    receipt = order_service.create_order(customer.user_id, _exchange(cylinder))

    assert receipt.total_cents == 9700
    assert receipt.to_dict()["total"] == "97.00"
    assert receipt.points_earned == 97
    assert _full_qty(stocked, cylinder) == 10

    order = db_session.get(Order, receipt.order_id)
    assert order.order_status == "pending_approval"
    assert order.payment_status == "pending"
    assert [i.action_type for i in order.items] == ["exchange"]


def test_new_purchase_debits_full_stock_and_logs(db_session, stocked, cylinder, customer):
    request = OrderRequest.from_payload({
        "delivery_address_text": ADDRESS,
        "cylinder_type_id": cylinder.id,
        "action_type": "new_purchase",
        "cylinder_quantity": 2,
    })

    receipt = order_service.create_order(customer.user_id, request)

    assert receipt.total_cents == 30000
    assert _full_qty(stocked, cylinder) == 8
    log = db_session.query(InventoryLog).filter_by(related_order_id=receipt.order_id).one()
    assert log.quantity_change == -2


def test_other_products_are_debited(db_session, stocked, cylinder, regulator, customer):
    request = OrderRequest.from_payload({
        "delivery_address_text": ADDRESS,
        "other_items": [{"product_id": regulator.id, "quantity": 2}],
    })

    receipt = order_service.create_order(customer.user_id, request)

    assert receipt.total_cents == 7000
    assert inventory_service.get_quantity(stocked.id, ITEM_OTHER_PRODUCT, regulator.id, STATE_AVAILABLE) == 3


def test_insufficient_stock_creates_nothing(db_session, stocked, cylinder, customer):
    request = OrderRequest.from_payload({
        "delivery_address_text": ADDRESS,
        "cylinder_type_id": cylinder.id,
        "action_type": "new_purchase",
        "cylinder_quantity": 10,
        "other_items": [],
    })
    inventory_service.adjust(
        inventory_service.StockKey(stocked.id, ITEM_CYLINDER, cylinder.id, STATE_FULL), -9, reason="Leak"
    )

    with pytest.raises(InsufficientStock) as exc:
        order_service.create_order(customer.user_id, request)

    assert exc.value.details["current_quantity"] == 1
    assert db_session.query(Order).count() == 0
    assert db_session.query(OrderItem).count() == 0
    assert _full_qty(stocked, cylinder) == 1


def test_failed_line_rolls_back_whole_order(db_session, stocked, cylinder, regulator, rich_customer):
    request = OrderRequest.from_payload({
        "delivery_address_text": ADDRESS,
        "cylinder_type_id": cylinder.id,
        "action_type": "new_purchase",
        "cylinder_quantity": 2,
        "other_items": [{"product_id": regulator.id, "quantity": 6}],
        "points_to_redeem": 100,
    })

    with pytest.raises(InsufficientStock) as exc:
        order_service.create_order(rich_customer.user_id, request)

    assert exc.value.details["item_type"] == ITEM_OTHER_PRODUCT
    assert _full_qty(stocked, cylinder) == 10
    assert inventory_service.get_quantity(stocked.id, ITEM_OTHER_PRODUCT, regulator.id, STATE_AVAILABLE) == 5
    assert db_session.query(InventoryLog).filter(InventoryLog.related_order_id.isnot(None)).count() == 0
    assert db_session.query(LoyaltyTransaction).filter(
        LoyaltyTransaction.reason.in_([REASON_REDEMPTION_SPEND, REASON_PURCHASE_EARN])
    ).count() == 0
    assert db_session.get(Customer, rich_customer.user_id).loyalty_points == 150
    assert db_session.query(Order).count() == 0
    assert db_session.query(OrderItem).count() == 0


def test_exchange_still_requires_full_stock(db_session, warehouse, cylinder, customer):
    with pytest.raises(InsufficientStock):
        order_service.create_order(customer.user_id, _exchange(cylinder))
    assert db_session.query(Order).count() == 0


def test_unavailable_product_rejected(db_session, stocked, regulator, customer):
    regulator.is_available = False
    db_session.commit()
    request = OrderRequest.from_payload({
        "delivery_address_text": ADDRESS,
        "other_items": [{"product_id": regulator.id, "quantity": 1}],
    })

    with pytest.raises(ItemUnavailable):
        order_service.create_order(customer.user_id, request)


def test_redeem_points_then_cancel_restores_balance(db_session, stocked, cylinder, rich_customer, dispatcher):
    receipt = order_service.create_order(rich_customer.user_id, _exchange(cylinder, points_to_redeem=100))

    assert receipt.total_cents == 8700
    assert receipt.points_redeemed == 100
    assert db_session.get(Customer, rich_customer.user_id).loyalty_points == 50

    spend = db_session.query(LoyaltyTransaction).filter_by(
        related_order_id=receipt.order_id, reason=REASON_REDEMPTION_SPEND
    ).one()
    assert spend.points_change == -100

    order_service.cancel_order(receipt.order_id, rich_customer, "Changed my mind")

    assert db_session.get(Customer, rich_customer.user_id).loyalty_points == 150
    refund = db_session.query(LoyaltyTransaction).filter_by(
        related_order_id=receipt.order_id, reason=REASON_REFUND
    ).one()
    assert refund.points_change == 100


def test_earned_points_are_pending_until_paid(db_session, stocked, cylinder, customer):
    receipt = order_service.create_order(customer.user_id, _exchange(cylinder))

    marker = db_session.query(LoyaltyTransaction).filter_by(
        related_order_id=receipt.order_id, reason=REASON_PURCHASE_EARN
    ).one()
    assert marker.is_pending is True
    assert db_session.get(Customer, customer.user_id).loyalty_points == 0
    assert db_session.get(Order, receipt.order_id).points_credited is False


def test_redeem_more_than_balance(db_session, stocked, cylinder, rich_customer):
    with pytest.raises(InsufficientPoints):
        order_service.create_order(rich_customer.user_id, _exchange(cylinder, points_to_redeem=200))
    assert db_session.get(Customer, rich_customer.user_id).loyalty_points == 150
    assert db_session.query(Order).count() == 0


def test_redeem_below_minimum(db_session, stocked, cylinder, rich_customer):
    with pytest.raises(InsufficientPoints):
        order_service.create_order(rich_customer.user_id, _exchange(cylinder, points_to_redeem=50))


def test_discount_is_capped_at_subtotal(db_session, stocked, regulator, customer_user, manager):
    from gasdepot.services import loyalty_service
    loyalty_service.adjust_points(customer_user.id, 1000, notes="Seed", user_id=manager.id)
    request = OrderRequest.from_payload({
        "delivery_address_text": ADDRESS,
        "other_items": [{"product_id": regulator.id, "quantity": 1}],
        "points_to_redeem": 1000,
    })

    receipt = order_service.create_order(customer_user.id, request)

    assert receipt.total_cents == 0
    assert receipt.points_earned == 0


# =============================================================================
# REQUEST VALIDATION
# =============================================================================

@pytest.mark.parametrize("payload", [
    {"delivery_address_text": "", "cylinder_type_id": 1, "action_type": "exchange", "cylinder_quantity": 1},
    {"delivery_address_text": "abc", "cylinder_type_id": 1, "action_type": "exchange", "cylinder_quantity": 1},
    {"delivery_address_text": ADDRESS},
    {"delivery_address_text": ADDRESS, "cylinder_type_id": 1, "action_type": "exchange", "cylinder_quantity": 11},
    {"delivery_address_text": ADDRESS, "cylinder_type_id": 1, "action_type": "rent", "cylinder_quantity": 1},
    {"delivery_address_text": ADDRESS, "other_items": [{"product_id": 1, "quantity": 21}]},
    {"delivery_address_text": ADDRESS, "other_items": [{"product_id": 1, "quantity": 1}], "points_to_redeem": -5},
])
def test_invalid_requests_rejected(payload):
    with pytest.raises(ValidationError):
        OrderRequest.from_payload(payload)


def test_legacy_address_field_accepted():
    request = OrderRequest.from_payload({
        "delivery_address": ADDRESS,
        "other_items": [{"product_id": 1, "quantity": 1}],
    })
    assert request.delivery_address == ADDRESS


# =============================================================================
# APPROVAL AND CANCELLATION
# =============================================================================

def test_approve_and_bulk_approve(db_session, stocked, cylinder, customer, dispatcher, make_actor):
    first = order_service.create_order(customer.user_id, _exchange(cylinder))
    second = order_service.create_order(customer.user_id, _exchange(cylinder))
    base = make_actor(dispatcher)

    order_service.approve_order(first.order_id, base)
    result = order_service.bulk_approve_orders([first.order_id, second.order_id, 999], base)

    assert result["approved"] == [second.order_id]
    reasons = {s["order_id"]: s["reason"] for s in result["skipped"]}
    assert reasons == {first.order_id: "invalid_status", 999: "not_found"}
    assert db_session.get(Order, second.order_id).order_status == "pending_assignment"


def test_customer_cannot_approve(db_session, stocked, cylinder, customer):
    receipt = order_service.create_order(customer.user_id, _exchange(cylinder))
    with pytest.raises(PermissionDenied):
        order_service.approve_order(receipt.order_id, customer)


def test_cancel_restocks_non_exchange_lines(db_session, stocked, cylinder, regulator, customer):
    request = OrderRequest.from_payload({
        "delivery_address_text": ADDRESS,
        "cylinder_type_id": cylinder.id,
        "action_type": "new_purchase",
        "cylinder_quantity": 3,
        "other_items": [{"product_id": regulator.id, "quantity": 2}],
    })
    receipt = order_service.create_order(customer.user_id, request)
    assert _full_qty(stocked, cylinder) == 7

    cancelled = order_service.cancel_order(receipt.order_id, customer)

    assert cancelled["order_status"] == "cancelled"
    assert _full_qty(stocked, cylinder) == 10
    assert inventory_service.get_quantity(stocked.id, ITEM_OTHER_PRODUCT, regulator.id, STATE_AVAILABLE) == 5
    restock_rows = db_session.query(InventoryLog).filter_by(
        related_order_id=receipt.order_id, transaction_type="order_cancel_restock"
    ).count()
    assert restock_rows == 2


def test_cancel_exchange_does_not_add_stock(db_session, stocked, cylinder, customer):
    receipt = order_service.create_order(customer.user_id, _exchange(cylinder))

    order_service.cancel_order(receipt.order_id, customer)

    assert _full_qty(stocked, cylinder) == 10


def test_customer_cannot_cancel_someone_elses_order(db_session, stocked, cylinder, customer, other_customer_user, make_actor):
    receipt = order_service.create_order(customer.user_id, _exchange(cylinder))

    with pytest.raises(PermissionDenied):
        order_service.cancel_order(receipt.order_id, make_actor(other_customer_user))


def test_cannot_cancel_twice(db_session, stocked, cylinder, customer):
    receipt = order_service.create_order(customer.user_id, _exchange(cylinder))
    order_service.cancel_order(receipt.order_id, customer)

    with pytest.raises(InvalidStateTransition) as exc:
        order_service.cancel_order(receipt.order_id, customer)
    assert exc.value.details["current_status"] == "cancelled"


# =============================================================================
# READS
# =============================================================================

def test_order_access_rules(db_session, stocked, cylinder, customer, other_customer_user, driver, manager, make_actor):
    receipt = order_service.create_order(customer.user_id, _exchange(cylinder))

    assert order_service.get_order(receipt.order_id, customer)["id"] == receipt.order_id
    assert order_service.get_order(receipt.order_id, make_actor(manager))["id"] == receipt.order_id
    with pytest.raises(PermissionDenied):
        order_service.get_order(receipt.order_id, make_actor(other_customer_user))
    with pytest.raises(PermissionDenied):
        order_service.get_order(receipt.order_id, make_actor(driver))


def test_status_queue_filter(db_session, stocked, cylinder, customer):
    order_service.create_order(customer.user_id, _exchange(cylinder))

    page = order_service.list_orders_by_status(["pending_approval"])
    assert page["pagination"]["total"] == 1

    with pytest.raises(ValidationError):
        order_service.list_orders_by_status(["bogus"])
