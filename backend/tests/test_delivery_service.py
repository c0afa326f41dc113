from datetime import timedelta

import pytest

from gasdepot.errors import InvalidStateTransition, PermissionDenied, ValidationError
from gasdepot.models import Delivery, Order, Payment
from gasdepot.services import delivery_service, order_service
from gasdepot.services.order_service import OrderRequest
from gasdepot.time_utils import utcnow


@pytest.fixture
def order_id(stocked, cylinder, customer):
    request = OrderRequest.from_payload({
        "delivery_address_text": "Jr. Puno 455, Cusco",
        "cylinder_type_id": cylinder.id,
        "action_type": "exchange",
        "cylinder_quantity": 1,
    })
    return order_service.create_order(customer.user_id, request).order_id


@pytest.fixture
def in_transit(order_id, dispatcher, driver, make_actor):
    delivery_service.assign(order_id, driver.id, make_actor(dispatcher))
    delivery_service.start(order_id, make_actor(driver))
    return order_id


def test_assign_creates_delivery(db_session, order_id, dispatcher, driver, make_actor):
    result = delivery_service.assign(order_id, driver.id, make_actor(dispatcher))

    assert result["order"]["order_status"] == "assigned"
    delivery = db_session.query(Delivery).filter_by(order_id=order_id).one()
    assert delivery.delivery_person_user_id == driver.id
    assert delivery.assigned_at is not None


def test_reassign_keeps_single_delivery_row(db_session, order_id, dispatcher, driver, other_driver, make_actor):
    base = make_actor(dispatcher)
    delivery_service.assign(order_id, driver.id, base)
    order = db_session.get(Order, order_id)
    order.order_status = "pending_assignment"
    db_session.commit()

    delivery_service.assign(order_id, other_driver.id, base)

    rows = db_session.query(Delivery).filter_by(order_id=order_id).all()
    assert len(rows) == 1
    assert rows[0].delivery_person_user_id == other_driver.id


def test_assign_requires_delivery_role(db_session, order_id, dispatcher, accountant, make_actor):
    with pytest.raises(ValidationError):
        delivery_service.assign(order_id, accountant.id, make_actor(dispatcher))


def test_driver_cannot_assign_others(db_session, order_id, driver, other_driver, make_actor):
    with pytest.raises(PermissionDenied):
        delivery_service.assign(order_id, other_driver.id, make_actor(driver))


def test_take_self_assigns(db_session, order_id, driver, make_actor):
    result = delivery_service.take(order_id, make_actor(driver))

    assert result["delivery"]["delivery_person_user_id"] == driver.id
    assert db_session.get(Order, order_id).order_status == "assigned"


def test_only_assigned_driver_can_start(db_session, order_id, dispatcher, driver, other_driver, make_actor):
    delivery_service.assign(order_id, driver.id, make_actor(dispatcher))

    with pytest.raises(PermissionDenied):
        delivery_service.start(order_id, make_actor(other_driver))

    result = delivery_service.start(order_id, make_actor(driver))
    assert result["order"]["order_status"] == "delivering"


def test_start_requires_assigned_status(db_session, order_id, driver, make_actor):
    with pytest.raises(InvalidStateTransition):
        delivery_service.start(order_id, make_actor(driver))


def test_complete_with_cash_records_payment(db_session, in_transit, driver, make_actor):
    result = delivery_service.complete(
        in_transit, make_actor(driver), collection_method="cash", amount_cents=9700
    )

    assert result["order"]["order_status"] == "delivered"
    assert result["order"]["payment_status"] == "paid"
    payment = db_session.query(Payment).filter_by(order_id=in_transit).one()
    assert payment.amount_cents == 9700
    assert payment.status == "unverified"


def test_complete_cash_requires_amount(db_session, in_transit, driver, make_actor):
    with pytest.raises(ValidationError):
        delivery_service.complete(in_transit, make_actor(driver), collection_method="cash")


@pytest.mark.parametrize("method", ["cash", "yape_plin", "transfer"])
def test_immediate_collection_rejects_zero_amount(db_session, in_transit, driver, make_actor, method):
    with pytest.raises(ValidationError):
        delivery_service.complete(in_transit, make_actor(driver), collection_method=method, amount_cents=0)

    order = db_session.get(Order, in_transit)
    assert order.order_status == "delivering"
    assert order.payment_status == "pending"
    assert db_session.query(Payment).filter_by(order_id=in_transit).count() == 0


def test_nothing_collected_stays_open_for_late_payment(db_session, in_transit, driver, make_actor):
    person = make_actor(driver)
    result = delivery_service.complete(in_transit, person, collection_method="not_collected", amount_cents=0)
    assert result["order"]["payment_status"] == "late_payment_scheduled"
    assert result["payment"] is None

    collected = delivery_service.collect_late_payment(
        in_transit, person, amount_cents=9700, payment_method="cash"
    )
    assert collected["order"]["payment_status"] == "paid"


def test_complete_rejects_unknown_method(db_session, in_transit, driver, make_actor):
    with pytest.raises(ValidationError):
        delivery_service.complete(in_transit, make_actor(driver), collection_method="barter", amount_cents=1)


def test_deferred_completion_then_late_collection(db_session, in_transit, driver, make_actor):
    actor = make_actor(driver)
    result = delivery_service.complete(
        in_transit,
        actor,
        collection_method="deferred",
        scheduled_collection_time="2026-03-02T15:00:00Z",
    )
    assert result["order"]["payment_status"] == "late_payment_scheduled"
    assert db_session.query(Payment).count() == 0

    pending = delivery_service.list_pending_collections(actor)
    assert [p["id"] for p in pending] == [in_transit]
    assert pending[0]["amount_pending_cents"] == 9700

    partial = delivery_service.collect_late_payment(in_transit, actor, amount_cents=4000, payment_method="cash")
    assert partial["order"]["payment_status"] == "partially_paid"
    assert delivery_service.list_pending_collections(actor)[0]["amount_pending_cents"] == 5700

    final = delivery_service.collect_late_payment(in_transit, actor, amount_cents=5700, payment_method="yape_plin")
    assert final["order"]["payment_status"] == "paid"
    assert final["collected_cents"] == 9700
    assert delivery_service.list_pending_collections(actor) == []


def test_collect_requires_open_balance(db_session, in_transit, driver, make_actor):
    actor = make_actor(driver)
    delivery_service.complete(in_transit, actor, collection_method="cash", amount_cents=9700)

    with pytest.raises(InvalidStateTransition):
        delivery_service.collect_late_payment(in_transit, actor, amount_cents=100, payment_method="cash")


def test_report_issue(db_session, in_transit, driver, make_actor):
    with pytest.raises(ValidationError):
        delivery_service.report_issue(in_transit, make_actor(driver), "  ")

    result = delivery_service.report_issue(in_transit, make_actor(driver), "Nobody home")

    assert result["order"]["order_status"] == "delivery_issue"
    assert result["delivery"]["has_issue"] is True


def test_cannot_cancel_once_delivering(db_session, in_transit, manager, make_actor):
    with pytest.raises(InvalidStateTransition):
        order_service.cancel_order(in_transit, make_actor(manager))


def test_assignments_and_history(db_session, in_transit, driver, make_actor):
    actor = make_actor(driver)
    assert [o["id"] for o in delivery_service.get_my_assignments(actor)] == [in_transit]

    delivery_service.complete(in_transit, actor, collection_method="transfer", amount_cents=9700)

    assert delivery_service.get_my_assignments(actor) == []
    assert [o["id"] for o in delivery_service.get_daily_history(actor)] == [in_transit]
    assert delivery_service.get_daily_history(actor, utcnow() - timedelta(days=1)) == []


def test_delivery_details_access(db_session, in_transit, customer, other_driver, make_actor):
    details = delivery_service.get_delivery_details(in_transit, customer)
    assert details["order_status"] == "delivering"

    with pytest.raises(PermissionDenied):
        delivery_service.get_delivery_details(in_transit, make_actor(other_driver))
