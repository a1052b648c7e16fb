from __future__ import annotations

import pytest

from storefront.models import OrderStatus
from storefront.observability.metrics import registry
from storefront.services.checkout_service import CheckoutRequest, CheckoutService
from storefront.services.order_service import OrderService


class _NoPayment:
    def verify(self, reference, expected_total):
        return False


@pytest.fixture
def placed_order(db_session, checkout_payload):
    result = CheckoutService(db_session, payment_verifier=_NoPayment()).place_order(
        CheckoutRequest.from_payload(checkout_payload(email="Buyer@Example.com"))
    )
    return result.order


def test_lookup_requires_number_and_email(db_session, placed_order):
    service = OrderService(db_session)
    number = placed_order.order_number

    assert service.find_for_tracking(number, "buyer@example.com").orderID == placed_order.orderID
    assert service.find_for_tracking(number, "  BUYER@EXAMPLE.COM ") is not None


@pytest.mark.parametrize(
    "number, email",
    [
        ("ORD-00000000-DEADBEEF", "buyer@example.com"),
        (None, "buyer@example.com"),
        ("", "buyer@example.com"),
        ("__placed__", "someone@example.com"),
        ("__placed__", None),
        ("__placed__", "   "),
    ],
)
def test_any_mismatch_is_not_found(db_session, placed_order, number, email):
    if number == "__placed__":
        number = placed_order.order_number
    assert OrderService(db_session).find_for_tracking(number, email) is None


def test_admin_status_update(db_session, placed_order):
    service = OrderService(db_session)

    success, message, order = service.update_status(placed_order.orderID, "shipped")

    assert success, message
    db_session.expire_all()
    assert order.status == OrderStatus.SHIPPED
    assert registry.counter_value("order_status_transition_total", {"status": "shipped"}) == 1


def test_status_update_rejects_unknown_values(db_session, placed_order):
    service = OrderService(db_session)

    assert service.update_status(placed_order.orderID, "lost") == (False, "Invalid status", None)
    assert service.update_status("missing-order", "shipped") == (False, "Order not found", None)


def test_list_orders_filters_by_status(db_session, placed_order):
    service = OrderService(db_session)
    service.update_status(placed_order.orderID, "delivered")

    assert len(service.list_orders()[2]) == 1
    assert len(service.list_orders("delivered")[2]) == 1
    assert service.list_orders("processing")[2] == []
    assert service.list_orders("bogus")[0] is False


def test_orders_for_user(db_session, customer, checkout_payload):
    CheckoutService(db_session, payment_verifier=_NoPayment()).place_order(
        CheckoutRequest.from_payload(checkout_payload()), user_id=customer.userID
    )

    assert len(OrderService(db_session).orders_for_user(customer.userID)) == 1
    assert OrderService(db_session).orders_for_user(customer.userID + 1) == []
