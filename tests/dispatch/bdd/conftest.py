"""Shared BDD fixtures and step definitions for coupons and courier delivery."""

import pytest
from protean import current_domain
from pytest_bdd import given, parsers, then

from dispatch.courier.integration import CourierOrderIntegration
from dispatch.courier.service import CourierService
from dispatch.order.order import Order


@pytest.fixture()
def error():
    """Container for captured failures."""
    return {"exc": None}


@pytest.fixture()
def integration():
    service = CourierService()
    yield CourierOrderIntegration(service=service)
    service.close()


# ---------------------------------------------------------------------------
# Given steps
# ---------------------------------------------------------------------------
@given(parsers.cfparse('active credentials for "{courier}"'))
def active_credentials(register_credentials, courier):
    register_credentials(courier)


@given("a placed order", target_fixture="order_id")
def placed_order(place_order):
    return place_order()


@given(parsers.cfparse('a placed order booked with "{courier}"'), target_fixture="order_id")
def placed_and_booked_order(place_order, integration, fake_courier, courier):
    order_id = place_order()
    result = integration.create_courier_order_from_existing_order(order_id, courier)
    assert result.success, result.error
    return order_id


# ---------------------------------------------------------------------------
# Then steps
# ---------------------------------------------------------------------------
@then(parsers.cfparse('the order status is "{status}"'))
def order_status_is(order_id, status):
    assert current_domain.repository_for(Order).get(order_id).status == status


@then("the order has no courier booking")
def order_not_booked(order_id):
    order = current_domain.repository_for(Order).get(order_id)
    assert order.courier_booking is None
    assert order.consignment_id is None
