import json
from datetime import UTC, datetime, timedelta

import pytest
from protean import current_domain
from protean.integrations.pytest import DomainFixture


@pytest.fixture(scope="session")
def dispatch_bed():
    from dispatch.domain import dispatch

    bed = DomainFixture(dispatch)
    bed.setup()
    yield bed
    bed.teardown()


@pytest.fixture(autouse=True)
def _ctx(dispatch_bed):
    with dispatch_bed.domain_context():
        yield


# ---------------------------------------------------------------------------
# Shared data
# ---------------------------------------------------------------------------
@pytest.fixture
def shipping():
    return {
        "name": "Rahim Uddin",
        "phone": "01711000000",
        "address": "House 12, Road 5, Dhanmondi",
        "city": "Dhaka",
        "area": "Dhanmondi",
        "zip_code": "1205",
    }


@pytest.fixture
def pathao_secrets():
    return {
        "client_id": "client-1",
        "client_secret": "secret-1",
        "username": "merchant@example.com",
        "password": "hunter2",
        "base_url": "https://pathao.test",
    }


@pytest.fixture
def steadfast_secrets():
    return {
        "api_key": "sf-key",
        "secret_key": "sf-secret",
        "base_url": "https://steadfast.test/api/v1",
    }


# ---------------------------------------------------------------------------
# Factories
# ---------------------------------------------------------------------------
@pytest.fixture
def create_coupon():
    from dispatch.coupon.management import CreateCoupon

    def _create(**overrides) -> str:
        now = datetime.now(UTC)
        defaults = {
            "code": "SAVE10",
            "description": "Ten off any order",
            "discount_type": "fixed",
            "discount_value": 10.0,
            "valid_from": now - timedelta(days=1),
            "valid_to": now + timedelta(days=30),
            "usage_limit": 100,
        }
        defaults.update(overrides)
        return current_domain.process(CreateCoupon(**defaults), asynchronous=False)

    return _create


@pytest.fixture
def place_order(shipping):
    from dispatch.order.placement import PlaceOrder

    def _place(**overrides) -> str:
        defaults = {
            "client_id": "client-001",
            "original_price": 100.0,
            "quantity": 2,
            "product_ids": json.dumps(["prod-1", "prod-2"]),
            "shipping": json.dumps(shipping),
        }
        defaults.update(overrides)
        return current_domain.process(PlaceOrder(**defaults), asynchronous=False)

    return _place


@pytest.fixture
def register_credentials(pathao_secrets, steadfast_secrets):
    from dispatch.credentials.management import RegisterCourierCredentials

    def _register(courier: str, secrets: dict | None = None, is_active: bool = True) -> str:
        if secrets is None:
            secrets = pathao_secrets if courier == "pathao" else steadfast_secrets
        return current_domain.process(
            RegisterCourierCredentials(courier=courier, secrets=json.dumps(secrets), is_active=is_active),
            asynchronous=False,
        )

    return _register


@pytest.fixture
def fake_courier():
    """A FakeCourier pinned for both supported providers."""
    from dispatch.courier import set_adapter
    from dispatch.courier.fake_adapter import FakeCourier

    courier = FakeCourier(name="pathao")
    set_adapter("pathao", courier)
    set_adapter("steadfast", courier)
    return courier
