"""SteadfastAdapter against a mocked Steadfast API (httpx.MockTransport)."""

import json

import httpx
import pytest

from dispatch.courier.port import CourierStatus, ShipmentItem, ShipmentPayload
from dispatch.courier.steadfast import SteadfastAdapter, SteadfastCredentials
from dispatch.settings import Settings

BASE = "https://steadfast.test/api/v1"


def _adapter(handler):
    return SteadfastAdapter(
        SteadfastCredentials(api_key="key", secret_key="secret", base_url=BASE),
        client=httpx.Client(transport=httpx.MockTransport(handler)),
        settings=Settings(),
    )


@pytest.fixture
def payload():
    return ShipmentPayload(
        order_number="ORD-2026-BBBBBB",
        recipient_name="Karim",
        recipient_phone="01811000000",
        recipient_address="Lane 3",
        recipient_city="Chattogram",
        recipient_area="Agrabad",
        recipient_postcode="4100",
        total_amount=450.0,
        items=(ShipmentItem(name="Mug", quantity=2), ShipmentItem(name="Plate")),
    )


class TestCreateOrder:
    def test_success_with_static_headers(self, payload):
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(
                200,
                json={
                    "status": 200,
                    "consignment": {"consignment_id": 1424107, "tracking_code": "15BAEB8A", "delivery_fee": 110},
                },
            )

        result = _adapter(handler).create_order(payload)

        assert result.success
        assert result.consignment_id == "1424107"
        assert result.tracking_number == "15BAEB8A"
        assert result.delivery_fee == 110.0

        request = seen[0]
        assert request.url.path == "/api/v1/create_order"
        assert request.headers["Api-Key"] == "key"
        assert request.headers["Secret-Key"] == "secret"
        body = json.loads(request.content)
        assert body["invoice"] == "ORD-2026-BBBBBB"
        assert body["cod_amount"] == 450.0
        assert body["recipient_zone"] == "4100"
        assert body["item_description"] == "Mug (2x), Plate (1x)"
        assert body["delivery_type"] == "48"

    def test_envelope_status_must_be_200(self, payload):
        adapter = _adapter(lambda request: httpx.Response(200, json={"status": 400, "message": "Invalid phone"}))
        result = adapter.create_order(payload)
        assert not result.success
        assert result.error == "Invalid phone"

    def test_bulk_order(self, payload):
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(200, json={"success": True, "data": [{"invoice": "ORD-2026-BBBBBB", "consignment_id": 9}]})

        result = _adapter(handler).bulk_order([payload])
        assert result.success
        assert result.data[0]["consignment_id"] == 9
        assert seen[0].url.path == "/api/v1/create_order/bulk-order"

    def test_no_price_calculation(self):
        result = _adapter(lambda request: httpx.Response(200)).calculate_price({})
        assert not result.success
        assert result.error == "Price calculation not supported for steadfast"


class TestStatusFallback:
    def test_first_endpoint_wins(self):
        calls = []

        def handler(request):
            calls.append(request.url.path)
            return httpx.Response(200, json={"success": True, "data": {"status": "delivered"}})

        result = _adapter(handler).get_status("1424107")
        assert result.success
        assert result.status == CourierStatus.DELIVERED
        assert calls == ["/api/v1/status_by_consignment_id/1424107"]

    def test_falls_through_to_tracking_code(self):
        calls = []

        def handler(request):
            calls.append(request.url.path)
            if request.url.path.startswith("/api/v1/status_by_consignment_id"):
                return httpx.Response(404, json={"success": False})
            if request.url.path.startswith("/api/v1/status_by_invoice"):
                raise httpx.ReadTimeout("slow", request=request)
            return httpx.Response(
                200,
                json={
                    "success": True,
                    "data": {"status": "in transit", "tracking_steps": [{"status": "in_transit", "hub": "Agrabad"}]},
                },
            )

        result = _adapter(handler).get_status("15BAEB8A")

        assert result.success
        assert result.status == CourierStatus.IN_TRANSIT
        assert result.tracking_steps[0].location == "Agrabad"
        assert calls == [
            "/api/v1/status_by_consignment_id/15BAEB8A",
            "/api/v1/status_by_invoice/15BAEB8A",
            "/api/v1/status_by_tracking_code/15BAEB8A",
        ]

    def test_all_endpoints_fail(self):
        result = _adapter(lambda request: httpx.Response(500, json={"success": False})).get_status("x")
        assert not result.success
        assert result.error == "Unable to find order status with any tracking method"

    def test_flat_delivery_status_envelope(self):
        adapter = _adapter(lambda request: httpx.Response(200, json={"status": 200, "delivery_status": "in_review"}))
        result = adapter.get_status("1424107")
        assert result.success
        assert result.status == CourierStatus.PENDING


class TestDefaultBaseUrl:
    def test_endpoints_resolve_against_the_public_api(self, payload):
        seen = []

        def handler(request):
            seen.append(str(request.url))
            if request.url.path.endswith("/create_order"):
                return httpx.Response(200, json={"status": 200, "consignment": {"consignment_id": 1}})
            return httpx.Response(200, json={"success": True, "data": {"status": "delivered"}})

        credentials = SteadfastCredentials.from_secrets({"api_key": "key", "secret_key": "secret"})
        adapter = SteadfastAdapter(
            credentials,
            client=httpx.Client(transport=httpx.MockTransport(handler)),
            settings=Settings(),
        )

        assert adapter.create_order(payload).success
        assert adapter.get_status("1").success
        assert seen == [
            "https://portal.packzy.com/api/v1/create_order",
            "https://portal.packzy.com/api/v1/status_by_consignment_id/1",
        ]
