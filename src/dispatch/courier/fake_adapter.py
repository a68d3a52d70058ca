"""Fake courier adapter: deterministic courier for testing and development.

Generates mock consignment ids and tracking codes, records every call, and
can be configured to fail or to report a given delivery status.
"""

from datetime import UTC, datetime, timedelta
from uuid import uuid4

from dispatch.courier.port import (
    CourierAdapter,
    CourierPriceResult,
    CourierResult,
    CourierStatus,
    CourierStatusResult,
    ShipmentPayload,
    TrackingStep,
    normalize_status,
)


class FakeCourier(CourierAdapter):
    """Fake courier that always succeeds by default."""

    name = "fake"
    supports_price_calculation = True

    def __init__(self, name: str = "fake"):
        self.name = name
        self.should_succeed = True
        self.failure_reason = "Courier unavailable"
        self.raise_error: Exception | None = None
        self.status = CourierStatus.IN_TRANSIT.value
        self.delivery_fee = 60.0
        self.calls: list[tuple[str, object]] = []

    def configure(
        self,
        should_succeed: bool = True,
        failure_reason: str = "Courier unavailable",
        status: str | None = None,
        raise_error: Exception | None = None,
    ):
        """Configure the fake courier behavior for testing."""
        self.should_succeed = should_succeed
        self.failure_reason = failure_reason
        self.raise_error = raise_error
        if status is not None:
            self.status = status

    def _record(self, operation: str, argument) -> None:
        self.calls.append((operation, argument))
        if self.raise_error is not None:
            raise self.raise_error

    def create_order(self, payload: ShipmentPayload) -> CourierResult:
        self._record("create_order", payload)
        if not self.should_succeed:
            return CourierResult(success=False, error=self.failure_reason)

        return CourierResult(
            success=True,
            data={"order_number": payload.order_number},
            consignment_id=f"CN-{uuid4().hex[:10].upper()}",
            tracking_number=f"FAKE-{uuid4().hex[:12].upper()}",
            delivery_fee=self.delivery_fee,
            estimated_delivery=(datetime.now(UTC) + timedelta(days=2)).isoformat(),
        )

    def bulk_order(self, payloads: list[ShipmentPayload]) -> CourierResult:
        self._record("bulk_order", payloads)
        if not self.should_succeed:
            return CourierResult(success=False, error=self.failure_reason)
        return CourierResult(
            success=True,
            data=[{"invoice": p.order_number, "status": "success"} for p in payloads],
        )

    def get_status(self, consignment_id: str) -> CourierStatusResult:
        self._record("get_status", consignment_id)
        if not self.should_succeed:
            return CourierStatusResult(success=False, error=self.failure_reason)

        now = datetime.now(UTC).isoformat()
        return CourierStatusResult(
            success=True,
            status=normalize_status(self.status),
            raw_status=self.status,
            tracking_steps=[
                TrackingStep(status="pending", timestamp=now, location="Merchant", note="Consignment created"),
                TrackingStep(status=self.status, timestamp=now, location="Sorting Hub, Dhaka"),
            ],
        )

    def calculate_price(self, params: dict) -> CourierPriceResult:
        self._record("calculate_price", params)
        if not self.should_succeed:
            return CourierPriceResult(success=False, error=self.failure_reason)
        return CourierPriceResult(success=True, delivery_fee=self.delivery_fee, estimated_delivery_time="48 hours")
