"""Courier port: abstract interface for courier provider integrations.

All courier adapters implement this interface. Provider envelopes are
normalized into the result types below inside the adapter, so nothing past
the adapter boundary sees provider-specific field names.

Provider-side failures (non-2xx, "not success" envelopes) come back as result
objects with ``success=False``. Transport exceptions (timeouts, connection
errors) may propagate; the CourierService is the single place that catches
them.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

import httpx


class CourierStatus(Enum):
    PENDING = "pending"
    PICKED_UP = "picked_up"
    IN_TRANSIT = "in_transit"
    OUT_FOR_DELIVERY = "out_for_delivery"
    DELIVERED = "delivered"
    FAILED_DELIVERY = "failed_delivery"
    RETURNED = "returned"
    CANCELLED = "cancelled"


# Provider vocabularies differ; anything not listed here and not already a
# canonical value is reported as unrecognised (None).
_STATUS_ALIASES = {
    "picked": CourierStatus.PICKED_UP,
    "pickup": CourierStatus.PICKED_UP,
    "pickup_requested": CourierStatus.PENDING,
    "assigned_for_pickup": CourierStatus.PENDING,
    "in_review": CourierStatus.PENDING,
    "on_hold": CourierStatus.IN_TRANSIT,
    "hold": CourierStatus.IN_TRANSIT,
    "at_the_sorting_hub": CourierStatus.IN_TRANSIT,
    "received_at_last_mile_hub": CourierStatus.IN_TRANSIT,
    "assigned_for_delivery": CourierStatus.OUT_FOR_DELIVERY,
    "delivered_approval_pending": CourierStatus.DELIVERED,
    "partial_delivered": CourierStatus.DELIVERED,
    "partial_delivered_approval_pending": CourierStatus.DELIVERED,
    "partial_delivery": CourierStatus.DELIVERED,
    "delivery_failed": CourierStatus.FAILED_DELIVERY,
    "failed": CourierStatus.FAILED_DELIVERY,
    "return": CourierStatus.RETURNED,
    "returned_to_merchant": CourierStatus.RETURNED,
    "cancelled_approval_pending": CourierStatus.CANCELLED,
    "canceled": CourierStatus.CANCELLED,
}


def normalize_status(raw: str | None) -> CourierStatus | None:
    """Map a provider status string onto the canonical courier status."""
    if not raw:
        return None
    key = str(raw).strip().lower().replace(" ", "_").replace("-", "_")
    try:
        return CourierStatus(key)
    except ValueError:
        return _STATUS_ALIASES.get(key)


# ---------------------------------------------------------------------------
# Canonical shipment payload
# ---------------------------------------------------------------------------
@dataclass(frozen=True)
class ShipmentItem:
    name: str
    quantity: int = 1
    weight: float = 0.0  # kg
    price: float = 0.0


@dataclass(frozen=True)
class ShipmentPayload:
    """Provider-agnostic description of one parcel to hand to a courier."""

    order_number: str
    recipient_name: str
    recipient_phone: str
    recipient_address: str
    recipient_city: str
    recipient_area: str
    total_amount: float
    recipient_postcode: str | None = None
    items: tuple[ShipmentItem, ...] = ()
    delivery_charge: float = 0.0
    notes: str | None = None
    merchant_order_id: str | None = None

    # Optional provider overrides
    item_type: str | None = None
    item_quantity: int | None = None
    item_weight: float | None = None
    item_price: float | None = None
    delivery_type: str | None = None
    item_category: str | None = None
    item_sub_category: str | None = None

    @property
    def total_weight(self) -> float:
        if self.item_weight:
            return self.item_weight
        return sum(item.weight * item.quantity for item in self.items)

    @property
    def total_quantity(self) -> int:
        if self.item_quantity:
            return self.item_quantity
        return len(self.items)


# ---------------------------------------------------------------------------
# Canonical results
# ---------------------------------------------------------------------------
@dataclass(frozen=True)
class TrackingStep:
    status: str
    timestamp: str | None = None
    location: str | None = None
    note: str | None = None

    def to_dict(self) -> dict:
        return {
            "status": self.status,
            "timestamp": self.timestamp,
            "location": self.location,
            "note": self.note,
        }


@dataclass(frozen=True)
class CourierResult:
    """Outcome of an order or bulk-order submission."""

    success: bool
    data: Any = None
    error: str | None = None
    consignment_id: str | None = None
    tracking_number: str | None = None
    delivery_fee: float | None = None
    estimated_delivery: str | None = None


@dataclass(frozen=True)
class CourierStatusResult:
    """Outcome of a status lookup.

    ``status`` is the canonical value when the provider status is recognised;
    ``raw_status`` always carries what the provider said.
    """

    success: bool
    status: CourierStatus | None = None
    raw_status: str | None = None
    tracking_steps: list[TrackingStep] = field(default_factory=list)
    error: str | None = None


@dataclass(frozen=True)
class CourierPriceResult:
    success: bool
    delivery_fee: float | None = None
    estimated_delivery_time: str | None = None
    error: str | None = None


def read_json(response: httpx.Response) -> dict:
    """Decode a provider response body, tolerating empty or non-JSON bodies."""
    try:
        body = response.json()
    except ValueError:
        return {}
    return body if isinstance(body, dict) else {"data": body}


def parse_tracking_steps(raw_steps) -> list[TrackingStep]:
    """Turn a provider's list of tracking events into TrackingSteps.

    Entries without any status are dropped. Providers disagree on key names,
    so a few common spellings are accepted for each attribute.
    """
    steps = []
    for raw in raw_steps or []:
        if not isinstance(raw, dict):
            continue
        status = raw.get("status") or raw.get("order_status") or raw.get("delivery_status")
        if not status:
            continue
        timestamp = raw.get("timestamp") or raw.get("time") or raw.get("updated_at") or raw.get("created_at")
        steps.append(
            TrackingStep(
                status=str(status),
                timestamp=str(timestamp) if timestamp is not None else None,
                location=raw.get("location") or raw.get("hub"),
                note=raw.get("note") or raw.get("remarks") or raw.get("message"),
            )
        )
    return steps


class CourierAuthError(Exception):
    """The provider refused to issue an access token."""


# ---------------------------------------------------------------------------
# Port
# ---------------------------------------------------------------------------
class CourierAdapter(ABC):
    """Abstract interface for courier adapters."""

    name: str = ""
    supports_price_calculation: bool = False

    @abstractmethod
    def create_order(self, payload: ShipmentPayload) -> CourierResult:
        """Book one consignment with the provider."""
        ...

    @abstractmethod
    def bulk_order(self, payloads: list[ShipmentPayload]) -> CourierResult:
        """Book several consignments in one provider call."""
        ...

    @abstractmethod
    def get_status(self, consignment_id: str) -> CourierStatusResult:
        """Fetch the current delivery status and tracking history."""
        ...

    def calculate_price(self, params: dict) -> CourierPriceResult:
        """Quote a delivery fee. Only some providers support this."""
        return CourierPriceResult(
            success=False,
            error=f"Price calculation not supported for {self.name}",
        )

    def close(self) -> None:
        """Release any transport resources held by the adapter."""
        return None
