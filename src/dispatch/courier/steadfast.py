"""Steadfast courier adapter.

Steadfast authenticates every call with static ``Api-Key``/``Secret-Key``
headers. It does not offer price quotes, and its status lookup is exposed
under three identifiers; ``get_status`` tries them in order until one answers.
"""

from dataclasses import dataclass

import httpx
import structlog

from dispatch.courier.port import (
    CourierAdapter,
    CourierResult,
    CourierStatusResult,
    ShipmentPayload,
    normalize_status,
    parse_tracking_steps,
    read_json,
)
from dispatch.settings import get_settings

logger = structlog.get_logger(__name__)

DEFAULT_BASE_URL = "https://portal.packzy.com/api/v1"

STATUS_ENDPOINTS = (
    "status_by_consignment_id",
    "status_by_invoice",
    "status_by_tracking_code",
)


@dataclass(frozen=True)
class SteadfastCredentials:
    api_key: str
    secret_key: str
    base_url: str = DEFAULT_BASE_URL

    @classmethod
    def from_secrets(cls, secrets: dict) -> "SteadfastCredentials":
        return cls(
            api_key=secrets.get("api_key", ""),
            secret_key=secrets.get("secret_key", ""),
            base_url=(secrets.get("base_url") or DEFAULT_BASE_URL).rstrip("/"),
        )


class SteadfastAdapter(CourierAdapter):
    name = "steadfast"

    def __init__(self, credentials: SteadfastCredentials, client: httpx.Client | None = None, settings=None):
        self.settings = settings or get_settings()
        self.credentials = credentials
        self._owns_client = client is None
        self._client = client or httpx.Client(timeout=self.settings.http_timeout)

    @property
    def headers(self) -> dict:
        return {
            "Api-Key": self.credentials.api_key,
            "Secret-Key": self.credentials.secret_key,
            "Content-Type": "application/json",
        }

    def _order_body(self, payload: ShipmentPayload) -> dict:
        description = ", ".join(f"{item.name} ({item.quantity}x)" for item in payload.items)
        return {
            "invoice": payload.order_number,
            "recipient_name": payload.recipient_name,
            "recipient_phone": payload.recipient_phone,
            "recipient_address": payload.recipient_address,
            "recipient_city": payload.recipient_city,
            "recipient_area": payload.recipient_area,
            "recipient_zone": payload.recipient_postcode or "",
            "cod_amount": payload.total_amount,
            "note": payload.notes or "",
            "item_type": payload.item_type or "Parcel",
            "item_weight": payload.total_weight or self.settings.default_parcel_weight,
            "item_quantity": payload.total_quantity or 1,
            "item_description": description,
            "delivery_type": str(payload.delivery_type or "48"),
            "item_category": payload.item_category or "General",
        }

    def create_order(self, payload: ShipmentPayload) -> CourierResult:
        response = self._client.post(
            f"{self.credentials.base_url}/create_order",
            json=self._order_body(payload),
            headers=self.headers,
        )
        body = read_json(response)
        consignment = body.get("consignment") or {}
        if not response.is_success or body.get("status") != 200 or not consignment:
            return CourierResult(
                success=False,
                error=body.get("message") or f"Order creation failed: {response.status_code}",
            )

        delivery_fee = consignment.get("delivery_fee")
        return CourierResult(
            success=True,
            data=consignment,
            consignment_id=str(consignment.get("consignment_id")) if consignment.get("consignment_id") else None,
            tracking_number=consignment.get("tracking_code"),
            delivery_fee=float(delivery_fee) if delivery_fee is not None else None,
        )

    def bulk_order(self, payloads: list[ShipmentPayload]) -> CourierResult:
        response = self._client.post(
            f"{self.credentials.base_url}/create_order/bulk-order",
            json={"data": [self._order_body(p) for p in payloads]},
            headers=self.headers,
        )
        body = read_json(response)
        if not response.is_success or not (body.get("success") or body.get("status") == 200):
            return CourierResult(
                success=False,
                error=body.get("message") or f"Bulk order creation failed: {response.status_code}",
            )
        return CourierResult(success=True, data=body.get("data"))

    def get_status(self, consignment_id: str) -> CourierStatusResult:
        for endpoint in STATUS_ENDPOINTS:
            try:
                response = self._client.get(
                    f"{self.credentials.base_url}/{endpoint}/{consignment_id}",
                    headers=self.headers,
                )
            except httpx.HTTPError as exc:
                logger.info("Steadfast status lookup errored", endpoint=endpoint, error=str(exc))
                continue

            body = read_json(response)
            if not response.is_success or not (body.get("success") or body.get("status") == 200):
                logger.info("Steadfast status lookup missed", endpoint=endpoint, status_code=response.status_code)
                continue

            data = body.get("data") if isinstance(body.get("data"), dict) else {}
            raw_status = data.get("status") or body.get("delivery_status")
            return CourierStatusResult(
                success=True,
                status=normalize_status(raw_status),
                raw_status=raw_status,
                tracking_steps=parse_tracking_steps(data.get("tracking_steps")),
            )

        return CourierStatusResult(
            success=False,
            error="Unable to find order status with any tracking method",
        )

    def close(self) -> None:
        if self._owns_client:
            self._client.close()
