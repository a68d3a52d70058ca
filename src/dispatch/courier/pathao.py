"""Pathao courier adapter.

Pathao uses an OAuth2 password grant with refresh tokens. The adapter owns a
short-lived token cache scoped to the credential set it was built from; the
CourierService discards the adapter (and with it the cache) when those
credentials are rotated.

Endpoints (relative to the credential base URL):
    POST /issue-token
    POST /orders
    POST /orders/bulk
    GET  /orders/track/{consignment_id}
    POST /orders/price-calculation
"""

import time
from dataclasses import dataclass

import httpx
import structlog

from dispatch.courier.port import (
    CourierAdapter,
    CourierAuthError,
    CourierPriceResult,
    CourierResult,
    CourierStatusResult,
    ShipmentPayload,
    normalize_status,
    parse_tracking_steps,
    read_json,
)
from dispatch.settings import get_settings

logger = structlog.get_logger(__name__)

DEFAULT_BASE_URL = "https://api-hermes.pathao.com"


@dataclass(frozen=True)
class PathaoCredentials:
    client_id: str
    client_secret: str
    username: str
    password: str
    base_url: str = DEFAULT_BASE_URL
    refresh_token: str | None = None

    @classmethod
    def from_secrets(cls, secrets: dict) -> "PathaoCredentials":
        return cls(
            client_id=secrets.get("client_id", ""),
            client_secret=secrets.get("client_secret", ""),
            username=secrets.get("username", ""),
            password=secrets.get("password", ""),
            base_url=(secrets.get("base_url") or DEFAULT_BASE_URL).rstrip("/"),
            refresh_token=secrets.get("refresh_token") or None,
        )


class TokenCache:
    """Access token, refresh token and expiry for one credential set."""

    def __init__(self, refresh_token: str | None = None, skew_seconds: int = 60, clock=time.time):
        self.access_token: str | None = None
        self.refresh_token = refresh_token
        self.expires_at: float = 0.0
        self._skew = skew_seconds
        self._clock = clock

    def is_fresh(self) -> bool:
        return bool(self.access_token) and self._clock() < self.expires_at - self._skew

    def store(self, access_token: str, expires_in: int | float, refresh_token: str | None = None) -> None:
        self.access_token = access_token
        self.expires_at = self._clock() + float(expires_in or 0)
        if refresh_token:
            self.refresh_token = refresh_token

    def invalidate(self) -> None:
        self.access_token = None
        self.expires_at = 0.0


def _is_success(response: httpx.Response, body: dict) -> bool:
    return response.is_success and body.get("type") == "success"


def _failure_message(response: httpx.Response, body: dict, action: str) -> str:
    return body.get("message") or f"{action} failed: {response.status_code} {response.reason_phrase}"


class PathaoAdapter(CourierAdapter):
    name = "pathao"
    supports_price_calculation = True

    def __init__(self, credentials: PathaoCredentials, client: httpx.Client | None = None, settings=None):
        self.settings = settings or get_settings()
        self.credentials = credentials
        self.tokens = TokenCache(
            refresh_token=credentials.refresh_token,
            skew_seconds=self.settings.token_expiry_skew,
        )
        self._owns_client = client is None
        self._client = client or httpx.Client(timeout=self.settings.http_timeout)

    # -------------------------------------------------------------------
    # Authentication
    # -------------------------------------------------------------------
    def get_access_token(self) -> str:
        """Return a valid access token, refreshing or re-issuing as needed."""
        if self.tokens.is_fresh():
            return self.tokens.access_token

        if self.tokens.refresh_token:
            try:
                if self._refresh_access_token():
                    return self.tokens.access_token
            except httpx.HTTPError as exc:
                logger.warning("Pathao token refresh errored", error=str(exc))

        return self._issue_new_token()

    def _issue_new_token(self) -> str:
        response = self._client.post(
            f"{self.credentials.base_url}/issue-token",
            json={
                "client_id": self.credentials.client_id,
                "client_secret": self.credentials.client_secret,
                "username": self.credentials.username,
                "password": self.credentials.password,
                "grant_type": "password",
            },
            headers={"Accept": "application/json"},
        )
        body = read_json(response)
        if not response.is_success:
            raise CourierAuthError(f"Failed to get access token: {response.status_code} {response.reason_phrase}")
        if body.get("type") != "success":
            raise CourierAuthError(f"Token request failed: {body.get('message') or 'Unknown error'}")

        data = body.get("data") or {}
        self.tokens.store(data.get("access_token"), data.get("expires_in", 0), data.get("refresh_token"))
        logger.info("Pathao access token issued", expires_in=data.get("expires_in"))
        return self.tokens.access_token

    def _refresh_access_token(self) -> bool:
        response = self._client.post(
            f"{self.credentials.base_url}/issue-token",
            json={
                "client_id": self.credentials.client_id,
                "client_secret": self.credentials.client_secret,
                "refresh_token": self.tokens.refresh_token,
                "grant_type": "refresh_token",
            },
            headers={"Accept": "application/json"},
        )
        body = read_json(response)
        if not _is_success(response, body):
            logger.warning(
                "Pathao token refresh rejected",
                status_code=response.status_code,
                message=body.get("message"),
            )
            # A rejected refresh token will not start working later
            self.tokens.refresh_token = None
            return False

        data = body.get("data") or {}
        self.tokens.store(data.get("access_token"), data.get("expires_in", 0), data.get("refresh_token"))
        return True

    def _auth_headers(self) -> dict:
        return {
            "Authorization": f"Bearer {self.get_access_token()}",
            "Accept": "application/json",
        }

    def _send(self, method: str, path: str, **kwargs) -> httpx.Response:
        """Send an authenticated request, re-authenticating once on a 401."""
        url = f"{self.credentials.base_url}{path}"
        response = self._client.request(method, url, headers=self._auth_headers(), **kwargs)
        if response.status_code == httpx.codes.UNAUTHORIZED:
            logger.info("Pathao rejected the access token, re-authenticating", path=path)
            self.tokens.invalidate()
            response = self._client.request(method, url, headers=self._auth_headers(), **kwargs)
        return response

    # -------------------------------------------------------------------
    # Payload translation
    # -------------------------------------------------------------------
    def _order_body(self, payload: ShipmentPayload) -> dict:
        return {
            "store_id": self.settings.pathao_store_id,
            "merchant_order_id": payload.order_number,
            "recipient_name": payload.recipient_name,
            "recipient_phone": payload.recipient_phone,
            "recipient_address": payload.recipient_address,
            "recipient_city": payload.recipient_city,
            "recipient_zone": payload.recipient_area,
            "delivery_type": int(payload.delivery_type or 48),
            "item_type": int(payload.item_type or 2),  # 2 = Parcel
            "item_quantity": payload.total_quantity or 1,
            "item_weight": payload.total_weight or self.settings.default_parcel_weight,
            "item_price": payload.item_price or payload.total_amount,
            "item_category": payload.item_category or "Ecommerce",
            "item_sub_category": payload.item_sub_category or "General",
            "special_instruction": payload.notes or "",
            "item_merchant_id": payload.merchant_order_id or payload.order_number,
        }

    # -------------------------------------------------------------------
    # Operations
    # -------------------------------------------------------------------
    def create_order(self, payload: ShipmentPayload) -> CourierResult:
        response = self._send("POST", "/orders", json=self._order_body(payload))
        body = read_json(response)
        if not _is_success(response, body):
            return CourierResult(success=False, error=_failure_message(response, body, "Order creation"))

        data = body.get("data") or {}
        return CourierResult(
            success=True,
            data=data,
            consignment_id=_as_str(data.get("consignment_id")),
            tracking_number=_as_str(data.get("invoice_id") or data.get("merchant_order_id")),
            delivery_fee=_as_float(data.get("delivery_fee")),
        )

    def bulk_order(self, payloads: list[ShipmentPayload]) -> CourierResult:
        response = self._send("POST", "/orders/bulk", json={"orders": [self._order_body(p) for p in payloads]})
        body = read_json(response)
        if not _is_success(response, body):
            return CourierResult(success=False, error=_failure_message(response, body, "Bulk order creation"))
        return CourierResult(success=True, data=body.get("data"))

    def get_status(self, consignment_id: str) -> CourierStatusResult:
        response = self._send("GET", f"/orders/track/{consignment_id}")
        body = read_json(response)
        if not _is_success(response, body):
            return CourierStatusResult(success=False, error=_failure_message(response, body, "Status check"))

        data = body.get("data") or {}
        raw_status = data.get("status") or data.get("order_status")
        return CourierStatusResult(
            success=True,
            status=normalize_status(raw_status),
            raw_status=raw_status,
            tracking_steps=parse_tracking_steps(data.get("tracking_steps")),
        )

    def calculate_price(self, params: dict) -> CourierPriceResult:
        body_params = {"store_id": self.settings.pathao_store_id, **params}
        response = self._send("POST", "/orders/price-calculation", json=body_params)
        body = read_json(response)
        if not _is_success(response, body):
            return CourierPriceResult(success=False, error=_failure_message(response, body, "Price calculation"))

        data = body.get("data") or {}
        return CourierPriceResult(
            success=True,
            delivery_fee=_as_float(data.get("delivery_fee", data.get("final_price"))),
            estimated_delivery_time=data.get("estimated_delivery_time"),
        )

    def close(self) -> None:
        if self._owns_client:
            self._client.close()


def _as_str(value) -> str | None:
    return str(value) if value not in (None, "") else None


def _as_float(value) -> float | None:
    try:
        return float(value) if value is not None else None
    except (TypeError, ValueError):
        return None
