"""CourierService: provider-agnostic facade over the courier adapters.

Resolves the provider's credentials, builds (or reuses) the adapter, and
delegates. Every public method returns a result object; nothing raises past
this class. Adapters are cached per (provider, credential id, secret
version), so rotating credentials retires the old adapter and its tokens.
"""

import structlog

from dispatch.courier import SUPPORTED_COURIERS, build_adapter, is_supported
from dispatch.courier.port import (
    CourierAdapter,
    CourierPriceResult,
    CourierResult,
    CourierStatusResult,
    ShipmentPayload,
)
from dispatch.credentials.credential import active_couriers, find_credentials

logger = structlog.get_logger(__name__)


class CredentialsUnavailable(Exception):
    """No usable credentials for a provider; the message is user-facing."""


class CourierService:
    def __init__(self, settings=None):
        self.settings = settings
        self._adapters: dict[tuple[str, str, int], CourierAdapter] = {}

    # -------------------------------------------------------------------
    # Adapter resolution
    # -------------------------------------------------------------------
    def _adapter_for(self, provider: str) -> CourierAdapter:
        if not is_supported(provider):
            raise CredentialsUnavailable(f"Courier {provider} not supported")

        credential = find_credentials(provider)
        if credential is None:
            raise CredentialsUnavailable(f"No active credentials found for {provider}")
        if not credential.is_active:
            raise CredentialsUnavailable(f"Credentials for {provider} are inactive")

        key = (provider, str(credential.id), credential.secret_version or 1)
        adapter = self._adapters.get(key)
        if adapter is None:
            self._retire(provider)
            adapter = build_adapter(provider, credential.secret_bundle(), self.settings)
            self._adapters[key] = adapter
            logger.debug("Courier adapter built", provider=provider, secret_version=key[2])
        return adapter

    def _retire(self, provider: str) -> None:
        for key in [k for k in self._adapters if k[0] == provider]:
            self._adapters.pop(key).close()

    def close(self) -> None:
        for adapter in self._adapters.values():
            adapter.close()
        self._adapters.clear()

    # -------------------------------------------------------------------
    # Operations
    # -------------------------------------------------------------------
    def create_order(self, provider: str, payload: ShipmentPayload) -> CourierResult:
        try:
            result = self._adapter_for(provider).create_order(payload)
        except Exception as exc:
            logger.warning("Courier order creation failed", provider=provider, error=str(exc))
            return CourierResult(success=False, error=str(exc))

        if result.success:
            logger.info(
                "Courier order created",
                provider=provider,
                order_number=payload.order_number,
                consignment_id=result.consignment_id,
            )
        else:
            logger.warning("Courier rejected order", provider=provider, error=result.error)
        return result

    def bulk_order(self, provider: str, payloads: list[ShipmentPayload]) -> CourierResult:
        try:
            return self._adapter_for(provider).bulk_order(payloads)
        except Exception as exc:
            logger.warning("Courier bulk order failed", provider=provider, count=len(payloads), error=str(exc))
            return CourierResult(success=False, error=str(exc))

    def get_status(self, provider: str, consignment_id: str) -> CourierStatusResult:
        try:
            return self._adapter_for(provider).get_status(consignment_id)
        except Exception as exc:
            logger.warning(
                "Courier status lookup failed",
                provider=provider,
                consignment_id=consignment_id,
                error=str(exc),
            )
            return CourierStatusResult(success=False, error=str(exc))

    def calculate_price(self, provider: str, params: dict) -> CourierPriceResult:
        try:
            adapter = self._adapter_for(provider)
            if not adapter.supports_price_calculation:
                return CourierPriceResult(success=False, error=f"Price calculation not supported for {provider}")
            return adapter.calculate_price(params)
        except Exception as exc:
            logger.warning("Courier price calculation failed", provider=provider, error=str(exc))
            return CourierPriceResult(success=False, error=str(exc))

    # -------------------------------------------------------------------
    # Credential queries
    # -------------------------------------------------------------------
    def available_couriers(self) -> list[str]:
        """Providers with active credentials, or every supported provider when none are set up."""
        try:
            active = active_couriers()
        except Exception as exc:
            logger.warning("Courier credential lookup failed", error=str(exc))
            active = []
        return active or list(SUPPORTED_COURIERS)

    def validate_courier_credentials(self, provider: str) -> bool:
        try:
            credential = find_credentials(provider)
        except Exception as exc:
            logger.warning("Courier credential lookup failed", provider=provider, error=str(exc))
            return False
        return credential is not None and bool(credential.is_active)


_service: CourierService | None = None


def get_courier_service() -> CourierService:
    """Return the process-wide courier service (adapter cache included)."""
    global _service
    if _service is None:
        _service = CourierService()
    return _service


def reset_courier_service() -> None:
    """Drop the shared service and its cached adapters (useful for tests)."""
    global _service
    if _service is not None:
        _service.close()
    _service = None
