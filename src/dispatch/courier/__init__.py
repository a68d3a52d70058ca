"""Courier adapter registry.

Maps provider ids to adapter builders. ``set_adapter()`` pins a ready-made
adapter for one provider (useful for tests); setting the
COURIER_ADAPTER_OVERRIDE environment variable to ``fake`` routes every
provider to a FakeCourier in development.
"""

from dispatch.courier.fake_adapter import FakeCourier
from dispatch.courier.pathao import PathaoAdapter, PathaoCredentials
from dispatch.courier.port import CourierAdapter
from dispatch.courier.steadfast import SteadfastAdapter, SteadfastCredentials
from dispatch.settings import get_settings

SUPPORTED_COURIERS = ("pathao", "steadfast")

_overrides: dict[str, CourierAdapter] = {}


def _build_pathao(secrets: dict, settings) -> CourierAdapter:
    return PathaoAdapter(PathaoCredentials.from_secrets(secrets), settings=settings)


def _build_steadfast(secrets: dict, settings) -> CourierAdapter:
    return SteadfastAdapter(SteadfastCredentials.from_secrets(secrets), settings=settings)


_BUILDERS = {
    "pathao": _build_pathao,
    "steadfast": _build_steadfast,
}


def is_supported(provider: str) -> bool:
    return provider in _BUILDERS


def build_adapter(provider: str, secrets: dict, settings=None) -> CourierAdapter:
    """Return an adapter for ``provider`` built from a credential secret bundle."""
    if provider in _overrides:
        return _overrides[provider]

    settings = settings or get_settings()
    if settings.adapter_override == "fake":
        return set_adapter(provider, FakeCourier(name=provider))

    try:
        builder = _BUILDERS[provider]
    except KeyError:
        raise ValueError(f"Courier {provider} not supported") from None
    return builder(secrets, settings)


def set_adapter(provider: str, adapter: CourierAdapter) -> CourierAdapter:
    """Pin an adapter instance for one provider."""
    _overrides[provider] = adapter
    return adapter


def reset_adapters() -> None:
    """Drop all pinned adapters."""
    _overrides.clear()
