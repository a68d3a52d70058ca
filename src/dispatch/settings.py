"""Runtime settings for courier integrations, read from the environment.

Provider secrets live in CourierCredential records, not here. These are the
process-wide knobs: HTTP timeout, how to treat incomplete shipping addresses,
and the defaults used when an order carries no parcel details.
"""

import os
from dataclasses import dataclass
from enum import Enum


class PlaceholderPolicy(Enum):
    LENIENT = "lenient"  # fill missing recipient fields with "Unknown"
    STRICT = "strict"  # refuse to book when a recipient field is missing


@dataclass(frozen=True)
class Settings:
    http_timeout: float = 10.0
    placeholder_policy: PlaceholderPolicy = PlaceholderPolicy.LENIENT
    default_parcel_weight: float = 0.5
    pathao_store_id: int = 1
    token_expiry_skew: int = 60
    adapter_override: str | None = None

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            http_timeout=float(os.environ.get("COURIER_HTTP_TIMEOUT", "10")),
            placeholder_policy=PlaceholderPolicy(os.environ.get("COURIER_PLACEHOLDER_POLICY", "lenient").lower()),
            default_parcel_weight=float(os.environ.get("DEFAULT_PARCEL_WEIGHT", "0.5")),
            pathao_store_id=int(os.environ.get("PATHAO_STORE_ID", "1")),
            token_expiry_skew=int(os.environ.get("COURIER_TOKEN_EXPIRY_SKEW", "60")),
            adapter_override=os.environ.get("COURIER_ADAPTER_OVERRIDE") or None,
        )


_settings: Settings | None = None


def get_settings() -> Settings:
    """Return the process settings (loaded from the environment on first use)."""
    global _settings
    if _settings is None:
        _settings = Settings.from_env()
    return _settings


def override_settings(settings: Settings) -> None:
    """Replace the active settings (useful for tests)."""
    global _settings
    _settings = settings


def reset_settings() -> None:
    """Drop cached settings so the next call re-reads the environment."""
    global _settings
    _settings = None
