"""Courier adapter registry and environment-driven settings."""

import pytest

from dispatch.courier import build_adapter, is_supported
from dispatch.courier.fake_adapter import FakeCourier
from dispatch.courier.pathao import PathaoAdapter
from dispatch.courier.steadfast import SteadfastAdapter
from dispatch.settings import PlaceholderPolicy, Settings, get_settings, override_settings, reset_settings


class TestSettings:
    def test_defaults(self, monkeypatch):
        for name in ("COURIER_HTTP_TIMEOUT", "COURIER_PLACEHOLDER_POLICY", "DEFAULT_PARCEL_WEIGHT"):
            monkeypatch.delenv(name, raising=False)
        reset_settings()

        settings = get_settings()
        assert settings.http_timeout == 10.0
        assert settings.placeholder_policy == PlaceholderPolicy.LENIENT
        assert settings.default_parcel_weight == 0.5

    def test_read_from_environment(self, monkeypatch):
        monkeypatch.setenv("COURIER_HTTP_TIMEOUT", "3.5")
        monkeypatch.setenv("COURIER_PLACEHOLDER_POLICY", "STRICT")
        monkeypatch.setenv("PATHAO_STORE_ID", "42")
        reset_settings()

        settings = get_settings()
        assert settings.http_timeout == 3.5
        assert settings.placeholder_policy == PlaceholderPolicy.STRICT
        assert settings.pathao_store_id == 42

    def test_override(self):
        override_settings(Settings(default_parcel_weight=2.0))
        assert get_settings().default_parcel_weight == 2.0


class TestBuildAdapter:
    def test_builds_provider_adapters(self, pathao_secrets, steadfast_secrets):
        pathao = build_adapter("pathao", pathao_secrets, Settings())
        steadfast = build_adapter("steadfast", steadfast_secrets, Settings())
        try:
            assert isinstance(pathao, PathaoAdapter)
            assert pathao.credentials.base_url == "https://pathao.test"
            assert isinstance(steadfast, SteadfastAdapter)
            assert steadfast.credentials.api_key == "sf-key"
        finally:
            pathao.close()
            steadfast.close()

    def test_fake_override_pins_one_fake_per_provider(self):
        settings = Settings(adapter_override="fake")
        adapter = build_adapter("pathao", {}, settings)
        assert isinstance(adapter, FakeCourier)
        assert adapter.name == "pathao"
        assert build_adapter("pathao", {}, settings) is adapter

    def test_unknown_provider(self):
        assert not is_supported("redx")
        with pytest.raises(ValueError, match="Courier redx not supported"):
            build_adapter("redx", {}, Settings())
