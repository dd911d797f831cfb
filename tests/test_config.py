"""Tests for environment-driven settings."""

from __future__ import annotations

import pytest

from orderbridge.config import Settings, parse_networks, parse_number_or
from orderbridge.errors import ConfigurationError


class TestParseNumberOr:
    @pytest.mark.parametrize(
        "value,expected",
        [(12, 12.0), ("2.5", 2.5), ("abc", 7.0), (None, 7.0), (True, 7.0), ("nan", 7.0), ("inf", 7.0)],
    )
    def test_values(self, value, expected):
        assert parse_number_or(value, 7.0) == expected


class TestSettings:
    def test_reads_environment(self, monkeypatch):
        monkeypatch.setenv("PROCARD_SECRET", "from-env")
        monkeypatch.setenv("MANUAL_GATEWAY_NAMES", '["manual", "bank_transfer"]')
        monkeypatch.setenv("POSTOFFICE_DEFAULT_WEIGHT_KG", "3")
        settings = Settings(_env_file=None)
        assert settings.procard_secret == "from-env"
        assert settings.manual_gateway_names == ["manual", "bank_transfer"]
        assert settings.package_dimensions["Weight"] == 3.0

    def test_defaults(self, monkeypatch):
        for name in ("PROCARD_CURRENCY", "EMAIL_PROVIDER", "MANUAL_GATEWAY_NAMES"):
            monkeypatch.delenv(name, raising=False)
        settings = Settings(_env_file=None)
        assert settings.procard_currency == "978"
        assert settings.email_provider == "shopify"
        assert settings.manual_gateway_names == ["manual"]
        assert settings.package_dimensions == {
            "Width": 20,
            "Length": 20,
            "Height": 20,
            "Weight": 1,
        }

    def test_require_lists_every_missing_name(self):
        settings = Settings(
            _env_file=None, procard_secret="s", postoffice_token="", shopify_webhook_secret=""
        )
        with pytest.raises(ConfigurationError) as exc_info:
            settings.require("procard_secret", "postoffice_token", "shopify_webhook_secret")
        assert exc_info.value.details["missing"] == ["POSTOFFICE_TOKEN", "SHOPIFY_WEBHOOK_SECRET"]

    def test_bulk_insert_url(self):
        settings = Settings(
            _env_file=None,
            postoffice_base_url="https://po.test/",
            postoffice_bulk_insert_path="api/bulk",
        )
        assert settings.bulk_insert_url == "https://po.test/api/bulk"

    def test_trusted_proxies_accepts_addresses_and_cidrs(self):
        settings = Settings(_env_file=None, trusted_proxies="10.0.0.0/8, 192.0.2.1")
        assert [str(n) for n in parse_networks(settings.trusted_proxies)] == [
            "10.0.0.0/8",
            "192.0.2.1/32",
        ]

    def test_trusted_proxies_rejects_garbage(self):
        with pytest.raises(ValueError):
            Settings(_env_file=None, trusted_proxies="10.0.0.0/8, not-an-ip")
