"""Environment-driven settings for the order bridge."""

from __future__ import annotations

import ipaddress
import math
from functools import lru_cache
from typing import Any

from pydantic import field_validator
from pydantic_settings import BaseSettings

from orderbridge.errors import ConfigurationError


def parse_number_or(value: Any, fallback: float) -> float:
    """Return ``value`` as a finite float, or ``fallback``."""
    if value is None or isinstance(value, bool):
        return fallback
    try:
        n = float(value)
    except (TypeError, ValueError):
        return fallback
    return n if math.isfinite(n) else fallback


def parse_networks(value: str) -> list[ipaddress.IPv4Network | ipaddress.IPv6Network]:
    """Comma-separated addresses or CIDR blocks as networks.

    Raises:
        ValueError: if an entry is not an address or network
    """
    return [
        ipaddress.ip_network(item.strip(), strict=False)
        for item in value.split(",")
        if item.strip()
    ]


class Settings(BaseSettings):
    """Environment-driven settings for the bridge.

    Only TRUSTED_PROXIES is checked on load. Each flow calls ``require()``
    for the values it needs, so a missing dispatcher URL breaks payment links
    but not the shipping callback.
    """

    # ProCard payment dispatcher
    procard_secret: str = ""
    procard_dispatcher_url: str = ""
    procard_merchant_id: str = ""
    procard_approve_url: str = ""
    procard_decline_url: str = ""
    procard_cancel_url: str = ""
    procard_callback_url: str = ""
    procard_currency: str = "978"  # numeric ISO 4217, EUR
    procard_description_prefix: str = "Order"
    manual_gateway_names: list[str] = ["manual"]

    # PostOffice shipping intake
    postoffice_base_url: str = ""
    postoffice_token: str = ""
    postoffice_bulk_insert_path: str = "/api/order/bulk-insert"
    postoffice_default_width_cm: Any = 20
    postoffice_default_length_cm: Any = 20
    postoffice_default_height_cm: Any = 20
    postoffice_default_weight_kg: Any = 1
    postoffice_max_redirects: int = 3

    # Shopify order platform
    shopify_store_domain: str = ""
    shopify_admin_access_token: str = ""
    shopify_api_key: str = ""
    shopify_api_secret: str = ""
    shopify_api_version: str = "2025-01"
    shopify_webhook_secret: str = ""

    # Email
    email_provider: str = "shopify"  # shopify | sendgrid
    sendgrid_api_key: str = ""
    sendgrid_from: str = ""
    sendgrid_from_name: str = ""

    # Runtime
    http_timeout_seconds: float = 30.0
    redis_url: str = ""
    order_lease_ttl_seconds: int = 60
    webhook_rate_limit: str = "600/minute"
    trusted_proxies: str = ""  # proxy addresses/CIDRs whose X-Forwarded-For is honoured
    events_token: str = ""  # bearer token for /webhooks/events; unset disables the stream
    log_level: str = "INFO"

    model_config = {"env_file": ".env", "extra": "ignore"}

    @field_validator("trusted_proxies")
    @classmethod
    def check_trusted_proxies(cls, value: str) -> str:
        parse_networks(value)
        return value

    def require(self, *names: str) -> None:
        """Raise ConfigurationError listing every named setting that is empty."""
        missing = [n.upper() for n in names if not getattr(self, n)]
        if missing:
            raise ConfigurationError(
                f"Missing {', '.join(missing)}", details={"missing": missing}
            )

    @property
    def package_dimensions(self) -> dict[str, float]:
        """Default parcel dimensions (cm) and weight (kg) for shipments."""
        return {
            "Width": parse_number_or(self.postoffice_default_width_cm, 20),
            "Length": parse_number_or(self.postoffice_default_length_cm, 20),
            "Height": parse_number_or(self.postoffice_default_height_cm, 20),
            "Weight": parse_number_or(self.postoffice_default_weight_kg, 1),
        }

    @property
    def bulk_insert_url(self) -> str:
        base = self.postoffice_base_url.rstrip("/")
        path = self.postoffice_bulk_insert_path
        if not path.startswith("/"):
            path = "/" + path
        return f"{base}{path}"


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Get or create the process-wide Settings."""
    return Settings()
