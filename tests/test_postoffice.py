"""Tests for the PostOffice shipment projection and bulk-insert client."""

from __future__ import annotations

import json

import httpx
import pytest

from orderbridge.errors import ConfigurationError, UpstreamError
from orderbridge.tools.postoffice_tool import (
    PostOfficeClient,
    build_shipment,
    country_id,
    package_description,
)
from orderbridge.webhooks.payloads import ShippingAddress, parse_order


class TestCountryId:
    @pytest.mark.parametrize(
        "code,expected",
        [
            ("XK", 1),
            ("kosovo", 1),
            ("AL", 2),
            ("Albania", 2),
            ("MK", 3),
            ("NM", 3),
            ("North Macedonia", 3),
            ("DE", 1),
            ("", 1),
        ],
    )
    def test_mapping(self, code, expected):
        assert country_id(ShippingAddress(country_code=code)) == expected


class TestBuildShipment:
    def test_projection(self, settings, order_record):
        shipment = build_shipment(parse_order(order_record), settings, exchangeable=True)
        assert shipment["FirstName"] == "Ana"
        assert shipment["LastName"] == "Krasniqi"
        assert shipment["Address"] == "Rr. Nena Tereze 1"
        assert shipment["CityLabel"] == "Prishtina"
        assert shipment["CountryId"] == 1
        assert shipment["Refid"] == "1001"
        assert shipment["OrderPrice"] == 1500.0
        assert shipment["OrdersRealPrice"] == 1500.0
        assert shipment["PackageDescription"] == "Tee x2"
        assert shipment["Exchangeable"] is True
        assert shipment["Width"] == 20
        assert shipment["Weight"] == 1

    def test_empty_optionals_omitted(self, settings, order_record):
        order_record["line_items"] = []
        shipment = build_shipment(parse_order(order_record), settings, exchangeable=False)
        assert "AddressDetails" not in shipment
        assert "OrderDescription" not in shipment
        assert "PackageDescription" not in shipment
        assert shipment["Exchangeable"] is False

    def test_dimension_fallbacks(self, settings, order_record):
        settings.postoffice_default_width_cm = "wide"
        settings.postoffice_default_weight_kg = "2.5"
        shipment = build_shipment(parse_order(order_record), settings, exchangeable=False)
        assert shipment["Width"] == 20
        assert shipment["Weight"] == 2.5

    def test_package_description(self):
        order = parse_order(
            {"id": 1, "line_items": [{"title": "Tee", "quantity": 2}, {"title": "Cap"}]}
        )
        assert package_description(order) == "Tee x2, Cap x1"


class TestPostOfficeClient:
    def _client(self, settings, handler) -> PostOfficeClient:
        http = httpx.Client(transport=httpx.MockTransport(handler))
        return PostOfficeClient(settings, http=http)

    def test_submit(self, settings, order_record):
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(200, json={"ok": True})

        client = self._client(settings, handler)
        assert client.submit(parse_order(order_record), exchangeable=True) is True

        request = seen[0]
        assert str(request.url) == "https://postoffice.test/api/order/bulk-insert"
        assert request.headers["authorization"] == "Bearer po-token"
        body = json.loads(request.content)
        assert isinstance(body, list) and body[0]["Refid"] == "1001"

    def test_follows_redirect(self, settings, order_record):
        seen = []

        def handler(request):
            seen.append(request.method)
            if len(seen) == 1:
                return httpx.Response(302, headers={"Location": "https://www.postoffice.test/x"})
            return httpx.Response(201)

        assert self._client(settings, handler).submit(parse_order(order_record), True) is True
        assert seen == ["POST", "POST"]

    def test_incomplete_address_skips_request(self, settings, order_record):
        order_record["shipping_address"]["city"] = ""
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(200)

        assert self._client(settings, handler).submit(parse_order(order_record), True) is False
        assert seen == []

    def test_no_address_skips(self, settings, order_record):
        del order_record["shipping_address"]
        client = self._client(settings, lambda request: httpx.Response(200))
        assert client.submit(parse_order(order_record), True) is False

    def test_non_2xx_raises(self, settings, order_record):
        client = self._client(settings, lambda request: httpx.Response(422, text="bad phone"))
        with pytest.raises(UpstreamError) as exc_info:
            client.submit(parse_order(order_record), True)
        assert exc_info.value.status == 422

    def test_transport_error_raises(self, settings, order_record):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        with pytest.raises(UpstreamError):
            self._client(settings, handler).submit(parse_order(order_record), True)

    def test_requires_settings(self, settings):
        settings.postoffice_base_url = ""
        with pytest.raises(ConfigurationError) as exc_info:
            PostOfficeClient(settings)
        assert exc_info.value.details["missing"] == ["POSTOFFICE_BASE_URL"]
