"""Tests for POST redirect replay against a mock transport."""

from __future__ import annotations

import httpx

from orderbridge.tools.redirects import post_with_redirects


def _client(handler) -> httpx.Client:
    return httpx.Client(transport=httpx.MockTransport(handler))


class TestPostWithRedirects:
    def test_no_redirect(self):
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(200, json={"ok": True})

        response = post_with_redirects(_client(handler), "https://po.test/bulk", content=b"[]")
        assert response.status_code == 200
        assert len(seen) == 1

    def test_302_replays_post_with_body(self):
        seen = []

        def handler(request):
            seen.append((request.method, str(request.url), request.content))
            if request.url.host == "po.test":
                return httpx.Response(302, headers={"Location": "https://api.po.test/bulk"})
            return httpx.Response(201)

        response = post_with_redirects(
            _client(handler),
            "https://po.test/bulk",
            headers={"Authorization": "Bearer t"},
            content=b'[{"Refid": "1001"}]',
        )
        assert response.status_code == 201
        assert seen == [
            ("POST", "https://po.test/bulk", b'[{"Refid": "1001"}]'),
            ("POST", "https://api.po.test/bulk", b'[{"Refid": "1001"}]'),
        ]

    def test_307_keeps_method_body_and_headers(self):
        seen = []

        def handler(request):
            seen.append((request.method, request.content, request.headers.get("authorization")))
            if len(seen) == 1:
                return httpx.Response(307, headers={"Location": "/v2/bulk"})
            return httpx.Response(200)

        post_with_redirects(
            _client(handler),
            "https://po.test/bulk",
            headers={"Authorization": "Bearer t"},
            content=b"[1]",
        )
        assert seen == [("POST", b"[1]", "Bearer t")] * 2

    def test_relative_location_resolved(self):
        urls = []

        def handler(request):
            urls.append(str(request.url))
            if len(urls) == 1:
                return httpx.Response(301, headers={"Location": "/api/v2/bulk"})
            return httpx.Response(200)

        post_with_redirects(_client(handler), "https://po.test/api/bulk", content=b"[]")
        assert urls == ["https://po.test/api/bulk", "https://po.test/api/v2/bulk"]

    def test_redirect_loop_is_bounded(self):
        count = 0

        def handler(request):
            nonlocal count
            count += 1
            return httpx.Response(302, headers={"Location": "https://po.test/again"})

        response = post_with_redirects(
            _client(handler), "https://po.test/bulk", content=b"[]", max_redirects=3
        )
        assert count == 4
        assert response.status_code == 302

    def test_missing_location_returns_redirect(self):
        count = 0

        def handler(request):
            nonlocal count
            count += 1
            return httpx.Response(303)

        response = post_with_redirects(_client(handler), "https://po.test/bulk")
        assert count == 1
        assert response.status_code == 303

    def test_error_status_returned_as_is(self):
        response = post_with_redirects(
            _client(lambda request: httpx.Response(500, text="boom")), "https://po.test/bulk"
        )
        assert response.status_code == 500
        assert response.text == "boom"
