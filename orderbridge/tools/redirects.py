"""POST with manually followed redirects.

The shipping intake answers its bulk-insert endpoint with redirects and
expects the POST, body included, to be replayed at the new location. Stock
redirect handling turns 301/302/303 into GET, so the transport is told not
to follow and this module replays the request itself.
"""

from __future__ import annotations

import logging
from typing import Mapping

import httpx

logger = logging.getLogger(__name__)

REDIRECT_STATUS_CODES = {301, 302, 303, 307, 308}


def post_with_redirects(
    client: httpx.Client,
    url: str,
    *,
    headers: Mapping[str, str] | None = None,
    content: bytes | str | None = None,
    max_redirects: int = 3,
) -> httpx.Response:
    """POST ``content`` to ``url``, replaying the POST on each redirect.

    Makes at most ``max_redirects + 1`` requests. Returns the first
    non-redirect response, a redirect response with no Location header, or
    the last redirect response once the bound is reached. Status codes are
    not interpreted beyond that; the caller decides what success means.
    """
    current_url = httpx.URL(url)
    for attempt in range(max_redirects + 1):
        response = client.post(
            current_url,
            headers=headers,
            content=content,
            follow_redirects=False,
        )
        if response.status_code not in REDIRECT_STATUS_CODES:
            return response

        location = response.headers.get("location")
        logger.warning(
            "POST redirect %d from %s to %s (attempt %d/%d)",
            response.status_code,
            current_url,
            location,
            attempt + 1,
            max_redirects + 1,
        )
        if not location or attempt == max_redirects:
            return response
        current_url = current_url.join(location)

    raise httpx.TooManyRedirects(f"Too many redirects posting to {url}")
