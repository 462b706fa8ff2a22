"""Upstream HTTP access — every adapter call goes through the limiter and cache."""

from __future__ import annotations

import json
import logging
from urllib.parse import urlencode

import httpx

from feedrank.errors import FetchError, ParseError
from feedrank.ingestion.ratelimit import RateLimiter, ResponseCache

logger = logging.getLogger(__name__)

_USER_AGENT = "feedrank/0.1 (+https://github.com/feedrank/feedrank)"


def _cache_key(url: str, params: dict | None) -> str:
    if not params:
        return url
    return f"{url}?{urlencode(sorted(params.items()))}"


class UpstreamClient:
    """Thin wrapper over httpx.get that throttles and caches per source kind."""

    def __init__(self, limiter: RateLimiter, cache: ResponseCache) -> None:
        self._limiter = limiter
        self._cache = cache

    @property
    def cache(self) -> ResponseCache:
        return self._cache

    def get_text(
        self,
        kind: str,
        url: str,
        *,
        timeout: float,
        params: dict | None = None,
        headers: dict[str, str] | None = None,
    ) -> str:
        """GET a URL and return the body text.

        Raises FetchError on network errors, timeouts, rate limit exhaustion,
        and non-2xx responses.
        """
        key = _cache_key(url, params)
        cached = self._cache.get(key)
        if cached is not None:
            logger.debug("Cache hit for %s", key)
            return cached

        self._limiter.acquire(kind, max_wait=timeout)
        request_headers = {"User-Agent": _USER_AGENT}
        request_headers.update(headers or {})
        try:
            response = httpx.get(
                url,
                params=params,
                headers=request_headers,
                timeout=timeout,
                follow_redirects=True,
            )
            response.raise_for_status()
        except httpx.TimeoutException as exc:
            raise FetchError(f"Timed out after {timeout}s fetching {url}") from exc
        except httpx.HTTPStatusError as exc:
            raise FetchError(
                f"HTTP {exc.response.status_code} fetching {url}"
            ) from exc
        except httpx.HTTPError as exc:
            raise FetchError(f"HTTP error fetching {url}: {exc}") from exc

        text = response.text
        self._cache.set(key, text)
        return text

    def get_json(
        self,
        kind: str,
        url: str,
        *,
        timeout: float,
        params: dict | None = None,
        headers: dict[str, str] | None = None,
    ):
        """GET a URL and decode its JSON body. Raises ParseError on invalid JSON."""
        text = self.get_text(kind, url, timeout=timeout, params=params, headers=headers)
        try:
            return json.loads(text)
        except ValueError as exc:
            raise ParseError(f"Invalid JSON from {url}: {exc}") from exc
