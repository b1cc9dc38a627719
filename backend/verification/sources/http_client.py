"""
Async HTTP client wrapper for catalog requests.
Maps HTTP outcomes onto the fetch error taxonomy and records metrics per
request. Retries are not done here; the fetcher's RetryPolicy owns them.
"""
from __future__ import annotations

import json
import time
from email.utils import parsedate_to_datetime
from datetime import datetime, timezone
from typing import Any, Optional

import httpx

from shared.config import get_settings
from shared.utils.logging import get_logger
from shared.utils.metrics import SOURCE_LATENCY, SOURCE_REQUESTS

from verification.errors import (
    FetchError,
    FetchTimeoutError,
    NetworkError,
    NotFoundError,
    ParseError,
    RateLimitError,
)

logger = get_logger(__name__)


def parse_retry_after(value: Optional[str]) -> Optional[float]:
    """Retry-After is either delta-seconds or an HTTP date."""
    if not value:
        return None
    value = value.strip()
    try:
        return max(0.0, float(value))
    except ValueError:
        pass
    try:
        when = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None
    if when.tzinfo is None:
        when = when.replace(tzinfo=timezone.utc)
    return max(0.0, (when - datetime.now(timezone.utc)).total_seconds())


class CatalogHTTPClient:
    """
    Async HTTP client tailored for movie catalog APIs.
    One instance per catalog; start() before use, close() on shutdown.
    """

    def __init__(
        self,
        source: str,
        base_url: str,
        headers: dict[str, str] | None = None,
        timeout_s: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        settings = get_settings()
        self._source = source
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout_s or settings.catalog_request_timeout_s
        self._default_headers = {"User-Agent": settings.catalog_user_agent, **(headers or {})}
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    @property
    def started(self) -> bool:
        return self._client is not None

    async def start(self) -> None:
        """Initialize the underlying httpx client."""
        if self._client is not None:
            return
        self._client = httpx.AsyncClient(
            base_url=self._base_url,
            headers=self._default_headers,
            timeout=httpx.Timeout(self._timeout, connect=5.0),
            follow_redirects=True,
            limits=httpx.Limits(max_connections=50, max_keepalive_connections=20),
            transport=self._transport,
        )

    async def close(self) -> None:
        """Close the underlying httpx client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    async def get_json(
        self,
        path: str,
        record_id: str,
        params: dict[str, Any] | None = None,
        extra_headers: dict[str, str] | None = None,
    ) -> Any:
        """
        GET path and decode the JSON body.

        Raises:
            NotFoundError: 404.
            RateLimitError: 429, carrying the Retry-After hint.
            NetworkError: 5xx or transport failure.
            FetchTimeoutError: the request timed out.
            ParseError: body is not valid JSON.
            FetchError: any other non-2xx status.
        """
        if not self._client:
            raise RuntimeError("CatalogHTTPClient not started. Call start() first.")

        start_time = time.perf_counter()
        status = "error"
        try:
            try:
                resp = await self._client.get(path, params=params, headers=extra_headers)
            except httpx.TimeoutException as exc:
                status = "timeout"
                raise FetchTimeoutError(self._source, record_id, str(exc) or "request timed out") from exc
            except httpx.TransportError as exc:
                status = "transport"
                raise NetworkError(self._source, record_id, str(exc) or type(exc).__name__) from exc

            status = str(resp.status_code)
            if resp.status_code == 404:
                raise NotFoundError(self._source, record_id, f"{path} not found")
            if resp.status_code == 429:
                retry_after = parse_retry_after(resp.headers.get("Retry-After"))
                logger.warning(
                    "catalog_rate_limited",
                    source=self._source,
                    path=path,
                    retry_after_s=retry_after,
                )
                raise RateLimitError(self._source, record_id, "HTTP 429", retry_after=retry_after)
            if resp.status_code >= 500:
                logger.warning("catalog_server_error", source=self._source, path=path, status=resp.status_code)
                raise NetworkError(self._source, record_id, f"HTTP {resp.status_code}")
            if resp.status_code >= 400:
                logger.error("catalog_http_error", source=self._source, path=path, status=resp.status_code)
                raise FetchError(self._source, record_id, f"HTTP {resp.status_code}")

            try:
                payload = resp.json()
            except (json.JSONDecodeError, UnicodeDecodeError) as exc:
                status = "parse_error"
                raise ParseError(self._source, record_id, f"invalid JSON from {path}") from exc

            logger.debug(
                "catalog_request_success",
                source=self._source,
                path=path,
                status=resp.status_code,
                latency_ms=round((time.perf_counter() - start_time) * 1000, 2),
            )
            return payload
        finally:
            SOURCE_REQUESTS.labels(source=self._source, status=status).inc()
            SOURCE_LATENCY.labels(source=self._source).observe(time.perf_counter() - start_time)
