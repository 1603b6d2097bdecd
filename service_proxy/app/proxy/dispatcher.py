"""
Proxy dispatcher: validates inbound requests and forwards them upstream.

Reads (GET) go through the expiring cache; mutating methods, DELETE and
discovery OPTIONS are forwarded without touching it. Each handled request produces exactly one
structured log entry with its outcome and timing.
"""

import json
import time
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Dict, Iterator, Mapping, Optional, TYPE_CHECKING

from shared.errors import (
    ParseFailureError,
    PayloadTooLargeError,
    ProxyError,
    UnsupportedMethodError,
    UpstreamFailureError,
    sanitize_excerpt,
)
from shared.logging import get_logger
from ..adapters.upstream_client import UpstreamClient, UpstreamResponse
from ..caching.cache_keys import build_key
from ..caching.expiring_store import ExpiringCacheStore
from ..caching.ttl_policy import ttl_for
from .paths import resolve_proxy_path, validate_query, validate_upstream_path

if TYPE_CHECKING:  # pragma: no cover - imported for typing only
    from shared.metrics import MetricsCollector


JSON_CONTENT_TYPE = "application/json"
WRITE_METHODS = frozenset({"POST", "PUT", "PATCH"})


@dataclass(frozen=True)
class ProxyResult:
    """Outcome of a dispatched request.

    ``body`` holds the JSON text to return, or None for an empty-payload
    success. ``cache_status`` and ``cache_ttl`` are set on cache-aware reads.
    """

    status_code: int
    body: Optional[str]
    cache_status: Optional[str] = None
    cache_ttl: Optional[int] = None


def _header(headers: Optional[Mapping[str, str]], name: str) -> Optional[str]:
    if not headers:
        return None
    for key, value in headers.items():
        if key.lower() == name:
            return value
    return None


class ProxyDispatcher:
    """Validates, classifies and forwards proxy requests."""

    def __init__(
        self,
        upstream: UpstreamClient,
        cache: ExpiringCacheStore,
        *,
        max_body_bytes: int = 1024 * 1024,
        metrics: Optional["MetricsCollector"] = None,
    ):
        self.upstream = upstream
        self.cache = cache
        self.max_body_bytes = max_body_bytes
        self.metrics = metrics
        self.logger = get_logger("proxy.dispatcher")

    async def handle(
        self,
        method: str,
        path: str,
        query: Optional[str] = None,
        body: Optional[bytes] = None,
        headers: Optional[Mapping[str, str]] = None,
    ) -> ProxyResult:
        """Handle one inbound proxy request."""
        method = method.upper()
        with self._observe(method, path) as record:
            endpoint = resolve_proxy_path(path)
            record["endpoint"] = endpoint
            query = validate_query(query)

            if method == "GET":
                result = await self._read_through(endpoint, query, headers, record)
            elif method in WRITE_METHODS:
                self._check_body_size(body)
                result = await self._forward_write(method, endpoint, query, body)
            elif method == "DELETE":
                result = await self._forward_delete(endpoint, query)
            else:
                raise UnsupportedMethodError(method)

            record["status_code"] = result.status_code
            return result

    async def read_through(
        self,
        endpoint: str,
        query: Optional[str] = None,
        headers: Optional[Mapping[str, str]] = None,
    ) -> ProxyResult:
        """Cached GET of a fixed upstream endpoint (named resource routes)."""
        with self._observe("GET", endpoint) as record:
            endpoint = validate_upstream_path(endpoint)
            record["endpoint"] = endpoint
            result = await self._read_through(endpoint, validate_query(query), headers, record)
            record["status_code"] = result.status_code
            return result

    async def forward(
        self,
        method: str,
        endpoint: str,
        query: Optional[str] = None,
        body: Optional[bytes] = None,
    ) -> ProxyResult:
        """Uncached mutating request to a fixed upstream endpoint."""
        method = method.upper()
        with self._observe(method, endpoint) as record:
            if method not in WRITE_METHODS:
                raise UnsupportedMethodError(method)
            endpoint = validate_upstream_path(endpoint)
            record["endpoint"] = endpoint
            self._check_body_size(body)
            result = await self._forward_write(method, endpoint, validate_query(query), body)
            record["status_code"] = result.status_code
            return result

    async def discover(self, endpoint: str) -> ProxyResult:
        """Uncached OPTIONS to ``endpoint``, returning the API discovery metadata."""
        with self._observe("OPTIONS", endpoint) as record:
            endpoint = validate_upstream_path(endpoint)
            record["endpoint"] = endpoint
            response = await self.upstream.send("OPTIONS", endpoint, headers={"Accept": JSON_CONTENT_TYPE})
            self._require_success(response)
            if not self._is_json(response.text):
                raise ParseFailureError()
            record["status_code"] = response.status_code
            return ProxyResult(response.status_code, response.text)

    async def _read_through(
        self,
        endpoint: str,
        query: Optional[str],
        headers: Optional[Mapping[str, str]],
        record: Dict[str, Any],
    ) -> ProxyResult:
        cache_key = build_key(endpoint, query)
        cache_ttl = ttl_for(endpoint)

        cached = await self.cache.get(cache_key)
        if cached is not None:
            if self._is_json(cached):
                self._count_lookup("hit")
                record["cache"] = "HIT"
                return ProxyResult(200, cached, cache_status="HIT", cache_ttl=cache_ttl)
            self.logger.warning("Discarding unparseable cache entry", key=cache_key)

        self._count_lookup("miss")
        record["cache"] = "MISS"

        response = await self.upstream.send(
            "GET",
            endpoint,
            query,
            headers={"Accept": _header(headers, "accept") or JSON_CONTENT_TYPE},
        )
        self._require_success(response)
        if not self._is_json(response.text):
            raise ParseFailureError()

        await self.cache.set(cache_key, response.text, cache_ttl)
        return ProxyResult(response.status_code, response.text, cache_status="MISS", cache_ttl=cache_ttl)

    async def _forward_write(
        self,
        method: str,
        endpoint: str,
        query: Optional[str],
        body: Optional[bytes],
    ) -> ProxyResult:
        response = await self.upstream.send(
            method,
            endpoint,
            query,
            headers={"Accept": JSON_CONTENT_TYPE, "Content-Type": JSON_CONTENT_TYPE},
            body=body,
        )
        self._require_success(response)
        if not self._is_json(response.text):
            raise ParseFailureError()
        return ProxyResult(response.status_code, response.text)

    async def _forward_delete(self, endpoint: str, query: Optional[str]) -> ProxyResult:
        response = await self.upstream.send(
            "DELETE",
            endpoint,
            query,
            headers={"Accept": JSON_CONTENT_TYPE},
        )
        self._require_success(response)
        if not response.text:
            return ProxyResult(response.status_code, None)
        if not self._is_json(response.text):
            raise ParseFailureError()
        return ProxyResult(response.status_code, response.text)

    def _require_success(self, response: UpstreamResponse) -> None:
        if response.is_success:
            return
        raise UpstreamFailureError(
            response.status_code,
            sanitize_excerpt(response.text, self.upstream.secrets),
        )

    def _check_body_size(self, body: Optional[bytes]) -> None:
        if body and len(body) > self.max_body_bytes:
            raise PayloadTooLargeError(
                "Request body too large",
                details={"max_bytes": self.max_body_bytes},
            )

    @staticmethod
    def _is_json(text: str) -> bool:
        try:
            json.loads(text)
        except ValueError:
            return False
        return True

    def _count_lookup(self, result: str) -> None:
        if self.metrics:
            self.metrics.increment_counter("cache_lookups_total", result=result)

    @contextmanager
    def _observe(self, method: str, path: str) -> Iterator[Dict[str, Any]]:
        record: Dict[str, Any] = {"endpoint": None, "cache": None, "status_code": None}
        outcome = "error"
        start = time.perf_counter()
        try:
            yield record
            outcome = "ok"
        except ProxyError as exc:
            outcome = exc.code.lower()
            record["status_code"] = exc.status_code
            raise
        finally:
            duration_ms = round((time.perf_counter() - start) * 1000, 2)
            log = self.logger.info if outcome == "ok" else self.logger.warning
            log(
                "Proxy request handled",
                method=method,
                path=path[:200],
                endpoint=record["endpoint"],
                outcome=outcome,
                cache=record["cache"],
                status_code=record["status_code"],
                duration_ms=duration_ms,
            )
