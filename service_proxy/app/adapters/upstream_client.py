"""
HTTP client for the upstream CourtListener REST API.
"""

import time
from dataclasses import dataclass, field
from typing import Dict, Optional, TYPE_CHECKING

import httpx

from shared.errors import UpstreamFailureError
from shared.logging import get_logger

if TYPE_CHECKING:  # pragma: no cover - imported for typing only
    from shared.metrics import MetricsCollector


CLIENT_NAME = "courtlistener-proxy"
CLIENT_VERSION = "1.0.0"


@dataclass(frozen=True)
class UpstreamResponse:
    """Buffered upstream response."""

    status_code: int
    text: str
    headers: Dict[str, str] = field(default_factory=dict)
    content: bytes = b""

    @property
    def is_success(self) -> bool:
        return 200 <= self.status_code < 300


class UpstreamClient:
    """Sends requests to the upstream API on a pooled ``httpx.AsyncClient``.

    Every request carries the client User-Agent, and an Authorization header
    when a credential is configured. Without a credential requests go out
    unauthenticated and the upstream decides whether to accept them.
    """

    def __init__(
        self,
        base_url: str,
        *,
        api_token: Optional[str] = None,
        auth_scheme: str = "Token",
        timeout: float = 30.0,
        metrics: Optional["MetricsCollector"] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.metrics = metrics
        self.logger = get_logger("proxy.upstream")
        self._api_token = api_token or None
        self._auth_scheme = auth_scheme
        self._client = httpx.AsyncClient(timeout=timeout, transport=transport)

    @property
    def has_credential(self) -> bool:
        return self._api_token is not None

    @property
    def secrets(self) -> tuple:
        """Values that must never appear in caller-visible output."""
        return (self._api_token,) if self._api_token else ()

    def build_url(self, endpoint: str, query: Optional[str] = None) -> str:
        if not endpoint.startswith("/"):
            endpoint = f"/{endpoint}"
        url = f"{self.base_url}{endpoint}"
        if query:
            url = f"{url}?{query}"
        return url

    def build_headers(self, extra: Optional[Dict[str, str]] = None) -> Dict[str, str]:
        headers = {"User-Agent": f"{CLIENT_NAME}/{CLIENT_VERSION}"}
        if extra:
            headers.update(extra)
        if self._api_token:
            headers["Authorization"] = f"{self._auth_scheme} {self._api_token}"
        return headers

    async def send(
        self,
        method: str,
        endpoint: str,
        query: Optional[str] = None,
        *,
        headers: Optional[Dict[str, str]] = None,
        body: Optional[bytes] = None,
    ) -> UpstreamResponse:
        """Send one request upstream; transport failures raise ``UpstreamFailureError``."""
        return await self._request(
            method,
            self.build_url(endpoint, query),
            self.build_headers(headers),
            body,
            label=endpoint,
        )

    async def fetch_file(self, url: str) -> UpstreamResponse:
        """GET an absolute file URL; the API credential is not sent."""
        headers = {"User-Agent": f"{CLIENT_NAME}/{CLIENT_VERSION}"}
        return await self._request("GET", url, headers, None, label=url[:200], decode_text=False)

    async def _request(
        self,
        method: str,
        url: str,
        headers: Dict[str, str],
        body: Optional[bytes],
        *,
        label: str,
        decode_text: bool = True,
    ) -> UpstreamResponse:
        start = time.perf_counter()
        status_code: Optional[int] = None

        try:
            response = await self._client.request(method, url, headers=headers, content=body or None)
            status_code = response.status_code
            # Binary bodies are only decoded when needed for an error excerpt.
            is_success = 200 <= status_code < 300
            return UpstreamResponse(
                status_code=status_code,
                text=response.text if decode_text or not is_success else "",
                headers=dict(response.headers),
                content=response.content,
            )
        except httpx.TimeoutException as exc:
            self.logger.error("Upstream request timed out", method=method, endpoint=label, error=type(exc).__name__)
            raise UpstreamFailureError(None, message="Upstream API timed out", timed_out=True) from exc
        except httpx.HTTPError as exc:
            self.logger.error("Upstream request failed", method=method, endpoint=label, error=type(exc).__name__)
            raise UpstreamFailureError(None) from exc
        finally:
            duration = time.perf_counter() - start
            if self.metrics:
                self.metrics.record_upstream_request(method, status_code, duration)

    async def close(self) -> None:
        """Close pooled connections."""
        await self._client.aclose()
