"""
Proxy service for the CourtListener REST API.
"""

from typing import Any, Dict, Optional

from fastapi import Query, Request, Response
from fastapi.responses import JSONResponse

from shared.base_service import ALLOWED_HEADERS, BaseService
from shared.config import ServiceConfig
from .adapters.kv_backend import KeyValueBackend, RedisKeyValueBackend
from .adapters.upstream_client import UpstreamClient
from .caching.expiring_store import ExpiringCacheStore
from .caching.ttl_policy import cache_control_header
from .proxy.audio import AUDIO_CACHE_CONTROL, AudioRelay
from .proxy.dispatcher import ProxyDispatcher, ProxyResult
from .proxy.paths import resolve_proxy_path
from .webhooks.idempotency import IdempotencyGuard
from .webhooks.receiver import WebhookReceiver


PROXY_METHODS = ["GET", "POST", "PUT", "PATCH", "DELETE", "HEAD", "TRACE"]
DISCOVERY_METHODS = "GET, OPTIONS"
CACHE_VARY = "Accept, Authorization"

# Named read-only resources: inbound route -> upstream endpoint.
RESOURCE_ROUTES: Dict[str, str] = {
    "/api": "/",
    "/api/courts": "/courts/",
    "/api/opinions": "/opinions/",
    "/api/clusters": "/clusters/",
    "/api/people": "/people/",
    "/api/dockets": "/dockets/",
    "/api/search": "/search/",
    "/api/citations": "/opinions-cited/",
    "/api/audio": "/audio/",
}


class ProxyService(BaseService):
    """Caching, validating reverse proxy in front of the upstream API."""

    def __init__(
        self,
        config: Optional[ServiceConfig] = None,
        *,
        cache_backend: Optional[KeyValueBackend] = None,
        idempotency_backend: Optional[KeyValueBackend] = None,
        upstream_client: Optional[UpstreamClient] = None,
    ):
        super().__init__("proxy", 8000, config)

        self.cache_backend = cache_backend or RedisKeyValueBackend(
            self.config.redis_url,
            "cache",
            socket_timeout=self.config.redis_socket_timeout,
        )
        self.idempotency_backend = idempotency_backend or RedisKeyValueBackend(
            self.config.redis_url,
            "idempotency",
            socket_timeout=self.config.redis_socket_timeout,
        )

        token = self.config.upstream_api_token.get_secret_value() if self.config.has_upstream_token else None
        self.upstream_client = upstream_client or UpstreamClient(
            self.config.upstream_base_url,
            api_token=token,
            auth_scheme=self.config.upstream_auth_scheme,
            timeout=self.config.upstream_timeout_seconds,
            metrics=self.metrics,
        )

        self.cache_store = ExpiringCacheStore(self.cache_backend)
        self.dispatcher = ProxyDispatcher(
            self.upstream_client,
            self.cache_store,
            max_body_bytes=self.config.max_body_bytes,
            metrics=self.metrics,
        )
        self.audio_relay = AudioRelay(self.upstream_client, self.dispatcher)
        self.idempotency_guard = IdempotencyGuard(
            self.idempotency_backend,
            retention_seconds=self.config.idempotency_retention_seconds,
        )
        self.webhook_receiver = WebhookReceiver(self.idempotency_guard, metrics=self.metrics)

        self._setup_proxy_routes()

        # Expose service instance via app state for introspection/testing
        self.app.state.proxy_service = self

    async def on_shutdown(self) -> None:
        await self.upstream_client.close()
        for backend in (self.cache_backend, self.idempotency_backend):
            close = getattr(backend, "close", None)
            if close is not None:
                await close()

    def build_response(self, result: ProxyResult) -> Response:
        """Render a dispatcher result with the CORS and cache headers."""
        headers = self.cors_headers()
        if result.cache_status is not None and result.cache_ttl is not None:
            headers["Cache-Control"] = cache_control_header(result.cache_ttl)
            headers["X-Cache"] = result.cache_status
            headers["Vary"] = CACHE_VARY

        if result.body is None:
            return Response(status_code=result.status_code, headers=headers)
        return Response(
            content=result.body,
            status_code=result.status_code,
            headers=headers,
            media_type="application/json",
        )

    def preflight_response(self) -> Response:
        headers = self.cors_headers()
        headers["Access-Control-Allow-Headers"] = ALLOWED_HEADERS
        headers["Access-Control-Max-Age"] = "86400"
        return Response(status_code=200, headers=headers)

    def discovery_response(self, result: ProxyResult) -> Response:
        """Upstream OPTIONS metadata with the CORS headers of a read-only resource."""
        headers = self.cors_headers()
        headers["Access-Control-Allow-Methods"] = DISCOVERY_METHODS
        headers["Access-Control-Allow-Headers"] = ALLOWED_HEADERS
        return Response(
            content=result.body,
            status_code=result.status_code,
            headers=headers,
            media_type="application/json",
        )

    async def _check_dependencies(self) -> Dict[str, str]:
        """Check proxy dependencies; the cache is optional so failures are reported, not fatal."""
        return {
            "kv_cache": "available" if await self.cache_backend.ping() else "unavailable",
            "kv_idempotency": "available" if await self.idempotency_backend.ping() else "unavailable",
        }

    def _health_details(self) -> Dict[str, Any]:
        return {
            "upstream": {"base_url": self.config.upstream_base_url},
            "auth": {"api_token_configured": self.config.has_upstream_token},
        }

    def _setup_proxy_routes(self):
        """Set up proxy, resource and webhook routes."""

        @self.app.get("/")
        async def root():
            """Root endpoint."""
            return {
                "service": "proxy",
                "message": "CourtListener Proxy - visit /docs for API documentation",
                "version": "1.0.0"
            }

        for route_path, endpoint in RESOURCE_ROUTES.items():
            self._register_resource(route_path, endpoint)

        @self.app.get("/api/courts/{court_id}")
        async def get_court(court_id: str, request: Request):
            """Fetch one court by ID."""
            result = await self.dispatcher.read_through(
                f"/courts/{court_id}/", request.url.query, request.headers
            )
            return self.build_response(result)

        @self.app.post("/api/search")
        async def search_post(request: Request):
            """Semantic search with a pre-computed embedding; never cached."""
            body = await request.body()
            result = await self.dispatcher.forward("POST", "/search/", request.url.query, body)
            return self.build_response(result)

        async def proxy_request(request: Request):
            body = await request.body()
            result = await self.dispatcher.handle(
                request.method,
                request.url.path,
                request.url.query,
                body,
                request.headers,
            )
            return self.build_response(result)

        async def preflight(request: Request):
            return self.preflight_response()

        async def discover_alerts(request: Request):
            result = await self.dispatcher.discover(resolve_proxy_path(request.url.path))
            return self.discovery_response(result)

        self.app.add_api_route("/api/proxy/{path:path}", proxy_request, methods=PROXY_METHODS)
        self.app.add_api_route("/api/proxy/{path:path}", preflight, methods=["OPTIONS"])

        for route_path in (
            "/api/docket-alerts",
            "/api/docket-alerts/{path:path}",
            "/api/alerts",
            "/api/alerts/{path:path}",
        ):
            self.app.add_api_route(route_path, proxy_request, methods=PROXY_METHODS)
            self.app.add_api_route(route_path, discover_alerts, methods=["OPTIONS"])

        @self.app.options("/api/courts/{court_id}")
        async def discover_court(court_id: str):
            result = await self.dispatcher.discover(f"/courts/{court_id}/")
            return self.discovery_response(result)

        @self.app.get("/api/audio/stream")
        async def stream_audio(
            url: Optional[str] = None,
            audio_id: Optional[str] = Query(None, alias="id"),
        ):
            """Relay an audio file given its ``url`` or its audio ``id``."""
            audio = await self.audio_relay.fetch(url=url, audio_id=audio_id)
            headers = self.cors_headers()
            headers["Cache-Control"] = AUDIO_CACHE_CONTROL
            headers["Content-Disposition"] = f'attachment; filename="{audio.filename}"'
            return Response(content=audio.content, headers=headers, media_type=audio.content_type)

        async def receive_webhook(request: Request):
            """Receive webhook deliveries from the upstream service."""
            body = await request.body()
            ack = await self.webhook_receiver.receive(body, request.headers.get("Idempotency-Key"))
            return JSONResponse(content=ack.model_dump(), headers=self.cors_headers())

        self.app.add_api_route("/webhook", receive_webhook, methods=["POST"])
        self.app.add_api_route("/webhook/{secret}", receive_webhook, methods=["POST"])

    def _register_resource(self, route_path: str, endpoint: str) -> None:
        async def get_resource(request: Request):
            result = await self.dispatcher.read_through(endpoint, request.url.query, request.headers)
            return self.build_response(result)

        async def discover_resource():
            result = await self.dispatcher.discover(endpoint)
            return self.discovery_response(result)

        name = endpoint.strip('/').replace('-', '_') or 'api_root'
        get_resource.__name__ = f"get_{name}"
        discover_resource.__name__ = f"discover_{name}"
        self.app.add_api_route(route_path, get_resource, methods=["GET"])
        self.app.add_api_route(route_path, discover_resource, methods=["OPTIONS"])


def create_app(config: Optional[ServiceConfig] = None, **overrides):
    """Create FastAPI application."""
    service = ProxyService(config, **overrides)
    return service.app


if __name__ == "__main__":
    service = ProxyService()
    service.run()
