"""
Unit tests for path resolution and the proxy dispatcher.
"""

import json
import httpx
import pytest

import sys
import os
sys.path.append(os.path.join(os.path.dirname(__file__), '..', '..'))

from service_proxy.app.adapters.upstream_client import UpstreamClient
from service_proxy.app.caching.expiring_store import ExpiringCacheStore
from service_proxy.app.proxy.dispatcher import ProxyDispatcher
from service_proxy.app.proxy.paths import (
    MAX_PATH_LENGTH,
    MAX_QUERY_LENGTH,
    resolve_proxy_path,
    resolve_upstream_path,
    validate_query,
)
from shared.errors import (
    InvalidPathError,
    ParseFailureError,
    PayloadTooLargeError,
    UnsupportedMethodError,
    UpstreamFailureError,
)
from shared.metrics import MetricsCollector
from shared.test_helpers import (
    FakeClock,
    InMemoryKeyValueBackend,
    RecordedUpstream,
    TestDataFactory,
    UnavailableKeyValueBackend,
)


BASE_URL = "https://upstream.test/api/rest/v4"
API_TOKEN = "secret-token"


class TestPathResolution:
    """Test cases for inbound path mapping and safety checks."""

    @pytest.mark.parametrize(
        "path,expected",
        [
            ("/api/proxy/courts/", "/courts/"),
            ("/api/proxy/search/", "/search/"),
            ("/api/docket-alerts", "/docket-alerts"),
            ("/api/docket-alerts/12/", "/docket-alerts/12/"),
            ("/api/alerts", "/alerts"),
            ("/api/alerts/3/", "/alerts/3/"),
        ],
    )
    def test_resolve(self, path, expected):
        assert resolve_proxy_path(path) == expected

    def test_prefix_must_match_whole_segment(self):
        with pytest.raises(InvalidPathError):
            resolve_upstream_path("/api/proxyfoo/courts/")
        with pytest.raises(InvalidPathError):
            resolve_upstream_path("/api/alertsx")

    def test_unknown_prefix(self):
        with pytest.raises(InvalidPathError):
            resolve_proxy_path("/proxy/..")

    def test_missing_proxy_path(self):
        for path in ("/api/proxy", "/api/proxy/"):
            with pytest.raises(InvalidPathError) as exc_info:
                resolve_proxy_path(path)
            assert exc_info.value.message == "Missing proxy path"

    @pytest.mark.parametrize(
        "path",
        [
            "/api/proxy/../secret",
            "/api/proxy//x",
            "/api/proxy/a@b",
            "/api/proxy/%2e%2e/secret",
            "/api/proxy/x%40evil.test/",
            "/api/docket-alerts/../admin",
            "/api/proxy/courts/?a=b",
            "/api/proxy/courts%3Fa%3Db",
            "/api/proxy/courts/#frag",
            "/api/proxy/courts%23frag",
            "/api/proxy/courts\\evil",
            "/api/proxy/courts%5Cevil",
        ],
    )
    def test_dangerous_paths_rejected(self, path):
        with pytest.raises(InvalidPathError) as exc_info:
            resolve_proxy_path(path)
        assert exc_info.value.status_code == 400

    def test_path_too_long(self):
        with pytest.raises(PayloadTooLargeError) as exc_info:
            resolve_proxy_path("/api/proxy/" + "a" * MAX_PATH_LENGTH)
        assert exc_info.value.status_code == 414

    def test_path_at_limit_accepted(self):
        endpoint = "/" + "a" * (MAX_PATH_LENGTH - 1)
        assert resolve_proxy_path("/api/proxy" + endpoint) == endpoint

    def test_query_limits(self):
        assert validate_query("") is None
        assert validate_query(None) is None
        assert validate_query("a" * MAX_QUERY_LENGTH) == "a" * MAX_QUERY_LENGTH

        with pytest.raises(PayloadTooLargeError) as exc_info:
            validate_query("a" * (MAX_QUERY_LENGTH + 1))
        assert exc_info.value.status_code == 414


class TestProxyDispatcher:
    """Test cases for ProxyDispatcher."""

    @pytest.fixture
    def clock(self):
        return FakeClock()

    @pytest.fixture
    def backend(self, clock):
        return InMemoryKeyValueBackend(clock=clock)

    @pytest.fixture
    def upstream(self):
        return RecordedUpstream(body=TestDataFactory.courts_page())

    @pytest.fixture
    def metrics(self):
        return MetricsCollector("proxy-test")

    @pytest.fixture
    def dispatcher(self, upstream, backend, clock, metrics):
        client = UpstreamClient(BASE_URL, api_token=API_TOKEN, transport=upstream.transport())
        cache = ExpiringCacheStore(backend, clock=clock)
        return ProxyDispatcher(client, cache, max_body_bytes=1024, metrics=metrics)

    @pytest.mark.asyncio
    async def test_get_miss_then_hit(self, dispatcher, upstream, backend):
        """Second identical GET is served from cache without an upstream call."""
        first = await dispatcher.handle("GET", "/api/proxy/courts/")
        second = await dispatcher.handle("GET", "/api/proxy/courts/")

        assert first.status_code == 200
        assert first.cache_status == "MISS"
        assert first.cache_ttl == 3600
        assert json.loads(first.body) == TestDataFactory.courts_page()

        assert second.status_code == 200
        assert second.cache_status == "HIT"
        assert second.body == first.body
        assert upstream.call_count == 1

        key, _, ttl_seconds = backend.puts[0]
        assert key == "courts/"
        assert ttl_seconds == 3660

    @pytest.mark.asyncio
    async def test_get_forwards_query_and_accept(self, dispatcher, upstream):
        await dispatcher.handle(
            "GET",
            "/api/proxy/search/",
            "q=privacy&type=o",
            headers={"Accept": "application/json; version=4"},
        )

        request = upstream.requests[0]
        assert str(request.url) == f"{BASE_URL}/search/?q=privacy&type=o"
        assert request.headers["Accept"] == "application/json; version=4"
        assert request.headers["Authorization"] == f"Token {API_TOKEN}"

    @pytest.mark.asyncio
    async def test_get_counts_cache_lookups(self, dispatcher, metrics):
        await dispatcher.handle("GET", "/api/proxy/courts/")
        await dispatcher.handle("GET", "/api/proxy/courts/")

        exported = metrics.export().decode()
        assert 'cache_lookups_total{result="miss"} 1.0' in exported
        assert 'cache_lookups_total{result="hit"} 1.0' in exported

    @pytest.mark.asyncio
    async def test_expired_entry_refetched(self, dispatcher, upstream, clock):
        await dispatcher.handle("GET", "/api/proxy/search/", "q=x")
        clock.advance(301)
        result = await dispatcher.handle("GET", "/api/proxy/search/", "q=x")

        assert result.cache_status == "MISS"
        assert upstream.call_count == 2

    @pytest.mark.asyncio
    async def test_unparseable_cache_entry_refetched(self, dispatcher, upstream, backend):
        await backend.put("courts/", "<html>", 600)

        result = await dispatcher.handle("GET", "/api/proxy/courts/")

        assert result.cache_status == "MISS"
        assert upstream.call_count == 1

    @pytest.mark.asyncio
    async def test_cache_unavailable_still_serves(self, upstream, clock):
        """A dead cache backend degrades to uncached reads."""
        client = UpstreamClient(BASE_URL, transport=upstream.transport())
        dispatcher = ProxyDispatcher(client, ExpiringCacheStore(UnavailableKeyValueBackend(), clock=clock))

        first = await dispatcher.handle("GET", "/api/proxy/courts/")
        second = await dispatcher.handle("GET", "/api/proxy/courts/")

        assert first.status_code == 200
        assert first.cache_status == "MISS"
        assert second.cache_status == "MISS"
        assert upstream.call_count == 2

    @pytest.mark.asyncio
    async def test_get_upstream_error_not_cached(self, dispatcher, upstream, backend):
        upstream.status_code = 404
        upstream.body = {"detail": "Not found."}

        with pytest.raises(UpstreamFailureError) as exc_info:
            await dispatcher.handle("GET", "/api/proxy/courts/nope/")

        assert exc_info.value.status_code == 404
        assert exc_info.value.details["upstream_status"] == 404
        assert backend.puts == []

    @pytest.mark.asyncio
    async def test_upstream_server_error_maps_to_bad_gateway(self, dispatcher, upstream):
        upstream.status_code = 503
        upstream.body = "maintenance"

        with pytest.raises(UpstreamFailureError) as exc_info:
            await dispatcher.handle("GET", "/api/proxy/courts/")

        assert exc_info.value.status_code == 502
        assert exc_info.value.excerpt == "maintenance"

    @pytest.mark.asyncio
    async def test_upstream_excerpt_is_capped_and_redacted(self, dispatcher, upstream):
        upstream.status_code = 401
        upstream.body = f"invalid token {API_TOKEN} " + "x" * 400

        with pytest.raises(UpstreamFailureError) as exc_info:
            await dispatcher.handle("GET", "/api/proxy/courts/")

        excerpt = exc_info.value.details["excerpt"]
        assert API_TOKEN not in excerpt
        assert "[redacted]" in excerpt
        assert len(excerpt) == 200

    @pytest.mark.asyncio
    async def test_get_non_json_is_parse_failure(self, dispatcher, upstream, backend):
        upstream.body = "<html>oops</html>"

        with pytest.raises(ParseFailureError):
            await dispatcher.handle("GET", "/api/proxy/courts/")
        assert backend.puts == []

    @pytest.mark.asyncio
    async def test_post_propagates_status_and_skips_cache(self, dispatcher, upstream, backend):
        """POST returns the upstream status and body and never touches the cache."""
        upstream.status_code = 201
        upstream.body = TestDataFactory.docket_alert()
        body = json.dumps({"docket": 1234}).encode()

        result = await dispatcher.handle("POST", "/api/docket-alerts", None, body)

        assert result.status_code == 201
        assert json.loads(result.body) == TestDataFactory.docket_alert()
        assert result.cache_status is None
        assert backend.puts == []

        request = upstream.requests[0]
        assert request.method == "POST"
        assert str(request.url) == f"{BASE_URL}/docket-alerts"
        assert request.headers["Content-Type"] == "application/json"
        assert request.content == body

    @pytest.mark.asyncio
    async def test_write_with_empty_body_is_parse_failure(self, dispatcher, upstream):
        upstream.status_code = 204
        upstream.body = None

        with pytest.raises(ParseFailureError):
            await dispatcher.handle("PATCH", "/api/alerts/3/", None, b"{}")

    @pytest.mark.asyncio
    async def test_body_too_large(self, dispatcher, upstream):
        with pytest.raises(PayloadTooLargeError) as exc_info:
            await dispatcher.handle("PUT", "/api/alerts/3/", None, b"x" * 1025)

        assert exc_info.value.status_code == 413
        assert upstream.call_count == 0

    @pytest.mark.asyncio
    async def test_delete_empty_response(self, dispatcher, upstream):
        upstream.status_code = 204
        upstream.body = None

        result = await dispatcher.handle("DELETE", "/api/docket-alerts/42/")

        assert result.status_code == 204
        assert result.body is None
        assert upstream.requests[0].method == "DELETE"

    @pytest.mark.asyncio
    async def test_delete_with_json_body(self, dispatcher, upstream):
        upstream.body = {"deleted": True}

        result = await dispatcher.handle("DELETE", "/api/docket-alerts/42/")

        assert result.status_code == 200
        assert json.loads(result.body) == {"deleted": True}

    @pytest.mark.asyncio
    async def test_unsupported_method(self, dispatcher, upstream):
        for method in ("HEAD", "TRACE"):
            with pytest.raises(UnsupportedMethodError) as exc_info:
                await dispatcher.handle(method, "/api/proxy/courts/")
            assert exc_info.value.status_code == 405
        assert upstream.call_count == 0

    @pytest.mark.asyncio
    async def test_invalid_path_never_reaches_upstream(self, dispatcher, upstream):
        with pytest.raises(InvalidPathError):
            await dispatcher.handle("GET", "/api/proxy/../secret")
        assert upstream.call_count == 0

    @pytest.mark.asyncio
    async def test_decoded_query_in_path_rejected(self, dispatcher, upstream, backend):
        """A query smuggled into the path never reaches the upstream URL or the cache key."""
        with pytest.raises(InvalidPathError):
            await dispatcher.handle("GET", "/api/proxy/courts/?a=" + "b" * 400, "page=2")

        assert upstream.call_count == 0
        assert backend.puts == []

    @pytest.mark.asyncio
    async def test_transport_error(self, dispatcher, upstream):
        upstream.error = httpx.ConnectError("connection refused")

        with pytest.raises(UpstreamFailureError) as exc_info:
            await dispatcher.handle("GET", "/api/proxy/courts/")
        assert exc_info.value.status_code == 502

    @pytest.mark.asyncio
    async def test_read_through_named_endpoint(self, dispatcher, upstream):
        result = await dispatcher.read_through("/courts/scotus/", "")

        assert result.cache_status == "MISS"
        assert result.cache_ttl == 3600
        assert str(upstream.requests[0].url) == f"{BASE_URL}/courts/scotus/"

    @pytest.mark.asyncio
    async def test_read_through_rejects_dangerous_segment(self, dispatcher):
        with pytest.raises(InvalidPathError):
            await dispatcher.read_through("/courts/../admin/")

    @pytest.mark.asyncio
    async def test_forward_only_accepts_writes(self, dispatcher):
        with pytest.raises(UnsupportedMethodError):
            await dispatcher.forward("GET", "/search/")

    @pytest.mark.asyncio
    async def test_forward_post_search(self, dispatcher, upstream, backend):
        upstream.body = {"count": 0, "results": []}

        result = await dispatcher.forward("POST", "/search/", "type=o", b'{"embedding": [0.1]}')

        assert result.status_code == 200
        assert result.cache_status is None
        assert backend.puts == []
        assert str(upstream.requests[0].url) == f"{BASE_URL}/search/?type=o"
