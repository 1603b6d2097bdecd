"""
Endpoint-based TTL classification and HTTP cache headers.
"""

from typing import Tuple


DEFAULT_TTL = 600

# Ordered, first match wins.
TTL_POLICY: Tuple[Tuple[Tuple[str, ...], int], ...] = (
    (("/search/",), 300),
    (("/dockets/", "/docket-alerts"), 900),
    (("/opinions/", "/clusters/"), 1800),
    (("/courts/", "/people/"), 3600),
)


def ttl_for(endpoint: str) -> int:
    """Return the cache lifetime in seconds for an upstream endpoint."""
    for patterns, ttl in TTL_POLICY:
        if any(pattern in endpoint for pattern in patterns):
            return ttl
    return DEFAULT_TTL


def cache_control_header(ttl: int) -> str:
    """Build the Cache-Control value advertised on cache-aware GET responses."""
    return f"public, max-age={ttl}, s-maxage={ttl}, stale-while-revalidate={ttl // 2}"
