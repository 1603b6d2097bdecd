"""
Inbound path resolution and path-safety checks for the generic proxy.
"""

from typing import Optional, Tuple
from urllib.parse import unquote

from shared.errors import InvalidPathError, PayloadTooLargeError


PROXY_PREFIX = "/api/proxy"

# (inbound prefix, upstream replacement), matched on whole path segments.
PREFIX_REWRITES: Tuple[Tuple[str, str], ...] = (
    (PROXY_PREFIX, ""),
    ("/api/docket-alerts", "/docket-alerts"),
    ("/api/alerts", "/alerts"),
)

# Checked against the raw and the percent-decoded path.
FORBIDDEN_MARKERS = ("..", "//", "@", "?", "#", "\\")
MAX_PATH_LENGTH = 500
MAX_QUERY_LENGTH = 2000


def resolve_upstream_path(path: str) -> str:
    """Map an inbound proxy path to the upstream resource path."""
    for prefix, replacement in PREFIX_REWRITES:
        if path != prefix and not path.startswith(prefix + "/"):
            continue
        rest = path[len(prefix):]
        if prefix == PROXY_PREFIX and rest in ("", "/"):
            raise InvalidPathError("Missing proxy path")
        return replacement + rest
    raise InvalidPathError()


def validate_upstream_path(endpoint: str) -> str:
    """Reject traversal and SSRF markers and normalize to a leading slash."""
    for candidate in (endpoint, unquote(endpoint)):
        if any(marker in candidate for marker in FORBIDDEN_MARKERS):
            raise InvalidPathError("Invalid path: contains dangerous characters")

    if not endpoint.startswith("/"):
        endpoint = f"/{endpoint}"

    if len(endpoint) > MAX_PATH_LENGTH:
        raise PayloadTooLargeError("Path too long", status_code=414)
    return endpoint


def validate_query(query: Optional[str]) -> Optional[str]:
    """Return the query string, or None when empty; enforce its length bound."""
    if not query:
        return None
    if len(query) > MAX_QUERY_LENGTH:
        raise PayloadTooLargeError("Query string too long", status_code=414)
    return query


def resolve_proxy_path(path: str) -> str:
    """Resolve and validate an inbound path in one step."""
    return validate_upstream_path(resolve_upstream_path(path))
