"""
Cache key derivation for upstream reads.
"""

import hashlib
from typing import Optional


MAX_INLINE_QUERY_LENGTH = 200


def _fold_query(query: str) -> str:
    # Stable across processes, unlike the builtin hash(); collisions between
    # two long queries are accepted.
    return hashlib.md5(query.encode("utf-8"), usedforsecurity=False).hexdigest()[:16]


def build_key(endpoint: str, query: Optional[str] = None) -> str:
    """Build the cache key for ``endpoint`` and its raw query string.

    Short queries are embedded verbatim so distinct inputs never share a key.
    Queries longer than ``MAX_INLINE_QUERY_LENGTH`` characters are folded
    through a hash to keep keys bounded.
    """
    base_key = endpoint.lstrip("/")
    if not query:
        return base_key
    if len(query) > MAX_INLINE_QUERY_LENGTH:
        return f"{base_key}:q:{_fold_query(query)}"
    return f"{base_key}:{query}"
