"""
Proxy caching package.

Provides the read-path cache used by the proxy dispatcher: deterministic
cache keys, the endpoint TTL policy and the expiry-aware store over the
key-value backend. Caching is an optimization only and never a correctness
dependency.
"""

from .cache_keys import build_key
from .expiring_store import CacheEnvelope, ExpiringCacheStore, LegacyText, decode_cached_value
from .ttl_policy import DEFAULT_TTL, cache_control_header, ttl_for

__all__ = [
    "build_key",
    "CacheEnvelope",
    "ExpiringCacheStore",
    "LegacyText",
    "decode_cached_value",
    "DEFAULT_TTL",
    "cache_control_header",
    "ttl_for",
]
