"""
Adapters package for the Proxy Service.

Contains thin wrappers around external collaborators:

- KeyValueBackend / RedisKeyValueBackend: namespaced key-value store with
  per-key expiry
- UpstreamClient: HTTP client for the upstream API

Adapters raise on transport failures; the components using them decide how
failures degrade. No retries happen here.
"""

from .kv_backend import KeyValueBackend, RedisKeyValueBackend
from .upstream_client import UpstreamClient, UpstreamResponse

__all__ = [
    "KeyValueBackend",
    "RedisKeyValueBackend",
    "UpstreamClient",
    "UpstreamResponse",
]
