"""
Proxy dispatch package: path resolution, path-safety checks, the
method-aware dispatcher that talks to the cache and the upstream API, and
the audio file relay.
"""

from .audio import AudioFile, AudioRelay
from .dispatcher import ProxyDispatcher, ProxyResult
from .paths import resolve_proxy_path, resolve_upstream_path, validate_query, validate_upstream_path

__all__ = [
    "AudioFile",
    "AudioRelay",
    "ProxyDispatcher",
    "ProxyResult",
    "resolve_proxy_path",
    "resolve_upstream_path",
    "validate_query",
    "validate_upstream_path",
]
