"""
Expiry-aware response cache layered over a raw key-value backend.

Values are stored as a JSON envelope ``{data, created_at, ttl}``. The
application-level TTL is authoritative; the backend is asked to keep entries
for ``ttl + BACKEND_EXPIRY_GRACE`` seconds so it never drops an entry the
envelope check still considers fresh. Values that do not decode as an
envelope are legacy plain payloads and are served unchanged.

The cache is an optimization only: backend errors are logged and reported
as misses.
"""

import time
from dataclasses import dataclass
from typing import Callable, Optional, Union

from pydantic import AliasChoices, BaseModel, Field, ValidationError

from shared.logging import get_logger
from ..adapters.kv_backend import KeyValueBackend
from .ttl_policy import ttl_for


BACKEND_EXPIRY_GRACE = 60


class CacheEnvelope(BaseModel):
    """Serialized form of a cache entry."""

    data: str
    # Entries written by earlier deployments call this field "timestamp".
    created_at: int = Field(validation_alias=AliasChoices("created_at", "timestamp"))
    ttl: int

    def is_expired(self, now: float) -> bool:
        return now > self.created_at + self.ttl


@dataclass(frozen=True)
class LegacyText:
    """Cached value written without an envelope."""

    text: str


CachedValue = Union[LegacyText, CacheEnvelope]


def decode_cached_value(raw: Union[bytes, str]) -> CachedValue:
    """Decode a raw backend value into an envelope or legacy text."""
    text = raw.decode("utf-8") if isinstance(raw, bytes) else raw
    try:
        return CacheEnvelope.model_validate_json(text)
    except ValidationError:
        return LegacyText(text)


class ExpiringCacheStore:
    """Response cache with application-level expiry."""

    def __init__(self, backend: KeyValueBackend, clock: Callable[[], float] = time.time):
        self.backend = backend
        self.clock = clock
        self.logger = get_logger("proxy.cache")

    async def get(self, key: str) -> Optional[str]:
        """Return the cached payload for ``key`` or None on miss."""
        try:
            raw = await self.backend.get(key)
        except Exception as exc:
            self.logger.error("Cache fetch error", key=key, error=str(exc))
            return None

        if raw is None:
            self.logger.debug("Cache miss", key=key)
            return None

        try:
            value = decode_cached_value(raw)
        except UnicodeDecodeError:
            self.logger.warning("Undecodable cache entry", key=key)
            return None

        if isinstance(value, LegacyText):
            self.logger.debug("Cache hit (legacy entry)", key=key)
            return value.text

        if value.is_expired(self.clock()):
            self.logger.debug("Cache entry expired", key=key, created_at=value.created_at, ttl=value.ttl)
            await self._delete_quietly(key)
            return None

        self.logger.debug("Cache hit", key=key)
        return value.data

    async def set(self, key: str, payload: str, ttl: int) -> bool:
        """Store ``payload`` under ``key`` for ``ttl`` seconds."""
        envelope = CacheEnvelope(data=payload, created_at=int(self.clock()), ttl=ttl)
        try:
            await self.backend.put(key, envelope.model_dump_json(), ttl + BACKEND_EXPIRY_GRACE)
        except Exception as exc:
            self.logger.error("Cache set error", key=key, error=str(exc))
            return False

        self.logger.debug("Cached response", key=key, ttl=ttl)
        return True

    @staticmethod
    def ttl_for(endpoint: str) -> int:
        return ttl_for(endpoint)

    async def _delete_quietly(self, key: str) -> None:
        try:
            await self.backend.delete(key)
        except Exception as exc:
            self.logger.debug("Cache delete failed", key=key, error=str(exc))
