"""
Idempotency guard for webhook deliveries.

Records are plain inserts with a fixed retention; existence is the only
signal. ``already_seen`` followed by ``record`` is not atomic, so two
concurrent deliveries of the same key can both be processed.
"""

import json
import time
from typing import Callable

from shared.logging import get_logger
from ..adapters.kv_backend import KeyValueBackend


IDEMPOTENCY_RETENTION_SECONDS = 7 * 24 * 3600


class IdempotencyGuard:
    """Tracks webhook delivery keys that were already processed."""

    def __init__(
        self,
        backend: KeyValueBackend,
        *,
        retention_seconds: int = IDEMPOTENCY_RETENTION_SECONDS,
        clock: Callable[[], float] = time.time,
    ):
        self.backend = backend
        self.retention_seconds = retention_seconds
        self.clock = clock
        self.logger = get_logger("proxy.idempotency")

    async def already_seen(self, key: str) -> bool:
        """Return True if a record for ``key`` exists.

        A backend failure is reported as "unseen" so the delivery is
        processed rather than dropped.
        """
        try:
            return await self.backend.get(key) is not None
        except Exception as exc:
            self.logger.error("Idempotency lookup failed", key=key, error=str(exc))
            return False

    async def record(self, key: str) -> bool:
        """Insert the record for ``key``; returns False if the backend failed."""
        payload = json.dumps({"key": key, "recorded_at": int(self.clock())})
        try:
            await self.backend.put(key, payload, self.retention_seconds)
        except Exception as exc:
            self.logger.error("Idempotency record failed", key=key, error=str(exc))
            return False

        self.logger.info("Idempotency key recorded", key=key, ttl_seconds=self.retention_seconds)
        return True
