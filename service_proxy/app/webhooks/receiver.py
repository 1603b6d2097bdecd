"""
Webhook receiver.

Deliveries are acknowledged with success both the first time and on
duplicates; only a malformed payload is rejected so the sender retries it.
"""

from typing import Callable, Dict, Optional, Type, TYPE_CHECKING

from pydantic import BaseModel, ValidationError

from shared.errors import WebhookPayloadError
from shared.logging import get_logger
from .idempotency import IdempotencyGuard
from .models import PrayAndPayPayload, WebhookAck, WebhookEvent

if TYPE_CHECKING:  # pragma: no cover - imported for typing only
    from shared.metrics import MetricsCollector


# Event types whose payload is validated beyond the envelope.
PAYLOAD_MODELS: Dict[str, Type[BaseModel]] = {
    "pray_and_pay": PrayAndPayPayload,
}


def _summarize(exc: ValidationError) -> str:
    parts = []
    for error in exc.errors()[:5]:
        location = ".".join(str(item) for item in error.get("loc", ())) or "body"
        parts.append(f"{location}: {error.get('type')}")
    return "; ".join(parts)


class WebhookReceiver:
    """Parses, validates and deduplicates webhook deliveries."""

    def __init__(
        self,
        guard: IdempotencyGuard,
        *,
        processor: Optional[Callable[[WebhookEvent], None]] = None,
        metrics: Optional["MetricsCollector"] = None,
    ):
        self.guard = guard
        self.processor = processor
        self.metrics = metrics
        self.logger = get_logger("proxy.webhooks")

    def parse(self, body: bytes) -> WebhookEvent:
        """Validate the delivery body; raises ``WebhookPayloadError``."""
        try:
            event = WebhookEvent.model_validate_json(body)
        except ValidationError as exc:
            raise WebhookPayloadError(
                "Failed to parse webhook payload",
                details={"errors": _summarize(exc)},
            ) from exc

        event_type = event.webhook.event_type or "unknown"
        model = PAYLOAD_MODELS.get(event_type)
        if model is not None:
            try:
                model.model_validate(event.payload)
            except ValidationError as exc:
                raise WebhookPayloadError(
                    f"Validation failed for {event_type}",
                    details={"errors": _summarize(exc)},
                ) from exc
        return event

    async def receive(self, body: bytes, idempotency_key: Optional[str] = None) -> WebhookAck:
        """Handle one delivery and return its acknowledgment."""
        try:
            event = self.parse(body)
        except WebhookPayloadError:
            self._count("malformed")
            raise

        event_type = event.webhook.event_type or "unknown"
        key = (idempotency_key or "").strip() or None

        if key and await self.guard.already_seen(key):
            self.logger.info("Duplicate webhook delivery skipped", idempotency_key=key, event_type=event_type)
            self._count("duplicate")
            return WebhookAck(duplicate=True, event_type=event_type)

        self.logger.info(
            "Webhook received",
            idempotency_key=key,
            event_type=event_type,
            version=event.webhook.version,
        )
        if self.processor is not None:
            self.processor(event)

        if key:
            await self.guard.record(key)

        self._count("processed")
        return WebhookAck(duplicate=False, event_type=event_type)

    def _count(self, result: str) -> None:
        if self.metrics:
            self.metrics.increment_counter("webhook_deliveries_total", result=result)
