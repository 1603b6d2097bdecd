"""
Webhook package: delivery models, the idempotency guard and the receiver
that applies the check, process, record sequence.
"""

from .idempotency import IDEMPOTENCY_RETENTION_SECONDS, IdempotencyGuard
from .models import PrayAndPayPayload, WebhookAck, WebhookEvent, WebhookMetadata
from .receiver import WebhookReceiver

__all__ = [
    "IDEMPOTENCY_RETENTION_SECONDS",
    "IdempotencyGuard",
    "PrayAndPayPayload",
    "WebhookAck",
    "WebhookEvent",
    "WebhookMetadata",
    "WebhookReceiver",
]
