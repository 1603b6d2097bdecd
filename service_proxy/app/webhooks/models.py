"""
Webhook delivery payload models.
"""

from typing import Any, Literal, Optional

from pydantic import BaseModel


class WebhookMetadata(BaseModel):
    """Metadata block sent with every delivery."""

    version: Optional[str] = None
    event_type: Optional[str] = None
    date_created: Optional[str] = None


class WebhookEvent(BaseModel):
    """Delivery envelope; ``payload`` shape depends on the event type."""

    payload: Any
    webhook: WebhookMetadata


class PrayAndPayPayload(BaseModel):
    """Payload of a ``pray_and_pay`` event."""

    id: int
    date_created: str
    status: Literal[1, 2]  # 1 = waiting, 2 = granted
    recap_document: int


class WebhookAck(BaseModel):
    """Acknowledgment returned for accepted deliveries."""

    status: str = "received"
    duplicate: bool = False
    event_type: str = "unknown"
