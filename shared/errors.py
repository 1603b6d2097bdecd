"""
Shared error handling for the CourtListener Proxy.

Every caller-visible error is a ``ProxyError`` subclass. Messages and details
must be safe to return to clients: length-capped, no configuration values,
no credentials.
"""

from typing import Dict, Any, Optional
from pydantic import BaseModel, Field

from shared.logging import get_request_id


MAX_EXCERPT_LENGTH = 200


class ErrorResponse(BaseModel):
    """Standard error response format."""

    request_id: Optional[str] = None
    code: str
    message: str
    details: Dict[str, Any] = Field(default_factory=dict)


def sanitize_excerpt(text: Optional[str], secrets: tuple = ()) -> str:
    """Truncate an upstream body and strip any configured secret from it."""
    if not text:
        return ""
    for secret in secrets:
        if secret:
            text = text.replace(secret, "[redacted]")
    return text[:MAX_EXCERPT_LENGTH]


class ProxyError(Exception):
    """Base exception for proxy services."""

    status_code = 500

    def __init__(
        self,
        code: str,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        status_code: Optional[int] = None,
    ):
        self.code = code
        self.message = message
        self.details = details or {}
        if status_code is not None:
            self.status_code = status_code
        super().__init__(message)

    def to_response(self) -> ErrorResponse:
        """Convert to error response."""
        return ErrorResponse(
            request_id=get_request_id(),
            code=self.code,
            message=self.message,
            details=self.details
        )


class InvalidPathError(ProxyError):
    """Inbound path is unknown or fails the path-safety checks."""

    status_code = 400

    def __init__(self, message: str = "Invalid proxy path", details: Optional[Dict[str, Any]] = None):
        super().__init__("INVALID_PATH", message, details)


class PayloadTooLargeError(ProxyError):
    """Path, query string or body exceeds its configured bound."""

    status_code = 413

    def __init__(
        self,
        message: str = "Payload too large",
        details: Optional[Dict[str, Any]] = None,
        status_code: Optional[int] = None,
    ):
        super().__init__("PAYLOAD_TOO_LARGE", message, details, status_code)


class UnsupportedMethodError(ProxyError):
    """HTTP method the dispatcher does not forward."""

    status_code = 405

    def __init__(self, method: str):
        super().__init__(
            "UNSUPPORTED_METHOD",
            "Method not supported",
            {"method": method[:16]},
        )
        self.method = method


class UpstreamFailureError(ProxyError):
    """Upstream answered with a non-2xx status or could not be reached.

    ``upstream_status`` is None for transport errors. The HTTP status returned
    to the caller mirrors upstream 4xx responses and collapses everything
    else into a gateway error.
    """

    def __init__(
        self,
        upstream_status: Optional[int],
        excerpt: str = "",
        message: Optional[str] = None,
        timed_out: bool = False,
    ):
        self.upstream_status = upstream_status
        self.excerpt = excerpt[:MAX_EXCERPT_LENGTH]

        if upstream_status is not None and 400 <= upstream_status < 500:
            status_code = upstream_status
        elif timed_out:
            status_code = 504
        else:
            status_code = 502

        if message is None:
            message = (
                f"Upstream API returned {upstream_status}"
                if upstream_status is not None
                else "Upstream API unavailable"
            )

        super().__init__(
            "UPSTREAM_FAILURE",
            message,
            {"upstream_status": upstream_status, "excerpt": self.excerpt},
            status_code,
        )


class ParseFailureError(ProxyError):
    """Upstream returned a success status with a body that is not JSON."""

    status_code = 502

    def __init__(self, message: str = "Failed to parse upstream response"):
        super().__init__("PARSE_FAILURE", message)


class AudioNotFoundError(ProxyError):
    """Audio metadata carries no downloadable file URL."""

    status_code = 404

    def __init__(self, message: str = "Audio file URL not found in metadata"):
        super().__init__("AUDIO_NOT_FOUND", message)


class WebhookPayloadError(ProxyError):
    """Webhook delivery body could not be parsed or validated."""

    status_code = 400

    def __init__(self, message: str = "Malformed webhook payload", details: Optional[Dict[str, Any]] = None):
        super().__init__("WEBHOOK_PAYLOAD_ERROR", message, details)
