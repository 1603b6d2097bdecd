"""
Audio file relay.

Resolves an oral-argument recording either from a direct ``url`` or from
the ``/audio/{id}/`` metadata, restricts the download to the allowed hosts
and returns the bytes for the caller to relay.
"""

import json
from dataclasses import dataclass
from typing import Any, Dict, Optional
from urllib.parse import unquote, urlparse

from shared.errors import (
    AudioNotFoundError,
    InvalidPathError,
    ParseFailureError,
    UpstreamFailureError,
    sanitize_excerpt,
)
from shared.logging import get_logger
from ..adapters.upstream_client import UpstreamClient
from .dispatcher import ProxyDispatcher


ALLOWED_AUDIO_HOSTS = ("courtlistener.com", "archive.org")
AUDIO_SITE_ORIGIN = "https://www.courtlistener.com"
AUDIO_CACHE_CONTROL = "public, max-age=86400"
DEFAULT_AUDIO_CONTENT_TYPE = "audio/mpeg"


@dataclass(frozen=True)
class AudioFile:
    """Downloaded audio ready to relay."""

    content: bytes
    content_type: str
    filename: str


def is_allowed_audio_url(url: str) -> bool:
    """True for http(s) URLs on an allowed host or one of its subdomains."""
    parsed = urlparse(url)
    if parsed.scheme not in ("http", "https") or parsed.username or parsed.password:
        return False
    host = (parsed.hostname or "").lower()
    return any(host == allowed or host.endswith("." + allowed) for allowed in ALLOWED_AUDIO_HOSTS)


def audio_url_from_metadata(metadata: Dict[str, Any]) -> str:
    """Pick ``local_path_mp3`` (absolute or site-relative), else ``download_url``."""
    local_path = metadata.get("local_path_mp3")
    if isinstance(local_path, str) and local_path:
        if local_path.startswith("http"):
            return local_path
        if not local_path.startswith("/"):
            local_path = f"/{local_path}"
        return f"{AUDIO_SITE_ORIGIN}{local_path}"

    download_url = metadata.get("download_url")
    if isinstance(download_url, str) and download_url:
        return download_url
    raise AudioNotFoundError()


def filename_for(url: str) -> str:
    name = unquote(urlparse(url).path.rsplit("/", 1)[-1])
    name = "".join(ch for ch in name if ch.isascii() and ch.isprintable() and ch not in '"\\')
    return name or "audio.mp3"


class AudioRelay:
    """Fetches audio files for ``GET /api/audio/stream``."""

    def __init__(self, upstream: UpstreamClient, dispatcher: ProxyDispatcher):
        self.upstream = upstream
        self.dispatcher = dispatcher
        self.logger = get_logger("proxy.audio")

    async def resolve_url(self, url: Optional[str] = None, audio_id: Optional[str] = None) -> str:
        if url:
            return url
        if not audio_id:
            raise InvalidPathError("Missing 'url' or 'id' parameter")
        if not audio_id.isdigit():
            raise InvalidPathError("Invalid audio id")

        result = await self.dispatcher.read_through(f"/audio/{audio_id}/")
        try:
            metadata = json.loads(result.body or "")
        except ValueError as exc:
            raise ParseFailureError() from exc
        if not isinstance(metadata, dict):
            raise AudioNotFoundError()
        return audio_url_from_metadata(metadata)

    async def fetch(self, url: Optional[str] = None, audio_id: Optional[str] = None) -> AudioFile:
        """Resolve, check and download one audio file."""
        audio_url = await self.resolve_url(url, audio_id)
        if not is_allowed_audio_url(audio_url):
            raise InvalidPathError("Invalid audio URL domain")

        response = await self.upstream.fetch_file(audio_url)
        if not response.is_success:
            raise UpstreamFailureError(
                response.status_code,
                sanitize_excerpt(response.text, self.upstream.secrets),
            )

        self.logger.info("Audio file relayed", bytes=len(response.content), status_code=response.status_code)
        return AudioFile(
            content=response.content,
            content_type=response.headers.get("content-type") or DEFAULT_AUDIO_CONTENT_TYPE,
            filename=filename_for(audio_url),
        )
