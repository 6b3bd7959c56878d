"""HTTP relay channels that hand alerts to an SMS/email/MMS gateway."""

import asyncio
import base64
from pathlib import Path
from typing import Any, Optional, Sequence
from urllib.parse import urlparse

import httpx
import structlog

from .models import ChannelKind, MediaRef

logger = structlog.get_logger(__name__)


def encode_media(media: MediaRef) -> dict[str, Any]:
    """Serialize a media reference, inlining local files as base64."""
    entry: dict[str, Any] = {
        "uri": media.uri,
        "kind": media.kind.value,
        "device_id": media.device_id,
    }
    if media.duration_ms is not None:
        entry["duration_ms"] = media.duration_ms

    parsed = urlparse(media.uri)
    if parsed.scheme in ("", "file"):
        path = Path(parsed.path if parsed.scheme else media.uri)
        if path.is_file():
            entry["filename"] = path.name
            entry["data"] = base64.b64encode(path.read_bytes()).decode("utf-8")
    return entry


class RelayChannel:
    """Posts one alert per call to ``{base_url}/{kind}`` on the relay gateway."""

    def __init__(
        self,
        kind: ChannelKind,
        base_url: str,
        *,
        api_key: Optional[str] = None,
        timeout: float = 30.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.kind = kind
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout
        self.client = client
        self._owns_client = client is None

    async def initialize(self) -> None:
        if self.client is None:
            headers = {"X-API-Key": self.api_key} if self.api_key else {}
            self.client = httpx.AsyncClient(
                timeout=self.timeout,
                limits=httpx.Limits(max_keepalive_connections=5, max_connections=10),
                headers=headers,
            )
            self._owns_client = True
        logger.info("Relay channel initialized", channel=self.kind.value, base_url=self.base_url)

    async def cleanup(self) -> None:
        if self.client and self._owns_client:
            await self.client.aclose()
            self.client = None
        logger.info("Relay channel cleaned up", channel=self.kind.value)

    def build_payload(self, destination: str, message: str, media: Sequence[MediaRef]) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "channel": self.kind.value,
            "to": destination,
            "media": [encode_media(item) for item in media],
        }
        if self.kind == ChannelKind.EMAIL:
            subject, _, body = message.partition("\n\n")
            payload["subject"] = subject
            payload["body"] = body
        else:
            payload["text"] = message
        return payload

    async def send(self, destination: str, message: str, media: Sequence[MediaRef]) -> bool:
        if self.client is None:
            await self.initialize()

        try:
            # Local media is read and inlined in a worker thread
            payload = await asyncio.to_thread(self.build_payload, destination, message, media)
            response = await self.client.post(f"{self.base_url}/{self.kind.value}", json=payload)

            if response.status_code in (200, 201, 202):
                logger.info(
                    "Alert relayed",
                    channel=self.kind.value,
                    to=destination,
                    media=len(media),
                )
                return True

            logger.error(
                "Relay rejected alert",
                channel=self.kind.value,
                status_code=response.status_code,
                response=response.text,
            )
            return False

        except (httpx.HTTPError, OSError) as e:
            logger.error("Error relaying alert", channel=self.kind.value, error=str(e))
            return False


def build_relay_channels(
    base_url: str, *, api_key: Optional[str] = None, timeout: float = 30.0
) -> dict[ChannelKind, RelayChannel]:
    """One relay channel per channel kind, all pointed at the same gateway."""
    return {
        kind: RelayChannel(kind, base_url, api_key=api_key, timeout=timeout)
        for kind in ChannelKind
    }
