"""Reference collaborators so the service runs without native drivers."""

import asyncio
import shutil
import time
import uuid
from pathlib import Path
from typing import Iterable, Optional, Sequence
from urllib.parse import urlparse

import httpx
import structlog

from .interfaces import BackgroundAvailability, ReadyCallback, SampleCallback, TickCallback
from .models import EmergencyContact, MediaKind, MediaRef, SensorSample

logger = structlog.get_logger(__name__)


class QueueSensorSource:
    """Sensor source fed by pushed sample batches (e.g. from the control API)."""

    def __init__(self, *, permission_granted: bool = True):
        self.permission_granted = permission_granted
        self.interval_ms: Optional[int] = None
        self._callback: Optional[SampleCallback] = None

    async def request_permission(self) -> bool:
        return self.permission_granted

    def set_rate(self, interval_ms: int) -> None:
        self.interval_ms = interval_ms

    def register(self, callback: SampleCallback) -> None:
        self._callback = callback

    def unregister(self) -> None:
        self._callback = None

    @property
    def registered(self) -> bool:
        return self._callback is not None

    def push(self, samples: Iterable[SensorSample]) -> int:
        """Deliver samples to the registered callback; returns how many were accepted."""
        if self._callback is None:
            return 0
        count = 0
        for sample in samples:
            self._callback(sample)
            count += 1
        return count


class SnapshotCamera:
    """Camera backed by an HTTP snapshot endpoint (IP camera, webcam proxy)."""

    def __init__(
        self,
        device_id: str,
        url: str,
        media_dir: str,
        *,
        timeout: float = 10.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.device_id = device_id
        self.url = url
        self.media_dir = Path(media_dir)
        self.timeout = timeout
        self.client = client
        self._ready = False
        self._ready_callback: Optional[ReadyCallback] = None
        self._probe_task: Optional[asyncio.Task] = None

    def is_ready(self) -> bool:
        return self._ready

    def on_ready(self, callback: ReadyCallback) -> None:
        self._ready_callback = callback
        if self._ready:
            callback()

    async def _get(self) -> httpx.Response:
        if self.client is None:
            self.client = httpx.AsyncClient(timeout=self.timeout)
        response = await self.client.get(self.url)
        response.raise_for_status()
        return response

    async def probe(self) -> bool:
        """Check the endpoint and update readiness."""
        try:
            await self._get()
            ready = True
        except httpx.HTTPError as e:
            logger.warning("Camera probe failed", device_id=self.device_id, error=str(e))
            ready = False

        became_ready = ready and not self._ready
        self._ready = ready
        if became_ready and self._ready_callback is not None:
            self._ready_callback()
        return ready

    def start_probing(self, interval: float = 5.0) -> None:
        if self._probe_task is None or self._probe_task.done():
            self._probe_task = asyncio.create_task(self._probe_loop(interval))

    async def _probe_loop(self, interval: float) -> None:
        try:
            while True:
                await self.probe()
                await asyncio.sleep(interval)
        except asyncio.CancelledError:
            logger.debug("Camera probe loop cancelled", device_id=self.device_id)

    async def capture(self) -> MediaRef:
        response = await self._get()
        self.media_dir.mkdir(parents=True, exist_ok=True)
        path = self.media_dir / f"{self.device_id}_{int(time.time() * 1000)}.jpg"
        await asyncio.to_thread(path.write_bytes, response.content)
        logger.info("Snapshot captured", device_id=self.device_id, path=str(path))
        return MediaRef(uri=path.resolve().as_uri(), kind=MediaKind.PHOTO, device_id=self.device_id)

    async def cleanup(self) -> None:
        if self._probe_task is not None:
            self._probe_task.cancel()
            await asyncio.gather(self._probe_task, return_exceptions=True)
            self._probe_task = None
        if self.client is not None:
            await self.client.aclose()
            self.client = None


class DirectoryMediaStore:
    """Copies captured media into an album directory."""

    def __init__(self, album_dir: str):
        self.album_dir = Path(album_dir)

    async def save(self, media: MediaRef) -> MediaRef:
        parsed = urlparse(media.uri)
        if parsed.scheme not in ("", "file"):
            raise ValueError(f"Cannot store non-local media: {media.uri}")

        source = Path(parsed.path if parsed.scheme else media.uri)
        self.album_dir.mkdir(parents=True, exist_ok=True)
        target = self.album_dir / f"{uuid.uuid4().hex[:8]}_{source.name}"
        await asyncio.to_thread(shutil.copy2, source, target)
        return media.model_copy(update={"uri": target.resolve().as_uri()})


class StaticContactProvider:
    def __init__(self, contacts: Sequence[EmergencyContact]):
        self.contacts = list(contacts)

    async def get_contacts(self) -> list[EmergencyContact]:
        return list(self.contacts)


class LoggingAlarm:
    """Alarm and notification sink that only writes log lines."""

    def __init__(self):
        self.sounding = False

    async def start_alarm(self) -> None:
        self.sounding = True
        logger.warning("Alarm started")

    async def stop_alarm(self) -> None:
        if self.sounding:
            logger.info("Alarm stopped")
        self.sounding = False

    async def notify(self, title: str, body: str) -> None:
        logger.warning("Notification", title=title, body=body)


class PeriodicBackgroundFacility:
    """In-process background facility: an asyncio loop calling the tick callback."""

    def __init__(
        self,
        availability: BackgroundAvailability = BackgroundAvailability.AVAILABLE,
        *,
        error_pause: float = 5.0,
    ):
        self._availability = availability
        self.error_pause = error_pause
        self.task: Optional[asyncio.Task] = None
        self._running = False

    async def availability(self) -> BackgroundAvailability:
        return self._availability

    def is_registered(self) -> bool:
        return self._running and self.task is not None and not self.task.done()

    async def register(self, callback: TickCallback, interval_seconds: float) -> None:
        if self.is_registered():
            logger.warning("Background task already registered")
            return
        self._running = True
        self.task = asyncio.create_task(self._run(callback, interval_seconds))
        logger.info("Background task registered", interval=interval_seconds)

    async def unregister(self) -> None:
        if self.task is None:
            return
        self._running = False
        self.task.cancel()
        await asyncio.gather(self.task, return_exceptions=True)
        self.task = None
        logger.info("Background task unregistered")

    async def _run(self, callback: TickCallback, interval_seconds: float) -> None:
        try:
            while self._running:
                try:
                    await callback()
                    await asyncio.sleep(interval_seconds)
                except asyncio.CancelledError:
                    raise
                except Exception as e:
                    logger.error("Error in background tick", error=str(e))
                    await asyncio.sleep(self.error_pause)
        except asyncio.CancelledError:
            logger.info("Background loop cancelled")
        finally:
            logger.info("Background loop ended")
