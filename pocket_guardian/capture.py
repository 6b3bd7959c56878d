"""Evidence capture across one or more cameras."""

import asyncio
from typing import Optional, Sequence

import structlog

from .clock import Clock, SystemClock
from .errors import AllCapturesFailed, NoDeviceReady
from .interfaces import CameraHandle, MediaStore
from .models import CaptureResult, MediaRef

logger = structlog.get_logger(__name__)


class CaptureCoordinator:
    """Waits for camera readiness, then captures from every ready device concurrently."""

    def __init__(
        self,
        *,
        store: Optional[MediaStore] = None,
        ready_timeout: float = 5.0,
        poll_interval: float = 0.2,
        capture_timeout: float = 15.0,
        clock: Optional[Clock] = None,
    ):
        self.store = store
        self.ready_timeout = ready_timeout
        self.poll_interval = poll_interval
        self.capture_timeout = capture_timeout
        self.clock = clock or SystemClock()
        self._signalled: set[str] = set()

    @staticmethod
    def any_ready(devices: Sequence[CameraHandle]) -> bool:
        return any(device.is_ready() for device in devices)

    async def capture(self, devices: Sequence[CameraHandle]) -> CaptureResult:
        """Capture from all ready devices.

        Raises NoDeviceReady if nothing is ready by the timeout and
        AllCapturesFailed if no ready device produced media.
        """
        ready = await self.wait_until_ready(devices)
        if not ready:
            logger.warning(
                "No camera ready",
                devices=[device.device_id for device in devices],
                timeout=self.ready_timeout,
            )
            raise NoDeviceReady(self.ready_timeout)

        logger.info("Capturing evidence", devices=[device.device_id for device in ready])
        results = await asyncio.gather(
            *(self._capture_one(device) for device in ready), return_exceptions=True
        )

        per_device: dict[str, MediaRef] = {}
        failures: dict[str, str] = {}
        for device, result in zip(ready, results):
            if isinstance(result, BaseException):
                failures[device.device_id] = str(result) or type(result).__name__
                logger.error(
                    "Camera capture failed",
                    device_id=device.device_id,
                    error=str(result),
                    error_type=type(result).__name__,
                )
            else:
                per_device[device.device_id] = result

        # Devices that never became ready are reported alongside capture errors
        for device in devices:
            if device not in ready:
                failures.setdefault(device.device_id, "not ready")

        if not per_device:
            raise AllCapturesFailed(failures)

        return CaptureResult(per_device=per_device, failures=failures, timestamp=self.clock.now())

    async def wait_until_ready(self, devices: Sequence[CameraHandle]) -> list[CameraHandle]:
        """Poll until every device is ready or the timeout expires.

        Returns the devices that are ready at that point, possibly none.
        """
        self._signalled.clear()
        for device in devices:
            device.on_ready(self._make_ready_callback(device.device_id))

        deadline = self.clock.now() + self.ready_timeout
        while True:
            ready = [device for device in devices if self._is_ready(device)]
            if len(ready) == len(devices) or self.clock.now() >= deadline:
                return ready
            await self.clock.sleep(self.poll_interval)

    def _make_ready_callback(self, device_id: str):
        def _on_ready() -> None:
            self._signalled.add(device_id)
            logger.debug("Camera ready", device_id=device_id)

        return _on_ready

    def _is_ready(self, device: CameraHandle) -> bool:
        return device.device_id in self._signalled or device.is_ready()

    async def _capture_one(self, device: CameraHandle) -> MediaRef:
        media = await asyncio.wait_for(device.capture(), timeout=self.capture_timeout)
        if media.device_id is None:
            media = media.model_copy(update={"device_id": device.device_id})
        return await self._persist(media)

    async def _persist(self, media: MediaRef) -> MediaRef:
        """Hand media to the store; keep the original reference if that fails."""
        if self.store is None:
            return media
        try:
            stored = await self.store.save(media)
            logger.debug("Media persisted", uri=stored.uri, device_id=media.device_id)
            return stored
        except Exception as e:
            logger.warning(
                "Failed to persist media, keeping capture reference",
                uri=media.uri,
                error=str(e),
            )
            return media
