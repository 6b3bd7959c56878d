"""Main entry point for the pocket guardian service."""

import asyncio
import signal
from typing import Optional

import structlog
import uvicorn

from . import __version__
from .api.server import create_server
from .capture import CaptureCoordinator
from .channels import build_relay_channels
from .collaborators import (
    DirectoryMediaStore,
    LoggingAlarm,
    PeriodicBackgroundFacility,
    QueueSensorSource,
    SnapshotCamera,
    StaticContactProvider,
)
from .config import Settings, settings
from .dispatch import DispatchFanout
from .logging import setup_logging
from .monitor import GuardianMonitor
from .scheduler import BackgroundScheduler

logger = structlog.get_logger(__name__)


class GuardianService:
    """Wires collaborators, the monitor, the background scheduler and the API."""

    def __init__(self, config: Settings):
        self.config = config
        self.sensor_source = QueueSensorSource()
        self.cameras = [
            SnapshotCamera(device_id, url, config.media_dir, timeout=config.capture_timeout_seconds)
            for device_id, url in config.camera_urls.items()
        ]
        self.channels = build_relay_channels(
            config.relay_base_url,
            api_key=config.relay_api_key,
            timeout=config.dispatch_channel_timeout_seconds,
        )
        self.monitor = GuardianMonitor(
            config,
            sensor_source=self.sensor_source,
            capture=CaptureCoordinator(
                store=DirectoryMediaStore(f"{config.media_dir}/album"),
                ready_timeout=config.camera_ready_timeout_seconds,
                poll_interval=config.camera_ready_poll_seconds,
                capture_timeout=config.capture_timeout_seconds,
            ),
            dispatcher=DispatchFanout(
                self.channels,
                channel_timeout=config.dispatch_channel_timeout_seconds,
                max_concurrent_contacts=config.dispatch_max_concurrent_contacts,
            ),
            cameras=self.cameras,
            contacts=StaticContactProvider(config.contacts),
            alarm=LoggingAlarm(),
        )
        self.scheduler = BackgroundScheduler(
            self.monitor, PeriodicBackgroundFacility(), config
        )
        self.app = create_server(self.monitor, self.scheduler, config, self.sensor_source)
        self.server: Optional[uvicorn.Server] = None
        self.server_task: Optional[asyncio.Task] = None
        self._running = False

    @property
    def is_running(self) -> bool:
        return self._running

    async def start(self) -> None:
        if self._running:
            logger.warning("Service already running")
            return

        if not self.config.contacts:
            logger.warning("No emergency contacts configured, alerts cannot be delivered")

        for channel in self.channels.values():
            await channel.initialize()
        for camera in self.cameras:
            camera.start_probing()

        await self.monitor.start()
        await self.scheduler.register()

        self.server = uvicorn.Server(
            uvicorn.Config(
                self.app,
                host=self.config.host,
                port=self.config.port,
                log_config=None,
            )
        )
        self.server_task = asyncio.create_task(self.server.serve())
        self._running = True
        logger.info(
            "Pocket guardian started",
            host=self.config.host,
            port=self.config.port,
            cameras=[camera.device_id for camera in self.cameras],
            contacts=len(self.config.contacts),
        )

    async def stop(self) -> None:
        if not self._running:
            return

        logger.info("Stopping pocket guardian")
        self._running = False

        if self.server is not None:
            self.server.should_exit = True
        if self.server_task is not None:
            await asyncio.gather(self.server_task, return_exceptions=True)

        await self.scheduler.deregister()
        await self.monitor.stop()

        for camera in self.cameras:
            await camera.cleanup()
        for channel in self.channels.values():
            await channel.cleanup()
        logger.info("Pocket guardian stopped")


async def main(config: Optional[Settings] = None) -> None:
    config = config or settings
    setup_logging(config)
    logger.info("Starting pocket guardian", version=__version__, environment=config.environment)

    service = GuardianService(config)
    stop_event = asyncio.Event()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, stop_event.set)

    try:
        await service.start()
        # uvicorn may consume the signal itself, so also stop when the server exits
        stop_waiter = asyncio.create_task(stop_event.wait())
        await asyncio.wait({stop_waiter, service.server_task}, return_when=asyncio.FIRST_COMPLETED)
        stop_waiter.cancel()
        logger.info("Shutting down")
    finally:
        await service.stop()


def run() -> None:
    asyncio.run(main())


if __name__ == "__main__":
    run()
