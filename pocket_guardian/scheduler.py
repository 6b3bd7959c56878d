"""Periodic background tick that keeps pocket-based arming current."""

import asyncio
from typing import TYPE_CHECKING, Optional

import structlog

from .clock import Clock, SystemClock
from .config import Settings
from .errors import SchedulerUnavailable
from .interfaces import BackgroundAvailability, BackgroundFacility, LightSensor
from .models import SchedulerStatus, SessionState, TickResult

if TYPE_CHECKING:
    from .monitor import GuardianMonitor

logger = structlog.get_logger(__name__)


class BackgroundScheduler:
    """Registers with the host background facility and runs lightweight ticks.

    A denied or restricted facility never stops monitoring; the scheduler
    then reports foreground-only operation.
    """

    def __init__(
        self,
        monitor: "GuardianMonitor",
        facility: Optional[BackgroundFacility],
        settings: Settings,
        *,
        light_sensor: Optional[LightSensor] = None,
        clock: Optional[Clock] = None,
    ):
        self.monitor = monitor
        self.facility = facility
        self.settings = settings
        self.light_sensor = light_sensor
        self.clock = clock or SystemClock()

        self.availability: Optional[BackgroundAvailability] = None
        self.registered_at: Optional[float] = None
        self.last_tick_at: Optional[float] = None
        self.tick_count = 0
        self.last_error: Optional[str] = None

    async def register(self) -> bool:
        """Ask the facility for periodic ticks. Returns False when unavailable."""
        if self.facility is None:
            self._record_unavailable(SchedulerUnavailable("no facility"))
            return False

        self.availability = await self.facility.availability()
        if self.availability != BackgroundAvailability.AVAILABLE:
            self._record_unavailable(SchedulerUnavailable(self.availability.value))
            return False

        if self.facility.is_registered():
            logger.info("Background task already registered")
            return True

        await self.facility.register(self.on_tick, self.settings.background_interval_seconds)
        self.registered_at = self.clock.now()
        self.last_error = None
        logger.info(
            "Background scheduler registered",
            interval=self.settings.background_interval_seconds,
        )
        return True

    async def deregister(self) -> None:
        if self.facility is not None and self.facility.is_registered():
            await self.facility.unregister()
            logger.info("Background scheduler deregistered")
        self.registered_at = None

    async def on_tick(self, now: Optional[float] = None) -> TickResult:
        """One idempotent background pass."""
        now = self.clock.now() if now is None else now
        light_level = await self._read_light()
        change = self.monitor.evaluate_pocket(now, light_level=light_level)

        self.last_tick_at = now
        self.tick_count += 1

        status = self.monitor.get_status()
        result = TickResult(
            timestamp=now,
            armed=status.armed,
            in_pocket=status.in_pocket,
            pocket_change=change,
            session_state=status.session.state if status.session else SessionState.IDLE,
            light_level=light_level,
        )
        logger.info(
            "Background tick",
            tick=self.tick_count,
            armed=result.armed,
            in_pocket=result.in_pocket,
            session_state=result.session_state.value,
            light_level=light_level,
        )
        return result

    def get_status(self) -> SchedulerStatus:
        available = self.availability == BackgroundAvailability.AVAILABLE
        registered = self.facility is not None and self.facility.is_registered()
        return SchedulerStatus(
            available=available,
            registered=registered,
            foreground_only=not available or not registered or self._is_stale(),
            last_tick_at=self.last_tick_at,
            tick_count=self.tick_count,
        )

    def _is_stale(self) -> bool:
        reference = self.last_tick_at if self.last_tick_at is not None else self.registered_at
        if reference is None:
            return True
        return self.clock.now() - reference > self.settings.background_stale_after_seconds

    def _record_unavailable(self, error: SchedulerUnavailable) -> None:
        self.last_error = str(error)
        logger.warning(
            "Background execution unavailable, continuing in foreground",
            availability=error.availability,
            error=str(error),
        )

    async def _read_light(self) -> Optional[float]:
        if self.light_sensor is None:
            return None
        try:
            return await asyncio.wait_for(
                self.light_sensor.read_lux(), timeout=self.settings.light_sensor_timeout_seconds
            )
        except Exception as e:
            logger.warning("Light sensor read failed", error=str(e))
            return None
