"""Monitoring loop that owns the classifier, pocket state and the live alert session."""

import asyncio
from enum import Enum
from typing import Any, Optional, Sequence

import structlog
from pydantic import BaseModel, ConfigDict

from .capture import CaptureCoordinator
from .clock import Clock, SystemClock
from .config import Settings
from .dispatch import DispatchFanout
from .errors import PermissionDenied, SessionError
from .interfaces import AlarmNotifier, CameraHandle, ContactProvider, SensorSource
from .models import (
    SENSITIVITY_PROFILES,
    CaptureResult,
    DispatchReport,
    MediaRef,
    MonitorStatus,
    PocketStateChange,
    SensitivityLevel,
    SensorSample,
    SessionSnapshot,
    SessionState,
    SessionTrigger,
)
from .motion_detector import SampleClassifier, TelemetrySink
from .pocket import PocketHeuristic
from .session import AlertSession, TransitionObserver

logger = structlog.get_logger(__name__)

TEST_MEDIA_URI = "test://image.jpg"


class MonitorEventKind(str, Enum):
    SAMPLE = "sample"
    MANUAL_TRIGGER = "manual_trigger"


class MonitorEvent(BaseModel):
    """Single event type consumed by the monitoring loop, in arrival order."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    kind: MonitorEventKind
    sample: Optional[SensorSample] = None
    reply: Optional[Any] = None  # asyncio.Future resolved with a SessionSnapshot


class GuardianMonitor:
    """Owns all mutable monitoring state. Only this object writes to it."""

    def __init__(
        self,
        settings: Settings,
        *,
        sensor_source: SensorSource,
        capture: CaptureCoordinator,
        dispatcher: DispatchFanout,
        cameras: Sequence[CameraHandle],
        contacts: ContactProvider,
        alarm: Optional[AlarmNotifier] = None,
        clock: Optional[Clock] = None,
        telemetry_sink: Optional[TelemetrySink] = None,
        on_transition: Optional[TransitionObserver] = None,
    ):
        self.settings = settings
        self.sensor_source = sensor_source
        self.capture = capture
        self.dispatcher = dispatcher
        self.cameras = list(cameras)
        self.contacts = contacts
        self.alarm = alarm
        self.clock = clock or SystemClock()
        self.on_transition = on_transition

        self.sensitivity = settings.sensitivity
        self.classifier = SampleClassifier(
            settings.profile(),
            gravity_baseline=settings.gravity_baseline,
            base_threshold=settings.base_threshold,
            stddev_threshold=settings.stddev_threshold,
            clear_on_event=settings.clear_buffer_on_event,
            telemetry_sink=telemetry_sink,
        )
        self.pocket = PocketHeuristic(
            enter_quiet_seconds=settings.pocket_enter_quiet_seconds,
            exit_quiet_seconds=settings.pocket_exit_quiet_seconds,
            enter_dwell_seconds=settings.pocket_enter_dwell_seconds,
            exit_dwell_seconds=settings.pocket_exit_dwell_seconds,
            activity_threshold=settings.pocket_activity_threshold,
            light_threshold_lux=settings.pocket_light_threshold_lux,
            light_max_age_seconds=settings.pocket_light_max_age_seconds,
        )

        self.armed = False
        self.auto_mode = settings.auto_mode
        self.session: Optional[AlertSession] = None
        self.last_session: Optional[AlertSession] = None
        self.dropped_events = 0

        self.queue: asyncio.Queue[MonitorEvent] = asyncio.Queue()
        self._loop_task: Optional[asyncio.Task] = None
        self._session_tasks: set[asyncio.Task] = set()
        self._running = False

    @property
    def is_running(self) -> bool:
        return self._running

    async def start(self) -> None:
        """Request sensor access and begin consuming samples."""
        if self._running:
            logger.warning("Monitor already running")
            return

        if not await self.sensor_source.request_permission():
            logger.error("Accelerometer permission denied")
            raise PermissionDenied("accelerometer")

        self.sensor_source.set_rate(self.settings.sensor_rate_ms)
        self.sensor_source.register(self._on_sample)
        self._running = True
        self._loop_task = asyncio.create_task(self._run_loop())

        if not self.auto_mode:
            self.arm()
        logger.info(
            "Monitor started",
            sensitivity=self.sensitivity.value,
            auto_mode=self.auto_mode,
            rate_ms=self.settings.sensor_rate_ms,
        )

    async def stop(self) -> None:
        self.sensor_source.unregister()
        if not self._running:
            return

        logger.info("Stopping monitor")
        self._running = False
        if self.session is not None and self.session.is_active:
            await self.session.cancel()

        tasks = [task for task in (self._loop_task, *self._session_tasks) if task is not None]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._loop_task = None
        self._session_tasks.clear()
        logger.info("Monitor stopped")

    def _on_sample(self, sample: SensorSample) -> None:
        self.queue.put_nowait(MonitorEvent(kind=MonitorEventKind.SAMPLE, sample=sample))

    async def _run_loop(self) -> None:
        try:
            while True:
                event = await self.queue.get()
                try:
                    await self._handle_event(event)
                except Exception as e:
                    logger.error("Error handling monitor event", kind=event.kind.value, error=str(e))
                    if event.reply is not None and not event.reply.done():
                        event.reply.set_exception(e)
                finally:
                    self.queue.task_done()
        except asyncio.CancelledError:
            logger.info("Monitor loop cancelled")

    async def _handle_event(self, event: MonitorEvent) -> None:
        if event.kind == MonitorEventKind.SAMPLE and event.sample is not None:
            self._handle_sample(event.sample)
        elif event.kind == MonitorEventKind.MANUAL_TRIGGER:
            session = self._start_session(SessionTrigger.MANUAL)
            if event.reply is not None and not event.reply.done():
                if session is None:
                    event.reply.set_exception(SessionError("An alert is already active"))
                else:
                    event.reply.set_result(session.snapshot())

    def _handle_sample(self, sample: SensorSample) -> None:
        # Pocket timing runs on the monitor clock, the same base as background ticks
        now = self.clock.now()
        deviation = abs(sample.magnitude - self.settings.gravity_baseline)
        self.pocket.observe_sample(now, deviation)
        change = self.pocket.tick(now)
        if change is not None:
            self._apply_pocket_change(change)

        if not self.armed:
            return

        event = self.classifier.ingest(sample)
        if event is None:
            return

        self.pocket.observe_motion(event, at=now)
        self._start_session(SessionTrigger.MOTION)

    def evaluate_pocket(
        self, now: Optional[float] = None, light_level: Optional[float] = None
    ) -> Optional[PocketStateChange]:
        """Re-run the pocket heuristic outside the sample path (background ticks)."""
        now = self.clock.now() if now is None else now
        change = self.pocket.tick(now, light_level=light_level)
        if change is not None:
            self._apply_pocket_change(change)
        return change

    def _apply_pocket_change(self, change: PocketStateChange) -> None:
        if not self.auto_mode:
            return
        if change.in_pocket and not self.armed:
            logger.info("Auto mode: device stowed, arming")
            self.arm()
        elif not change.in_pocket and self.armed:
            logger.info("Auto mode: device taken out, disarming")
            self.disarm()

    def _start_session(self, trigger: SessionTrigger) -> Optional[AlertSession]:
        if self.session is not None and self.session.is_active:
            self.dropped_events += 1
            logger.info(
                "Alert already active, trigger dropped",
                trigger=trigger.value,
                session_id=self.session.session_id,
            )
            return None

        if self.session is not None:
            self.last_session = self.session

        session = AlertSession(
            trigger=trigger,
            capture=self.capture,
            dispatcher=self.dispatcher,
            cameras=self.cameras,
            contacts=self.contacts,
            settings=self.settings,
            alarm=self.alarm,
            clock=self.clock,
            on_transition=self.on_transition,
        )
        self.session = session
        logger.warning("Alert session started", session_id=session.session_id, trigger=trigger.value)

        task = asyncio.create_task(self._run_session(session))
        self._session_tasks.add(task)
        task.add_done_callback(self._session_tasks.discard)
        return session

    async def _run_session(self, session: AlertSession) -> None:
        # Each task has its own context copy
        structlog.contextvars.bind_contextvars(alert_session=session.session_id)
        snapshot = await session.run()
        if snapshot.state == SessionState.RESOLVED:
            await self.clock.sleep(self.settings.resolved_display_seconds)
        if self.session is session:
            self.last_session = session
            self.session = None
            logger.info("Monitor idle", last_state=snapshot.state.value)

    async def trigger_manual(self) -> SessionSnapshot:
        """Start an alert without a motion event."""
        if not self._running:
            raise SessionError("Monitor is not running")
        if self.session is not None and self.session.is_active:
            raise SessionError("An alert is already active")

        reply = asyncio.get_running_loop().create_future()
        self.queue.put_nowait(MonitorEvent(kind=MonitorEventKind.MANUAL_TRIGGER, reply=reply))
        return await reply

    async def cancel_session(self) -> SessionSnapshot:
        session = self.session
        if session is None or not session.is_active:
            raise SessionError("No active alert to cancel")
        await session.cancel()
        return session.snapshot()

    async def retry_dispatch(self) -> SessionSnapshot:
        """Redispatch the evidence of the most recent failed session."""
        if self.session is not None and self.session.is_active:
            raise SessionError("An alert is already active")

        candidate = next(
            (
                session
                for session in (self.session, self.last_session)
                if session is not None and session.state == SessionState.FAILED
            ),
            None,
        )
        if candidate is None:
            raise SessionError("No failed alert to retry")

        if self.session is not None and self.session is not candidate:
            self.last_session = self.session
        self.session = candidate
        try:
            return await candidate.retry_dispatch()
        finally:
            if self.session is candidate:
                self.last_session = candidate
                self.session = None

    async def test_dispatch(self) -> DispatchReport:
        """Send a test alert to every contact, without countdown or capture."""
        contacts = list(await self.contacts.get_contacts())
        if not contacts:
            raise SessionError("No emergency contacts configured")

        evidence = CaptureResult(
            per_device={"test": MediaRef(uri=TEST_MEDIA_URI, device_id="test")},
            timestamp=self.clock.now(),
        )
        logger.info("Sending test alert", contacts=len(contacts))
        report = await self.dispatcher.dispatch(evidence, contacts)
        logger.info(
            "Test alert finished",
            successful_contacts=report.successful_contacts,
            contacts=len(contacts),
        )
        return report

    def arm(self) -> None:
        self.classifier.reset()
        self.armed = True
        logger.info("Monitoring armed", sensitivity=self.sensitivity.value)

    def disarm(self) -> None:
        self.armed = False
        self.classifier.reset()
        logger.info("Monitoring disarmed")

    def set_auto_mode(self, enabled: bool) -> None:
        self.auto_mode = enabled
        logger.info("Auto mode changed", enabled=enabled, in_pocket=self.pocket.in_pocket)
        if enabled:
            if self.pocket.in_pocket and not self.armed:
                self.arm()
            elif not self.pocket.in_pocket and self.armed:
                self.disarm()

    def set_sensitivity(self, level: SensitivityLevel) -> None:
        self.sensitivity = level
        self.classifier.set_profile(SENSITIVITY_PROFILES[level])

    def get_status(self) -> MonitorStatus:
        return MonitorStatus(
            running=self._running,
            armed=self.armed,
            auto_mode=self.auto_mode,
            in_pocket=self.pocket.in_pocket,
            sensitivity=self.sensitivity,
            buffered_samples=len(self.classifier.motion_buffer),
            last_motion_time=self.classifier.last_motion_time,
            session=self.session.snapshot() if self.session else None,
            last_session=self.last_session.snapshot() if self.last_session else None,
        )
