"""Alert session state machine: countdown, capture, dispatch, resolution."""

import asyncio
import uuid
from typing import Awaitable, Callable, Optional, Sequence

import structlog

from .capture import CaptureCoordinator
from .clock import Clock, SystemClock
from .config import Settings
from .dispatch import ALERT_TITLE, DispatchFanout
from .errors import AllChannelsFailed, CaptureError, SessionError
from .interfaces import AlarmNotifier, CameraHandle, ContactProvider
from .models import (
    CaptureResult,
    DispatchReport,
    EmergencyContact,
    SessionSnapshot,
    SessionState,
    SessionTrigger,
)

logger = structlog.get_logger(__name__)

TransitionObserver = Callable[[SessionSnapshot], None]


class AlertSession:
    """One alert from trigger to resolution.

    ``cancel()`` changes state before its first await, and the countdown and
    capture stages check for cancellation after every sleep, so a cancel
    during the countdown always wins over capture.
    """

    def __init__(
        self,
        *,
        trigger: SessionTrigger,
        capture: CaptureCoordinator,
        dispatcher: DispatchFanout,
        cameras: Sequence[CameraHandle],
        contacts: ContactProvider,
        settings: Settings,
        alarm: Optional[AlarmNotifier] = None,
        clock: Optional[Clock] = None,
        on_transition: Optional[TransitionObserver] = None,
        session_id: Optional[str] = None,
    ):
        self.session_id = session_id or str(uuid.uuid4())
        self.trigger = trigger
        self.capture = capture
        self.dispatcher = dispatcher
        self.cameras = list(cameras)
        self.contact_provider = contacts
        self.settings = settings
        self.alarm = alarm
        self.clock = clock or SystemClock()
        self.on_transition = on_transition

        self.state = SessionState.IDLE
        self.started_at: Optional[float] = None
        self.countdown_remaining = settings.countdown_seconds
        self.countdown_extensions = 0
        self.capture_attempts = 0
        self.last_error: Optional[str] = None
        self.status_message = ""
        self.evidence: Optional[CaptureResult] = None
        self.report: Optional[DispatchReport] = None
        self._contacts: Optional[list[EmergencyContact]] = None

    @property
    def is_active(self) -> bool:
        return not self.state.is_terminal

    @property
    def cancelled(self) -> bool:
        return self.state == SessionState.CANCELLED

    def snapshot(self) -> SessionSnapshot:
        return SessionSnapshot(
            session_id=self.session_id,
            state=self.state,
            trigger=self.trigger,
            started_at=self.started_at,
            countdown_remaining=self.countdown_remaining,
            countdown_extensions=self.countdown_extensions,
            capture_attempts=self.capture_attempts,
            last_error=self.last_error,
            status_message=self.status_message,
            evidence=self.evidence,
            report=self.report,
        )

    async def start(self) -> None:
        if self.state != SessionState.IDLE:
            raise SessionError(f"Session {self.session_id} already started ({self.state.value})")

        self.started_at = self.clock.now()
        self.countdown_remaining = self.settings.countdown_seconds
        self._transition(
            SessionState.COUNTDOWN_ACTIVE,
            f"Alert in {self.countdown_remaining}s unless cancelled",
        )
        await self._alarm_call("start_alarm")
        body = (
            "Unusual movement detected. Cancel within "
            f"{self.countdown_remaining} seconds if you are safe."
        )
        if self.trigger == SessionTrigger.MANUAL:
            body = f"Manual alert started. Sending in {self.countdown_remaining} seconds."
        await self._alarm_call("notify", "Motion detected", body)

    async def tick(self) -> SessionState:
        """Advance the countdown by one step."""
        if self.state != SessionState.COUNTDOWN_ACTIVE:
            return self.state

        self.countdown_remaining = max(0, self.countdown_remaining - 1)
        if self.countdown_remaining > 0:
            self.status_message = f"Alert in {self.countdown_remaining}s unless cancelled"
            return self.state

        if CaptureCoordinator.any_ready(self.cameras):
            self._transition(SessionState.CAPTURING, "Capturing evidence")
        elif self.countdown_extensions < self.settings.max_countdown_extensions:
            self.countdown_extensions += 1
            self.countdown_remaining = self.settings.countdown_grace_seconds
            self.status_message = (
                f"Waiting for camera, alert in {self.countdown_remaining}s"
            )
            logger.info(
                "Countdown extended, no camera ready",
                session_id=self.session_id,
                extension=self.countdown_extensions,
                remaining=self.countdown_remaining,
            )
        else:
            logger.warning(
                "Cameras still not ready, capturing anyway",
                session_id=self.session_id,
                extensions=self.countdown_extensions,
            )
            self._transition(SessionState.CAPTURING, "Capturing evidence")
        return self.state

    async def cancel(self) -> bool:
        """Cancel the session. Returns False if it had already finished."""
        if self.state.is_terminal:
            return False

        previous = self.state
        self._transition(SessionState.CANCELLED, "Alert cancelled")
        if previous in (SessionState.CAPTURING, SessionState.DISPATCHING):
            logger.info(
                "Cancelled during in-flight stage, results will be discarded",
                session_id=self.session_id,
                stage=previous.value,
            )
        await self._alarm_call("stop_alarm")
        return True

    async def run(self) -> SessionSnapshot:
        """Drive the session until it reaches a terminal state."""
        try:
            if self.state == SessionState.IDLE:
                await self.start()

            while self.state == SessionState.COUNTDOWN_ACTIVE:
                await self.clock.sleep(self.settings.countdown_tick_seconds)
                if self.state != SessionState.COUNTDOWN_ACTIVE:
                    break
                await self.tick()

            if self.state == SessionState.CAPTURING:
                await self._alarm_call("stop_alarm")
                await self._capture_stage()

            if self.state == SessionState.DISPATCHING:
                await self._dispatch_stage()

        except SessionError:
            raise
        except Exception as e:
            logger.error(
                "Alert session crashed",
                session_id=self.session_id,
                state=self.state.value,
                error=str(e),
            )
            if not self.state.is_terminal:
                self.last_error = str(e)
                self._transition(SessionState.FAILED, f"Alert failed: {e}")

        return self.snapshot()

    async def retry_dispatch(self) -> SessionSnapshot:
        """Send the retained evidence again without a new countdown or capture."""
        if self.state != SessionState.FAILED or self.evidence is None:
            raise SessionError("Nothing to redispatch: no failed session with evidence")

        logger.info("Retrying dispatch", session_id=self.session_id)
        self.last_error = None
        self._transition(SessionState.DISPATCHING, "Retrying alert delivery")
        await self._dispatch_stage()
        return self.snapshot()

    async def _capture_stage(self) -> None:
        max_attempts = self.settings.max_capture_attempts
        while self.state == SessionState.CAPTURING:
            self.capture_attempts += 1
            try:
                evidence = await self.capture.capture(self.cameras)
            except CaptureError as e:
                if self.cancelled:
                    return
                self.last_error = str(e)
                logger.warning(
                    "Capture attempt failed",
                    session_id=self.session_id,
                    attempt=self.capture_attempts,
                    max_attempts=max_attempts,
                    error=str(e),
                )
                if self.capture_attempts >= max_attempts:
                    self._transition(
                        SessionState.FAILED,
                        f"Capture failed after {self.capture_attempts} attempts: {e}",
                    )
                    await self._alarm_call("notify", ALERT_TITLE, "Evidence could not be captured.")
                    return
                self.status_message = (
                    f"Capture failed, retrying ({self.capture_attempts}/{max_attempts})"
                )
                await self.clock.sleep(self.settings.capture_retry_backoff_seconds)
                continue

            if self.cancelled:
                logger.info("Discarding capture result for cancelled session", session_id=self.session_id)
                return
            self.evidence = evidence
            self._transition(
                SessionState.DISPATCHING,
                f"Sending evidence from {len(evidence.per_device)} camera(s)",
            )

    async def _dispatch_stage(self) -> None:
        try:
            contacts = await self._get_contacts()
        except Exception as e:
            self.last_error = str(e)
            logger.error("Failed to load contacts", session_id=self.session_id, error=str(e))
            self._transition(SessionState.FAILED, f"Could not load emergency contacts: {e}")
            return

        if not contacts:
            self.last_error = "No emergency contacts configured"
            self._transition(SessionState.FAILED, self.last_error)
            return

        report = await self.dispatcher.dispatch(self.evidence, contacts)
        if self.cancelled:
            logger.info("Discarding dispatch report for cancelled session", session_id=self.session_id)
            return

        self.report = report
        if report.success:
            message = f"Alert sent to {report.successful_contacts} of {len(contacts)} contact(s)"
            self._transition(SessionState.RESOLVED, message)
            await self._alarm_call("notify", ALERT_TITLE, message)
        else:
            error = AllChannelsFailed(len(contacts))
            self.last_error = str(error)
            self._transition(SessionState.FAILED, f"{error}. Evidence kept, retry possible")
            await self._alarm_call("notify", ALERT_TITLE, str(error))

    async def _get_contacts(self) -> list[EmergencyContact]:
        if self._contacts is None:
            self._contacts = list(await self.contact_provider.get_contacts())
        return self._contacts

    def _transition(self, new_state: SessionState, message: str) -> None:
        previous = self.state
        self.state = new_state
        self.status_message = message
        logger.info(
            "Session state changed",
            session_id=self.session_id,
            from_state=previous.value,
            to_state=new_state.value,
            message=message,
        )
        if self.on_transition is not None:
            try:
                self.on_transition(self.snapshot())
            except Exception as e:
                logger.warning("Transition observer failed", session_id=self.session_id, error=str(e))

    async def _alarm_call(self, action: str, *args: str) -> None:
        if self.alarm is None:
            return
        call: Callable[..., Awaitable[None]] = getattr(self.alarm, action)
        try:
            await asyncio.wait_for(call(*args), timeout=self.settings.alarm_timeout_seconds)
        except Exception as e:
            logger.warning("Alarm call failed", action=action, session_id=self.session_id, error=str(e))
