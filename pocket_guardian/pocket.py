"""Stowed-vs-exposed heuristic used to gate automatic arming."""

from typing import Optional

import structlog

from .models import MotionEvent, PocketSource, PocketState, PocketStateChange

logger = structlog.get_logger(__name__)


class PocketHeuristic:
    """Derives pocket state from quiet time, or from ambient light when available.

    A light reading stays authoritative for ``light_max_age_seconds`` after it
    was taken, whichever caller ticks the heuristic in the meantime. Entering
    and leaving use different quiet thresholds, and any differing raw reading
    must persist for a dwell time before the state flips.
    """

    def __init__(
        self,
        *,
        enter_quiet_seconds: float = 10.0,
        exit_quiet_seconds: float = 2.0,
        enter_dwell_seconds: float = 3.0,
        exit_dwell_seconds: float = 2.0,
        activity_threshold: float = 1.5,
        light_threshold_lux: float = 10.0,
        light_max_age_seconds: float = 150.0,
    ):
        if exit_quiet_seconds >= enter_quiet_seconds:
            raise ValueError("exit_quiet_seconds must be below enter_quiet_seconds")
        self.enter_quiet_seconds = enter_quiet_seconds
        self.exit_quiet_seconds = exit_quiet_seconds
        self.enter_dwell_seconds = enter_dwell_seconds
        self.exit_dwell_seconds = exit_dwell_seconds
        self.activity_threshold = activity_threshold
        self.light_threshold_lux = light_threshold_lux
        self.light_max_age_seconds = light_max_age_seconds

        self.state = PocketState()
        self.samples_seen = 0
        self.last_activity_time: Optional[float] = None
        self.last_light_level: Optional[float] = None
        self.last_light_time: Optional[float] = None
        self._pending_since: Optional[float] = None

    @property
    def in_pocket(self) -> bool:
        return self.state.in_pocket

    def observe_sample(self, timestamp: float, deviation: float) -> None:
        """Record a sample; large deviations from gravity count as activity."""
        self.samples_seen += 1
        if self.last_activity_time is None or deviation > self.activity_threshold:
            self.last_activity_time = timestamp

    def observe_motion(self, event: MotionEvent, at: Optional[float] = None) -> None:
        """An accepted motion event is activity, at ``at`` or the event's own time."""
        self.last_activity_time = event.timestamp if at is None else at

    def observe_light(self, timestamp: float, lux: float) -> None:
        self.last_light_level = lux
        self.last_light_time = timestamp

    def current_light(self, now: float) -> Optional[float]:
        """Last light reading, or None once it is older than the max age."""
        if self.last_light_time is None:
            return None
        if now - self.last_light_time > self.light_max_age_seconds:
            return None
        return self.last_light_level

    def quiet_seconds(self, now: float) -> Optional[float]:
        if self.last_activity_time is None:
            return None
        return max(0.0, now - self.last_activity_time)

    def tick(self, now: float, light_level: Optional[float] = None) -> Optional[PocketStateChange]:
        """Evaluate the heuristic; returns a change only on a confirmed transition."""
        if light_level is not None:
            self.observe_light(now, light_level)
        raw, source = self._raw_state(now)

        if raw == self.state.in_pocket:
            self._pending_since = None
            return None

        if self._pending_since is None:
            self._pending_since = now
            return None

        dwell = self.enter_dwell_seconds if raw else self.exit_dwell_seconds
        if now - self._pending_since < dwell:
            return None

        self._pending_since = None
        self.state = PocketState(in_pocket=raw, since=now)
        logger.info("Pocket state changed", in_pocket=raw, source=source.value)
        return PocketStateChange(in_pocket=raw, since=now, source=source)

    def _raw_state(self, now: float) -> tuple[bool, PocketSource]:
        light_level = self.current_light(now)
        if light_level is not None:
            return light_level < self.light_threshold_lux, PocketSource.LIGHT

        quiet = self.quiet_seconds(now)
        if quiet is None or self.samples_seen == 0:
            return False, PocketSource.QUIET

        if self.state.in_pocket:
            return quiet >= self.exit_quiet_seconds, PocketSource.QUIET
        return quiet > self.enter_quiet_seconds, PocketSource.QUIET
