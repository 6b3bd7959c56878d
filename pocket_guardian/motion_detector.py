"""Jolt detection on accelerometer data."""

from collections import deque
from typing import Callable, Optional

import numpy as np
import structlog

from .models import MotionEvent, MotionTelemetry, SensitivityProfile, SensorSample

logger = structlog.get_logger(__name__)

TelemetrySink = Callable[[MotionTelemetry], None]


class SampleClassifier:
    """Turns a sample stream into discrete motion events.

    A candidate fires only when the buffer is both jerky (high standard
    deviation) and displaced from gravity (mean far from the baseline).
    Accepted events are rate limited by the profile cooldown.
    """

    def __init__(
        self,
        profile: SensitivityProfile,
        *,
        gravity_baseline: float = 9.81,
        base_threshold: float = 3.0,
        stddev_threshold: float = 1.5,
        clear_on_event: bool = True,
        telemetry_sink: Optional[TelemetrySink] = None,
    ):
        self._profile = profile
        self.gravity_baseline = gravity_baseline
        self.base_threshold = base_threshold
        self.stddev_threshold = stddev_threshold
        self.clear_on_event = clear_on_event
        self.telemetry_sink = telemetry_sink
        self.motion_buffer: deque[float] = deque(maxlen=profile.buffer_capacity)
        self.last_motion_time: Optional[float] = None
        self.event_counter = 0
        self.suppressed_counter = 0

    @property
    def profile(self) -> SensitivityProfile:
        return self._profile

    def set_profile(self, profile: SensitivityProfile) -> None:
        """Swap the active profile and start over with an empty buffer."""
        self._profile = profile
        self.motion_buffer = deque(maxlen=profile.buffer_capacity)
        logger.info(
            "Sensitivity profile changed",
            sensitivity=profile.name.value,
            multiplier=profile.threshold_multiplier,
            cooldown_ms=profile.cooldown_ms,
        )

    def reset(self) -> None:
        self.motion_buffer.clear()

    @property
    def threshold(self) -> float:
        return self.base_threshold * self._profile.threshold_multiplier

    def seconds_since_last_motion(self, now: float) -> Optional[float]:
        if self.last_motion_time is None:
            return None
        return now - self.last_motion_time

    def ingest(self, sample: SensorSample) -> Optional[MotionEvent]:
        """Add a reading and return a MotionEvent if it completes a jolt."""
        magnitude = sample.magnitude
        self._emit_telemetry(sample, magnitude)

        self.motion_buffer.append(magnitude)

        # Need enough samples for analysis
        if len(self.motion_buffer) < self._profile.min_samples:
            return None

        magnitudes = np.fromiter(self.motion_buffer, dtype=float)
        mean = float(np.mean(magnitudes))
        std = float(np.std(magnitudes))
        deviation = abs(mean - self.gravity_baseline)

        is_jerky = std > self.stddev_threshold
        is_sharp = deviation > self.threshold
        if not (is_jerky and is_sharp):
            return None

        if self._in_cooldown(sample.timestamp):
            self.suppressed_counter += 1
            logger.debug(
                "Motion candidate suppressed by cooldown",
                seconds_since_last=sample.timestamp - self.last_motion_time,
                cooldown_ms=self._profile.cooldown_ms,
            )
            return None

        event = MotionEvent(
            timestamp=sample.timestamp,
            peak_magnitude=float(np.max(magnitudes)),
            mean_magnitude=mean,
            stddev=std,
            deviation=deviation,
            sample_count=len(magnitudes),
        )

        self.last_motion_time = sample.timestamp
        self.event_counter += 1
        if self.clear_on_event:
            self.motion_buffer.clear()

        logger.info(
            "Detected motion",
            mean=round(mean, 2),
            stddev=round(std, 2),
            deviation=round(deviation, 2),
            threshold=round(self.threshold, 2),
        )
        return event

    def _in_cooldown(self, timestamp: float) -> bool:
        if self.last_motion_time is None:
            return False
        return (timestamp - self.last_motion_time) * 1000 < self._profile.cooldown_ms

    def _emit_telemetry(self, sample: SensorSample, magnitude: float) -> None:
        if self.telemetry_sink is None:
            return
        telemetry = MotionTelemetry(
            timestamp=sample.timestamp,
            magnitude=magnitude,
            seconds_since_last_motion=self.seconds_since_last_motion(sample.timestamp),
        )
        try:
            self.telemetry_sink(telemetry)
        except Exception as e:
            logger.warning("Telemetry sink failed", error=str(e))
