"""Data models for motion classification, alert sessions and dispatch."""

import math
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator


class SensorSample(BaseModel):
    """Single 3-axis accelerometer reading."""

    x: float = Field(description="X-axis acceleration in m/s²")
    y: float = Field(description="Y-axis acceleration in m/s²")
    z: float = Field(description="Z-axis acceleration in m/s²")
    timestamp: float = Field(description="Sample time in seconds")

    @property
    def magnitude(self) -> float:
        return math.sqrt(self.x**2 + self.y**2 + self.z**2)


class SensitivityLevel(str, Enum):
    """Named sensitivity presets."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class SensitivityProfile(BaseModel):
    """Immutable classifier tuning. Replacing the active profile resets the buffer."""

    model_config = ConfigDict(frozen=True)

    name: SensitivityLevel
    threshold_multiplier: float = Field(gt=0.0)
    cooldown_ms: int = Field(ge=0)
    buffer_capacity: int = Field(ge=1)
    min_samples: int = Field(ge=1)

    @model_validator(mode="after")
    def _check_min_samples(self) -> "SensitivityProfile":
        if self.min_samples > self.buffer_capacity:
            raise ValueError("min_samples cannot exceed buffer_capacity")
        return self


SENSITIVITY_PROFILES: dict[SensitivityLevel, SensitivityProfile] = {
    SensitivityLevel.LOW: SensitivityProfile(
        name=SensitivityLevel.LOW,
        threshold_multiplier=2.5,
        cooldown_ms=15000,
        buffer_capacity=8,
        min_samples=7,
    ),
    SensitivityLevel.MEDIUM: SensitivityProfile(
        name=SensitivityLevel.MEDIUM,
        threshold_multiplier=1.0,
        cooldown_ms=10000,
        buffer_capacity=8,
        min_samples=7,
    ),
    SensitivityLevel.HIGH: SensitivityProfile(
        name=SensitivityLevel.HIGH,
        threshold_multiplier=0.8,
        cooldown_ms=8000,
        buffer_capacity=8,
        min_samples=5,
    ),
}


class MotionEvent(BaseModel):
    """Accepted jolt, emitted at most once per cooldown window."""

    timestamp: float
    peak_magnitude: float = Field(description="Largest buffered magnitude (m/s²)")
    mean_magnitude: float = Field(description="Mean buffered magnitude (m/s²)")
    stddev: float = Field(description="Population standard deviation of the buffer")
    deviation: float = Field(description="Distance of the mean from gravity (m/s²)")
    sample_count: int


class MotionTelemetry(BaseModel):
    """Per-sample observability tuple. Never feeds back into detection."""

    timestamp: float
    magnitude: float
    seconds_since_last_motion: Optional[float] = None


class PocketSource(str, Enum):
    QUIET = "quiet"
    LIGHT = "light"


class PocketState(BaseModel):
    in_pocket: bool = False
    since: float = 0.0


class PocketStateChange(BaseModel):
    in_pocket: bool
    since: float
    source: PocketSource


class MediaKind(str, Enum):
    PHOTO = "photo"
    VIDEO = "video"


class MediaRef(BaseModel):
    """Reference to a captured photo or video."""

    model_config = ConfigDict(frozen=True)

    uri: str
    kind: MediaKind = MediaKind.PHOTO
    duration_ms: Optional[int] = None
    device_id: Optional[str] = None


class CaptureResult(BaseModel):
    """Evidence produced by one capture pass. Immutable once produced."""

    model_config = ConfigDict(frozen=True)

    per_device: dict[str, MediaRef]
    failures: dict[str, str] = Field(default_factory=dict)
    timestamp: float

    @property
    def primary(self) -> Optional[MediaRef]:
        """Back camera media if present, otherwise the first captured item."""
        if "back" in self.per_device:
            return self.per_device["back"]
        return next(iter(self.per_device.values()), None)

    @property
    def media(self) -> list[MediaRef]:
        return list(self.per_device.values())


class EmergencyContact(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    phone: str
    email: Optional[str] = None


class ChannelKind(str, Enum):
    IMAGE = "image"
    SMS = "sms"
    EMAIL = "email"


class DispatchOutcome(BaseModel):
    """Result of one (contact, channel) attempt."""

    contact_id: str
    channel: ChannelKind
    success: bool
    error: Optional[str] = None


class ContactDispatchResult(BaseModel):
    contact_id: str
    contact_name: str
    outcomes: list[DispatchOutcome] = Field(default_factory=list)

    @property
    def success(self) -> bool:
        return any(outcome.success for outcome in self.outcomes)


class DispatchReport(BaseModel):
    """Aggregated fan-out result for one dispatch pass."""

    contacts: list[ContactDispatchResult] = Field(default_factory=list)
    started_at: float
    finished_at: float

    @property
    def outcomes(self) -> list[DispatchOutcome]:
        return [outcome for contact in self.contacts for outcome in contact.outcomes]

    @property
    def success(self) -> bool:
        return any(contact.success for contact in self.contacts)

    @property
    def successful_contacts(self) -> int:
        return sum(1 for contact in self.contacts if contact.success)


class SessionState(str, Enum):
    IDLE = "idle"
    COUNTDOWN_ACTIVE = "countdown_active"
    CAPTURING = "capturing"
    DISPATCHING = "dispatching"
    RESOLVED = "resolved"
    CANCELLED = "cancelled"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (SessionState.RESOLVED, SessionState.CANCELLED, SessionState.FAILED)


class SessionTrigger(str, Enum):
    MOTION = "motion"
    MANUAL = "manual"


class SessionSnapshot(BaseModel):
    """Read-only view of an alert session for callers."""

    session_id: str
    state: SessionState
    trigger: SessionTrigger
    started_at: Optional[float] = None
    countdown_remaining: int
    countdown_extensions: int = 0
    capture_attempts: int = 0
    last_error: Optional[str] = None
    status_message: str = ""
    evidence: Optional[CaptureResult] = None
    report: Optional[DispatchReport] = None

    @property
    def can_retry_dispatch(self) -> bool:
        return self.state == SessionState.FAILED and self.evidence is not None


class TickResult(BaseModel):
    """Outcome of one background tick."""

    timestamp: float
    armed: bool
    in_pocket: bool
    pocket_change: Optional[PocketStateChange] = None
    session_state: SessionState = SessionState.IDLE
    light_level: Optional[float] = None


class SchedulerStatus(BaseModel):
    available: bool
    registered: bool
    foreground_only: bool
    last_tick_at: Optional[float] = None
    tick_count: int = 0


class MonitorStatus(BaseModel):
    running: bool
    armed: bool
    auto_mode: bool
    in_pocket: bool
    sensitivity: SensitivityLevel
    buffered_samples: int
    last_motion_time: Optional[float] = None
    session: Optional[SessionSnapshot] = None
    last_session: Optional[SessionSnapshot] = None
