"""Configuration for the pocket guardian service."""

from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from .models import SENSITIVITY_PROFILES, EmergencyContact, SensitivityLevel, SensitivityProfile


class Settings(BaseSettings):
    """Application settings with GUARDIAN_ prefix."""

    model_config = SettingsConfigDict(
        env_prefix="GUARDIAN_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # Service settings
    service_name: str = "pocket-guardian"
    host: str = "127.0.0.1"
    port: int = 8080
    log_level: str = "INFO"
    log_format: str = "console"  # json or console
    environment: str = "development"

    # Motion classification
    sensitivity: SensitivityLevel = SensitivityLevel.MEDIUM
    sensor_rate_ms: int = Field(default=500, ge=100, le=1000)
    gravity_baseline: float = 9.81  # m/s²
    base_threshold: float = 3.0  # scaled by the profile multiplier
    stddev_threshold: float = 1.5
    clear_buffer_on_event: bool = True

    # Pocket heuristic
    auto_mode: bool = False
    pocket_enter_quiet_seconds: float = 10.0
    pocket_exit_quiet_seconds: float = 2.0
    pocket_enter_dwell_seconds: float = 3.0
    pocket_exit_dwell_seconds: float = 2.0
    pocket_activity_threshold: float = 1.5  # m/s² away from gravity
    pocket_light_threshold_lux: float = 10.0
    pocket_light_max_age_seconds: float = 150.0  # a light reading outlives a few background ticks

    # Alert session
    countdown_seconds: int = 5
    countdown_tick_seconds: float = 1.0
    countdown_grace_seconds: int = 3
    max_countdown_extensions: int = 2
    max_capture_attempts: int = 3
    capture_retry_backoff_seconds: float = 5.0
    resolved_display_seconds: float = 3.0
    alarm_timeout_seconds: float = 5.0

    # Capture
    camera_ready_timeout_seconds: float = 5.0
    camera_ready_poll_seconds: float = 0.2
    capture_timeout_seconds: float = 15.0
    camera_urls: dict[str, str] = Field(default_factory=dict)  # device_id -> snapshot URL
    media_dir: str = "./media"

    # Dispatch
    contacts: list[EmergencyContact] = Field(default_factory=list)
    dispatch_channel_timeout_seconds: float = 30.0
    dispatch_max_concurrent_contacts: int = 5
    relay_base_url: str = "http://localhost:8025"
    relay_api_key: Optional[str] = None

    # Background execution
    background_interval_seconds: float = Field(default=60.0, ge=15.0)
    background_stale_after_seconds: float = 600.0
    light_sensor_timeout_seconds: float = 2.0

    def profile(self) -> SensitivityProfile:
        """Resolve the active sensitivity profile."""
        return SENSITIVITY_PROFILES[self.sensitivity]


# Global settings instance
settings = Settings()
