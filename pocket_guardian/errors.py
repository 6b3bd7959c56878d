"""Exception taxonomy for the alerting pipeline."""

from typing import Optional


class GuardianError(Exception):
    """Base class for all pipeline errors."""


class PermissionDenied(GuardianError):
    """A sensor or camera permission was refused. Fatal to initialization."""

    def __init__(self, resource: str):
        super().__init__(f"Permission denied for {resource}")
        self.resource = resource


class CaptureError(GuardianError):
    """Capture stage failed; retried by the session up to its attempt cap."""


class NoDeviceReady(CaptureError):
    def __init__(self, timeout: float):
        super().__init__(f"No camera became ready within {timeout:.1f}s")
        self.timeout = timeout


class AllCapturesFailed(CaptureError):
    def __init__(self, failures: dict[str, str]):
        detail = ", ".join(f"{device}: {error}" for device, error in failures.items())
        super().__init__(f"All camera captures failed ({detail})")
        self.failures = failures


class ChannelSendFailed(GuardianError):
    """One channel failed for one contact. Absorbed into a DispatchOutcome."""

    def __init__(self, channel: str, contact_id: str, reason: Optional[str] = None):
        message = f"{channel} send to {contact_id} failed"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)
        self.channel = channel
        self.contact_id = contact_id
        self.reason = reason


class AllChannelsFailed(GuardianError):
    """No channel succeeded for any contact. Evidence is kept for redispatch."""

    def __init__(self, contact_count: int):
        super().__init__(
            f"Emergency alert could not be delivered to any of {contact_count} contacts"
        )
        self.contact_count = contact_count


class SchedulerUnavailable(GuardianError):
    """Background execution was denied; monitoring continues in the foreground."""

    def __init__(self, availability: str):
        super().__init__(f"Background execution unavailable ({availability})")
        self.availability = availability


class SessionError(GuardianError):
    """A manual session action is not valid in the current state."""
