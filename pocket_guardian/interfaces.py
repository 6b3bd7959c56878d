"""Collaborator interfaces the core depends on.

Drivers, transports and host facilities live outside the core; they are
wired in through these protocols.
"""

from enum import Enum
from typing import Awaitable, Callable, Optional, Protocol, Sequence

from .models import ChannelKind, EmergencyContact, MediaRef, SensorSample

SampleCallback = Callable[[SensorSample], None]
ReadyCallback = Callable[[], None]
TickCallback = Callable[[], Awaitable[object]]


class SensorSource(Protocol):
    """Push stream of accelerometer samples."""

    async def request_permission(self) -> bool:
        ...

    def set_rate(self, interval_ms: int) -> None:
        ...

    def register(self, callback: SampleCallback) -> None:
        ...

    def unregister(self) -> None:
        """Stop delivering samples. Safe to call more than once."""
        ...


class CameraHandle(Protocol):
    device_id: str

    def is_ready(self) -> bool:
        ...

    def on_ready(self, callback: ReadyCallback) -> None:
        """Register the single ready callback, replacing any previous one."""
        ...

    async def capture(self) -> MediaRef:
        ...


class MediaStore(Protocol):
    async def save(self, media: MediaRef) -> MediaRef:
        ...


class ContactProvider(Protocol):
    async def get_contacts(self) -> list[EmergencyContact]:
        ...


class Channel(Protocol):
    """One delivery transport. Returns False or raises on failure."""

    kind: ChannelKind

    async def send(self, destination: str, message: str, media: Sequence[MediaRef]) -> bool:
        ...


class AlarmNotifier(Protocol):
    async def start_alarm(self) -> None:
        ...

    async def stop_alarm(self) -> None:
        ...

    async def notify(self, title: str, body: str) -> None:
        ...


class LightSensor(Protocol):
    async def read_lux(self) -> Optional[float]:
        ...


class BackgroundAvailability(str, Enum):
    AVAILABLE = "available"
    RESTRICTED = "restricted"
    DENIED = "denied"


class BackgroundFacility(Protocol):
    """Host facility that invokes a callback periodically while backgrounded."""

    async def availability(self) -> BackgroundAvailability:
        ...

    async def register(self, callback: TickCallback, interval_seconds: float) -> None:
        ...

    async def unregister(self) -> None:
        ...

    def is_registered(self) -> bool:
        ...
