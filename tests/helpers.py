"""In-memory collaborators and a deterministic clock for tests."""

import asyncio
from typing import Optional, Sequence, Union

from pocket_guardian.models import (
    ChannelKind,
    EmergencyContact,
    MediaKind,
    MediaRef,
    SensorSample,
)


class FakeClock:
    """Clock whose sleeps advance virtual time and only yield to the loop."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.time = start
        self.sleeps: list[float] = []

    def now(self) -> float:
        return self.time

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.time += max(0.0, seconds)
        await asyncio.sleep(0)


class HoldingClock(FakeClock):
    """FakeClock that parks any sleep of exactly ``hold`` seconds until released."""

    def __init__(self, hold: float):
        super().__init__()
        self.hold = hold
        self.holding = asyncio.Event()
        self.release = asyncio.Event()

    async def sleep(self, seconds: float) -> None:
        await super().sleep(seconds)
        if seconds == self.hold:
            self.holding.set()
            await self.release.wait()


class FakeCamera:
    def __init__(
        self,
        device_id: str,
        *,
        ready: bool = True,
        error: Optional[Exception] = None,
        media: Optional[MediaRef] = None,
    ):
        self.device_id = device_id
        self.ready = ready
        self.error = error
        self.media = media or MediaRef(uri=f"file:///tmp/{device_id}.jpg", kind=MediaKind.PHOTO)
        self.capture_calls = 0
        self.ready_callback = None

    def is_ready(self) -> bool:
        return self.ready

    def on_ready(self, callback) -> None:
        self.ready_callback = callback

    def become_ready(self) -> None:
        self.ready = True
        if self.ready_callback is not None:
            self.ready_callback()

    async def capture(self) -> MediaRef:
        self.capture_calls += 1
        if self.error is not None:
            raise self.error
        return self.media


class FakeChannel:
    """Channel returning a fixed result, or a per-destination result."""

    def __init__(
        self,
        kind: ChannelKind,
        result: Union[bool, Exception] = True,
        per_destination: Optional[dict] = None,
    ):
        self.kind = kind
        self.result = result
        self.per_destination = per_destination or {}
        self.calls: list[tuple[str, str, list[MediaRef]]] = []

    async def send(self, destination: str, message: str, media: Sequence[MediaRef]) -> bool:
        self.calls.append((destination, message, list(media)))
        result = self.per_destination.get(destination, self.result)
        if isinstance(result, Exception):
            raise result
        return result


class FakeContacts:
    def __init__(self, contacts: Sequence[EmergencyContact]):
        self.contacts = list(contacts)
        self.calls = 0

    async def get_contacts(self) -> list[EmergencyContact]:
        self.calls += 1
        return list(self.contacts)


class FakeAlarm:
    def __init__(self):
        self.events: list[str] = []
        self.notifications: list[tuple[str, str]] = []

    async def start_alarm(self) -> None:
        self.events.append("start")

    async def stop_alarm(self) -> None:
        self.events.append("stop")

    async def notify(self, title: str, body: str) -> None:
        self.notifications.append((title, body))


def make_sample(timestamp: float, magnitude: float = 9.81) -> SensorSample:
    """Sample whose magnitude lies entirely on the z axis."""
    return SensorSample(x=0.0, y=0.0, z=magnitude, timestamp=timestamp)


