"""Shared fixtures for pocket guardian tests."""

import pytest

from pocket_guardian.capture import CaptureCoordinator
from pocket_guardian.collaborators import QueueSensorSource
from pocket_guardian.config import Settings
from pocket_guardian.dispatch import DispatchFanout
from pocket_guardian.models import ChannelKind, EmergencyContact
from pocket_guardian.monitor import GuardianMonitor
from tests.helpers import FakeAlarm, FakeCamera, FakeChannel, FakeClock, FakeContacts


@pytest.fixture
def test_settings() -> Settings:
    """Settings independent of the environment and any .env file."""
    return Settings(_env_file=None, environment="test", log_level="DEBUG")


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def contacts() -> list[EmergencyContact]:
    return [
        EmergencyContact(id="c1", name="Alice", phone="+491111", email="alice@example.com"),
        EmergencyContact(id="c2", name="Bob", phone="+492222"),
    ]


@pytest.fixture
def contact_provider(contacts) -> FakeContacts:
    return FakeContacts(contacts)


@pytest.fixture
def cameras() -> list[FakeCamera]:
    return [FakeCamera("back"), FakeCamera("front")]


@pytest.fixture
def channels() -> dict[ChannelKind, FakeChannel]:
    return {kind: FakeChannel(kind) for kind in ChannelKind}


@pytest.fixture
def alarm() -> FakeAlarm:
    return FakeAlarm()


@pytest.fixture
def coordinator(clock) -> CaptureCoordinator:
    return CaptureCoordinator(ready_timeout=5.0, poll_interval=0.2, capture_timeout=15.0, clock=clock)


@pytest.fixture
def dispatcher(channels, clock) -> DispatchFanout:
    return DispatchFanout(channels, channel_timeout=30.0, max_concurrent_contacts=5, clock=clock)


@pytest.fixture
def sensor_source() -> QueueSensorSource:
    return QueueSensorSource()


@pytest.fixture
def monitor(
    test_settings, sensor_source, coordinator, dispatcher, cameras, contact_provider, alarm, clock
) -> GuardianMonitor:
    return GuardianMonitor(
        test_settings,
        sensor_source=sensor_source,
        capture=coordinator,
        dispatcher=dispatcher,
        cameras=cameras,
        contacts=contact_provider,
        alarm=alarm,
        clock=clock,
    )
