"""End-to-end alert pipeline: samples in, relay requests out."""

import asyncio
import json

import httpx
import pytest
import pytest_asyncio

from pocket_guardian.capture import CaptureCoordinator
from pocket_guardian.channels import RelayChannel
from pocket_guardian.collaborators import (
    DirectoryMediaStore,
    QueueSensorSource,
    StaticContactProvider,
)
from pocket_guardian.dispatch import DispatchFanout
from pocket_guardian.models import ChannelKind, EmergencyContact, MediaRef, SessionState
from pocket_guardian.monitor import GuardianMonitor
from tests.helpers import FakeAlarm, FakeCamera, make_sample

pytestmark = pytest.mark.integration


class Relay:
    """In-memory relay gateway served through httpx.MockTransport."""

    def __init__(self):
        self.requests: list[tuple[str, dict]] = []
        self.status_code = 202

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append((request.url.path, json.loads(request.content)))
        return httpx.Response(self.status_code, json={"queued": self.status_code < 300})

    def paths(self) -> list[str]:
        return sorted(path for path, _ in self.requests)


@pytest.fixture
def relay():
    return Relay()


@pytest_asyncio.fixture
async def pipeline(relay, test_settings, clock, tmp_path):
    client = httpx.AsyncClient(transport=httpx.MockTransport(relay.handler))
    channels = {
        kind: RelayChannel(kind, "http://relay.test", client=client) for kind in ChannelKind
    }

    cameras = []
    for device_id in ("back", "front"):
        path = tmp_path / f"{device_id}.jpg"
        path.write_bytes(f"{device_id}-image".encode())
        cameras.append(FakeCamera(device_id, media=MediaRef(uri=path.as_uri(), device_id=device_id)))

    source = QueueSensorSource()
    monitor = GuardianMonitor(
        test_settings,
        sensor_source=source,
        capture=CaptureCoordinator(store=DirectoryMediaStore(str(tmp_path / "album")), clock=clock),
        dispatcher=DispatchFanout(channels, clock=clock),
        cameras=cameras,
        contacts=StaticContactProvider(
            [
                EmergencyContact(id="c1", name="Alice", phone="+491111", email="alice@example.com"),
                EmergencyContact(id="c2", name="Bob", phone="+492222"),
            ]
        ),
        alarm=FakeAlarm(),
        clock=clock,
    )
    await monitor.start()
    yield monitor, source, cameras
    await monitor.stop()
    await client.aclose()


async def settle(monitor) -> None:
    await monitor.queue.join()
    while monitor._session_tasks:
        await asyncio.gather(*list(monitor._session_tasks))


def jolt(start: float):
    return [make_sample(start + i * 0.5, 15.0 if i % 2 == 0 else 25.0) for i in range(7)]


@pytest.mark.asyncio()
async def test_jolt_delivers_evidence_to_every_contact(pipeline, relay, tmp_path):
    monitor, source, _ = pipeline

    source.push(make_sample(i * 0.5) for i in range(4))
    source.push(jolt(2.0))
    await settle(monitor)

    session = monitor.get_status().last_session
    assert session.state == SessionState.RESOLVED
    assert session.report.successful_contacts == 2

    # Two contacts with image and SMS, one with email
    assert relay.paths() == ["/email", "/image", "/image", "/sms", "/sms"]

    email = next(payload for path, payload in relay.requests if path == "/email")
    assert email["to"] == "alice@example.com"
    assert email["subject"].startswith("EMERGENCY")
    assert sorted(item["data"] for item in email["media"]) == sorted(
        ["YmFjay1pbWFnZQ==", "ZnJvbnQtaW1hZ2U="]
    )

    images = [payload for path, payload in relay.requests if path == "/image"]
    assert all(payload["media"][0]["device_id"] == "back" for payload in images)

    # Evidence was copied into the album before dispatch
    assert len(list((tmp_path / "album").iterdir())) == 2


@pytest.mark.asyncio()
async def test_relay_outage_then_manual_redispatch(pipeline, relay):
    monitor, source, cameras = pipeline
    relay.status_code = 503

    source.push(jolt(0.0))
    await settle(monitor)

    failed = monitor.get_status().last_session
    assert failed.state == SessionState.FAILED
    assert failed.can_retry_dispatch

    relay.status_code = 202
    relay.requests.clear()
    resolved = await monitor.retry_dispatch()

    assert resolved.state == SessionState.RESOLVED
    assert resolved.evidence == failed.evidence
    assert all(camera.capture_calls == 1 for camera in cameras)
    assert len(relay.requests) == 5


@pytest.mark.asyncio()
async def test_cancelled_alert_sends_nothing(pipeline, relay, test_settings):
    monitor, source, cameras = pipeline
    test_settings.countdown_seconds = 30

    source.push(jolt(0.0))
    await monitor.queue.join()
    await monitor.cancel_session()
    await settle(monitor)

    assert monitor.get_status().last_session.state == SessionState.CANCELLED
    assert relay.requests == []
    assert all(camera.capture_calls == 0 for camera in cameras)
