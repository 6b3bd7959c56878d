"""Tests for the HTTP relay channels."""

import asyncio
import base64
from unittest.mock import AsyncMock, Mock, patch

import httpx
import pytest

from pocket_guardian.channels import RelayChannel, build_relay_channels, encode_media
from pocket_guardian.models import ChannelKind, MediaRef


@pytest.fixture
def mock_httpx_client():
    """Create mock httpx client."""
    mock_client = AsyncMock()
    mock_response = Mock()
    mock_response.status_code = 200
    mock_response.text = "ok"
    mock_client.post.return_value = mock_response
    return mock_client


class TestRelayChannel:
    @pytest.mark.asyncio()
    async def test_sms_payload(self, mock_httpx_client):
        channel = RelayChannel(ChannelKind.SMS, "http://relay.local/", client=mock_httpx_client)

        delivered = await channel.send("+491111", "Help", [])

        assert delivered is True
        url = mock_httpx_client.post.call_args.args[0]
        payload = mock_httpx_client.post.call_args.kwargs["json"]
        assert url == "http://relay.local/sms"
        assert payload == {"channel": "sms", "to": "+491111", "media": [], "text": "Help"}

    @pytest.mark.asyncio()
    async def test_email_splits_subject_and_body(self, mock_httpx_client):
        channel = RelayChannel(ChannelKind.EMAIL, "http://relay.local", client=mock_httpx_client)

        await channel.send("a@example.com", "Subject line\n\nFirst line\n\nSecond", [])

        payload = mock_httpx_client.post.call_args.kwargs["json"]
        assert payload["subject"] == "Subject line"
        assert payload["body"] == "First line\n\nSecond"
        assert "text" not in payload

    @pytest.mark.asyncio()
    async def test_non_success_status_returns_false(self, mock_httpx_client):
        mock_httpx_client.post.return_value.status_code = 502
        channel = RelayChannel(ChannelKind.IMAGE, "http://relay.local", client=mock_httpx_client)

        assert await channel.send("+491111", "Help", []) is False

    @pytest.mark.asyncio()
    async def test_transport_error_returns_false(self, mock_httpx_client):
        mock_httpx_client.post.side_effect = httpx.ConnectError("refused")
        channel = RelayChannel(ChannelKind.SMS, "http://relay.local", client=mock_httpx_client)

        assert await channel.send("+491111", "Help", []) is False

    @pytest.mark.asyncio()
    async def test_initialize_creates_client_with_api_key(self):
        with patch("pocket_guardian.channels.httpx.AsyncClient") as client_class:
            client_class.return_value = AsyncMock()
            channel = RelayChannel(ChannelKind.SMS, "http://relay.local", api_key="secret")

            await channel.initialize()
            await channel.cleanup()

        assert client_class.call_args.kwargs["headers"] == {"X-API-Key": "secret"}
        client_class.return_value.aclose.assert_awaited_once()
        assert channel.client is None

    @pytest.mark.asyncio()
    async def test_cleanup_leaves_injected_client_open(self, mock_httpx_client):
        channel = RelayChannel(ChannelKind.SMS, "http://relay.local", client=mock_httpx_client)
        await channel.cleanup()
        mock_httpx_client.aclose.assert_not_awaited()

    @pytest.mark.asyncio()
    async def test_media_is_inlined_in_worker_thread(self, mock_httpx_client, tmp_path):
        image = tmp_path / "back.jpg"
        image.write_bytes(b"jpeg")
        channel = RelayChannel(ChannelKind.IMAGE, "http://relay.local", client=mock_httpx_client)
        media = [MediaRef(uri=image.as_uri(), device_id="back")]

        with patch("pocket_guardian.channels.asyncio.to_thread", wraps=asyncio.to_thread) as to_thread:
            assert await channel.send("+491111", "Help", media) is True

        to_thread.assert_called_once_with(channel.build_payload, "+491111", "Help", media)
        payload = mock_httpx_client.post.call_args.kwargs["json"]
        assert payload["media"][0]["data"] == base64.b64encode(b"jpeg").decode("utf-8")


def test_encode_media_inlines_local_files(tmp_path):
    image = tmp_path / "back.jpg"
    image.write_bytes(b"\xff\xd8jpeg")

    entry = encode_media(MediaRef(uri=image.as_uri(), device_id="back"))

    assert entry["filename"] == "back.jpg"
    assert base64.b64decode(entry["data"]) == b"\xff\xd8jpeg"
    assert entry["kind"] == "photo"


def test_encode_media_keeps_remote_references():
    entry = encode_media(MediaRef(uri="https://cdn.example.com/back.jpg"))
    assert "data" not in entry
    assert entry["uri"] == "https://cdn.example.com/back.jpg"


def test_build_relay_channels_covers_every_kind():
    channels = build_relay_channels("http://relay.local")
    assert set(channels) == set(ChannelKind)
    assert all(channel.kind == kind for kind, channel in channels.items())
