"""Tests for the room client wiring."""

import asyncio

import httpx
import pytest

from .api import RoomApiClient
from .conftest import FakeChannel
from .config import RoomConfig
from .room_client import MEDIA_DENIED_MESSAGE, RETURN_HOME_DELAY_S, RoomClient, signaling_url


def _client(handler, **overrides) -> RoomClient:
    config = RoomConfig(name="test", sprite_path=None, **overrides)
    api = RoomApiClient("https://chat.example.com", "tok-1", transport=httpx.MockTransport(handler))
    return RoomClient(config, "https://chat.example.com", "tok-1", "Me", api=api)


@pytest.mark.parametrize(
    "base_url, expected",
    [
        ("https://chat.example.com", "wss://chat.example.com/ws-app/subscribe/tok-1"),
        ("http://localhost:8080/", "ws://localhost:8080/ws-app/subscribe/tok-1"),
    ],
)
def test_signaling_url(base_url, expected):
    assert signaling_url(base_url, "tok-1") == expected


@pytest.mark.asyncio
async def test_ice_server_failure_leaves_room():
    client = _client(lambda request: httpx.Response(500))
    await client.connect()

    assert "ICE servers" in client.fatal_message
    await asyncio.wait_for(client.run(), timeout=RETURN_HOME_DELAY_S + 1)
    await client.shutdown()


@pytest.mark.asyncio
async def test_missing_camera_reports_media_denied(tmp_path):
    client = _client(
        lambda request: httpx.Response(200, json=[]),
        video_source=str(tmp_path / "no-camera"),
        video_format=None,
        audio_source=None,
    )
    await client.connect()

    assert client.fatal_message == MEDIA_DENIED_MESSAGE
    await client.shutdown()


@pytest.mark.asyncio
async def test_fatal_is_reported_once():
    client = _client(lambda request: httpx.Response(200, json=[]))
    client._on_fatal("first")
    client._on_fatal("second")
    assert client.fatal_message == "first"
    await client.shutdown()


@pytest.mark.asyncio
async def test_data_channel_starts_avatar_sync():
    client = _client(lambda request: httpx.Response(200, json=[]))
    channel = FakeChannel(label="sfu-data-ch-me")
    client._on_datachannel("sfu-stream-me", channel)

    assert len(client.channels) == 1
    assert client.detector.my_avatar.avatar_id == "sfu-stream-me"
    assert channel.sent_json()[0] == {"msgType": 2, "id": "sfu-stream-me", "name": "Me"}

    client.input_bus.key_down("ArrowLeft")
    assert channel.sent_json()[-1]["msgType"] == 4

    await client.shutdown()
    assert client.input_bus.listener_count("keydown") == 0


@pytest.mark.asyncio
async def test_initialize_without_sprite_file_keeps_running(tmp_path):
    client = _client(lambda request: httpx.Response(200, json=[]))
    client.config.sprite_path = str(tmp_path / "missing.png")
    await client.initialize()
    assert client.sprite is None
    await client.shutdown()
