"""Tests for the status HTTP endpoints."""

import asyncio
import json
import threading
import urllib.error
import urllib.request
from types import SimpleNamespace

import pytest

from .model import AvatarModel, RoomModel, VideoWindow
from .signaling import SessionState
from .status_server import StatusServer


@pytest.fixture
def client():
    model = RoomModel()
    model.avatars.append(AvatarModel(id="sfu-stream-b", name="Bob", talking=True))
    model.videos.append(VideoWindow(id="sfu-stream-b", name="Bob"))
    return SimpleNamespace(model=model, session=SimpleNamespace(state=SessionState.READY))


@pytest.fixture
def server(client):
    server = StatusServer(client, port=0, host="127.0.0.1")
    server.start()
    yield server
    server.stop()


def _get(server, path):
    with urllib.request.urlopen(f"http://127.0.0.1:{server.server_port}{path}", timeout=5) as response:
        return json.loads(response.read())


def test_health_reports_session_state(server):
    assert _get(server, "/health") == {"status": "ok", "session": "Ready"}


def test_peers_lists_room(server):
    data = _get(server, "/peers")
    assert data["avatars"][0]["name"] == "Bob"
    assert data["avatars"][0]["talking"] is True
    assert data["videos"][0]["id"] == "sfu-stream-b"


def test_unknown_path_is_404(server):
    with pytest.raises(urllib.error.HTTPError) as excinfo:
        _get(server, "/nope")
    assert excinfo.value.code == 404


@pytest.mark.asyncio
async def test_peers_snapshot_taken_on_event_loop(client):
    model = client.model
    snapshot = model.snapshot
    reader_threads = []

    def recording_snapshot():
        reader_threads.append(threading.get_ident())
        return snapshot()

    model.snapshot = recording_snapshot
    server = StatusServer(client, port=0, host="127.0.0.1")
    server.start()
    try:
        data = await asyncio.to_thread(_get, server, "/peers")
    finally:
        server.stop()

    assert server.loop is asyncio.get_running_loop()
    assert reader_threads == [threading.get_ident()]
    assert data["videos"][0]["name"] == "Bob"


def test_peers_read_inline_without_event_loop(server):
    assert server.loop is None
    assert _get(server, "/peers")["avatars"][0]["id"] == "sfu-stream-b"
