"""
Shared fixtures for the roomsync tests.

No network, camera or forwarding unit is needed: the data channel, the
control socket and the media transport are replaced by in-memory fakes.
"""

import asyncio
import json

import numpy as np
import pytest
from pyee import EventEmitter

from .avatar import SPRITE_UNIT_HEIGHT, SPRITE_UNIT_WIDTH, CUTS_PER_DIRECTION
from .canvas import FrameBuffer, SpriteSheet
from .collision import CollisionDetector
from .model import RoomModel
from .scene import SceneScheduler, Viewport
from .sync import InputBus


# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------


class FakeChannel(EventEmitter):
    """Data channel stand-in recording everything sent on it."""

    def __init__(self, label: str = "sfu-data-ch-room", ready_state: str = "open"):
        super().__init__()
        self.label = label
        self.readyState = ready_state
        self.sent: list[str] = []

    def send(self, data: str) -> None:
        self.sent.append(data)

    def sent_json(self) -> list[dict]:
        return [json.loads(s) for s in self.sent]


class FakeSocket:
    """Control connection stand-in: feed inbound text, inspect outbound."""

    _CLOSED = object()

    def __init__(self):
        self.sent: list[str] = []
        self.closed = False
        self._inbox: asyncio.Queue = asyncio.Queue()

    def feed(self, msg_type: str, message=None) -> None:
        if message is not None and not isinstance(message, str):
            message = json.dumps(message)
        self._inbox.put_nowait(json.dumps({"msg_type": msg_type, "message": message or ""}))

    def feed_raw(self, raw: str) -> None:
        self._inbox.put_nowait(raw)

    def hang_up(self) -> None:
        self._inbox.put_nowait(self._CLOSED)

    async def send(self, data: str) -> None:
        self.sent.append(data)

    async def close(self) -> None:
        self.closed = True
        self.hang_up()

    def sent_types(self) -> list[str]:
        return [json.loads(s)["msg_type"] for s in self.sent]

    def sent_of(self, msg_type: str) -> list[str]:
        return [json.loads(s)["message"] for s in self.sent if json.loads(s)["msg_type"] == msg_type]

    def __aiter__(self):
        return self

    async def __anext__(self):
        item = await self._inbox.get()
        if item is self._CLOSED:
            raise StopAsyncIteration
        return item


class FakeTransport(EventEmitter):
    """Media transport stand-in logging the negotiation calls in order."""

    ANSWER = {"type": "answer", "sdp": "v=0\r\no=- answer\r\n"}
    LOCAL_CANDIDATE = {
        "candidate": "candidate:1 1 udp 2130706431 10.0.0.1 50000 typ host",
        "sdpMid": "0",
        "sdpMLineIndex": 0,
    }

    def __init__(self):
        super().__init__()
        self.calls: list[tuple] = []
        self.fail_remote_description = False

    async def set_remote_description(self, description):
        if self.fail_remote_description:
            raise ValueError("bad sdp")
        self.calls.append(("remote", description["sdp"]))

    async def create_answer(self):
        self.calls.append(("answer",))
        return dict(self.ANSWER)

    def announce_local_candidates(self):
        self.emit("icecandidate", dict(self.LOCAL_CANDIDATE))
        self.emit("icecandidate", None)

    async def add_ice_candidate(self, candidate):
        self.calls.append(("candidate", candidate["candidate"]))


class FakeSink:
    """aiortc media sink stand-in."""

    def __init__(self):
        self.tracks = []
        self.started = False
        self.stopped = False

    def addTrack(self, track):
        self.tracks.append(track)

    async def start(self):
        self.started = True

    async def stop(self):
        self.stopped = True


async def settle(rounds: int = 5) -> None:
    """Let pending callbacks and tasks run."""
    for _ in range(rounds):
        await asyncio.sleep(0)


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def sprite() -> SpriteSheet:
    """Opaque sprite sheet with one distinct colour per row."""
    image = np.zeros((SPRITE_UNIT_HEIGHT * 4, SPRITE_UNIT_WIDTH * CUTS_PER_DIRECTION, 4), dtype=np.uint8)
    for row in range(4):
        image[row * SPRITE_UNIT_HEIGHT : (row + 1) * SPRITE_UNIT_HEIGHT] = (row * 60 + 10, 100, 200, 255)
    return SpriteSheet(image)


@pytest.fixture
def viewport() -> Viewport:
    return Viewport(FrameBuffer(800, 600), css_width=800, css_height=600)


@pytest.fixture
def scene(viewport) -> SceneScheduler:
    return SceneScheduler(viewport)


@pytest.fixture
def room_model() -> RoomModel:
    return RoomModel()


@pytest.fixture
def detector() -> CollisionDetector:
    return CollisionDetector(frames_per_detection=0)


@pytest.fixture
def input_bus() -> InputBus:
    return InputBus()


@pytest.fixture
def channel() -> FakeChannel:
    return FakeChannel()
