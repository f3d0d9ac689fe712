"""
Signaling session with the forwarding unit.

The session owns the WebSocket control connection and drives the media
transport through the negotiation handshake:

1. On connect, send ``Prepare`` and start the keep-alive ping loop
2. The server answers with an ``Offer``; the session applies it, creates
   and applies the ``Answer`` and sends it back, then announces its local
   ICE candidates
3. ``IceCandidate`` messages from the server are applied once the answer is
   in place (earlier ones are buffered)
4. ``Start`` from the server means another participant's media is ready;
   the session replies ``Start`` and the server re-offers

Control messages are JSON objects ``{"msg_type": <type>, "message": <text>}``
where ``message`` is itself JSON text (or empty). Messages are handled
strictly in receipt order. Any error or close of the control connection is
unrecoverable: the session emits ``"fatal"`` exactly once and stops.

Events:
    track(MediaTrack)            participant media track
    datachannel(channel_id, ch)  data channel, id rewritten to the track namespace
    fatal(reason)                the session is dead
"""

import asyncio
import json
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any

import websockets
from pyee import EventEmitter

from .transport import MediaTrack


logger = logging.getLogger(__name__)

TRACK_ID_PREFIX = "sfu-stream-"
DATA_CHANNEL_LABEL_PREFIX = "sfu-data-ch-"

PING_INTERVAL_S = 3.0


class SignalingMessageType(str, Enum):
    OFFER = "Offer"
    ANSWER = "Answer"
    START = "Start"
    PREPARE = "Prepare"
    ICE_CANDIDATE = "IceCandidate"
    PING = "Ping"
    PONG = "Pong"


class SessionState(str, Enum):
    IDLE = "Idle"
    PREPARED = "Prepared"
    OFFER_RECEIVED = "OfferReceived"
    ANSWER_SENT = "AnswerSent"
    READY = "Ready"
    FAILED = "Failed"
    CLOSED = "Closed"


_TRANSITIONS = {
    SessionState.IDLE: {SessionState.PREPARED},
    SessionState.PREPARED: {SessionState.OFFER_RECEIVED},
    SessionState.OFFER_RECEIVED: {SessionState.ANSWER_SENT},
    SessionState.ANSWER_SENT: {SessionState.READY},
    # Renegotiation after Start
    SessionState.READY: {SessionState.OFFER_RECEIVED},
    SessionState.FAILED: set(),
    SessionState.CLOSED: set(),
}


class MalformedMessageError(ValueError):
    """Raised when a control message cannot be decoded."""


class InvalidTransitionError(RuntimeError):
    """Raised on an illegal session state transition. Signals a programming error."""


@dataclass(frozen=True)
class SignalingMessage:
    msg_type: SignalingMessageType
    message: str = ""

    def to_json(self) -> str:
        return json.dumps({"msg_type": self.msg_type.value, "message": self.message})

    @classmethod
    def from_json(cls, raw: str | bytes) -> "SignalingMessage":
        try:
            data = json.loads(raw)
        except (TypeError, ValueError) as e:
            raise MalformedMessageError(f"Invalid JSON: {e}") from e
        if not isinstance(data, dict) or "msg_type" not in data:
            raise MalformedMessageError("Missing field 'msg_type'")
        try:
            msg_type = SignalingMessageType(data["msg_type"])
        except ValueError:
            raise MalformedMessageError(f"Unknown msg_type {data['msg_type']!r}") from None
        message = data.get("message") or ""
        if not isinstance(message, str):
            raise MalformedMessageError("Field 'message' must be a string")
        return cls(msg_type, message)

    def payload(self) -> Any:
        """Decode the nested JSON payload."""
        if not self.message:
            raise MalformedMessageError(f"{self.msg_type.value} without payload")
        try:
            return json.loads(self.message)
        except ValueError as e:
            raise MalformedMessageError(f"Invalid {self.msg_type.value} payload: {e}") from e


class SignalingSession:
    """
    Negotiation and keep-alive for one room session.

    Args:
        transport: Media transport (see ``PeerTransport``)
        ping_interval: Seconds between keep-alive pings
        pong_timeout: When set, fail the session if no Pong arrived within
            this many seconds at the time of a ping. None ignores pongs.
    """

    def __init__(
        self,
        transport: Any,
        ping_interval: float = PING_INTERVAL_S,
        pong_timeout: float | None = None,
    ) -> None:
        self.transport = transport
        self.ping_interval = ping_interval
        self.pong_timeout = pong_timeout
        self.state = SessionState.IDLE
        self.last_pong_at: float | None = None

        self._events = EventEmitter()
        self._socket: Any = None
        self._outbox: asyncio.Queue[SignalingMessage] = asyncio.Queue()
        self._writer_task: asyncio.Task | None = None
        self._ping_task: asyncio.Task | None = None
        self._closing: asyncio.Future | None = None
        self._pending_candidates: list[dict[str, Any]] = []
        self._prepared_at: float | None = None

        transport.on("icecandidate", self._on_local_candidate)
        transport.on("track", self._on_track)
        transport.on("datachannel", self._on_datachannel)
        transport.on("failed", self._on_transport_failed)

    def on(self, event: str, f: Any = None) -> Any:
        """Subscribe to a session event (usable as a decorator)."""
        if f is None:
            return self._events.on(event)
        self._events.on(event, f)
        return f

    @property
    def terminated(self) -> bool:
        return self.state in (SessionState.FAILED, SessionState.CLOSED)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def open(self, url: str) -> None:
        """Connect to the signaling endpoint and run until the session ends."""
        logger.info(f"Connecting to signaling endpoint {url}")
        try:
            socket = await websockets.connect(url)
        except (OSError, websockets.WebSocketException) as e:
            self._fail(f"Cannot connect to signaling endpoint: {e}")
            return
        await self.run(socket)

    async def run(self, socket: Any) -> None:
        """
        Drive the session over an open control connection.

        Returns when the connection ends; that is always terminal.
        """
        self._socket = socket
        self._writer_task = asyncio.create_task(self._write_loop())

        self._send(SignalingMessage(SignalingMessageType.PREPARE))
        self._transition(SessionState.PREPARED)
        self._prepared_at = time.monotonic()
        self._ping_task = asyncio.create_task(self._ping_loop())

        reason = "Control connection closed"
        try:
            async for raw in socket:
                if self.terminated:
                    break
                await self._dispatch(raw)
        except websockets.ConnectionClosed as e:
            reason = f"Control connection closed: {e}"
        except InvalidTransitionError as e:
            reason = f"Illegal state transition: {e}"
            raise
        except Exception as e:
            logger.exception(f"Control connection error: {e}")
            reason = f"Control connection error: {e}"
        finally:
            self._fail(reason)
            await self._stop_tasks()

    async def close(self) -> None:
        """Tear the session down without raising ``fatal``."""
        if not self.terminated:
            self.state = SessionState.CLOSED
            logger.info("Signaling session closed")
        await self._stop_tasks()
        if self._socket is not None:
            await self._socket.close()
        self._events.remove_all_listeners()

    def _fail(self, reason: str) -> None:
        if self.terminated:
            return
        self.state = SessionState.FAILED
        logger.error(f"Signaling session failed: {reason}")
        for task in (self._ping_task, self._writer_task):
            if task is not None:
                task.cancel()
        self._events.emit("fatal", reason)
        if self._socket is not None:
            # Ends the read loop in run() even when no further frame arrives
            self._closing = asyncio.ensure_future(self._socket.close())

    async def _stop_tasks(self) -> None:
        for task in (self._ping_task, self._writer_task):
            if task is None or task is asyncio.current_task():
                continue
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._ping_task = None
        self._writer_task = None

    def _transition(self, new_state: SessionState) -> None:
        if new_state not in _TRANSITIONS[self.state]:
            raise InvalidTransitionError(f"{self.state.value} -> {new_state.value}")
        logger.debug(f"Session state {self.state.value} -> {new_state.value}")
        self.state = new_state

    # ------------------------------------------------------------------
    # Outbound
    # ------------------------------------------------------------------

    def _send(self, message: SignalingMessage) -> None:
        if self.terminated:
            return
        self._outbox.put_nowait(message)

    async def _write_loop(self) -> None:
        while True:
            message = await self._outbox.get()
            try:
                await self._socket.send(message.to_json())
            except websockets.ConnectionClosed as e:
                self._fail(f"Control connection closed: {e}")
                return

    async def _ping_loop(self) -> None:
        while True:
            await asyncio.sleep(self.ping_interval)
            if self.pong_timeout is not None and self._pong_overdue():
                self._fail(f"No Pong within {self.pong_timeout}s")
                return
            self._send(SignalingMessage(SignalingMessageType.PING))

    def _pong_overdue(self) -> bool:
        since = self.last_pong_at if self.last_pong_at is not None else self._prepared_at
        return since is not None and time.monotonic() - since > self.pong_timeout

    def _on_local_candidate(self, candidate: dict[str, Any] | None) -> None:
        logger.debug(f"Local ICE candidate: {candidate}")
        self._send(
            SignalingMessage(SignalingMessageType.ICE_CANDIDATE, json.dumps(candidate))
        )

    # ------------------------------------------------------------------
    # Inbound
    # ------------------------------------------------------------------

    async def _dispatch(self, raw: str | bytes) -> None:
        try:
            message = SignalingMessage.from_json(raw)
            if message.msg_type == SignalingMessageType.OFFER:
                await self._handle_offer(message)
            elif message.msg_type == SignalingMessageType.ICE_CANDIDATE:
                await self._handle_ice_candidate(message)
            elif message.msg_type == SignalingMessageType.START:
                logger.info("Server announced new media, requesting renegotiation")
                self._send(SignalingMessage(SignalingMessageType.START))
            elif message.msg_type == SignalingMessageType.PONG:
                logger.debug("Receive Pong message.")
                self.last_pong_at = time.monotonic()
            else:
                logger.debug(f"Ignoring {message.msg_type.value} message")
        except MalformedMessageError as e:
            logger.error(f"Invalid message format: {e}")

    async def _handle_offer(self, message: SignalingMessage) -> None:
        offer = message.payload()
        if not isinstance(offer, dict) or not offer.get("sdp"):
            raise MalformedMessageError("Offer without sdp")
        offer.setdefault("type", "offer")
        logger.debug(f"Offer:\n{offer['sdp']}")

        try:
            await self.transport.set_remote_description(offer)
            self._transition(SessionState.OFFER_RECEIVED)
            answer = await self.transport.create_answer()
        except InvalidTransitionError:
            raise
        except Exception as e:
            self._fail(f"Negotiation failed: {e}")
            return

        logger.debug(f"Answer:\n{answer['sdp']}")
        self._send(SignalingMessage(SignalingMessageType.ANSWER, json.dumps(answer)))
        self._transition(SessionState.ANSWER_SENT)
        self.transport.announce_local_candidates()

        pending, self._pending_candidates = self._pending_candidates, []
        for candidate in pending:
            await self._apply_candidate(candidate)
        self._transition(SessionState.READY)
        logger.info("Negotiation complete")

    async def _handle_ice_candidate(self, message: SignalingMessage) -> None:
        candidate = message.payload()
        if candidate is None:
            return
        if not isinstance(candidate, dict):
            raise MalformedMessageError("IceCandidate payload must be an object")
        logger.debug(f"Receive ICE candidate: {candidate}")
        if self.state != SessionState.READY:
            self._pending_candidates.append(candidate)
            return
        await self._apply_candidate(candidate)

    async def _apply_candidate(self, candidate: dict[str, Any]) -> None:
        try:
            await self.transport.add_ice_candidate(candidate)
        except (ValueError, IndexError) as e:
            logger.error(f"Rejected ICE candidate {candidate}: {e}")

    # ------------------------------------------------------------------
    # Transport events
    # ------------------------------------------------------------------

    def _on_track(self, track: MediaTrack) -> None:
        if not track.stream_id.startswith(TRACK_ID_PREFIX):
            logger.debug(f"Ignoring non-participant track {track}")
            return
        logger.debug(f"on_track {track}")
        self._events.emit("track", track)

    def _on_datachannel(self, channel: Any) -> None:
        channel_id = channel.label.replace(DATA_CHANNEL_LABEL_PREFIX, TRACK_ID_PREFIX, 1)
        logger.info(f"Data channel {channel.label} received as {channel_id}")
        self._events.emit("datachannel", channel_id, channel)

    def _on_transport_failed(self) -> None:
        self._fail("Media transport failed")
