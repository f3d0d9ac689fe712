"""
Avatar synchronization over the peer data channel.

One ``AvatarSyncChannel`` is attached to the room's data channel. When the
channel opens it creates the local avatar and greets the room with
``Hello``; every participant answers with a ``HelloResponse`` describing its
own pose. After that, local arrow-key input is mirrored to the room as
``Move``/``Stop`` messages and inbound ones update the peer avatars.

Message handling:
    Hello          -> create the sender's avatar if unknown, reply with own pose
    HelloResponse  -> create the sender's avatar at the given pose if unknown
    Move           -> reposition a known avatar
    Stop           -> halt a known avatar's animation
"""

import logging
from collections.abc import Callable
from typing import Any

from pyee import EventEmitter

from .avatar import Avatar, create_avatar_model
from .canvas import SpriteSheet
from .collision import CollisionDetector
from .geometry import Vector
from .messaging import (
    AvatarDirection,
    ControlMessage,
    HelloMessage,
    HelloResponseMessage,
    MalformedMessageError,
    MoveMessage,
    StopMessage,
    decode_message,
    encode_message,
)
from .model import RoomModel
from .scene import SceneScheduler


logger = logging.getLogger(__name__)

ARROW_KEYS = ("ArrowDown", "ArrowUp", "ArrowLeft", "ArrowRight")


class InputBus:
    """
    Keyboard events for one room session.

    The host feeds key presses in with ``key_down``/``key_up``; consumers
    subscribe with ``on`` and must unsubscribe on teardown.
    """

    def __init__(self) -> None:
        self._events = EventEmitter()

    def key_down(self, key: str) -> None:
        self._events.emit("keydown", key)

    def key_up(self, key: str) -> None:
        self._events.emit("keyup", key)

    def on(self, event: str, f: Callable[[str], None]) -> Callable[[str], None]:
        self._events.on(event, f)
        return f

    def remove_listener(self, event: str, f: Callable[[str], None]) -> None:
        if f in self._events.listeners(event):
            self._events.remove_listener(event, f)

    def listener_count(self, event: str) -> int:
        return len(self._events.listeners(event))


class AvatarSyncChannel:
    """
    Control protocol state machine for one data channel.

    Args:
        self_id: Local avatar id (the data channel label rewritten into the
            track id namespace)
        self_name: Local display name sent with Hello
        channel: Data channel with ``on``/``send``/``readyState``
        scene: Scene the avatars are drawn in
        detector: Collision detector holding the avatar registry
        model: Room view model
        input_bus: Keyboard events of this session
        frames_per_cut: Draw throttle for created avatars
        sprite: Sprite sheet shared by all avatars
    """

    def __init__(
        self,
        self_id: str,
        self_name: str,
        channel: Any,
        scene: SceneScheduler,
        detector: CollisionDetector,
        model: RoomModel,
        input_bus: InputBus,
        frames_per_cut: int,
        sprite: SpriteSheet | None = None,
    ) -> None:
        self.self_id = self_id
        self.self_name = self_name
        self.channel = channel
        self.scene = scene
        self.detector = detector
        self.model = model
        self.input_bus = input_bus
        self.frames_per_cut = frames_per_cut
        self.sprite = sprite
        self.my_avatar: Avatar | None = None
        self._closed = False

    def attach(self) -> None:
        """Register the channel handlers. Call once."""
        self.channel.on("open", self._on_open)
        self.channel.on("message", self._on_message)
        self.channel.on("close", self._on_close)

        # Channels announced by the transport may already be open
        if getattr(self.channel, "readyState", None) == "open":
            self._on_open()

    def load_sprite(self, sprite: SpriteSheet) -> None:
        self.sprite = sprite
        if self.my_avatar is not None:
            self.my_avatar.load_sprite(sprite)
        for peer in self.detector:
            peer.load_sprite(sprite)

    # ------------------------------------------------------------------
    # Channel events
    # ------------------------------------------------------------------

    def _on_open(self) -> None:
        if self.my_avatar is not None:
            return
        logger.info(f"Data channel open for {self.self_id}")

        self.my_avatar = self._create_avatar(self.self_id, self.self_name, Vector(0, 0))
        self.detector.my_avatar = self.my_avatar

        self.input_bus.on("keydown", self._on_key_down)
        self.input_bus.on("keyup", self._on_key_up)
        self.model.on_delete(self._on_peer_deleted)

        self._send(HelloMessage(id=self.self_id, name=self.self_name))
        self.scene.add(self.my_avatar)

    def _on_message(self, raw: str | bytes) -> None:
        try:
            message = decode_message(raw)
        except MalformedMessageError as e:
            logger.error(f"Invalid message format: {e}")
            return

        if self.my_avatar is None or message.id == self.self_id:
            return
        logger.debug(f"Received {type(message).__name__} from {message.id}")
        self.handle_message(message)

    def _on_close(self) -> None:
        logger.info(f"Data channel closed for {self.self_id}")
        self.detach()

    def detach(self) -> None:
        """Drop every listener this channel registered on session-wide buses."""
        if self._closed:
            return
        self._closed = True
        self.input_bus.remove_listener("keydown", self._on_key_down)
        self.input_bus.remove_listener("keyup", self._on_key_up)
        if self.my_avatar is not None:
            self.model.remove_delete_listener(self._on_peer_deleted)

    # ------------------------------------------------------------------
    # Protocol
    # ------------------------------------------------------------------

    def handle_message(self, message: ControlMessage) -> None:
        if isinstance(message, HelloResponseMessage):
            self._on_hello_response(message)
        elif isinstance(message, HelloMessage):
            self._on_hello(message)
        elif isinstance(message, MoveMessage):
            peer = self.detector.get(message.id)
            if peer is not None:
                peer.move_to(message.coord.x, message.coord.y, message.direction)
        elif isinstance(message, StopMessage):
            peer = self.detector.get(message.id)
            if peer is not None:
                peer.stop()

    def _on_hello(self, message: HelloMessage) -> None:
        if not self.detector.has(message.id):
            self._add_peer(message.id, message.name, Vector(0, 0))

        pose = self.my_avatar.to_move_message()
        response = HelloResponseMessage(
            id=self.my_avatar.avatar_id,
            name=self.self_name,
            direction=pose.direction,
            coord=pose.coord,
        )
        logger.debug(f"Response to hello from {message.id}: {response}")
        self._send(response)

    def _on_hello_response(self, message: HelloResponseMessage) -> None:
        if self.detector.has(message.id):
            return
        self._add_peer(
            message.id,
            message.name,
            Vector(message.coord.x, message.coord.y),
            message.direction,
        )

    def _on_peer_deleted(self, peer_id: str) -> None:
        peer = self.detector.delete(peer_id)
        if peer is None:
            return
        self.scene.remove(peer)
        self.model.remove_avatar(peer_id)
        logger.info(f"Avatar {peer_id} removed")

    def _create_avatar(
        self,
        avatar_id: str,
        name: str,
        position: Vector,
        direction: AvatarDirection | None = None,
    ) -> Avatar:
        model = create_avatar_model(avatar_id, name, position, self.scene.viewport)
        avatar = Avatar(
            model,
            frames_per_cut=self.frames_per_cut,
            sprite=self.sprite,
            position=position,
            direction=direction,
        )
        self.model.avatars.append(model)
        self.model.put_avatar(avatar_id, model)
        return avatar

    def _add_peer(
        self,
        peer_id: str,
        name: str,
        position: Vector,
        direction: AvatarDirection | None = None,
    ) -> None:
        peer = self._create_avatar(peer_id, name, position, direction)
        self.detector.add(peer_id, peer)
        self.scene.add(peer)
        logger.info(f"Avatar {peer_id} ({name}) joined")

    # ------------------------------------------------------------------
    # Local input
    # ------------------------------------------------------------------

    def _on_key_down(self, key: str) -> None:
        avatar = self.my_avatar
        actions = {
            "ArrowDown": avatar.down,
            "ArrowUp": avatar.up,
            "ArrowLeft": avatar.left,
            "ArrowRight": avatar.right,
        }
        action = actions.get(key)
        if action is None:
            return
        action()
        self._send(avatar.to_move_message())

    def _on_key_up(self, key: str) -> None:
        if key not in ARROW_KEYS or self.my_avatar.stopped:
            return
        self.my_avatar.stop()
        self._send(StopMessage(id=self.my_avatar.avatar_id))

    def _send(self, message: ControlMessage) -> None:
        if getattr(self.channel, "readyState", "open") != "open":
            logger.warning(f"Data channel not open, dropping {type(message).__name__}")
            return
        self.channel.send(encode_message(message))
