"""
Proximity-based "talking" detection.

The detector holds the local avatar and every known peer avatar. It is
ticked once per frame but only evaluates every ``frames_per_detection``
ticks. Each evaluation checks every peer against the local avatar only;
two peers approaching each other without the local avatar are not
reported, since audio relevance is centred on the local participant.
"""

import logging
from collections.abc import Callable, Iterator

from .avatar import Avatar
from .model import RoomModel


logger = logging.getLogger(__name__)

CollisionHandler = Callable[[Avatar, bool], None]


class CollisionDetector:
    """Registry of peer avatars plus the sampled collision check."""

    def __init__(self, frames_per_detection: int) -> None:
        self.my_avatar: Avatar | None = None
        self.peers: dict[str, Avatar] = {}
        self.frame_index = 0
        self.frames_per_detection = frames_per_detection
        self._handlers: list[CollisionHandler] = []

    def add(self, peer_id: str, peer: Avatar) -> None:
        self.peers[peer_id] = peer

    def delete(self, peer_id: str) -> Avatar | None:
        return self.peers.pop(peer_id, None)

    def has(self, peer_id: str) -> bool:
        return peer_id in self.peers

    def get(self, peer_id: str) -> Avatar | None:
        return self.peers.get(peer_id)

    def __iter__(self) -> Iterator[Avatar]:
        return iter(list(self.peers.values()))

    def on_collision(self, handler: CollisionHandler) -> CollisionHandler:
        self._handlers.append(handler)
        return handler

    def remove_collision_handler(self, handler: CollisionHandler) -> None:
        if handler in self._handlers:
            self._handlers.remove(handler)

    def detect_collision(self) -> None:
        """Per-frame hook; runs the check on every Nth call."""
        if self.frame_index != self.frames_per_detection:
            self.frame_index += 1
            return
        self.frame_index = 0

        if self.my_avatar is None:
            return
        for peer in list(self.peers.values()):
            collided = peer.does_collide_with(self.my_avatar)
            for handler in list(self._handlers):
                handler(peer, collided)


def talking_handler(model: RoomModel) -> CollisionHandler:
    """
    Build the standard handler: flag the peer as talking and unmute its
    audio while it collides with the local avatar, mute it otherwise.
    """

    def handle(peer: Avatar, collided: bool) -> None:
        peer.on_check_collision(collided)
        if collided:
            model.unmute(peer.avatar_id)
        else:
            model.mute(peer.avatar_id)

    return handle
