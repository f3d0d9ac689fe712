"""
In-memory view model of the room.

The UI layer binds to these objects: avatar name tags, video windows and
per-peer audio. Everything is keyed by the peer's track id
(``sfu-stream-<peer uuid>``), which is also the avatar id.
"""

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from pyee import EventEmitter


logger = logging.getLogger(__name__)


class AvatarState(str, Enum):
    PLAYING = "Playing"
    LEAVING = "Leaving"


@dataclass
class AvatarModel:
    """Name-tag overlay state for one avatar."""

    id: str
    name: str
    top: float = 0.0
    left: float = 0.0
    talking: bool = False
    state: AvatarState = AvatarState.PLAYING


@dataclass
class VideoWindow:
    """A displayable participant video."""

    id: str
    name: str = ""
    track: Any = None
    is_displayed: bool = False
    css_height: float = 0.0


@dataclass
class VideoModel:
    window: VideoWindow
    audio: Any = None


@dataclass
class RoomModel:
    """
    View model shared by the synchronization components.

    ``delete(id)`` is the single "entity deleted" notification: subscribers
    registered with ``on_delete`` retire whatever they hold for that id.
    """

    avatars: list[AvatarModel] = field(default_factory=list)
    videos: list[VideoWindow] = field(default_factory=list)
    self_video: Any = None
    self_video_css_height: float = 0.0

    def __post_init__(self) -> None:
        self._video_models: dict[str, VideoModel] = {}
        self._avatar_models: dict[str, AvatarModel] = {}
        self._events = EventEmitter()

    # ------------------------------------------------------------------
    # Handles
    # ------------------------------------------------------------------

    def put_video(self, peer_id: str, video: VideoModel) -> None:
        self._video_models[peer_id] = video

    def get_video(self, peer_id: str) -> VideoModel | None:
        return self._video_models.get(peer_id)

    def put_avatar(self, peer_id: str, avatar: AvatarModel) -> None:
        self._avatar_models[peer_id] = avatar

    def get_avatar(self, peer_id: str) -> AvatarModel | None:
        return self._avatar_models.get(peer_id)

    def remove_avatar(self, peer_id: str) -> None:
        self._avatar_models.pop(peer_id, None)
        self.avatars = [a for a in self.avatars if a.id != peer_id]

    def remove_video(self, peer_id: str) -> None:
        self.videos = [v for v in self.videos if v.id != peer_id]

    # ------------------------------------------------------------------
    # Peer state
    # ------------------------------------------------------------------

    def mute(self, peer_id: str) -> None:
        video = self._video_models.get(peer_id)
        if video is not None and video.audio is not None:
            video.audio.muted = True

    def unmute(self, peer_id: str) -> None:
        video = self._video_models.get(peer_id)
        if video is not None and video.audio is not None:
            video.audio.muted = False

    def leave(self, peer_id: str) -> None:
        avatar = self._avatar_models.get(peer_id)
        if avatar is not None:
            avatar.state = AvatarState.LEAVING

    def play(self, peer_id: str) -> None:
        avatar = self._avatar_models.get(peer_id)
        if avatar is not None:
            avatar.state = AvatarState.PLAYING

    def delete(self, peer_id: str) -> None:
        self._video_models.pop(peer_id, None)
        logger.info(f"Peer {peer_id} deleted")
        self._events.emit("delete", peer_id)

    def on_delete(self, f: Callable[[str], None]) -> Callable[[str], None]:
        self._events.on("delete", f)
        return f

    def remove_delete_listener(self, f: Callable[[str], None]) -> None:
        self._events.remove_listener("delete", f)

    def snapshot(self) -> dict:
        return {
            "avatars": [
                {
                    "id": a.id,
                    "name": a.name,
                    "top": a.top,
                    "left": a.left,
                    "talking": a.talking,
                    "state": a.state.value,
                }
                for a in self.avatars
            ],
            "videos": [
                {"id": v.id, "name": v.name, "is_displayed": v.is_displayed}
                for v in self.videos
            ],
        }
