"""
Lifecycle of inbound participant media.

Tracks of one participant share a stream id. A participant becomes
displayable only once both its audio and its video track have arrived;
the manager then builds a video window (audio muted until the avatars
meet) and starts continuous audio playback.

Removal is debounced: when the video track goes quiet the participant is
marked as leaving and a removal timer starts. If media resumes before the
timer fires nothing is torn down; otherwise the window is removed and the
room model broadcasts the deletion so the avatar is retired as well.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable, Coroutine
from typing import Any

from aiortc.contrib.media import MediaBlackhole
from aiortc.mediastreams import MediaStreamTrack
from av import AudioFrame

from .model import RoomModel, VideoModel, VideoWindow
from .signaling import TRACK_ID_PREFIX
from .transport import MediaTrack


logger = logging.getLogger(__name__)

WAIT_BEFORE_REMOVAL_S = 5.0


class GatedAudioTrack(MediaStreamTrack):
    """
    Relays an audio track, replacing its frames with silence while muted.

    Frames keep their timing, format and layout so the sink sees one
    continuous stream whatever the mute state.
    """

    kind = "audio"

    def __init__(self, source: Any) -> None:
        super().__init__()
        self.source = source
        self.muted = False

    async def recv(self) -> AudioFrame:
        frame = await self.source.recv()
        if not self.muted:
            return frame

        silence = AudioFrame(format=frame.format.name, layout=frame.layout.name, samples=frame.samples)
        for p in silence.planes:
            p.update(bytes(p.buffer_size))
        silence.pts = frame.pts
        silence.sample_rate = frame.sample_rate
        silence.time_base = frame.time_base
        return silence


class AudioPlayback:
    """
    Continuous playback of one participant's audio.

    The sink is any aiortc media sink (``MediaBlackhole`` discards,
    ``MediaRecorder`` can target an audio device). It consumes a
    ``GatedAudioTrack``, so ``muted`` (toggled by the UI and the collision
    handler) silences what the sink receives without stopping playback.
    """

    def __init__(self, track: Any, sink: Any) -> None:
        self.track = track
        self.sink = sink
        self.output = GatedAudioTrack(track) if track is not None else None
        self._muted = False
        self.playing = False

    @property
    def muted(self) -> bool:
        return self._muted

    @muted.setter
    def muted(self, value: bool) -> None:
        self._muted = value
        if self.output is not None:
            self.output.muted = value

    async def start(self) -> None:
        if self.output is None or self.playing:
            return
        self.sink.addTrack(self.output)
        await self.sink.start()
        self.playing = True

    async def stop(self) -> None:
        if not self.playing:
            return
        await self.sink.stop()
        self.output.stop()
        self.playing = False


class TrackLifecycleManager:
    """
    Pairs inbound tracks into displayable participants and retires them.

    Args:
        model: Room view model receiving windows and notifications
        removal_delay: Seconds a participant may stay quiet before removal
        name_resolver: Coroutine function mapping a peer id to a display name
        sink_factory: Builds the audio sink for each participant
        window_height: Initial css height of new video windows
    """

    def __init__(
        self,
        model: RoomModel,
        removal_delay: float = WAIT_BEFORE_REMOVAL_S,
        name_resolver: Callable[[str], Awaitable[str]] | None = None,
        sink_factory: Callable[[], Any] = MediaBlackhole,
        window_height: float = 0.0,
    ) -> None:
        self.model = model
        self.removal_delay = removal_delay
        self.name_resolver = name_resolver
        self.sink_factory = sink_factory
        self.window_height = window_height
        self._pending: dict[str, dict[str, MediaTrack]] = {}
        self._active: dict[str, VideoModel] = {}
        self._timers: dict[str, asyncio.TimerHandle] = {}
        self._tasks: set[asyncio.Task] = set()

    def is_active(self, stream_id: str) -> bool:
        return stream_id in self._active

    def has_pending_removal(self, stream_id: str) -> bool:
        return stream_id in self._timers

    def is_pending(self, stream_id: str) -> bool:
        return stream_id in self._pending

    def on_track(self, track: MediaTrack) -> None:
        stream_id = track.stream_id
        if stream_id in self._active:
            logger.debug(f"{stream_id} already displayed, ignoring {track}")
            return

        group = self._pending.setdefault(stream_id, {})
        group[track.kind] = track
        track.once("ended", lambda: self._drop_pending(track))
        audio = group.get("audio")
        video = group.get("video")
        if audio is None or video is None:
            return

        del self._pending[stream_id]
        self._surface(stream_id, audio, video)

    def _surface(self, stream_id: str, audio: MediaTrack, video: MediaTrack) -> None:
        playback = AudioPlayback(audio.track, self.sink_factory())
        window = VideoWindow(id=stream_id, track=video.track, css_height=self.window_height)
        video_model = VideoModel(window=window, audio=playback)

        self._active[stream_id] = video_model
        self.model.put_video(stream_id, video_model)
        self.model.mute(stream_id)
        self.model.videos.append(window)
        logger.info(f"Participant {stream_id} is displayed")

        self._spawn(playback.start())
        if self.name_resolver is not None:
            self._spawn(self._resolve_name(window))

        video.on("mute", lambda: self._on_mute(stream_id))
        video.on("unmute", lambda: self._on_unmute(stream_id))
        if video.muted:
            self._on_mute(stream_id)

    def _drop_pending(self, track: MediaTrack) -> None:
        group = self._pending.get(track.stream_id)
        if group is None or group.get(track.kind) is not track:
            return
        logger.debug(f"{track} ended before its pair arrived")
        del group[track.kind]
        if not group:
            del self._pending[track.stream_id]

    async def _resolve_name(self, window: VideoWindow) -> None:
        peer_id = window.id.replace(TRACK_ID_PREFIX, "", 1)
        try:
            window.name = await self.name_resolver(peer_id)
        except Exception as e:
            logger.warning(f"Could not resolve name of {peer_id}: {e}")

    def _on_mute(self, stream_id: str) -> None:
        if stream_id not in self._active:
            return
        logger.debug(f"mute {stream_id}")
        self.model.leave(stream_id)
        self._cancel_timer(stream_id)
        loop = asyncio.get_running_loop()
        self._timers[stream_id] = loop.call_later(self.removal_delay, self._remove, stream_id)

    def _on_unmute(self, stream_id: str) -> None:
        if stream_id not in self._active:
            return
        logger.debug(f"unmute {stream_id}")
        self.model.play(stream_id)
        self._cancel_timer(stream_id)

    def _cancel_timer(self, stream_id: str) -> None:
        timer = self._timers.pop(stream_id, None)
        if timer is not None:
            timer.cancel()

    def _remove(self, stream_id: str) -> None:
        self._timers.pop(stream_id, None)
        self._pending.pop(stream_id, None)
        video_model = self._active.pop(stream_id, None)
        if video_model is None:
            return
        logger.info(f"Remove the video {stream_id}")
        self.model.remove_video(stream_id)
        self._spawn(video_model.audio.stop())
        self.model.delete(stream_id)

    def _spawn(self, coro: Coroutine[Any, Any, None]) -> None:
        task = asyncio.ensure_future(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def close(self) -> None:
        for stream_id in list(self._timers):
            self._cancel_timer(stream_id)
        for task in list(self._tasks):
            task.cancel()
        for video_model in self._active.values():
            await video_model.audio.stop()
        self._active.clear()
        self._pending.clear()
