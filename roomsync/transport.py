"""
aiortc-backed media transport.

``PeerTransport`` wraps an ``RTCPeerConnection`` and exposes the small
surface the signaling session drives:

- ``set_remote_description`` / ``create_answer`` for the offer/answer step
- ``announce_local_candidates`` to emit the gathered local ICE candidates
- ``add_ice_candidate`` for candidates relayed by the server
- ``"track"`` events carrying a ``MediaTrack`` tagged with its stream id
- ``"datachannel"`` events carrying the raw data channel

aiortc gathers candidates while applying the local description instead of
trickling them, so the candidates are read back from the local SDP.
Remote tracks never signal mute/unmute on their own; a ``TrackMonitor``
watches frame flow and flags a track muted while it is stalled.
"""

import asyncio
import logging
from typing import Any

from aiortc import (
    RTCConfiguration,
    RTCIceServer,
    RTCPeerConnection,
    RTCSessionDescription,
)
from aiortc.contrib.media import MediaPlayer, MediaRelay
from aiortc.mediastreams import MediaStreamError, MediaStreamTrack
from aiortc.sdp import SessionDescription, candidate_from_sdp, candidate_to_sdp
from pyee import EventEmitter


logger = logging.getLogger(__name__)

# A track delivering no frame for this long counts as muted
DEFAULT_STALL_TIMEOUT_S = 2.0


class MediaAcquisitionError(Exception):
    """Raised when the local camera/microphone cannot be opened."""


class MediaTrack(EventEmitter):
    """
    One inbound media component.

    Emits ``"mute"`` when the track stops delivering media, ``"unmute"``
    when it resumes and ``"ended"`` once its source is gone for good.

    Attributes:
        track_id: Transport track id
        kind: "audio" or "video"
        stream_id: Grouping id shared by the audio and video of one peer
        track: Consumable media track (or None in tests)
    """

    def __init__(self, track_id: str, kind: str, stream_id: str, track: Any = None) -> None:
        super().__init__()
        self.track_id = track_id
        self.kind = kind
        self.stream_id = stream_id
        self.track = track
        self.muted = False
        self.ended = False

    def set_muted(self, muted: bool) -> None:
        if muted == self.muted:
            return
        self.muted = muted
        self.emit("mute" if muted else "unmute")

    def end(self) -> None:
        if self.ended:
            return
        self.set_muted(True)
        self.ended = True
        self.emit("ended")

    def __repr__(self) -> str:
        return f"MediaTrack({self.kind} {self.track_id} in {self.stream_id})"


class TrackMonitor:
    """Flags a ``MediaTrack`` muted while its source stops producing frames."""

    def __init__(
        self,
        media_track: MediaTrack,
        source: MediaStreamTrack,
        stall_timeout: float = DEFAULT_STALL_TIMEOUT_S,
    ) -> None:
        self.media_track = media_track
        self.source = source
        self.stall_timeout = stall_timeout
        self._task: asyncio.Task | None = None

    def start(self) -> None:
        if self._task is None:
            self._task = asyncio.create_task(self._run())

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None

    async def _run(self) -> None:
        while True:
            try:
                await asyncio.wait_for(self.source.recv(), timeout=self.stall_timeout)
            except asyncio.TimeoutError:
                self.media_track.set_muted(True)
                continue
            except MediaStreamError:
                logger.debug(f"{self.media_track} ended")
                self.media_track.end()
                return
            self.media_track.set_muted(False)


def local_candidates(sdp: str) -> list[dict[str, Any]]:
    """Extract the ICE candidates embedded in an SDP, in browser JSON form."""
    candidates = []
    description = SessionDescription.parse(sdp)
    for index, media in enumerate(description.media):
        for candidate in media.ice_candidates:
            candidates.append(
                {
                    "candidate": f"candidate:{candidate_to_sdp(candidate)}",
                    "sdpMid": media.rtp.muxId,
                    "sdpMLineIndex": index,
                    "usernameFragment": media.ice.usernameFragment,
                }
            )
    return candidates


def stream_ids_by_mid(sdp: str) -> dict[str, str]:
    """Map each media section's mid to the stream id of its ``a=msid``."""
    mapping = {}
    for media in SessionDescription.parse(sdp).media:
        if media.msid and media.rtp.muxId is not None:
            mapping[media.rtp.muxId] = media.msid.split()[0]
    return mapping


class PeerTransport(EventEmitter):
    """
    Media transport to the forwarding unit.

    Args:
        ice_servers: STUN/TURN servers for the connection
        stall_timeout: Seconds without frames before a track counts as muted
    """

    def __init__(
        self,
        ice_servers: list[RTCIceServer] | None = None,
        stall_timeout: float = DEFAULT_STALL_TIMEOUT_S,
    ) -> None:
        super().__init__()
        self.pc = RTCPeerConnection(configuration=RTCConfiguration(iceServers=ice_servers or []))
        self.stall_timeout = stall_timeout
        self._relay = MediaRelay()
        self._monitors: list[TrackMonitor] = []
        self._players: list[MediaPlayer] = []
        self._stream_ids: dict[str, str] = {}

        self.pc.on("track", self._on_track)
        self.pc.on("datachannel", self._on_datachannel)
        self.pc.on("connectionstatechange", self._on_connection_state_change)

    async def acquire_local_media(
        self,
        video_source: str,
        video_format: str | None = None,
        audio_source: str | None = None,
        audio_format: str | None = None,
        options: dict[str, str] | None = None,
    ) -> None:
        """
        Open the local camera (and microphone) and publish the tracks.

        Args:
            video_source: Camera device or ffmpeg input (e.g. "/dev/video0")
            video_format: ffmpeg input format for the camera (e.g. "v4l2")
            audio_source: Microphone device, when it is a separate input
            audio_format: ffmpeg input format for the microphone (e.g. "pulse")
            options: ffmpeg options for the camera input

        Raises:
            MediaAcquisitionError: If a device cannot be opened or the camera
                yields no video
        """
        video_player = self._open_player(video_source, video_format, options)
        if video_player.video is None:
            raise MediaAcquisitionError("Video track does not exist.")
        players = [video_player]
        if audio_source is not None:
            players.append(self._open_player(audio_source, audio_format))

        for player in players:
            for track in (player.audio, player.video):
                if track is not None:
                    self.pc.addTrack(track)
        self._players = players
        logger.info(f"Local media acquired from {video_source}")

    @staticmethod
    def _open_player(
        source: str, media_format: str | None, options: dict[str, str] | None = None
    ) -> MediaPlayer:
        try:
            return MediaPlayer(source, format=media_format, options=options or {})
        except Exception as e:
            raise MediaAcquisitionError(f"Cannot open media source {source!r}: {e}") from e

    async def set_remote_description(self, description: dict[str, str]) -> None:
        await self.pc.setRemoteDescription(
            RTCSessionDescription(sdp=description["sdp"], type=description["type"])
        )
        self._stream_ids.update(stream_ids_by_mid(description["sdp"]))

    async def create_answer(self) -> dict[str, str]:
        """Create the answer, apply it locally and return it."""
        answer = await self.pc.createAnswer()
        await self.pc.setLocalDescription(answer)
        local = self.pc.localDescription
        return {"type": local.type, "sdp": local.sdp}

    def announce_local_candidates(self) -> None:
        """Emit every gathered local candidate, then the end-of-candidates marker."""
        local = self.pc.localDescription
        if local is None:
            return
        for candidate in local_candidates(local.sdp):
            self.emit("icecandidate", candidate)
        self.emit("icecandidate", None)

    async def add_ice_candidate(self, candidate: dict[str, Any]) -> None:
        sdp = candidate.get("candidate") or ""
        if not sdp:
            return
        if sdp.startswith("candidate:"):
            sdp = sdp[len("candidate:") :]
        ice = candidate_from_sdp(sdp)
        ice.sdpMid = candidate.get("sdpMid", candidate.get("spdMid"))
        ice.sdpMLineIndex = candidate.get("sdpMLineIndex")
        await self.pc.addIceCandidate(ice)

    async def close(self) -> None:
        for monitor in self._monitors:
            await monitor.stop()
        self._monitors.clear()
        for player in self._players:
            for track in (player.audio, player.video):
                if track is not None:
                    track.stop()
        self._players.clear()
        await self.pc.close()

    def _on_track(self, track: MediaStreamTrack) -> None:
        mid = None
        for transceiver in self.pc.getTransceivers():
            if transceiver.receiver.track is track:
                mid = transceiver.mid
                break
        stream_id = self._stream_ids.get(mid, "")

        media_track = MediaTrack(
            track_id=track.id,
            kind=track.kind,
            stream_id=stream_id,
            track=self._relay.subscribe(track),
        )
        monitor = TrackMonitor(media_track, self._relay.subscribe(track), self.stall_timeout)
        monitor.start()
        self._monitors.append(monitor)
        self.emit("track", media_track)

    def _on_datachannel(self, channel: Any) -> None:
        self.emit("datachannel", channel)

    def _on_connection_state_change(self) -> None:
        state = self.pc.connectionState
        logger.info(f"Peer connection state: {state}")
        if state == "failed":
            self.emit("failed")
