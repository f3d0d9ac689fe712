"""Tests for the SDP helpers and stall-based mute detection."""

import asyncio

import pytest
from aiortc.mediastreams import MediaStreamError

from .transport import MediaTrack, TrackMonitor, local_candidates, stream_ids_by_mid

SDP = "\r\n".join(
    [
        "v=0",
        "o=- 3907373400 3907373400 IN IP4 0.0.0.0",
        "s=-",
        "t=0 0",
        "a=group:BUNDLE 0 1",
        "a=msid-semantic:WMS *",
        "m=audio 50000 UDP/TLS/RTP/SAVPF 111",
        "c=IN IP4 10.0.0.1",
        "a=sendonly",
        "a=mid:0",
        "a=msid:sfu-stream-b 1f2e-audio",
        "a=rtcp-mux",
        "a=rtpmap:111 opus/48000/2",
        "a=candidate:1 1 udp 2130706431 10.0.0.1 50000 typ host",
        "a=end-of-candidates",
        "a=ice-ufrag:Xq1e",
        "a=ice-pwd:kJ9rTS1xPZtAy7ZGdDJ8eMzW",
        "a=fingerprint:sha-256 8B:F4:4C:2B:7E:2A:F0:E4:D5:03:E6:49:0A:9D:7C:9C:0A:3E:C0:57:85:27:55:C1:C0:92:0E:D9:5A:37:2A:45",
        "a=setup:actpass",
        "m=video 50000 UDP/TLS/RTP/SAVPF 96",
        "c=IN IP4 10.0.0.1",
        "a=sendonly",
        "a=mid:1",
        "a=msid:sfu-stream-b 1f2e-video",
        "a=rtcp-mux",
        "a=rtpmap:96 VP8/90000",
        "a=candidate:1 1 udp 2130706431 10.0.0.1 50000 typ host",
        "a=end-of-candidates",
        "a=ice-ufrag:Xq1e",
        "a=ice-pwd:kJ9rTS1xPZtAy7ZGdDJ8eMzW",
        "a=fingerprint:sha-256 8B:F4:4C:2B:7E:2A:F0:E4:D5:03:E6:49:0A:9D:7C:9C:0A:3E:C0:57:85:27:55:C1:C0:92:0E:D9:5A:37:2A:45",
        "a=setup:actpass",
        "",
    ]
)


class FakeSource:
    """Media source whose frames are pushed by the test."""

    def __init__(self):
        self.frames: asyncio.Queue = asyncio.Queue()

    async def recv(self):
        frame = await self.frames.get()
        if frame is None:
            raise MediaStreamError
        return frame


def test_stream_ids_by_mid():
    assert stream_ids_by_mid(SDP) == {"0": "sfu-stream-b", "1": "sfu-stream-b"}


def test_local_candidates_in_browser_form():
    candidates = local_candidates(SDP)
    assert len(candidates) == 2
    first = candidates[0]
    assert first["candidate"].startswith("candidate:1 1 udp 2130706431 10.0.0.1 50000 typ host")
    assert first["sdpMid"] == "0"
    assert first["sdpMLineIndex"] == 0
    assert first["usernameFragment"] == "Xq1e"
    assert candidates[1]["sdpMLineIndex"] == 1


def test_media_track_emits_only_on_change():
    track = MediaTrack("t", "video", "sfu-stream-b")
    events = []
    track.on("mute", lambda: events.append("mute"))
    track.on("unmute", lambda: events.append("unmute"))

    track.set_muted(True)
    track.set_muted(True)
    track.set_muted(False)
    assert events == ["mute", "unmute"]


def test_media_track_end_mutes_once():
    track = MediaTrack("t", "audio", "sfu-stream-b")
    events = []
    for name in ("mute", "ended"):
        track.on(name, lambda name=name: events.append(name))

    track.end()
    track.end()
    assert track.muted
    assert events == ["mute", "ended"]


@pytest.mark.asyncio
async def test_monitor_flags_stalled_track():
    track = MediaTrack("t", "video", "sfu-stream-b")
    source = FakeSource()
    monitor = TrackMonitor(track, source, stall_timeout=0.02)
    monitor.start()

    await asyncio.sleep(0.05)
    assert track.muted

    source.frames.put_nowait(object())
    await asyncio.sleep(0.005)
    assert not track.muted

    await monitor.stop()


@pytest.mark.asyncio
async def test_monitor_mutes_ended_track():
    track = MediaTrack("t", "audio", "sfu-stream-b")
    source = FakeSource()
    monitor = TrackMonitor(track, source, stall_timeout=1.0)
    monitor.start()

    source.frames.put_nowait(None)
    await asyncio.sleep(0.01)
    assert track.muted
    assert track.ended
    await monitor.stop()
