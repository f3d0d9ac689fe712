"""
Room Client - session wiring and entrypoint.

This module provides the client that:
1. Fetches ICE servers from the room application
2. Opens the local camera/microphone and the media transport
3. Runs the signaling session with the forwarding unit
4. Surfaces participant media and runs the avatar scene over each data channel

A fatal session error is reported to the user once and ends the client
shortly afterwards, the way the browser client navigates back home.

Environment variables:
    ROOMSYNC_SERVER_URL: Origin of the room application (http(s)://host)
    ROOMSYNC_TOKEN: Member token for the room
    ROOMSYNC_MEMBER_NAME: Display name of the local member
    ROOMSYNC_PROFILE: Key into room.yaml

Usage:
    python -m roomsync.room_client [--profile NAME] [--server URL] [--token TOKEN]
"""

import argparse
import asyncio
import logging
import os
import signal
import sys

import httpx

from .api import RoomApiClient, RoomApiError, to_rtc_ice_servers
from .canvas import FrameBuffer, SpriteSheet
from .collision import CollisionDetector, talking_handler
from .config import ProfileNotFoundError, RoomConfig, load_profile
from .model import RoomModel
from .scene import SceneScheduler, Viewport
from .signaling import SignalingSession
from .status_server import StatusServer
from .sync import AvatarSyncChannel, InputBus
from .tracks import TrackLifecycleManager
from .transport import MediaAcquisitionError, PeerTransport


logger = logging.getLogger(__name__)

MEDIA_DENIED_MESSAGE = (
    "This application requires to be allowed to access camera and microphone. "
    "Please allow the access and join the room again."
)

# Delay between reporting a fatal error and leaving the room
RETURN_HOME_DELAY_S = 0.3

# Participant video windows take this share of the window height
VIDEO_HEIGHT_RATIO = 0.25


def signaling_url(base_url: str, token: str) -> str:
    """Build the signaling WebSocket URL from the application origin."""
    url = httpx.URL(base_url)
    scheme = "wss" if url.scheme == "https" else "ws"
    return str(url.copy_with(scheme=scheme, path=f"/ws-app/subscribe/{token}", query=None))


class RoomClient:
    """
    One member's session in a room.

    This class handles:
    - Loading the avatar sprite
    - Negotiating media with the forwarding unit
    - Pairing participant tracks into video windows
    - Avatar synchronization and proximity-based audio
    """

    def __init__(
        self,
        config: RoomConfig,
        server_url: str,
        token: str,
        member_name: str,
        api: RoomApiClient | None = None,
    ) -> None:
        """
        Initialize the room client.

        Args:
            config: Profile settings
            server_url: Origin of the room application
            token: Member token
            member_name: Display name of the local member
            api: Application API client (default: one for server_url)
        """
        self.config = config
        self.server_url = server_url
        self.token = token
        self.member_name = member_name

        self.model = RoomModel(self_video_css_height=config.window_height * VIDEO_HEIGHT_RATIO)
        self.input_bus = InputBus()
        self.canvas = FrameBuffer(config.canvas_width, config.canvas_height)
        self.scene = SceneScheduler(
            Viewport.fit_window(self.canvas, config.window_width, config.window_height),
            fps=config.fps,
        )
        self.detector = CollisionDetector(config.frames_per_collision_check)
        self.detector.on_collision(talking_handler(self.model))
        self.sprite: SpriteSheet | None = None

        self.api = api or RoomApiClient(server_url, token)
        self.transport: PeerTransport | None = None
        self.session: SignalingSession | None = None
        self.tracks: TrackLifecycleManager | None = None
        self.channels: list[AvatarSyncChannel] = []
        self.fatal_message: str | None = None

        self._session_task: asyncio.Task | None = None
        self._shutdown_event = asyncio.Event()

    async def initialize(self) -> None:
        """Load the sprite sheet. Avatars are not drawn when it is unavailable."""
        if self.config.sprite_path is None:
            logger.warning("No sprite configured, avatars will not be drawn")
            return

        loop = asyncio.get_running_loop()
        try:
            self.sprite = await loop.run_in_executor(None, SpriteSheet.load, self.config.sprite_path)
        except OSError as e:
            logger.warning(f"Could not load sprite {self.config.sprite_path}: {e}")
            return
        logger.info(f"Sprite loaded from {self.config.sprite_path}")

        for channel in self.channels:
            channel.load_sprite(self.sprite)

    async def connect(self) -> None:
        """
        Join the room.

        Fatal conditions (media denied, ICE servers unavailable, signaling
        failure) are reported through ``fatal_message`` and end the client.
        """
        try:
            servers = await self.api.fetch_ice_servers()
        except RoomApiError as e:
            self._on_fatal(f"Cannot fetch ICE servers: {e}")
            return
        ice_servers = to_rtc_ice_servers(servers, stable_mode=self.config.stable_mode)
        if self.config.stable_mode:
            logger.info("Stable mode: TCP relay candidates added")

        self.transport = PeerTransport(ice_servers, stall_timeout=self.config.stall_timeout)
        try:
            await self.transport.acquire_local_media(
                video_source=self.config.video_source,
                video_format=self.config.video_format,
                audio_source=self.config.audio_source,
                audio_format=self.config.audio_format,
            )
        except MediaAcquisitionError as e:
            logger.error(f"Local media unavailable: {e}")
            self._on_fatal(MEDIA_DENIED_MESSAGE)
            return

        self.tracks = TrackLifecycleManager(
            self.model,
            removal_delay=self.config.removal_delay,
            name_resolver=self.api.fetch_member_name,
            window_height=self.config.window_height * VIDEO_HEIGHT_RATIO,
        )
        self.session = SignalingSession(
            self.transport,
            ping_interval=self.config.ping_interval,
            pong_timeout=self.config.pong_timeout,
        )
        self.session.on("track", self.tracks.on_track)
        self.session.on("datachannel", self._on_datachannel)
        self.session.on("fatal", self._on_fatal)

        self.scene.add_tick_handler(self.detector.detect_collision)
        self.scene.start()

        self._session_task = asyncio.create_task(
            self.session.open(signaling_url(self.server_url, self.token))
        )
        logger.info(f"Joining room as {self.member_name}")

    def _on_datachannel(self, channel_id: str, channel) -> None:
        sync = AvatarSyncChannel(
            self_id=channel_id,
            self_name=self.member_name,
            channel=channel,
            scene=self.scene,
            detector=self.detector,
            model=self.model,
            input_bus=self.input_bus,
            frames_per_cut=self.config.frames_per_cut,
            sprite=self.sprite,
        )
        sync.attach()
        self.channels.append(sync)

    def _on_fatal(self, reason: str) -> None:
        if self.fatal_message is not None:
            return
        self.fatal_message = reason
        logger.error(f"Leaving the room: {reason}")
        asyncio.get_running_loop().call_later(RETURN_HOME_DELAY_S, self.request_shutdown)

    async def run(self) -> None:
        """Wait until shutdown is requested."""
        logger.info("Room client running. Press Ctrl+C to stop.")
        await self._shutdown_event.wait()

    async def shutdown(self) -> None:
        """Leave the room and release every resource."""
        logger.info("Shutting down room client...")

        for channel in self.channels:
            channel.detach()
        self.channels.clear()

        self.scene.remove_tick_handler(self.detector.detect_collision)
        await self.scene.stop()

        if self.session is not None:
            await self.session.close()
        if self._session_task is not None:
            self._session_task.cancel()
            try:
                await self._session_task
            except asyncio.CancelledError:
                pass
        if self.tracks is not None:
            await self.tracks.close()
        if self.transport is not None:
            await self.transport.close()
        await self.api.aclose()

        logger.info("Room client shutdown complete")

    def request_shutdown(self) -> None:
        """Request graceful shutdown of the client."""
        self._shutdown_event.set()


async def main(
    profile_name: str,
    server_url: str | None = None,
    token: str | None = None,
    member_name: str | None = None,
    status_port: int | None = None,
) -> int:
    """
    Main entry point for the room client.

    Args:
        profile_name: Name of the profile from room.yaml
        server_url: Room application origin (overrides env var)
        token: Member token (overrides env var)
        member_name: Display name (overrides env var)
        status_port: Port of the status server, None to disable it

    Returns:
        Process exit code
    """
    server_url = server_url or os.environ.get("ROOMSYNC_SERVER_URL")
    token = token or os.environ.get("ROOMSYNC_TOKEN")
    member_name = member_name or os.environ.get("ROOMSYNC_MEMBER_NAME", "guest")

    if not server_url:
        logger.error("ROOMSYNC_SERVER_URL environment variable is required")
        return 1
    if not token:
        logger.error("ROOMSYNC_TOKEN environment variable is required")
        return 1

    try:
        config = load_profile(profile_name)
    except ProfileNotFoundError as e:
        logger.error(str(e))
        return 1

    logger.info(f"Using profile: {config.name}")

    client = RoomClient(config, server_url, token, member_name)
    status_server = None
    if status_port is not None:
        status_server = StatusServer(client, status_port)
        status_server.start()

    loop = asyncio.get_running_loop()

    def signal_handler() -> None:
        logger.info("Received shutdown signal")
        client.request_shutdown()

    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, signal_handler)

    try:
        await client.initialize()
        await client.connect()
        await client.run()
    except Exception as e:
        logger.error(f"Client error: {e}")
        raise
    finally:
        await client.shutdown()
        if status_server is not None:
            status_server.stop()

    return 1 if client.fatal_message is not None else 0


def parse_args() -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        description="Room client - video room with avatar proximity audio"
    )
    parser.add_argument(
        "--profile",
        default=os.environ.get("ROOMSYNC_PROFILE", "default"),
        help="Profile name from room.yaml (default: $ROOMSYNC_PROFILE or 'default')",
    )
    parser.add_argument(
        "--server",
        default=None,
        help="Room application origin (default: $ROOMSYNC_SERVER_URL)",
    )
    parser.add_argument(
        "--token",
        default=None,
        help="Member token (default: $ROOMSYNC_TOKEN)",
    )
    parser.add_argument(
        "--name",
        default=None,
        help="Display name (default: $ROOMSYNC_MEMBER_NAME or 'guest')",
    )
    parser.add_argument(
        "--status-port",
        type=int,
        default=None,
        help="Serve /health and /peers on this port (default: disabled)",
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (default: INFO)",
    )
    return parser.parse_args()


def run() -> None:
    """Console script entry point."""
    args = parse_args()

    # Configure logging
    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    sys.exit(
        asyncio.run(
            main(
                profile_name=args.profile,
                server_url=args.server,
                token=args.token,
                member_name=args.name,
                status_port=args.status_port,
            )
        )
    )


if __name__ == "__main__":
    run()
