"""
Room configuration loader.

This module loads named configuration profiles from the room.yaml file.
A profile collects the timing constants of the synchronization engine and
the local media/canvas settings.

Classes:
    RoomConfig: Dataclass holding all settings of a profile

Functions:
    load_profile: Load a specific profile by name from YAML config
"""

import os
from dataclasses import dataclass, fields
from pathlib import Path

import yaml


class ProfileNotFoundError(Exception):
    """Raised when a requested profile is not found in the configuration."""


@dataclass
class RoomConfig:
    """
    Configuration for one room client profile.

    Attributes:
        name: Internal key name for the profile
        ping_interval: Seconds between keep-alive pings
        pong_timeout: Seconds without Pong before the session fails (None: never)
        removal_delay: Seconds a quiet participant is kept before removal
        stall_timeout: Seconds without frames before a track counts as muted
        frames_per_cut: Scene ticks between two avatar draws
        frames_per_collision_check: Scene ticks between two collision checks
        fps: Scene frame rate
        canvas_width: Avatar canvas width in pixels
        canvas_height: Avatar canvas height in pixels
        window_width: Host window width used to size the canvas overlay
        window_height: Host window height used to size the canvas overlay
        sprite_path: Avatar sprite sheet image (None: avatars are not drawn)
        stable_mode: Duplicate ICE servers over TCP for restrictive networks
        video_source: Camera device or ffmpeg input
        video_format: ffmpeg format of the camera input
        audio_source: Microphone device (None when the video input carries audio)
        audio_format: ffmpeg format of the microphone input
    """

    name: str
    ping_interval: float = 3.0
    pong_timeout: float | None = None
    removal_delay: float = 5.0
    stall_timeout: float = 2.0
    frames_per_cut: int = 5
    frames_per_collision_check: int = 5
    fps: float = 60.0
    canvas_width: int = 960
    canvas_height: int = 540
    window_width: float = 1920.0
    window_height: float = 1080.0
    sprite_path: str | None = None
    stable_mode: bool = False
    video_source: str = "/dev/video0"
    video_format: str | None = "v4l2"
    audio_source: str | None = "default"
    audio_format: str | None = "pulse"


def _get_config_yaml_path() -> Path:
    """Get the path to the room.yaml file."""
    # An explicit path wins
    env_path = os.environ.get("ROOMSYNC_CONFIG_PATH")
    if env_path and Path(env_path).exists():
        return Path(env_path)

    # Look for room.yaml in the same directory as this module
    yaml_path = Path(__file__).parent / "room.yaml"
    if yaml_path.exists():
        return yaml_path

    raise FileNotFoundError(
        f"room.yaml not found. Checked: $ROOMSYNC_CONFIG_PATH, {yaml_path}"
    )


def load_all_profiles() -> dict[str, RoomConfig]:
    """
    Load all profiles from the configuration file.

    Returns:
        Dictionary mapping profile names to RoomConfig objects

    Raises:
        FileNotFoundError: If room.yaml is not found
    """
    yaml_path = _get_config_yaml_path()

    with open(yaml_path) as f:
        config = yaml.safe_load(f) or {}

    known = {f.name for f in fields(RoomConfig)} - {"name"}
    profiles = {}
    for name, data in config.items():
        data = data or {}
        unknown = set(data) - known
        if unknown:
            raise ValueError(f"Unknown settings in profile '{name}': {', '.join(sorted(unknown))}")
        profiles[name] = RoomConfig(name=name, **data)

    return profiles


def load_profile(profile_name: str) -> RoomConfig:
    """
    Load a specific profile by name from the YAML config.

    Args:
        profile_name: The key name of the profile to load (e.g., "default", "stable")

    Returns:
        RoomConfig object with the profile's settings

    Raises:
        ProfileNotFoundError: If the profile name is not found
        FileNotFoundError: If room.yaml is not found
    """
    profiles = load_all_profiles()

    if profile_name not in profiles:
        available = ", ".join(profiles.keys())
        raise ProfileNotFoundError(
            f"Profile '{profile_name}' not found. Available profiles: {available}"
        )

    return profiles[profile_name]


def list_profile_names() -> list[str]:
    """
    Get a list of all available profile names.

    Returns:
        List of profile key names
    """
    return list(load_all_profiles().keys())
