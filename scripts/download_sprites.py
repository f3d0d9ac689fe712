#!/usr/bin/env python3
"""
Download the avatar sprite sheet.

The room client draws every avatar from one 16x18 character sprite sheet
(three walking cuts per direction, rows ordered down, up, left, right).
This script fetches a public CC0 sheet into the assets directory used by
the room.yaml profiles.

Usage:
    python scripts/download_sprites.py
    python scripts/download_sprites.py --output-dir ./my_assets
"""

import argparse
import logging
import subprocess
import sys
import urllib.request
from pathlib import Path


logger = logging.getLogger(__name__)

# CC0 licensed character sprites
SPRITES = {
    "green_cap_character": {
        "url": "https://opengameart.org/sites/default/files/Green-Cap-Character-16x18.png",
        "filename": "green_cap_character.png",
        "description": "Green cap character (16x18, OpenGameArt)",
    },
}


def download_file(url: str, output_path: Path, description: str = "") -> bool:
    """
    Download a file from URL to local path.

    Args:
        url: Source URL
        output_path: Local destination path
        description: Human-readable description for logging

    Returns:
        True if successful, False otherwise
    """
    if output_path.exists():
        logger.info(f"  Already exists: {output_path.name}")
        return True

    logger.info(f"  Downloading: {description or url}")

    try:
        req = urllib.request.Request(url, headers={"User-Agent": "roomsync-sprite-fetch"})
        with urllib.request.urlopen(req, timeout=60) as response:
            output_path.parent.mkdir(parents=True, exist_ok=True)
            with open(output_path, "wb") as f:
                f.write(response.read())
        logger.info(f"  Saved: {output_path}")
        return True
    except Exception as e:
        logger.warning(f"  urllib failed: {e}, trying curl...")

    try:
        subprocess.run(
            ["curl", "-L", "-o", str(output_path), url],
            check=True,
            capture_output=True,
        )
        logger.info(f"  Saved: {output_path}")
        return True
    except Exception as e:
        logger.error(f"  Download failed: {e}")
        return False


def main() -> None:
    parser = argparse.ArgumentParser(description="Download the avatar sprite sheet")
    parser.add_argument(
        "--output-dir",
        type=Path,
        default=Path("assets"),
        help="Output directory for downloaded files (default: ./assets)",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Verbose output",
    )

    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(message)s",
    )

    assets_dir = args.output_dir.resolve()
    assets_dir.mkdir(parents=True, exist_ok=True)
    logger.info(f"Output directory: {assets_dir}")

    failed = [
        name
        for name, info in SPRITES.items()
        if not download_file(info["url"], assets_dir / info["filename"], info["description"])
    ]

    if failed:
        logger.error(f"Could not fetch: {', '.join(failed)}")
        sys.exit(1)
    logger.info("Set sprite_path in roomsync/room.yaml to use another sheet")


if __name__ == "__main__":
    main()
