"""
Drawing surface used by scene entities.

Entities only need two primitives: blit a region of a sprite sheet into a
destination rectangle, and clear a rectangle. ``Canvas`` names that contract;
``FrameBuffer`` implements it on an RGBA numpy array so the scene can run
headless (and be inspected in tests). ``SpriteSheet`` loads sprite images
with Pillow.
"""

import logging
from pathlib import Path
from typing import Protocol

import numpy as np
from PIL import Image


logger = logging.getLogger(__name__)


class Canvas(Protocol):
    """Minimal 2-D drawing surface."""

    width: int
    height: int

    def draw_image(
        self,
        image: np.ndarray,
        sx: float,
        sy: float,
        sw: float,
        sh: float,
        dx: float,
        dy: float,
        dw: float,
        dh: float,
    ) -> None: ...

    def clear_rect(self, x: float, y: float, w: float, h: float) -> None: ...


class FrameBuffer:
    """
    In-memory RGBA canvas backed by a numpy array.

    Attributes:
        width: Canvas width in pixels
        height: Canvas height in pixels
        pixels: (height, width, 4) uint8 array
    """

    def __init__(self, width: int, height: int) -> None:
        self.width = width
        self.height = height
        self.pixels = np.zeros((height, width, 4), dtype=np.uint8)

    def _clip(self, x: float, y: float, w: float, h: float) -> tuple[int, int, int, int]:
        x0 = max(0, int(round(x)))
        y0 = max(0, int(round(y)))
        x1 = min(self.width, int(round(x + w)))
        y1 = min(self.height, int(round(y + h)))
        return x0, y0, x1, y1

    def draw_image(
        self,
        image: np.ndarray,
        sx: float,
        sy: float,
        sw: float,
        sh: float,
        dx: float,
        dy: float,
        dw: float,
        dh: float,
    ) -> None:
        """
        Copy the source rectangle of ``image`` into the destination rectangle.

        Scaling is nearest-neighbour and pixels with zero alpha are skipped,
        which is all a pixel-art sprite sheet needs.
        """
        src = image[int(sy) : int(sy + sh), int(sx) : int(sx + sw)]
        if src.size == 0:
            return

        x0, y0, x1, y1 = self._clip(dx, dy, dw, dh)
        if x0 >= x1 or y0 >= y1:
            return

        # Map each destination pixel back to its source pixel
        ox = int(round(dx))
        oy = int(round(dy))
        cols = ((np.arange(x0, x1) - ox) * src.shape[1] // max(1, int(round(dw)))).clip(
            0, src.shape[1] - 1
        )
        rows = ((np.arange(y0, y1) - oy) * src.shape[0] // max(1, int(round(dh)))).clip(
            0, src.shape[0] - 1
        )
        scaled = src[rows[:, None], cols[None, :]]

        target = self.pixels[y0:y1, x0:x1]
        opaque = scaled[..., 3] > 0
        target[opaque] = scaled[opaque]

    def clear_rect(self, x: float, y: float, w: float, h: float) -> None:
        x0, y0, x1, y1 = self._clip(x, y, w, h)
        if x0 < x1 and y0 < y1:
            self.pixels[y0:y1, x0:x1] = 0


class SpriteSheet:
    """RGBA sprite sheet image loaded from disk."""

    def __init__(self, image: np.ndarray) -> None:
        self.image = image

    @classmethod
    def load(cls, path: str | Path) -> "SpriteSheet":
        """
        Load a sprite sheet from an image file.

        Raises:
            FileNotFoundError: If the image does not exist
        """
        with Image.open(path) as img:
            image = np.asarray(img.convert("RGBA"), dtype=np.uint8)
        logger.debug(f"Loaded sprite sheet {path} ({image.shape[1]}x{image.shape[0]})")
        return cls(image)
