"""
Scene registry and per-frame scheduler.

The scheduler keeps every drawable entity keyed by a process-unique integer
id and renders them in registration order once per frame. Other per-frame
work (collision detection) hooks in through tick handlers.
"""

import asyncio
import itertools
import logging
from collections.abc import Callable
from dataclasses import dataclass

from .canvas import Canvas


logger = logging.getLogger(__name__)

DEFAULT_FPS = 60

# Share of the host window the canvas may occupy
WINDOW_WIDTH_RATIO = 0.85
WINDOW_HEIGHT_RATIO = 0.5


class DuplicateSceneObjectError(RuntimeError):
    """Raised when an entity is registered twice. Signals a programming error."""


@dataclass(frozen=True)
class Viewport:
    """
    Canvas plus the on-page geometry needed to place overlays.

    Attributes:
        canvas: Drawing surface
        css_width: Displayed width of the canvas on the page
        css_height: Displayed height of the canvas on the page
        left: Page x offset of the canvas' left edge
        top: Page y offset of the canvas' top edge
    """

    canvas: Canvas
    css_width: float
    css_height: float
    left: float = 0.0
    top: float = 0.0

    @property
    def width(self) -> int:
        return self.canvas.width

    @property
    def height(self) -> int:
        return self.canvas.height

    @classmethod
    def fit_window(
        cls,
        canvas: Canvas,
        window_width: float,
        window_height: float,
        left: float = 0.0,
    ) -> "Viewport":
        """Fit the canvas into the window area, keeping its aspect ratio."""
        max_width = window_width * WINDOW_WIDTH_RATIO
        max_height = window_height * WINDOW_HEIGHT_RATIO
        canvas_ratio = canvas.width / canvas.height

        css_width = max_width
        css_height = max_height
        if max_width / max_height < canvas_ratio:
            css_height = css_width / canvas_ratio
        else:
            css_width = css_height * canvas_ratio
        return cls(canvas, css_width, css_height, left=left)

    def calc_abs_top_left(self, canvas_x: float, canvas_y: float) -> tuple[float, float]:
        """Convert canvas pixel coordinates to page (top, left)."""
        width_ratio = self.css_width / self.width
        height_ratio = self.css_height / self.height
        return (
            canvas_y * height_ratio + self.top,
            canvas_x * width_ratio + self.left,
        )


class SceneObject:
    """Base class for anything the scheduler can draw."""

    _ids = itertools.count()

    def __init__(self) -> None:
        self._id = next(SceneObject._ids)

    @property
    def object_id(self) -> int:
        return self._id

    def render(self, viewport: Viewport) -> None:
        return

    def clear(self, viewport: Viewport) -> None:
        return

    def on_resize(self, viewport: Viewport) -> None:
        return


class SceneScheduler:
    """
    Registry of scene objects driven by a per-frame loop.

    Args:
        viewport: Canvas and page geometry to render into
        fps: Target frame rate of the loop started by ``start()``
    """

    def __init__(self, viewport: Viewport, fps: float = DEFAULT_FPS) -> None:
        self.viewport = viewport
        self.fps = fps
        self._objects: dict[int, SceneObject] = {}
        self._tick_handlers: list[Callable[[], None]] = []
        self._task: asyncio.Task | None = None
        self.frame_count = 0

    def add(self, obj: SceneObject) -> None:
        if obj.object_id in self._objects:
            raise DuplicateSceneObjectError(f"Duplicate id = {obj.object_id}")
        self._objects[obj.object_id] = obj

    def remove(self, obj: SceneObject) -> None:
        obj.clear(self.viewport)
        self._objects.pop(obj.object_id, None)

    def __contains__(self, obj: SceneObject) -> bool:
        return obj.object_id in self._objects

    def __len__(self) -> int:
        return len(self._objects)

    @property
    def objects(self) -> list[SceneObject]:
        return list(self._objects.values())

    def add_tick_handler(self, handler: Callable[[], None]) -> None:
        self._tick_handlers.append(handler)

    def remove_tick_handler(self, handler: Callable[[], None]) -> None:
        if handler in self._tick_handlers:
            self._tick_handlers.remove(handler)

    def render(self) -> None:
        for obj in list(self._objects.values()):
            obj.render(self.viewport)

    def tick(self) -> None:
        """Run one frame: draw every object, then the tick handlers."""
        self.frame_count += 1
        self.render()
        for handler in list(self._tick_handlers):
            handler()

    def resize(self, viewport: Viewport) -> None:
        self.viewport = viewport
        for obj in list(self._objects.values()):
            obj.on_resize(viewport)

    def start(self) -> None:
        if self._task is None:
            self._task = asyncio.create_task(self._run())
            logger.info(f"Scene loop started at {self.fps} fps")

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("Scene loop stopped")

    async def _run(self) -> None:
        frame_interval = 1.0 / self.fps
        while True:
            self.tick()
            await asyncio.sleep(frame_interval)
