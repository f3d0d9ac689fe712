"""
Animated, directional avatar sprite bound to one participant.

An avatar owns its room-space position, facing direction and animation cut.
It draws itself at a throttled rate, clears only its previous footprint
before redrawing, and publishes the position of its name tag to the
participant's ``AvatarModel``.

Sprite sheet layout: one row per ``AvatarDirection`` value, three
animation cuts per row, each cut ``SPRITE_UNIT_WIDTH x SPRITE_UNIT_HEIGHT``
pixels, drawn scaled by ``SPRITE_SCALE``.
"""

import logging

from .canvas import SpriteSheet
from .geometry import Vector
from .messaging import AvatarDirection, Coord, MoveMessage
from .model import AvatarModel
from .scene import SceneObject, Viewport


logger = logging.getLogger(__name__)

SPRITE_UNIT_WIDTH = 16
SPRITE_UNIT_HEIGHT = 18
SPRITE_SCALE = 5

SPRITE_IMAGE_WIDTH = SPRITE_UNIT_WIDTH * SPRITE_SCALE
SPRITE_IMAGE_HEIGHT = SPRITE_UNIT_HEIGHT * SPRITE_SCALE

CUTS_PER_DIRECTION = 3
STEP = 5

AVATAR_NAME_FONT_SIZE = 24

# Beyond this center-to-center distance two avatars never collide
COLLISION_RANGE = SPRITE_IMAGE_WIDTH * 2

FORWARDS = {
    AvatarDirection.UP: Vector(0, 1),
    AvatarDirection.RIGHT: Vector(1, 0),
    AvatarDirection.DOWN: Vector(0, -1),
    AvatarDirection.LEFT: Vector(-1, 0),
}


def calc_canvas_top_left(position: Vector, viewport: Viewport) -> tuple[float, float]:
    """Canvas pixel coordinates of the sprite's top-left corner."""
    x, y = position.to_canvas_xy(viewport.width, viewport.height)
    return x - SPRITE_IMAGE_WIDTH / 2, y - SPRITE_IMAGE_HEIGHT / 2


def create_avatar_model(
    avatar_id: str, name: str, position: Vector, viewport: Viewport
) -> AvatarModel:
    """Build the name-tag model for an avatar placed at ``position``."""
    x, y = calc_canvas_top_left(position, viewport)
    top, left = viewport.calc_abs_top_left(x, y)
    return AvatarModel(id=avatar_id, name=name, top=top - AVATAR_NAME_FONT_SIZE, left=left)


class Avatar(SceneObject):
    """
    Sprite state machine for one participant.

    Args:
        model: Name-tag model updated when the avatar moves on screen
        frames_per_cut: Scene ticks skipped between two draws
        sprite: Sprite sheet; the avatar draws nothing until one is loaded
        position: Initial room-space position (default: origin)
        direction: Initial facing (default: DOWN)
    """

    def __init__(
        self,
        model: AvatarModel,
        frames_per_cut: int,
        sprite: SpriteSheet | None = None,
        position: Vector | None = None,
        direction: AvatarDirection | None = None,
    ) -> None:
        super().__init__()
        self.model = model
        self.sprite = sprite
        self.loaded = sprite is not None
        self.direction = direction if direction is not None else AvatarDirection.DOWN
        self.current_cut = 0
        self.stopped = True
        self.frame_index = 0
        self.frames_per_cut = frames_per_cut
        self.position = position if position is not None else Vector(0, 0)
        self._previous_top_left: tuple[float, float] | None = None

    @property
    def avatar_id(self) -> str:
        return self.model.id

    @property
    def moving(self) -> bool:
        return not self.stopped

    @property
    def center(self) -> Vector:
        return Vector(
            self.position.x + SPRITE_IMAGE_WIDTH / 2,
            self.position.y - SPRITE_IMAGE_HEIGHT / 2,
        )

    def load_sprite(self, sprite: SpriteSheet) -> None:
        self.sprite = sprite
        self.loaded = True

    # ------------------------------------------------------------------
    # Movement
    # ------------------------------------------------------------------

    def up(self) -> None:
        self._change_direction(AvatarDirection.UP)
        self.position.add(0, STEP)

    def down(self) -> None:
        self._change_direction(AvatarDirection.DOWN)
        self.position.add(0, -STEP)

    def left(self) -> None:
        self._change_direction(AvatarDirection.LEFT)
        self.position.add(-STEP, 0)

    def right(self) -> None:
        self._change_direction(AvatarDirection.RIGHT)
        self.position.add(STEP, 0)

    def move_to(self, x: float, y: float, direction: AvatarDirection) -> None:
        self._change_direction(direction)
        self.position.set(x, y)

    def stop(self) -> None:
        self.stopped = True
        self.current_cut = 0

    def advance_cut(self) -> None:
        if not self.stopped:
            self.current_cut = (self.current_cut + 1) % CUTS_PER_DIRECTION

    def _change_direction(self, direction: AvatarDirection) -> None:
        self.stopped = False
        if self.direction == direction:
            return
        # Force a redraw on the next tick with the first cut of the new row
        self.frame_index = self.frames_per_cut
        self.current_cut = 0
        self.direction = direction

    def to_move_message(self) -> MoveMessage:
        return MoveMessage(
            id=self.avatar_id,
            direction=self.direction,
            coord=Coord(self.position.x, self.position.y),
        )

    # ------------------------------------------------------------------
    # Rendering
    # ------------------------------------------------------------------

    def render(self, viewport: Viewport) -> None:
        if self.frame_index != self.frames_per_cut:
            self.frame_index += 1
            return
        self.frame_index = 0
        if not self.loaded:
            return
        self.advance_cut()
        self._draw(viewport)

    def _draw(self, viewport: Viewport) -> None:
        top_left = calc_canvas_top_left(self.position, viewport)

        self.clear(viewport)
        viewport.canvas.draw_image(
            self.sprite.image,
            SPRITE_UNIT_WIDTH * self.current_cut,
            SPRITE_UNIT_HEIGHT * int(self.direction),
            SPRITE_UNIT_WIDTH,
            SPRITE_UNIT_HEIGHT,
            top_left[0],
            top_left[1],
            SPRITE_IMAGE_WIDTH,
            SPRITE_IMAGE_HEIGHT,
        )

        if top_left != self._previous_top_left:
            top, left = viewport.calc_abs_top_left(*top_left)
            self.model.top = top - AVATAR_NAME_FONT_SIZE
            self.model.left = left

        self._previous_top_left = top_left

    def clear(self, viewport: Viewport) -> None:
        if self._previous_top_left is not None:
            x, y = self._previous_top_left
            viewport.canvas.clear_rect(x, y, SPRITE_IMAGE_WIDTH, SPRITE_IMAGE_HEIGHT)

    def on_resize(self, viewport: Viewport) -> None:
        self._previous_top_left = None

    # ------------------------------------------------------------------
    # Collision
    # ------------------------------------------------------------------

    def does_collide_with(self, other: "Avatar") -> bool:
        """
        Whether this avatar and ``other`` are close and closing in.

        Each center is projected one step along its own facing; the pair
        collides when the projected centers are nearer to each other than
        the current ones.
        """
        if self.avatar_id == other.avatar_id:
            return False
        distance = self.center.distance(other.center)
        if distance > COLLISION_RANGE:
            return False
        this_forward = FORWARDS[self.direction].transform(self.center)
        other_forward = FORWARDS[other.direction].transform(other.center)
        return this_forward.distance(other_forward) < distance

    def on_check_collision(self, collided: bool) -> None:
        self.model.talking = collided
