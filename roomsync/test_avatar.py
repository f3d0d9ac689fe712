"""Tests for the avatar sprite state machine."""

import pytest

from .avatar import (
    AVATAR_NAME_FONT_SIZE,
    SPRITE_IMAGE_HEIGHT,
    SPRITE_IMAGE_WIDTH,
    STEP,
    Avatar,
    calc_canvas_top_left,
    create_avatar_model,
)
from .geometry import Vector
from .messaging import AvatarDirection
from .scene import Viewport


class RecordingCanvas:
    width = 800
    height = 600

    def __init__(self):
        self.draws = []
        self.clears = []

    def draw_image(self, image, sx, sy, sw, sh, dx, dy, dw, dh):
        self.draws.append((sx, sy, dx, dy))

    def clear_rect(self, x, y, w, h):
        self.clears.append((x, y, w, h))


@pytest.fixture
def canvas():
    return RecordingCanvas()


@pytest.fixture
def recording_viewport(canvas):
    return Viewport(canvas, css_width=800, css_height=600)


def make_avatar(viewport, avatar_id="sfu-stream-a", position=None, direction=None, sprite=None, frames_per_cut=0):
    position = position or Vector(0, 0)
    model = create_avatar_model(avatar_id, avatar_id, position, viewport)
    return Avatar(model, frames_per_cut, sprite=sprite, position=position, direction=direction)


def test_calc_canvas_top_left_centres_sprite(viewport):
    x, y = calc_canvas_top_left(Vector(0, 0), viewport)
    assert x == 400 - SPRITE_IMAGE_WIDTH / 2
    assert y == 300 - SPRITE_IMAGE_HEIGHT / 2


def test_new_avatar_faces_down_and_is_stopped(viewport):
    avatar = make_avatar(viewport)
    assert avatar.direction == AvatarDirection.DOWN
    assert not avatar.moving
    assert avatar.model.top == pytest.approx(300 - SPRITE_IMAGE_HEIGHT / 2 - AVATAR_NAME_FONT_SIZE)


@pytest.mark.parametrize(
    "action, direction, delta",
    [
        ("up", AvatarDirection.UP, (0, STEP)),
        ("down", AvatarDirection.DOWN, (0, -STEP)),
        ("left", AvatarDirection.LEFT, (-STEP, 0)),
        ("right", AvatarDirection.RIGHT, (STEP, 0)),
    ],
)
def test_arrow_actions_step_and_turn(viewport, action, direction, delta):
    avatar = make_avatar(viewport)
    getattr(avatar, action)()
    assert avatar.direction == direction
    assert (avatar.position.x, avatar.position.y) == delta
    assert avatar.moving


def test_move_to_sets_pose(viewport):
    avatar = make_avatar(viewport)
    avatar.move_to(10, 5, AvatarDirection.LEFT)
    assert avatar.position == Vector(10, 5)
    assert avatar.direction == AvatarDirection.LEFT


def test_animation_cycles_only_while_moving(viewport):
    avatar = make_avatar(viewport)
    avatar.advance_cut()
    assert avatar.current_cut == 0

    avatar.right()
    cuts = []
    for _ in range(4):
        avatar.advance_cut()
        cuts.append(avatar.current_cut)
    assert cuts == [1, 2, 0, 1]

    avatar.stop()
    assert avatar.current_cut == 0
    assert not avatar.moving


def test_nothing_drawn_until_sprite_loaded(recording_viewport, canvas, sprite):
    avatar = make_avatar(recording_viewport)
    avatar.render(recording_viewport)
    assert canvas.draws == []

    avatar.load_sprite(sprite)
    avatar.render(recording_viewport)
    assert len(canvas.draws) == 1


def test_render_is_throttled(recording_viewport, canvas, sprite):
    avatar = make_avatar(recording_viewport, sprite=sprite, frames_per_cut=2)
    for _ in range(6):
        avatar.render(recording_viewport)
    assert len(canvas.draws) == 2


def test_direction_change_forces_next_draw(recording_viewport, canvas, sprite):
    avatar = make_avatar(recording_viewport, sprite=sprite, frames_per_cut=5)
    avatar.render(recording_viewport)
    assert canvas.draws == []

    avatar.up()
    avatar.render(recording_viewport)
    assert len(canvas.draws) == 1
    sx, sy, _, _ = canvas.draws[0]
    assert sy == 18 * int(AvatarDirection.UP)


def test_redraw_clears_previous_footprint(recording_viewport, canvas, sprite):
    avatar = make_avatar(recording_viewport, sprite=sprite)
    avatar.render(recording_viewport)
    first_top_left = canvas.draws[0][2:]

    avatar.right()
    avatar.render(recording_viewport)
    assert canvas.clears[-1][:2] == first_top_left


def test_name_tag_follows_avatar(recording_viewport, sprite):
    avatar = make_avatar(recording_viewport, sprite=sprite)
    avatar.render(recording_viewport)
    left_before = avatar.model.left

    avatar.right()
    avatar.render(recording_viewport)
    assert avatar.model.left == left_before + STEP


def test_to_move_message_reflects_pose(viewport):
    avatar = make_avatar(viewport)
    avatar.left()
    message = avatar.to_move_message()
    assert message.id == "sfu-stream-a"
    assert message.direction == AvatarDirection.LEFT
    assert (message.coord.x, message.coord.y) == (-STEP, 0)


def test_avatar_never_collides_with_itself(viewport):
    avatar = make_avatar(viewport, direction=AvatarDirection.RIGHT)
    assert not avatar.does_collide_with(avatar)


def test_approaching_avatars_collide(viewport):
    a = make_avatar(viewport, "a", Vector(0, 0), AvatarDirection.RIGHT)
    b = make_avatar(viewport, "b", Vector(50, 0), AvatarDirection.LEFT)
    assert a.does_collide_with(b)
    assert b.does_collide_with(a)


def test_avatars_out_of_range_do_not_collide(viewport):
    a = make_avatar(viewport, "a", Vector(0, 0), AvatarDirection.RIGHT)
    b = make_avatar(viewport, "b", Vector(1000, 0), AvatarDirection.LEFT)
    assert not a.does_collide_with(b)


def test_avatars_moving_apart_do_not_collide(viewport):
    a = make_avatar(viewport, "a", Vector(0, 0), AvatarDirection.LEFT)
    b = make_avatar(viewport, "b", Vector(50, 0), AvatarDirection.RIGHT)
    assert not a.does_collide_with(b)


def test_on_check_collision_sets_talking(viewport):
    avatar = make_avatar(viewport)
    avatar.on_check_collision(True)
    assert avatar.model.talking
    avatar.on_check_collision(False)
    assert not avatar.model.talking
