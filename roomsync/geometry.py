"""2-D vector math for avatar positions and collision checks."""

import numpy as np


class Vector:
    """
    Mutable 2-D vector in room space.

    Room space has its origin at the canvas center with the y axis pointing
    up, so ``to_canvas_xy`` flips y when converting to pixel coordinates.
    """

    __slots__ = ("_xy",)

    def __init__(self, x: float = 0.0, y: float = 0.0) -> None:
        self._xy = np.array([x, y], dtype=np.float64)

    @property
    def x(self) -> float:
        return float(self._xy[0])

    @property
    def y(self) -> float:
        return float(self._xy[1])

    def set(self, x: float, y: float) -> None:
        self._xy[0] = x
        self._xy[1] = y

    def add(self, x: float, y: float) -> None:
        self._xy += (x, y)

    def copy(self) -> "Vector":
        return Vector(self.x, self.y)

    def to_canvas_xy(self, canvas_width: float, canvas_height: float) -> tuple[float, float]:
        return canvas_width / 2 + self.x, canvas_height / 2 - self.y

    @property
    def length(self) -> float:
        return float(np.linalg.norm(self._xy))

    def unit(self) -> "Vector":
        length = self.length
        if length == 0:
            return Vector(0.0, 0.0)
        return Vector(self.x / length, self.y / length)

    def transform(self, d: "Vector") -> "Vector":
        """Return this vector translated by ``d``."""
        return Vector(*(self._xy + d._xy))

    def dot(self, other: "Vector") -> float:
        return float(np.dot(self._xy, other._xy))

    def cross(self, other: "Vector") -> float:
        return self.x * other.y - self.y * other.x

    def distance(self, other: "Vector") -> float:
        return float(np.linalg.norm(self._xy - other._xy))

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Vector):
            return NotImplemented
        return bool(np.array_equal(self._xy, other._xy))

    def __repr__(self) -> str:
        return f"Vector({self.x}, {self.y})"
