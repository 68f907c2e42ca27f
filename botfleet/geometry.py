"""Integer/float 3D vectors for block positions and offsets."""

from __future__ import annotations

import math
from dataclasses import dataclass


@dataclass(frozen=True)
class Vec3:
    """Immutable 3D vector.

    Block positions use integral coordinates; entity positions may be
    fractional. Instances are hashable so they can key world maps.
    """

    x: float
    y: float
    z: float

    def offset(self, dx: float, dy: float, dz: float) -> Vec3:
        return Vec3(self.x + dx, self.y + dy, self.z + dz)

    def plus(self, other: Vec3) -> Vec3:
        return Vec3(self.x + other.x, self.y + other.y, self.z + other.z)

    def minus(self, other: Vec3) -> Vec3:
        return Vec3(self.x - other.x, self.y - other.y, self.z - other.z)

    def scaled(self, factor: float) -> Vec3:
        return Vec3(self.x * factor, self.y * factor, self.z * factor)

    def floored(self) -> Vec3:
        return Vec3(math.floor(self.x), math.floor(self.y), math.floor(self.z))

    def distance_to(self, other: Vec3) -> float:
        return math.sqrt(
            (self.x - other.x) ** 2 + (self.y - other.y) ** 2 + (self.z - other.z) ** 2
        )

    def horizontal_distance_to(self, other: Vec3) -> float:
        return math.hypot(self.x - other.x, self.z - other.z)

    def __str__(self) -> str:
        return f"({self.x:g}, {self.y:g}, {self.z:g})"


# Axis-adjacent neighbor offsets, probed in this order when looking for a
# face to place against.
AXIS_NEIGHBORS: tuple[Vec3, ...] = (
    Vec3(0, -1, 0),
    Vec3(0, 1, 0),
    Vec3(-1, 0, 0),
    Vec3(1, 0, 0),
    Vec3(0, 0, -1),
    Vec3(0, 0, 1),
)
