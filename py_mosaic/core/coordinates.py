"""
Lattice coordinates for square and hexagonal mosaic grids.

Both variants share one interface so the cartogram, the moves and the
heuristic never need to know which lattice they run on:

- HexCoordinate uses cube coordinates (x, y, z) with x + y + z == 0. Cells are
  pointy-top hexagons with unit side.
- SquareCoordinate uses plain integer (x, y) pairs. Cells are unit squares.

Neighbours are always listed counterclockwise starting from the rightmost one,
and cell corners are listed so that corner i sits between neighbour i - 1 and
neighbour i. Outline tracing relies on that pairing.
"""

from __future__ import annotations

import math
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import List, Sequence, Tuple, Type

import numpy as np

SQRT3 = math.sqrt(3)


def _java_round(value: float) -> int:
    """Round half up (Python's round() uses banker's rounding)."""
    return int(math.floor(value + 0.5))


class Coordinate(ABC):
    """Immutable lattice address shared by all grid types."""

    @abstractmethod
    def components(self) -> Tuple[int, ...]:
        """Integer components, in the order used by the coordinate file."""

    @abstractmethod
    def plus(self, other: "Coordinate") -> "Coordinate":
        ...

    @abstractmethod
    def minus(self, other: "Coordinate") -> "Coordinate":
        ...

    @abstractmethod
    def times(self, k: float) -> "Coordinate":
        """Scale by k. Non-integer factors are rounded back onto the lattice."""

    @abstractmethod
    def norm(self) -> int:
        """Lattice distance from the origin."""

    @abstractmethod
    def neighbours(self) -> List["Coordinate"]:
        """Edge-adjacent coordinates, counterclockwise from the rightmost."""

    def vicinity(self) -> List["Coordinate"]:
        """Coordinates touching this cell, corners included."""
        return self.neighbours()

    @abstractmethod
    def ring(self, radius: int) -> List["Coordinate"]:
        ...

    def disk(self, radius: int) -> List["Coordinate"]:
        cells: List[Coordinate] = [self]
        for r in range(1, radius + 1):
            cells.extend(self.ring(r))
        return cells

    def neighbour_index(self, other: "Coordinate") -> int:
        for i, d in enumerate(self.neighbours()):
            if d == other:
                return i
        return -1

    @abstractmethod
    def to_point(self) -> np.ndarray:
        """Euclidean center of the cell."""

    def boundary_points(self) -> np.ndarray:
        """Corners of the cell polygon around its center."""
        return self.to_point() + self.default_boundary_points()

    def distance(self, other: "Coordinate") -> int:
        return self.minus(other).norm()

    # Lattice-wide helpers

    @classmethod
    @abstractmethod
    def zero(cls) -> "Coordinate":
        ...

    @classmethod
    @abstractmethod
    def unit_vectors(cls) -> List["Coordinate"]:
        ...

    @classmethod
    @abstractmethod
    def containing(cls, px: float, py: float) -> "Coordinate":
        """Coordinate of the cell containing the Euclidean point (px, py)."""

    @classmethod
    @abstractmethod
    def parse(cls, values: Sequence[int]) -> "Coordinate":
        ...

    @classmethod
    @abstractmethod
    def default_boundary_points(cls) -> np.ndarray:
        ...

    @classmethod
    @abstractmethod
    def cell_area(cls) -> float:
        ...

    @classmethod
    @abstractmethod
    def sampling_size(cls) -> Tuple[float, float]:
        """Width and height of the period used when sampling offsets."""

    def __str__(self) -> str:
        return "(" + ", ".join(str(v) for v in self.components()) + ")"


@dataclass(frozen=True)
class HexCoordinate(Coordinate):
    """Cube coordinate of a pointy-top hexagon."""

    x: int
    y: int
    z: int

    def __post_init__(self):
        if self.x + self.y + self.z != 0:
            raise ValueError(
                f"Hex coordinate axes must sum to zero, got ({self.x}, {self.y}, {self.z})"
            )

    def components(self) -> Tuple[int, int, int]:
        return (self.x, self.y, self.z)

    def plus(self, other: Coordinate) -> "HexCoordinate":
        if not isinstance(other, HexCoordinate):
            raise ValueError(f"Cannot add {type(other).__name__} to HexCoordinate")
        return HexCoordinate(self.x + other.x, self.y + other.y, self.z + other.z)

    def minus(self, other: Coordinate) -> "HexCoordinate":
        if not isinstance(other, HexCoordinate):
            raise ValueError(f"Cannot subtract {type(other).__name__} from HexCoordinate")
        return HexCoordinate(self.x - other.x, self.y - other.y, self.z - other.z)

    def times(self, k: float) -> "HexCoordinate":
        if isinstance(k, int):
            return HexCoordinate(self.x * k, self.y * k, self.z * k)
        return _cube_round(self.x * k, self.y * k, self.z * k)

    def norm(self) -> int:
        return max(abs(self.x), abs(self.y), abs(self.z))

    def neighbours(self) -> List["HexCoordinate"]:
        return [self.plus(d) for d in _HEX_DIRECTIONS]

    def ring(self, radius: int) -> List["HexCoordinate"]:
        if radius <= 0:
            return [self]
        cells = []
        current = self.plus(_HEX_DIRECTIONS[0].times(radius))
        # Walk the six sides starting from the rightmost corner
        for side in range(6):
            step = _HEX_DIRECTIONS[(side + 2) % 6]
            for _ in range(radius):
                cells.append(current)
                current = current.plus(step)
        return cells

    def to_point(self) -> np.ndarray:
        return np.array([SQRT3 * (self.x + self.y / 2.0), 1.5 * self.y])

    @classmethod
    def zero(cls) -> "HexCoordinate":
        return cls(0, 0, 0)

    @classmethod
    def unit_vectors(cls) -> List["HexCoordinate"]:
        return list(_HEX_DIRECTIONS)

    @classmethod
    def containing(cls, px: float, py: float) -> "HexCoordinate":
        fy = 2.0 * py / 3.0
        fx = px / SQRT3 - fy / 2.0
        return _cube_round(fx, fy, -fx - fy)

    @classmethod
    def parse(cls, values: Sequence[int]) -> "HexCoordinate":
        if len(values) != 3:
            raise ValueError(f"Hex coordinates need 3 components, got {len(values)}")
        return cls(int(values[0]), int(values[1]), int(values[2]))

    @classmethod
    def default_boundary_points(cls) -> np.ndarray:
        return _HEX_CORNERS

    @classmethod
    def cell_area(cls) -> float:
        return 6 * SQRT3 / 4

    @classmethod
    def sampling_size(cls) -> Tuple[float, float]:
        return (SQRT3, 1.5)


@dataclass(frozen=True)
class SquareCoordinate(Coordinate):
    """Integer coordinate of a unit square."""

    x: int
    y: int

    def components(self) -> Tuple[int, int]:
        return (self.x, self.y)

    def plus(self, other: Coordinate) -> "SquareCoordinate":
        if not isinstance(other, SquareCoordinate):
            raise ValueError(f"Cannot add {type(other).__name__} to SquareCoordinate")
        return SquareCoordinate(self.x + other.x, self.y + other.y)

    def minus(self, other: Coordinate) -> "SquareCoordinate":
        if not isinstance(other, SquareCoordinate):
            raise ValueError(f"Cannot subtract {type(other).__name__} from SquareCoordinate")
        return SquareCoordinate(self.x - other.x, self.y - other.y)

    def times(self, k: float) -> "SquareCoordinate":
        if isinstance(k, int):
            return SquareCoordinate(self.x * k, self.y * k)
        return SquareCoordinate(_java_round(self.x * k), _java_round(self.y * k))

    def norm(self) -> int:
        return abs(self.x) + abs(self.y)

    def neighbours(self) -> List["SquareCoordinate"]:
        x, y = self.x, self.y
        return [
            SquareCoordinate(x + 1, y),
            SquareCoordinate(x, y + 1),
            SquareCoordinate(x - 1, y),
            SquareCoordinate(x, y - 1),
        ]

    def vicinity(self) -> List["SquareCoordinate"]:
        # Diagonal cells count here: two squares touching at a corner still
        # seal off whatever lies between them.
        x, y = self.x, self.y
        return [
            SquareCoordinate(x + 1, y),
            SquareCoordinate(x + 1, y + 1),
            SquareCoordinate(x, y + 1),
            SquareCoordinate(x - 1, y + 1),
            SquareCoordinate(x - 1, y),
            SquareCoordinate(x - 1, y - 1),
            SquareCoordinate(x, y - 1),
            SquareCoordinate(x + 1, y - 1),
        ]

    def ring(self, radius: int) -> List["SquareCoordinate"]:
        if radius <= 0:
            return [self]
        cells = []
        cx, cy = self.x + radius, self.y
        for dx, dy in ((-1, 1), (-1, -1), (1, -1), (1, 1)):
            for _ in range(radius):
                cells.append(SquareCoordinate(cx, cy))
                cx += dx
                cy += dy
        return cells

    def to_point(self) -> np.ndarray:
        return np.array([float(self.x), float(self.y)])

    @classmethod
    def zero(cls) -> "SquareCoordinate":
        return cls(0, 0)

    @classmethod
    def unit_vectors(cls) -> List["SquareCoordinate"]:
        return [cls(1, 0), cls(0, 1), cls(-1, 0), cls(0, -1)]

    @classmethod
    def containing(cls, px: float, py: float) -> "SquareCoordinate":
        return cls(_java_round(px), _java_round(py))

    @classmethod
    def parse(cls, values: Sequence[int]) -> "SquareCoordinate":
        if len(values) != 2:
            raise ValueError(f"Square coordinates need 2 components, got {len(values)}")
        return cls(int(values[0]), int(values[1]))

    @classmethod
    def default_boundary_points(cls) -> np.ndarray:
        return _SQUARE_CORNERS

    @classmethod
    def cell_area(cls) -> float:
        return 1.0

    @classmethod
    def sampling_size(cls) -> Tuple[float, float]:
        return (1.0, 1.0)


def _cube_round(fx: float, fy: float, fz: float) -> HexCoordinate:
    """Snap fractional cube coordinates to the nearest hexagon."""
    rx, ry, rz = round(fx), round(fy), round(fz)
    dx, dy, dz = abs(rx - fx), abs(ry - fy), abs(rz - fz)
    if dx > dy and dx > dz:
        rx = -ry - rz
    elif dy > dz:
        ry = -rx - rz
    else:
        rz = -rx - ry
    return HexCoordinate(int(rx), int(ry), int(rz))


_HEX_DIRECTIONS = (
    HexCoordinate(1, 0, -1),
    HexCoordinate(0, 1, -1),
    HexCoordinate(-1, 1, 0),
    HexCoordinate(-1, 0, 1),
    HexCoordinate(0, -1, 1),
    HexCoordinate(1, -1, 0),
)

# Do not reorder: corner i lies between neighbour i - 1 and neighbour i.
_HEX_CORNERS = np.array(
    [
        [math.cos(i * math.pi / 3 - math.pi / 6), math.sin(i * math.pi / 3 - math.pi / 6)]
        for i in range(6)
    ]
)
_SQUARE_CORNERS = np.array([[0.5, -0.5], [0.5, 0.5], [-0.5, 0.5], [-0.5, -0.5]])


class GridType(str, Enum):
    """Lattice used by a cartogram."""

    HEXAGONAL = "hexagonal"
    SQUARE = "square"

    @property
    def coordinate_class(self) -> Type[Coordinate]:
        if self is GridType.HEXAGONAL:
            return HexCoordinate
        return SquareCoordinate
