"""
Atomic grid edits used by the heuristic.

Every move follows the same two-phase protocol:

- evaluate() applies the change, records validity and quality, and restores
  the grid to exactly the state it had before the call.
- execute() applies the change for good. Call it only after evaluate()
  reported the move as valid.

The restore step runs in a finally block, so the grid is left untouched even
when a check raises.
"""

from abc import ABC, abstractmethod
from functools import total_ordering
from typing import List, Optional, Sequence

import numpy as np

from .cartogram import MosaicCartogram, compute_hole_boundaries
from .coordinates import Coordinate
from .separator import Separator
from .subdivision import SubdivisionMap, WeakDual

INVALID_QUALITY = float("inf")


def is_alley(grid: MosaicCartogram, c: Coordinate) -> bool:
    """An empty cell enclosed on all sides but one."""
    if grid.get_vertex(c) is not None:
        return False
    neighbours = c.neighbours()
    occupied = sum(1 for d in neighbours if grid.get_vertex(d) is not None)
    return occupied == len(neighbours) - 1


def angle_difference(a1: float, a2: float) -> float:
    """Absolute difference between two angles, in [0, pi]."""
    difference = abs(a2 - a1)
    if difference > np.pi:
        difference = 2 * np.pi - difference
    return difference


@total_ordering
class Move(ABC):
    """Base class for grid edits. Moves sort best first."""

    def __init__(self, grid: MosaicCartogram):
        self.grid = grid
        self.quality = INVALID_QUALITY
        self.necessity = float("-inf")
        self.valid = False
        self.connected = False

    @abstractmethod
    def evaluate(self) -> float:
        ...

    @abstractmethod
    def execute(self) -> float:
        ...

    def is_valid(self) -> bool:
        return self.valid

    def is_connected(self) -> bool:
        return self.connected

    def sort_key(self):
        return (self.quality, -self.necessity)

    def __eq__(self, other):
        if not isinstance(other, Move):
            return NotImplemented
        return self.sort_key() == other.sort_key()

    def __lt__(self, other):
        if not isinstance(other, Move):
            return NotImplemented
        return self.sort_key() < other.sort_key()

    __hash__ = object.__hash__

    def _grid_quality(self) -> float:
        return self.grid.quality(False)


class TakeMove(Move):
    """
    Give a cell to a region, taking it from its current owner if any.

    Args:
        weak_dual: Face adjacency graph
        grid: Grid to edit
        position: Cell to take
        new_owner: Region id receiving the cell
    """

    def __init__(self, weak_dual: WeakDual, grid: MosaicCartogram, position: Coordinate, new_owner: int):
        super().__init__(grid)
        self.weak_dual = weak_dual
        self.position = position
        self.new_owner = new_owner
        self.old_owner: Optional[int] = grid.get_vertex(position)
        self.creates_alley = False
        self.creates_hole = False
        self._improves = self._compute_improves()

    def improves(self) -> bool:
        return self._improves

    def evaluate(self) -> float:
        return self._evaluate(None)

    def evaluate_with_holes(self, old_holes: Sequence[Sequence[Coordinate]]) -> float:
        """
        Like evaluate(), but also flag takes that enlarge the total hole area.

        Args:
            old_holes: Hole boundaries of the grid before the take
        """
        return self._evaluate(old_holes)

    def execute(self) -> float:
        self.grid.set_vertex(self.position, self.new_owner)
        return self.quality

    def _compute_improves(self) -> bool:
        new_region = self.grid.get_region(self.new_owner)
        if not new_region.is_desired(self.position):
            return False
        if self.old_owner is None:
            return True
        old_region = self.grid.get_region(self.old_owner)
        if not old_region.is_desired(self.position):
            return True
        # Both want the cell: only take it if the worse relative error drops
        new_sd = new_region.get_symmetric_difference()
        old_sd = old_region.get_symmetric_difference()
        new_size = max(new_region.desired_size(), 1)
        old_size = max(old_region.desired_size(), 1)
        current_error = max(new_sd / new_size, old_sd / old_size)
        new_error = max((new_sd - 1) / new_size, (old_sd + 1) / old_size)
        return new_error < current_error

    def _evaluate(self, old_holes: Optional[Sequence[Sequence[Coordinate]]]) -> float:
        neighbours = self.position.neighbours()
        alleys_before = [is_alley(self.grid, c) for c in neighbours]
        self.creates_alley = False
        self.creates_hole = False

        previous = self.grid.set_vertex(self.position, self.new_owner)
        try:
            if old_holes is not None:
                holes = compute_hole_boundaries(self.grid, self.grid.coordinates())
                if holes:
                    old_total = sum(len(hole) for hole in old_holes)
                    new_total = sum(len(hole) for hole in holes)
                    self.creates_hole = new_total > old_total

            for c, was_alley in zip(neighbours, alleys_before):
                if not was_alley and is_alley(self.grid, c):
                    self.creates_alley = True

            if self._take_is_valid():
                self.valid = True
                self.quality = self._grid_quality()
                self.necessity = max(self.grid.get_region(self.new_owner).get_symmetric_difference(), 1)
            else:
                self.valid = False
                self.quality = INVALID_QUALITY

            if old_holes is not None:
                self.connected = self._take_is_connected()
        finally:
            if previous is None:
                self.grid.remove_cell(self.position)
            else:
                self.grid.set_vertex(self.position, previous)
        return self.quality

    def _touches_new_owner(self) -> bool:
        return any(self.grid.get_vertex(d) == self.new_owner for d in self.position.neighbours())

    def _take_is_valid(self) -> bool:
        if self.old_owner is None:
            touches = False
            for d in self.position.neighbours():
                owner = self.grid.get_vertex(d)
                if owner is None:
                    continue
                if owner == self.new_owner:
                    touches = True
                elif not self.weak_dual.has_edge(self.new_owner, owner):
                    return False
            return touches
        old_region = self.grid.get_region(self.old_owner)
        new_region = self.grid.get_region(self.new_owner)
        return old_region.is_valid() and new_region.is_valid()

    def _take_is_connected(self) -> bool:
        if self.old_owner is None:
            return self._touches_new_owner()
        old_region = self.grid.get_region(self.old_owner)
        new_region = self.grid.get_region(self.new_owner)
        return old_region.is_connected() and new_region.is_connected()

    def __repr__(self) -> str:
        return f"TakeMove({self.position}, {self.old_owner} -> {self.new_owner}, quality={self.quality})"


class ReleaseMove(Move):
    """Make an occupied cell empty."""

    def __init__(self, grid: MosaicCartogram, position: Coordinate):
        super().__init__(grid)
        self.position = position
        self._improves = False

    def improves(self) -> bool:
        return self._improves

    def creates_hole(self) -> bool:
        """Releasing a cell with no empty neighbour leaves an enclosed gap."""
        return all(self.grid.get_vertex(d) is not None for d in self.position.neighbours())

    def evaluate(self) -> float:
        owner = self.grid.get_vertex(self.position)
        if owner is None:
            raise ValueError(f"Cannot release empty cell {self.position}")
        region = self.grid.get_region(owner)
        old_difference = region.get_symmetric_difference()

        self.grid.remove_cell(self.position)
        try:
            self.connected = region.is_connected()
            if region.is_valid():
                self.valid = True
                self.quality = self._grid_quality()
                self._improves = region.get_symmetric_difference() < old_difference
            else:
                self.valid = False
                self.quality = INVALID_QUALITY
                self._improves = False
        finally:
            self.grid.set_vertex(self.position, owner)
        return self.quality

    def execute(self) -> float:
        self.grid.remove_cell(self.position)
        return self.quality

    def __repr__(self) -> str:
        return f"ReleaseMove({self.position}, quality={self.quality})"


class SlideMove(Move):
    """
    Shift one side of a cut edge by a unit vector.

    The shift is only tried when it turns the bearing between the two cut edge
    regions towards the bearing between the corresponding faces.
    """

    def __init__(
        self,
        grid: MosaicCartogram,
        subdivision_map: SubdivisionMap,
        separator: Separator,
        direction: Coordinate,
    ):
        super().__init__(grid)
        self.subdivision_map = subdivision_map
        self.separator = separator
        self.direction = direction

    def evaluate(self) -> float:
        self.valid = False
        if not self.direction_improves():
            return 0.0

        moving = set(self.separator.component1)
        for index in self.separator.component1:
            for c in self.grid.get_region(index):
                owner = self.grid.get_vertex(c.plus(self.direction))
                if owner is not None and owner not in moving:
                    return 0.0

        self.grid.translate_regions(self.separator.component1, self.direction)
        try:
            self.valid = self.grid.is_valid()
        finally:
            self.grid.translate_regions(self.separator.component1, self.direction.times(-1))
        return 0.0

    def execute(self) -> float:
        self.grid.translate_regions(self.separator.component1, self.direction)
        return 0.0

    def direction_improves(self) -> bool:
        region1 = self.grid.get_region(self.separator.v1)
        region2 = self.grid.get_region(self.separator.v2)
        if region1.size() == 0 or region2.size() == 0:
            return False
        face1 = self.subdivision_map.get_face(self.separator.v1)
        face2 = self.subdivision_map.get_face(self.separator.v2)

        bary1 = region1.continuous_barycenter()
        bary2 = region2.continuous_barycenter()
        new_bary1 = bary1 + self.direction.to_point()

        face_diff = face2.centroid - face1.centroid
        region_diff = bary2 - bary1
        new_region_diff = bary2 - new_bary1

        desired_angle = np.arctan2(face_diff[1], face_diff[0])
        current_angle = np.arctan2(region_diff[1], region_diff[0])
        new_angle = np.arctan2(new_region_diff[1], new_region_diff[0])
        return angle_difference(desired_angle, new_angle) < angle_difference(desired_angle, current_angle)

    def __repr__(self) -> str:
        return f"SlideMove({list(self.separator.component1)} by {self.direction})"


def best_move(moves: List[Move]) -> Optional[Move]:
    """Lowest-sorting valid move, or None."""
    valid = [move for move in moves if move.is_valid()]
    if not valid:
        return None
    return min(valid)
