"""
Guiding shape layout drivers.

Between two take/release sweeps the heuristic asks a layout driver to move
the guiding shapes. The default ForceDirectedLayout treats each guiding shape
as a body: dual neighbours attract each other, overlapping shapes repel, and
shapes only move in whole cells so they stay on the lattice.
"""

from typing import Dict, Optional, Protocol, Set

import numpy as np
import structlog
from pydantic import BaseModel, Field

from .alea_prng import AleaPRNG
from .cartogram import MosaicCartogram, MosaicRegion
from .coordinates import Coordinate
from .subdivision import SubdivisionMap, WeakDual

logger = structlog.get_logger()


class LayoutDriver(Protocol):
    """Anything that can reposition guiding shapes on a grid."""

    def run_model(self, grid: MosaicCartogram, subdivision_map: SubdivisionMap) -> bool:
        """Move guiding shapes; return True if any shape moved."""
        ...


class StaticLayout:
    """Layout driver that never moves anything."""

    def run_model(self, grid: MosaicCartogram, subdivision_map: SubdivisionMap) -> bool:
        return False


class LayoutOptions(BaseModel):
    """Force model constants."""

    intensity: float = Field(default=150.0, description="Global force scale")
    attraction_weight: float = Field(default=1.0, description="Pull between dual neighbours")
    repulsion_weight: float = Field(default=35.0, description="Push between overlapping dual neighbours")
    non_neighbour_repulsion_weight: float = Field(
        default=40.0, description="Push between overlapping non-neighbours"
    )
    minimum_norm: float = Field(default=5.0, description="Stop once every force is weaker than this")
    maximum_iterations: int = Field(default=400, description="Steps before all stuck shapes are shaken")
    maximum_bad_iterations: int = Field(default=100, description="Steps a poorly fitting shape waits before a shake")
    total_iterations: int = Field(default=20000, description="Hard step limit per run_model call")
    cell_side: float = Field(default=1.0, description="Side length of a lattice cell")


class ForceDirectedLayout:
    """
    Force-directed guiding shape placement.

    Args:
        weak_dual: Face adjacency graph
        options: Force constants
        prng: Generator used for random shakes
    """

    def __init__(self, weak_dual: WeakDual, options: Optional[LayoutOptions] = None, prng: Optional[AleaPRNG] = None):
        self.weak_dual = weak_dual
        self.options = options or LayoutOptions()
        self.prng = prng or AleaPRNG("mosaic")
        self.time_step = 2 * self.options.cell_side / (50 * self.options.intensity)
        self.maximum_norm = self.options.cell_side / self.time_step

        self.grid: Optional[MosaicCartogram] = None
        self.continuous_positions: Dict[int, np.ndarray] = {}
        self.discrete_positions: Dict[int, Coordinate] = {}
        self.bad_iterations: Dict[int, int] = {}
        self.shapes_on_cell: Dict[Coordinate, Set[int]] = {}

    def bind(self, grid: MosaicCartogram) -> None:
        """Start tracking the guiding shapes of a grid."""
        self.grid = grid
        self.continuous_positions.clear()
        self.discrete_positions.clear()
        self.bad_iterations = {region.id: 0 for region in grid.regions()}
        self.shapes_on_cell.clear()
        for region in grid.regions():
            if region.guiding_shape is None or len(region.guiding_shape) == 0:
                raise ValueError(f"Region {region.id} has no guiding shape")
            self._reset_position(region)
            self._index_shape(region)

    def run_model(self, grid: MosaicCartogram, subdivision_map: SubdivisionMap) -> bool:
        if grid is not self.grid:
            self.bind(grid)

        translations = {region.id: grid.zero() for region in grid.regions()}
        iterations = 0
        for _ in range(self.options.total_iterations):
            iterations += 1
            if iterations > self.options.maximum_iterations:
                iterations = 0
                for region in grid.regions():
                    self._random_shake(region)

            for region in grid.regions():
                if self._is_shakeable(region):
                    self.bad_iterations[region.id] += 1
                    if self.bad_iterations[region.id] > self.options.maximum_bad_iterations:
                        self._random_shake(region)
                        self.bad_iterations[region.id] = 0

            forces = self._compute_forces()
            if max((np.linalg.norm(f) for f in forces.values()), default=0.0) <= self.options.minimum_norm:
                return False

            moved = False
            for u in self.weak_dual.vertices():
                region = grid.get_region(u)
                increment = forces[u] * self.time_step
                position = self.continuous_positions[u] + increment
                new_cell = grid.containing(*position)
                old_cell = self.discrete_positions[u]
                self.continuous_positions[u] = position
                if new_cell == old_cell:
                    continue

                t = new_cell.minus(old_cell)
                self._translate_shape(region, t)
                if region.intersects(region.guiding_shape) or region.touches(region.guiding_shape):
                    self.discrete_positions[u] = new_cell
                    translations[u] = translations[u].plus(t)
                    if translations[u].norm() > 0:
                        moved = True
                else:
                    # Shape drifted away from its region; undo
                    self._translate_shape(region, t.times(-1))
                    self.continuous_positions[u] = position - increment

            if moved:
                return True

        logger.warning("Layout step limit reached", steps=self.options.total_iterations)
        return False

    def _reset_position(self, region: MosaicRegion) -> None:
        barycenter = region.guiding_shape.continuous_barycenter()
        self.continuous_positions[region.id] = barycenter
        self.discrete_positions[region.id] = self.grid.containing(*barycenter)

    def _index_shape(self, region: MosaicRegion) -> None:
        for c in region.guiding_shape:
            self.shapes_on_cell.setdefault(c, set()).add(region.id)

    def _unindex_shape(self, region: MosaicRegion) -> None:
        for c in region.guiding_shape:
            ids = self.shapes_on_cell.get(c)
            if ids is not None:
                ids.discard(region.id)
                if not ids:
                    del self.shapes_on_cell[c]

    def _translate_shape(self, region: MosaicRegion, t: Coordinate) -> None:
        self._unindex_shape(region)
        region.translate_guiding_shape(t)
        self._index_shape(region)

    def _is_shakeable(self, region: MosaicRegion) -> bool:
        return region.get_symmetric_difference() / max(region.desired_size(), 1) >= 1.0

    def _random_shake(self, region: MosaicRegion) -> bool:
        """Drop a badly fitting shape onto a random cell of its region."""
        if not self._is_shakeable(region) or region.size() == 0:
            return False
        cells = region.occupied_coordinates()
        shape_cells = region.guiding_shape.occupied_coordinates()
        c_region = cells[self.prng.next_int(len(cells))]
        c_shape = shape_cells[self.prng.next_int(len(shape_cells))]
        self._translate_shape(region, c_region.minus(c_shape))
        self._reset_position(region)
        return True

    def _compute_forces(self) -> Dict[int, np.ndarray]:
        forces: Dict[int, np.ndarray] = {}
        vertices = self.weak_dual.vertices()
        for u in vertices:
            ru = self.grid.get_region(u)
            neighbours = set(self.weak_dual.neighbours(u))
            force = np.zeros(2)
            for v in self.weak_dual.neighbours(u):
                rv = self.grid.get_region(v)
                force += self._attraction(ru, rv)
                force += self._repulsion(ru, rv, self.options.repulsion_weight, include_touching=False)
            for v in vertices:
                if v != u and v not in neighbours:
                    rv = self.grid.get_region(v)
                    force += self._repulsion(
                        ru, rv, self.options.non_neighbour_repulsion_weight, include_touching=True
                    )
            norm = np.linalg.norm(force)
            if norm > self.maximum_norm:
                force = force / norm * self.maximum_norm
            forces[u] = force
        return forces

    def _attraction(self, r1: MosaicRegion, r2: MosaicRegion) -> np.ndarray:
        direction = r2.guiding_shape.continuous_barycenter() - r1.guiding_shape.continuous_barycenter()
        norm = np.linalg.norm(direction)
        if norm == 0:
            return np.zeros(2)
        distance = max(1, _shape_distance(r1.guiding_shape, r2.guiding_shape))
        return direction / norm * (self.options.intensity * self.options.attraction_weight * distance)

    def _repulsion(self, r1: MosaicRegion, r2: MosaicRegion, weight: float, include_touching: bool) -> np.ndarray:
        """
        Push r1 away from r2 where their guiding shapes overlap.

        The direction comes from the map: for each shared cell, the point it
        maps to under r1's transform minus the point under r2's transform.
        Non-neighbours only need one offending cell, and touching counts.
        """
        g1, g2 = r1.guiding_shape, r2.guiding_shape
        force = np.zeros(2)
        overlap = 0
        for c in g1:
            hit = r2.id in self.shapes_on_cell.get(c, ())
            if not hit and include_touching:
                hit = g2.neighbour_multiplicity(c) > 0
            if not hit:
                continue
            overlap += 1
            component = r1.corresponding_map_point(c) - r2.corresponding_map_point(c)
            norm = np.linalg.norm(component)
            if norm > 0:
                force += component / norm
            if include_touching:
                break
        if overlap == 0:
            return np.zeros(2)
        norm = np.linalg.norm(force)
        if norm == 0:
            return np.zeros(2)
        factor = 1.0 + overlap / len(g1)
        return force / norm * (self.options.intensity * weight * factor)


def _shape_distance(s1, s2) -> int:
    """Smallest lattice distance between cells of two shapes."""
    best: Optional[int] = None
    for c1 in s1:
        for c2 in s2:
            d = c1.distance(c2)
            if best is None or d < best:
                best = d
                if best == 0:
                    return 0
    return best if best is not None else 0
