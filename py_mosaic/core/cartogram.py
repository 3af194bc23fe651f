"""
Mosaic cartogram grid and regions.

The grid maps lattice coordinates to region ids. Every face of the subdivision
map has exactly one region, and region ids equal face ids. All ownership
changes go through MosaicCartogram.set_vertex / remove_cell, which keep the
per-region coordinate sets and the region adjacency multisets in sync.

Regions carry a guiding shape: a rigid template of cells with the desired
tile count for the face. Quality is measured against the guiding shape.
"""

from __future__ import annotations

from collections import Counter, deque
from dataclasses import dataclass
from functools import cached_property
from pathlib import Path
from typing import Dict, FrozenSet, Iterable, Iterator, List, Optional, Sequence, Tuple, Type, Union

import networkx as nx
import numpy as np
import structlog
from shapely.geometry import Polygon
from shapely.ops import unary_union

from ..config import settings
from .coordinates import Coordinate, GridType
from .subdivision import Face, SubdivisionMap, WeakDual

logger = structlog.get_logger()

OVERLAY_SEARCH_RADIUS = 5


def _decrement(counter: Counter, key, amount: int = 1) -> None:
    """Remove amount occurrences of key, dropping the key at zero."""
    remaining = counter[key] - amount
    if remaining > 0:
        counter[key] = remaining
    else:
        del counter[key]


@dataclass
class Cell:
    """A grid position with its owner and cached geometry."""

    coordinate: Coordinate
    owner: Optional[int] = None

    @cached_property
    def center(self) -> np.ndarray:
        return self.coordinate.to_point()

    @cached_property
    def polygon(self) -> Polygon:
        return Polygon(self.coordinate.boundary_points())


class CellRegion:
    """
    Ordered set of lattice cells.

    Besides the cells themselves, a multiset of outside neighbours is kept:
    each empty position adjacent to the region is counted once per region
    cell touching it.
    """

    def __init__(self, coordinate_class: Type[Coordinate], coordinates: Iterable[Coordinate] = ()):
        self.coordinate_class = coordinate_class
        self._coordinates: Dict[Coordinate, None] = {}
        self._neighbours: Counter = Counter()
        for c in coordinates:
            self.add_cell(c)

    def __len__(self) -> int:
        return len(self._coordinates)

    def __iter__(self) -> Iterator[Coordinate]:
        return iter(self._coordinates)

    def __contains__(self, c: Coordinate) -> bool:
        return c in self._coordinates

    def size(self) -> int:
        return len(self._coordinates)

    def contains(self, c: Coordinate) -> bool:
        return c in self._coordinates

    def neighbours(self) -> List[Coordinate]:
        """Positions outside the region that touch it."""
        return list(self._neighbours)

    def neighbour_multiplicity(self, c: Coordinate) -> int:
        return self._neighbours.get(c, 0)

    def occupied_coordinates(self) -> List[Coordinate]:
        return list(self._coordinates)

    def coordinate_set(self) -> FrozenSet[Coordinate]:
        return frozenset(self._coordinates)

    def is_edge(self, c: Coordinate) -> bool:
        """True if c has neighbours both inside and outside the region."""
        inside = outside = False
        for d in c.neighbours():
            if d in self._coordinates:
                inside = True
            else:
                outside = True
            if inside and outside:
                return True
        return False

    def intersects(self, other: "CellRegion") -> bool:
        return any(c in other for c in self._coordinates)

    def intersection_size(self, other: "CellRegion") -> int:
        return sum(1 for c in self._coordinates if c in other)

    def touches(self, other: "CellRegion") -> bool:
        return any(c in other for c in self._neighbours)

    def continuous_barycenter(self) -> np.ndarray:
        if not self._coordinates:
            raise ValueError("Barycenter of an empty region is undefined")
        points = np.array([c.to_point() for c in self._coordinates])
        return points.mean(axis=0)

    def barycenter(self) -> Coordinate:
        bx, by = self.continuous_barycenter()
        return self.coordinate_class.containing(bx, by)

    def is_connected(self) -> bool:
        """True if the cells form one piece under lattice adjacency. Empty is not connected."""
        if not self._coordinates:
            return False
        start = next(iter(self._coordinates))
        seen = {start}
        queue = deque([start])
        while queue:
            c = queue.popleft()
            for d in c.neighbours():
                if d in self._coordinates and d not in seen:
                    seen.add(d)
                    queue.append(d)
        return len(seen) == len(self._coordinates)

    def outline(self) -> Polygon:
        """Union of the cell polygons of the region."""
        if not self._coordinates:
            raise ValueError("Outline of an empty region is undefined")
        return unary_union([Polygon(c.boundary_points()) for c in self._coordinates])

    def add_cell(self, c: Coordinate) -> bool:
        if c in self._coordinates:
            return False
        self._coordinates[c] = None
        self._neighbours.pop(c, None)
        for d in c.neighbours():
            if d not in self._coordinates:
                self._neighbours[d] += 1
        return True

    def remove_cell(self, c: Coordinate) -> bool:
        if c not in self._coordinates:
            return False
        del self._coordinates[c]
        inside = 0
        for d in c.neighbours():
            if d in self._neighbours:
                _decrement(self._neighbours, d)
            else:
                inside += 1
        if inside > 0:
            self._neighbours[c] += inside
        return True

    def translate(self, t: Coordinate) -> None:
        self._coordinates = {c.plus(t): None for c in self._coordinates}
        translated: Counter = Counter()
        for c, count in self._neighbours.items():
            translated[c.plus(t)] = count
        self._neighbours = translated

    def clear(self) -> None:
        self._coordinates.clear()
        self._neighbours.clear()

    def copy(self) -> "CellRegion":
        other = CellRegion(self.coordinate_class)
        other._coordinates = dict(self._coordinates)
        other._neighbours = Counter(self._neighbours)
        return other


class MosaicRegion(CellRegion):
    """
    Cells representing one face, plus the guiding shape they aim for.

    The region also counts, per neighbouring region id, how many cell pairs
    touch across the border. The grid keeps these counts up to date.
    """

    def __init__(
        self,
        region_id: int,
        coordinate_class: Type[Coordinate],
        dual_neighbours: Iterable[int] = (),
        face: Optional[Face] = None,
    ):
        super().__init__(coordinate_class)
        self.id = region_id
        self.face = face
        self.dual_neighbours: FrozenSet[int] = frozenset(dual_neighbours)
        self.neighbour_regions: Counter = Counter()
        self.guiding_shape: Optional[CellRegion] = None
        self.factor = 1.0
        self.total_translation: Coordinate = coordinate_class.zero()
        self.guiding_shape_translation = np.zeros(2)
        self.hits = 0
        self._connected = False
        self._recompute_connectivity = True

    @property
    def label(self) -> str:
        return self.face.label if self.face is not None else str(self.id)

    def desired_size(self) -> int:
        return len(self.guiding_shape) if self.guiding_shape is not None else 0

    def is_desired(self, c: Coordinate) -> bool:
        return self.guiding_shape is not None and c in self.guiding_shape

    def get_symmetric_difference(self) -> int:
        return self.size() + self.desired_size() - 2 * self.hits

    def get_hex_error(self) -> int:
        """Tiles still missing (positive) or in excess (negative)."""
        return self.desired_size() - self.size()

    def is_connected(self) -> bool:
        if self._recompute_connectivity:
            self._connected = self._compute_connected()
            self._recompute_connectivity = False
        return self._connected

    def is_adjacency_correct(self) -> bool:
        return set(self.neighbour_regions) == self.dual_neighbours

    def is_valid(self) -> bool:
        return self.is_connected() and self.is_adjacency_correct()

    def set_guiding_shape(
        self,
        shape: CellRegion,
        factor: float = 1.0,
        translation: Sequence[float] = (0.0, 0.0),
    ) -> None:
        self.guiding_shape = shape
        self.factor = factor
        self.guiding_shape_translation = np.array(translation, dtype=float)
        self.total_translation = self.coordinate_class.zero()
        self._count_hits()

    def translate_guiding_shape(self, t: Coordinate) -> None:
        if self.guiding_shape is not None:
            self.guiding_shape.translate(t)
        self.total_translation = self.total_translation.plus(t)
        self.guiding_shape_translation = self.guiding_shape_translation + t.to_point()
        self._count_hits()

    def compute_best_overlay(self) -> None:
        """Move the guiding shape to the nearby offset with most overlap."""
        if self.guiding_shape is None or not self._coordinates:
            return
        center = self.guiding_shape.barycenter().minus(self.barycenter())
        offset = center
        best_hits = 0
        for candidate in center.disk(OVERLAY_SEARCH_RADIUS):
            candidate_hits = sum(1 for c in self._coordinates if c.plus(candidate) in self.guiding_shape)
            if candidate_hits > best_hits:
                offset = candidate
                best_hits = candidate_hits
        self.translate_guiding_shape(offset.times(-1))

    def corresponding_map_point(self, c: Coordinate) -> np.ndarray:
        """Map-space position of a grid cell under the guiding shape transform."""
        return (c.to_point() - self.guiding_shape_translation) / self.factor

    def add_cell(self, c: Coordinate) -> bool:
        if not super().add_cell(c):
            raise ValueError(f"Cell {c} already belongs to region {self.id}")
        if self.is_desired(c):
            self.hits += 1
        if (
            self._recompute_connectivity
            or not self._connected
            or not any(d in self._coordinates for d in c.neighbours())
        ):
            self._recompute_connectivity = True
        return True

    def remove_cell(self, c: Coordinate) -> bool:
        if not super().remove_cell(c):
            raise ValueError(f"Cell {c} does not belong to region {self.id}")
        if self.is_desired(c):
            self.hits -= 1
        self._recompute_connectivity = True
        return True

    def translate(self, t: Coordinate) -> None:
        super().translate(t)
        self.translate_guiding_shape(t)

    def clear(self) -> None:
        super().clear()
        self.neighbour_regions.clear()
        self.hits = 0
        self._connected = False
        self._recompute_connectivity = True

    def copy(self) -> "MosaicRegion":
        other = MosaicRegion(self.id, self.coordinate_class, self.dual_neighbours, self.face)
        other._coordinates = dict(self._coordinates)
        other._neighbours = Counter(self._neighbours)
        other.neighbour_regions = Counter(self.neighbour_regions)
        other.guiding_shape = self.guiding_shape.copy() if self.guiding_shape is not None else None
        other.factor = self.factor
        other.total_translation = self.total_translation
        other.guiding_shape_translation = self.guiding_shape_translation.copy()
        other.hits = self.hits
        other._connected = self._connected
        other._recompute_connectivity = self._recompute_connectivity
        return other

    def _count_hits(self) -> None:
        if self.guiding_shape is None:
            self.hits = 0
        else:
            self.hits = sum(1 for c in self._coordinates if c in self.guiding_shape)

    def _compute_connected(self) -> bool:
        return super().is_connected()


class MosaicCartogram:
    """
    Grid of lattice cells owned by regions.

    Args:
        grid_type: Lattice to use
        subdivision_map: Faces of the source map; face ids must be 0..n-1
        weak_dual: Face adjacency graph
    """

    def __init__(self, grid_type: GridType, subdivision_map: SubdivisionMap, weak_dual: WeakDual):
        self.grid_type = GridType(grid_type)
        self.coordinate_class = self.grid_type.coordinate_class
        self.subdivision_map = subdivision_map
        self.weak_dual = weak_dual
        self.cell_weight: Optional[float] = None
        self._owners: Dict[Coordinate, int] = {}
        self._regions: List[MosaicRegion] = []

        for index, face in enumerate(subdivision_map.faces):
            if face.id != index:
                raise ValueError(f"Face ids must be consecutive from 0, got {face.id} at position {index}")
            self._regions.append(
                MosaicRegion(face.id, self.coordinate_class, weak_dual.neighbours(face.id), face)
            )

    @classmethod
    def for_map(
        cls,
        subdivision_map: SubdivisionMap,
        weak_dual: Optional[WeakDual] = None,
        grid_type: Optional[GridType] = None,
    ) -> "MosaicCartogram":
        """Empty grid for a map, deriving the weak dual from the face polygons if needed."""
        if weak_dual is None:
            weak_dual = subdivision_map.build_weak_dual()
        return cls(grid_type or settings.grid_type, subdivision_map, weak_dual)

    # Cell access

    def number_of_cells(self) -> int:
        return len(self._owners)

    def get_vertex(self, c: Coordinate) -> Optional[int]:
        return self._owners.get(c)

    def set_vertex(self, c: Coordinate, region_id: int) -> Optional[int]:
        """
        Assign c to a region.

        Returns:
            The previous owner of c (None if it was empty). Passing it back to
            set_vertex, or calling remove_cell when it is None, undoes the write.
        """
        self._check_region_id(region_id)
        old = self._owners.get(c)
        if old == region_id:
            return old
        # Neighbour bookkeeping reads owners around c, never c itself
        self._attach(c, region_id)
        if old is not None:
            self._detach(c, old)
        self._owners[c] = region_id
        return old

    def remove_cell(self, c: Coordinate) -> Optional[int]:
        old = self._owners.pop(c, None)
        if old is not None:
            self._detach(c, old)
        return old

    def get_cell(self, c: Coordinate) -> Cell:
        return Cell(c, self._owners.get(c))

    def cells(self) -> List[Cell]:
        return [Cell(c, v) for c, v in self._owners.items()]

    def coordinates(self) -> List[Coordinate]:
        return list(self._owners)

    def zero(self) -> Coordinate:
        return self.coordinate_class.zero()

    def unit_vectors(self) -> List[Coordinate]:
        return self.coordinate_class.unit_vectors()

    def containing(self, px: float, py: float) -> Coordinate:
        return self.coordinate_class.containing(px, py)

    def cell_area(self) -> float:
        return self.coordinate_class.cell_area()

    def clear(self) -> None:
        self._owners.clear()
        for region in self._regions:
            region.clear()

    # Regions

    def regions(self) -> List[MosaicRegion]:
        return list(self._regions)

    def number_of_regions(self) -> int:
        return len(self._regions)

    def get_region(self, region_id: int) -> MosaicRegion:
        self._check_region_id(region_id)
        return self._regions[region_id]

    def region_at(self, c: Coordinate) -> Optional[MosaicRegion]:
        v = self._owners.get(c)
        return self._regions[v] if v is not None else None

    def set_guiding_shape(
        self,
        region_id: int,
        coordinates: Iterable[Coordinate],
        factor: float = 1.0,
        translation: Sequence[float] = (0.0, 0.0),
    ) -> None:
        shape = CellRegion(self.coordinate_class, coordinates)
        self.get_region(region_id).set_guiding_shape(shape, factor, translation)

    def compute_desired_regions(self, cell_weight: float, samples: int = 5) -> None:
        """Build every region's guiding shape from its face polygon."""
        from .guiding_shapes import compute_desired_regions

        self.cell_weight = cell_weight
        compute_desired_regions(self, cell_weight, samples)

    def translate_regions(self, region_ids: Iterable[int], t: Coordinate) -> None:
        """Shift whole regions, guiding shapes included, by t."""
        region_ids = list(region_ids)
        for i in region_ids:
            for c in self._regions[i]:
                del self._owners[c]
        for i in region_ids:
            region = self._regions[i]
            for other, count in list(region.neighbour_regions.items()):
                _decrement(self._regions[other].neighbour_regions, i, count)
            region.neighbour_regions.clear()
            region.translate(t)
            for c in region:
                old = self._owners.get(c)
                if old is not None:
                    self._detach(c, old)
                self._owners[c] = i
            for c in region:
                for d in c.neighbours():
                    other = self._owners.get(d)
                    if other is not None and other != i:
                        region.neighbour_regions[other] += 1
                        self._regions[other].neighbour_regions[i] += 1

    # Validity and quality

    def is_valid(self) -> bool:
        return all(region.is_valid() for region in self._regions)

    def is_connected(self) -> bool:
        return all(region.is_connected() for region in self._regions)

    def quality(self, exact: bool) -> float:
        """
        Total size deviation from the guiding shapes; lower is better.

        With exact=True this is the number of tiles missing or in excess. With
        exact=False each region's deviation is divided by its desired size.
        """
        total = 0.0
        for region in self._regions:
            desired = region.desired_size()
            deviation = abs(region.size() - desired)
            if exact:
                total += deviation
            else:
                total += deviation / max(desired, 1)
        return total

    def quality_pair(self) -> Tuple[float, float]:
        return (self.quality(True), self.quality(False))

    def total_hex_error(self) -> int:
        return sum(abs(region.get_hex_error()) for region in self._regions)

    def duplicate(self) -> "MosaicCartogram":
        other = MosaicCartogram(self.grid_type, self.subdivision_map, self.weak_dual)
        other.cell_weight = self.cell_weight
        other._owners = dict(self._owners)
        other._regions = [region.copy() for region in self._regions]
        return other

    # Coordinate records

    def export_coordinates(self, path: Union[str, Path]) -> None:
        path = Path(path)
        lines = []
        for region in self._regions:
            lines.append(f"ID {region.id}")
            lines.append(_format_components(region.total_translation))
            lines.extend(_format_components(c) for c in region)
        path.write_text("\n".join(lines) + "\n", encoding="utf-8")
        logger.info("Exported coordinates", path=str(path), regions=len(self._regions), cells=len(self._owners))

    def import_coordinates(self, path: Union[str, Path]) -> None:
        path = Path(path)
        region_id: Optional[int] = None
        expect_translation = False
        imported = 0
        with path.open("r", encoding="utf-8") as f:
            for line_number, raw in enumerate(f, start=1):
                line = raw.strip()
                if not line:
                    continue
                if line.startswith("ID"):
                    try:
                        region_id = int(line[2:].strip())
                    except ValueError:
                        raise ValueError(f"{path}:{line_number}: bad region header {line!r}") from None
                    self._check_region_id(region_id)
                    expect_translation = True
                    continue
                if region_id is None:
                    raise ValueError(f"{path}:{line_number}: cell listed before any region header")
                c = self._parse_coordinate(line, path, line_number)
                if expect_translation:
                    self._regions[region_id].translate_guiding_shape(c)
                    expect_translation = False
                else:
                    self.set_vertex(c, region_id)
                    imported += 1
        if expect_translation:
            raise ValueError(f"{path}: region {region_id} has no translation line")
        logger.info("Imported coordinates", path=str(path), cells=imported)

    # Internal bookkeeping

    def _check_region_id(self, region_id: int) -> None:
        if not 0 <= region_id < len(self._regions):
            raise ValueError(f"Unknown region id {region_id}")

    def _attach(self, c: Coordinate, region_id: int) -> None:
        region = self._regions[region_id]
        region.add_cell(c)
        for d in c.neighbours():
            other = self._owners.get(d)
            if other is not None and other != region_id:
                region.neighbour_regions[other] += 1
                self._regions[other].neighbour_regions[region_id] += 1

    def _detach(self, c: Coordinate, region_id: int) -> None:
        region = self._regions[region_id]
        region.remove_cell(c)
        for d in c.neighbours():
            other = self._owners.get(d)
            if other is not None and other != region_id:
                _decrement(region.neighbour_regions, other)
                _decrement(self._regions[other].neighbour_regions, region_id)

    def _parse_coordinate(self, line: str, path: Path, line_number: int) -> Coordinate:
        try:
            values = [int(token) for token in line.split()]
            return self.coordinate_class.parse(values)
        except ValueError as e:
            raise ValueError(f"{path}:{line_number}: {e}") from None


def _format_components(c: Coordinate) -> str:
    return " ".join(str(v) for v in c.components())


def _white_components(grid: MosaicCartogram, occupied: Iterable[Coordinate]) -> List[List[Coordinate]]:
    """
    Group the empty cells around a footprint into connected pockets.

    A pocket is left out of the result when a flood through empty cells
    starting from it leaves the bounding box of the footprint. Every patch
    of a footprint made of separate pieces has its own outside ring, and
    all of them are dropped.
    """
    occupied = dict.fromkeys(occupied)
    white: Dict[Coordinate, None] = {}
    for c in occupied:
        for d in c.vicinity():
            if d not in occupied:
                white[d] = None
    if not white:
        return []

    centers = np.array([c.to_point() for c in occupied])
    low = centers.min(axis=0) - 1e-9
    high = centers.max(axis=0) + 1e-9

    graph = nx.Graph()
    graph.add_nodes_from(white)
    for u in white:
        for v in u.neighbours():
            if v in white:
                graph.add_edge(u, v)

    order = {d: index for index, d in enumerate(white)}
    outside: Dict[Coordinate, bool] = {}
    pockets = []
    for component in nx.connected_components(graph):
        members = sorted(component, key=order.__getitem__)
        start = members[0]
        if start not in outside:
            _classify_flood(occupied, start, low, high, outside)
        if not outside[start]:
            pockets.append(members)
    pockets.sort(key=lambda pocket: order[pocket[0]])
    return pockets


def _classify_flood(
    occupied: Dict[Coordinate, None],
    start: Coordinate,
    low: np.ndarray,
    high: np.ndarray,
    outside: Dict[Coordinate, bool],
) -> None:
    """Flood empty cells from start and record whether the flood escapes."""
    seen = {start}
    stack = [start]
    escaped = False
    while stack:
        c = stack.pop()
        center = c.to_point()
        if np.any(center < low) or np.any(center > high):
            escaped = True
            break
        for d in c.neighbours():
            if d not in seen and d not in occupied:
                seen.add(d)
                stack.append(d)
    for c in seen:
        outside[c] = escaped


def compute_hole_boundaries(grid: MosaicCartogram, occupied: Iterable[Coordinate]) -> List[List[Coordinate]]:
    """
    Empty cells bordering each enclosed pocket of a footprint.

    Args:
        grid: Grid the coordinates live on
        occupied: Cells forming the footprint

    Returns:
        One ordered list per hole. A footprint without holes gives [].
    """
    return _white_components(grid, occupied)


def compute_holes(grid: MosaicCartogram, occupied: Iterable[Coordinate]) -> List[List[Coordinate]]:
    """Every empty cell of each enclosed pocket, not just its boundary."""
    occupied = dict.fromkeys(occupied)
    holes = []
    for boundary in _white_components(grid, occupied):
        hole: Dict[Coordinate, None] = {}
        stack = list(boundary)
        done = set(boundary)
        while stack:
            c = stack.pop()
            hole[c] = None
            for d in c.neighbours():
                if d not in done and d not in occupied:
                    done.add(d)
                    stack.append(d)
        holes.append(list(hole))
    return holes
