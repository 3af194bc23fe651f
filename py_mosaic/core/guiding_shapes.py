"""
Guiding shape construction.

For every face, the polygon is scaled so its area matches the desired number
of tiles, placed over the lattice at a few sub-cell offsets, and rasterized
into a connected, hole-free set of exactly that many cells. The offset whose
cells cover the most polygon area wins.
"""

import math
from collections import deque
from typing import TYPE_CHECKING, Dict, List, Optional, Tuple

import structlog
from shapely import affinity
from shapely.geometry import Polygon

from .cartogram import CellRegion, compute_holes
from .coordinates import Coordinate

if TYPE_CHECKING:
    from .cartogram import MosaicCartogram
    from .subdivision import Face

logger = structlog.get_logger()


def desired_tile_count(weight: float, cell_weight: float) -> int:
    """Tiles a face of the given weight should get; never less than one."""
    return max(1, int(math.floor(weight / cell_weight + 0.5)))


def compute_desired_regions(grid: "MosaicCartogram", cell_weight: float, samples: int = 5) -> None:
    """
    Assign a guiding shape to every region of the grid.

    Args:
        grid: Cartogram whose regions receive the shapes
        cell_weight: Data weight represented by one tile
        samples: Offsets tried along each axis within one cell period
    """
    if cell_weight <= 0:
        raise ValueError(f"cell_weight must be positive, got {cell_weight}")

    width, height = grid.coordinate_class.sampling_size()
    dx = width / samples if samples > 0 else 0.0
    dy = height / samples if samples > 0 else 0.0
    cell_area = grid.cell_area()

    for region in grid.regions():
        face = region.face
        if face is None or face.polygon is None:
            raise ValueError(f"Region {region.id} has no face polygon to build a guiding shape from")
        if face.area <= 0:
            raise ValueError(f"Face {face.label} has zero area")

        tiles = desired_tile_count(face.weight, cell_weight)
        factor = math.sqrt(tiles * cell_area / face.area)

        best_shape: Optional[CellRegion] = None
        best_quality = float("-inf")
        best_offset = (0.0, 0.0)
        for i in range(samples + 1):
            for j in range(samples + 1):
                tx, ty = i * dx, j * dy
                shape, quality = _fit_shape(grid, face, tiles, factor, tx, ty)
                if quality > best_quality:
                    best_shape, best_quality, best_offset = shape, quality, (tx, ty)

        region.set_guiding_shape(best_shape, factor, best_offset)
        logger.debug(
            "Guiding shape computed",
            region=region.label,
            tiles=tiles,
            factor=round(factor, 4),
            coverage=round(best_quality, 4),
        )

    logger.info("Guiding shapes computed", regions=grid.number_of_regions(), cell_weight=cell_weight)


def _fit_shape(
    grid: "MosaicCartogram",
    face: "Face",
    tiles: int,
    factor: float,
    tx: float,
    ty: float,
) -> Tuple[CellRegion, float]:
    """Rasterize one placement of the face. Returns the shape and its covered area."""
    polygon = affinity.affine_transform(face.polygon, [factor, 0.0, 0.0, factor, tx, ty])
    areas = _intersected_cells(grid, polygon)

    chosen = _grow(areas, tiles)
    shape = CellRegion(grid.coordinate_class, chosen)

    holes = compute_holes(grid, shape)
    extra = 0
    for hole in holes:
        for c in hole:
            shape.add_cell(c)
            extra += 1
    for _ in range(extra):
        if not _trim_one(shape, areas):
            logger.warning("Could not trim guiding shape", face=face.label, size=len(shape), tiles=tiles)
            break

    quality = sum(areas.get(c, 0.0) for c in shape)
    return shape, quality


def _intersected_cells(grid: "MosaicCartogram", polygon: Polygon) -> Dict[Coordinate, float]:
    """Area of overlap for every cell the polygon touches, found by flood fill."""
    start_points = [polygon.exterior.coords[0], polygon.representative_point().coords[0]]
    queue = deque()
    for px, py in start_points:
        c = grid.containing(px, py)
        queue.append(c)
        queue.extend(c.neighbours())

    areas: Dict[Coordinate, float] = {}
    visited = set()
    while queue:
        c = queue.popleft()
        if c in visited:
            continue
        visited.add(c)
        area = grid.get_cell(c).polygon.intersection(polygon).area
        if area > 0:
            areas[c] = area
            for d in c.neighbours():
                if d not in visited:
                    queue.append(d)
    return areas


def _grow(areas: Dict[Coordinate, float], tiles: int) -> List[Coordinate]:
    """Connected set of cells grown greedily by overlap area."""
    if not areas:
        raise ValueError("Face polygon does not cover any cell")
    start = max(areas, key=lambda c: areas[c])
    chosen: Dict[Coordinate, None] = {start: None}
    frontier: Dict[Coordinate, None] = dict.fromkeys(start.neighbours())
    while len(chosen) < tiles:
        best = max(frontier, key=lambda c: areas.get(c, 0.0))
        del frontier[best]
        chosen[best] = None
        for d in best.neighbours():
            if d not in chosen and d not in frontier:
                frontier[d] = None
    return list(chosen)


def _trim_one(shape: CellRegion, areas: Dict[Coordinate, float]) -> bool:
    """Drop the least covered cell whose removal keeps the shape connected."""
    edge = {c: None for c in shape if shape.is_edge(c)}
    ordered = sorted(edge, key=lambda c: areas.get(c, 0.0))
    ordered += sorted((c for c in shape if c not in edge), key=lambda c: areas.get(c, 0.0))
    for c in ordered:
        remaining = CellRegion(shape.coordinate_class, (d for d in shape if d != c))
        if remaining.is_connected():
            shape.remove_cell(c)
            return True
    return False
