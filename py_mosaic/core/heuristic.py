"""
Local search that turns an initial cell assignment into a mosaic cartogram.

The search runs in phases:

1. Guiding shapes are centred on their regions and whole sides of the dual
   are slid along cut edges until no slide improves the arrangement.
2. The layout driver moves the guiding shapes and a take/release sweep pulls
   every region towards its shape. The best grid seen is kept; the loop ends
   after a number of iterations without improvement.
3. Finalization fills enclosed holes and alleys, then hands the grid to the
   flow polisher to fix the remaining tile counts.

Only TakeMove, ReleaseMove and SlideMove ever modify the grid.
"""

from collections import Counter
from pathlib import Path
from typing import Dict, List, Optional, Tuple

import structlog
from pydantic import BaseModel, Field

from ..config import settings
from .alea_prng import AleaPRNG
from .cartogram import MosaicCartogram, compute_hole_boundaries
from .coordinates import Coordinate
from .layout import ForceDirectedLayout, LayoutDriver, LayoutOptions
from .moves import ReleaseMove, SlideMove, TakeMove, is_alley
from .polisher import Polisher
from .separator import Separator
from .subdivision import SubdivisionMap, WeakDual

logger = structlog.get_logger()


class InvalidCartogramError(RuntimeError):
    """Raised when a finished cartogram breaks connectivity or adjacency."""


class HeuristicOptions(BaseModel):
    """Per-run options for MosaicHeuristic."""

    max_no_improve_iterations: int = Field(
        default_factory=lambda: settings.max_no_improve_iterations,
        ge=0,
        description="Iterations without improvement before the search stops",
    )
    finalize: bool = Field(default=True, description="Fill holes and alleys and polish after the search")
    exact_tiles: bool = Field(
        default=False, description="Force exact tile counts, allowing adjacency errors and holes"
    )
    max_repair_passes: int = Field(
        default_factory=lambda: settings.max_repair_passes,
        ge=1,
        description="Upper bound on hole and alley repair passes",
    )
    polish_max_iterations: int = Field(
        default_factory=lambda: settings.polish_max_iterations,
        ge=0,
        description="Flow rounds in the polisher",
    )
    checkpoint_path: Optional[Path] = Field(
        default=None, description="Write coordinates here once the search ends"
    )


class RegionSummary(BaseModel):
    """Final statistics of one region."""

    region_id: int
    label: str
    actual: int
    desired: int
    error_percent: float
    symmetric_difference: int


def _ranked_candidates(grid: MosaicCartogram, c: Coordinate) -> List[int]:
    """Owners around c, most adjacent cells first, ties in discovery order."""
    counts = Counter()
    for d in c.neighbours():
        owner = grid.get_vertex(d)
        if owner is not None:
            counts[owner] += 1
    return [owner for owner, _ in counts.most_common()]


class MosaicHeuristic:
    """
    Cartogram construction from an initial grid.

    Args:
        subdivision_map: Faces of the source map
        weak_dual: Face adjacency graph
        original_grid: Starting grid; never modified
        options: Run options, see HeuristicOptions
        layout_driver: Guiding shape mover used during the search
    """

    def __init__(
        self,
        subdivision_map: SubdivisionMap,
        weak_dual: WeakDual,
        original_grid: MosaicCartogram,
        options: Optional[HeuristicOptions] = None,
        layout_driver: Optional[LayoutDriver] = None,
    ):
        self.subdivision_map = subdivision_map
        self.weak_dual = weak_dual
        self.original_grid = original_grid
        self.options = options or HeuristicOptions()
        self.layout_driver = layout_driver
        self.separators = [Separator(weak_dual, edge) for edge in weak_dual.cut_edges()]
        self.current_grid = original_grid.duplicate()

    def execute(
        self,
        layout_driver: Optional[LayoutDriver] = None,
        max_no_improve_iterations: Optional[int] = None,
        finalize: Optional[bool] = None,
        exact_tiles: Optional[bool] = None,
    ) -> MosaicCartogram:
        """
        Run the full search.

        Args:
            layout_driver: Overrides the driver given at construction
            max_no_improve_iterations: Overrides the option of the same name
            finalize: Overrides the option of the same name
            exact_tiles: Overrides the option of the same name

        Returns:
            The resulting grid

        Raises:
            InvalidCartogramError: If the result is not valid (or, with
                exact_tiles, not connected)
        """
        patience = (
            self.options.max_no_improve_iterations
            if max_no_improve_iterations is None
            else max_no_improve_iterations
        )
        finalize = self.options.finalize if finalize is None else finalize
        exact_tiles = self.options.exact_tiles if exact_tiles is None else exact_tiles
        driver = layout_driver or self.layout_driver or self._default_layout()

        logger.info(
            "Starting mosaic heuristic",
            regions=self.original_grid.number_of_regions(),
            cells=self.original_grid.number_of_cells(),
            separators=len(self.separators),
            patience=patience,
        )

        self.current_grid = self.original_grid.duplicate()
        self._initialize_guiding_shape_positions()
        if not self.current_grid.is_valid():
            logger.warning("Starting grid is not valid")

        slides = self.slide_blocks()
        logger.info("Slide pass complete", slides=slides)

        best_grid = self.current_grid.duplicate()
        best_quality = self.current_grid.quality_pair()
        bad_iterations = 0
        iterations = 0
        while bad_iterations < patience:
            iterations += 1
            driver.run_model(self.current_grid, self.subdivision_map)
            self.run_iteration()

            quality = self.current_grid.quality_pair()
            if quality < best_quality:
                best_quality = quality
                best_grid = self.current_grid.duplicate()
                bad_iterations = 0
            else:
                bad_iterations += 1

        self.current_grid = best_grid
        logger.info(
            "Search finished",
            iterations=iterations,
            exact_quality=best_quality[0],
            relative_quality=round(best_quality[1], 4),
        )

        checkpoint = self.options.checkpoint_path
        if checkpoint is None and settings.checkpoint_enabled:
            checkpoint = settings.checkpoint_dir / "coordinates.coo"
        if checkpoint is not None:
            self.current_grid.export_coordinates(checkpoint)

        if finalize:
            self._finalize_cartogram(exact_tiles)

        self._validate(exact_tiles)
        return self.current_grid

    def finalize_only(self, exact_tiles: Optional[bool] = None) -> MosaicCartogram:
        """Skip the search and only run hole filling, alley filling and polishing."""
        exact_tiles = self.options.exact_tiles if exact_tiles is None else exact_tiles
        self.current_grid = self.original_grid.duplicate()
        if not self.current_grid.is_valid():
            logger.warning("Starting grid is not valid")
        self._finalize_cartogram(exact_tiles)
        return self.current_grid

    def slide_blocks(self) -> int:
        """Slide separator components until no slide applies. Returns the number of slides."""
        slides = 0
        keep_going = True
        while keep_going:
            keep_going = False
            for separator in self.separators:
                for direction in self.current_grid.unit_vectors():
                    move = SlideMove(self.current_grid, self.subdivision_map, separator, direction)
                    move.evaluate()
                    if move.is_valid():
                        move.execute()
                        slides += 1
                        keep_going = True
        return slides

    def run_iteration(self) -> None:
        """One take sweep followed by one release sweep over all regions."""
        grid = self.current_grid
        for region in grid.regions():
            changed = True
            while changed:
                changed = False
                for position in region.neighbours():
                    if not region.is_desired(position):
                        continue
                    move = TakeMove(self.weak_dual, grid, position, region.id)
                    if not move.improves():
                        continue
                    move.evaluate()
                    if move.is_valid():
                        move.execute()
                        changed = True

        for region in grid.regions():
            for c in region.occupied_coordinates():
                if region.is_desired(c) or grid.get_vertex(c) != region.id:
                    continue
                move = ReleaseMove(grid, c)
                move.evaluate()
                if move.is_valid():
                    move.execute()

    def fill_holes(self) -> int:
        """
        Give enclosed empty cells to a neighbouring region.

        Candidates are tried in order of how many neighbours of the hole cell
        they own. When none can take the cell, the weakest candidate gives up
        its cells around it and the remaining candidates are tried again.
        Cells that still cannot be filled are skipped for good.

        Returns:
            Number of cells filled
        """
        grid = self.current_grid
        seen = set()
        filled = 0
        passes = 0
        all_seen = False
        while not all_seen and passes < self.options.max_repair_passes:
            passes += 1
            all_seen = True
            for hole in compute_hole_boundaries(grid, grid.coordinates()):
                for c in hole:
                    if c in seen or grid.get_vertex(c) is not None:
                        continue
                    all_seen = False
                    candidates = _ranked_candidates(grid, c)
                    if self._take_first_valid(c, candidates):
                        filled += 1
                        continue
                    seen.add(c)
                    while candidates:
                        weakest = candidates.pop()
                        for d in c.neighbours():
                            if grid.get_vertex(d) == weakest:
                                release = ReleaseMove(grid, d)
                                release.evaluate()
                                if release.is_valid():
                                    release.execute()
                        if candidates and self._take_first_valid(c, candidates):
                            filled += 1
                            break

        remaining = sum(len(hole) for hole in compute_hole_boundaries(grid, grid.coordinates()))
        if remaining:
            logger.warning("Holes left after filling", cells=remaining, passes=passes)
        logger.info("Hole filling complete", filled=filled, passes=passes)
        return filled

    def fill_alleys(self) -> int:
        """Fill empty cells enclosed on all sides but one. Returns the number filled."""
        grid = self.current_grid
        ignore = set()
        filled = 0
        passes = 0
        while passes < self.options.max_repair_passes:
            passes += 1
            alleys = [c for c in self.compute_alleys() if c not in ignore]
            if not alleys:
                break
            for c in alleys:
                if not self.is_alley(c):
                    continue
                if self._take_first_valid(c, _ranked_candidates(grid, c)):
                    filled += 1
                else:
                    ignore.add(c)

        if ignore:
            logger.warning("Alleys left after filling", cells=len(ignore))
        logger.info("Alley filling complete", filled=filled, passes=passes)
        return filled

    def polish(self, exact_tiles: bool) -> None:
        polisher = Polisher(self.current_grid, self.weak_dual, self.options.polish_max_iterations)
        self.current_grid = polisher.polish(exact_tiles)

    def is_alley(self, c: Coordinate) -> bool:
        return is_alley(self.current_grid, c)

    def compute_alleys(self) -> List[Coordinate]:
        alleys: Dict[Coordinate, None] = {}
        for region in self.current_grid.regions():
            for c in region.neighbours():
                if self.current_grid.get_vertex(c) is None and self.is_alley(c):
                    alleys[c] = None
        return list(alleys)

    def total_hex_error(self) -> int:
        return self.current_grid.total_hex_error()

    def summary(self) -> List[RegionSummary]:
        """Per-region size report. Guiding shapes are moved to their best overlay first."""
        rows = []
        for region in self.current_grid.regions():
            desired = region.desired_size()
            region.compute_best_overlay()
            error = 100.0 * (1.0 - region.size() / desired) if desired else 0.0
            rows.append(
                RegionSummary(
                    region_id=region.id,
                    label=region.label,
                    actual=region.size(),
                    desired=desired,
                    error_percent=round(error, 2),
                    symmetric_difference=region.get_symmetric_difference(),
                )
            )
        return rows

    def _default_layout(self) -> LayoutDriver:
        return ForceDirectedLayout(self.weak_dual, LayoutOptions(), AleaPRNG(settings.layout_seed))

    def _initialize_guiding_shape_positions(self) -> None:
        for region in self.current_grid.regions():
            if region.guiding_shape is None or len(region.guiding_shape) == 0 or region.size() == 0:
                continue
            offset = region.barycenter().minus(region.guiding_shape.barycenter())
            region.translate_guiding_shape(offset)

    def _take_first_valid(self, c: Coordinate, candidates: List[int]) -> bool:
        for owner in candidates:
            move = TakeMove(self.weak_dual, self.current_grid, c, owner)
            move.evaluate()
            if move.is_valid():
                move.execute()
                return True
        return False

    def _finalize_cartogram(self, exact_tiles: bool) -> None:
        self.fill_holes()
        self.fill_alleys()
        self.polish(exact_tiles)
        for row in self.summary():
            logger.info(
                "Region summary",
                region=row.label,
                actual=row.actual,
                desired=row.desired,
                error_percent=row.error_percent,
                symmetric_difference=row.symmetric_difference,
            )
        exact_quality, relative_quality = self.current_grid.quality_pair()
        logger.info(
            "Cartogram finalized",
            exact_quality=exact_quality,
            relative_quality=round(relative_quality, 4),
            hex_error=self.total_hex_error(),
        )

    def _validate(self, exact_tiles: bool) -> None:
        if exact_tiles:
            if not self.current_grid.is_connected():
                raise InvalidCartogramError("Final grid has a disconnected region")
        elif not self.current_grid.is_valid():
            bad = [r.label for r in self.current_grid.regions() if not r.is_valid()]
            raise InvalidCartogramError(f"Final grid is not valid; offending regions: {bad}")
