"""
Coarse-to-fine cartogram construction.

Large maps converge faster when the heuristic first runs with few tiles per
region and the unit is then refined step by step. Each round recomputes the
guiding shapes for the current unit on the same grid, runs the search without
finalization and optionally writes a coordinate checkpoint. The last round
uses the requested unit and finalizes.
"""

from pathlib import Path
from typing import List, Optional

import structlog

from ..config import settings
from .cartogram import MosaicCartogram
from .guiding_shapes import desired_tile_count
from .heuristic import HeuristicOptions, MosaicHeuristic
from .layout import LayoutDriver
from .subdivision import SubdivisionMap, WeakDual

logger = structlog.get_logger()


class MultiResolutionRunner:
    """
    Run MosaicHeuristic over a shrinking sequence of unit sizes.

    Args:
        subdivision_map: Faces of the source map
        weak_dual: Face adjacency graph
        grid: Initial cell assignment; replaced by each round's result
        unit_data: Weight represented by one tile in the final cartogram
        options: Heuristic options; finalize and exact_tiles apply to the last round only
        layout_driver: Layout driver shared by all rounds
        scaling_threshold: Average tiles per region in the first round
        scaling_factor: Ratio between consecutive unit sizes
        samples: Offsets per axis when fitting guiding shapes
        checkpoint_dir: Directory for coordinates<i>.coo files, None to disable
    """

    def __init__(
        self,
        subdivision_map: SubdivisionMap,
        weak_dual: WeakDual,
        grid: MosaicCartogram,
        unit_data: float,
        options: Optional[HeuristicOptions] = None,
        layout_driver: Optional[LayoutDriver] = None,
        scaling_threshold: Optional[float] = None,
        scaling_factor: Optional[float] = None,
        samples: Optional[int] = None,
        checkpoint_dir: Optional[Path] = None,
    ):
        if unit_data <= 0:
            raise ValueError(f"unit_data must be positive, got {unit_data}")
        self.subdivision_map = subdivision_map
        self.weak_dual = weak_dual
        self.grid = grid
        self.unit_data = unit_data
        self.options = options or HeuristicOptions()
        self.layout_driver = layout_driver
        self.scaling_threshold = scaling_threshold or settings.scaling_threshold
        self.scaling_factor = scaling_factor or settings.scaling_factor
        self.samples = settings.guiding_shape_samples if samples is None else samples
        if checkpoint_dir is None and settings.checkpoint_enabled:
            checkpoint_dir = settings.checkpoint_dir
        self.checkpoint_dir = Path(checkpoint_dir) if checkpoint_dir is not None else None

    def schedule(self) -> List[float]:
        """Unit sizes of the intermediate rounds, coarsest first."""
        faces = list(self.subdivision_map)
        if not faces:
            return []
        total_tiles = sum(desired_tile_count(f.weight, self.unit_data) for f in faces)
        average_tiles = total_tiles / len(faces)

        units = []
        current = self.unit_data * average_tiles / self.scaling_threshold
        while current > self.scaling_factor * self.unit_data:
            units.append(current)
            current /= self.scaling_factor
        return units

    def run(self) -> MosaicCartogram:
        """Run every round and return the finalized grid."""
        units = self.schedule()
        logger.info(
            "Starting multi-resolution run",
            rounds=len(units) + 1,
            unit_data=self.unit_data,
            scaling_factor=self.scaling_factor,
        )

        iteration = 1
        for unit in units:
            logger.info("Scaling round", round=iteration, unit_data=round(unit, 2))
            self.grid = self._run_round(unit, finalize=False, exact_tiles=False)
            self._checkpoint(iteration)
            iteration += 1

        logger.info("Final round", round=iteration, unit_data=self.unit_data)
        self.grid = self._run_round(
            self.unit_data, finalize=self.options.finalize, exact_tiles=self.options.exact_tiles
        )
        self._checkpoint(iteration)
        return self.grid

    def _run_round(self, unit: float, finalize: bool, exact_tiles: bool) -> MosaicCartogram:
        self.grid.compute_desired_regions(unit, self.samples)
        heuristic = MosaicHeuristic(
            self.subdivision_map,
            self.weak_dual,
            self.grid,
            options=self.options,
            layout_driver=self.layout_driver,
        )
        return heuristic.execute(finalize=finalize, exact_tiles=exact_tiles)

    def _checkpoint(self, iteration: int) -> None:
        if self.checkpoint_dir is None:
            return
        self.checkpoint_dir.mkdir(parents=True, exist_ok=True)
        self.grid.export_coordinates(self.checkpoint_dir / f"coordinates{iteration}.coo")
