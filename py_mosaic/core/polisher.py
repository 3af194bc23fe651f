"""
Min-cost-flow fine tuning of region sizes.

After the local search most regions are within a few tiles of their desired
size. The polisher moves the remaining surplus along region borders: each
boundary cell becomes a flow node of capacity one, every legal single-cell
transfer becomes an arc, regions and the sea supply or demand their tile
error, and networkx.min_cost_flow picks the cheapest set of transfers. Arc
costs prefer giving away cells outside the guiding shape and taking cells
inside it.

Transfers can interfere with each other, so the network is rebuilt and solved
repeatedly while the total tile error keeps dropping.
"""

from typing import Dict, List, Optional, Sequence, Tuple

import networkx as nx
import structlog

from .cartogram import CellRegion, MosaicCartogram, compute_hole_boundaries
from .coordinates import Coordinate
from .moves import ReleaseMove, TakeMove
from .subdivision import WeakDual

logger = structlog.get_logger()

SEA = ("sea",)


def _distance(c: Coordinate, shape: Optional[CellRegion]) -> int:
    """Distance from c to the nearest shape cell."""
    if shape is None or len(shape) == 0:
        return 0
    return min(c.distance(d) for d in shape)


def _depth(c: Coordinate, shape: Optional[CellRegion]) -> int:
    """Distance from c to the nearest cell just outside the shape."""
    if shape is None or len(shape) == 0:
        return 0
    return min(c.distance(d) for d in shape.neighbours())


def _in(c: Coordinate) -> tuple:
    return ("in", c)


def _out(c: Coordinate) -> tuple:
    return ("out", c)


def _region_node(region_id: int) -> tuple:
    return ("region", region_id)


class Polisher:
    """
    Flow based tile count correction.

    Args:
        grid: Grid to polish in place
        weak_dual: Face adjacency graph
        max_iterations: Solve/apply rounds in the adjacency preserving phase
    """

    def __init__(self, grid: MosaicCartogram, weak_dual: WeakDual, max_iterations: int = 40):
        self.grid = grid
        self.weak_dual = weak_dual
        self.max_iterations = max_iterations
        self._arcs: List[Tuple[Coordinate, Coordinate]] = []

    def polish(self, exact: bool) -> MosaicCartogram:
        """
        Reduce the total tile error.

        Args:
            exact: Keep going with connectivity-only moves until every region
                has its exact size. Adjacency and hole freedom may be lost.

        Returns:
            Copy of the best grid seen (lowest total tile error).
        """
        best = self.grid.duplicate()
        best_error = self.grid.total_hex_error()
        logger.info("Polishing", hex_error=best_error, exact=exact)

        error = best_error
        iterations = 0
        while error > 0 and iterations < self.max_iterations:
            iterations += 1
            changed = self._round(exact=False)
            error = self.grid.total_hex_error()
            if error <= best_error:
                best = self.grid.duplicate()
                best_error = error
            if not changed:
                break

        if exact:
            rounds = 0
            limit = max(self.max_iterations, 1) * max(self.grid.number_of_regions(), 1)
            while error > 0 and rounds < limit:
                rounds += 1
                changed = self._round(exact=True)
                error = self.grid.total_hex_error()
                if error <= best_error:
                    best = self.grid.duplicate()
                    best_error = error
                if not changed:
                    logger.warning("Exact tile counts not reached", hex_error=error)
                    break

        logger.info("Polishing complete", hex_error=best_error, iterations=iterations)
        return best

    def _round(self, exact: bool) -> bool:
        graph = self.build_network(exact)
        try:
            flow = nx.min_cost_flow(graph)
        except nx.NetworkXUnfeasible:
            logger.warning("Infeasible flow model, stopping polish", exact=exact)
            return False
        return self._apply(flow, exact)

    def build_network(self, exact: bool) -> nx.DiGraph:
        """Flow network for the current grid. Node demand follows networkx: negative means supply."""
        grid = self.grid
        graph = nx.DiGraph()
        self._arcs = []

        boundary = self._boundary_coordinates()
        holes = compute_hole_boundaries(grid, grid.coordinates())

        for c in boundary:
            graph.add_edge(_in(c), _out(c), capacity=1, weight=0)

        for c in boundary:
            owner_c = grid.get_vertex(c)
            for d in c.neighbours():
                if d not in boundary or grid.get_vertex(d) == owner_c:
                    continue
                weight = self._arc_weight(holes, c, d, exact)
                if weight is not None:
                    graph.add_edge(_out(c), _in(d), capacity=1, weight=weight)
                    self._arcs.append((c, d))

        sea_supply = 0
        for region in grid.regions():
            supply = -region.get_hex_error()
            if exact:
                supply = max(-1, min(1, supply))
                if sea_supply > 0:
                    supply = 0
            node = _region_node(region.id)
            graph.add_node(node, demand=-supply)
            sea_supply -= supply

        graph.add_node(SEA, demand=-sea_supply)
        for c in boundary:
            owner = grid.get_vertex(c)
            node = _region_node(owner) if owner is not None else SEA
            graph.add_edge(node, _in(c), weight=0)
            graph.add_edge(_out(c), node, weight=0)

        # Shift so the cheapest arc costs zero; min_cost_flow accepts negative costs too
        weights = [data["weight"] for _, _, data in graph.edges(data=True)]
        shift = min(weights, default=0)
        if shift < 0:
            for _, _, data in graph.edges(data=True):
                data["weight"] -= shift
        return graph

    def _boundary_coordinates(self) -> Dict[Coordinate, None]:
        boundary: Dict[Coordinate, None] = {}
        for region in self.grid.regions():
            for c in region.neighbours():
                boundary[c] = None
                if self.grid.get_vertex(c) is None:
                    for d in c.neighbours():
                        if self.grid.get_vertex(d) is not None:
                            boundary[d] = None
        return boundary

    def _arc_weight(
        self,
        holes: Sequence[Sequence[Coordinate]],
        c: Coordinate,
        d: Coordinate,
        exact: bool,
    ) -> Optional[int]:
        """Cost of moving c over to d's side, or None when the transfer is illegal."""
        grid = self.grid
        owner_c = grid.get_vertex(c)
        owner_d = grid.get_vertex(d)

        if owner_d is None:
            move = ReleaseMove(grid, c)
            move.evaluate()
            if not (move.is_valid() or (exact and move.is_connected())):
                return None
            shape = grid.get_region(owner_c).guiding_shape
            return _depth(c, shape) if shape is not None and c in shape else -_distance(c, shape)

        take = TakeMove(self.weak_dual, grid, c, owner_d)
        take.evaluate_with_holes(holes)
        if not ((take.is_valid() and not take.creates_hole) or (exact and take.is_connected())):
            return None

        shape_d = grid.get_region(owner_d).guiding_shape
        gain = -_depth(c, shape_d) if shape_d is not None and c in shape_d else _distance(c, shape_d)
        if owner_c is None:
            return gain
        shape_c = grid.get_region(owner_c).guiding_shape
        loss = _depth(c, shape_c) if shape_c is not None and c in shape_c else -_distance(c, shape_c)
        return loss + gain

    def _apply(self, flow: Dict, exact: bool) -> bool:
        grid = self.grid
        changed = False
        for c, d in self._arcs:
            if flow.get(_out(c), {}).get(_in(d), 0) <= 0:
                continue
            owner_c = grid.get_vertex(c)
            owner_d = grid.get_vertex(d)
            if owner_c == owner_d:
                continue

            if owner_d is None:
                move = ReleaseMove(grid, c)
                move.evaluate()
            else:
                holes = compute_hole_boundaries(grid, grid.coordinates())
                move = TakeMove(self.weak_dual, grid, c, owner_d)
                move.evaluate_with_holes(holes)
                if move.creates_hole and not exact:
                    continue

            if move.is_valid() or (exact and move.is_connected()):
                move.execute()
                changed = True
        return changed
