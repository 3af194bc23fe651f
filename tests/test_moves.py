"""Tests for take, release and slide moves."""

import math

import pytest

from py_mosaic.core import (
    INVALID_QUALITY, Face, GridType, MosaicCartogram, ReleaseMove, Separator,
    SlideMove, SquareCoordinate as Sq, SubdivisionMap, TakeMove, WeakDual,
    compute_hole_boundaries
)
from py_mosaic.core.moves import angle_difference, best_move, is_alley


def make_grid(centroids, edges):
    faces = [Face(i, f"face{i}", 10.0, centroid=c) for i, c in enumerate(centroids)]
    dual = WeakDual(range(len(faces)), edges)
    return MosaicCartogram(GridType.SQUARE, SubdivisionMap(faces), dual), dual


def snapshot(grid):
    """Everything evaluate() must leave untouched."""
    owners = {c: grid.get_vertex(c) for c in grid.coordinates()}
    regions = [
        (frozenset(r.coordinate_set()), dict(r.neighbour_regions), r.hits, r.is_connected())
        for r in grid.regions()
    ]
    return owners, grid.quality_pair(), regions


@pytest.fixture
def bar_and_cap():
    """Region 0 is a bar of three cells, region 1 sits on its middle cell."""
    grid, dual = make_grid([(0, 0), (0, 2)], [(0, 1)])
    for x in range(3):
        grid.set_vertex(Sq(x, 0), 0)
    grid.set_vertex(Sq(1, 1), 1)
    grid.set_guiding_shape(0, [Sq(x, 0) for x in range(4)])
    grid.set_guiding_shape(1, [Sq(1, 1), Sq(2, 1)])
    return grid, dual


class TestTakeMove:
    """Test giving cells to regions."""

    def test_improves_prefilter(self, bar_and_cap):
        grid, dual = bar_and_cap
        assert TakeMove(dual, grid, Sq(3, 0), 0).improves()
        assert TakeMove(dual, grid, Sq(2, 1), 1).improves()
        assert not TakeMove(dual, grid, Sq(0, 1), 0).improves()
        assert not TakeMove(dual, grid, Sq(1, 0), 1).improves()

    def test_improves_when_both_desire(self):
        """A contested cell only changes hands if the worse relative error drops."""
        grid, dual = make_grid([(0, 0), (2, 0)], [(0, 1)])
        grid.set_vertex(Sq(0, 0), 0)
        grid.set_vertex(Sq(1, 0), 0)
        grid.set_vertex(Sq(2, 0), 1)
        grid.set_guiding_shape(0, [Sq(0, 0), Sq(1, 0)])
        grid.set_guiding_shape(1, [Sq(1, 0), Sq(2, 0), Sq(3, 0), Sq(4, 0)])
        # Region 1 misses three of four cells, region 0 is perfect
        assert TakeMove(dual, grid, Sq(1, 0), 1).improves()
        assert not TakeMove(dual, grid, Sq(2, 0), 0).improves()

    def test_evaluate_is_pure(self, bar_and_cap):
        grid, dual = bar_and_cap
        before = snapshot(grid)
        for position, owner in [(Sq(3, 0), 0), (Sq(1, 0), 1), (Sq(2, 1), 1), (Sq(5, 5), 0)]:
            TakeMove(dual, grid, position, owner).evaluate()
            assert snapshot(grid) == before
        TakeMove(dual, grid, Sq(3, 0), 0).evaluate_with_holes([])
        assert snapshot(grid) == before

    def test_valid_take(self, bar_and_cap):
        grid, dual = bar_and_cap
        move = TakeMove(dual, grid, Sq(3, 0), 0)
        move.evaluate()
        assert move.is_valid()
        assert move.quality == pytest.approx(0.5)
        assert move.necessity == 1

    def test_execute_reproduces_evaluated_state(self, bar_and_cap):
        grid, dual = bar_and_cap
        move = TakeMove(dual, grid, Sq(2, 1), 1)
        move.evaluate()
        assert move.is_valid()
        move.execute()
        assert grid.get_vertex(Sq(2, 1)) == 1
        assert grid.quality(False) == pytest.approx(move.quality)
        assert grid.is_valid()

    def test_take_that_splits_donor_is_invalid(self, bar_and_cap):
        grid, dual = bar_and_cap
        move = TakeMove(dual, grid, Sq(1, 0), 1)
        move.evaluate()
        assert not move.is_valid()
        assert move.quality == INVALID_QUALITY

    def test_unowned_cell_must_touch_new_owner(self, bar_and_cap):
        grid, dual = bar_and_cap
        move = TakeMove(dual, grid, Sq(5, 5), 0)
        move.evaluate()
        assert not move.is_valid()

    def test_take_next_to_non_neighbour_is_invalid(self):
        grid, dual = make_grid([(0, 0), (0, 2), (4, 2)], [(0, 1)])
        grid.set_vertex(Sq(0, 0), 0)
        grid.set_vertex(Sq(0, 1), 1)
        grid.set_vertex(Sq(2, 1), 2)
        move = TakeMove(dual, grid, Sq(1, 1), 1)
        move.evaluate()
        assert not move.is_valid()

    def test_creates_alley(self):
        grid, dual = make_grid([(0, 0)], [])
        for c in [Sq(0, 0), Sq(0, 1), Sq(1, 1), Sq(2, 1)]:
            grid.set_vertex(c, 0)
        move = TakeMove(dual, grid, Sq(2, 0), 0)
        move.evaluate_with_holes([])
        assert move.is_valid()
        assert move.creates_alley
        assert not move.creates_hole

    def test_creates_hole(self):
        """Closing the open side of an alley turns it into a hole."""
        grid, dual = make_grid([(0, 0)], [])
        for c in [Sq(0, -1), Sq(0, 0), Sq(0, 1), Sq(1, 1), Sq(2, 1), Sq(2, 0)]:
            grid.set_vertex(c, 0)
        old_holes = compute_hole_boundaries(grid, grid.coordinates())
        assert old_holes == []
        move = TakeMove(dual, grid, Sq(1, -1), 0)
        move.evaluate_with_holes(old_holes)
        assert move.creates_hole
        assert move.is_connected()
        assert grid.get_vertex(Sq(1, -1)) is None


class TestReleaseMove:
    """Test emptying cells."""

    def test_release_empty_cell_raises(self, bar_and_cap):
        grid, _ = bar_and_cap
        with pytest.raises(ValueError):
            ReleaseMove(grid, Sq(9, 9)).evaluate()

    def test_release_that_disconnects_is_invalid(self, bar_and_cap):
        grid, _ = bar_and_cap
        before = snapshot(grid)
        move = ReleaseMove(grid, Sq(1, 0))
        move.evaluate()
        assert not move.is_valid()
        assert not move.is_connected()
        assert snapshot(grid) == before

    def test_release_surplus_cell(self):
        grid, _ = make_grid([(0, 0)], [])
        for x in range(3):
            grid.set_vertex(Sq(x, 0), 0)
        grid.set_guiding_shape(0, [Sq(0, 0), Sq(1, 0)])
        before = snapshot(grid)

        move = ReleaseMove(grid, Sq(2, 0))
        move.evaluate()
        assert snapshot(grid) == before
        assert move.is_valid()
        assert move.improves()
        assert not move.creates_hole()

        move.execute()
        assert grid.get_vertex(Sq(2, 0)) is None
        assert grid.quality(False) == pytest.approx(move.quality)
        assert grid.quality(True) == 0

    def test_release_center_creates_hole(self):
        grid, _ = make_grid([(0, 0)], [])
        for x in range(3):
            for y in range(3):
                grid.set_vertex(Sq(x, y), 0)
        move = ReleaseMove(grid, Sq(1, 1))
        move.evaluate()
        assert move.is_valid()
        assert move.creates_hole()


class TestSlideMove:
    """Test shifting one side of a cut edge."""

    @pytest.fixture
    def dot_and_column(self):
        """Region 0 is one cell left of the bottom of region 1's column.

        The faces lie side by side, so lifting region 0 one cell aligns the
        regions with the map.
        """
        grid, dual = make_grid([(0, 0), (1, 0)], [(0, 1)])
        grid.set_vertex(Sq(0, 0), 0)
        for y in range(3):
            grid.set_vertex(Sq(1, y), 1)
        grid.set_guiding_shape(0, [Sq(0, 0)])
        grid.set_guiding_shape(1, [Sq(1, y) for y in range(3)])
        return grid, dual, Separator(dual, (0, 1))

    def test_direction_improves(self, dot_and_column):
        grid, dual, separator = dot_and_column
        up = SlideMove(grid, grid.subdivision_map, separator, Sq(0, 1))
        down = SlideMove(grid, grid.subdivision_map, separator, Sq(0, -1))
        assert up.direction_improves()
        assert not down.direction_improves()

    def test_evaluate_is_pure(self, dot_and_column):
        grid, dual, separator = dot_and_column
        before = snapshot(grid)
        for direction in grid.unit_vectors():
            SlideMove(grid, grid.subdivision_map, separator, direction).evaluate()
            assert snapshot(grid) == before

    def test_execute_slides_component(self, dot_and_column):
        grid, dual, separator = dot_and_column
        move = SlideMove(grid, grid.subdivision_map, separator, Sq(0, 1))
        move.evaluate()
        assert move.is_valid()
        move.execute()
        assert grid.get_vertex(Sq(0, 1)) == 0
        assert grid.get_vertex(Sq(0, 0)) is None
        assert grid.get_region(0).is_desired(Sq(0, 1))
        assert grid.is_valid()

    def test_slide_that_breaks_adjacency_is_invalid(self, dot_and_column):
        """Sliding left improves the bearing but loses contact with region 1."""
        grid, dual, separator = dot_and_column
        move = SlideMove(grid, grid.subdivision_map, separator, Sq(-1, 0))
        assert move.direction_improves()
        move.evaluate()
        assert not move.is_valid()

    def test_empty_region_never_slides(self):
        grid, dual = make_grid([(0, 0), (1, 0)], [(0, 1)])
        grid.set_vertex(Sq(1, 0), 1)
        move = SlideMove(grid, grid.subdivision_map, Separator(dual, (0, 1)), Sq(0, 1))
        assert not move.direction_improves()


class TestMoveOrdering:
    """Test comparing moves."""

    def test_best_move_picks_lowest_quality(self, bar_and_cap):
        grid, dual = bar_and_cap
        moves = [
            TakeMove(dual, grid, Sq(3, 0), 0),
            TakeMove(dual, grid, Sq(2, 1), 1),
            TakeMove(dual, grid, Sq(5, 5), 0),
        ]
        for move in moves:
            move.evaluate()
        assert best_move(moves) is moves[1]
        assert best_move([moves[2]]) is None
        assert best_move([]) is None

    def test_necessity_breaks_ties(self, bar_and_cap):
        grid, dual = bar_and_cap
        urgent = TakeMove(dual, grid, Sq(3, 0), 0)
        relaxed = TakeMove(dual, grid, Sq(2, 1), 1)
        urgent.quality = relaxed.quality = 1.0
        urgent.necessity, relaxed.necessity = 3, 1
        assert urgent < relaxed
        assert sorted([relaxed, urgent]) == [urgent, relaxed]


class TestHelpers:
    """Test alley detection and angle arithmetic."""

    def test_is_alley(self):
        grid, _ = make_grid([(0, 0)], [])
        for c in [Sq(0, 0), Sq(0, 1), Sq(1, 1), Sq(2, 1), Sq(2, 0)]:
            grid.set_vertex(c, 0)
        assert is_alley(grid, Sq(1, 0))
        assert not is_alley(grid, Sq(1, -1))
        assert not is_alley(grid, Sq(0, 0))

    def test_angle_difference_wraps(self):
        assert angle_difference(0.1, 2 * math.pi - 0.1) == pytest.approx(0.2)
        assert angle_difference(-math.pi / 2, math.pi / 2) == pytest.approx(math.pi)
