"""Tests for min-cost-flow polishing."""

import networkx as nx
import pytest

from py_mosaic.core import (
    Face, GridType, MosaicCartogram, Polisher, SquareCoordinate as Sq,
    SubdivisionMap, WeakDual
)
from py_mosaic.core.polisher import SEA


def single_region(cells, shape):
    faces = SubdivisionMap([Face(0, "solo", 10.0, centroid=(0, 0))])
    dual = WeakDual([0])
    grid = MosaicCartogram(GridType.SQUARE, faces, dual)
    for c in cells:
        grid.set_vertex(c, 0)
    grid.set_guiding_shape(0, shape)
    return grid, dual


class TestNetwork:
    """Test the flow network layout."""

    def test_supplies_balance(self):
        grid, dual = single_region([Sq(0, 0)], [Sq(0, 0), Sq(1, 0)])
        graph = Polisher(grid, dual).build_network(exact=False)
        demands = nx.get_node_attributes(graph, "demand")
        assert demands[("region", 0)] == 1
        assert demands[SEA] == -1
        assert sum(demands.values()) == 0

    def test_cell_nodes_have_unit_capacity(self):
        grid, dual = single_region([Sq(0, 0)], [Sq(0, 0), Sq(1, 0)])
        graph = Polisher(grid, dual).build_network(exact=False)
        for c in [Sq(0, 0), Sq(1, 0), Sq(0, 1)]:
            assert graph[("in", c)][("out", c)]["capacity"] == 1

    def test_costs_are_non_negative(self):
        grid, dual = single_region([Sq(0, 0), Sq(1, 0)], [Sq(0, 0), Sq(1, 0), Sq(2, 0)])
        graph = Polisher(grid, dual).build_network(exact=False)
        assert all(data["weight"] >= 0 for _, _, data in graph.edges(data=True))

    def test_illegal_release_has_no_arc(self):
        """Emptying the only cell of a region would disconnect it."""
        grid, dual = single_region([Sq(0, 0)], [Sq(0, 0), Sq(1, 0)])
        graph = Polisher(grid, dual).build_network(exact=False)
        assert not graph.has_edge(("out", Sq(0, 0)), ("in", Sq(1, 0)))
        assert graph.has_edge(("out", Sq(1, 0)), ("in", Sq(0, 0)))


class TestPolish:
    """Test tile count correction."""

    def test_missing_tile_added_inside_shape(self):
        grid, dual = single_region([Sq(0, 0)], [Sq(0, 0), Sq(1, 0)])
        result = Polisher(grid, dual).polish(exact=False)
        assert result.total_hex_error() == 0
        assert result.get_vertex(Sq(1, 0)) == 0
        assert result.is_valid()

    def test_surplus_tile_removed_outside_shape(self):
        grid, dual = single_region([Sq(0, 0), Sq(1, 0)], [Sq(0, 0)])
        result = Polisher(grid, dual).polish(exact=False)
        assert result.total_hex_error() == 0
        assert result.get_vertex(Sq(0, 0)) == 0
        assert result.get_vertex(Sq(1, 0)) is None

    def test_perfect_grid_unchanged(self):
        grid, dual = single_region([Sq(0, 0), Sq(1, 0)], [Sq(0, 0), Sq(1, 0)])
        result = Polisher(grid, dual).polish(exact=True)
        assert set(result.coordinates()) == {Sq(0, 0), Sq(1, 0)}

    def test_result_is_a_copy(self):
        grid, dual = single_region([Sq(0, 0)], [Sq(0, 0), Sq(1, 0)])
        result = Polisher(grid, dual).polish(exact=False)
        assert result is not grid

    def test_zero_rounds(self):
        grid, dual = single_region([Sq(0, 0)], [Sq(0, 0), Sq(1, 0)])
        result = Polisher(grid, dual, max_iterations=0).polish(exact=False)
        assert result.total_hex_error() == 1

    def test_two_regions_keep_adjacency(self):
        faces = SubdivisionMap([
            Face(0, "A", 10.0, centroid=(0, 0)),
            Face(1, "B", 10.0, centroid=(2, 0)),
        ])
        dual = WeakDual([0, 1], [(0, 1)])
        grid = MosaicCartogram(GridType.SQUARE, faces, dual)
        grid.set_vertex(Sq(0, 0), 0)
        grid.set_vertex(Sq(1, 0), 1)
        grid.set_guiding_shape(0, [Sq(0, 0), Sq(-1, 0)])
        grid.set_guiding_shape(1, [Sq(1, 0), Sq(2, 0)])

        result = Polisher(grid, dual).polish(exact=False)
        assert result.total_hex_error() == 0
        assert result.is_valid()
        assert result.get_vertex(Sq(-1, 0)) == 0
        assert result.get_vertex(Sq(2, 0)) == 1
