"""Tests for faces, subdivision maps and the weak dual."""

import pytest
import numpy as np
from shapely.geometry import box

from py_mosaic.core import Face, Separator, SeparatorError, SubdivisionMap, WeakDual


@pytest.fixture
def strip_map():
    """Three boxes in a row plus one box on top of the middle one.

    Box 3 touches box 0 only at a corner.
    """
    faces = [
        Face(0, "west", 10.0, polygon=box(0, 0, 1, 1)),
        Face(1, "middle", 10.0, polygon=box(1, 0, 2, 1)),
        Face(2, "east", 10.0, polygon=box(2, 0, 3, 1)),
        Face(3, "north", 10.0, polygon=box(1, 1, 2, 2)),
    ]
    return SubdivisionMap(faces)


class TestFace:
    """Test face construction."""

    def test_centroid_from_polygon(self):
        """Without an explicit centroid the polygon centroid is used."""
        face = Face(0, "a", 1.0, polygon=box(0, 0, 2, 4))
        np.testing.assert_allclose(face.centroid, [1.0, 2.0])
        assert face.area == pytest.approx(8.0)

    def test_explicit_centroid(self):
        face = Face(0, "a", 1.0, centroid=(3, 4))
        np.testing.assert_allclose(face.centroid, [3.0, 4.0])
        assert face.area == 0.0

    def test_needs_polygon_or_centroid(self):
        with pytest.raises(ValueError):
            Face(0, "a", 1.0)


class TestSubdivisionMap:
    """Test face lookup and weak dual construction."""

    def test_lookup(self, strip_map):
        assert len(strip_map) == 4
        assert strip_map.get_face(2).label == "east"
        assert strip_map.total_weight() == pytest.approx(40.0)

    def test_unknown_face(self, strip_map):
        with pytest.raises(ValueError):
            strip_map.get_face(9)

    def test_duplicate_ids_rejected(self):
        with pytest.raises(ValueError):
            SubdivisionMap([Face(0, "a", 1.0, centroid=(0, 0)), Face(0, "b", 1.0, centroid=(1, 0))])

    def test_build_weak_dual(self, strip_map):
        """Shared edges make faces adjacent, a shared corner does not."""
        dual = strip_map.build_weak_dual()
        assert dual.has_edge(0, 1)
        assert dual.has_edge(1, 2)
        assert dual.has_edge(1, 3)
        assert not dual.has_edge(0, 3)
        assert not dual.has_edge(0, 2)

    def test_build_weak_dual_requires_polygons(self):
        faces = SubdivisionMap([Face(0, "a", 1.0, centroid=(0, 0))])
        with pytest.raises(ValueError):
            faces.build_weak_dual()


class TestWeakDual:
    """Test graph queries on the weak dual."""

    def test_queries(self):
        dual = WeakDual([0, 1, 2], [(0, 1), (1, 2)])
        assert dual.number_of_vertices() == 3
        assert dual.degree(1) == 2
        assert sorted(dual.neighbours(1)) == [0, 2]

    def test_self_loop_rejected(self):
        with pytest.raises(ValueError):
            WeakDual([0], [(0, 0)])

    def test_cut_edges_in_edge_order(self, strip_map):
        """A tree has only cut edges, reported in graph edge order."""
        dual = strip_map.build_weak_dual()
        assert dual.cut_edges() == [(0, 1), (1, 2), (1, 3)]

    def test_cycle_edges_are_not_cut_edges(self):
        """Only the pendant edge of a triangle with a tail is a cut edge."""
        dual = WeakDual([0, 1, 2, 3], [(0, 1), (0, 2), (1, 2), (2, 3)])
        assert dual.cut_edges() == [(2, 3)]

    def test_isolated_vertex(self):
        """A single face has no cut edges."""
        assert WeakDual([0]).cut_edges() == []


class TestSeparator:
    """Test splitting the dual along a cut edge."""

    @pytest.fixture
    def path_dual(self):
        return WeakDual([0, 1, 2, 3], [(0, 1), (1, 2), (2, 3)])

    def test_smaller_side_moves(self, path_dual):
        """component1 is the smaller side and v1 its cut edge endpoint."""
        separator = Separator(path_dual, (2, 3))
        assert separator.component1 == (3,)
        assert separator.component2 == (0, 1, 2)
        assert (separator.v1, separator.v2) == (3, 2)

    def test_tie_goes_to_first_endpoint(self, path_dual):
        separator = Separator(path_dual, (1, 2))
        assert separator.component1 == (0, 1)
        assert separator.component2 == (2, 3)
        assert (separator.v1, separator.v2) == (1, 2)

    def test_components_partition_vertices(self, path_dual):
        """For every cut edge both sides cover all vertices exactly once."""
        for edge in path_dual.cut_edges():
            separator = Separator(path_dual, edge)
            assert len(separator.component1) <= len(separator.component2)
            assert sorted(separator.component1 + separator.component2) == [0, 1, 2, 3]
            assert separator.v1 in separator.component1
            assert separator.v2 in separator.component2

    def test_cycle_edge_rejected(self):
        dual = WeakDual([0, 1, 2], [(0, 1), (1, 2), (0, 2)])
        with pytest.raises(SeparatorError):
            Separator(dual, (0, 1))

    def test_missing_edge_rejected(self, path_dual):
        with pytest.raises(SeparatorError):
            Separator(path_dual, (0, 3))

    def test_island_belongs_to_neither_side(self):
        """A bridge splits its own part of the dual; an isolated face is ignored."""
        dual = WeakDual([0, 1, 2], [(0, 1)])
        separator = Separator(dual, (0, 1))
        assert separator.component1 == (0,)
        assert separator.component2 == (1,)

    def test_cycle_edge_rejected_next_to_island(self):
        dual = WeakDual([0, 1, 2, 3], [(0, 1), (1, 2), (0, 2)])
        with pytest.raises(SeparatorError):
            Separator(dual, (0, 1))

    def test_immutable(self, path_dual):
        separator = Separator(path_dual, (0, 1))
        with pytest.raises(AttributeError):
            separator.v1 = 5
