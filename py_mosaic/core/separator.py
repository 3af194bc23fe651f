"""
Two-way split of the weak dual along a cut edge.

Slide moves shift every region on one side of a cut edge at once. The side
that moves is always the smaller one.
"""

from typing import Tuple

import networkx as nx

from .subdivision import WeakDual


class SeparatorError(ValueError):
    """Raised when an edge does not split the dual into exactly two parts."""


class Separator:
    """
    The two vertex sets left after removing a cut edge.

    Only the connected part of the dual holding the edge is split; vertices
    in other parts belong to neither side.

    Attributes:
        v1: Endpoint of the cut edge inside component1
        v2: Endpoint of the cut edge inside component2
        component1: Region ids of the smaller side (the first endpoint's side on ties)
        component2: Region ids of the other side
    """

    __slots__ = ("v1", "v2", "component1", "component2")

    def __init__(self, weak_dual: WeakDual, cut_edge: Tuple[int, int]):
        source, target = cut_edge
        if not weak_dual.has_edge(source, target):
            raise SeparatorError(f"({source}, {target}) is not an edge of the dual")

        # Other components of the dual are unaffected by the cut
        own = nx.node_connected_component(weak_dual.graph, source)
        graph = weak_dual.graph.subgraph(own).copy()
        graph.remove_edge(source, target)
        components = list(nx.connected_components(graph))
        if len(components) != 2:
            raise SeparatorError(
                f"Removing ({source}, {target}) leaves {len(components)} components "
                f"in its part of the dual, expected 2"
            )

        source_side = components[0] if source in components[0] else components[1]
        target_side = components[1] if source_side is components[0] else components[0]
        if len(source_side) > len(target_side):
            small, large = target_side, source_side
            v1, v2 = target, source
        else:
            small, large = source_side, target_side
            v1, v2 = source, target

        # Keep dual vertex order so slide passes are reproducible
        order = list(weak_dual.graph.nodes)
        object.__setattr__(self, "v1", v1)
        object.__setattr__(self, "v2", v2)
        object.__setattr__(self, "component1", tuple(v for v in order if v in small))
        object.__setattr__(self, "component2", tuple(v for v in order if v in large))

    def __setattr__(self, name, value):
        raise AttributeError("Separator is immutable")

    def __repr__(self) -> str:
        return f"Separator(v1={self.v1}, v2={self.v2}, component1={list(self.component1)})"
