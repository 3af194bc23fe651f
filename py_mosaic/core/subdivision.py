"""
Planar subdivision input and its weak dual.

A SubdivisionMap holds the bounded faces of the source map. Face ids double as
region ids in the cartogram, so faces are expected to be numbered 0..n-1 in
list order. The WeakDual is the face adjacency graph; it is built once per run
and never mutated afterwards.
"""

from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Tuple

import networkx as nx
import numpy as np
import structlog
from shapely.geometry import Polygon

logger = structlog.get_logger()


@dataclass
class Face:
    """A bounded face of the source map."""

    id: int
    label: str
    weight: float
    polygon: Optional[Polygon] = None
    centroid: np.ndarray = field(default=None)

    def __post_init__(self):
        if self.centroid is None:
            if self.polygon is None:
                raise ValueError(f"Face {self.id} needs a polygon or a centroid")
            c = self.polygon.centroid
            self.centroid = np.array([c.x, c.y])
        else:
            self.centroid = np.asarray(self.centroid, dtype=float)

    @property
    def area(self) -> float:
        if self.polygon is None:
            return 0.0
        return self.polygon.area


class WeakDual:
    """Face adjacency graph. Vertices are region ids."""

    def __init__(self, vertices: Iterable[int], edges: Iterable[Tuple[int, int]] = ()):
        self.graph = nx.Graph()
        self.graph.add_nodes_from(vertices)
        for u, v in edges:
            if u == v:
                raise ValueError(f"Self loop on dual vertex {u}")
            self.graph.add_edge(u, v)
        self._cut_edges: Optional[List[Tuple[int, int]]] = None

    def vertices(self) -> List[int]:
        return list(self.graph.nodes)

    def number_of_vertices(self) -> int:
        return self.graph.number_of_nodes()

    def edges(self) -> List[Tuple[int, int]]:
        return list(self.graph.edges)

    def has_edge(self, u: int, v: int) -> bool:
        return self.graph.has_edge(u, v)

    def neighbours(self, v: int) -> List[int]:
        return list(self.graph.neighbors(v))

    def degree(self, v: int) -> int:
        return self.graph.degree(v)

    def cut_edges(self) -> List[Tuple[int, int]]:
        """Edges whose removal disconnects the graph, in a stable order."""
        if self._cut_edges is None:
            bridges = set()
            for u, v in nx.bridges(self.graph):
                bridges.add((u, v))
                bridges.add((v, u))
            # Report bridges in edge order so slide passes stay deterministic
            self._cut_edges = [(u, v) for u, v in self.graph.edges if (u, v) in bridges]
        return list(self._cut_edges)


class SubdivisionMap:
    """Collection of bounded faces with lookup by id."""

    def __init__(self, faces: List[Face]):
        self.faces = list(faces)
        self._by_id: Dict[int, Face] = {}
        for face in self.faces:
            if face.id in self._by_id:
                raise ValueError(f"Duplicate face id {face.id}")
            self._by_id[face.id] = face

    def __len__(self) -> int:
        return len(self.faces)

    def __iter__(self):
        return iter(self.faces)

    def get_face(self, face_id: int) -> Face:
        try:
            return self._by_id[face_id]
        except KeyError:
            raise ValueError(f"Unknown face id {face_id}") from None

    def total_weight(self) -> float:
        return float(sum(face.weight for face in self.faces))

    def build_weak_dual(self, tolerance: float = 1e-9) -> WeakDual:
        """
        Connect faces whose polygons share a boundary of positive length.

        Faces touching in a single point are not adjacent.
        """
        polygons = [(face.id, face.polygon) for face in self.faces if face.polygon is not None]
        if len(polygons) != len(self.faces):
            raise ValueError("Building the weak dual requires a polygon for every face")

        edges = []
        for i, (id1, p1) in enumerate(polygons):
            for id2, p2 in polygons[i + 1 :]:
                if not p1.intersects(p2):
                    continue
                shared = p1.boundary.intersection(p2.boundary)
                if shared.length > tolerance:
                    edges.append((id1, id2))

        logger.info("Built weak dual", faces=len(self.faces), edges=len(edges))
        return WeakDual([face.id for face in self.faces], edges)
