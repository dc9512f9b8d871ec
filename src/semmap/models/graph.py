"""Layout-facing graph structures: nodes, weighted edges, adjacency."""

import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from typing import NamedTuple

logger = logging.getLogger(__name__)


@dataclass
class GraphNode:
    """A node as seen by a force layer.

    ``index`` is the dense 0..N-1 position into array-based structures,
    ``id`` the external identifier (e.g. ``"kw:neural network"``).
    """

    index: int
    id: str
    x: float = 0.0
    y: float = 0.0
    vx: float = 0.0
    vy: float = 0.0


@dataclass
class WeightedEdge:
    """An undirected edge with source < target after canonicalization."""

    source: int
    target: int
    weight: float
    rest_length: float | None = None

    def to_dict(self) -> dict:
        """Convert to dictionary for snapshot export."""
        return {
            "source": self.source,
            "target": self.target,
            "weight": self.weight,
            "rest_length": self.rest_length,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "WeightedEdge":
        """Create from dictionary."""
        return cls(
            source=int(data["source"]),
            target=int(data["target"]),
            weight=float(data.get("weight", 1.0)),
            rest_length=data.get("rest_length"),
        )


class Neighbor(NamedTuple):
    """One adjacency entry."""

    index: int
    weight: float


Adjacency = Mapping[int, tuple[Neighbor, ...]]


def canonicalize_edges(
    edges: Iterable[tuple[int, int, float]],
    n_nodes: int | None = None,
) -> list[WeightedEdge]:
    """Canonicalize raw (a, b, weight) triples into undirected edges.

    Self loops are dropped, each pair is stored as (min, max), duplicates keep
    the maximum weight, and pairs referencing indices outside ``n_nodes`` are
    skipped. Output order follows first appearance of each pair.

    Args:
        edges: Raw edge triples
        n_nodes: Node count used for range checking, if known

    Returns:
        Deduplicated edge list
    """
    merged: dict[tuple[int, int], float] = {}
    skipped = 0
    for a, b, weight in edges:
        a, b = int(a), int(b)
        if a == b:
            continue
        if a < 0 or b < 0 or (n_nodes is not None and (a >= n_nodes or b >= n_nodes)):
            skipped += 1
            continue
        key = (a, b) if a < b else (b, a)
        previous = merged.get(key)
        if previous is None or weight > previous:
            merged[key] = float(weight)

    if skipped:
        logger.debug(f"Skipped {skipped} edges with out-of-range indices")

    return [WeightedEdge(source=s, target=t, weight=w) for (s, t), w in merged.items()]


def build_adjacency(
    edges: Iterable[WeightedEdge],
    n_nodes: int | None = None,
) -> dict[int, tuple[Neighbor, ...]]:
    """Build a symmetric adjacency map from undirected edges.

    Every edge is recorded on both endpoints with the same weight. Duplicate
    pairs keep the maximum weight so symmetry holds even for unclean input.
    Neighbor tuples are immutable so the map can be shared read-only.

    Args:
        edges: Edges to index
        n_nodes: If given, edges touching indices >= n_nodes are skipped

    Returns:
        Map from node index to its neighbors
    """
    canonical = canonicalize_edges(
        ((e.source, e.target, e.weight) for e in edges), n_nodes
    )

    building: dict[int, list[Neighbor]] = {}
    for edge in canonical:
        building.setdefault(edge.source, []).append(Neighbor(edge.target, edge.weight))
        building.setdefault(edge.target, []).append(Neighbor(edge.source, edge.weight))

    return {index: tuple(neighbors) for index, neighbors in building.items()}


def neighbor_indices(adjacency: Adjacency, index: int) -> list[int]:
    """Neighbor indices of ``index``, empty on a lookup miss."""
    return [n.index for n in adjacency.get(index, ())]
