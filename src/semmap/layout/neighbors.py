"""Fuzzy k-nearest-neighbor graph construction.

Each node connects to its k nearest neighbors with a smoothed membership
weight ``exp(-(d - rho) / sigma)``, where ``rho`` is the distance to the
nearest neighbor and ``sigma`` is chosen per node so that the memberships sum
to ``log2(k)``. This keeps each node's total outgoing weight roughly constant
regardless of local density. The directed memberships are then merged with a
probabilistic OR: ``w = a + b - a * b``.
"""

import logging
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field

import numpy as np

from semmap.config import settings
from semmap.models.graph import WeightedEdge, canonicalize_edges
from semmap.utils import cosine_similarity_matrix

logger = logging.getLogger(__name__)

# Binary-search tolerance on the membership sum
SIGMA_TOLERANCE = 1e-5
MIN_SIGMA = 1e-3


@dataclass
class FuzzyGraph:
    """Sparse symmetric fuzzy membership graph.

    Only pairs with ``i < j`` are stored; ``weight(i, j)`` answers both ways.
    """

    n_nodes: int
    weights: dict[tuple[int, int], float] = field(default_factory=dict)

    @property
    def is_empty(self) -> bool:
        return not self.weights

    @property
    def max_weight(self) -> float:
        return max(self.weights.values()) if self.weights else 0.0

    def weight(self, i: int, j: int) -> float:
        """Membership weight between two nodes, 0.0 when unconnected."""
        key = (i, j) if i < j else (j, i)
        return self.weights.get(key, 0.0)

    def edges(self, cutoff: float = 0.0) -> list[WeightedEdge]:
        """Edges with weight >= cutoff, sorted by (source, target)."""
        return [
            WeightedEdge(source=i, target=j, weight=w)
            for (i, j), w in sorted(self.weights.items())
            if w >= cutoff
        ]

    def arrays(self) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
        """Edge list as (heads, tails, weights) numpy arrays."""
        if not self.weights:
            empty = np.zeros(0, dtype=np.int64)
            return empty, empty, np.zeros(0)
        keys = sorted(self.weights)
        heads = np.array([k[0] for k in keys], dtype=np.int64)
        tails = np.array([k[1] for k in keys], dtype=np.int64)
        values = np.array([self.weights[k] for k in keys], dtype=np.float64)
        return heads, tails, values


def effective_k(n_neighbors: int, n_points: int) -> int:
    """Clamp the requested neighbor count into [1, N-1]."""
    if n_points < 2:
        return 0
    return max(1, min(int(n_neighbors), n_points - 1))


def knn_search(
    embeddings: np.ndarray,
    k: int,
) -> tuple[np.ndarray, np.ndarray]:
    """Brute-force k nearest neighbors by euclidean distance.

    Ties are broken by lower index (stable sort), so the neighbor set is
    deterministic for a fixed input.

    Args:
        embeddings: (N, D) array
        k: Neighbors per point, already clamped to N-1

    Returns:
        (indices, distances), both shaped (N, k)
    """
    x = np.asarray(embeddings, dtype=np.float64)
    sq = np.sum(x ** 2, axis=1)
    dists = np.sqrt(np.maximum(sq[:, None] + sq[None, :] - 2 * x @ x.T, 0.0))
    np.fill_diagonal(dists, np.inf)

    indices = np.argsort(dists, axis=1, kind="stable")[:, :k]
    distances = np.take_along_axis(dists, indices, axis=1)
    return indices, distances


def smooth_knn_sigmas(
    distances: np.ndarray,
    k: int,
    iterations: int | None = None,
) -> tuple[np.ndarray, np.ndarray]:
    """Find per-node rho and sigma for the smoothed membership function.

    Args:
        distances: (N, k) ascending neighbor distances; ``inf`` marks padding
        k: Neighbor count the target sum is derived from
        iterations: Binary search iterations

    Returns:
        (rho, sigma) arrays of length N
    """
    iterations = iterations or settings.umap_sigma_iterations
    target = np.log2(k) if k > 1 else 1.0
    n = distances.shape[0]
    rho = np.zeros(n)
    sigma = np.ones(n)

    for i in range(n):
        row = distances[i][np.isfinite(distances[i])]
        if len(row) == 0:
            continue
        positive = row[row > 0]
        rho[i] = positive[0] if len(positive) else 0.0

        lo, hi, mid = 0.0, np.inf, 1.0
        for _ in range(iterations):
            total = np.sum(np.exp(-np.maximum(row - rho[i], 0.0) / mid))
            if abs(total - target) < SIGMA_TOLERANCE:
                break
            if total > target:
                hi = mid
                mid = (lo + hi) / 2
            else:
                lo = mid
                mid = mid * 2 if hi == np.inf else (lo + hi) / 2
        sigma[i] = max(mid, MIN_SIGMA)

    return rho, sigma


def _membership_graph(
    indices: np.ndarray,
    distances: np.ndarray,
    n_nodes: int,
    k: int,
) -> FuzzyGraph:
    """Turn kNN results into a symmetric fuzzy graph."""
    rho, sigma = smooth_knn_sigmas(distances, k)

    directed: dict[tuple[int, int], float] = {}
    for i in range(indices.shape[0]):
        for j, d in zip(indices[i], distances[i]):
            j = int(j)
            if j == i or j < 0 or not np.isfinite(d):
                continue
            directed[(i, j)] = float(np.exp(-max(d - rho[i], 0.0) / sigma[i]))

    weights: dict[tuple[int, int], float] = {}
    for (i, j), a in directed.items():
        key = (i, j) if i < j else (j, i)
        if key in weights:
            continue
        b = directed.get((j, i), 0.0)
        weights[key] = a + b - a * b

    return FuzzyGraph(n_nodes=n_nodes, weights=weights)


def build_fuzzy_graph(
    embeddings: Sequence[Sequence[float]] | np.ndarray,
    n_neighbors: int | None = None,
) -> FuzzyGraph:
    """Build the fuzzy neighbor graph from embedding vectors.

    Args:
        embeddings: N vectors of equal dimension
        n_neighbors: k, clamped to N-1 (defaults to settings)

    Returns:
        Symmetric fuzzy graph; empty when fewer than 2 points are given

    Raises:
        ValueError: If vectors have inconsistent dimensions
    """
    n_neighbors = n_neighbors or settings.umap_n_neighbors
    n_points = len(embeddings)
    if n_points < 2:
        return FuzzyGraph(n_nodes=n_points)

    try:
        x = np.asarray(embeddings, dtype=np.float64)
    except ValueError as e:
        raise ValueError(f"Embeddings must share one dimension: {e}") from e
    if x.ndim != 2:
        raise ValueError(f"Embeddings must be a 2D array, got shape {x.shape}")

    k = effective_k(n_neighbors, n_points)
    indices, distances = knn_search(x, k)
    graph = _membership_graph(indices, distances, n_points, k)

    logger.debug(f"Built fuzzy graph: {n_points} nodes, k={k}, {len(graph.weights)} edges")
    return graph


def build_fuzzy_graph_from_distances(
    edges: Iterable[dict],
    n_nodes: int,
    n_neighbors: int | None = None,
) -> FuzzyGraph:
    """Build the fuzzy graph from a precomputed ``{source, target, distance}`` list.

    Distances are treated as undirected. Each node keeps its k closest
    candidates (ties by index); entries outside [0, n_nodes) are skipped.
    """
    n_neighbors = n_neighbors or settings.umap_n_neighbors
    if n_nodes < 2:
        return FuzzyGraph(n_nodes=max(n_nodes, 0))

    candidates: dict[int, dict[int, float]] = {}
    for edge in edges:
        s, t = int(edge["source"]), int(edge["target"])
        if s == t or not (0 <= s < n_nodes and 0 <= t < n_nodes):
            continue
        d = float(edge["distance"])
        for a, b in ((s, t), (t, s)):
            row = candidates.setdefault(a, {})
            if b not in row or d < row[b]:
                row[b] = d

    k = effective_k(n_neighbors, n_nodes)
    indices = np.full((n_nodes, k), -1, dtype=np.int64)
    distances = np.full((n_nodes, k), np.inf)
    for i, row in candidates.items():
        ranked = sorted(row.items(), key=lambda item: (item[1], item[0]))[:k]
        for slot, (j, d) in enumerate(ranked):
            indices[i, slot] = j
            distances[i, slot] = d

    return _membership_graph(indices, distances, n_nodes, k)


def epoch_cutoff(graph: FuzzyGraph, n_epochs: int) -> float:
    """Weight below which an edge would never be sampled in n_epochs."""
    return graph.max_weight / max(n_epochs, 1)


def measure_rest_lengths(
    edges: Iterable[WeightedEdge],
    positions: np.ndarray,
) -> list[WeightedEdge]:
    """Copy edges with ``rest_length`` measured from (N, 2) positions.

    Edges whose endpoints fall outside ``positions`` get ``rest_length=None``.
    """
    n = len(positions)
    result = []
    for edge in edges:
        if edge.source >= n or edge.target >= n:
            rest = None
        else:
            dx, dy = positions[edge.source] - positions[edge.target]
            rest = float(np.hypot(dx, dy))
        result.append(WeightedEdge(edge.source, edge.target, edge.weight, rest))
    return result


def similarity_edges(
    embeddings: Sequence[Sequence[float]] | np.ndarray,
    threshold: float | None = None,
) -> list[WeightedEdge]:
    """All pairs whose cosine similarity is at or above threshold.

    Args:
        embeddings: N vectors
        threshold: Minimum similarity (defaults to settings)

    Returns:
        Canonical edges weighted by similarity
    """
    threshold = settings.community_similarity_threshold if threshold is None else threshold
    if len(embeddings) < 2:
        return []
    sims = cosine_similarity_matrix(np.asarray(embeddings, dtype=np.float64))
    rows, cols = np.nonzero(np.triu(sims >= threshold, k=1))
    return canonicalize_edges(
        (int(i), int(j), float(sims[i, j])) for i, j in zip(rows, cols)
    )
