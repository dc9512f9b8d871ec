"""Hover highlighting: graph neighborhoods and spatial-semantic regions."""

import logging
import math
from collections.abc import Hashable, Iterable, Mapping, Sequence
from dataclasses import dataclass, field

import numpy as np

from semmap.models.graph import Adjacency
from semmap.models.node import is_project_id
from semmap.utils import cosine_similarity

logger = logging.getLogger(__name__)

NodeId = Hashable


def neighborhood_highlight(index: int | None, adjacency: Adjacency) -> set[int]:
    """The hovered node plus its direct neighbors; empty when nothing is hovered."""
    if index is None or index < 0:
        return set()
    return {index, *(neighbor.index for neighbor in adjacency.get(index, ()))}


def build_adjacency_sets(edges: Iterable[tuple[NodeId, NodeId]]) -> dict[NodeId, set[NodeId]]:
    """Undirected id adjacency from (source, target) pairs."""
    adjacency: dict[NodeId, set[NodeId]] = {}
    for source, target in edges:
        adjacency.setdefault(source, set()).add(target)
        adjacency.setdefault(target, set()).add(source)
    return adjacency


def find_nodes_in_radius(
    positions: Mapping[NodeId, tuple[float, float]],
    center: tuple[float, float],
    radius: float,
) -> list[NodeId]:
    cx, cy = center
    return [
        node_id for node_id, (x, y) in positions.items()
        if math.hypot(x - cx, y - cy) <= radius
    ]


def compute_centroid(embeddings: Sequence[Sequence[float]]) -> np.ndarray | None:
    """Unit-length mean of the embeddings, None for an empty input."""
    if not embeddings:
        return None
    centroid = np.mean(np.asarray(embeddings, dtype=np.float64), axis=0)
    norm = np.linalg.norm(centroid)
    return centroid / norm if norm > 0 else centroid


def extend_to_neighbors(
    ids: set[NodeId],
    candidates: Iterable[NodeId],
    adjacency: Mapping[NodeId, Iterable[NodeId]],
) -> set[NodeId]:
    """Add each candidate adjacent to an already included id."""
    extended = set(ids)
    for candidate in candidates:
        if candidate in extended:
            continue
        if any(neighbor in extended for neighbor in adjacency.get(candidate, ())):
            extended.add(candidate)
    return extended


@dataclass
class HighlightResult:
    highlighted: set[NodeId] = field(default_factory=set)
    spatial: set[NodeId] = field(default_factory=set)
    centroid: np.ndarray | None = None
    similarity_pass_count: int = 0


def spatial_semantic_highlight(
    positions: Mapping[NodeId, tuple[float, float]],
    center: tuple[float, float],
    radius: float,
    embeddings: Mapping[NodeId, Sequence[float]],
    adjacency: Mapping[NodeId, Iterable[NodeId]],
    similarity_threshold: float,
) -> HighlightResult:
    """Highlight the nodes semantically close to the region under the cursor.

    1. Nodes within ``radius`` of ``center`` form the spatial set.
    2. Their embeddings are averaged into a normalized centroid.
    3. Every node with cosine similarity to the centroid at or above the
       threshold is highlighted.
    4. Spatial nodes adjacent to a highlighted node are added back.

    Project nodes are never highlighted. If nothing passes, the spatial set
    is returned as is.

    Args:
        positions: World position per node id
        center: Cursor position in world units
        radius: Search radius in world units
        embeddings: Vector per node id; nodes without one are skipped
        adjacency: Neighbor ids per node id
        similarity_threshold: Minimum cosine similarity to the centroid

    Returns:
        Highlighted ids, the spatial set and the centroid
    """
    candidates = {node_id: p for node_id, p in positions.items() if not is_project_id(str(node_id))}
    spatial = set(find_nodes_in_radius(candidates, center, radius))
    if not spatial:
        return HighlightResult()

    centroid = compute_centroid([embeddings[i] for i in spatial if i in embeddings])
    if centroid is None:
        return HighlightResult(highlighted=set(spatial), spatial=spatial)

    passed = {
        node_id for node_id in candidates
        if node_id in embeddings
        and cosine_similarity(embeddings[node_id], centroid) >= similarity_threshold
    }
    highlighted = extend_to_neighbors(passed, spatial, adjacency)
    if not highlighted:
        highlighted = set(spatial)

    logger.debug(
        f"Spatial highlight: {len(spatial)} in radius, {len(passed)} similar, "
        f"{len(highlighted)} highlighted"
    )
    return HighlightResult(
        highlighted=highlighted,
        spatial=spatial,
        centroid=centroid,
        similarity_pass_count=len(passed),
    )
