"""Louvain community detection over keyword similarity graphs.

Each call is one independent batch run on a snapshot of the similarity
graph. Multi-level detection runs the same procedure once per resolution;
community ids carry no meaning across levels.
"""

import logging
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from typing import Protocol

import networkx as nx
import numpy as np

from semmap.config import settings
from semmap.layout.neighbors import similarity_edges
from semmap.layout.snapshot import ClusterLabel
from semmap.models.graph import WeightedEdge
from semmap.models.node import KEYWORD_PREFIX, KeywordNode
from semmap.utils import clamp_positive

logger = logging.getLogger(__name__)

# Resolution per semantic-zoom level, level 0 coarsest
DEFAULT_RESOLUTIONS = [0.1, 0.5, 1.5, 6.0, 10.0, 15.0, 25.0, 30.0]
MAX_LEVELS = len(DEFAULT_RESOLUTIONS)

# Communities whose mean betweenness is at or below this percentile are peripheral
PERIPHERY_PERCENTILE = 0.25

# Above this node count, betweenness is estimated from a sample of sources
BETWEENNESS_SAMPLE_SIZE = 500


class LabeledNode(Protocol):
    id: str
    label: str


@dataclass
class SimilarityEdge:
    """Undirected similarity between two node ids."""

    source: str
    target: str
    similarity: float


@dataclass
class HubCandidate:
    """Member summary used to pick a community hub."""

    id: str
    label: str
    degree: int


@dataclass
class Community:
    """One detected community."""

    id: int
    members: list[str] = field(default_factory=list)
    hub_id: str = ""
    hub: str = ""
    is_peripheral: bool = False

    def to_label(self) -> ClusterLabel:
        return ClusterLabel(
            community_id=self.id,
            hub=self.hub,
            size=len(self.members),
            is_peripheral=self.is_peripheral,
        )


@dataclass
class ClusterResult:
    """Node -> community map plus per-community metadata."""

    node_to_community: dict[str, int] = field(default_factory=dict)
    communities: dict[int, Community] = field(default_factory=dict)
    resolution: float = 1.0

    @property
    def is_empty(self) -> bool:
        return not self.communities

    def community_of(self, node_id: str) -> int | None:
        """Community id for a node; None for isolated or unknown nodes."""
        return self.node_to_community.get(node_id)

    def labels(self) -> list[ClusterLabel]:
        return [c.to_label() for c in self.communities.values()]


@dataclass
class MultiLevelClusters:
    """Independent clusterings at a ladder of resolutions."""

    resolutions: list[float] = field(default_factory=list)
    levels: list[ClusterResult] = field(default_factory=list)

    def community_of(self, level: int, node_id: str) -> int | None:
        if not 0 <= level < len(self.levels):
            return None
        return self.levels[level].community_of(node_id)

    def as_cluster_maps(self) -> dict[int, dict[str, int]]:
        """level -> node id -> community id, for snapshots."""
        return {i: dict(r.node_to_community) for i, r in enumerate(self.levels)}

    def as_label_maps(self) -> dict[int, list[ClusterLabel]]:
        return {i: r.labels() for i, r in enumerate(self.levels)}


def select_hub(members: Sequence[HubCandidate]) -> HubCandidate | None:
    """Pick the hub: highest degree, then shortest label, then first seen."""
    if not members:
        return None
    # sorted() is stable, so equal keys keep input order
    return sorted(members, key=lambda m: (-m.degree, len(m.label)))[0]


def build_similarity_graph(
    nodes: Iterable[LabeledNode],
    edges: Iterable[SimilarityEdge],
    threshold: float = 0.0,
) -> nx.Graph:
    """Build the weighted undirected graph used for detection.

    Only endpoints of kept edges become graph nodes, so isolated nodes are
    excluded. Self loops, unknown endpoints, non-finite similarities and
    edges below threshold are dropped; duplicate pairs keep the max similarity.
    """
    known = {node.id for node in nodes}
    G = nx.Graph()
    skipped = 0
    for edge in edges:
        if edge.source == edge.target or edge.similarity < threshold:
            continue
        if not np.isfinite(edge.similarity):
            skipped += 1
            continue
        if edge.source not in known or edge.target not in known:
            skipped += 1
            continue
        if G.has_edge(edge.source, edge.target):
            current = G[edge.source][edge.target]["weight"]
            if edge.similarity <= current:
                continue
        G.add_edge(edge.source, edge.target, weight=float(edge.similarity))
    if skipped:
        logger.debug(f"Skipped {skipped} edges with unknown endpoints or non-finite similarity")
    return G


def _peripheral_flags(
    G: nx.Graph,
    partition: list[list[str]],
    seed: int,
) -> list[bool]:
    """Flag communities whose mean betweenness is in the bottom quartile."""
    n = G.number_of_nodes()
    if n > BETWEENNESS_SAMPLE_SIZE:
        centrality = nx.betweenness_centrality(G, k=BETWEENNESS_SAMPLE_SIZE, seed=seed)
    else:
        centrality = nx.betweenness_centrality(G)

    averages = [float(np.mean([centrality.get(m, 0.0) for m in members])) for members in partition]
    ranked = sorted(averages)
    threshold = ranked[int(len(ranked) * PERIPHERY_PERCENTILE)]
    return [avg <= threshold for avg in averages]


class CommunityDetector:
    """Louvain modularity clustering with hub selection.

    Args:
        resolution: Default resolution (higher = more, smaller communities)
        threshold: Minimum similarity for an edge to count
        seed: Random seed passed to networkx
        detect_periphery: Compute betweenness-based periphery flags
    """

    def __init__(
        self,
        resolution: float | None = None,
        threshold: float | None = None,
        seed: int | None = None,
        detect_periphery: bool = True,
    ) -> None:
        self.resolution = settings.community_resolution if resolution is None else resolution
        self.threshold = settings.community_similarity_threshold if threshold is None else threshold
        self.seed = settings.community_seed if seed is None else seed
        self.detect_periphery = detect_periphery

    def detect(
        self,
        nodes: Sequence[LabeledNode],
        edges: Iterable[SimilarityEdge],
        resolution: float | None = None,
    ) -> ClusterResult:
        """Partition the similarity graph at one resolution.

        Args:
            nodes: Nodes with ``id`` and ``label``
            edges: Similarity edges between node ids
            resolution: Overrides the detector default; values <= 0 are clamped

        Returns:
            Cluster result; empty when no edge survives the threshold
        """
        resolution = self.resolution if resolution is None else resolution
        resolution = clamp_positive(resolution, settings.community_min_resolution, "resolution")

        G = build_similarity_graph(nodes, edges, self.threshold)
        return self._detect_graph(G, nodes, resolution)

    def detect_levels(
        self,
        nodes: Sequence[LabeledNode],
        edges: Iterable[SimilarityEdge],
        resolutions: Sequence[float] | None = None,
    ) -> MultiLevelClusters:
        """Run independent detections, one per resolution level."""
        resolutions = list(settings.community_resolutions if resolutions is None else resolutions)
        if len(resolutions) > MAX_LEVELS:
            logger.warning(
                f"{len(resolutions)} resolutions requested, keeping the first {MAX_LEVELS}"
            )
            resolutions = resolutions[:MAX_LEVELS]
        G = build_similarity_graph(nodes, edges, self.threshold)
        levels = []
        for level, resolution in enumerate(resolutions):
            clamped = clamp_positive(resolution, settings.community_min_resolution, "resolution")
            result = self._detect_graph(G, nodes, clamped)
            logger.info(
                f"Level {level} (resolution {clamped}): {len(result.communities)} communities"
            )
            levels.append(result)
        return MultiLevelClusters(resolutions=resolutions, levels=levels)

    def _detect_graph(
        self,
        G: nx.Graph,
        nodes: Sequence[LabeledNode],
        resolution: float,
    ) -> ClusterResult:
        if G.number_of_edges() == 0:
            return ClusterResult(resolution=resolution)

        order = {node.id: i for i, node in enumerate(nodes)}
        labels = {node.id: node.label for node in nodes}

        raw = nx.community.louvain_communities(
            G, weight="weight", resolution=resolution, seed=self.seed
        )
        # Stable ids: larger communities first, then by first-seen member
        partition = [sorted(c, key=lambda nid: order[nid]) for c in raw]
        partition.sort(key=lambda members: (-len(members), order[members[0]]))

        peripheral = (
            _peripheral_flags(G, partition, self.seed)
            if self.detect_periphery else [False] * len(partition)
        )

        result = ClusterResult(resolution=resolution)
        for community_id, members in enumerate(partition):
            hub = select_hub(
                [HubCandidate(id=m, label=labels[m], degree=G.degree(m)) for m in members]
            )
            for m in members:
                result.node_to_community[m] = community_id
            result.communities[community_id] = Community(
                id=community_id,
                members=members,
                hub_id=hub.id,
                hub=hub.label,
                is_peripheral=peripheral[community_id],
            )

        logger.debug(
            f"Louvain at resolution {resolution}: {len(partition)} communities, "
            f"{len(result.node_to_community)}/{len(nodes)} nodes assigned"
        )
        return result


def detect_communities(
    nodes: Sequence[LabeledNode],
    edges: Iterable[SimilarityEdge],
    resolution: float | None = None,
    threshold: float | None = None,
) -> ClusterResult:
    """Convenience function for a single detection run."""
    detector = CommunityDetector(resolution=resolution, threshold=threshold)
    return detector.detect(nodes, edges)


def convert_pairs_to_graph(pairs: Iterable[dict]) -> tuple[list[KeywordNode], list[SimilarityEdge]]:
    """Convert keyword similarity rows into nodes and deduplicated edges.

    Rows carry ``keyword_text``, ``similar_keyword_text`` and ``similarity``.
    Node ids get the ``kw:`` prefix; duplicate pairs keep the max similarity.
    """
    seen: dict[str, None] = {}
    best: dict[tuple[str, str], float] = {}

    for row in pairs:
        kw1 = row["keyword_text"]
        kw2 = row["similar_keyword_text"]
        similarity = float(row["similarity"])
        seen.setdefault(kw1)
        seen.setdefault(kw2)
        if kw1 == kw2:
            continue
        key = (kw1, kw2) if kw1 < kw2 else (kw2, kw1)
        if key not in best or similarity > best[key]:
            best[key] = similarity

    nodes = [KeywordNode(id=f"{KEYWORD_PREFIX}{kw}", label=kw) for kw in seen]
    edges = [
        SimilarityEdge(source=f"{KEYWORD_PREFIX}{a}", target=f"{KEYWORD_PREFIX}{b}", similarity=s)
        for (a, b), s in best.items()
    ]
    return nodes, edges


def edges_from_indices(
    node_ids: Sequence[str],
    edges: Iterable[WeightedEdge],
) -> list[SimilarityEdge]:
    """Map index-based edges onto node ids, skipping out-of-range indices."""
    n = len(node_ids)
    return [
        SimilarityEdge(node_ids[e.source], node_ids[e.target], e.weight)
        for e in edges
        if 0 <= e.source < n and 0 <= e.target < n
    ]


def communities_from_embeddings(
    nodes: Sequence[LabeledNode],
    embeddings: Sequence[Sequence[float]] | np.ndarray,
    threshold: float | None = None,
    resolution: float | None = None,
) -> ClusterResult:
    """Detect communities from pairwise cosine similarity of embeddings.

    ``nodes[i]`` owns ``embeddings[i]``; pairs below threshold get no edge.
    """
    threshold = settings.community_similarity_threshold if threshold is None else threshold
    edges = edges_from_indices([n.id for n in nodes], similarity_edges(embeddings, threshold))
    detector = CommunityDetector(resolution=resolution, threshold=threshold)
    return detector.detect(nodes, edges)
