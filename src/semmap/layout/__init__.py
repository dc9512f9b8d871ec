"""Neighbor graph construction and the steppable layout optimizer."""

from semmap.layout.cache import LayoutCache, embeddings_key
from semmap.layout.events import EventBus, LayoutEvent, LayoutEventKind, LayoutObserver
from semmap.layout.neighbors import (
    FuzzyGraph,
    build_fuzzy_graph,
    build_fuzzy_graph_from_distances,
    epoch_cutoff,
    knn_search,
    measure_rest_lengths,
    similarity_edges,
)
from semmap.layout.optimizer import (
    LayoutResult,
    OptimizerConfig,
    OptimizerState,
    UmapOptimizer,
    find_ab_params,
    front_loaded_rate,
)
from semmap.layout.snapshot import ClusterLabel, LayoutSnapshot, SnapshotEdge

__all__ = [
    "LayoutCache",
    "embeddings_key",
    "EventBus",
    "LayoutEvent",
    "LayoutEventKind",
    "LayoutObserver",
    "FuzzyGraph",
    "build_fuzzy_graph",
    "build_fuzzy_graph_from_distances",
    "epoch_cutoff",
    "knn_search",
    "measure_rest_lengths",
    "similarity_edges",
    "LayoutResult",
    "OptimizerConfig",
    "OptimizerState",
    "UmapOptimizer",
    "find_ab_params",
    "front_loaded_rate",
    "ClusterLabel",
    "LayoutSnapshot",
    "SnapshotEdge",
]
