"""Community detection over similarity graphs."""

from semmap.clustering.communities import (
    DEFAULT_RESOLUTIONS,
    ClusterResult,
    Community,
    CommunityDetector,
    HubCandidate,
    MultiLevelClusters,
    SimilarityEdge,
    build_similarity_graph,
    communities_from_embeddings,
    convert_pairs_to_graph,
    detect_communities,
    edges_from_indices,
    select_hub,
)

__all__ = [
    "DEFAULT_RESOLUTIONS",
    "ClusterResult",
    "Community",
    "CommunityDetector",
    "HubCandidate",
    "MultiLevelClusters",
    "SimilarityEdge",
    "build_similarity_graph",
    "communities_from_embeddings",
    "convert_pairs_to_graph",
    "detect_communities",
    "edges_from_indices",
    "select_hub",
]
