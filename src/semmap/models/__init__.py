"""Semmap data models."""

from semmap.models.graph import (
    Adjacency,
    GraphNode,
    Neighbor,
    WeightedEdge,
    build_adjacency,
    canonicalize_edges,
    neighbor_indices,
)
from semmap.models.node import (
    ArticleNode,
    ChunkNode,
    KeywordNode,
    LayoutNode,
    NodeType,
    ProjectNode,
    is_project_id,
    node_from_dict,
)

__all__ = [
    "Adjacency",
    "GraphNode",
    "Neighbor",
    "WeightedEdge",
    "build_adjacency",
    "canonicalize_edges",
    "neighbor_indices",
    "ArticleNode",
    "ChunkNode",
    "KeywordNode",
    "LayoutNode",
    "NodeType",
    "ProjectNode",
    "is_project_id",
    "node_from_dict",
]
