"""Typed node records for the layout engine.

Rows coming out of the data store are converted exactly once, at the
boundary, into one of the tagged records below. Everything downstream works
with these records or with dense integer indices, never raw rows.
"""

from dataclasses import dataclass, field
from typing import Any, Literal, Union

NodeType = Literal["keyword", "article", "chunk", "project"]

# External id prefixes
KEYWORD_PREFIX = "kw:"
ARTICLE_PREFIX = "art:"
CHUNK_PREFIX = "chunk:"
PROJECT_PREFIX = "proj:"


def _parse_embedding(value: Any) -> list[float] | None:
    """Parse an embedding stored as a list or a pgvector-style string."""
    if value is None:
        return None
    if isinstance(value, str):
        text = value.strip().strip("[]")
        if not text:
            return None
        return [float(part) for part in text.split(",")]
    return [float(v) for v in value]


@dataclass
class KeywordNode:
    """A keyword extracted from one or more articles.

    Keywords are the primary nodes of the semantic map.
    """

    id: str
    label: str
    embedding: list[float] | None = None
    community_id: int | None = None
    type: Literal["keyword"] = "keyword"

    def to_dict(self) -> dict:
        """Convert to dictionary."""
        return {
            "type": self.type,
            "id": self.id,
            "label": self.label,
            "embedding": self.embedding,
            "community_id": self.community_id,
        }


@dataclass
class ArticleNode:
    """A source article."""

    id: str
    label: str
    embedding: list[float] | None = None
    summary: str | None = None
    type: Literal["article"] = "article"

    def to_dict(self) -> dict:
        """Convert to dictionary."""
        return {
            "type": self.type,
            "id": self.id,
            "label": self.label,
            "embedding": self.embedding,
            "summary": self.summary,
        }


@dataclass
class ChunkNode:
    """A chunk of article content, tethered to one or more keyword parents."""

    id: str
    label: str
    embedding: list[float] | None = None
    parent_ids: list[str] = field(default_factory=list)
    content: str | None = None
    type: Literal["chunk"] = "chunk"

    def to_dict(self) -> dict:
        """Convert to dictionary."""
        return {
            "type": self.type,
            "id": self.id,
            "label": self.label,
            "embedding": self.embedding,
            "parent_ids": self.parent_ids,
            "content": self.content,
        }


@dataclass
class ProjectNode:
    """A user project. Projects are excluded from semantic highlighting."""

    id: str
    label: str
    embedding: list[float] | None = None
    type: Literal["project"] = "project"

    def to_dict(self) -> dict:
        """Convert to dictionary."""
        return {
            "type": self.type,
            "id": self.id,
            "label": self.label,
            "embedding": self.embedding,
        }


LayoutNode = Union[KeywordNode, ArticleNode, ChunkNode, ProjectNode]


def node_from_dict(data: dict) -> LayoutNode:
    """Convert a raw data-store row into a typed node record.

    Args:
        data: Row with at least ``type`` and ``id``. ``label`` falls back to
            the id with its prefix stripped.

    Returns:
        The matching tagged record

    Raises:
        ValueError: If ``type`` is missing or unknown
    """
    node_type = data.get("type")
    node_id = str(data["id"])
    label = data.get("label") or node_id.split(":", 1)[-1]
    embedding = _parse_embedding(data.get("embedding"))

    if node_type == "keyword":
        return KeywordNode(
            id=node_id,
            label=label,
            embedding=embedding,
            community_id=data.get("community_id"),
        )
    if node_type == "article":
        return ArticleNode(
            id=node_id,
            label=label,
            embedding=embedding,
            summary=data.get("summary"),
        )
    if node_type == "chunk":
        return ChunkNode(
            id=node_id,
            label=label,
            embedding=embedding,
            parent_ids=list(data.get("parent_ids") or []),
            content=data.get("content"),
        )
    if node_type == "project":
        return ProjectNode(id=node_id, label=label, embedding=embedding)
    raise ValueError(f"Unknown node type: {node_type!r}")


def is_project_id(node_id: str) -> bool:
    """Check whether an external id refers to a project node."""
    return node_id.startswith(PROJECT_PREFIX)
