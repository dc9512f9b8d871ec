"""Serializable layout snapshot.

A snapshot captures everything needed to show a finished layout again
without re-optimizing: positions, learned edges, the resolution ladder and
per-level cluster assignments. Persisting it is the caller's job.
"""

import json
import logging
from pathlib import Path

from pydantic import BaseModel, Field

from semmap.models.graph import WeightedEdge

logger = logging.getLogger(__name__)


class SnapshotEdge(BaseModel):
    """Edge entry in a snapshot."""

    source: int
    target: int
    weight: float
    rest_length: float | None = None


class ClusterLabel(BaseModel):
    """Community label for overlay rendering."""

    community_id: int
    hub: str
    size: int
    is_peripheral: bool = False


class LayoutSnapshot(BaseModel):
    """Positions, edges and cluster maps of one finished layout."""

    node_ids: list[str] = Field(default_factory=list)
    positions: list[float] = Field(
        default_factory=list,
        description="Flat [x0, y0, x1, y1, ...] array"
    )
    edges: list[SnapshotEdge] = Field(default_factory=list)
    resolutions: list[float] = Field(default_factory=list)
    clusters: dict[int, dict[str, int]] = Field(
        default_factory=dict,
        description="level -> node id -> community id"
    )
    labels: dict[int, list[ClusterLabel]] = Field(
        default_factory=dict,
        description="level -> community labels"
    )
    params: dict[str, float | int] = Field(default_factory=dict)
    cache_key: str | None = None

    @property
    def n_nodes(self) -> int:
        return len(self.positions) // 2

    def weighted_edges(self) -> list[WeightedEdge]:
        """Edges as layout-facing records."""
        return [
            WeightedEdge(e.source, e.target, e.weight, e.rest_length)
            for e in self.edges
        ]

    @classmethod
    def from_edges(cls, edges: list[WeightedEdge], **kwargs) -> "LayoutSnapshot":
        """Create a snapshot from layout-facing edges."""
        return cls(edges=[SnapshotEdge(**e.to_dict()) for e in edges], **kwargs)

    def to_json(self) -> str:
        return self.model_dump_json()

    @classmethod
    def from_json(cls, data: str) -> "LayoutSnapshot":
        return cls.model_validate_json(data)

    def write(self, path: Path) -> None:
        """Write snapshot JSON to a file."""
        path.write_text(self.to_json(), encoding="utf-8")
        logger.info(f"Wrote layout snapshot ({self.n_nodes} nodes) to {path}")

    @classmethod
    def read(cls, path: Path) -> "LayoutSnapshot":
        """Read snapshot JSON from a file."""
        return cls.model_validate(json.loads(path.read_text(encoding="utf-8")))
