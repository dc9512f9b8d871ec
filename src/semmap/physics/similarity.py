"""Click-focus layer driven by embedding similarity instead of hop count."""

import logging
from collections.abc import Iterable, Mapping, Sequence

import numpy as np

from semmap.config import settings
from semmap.physics.forces import CollideForce, LinkForce
from semmap.physics.simulation import ForceSimulation, SimulationLayer
from semmap.utils import cosine_similarity_matrix

logger = logging.getLogger(__name__)

MIN_LINK_SIMILARITY = 0.02
SIMILARITY_ALPHA = 0.95
SIMILARITY_ALPHA_DECAY = 0.01
SIMILARITY_VELOCITY_DECAY = 0.35
SIMILARITY_COLLIDE_STRENGTH = 0.4
HOVER_REHEAT_ALPHA = 0.5
FOLLOW_REHEAT_ALPHA = 0.1


def similarity_link_distance(similarity: float) -> float:
    return 60.0 + (1.0 - similarity) * 180.0


def similarity_link_strength(similarity: float) -> float:
    return 0.25 + similarity * 0.6


def similarity_links(
    vectors: np.ndarray,
    present: np.ndarray,
) -> list[tuple[int, int, float]]:
    """Local (i, j, similarity) pairs at or above the link threshold.

    Rows without an embedding (``present`` False) get no links.
    """
    sims = cosine_similarity_matrix(vectors)
    links = []
    n = len(vectors)
    for i in range(n):
        if not present[i]:
            continue
        for j in range(i + 1, n):
            if present[j] and sims[i, j] >= MIN_LINK_SIMILARITY:
                links.append((i, j, float(sims[i, j])))
    return links


class ClickFocusSimilarityLayer(SimulationLayer):
    """Rearrange a focused node set by pairwise cosine similarity.

    Args:
        base_positions: Flat or (N, 2) base layout positions
        node_set: Active base-layout indices
        embeddings: Vector per base index (sequence or mapping); missing
            entries simply get no links
        collision_radius: Base collide radius
    """

    name = "click_focus"

    def __init__(
        self,
        base_positions: np.ndarray,
        node_set: Iterable[int],
        embeddings: Sequence[Sequence[float]] | Mapping[int, Sequence[float]],
        collision_radius: float | None = None,
    ) -> None:
        base = np.asarray(base_positions, dtype=np.float64).reshape(-1, 2)
        self.indices = sorted(i for i in set(node_set) if 0 <= i < len(base))
        self.local = {index: slot for slot, index in enumerate(self.indices)}
        super().__init__(
            ForceSimulation(
                len(self.indices),
                alpha=SIMILARITY_ALPHA,
                alpha_decay=SIMILARITY_ALPHA_DECAY,
                velocity_decay=SIMILARITY_VELOCITY_DECAY,
            )
        )
        self.simulation.load_positions(base[self.indices] if self.indices else np.zeros((0, 2)))
        self.track_base_rows(self.indices, base)

        vectors, present = self._gather(embeddings)
        links = similarity_links(vectors, present) if len(vectors) else []
        self.links = links
        self.simulation.force(
            "link",
            LinkForce(
                [(i, j) for i, j, _ in links],
                distance=[similarity_link_distance(s) for _, _, s in links],
                strength=[similarity_link_strength(s) for _, _, s in links],
            ),
        )

        self.base_radius = settings.collision_radius if collision_radius is None else collision_radius
        self.hovered: int | None = None
        self.hover_scale = 1.0
        self.collide = CollideForce(radius=self._radius, strength=SIMILARITY_COLLIDE_STRENGTH)
        self.simulation.force("collision", self.collide)

        logger.debug(f"Click-focus layer: {len(self.indices)} nodes, {len(links)} links")

    def follow_base(self, base: np.ndarray) -> None:
        """Carry the focused nodes along when the base layout moves."""
        if self.shift_with_base(base) is not None:
            self.simulation.reheat(FOLLOW_REHEAT_ALPHA)

    def _gather(self, embeddings) -> tuple[np.ndarray, np.ndarray]:
        rows: list[Sequence[float] | None] = []
        for index in self.indices:
            try:
                rows.append(embeddings[index])
            except (IndexError, KeyError):
                rows.append(None)
        dim = max((len(r) for r in rows if r is not None), default=0)
        vectors = np.zeros((len(rows), dim))
        present = np.zeros(len(rows), dtype=bool)
        for slot, row in enumerate(rows):
            if row is not None and len(row) == dim and dim:
                vectors[slot] = row
                present[slot] = True
        return vectors, present

    def _radius(self, slot: int) -> float:
        if self.hovered is not None and self.indices[slot] == self.hovered:
            return self.base_radius * self.hover_scale
        return self.base_radius

    def set_hovered(self, index: int | None, scale_factor: float = 1.0) -> None:
        """Grow the hovered node's collision radius; re-queries radii and reheats."""
        if index == self.hovered and scale_factor == self.hover_scale:
            return
        self.hovered = index
        self.hover_scale = scale_factor
        self.collide.refresh_radii()
        self.simulation.reheat(HOVER_REHEAT_ALPHA)

    def positions_by_index(self) -> dict[int, tuple[float, float]]:
        x = self.simulation.x
        return {index: (float(x[slot, 0]), float(x[slot, 1])) for index, slot in self.local.items()}
