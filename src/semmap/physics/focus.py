"""Focus lens: BFS neighborhoods and the manifold compression layer.

Selecting a node builds a lens of everything within ``max_hops`` of it. The
manifold layer then runs a small simulation over just those nodes: each is
anchored to where it was before focus (seeds more strongly), links touching
a seed are shorter and stiffer, and an optional rectangle hard-clips every
node on every tick so the lens stays on screen.
"""

import logging
from collections import deque
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field

import numpy as np

from semmap.config import settings
from semmap.models.graph import Adjacency
from semmap.physics.forces import AnchorForce, CollideForce, LinkForce, ManyBodyForce
from semmap.physics.simulation import Bounds, ForceSimulation, SimulationLayer
from semmap.utils import clamp

logger = logging.getLogger(__name__)

MANIFOLD_ALPHA = 0.9
MANIFOLD_ALPHA_DECAY = 0.08
MANIFOLD_VELOCITY_DECAY = 0.35
MANIFOLD_COLLIDE_RADIUS = 50.0
MANIFOLD_COLLIDE_STRENGTH = 0.9
FOLLOW_REHEAT_ALPHA = 0.1
PRIORITY_DISTANCE_FACTOR = 0.7
PRIORITY_LINK_STRENGTH = 0.8
LINK_STRENGTH = 0.45


@dataclass(frozen=True)
class FocusState:
    """Lens built around one or more focused nodes."""

    focus_indices: tuple[int, ...] = ()
    node_set: frozenset[int] = frozenset()
    depth_map: Mapping[int, int] = field(default_factory=dict)

    @property
    def is_empty(self) -> bool:
        return not self.node_set

    @property
    def focus_index(self) -> int | None:
        return self.focus_indices[0] if self.focus_indices else None

    def depth(self, index: int) -> int | None:
        return self.depth_map.get(index)


def compute_bfs_neighborhood(
    seeds: Iterable[int],
    adjacency: Adjacency,
    max_hops: int | None = None,
) -> FocusState:
    """Breadth-first lens around the seed nodes.

    Args:
        seeds: Focused indices; negative values are ignored
        adjacency: Symmetric neighbor map
        max_hops: Hop limit (defaults to settings, usually 2)

    Returns:
        Focus state with hop depth per reached node
    """
    max_hops = settings.focus_max_hops if max_hops is None else max(0, max_hops)
    focus = tuple(dict.fromkeys(s for s in seeds if s >= 0))
    depth: dict[int, int] = {s: 0 for s in focus}
    queue = deque(focus)

    while queue:
        current = queue.popleft()
        d = depth[current]
        if d >= max_hops:
            continue
        for neighbor in adjacency.get(current, ()):
            if neighbor.index not in depth:
                depth[neighbor.index] = d + 1
                queue.append(neighbor.index)

    return FocusState(focus_indices=focus, node_set=frozenset(depth), depth_map=depth)


def bfs_shortest_path(
    start: int,
    end: int,
    adjacency: Adjacency,
    max_depth: int | None = None,
) -> list[int] | None:
    """Unweighted shortest path from start to end, None if unreachable."""
    if start == end:
        return [start]
    parents: dict[int, int] = {start: start}
    queue = deque([(start, 0)])
    while queue:
        current, d = queue.popleft()
        if max_depth is not None and d >= max_depth:
            continue
        for neighbor in adjacency.get(current, ()):
            if neighbor.index in parents:
                continue
            parents[neighbor.index] = current
            if neighbor.index == end:
                path = [end]
                while path[-1] != start:
                    path.append(parents[path[-1]])
                return path[::-1]
            queue.append((neighbor.index, d + 1))
    return None


def compute_dual_focus_neighborhood(
    first: int,
    second: int,
    adjacency: Adjacency,
    max_hops: int | None = None,
) -> FocusState:
    """Lens around two focused nodes plus the shortest path between them.

    Path nodes get depth by distance to the nearer end of the path.
    """
    lens = compute_bfs_neighborhood([first, second], adjacency, max_hops)
    depth = dict(lens.depth_map)
    path = bfs_shortest_path(first, second, adjacency) or []
    last = len(path) - 1
    for position, index in enumerate(path):
        along = min(position, last - position)
        depth[index] = min(depth.get(index, along), along)
    return FocusState(
        focus_indices=lens.focus_indices,
        node_set=frozenset(depth),
        depth_map=depth,
    )


@dataclass(frozen=True)
class ManifoldParams:
    """Force parameters derived from the compression strength."""

    compression: float
    anchor_strength: float
    seed_anchor_strength: float
    charge: float
    link_distance: float

    @classmethod
    def from_compression(cls, compression: float) -> "ManifoldParams":
        c = clamp(compression, 0.5, 3.0)
        anchor = clamp(c / 4, 0.15, 0.55)
        return cls(
            compression=c,
            anchor_strength=anchor,
            seed_anchor_strength=clamp(anchor * 1.5, 0.3, 0.75),
            charge=-80.0 * c,
            link_distance=120.0 / c,
        )


class FocusManifoldLayer(SimulationLayer):
    """Compress the focus lens around its pre-focus positions.

    Args:
        base_positions: Flat or (N, 2) base layout positions (read only)
        focus: Lens from ``compute_bfs_neighborhood``
        adjacency: Neighbor map used for links inside the lens
        compression_strength: Higher pulls the lens tighter
        bounds: Optional hard clamp rectangle
        previous: Positions from an earlier lens, used as anchors when present
    """

    name = "focus"

    def __init__(
        self,
        base_positions: np.ndarray,
        focus: FocusState,
        adjacency: Adjacency,
        compression_strength: float | None = None,
        bounds: Bounds | None = None,
        previous: Mapping[int, tuple[float, float]] | None = None,
    ) -> None:
        base = np.asarray(base_positions, dtype=np.float64).reshape(-1, 2)
        self.indices = sorted(i for i in focus.node_set if 0 <= i < len(base))
        self.local = {index: slot for slot, index in enumerate(self.indices)}
        self.focus = focus
        self.params = ManifoldParams.from_compression(
            settings.focus_compression_strength if compression_strength is None
            else compression_strength
        )

        super().__init__(
            ForceSimulation(
                len(self.indices),
                alpha=MANIFOLD_ALPHA,
                alpha_decay=MANIFOLD_ALPHA_DECAY,
                velocity_decay=MANIFOLD_VELOCITY_DECAY,
                bounds=bounds,
            )
        )

        previous = previous or {}
        anchors = np.array(
            [previous.get(i, tuple(base[i])) for i in self.indices], dtype=np.float64
        ).reshape(-1, 2)
        self.anchors = anchors
        self.simulation.load_positions(anchors)
        self.track_base_rows(self.indices, base)

        seeds = set(focus.focus_indices)
        is_seed = np.array([i in seeds for i in self.indices], dtype=bool)
        strengths = np.where(is_seed, self.params.seed_anchor_strength, self.params.anchor_strength)

        links, distances, stiffness = [], [], []
        for index in self.indices:
            for neighbor in adjacency.get(index, ()):
                if neighbor.index <= index or neighbor.index not in self.local:
                    continue
                priority = index in seeds or neighbor.index in seeds
                links.append((self.local[index], self.local[neighbor.index]))
                distances.append(
                    self.params.link_distance * (PRIORITY_DISTANCE_FACTOR if priority else 1.0)
                )
                stiffness.append(PRIORITY_LINK_STRENGTH if priority else LINK_STRENGTH)

        self.links = links
        self.simulation.force("link", LinkForce(links, distance=distances, strength=stiffness))
        self.simulation.force("charge", ManyBodyForce(strength=self.params.charge))
        self.anchor = self.simulation.force("anchor", AnchorForce(anchors, strength=strengths))
        self.simulation.force(
            "collide",
            CollideForce(radius=MANIFOLD_COLLIDE_RADIUS, strength=MANIFOLD_COLLIDE_STRENGTH),
        )
        if bounds is not None:
            bounds.clamp(self.simulation.x)

        logger.debug(
            f"Focus manifold: {len(self.indices)} nodes, {len(links)} links, "
            f"compression {self.params.compression}"
        )

    def follow_base(self, base: np.ndarray) -> None:
        """Carry the lens and its anchors along when the base layout moves."""
        delta = self.shift_with_base(base)
        if delta is None:
            return
        self.anchors = self.anchors + delta
        self.anchor.set_targets(self.anchors)
        self.simulation.reheat(FOLLOW_REHEAT_ALPHA)

    def update_bounds(self, bounds: Bounds | None) -> None:
        """Replace the clamp rectangle; applied from the next tick on."""
        self.simulation.bounds = bounds
        if bounds is not None:
            bounds.clamp(self.simulation.x)

    def positions_by_index(self) -> dict[int, tuple[float, float]]:
        """Lens positions keyed by base-layout index."""
        x = self.simulation.x
        return {index: (float(x[slot, 0]), float(x[slot, 1])) for index, slot in self.local.items()}

    def apply_to(self, base_positions: np.ndarray) -> np.ndarray:
        """Copy of (N, 2) base positions with lens nodes replaced."""
        out = np.asarray(base_positions, dtype=np.float64).reshape(-1, 2).copy()
        if self.indices:
            out[self.indices] = self.simulation.x
        return out
