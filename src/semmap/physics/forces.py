"""Forces for ``ForceSimulation``: link, many-body, anchor, collide, boundary."""

import logging
from collections import defaultdict
from collections.abc import Callable, Sequence

import numpy as np

from semmap.physics.simulation import Bounds, Force, ForceSimulation, require_simulation

logger = logging.getLogger(__name__)

PerLink = float | Sequence[float] | np.ndarray
PerNode = float | Sequence[float] | np.ndarray | Callable[[int], float]

JIGGLE = 1e-6

# Collide switches from all pairs to grid buckets at this node count
GRID_MIN_NODES = 1000


def _per_node(value: PerNode, n: int) -> np.ndarray:
    """Resolve a scalar, array or index->value callable into an (n,) array."""
    if callable(value):
        return np.array([float(value(i)) for i in range(n)], dtype=np.float64)
    arr = np.asarray(value, dtype=np.float64)
    if arr.ndim == 0:
        return np.full(n, float(arr))
    out = np.zeros(n)
    out[: min(n, len(arr))] = arr[:n]
    return out


class LinkForce(Force):
    """Spring along each link toward a rest distance.

    Args:
        links: (source, target) index pairs; out-of-range pairs are skipped
        distance: Rest length, scalar or one per link
        strength: Stiffness, scalar or one per link. Defaults to
            ``1 / min(degree(source), degree(target))``
        iterations: Relaxation passes per tick
    """

    def __init__(
        self,
        links: Sequence[tuple[int, int]],
        distance: PerLink = 30.0,
        strength: PerLink | None = None,
        iterations: int = 1,
    ) -> None:
        super().__init__()
        self.links = list(links)
        self.distance = distance
        self.strength = strength
        self.iterations = max(1, iterations)

    def initialize(self, sim: ForceSimulation) -> None:
        super().initialize(sim)
        n = sim.n_nodes
        keep = [
            i for i, (s, t) in enumerate(self.links)
            if 0 <= s < n and 0 <= t < n and s != t
        ]
        if len(keep) < len(self.links):
            logger.debug(f"LinkForce skipped {len(self.links) - len(keep)} invalid links")

        self.source = np.array([self.links[i][0] for i in keep], dtype=np.int64)
        self.target = np.array([self.links[i][1] for i in keep], dtype=np.int64)

        def pick(value: PerLink, default: np.ndarray) -> np.ndarray:
            arr = np.asarray(value, dtype=np.float64)
            if arr.ndim == 0:
                return np.full(len(keep), float(arr))
            return arr[keep] if len(arr) == len(self.links) else default

        count = np.bincount(np.concatenate([self.source, self.target]), minlength=n).astype(float)
        s_count = count[self.source]
        t_count = count[self.target]
        total = np.maximum(s_count + t_count, 1.0)
        self.bias = s_count / total

        default_strength = 1.0 / np.maximum(np.minimum(s_count, t_count), 1.0)
        self.strengths = (
            default_strength if self.strength is None
            else pick(self.strength, default_strength)
        )
        self.distances = pick(self.distance, np.full(len(keep), 30.0))

    def apply(self, alpha: float) -> None:
        sim = require_simulation(self)
        if len(self.source) == 0:
            return
        x, v = sim.x, sim.velocities
        for _ in range(self.iterations):
            delta = (x[self.target] + v[self.target]) - (x[self.source] + v[self.source])
            length = np.maximum(np.hypot(delta[:, 0], delta[:, 1]), JIGGLE)
            k = (length - self.distances) / length * alpha * self.strengths
            delta *= k[:, None]
            np.add.at(v, self.target, -delta * self.bias[:, None])
            np.add.at(v, self.source, delta * (1.0 - self.bias)[:, None])


class ManyBodyForce(Force):
    """Pairwise charge: negative strength repels, positive attracts.

    Exact O(N^2) evaluation; layers using it work on small active sets.
    """

    def __init__(
        self,
        strength: PerNode = -30.0,
        distance_min: float = 1.0,
        distance_max: float = np.inf,
    ) -> None:
        super().__init__()
        self.strength = strength
        self.distance_min = max(distance_min, JIGGLE)
        self.distance_max = distance_max

    def initialize(self, sim: ForceSimulation) -> None:
        super().initialize(sim)
        self.strengths = _per_node(self.strength, sim.n_nodes)

    def apply(self, alpha: float) -> None:
        sim = require_simulation(self)
        n = sim.n_nodes
        if n < 2:
            return
        x = sim.x
        delta = x[None, :, :] - x[:, None, :]
        dist_sq = np.sum(delta ** 2, axis=2)
        active = dist_sq < self.distance_max ** 2
        np.fill_diagonal(active, False)
        dist_sq = np.maximum(dist_sq, self.distance_min ** 2)
        weight = np.where(active, self.strengths[None, :] * alpha / dist_sq, 0.0)
        sim.velocities += np.sum(delta * weight[:, :, None], axis=1)


class AnchorForce(Force):
    """Pull each node toward a fixed target point.

    Targets with NaN coordinates are ignored.
    """

    def __init__(self, targets: np.ndarray, strength: PerNode = 0.1) -> None:
        super().__init__()
        self.targets = np.asarray(targets, dtype=np.float64).reshape(-1, 2)
        self.strength = strength

    def initialize(self, sim: ForceSimulation) -> None:
        super().initialize(sim)
        self._load_targets(sim.n_nodes)
        self.strengths = _per_node(self.strength, sim.n_nodes)

    def _load_targets(self, n: int) -> None:
        targets = np.full((n, 2), np.nan)
        count = min(n, len(self.targets))
        targets[:count] = self.targets[:count]
        self._targets = targets
        self._active = ~np.isnan(targets[:, 0])

    def set_targets(self, targets: np.ndarray) -> None:
        """Move the anchor points; strengths are kept."""
        self.targets = np.asarray(targets, dtype=np.float64).reshape(-1, 2)
        self._load_targets(require_simulation(self).n_nodes)

    def apply(self, alpha: float) -> None:
        sim = require_simulation(self)
        idx = self._active
        if not idx.any():
            return
        pull = (self._targets[idx] - sim.x[idx]) * (self.strengths[idx] * alpha)[:, None]
        sim.velocities[idx] += pull


class CollideForce(Force):
    """Keep nodes at least ``radius(i) + radius(j)`` apart.

    The radius function is evaluated again on every ``initialize`` and
    ``refresh_radii`` call, so per-node radii can change (e.g. on hover)
    without rebuilding the force.

    Small arenas test every pair. From ``GRID_MIN_NODES`` nodes on, candidate
    pairs come from a uniform grid with cells of twice the largest radius, so
    only nodes in the same or adjacent cells are compared.
    """

    def __init__(
        self,
        radius: PerNode = 10.0,
        strength: float = 0.7,
        iterations: int = 1,
    ) -> None:
        super().__init__()
        self.radius = radius
        self.strength = strength
        self.iterations = max(1, iterations)
        self.radii = np.zeros(0)
        self._rng = np.random.default_rng(0)

    def initialize(self, sim: ForceSimulation) -> None:
        super().initialize(sim)
        n = sim.n_nodes
        self._pairs = np.triu_indices(n, k=1) if n < GRID_MIN_NODES else None
        self.refresh_radii()

    def set_radius(self, radius: PerNode) -> None:
        self.radius = radius
        self.refresh_radii()

    def refresh_radii(self) -> None:
        """Re-query the radius function for every node."""
        sim = require_simulation(self)
        self.radii = np.maximum(_per_node(self.radius, sim.n_nodes), 0.0)

    def candidate_pairs(self, p: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
        """Index pairs that may overlap at positions ``p``."""
        if self._pairs is not None:
            return self._pairs
        return grid_pairs(p, 2.0 * float(self.radii.max()))

    def apply(self, alpha: float) -> None:
        sim = require_simulation(self)
        if sim.n_nodes < 2 or not self.radii.any():
            return
        x, v = sim.x, sim.velocities
        for _ in range(self.iterations):
            p = x + v
            i, j = self.candidate_pairs(p)
            if len(i) == 0:
                return
            ri, rj = self.radii[i], self.radii[j]
            reach = ri + rj
            delta = p[i] - p[j]
            dist_sq = np.sum(delta ** 2, axis=1)
            hit = dist_sq < reach ** 2
            if not hit.any():
                return
            d = delta[hit]
            dsq = dist_sq[hit]
            coincident = dsq == 0
            if coincident.any():
                d[coincident] = self._rng.uniform(-JIGGLE, JIGGLE, size=(int(coincident.sum()), 2))
                dsq[coincident] = np.sum(d[coincident] ** 2, axis=1)
            length = np.sqrt(dsq)
            r = reach[hit]
            k = (r - length) / length * self.strength
            push = d * k[:, None]
            ri2, rj2 = ri[hit] ** 2, rj[hit] ** 2
            share = rj2 / np.maximum(ri2 + rj2, JIGGLE)
            np.add.at(v, i[hit], push * share[:, None])
            np.add.at(v, j[hit], -push * (1.0 - share)[:, None])


def grid_pairs(positions: np.ndarray, cell_size: float) -> tuple[np.ndarray, np.ndarray]:
    """Pairs of nodes sharing a grid cell or sitting in neighboring cells.

    Every pair closer than ``cell_size`` is included; farther pairs may be.
    """
    positions = np.asarray(positions, dtype=np.float64).reshape(-1, 2)
    if len(positions) < 2 or not cell_size > 0:
        return np.zeros(0, dtype=np.int64), np.zeros(0, dtype=np.int64)
    keys = np.floor(positions / cell_size).astype(np.int64)
    buckets: dict[tuple[int, int], list[int]] = defaultdict(list)
    for index, (cx, cy) in enumerate(keys.tolist()):
        buckets[(cx, cy)].append(index)

    sources: list[np.ndarray] = []
    targets: list[np.ndarray] = []
    for (cx, cy), members in buckets.items():
        m = np.asarray(members, dtype=np.int64)
        a, b = np.triu_indices(len(m), k=1)
        sources.append(m[a])
        targets.append(m[b])
        # Half the neighborhood, so each cell pair is visited once
        for dx, dy in ((1, -1), (1, 0), (1, 1), (0, 1)):
            other = buckets.get((cx + dx, cy + dy))
            if other:
                o = np.asarray(other, dtype=np.int64)
                sources.append(np.repeat(m, len(o)))
                targets.append(np.tile(o, len(m)))
    return np.concatenate(sources), np.concatenate(targets)


class BoundaryForce(Force):
    """Soft push back into a rectangle for nodes that drift outside it."""

    def __init__(self, bounds: Bounds, strength: float = 0.1) -> None:
        super().__init__()
        self.bounds = bounds
        self.strength = strength

    def apply(self, alpha: float) -> None:
        sim = require_simulation(self)
        x = sim.x
        inside = self.bounds.clamp(x.copy())
        sim.velocities += (inside - x) * self.strength * alpha
