"""Parent tether layer: chunks held near their keyword parents.

Each child springs toward its parents and is hard-clamped to a maximum
distance that grows with the square root of the sibling count:

    max_distance = parent_radius * multiplier
                   + sqrt(sibling_count) * child_radius * spread_factor
"""

import logging
import math
from collections.abc import Sequence

import numpy as np

from semmap.config import settings
from semmap.physics.forces import CollideForce
from semmap.physics.simulation import Force, ForceSimulation, SimulationLayer, require_simulation

logger = logging.getLogger(__name__)

TETHER_ALPHA = 0.3
TETHER_ALPHA_DECAY = 0.02
TETHER_VELOCITY_DECAY = 0.3
TETHER_COLLIDE_STRENGTH = 0.8
GOLDEN_ANGLE = math.pi * (3 - math.sqrt(5))


def max_tether_distance(
    parent_radius: float,
    child_radius: float,
    sibling_count: int,
    multiplier: float | None = None,
    spread_factor: float | None = None,
) -> float:
    """Maximum child-to-parent distance for a parent with ``sibling_count`` children."""
    multiplier = settings.tether_base_multiplier if multiplier is None else multiplier
    spread_factor = settings.tether_spread_factor if spread_factor is None else spread_factor
    base = max(parent_radius, 0.0) * multiplier
    return base + math.sqrt(max(sibling_count, 0)) * max(child_radius, 0.0) * spread_factor


class TetherForce(Force):
    """Spring every child toward the mean of its parents' positions, scaled by alpha."""

    def __init__(
        self,
        parent_positions: np.ndarray,
        child_parents: Sequence[Sequence[int]],
        spring: float,
    ) -> None:
        super().__init__()
        self.parent_positions = np.asarray(parent_positions, dtype=np.float64).reshape(-1, 2)
        self.child_parents = [list(p) for p in child_parents]
        self.spring = spring

    def initialize(self, sim: ForceSimulation) -> None:
        super().initialize(sim)
        self._anchors = np.full((sim.n_nodes, 2), np.nan)
        self.update_parents(self.parent_positions)

    def update_parents(self, parent_positions: np.ndarray) -> None:
        self.parent_positions = np.asarray(parent_positions, dtype=np.float64).reshape(-1, 2)
        n_parents = len(self.parent_positions)
        for child, parents in enumerate(self.child_parents[: len(self._anchors)]):
            valid = [p for p in parents if 0 <= p < n_parents]
            self._anchors[child] = (
                self.parent_positions[valid].mean(axis=0) if valid else (np.nan, np.nan)
            )

    def apply(self, alpha: float) -> None:
        sim = require_simulation(self)
        active = ~np.isnan(self._anchors[:, 0])
        if active.any():
            sim.velocities[active] += (self._anchors[active] - sim.x[active]) * self.spring * alpha


class ParentTetherLayer(SimulationLayer):
    """Children tethered to read-only parent positions.

    Args:
        parent_positions: (P, 2) parent positions, never written
        child_parents: For each child, the indices of its parents
        parent_radius: Visual radius of a parent
        child_radius: Visual radius of a child, also the collide radius
        multiplier: Base distance multiplier on ``parent_radius``
        spread_factor: Growth per sqrt(sibling) in child radii
        spring: Spring strength toward the parents
        initial_positions: Previous child positions to resume from
        parent_rows: Base-layout row of each parent; parents are rows
            ``0..P-1`` of a P-row base when unset
    """

    name = "tether"

    def __init__(
        self,
        parent_positions: np.ndarray,
        child_parents: Sequence[Sequence[int]],
        parent_radius: float | None = None,
        child_radius: float | None = None,
        multiplier: float | None = None,
        spread_factor: float | None = None,
        spring: float | None = None,
        initial_positions: np.ndarray | None = None,
        parent_rows: Sequence[int] | None = None,
    ) -> None:
        super().__init__(
            ForceSimulation(
                len(child_parents),
                alpha=TETHER_ALPHA,
                alpha_decay=TETHER_ALPHA_DECAY,
                velocity_decay=TETHER_VELOCITY_DECAY,
            )
        )
        self.parent_radius = settings.tether_parent_radius if parent_radius is None else parent_radius
        self.child_radius = settings.tether_child_radius if child_radius is None else child_radius
        self.multiplier = settings.tether_base_multiplier if multiplier is None else multiplier
        self.spread_factor = settings.tether_spread_factor if spread_factor is None else spread_factor
        spring = settings.tether_spring_strength if spring is None else spring

        self.parent_positions = np.asarray(parent_positions, dtype=np.float64).reshape(-1, 2)
        self.parent_rows = None if parent_rows is None else np.asarray(parent_rows, dtype=np.int64)
        self.child_parents = [
            [p for p in parents if 0 <= p < len(self.parent_positions)]
            for parents in child_parents
        ]

        sibling_counts = np.zeros(len(self.parent_positions), dtype=np.int64)
        for parents in self.child_parents:
            for p in parents:
                sibling_counts[p] += 1
        self.sibling_counts = sibling_counts
        self.max_distances = np.array([
            max_tether_distance(
                self.parent_radius, self.child_radius, int(c),
                self.multiplier, self.spread_factor,
            )
            for c in sibling_counts
        ])

        if initial_positions is not None:
            self.simulation.load_positions(initial_positions)
        else:
            self.simulation.load_positions(self._seed_positions())

        self.tether = TetherForce(self.parent_positions, self.child_parents, spring)
        self.simulation.force("tether", self.tether)
        self.simulation.force(
            "collide",
            CollideForce(radius=self.child_radius, strength=TETHER_COLLIDE_STRENGTH, iterations=2),
        )
        self.simulation.on_tick(self._enforce_max_distance)
        self._enforce_max_distance(self.simulation)

        orphans = sum(1 for parents in self.child_parents if not parents)
        if orphans:
            logger.debug(f"{orphans} tethered children have no valid parent")

    def _seed_positions(self) -> np.ndarray:
        """Start each child on its first parent, spread on a small golden-angle spiral."""
        seeds = np.zeros((len(self.child_parents), 2))
        placed = np.zeros(len(self.parent_positions), dtype=np.int64)
        for child, parents in enumerate(self.child_parents):
            if not parents:
                continue
            p = parents[0]
            k = placed[p]
            placed[p] += 1
            r = self.child_radius * 0.5 * math.sqrt(k + 1)
            angle = k * GOLDEN_ANGLE
            seeds[child] = self.parent_positions[p] + (r * math.cos(angle), r * math.sin(angle))
        return seeds

    def _enforce_max_distance(self, sim: ForceSimulation) -> None:
        x = sim.x
        for child, parents in enumerate(self.child_parents):
            if not parents:
                continue
            offsets = x[child] - self.parent_positions[parents]
            dists = np.hypot(offsets[:, 0], offsets[:, 1])
            nearest = int(np.argmin(dists))
            parent = parents[nearest]
            limit = self.max_distances[parent]
            dist = dists[nearest]
            if dist > limit:
                x[child] = self.parent_positions[parent] + offsets[nearest] * (limit / dist)
                sim.velocities[child] *= 0.5

    def max_distance_of(self, child: int) -> float | None:
        """Allowed distance from the child's nearest parent, None for orphans."""
        if not 0 <= child < len(self.child_parents) or not self.child_parents[child]:
            return None
        x = self.simulation.x[child]
        parents = self.child_parents[child]
        dists = np.hypot(*(x - self.parent_positions[parents]).T)
        return float(self.max_distances[parents[int(np.argmin(dists))]])

    def update_parents(self, parent_positions: np.ndarray) -> None:
        """Parents moved: re-anchor, clamp and reheat."""
        parent_positions = np.asarray(parent_positions, dtype=np.float64).reshape(-1, 2)
        if len(parent_positions) != len(self.parent_positions):
            logger.warning("Parent count changed; tether layer must be rebuilt")
            return
        self.parent_positions = parent_positions
        self.tether.update_parents(parent_positions)
        self._enforce_max_distance(self.simulation)
        self.simulation.restart(TETHER_ALPHA)

    def follow_base(self, base: np.ndarray) -> None:
        """Re-anchor on the parents' latest base positions when they moved."""
        if self.parent_rows is None:
            if len(base) != len(self.parent_positions):
                return
            parents = base
        else:
            if len(self.parent_rows) != len(self.parent_positions) or (
                len(self.parent_rows) and self.parent_rows.max() >= len(base)
            ):
                return
            parents = base[self.parent_rows]
        if len(parents) and not np.allclose(parents, self.parent_positions):
            self.update_parents(parents)
