"""Collision layer with hover-dependent radii."""

import logging
from collections.abc import Callable

import numpy as np

from semmap.config import settings
from semmap.physics.forces import CollideForce
from semmap.physics.simulation import ForceSimulation, SimulationLayer
from semmap.utils import clamp_non_negative

logger = logging.getLogger(__name__)

# Minimum energy after a hover change so the new radius takes effect
HOVER_REHEAT_ALPHA = 0.3
# Energy after the base layout moves under the layer
BASE_REHEAT_ALPHA = 0.1


class CollisionLayer(SimulationLayer):
    """Enforce a minimum separation between all nodes.

    The radius of node ``i`` is ``radius_fn(i) * multiplier``, scaled by
    ``hover_scale`` for the hovered node. Radii are re-queried whenever
    hover or multiplier changes.

    Node i follows row i of the base layout; collision offsets are kept
    as the base moves.

    Args:
        positions: (N, 2) starting positions (copied in)
        radius: Base radius, or a per-index function
        hover_scale: Radius factor for the hovered node
        strength: Collide strength
    """

    name = "collision"

    def __init__(
        self,
        positions: np.ndarray,
        radius: float | Callable[[int], float] | None = None,
        hover_scale: float | None = None,
        strength: float | None = None,
        iterations: int = 2,
    ) -> None:
        positions = np.asarray(positions, dtype=np.float64).reshape(-1, 2)
        super().__init__(ForceSimulation(len(positions), alpha=0.3, velocity_decay=0.3))
        self.simulation.load_positions(positions)
        self.track_base_rows(range(len(positions)), positions)

        base = settings.collision_radius if radius is None else radius
        self._base: Callable[[int], float] = base if callable(base) else (lambda _i, r=base: r)
        self.hover_scale = hover_scale or settings.collision_hover_scale
        self.multiplier = 1.0
        self.hovered: int | None = None

        self.collide = CollideForce(
            radius=self.radius_of,
            strength=settings.collision_strength if strength is None else strength,
            iterations=iterations,
        )
        self.simulation.force("collide", self.collide)

    def radius_of(self, index: int) -> float:
        radius = clamp_non_negative(self._base(index), "radius") * self.multiplier
        if index == self.hovered:
            radius *= self.hover_scale
        return radius

    def set_hovered(self, index: int | None, scale: float | None = None) -> None:
        """Change the hovered node (and optionally its scale) and re-query radii."""
        scale = self.hover_scale if scale is None else scale
        if index == self.hovered and scale == self.hover_scale:
            return
        self.hovered = index
        self.hover_scale = scale
        self.collide.refresh_radii()
        self.simulation.reheat(HOVER_REHEAT_ALPHA)

    def set_multiplier(self, multiplier: float) -> None:
        """Scale every radius (e.g. tightened once the layout cools)."""
        multiplier = clamp_non_negative(multiplier, "radius multiplier")
        if multiplier == self.multiplier:
            return
        self.multiplier = multiplier
        self.collide.refresh_radii()
        self.simulation.reheat(HOVER_REHEAT_ALPHA)

    def follow_base(self, base: np.ndarray) -> None:
        """Carry every unpinned node along with its base row and reheat if anything moved."""
        if self.shift_with_base(base) is not None:
            self.simulation.reheat(BASE_REHEAT_ALPHA)
