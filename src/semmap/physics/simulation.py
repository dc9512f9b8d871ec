"""Index-addressed force simulation.

A small d3-force style simulation over numpy arrays. The simulation owns its
node arena (positions, velocities, fixed positions); callers copy positions
in with ``load_positions`` and copy them out with ``positions``. Nothing
outside the simulation writes to the arena.

Each tick:
    alpha += (alpha_target - alpha) * alpha_decay
    every force adds to the velocities, scaled by alpha
    velocities *= 1 - velocity_decay
    positions += velocities
    fixed nodes snap back, bounds clamp, tick hooks run
"""

import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass

import numpy as np

from semmap.errors import LayoutStateError

logger = logging.getLogger(__name__)

DEFAULT_ALPHA_MIN = 0.001
# d3 default: alpha reaches alpha_min in ~300 ticks
DEFAULT_ALPHA_DECAY = 1 - DEFAULT_ALPHA_MIN ** (1 / 300)
DEFAULT_VELOCITY_DECAY = 0.4
# Base moves smaller than this are treated as no move
BASE_MOVE_EPSILON = 1e-9


@dataclass(frozen=True)
class Bounds:
    """Axis-aligned rectangle."""

    min_x: float
    min_y: float
    max_x: float
    max_y: float

    @property
    def width(self) -> float:
        return self.max_x - self.min_x

    @property
    def height(self) -> float:
        return self.max_y - self.min_y

    @property
    def center(self) -> tuple[float, float]:
        return (self.min_x + self.max_x) / 2, (self.min_y + self.max_y) / 2

    def contains(self, x: float, y: float) -> bool:
        return self.min_x <= x <= self.max_x and self.min_y <= y <= self.max_y

    def inset(self, margin: float) -> "Bounds":
        """Shrink by margin on every side (never past the center)."""
        cx, cy = self.center
        return Bounds(
            min(self.min_x + margin, cx),
            min(self.min_y + margin, cy),
            max(self.max_x - margin, cx),
            max(self.max_y - margin, cy),
        )

    def clamp(self, positions: np.ndarray) -> np.ndarray:
        """Clip (N, 2) positions into the rectangle, in place."""
        np.clip(positions[:, 0], self.min_x, self.max_x, out=positions[:, 0])
        np.clip(positions[:, 1], self.min_y, self.max_y, out=positions[:, 1])
        return positions


class Force:
    """Base class for simulation forces.

    ``initialize`` is called whenever the force is attached or the node set
    changes; per-node parameters are (re)computed there. ``apply`` mutates
    ``sim.velocities`` in place.
    """

    def __init__(self) -> None:
        self.sim: "ForceSimulation | None" = None

    def initialize(self, sim: "ForceSimulation") -> None:
        self.sim = sim

    def apply(self, alpha: float) -> None:
        raise NotImplementedError


TickHook = Callable[["ForceSimulation"], None]


class ForceSimulation:
    """Alpha-scheduled force simulation over N nodes.

    Args:
        n_nodes: Arena size
        alpha: Initial energy
        alpha_min: Energy below which stepping stops
        alpha_decay: Per-tick relaxation of alpha toward alpha_target
        alpha_target: Energy the simulation relaxes toward
        velocity_decay: Friction applied to velocities each tick
        bounds: Optional hard clamp applied after every tick
    """

    def __init__(
        self,
        n_nodes: int,
        alpha: float = 1.0,
        alpha_min: float = DEFAULT_ALPHA_MIN,
        alpha_decay: float = DEFAULT_ALPHA_DECAY,
        alpha_target: float = 0.0,
        velocity_decay: float = DEFAULT_VELOCITY_DECAY,
        bounds: Bounds | None = None,
    ) -> None:
        self.n_nodes = max(0, int(n_nodes))
        self.alpha = alpha
        self.alpha_min = alpha_min
        self.alpha_decay = alpha_decay
        self.alpha_target = alpha_target
        self.velocity_decay = velocity_decay
        self.bounds = bounds
        self.tick_count = 0
        self.running = True

        self._positions = np.zeros((self.n_nodes, 2))
        self.velocities = np.zeros((self.n_nodes, 2))
        self._fixed = np.full((self.n_nodes, 2), np.nan)
        self._forces: dict[str, Force] = {}
        self._hooks: list[TickHook] = []

    # -- arena ---------------------------------------------------------

    @property
    def x(self) -> np.ndarray:
        """Live (N, 2) position array. Forces read and write it; callers should use ``positions()``."""
        return self._positions

    def load_positions(self, positions: np.ndarray) -> None:
        """Copy positions into the arena. Rows beyond the arena are ignored."""
        src = np.asarray(positions, dtype=np.float64).reshape(-1, 2)
        count = min(len(src), self.n_nodes)
        self._positions[:count] = src[:count]

    def positions(self) -> np.ndarray:
        """Copy of current (N, 2) positions."""
        return self._positions.copy()

    def fix(self, index: int, x: float, y: float) -> None:
        """Pin a node (e.g. while dragged)."""
        if 0 <= index < self.n_nodes:
            self._fixed[index] = (x, y)
            self._positions[index] = (x, y)
            self.velocities[index] = 0.0

    def release(self, index: int) -> None:
        if 0 <= index < self.n_nodes:
            self._fixed[index] = np.nan

    @property
    def pinned(self) -> np.ndarray:
        """Boolean mask of fixed nodes."""
        return ~np.isnan(self._fixed[:, 0])

    # -- forces --------------------------------------------------------

    def force(self, name: str, force: Force | None = None) -> Force | None:
        """Attach, replace or (with None) remove a named force. Returns the current force."""
        if force is None:
            return self._forces.pop(name, None)
        force.initialize(self)
        self._forces[name] = force
        return force

    def get_force(self, name: str) -> Force | None:
        return self._forces.get(name)

    def on_tick(self, hook: TickHook) -> None:
        """Run ``hook(sim)`` after every tick."""
        self._hooks.append(hook)

    # -- scheduling ----------------------------------------------------

    @property
    def is_active(self) -> bool:
        return self.running and self.alpha >= self.alpha_min

    def restart(self, alpha: float | None = None) -> None:
        """Resume stepping, optionally reheating to ``alpha``."""
        if alpha is not None:
            self.alpha = alpha
        self.running = True

    def reheat(self, alpha: float) -> None:
        """Raise alpha to at least ``alpha`` and resume."""
        self.alpha = max(self.alpha, alpha)
        self.running = True

    def stop(self) -> None:
        self.running = False

    def cancel(self) -> None:
        """Stop and discard all velocity state."""
        self.running = False
        self.velocities[:] = 0.0

    def step(self) -> bool:
        """Advance one frame if active. Returns whether a tick ran."""
        if not self.is_active:
            return False
        self.tick()
        return True

    def tick(self, iterations: int = 1) -> float:
        """Advance the simulation, ignoring ``running``. Returns alpha."""
        if self.n_nodes == 0:
            return self.alpha
        for _ in range(max(1, iterations)):
            self.alpha += (self.alpha_target - self.alpha) * self.alpha_decay
            for force in self._forces.values():
                force.apply(self.alpha)

            self.velocities *= 1.0 - self.velocity_decay
            self._positions += self.velocities

            pinned = self.pinned
            if pinned.any():
                self._positions[pinned] = self._fixed[pinned]
                self.velocities[pinned] = 0.0

            if self.bounds is not None:
                self.bounds.clamp(self._positions)

            self.tick_count += 1
            for hook in self._hooks:
                hook(self)
        return self.alpha

    def run(self, max_ticks: int = 1000) -> int:
        """Tick until alpha drops below alpha_min or max_ticks. Returns ticks run."""
        ticks = 0
        while self.alpha >= self.alpha_min and ticks < max_ticks:
            self.tick()
            ticks += 1
        return ticks


def require_simulation(force: Force) -> "ForceSimulation":
    """The simulation a force is attached to."""
    if force.sim is None:
        raise LayoutStateError(f"{type(force).__name__} used before being attached to a simulation")
    return force.sim


class SimulationLayer:
    """A secondary physics layer built on one ``ForceSimulation``.

    Layers read base positions as a copy, integrate in their own arena and
    hand positions back out through ``positions()``. Subclasses attach their
    forces in ``__init__`` and track the frame's base in ``follow_base``.
    """

    name = "layer"

    def __init__(self, simulation: ForceSimulation) -> None:
        self.simulation = simulation
        self.base_rows: np.ndarray | None = None
        self._followed: np.ndarray | None = None

    @property
    def n_nodes(self) -> int:
        return self.simulation.n_nodes

    @property
    def is_active(self) -> bool:
        return self.simulation.is_active

    def step(self, base_positions: np.ndarray | None = None) -> bool:
        """Advance one frame. ``base_positions`` is the frame's read-only snapshot."""
        if base_positions is not None:
            self.follow_base(np.asarray(base_positions, dtype=np.float64).reshape(-1, 2))
        return self.simulation.step()

    def follow_base(self, base: np.ndarray) -> None:
        """Pick up the latest (N, 2) base positions. Free-standing layers ignore them."""

    def track_base_rows(self, rows: Sequence[int], base: np.ndarray) -> None:
        """Follow ``base[rows]`` from now on, one row per arena slot."""
        self.base_rows = np.asarray(rows, dtype=np.int64).reshape(-1)
        self._followed = np.asarray(base, dtype=np.float64).reshape(-1, 2)[self.base_rows].copy()

    def shift_with_base(self, base: np.ndarray) -> np.ndarray | None:
        """Move unpinned slots by how far their base rows moved since the last frame.

        Returns the per-slot delta, or None when nothing moved or the base no
        longer covers the tracked rows.
        """
        rows = self.base_rows
        if rows is None or self._followed is None or len(rows) == 0:
            return None
        if rows.max() >= len(base):
            logger.debug(f"{self.name} layer: base has {len(base)} rows, tracking {rows.max() + 1}")
            return None
        current = base[rows]
        delta = current - self._followed
        self._followed = current.copy()
        if not np.any(np.abs(delta) > BASE_MOVE_EPSILON):
            return None
        free = ~self.simulation.pinned
        self.simulation.x[free] += delta[free]
        if self.simulation.bounds is not None:
            self.simulation.bounds.clamp(self.simulation.x)
        return delta

    def positions(self) -> np.ndarray:
        return self.simulation.positions()

    def restart(self, alpha: float | None = None) -> None:
        self.simulation.restart(alpha)

    def cancel(self) -> None:
        self.simulation.cancel()
