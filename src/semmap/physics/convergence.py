"""Convergence detection, cooling and one-shot camera auto-fit."""

import logging
import math
from collections import deque
from dataclasses import dataclass

import numpy as np

from semmap.config import settings
from semmap.physics.collision import CollisionLayer
from semmap.physics.simulation import ForceSimulation

logger = logging.getLogger(__name__)

COOLING_ALPHA_TARGET = 0.0
COOLING_ALPHA_DECAY = 0.02


def clamp_velocities(velocities: np.ndarray, max_velocity: float | None = None) -> np.ndarray:
    """Clip each velocity component to +/- max_velocity, in place."""
    max_velocity = settings.convergence_max_velocity if max_velocity is None else max_velocity
    np.clip(velocities, -max_velocity, max_velocity, out=velocities)
    return velocities


def p95_velocity(velocities: np.ndarray) -> float:
    """Speed at the 5th position of the descending sort: the top speed without outliers."""
    v = np.asarray(velocities, dtype=np.float64).reshape(-1, 2)
    if len(v) == 0:
        return 0.0
    speeds = np.sort(np.hypot(v[:, 0], v[:, 1]))[::-1]
    return float(speeds[int(math.floor(len(speeds) * 0.05))])


@dataclass
class ConvergenceStatus:
    tick_count: int
    mean_displacement: float | None
    cooling: bool
    cooling_just_started: bool


class ConvergenceMonitor:
    """Detect when a layout has settled.

    Each ``observe`` records the mean per-node displacement since the
    previous call. Once the rolling-window mean stays below ``threshold``
    for ``sustain_ticks`` consecutive ticks (and more than ``min_ticks``
    have been observed), the monitor switches to cooling. The switch is
    reported exactly once through ``cooling_just_started``.

    Args:
        window: Rolling window length
        threshold: Mean displacement below which a tick counts as calm
        sustain_ticks: Calm ticks required in a row
        min_ticks: Ticks to ignore at the start
        max_velocity: Bound used by ``clamp_velocities``
    """

    def __init__(
        self,
        window: int | None = None,
        threshold: float | None = None,
        sustain_ticks: int | None = None,
        min_ticks: int | None = None,
        max_velocity: float | None = None,
    ) -> None:
        self.window = max(1, settings.convergence_window if window is None else window)
        self.threshold = settings.convergence_threshold if threshold is None else threshold
        self.sustain_ticks = max(
            1, settings.convergence_sustain_ticks if sustain_ticks is None else sustain_ticks
        )
        self.min_ticks = settings.convergence_min_ticks if min_ticks is None else min_ticks
        self.max_velocity = settings.convergence_max_velocity if max_velocity is None else max_velocity
        self.reset()

    def reset(self) -> None:
        self.tick_count = 0
        self.cooling = False
        self._calm_ticks = 0
        self._previous: np.ndarray | None = None
        self._displacements: deque[float] = deque(maxlen=self.window)

    def observe(self, positions: np.ndarray) -> ConvergenceStatus:
        """Record one tick of (N, 2) or flat positions."""
        current = np.asarray(positions, dtype=np.float64).reshape(-1, 2).copy()
        self.tick_count += 1

        mean = None
        if self._previous is not None and self._previous.shape == current.shape and len(current):
            step = current - self._previous
            self._displacements.append(float(np.mean(np.hypot(step[:, 0], step[:, 1]))))
            mean = float(np.mean(self._displacements))
        self._previous = current

        just_started = False
        if not self.cooling and self.tick_count > self.min_ticks and mean is not None:
            if len(self._displacements) == self.window and mean < self.threshold:
                self._calm_ticks += 1
            else:
                self._calm_ticks = 0
            if self._calm_ticks >= self.sustain_ticks:
                self.cooling = True
                just_started = True
                logger.info(f"Layout cooling after {self.tick_count} ticks (mean displacement {mean:.3f})")

        return ConvergenceStatus(
            tick_count=self.tick_count,
            mean_displacement=mean,
            cooling=self.cooling,
            cooling_just_started=just_started,
        )


@dataclass
class CoolingPolicy:
    """What the host does once cooling starts: tighten collisions and let alpha run down."""

    collision_factor: float | None = None
    alpha_target: float = COOLING_ALPHA_TARGET
    alpha_decay: float = COOLING_ALPHA_DECAY

    def __post_init__(self) -> None:
        if self.collision_factor is None:
            self.collision_factor = settings.collision_cooling_factor

    def apply(self, simulation: ForceSimulation, collision: CollisionLayer | None = None) -> None:
        simulation.alpha_target = self.alpha_target
        simulation.alpha_decay = self.alpha_decay
        if collision is not None:
            collision.set_multiplier(collision.multiplier * self.collision_factor)


class AutoFitCoordinator:
    """Decide when the camera should fit the layout.

    One fit once ``initial_fit_tick`` is reached, optionally one more right
    after cooling begins. Any manual pan, zoom or drag blocks all further
    fits until ``reset`` (a fresh layout).
    """

    def __init__(self, initial_fit_tick: int | None = None, fit_after_cooling: bool | None = None) -> None:
        self.initial_fit_tick = (
            settings.autofit_initial_tick if initial_fit_tick is None else initial_fit_tick
        )
        self.fit_after_cooling = (
            settings.autofit_after_cooling if fit_after_cooling is None else fit_after_cooling
        )
        self.reset()

    def reset(self) -> None:
        self.user_interacted = False
        self.initial_fit_done = False
        self.cooling_fit_done = False

    def mark_user_interaction(self) -> None:
        self.user_interacted = True

    def should_fit(self, tick: int, cooling_just_started: bool = False) -> bool:
        if self.user_interacted:
            return False
        fit = False
        if not self.initial_fit_done and tick >= self.initial_fit_tick:
            self.initial_fit_done = True
            fit = True
        if self.fit_after_cooling and cooling_just_started and not self.cooling_fit_done:
            self.cooling_fit_done = True
            fit = True
        return fit
