"""Time-based interpolation between successive target layouts.

Call ``update(target)`` once per frame with the latest target. A target
that is a different object from the previous one starts a new animation
from wherever the values currently are; passing the same object again just
advances the running animation.
"""

import time
from collections.abc import Callable, Hashable, Mapping

import numpy as np

from semmap.config import settings

EasingFunction = Callable[[float], float]
Clock = Callable[[], float]


def ease_out_cubic(t: float) -> float:
    """Fast start, smooth deceleration."""
    return 1 - (1 - t) ** 3


def ease_in_out_cubic(t: float) -> float:
    return 4 * t * t * t if t < 0.5 else 1 - (-2 * t + 2) ** 3 / 2


def linear(t: float) -> float:
    return t


def monotonic_ms() -> float:
    return time.monotonic() * 1000.0


class _KeyedInterpolator:
    """Shared animation state for id-keyed values."""

    def __init__(
        self,
        duration_ms: float | None = None,
        easing: EasingFunction = ease_out_cubic,
        initial: Mapping | None = None,
        clock: Clock = monotonic_ms,
    ) -> None:
        self.duration_ms = settings.interpolation_duration_ms if duration_ms is None else duration_ms
        self.easing = easing
        self.initial = dict(initial or {})
        self.clock = clock
        self.current: dict = {}
        self._previous_target: Mapping | None = None
        self._start: dict | None = None
        self._target: dict = {}
        self._start_time = 0.0

    @property
    def is_animating(self) -> bool:
        return self._start is not None

    def _lerp(self, start, target, t: float):
        raise NotImplementedError

    def update(self, target: Mapping | None) -> dict:
        """Advance one frame toward ``target`` and return the current values."""
        if target is not self._previous_target:
            if target:
                self._start = {key: self.current.get(key, value) for key, value in target.items()}
                self._target = dict(target)
                self._start_time = self.clock()
            else:
                self._start = None
            self._previous_target = target

        if self._start is not None:
            elapsed = self.clock() - self._start_time
            raw_t = min(1.0, elapsed / self.duration_ms) if self.duration_ms > 0 else 1.0
            t = self.easing(raw_t)
            for key, start in self._start.items():
                end = self._target.get(key)
                if end is not None:
                    self.current[key] = self._lerp(start, end, t)
            if raw_t >= 1:
                self._start = None
        elif target:
            self.current = dict(target)
        else:
            self.current = dict(self.initial)
        return self.current


class PositionInterpolator(_KeyedInterpolator):
    """Animate id -> (x, y) positions.

    Args:
        duration_ms: Animation length, default 400ms
        easing: Easing applied to normalized time
        initial_positions: Returned while there is no target
        clock: Millisecond clock, injectable for tests
    """

    def __init__(
        self,
        duration_ms: float | None = None,
        easing: EasingFunction = ease_out_cubic,
        initial_positions: Mapping[Hashable, tuple[float, float]] | None = None,
        clock: Clock = monotonic_ms,
    ) -> None:
        super().__init__(duration_ms, easing, initial_positions, clock)

    def _lerp(self, start, target, t):
        return (
            start[0] + (target[0] - start[0]) * t,
            start[1] + (target[1] - start[1]) * t,
        )


class OpacityInterpolator(_KeyedInterpolator):
    """Animate per-node opacity (or scale) hints."""

    def _lerp(self, start, target, t):
        return start + (target - start) * t


class ArrayPositionInterpolator:
    """Animate flat ``[x0, y0, x1, y1, ...]`` position arrays.

    When the target length changes the animation starts at the target,
    since there is no per-index correspondence with the old array.
    """

    def __init__(
        self,
        duration_ms: float | None = None,
        easing: EasingFunction = ease_out_cubic,
        initial_positions: np.ndarray | None = None,
        clock: Clock = monotonic_ms,
    ) -> None:
        self.duration_ms = settings.interpolation_duration_ms if duration_ms is None else duration_ms
        self.easing = easing
        self.initial = (
            np.zeros(0, dtype=np.float32) if initial_positions is None
            else np.asarray(initial_positions, dtype=np.float32).copy()
        )
        self.clock = clock
        self.current = np.zeros(0, dtype=np.float32)
        self._previous_target: np.ndarray | None = None
        self._start: np.ndarray | None = None
        self._target = np.zeros(0, dtype=np.float32)
        self._start_time = 0.0

    @property
    def is_animating(self) -> bool:
        return self._start is not None

    def update(self, target: np.ndarray | None) -> np.ndarray:
        if target is not self._previous_target:
            if target is not None and len(target) > 0:
                target_arr = np.asarray(target, dtype=np.float32)
                same_shape = self.current.shape == target_arr.shape
                self._start = self.current.copy() if same_shape else target_arr.copy()
                self._target = target_arr.copy()
                self._start_time = self.clock()
            else:
                self._start = None
            self._previous_target = target

        if self._start is not None:
            elapsed = self.clock() - self._start_time
            raw_t = min(1.0, elapsed / self.duration_ms) if self.duration_ms > 0 else 1.0
            t = self.easing(raw_t)
            self.current = (self._start + (self._target - self._start) * t).astype(np.float32)
            if raw_t >= 1:
                self._start = None
        elif target is not None and len(target) > 0:
            self.current = np.asarray(target, dtype=np.float32).copy()
        else:
            self.current = self.initial.copy()
        return self.current
