"""Per-frame scheduling of the optimizer and the secondary layers.

The host calls ``FrameLoop.frame()`` once per animation frame. Within a
frame the order is fixed:

    1. base optimizer step (one small epoch batch)
    2. a read-only copy of the optimizer positions is taken
    3. every registered layer steps, reading that same copy
       (``follow_base``: collision and click-focus nodes and the focus lens
       shift with their base rows, tethers re-anchor on moved parents)
    4. convergence observation
    5. auto-fit decision

Layers never see another layer's half-updated positions, and nothing but
the optimizer writes the base positions.
"""

import logging
from dataclasses import dataclass, field

import numpy as np

from semmap.layout.optimizer import LayoutResult, UmapOptimizer
from semmap.physics.collision import CollisionLayer
from semmap.physics.convergence import (
    AutoFitCoordinator,
    ConvergenceMonitor,
    ConvergenceStatus,
    CoolingPolicy,
)
from semmap.physics.simulation import SimulationLayer

logger = logging.getLogger(__name__)


@dataclass
class FrameResult:
    """Everything the renderer needs after one frame."""

    tick: int
    positions: np.ndarray
    layers: dict[str, np.ndarray] = field(default_factory=dict)
    layout: LayoutResult | None = None
    convergence: ConvergenceStatus | None = None
    fit_requested: bool = False

    @property
    def cooling_just_started(self) -> bool:
        return bool(self.convergence and self.convergence.cooling_just_started)


class FrameLoop:
    """Interleave the base optimizer and secondary layers on one thread.

    Args:
        optimizer: Base layout optimizer; when omitted, static base positions
            set with ``set_base_positions`` are used instead
        monitor: Convergence monitor (defaults from settings)
        autofit: Auto-fit coordinator (defaults from settings)
        cooling: Policy applied to collision layers once cooling starts
        observe_layer: Name of the layer whose positions feed the monitor;
            the base positions are observed when unset or not registered
    """

    def __init__(
        self,
        optimizer: UmapOptimizer | None = None,
        monitor: ConvergenceMonitor | None = None,
        autofit: AutoFitCoordinator | None = None,
        cooling: CoolingPolicy | None = None,
        observe_layer: str | None = None,
    ) -> None:
        self.optimizer = optimizer
        self.monitor = monitor or ConvergenceMonitor()
        self.autofit = autofit or AutoFitCoordinator()
        self.cooling = cooling or CoolingPolicy()
        self.observe_layer = observe_layer
        self.layers: dict[str, SimulationLayer] = {}
        self.tick = 0
        self._static_base = np.zeros((0, 2))

    # -- layers --------------------------------------------------------

    def register(self, layer: SimulationLayer, name: str | None = None) -> SimulationLayer:
        """Add a layer, cancelling any layer previously registered under the same name."""
        name = name or layer.name
        previous = self.layers.get(name)
        if previous is not None and previous is not layer:
            previous.cancel()
            logger.debug(f"Replaced layer '{name}'")
        self.layers[name] = layer
        return layer

    def cancel(self, name: str) -> SimulationLayer | None:
        """Stop and remove a layer; its velocity state is discarded."""
        layer = self.layers.pop(name, None)
        if layer is not None:
            layer.cancel()
        return layer

    def layer(self, name: str) -> SimulationLayer | None:
        return self.layers.get(name)

    def set_base_positions(self, positions: np.ndarray) -> None:
        """Static base positions for hosts without a running optimizer."""
        self._static_base = np.asarray(positions, dtype=np.float64).reshape(-1, 2).copy()

    def reset(self) -> None:
        """Fresh layout: clear tick count, convergence and the user-interaction flag."""
        self.tick = 0
        self.monitor.reset()
        self.autofit.reset()

    def mark_user_interaction(self) -> None:
        self.autofit.mark_user_interaction()

    # -- frame ---------------------------------------------------------

    def _base_snapshot(self) -> tuple[np.ndarray, LayoutResult | None]:
        if self.optimizer is None:
            base = self._static_base.copy()
            layout = None
        else:
            if self.optimizer.is_running:
                self.optimizer.step()
            layout = self.optimizer.result()
            base = np.asarray(layout.positions, dtype=np.float64).reshape(-1, 2).copy()
        base.flags.writeable = False
        return base, layout

    def frame(self) -> FrameResult:
        """Advance everything by one frame."""
        self.tick += 1
        base, layout = self._base_snapshot()

        layer_positions: dict[str, np.ndarray] = {}
        for name, layer in list(self.layers.items()):
            layer.step(base)
            layer_positions[name] = layer.positions()

        observed = layer_positions.get(self.observe_layer, base) if self.observe_layer else base
        status = self.monitor.observe(observed)
        if status.cooling_just_started:
            self._apply_cooling()

        fit = self.autofit.should_fit(self.tick, status.cooling_just_started)
        if fit:
            logger.debug(f"Auto-fit requested at tick {self.tick}")

        return FrameResult(
            tick=self.tick,
            positions=base,
            layers=layer_positions,
            layout=layout,
            convergence=status,
            fit_requested=fit,
        )

    def _apply_cooling(self) -> None:
        for layer in self.layers.values():
            if isinstance(layer, CollisionLayer):
                self.cooling.apply(layer.simulation, layer)

    def run(self, max_frames: int = 1000) -> FrameResult | None:
        """Run frames until the optimizer converges and no layer is active."""
        result = None
        for _ in range(max_frames):
            result = self.frame()
            optimizer_busy = self.optimizer is not None and self.optimizer.is_running
            if not optimizer_busy and not any(layer.is_active for layer in self.layers.values()):
                break
        return result
