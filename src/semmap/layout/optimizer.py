"""Steppable UMAP-style layout optimizer.

The optimizer never runs to completion on its own: the host calls ``step()``
once per animation frame and gets control back after a small batch of
epochs, so intermediate layouts can be rendered.

Lifecycle::

    UNINITIALIZED -> INITIALIZING -> STEPPING -> CONVERGED

Changing the configuration or the input identity resets to UNINITIALIZED
and discards all progress.

Per epoch, every graph edge pulls its endpoints together with strength
``attraction_strength * weight * f(d)`` and every node is pushed away from a
few randomly sampled non-neighbors with ``repulsion_strength * g(d)``. The
two strengths are independent multipliers. Attraction fades inside an
exclusion radius of ``min_dist * min_attractive_scale`` so nodes do not pile
up on one point. The learning rate stays at its initial value for the first
``front_loaded_fraction`` of epochs, then decays quadratically to zero.
"""

import logging
from dataclasses import asdict, dataclass, field, replace
from enum import Enum

import numpy as np

from semmap.config import settings
from semmap.errors import LayoutStateError
from semmap.layout.cache import LayoutCache, embeddings_key
from semmap.layout.events import EventBus, LayoutEvent, LayoutEventKind, LayoutObserver
from semmap.layout.neighbors import (
    FuzzyGraph,
    build_fuzzy_graph,
    epoch_cutoff,
    measure_rest_lengths,
)
from semmap.layout.snapshot import LayoutSnapshot
from semmap.models.graph import WeightedEdge
from semmap.utils import (
    clamp,
    clamp_non_negative,
    clamp_positive,
    flatten_positions,
    normalize_positions,
    unflatten_positions,
)

logger = logging.getLogger(__name__)

# Initial embedding is drawn uniformly from this box
INIT_EXTENT = 10.0
GRADIENT_CLIP = 4.0
REPULSION_EPSILON = 0.001


class OptimizerState(str, Enum):
    """Optimizer lifecycle states."""

    UNINITIALIZED = "uninitialized"
    INITIALIZING = "initializing"
    STEPPING = "stepping"
    CONVERGED = "converged"


@dataclass(frozen=True)
class OptimizerConfig:
    """Tunable optimizer parameters.

    Out-of-range values are clamped by ``clamped()`` rather than rejected.
    """

    n_neighbors: int = 15
    min_dist: float = 0.1
    spread: float = 1.0
    epochs: int = 200
    attraction_strength: float = 1.0
    repulsion_strength: float = 1.0
    min_attractive_scale: float = 1.0
    negative_sample_rate: int = 5
    learning_rate: float = 1.0
    front_loaded_fraction: float = 0.2
    steps_per_frame: int = 8
    render_interval: int = 10
    target_radius: float = 500.0
    seed: int = 42

    @classmethod
    def from_settings(cls, **overrides) -> "OptimizerConfig":
        """Build a config from global settings, with keyword overrides."""
        values = dict(
            n_neighbors=settings.umap_n_neighbors,
            min_dist=settings.umap_min_dist,
            spread=settings.umap_spread,
            epochs=settings.umap_epochs,
            attraction_strength=settings.umap_attraction_strength,
            repulsion_strength=settings.umap_repulsion_strength,
            min_attractive_scale=settings.umap_min_attractive_scale,
            negative_sample_rate=settings.umap_negative_sample_rate,
            learning_rate=settings.umap_learning_rate,
            front_loaded_fraction=settings.umap_front_loaded_fraction,
            steps_per_frame=settings.umap_steps_per_frame,
            render_interval=settings.umap_render_interval,
            target_radius=settings.umap_target_radius,
            seed=settings.umap_seed,
        )
        values.update(overrides)
        return cls(**values).clamped()

    def clamped(self) -> "OptimizerConfig":
        """Copy with every parameter pulled into its valid range."""
        return replace(
            self,
            n_neighbors=max(1, int(self.n_neighbors)),
            min_dist=clamp_non_negative(self.min_dist, "min_dist"),
            spread=clamp_positive(self.spread, name="spread"),
            epochs=max(1, int(self.epochs)),
            attraction_strength=clamp_non_negative(self.attraction_strength, "attraction_strength"),
            repulsion_strength=clamp_non_negative(self.repulsion_strength, "repulsion_strength"),
            min_attractive_scale=clamp_non_negative(self.min_attractive_scale, "min_attractive_scale"),
            negative_sample_rate=max(0, int(self.negative_sample_rate)),
            learning_rate=clamp_positive(self.learning_rate, name="learning_rate"),
            front_loaded_fraction=clamp(self.front_loaded_fraction, 0.0, 0.95),
            steps_per_frame=max(1, int(self.steps_per_frame)),
            render_interval=max(1, int(self.render_interval)),
            target_radius=clamp_positive(self.target_radius, name="target_radius"),
        )

    def as_params(self) -> dict[str, float | int]:
        """Parameters that shape the layout, for fingerprinting and snapshots."""
        params = asdict(self)
        params.pop("steps_per_frame")
        params.pop("render_interval")
        return params


def find_ab_params(min_dist: float, spread: float) -> tuple[float, float]:
    """Fit the low-dimensional kernel ``1 / (1 + a * d^(2b))``.

    The target curve is 1 inside ``min_dist`` and ``exp(-(d - min_dist) / spread)``
    beyond it. Solved by least squares on ``log(1/y - 1) = log(a) + 2b log(d)``.
    """
    xs = np.linspace(0, spread * 3, 300)[1:]
    ys = np.where(xs < min_dist, 1.0, np.exp(-(xs - min_dist) / spread))
    mask = (xs >= min_dist) & (ys > 1e-6) & (ys < 1.0 - 1e-6)
    if mask.sum() < 2:
        return 1.0, 1.0
    slope, intercept = np.polyfit(np.log(xs[mask]), np.log(1.0 / ys[mask] - 1.0), 1)
    b = max(float(slope) / 2.0, 0.1)
    a = max(float(np.exp(intercept)), 1e-3)
    return a, b


def front_loaded_rate(epoch: int, total: int, initial: float, hold_fraction: float) -> float:
    """Learning rate that holds for the first part of the run, then decays fast."""
    if total <= 0:
        return 0.0
    progress = epoch / total
    if progress < hold_fraction:
        return initial
    remaining = (progress - hold_fraction) / max(1.0 - hold_fraction, 1e-9)
    return initial * max(0.0, 1.0 - remaining) ** 2


@dataclass
class LayoutResult:
    """What the renderer needs from the optimizer at any moment."""

    positions: np.ndarray
    edges: list[WeightedEdge] = field(default_factory=list)
    epoch: int = 0
    total_epochs: int = 0
    is_running: bool = False
    edges_version: int = 0

    @property
    def progress(self) -> float:
        if self.total_epochs <= 0:
            return 0.0 if self.is_running else 1.0
        return min(1.0, self.epoch / self.total_epochs)

    @property
    def n_points(self) -> int:
        return len(self.positions) // 2


class UmapOptimizer:
    """Steppable force-directed embedding optimizer.

    Args:
        config: Tunable parameters (defaults from settings)
        observers: Receivers of progress/error/complete events
        cache: Optional session cache of finished layouts
    """

    def __init__(
        self,
        config: OptimizerConfig | None = None,
        observers: list[LayoutObserver] | None = None,
        cache: LayoutCache | None = None,
    ) -> None:
        self.config = (config or OptimizerConfig.from_settings()).clamped()
        self.events = EventBus(observers)
        self.cache = cache
        self._a, self._b = find_ab_params(self.config.min_dist, self.config.spread)
        self._edges_version = 0
        self._reset_state()

    def _reset_state(self) -> None:
        self.state = OptimizerState.UNINITIALIZED
        self.epoch = 0
        self.total_epochs = 0
        self.input_key: str | None = None
        self._embedding = np.zeros((0, 2))
        self._positions = np.zeros((0, 2))
        self._edges: list[WeightedEdge] = []
        self._heads = np.zeros(0, dtype=np.int64)
        self._tails = np.zeros(0, dtype=np.int64)
        self._weights = np.zeros(0)
        self._edge_codes = np.zeros(0, dtype=np.int64)
        self._rng = np.random.default_rng(self.config.seed)
        self._code_base = 1
        self._since_render = 0

    # -- lifecycle -----------------------------------------------------

    @property
    def is_running(self) -> bool:
        return self.state == OptimizerState.STEPPING

    def reset(self) -> None:
        """Discard all progress and return to UNINITIALIZED."""
        if self.state != OptimizerState.UNINITIALIZED:
            logger.debug(f"Optimizer reset at epoch {self.epoch}/{self.total_epochs}")
        self._reset_state()

    def cancel(self) -> None:
        """Stop stepping immediately. Alias of ``reset``; there is no partial commit."""
        self.reset()

    def configure(self, **changes) -> None:
        """Change parameters. Any actual change forces a hard reset."""
        updated = replace(self.config, **changes).clamped()
        if updated == self.config:
            return
        self.config = updated
        self._a, self._b = find_ab_params(updated.min_dist, updated.spread)
        logger.info(f"Optimizer reconfigured: {changes}")
        self.reset()

    def initialize(self, embeddings, seed: int | None = None) -> LayoutResult:
        """Build the neighbor graph and the seeded initial embedding.

        Re-initializing with the same embeddings and parameters is a no-op;
        anything else resets first. With fewer than 2 points the optimizer
        goes straight to CONVERGED with an empty result.

        Args:
            embeddings: N vectors of equal dimension
            seed: Overrides ``config.seed``

        Returns:
            The epoch-0 result
        """
        if seed is not None and seed != self.config.seed:
            self.configure(seed=seed)

        n_points = len(embeddings)
        key = embeddings_key(embeddings, self.config.as_params()) if n_points else "0:"
        if key == self.input_key and self.state != OptimizerState.UNINITIALIZED:
            return self.result()

        self.reset()
        self.input_key = key

        if self.cache is not None:
            cached = self.cache.get(key)
            if cached is not None:
                logger.info(f"Layout cache hit for {n_points} points")
                self.seed_from_snapshot(cached)
                return self.result()

        if n_points < 2:
            return self._finish_empty()

        self.state = OptimizerState.INITIALIZING
        graph = build_fuzzy_graph(embeddings, self.config.n_neighbors)
        return self.initialize_graph(graph, key=key)

    def initialize_graph(self, graph: FuzzyGraph, key: str | None = None) -> LayoutResult:
        """Initialize from a prebuilt fuzzy graph (e.g. built from precomputed distances)."""
        if self.state not in (OptimizerState.UNINITIALIZED, OptimizerState.INITIALIZING):
            self.reset()
        self.input_key = key
        if graph.n_nodes < 2:
            return self._finish_empty()

        self.state = OptimizerState.INITIALIZING
        n = graph.n_nodes
        self.total_epochs = self.config.epochs
        self.epoch = 0

        self._set_edges(graph.edges(epoch_cutoff(graph, self.total_epochs)), n)
        self._embedding = self._rng.uniform(-INIT_EXTENT, INIT_EXTENT, size=(n, 2))
        self._positions = normalize_positions(self._embedding, self.config.target_radius)

        self.state = OptimizerState.STEPPING
        logger.info(
            f"Optimizer initialized: {n} points, {len(self._edges)} edges, "
            f"{self.total_epochs} epochs"
        )
        self._emit(LayoutEventKind.PROGRESS)
        return self.result()

    def seed_from_snapshot(self, snapshot: LayoutSnapshot) -> LayoutResult:
        """Load a finished layout and skip optimization entirely."""
        positions = unflatten_positions(snapshot.positions)
        self.state = OptimizerState.INITIALIZING
        self._embedding = positions.copy()
        self._positions = normalize_positions(positions, self.config.target_radius)
        self._set_edges(snapshot.weighted_edges(), len(positions))
        self.total_epochs = int(snapshot.params.get("epochs", self.config.epochs))
        self.epoch = self.total_epochs
        self.state = OptimizerState.CONVERGED
        self._emit(LayoutEventKind.COMPLETE)
        return self.result()

    def _finish_empty(self) -> LayoutResult:
        self._set_edges([], 0)
        self.state = OptimizerState.CONVERGED
        self._emit(LayoutEventKind.COMPLETE)
        return self.result()

    def _set_edges(self, edges: list[WeightedEdge], n_nodes: int) -> None:
        self._edges = [e for e in edges if e.source < n_nodes and e.target < n_nodes]
        self._edges_version += 1
        edges = self._edges
        n = n_nodes
        self._heads = np.array([e.source for e in edges], dtype=np.int64)
        self._tails = np.array([e.target for e in edges], dtype=np.int64)
        self._weights = np.array([e.weight for e in edges], dtype=np.float64)
        n = max(n, 1)
        self._edge_codes = np.unique(
            np.concatenate([self._heads * n + self._tails, self._tails * n + self._heads])
        )
        self._code_base = n

    # -- stepping ------------------------------------------------------

    def step(self, n_epochs: int | None = None) -> LayoutResult:
        """Run one small batch of epochs and return control.

        Args:
            n_epochs: Batch size (defaults to ``config.steps_per_frame``)

        Returns:
            Current result after the batch

        Raises:
            LayoutStateError: If called before ``initialize``
        """
        if self.state in (OptimizerState.UNINITIALIZED, OptimizerState.INITIALIZING):
            raise LayoutStateError("step() called before initialize()")
        if self.state == OptimizerState.CONVERGED:
            return self.result()

        batch = max(1, n_epochs or self.config.steps_per_frame)
        stepped = 0
        while stepped < batch and self.epoch < self.total_epochs:
            self._run_epoch()
            self.epoch += 1
            stepped += 1

        if not np.all(np.isfinite(self._embedding)):
            logger.error(f"Non-finite coordinates at epoch {self.epoch}, resetting them to origin")
            self._embedding = np.nan_to_num(self._embedding, nan=0.0, posinf=0.0, neginf=0.0)
            self._emit(LayoutEventKind.ERROR, "Non-finite coordinates replaced")

        self._positions = normalize_positions(self._embedding, self.config.target_radius)
        self._since_render += stepped

        if self.epoch >= self.total_epochs:
            self.state = OptimizerState.CONVERGED
            logger.info(f"Optimizer converged after {self.epoch} epochs")
            self._emit(LayoutEventKind.PROGRESS)
            self._emit(LayoutEventKind.COMPLETE)
            if self.cache is not None and self.input_key:
                self.cache.put(self.input_key, self.snapshot())
        elif self._since_render >= self.config.render_interval:
            self._since_render = 0
            self._emit(LayoutEventKind.PROGRESS)

        return self.result()

    def run(self) -> LayoutResult:
        """Step until converged. For batch scripts and tests."""
        while self.state == OptimizerState.STEPPING:
            self.step()
        return self.result()

    def _run_epoch(self) -> None:
        y = self._embedding
        n = len(y)
        lr = front_loaded_rate(
            self.epoch, self.total_epochs,
            self.config.learning_rate, self.config.front_loaded_fraction,
        )
        if lr <= 0:
            return
        a, b = self._a, self._b
        delta = np.zeros_like(y)

        if len(self._heads):
            diff = y[self._heads] - y[self._tails]
            dist_sq = np.maximum(np.sum(diff ** 2, axis=1), 1e-10)
            coeff = -2.0 * a * b * dist_sq ** (b - 1.0) / (1.0 + a * dist_sq ** b)
            coeff *= self.config.attraction_strength * self._weights
            exclusion = self.config.min_dist * self.config.min_attractive_scale
            if exclusion > 0:
                coeff *= np.clip(np.sqrt(dist_sq) / exclusion, 0.0, 1.0)
            grad = np.clip(coeff[:, None] * diff, -GRADIENT_CLIP, GRADIENT_CLIP)
            np.add.at(delta, self._heads, lr * grad)
            np.add.at(delta, self._tails, -lr * grad)

        rate = self.config.negative_sample_rate
        if rate and n > 1 and self.config.repulsion_strength > 0:
            sources = np.repeat(np.arange(n), rate)
            samples = self._rng.integers(0, n, size=n * rate)
            codes = sources * self._code_base + samples
            keep = (samples != sources) & ~np.isin(codes, self._edge_codes)
            sources, samples = sources[keep], samples[keep]
            diff = y[sources] - y[samples]
            dist_sq = np.sum(diff ** 2, axis=1)
            coeff = 2.0 * b / ((REPULSION_EPSILON + dist_sq) * (1.0 + a * np.maximum(dist_sq, 1e-10) ** b))
            coeff *= self.config.repulsion_strength
            grad = np.clip(coeff[:, None] * diff, -GRADIENT_CLIP, GRADIENT_CLIP)
            np.add.at(delta, sources, lr * grad)

        self._embedding = y + delta

    # -- output --------------------------------------------------------

    @property
    def positions(self) -> np.ndarray:
        """Normalized flat float32 positions ``[x0, y0, x1, y1, ...]``."""
        return flatten_positions(self._positions)

    @property
    def initial_embedding(self) -> np.ndarray:
        """Raw (unnormalized) current embedding, (N, 2)."""
        return self._embedding.copy()

    def result(self) -> LayoutResult:
        """Snapshot of current positions and edges with measured rest lengths."""
        return LayoutResult(
            positions=self.positions,
            edges=measure_rest_lengths(self._edges, self._positions),
            epoch=self.epoch,
            total_epochs=self.total_epochs,
            is_running=self.is_running,
            edges_version=self._edges_version,
        )

    def snapshot(self, node_ids: list[str] | None = None) -> LayoutSnapshot:
        """Export the current layout as a serializable snapshot."""
        return LayoutSnapshot.from_edges(
            measure_rest_lengths(self._edges, self._positions),
            node_ids=list(node_ids or []),
            positions=[float(v) for v in self.positions],
            params=self.config.as_params(),
            cache_key=self.input_key,
        )

    def _emit(self, kind: LayoutEventKind, message: str | None = None) -> None:
        self.events.emit(
            LayoutEvent(
                kind=kind,
                epoch=self.epoch,
                total_epochs=self.total_epochs,
                message=message,
            )
        )
