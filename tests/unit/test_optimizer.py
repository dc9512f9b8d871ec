"""Unit tests for the steppable layout optimizer."""

import numpy as np
import pytest

from semmap.errors import LayoutStateError
from semmap.layout import (
    LayoutCache,
    LayoutEventKind,
    LayoutSnapshot,
    OptimizerConfig,
    OptimizerState,
    UmapOptimizer,
    build_fuzzy_graph,
    find_ab_params,
    front_loaded_rate,
)


@pytest.fixture
def config() -> OptimizerConfig:
    """Small, fast configuration."""
    return OptimizerConfig(n_neighbors=10, epochs=40, steps_per_frame=10, render_interval=10)


def radii(flat: np.ndarray) -> np.ndarray:
    points = np.asarray(flat, dtype=np.float64).reshape(-1, 2)
    centered = points - points.mean(axis=0)
    return np.hypot(centered[:, 0], centered[:, 1])


class TestOptimizerLifecycle:
    """Tests for optimizer state transitions."""

    def test_step_before_initialize(self, config: OptimizerConfig) -> None:
        """Test stepping an uninitialized optimizer raises."""
        with pytest.raises(LayoutStateError):
            UmapOptimizer(config).step()

    def test_initialize_and_step(self, config: OptimizerConfig, random_embeddings: np.ndarray) -> None:
        """Test a step advances by one batch and returns control."""
        optimizer = UmapOptimizer(config)
        result = optimizer.initialize(random_embeddings)
        assert optimizer.state == OptimizerState.STEPPING
        assert result.epoch == 0
        assert result.n_points == 50

        result = optimizer.step()
        assert result.epoch == 10
        assert result.is_running
        assert result.progress == pytest.approx(0.25)

    def test_run_converges(self, config: OptimizerConfig, random_embeddings: np.ndarray) -> None:
        """Test run() ends in CONVERGED at total epochs."""
        optimizer = UmapOptimizer(config)
        optimizer.initialize(random_embeddings)
        result = optimizer.run()
        assert optimizer.state == OptimizerState.CONVERGED
        assert result.epoch == 40
        assert not result.is_running
        # Stepping a converged optimizer is a no-op
        assert optimizer.step().epoch == 40

    def test_too_few_points(self, config: OptimizerConfig, mock_observer) -> None:
        """Test fewer than 2 points completes immediately with an empty result."""
        optimizer = UmapOptimizer(config, observers=[mock_observer])
        result = optimizer.initialize([[1.0, 2.0, 3.0]])
        assert optimizer.state == OptimizerState.CONVERGED
        assert result.n_points == 0
        assert result.edges == []
        kinds = [c.args[0].kind for c in mock_observer.on_event.call_args_list]
        assert kinds == [LayoutEventKind.COMPLETE]

    def test_reinitialize_same_input_is_noop(
        self, config: OptimizerConfig, random_embeddings: np.ndarray
    ) -> None:
        """Test same embeddings do not restart a running layout."""
        optimizer = UmapOptimizer(config)
        optimizer.initialize(random_embeddings)
        optimizer.step()
        optimizer.initialize(random_embeddings)
        assert optimizer.epoch == 10

    def test_configure_resets(self, config: OptimizerConfig, random_embeddings: np.ndarray) -> None:
        """Test any parameter change hard-resets."""
        optimizer = UmapOptimizer(config)
        optimizer.initialize(random_embeddings)
        optimizer.step()
        optimizer.configure(min_dist=0.3)
        assert optimizer.state == OptimizerState.UNINITIALIZED
        assert optimizer.epoch == 0

    def test_configure_same_value_keeps_progress(
        self, config: OptimizerConfig, random_embeddings: np.ndarray
    ) -> None:
        """Test an unchanged configure() call keeps progress."""
        optimizer = UmapOptimizer(config)
        optimizer.initialize(random_embeddings)
        optimizer.step()
        optimizer.configure(min_dist=config.min_dist)
        assert optimizer.epoch == 10

    def test_reset_reproduces_initial_embedding(
        self, config: OptimizerConfig, random_embeddings: np.ndarray
    ) -> None:
        """Test reset then initialize yields the same epoch-0 embedding."""
        optimizer = UmapOptimizer(config)
        optimizer.initialize(random_embeddings)
        first = optimizer.initial_embedding
        optimizer.step()
        optimizer.reset()
        optimizer.initialize(random_embeddings)
        np.testing.assert_array_equal(optimizer.initial_embedding, first)


class TestOptimizerOutput:
    """Tests for positions and edges."""

    def test_positions_normalized(self, config: OptimizerConfig, random_embeddings: np.ndarray) -> None:
        """Test the farthest point sits exactly at target_radius from the centroid."""
        optimizer = UmapOptimizer(config)
        optimizer.initialize(random_embeddings)
        for _ in range(2):
            result = optimizer.step()
            assert result.positions.dtype == np.float32
            assert radii(result.positions).max() == pytest.approx(500.0, rel=1e-4)
        result = optimizer.run()
        assert radii(result.positions).max() == pytest.approx(500.0, rel=1e-4)

    def test_positions_finite(self, config: OptimizerConfig, random_embeddings: np.ndarray) -> None:
        """Test no NaN or infinite coordinates."""
        optimizer = UmapOptimizer(config)
        optimizer.initialize(random_embeddings)
        assert np.all(np.isfinite(optimizer.run().positions))

    def test_edges_have_rest_lengths(self, config: OptimizerConfig, random_embeddings: np.ndarray) -> None:
        """Test edges carry measured rest lengths and source < target."""
        optimizer = UmapOptimizer(config)
        result = optimizer.initialize(random_embeddings)
        assert result.edges
        for edge in result.edges:
            assert edge.source < edge.target
            assert edge.rest_length is not None and edge.rest_length >= 0

    def test_clusters_separate(self, config: OptimizerConfig, clustered_embeddings: np.ndarray) -> None:
        """Test points from one cluster end closer together than points from different clusters."""
        optimizer = UmapOptimizer(OptimizerConfig(n_neighbors=5, epochs=200))
        optimizer.initialize(clustered_embeddings)
        points = np.asarray(optimizer.run().positions, dtype=np.float64).reshape(-1, 2)
        centers = points.reshape(5, 10, 2).mean(axis=1)
        spread = np.mean([
            np.hypot(*(points[c * 10:(c + 1) * 10] - centers[c]).T).mean() for c in range(5)
        ])
        gaps = [np.hypot(*(centers[a] - centers[b])) for a in range(5) for b in range(a + 1, 5)]
        assert spread < np.mean(gaps)

    def test_initialize_graph(self, config: OptimizerConfig, random_embeddings: np.ndarray) -> None:
        """Test initializing from a prebuilt graph."""
        optimizer = UmapOptimizer(config)
        optimizer.initialize_graph(build_fuzzy_graph(random_embeddings, 10))
        assert optimizer.state == OptimizerState.STEPPING
        assert optimizer.result().n_points == 50


class TestOptimizerEvents:
    """Tests for progress reporting."""

    def test_progress_and_complete(
        self, config: OptimizerConfig, random_embeddings: np.ndarray, mock_observer
    ) -> None:
        """Test observers get progress events and one completion."""
        optimizer = UmapOptimizer(config, observers=[mock_observer])
        optimizer.initialize(random_embeddings)
        optimizer.run()
        kinds = [c.args[0].kind for c in mock_observer.on_event.call_args_list]
        assert kinds.count(LayoutEventKind.COMPLETE) == 1
        assert kinds[-1] == LayoutEventKind.COMPLETE
        assert LayoutEventKind.PROGRESS in kinds


class TestOptimizerCache:
    """Tests for snapshot seeding and the session cache."""

    def test_cache_hit_skips_optimization(
        self, config: OptimizerConfig, random_embeddings: np.ndarray
    ) -> None:
        """Test a second optimizer with the same input starts converged."""
        cache = LayoutCache(max_entries=2)
        first = UmapOptimizer(config, cache=cache)
        first.initialize(random_embeddings)
        done = first.run()
        assert len(cache) == 1

        second = UmapOptimizer(config, cache=cache)
        result = second.initialize(random_embeddings)
        assert second.state == OptimizerState.CONVERGED
        assert cache.hits == 1
        np.testing.assert_allclose(result.positions, done.positions, rtol=1e-4, atol=0.1)

    def test_seed_from_snapshot(self, config: OptimizerConfig) -> None:
        """Test a snapshot seeds positions and edges without stepping."""
        snapshot = LayoutSnapshot(
            positions=[0.0, 0.0, 10.0, 0.0, 0.0, 10.0],
            edges=[{"source": 0, "target": 1, "weight": 1.0}],
            params={"epochs": 40},
        )
        optimizer = UmapOptimizer(config)
        result = optimizer.seed_from_snapshot(snapshot)
        assert optimizer.state == OptimizerState.CONVERGED
        assert result.n_points == 3
        assert [(e.source, e.target) for e in result.edges] == [(0, 1)]
        assert radii(result.positions).max() == pytest.approx(500.0, rel=1e-4)


class TestSchedules:
    """Tests for the curve fit and learning-rate schedule."""

    def test_ab_params(self) -> None:
        """Test the kernel fit is positive and flattens with a wider spread."""
        a1, b1 = find_ab_params(0.0, 1.0)
        a2, b2 = find_ab_params(0.0, 2.0)
        assert a1 > 0 and b1 > 0
        assert b2 == pytest.approx(b1)
        assert a2 < a1

    def test_front_loaded_rate(self) -> None:
        """Test full rate during the hold, decaying to zero afterwards."""
        assert front_loaded_rate(0, 100, 1.0, 0.2) == 1.0
        assert front_loaded_rate(19, 100, 1.0, 0.2) == 1.0
        assert 0.0 < front_loaded_rate(60, 100, 1.0, 0.2) < 1.0
        assert front_loaded_rate(100, 100, 1.0, 0.2) == pytest.approx(0.0)

    def test_config_clamps(self) -> None:
        """Test out-of-range parameters are clamped, not rejected."""
        config = OptimizerConfig(spread=0.0, min_dist=-1.0, epochs=0).clamped()
        assert config.spread > 0
        assert config.min_dist == 0.0
        assert config.epochs == 1
