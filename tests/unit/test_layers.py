"""Unit tests for the collision, tether, focus and click-focus layers."""

import math

import numpy as np
import pytest

from semmap.physics import (
    Bounds,
    ClickFocusSimilarityLayer,
    CollisionLayer,
    FocusManifoldLayer,
    ManifoldParams,
    ParentTetherLayer,
    bfs_shortest_path,
    compute_bfs_neighborhood,
    compute_dual_focus_neighborhood,
    max_tether_distance,
)
from semmap.physics.focus import PRIORITY_DISTANCE_FACTOR, PRIORITY_LINK_STRENGTH
from semmap.physics.similarity import similarity_link_distance, similarity_link_strength


class TestCollisionLayer:
    """Tests for hover-dependent collision radii."""

    def test_hover_scales_radius(self) -> None:
        """Test the hovered node's radius is scaled and others are not."""
        layer = CollisionLayer(np.zeros((3, 2)), radius=20.0, hover_scale=2.0)
        layer.set_hovered(1)
        np.testing.assert_array_equal(layer.collide.radii, [20.0, 40.0, 20.0])
        layer.set_hovered(1, 3.0)
        assert layer.collide.radii[1] == 60.0
        layer.set_hovered(None)
        np.testing.assert_array_equal(layer.collide.radii, [20.0, 20.0, 20.0])

    def test_hover_reheats(self) -> None:
        """Test a hover change wakes a cooled simulation."""
        layer = CollisionLayer(np.zeros((2, 2)), radius=5.0)
        layer.simulation.alpha = 0.0
        layer.set_hovered(0)
        assert layer.simulation.alpha >= 0.3
        assert layer.is_active

    def test_multiplier_and_radius_function(self) -> None:
        """Test a per-node radius function combined with the multiplier."""
        layer = CollisionLayer(np.zeros((2, 2)), radius=lambda i: 10.0 * (i + 1))
        layer.set_multiplier(0.5)
        np.testing.assert_array_equal(layer.collide.radii, [5.0, 10.0])

    def test_follows_base(self) -> None:
        """Test nodes move with their base rows while pinned nodes stay."""
        base = np.array([[0.0, 0.0], [500.0, 0.0], [0.0, 500.0]])
        layer = CollisionLayer(base, radius=10.0)
        layer.simulation.fix(2, 0.0, 500.0)
        layer.simulation.alpha = 0.0
        layer.follow_base(base + [300.0, -50.0])
        np.testing.assert_allclose(layer.positions(), [[300.0, -50.0], [800.0, -50.0], [0.0, 500.0]])
        assert layer.is_active

    def test_static_base_is_not_a_move(self) -> None:
        """Test an unchanged base neither moves nor reheats the layer."""
        base = np.array([[0.0, 0.0], [500.0, 0.0]])
        layer = CollisionLayer(base, radius=10.0)
        layer.simulation.alpha = 0.0
        layer.follow_base(base)
        np.testing.assert_array_equal(layer.positions(), base)
        assert not layer.is_active

    def test_separates_nodes(self) -> None:
        """Test stepping pushes overlapping nodes apart."""
        layer = CollisionLayer(np.array([[0.0, 0.0], [1.0, 0.0]]), radius=10.0)
        for _ in range(100):
            layer.step()
        x = layer.positions()
        assert np.hypot(*(x[0] - x[1])) > 10.0


class TestParentTether:
    """Tests for the parent tether layer."""

    def test_max_distance_formula(self) -> None:
        """Test max distance grows with the square root of the sibling count."""
        assert max_tether_distance(20, 8, 4, multiplier=2.5, spread_factor=1.5) == pytest.approx(
            20 * 2.5 + 2 * 8 * 1.5
        )
        assert max_tether_distance(20, 8, 0, 2.5, 1.5) == pytest.approx(50.0)

    @pytest.mark.parametrize("siblings", [1, 4, 9])
    def test_children_within_max_distance(self, siblings: int) -> None:
        """Test every child stays within the bound on every tick."""
        layer = ParentTetherLayer(
            np.array([[0.0, 0.0]]),
            [[0]] * siblings,
            parent_radius=20.0,
            child_radius=8.0,
            multiplier=2.5,
            spread_factor=1.5,
        )
        limit = 20.0 * 2.5 + math.sqrt(siblings) * 8.0 * 1.5
        assert layer.max_distances[0] == pytest.approx(limit)
        for _ in range(60):
            layer.simulation.tick()
            dists = np.hypot(*layer.positions().T)
            assert np.all(dists <= limit + 1e-9)

    def test_clamp_after_parent_moves(self) -> None:
        """Test moving the parent clamps far-away children immediately."""
        layer = ParentTetherLayer(np.array([[0.0, 0.0]]), [[0], [0]], 20.0, 8.0, 2.5, 1.5)
        layer.update_parents(np.array([[1000.0, 0.0]]))
        dists = np.hypot(*(layer.positions() - [1000.0, 0.0]).T)
        assert np.all(dists <= layer.max_distances[0] + 1e-9)
        assert layer.is_active

    def test_step_follows_parent_rows(self) -> None:
        """Test stepping with a base re-anchors on the parents' base rows."""
        layer = ParentTetherLayer(
            np.array([[0.0, 0.0]]), [[0], [0], [0]], 20.0, 8.0, 2.5, 1.5, parent_rows=[2]
        )
        layer.step(np.array([[9.0, 9.0], [9.0, 9.0], [1000.0, 0.0]]))
        np.testing.assert_array_equal(layer.parent_positions, [[1000.0, 0.0]])
        dists = np.hypot(*(layer.positions() - [1000.0, 0.0]).T)
        assert np.all(dists <= layer.max_distances[0] + 1e-9)

    def test_step_ignores_unrelated_base(self) -> None:
        """Test a base that does not match the parent count leaves the parents alone."""
        layer = ParentTetherLayer(np.array([[0.0, 0.0]]), [[0]], 20.0, 8.0, 2.5, 1.5)
        layer.step(np.array([[500.0, 0.0], [600.0, 0.0]]))
        np.testing.assert_array_equal(layer.parent_positions, [[0.0, 0.0]])

    def test_multiple_parents_clamp_to_nearest(self) -> None:
        """Test a child with two parents is bounded by the nearer one."""
        parents = np.array([[0.0, 0.0], [300.0, 0.0]])
        layer = ParentTetherLayer(parents, [[0, 1]], 20.0, 8.0, 2.5, 1.5)
        layer.simulation.run(200)
        x = layer.positions()[0]
        nearest = min(np.hypot(*(x - p)) for p in parents)
        assert nearest <= layer.max_distance_of(0) + 1e-9

    def test_orphans(self) -> None:
        """Test a child without valid parents has no bound."""
        layer = ParentTetherLayer(np.array([[0.0, 0.0]]), [[5]])
        assert layer.max_distance_of(0) is None
        assert layer.max_distance_of(3) is None


class TestFocusNeighborhood:
    """Tests for BFS lenses."""

    def test_bfs_depths(self, path_adjacency) -> None:
        """Test hop depths up to max_hops."""
        focus = compute_bfs_neighborhood([0], path_adjacency, max_hops=2)
        assert focus.node_set == frozenset({0, 1, 2})
        assert focus.depth(2) == 2
        assert focus.depth(3) is None
        assert focus.focus_index == 0

    def test_isolated_and_invalid_seeds(self, path_adjacency) -> None:
        """Test isolated seeds yield just themselves and negatives are ignored."""
        assert compute_bfs_neighborhood([5], path_adjacency).node_set == frozenset({5})
        assert compute_bfs_neighborhood([-1], path_adjacency).is_empty

    def test_shortest_path(self, path_adjacency) -> None:
        """Test unweighted shortest paths."""
        assert bfs_shortest_path(0, 4, path_adjacency) == [0, 1, 2, 3, 4]
        assert bfs_shortest_path(0, 4, path_adjacency, max_depth=2) is None
        assert bfs_shortest_path(0, 5, path_adjacency) is None
        assert bfs_shortest_path(2, 2, path_adjacency) == [2]

    def test_dual_focus_includes_path(self, path_adjacency) -> None:
        """Test the two lenses are joined by the path between the seeds."""
        focus = compute_dual_focus_neighborhood(0, 4, path_adjacency, max_hops=1)
        assert focus.node_set == frozenset({0, 1, 2, 3, 4})
        assert focus.depth(2) == 2
        assert focus.depth(1) == 1
        assert focus.focus_indices == (0, 4)


class TestFocusManifold:
    """Tests for the focus manifold layer."""

    def make_layer(self, path_adjacency, bounds=None) -> FocusManifoldLayer:
        base = np.array([[i * 100.0, 0.0] for i in range(6)])
        focus = compute_bfs_neighborhood([2], path_adjacency, max_hops=1)
        return FocusManifoldLayer(base, focus, path_adjacency, compression_strength=1.0, bounds=bounds)

    def test_priority_links(self, path_adjacency) -> None:
        """Test links touching the seed are shorter and stiffer."""
        layer = self.make_layer(path_adjacency)
        link = layer.simulation.get_force("link")
        assert len(layer.links) == 2
        np.testing.assert_allclose(
            link.distances, [layer.params.link_distance * PRIORITY_DISTANCE_FACTOR] * 2
        )
        np.testing.assert_allclose(link.strengths, [PRIORITY_LINK_STRENGTH] * 2)

    def test_seed_anchor_stronger(self, path_adjacency) -> None:
        """Test the seed is anchored more strongly than other lens nodes."""
        layer = self.make_layer(path_adjacency)
        anchor = layer.simulation.get_force("anchor")
        seed_slot = layer.local[2]
        other_slot = layer.local[1]
        assert anchor.strengths[seed_slot] > anchor.strengths[other_slot]

    def test_bounds_hard_clamp(self, path_adjacency) -> None:
        """Test every lens node stays inside the bounds on every tick."""
        bounds = Bounds(100.0, -50.0, 300.0, 50.0)
        layer = self.make_layer(path_adjacency, bounds)
        for _ in range(30):
            layer.step()
            for x, y in layer.positions_by_index().values():
                assert bounds.contains(x, y)

    def test_update_bounds(self, path_adjacency) -> None:
        """Test replacing the bounds clamps immediately."""
        layer = self.make_layer(path_adjacency)
        bounds = Bounds(150.0, -10.0, 250.0, 10.0)
        layer.update_bounds(bounds)
        for x, y in layer.positions_by_index().values():
            assert bounds.contains(x, y)
        assert layer.simulation.bounds is bounds

    def test_follows_base(self, path_adjacency) -> None:
        """Test the lens and its anchors move with the base layout."""
        layer = self.make_layer(path_adjacency)
        before = layer.positions_by_index()
        anchors = layer.anchors.copy()
        base = np.array([[i * 100.0 + 50.0, 0.0] for i in range(6)])
        layer.follow_base(base)
        after = layer.positions_by_index()
        for index, (x, y) in before.items():
            assert after[index] == pytest.approx((x + 50.0, y))
        np.testing.assert_allclose(layer.anchors, anchors + [50.0, 0.0])
        np.testing.assert_allclose(layer.anchor.targets, layer.anchors)

    def test_apply_to_only_touches_lens(self, path_adjacency) -> None:
        """Test nodes outside the lens keep their base positions."""
        layer = self.make_layer(path_adjacency)
        for _ in range(10):
            layer.step()
        base = np.array([[i * 100.0, 0.0] for i in range(6)])
        out = layer.apply_to(base)
        np.testing.assert_array_equal(out[[0, 4, 5]], base[[0, 4, 5]])
        assert set(layer.positions_by_index()) == {1, 2, 3}

    def test_params_clamped(self) -> None:
        """Test compression strength is clamped into range."""
        assert ManifoldParams.from_compression(10.0).compression == 3.0
        assert ManifoldParams.from_compression(0.0).compression == 0.5


class TestClickFocusSimilarity:
    """Tests for the similarity-driven focus layer."""

    def test_link_parameters(self) -> None:
        """Test link distance and strength from similarity."""
        assert similarity_link_distance(1.0) == 60.0
        assert similarity_link_distance(0.0) == 240.0
        assert similarity_link_strength(1.0) == pytest.approx(0.85)

    def test_links_above_threshold(self) -> None:
        """Test only pairs with similarity >= 0.02 are linked."""
        base = np.zeros((3, 2))
        embeddings = [[1.0, 0.0], [1.0, 0.1], [0.0, 1.0]]
        layer = ClickFocusSimilarityLayer(base, {0, 1, 2}, embeddings)
        assert {(i, j) for i, j, _ in layer.links} == {(0, 1), (1, 2)}

    def test_missing_embeddings_get_no_links(self) -> None:
        """Test nodes without vectors are present but unlinked."""
        base = np.array([[0.0, 0.0], [10.0, 0.0], [20.0, 0.0]])
        layer = ClickFocusSimilarityLayer(base, {0, 1, 2, 9}, {0: [1.0, 0.0], 1: [1.0, 0.0]})
        assert layer.indices == [0, 1, 2]
        assert [(i, j) for i, j, _ in layer.links] == [(0, 1)]

    def test_hover_scales_radius(self) -> None:
        """Test hovering grows the collide radius and reheats."""
        layer = ClickFocusSimilarityLayer(np.zeros((2, 2)), {0, 1}, [[1.0, 0.0], [0.0, 1.0]], 10.0)
        layer.simulation.alpha = 0.0
        layer.set_hovered(1, 2.5)
        np.testing.assert_array_equal(layer.collide.radii, [10.0, 25.0])
        assert layer.simulation.alpha >= 0.5

    def test_follows_base(self) -> None:
        """Test focused nodes move with their base rows."""
        base = np.array([[0.0, 0.0], [100.0, 0.0], [0.0, 100.0]])
        layer = ClickFocusSimilarityLayer(base, {0, 2}, [[1.0, 0.0], [0.0, 1.0], [0.6, 0.8]])
        layer.follow_base(base + [0.0, 30.0])
        np.testing.assert_allclose(layer.positions(), [[0.0, 30.0], [0.0, 130.0]])

    def test_similar_nodes_end_closer(self) -> None:
        """Test highly similar nodes settle closer than dissimilar ones."""
        base = np.array([[0.0, 0.0], [150.0, 0.0], [0.0, 150.0]])
        embeddings = [[1.0, 0.0], [0.99, 0.14], [0.3, 0.95]]
        layer = ClickFocusSimilarityLayer(base, {0, 1, 2}, embeddings)
        layer.simulation.run(500)
        x = layer.positions()
        assert np.hypot(*(x[0] - x[1])) < np.hypot(*(x[0] - x[2]))
