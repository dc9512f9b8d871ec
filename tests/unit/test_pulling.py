"""Unit tests for viewport-edge pulling."""

import pytest

from semmap.models import WeightedEdge, build_adjacency
from semmap.physics import (
    Bounds,
    PullState,
    ViewportZones,
    clamp_to_bounds,
    compress_distance,
    compute_content_pull_state,
    compute_pull_state,
    id_adjacency,
    is_in_cliff_zone,
)


@pytest.fixture
def zones() -> ViewportZones:
    """1000x1000 world units on a 1000px canvas, camera at the origin."""
    return ViewportZones.from_camera(0.0, 0.0, 1000.0, 1000.0, 1000.0)


@pytest.fixture
def positions() -> dict:
    return {
        "a": (0.0, 0.0),
        "b": (490.0, 0.0),
        "c": (2000.0, 0.0),
        "d": (0.0, 3000.0),
        "e": (-3000.0, 0.0),
        "f": (-495.0, 0.0),
    }


@pytest.fixture
def adjacency() -> dict:
    return {
        "a": [("b", 0.8), ("c", 0.9), ("d", 0.5), ("e", 0.1)],
        "b": [("a", 0.8)],
        "c": [("a", 0.9)],
        "d": [("a", 0.5)],
        "e": [("a", 0.1)],
    }


class TestViewportZones:
    """Tests for zone geometry."""

    def test_from_camera(self, zones: ViewportZones) -> None:
        """Test pull line, UI margin and overscan in world units."""
        assert zones.world_per_px == 1.0
        assert zones.viewport == Bounds(-500.0, -500.0, 500.0, 500.0)
        assert zones.pull_bounds == Bounds(-465.0, -475.0, 475.0, 465.0)
        assert zones.focus_pull_bounds == Bounds(-410.0, -420.0, 420.0, 410.0)
        assert zones.extended_viewport == Bounds(-540.0, -540.0, 540.0, 540.0)

    def test_scales_with_zoom(self) -> None:
        """Test pixel margins grow in world units when zoomed out."""
        zones = ViewportZones.from_camera(0.0, 0.0, 2000.0, 2000.0, 1000.0)
        assert zones.world_per_px == 2.0
        assert zones.pull_bounds.max_x == pytest.approx(1000.0 - 50.0)

    def test_from_perspective(self) -> None:
        """Test a 90 degree camera sees twice its height."""
        zones = ViewportZones.from_perspective(0.0, 0.0, 100.0, 90.0, 1000.0, 500.0)
        assert zones.viewport.height == pytest.approx(200.0)
        assert zones.viewport.width == pytest.approx(400.0)


class TestGeometry:
    """Tests for clamping and compression helpers."""

    def test_clamp_preserves_direction(self, zones: ViewportZones) -> None:
        """Test the ray from the camera is cut at the first edge."""
        assert clamp_to_bounds(1000.0, 0.0, 0.0, 0.0, zones.pull_bounds) == pytest.approx((475.0, 0.0))
        x, y = clamp_to_bounds(1000.0, 1000.0, 0.0, 0.0, zones.pull_bounds)
        assert (x, y) == pytest.approx((465.0, 465.0))

    def test_clamp_at_camera(self, zones: ViewportZones) -> None:
        """Test a point on the camera is returned unchanged."""
        assert clamp_to_bounds(0.0, 0.0, 0.0, 0.0, zones.pull_bounds) == (0.0, 0.0)

    def test_cliff_zone(self, zones: ViewportZones) -> None:
        """Test the band between the pull line and the edge is the cliff zone."""
        assert is_in_cliff_zone(490.0, 0.0, zones.pull_bounds)
        assert not is_in_cliff_zone(0.0, 0.0, zones.pull_bounds)

    def test_compress_distance(self) -> None:
        """Test distances past the start approach but never reach the horizon."""
        assert compress_distance(50.0, 100.0, 200.0) == 50.0
        far = compress_distance(10_000.0, 100.0, 200.0)
        near = compress_distance(120.0, 100.0, 200.0)
        assert 100.0 < near < far < 200.0 + 1e-9


class TestComputePullState:
    """Tests for the three pull phases."""

    def test_primary_and_cliff(self, zones, positions, adjacency) -> None:
        """Test on-screen nodes are primary and cliff nodes are clamped."""
        state = compute_pull_state(positions, zones, adjacency, max_pulled=1, similarity_threshold=0.3)
        assert state.primary == {"a"}
        b = state.pulled["b"]
        assert (b.x, b.y) == pytest.approx((475.0, 0.0))
        assert (b.real_x, b.real_y) == (490.0, 0.0)
        assert b.connected_primary_ids == ["a"]

    def test_cap_keeps_most_similar(self, zones, positions, adjacency) -> None:
        """Test the pulled-neighbor cap prefers the highest similarity."""
        state = compute_pull_state(positions, zones, adjacency, max_pulled=1, similarity_threshold=0.3)
        assert "c" in state.pulled
        assert "d" not in state.pulled
        assert state.pulled["c"].connected_primary_ids == ["a"]
        assert (state.pulled["c"].x, state.pulled["c"].y) == pytest.approx((475.0, 0.0))

    def test_threshold_filters(self, zones, positions, adjacency) -> None:
        """Test neighbors below the similarity threshold are never pulled."""
        state = compute_pull_state(positions, zones, adjacency, max_pulled=10, similarity_threshold=0.3)
        assert {"c", "d"} <= set(state.pulled)
        assert "e" not in state.pulled

    def test_dead_pull_dropped(self, zones, positions, adjacency) -> None:
        """Test a cliff node with no on-screen neighbor is dropped."""
        state = compute_pull_state(positions, zones, adjacency, max_pulled=10)
        assert "f" not in state.pulled
        assert not state.is_visible("f")

    def test_scrolled_off_anchor_drops_pull(self, zones, positions, adjacency) -> None:
        """Test a pulled node is dropped once its only primary scrolls away."""
        state = compute_pull_state(positions, zones, adjacency, max_pulled=10, similarity_threshold=0.3)
        assert {"b", "c"} <= set(state.pulled)

        moved = ViewportZones.from_camera(0.0, 3000.0, 1000.0, 1000.0, 1000.0)
        state = compute_pull_state(positions, moved, adjacency, max_pulled=10, similarity_threshold=0.3)
        assert state.primary == {"d"}
        assert "b" not in state.pulled
        assert "c" not in state.pulled

        state = compute_pull_state(
            positions, moved, adjacency, max_pulled=10,
            content_driven_ids=["c"], similarity_threshold=0.3,
        )
        assert "c" in state.pulled

    def test_tie_broken_by_connection_count(self, zones) -> None:
        """Test equal similarity prefers the candidate touching more primaries."""
        positions = {"p": (0.0, 0.0), "q": (10.0, 0.0), "x1": (2000.0, 0.0), "x2": (0.0, 2000.0)}
        adjacency = {
            "p": [("x1", 0.7), ("x2", 0.7)],
            "q": [("x2", 0.7)],
        }
        state = compute_pull_state(positions, zones, adjacency, max_pulled=1)
        assert set(state.pulled) == {"x2"}
        assert state.pulled["x2"].connected_primary_ids == ["p", "q"]

    def test_content_driven_reserves_slots(self, zones, positions, adjacency) -> None:
        """Test content-driven nodes take slots and are never dropped."""
        positions = {**positions, "g": (0.0, -5000.0)}
        state = compute_pull_state(
            positions, zones, adjacency, max_pulled=2,
            content_driven_ids=["g"], similarity_threshold=0.3,
        )
        assert "g" in state.pulled
        assert (state.pulled["g"].x, state.pulled["g"].y) == pytest.approx((0.0, -475.0))
        assert "c" in state.pulled
        assert "d" not in state.pulled

    def test_focused_node_fisheye(self, zones, positions, adjacency) -> None:
        """Test a far focused node is compressed inside the pull line and kept."""
        positions = {**positions, "h": (5000.0, 5000.0)}
        state = compute_pull_state(positions, zones, adjacency, focused_ids=["h"])
        h = state.pulled["h"]
        assert zones.pull_bounds.contains(h.x, h.y)
        assert h.connected_primary_ids == []

    def test_no_adjacency(self, zones, positions) -> None:
        """Test without adjacency only primaries survive."""
        state = compute_pull_state(positions, zones)
        assert state.primary == {"a"}
        assert state.pulled == {}

    def test_hints(self, zones, positions, adjacency) -> None:
        """Test display hints for pulled and primary nodes."""
        state = compute_pull_state(positions, zones, adjacency, max_pulled=1, similarity_threshold=0.3)
        assert state.scale_hint("c") == 0.6
        assert state.color_hint("c") == 0.4
        assert state.scale_hint("a") == 1.0
        assert state.display_position("a", (0.0, 0.0)) == (0.0, 0.0)
        assert state.display_position("c", (2000.0, 0.0)) == pytest.approx((475.0, 0.0))
        assert PullState().is_visible("a") is False


class TestContentPull:
    """Tests for pulling content nodes under visible keywords."""

    def test_content_pull(self, zones) -> None:
        """Test cliff children are pulled and off-screen children are capped."""
        content = {
            "c1": (490.0, 0.0),
            "c2": (0.0, 0.0),
            "c3": (3000.0, 0.0),
            "c4": (0.0, -3000.0),
            "c5": (-3000.0, 0.0),
        }
        parents = {"c1": ["a"], "c2": ["a"], "c3": ["a"], "c4": ["a"], "c5": ["z"]}
        pulled = compute_content_pull_state(content, parents, {"a"}, zones, max_pulled=1)
        assert set(pulled) == {"c1", "c3"}
        assert pulled["c3"].connected_primary_ids == ["a"]
        assert zones.pull_bounds.contains(pulled["c3"].x, pulled["c3"].y)


class TestIdAdjacency:
    """Tests for index to id re-keying."""

    def test_rekey(self) -> None:
        """Test indices become ids with weights kept."""
        adjacency = build_adjacency([WeightedEdge(0, 1, 0.5)], n_nodes=2)
        result = id_adjacency(["kw:a", "kw:b"], adjacency)
        assert result["kw:a"] == [("kw:b", 0.5)]
        assert result["kw:b"] == [("kw:a", 0.5)]
