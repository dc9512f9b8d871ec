"""Viewport-edge pulling.

Nodes just off screen that are one hop from an on-screen ("primary") node
are drawn clamped onto a pull line inside the viewport edge, the cliff zone,
instead of disappearing. The number of pulled neighbors is capped and the
most similar candidates win. Any pulled node left without an on-screen
anchor is dropped, except content-driven and focused nodes.

Pull state is recomputed from scratch whenever the camera moves.
"""

import logging
import math
from collections.abc import Hashable, Iterable, Mapping, Sequence
from dataclasses import dataclass, field

from semmap.config import settings
from semmap.models.graph import Adjacency
from semmap.physics.simulation import Bounds

logger = logging.getLogger(__name__)

PULL_LINE_PX = 25.0
FOCUS_PULL_LINE_PX = 80.0
UI_PROXIMITY_PX = 10.0
VIEWPORT_OVERSCAN_PX = 40.0

MAX_PULLED_NODES = 20
MAX_PULLED_CONTENT_NODES = 20

# Display hints for pulled nodes
PULLED_SCALE_FACTOR = 0.6
PULLED_COLOR_FACTOR = 0.4

LP_NORM_P = 6
COMPRESSION_STRENGTH = 2.0

NodeId = Hashable
Point = tuple[float, float]
IdAdjacency = Mapping[NodeId, Sequence[tuple[NodeId, float]]]


@dataclass(frozen=True)
class ViewportZones:
    """World-space rectangles derived from the camera.

    ``viewport`` is what is visible, ``pull_bounds`` the pull line where
    pulled nodes are placed, ``focus_pull_bounds`` an inner line where
    focused nodes start being compressed, and ``extended_viewport`` the
    visible area plus an overscan margin.
    """

    cam_x: float
    cam_y: float
    viewport: Bounds
    pull_bounds: Bounds
    focus_pull_bounds: Bounds
    extended_viewport: Bounds
    world_per_px: float

    @classmethod
    def from_camera(
        cls,
        cam_x: float,
        cam_y: float,
        visible_width: float,
        visible_height: float,
        canvas_width: float,
        pull_line_px: float | None = None,
        focus_pull_line_px: float | None = None,
        overscan_px: float | None = None,
    ) -> "ViewportZones":
        """Build zones from the visible world rectangle centered on the camera."""
        pull_line_px = settings.pull_line_px if pull_line_px is None else pull_line_px
        focus_pull_line_px = (
            settings.pull_focus_line_px if focus_pull_line_px is None else focus_pull_line_px
        )
        overscan_px = settings.pull_overscan_px if overscan_px is None else overscan_px

        world_per_px = visible_width / max(canvas_width, 1.0)
        half_w, half_h = visible_width / 2, visible_height / 2
        pull = pull_line_px * world_per_px
        focus_pull = focus_pull_line_px * world_per_px
        ui = UI_PROXIMITY_PX * world_per_px
        overscan = overscan_px * world_per_px

        left, right = cam_x - half_w, cam_x + half_w
        bottom, top = cam_y - half_h, cam_y + half_h

        # Extra UI margin on the left (sidebar) and top (header)
        return cls(
            cam_x=cam_x,
            cam_y=cam_y,
            viewport=Bounds(left, bottom, right, top),
            pull_bounds=Bounds(left + pull + ui, bottom + pull, right - pull, top - pull - ui),
            focus_pull_bounds=Bounds(
                left + focus_pull + ui, bottom + focus_pull, right - focus_pull, top - focus_pull - ui
            ),
            extended_viewport=Bounds(left - overscan, bottom - overscan, right + overscan, top + overscan),
            world_per_px=world_per_px,
        )

    @classmethod
    def from_perspective(
        cls,
        cam_x: float,
        cam_y: float,
        cam_z: float,
        fov_degrees: float,
        canvas_width: float,
        canvas_height: float,
    ) -> "ViewportZones":
        """Build zones for a perspective camera looking down at the z=0 plane."""
        visible_height = 2 * cam_z * math.tan(math.radians(fov_degrees) / 2)
        visible_width = visible_height * (canvas_width / max(canvas_height, 1.0))
        return cls.from_camera(cam_x, cam_y, visible_width, visible_height, canvas_width)


def clamp_to_bounds(x: float, y: float, cam_x: float, cam_y: float, bounds: Bounds) -> Point:
    """Project a point onto the rectangle along the ray from the camera.

    The ray from (cam_x, cam_y) through (x, y) is cut at the first edge it
    crosses, so direction from the camera is preserved.
    """
    dx, dy = x - cam_x, y - cam_y
    t = math.inf
    if dx > 0:
        t = min(t, (bounds.max_x - cam_x) / dx)
    elif dx < 0:
        t = min(t, (bounds.min_x - cam_x) / dx)
    if dy > 0:
        t = min(t, (bounds.max_y - cam_y) / dy)
    elif dy < 0:
        t = min(t, (bounds.min_y - cam_y) / dy)
    if t == math.inf:
        return x, y
    return cam_x + dx * t, cam_y + dy * t


def is_in_viewport(x: float, y: float, viewport: Bounds) -> bool:
    return viewport.contains(x, y)


def is_in_cliff_zone(x: float, y: float, pull_bounds: Bounds) -> bool:
    """True when the point lies outside the pull line."""
    return not pull_bounds.contains(x, y)


def compress_distance(
    distance: float,
    start: float,
    horizon: float,
    strength: float = COMPRESSION_STRENGTH,
) -> float:
    """Squash distances beyond ``start`` into ``[start, horizon)`` with tanh."""
    if distance <= start:
        return distance
    span = max(1.0, horizon - start)
    return start + span * math.tanh((distance - start) / span * strength)


def _directional_horizon(
    dx: float,
    dy: float,
    distance: float,
    half_width: float,
    half_height: float,
    p: int = LP_NORM_P,
) -> float:
    """Distance to a rounded-rectangle edge (Lp unit ball) along (dx, dy)."""
    if distance == 0:
        return 0.0
    nx = abs(dx) / max(half_width, 1e-9)
    ny = abs(dy) / max(half_height, 1e-9)
    lp = (nx ** p + ny ** p) ** (1.0 / p)
    return distance if lp == 0 else distance / lp


def apply_fisheye_compression(
    x: float,
    y: float,
    zones: ViewportZones,
    strength: float = COMPRESSION_STRENGTH,
) -> Point:
    """Pull a point toward the camera so it lands between the focus and pull lines."""
    dx, dy = x - zones.cam_x, y - zones.cam_y
    distance = math.hypot(dx, dy)
    if distance == 0:
        return x, y

    horizon = _directional_horizon(
        dx, dy, distance,
        zones.pull_bounds.max_x - zones.cam_x, zones.pull_bounds.max_y - zones.cam_y,
    )
    start = _directional_horizon(
        dx, dy, distance,
        zones.focus_pull_bounds.max_x - zones.cam_x, zones.focus_pull_bounds.max_y - zones.cam_y,
    )
    if distance <= start:
        return x, y

    ratio = compress_distance(distance, start, horizon, strength) / distance
    return zones.cam_x + dx * ratio, zones.cam_y + dy * ratio


def compute_pull_position(x: float, y: float, zones: ViewportZones, use_fisheye: bool) -> Point:
    """Where a pulled node is drawn: fisheye-compressed for focused nodes, ray-clamped otherwise."""
    if use_fisheye:
        cx, cy = apply_fisheye_compression(x, y, zones)
        pb = zones.pull_bounds
        return min(max(cx, pb.min_x), pb.max_x), min(max(cy, pb.min_y), pb.max_y)
    return clamp_to_bounds(x, y, zones.cam_x, zones.cam_y, zones.pull_bounds)


@dataclass
class PulledNode:
    """A node drawn at a clamped position instead of its real one."""

    x: float
    y: float
    real_x: float
    real_y: float
    connected_primary_ids: list[NodeId] = field(default_factory=list)


@dataclass
class PullState:
    """Result of one pull computation."""

    pulled: dict[NodeId, PulledNode] = field(default_factory=dict)
    primary: set[NodeId] = field(default_factory=set)

    def is_visible(self, node_id: NodeId) -> bool:
        return node_id in self.primary or node_id in self.pulled

    def display_position(self, node_id: NodeId, real: Point) -> Point:
        pulled = self.pulled.get(node_id)
        return (pulled.x, pulled.y) if pulled else real

    def scale_hint(self, node_id: NodeId) -> float:
        return PULLED_SCALE_FACTOR if node_id in self.pulled else 1.0

    def color_hint(self, node_id: NodeId) -> float:
        return PULLED_COLOR_FACTOR if node_id in self.pulled else 1.0


def id_adjacency(node_ids: Sequence[NodeId], adjacency: Adjacency) -> dict[NodeId, list[tuple[NodeId, float]]]:
    """Re-key an index adjacency map by node id, skipping out-of-range indices."""
    n = len(node_ids)
    result: dict[NodeId, list[tuple[NodeId, float]]] = {}
    for index, neighbors in adjacency.items():
        if not 0 <= index < n:
            continue
        result[node_ids[index]] = [
            (node_ids[nb.index], nb.weight) for nb in neighbors if 0 <= nb.index < n
        ]
    return result


def compute_pull_state(
    positions: Mapping[NodeId, Point],
    zones: ViewportZones,
    adjacency: IdAdjacency | None = None,
    max_pulled: int | None = None,
    content_driven_ids: Iterable[NodeId] = (),
    focused_ids: Iterable[NodeId] = (),
    similarity_threshold: float | None = None,
) -> PullState:
    """Decide which nodes are primary and which are pulled onto the pull line.

    Args:
        positions: Real layout position per node id
        zones: Current viewport zones
        adjacency: Neighbor id and similarity per node id
        max_pulled: Cap on pulled off-screen neighbors; content-driven nodes
            reserve slots out of the same budget
        content_driven_ids: Nodes anchored by visible content; never dropped
        focused_ids: Focused nodes; always shown, fisheye-compressed
        similarity_threshold: Neighbors below this similarity are not pulled

    Returns:
        Pulled map and primary set
    """
    max_pulled = settings.pull_max_nodes if max_pulled is None else max(0, max_pulled)
    threshold = (
        settings.pull_similarity_threshold if similarity_threshold is None else similarity_threshold
    )
    focused = set(focused_ids)
    content_driven = [i for i in dict.fromkeys(content_driven_ids)]
    state = PullState()

    # Phase 1: classify nodes near the viewport
    for node_id, (x, y) in positions.items():
        is_focused = node_id in focused
        if not is_focused and not is_in_viewport(x, y, zones.extended_viewport):
            continue

        if is_focused:
            px, py = compute_pull_position(x, y, zones, use_fisheye=True)
            if (px, py) != (x, y):
                state.pulled[node_id] = PulledNode(px, py, x, y)
            else:
                state.primary.add(node_id)
        elif not is_in_cliff_zone(x, y, zones.pull_bounds):
            state.primary.add(node_id)
        else:
            px, py = clamp_to_bounds(x, y, zones.cam_x, zones.cam_y, zones.pull_bounds)
            state.pulled[node_id] = PulledNode(px, py, x, y)

    # Phase 2: off-screen neighbors of primaries, best similarity first
    if adjacency:
        candidates: dict[NodeId, tuple[float, list[NodeId]]] = {}
        for primary_id in state.primary:
            for neighbor_id, similarity in adjacency.get(primary_id, ()):
                if neighbor_id in state.primary or neighbor_id in state.pulled:
                    continue
                if similarity < threshold:
                    continue
                real = positions.get(neighbor_id)
                if real is None or is_in_viewport(real[0], real[1], zones.extended_viewport):
                    continue
                best, connected = candidates.get(neighbor_id, (similarity, []))
                connected.append(primary_id)
                candidates[neighbor_id] = (max(best, similarity), connected)

        ranked = sorted(candidates.items(), key=lambda item: (-item[1][0], -len(item[1][1])))
        reserved = sum(
            1 for cid in content_driven
            if cid not in state.primary and cid not in state.pulled and cid in positions
        )
        slots = max(0, max_pulled - reserved)
        for node_id, (_, connected) in ranked[:slots]:
            rx, ry = positions[node_id]
            px, py = compute_pull_position(rx, ry, zones, use_fisheye=node_id in focused)
            state.pulled[node_id] = PulledNode(px, py, rx, ry, sorted(connected, key=str))

    # Phase 3: content-driven nodes, then drop pulls without an anchor
    content_pulled: set[NodeId] = set()
    for node_id in content_driven:
        if node_id in state.primary or node_id not in positions:
            continue
        content_pulled.add(node_id)
        if node_id in state.pulled:
            continue
        rx, ry = positions[node_id]
        px, py = compute_pull_position(rx, ry, zones, use_fisheye=node_id in focused)
        state.pulled[node_id] = PulledNode(px, py, rx, ry)

    dropped = 0
    for node_id in list(state.pulled):
        if node_id in content_pulled or node_id in focused:
            continue
        pulled = state.pulled[node_id]
        if pulled.connected_primary_ids:
            continue
        anchors = [
            neighbor_id for neighbor_id, _ in (adjacency or {}).get(node_id, ())
            if neighbor_id in state.primary
        ]
        if anchors:
            pulled.connected_primary_ids = anchors
        else:
            del state.pulled[node_id]
            dropped += 1

    if dropped:
        logger.debug(f"Dropped {dropped} pulled nodes without on-screen anchors")
    return state


def compute_content_pull_state(
    content_positions: Mapping[NodeId, Point],
    content_parents: Mapping[NodeId, Sequence[NodeId]],
    primary_ids: Iterable[NodeId],
    zones: ViewportZones,
    max_pulled: int | None = None,
    focused_ids: Iterable[NodeId] = (),
) -> dict[NodeId, PulledNode]:
    """Pull content nodes whose parent keyword is on screen.

    Visible children inside the cliff zone are always pulled; off-screen
    children are pulled up to ``max_pulled``, in input order.
    """
    max_pulled = settings.pull_max_content_nodes if max_pulled is None else max(0, max_pulled)
    primary = set(primary_ids)
    focused = set(focused_ids)
    pulled: dict[NodeId, PulledNode] = {}
    candidates: list[NodeId] = []

    for node_id, (x, y) in content_positions.items():
        parents = content_parents.get(node_id, ())
        if not any(p in primary for p in parents):
            continue
        fisheye = any(p in focused for p in parents)
        in_view = is_in_viewport(x, y, zones.viewport)
        if in_view and is_in_cliff_zone(x, y, zones.pull_bounds):
            px, py = compute_pull_position(x, y, zones, fisheye)
            pulled[node_id] = PulledNode(px, py, x, y, [p for p in parents if p in primary])
        elif not in_view:
            candidates.append(node_id)

    for node_id in candidates[:max_pulled]:
        x, y = content_positions[node_id]
        parents = content_parents.get(node_id, ())
        px, py = compute_pull_position(x, y, zones, any(p in focused for p in parents))
        pulled[node_id] = PulledNode(px, py, x, y, [p for p in parents if p in primary])

    return pulled
