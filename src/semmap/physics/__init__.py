"""Secondary physics layers that run on top of the base layout."""

from semmap.physics.collision import CollisionLayer
from semmap.physics.convergence import (
    AutoFitCoordinator,
    ConvergenceMonitor,
    ConvergenceStatus,
    CoolingPolicy,
    clamp_velocities,
    p95_velocity,
)
from semmap.physics.focus import (
    FocusManifoldLayer,
    FocusState,
    ManifoldParams,
    bfs_shortest_path,
    compute_bfs_neighborhood,
    compute_dual_focus_neighborhood,
)
from semmap.physics.forces import AnchorForce, BoundaryForce, CollideForce, LinkForce, ManyBodyForce
from semmap.physics.highlight import (
    HighlightResult,
    build_adjacency_sets,
    compute_centroid,
    extend_to_neighbors,
    find_nodes_in_radius,
    neighborhood_highlight,
    spatial_semantic_highlight,
)
from semmap.physics.interpolation import (
    ArrayPositionInterpolator,
    OpacityInterpolator,
    PositionInterpolator,
    ease_in_out_cubic,
    ease_out_cubic,
    linear,
)
from semmap.physics.pulling import (
    PulledNode,
    PullState,
    ViewportZones,
    apply_fisheye_compression,
    clamp_to_bounds,
    compress_distance,
    compute_content_pull_state,
    compute_pull_state,
    id_adjacency,
    is_in_cliff_zone,
    is_in_viewport,
)
from semmap.physics.similarity import ClickFocusSimilarityLayer
from semmap.physics.simulation import Bounds, Force, ForceSimulation, SimulationLayer
from semmap.physics.tether import ParentTetherLayer, TetherForce, max_tether_distance

__all__ = [
    "CollisionLayer",
    "AutoFitCoordinator",
    "ConvergenceMonitor",
    "ConvergenceStatus",
    "CoolingPolicy",
    "clamp_velocities",
    "p95_velocity",
    "FocusManifoldLayer",
    "FocusState",
    "ManifoldParams",
    "bfs_shortest_path",
    "compute_bfs_neighborhood",
    "compute_dual_focus_neighborhood",
    "AnchorForce",
    "BoundaryForce",
    "CollideForce",
    "LinkForce",
    "ManyBodyForce",
    "HighlightResult",
    "build_adjacency_sets",
    "compute_centroid",
    "extend_to_neighbors",
    "find_nodes_in_radius",
    "neighborhood_highlight",
    "spatial_semantic_highlight",
    "ArrayPositionInterpolator",
    "OpacityInterpolator",
    "PositionInterpolator",
    "ease_in_out_cubic",
    "ease_out_cubic",
    "linear",
    "PulledNode",
    "PullState",
    "ViewportZones",
    "apply_fisheye_compression",
    "clamp_to_bounds",
    "compress_distance",
    "compute_content_pull_state",
    "compute_pull_state",
    "id_adjacency",
    "is_in_cliff_zone",
    "is_in_viewport",
    "ClickFocusSimilarityLayer",
    "Bounds",
    "Force",
    "ForceSimulation",
    "SimulationLayer",
    "ParentTetherLayer",
    "TetherForce",
    "max_tether_distance",
]
