"""Compute a semantic layout and multi-level clusters offline.

This script:
1. Reads a JSON list of nodes ({id, type, label?, embedding?})
2. Runs the layout optimizer to convergence on the embeddings
3. Detects communities at every semantic-zoom resolution
4. Writes a layout snapshot JSON that can seed a later session

Usage:
    python scripts/compute_layout.py nodes.json -o layout.json
"""

import argparse
import json
import logging
import sys
from pathlib import Path

from dotenv import load_dotenv

# Load .env file from project root
project_root = Path(__file__).parent.parent
load_dotenv(project_root / ".env")

# Add src to path
sys.path.insert(0, str(project_root / "src"))

from semmap.clustering import CommunityDetector, edges_from_indices
from semmap.config import settings
from semmap.layout import OptimizerConfig, UmapOptimizer, similarity_edges
from semmap.layout.events import LayoutEvent, LayoutEventKind
from semmap.models import node_from_dict


class ProgressPrinter:
    """Print optimizer progress to stdout."""

    def on_event(self, event: LayoutEvent) -> None:
        if event.kind == LayoutEventKind.PROGRESS:
            print(f"  Epoch {event.epoch}/{event.total_epochs} ({event.progress:.0%})")
        elif event.kind == LayoutEventKind.ERROR:
            print(f"  Warning: {event.message}")


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="Compute layout positions and clusters")
    parser.add_argument("input", type=Path, help="JSON file with a list of nodes")
    parser.add_argument("-o", "--output", type=Path, default=Path("layout.json"))
    parser.add_argument("--neighbors", type=int, default=settings.umap_n_neighbors)
    parser.add_argument("--epochs", type=int, default=settings.umap_epochs)
    parser.add_argument("--min-dist", type=float, default=settings.umap_min_dist)
    parser.add_argument("--threshold", type=float, default=settings.community_similarity_threshold)
    parser.add_argument("--verbose", action="store_true")
    return parser.parse_args(argv)


def compute_layout(args) -> int:
    print(f"Reading nodes from {args.input}...")
    rows = json.loads(args.input.read_text(encoding="utf-8"))
    nodes = [node_from_dict(row) for row in rows]
    nodes = [n for n in nodes if n.embedding is not None]
    print(f"Found {len(nodes)} nodes with embeddings")

    if len(nodes) < 2:
        print("Need at least 2 embedded nodes, nothing to do")
        return 1

    embeddings = [n.embedding for n in nodes]
    node_ids = [n.id for n in nodes]

    print("Computing layout...")
    config = OptimizerConfig.from_settings(
        n_neighbors=args.neighbors,
        epochs=args.epochs,
        min_dist=args.min_dist,
    )
    optimizer = UmapOptimizer(config, observers=[ProgressPrinter()])
    optimizer.initialize(embeddings)
    optimizer.run()
    print("Layout computed.")

    print("Detecting communities...")
    edges = edges_from_indices(node_ids, similarity_edges(embeddings, args.threshold))
    detector = CommunityDetector(threshold=args.threshold)
    levels = detector.detect_levels(nodes, edges)
    for level, result in enumerate(levels.levels):
        print(f"  Level {level} (resolution {result.resolution}): {len(result.communities)} communities")

    snapshot = optimizer.snapshot(node_ids)
    snapshot.resolutions = list(levels.resolutions)
    snapshot.clusters = levels.as_cluster_maps()
    snapshot.labels = levels.as_label_maps()
    snapshot.write(args.output)

    xs, ys = snapshot.positions[0::2], snapshot.positions[1::2]
    print(f"Bounding box: x=[{min(xs):.1f}, {max(xs):.1f}], y=[{min(ys):.1f}, {max(ys):.1f}]")
    print(f"Done! Snapshot written to {args.output}")
    return 0


if __name__ == "__main__":
    args = parse_args()
    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.INFO)
    sys.exit(compute_layout(args))
