"""Numeric helpers shared across the layout engine."""

import logging
from collections.abc import Sequence

import numpy as np

logger = logging.getLogger(__name__)

# Floor for slider-driven values that must stay strictly positive
MIN_POSITIVE = 1e-6


def clamp(value: float, low: float, high: float) -> float:
    """Clamp value into [low, high]."""
    return max(low, min(high, value))


def clamp_positive(value: float, minimum: float = MIN_POSITIVE, name: str = "value") -> float:
    """Clamp a parameter that must be strictly positive.

    UI sliders can pass through zero or negative values mid-drag; those are
    pulled up to ``minimum`` instead of rejected.
    """
    if value < minimum:
        logger.warning(f"Clamped {name}={value} to {minimum}")
        return minimum
    return value


def clamp_non_negative(value: float, name: str = "value") -> float:
    """Clamp a parameter that may be zero but not negative."""
    if value < 0:
        logger.warning(f"Clamped {name}={value} to 0")
        return 0.0
    return value


def cosine_similarity(vec1: Sequence[float], vec2: Sequence[float]) -> float:
    """Compute cosine similarity between two vectors.

    Returns 0.0 when either vector has zero norm or the lengths differ.
    """
    a = np.asarray(vec1, dtype=np.float64)
    b = np.asarray(vec2, dtype=np.float64)
    if a.shape != b.shape:
        return 0.0
    norm = np.linalg.norm(a) * np.linalg.norm(b)
    if norm == 0:
        return 0.0
    return float(np.dot(a, b) / norm)


def cosine_similarity_matrix(vectors: np.ndarray) -> np.ndarray:
    """Pairwise cosine similarity for an (N, D) matrix.

    Zero-norm rows get similarity 0 with everything.
    """
    v = np.asarray(vectors, dtype=np.float64)
    if v.ndim != 2 or v.shape[0] == 0:
        return np.zeros((0, 0))
    norms = np.linalg.norm(v, axis=1, keepdims=True)
    safe = np.where(norms == 0, 1.0, norms)
    unit = v / safe
    unit[norms[:, 0] == 0] = 0.0
    return unit @ unit.T


def normalize_positions(positions: np.ndarray, target_radius: float) -> np.ndarray:
    """Center (N, 2) positions on their centroid and scale to target_radius.

    The farthest point ends up exactly ``target_radius`` from the centroid.
    Coincident points are only centered.
    """
    if len(positions) == 0:
        return positions
    centered = positions - positions.mean(axis=0)
    max_dist = float(np.sqrt((centered ** 2).sum(axis=1)).max())
    scale = target_radius / max_dist if max_dist > 0 else 1.0
    return centered * scale


def flatten_positions(positions: np.ndarray) -> np.ndarray:
    """Convert (N, 2) positions to the flat float32 [x0, y0, x1, y1, ...] form."""
    return np.asarray(positions, dtype=np.float32).reshape(-1)


def unflatten_positions(flat: Sequence[float]) -> np.ndarray:
    """Convert a flat [x0, y0, ...] array back to (N, 2) float64."""
    arr = np.asarray(flat, dtype=np.float64)
    return arr[: len(arr) - len(arr) % 2].reshape(-1, 2)
