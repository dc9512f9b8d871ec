"""Pytest configuration and fixtures."""

from unittest.mock import MagicMock

import numpy as np
import pytest

from semmap.config import Settings, get_test_settings
from semmap.layout.events import LayoutObserver
from semmap.models import KeywordNode, WeightedEdge, build_adjacency


@pytest.fixture
def test_settings() -> Settings:
    """Test settings with a small epoch budget."""
    return get_test_settings()


@pytest.fixture
def rng() -> np.random.Generator:
    """Seeded random generator."""
    return np.random.default_rng(7)


@pytest.fixture
def clustered_embeddings(rng: np.random.Generator) -> np.ndarray:
    """50 points in 8 dimensions drawn around 5 well-separated centers."""
    centers = np.eye(8)[:5] * 10.0
    points = [center + rng.normal(0.0, 0.3, size=8) for center in centers for _ in range(10)]
    return np.array(points)


@pytest.fixture
def random_embeddings(rng: np.random.Generator) -> np.ndarray:
    """50 random points in 8 dimensions."""
    return rng.normal(size=(50, 8))


@pytest.fixture
def keyword_nodes() -> list[KeywordNode]:
    """Five keyword nodes."""
    return [
        KeywordNode(id="kw:neural network", label="neural network"),
        KeywordNode(id="kw:deep learning", label="deep learning"),
        KeywordNode(id="kw:backprop", label="backprop"),
        KeywordNode(id="kw:sourdough", label="sourdough"),
        KeywordNode(id="kw:yeast", label="yeast"),
    ]


@pytest.fixture
def path_adjacency():
    """Path graph 0-1-2-3-4 plus an isolated node 5."""
    edges = [WeightedEdge(i, i + 1, 1.0) for i in range(4)]
    return build_adjacency(edges, n_nodes=6)


@pytest.fixture
def mock_observer() -> LayoutObserver:
    """Observer that records every event it receives."""
    observer = MagicMock()
    observer.on_event = MagicMock()
    return observer
