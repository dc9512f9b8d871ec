"""Explicit, instance-scoped cache of finished layouts.

Owners create one cache per session and pass it to the optimizer; there is
no process-wide cache.
"""

import hashlib
import logging
import threading
from collections import OrderedDict
from collections.abc import Mapping

import numpy as np

from semmap.config import settings
from semmap.layout.snapshot import LayoutSnapshot

logger = logging.getLogger(__name__)


def embeddings_key(
    embeddings: np.ndarray | list[list[float]],
    params: Mapping[str, float | int] | None = None,
) -> str:
    """Fingerprint an embedding set together with the parameters that shape its layout.

    Any change in point count, vector values or a tunable parameter (seed
    included) yields a different key.
    """
    arr = np.ascontiguousarray(np.asarray(embeddings, dtype=np.float64))
    digest = hashlib.sha1(arr.tobytes())
    digest.update(str(arr.shape).encode())
    for name in sorted(params or {}):
        digest.update(f"{name}={params[name]!r};".encode())
    return f"{len(arr)}:{digest.hexdigest()}"


class LayoutCache:
    """Bounded LRU cache of layout snapshots keyed by ``embeddings_key``."""

    def __init__(self, max_entries: int | None = None) -> None:
        self.max_entries = max(1, max_entries or settings.layout_cache_size)
        self._entries: OrderedDict[str, LayoutSnapshot] = OrderedDict()
        self._lock = threading.Lock()
        self.hits = 0
        self.misses = 0

    def get(self, key: str) -> LayoutSnapshot | None:
        with self._lock:
            snapshot = self._entries.get(key)
            if snapshot is None:
                self.misses += 1
                return None
            self._entries.move_to_end(key)
            self.hits += 1
            return snapshot

    def put(self, key: str, snapshot: LayoutSnapshot) -> None:
        with self._lock:
            self._entries[key] = snapshot
            self._entries.move_to_end(key)
            while len(self._entries) > self.max_entries:
                evicted, _ = self._entries.popitem(last=False)
                logger.debug(f"Evicted cached layout {evicted}")

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __contains__(self, key: str) -> bool:
        return key in self._entries

    def __len__(self) -> int:
        return len(self._entries)
