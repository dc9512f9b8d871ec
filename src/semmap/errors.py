"""Exceptions raised by the layout engine.

Expected-empty states (too few points, empty edge sets, stale indices) never
raise. Exceptions are reserved for calls made in the wrong lifecycle state.
"""


class SemmapError(Exception):
    """Base class for layout engine errors."""


class LayoutStateError(SemmapError, RuntimeError):
    """Operation not valid in the component's current lifecycle state."""
