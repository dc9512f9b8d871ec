"""Observer interface for layout progress.

The optimizer reports through a fixed set of event kinds instead of ad hoc
callback fields, so the contract stays enumerable.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Protocol

logger = logging.getLogger(__name__)


class LayoutEventKind(str, Enum):
    """Kinds of layout events."""

    PROGRESS = "progress"
    ERROR = "error"
    COMPLETE = "complete"


@dataclass(frozen=True)
class LayoutEvent:
    """A single notification from a running layout."""

    kind: LayoutEventKind
    epoch: int = 0
    total_epochs: int = 0
    message: str | None = None

    @property
    def progress(self) -> float:
        """Fraction of epochs completed, in [0, 1]."""
        if self.total_epochs <= 0:
            return 1.0 if self.kind == LayoutEventKind.COMPLETE else 0.0
        return min(1.0, self.epoch / self.total_epochs)


class LayoutObserver(Protocol):
    """Anything that wants layout events."""

    def on_event(self, event: LayoutEvent) -> None: ...


class EventBus:
    """Fan-out of layout events to subscribed observers.

    A failing observer is logged and reported to the remaining observers as
    an ERROR event; it never interrupts the layout itself.
    """

    def __init__(self, observers: list[LayoutObserver] | None = None) -> None:
        self._observers: list[LayoutObserver] = list(observers or [])

    def subscribe(self, observer: LayoutObserver) -> None:
        if observer not in self._observers:
            self._observers.append(observer)

    def unsubscribe(self, observer: LayoutObserver) -> None:
        if observer in self._observers:
            self._observers.remove(observer)

    def __len__(self) -> int:
        return len(self._observers)

    def emit(self, event: LayoutEvent) -> None:
        """Deliver an event to every observer."""
        failed: list[tuple[LayoutObserver, Exception]] = []
        for observer in list(self._observers):
            try:
                observer.on_event(event)
            except Exception as e:
                logger.error(f"Layout observer {observer!r} failed on {event.kind.value}: {e}")
                failed.append((observer, e))

        if event.kind == LayoutEventKind.ERROR:
            return
        for bad, error in failed:
            report = LayoutEvent(
                kind=LayoutEventKind.ERROR,
                epoch=event.epoch,
                total_epochs=event.total_epochs,
                message=f"Observer failed: {error}",
            )
            for observer in list(self._observers):
                if observer is bad:
                    continue
                try:
                    observer.on_event(report)
                except Exception as e:
                    logger.error(f"Layout observer {observer!r} failed on error report: {e}")
