"""Event bus — typed publish/subscribe for quote and frame events.

Listeners are called synchronously in registration order on the
publishing thread.  A failing listener is logged and does not stop
delivery to the others.
"""

import logging
import threading
from dataclasses import dataclass
from typing import Callable, Union

from signalforge.bridge.models import FrameRecord

logger = logging.getLogger("signalforge")

QUOTE = "quote"
FRAME = "frame"
EVENT_KINDS: tuple[str, ...] = (QUOTE, FRAME)


@dataclass(frozen=True)
class QuoteEvent:
    """Published for every recorded quote (normalized or raw instrument)."""

    symbol: str
    price: float
    ts: int


Event = Union[QuoteEvent, FrameRecord]
Listener = Callable[[Event], None]


class EventBus:
    """Fan-out of bridge events to registered listeners."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._listeners: dict[str, list[Listener]] = {kind: [] for kind in EVENT_KINDS}

    def subscribe(self, kind: str, listener: Listener) -> Callable[[], None]:
        """Register *listener* for *kind* and return an unsubscribe callable."""
        if kind not in self._listeners:
            raise ValueError(f"Unknown event kind {kind!r}")
        if not callable(listener):
            raise TypeError("listener must be callable")
        with self._lock:
            if listener not in self._listeners[kind]:
                self._listeners[kind].append(listener)

        def _unsubscribe() -> None:
            self.unsubscribe(kind, listener)

        return _unsubscribe

    def unsubscribe(self, kind: str, listener: Listener) -> None:
        with self._lock:
            try:
                self._listeners.get(kind, []).remove(listener)
            except ValueError:
                return

    def publish(self, kind: str, event: Event) -> None:
        with self._lock:
            listeners = list(self._listeners.get(kind, ()))
        for listener in listeners:
            try:
                listener(event)
            except Exception:
                logger.debug("Event listener for %s failed", kind, exc_info=True)

    def listener_count(self, kind: str) -> int:
        with self._lock:
            return len(self._listeners.get(kind, ()))

    def clear(self) -> None:
        with self._lock:
            for listeners in self._listeners.values():
                listeners.clear()
