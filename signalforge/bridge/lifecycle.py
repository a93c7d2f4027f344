"""Bridge lifecycle — connection state machine.

idle → connecting → connected → stopped, with error reachable from any
state.  Illegal transitions are ignored and logged; listeners are told
about every accepted transition.
"""

import logging
from typing import Callable, Optional

from signalforge.bridge.models import BridgeState

logger = logging.getLogger("signalforge")

StateListener = Callable[[BridgeState, BridgeState], None]

_ALLOWED: dict[BridgeState, frozenset[BridgeState]] = {
    BridgeState.IDLE: frozenset({BridgeState.CONNECTING}),
    BridgeState.CONNECTING: frozenset({BridgeState.CONNECTED}),
    BridgeState.CONNECTED: frozenset(),
    BridgeState.STOPPED: frozenset({BridgeState.CONNECTING}),
    BridgeState.ERROR: frozenset({BridgeState.CONNECTING}),
}


class BridgeLifecycle:
    """Single-instance connection state with transition listeners."""

    def __init__(self) -> None:
        self._state = BridgeState.IDLE
        self._last_error: Optional[str] = None
        self._listeners: list[StateListener] = []

    @property
    def state(self) -> BridgeState:
        return self._state

    @property
    def last_error(self) -> Optional[str]:
        return self._last_error

    @property
    def is_connected(self) -> bool:
        return self._state is BridgeState.CONNECTED

    @property
    def accepts_frames(self) -> bool:
        """Frames are ingested while connecting and connected."""
        return self._state in (BridgeState.CONNECTING, BridgeState.CONNECTED)

    def add_listener(self, listener: StateListener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: StateListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def _transition(self, target: BridgeState) -> bool:
        previous = self._state
        if target is previous:
            return False
        self._state = target
        logger.info("Bridge state %s → %s", previous.value, target.value)
        for listener in list(self._listeners):
            try:
                listener(previous, target)
            except Exception:
                logger.exception("Bridge state listener failed")
        return True

    def _guarded(self, target: BridgeState) -> bool:
        if target not in _ALLOWED[self._state]:
            logger.debug(
                "Ignoring bridge transition %s → %s", self._state.value, target.value,
            )
            return False
        return self._transition(target)

    def begin_connect(self) -> bool:
        """Start requested.  Clears any previous error."""
        ok = self._guarded(BridgeState.CONNECTING)
        if ok:
            self._last_error = None
        return ok

    def mark_connected(self) -> bool:
        """First inbound frame or external UI confirmation."""
        return self._guarded(BridgeState.CONNECTED)

    def mark_stopped(self) -> bool:
        """The underlying session closed.  Allowed from any state."""
        return self._transition(BridgeState.STOPPED)

    def mark_error(self, reason: str) -> bool:
        """Unrecoverable failure.  Allowed from any state."""
        self._last_error = reason or "unknown error"
        logger.error("Bridge error: %s", self._last_error)
        return self._transition(BridgeState.ERROR)
