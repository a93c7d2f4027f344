"""Trade actuator and session launcher interfaces.

The browser-automation collaborator implements these protocols.  The
core only ever talks to it through ``GuardedActuator``, which bounds
every call with a timeout and turns timeouts and errors into a
"failed" result.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional, Protocol, Sequence, TypeVar, runtime_checkable

from signalforge.bridge.symbols import normalize_symbol

logger = logging.getLogger("signalforge")

T = TypeVar("T")


@runtime_checkable
class TradeActuator(Protocol):
    """UI-side operations on the trading venue."""

    async def resolve_active_instrument(self) -> Optional[str]:
        """Return the instrument shown on the active chart, if any."""
        ...

    async def is_trade_ui_ready(self, allow_navigate: bool = False) -> bool:
        """Return True when the CALL/PUT controls are usable."""
        ...

    async def set_account_mode(self, mode: str) -> bool:
        ...

    async def set_stake_amount(self, amount: float) -> bool:
        ...

    async def click_side(self, side: str) -> bool:
        """Place the trade; True when the click went through."""
        ...

    async def send_frames(self, payloads: Sequence[str]) -> int:
        """Send raw frames on the venue socket; returns how many were sent."""
        ...


@runtime_checkable
class SessionLauncher(Protocol):
    """Opens and closes the browser session that produces frames."""

    async def launch(self) -> None:
        ...

    async def close(self) -> None:
        ...


class NullActuator:
    """Actuator used when no browser collaborator is attached.

    Frames can still be ingested over HTTP; nothing is ever executed.
    """

    async def resolve_active_instrument(self) -> Optional[str]:
        return None

    async def is_trade_ui_ready(self, allow_navigate: bool = False) -> bool:
        return False

    async def set_account_mode(self, mode: str) -> bool:
        return False

    async def set_stake_amount(self, amount: float) -> bool:
        return False

    async def click_side(self, side: str) -> bool:
        return False

    async def send_frames(self, payloads: Sequence[str]) -> int:
        return 0


class GuardedActuator:
    """Wraps a ``TradeActuator`` with per-call timeouts.

    Args:
        actuator: The collaborator implementation.
        timeout: Seconds allowed per call.
    """

    def __init__(self, actuator: TradeActuator, timeout: float = 3.0) -> None:
        self._actuator = actuator
        self._timeout = timeout

    @property
    def inner(self) -> TradeActuator:
        return self._actuator

    async def _call(
        self,
        name: str,
        fn: Callable[..., Awaitable[T]],
        *args: Any,
        default: T,
    ) -> T:
        try:
            return await asyncio.wait_for(fn(*args), timeout=self._timeout)
        except asyncio.TimeoutError:
            logger.warning("Actuator %s timed out after %.1fs", name, self._timeout)
            return default
        except Exception as exc:
            logger.warning("Actuator %s failed: %s", name, exc)
            return default

    async def resolve_active_instrument(self) -> Optional[str]:
        raw = await self._call(
            "resolve_active_instrument",
            self._actuator.resolve_active_instrument,
            default=None,
        )
        return normalize_symbol(raw) if raw else None

    async def is_trade_ui_ready(self, allow_navigate: bool = False) -> bool:
        result = await self._call(
            "is_trade_ui_ready",
            self._actuator.is_trade_ui_ready,
            allow_navigate,
            default=False,
        )
        return bool(result)

    async def set_account_mode(self, mode: str) -> bool:
        return bool(await self._call(
            "set_account_mode", self._actuator.set_account_mode, mode, default=False,
        ))

    async def set_stake_amount(self, amount: float) -> bool:
        return bool(await self._call(
            "set_stake_amount", self._actuator.set_stake_amount, amount, default=False,
        ))

    async def click_side(self, side: str) -> bool:
        return bool(await self._call(
            "click_side", self._actuator.click_side, side, default=False,
        ))

    async def send_frames(self, payloads: Sequence[str]) -> int:
        sent = await self._call(
            "send_frames", self._actuator.send_frames, list(payloads), default=0,
        )
        return int(sent or 0)
