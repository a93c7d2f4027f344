"""Bridge data models — raw frames, lifecycle state, activity entries."""

from dataclasses import dataclass
from enum import Enum
from typing import Union


class BridgeState(str, Enum):
    """Connection state of the frame bridge."""

    IDLE = "idle"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    STOPPED = "stopped"
    ERROR = "error"


@dataclass(frozen=True)
class RawFrame:
    """A websocket frame as delivered by the browser collaborator."""

    direction: str  # "in" or "out"
    source_url: str
    payload: Union[bytes, str]
    ts: int  # epoch ms


@dataclass(frozen=True)
class FrameRecord:
    """Printable form of a frame kept for diagnostics and streaming."""

    direction: str
    url: str
    payload: str
    ts: int


@dataclass(frozen=True)
class ActivityEntry:
    """One line of the bridge activity log."""

    ts: int
    level: str  # "info", "warn" or "error"
    msg: str


@dataclass(frozen=True)
class SubscribeTemplate:
    """Outbound subscribe frame split around its symbol."""

    prefix: str
    suffix: str
    uses_slash: bool

    def render(self, symbol: str) -> str:
        """Splice *symbol* into the template."""
        sym = symbol if self.uses_slash else symbol.replace("/", "")
        return f"{self.prefix}{sym}{self.suffix}"
