"""Strategy data models — typed representations for scorer outputs."""

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Mapping

CALL = "CALL"
PUT = "PUT"
NEUTRAL = "NEUTRAL"


@dataclass(frozen=True)
class ExpiryProfile:
    """Analysis window resolved from an expiry bucket."""

    timeframe: str
    lookback: int  # bars
    sr_window: int  # bars used for support/resistance position


# ── Expiry buckets ───────────────────────────────────────────────────────

EXPIRY_PROFILES: dict[str, ExpiryProfile] = {
    "30s": ExpiryProfile("15s/1m synthetic", 240, 40),
    "1m": ExpiryProfile("1m", 240, 60),
    "2m": ExpiryProfile("1m", 240, 60),
    "3m": ExpiryProfile("1m/5m", 240, 90),
    "5m": ExpiryProfile("1m/5m", 240, 90),
    "10m": ExpiryProfile("5m/15m", 240, 120),
    "15m": ExpiryProfile("5m/15m", 240, 120),
    "30m": ExpiryProfile("15m/30m/1h", 240, 180),
    "1h": ExpiryProfile("15m/30m/1h", 240, 180),
}

EXPIRIES: tuple[str, ...] = tuple(EXPIRY_PROFILES)
SHORT_EXPIRIES: frozenset[str] = frozenset({"30s", "1m"})


@dataclass(frozen=True)
class ScoreComponent:
    """One signed contribution to the score, with a short note."""

    key: str
    score: float
    notes: str


@dataclass(frozen=True)
class SignalResult:
    """Explainable scorer output for one instrument and expiry."""

    instrument: str
    expiry: str
    side: str  # "CALL", "PUT" or "NEUTRAL"
    confidence: int  # 0–100
    score: float
    entry_hint: str
    rationale: tuple[str, ...]
    indicators: Mapping[str, Any]
    timeframe_used: str
    components: tuple[ScoreComponent, ...]
    features: Mapping[str, Any] = field(default_factory=dict)
    data_source: str = "synthetic"  # "live", "ticks" or "synthetic"
    generated_at: int = 0  # epoch ms

    def __post_init__(self) -> None:
        object.__setattr__(self, "indicators", freeze(self.indicators))
        object.__setattr__(self, "features", freeze(self.features))


def freeze(value: Any) -> Any:
    """Read-only copy: mappings become proxies, lists become tuples."""
    if isinstance(value, Mapping):
        return MappingProxyType({k: freeze(v) for k, v in value.items()})
    if isinstance(value, (list, tuple)):
        return tuple(freeze(v) for v in value)
    return value


def thaw(value: Any) -> Any:
    """Plain dicts and lists from a frozen value, for JSON encoding."""
    if isinstance(value, Mapping):
        return {k: thaw(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [thaw(v) for v in value]
    return value
