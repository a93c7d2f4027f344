"""Auto-trade and auto-subscribe configuration dataclasses.

Both are frozen.  Runtime updates go through ``with_updates(body)``,
which validates a partial request body and returns a new object.
"""

import math
from dataclasses import dataclass, field, replace
from typing import Any, Mapping, Optional

from signalforge.strategy.models import EXPIRIES

_AUTO_TRADE_ALIASES: dict[str, str] = {
    "activeChartOnly": "active_chart_only",
    "cooldownSec": "cooldown_sec",
    "lastTradeAt": "last_trade_at",
    "allowNavigate": "allow_navigate",
    "allowNavigateToTrading": "allow_navigate",
}

_MASANIELLO_ALIASES: dict[str, str] = {
    "targetWins": "target_wins",
    "winProbability": "win_probability",
    "currentStep": "current_step",
    "minStake": "min_stake",
    "maxStakePercent": "max_stake_percent",
}

_AUTO_SUBSCRIBE_ALIASES: dict[str, str] = {
    "intervalSec": "interval_sec",
    "targetCount": "target_count",
}


def _canon(body: Mapping[str, Any], aliases: Mapping[str, str]) -> dict[str, Any]:
    return {aliases.get(k, k): v for k, v in body.items()}


def _is_number(v: Any) -> bool:
    if isinstance(v, bool) or not isinstance(v, (int, float)):
        return False
    try:
        return math.isfinite(v)
    except OverflowError:
        return False


def _is_int(v: Any) -> bool:
    return _is_number(v) and float(v) == int(v)


@dataclass(frozen=True)
class MasanielloConfig:
    """Progressive staking sub-policy."""

    enabled: bool = False
    bankroll: float = 0.0
    target_wins: int = 5
    win_probability: float = 0.6
    current_step: int = 1
    min_stake: float = 1.0
    max_stake_percent: float = 0.02  # fraction of bankroll

    def with_updates(self, body: Mapping[str, Any]) -> "MasanielloConfig":
        data = _canon(body, _MASANIELLO_ALIASES)
        errors: list[str] = []
        updates: dict[str, Any] = {}

        for key, value in data.items():
            if key == "enabled":
                if not isinstance(value, bool):
                    errors.append("masaniello.enabled must be a boolean")
                else:
                    updates[key] = value
            elif key in ("bankroll", "min_stake"):
                if not _is_number(value) or value < 0:
                    errors.append(f"masaniello.{key} must be >= 0")
                else:
                    updates[key] = float(value)
            elif key in ("target_wins", "current_step"):
                if not _is_int(value) or not 1 <= value <= 1000:
                    errors.append(f"masaniello.{key} must be an integer 1–1000")
                else:
                    updates[key] = int(value)
            elif key == "win_probability":
                if not _is_number(value) or not 0 <= value <= 1:
                    errors.append("masaniello.win_probability must be 0–1")
                else:
                    updates[key] = float(value)
            elif key == "max_stake_percent":
                if not _is_number(value) or not 0 < value <= 1:
                    errors.append("masaniello.max_stake_percent must be in (0, 1]")
                else:
                    updates[key] = float(value)
            else:
                errors.append(f"unknown masaniello field '{key}'")

        if errors:
            raise ValueError("; ".join(errors))
        return replace(self, **updates)


@dataclass(frozen=True)
class AutoTradeConfig:
    """Automated execution policy.

    ``threshold`` is the minimum signal confidence (0–100) and
    ``cooldown_sec`` the wall-clock gap enforced after a trade.
    """

    enabled: bool = False
    account: str = "demo"  # "demo" or "live"
    threshold: float = 75
    amount: float = 1.0
    expiry: str = "1m"
    active_chart_only: bool = True
    cooldown_sec: int = 60
    last_trade_at: Optional[int] = None  # epoch ms
    allow_navigate: bool = False
    masaniello: MasanielloConfig = field(default_factory=MasanielloConfig)

    def with_updates(self, body: Mapping[str, Any]) -> "AutoTradeConfig":
        """Return a copy with *body* applied.  Raises ``ValueError``."""
        if not isinstance(body, Mapping):
            raise ValueError("body must be an object")
        data = _canon(body, _AUTO_TRADE_ALIASES)
        errors: list[str] = []
        updates: dict[str, Any] = {}

        for key, value in data.items():
            if key in ("enabled", "active_chart_only", "allow_navigate"):
                if not isinstance(value, bool):
                    errors.append(f"{key} must be a boolean")
                else:
                    updates[key] = value
            elif key == "account":
                if value not in ("demo", "live"):
                    errors.append("account must be 'demo' or 'live'")
                else:
                    updates[key] = value
            elif key == "threshold":
                if not _is_number(value) or not 0 <= value <= 100:
                    errors.append("threshold must be 0–100")
                else:
                    updates[key] = float(value)
            elif key == "amount":
                if not _is_number(value) or value <= 0:
                    errors.append("amount must be positive")
                else:
                    updates[key] = float(value)
            elif key == "expiry":
                if value not in EXPIRIES:
                    errors.append(f"expiry must be one of {', '.join(EXPIRIES)}")
                else:
                    updates[key] = value
            elif key == "cooldown_sec":
                if not _is_int(value) or not 0 <= value <= 86_400:
                    errors.append("cooldown_sec must be an integer 0–86400")
                else:
                    updates[key] = int(value)
            elif key == "last_trade_at":
                if value is not None and not _is_int(value):
                    errors.append("last_trade_at must be epoch ms or null")
                else:
                    updates[key] = None if value is None else int(value)
            elif key == "masaniello":
                if not isinstance(value, Mapping):
                    errors.append("masaniello must be an object")
                    continue
                try:
                    updates[key] = self.masaniello.with_updates(value)
                except ValueError as exc:
                    errors.append(str(exc))
            else:
                errors.append(f"unknown auto-trade field '{key}'")

        if errors:
            raise ValueError("; ".join(errors))
        return replace(self, **updates)


@dataclass(frozen=True)
class AutoSubscribeConfig:
    """Periodic re-subscription to discovered symbols."""

    enabled: bool = True
    interval_sec: int = 10
    target_count: int = 30

    @property
    def effective_interval(self) -> int:
        return max(2, self.interval_sec)

    def with_updates(self, body: Mapping[str, Any]) -> "AutoSubscribeConfig":
        if not isinstance(body, Mapping):
            raise ValueError("body must be an object")
        data = _canon(body, _AUTO_SUBSCRIBE_ALIASES)
        errors: list[str] = []
        updates: dict[str, Any] = {}

        for key, value in data.items():
            if key == "enabled":
                if not isinstance(value, bool):
                    errors.append("enabled must be a boolean")
                else:
                    updates[key] = value
            elif key == "interval_sec":
                if not _is_int(value) or not 1 <= value <= 3600:
                    errors.append("interval_sec must be an integer 1–3600")
                else:
                    updates[key] = int(value)
            elif key == "target_count":
                if not _is_int(value) or not 1 <= value <= 500:
                    errors.append("target_count must be an integer 1–500")
                else:
                    updates[key] = int(value)
            else:
                errors.append(f"unknown auto-subscribe field '{key}'")

        if errors:
            raise ValueError("; ".join(errors))
        return replace(self, **updates)
