"""Analysis configuration — indicator periods, thresholds and score weights.

Supplied per signal request.  Frozen; build it from a request body with
``AnalysisConfig.from_dict`` which validates and raises ``ValueError``.
"""

import math
from dataclasses import dataclass, field, fields, replace
from typing import Any, Mapping, Optional


@dataclass(frozen=True)
class ScoreWeights:
    """Signed contribution of each scoring component."""

    trend: float = 12
    momentum_strong: float = 10
    momentum_mild: float = 3
    sr: float = 8
    fib: float = 4
    pattern: float = 6
    short_expiry_mean_rev: float = 5
    order_flow_fast: float = 8
    order_flow_slow: float = 6
    vol_regime: float = 4
    sweep: float = 6
    fvg: float = 4
    profile: float = 3
    session: float = 2
    usd_proxy: float = 2


# camelCase aliases accepted from UI clients
_WEIGHT_ALIASES: dict[str, str] = {
    "momentumStrong": "momentum_strong",
    "momentumMild": "momentum_mild",
    "shortExpiryMeanRev": "short_expiry_mean_rev",
    "orderFlowFast": "order_flow_fast",
    "orderFlowSlow": "order_flow_slow",
    "volRegime": "vol_regime",
    "usdProxy": "usd_proxy",
}

_CONFIG_ALIASES: dict[str, str] = {
    "emaFastPeriod": "ema_fast_period",
    "emaSlowPeriod": "ema_slow_period",
    "rsiPeriod": "rsi_period",
    "rsiOversold": "rsi_oversold",
    "rsiOverbought": "rsi_overbought",
    "callThreshold": "call_threshold",
    "putThreshold": "put_threshold",
    "valueAreaPct": "value_area_pct",
    "valueAreaBins": "value_area_bins",
    "sweepWindow": "sweep_window",
    "fibTolerance": "fib_tolerance",
    "sessionToleranceMinutes": "session_tolerance_minutes",
}


@dataclass(frozen=True)
class AnalysisConfig:
    """Per-request scoring parameters with documented defaults."""

    ema_fast_period: int = 9
    ema_slow_period: int = 21
    rsi_period: int = 14
    rsi_oversold: float = 35
    rsi_overbought: float = 65
    call_threshold: float = 58
    put_threshold: float = 42
    value_area_pct: float = 0.70
    value_area_bins: int = 30
    sweep_window: int = 20
    fib_tolerance: float = 0.0015
    session_tolerance_minutes: int = 1
    weights: ScoreWeights = field(default_factory=ScoreWeights)

    @classmethod
    def from_dict(cls, data: Optional[Mapping[str, Any]]) -> "AnalysisConfig":
        """Build a config from a request body, applying defaults.

        Accepts snake_case or camelCase keys.  Raises ``ValueError``
        listing every problem found.
        """
        if data is None:
            return cls()
        if not isinstance(data, Mapping):
            raise ValueError("config must be an object")

        errors: list[str] = []
        values: dict[str, Any] = {}
        known = {f.name: f for f in fields(cls) if f.name != "weights"}

        for raw_key, raw_value in data.items():
            key = _CONFIG_ALIASES.get(raw_key, raw_key)
            if key == "weights":
                continue
            if key not in known:
                errors.append(f"unknown config field '{raw_key}'")
                continue
            number = _number(raw_value)
            if number is None:
                errors.append(f"{key} must be a number")
                continue
            if known[key].type in (int, "int"):
                if number != int(number):
                    errors.append(f"{key} must be an integer")
                    continue
                number = int(number)
            values[key] = number

        weights = ScoreWeights()
        raw_weights = data.get("weights")
        if raw_weights is not None:
            if not isinstance(raw_weights, Mapping):
                errors.append("weights must be an object")
            else:
                weights, weight_errors = _parse_weights(raw_weights)
                errors.extend(weight_errors)

        if errors:
            raise ValueError("; ".join(errors))

        config = replace(cls(), weights=weights, **values)
        config.validate()
        return config

    def validate(self) -> None:
        """Raise ``ValueError`` when any field is out of range."""
        errors: list[str] = []
        for name in ("ema_fast_period", "ema_slow_period", "rsi_period"):
            v = getattr(self, name)
            if not 1 <= v <= 500:
                errors.append(f"{name} must be 1–500")
        if not 0 <= self.rsi_oversold < self.rsi_overbought <= 100:
            errors.append("rsi thresholds must satisfy 0 <= oversold < overbought <= 100")
        if not 0 <= self.put_threshold < 50 < self.call_threshold <= 100:
            errors.append("decision thresholds must satisfy 0 <= put < 50 < call <= 100")
        if not 0 < self.value_area_pct <= 1:
            errors.append("value_area_pct must be in (0, 1]")
        if not 1 <= self.value_area_bins <= 500:
            errors.append("value_area_bins must be 1–500")
        if not 3 <= self.sweep_window <= 500:
            errors.append("sweep_window must be 3–500")
        if not 0 < self.fib_tolerance < 1:
            errors.append("fib_tolerance must be in (0, 1)")
        if not 0 <= self.session_tolerance_minutes <= 7:
            errors.append("session_tolerance_minutes must be 0–7")
        for f in fields(self.weights):
            w = getattr(self.weights, f.name)
            if not 0 <= w <= 50:
                errors.append(f"weights.{f.name} must be 0–50")
        if errors:
            raise ValueError("; ".join(errors))


def _number(value: Any) -> Optional[float]:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    try:
        number = float(value)
    except OverflowError:
        return None
    return number if math.isfinite(number) else None


def _parse_weights(data: Mapping[str, Any]) -> tuple[ScoreWeights, list[str]]:
    errors: list[str] = []
    names = {f.name for f in fields(ScoreWeights)}
    values: dict[str, float] = {}
    for raw_key, raw_value in data.items():
        key = _WEIGHT_ALIASES.get(raw_key, raw_key)
        if key not in names:
            errors.append(f"unknown weight '{raw_key}'")
            continue
        number = _number(raw_value)
        if number is None:
            errors.append(f"weights.{key} must be a number")
            continue
        values[key] = number
    return ScoreWeights(**values), errors
