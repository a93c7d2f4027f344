"""Microstructure features — non-lagging reads of tick flow and bar structure.

Order-flow imbalance, realized volatility, liquidity sweeps, fair value
gaps and a tick-count value area.  Insufficient history always yields a
neutral value rather than an error.
"""

from dataclasses import dataclass
from typing import Optional, Sequence

import numpy as np

from signalforge.market.models import CandleData, Tick


@dataclass(frozen=True)
class OrderFlow:
    imbalance: float  # (up - down) / total, in [-1, 1]
    pressure: float  # (up + down) / total, in [0, 1]
    up: int = 0
    down: int = 0
    flat: int = 0


@dataclass(frozen=True)
class LiquiditySweep:
    kind: Optional[str]  # "high", "low" or None
    strength: float  # rejection wick as a fraction of the bar range


@dataclass(frozen=True)
class FairValueGap:
    has_bull: bool
    has_bear: bool


@dataclass(frozen=True)
class ValueArea:
    """Tick-count profile: point of control and the value band around it."""

    poc_price: float
    value_low: float
    value_high: float
    poc_bin: int = -1
    low_bin: int = -1
    high_bin: int = -1
    mass_fraction: float = 0.0


NEUTRAL_FLOW = OrderFlow(imbalance=0.0, pressure=0.0)
NO_SWEEP = LiquiditySweep(kind=None, strength=0.0)
NO_GAP = FairValueGap(has_bull=False, has_bear=False)


def order_flow_imbalance(ticks: Sequence[Tick], lookback_ms: int) -> OrderFlow:
    """Count tick directions in the trailing window ending at the last tick."""
    if not ticks:
        return NEUTRAL_FLOW
    cutoff = ticks[-1].ts - lookback_ms
    up = down = flat = 0
    for tick in reversed(ticks):
        if tick.ts < cutoff:
            break
        if tick.direction > 0:
            up += 1
        elif tick.direction < 0:
            down += 1
        else:
            flat += 1
    total = (up + down + flat) or 1
    return OrderFlow(
        imbalance=(up - down) / total,
        pressure=(up + down) / total,
        up=up,
        down=down,
        flat=flat,
    )


def realized_volatility(ticks: Sequence[Tick], lookback_ms: int) -> float:
    """Population std of consecutive log returns in the trailing window.

    The window ends at the last tick.  Fewer than two samples → 0.0.
    """
    if len(ticks) < 2:
        return 0.0
    cutoff = ticks[-1].ts - lookback_ms
    prices = np.array([t.price for t in ticks if t.ts >= cutoff], dtype=float)
    if prices.size < 2:
        return 0.0
    with np.errstate(divide="ignore", invalid="ignore"):
        returns = np.diff(np.log(prices))
    returns = returns[np.isfinite(returns)]
    if returns.size == 0:
        return 0.0
    return float(np.std(returns))


def detect_liquidity_sweep(
    candles: Sequence[CandleData],
    window: int = 20,
    tolerance: float = 0.001,
) -> LiquiditySweep:
    """Flag a stop run beyond the window extreme that closed back inside.

    High sweep: the last high reaches the window high (within
    *tolerance*), the close is below the prior close and the upper part
    of the bar outweighs the lower.  Low sweep is the mirror.  Strength
    is the rejection wick over the bar range.
    """
    if len(candles) < 3:
        return NO_SWEEP
    recent = candles[-window:] if window >= 2 else candles[-2:]
    last = recent[-1]
    prev = recent[-2]
    high = max(c.high for c in recent)
    low = min(c.low for c in recent)
    bar_range = max(1e-9, last.high - last.low)

    swept_high = (
        last.high > high * (1 - tolerance)
        and last.close < prev.close
        and (last.high - last.close) > (last.close - last.low)
    )
    swept_low = (
        last.low < low * (1 + tolerance)
        and last.close > prev.close
        and (last.close - last.low) > (last.high - last.close)
    )
    if swept_high:
        return LiquiditySweep(kind="high", strength=(last.high - last.close) / bar_range)
    if swept_low:
        return LiquiditySweep(kind="low", strength=(last.close - last.low) / bar_range)
    return NO_SWEEP


def detect_fvg(candles: Sequence[CandleData]) -> FairValueGap:
    """Three-bar fair value gap on the latest bars.

    Bullish: A.high < C.low with B closing above A.high and C closing
    above B.high.  Bearish is the mirror.  Both are evaluated
    independently.
    """
    if len(candles) < 3:
        return NO_GAP
    a, b, c = candles[-3], candles[-2], candles[-1]
    has_bull = a.high < c.low and b.close > a.high and c.close > b.high
    has_bear = a.low > c.high and b.close < a.low and c.close < b.low
    return FairValueGap(has_bull=has_bull, has_bear=has_bear)


def value_area_from_ticks(
    ticks: Sequence[Tick],
    bins: int = 30,
    value_pct: float = 0.70,
) -> ValueArea:
    """Histogram tick prices and grow the value area around the POC.

    The POC is the first modal bin.  The area expands one bin at a time
    towards the heavier neighbour (ties expand high) until it holds at
    least *value_pct* of the ticks.
    """
    if len(ticks) < 10 or bins < 1:
        last = ticks[-1].price if ticks else 0.0
        return ValueArea(poc_price=last, value_low=0.0, value_high=0.0)

    prices = np.array([t.price for t in ticks], dtype=float)
    lo_price = float(prices.min())
    hi_price = float(prices.max())
    if lo_price == hi_price:
        return ValueArea(
            poc_price=lo_price,
            value_low=lo_price,
            value_high=hi_price,
            poc_bin=0,
            low_bin=0,
            high_bin=0,
            mass_fraction=1.0,
        )

    step = (hi_price - lo_price) / bins
    idx = np.clip(np.floor((prices - lo_price) / step).astype(int), 0, bins - 1)
    counts = np.bincount(idx, minlength=bins)
    total = int(counts.sum())

    poc = int(np.argmax(counts))
    acc = int(counts[poc])
    lo = hi = poc
    while acc / total < value_pct and (lo > 0 or hi < bins - 1):
        left = int(counts[lo - 1]) if lo > 0 else -1
        right = int(counts[hi + 1]) if hi < bins - 1 else -1
        if right >= left:
            hi += 1
            acc += int(counts[hi])
        else:
            lo -= 1
            acc += int(counts[lo])

    return ValueArea(
        poc_price=lo_price + (poc + 0.5) * step,
        value_low=lo_price + lo * step,
        value_high=lo_price + (hi + 1) * step,
        poc_bin=poc,
        low_bin=lo,
        high_bin=hi,
        mass_fraction=acc / total,
    )
