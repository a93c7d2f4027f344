"""Technical indicators — EMA, RSI, swings, Fibonacci, synthetic OHLC. Pure functions, no I/O.

Unlike a backtest library these never raise on short history: callers
scoring sparse, freshly-subscribed instruments get neutral values
instead.
"""

import hashlib
import random
from dataclasses import dataclass
from typing import Optional, Sequence

from signalforge.market.candles import MINUTE_MS
from signalforge.market.clock import now_ms
from signalforge.market.models import CandleData

RSI_NEUTRAL = 50.0


# ── EMA ──────────────────────────────────────────────────────────────────


def calculate_ema(values: Sequence[float], period: int) -> list[float]:
    """Calculate an Exponential Moving Average series.

    Uses the standard EMA formula:
        ``EMA_today = value × k + EMA_yesterday × (1 - k)``
    where ``k = 2 / (period + 1)``.

    The series is seeded with the first value, so the output always has
    the same length as *values*.  ``period <= 1`` returns a copy.
    """
    if not values:
        return []
    if period <= 1:
        return list(values)

    k = 2.0 / (period + 1)
    ema: list[float] = [float(values[0])]
    for value in values[1:]:
        ema.append(value * k + ema[-1] * (1 - k))
    return ema


# ── RSI ──────────────────────────────────────────────────────────────────


def calculate_rsi(values: Sequence[float], period: int = 14) -> list[float]:
    """Calculate Wilder's Relative Strength Index.

    Algorithm (Wilder-smoothed):
        1. delta = value[i] - value[i-1]
        2. Seed average gain/loss = mean of the first *period* deltas.
        3. Subsequent: avg = (prev_avg × (period-1) + current) / period
        4. RSI = 100 - 100 / (1 + avg_gain / avg_loss), 100 when no losses.

    Returns a list the same length as *values*.  Entries before index
    *period* are neutral (50.0); with fewer than ``period + 1`` values
    every entry is neutral.
    """
    n = len(values)
    if period < 1 or n < period + 1:
        return [RSI_NEUTRAL] * n

    rsi: list[float] = [RSI_NEUTRAL] * n

    gain = 0.0
    loss = 0.0
    for i in range(1, period + 1):
        diff = values[i] - values[i - 1]
        if diff >= 0:
            gain += diff
        else:
            loss -= diff
    gain /= period
    loss /= period

    def _rsi_from_avgs(ag: float, al: float) -> float:
        if al == 0:
            return 100.0
        return 100.0 - 100.0 / (1.0 + ag / al)

    rsi[period] = _rsi_from_avgs(gain, loss)

    for i in range(period + 1, n):
        diff = values[i] - values[i - 1]
        gain = (gain * (period - 1) + max(diff, 0.0)) / period
        loss = (loss * (period - 1) + max(-diff, 0.0)) / period
        rsi[i] = _rsi_from_avgs(gain, loss)

    return rsi


# ── Swings & Fibonacci ───────────────────────────────────────────────────


@dataclass(frozen=True)
class Swing:
    high: float
    low: float


@dataclass(frozen=True)
class FibonacciLevels:
    """Retracements measured down from the swing high."""

    level_23_6: float
    level_38_2: float
    level_50_0: float
    level_61_8: float
    level_78_6: float

    def key_levels(self) -> tuple[float, float, float]:
        """The 61.8 / 50 / 38.2 levels used for confluence."""
        return (self.level_61_8, self.level_50_0, self.level_38_2)


def find_recent_swing(candles: Sequence[CandleData], window: int) -> Swing:
    """Max high and min low over the trailing *window* candles.

    Falls back to the last candle when the window is empty.
    """
    if not candles:
        raise ValueError("find_recent_swing needs at least one candle")
    recent = candles[-window:] if window > 0 else []
    if not recent:
        last = candles[-1]
        return Swing(high=last.high, low=last.low)
    return Swing(
        high=max(c.high for c in recent),
        low=min(c.low for c in recent),
    )


def fibonacci_levels(swing_high: float, swing_low: float) -> FibonacciLevels:
    diff = swing_high - swing_low

    def level(pct: float) -> float:
        return swing_high - diff * pct

    return FibonacciLevels(
        level_23_6=level(0.236),
        level_38_2=level(0.382),
        level_50_0=level(0.5),
        level_61_8=level(0.618),
        level_78_6=level(0.786),
    )


def is_near(price: float, level: float, tolerance: float = 0.0015) -> bool:
    """True when *price* is within *tolerance* (relative) of *level*."""
    return abs(price - level) / max(1e-9, level) < tolerance


# ── Synthetic fallback ───────────────────────────────────────────────────


def infer_start_price(symbol: str) -> float:
    """Plausible anchor price for a synthetic series."""
    upper = symbol.upper()
    if "JPY" in upper:
        return 150.0
    if "BTC" in upper:
        return 45000.0
    if "ETH" in upper:
        return 2500.0
    return 1.1


def _seed_from_key(seed_key: str) -> int:
    digest = hashlib.sha256(seed_key.encode("utf-8")).hexdigest()
    return int(digest[:16], 16)


def generate_synthetic_ohlc(
    seed_key: str,
    length: int = 240,
    start_price: float = 1.1,
    volatility: float = 0.002,
    now: Optional[int] = None,
) -> list[CandleData]:
    """Deterministic 1-minute random walk for instruments without data.

    The generator is seeded from a SHA-256 hash of *seed_key*, so the
    same key always yields the same prices.  Bar times end at *now*
    (epoch ms, defaults to the wall clock).
    """
    rand = random.Random(_seed_from_key(seed_key))
    end = now_ms() if now is None else now
    price = start_price * (0.9 + rand.random() * 0.2)

    candles: list[CandleData] = []
    for i in range(length - 1, -1, -1):
        drift = (rand.random() - 0.5) * volatility * 0.2
        shock = (rand.random() - 0.5) * volatility
        price = max(0.0001, price * (1 + drift + shock))
        spread = max(0.00005, volatility * (0.5 + rand.random()))
        open_ = price * (1 + (rand.random() - 0.5) * spread * 0.2)
        close = price * (1 + (rand.random() - 0.5) * spread * 0.2)
        high = max(open_, close) * (1 + rand.random() * spread)
        low = min(open_, close) * (1 - rand.random() * spread)
        candles.append(
            CandleData(
                time=end - i * MINUTE_MS,
                open=open_,
                high=high,
                low=low,
                close=close,
            )
        )
    return candles
