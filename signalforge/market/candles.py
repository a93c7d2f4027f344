"""Candle aggregation — fixed-width OHLC bars built on demand.

Candles are derived from tick history every time they are needed and
never cached.  Pure functions, no I/O.
"""

from typing import Sequence

from signalforge.market.models import CandleData, Tick

MINUTE_MS = 60_000


def ticks_to_candles(ticks: Sequence[Tick], width_ms: int = MINUTE_MS) -> list[CandleData]:
    """Bucket *ticks* into bars of *width_ms*, oldest first.

    Bucket open = ``ts - ts % width_ms``.  Ticks keep their arrival order
    inside a bucket, so the bar close is the last tick that arrived for
    it.  ``volume`` is the tick count.
    """
    if width_ms <= 0:
        raise ValueError(f"width_ms must be positive, got {width_ms}")
    if not ticks:
        return []

    buckets: dict[int, list[float]] = {}  # key → [open, high, low, close, count]
    for tick in ticks:
        key = tick.ts - tick.ts % width_ms
        bar = buckets.get(key)
        if bar is None:
            buckets[key] = [tick.price, tick.price, tick.price, tick.price, 1]
        else:
            bar[1] = max(bar[1], tick.price)
            bar[2] = min(bar[2], tick.price)
            bar[3] = tick.price
            bar[4] += 1

    return [
        CandleData(
            time=key,
            open=bar[0],
            high=bar[1],
            low=bar[2],
            close=bar[3],
            volume=int(bar[4]),
        )
        for key, bar in sorted(buckets.items())
    ]


def closes_to_candles(
    closes: Sequence[float],
    end_ms: int,
    step_ms: int = MINUTE_MS,
) -> list[CandleData]:
    """Build bars from a bare close series ending at *end_ms*.

    Each bar opens at the previous close (the first at its own close);
    high and low span open and close.  Deterministic for a given input.
    """
    candles: list[CandleData] = []
    n = len(closes)
    prev = None
    for i, close in enumerate(closes):
        open_ = close if prev is None else prev
        candles.append(
            CandleData(
                time=end_ms - (n - 1 - i) * step_ms,
                open=open_,
                high=max(open_, close),
                low=min(open_, close),
                close=close,
            )
        )
        prev = close
    return candles


def to_closes(candles: Sequence[CandleData]) -> list[float]:
    return [c.close for c in candles]
