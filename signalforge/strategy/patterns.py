"""Candlestick pattern detection on the last two bars. Pure functions, no I/O."""

from typing import Sequence

from signalforge.market.models import CandleData

BULLISH_ENGULFING = "bullish_engulfing"
BEARISH_ENGULFING = "bearish_engulfing"
DOJI = "doji"
HAMMER = "hammer"
SHOOTING_STAR = "shooting_star"
PIN_BAR_BULL = "pin_bar_bull"
PIN_BAR_BEAR = "pin_bar_bear"

BULLISH_PATTERNS: frozenset[str] = frozenset({BULLISH_ENGULFING, HAMMER, PIN_BAR_BULL})
BEARISH_PATTERNS: frozenset[str] = frozenset({BEARISH_ENGULFING, SHOOTING_STAR, PIN_BAR_BEAR})


def detect_patterns(candles: Sequence[CandleData]) -> frozenset[str]:
    """Return the pattern tags present on the latest bar.

    Rules:
        - Engulfing: last body > 1.1 × previous body, opposite colours,
          and the last body covers the previous one.
        - Doji: body < 10% of the bar range.
        - Hammer: lower wick > 2 × body and upper wick < body
          (shooting star is the mirror).
        - Pin bar: one wick > 60% of the range.

    Fewer than two candles yields an empty set.
    """
    if len(candles) < 2:
        return frozenset()

    last = candles[-1]
    prev = candles[-2]
    body_last = abs(last.close - last.open)
    body_prev = abs(prev.close - prev.open)
    range_last = last.high - last.low
    found: set[str] = set()

    if body_last > body_prev * 1.1:
        if (
            last.close > last.open
            and prev.close < prev.open
            and last.close >= prev.open
            and last.open <= prev.close
        ):
            found.add(BULLISH_ENGULFING)
        if (
            last.close < last.open
            and prev.close > prev.open
            and last.open >= prev.close
            and last.close <= prev.open
        ):
            found.add(BEARISH_ENGULFING)

    if range_last > 0 and body_last / range_last < 0.1:
        found.add(DOJI)

    upper_wick = last.high - max(last.open, last.close)
    lower_wick = min(last.open, last.close) - last.low
    if lower_wick > body_last * 2 and upper_wick < body_last:
        found.add(HAMMER)
    if upper_wick > body_last * 2 and lower_wick < body_last:
        found.add(SHOOTING_STAR)

    if lower_wick > range_last * 0.6:
        found.add(PIN_BAR_BULL)
    if upper_wick > range_last * 0.6:
        found.add(PIN_BAR_BEAR)

    return frozenset(found)
