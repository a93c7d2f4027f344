"""Signal scorer — weighted, explainable CALL/PUT/NEUTRAL decision.

Starts from a neutral 50 and applies, in order: trend, momentum,
support/resistance, Fibonacci confluence, candlestick pattern,
short-expiry mean reversion, order flow, volatility regime, liquidity
sweep, fair value gap, value-area deviation, session minute and a USD
basket proxy.  Every contribution is returned alongside the decision.

Read-only with respect to the quote store.
"""

import logging
import math
from datetime import datetime, timezone
from typing import Optional, Sequence

import httpx

from signalforge.bridge.symbols import normalize_symbol
from signalforge.market.candles import closes_to_candles, ticks_to_candles, to_closes
from signalforge.market.clock import Clock, now_ms
from signalforge.market.models import CandleData, Tick
from signalforge.market.providers import CloseProvider
from signalforge.market.store import QuoteStore
from signalforge.models.analysis_config import AnalysisConfig
from signalforge.strategy.indicators import (
    calculate_ema,
    calculate_rsi,
    fibonacci_levels,
    find_recent_swing,
    generate_synthetic_ohlc,
    infer_start_price,
    is_near,
)
from signalforge.strategy.microstructure import (
    NEUTRAL_FLOW,
    NO_GAP,
    NO_SWEEP,
    ValueArea,
    detect_fvg,
    detect_liquidity_sweep,
    order_flow_imbalance,
    realized_volatility,
    value_area_from_ticks,
)
from signalforge.strategy.models import (
    CALL,
    EXPIRY_PROFILES,
    NEUTRAL,
    PUT,
    SHORT_EXPIRIES,
    ScoreComponent,
    SignalResult,
)
from signalforge.strategy.patterns import BEARISH_PATTERNS, BULLISH_PATTERNS, detect_patterns
from signalforge.strategy.session_filter import is_preferred_minute

logger = logging.getLogger("signalforge")

TICK_LOOKBACK_MS = 10 * 60_000
MIN_LIVE_CLOSES = 10
MIN_TICKS_FOR_CANDLES = 30
TICK_CANDLE_WIDTHS_MS: tuple[int, ...] = (60_000, 15_000, 5_000)
MIN_TICKS_FOR_PROFILE = 50
USD_MAJORS: tuple[str, ...] = (
    "EUR/USD", "GBP/USD", "AUD/USD", "NZD/USD", "USD/JPY", "USD/CHF", "USD/CAD",
)
USD_PROXY_WINDOW_MS = 5 * 60_000
MIN_USD_MAJORS = 3

ENTRY_HINTS: dict[str, str] = {
    CALL: "CALL on minor pullback; confluence at support/Fib; avoid chasing spikes",
    PUT: "PUT on minor bounce; confluence at resistance/Fib; avoid chasing drops",
    NEUTRAL: "Wait for clearer confluence of trend, RSI, S/R, and Fib",
}


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def decide_side(score: float, config: AnalysisConfig) -> str:
    if score >= config.call_threshold:
        return CALL
    if score <= config.put_threshold:
        return PUT
    return NEUTRAL


def confidence_from_score(score: float) -> int:
    return max(0, min(100, round_half_up(abs(score - 50) * 2)))


def _window_return(ticks: Sequence[Tick]) -> Optional[float]:
    if len(ticks) < 2 or ticks[0].price <= 0:
        return None
    return math.log(ticks[-1].price / ticks[0].price)


class SignalScorer:
    """Scores an instrument for a given expiry bucket.

    Args:
        store: Source of tick history and latest quotes.
        provider: Optional live close provider, tried first.
        clock: Returns epoch ms; ``now_ms`` on ``score`` overrides it.
    """

    def __init__(
        self,
        store: QuoteStore,
        provider: Optional[CloseProvider] = None,
        clock: Optional[Clock] = None,
    ) -> None:
        self._store = store
        self._provider = provider
        self._clock = clock or now_ms

    # ── Close series selection ───────────────────────────────────────────

    async def _live_candles(self, instrument: str, lookback: int, now: int) -> Optional[list[CandleData]]:
        if self._provider is None:
            return None
        try:
            closes = await self._provider.get_recent_closes(instrument, lookback)
        except (httpx.HTTPError, ValueError, KeyError) as exc:
            logger.warning("Live provider failed for %s: %s", instrument, exc)
            return None
        if len(closes) < MIN_LIVE_CLOSES:
            return None
        return closes_to_candles(closes, end_ms=now)

    @staticmethod
    def _tick_candles(ticks: Sequence[Tick], min_bars: int) -> Optional[tuple[list[CandleData], int]]:
        if len(ticks) < MIN_TICKS_FOR_CANDLES:
            return None
        for width in TICK_CANDLE_WIDTHS_MS:
            candles = ticks_to_candles(ticks, width)
            if len(candles) >= min_bars:
                return candles, width
        return None

    async def _select_candles(
        self,
        instrument: str,
        ticks: Sequence[Tick],
        lookback: int,
        config: AnalysisConfig,
        now: int,
    ) -> tuple[list[CandleData], str, int]:
        live = await self._live_candles(instrument, lookback, now)
        if live is not None:
            return live, "live", 60_000

        from_ticks = self._tick_candles(ticks, max(10, config.rsi_period + 1))
        if from_ticks is not None:
            candles, width = from_ticks
            return candles, "ticks", width

        synthetic = generate_synthetic_ohlc(
            instrument, lookback, infer_start_price(instrument), now=now,
        )
        return synthetic, "synthetic", 60_000

    # ── USD basket ───────────────────────────────────────────────────────

    def _usd_strength(self, now: int) -> Optional[float]:
        """Mean USD-side log return across the major basket, or None."""
        strengths: list[float] = []
        for major in USD_MAJORS:
            ticks = self._store.get_recent_ticks(major, USD_PROXY_WINDOW_MS, now_ms=now)
            if len(ticks) < 2:
                ticks = self._store.get_recent_ticks(f"{major}_otc", USD_PROXY_WINDOW_MS, now_ms=now)
            ret = _window_return(ticks)
            if ret is None:
                continue
            # USD as quote: pair up means USD down
            strengths.append(ret if major.startswith("USD/") else -ret)
        if len(strengths) < MIN_USD_MAJORS:
            return None
        return sum(strengths) / len(strengths)

    # ── Scoring ──────────────────────────────────────────────────────────

    async def score(
        self,
        instrument: str,
        expiry: str,
        config: Optional[AnalysisConfig] = None,
        now_ms: Optional[int] = None,
    ) -> SignalResult:
        """Score *instrument* for *expiry*.

        Raises ``ValueError`` for an empty instrument or unknown expiry.
        Data-source failures never raise; they fall through to the next
        source.
        """
        if not isinstance(instrument, str) or not instrument.strip():
            raise ValueError("instrument must be a non-empty string")
        profile = EXPIRY_PROFILES.get(expiry)
        if profile is None:
            raise ValueError(f"unknown expiry {expiry!r}")
        cfg = config or AnalysisConfig()
        w = cfg.weights
        now = self._clock() if now_ms is None else now_ms
        instrument = normalize_symbol(instrument) or instrument.strip()

        ticks = self._store.get_recent_ticks(instrument, TICK_LOOKBACK_MS, now_ms=now)
        candles, source, width = await self._select_candles(
            instrument, ticks, profile.lookback, cfg, now,
        )
        closes = to_closes(candles)

        ema_fast = calculate_ema(closes, cfg.ema_fast_period)[-1]
        ema_slow = calculate_ema(closes, cfg.ema_slow_period)[-1]
        rsi_last = calculate_rsi(closes, cfg.rsi_period)[-1]
        price = closes[-1]

        window = closes[-profile.sr_window:]
        sr_min = min(window)
        sr_max = max(window)
        position = (price - sr_min) / max(1e-9, sr_max - sr_min)

        swing = find_recent_swing(candles, min(120, profile.lookback))
        fib = fibonacci_levels(swing.high, swing.low)
        patterns = detect_patterns(candles)

        score = 50.0
        rationale: list[str] = []
        components: list[ScoreComponent] = []

        def add(key: str, amount: float, notes: str, reason: Optional[str] = None) -> None:
            nonlocal score
            score += amount
            components.append(ScoreComponent(key=key, score=amount, notes=notes))
            if reason:
                rationale.append(reason)

        # Trend
        fast_p, slow_p = cfg.ema_fast_period, cfg.ema_slow_period
        if ema_fast > ema_slow:
            add("trend", w.trend, "bullish EMA alignment", f"EMA({fast_p}) > EMA({slow_p})")
        elif ema_fast < ema_slow:
            add("trend", -w.trend, "bearish EMA alignment", f"EMA({fast_p}) < EMA({slow_p})")

        # Momentum
        rp = cfg.rsi_period
        if rsi_last < cfg.rsi_oversold:
            add("momentum", w.momentum_strong, "RSI oversold",
                f"RSI({rp}) oversold (<{cfg.rsi_oversold:g})")
        elif rsi_last > cfg.rsi_overbought:
            add("momentum", -w.momentum_strong, "RSI overbought",
                f"RSI({rp}) overbought (>{cfg.rsi_overbought:g})")
        elif rsi_last > 50:
            add("momentum", w.momentum_mild, "RSI > 50", "RSI > 50 bullish")
        else:
            add("momentum", -w.momentum_mild, "RSI < 50", "RSI < 50 bearish")

        # Support / resistance
        if position < 0.2:
            add("sr", w.sr, "near support", "Near support")
        elif position > 0.8:
            add("sr", -w.sr, "near resistance", "Near resistance")

        # Fibonacci confluence, gated by trend direction
        if any(is_near(price, level, cfg.fib_tolerance) for level in fib.key_levels()):
            if ema_fast >= ema_slow:
                add("fib", w.fib, "price near key Fib in bullish trend", "Fib confluence (bullish)")
            else:
                add("fib", -w.fib, "price near key Fib in bearish trend", "Fib confluence (bearish)")

        # Candlestick patterns
        if patterns & BULLISH_PATTERNS:
            add("pattern", w.pattern, "bullish PA", "Bullish candlestick pattern")
        if patterns & BEARISH_PATTERNS:
            add("pattern", -w.pattern, "bearish PA", "Bearish candlestick pattern")

        # Very short expiry mean reversion
        if expiry in SHORT_EXPIRIES:
            if rsi_last < max(20, cfg.rsi_oversold - 10):
                add("short_mr", w.short_expiry_mean_rev, "short-expiry MR (oversold)",
                    "Short expiry mean reversion (oversold)")
            if rsi_last > min(80, cfg.rsi_overbought + 10):
                add("short_mr", -w.short_expiry_mean_rev, "short-expiry MR (overbought)",
                    "Short expiry mean reversion (overbought)")

        # Order flow, 30s and 2m windows
        flow_fast = flow_slow = NEUTRAL_FLOW
        if ticks:
            flow_fast = order_flow_imbalance(ticks, 30_000)
            flow_slow = order_flow_imbalance(ticks, 120_000)
            flow_score = round_half_up(
                flow_fast.imbalance * w.order_flow_fast + flow_slow.imbalance * w.order_flow_slow
            )
            if flow_score != 0:
                add("order_flow", flow_score,
                    f"imbalance={flow_fast.imbalance:.2f} pressure={flow_fast.pressure:.2f}")

        # Realized volatility regime
        rv1m = rv5m = 0.0
        if ticks:
            rv1m = realized_volatility(ticks, 60_000)
            rv5m = realized_volatility(ticks, 300_000)
            if rv5m > 0:
                ratio = rv1m / rv5m
                if ratio < 0.6:
                    add("vol_regime", -w.vol_regime, "range compression")
                elif ratio > 1.8:
                    add("vol_regime", -w.vol_regime, "volatility burst")

        # Liquidity sweep + rejection
        sweep = NO_SWEEP
        if len(candles) >= 10:
            sweep = detect_liquidity_sweep(candles, cfg.sweep_window)
            amount = round_half_up(w.sweep * sweep.strength)
            if sweep.kind == "low":
                add("sweep", amount, "low sweep + rejection")
            elif sweep.kind == "high":
                add("sweep", -amount, "high sweep + rejection")

        # Fair value gap
        fvg = NO_GAP
        if len(candles) >= 3:
            fvg = detect_fvg(candles)
            if fvg.has_bull:
                add("fvg", w.fvg, "bullish FVG")
            if fvg.has_bear:
                add("fvg", -w.fvg, "bearish FVG")

        # Value area deviation
        value_area = ValueArea(poc_price=0.0, value_low=0.0, value_high=0.0)
        if len(ticks) >= MIN_TICKS_FOR_PROFILE:
            value_area = value_area_from_ticks(ticks, cfg.value_area_bins, cfg.value_area_pct)
            if price < value_area.value_low:
                add("profile", w.profile, "below value (mean reversion bias up)")
            elif price > value_area.value_high:
                add("profile", -w.profile, "above value (mean reversion bias down)")

        # Session minute window (UTC)
        minute = datetime.fromtimestamp(now / 1000, tz=timezone.utc).minute
        in_window = is_preferred_minute(minute, cfg.session_tolerance_minutes)
        if not in_window:
            add("session", -w.session, "off preferred minute windows")

        # USD basket proxy, oriented by the instrument's USD leg
        usd_strength = self._usd_strength(now)
        core = instrument.split("_")[0].split("-")[0]
        base, _, quote = core.partition("/")
        if usd_strength is not None and usd_strength != 0 and "USD" in (base, quote):
            bullish_for_pair = (usd_strength > 0) == (base == "USD")
            label = "strength" if usd_strength > 0 else "weakness"
            if bullish_for_pair:
                add("usd_proxy", w.usd_proxy, f"USD broad {label} favours {instrument}")
            else:
                add("usd_proxy", -w.usd_proxy, f"USD broad {label} weighs on {instrument}")

        side = decide_side(score, cfg)
        confidence = confidence_from_score(score)

        return SignalResult(
            instrument=instrument,
            expiry=expiry,
            side=side,
            confidence=confidence,
            score=score,
            entry_hint=ENTRY_HINTS[side],
            rationale=tuple(rationale),
            indicators={
                "ema_fast": ema_fast,
                "ema_slow": ema_slow,
                "rsi": round(rsi_last, 1),
                "last_price": round(price, 5),
                "sr_window_min": round(sr_min, 5),
                "sr_window_max": round(sr_max, 5),
                "swing_high": swing.high,
                "swing_low": swing.low,
                "patterns": sorted(patterns),
            },
            timeframe_used=profile.timeframe,
            components=tuple(components),
            features={
                "ofi": {"imbalance": flow_fast.imbalance, "pressure": flow_fast.pressure},
                "ofi_slow": {"imbalance": flow_slow.imbalance, "pressure": flow_slow.pressure},
                "vol": {"rv1m": rv1m, "rv5m": rv5m},
                "sweep": {"type": sweep.kind, "strength": sweep.strength},
                "fvg": {"has_bull": fvg.has_bull, "has_bear": fvg.has_bear},
                "profile": {
                    "poc": value_area.poc_price,
                    "va_low": value_area.value_low,
                    "va_high": value_area.value_high,
                },
                "session": {"in_window": in_window, "minute": minute},
                "usd_strength": usd_strength,
                "tick_count": len(ticks),
                "candle_count": len(candles),
                "candle_width_ms": width,
            },
            data_source=source,
            generated_at=now,
        )
