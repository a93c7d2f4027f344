"""Tests for signalforge.engine — the auto-trade policy loop."""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from signalforge.bridge.actuator import GuardedActuator
from signalforge.engine import AutoTradeEngine
from signalforge.market.store import QuoteStore
from signalforge.models.auto_trade_config import AutoTradeConfig
from signalforge.strategy.models import CALL, NEUTRAL, PUT, SignalResult

NOW = 1_700_000_000_000


def _signal(side=CALL, confidence=80, instrument="EUR/USD_otc"):
    return SignalResult(
        instrument=instrument,
        expiry="1m",
        side=side,
        confidence=confidence,
        score=50 + confidence / 2 if side == CALL else 50 - confidence / 2,
        entry_hint="",
        rationale=(),
        indicators={},
        timeframe_used="1m",
        components=(),
    )


def _make_actuator(**returns):
    inner = AsyncMock()
    inner.resolve_active_instrument.return_value = returns.get("symbol", "EURUSD_otc")
    inner.is_trade_ui_ready.return_value = returns.get("ready", True)
    inner.set_account_mode.return_value = True
    inner.set_stake_amount.return_value = True
    inner.click_side.return_value = returns.get("clicked", True)
    inner.send_frames.return_value = 0
    return inner


def _make_engine(
    inner=None,
    signal=None,
    connected=True,
    store=None,
    timeout=1.0,
    **config,
):
    inner = inner or _make_actuator()
    scorer = MagicMock()
    scorer.score = AsyncMock(return_value=signal or _signal())
    base = {"enabled": True, "threshold": 70, "cooldown_sec": 60}
    base.update(config)
    engine = AutoTradeEngine(
        scorer=scorer,
        actuator=GuardedActuator(inner, timeout=timeout),
        store=store or QuoteStore(clock=lambda: NOW),
        is_connected=lambda: connected,
        config=AutoTradeConfig().with_updates(base),
        clock=lambda: NOW,
    )
    return engine, inner, scorer


class TestRunOnceSkips:
    @pytest.mark.asyncio
    async def test_disabled_touches_nothing(self):
        engine, inner, scorer = _make_engine(enabled=False)
        result = await engine.run_once(now_ms=NOW)
        assert result == {"action": "skipped", "reason": "disabled"}
        assert inner.mock_calls == []
        scorer.score.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_not_connected(self):
        engine, inner, _ = _make_engine(connected=False)
        result = await engine.run_once(now_ms=NOW)
        assert result["reason"] == "not_connected"
        assert inner.mock_calls == []

    @pytest.mark.asyncio
    async def test_no_symbol(self):
        engine, _, _ = _make_engine(inner=_make_actuator(symbol=None))
        result = await engine.run_once(now_ms=NOW)
        assert result["reason"] == "no_symbol"

    @pytest.mark.asyncio
    async def test_ui_not_ready(self):
        engine, inner, scorer = _make_engine(inner=_make_actuator(ready=False))
        result = await engine.run_once(now_ms=NOW)
        assert result["reason"] == "ui_not_ready"
        scorer.score.assert_not_awaited()
        inner.click_side.assert_not_called()

    @pytest.mark.asyncio
    async def test_ui_check_timeout_counts_as_not_ready(self):
        inner = _make_actuator()

        async def _slow(*args):
            await asyncio.sleep(1)
            return True

        inner.is_trade_ui_ready.side_effect = _slow
        engine, _, _ = _make_engine(inner=inner, timeout=0.01)
        result = await engine.run_once(now_ms=NOW)
        assert result["reason"] == "ui_not_ready"

    @pytest.mark.asyncio
    async def test_neutral(self):
        engine, inner, _ = _make_engine(signal=_signal(side=NEUTRAL, confidence=10))
        result = await engine.run_once(now_ms=NOW)
        assert result["reason"] == "neutral"
        inner.click_side.assert_not_called()

    @pytest.mark.asyncio
    async def test_below_threshold(self):
        engine, inner, _ = _make_engine(signal=_signal(confidence=60), threshold=75)
        result = await engine.run_once(now_ms=NOW)
        assert result["reason"] == "below_threshold"
        assert result["confidence"] == 60
        inner.click_side.assert_not_called()

    @pytest.mark.asyncio
    async def test_score_error(self):
        engine, _, scorer = _make_engine()
        scorer.score.side_effect = ValueError("bad instrument")
        result = await engine.run_once(now_ms=NOW)
        assert result["reason"] == "score_error"
        assert engine.busy is False


class TestRunOnceExecution:
    @pytest.mark.asyncio
    async def test_executes_signal(self):
        engine, inner, scorer = _make_engine(signal=_signal(side=PUT, confidence=90), amount=2.5)
        result = await engine.run_once(now_ms=NOW)

        assert result["action"] == "executed"
        assert result["instrument"] == "EUR/USD_otc"
        assert result["side"] == PUT
        assert result["stake"] == 2.5
        inner.set_account_mode.assert_awaited_once_with("demo")
        inner.set_stake_amount.assert_awaited_once_with(2.5)
        inner.click_side.assert_awaited_once_with(PUT)
        scorer.score.assert_awaited_once_with("EUR/USD_otc", "1m", now_ms=NOW)
        assert engine.config.last_trade_at == NOW

    @pytest.mark.asyncio
    async def test_cooldown_allows_single_execution(self):
        engine, inner, _ = _make_engine(cooldown_sec=60)
        first = await engine.run_once(now_ms=NOW)
        second = await engine.run_once(now_ms=NOW + 1000)
        assert first["action"] == "executed"
        assert second == {"action": "skipped", "reason": "cooldown"}
        assert inner.click_side.await_count == 1

    @pytest.mark.asyncio
    async def test_cooldown_expires(self):
        engine, inner, _ = _make_engine(cooldown_sec=60)
        await engine.run_once(now_ms=NOW)
        result = await engine.run_once(now_ms=NOW + 60_000)
        assert result["action"] == "executed"
        assert inner.click_side.await_count == 2

    @pytest.mark.asyncio
    async def test_failed_click_still_starts_cooldown(self):
        engine, inner, _ = _make_engine(inner=_make_actuator(clicked=False))
        first = await engine.run_once(now_ms=NOW)
        assert first["action"] == "failed"
        assert first["reason"] == "click_failed"
        assert engine.config.last_trade_at is None
        second = await engine.run_once(now_ms=NOW + 1000)
        assert second["reason"] == "cooldown"

    @pytest.mark.asyncio
    async def test_masaniello_stake_and_step(self):
        engine, inner, _ = _make_engine(
            masaniello={"enabled": True, "bankroll": 1000, "target_wins": 3},
        )
        result = await engine.run_once(now_ms=NOW)
        assert result["stake"] == 20.0
        inner.set_stake_amount.assert_awaited_once_with(20.0)
        assert engine.config.masaniello.current_step == 2

    @pytest.mark.asyncio
    async def test_busy_flag_blocks_overlap(self):
        gate = asyncio.Event()
        inner = _make_actuator()

        async def _blocked_ready(*args):
            await gate.wait()
            return True

        inner.is_trade_ui_ready.side_effect = _blocked_ready
        engine, _, _ = _make_engine(inner=inner, timeout=5.0)

        first = asyncio.create_task(engine.run_once(now_ms=NOW))
        await asyncio.sleep(0.01)
        assert engine.busy is True
        assert await engine.run_once(now_ms=NOW) == {"action": "skipped", "reason": "busy"}
        gate.set()
        assert (await first)["action"] == "executed"
        assert engine.busy is False


class TestSymbolResolution:
    @pytest.mark.asyncio
    async def test_preferred_symbol_when_not_chart_only(self):
        engine, inner, scorer = _make_engine(active_chart_only=False)
        assert engine.set_preferred_symbol("gbpusd") == "GBP/USD"
        await engine.run_once(now_ms=NOW)
        inner.resolve_active_instrument.assert_not_called()
        assert scorer.score.await_args.args[0] == "GBP/USD"

    def test_unknown_preferred_symbol_clears(self):
        engine, _, _ = _make_engine()
        engine.set_preferred_symbol("EURUSD")
        assert engine.set_preferred_symbol("???") is None
        assert engine.preferred_symbol is None

    def test_fallback_picks_most_recent_fresh_quote(self):
        store = QuoteStore(clock=lambda: NOW)
        store.record_quote("EURUSD", 1.1, ts=NOW - 5_000)
        store.record_quote("GBPUSD", 1.25, ts=NOW - 1_000)
        store.record_quote("USDJPY", 150.0, ts=NOW - 60_000)
        engine, _, _ = _make_engine(store=store)
        assert engine.pick_fallback_symbol(NOW) == "GBP/USD"
        assert engine.pick_fallback_symbol(NOW + 40_000) is None

    @pytest.mark.asyncio
    async def test_fallback_used_without_preference(self):
        store = QuoteStore(clock=lambda: NOW)
        store.record_quote("AUDUSD", 0.66, ts=NOW - 2_000)
        engine, _, scorer = _make_engine(store=store, active_chart_only=False)
        await engine.run_once(now_ms=NOW)
        assert scorer.score.await_args.args[0] == "AUD/USD"


class TestConfigAndLoop:
    def test_update_config_validates(self):
        engine, _, _ = _make_engine()
        with pytest.raises(ValueError):
            engine.update_config({"threshold": 500})
        assert engine.update_config({"threshold": 90}).threshold == 90

    @pytest.mark.asyncio
    async def test_run_respects_max_cycles(self):
        engine, _, _ = _make_engine(enabled=False)
        results = await engine.run(interval=1, max_cycles=1)
        assert results == [{"action": "skipped", "reason": "disabled"}]
        assert engine.cycle_count == 1
        assert engine.running is False

    @pytest.mark.asyncio
    async def test_run_records_tick_errors(self):
        engine, _, scorer = _make_engine()
        scorer.score.side_effect = RuntimeError("boom")
        results = await engine.run(interval=1, max_cycles=1)
        assert results == [{"action": "error", "reason": "boom"}]
        assert engine.busy is False
