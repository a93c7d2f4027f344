"""SignalForge — auto-trade engine (policy loop).

Connects the signal scorer, staking policy and trade actuator into a
single timer-driven loop.  Each tick is best-effort: anything that cannot
be resolved, confirmed or executed is logged and skipped until the next
tick.
"""

import asyncio
import logging
from dataclasses import replace
from typing import Any, Callable, Mapping, Optional

from signalforge.bridge.actuator import GuardedActuator
from signalforge.bridge.symbols import normalize_symbol
from signalforge.market.clock import Clock, now_ms
from signalforge.market.store import QuoteStore
from signalforge.models.auto_trade_config import AutoTradeConfig
from signalforge.risk.position_sizer import advance_step, masaniello_is_active, resolve_stake
from signalforge.strategy.models import NEUTRAL
from signalforge.strategy.scorer import SignalScorer

logger = logging.getLogger("signalforge")

FALLBACK_MAX_AGE_MS = 30_000

ActivityLog = Callable[[str, str], None]


class AutoTradeEngine:
    """Runs one auto-trade decision per call to ``run_once``.

    Args:
        scorer: Produces the signal for the resolved instrument.
        actuator: Timeout-guarded trade actuator.
        store: Used to pick a fallback instrument.
        is_connected: Returns True while the bridge is connected.
        config: Initial policy; defaults to a disabled policy.
        clock: Returns epoch ms.
        activity: Optional ``(msg, level)`` sink for the bridge activity log.
    """

    def __init__(
        self,
        scorer: SignalScorer,
        actuator: GuardedActuator,
        store: QuoteStore,
        is_connected: Callable[[], bool],
        config: Optional[AutoTradeConfig] = None,
        clock: Optional[Clock] = None,
        activity: Optional[ActivityLog] = None,
    ) -> None:
        self._scorer = scorer
        self._actuator = actuator
        self._store = store
        self._is_connected = is_connected
        self._config = config or AutoTradeConfig()
        self._clock = clock or now_ms
        self._activity = activity
        self._preferred_symbol: Optional[str] = None
        self._busy = False
        self._running = False
        self._cycle_count = 0
        self._last_attempt_at: Optional[int] = None

    # ── Configuration ────────────────────────────────────────────────────

    @property
    def config(self) -> AutoTradeConfig:
        return self._config

    def update_config(self, body: Mapping[str, Any]) -> AutoTradeConfig:
        """Validate and apply a partial update.  Raises ``ValueError``."""
        self._config = self._config.with_updates(body)
        logger.info("Auto-trade config updated: enabled=%s", self._config.enabled)
        return self._config

    @property
    def preferred_symbol(self) -> Optional[str]:
        return self._preferred_symbol

    def set_preferred_symbol(self, symbol: Optional[str]) -> Optional[str]:
        """Normalize and store the preferred symbol; unknown symbols clear it."""
        self._preferred_symbol = normalize_symbol(symbol) if symbol else None
        return self._preferred_symbol

    @property
    def busy(self) -> bool:
        return self._busy

    @property
    def running(self) -> bool:
        return self._running

    @property
    def cycle_count(self) -> int:
        return self._cycle_count

    def _log(self, msg: str, level: str = "info") -> None:
        getattr(logger, "warning" if level == "warn" else level)(msg)
        if self._activity:
            self._activity(msg, level)

    # ── Instrument resolution ────────────────────────────────────────────

    def pick_fallback_symbol(self, now: Optional[int] = None) -> Optional[str]:
        """Most recently updated priced instrument within the last 30 s."""
        now = self._clock() if now is None else now
        recent = [
            x for x in self._store.get_instruments()
            if x.price > 0 and now - x.last_update < FALLBACK_MAX_AGE_MS
        ]
        if not recent:
            return None
        best = max(recent, key=lambda x: x.last_update)
        return best.symbol

    async def _resolve_symbol(self, cfg: AutoTradeConfig, now: int) -> Optional[str]:
        if cfg.active_chart_only:
            return await self._actuator.resolve_active_instrument()
        if self._preferred_symbol:
            return self._preferred_symbol
        return self.pick_fallback_symbol(now)

    # ── Single tick ──────────────────────────────────────────────────────

    def _in_cooldown(self, cfg: AutoTradeConfig, now: int) -> bool:
        marks = [t for t in (cfg.last_trade_at, self._last_attempt_at) if t is not None]
        if not marks:
            return False
        return now - max(marks) < cfg.cooldown_sec * 1000

    async def run_once(self, now_ms: Optional[int] = None) -> dict:
        """Execute one auto-trade tick.

        Returns a dict describing the outcome:

        - ``{"action": "skipped", "reason": "..."}``
        - ``{"action": "executed", "instrument": ..., "side": ..., ...}``
        - ``{"action": "failed", "reason": "click_failed", ...}``

        Args:
            now_ms: Current epoch ms.  Defaults to the engine clock.
        """
        if not self._is_connected():
            return {"action": "skipped", "reason": "not_connected"}
        cfg = self._config
        if not cfg.enabled:
            return {"action": "skipped", "reason": "disabled"}
        if self._busy:
            return {"action": "skipped", "reason": "busy"}

        now = self._clock() if now_ms is None else now_ms
        if self._in_cooldown(cfg, now):
            return {"action": "skipped", "reason": "cooldown"}

        self._busy = True
        try:
            return await self._evaluate_and_execute(cfg, now)
        finally:
            self._busy = False

    async def _evaluate_and_execute(self, cfg: AutoTradeConfig, now: int) -> dict:
        symbol = await self._resolve_symbol(cfg, now)
        if not symbol:
            self._log("AutoTrade: no symbol resolved", "warn")
            return {"action": "skipped", "reason": "no_symbol"}

        if not await self._actuator.is_trade_ui_ready(cfg.allow_navigate):
            self._log("AutoTrade: trade UI not ready", "warn")
            return {"action": "skipped", "reason": "ui_not_ready", "instrument": symbol}

        try:
            result = await self._scorer.score(symbol, cfg.expiry, now_ms=now)
        except ValueError as exc:
            self._log(f"AutoTrade: could not score {symbol}: {exc}", "warn")
            return {"action": "skipped", "reason": "score_error", "instrument": symbol}

        if result.side == NEUTRAL:
            self._log(f"AutoTrade: neutral signal for {symbol}, skipping")
            return {"action": "skipped", "reason": "neutral", "instrument": symbol}
        if result.confidence < cfg.threshold:
            self._log(
                f"AutoTrade: below threshold for {symbol} "
                f"({result.confidence}% < {cfg.threshold:g}%)"
            )
            return {
                "action": "skipped",
                "reason": "below_threshold",
                "instrument": symbol,
                "confidence": result.confidence,
            }

        await self._actuator.set_account_mode(cfg.account)
        stake = round(resolve_stake(cfg.amount, cfg.masaniello), 2)
        await self._actuator.set_stake_amount(stake)
        self._last_attempt_at = now
        ok = await self._actuator.click_side(result.side)

        outcome = {
            "instrument": symbol,
            "side": result.side,
            "expiry": cfg.expiry,
            "stake": stake,
            "confidence": result.confidence,
        }
        self._log(
            f"AutoTrade {'EXECUTED' if ok else 'FAILED'} {symbol} {result.side} "
            f"{cfg.expiry} @{stake:g} conf={result.confidence}%",
            "info" if ok else "error",
        )
        if not ok:
            return {"action": "failed", "reason": "click_failed", **outcome}

        # Bookkeeping applies to the live config in case it changed mid-tick
        current = self._config
        m = current.masaniello
        if masaniello_is_active(m):
            m = replace(m, current_step=advance_step(m))
        self._config = replace(current, last_trade_at=now, masaniello=m)
        return {"action": "executed", **outcome}

    # ── Polling loop ─────────────────────────────────────────────────────

    def stop(self) -> None:
        """Signal the loop to stop after the current tick."""
        self._running = False

    async def run(self, interval: int = 5, max_cycles: int = 0) -> list[dict]:
        """Tick on a fixed interval until stopped.

        Args:
            interval: Seconds between ticks.
            max_cycles: Stop after this many ticks (0 = unlimited).

        Returns:
            List of per-tick result dicts.
        """
        self._running = True
        results: list[dict] = []
        cycle = 0

        while self._running:
            cycle += 1
            self._cycle_count += 1
            try:
                result = await self.run_once()
                results.append(result)
                logger.debug("Auto-trade tick %d: %s", cycle, result.get("action"))
            except Exception as exc:
                logger.error("Auto-trade tick %d error: %s", cycle, exc)
                results.append({"action": "error", "reason": str(exc)})

            if max_cycles > 0 and cycle >= max_cycles:
                break

            # Interruptible sleep: checks _running every second
            for _ in range(max(1, int(interval))):
                if not self._running:
                    break
                await asyncio.sleep(1)

        self._running = False
        return results
