"""Bridge service — owns the market state and the loops that act on it.

One ``BridgeService`` per process replaces a module-level singleton.
It wires the quote store, event bus, lifecycle, actuator, scorer and
auto-trade engine together, ingests frames from the browser
collaborator and runs the auto-trade and auto-subscribe loops while the
bridge is connected.
"""

import asyncio
import logging
import re
from collections import deque
from typing import Any, Mapping, Optional

from signalforge.bridge.actuator import GuardedActuator, NullActuator, SessionLauncher, TradeActuator
from signalforge.bridge.decoder import decode_payload_candidates
from signalforge.bridge.extractor import ExtractionResult, extract_quotes, parse_documents
from signalforge.bridge.lifecycle import BridgeLifecycle
from signalforge.bridge.models import ActivityEntry, BridgeState, FrameRecord, RawFrame, SubscribeTemplate
from signalforge.bridge.symbols import harvest_symbols
from signalforge.config import Config
from signalforge.engine import AutoTradeEngine
from signalforge.market.clock import Clock, now_ms
from signalforge.market.providers import CloseProvider
from signalforge.market.store import QuoteStore
from signalforge.models.auto_trade_config import AutoSubscribeConfig, AutoTradeConfig
from signalforge.strategy.scorer import SignalScorer

logger = logging.getLogger("signalforge")

LAUNCH_TIMEOUT_SECONDS = 30.0
MIN_SUBSCRIBE_BATCH = 5
_TEMPLATE_ID_KEYS = ("symbol", "pair", "instrument", "code", "s")


def learn_subscribe_template(payload: str) -> Optional[SubscribeTemplate]:
    """Derive a subscribe template from an outbound frame.

    Recognises ``<prefix>["...sub...", {"symbol": "EUR/USD_otc", ...}]``
    and splits the payload around the first occurrence of the id.
    """
    docs = parse_documents(payload)
    if not docs:
        return None
    doc = docs[0]
    if not (isinstance(doc, list) and len(doc) >= 2 and isinstance(doc[0], str)):
        return None
    if "sub" not in doc[0].lower() or not isinstance(doc[1], dict):
        return None
    ident = next(
        (doc[1][k] for k in _TEMPLATE_ID_KEYS if isinstance(doc[1].get(k), str) and doc[1][k]),
        None,
    )
    if ident is None:
        return None
    idx = payload.find(ident)
    if idx <= 0:
        return None
    return SubscribeTemplate(
        prefix=payload[:idx],
        suffix=payload[idx + len(ident):],
        uses_slash="/" in ident,
    )


class BridgeService:
    """Frame ingestion, bridge control and the auto-trade/auto-subscribe loops.

    Args:
        config: Application configuration.
        store: Quote store; a new one sized from *config* by default.
        actuator: Browser-side trade actuator; ``NullActuator`` by default.
        launcher: Optional session launcher invoked by ``start``/``stop``.
        provider: Optional live close provider for the scorer.
        clock: Returns epoch ms.
    """

    def __init__(
        self,
        config: Config,
        store: Optional[QuoteStore] = None,
        actuator: Optional[TradeActuator] = None,
        launcher: Optional[SessionLauncher] = None,
        provider: Optional[CloseProvider] = None,
        clock: Optional[Clock] = None,
    ) -> None:
        self._config = config
        self._clock = clock or now_ms
        self._store = store or QuoteStore(
            tick_history_cap=config.tick_history_cap,
            recent_frame_cap=config.recent_frame_cap,
            clock=self._clock,
        )
        self._url_re = re.compile(config.frame_url_pattern, re.IGNORECASE)
        self._actuator = GuardedActuator(
            actuator or NullActuator(), timeout=config.actuator_timeout_seconds,
        )
        self._launcher = launcher
        self._lifecycle = BridgeLifecycle()
        self._lifecycle.add_listener(self._on_state_change)
        self._activity: deque[ActivityEntry] = deque(maxlen=config.activity_log_cap)

        self._scorer = SignalScorer(self._store, provider=provider, clock=self._clock)
        self._engine = AutoTradeEngine(
            self._scorer,
            self._actuator,
            self._store,
            is_connected=lambda: self._lifecycle.is_connected,
            clock=self._clock,
            activity=self.log,
        )
        self._auto_subscribe = AutoSubscribeConfig()
        self._template: Optional[SubscribeTemplate] = None
        self._auto_trade_task: Optional[asyncio.Task] = None
        self._auto_subscribe_task: Optional[asyncio.Task] = None

    # ── Accessors ────────────────────────────────────────────────────────

    @property
    def config(self) -> Config:
        return self._config

    @property
    def store(self) -> QuoteStore:
        return self._store

    @property
    def scorer(self) -> SignalScorer:
        return self._scorer

    @property
    def engine(self) -> AutoTradeEngine:
        return self._engine

    @property
    def lifecycle(self) -> BridgeLifecycle:
        return self._lifecycle

    @property
    def actuator(self) -> GuardedActuator:
        return self._actuator

    @property
    def state(self) -> BridgeState:
        return self._lifecycle.state

    @property
    def subscribe_template(self) -> Optional[SubscribeTemplate]:
        return self._template

    # ── Activity log ─────────────────────────────────────────────────────

    def log(self, msg: str, level: str = "info") -> None:
        """Append to the bounded activity log."""
        self._activity.append(ActivityEntry(ts=self._clock(), level=level, msg=msg))
        logger.debug("[activity:%s] %s", level, msg)

    def get_activity_log(self) -> list[ActivityEntry]:
        return list(reversed(self._activity))

    # ── Lifecycle control ────────────────────────────────────────────────

    async def start(self) -> dict:
        """Request a session.  No-op while connecting or connected."""
        if self._lifecycle.state in (BridgeState.CONNECTING, BridgeState.CONNECTED):
            self.log("start: bridge already running")
            return self.get_status()

        self._lifecycle.begin_connect()
        self.log("start: connecting")
        if self._launcher is not None:
            try:
                await asyncio.wait_for(self._launcher.launch(), timeout=LAUNCH_TIMEOUT_SECONDS)
                self.log("start: session launched")
            except asyncio.TimeoutError:
                self.log("start: session launch timed out", "error")
                self._lifecycle.mark_error("Session launch timed out")
            except Exception as exc:
                self.log(f"start: session launch failed: {exc}", "error")
                self._lifecycle.mark_error(str(exc) or type(exc).__name__)
        return self.get_status()

    async def stop(self) -> dict:
        """Close the session and move to ``stopped``."""
        self._cancel_loops()
        if self._launcher is not None:
            try:
                await asyncio.wait_for(self._launcher.close(), timeout=LAUNCH_TIMEOUT_SECONDS)
            except Exception as exc:
                logger.warning("Session close failed: %s", exc)
        self._lifecycle.mark_stopped()
        self.log("stop: bridge stopped")
        return self.get_status()

    def mark_session_closed(self) -> None:
        """Called by the collaborator when the browser session goes away."""
        self.log("Browser session closed", "warn")
        self._lifecycle.mark_stopped()

    def confirm_ui(self) -> bool:
        """External confirmation that the venue UI is logged in."""
        ok = self._lifecycle.mark_connected()
        if ok:
            self.log("Bridge confirmed by UI")
        return ok

    async def refresh_status(self) -> dict:
        """While connecting, promote to connected when the trade UI is ready."""
        if self._lifecycle.state is BridgeState.CONNECTING:
            if await self._actuator.is_trade_ui_ready(False):
                self.log('Status promoted from "connecting" to "connected" based on UI detection.')
                self._lifecycle.mark_connected()
        return self.get_status()

    def get_status(self) -> dict:
        return {
            "status": self._lifecycle.state.value,
            "last_error": self._lifecycle.last_error,
            "activity_log": [
                {"ts": e.ts, "level": e.level, "msg": e.msg} for e in self.get_activity_log()
            ],
            "recent_frames": [
                {"direction": f.direction, "url": f.url, "payload": f.payload, "ts": f.ts}
                for f in self._store.get_recent_frames()
            ],
        }

    async def shutdown(self) -> None:
        """Tear down loops, the session and all event listeners."""
        self._cancel_loops()
        for task in (self._auto_trade_task, self._auto_subscribe_task):
            if task is not None:
                try:
                    await task
                except asyncio.CancelledError:
                    pass
        self._auto_trade_task = self._auto_subscribe_task = None
        if self._launcher is not None and self._lifecycle.state in (
            BridgeState.CONNECTING, BridgeState.CONNECTED,
        ):
            try:
                await asyncio.wait_for(self._launcher.close(), timeout=LAUNCH_TIMEOUT_SECONDS)
            except Exception as exc:
                logger.warning("Session close failed during shutdown: %s", exc)
        self._lifecycle.remove_listener(self._on_state_change)
        self._store.event_bus.clear()
        logger.info("Bridge service shut down")

    # ── Frame ingestion ──────────────────────────────────────────────────

    def ingest_frame(self, frame: RawFrame) -> int:
        """Decode, harvest and extract one frame.  Returns quotes recorded.

        Frames are ignored unless the bridge is connecting or connected
        and the source URL matches the configured pattern.  Never raises.
        """
        if not self._lifecycle.accepts_frames:
            return 0
        if not self._url_re.search(frame.source_url or ""):
            return 0

        candidates = decode_payload_candidates(frame.payload)
        if candidates:
            printable = candidates[0]
        elif isinstance(frame.payload, (bytes, bytearray)):
            printable = bytes(frame.payload).decode("utf-8", errors="replace")
        else:
            printable = frame.payload or ""
        self._store.record_frame(FrameRecord(
            direction=frame.direction, url=frame.source_url, payload=printable, ts=frame.ts,
        ))

        if frame.direction == "out":
            template = learn_subscribe_template(printable)
            if template is not None:
                self._template = template
                self.log(f"Learned subscribe template (uses_slash={template.uses_slash})")
            return 0

        if self._lifecycle.state is BridgeState.CONNECTING:
            self.log(f"First frame received from {frame.source_url}")
            self._lifecycle.mark_connected()

        self._store.add_discovered(harvest_symbols(candidates))

        for candidate in candidates:
            try:
                result = extract_quotes(candidate)
            except Exception as exc:
                logger.debug("Skipping undecodable frame candidate: %s", exc)
                continue
            if not result.empty:
                return self._apply(result, frame.ts)
        return 0

    def _apply(self, result: ExtractionResult, ts: int) -> int:
        recorded = 0
        for p in result.payouts:
            self._store.record_payout(p.key, p.payout, ts)
        for q in result.quotes:
            if self._store.record_quote(q.symbol, q.price, ts) is not None:
                recorded += 1
        for iq in result.instrument_quotes:
            if self._store.record_instrument_quote(iq.raw_id, iq.price, ts) is not None:
                recorded += 1
        return recorded

    # ── Auto-trade / auto-subscribe config ───────────────────────────────

    def get_auto_trade_config(self) -> AutoTradeConfig:
        return self._engine.config

    def update_auto_trade_config(self, body: Mapping[str, Any]) -> AutoTradeConfig:
        cfg = self._engine.update_config(body)
        self.log(f"AutoTrade config updated (enabled={cfg.enabled})")
        return cfg

    def get_preferred_symbol(self) -> Optional[str]:
        return self._engine.preferred_symbol

    def set_preferred_symbol(self, symbol: Optional[str]) -> Optional[str]:
        return self._engine.set_preferred_symbol(symbol)

    def get_auto_subscribe_config(self) -> AutoSubscribeConfig:
        return self._auto_subscribe

    def update_auto_subscribe_config(self, body: Mapping[str, Any]) -> AutoSubscribeConfig:
        self._auto_subscribe = self._auto_subscribe.with_updates(body)
        self.log(f"AutoSubscribe config updated (enabled={self._auto_subscribe.enabled})")
        return self._auto_subscribe

    async def auto_subscribe_tick(self) -> int:
        """Send subscribe frames for discovered symbols.  Returns frames sent."""
        if not self._lifecycle.is_connected or not self._auto_subscribe.enabled:
            return 0
        template = self._template
        if template is None:
            self.log("AutoSubscribe: no subscribe template learned yet", "warn")
            return 0
        discovered = self._store.get_discovered_symbols()
        if not discovered:
            return 0
        count = max(MIN_SUBSCRIBE_BATCH, min(self._auto_subscribe.target_count, len(discovered)))
        payloads = [template.render(sym) for sym in discovered[:count]]
        sent = await self._actuator.send_frames(payloads)
        self.log(f"AutoSubscribe: sent {sent} subscribe frames")
        return sent

    # ── Loops ────────────────────────────────────────────────────────────

    def _on_state_change(self, previous: BridgeState, current: BridgeState) -> None:
        self.log(f"Bridge state: {previous.value} → {current.value}")
        if current is BridgeState.CONNECTED:
            self._start_loops()
        elif previous is BridgeState.CONNECTED:
            self._cancel_loops()

    def _start_loops(self) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.warning("No running event loop; auto-trade and auto-subscribe loops not started")
            return
        if self._auto_trade_task is None or self._auto_trade_task.done():
            self._auto_trade_task = loop.create_task(
                self._engine.run(interval=self._config.auto_trade_interval_seconds),
            )
        if self._auto_subscribe_task is None or self._auto_subscribe_task.done():
            self._auto_subscribe_task = loop.create_task(self._auto_subscribe_loop())

    def _cancel_loops(self) -> None:
        self._engine.stop()
        for task in (self._auto_trade_task, self._auto_subscribe_task):
            if task is not None and not task.done():
                task.cancel()

    async def _auto_subscribe_loop(self) -> None:
        while self._lifecycle.is_connected:
            try:
                await self.auto_subscribe_tick()
            except Exception as exc:
                self.log(f"AutoSubscribe error: {exc}", "error")
            await asyncio.sleep(self._auto_subscribe.effective_interval)
