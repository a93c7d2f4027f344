"""HTTP API routers — bridge control, quotes, signals, screener, config.

No business logic.  Delegates to the ``BridgeService`` and ``Screener``
injected by ``configure_routers()``.
"""

import asyncio
import base64
import binascii
import json
import logging
from dataclasses import asdict, fields
from typing import AsyncIterator, Awaitable, Callable, Optional

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse, StreamingResponse

from signalforge.bridge.events import FRAME, QUOTE, EventBus, QuoteEvent
from signalforge.bridge.models import FrameRecord, RawFrame
from signalforge.bridge.service import BridgeService
from signalforge.bridge.symbols import classify_instrument, instrument_key, normalize_symbol
from signalforge.market.models import ASSET_CLASSES
from signalforge.models.analysis_config import AnalysisConfig
from signalforge.strategy.models import SignalResult, thaw
from signalforge.strategy.screener import Screener

logger = logging.getLogger("signalforge")
router = APIRouter()

# ── Shared state (set during app startup) ────────────────────────────────

_service: Optional[BridgeService] = None   # Set via configure_routers()
_screener: Optional[Screener] = None       # Set via configure_routers()
_heartbeat_seconds: float = 10.0

SSE_RETRY_MS = 1500
SSE_QUEUE_SIZE = 1000
LIVE_MAX_AGE_MS = 60_000
FAVORITES = "Favorites"


def configure_routers(
    service: BridgeService,
    screener: Optional[Screener] = None,
    heartbeat_seconds: Optional[float] = None,
) -> None:
    """Inject dependencies from the application startup.

    Args:
        service: The process-wide ``BridgeService``.
        screener: Screener over the service's store; built from the
            service when omitted.
        heartbeat_seconds: SSE keepalive interval.
    """
    global _service, _screener, _heartbeat_seconds  # noqa: PLW0603
    _service = service
    _screener = screener or Screener(
        service.store,
        service.scorer,
        concurrency=service.config.screener_concurrency,
        max_results=service.config.screener_max_results,
    )
    _heartbeat_seconds = heartbeat_seconds or service.config.heartbeat_seconds


def _require_service() -> BridgeService:
    if _service is None:
        raise RuntimeError("routers not configured")
    return _service


def _error(errors: list[str], status_code: int = 400) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"status": "error", "errors": errors})


def _split_errors(exc: ValueError) -> list[str]:
    return [part for part in str(exc).split("; ") if part] or ["invalid request"]


def signal_to_dict(result: SignalResult) -> dict:
    """JSON-ready form of a scorer result."""
    data = {f.name: getattr(result, f.name) for f in fields(result)}
    data["rationale"] = list(result.rationale)
    data["indicators"] = thaw(result.indicators)
    data["features"] = thaw(result.features)
    data["components"] = [asdict(c) for c in result.components]
    return data


# ── Bridge control ───────────────────────────────────────────────────────


@router.get("/bridge/status")
async def get_bridge_status():
    """Lifecycle state, last error, activity log and recent frames."""
    return await _require_service().refresh_status()


@router.post("/bridge/start")
async def start_bridge():
    return await _require_service().start()


@router.post("/bridge/stop")
async def stop_bridge():
    return await _require_service().stop()


@router.post("/bridge/confirm")
async def confirm_bridge():
    """External UI confirmation: connecting → connected."""
    service = _require_service()
    confirmed = service.confirm_ui()
    return {"confirmed": confirmed, **service.get_status()}


@router.get("/bridge/frames")
async def get_recent_frames():
    frames = _require_service().store.get_recent_frames()
    return {"frames": [asdict(f) for f in frames]}


@router.post("/bridge/frames")
async def post_frame(body: dict):
    """Ingest one captured websocket frame.

    Expects ``{"direction": "in"|"out", "url": "...", "payload": "...",
    "binary": false, "ts": 1690000000000}``.  Binary payloads are sent
    base64-encoded with ``binary: true``.
    """
    service = _require_service()
    errors = []

    direction = body.get("direction", "in")
    if direction not in ("in", "out"):
        errors.append("direction must be 'in' or 'out'")
    url = body.get("url")
    if not isinstance(url, str) or not url:
        errors.append("url must be a non-empty string")
    payload = body.get("payload")
    if not isinstance(payload, str):
        errors.append("payload must be a string")
    ts = body.get("ts")
    if ts is not None and (not isinstance(ts, int) or isinstance(ts, bool) or ts < 0):
        errors.append("ts must be a non-negative integer (epoch ms)")
    binary = body.get("binary", False)
    if not isinstance(binary, bool):
        errors.append("binary must be a boolean")
    if errors:
        return _error(errors)

    data = payload
    if binary:
        try:
            data = base64.b64decode(payload, validate=True)
        except (binascii.Error, ValueError):
            return _error(["payload is not valid base64"])

    frame = RawFrame(
        direction=direction,
        source_url=url,
        payload=data,
        ts=ts if ts is not None else service.store.clock(),
    )
    recorded = service.ingest_frame(frame)
    return {"status": "ok", "recorded": recorded, "state": service.state.value}


# ── Streaming ────────────────────────────────────────────────────────────


def _format_event(kind: str, data: dict) -> str:
    return f"event: {kind}\ndata: {json.dumps(data)}\n\n"


async def event_stream(
    bus: EventBus,
    heartbeat_seconds: float,
    is_disconnected: Callable[[], Awaitable[bool]],
    clock: Callable[[], int],
) -> AsyncIterator[str]:
    """Server-sent events for frames (``message``) and quotes (``quote``).

    Events published from other threads are handed over to the loop.
    When a slow consumer lets the queue fill up, new events are dropped.
    """
    loop = asyncio.get_running_loop()
    queue: asyncio.Queue[str] = asyncio.Queue(maxsize=SSE_QUEUE_SIZE)

    def _put(chunk: str) -> None:
        try:
            queue.put_nowait(chunk)
        except asyncio.QueueFull:
            pass

    def on_frame(evt: FrameRecord) -> None:
        loop.call_soon_threadsafe(_put, _format_event("message", asdict(evt)))

    def on_quote(evt: QuoteEvent) -> None:
        loop.call_soon_threadsafe(_put, _format_event("quote", asdict(evt)))

    off_frame = bus.subscribe(FRAME, on_frame)
    off_quote = bus.subscribe(QUOTE, on_quote)
    try:
        yield f"retry: {SSE_RETRY_MS}\n\n"
        while not await is_disconnected():
            try:
                chunk = await asyncio.wait_for(queue.get(), timeout=heartbeat_seconds)
            except asyncio.TimeoutError:
                chunk = f": ping {clock()}\n\n"
            yield chunk
    finally:
        off_frame()
        off_quote()


@router.get("/bridge/stream")
async def stream_bridge(request: Request):
    """SSE feed of quote and frame events plus ``: ping`` heartbeats."""
    service = _require_service()
    return StreamingResponse(
        event_stream(
            service.store.event_bus,
            _heartbeat_seconds,
            request.is_disconnected,
            service.store.clock,
        ),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache, no-transform",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",
        },
    )


# ── Quotes / instruments ─────────────────────────────────────────────────


@router.get("/pairs")
async def get_pairs():
    """Recently priced instruments, most recently updated first."""
    service = _require_service()
    now = service.store.clock()
    pairs = [
        {
            "id": x.id,
            "symbol": x.symbol,
            "asset_class": x.asset_class,
            "price": x.price,
            "last_update": x.last_update,
            "payout": x.payout,
        }
        for x in service.store.get_instruments()
        if x.price > 0 and now - x.last_update < LIVE_MAX_AGE_MS
    ]
    pairs.sort(key=lambda p: p["symbol"])
    pairs.sort(key=lambda p: p["last_update"], reverse=True)
    return {"pairs": pairs, "count": len(pairs)}


@router.get("/pairs/categories")
async def get_pair_categories():
    """Instruments bucketed by asset class; discovered-only symbols at price 0."""
    service = _require_service()
    buckets: dict[str, list[dict]] = {FAVORITES: []}
    for asset_class in ASSET_CLASSES:
        buckets[asset_class] = []

    instruments = service.store.get_instruments()
    seen = set()
    for x in instruments:
        buckets.setdefault(x.asset_class, []).append({
            "id": x.id, "symbol": x.symbol, "price": x.price, "last_update": x.last_update,
        })
        seen.add(x.id)
    for sym in service.store.get_discovered_symbols():
        ident = instrument_key(sym)
        if ident in seen:
            continue
        buckets.setdefault(classify_instrument(sym), []).append({
            "id": ident, "symbol": sym, "price": 0, "last_update": None,
        })
        seen.add(ident)

    for items in buckets.values():
        items.sort(key=lambda item: item["symbol"])
    return {"categories": buckets}


@router.get("/pairs/discovered")
async def get_discovered():
    symbols = _require_service().store.get_discovered_symbols()
    return {"symbols": symbols, "count": len(symbols)}


@router.get("/quotes/latest")
async def get_latest_quotes():
    quotes = _require_service().store.get_latest_quotes()
    return {"quotes": [asdict(q) for q in quotes]}


# ── Signals ──────────────────────────────────────────────────────────────


@router.post("/signal")
async def post_signal(body: dict):
    """Score one instrument: ``{"pair": ..., "expiry": ..., "config": {...}}``."""
    service = _require_service()
    pair = body.get("pair")
    expiry = body.get("expiry")
    errors = []
    if not isinstance(pair, str) or not pair.strip():
        errors.append("pair is required")
    if not isinstance(expiry, str) or not expiry.strip():
        errors.append("expiry is required")
    if errors:
        return _error(errors)

    try:
        config = AnalysisConfig.from_dict(body.get("config"))
        result = await service.scorer.score(pair, expiry, config=config)
    except ValueError as exc:
        return _error(_split_errors(exc))
    return signal_to_dict(result)


@router.get("/screener")
async def get_screener():
    """Best expiry per live instrument, ranked by confidence."""
    service = _require_service()
    if _screener is None:
        return _error(["screener not configured"], status_code=503)
    now = service.store.clock()
    items = await _screener.screen(now_ms=now)
    return {
        "generated_at": now,
        "count": len(items),
        "items": [item.to_dict() for item in items],
    }


# ── Auto-trade / auto-subscribe config ───────────────────────────────────


@router.get("/auto-trade/config")
async def get_auto_trade_config():
    return asdict(_require_service().get_auto_trade_config())


@router.post("/auto-trade/config")
async def post_auto_trade_config(body: dict):
    """Validate and apply a partial auto-trade config update."""
    service = _require_service()
    try:
        cfg = service.update_auto_trade_config(body)
    except ValueError as exc:
        return _error(_split_errors(exc))
    return {"status": "ok", **asdict(cfg)}


@router.get("/auto-trade/symbol")
async def get_auto_trade_symbol():
    return {"symbol": _require_service().get_preferred_symbol()}


@router.post("/auto-trade/symbol")
async def post_auto_trade_symbol(body: dict):
    """Set the preferred symbol; ``null`` clears it."""
    raw = body.get("symbol")
    if raw is not None and not isinstance(raw, str):
        return _error(["symbol must be a string or null"])
    if raw and normalize_symbol(raw) is None:
        return _error([f"unrecognised symbol '{raw}'"])
    symbol = _require_service().set_preferred_symbol(raw)
    return {"status": "ok", "symbol": symbol}


@router.get("/auto-subscribe/config")
async def get_auto_subscribe_config():
    return asdict(_require_service().get_auto_subscribe_config())


@router.post("/auto-subscribe/config")
async def post_auto_subscribe_config(body: dict):
    service = _require_service()
    try:
        cfg = service.update_auto_subscribe_config(body)
    except ValueError as exc:
        return _error(_split_errors(exc))
    return {"status": "ok", **asdict(cfg)}
