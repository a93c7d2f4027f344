"""Tests for the HTTP API — bridge control, frames, quotes, signals and config."""

import asyncio
import base64
import gzip
import json
from unittest.mock import AsyncMock

import pytest
from fastapi.testclient import TestClient

from signalforge.api.routers import configure_routers, event_stream
from signalforge.bridge.events import FRAME, QUOTE, EventBus, QuoteEvent
from signalforge.bridge.models import FrameRecord
from signalforge.bridge.service import BridgeService
from signalforge.config import Config
from signalforge.main import app, read_frames

client = TestClient(app)

URL = "wss://api.po.market/socket.io/?EIO=4&transport=websocket"
NOW = 1_700_000_000_000


def _make_config(**overrides) -> Config:
    defaults = dict(
        log_level="WARNING",
        api_host="127.0.0.1",
        api_port=8080,
        frame_url_pattern=r"po\.market|pocketoption\.com",
        tick_history_cap=5000,
        recent_frame_cap=20,
        activity_log_cap=100,
        auto_trade_interval_seconds=5,
        actuator_timeout_seconds=1.0,
        screener_concurrency=2,
        screener_max_results=100,
        heartbeat_seconds=10,
    )
    defaults.update(overrides)
    return Config(**defaults)


def _make_service(connected=False) -> BridgeService:
    inner = AsyncMock()
    inner.is_trade_ui_ready.return_value = False
    service = BridgeService(_make_config(), actuator=inner, clock=lambda: NOW)
    if connected:
        service.lifecycle.begin_connect()
        service.lifecycle.mark_connected()
    configure_routers(service)
    return service


# ── Health / bridge control ──────────────────────────────────────────────


class TestBridgeEndpoints:
    def test_health(self):
        resp = client.get("/health")
        assert resp.status_code == 200
        assert resp.json() == {"status": "ok"}

    def test_status_idle(self):
        _make_service()
        data = client.get("/bridge/status").json()
        assert data["status"] == "idle"
        assert data["last_error"] is None
        assert data["activity_log"] == []
        assert data["recent_frames"] == []

    def test_start_then_stop(self):
        _make_service()
        assert client.post("/bridge/start").json()["status"] == "connecting"
        assert client.post("/bridge/stop").json()["status"] == "stopped"

    def test_confirm_requires_connecting(self):
        _make_service()
        data = client.post("/bridge/confirm").json()
        assert data["confirmed"] is False
        assert data["status"] == "idle"


class TestFrameEndpoints:
    def test_post_frame_records_quote(self):
        service = _make_service(connected=True)
        resp = client.post("/bridge/frames", json={
            "direction": "in",
            "url": URL,
            "payload": '["EURUSD_otc", 1690000000000, 1.07234]',
            "ts": NOW,
        })
        assert resp.status_code == 200
        assert resp.json() == {"status": "ok", "recorded": 1, "state": "connected"}
        assert service.store.get_latest_quote("EUR/USD_otc").ts == NOW

        frames = client.get("/bridge/frames").json()["frames"]
        assert frames[0]["url"] == URL
        assert frames[0]["direction"] == "in"

    def test_post_binary_frame(self):
        _make_service(connected=True)
        packed = gzip.compress(b'["GBPUSD", 1690000000000, 1.2711]')
        resp = client.post("/bridge/frames", json={
            "url": URL,
            "payload": base64.b64encode(packed).decode("ascii"),
            "binary": True,
        })
        assert resp.json()["recorded"] == 1

    def test_frame_ignored_while_idle(self):
        _make_service()
        resp = client.post("/bridge/frames", json={
            "url": URL, "payload": '["EURUSD", 1.1]', "ts": NOW,
        })
        assert resp.json()["recorded"] == 0
        assert resp.json()["state"] == "idle"

    def test_invalid_frame_body(self):
        _make_service(connected=True)
        resp = client.post("/bridge/frames", json={
            "direction": "sideways", "payload": 5, "ts": -1, "binary": "no",
        })
        assert resp.status_code == 400
        body = resp.json()
        assert body["status"] == "error"
        assert len(body["errors"]) == 5

    def test_invalid_base64(self):
        _make_service(connected=True)
        resp = client.post("/bridge/frames", json={
            "url": URL, "payload": "not base64!!", "binary": True,
        })
        assert resp.status_code == 400
        assert resp.json()["errors"] == ["payload is not valid base64"]


# ── Quotes / instruments ─────────────────────────────────────────────────


class TestPairsEndpoints:
    def test_pairs_fresh_only_most_recent_first(self):
        service = _make_service()
        service.store.record_quote("EURUSD", 1.1, ts=NOW - 5_000)
        service.store.record_quote("GBPUSD", 1.25, ts=NOW - 1_000)
        service.store.record_quote("USDJPY", 150.0, ts=NOW - 120_000)
        data = client.get("/pairs").json()
        assert data["count"] == 2
        assert [p["symbol"] for p in data["pairs"]] == ["GBP/USD", "EUR/USD"]
        assert set(data["pairs"][0]) == {
            "id", "symbol", "asset_class", "price", "last_update", "payout",
        }

    def test_categories_include_discovered(self):
        service = _make_service()
        service.store.record_quote("EURUSD", 1.1, ts=NOW)
        service.store.add_discovered(["GBPUSD", "EURUSD"])
        cats = client.get("/pairs/categories").json()["categories"]
        assert "Favorites" in cats
        currency = cats["Currency"]
        assert [c["symbol"] for c in currency] == ["EUR/USD", "GBP/USD"]
        assert currency[1]["price"] == 0
        assert currency[1]["last_update"] is None

    def test_discovered(self):
        service = _make_service()
        service.store.add_discovered(["AUDUSD", "EURUSD"])
        assert client.get("/pairs/discovered").json() == {
            "symbols": ["AUD/USD", "EUR/USD"], "count": 2,
        }

    def test_latest_quotes(self):
        service = _make_service()
        service.store.record_quote("EURUSD", 1.1, ts=NOW)
        quotes = client.get("/quotes/latest").json()["quotes"]
        assert quotes[0]["instrument_id"] == "EUR/USD"
        assert quotes[0]["price"] == 1.1


# ── Signals / screener ───────────────────────────────────────────────────


class TestSignalEndpoints:
    def test_signal_ok(self):
        _make_service()
        resp = client.post("/signal", json={"pair": "EUR/USD", "expiry": "1m"})
        assert resp.status_code == 200
        data = resp.json()
        assert data["instrument"] == "EUR/USD"
        assert data["side"] in ("CALL", "PUT", "NEUTRAL")
        assert 0 <= data["confidence"] <= 100
        assert isinstance(data["components"], list)
        assert data["data_source"] == "synthetic"

    def test_signal_missing_fields(self):
        _make_service()
        resp = client.post("/signal", json={})
        assert resp.status_code == 400
        assert resp.json()["errors"] == ["pair is required", "expiry is required"]

    def test_signal_unknown_expiry(self):
        _make_service()
        resp = client.post("/signal", json={"pair": "EUR/USD", "expiry": "7m"})
        assert resp.status_code == 400

    def test_signal_bad_config(self):
        _make_service()
        resp = client.post("/signal", json={
            "pair": "EUR/USD", "expiry": "1m", "config": {"rsiPeriod": 0, "bogus": 1},
        })
        assert resp.status_code == 400
        assert resp.json()["status"] == "error"

    def test_signal_oversized_number_in_config(self):
        _make_service()
        resp = client.post("/signal", json={
            "pair": "EUR/USD", "expiry": "1m", "config": {"rsiPeriod": 10**400},
        })
        assert resp.status_code == 400
        assert resp.json()["errors"] == ["rsi_period must be a number"]

    def test_signal_body_is_plain_json(self):
        _make_service()
        data = client.post("/signal", json={"pair": "EUR/USD", "expiry": "5m"}).json()
        assert isinstance(data["indicators"], dict)
        assert isinstance(data["indicators"]["patterns"], list)
        assert isinstance(data["features"]["session"], dict)
        assert data["generated_at"] == NOW

    def test_screener(self):
        service = _make_service()
        service.store.record_quote("EURUSD", 1.1, ts=NOW - 1_000)
        service.store.record_quote("GBPUSD", 1.25, ts=NOW - 90_000)
        data = client.get("/screener").json()
        assert data["generated_at"] == NOW
        assert data["count"] == 1
        item = data["items"][0]
        assert item["symbol"] == "EUR/USD"
        assert item["best"]["expiry"] in ("30s", "1m", "3m", "5m", "15m")


# ── Auto-trade / auto-subscribe config ───────────────────────────────────


class TestConfigEndpoints:
    def test_auto_trade_config_roundtrip(self):
        _make_service()
        assert client.get("/auto-trade/config").json()["enabled"] is False
        resp = client.post("/auto-trade/config", json={"enabled": True, "cooldownSec": 30})
        assert resp.status_code == 200
        assert resp.json()["status"] == "ok"
        data = client.get("/auto-trade/config").json()
        assert data["enabled"] is True
        assert data["cooldown_sec"] == 30
        assert data["masaniello"]["enabled"] is False

    def test_auto_trade_config_invalid(self):
        _make_service()
        resp = client.post("/auto-trade/config", json={"threshold": 150, "account": "x"})
        assert resp.status_code == 400
        assert len(resp.json()["errors"]) == 2
        assert client.get("/auto-trade/config").json()["threshold"] == 75

    def test_preferred_symbol(self):
        _make_service()
        resp = client.post("/auto-trade/symbol", json={"symbol": "gbpusd_otc"})
        assert resp.json() == {"status": "ok", "symbol": "GBP/USD_otc"}
        assert client.get("/auto-trade/symbol").json() == {"symbol": "GBP/USD_otc"}

    def test_preferred_symbol_rejects_unknown_and_keeps_previous(self):
        _make_service()
        client.post("/auto-trade/symbol", json={"symbol": "EURUSD"})
        resp = client.post("/auto-trade/symbol", json={"symbol": "NOPE"})
        assert resp.status_code == 400
        assert client.get("/auto-trade/symbol").json() == {"symbol": "EUR/USD"}

    def test_preferred_symbol_null_clears(self):
        _make_service()
        client.post("/auto-trade/symbol", json={"symbol": "EURUSD"})
        resp = client.post("/auto-trade/symbol", json={"symbol": None})
        assert resp.json()["symbol"] is None

    def test_auto_subscribe_config(self):
        _make_service()
        assert client.get("/auto-subscribe/config").json() == {
            "enabled": True, "interval_sec": 10, "target_count": 30,
        }
        resp = client.post("/auto-subscribe/config", json={"targetCount": 12})
        assert resp.json()["target_count"] == 12
        bad = client.post("/auto-subscribe/config", json={"interval_sec": 0})
        assert bad.status_code == 400


# ── Event stream ─────────────────────────────────────────────────────────


class TestEventStream:
    @pytest.mark.asyncio
    async def test_quotes_frames_and_heartbeat(self):
        bus = EventBus()
        state = {"disconnected": False}

        async def _is_disconnected():
            return state["disconnected"]

        stream = event_stream(bus, 0.01, _is_disconnected, lambda: 123)
        assert await stream.__anext__() == "retry: 1500\n\n"

        bus.publish(QUOTE, QuoteEvent(symbol="EUR/USD", price=1.1, ts=5))
        chunk = await stream.__anext__()
        assert chunk.startswith("event: quote\ndata: ")
        assert json.loads(chunk.split("data: ", 1)[1]) == {
            "symbol": "EUR/USD", "price": 1.1, "ts": 5,
        }

        bus.publish(FRAME, FrameRecord(direction="in", url=URL, payload="x", ts=6))
        chunk = await stream.__anext__()
        assert chunk.startswith("event: message\n")

        assert await stream.__anext__() == ": ping 123\n\n"

        state["disconnected"] = True
        with pytest.raises(StopAsyncIteration):
            await stream.__anext__()
        assert bus.listener_count(QUOTE) == 0
        assert bus.listener_count(FRAME) == 0

    @pytest.mark.asyncio
    async def test_events_from_other_threads(self):
        bus = EventBus()

        async def _connected():
            return False

        stream = event_stream(bus, 1.0, _connected, lambda: 0)
        await stream.__anext__()
        await asyncio.to_thread(
            bus.publish, QUOTE, QuoteEvent(symbol="GBP/USD", price=1.2, ts=1),
        )
        chunk = await stream.__anext__()
        assert '"GBP/USD"' in chunk
        await stream.aclose()
        assert bus.listener_count(QUOTE) == 0


# ── Capture replay ───────────────────────────────────────────────────────


class TestReadFrames:
    def test_parses_and_skips_bad_lines(self):
        lines = [
            json.dumps({"direction": "in", "url": URL, "payload": "[1]", "ts": 1}),
            "",
            "not json",
            json.dumps({"url": URL, "ts": 2}),
            json.dumps({"url": URL, "payload": "x", "ts": "3"}),
        ]
        frames = read_frames(lines)
        assert len(frames) == 2
        assert frames[0].source_url == URL
        assert frames[1].direction == "in"
        assert frames[1].ts == 3
