"""Tests for signalforge.bridge.events — the typed event bus."""

import pytest

from signalforge.bridge.events import FRAME, QUOTE, EventBus, QuoteEvent


class TestEventBus:
    def test_delivery_in_registration_order(self):
        bus = EventBus()
        calls = []
        bus.subscribe(QUOTE, lambda e: calls.append(("a", e.symbol)))
        bus.subscribe(QUOTE, lambda e: calls.append(("b", e.symbol)))
        bus.publish(QUOTE, QuoteEvent("EUR/USD", 1.1, 1))
        assert calls == [("a", "EUR/USD"), ("b", "EUR/USD")]

    def test_unsubscribe_callable(self):
        bus = EventBus()
        seen = []
        off = bus.subscribe(QUOTE, seen.append)
        off()
        bus.publish(QUOTE, QuoteEvent("EUR/USD", 1.1, 1))
        assert seen == []
        assert bus.listener_count(QUOTE) == 0

    def test_unsubscribe_twice_is_harmless(self):
        bus = EventBus()
        off = bus.subscribe(FRAME, lambda e: None)
        off()
        off()
        assert bus.listener_count(FRAME) == 0

    def test_failing_listener_does_not_block_others(self):
        bus = EventBus()
        seen = []

        def boom(_):
            raise RuntimeError("listener failure")

        bus.subscribe(QUOTE, boom)
        bus.subscribe(QUOTE, seen.append)
        bus.publish(QUOTE, QuoteEvent("EUR/USD", 1.1, 1))
        assert len(seen) == 1

    def test_kinds_are_separate(self):
        bus = EventBus()
        seen = []
        bus.subscribe(FRAME, seen.append)
        bus.publish(QUOTE, QuoteEvent("EUR/USD", 1.1, 1))
        assert seen == []

    def test_unknown_kind_rejected(self):
        with pytest.raises(ValueError):
            EventBus().subscribe("trade", lambda e: None)

    def test_non_callable_rejected(self):
        with pytest.raises(TypeError):
            EventBus().subscribe(QUOTE, "not callable")  # type: ignore[arg-type]

    def test_clear(self):
        bus = EventBus()
        bus.subscribe(QUOTE, lambda e: None)
        bus.subscribe(FRAME, lambda e: None)
        bus.clear()
        assert bus.listener_count(QUOTE) == 0
        assert bus.listener_count(FRAME) == 0
