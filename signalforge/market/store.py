"""Quote store — authoritative in-memory market state.

Owns per-instrument tick history, latest quotes, payouts, raw instrument
quotes, discovered symbols and a ring buffer of recent frames.  Readers
always receive copies.  A lock guards every mutation so collaborators may
ingest from another thread.
"""

import logging
import math
import threading
from collections import deque
from typing import Iterable, Optional

from signalforge.bridge.events import FRAME, QUOTE, EventBus, QuoteEvent
from signalforge.bridge.models import FrameRecord
from signalforge.bridge.symbols import (
    classify_instrument,
    display_from_id,
    instrument_key,
    normalize_symbol,
)
from signalforge.market.clock import Clock, now_ms
from signalforge.market.models import (
    InstrumentListing,
    InstrumentQuote,
    PayoutRecord,
    QuoteRecord,
    Tick,
)

logger = logging.getLogger("signalforge")


def _valid_price(price: object) -> bool:
    return (
        isinstance(price, (int, float))
        and not isinstance(price, bool)
        and math.isfinite(price)
        and price > 0
    )


def _put_bounded(table: dict, key: str, value: object, cap: int) -> None:
    # Re-insert so dict order tracks recency; evict from the front
    table.pop(key, None)
    table[key] = value
    while len(table) > cap:
        del table[next(iter(table))]


class QuoteStore:
    """In-memory per-instrument state.

    Args:
        tick_history_cap: Max ticks kept per instrument.
        recent_frame_cap: Size of the diagnostic frame ring buffer.
        event_bus: Receives a ``quote`` event for every recorded quote
            and a ``frame`` event for every recorded frame.
        clock: Returns epoch ms; used when callers omit a timestamp.
        instrument_cap: Max raw instrument quotes and raw payouts kept;
            the least recently updated entry is evicted first.
    """

    def __init__(
        self,
        tick_history_cap: int = 5000,
        recent_frame_cap: int = 20,
        event_bus: Optional[EventBus] = None,
        clock: Optional[Clock] = None,
        instrument_cap: int = 500,
    ) -> None:
        if tick_history_cap < 1:
            raise ValueError(f"tick_history_cap must be positive, got {tick_history_cap}")
        if instrument_cap < 1:
            raise ValueError(f"instrument_cap must be positive, got {instrument_cap}")
        self._instrument_cap = instrument_cap
        self._cap = tick_history_cap
        self._bus = event_bus or EventBus()
        self._clock = clock or now_ms
        self._lock = threading.Lock()

        self._ticks: dict[str, list[Tick]] = {}
        self._quotes: dict[str, QuoteRecord] = {}
        self._payouts: dict[str, PayoutRecord] = {}
        self._instrument_payouts: dict[str, PayoutRecord] = {}
        self._instrument_quotes: dict[str, InstrumentQuote] = {}
        self._discovered: set[str] = set()
        self._frames: deque[FrameRecord] = deque(maxlen=recent_frame_cap)

    @property
    def event_bus(self) -> EventBus:
        return self._bus

    @property
    def tick_history_cap(self) -> int:
        return self._cap

    @property
    def clock(self) -> Clock:
        return self._clock

    # ── Mutation ─────────────────────────────────────────────────────────

    def record_quote(
        self,
        instrument_id: str,
        price: float,
        ts: Optional[int] = None,
    ) -> Optional[Tick]:
        """Append a tick and overwrite the latest quote.

        Unnormalizable ids and invalid prices (non-finite, ≤ 0) are
        ignored and yield ``None``.
        """
        symbol = normalize_symbol(instrument_id)
        if symbol is None or not _valid_price(price):
            return None
        when = self._clock() if ts is None else int(ts)
        price = float(price)

        with self._lock:
            history = self._ticks.setdefault(symbol, [])
            prev = history[-1] if history else None
            if prev is None or price == prev.price:
                direction = 0
            else:
                direction = 1 if price > prev.price else -1
            tick = Tick(ts=when, price=price, direction=direction)
            history.append(tick)
            # Bulk trim once the cap is exceeded
            if len(history) > self._cap:
                del history[: len(history) - self._cap]
            payout = self._payouts.get(symbol)
            self._quotes[symbol] = QuoteRecord(
                instrument_id=symbol,
                price=price,
                ts=when,
                payout=payout.payout if payout else None,
            )

        self._bus.publish(QUOTE, QuoteEvent(symbol=symbol, price=price, ts=when))
        return tick

    def record_payout(self, key: str, payout: float, ts: Optional[int] = None) -> None:
        """Store a payout keyed by normalized id, or by uppercased raw id."""
        if not isinstance(payout, (int, float)) or isinstance(payout, bool):
            return
        if not math.isfinite(payout):
            return
        when = self._clock() if ts is None else int(ts)
        symbol = normalize_symbol(key)
        with self._lock:
            if symbol:
                self._payouts[symbol] = PayoutRecord(symbol, float(payout), when)
                quote = self._quotes.get(symbol)
                if quote is not None:
                    self._quotes[symbol] = QuoteRecord(
                        quote.instrument_id, quote.price, quote.ts, float(payout)
                    )
                return
            raw = str(key or "").strip().upper()
            if raw:
                _put_bounded(
                    self._instrument_payouts, raw,
                    PayoutRecord(raw, float(payout), when), self._instrument_cap,
                )

    def record_instrument_quote(
        self,
        raw_id: str,
        price: float,
        ts: Optional[int] = None,
    ) -> Optional[InstrumentQuote]:
        """Record the latest price for a raw, non-normalizable instrument id."""
        if not raw_id or not isinstance(raw_id, str) or not _valid_price(price):
            return None
        ident = raw_id.strip().upper()
        if not ident:
            return None
        when = self._clock() if ts is None else int(ts)
        entry = InstrumentQuote(
            id=ident,
            display=display_from_id(ident),
            asset_class=classify_instrument(ident),
            price=float(price),
            ts=when,
        )
        with self._lock:
            _put_bounded(self._instrument_quotes, ident, entry, self._instrument_cap)
        self._bus.publish(QUOTE, QuoteEvent(symbol=entry.display, price=entry.price, ts=when))
        return entry

    def record_frame(self, frame: FrameRecord) -> None:
        with self._lock:
            self._frames.append(frame)
        self._bus.publish(FRAME, frame)

    def add_discovered(self, symbols: Iterable[str]) -> int:
        """Add normalizable symbols to the discovered set; returns how many were new."""
        added = 0
        with self._lock:
            for raw in symbols:
                symbol = normalize_symbol(raw)
                if symbol and symbol not in self._discovered:
                    self._discovered.add(symbol)
                    added += 1
        return added

    def clear(self) -> None:
        with self._lock:
            self._ticks.clear()
            self._quotes.clear()
            self._payouts.clear()
            self._instrument_payouts.clear()
            self._instrument_quotes.clear()
            self._discovered.clear()
            self._frames.clear()

    # ── Queries ──────────────────────────────────────────────────────────

    def get_latest_quotes(self) -> list[QuoteRecord]:
        """Latest quote per normalized instrument, newest first."""
        with self._lock:
            quotes = list(self._quotes.values())
        return sorted(quotes, key=lambda q: q.ts, reverse=True)

    def get_latest_quote(self, instrument_id: str) -> Optional[QuoteRecord]:
        symbol = normalize_symbol(instrument_id)
        if symbol is None:
            return None
        with self._lock:
            return self._quotes.get(symbol)

    def get_latest_quote_map(self) -> dict[str, dict]:
        with self._lock:
            return {
                sym: {"price": q.price, "ts": q.ts}
                for sym, q in self._quotes.items()
            }

    def get_recent_ticks(
        self,
        instrument_id: str,
        lookback_ms: int,
        now_ms: Optional[int] = None,
    ) -> list[Tick]:
        """Ticks for *instrument_id* newer than ``now - lookback_ms``.

        History is append-ordered, so the scan walks back from the tail
        and stops at the first tick older than the cutoff.
        """
        symbol = normalize_symbol(instrument_id)
        if symbol is None:
            return []
        now = self._clock() if now_ms is None else now_ms
        cutoff = now - max(lookback_ms, 0)
        with self._lock:
            history = self._ticks.get(symbol)
            if not history:
                return []
            i = len(history) - 1
            while i >= 0 and history[i].ts >= cutoff:
                i -= 1
            return history[i + 1:]

    def get_tick_history(self, instrument_id: str) -> list[Tick]:
        symbol = normalize_symbol(instrument_id)
        if symbol is None:
            return []
        with self._lock:
            return list(self._ticks.get(symbol, ()))

    def get_payout(self, key: str) -> Optional[float]:
        symbol = normalize_symbol(key)
        with self._lock:
            if symbol:
                record = self._payouts.get(symbol)
            else:
                record = self._instrument_payouts.get(str(key or "").strip().upper())
        return record.payout if record else None

    def get_instruments(self) -> list[InstrumentListing]:
        """Priced instruments for the UI, sorted by symbol.

        Normalized quotes come first; raw instrument quotes fill in ids
        not already listed.
        """
        with self._lock:
            quotes = list(self._quotes.values())
            raw_quotes = list(self._instrument_quotes.values())
            payouts = dict(self._payouts)
            raw_payouts = dict(self._instrument_payouts)

        listing: dict[str, InstrumentListing] = {}
        for q in quotes:
            ident = instrument_key(q.instrument_id)
            payout = payouts.get(q.instrument_id)
            listing[ident] = InstrumentListing(
                id=ident,
                symbol=q.instrument_id,
                asset_class=classify_instrument(ident),
                price=q.price,
                last_update=q.ts,
                payout=payout.payout if payout else None,
            )
        for entry in raw_quotes:
            if entry.id in listing:
                continue
            payout = raw_payouts.get(entry.id)
            listing[entry.id] = InstrumentListing(
                id=entry.id,
                symbol=entry.display,
                asset_class=entry.asset_class,
                price=entry.price,
                last_update=entry.ts,
                payout=payout.payout if payout else None,
            )
        return sorted(listing.values(), key=lambda x: x.symbol)

    def get_discovered_symbols(self) -> list[str]:
        with self._lock:
            return sorted(self._discovered)

    def get_recent_frames(self) -> list[FrameRecord]:
        """Recent frames, newest first."""
        with self._lock:
            return list(reversed(self._frames))
