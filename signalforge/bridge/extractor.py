"""Quote extractor — walks decoded frame documents for prices and payouts.

Frames carry JSON documents behind protocol prefixes (``42[...]``,
``451-[...]``).  Parsed values are plain Python JSON types
(``None``/``bool``/``int``/``float``/``str``/``list``/``dict``) and the
walker dispatches on them with ``isinstance``.  Matching is deliberately
permissive; the symbol normalizer rejects anything that is not an
instrument id.
"""

import json
import math
import re
from dataclasses import dataclass
from typing import Any, Optional

from signalforge.bridge.symbols import normalize_symbol

SYMBOL_KEYS: tuple[str, ...] = ("symbol", "pair", "asset", "instrument", "code", "sym", "s")
PRICE_KEYS: tuple[str, ...] = ("price", "last", "bid", "ask", "bidPrice", "askPrice", "rate", "p", "c")
PAYOUT_KEYS: tuple[str, ...] = ("payout", "profit", "profitability", "percent", "percentage")

_JSON_START_RE = re.compile(r"[\[{]")
_decoder = json.JSONDecoder()


@dataclass(frozen=True)
class ExtractedQuote:
    symbol: str  # normalized instrument id
    price: float


@dataclass(frozen=True)
class ExtractedInstrumentQuote:
    raw_id: str
    price: float


@dataclass(frozen=True)
class ExtractedPayout:
    key: str  # normalized id, or the raw id when it does not normalize
    payout: float


@dataclass(frozen=True)
class ExtractionResult:
    """Everything recognised in one decoded text candidate."""

    quotes: tuple[ExtractedQuote, ...] = ()
    instrument_quotes: tuple[ExtractedInstrumentQuote, ...] = ()
    payouts: tuple[ExtractedPayout, ...] = ()

    @property
    def empty(self) -> bool:
        return not (self.quotes or self.instrument_quotes or self.payouts)


def _to_float(value: Any) -> Optional[float]:
    """Finite float for a JSON number, else None.  Oversized ints are not numbers."""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    try:
        number = float(value)
    except (OverflowError, ValueError):
        return None
    return number if math.isfinite(number) else None


def _as_number(value: Any) -> Optional[float]:
    """Coerce JSON numbers and numeric strings; booleans are not numbers."""
    if isinstance(value, str):
        try:
            parsed = float(value.strip())
        except ValueError:
            return None
        return parsed if math.isfinite(parsed) else None
    return _to_float(value)


def _is_payout(value: Optional[float]) -> bool:
    return value is not None and 1 <= value <= 100


class _Collector:
    def __init__(self) -> None:
        self.quotes: list[ExtractedQuote] = []
        self.instrument_quotes: list[ExtractedInstrumentQuote] = []
        self.payouts: list[ExtractedPayout] = []

    # ── Objects ──────────────────────────────────────────────────────────

    def match_object(self, node: dict) -> None:
        id_like = next((node[k] for k in SYMBOL_KEYS if node.get(k)), None)
        symbol = normalize_symbol(id_like)
        raw_id = str(id_like) if id_like is not None and not isinstance(id_like, (dict, list)) else None

        price = None
        for key in PRICE_KEYS:
            if key in node:
                price = _as_number(node[key])
                if price is not None:
                    break
        if price is not None:
            if symbol:
                self.quotes.append(ExtractedQuote(symbol, price))
            elif raw_id:
                self.instrument_quotes.append(ExtractedInstrumentQuote(raw_id, price))

        for key in PAYOUT_KEYS:
            if key not in node:
                continue
            payout = _as_number(node[key])
            if _is_payout(payout):
                target = symbol or raw_id
                if target:
                    self.payouts.append(ExtractedPayout(target, payout))

    # ── Arrays ───────────────────────────────────────────────────────────

    def match_array(self, node: list) -> None:
        """Handle ``[idLike, ...numbers]`` rows.

        ``[eventName, {...}]`` needs no special case here: the walker
        visits the object and runs synonym matching on it.
        """
        if len(node) < 2 or not isinstance(node[0], str):
            return
        head = node[0]
        numbers = [n for n in map(_to_float, node[1:]) if n is not None]
        if not numbers:
            return

        price_idx = len(numbers) - 1 if len(numbers) >= 2 else 0
        price = numbers[price_idx]
        symbol = normalize_symbol(head)
        if symbol:
            self.quotes.append(ExtractedQuote(symbol, price))
        else:
            self.instrument_quotes.append(ExtractedInstrumentQuote(head, price))

        remaining = numbers[:price_idx] + numbers[price_idx + 1:]
        payout = next((n for n in remaining if _is_payout(n)), None)
        if payout is not None:
            self.payouts.append(ExtractedPayout(symbol or head, payout))

    def walk(self, root: Any) -> None:
        """Pre-order walk with an explicit stack; depth is unbounded."""
        stack = [root]
        while stack:
            node = stack.pop()
            if isinstance(node, list):
                self.match_array(node)
                stack.extend(reversed(node))
            elif isinstance(node, dict):
                self.match_object(node)
                stack.extend(reversed(list(node.values())))

    def result(self) -> ExtractionResult:
        return ExtractionResult(
            quotes=tuple(self.quotes),
            instrument_quotes=tuple(self.instrument_quotes),
            payouts=tuple(self.payouts),
        )


def _strip_prefix(text: str) -> str:
    match = _JSON_START_RE.search(text)
    if match and match.start() > 0:
        return text[match.start():]
    return text


def parse_documents(text: str) -> list[Any]:
    """Parse *text* as one JSON document, else every embedded one.

    Protocol prefixes before the first ``[`` or ``{`` are skipped.  Returns
    an empty list when nothing parses.
    """
    candidate = _strip_prefix(text.strip())
    try:
        return [json.loads(candidate)]
    except (ValueError, RecursionError):
        pass

    documents: list[Any] = []
    pos = 0
    while True:
        match = _JSON_START_RE.search(candidate, pos)
        if not match:
            break
        try:
            doc, end = _decoder.raw_decode(candidate, match.start())
        except (ValueError, RecursionError):
            pos = match.start() + 1
            continue
        documents.append(doc)
        pos = end
    return documents


def extract_quotes(text: str) -> ExtractionResult:
    """Extract quotes, raw instrument quotes and payouts from *text*.

    Never raises; unparseable text yields an empty result.
    """
    if not text:
        return ExtractionResult()
    collector = _Collector()
    for document in parse_documents(text):
        collector.walk(document)
    return collector.result()
