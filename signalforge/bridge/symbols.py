"""Symbol normalization and asset-class classification.

Maps the many spellings seen on the wire (``EURUSD_otc``, ``ada-usd``,
``EUR/USD``) to one canonical ``BASE/QUOTE[suffix]`` form.  All functions
are total: unknown input yields ``None`` or a best-effort bucket, never an
exception.
"""

import re
from typing import Iterable, Optional

from signalforge.market.models import COMMODITY, CRYPTO, CURRENCY, INDEX, STOCK

ALLOWED_BASE: frozenset[str] = frozenset({
    "USD", "EUR", "GBP", "JPY", "AUD", "CAD", "CHF", "NZD", "CNY", "RUB",
    "TRY", "SEK", "NOK", "DKK", "PLN", "HUF", "CZK", "ZAR", "MXN", "SGD",
    "HKD", "BRL", "ILS", "INR", "KRW", "SAR", "AED",
    "BTC", "ETH", "LTC", "XRP", "ADA", "SOL", "BNB", "DOGE", "DOT", "TRX",
    "AVAX", "XLM", "ATOM", "ETC",
})

ALLOWED_QUOTE: frozenset[str] = frozenset({
    "USD", "USDT", "EUR", "GBP", "JPY", "AUD", "CAD", "CHF", "NZD",
})

CRYPTO_BASES: frozenset[str] = frozenset({
    "BTC", "ETH", "LTC", "XRP", "ADA", "SOL", "BNB", "DOGE", "DOT", "TRX",
    "AVAX", "XLM", "ATOM", "ETC", "BCH", "SHIB", "MATIC", "LINK",
})

COMMODITY_TOKENS: frozenset[str] = frozenset({
    "XAU", "XAG", "XPT", "XPD", "UKOIL", "USOIL", "BRENT", "WTI", "NG",
    "XBR", "XTI", "XCU", "XAL", "COPPER", "SILVER", "GOLD",
})

INDEX_TOKENS: frozenset[str] = frozenset({
    "US30", "US_30", "DJI", "SPX500", "SP500", "NAS100", "NDX", "GER40",
    "DE30", "UK100", "FTSE100", "FR40", "CAC40", "JP225", "NIKKEI", "HK50",
    "HSI", "AU200", "ASX200",
})

_SUFFIX_RE = re.compile(r"([_-]otc\d*)$", re.IGNORECASE)
_HYPHEN_RE = re.compile(r"[A-Z]{3,5}-[A-Z]{3,5}")
_CONCAT_RE = re.compile(r"[A-Z]{6}")
_CORE_RE = re.compile(r"[A-Z]{3}/[A-Z]{3,5}")

_SLASH_ID_RE = re.compile(r"^[A-Z]{2,6}/[A-Z]{2,6}")
_CONCAT_ID_RE = re.compile(r"[A-Z]{6,7}")
_TICKER_RE = re.compile(r"[A-Z]{1,5}")

_HARVEST_SLASH_RE = re.compile(r"\b([A-Z]{2,6}/[A-Z]{2,6})\b")
_HARVEST_CONCAT_RE = re.compile(r"\b([A-Z]{6,7}(?:[_-]OTC\d*)?)\b")


def _split_suffix(value: str) -> tuple[str, str]:
    match = _SUFFIX_RE.search(value)
    if not match:
        return value, ""
    suffix = match.group(0)
    return value[: -len(suffix)], suffix


def normalize_symbol(raw: object) -> Optional[str]:
    """Return the canonical instrument id for *raw*, or ``None``.

    The OTC suffix is detected case-insensitively and reattached verbatim;
    hyphenated and concatenated six-letter forms gain a slash.  Base and
    quote must come from the allow-lists and differ.  Idempotent.
    """
    if not isinstance(raw, str):
        return None
    original = raw.strip()
    if not original:
        return None

    core, suffix = _split_suffix(original)
    core = core.upper().strip()

    if _HYPHEN_RE.fullmatch(core):
        core = core.replace("-", "/", 1)
    if _CONCAT_RE.fullmatch(core):
        core = f"{core[:3]}/{core[3:]}"

    if not _CORE_RE.fullmatch(core):
        return None
    base, quote = core.split("/")
    if base == quote:
        return None
    if base not in ALLOWED_BASE or quote not in ALLOWED_QUOTE:
        return None

    return f"{base}/{quote}{suffix}"


def _classify_pair(base: str, quote: str) -> str:
    if base in CRYPTO_BASES:
        return CRYPTO
    if base in COMMODITY_TOKENS:
        return COMMODITY
    if base in ALLOWED_BASE and quote in ALLOWED_QUOTE:
        return CURRENCY
    return STOCK


def classify_instrument(instrument_id: object) -> str:
    """Bucket an instrument id into an asset class.  Best-effort, total."""
    if not isinstance(instrument_id, str):
        return CURRENCY
    core = _SUFFIX_RE.sub("", instrument_id.strip().upper())

    if _SLASH_ID_RE.match(core):
        base, _, rest = core.partition("/")
        quote = rest.split("/")[0]
        return _classify_pair(base, quote)
    if _CONCAT_ID_RE.fullmatch(core):
        return _classify_pair(core[:-3], core[-3:])
    if core in INDEX_TOKENS:
        return INDEX
    if _TICKER_RE.fullmatch(core):
        return STOCK
    return CURRENCY


def display_from_id(instrument_id: str) -> str:
    """Render a raw id for display, e.g. ``EURUSD_otc`` → ``EUR/USD_OTC``."""
    upper = instrument_id.upper()
    core, suffix = _split_suffix(upper)
    if _CONCAT_ID_RE.fullmatch(core):
        return f"{core[:-3]}/{core[-3:]}{suffix}"
    if re.fullmatch(r"[A-Z]{2,6}/[A-Z]{2,6}", core):
        return f"{core}{suffix}"
    return upper


def harvest_symbols(texts: Iterable[str]) -> list[str]:
    """Scan decoded frame texts for instrument-looking tokens.

    Returns the normalizable ones, deduplicated in discovery order.
    """
    found: list[str] = []
    seen: set[str] = set()
    for text in texts:
        upper = text.upper()
        for pattern in (_HARVEST_SLASH_RE, _HARVEST_CONCAT_RE):
            for match in pattern.finditer(upper):
                norm = normalize_symbol(match.group(1))
                if norm and norm not in seen:
                    seen.add(norm)
                    found.append(norm)
    return found


def instrument_key(symbol: str) -> str:
    """Listing id for a normalized symbol (slash removed)."""
    return symbol.replace("/", "", 1)
