"""Market data models — typed records owned by the quote store."""

from dataclasses import dataclass
from typing import Optional

# Asset-class buckets used in instrument listings
CURRENCY = "Currency"
CRYPTO = "Cryptocurrencies"
COMMODITY = "Commodities"
STOCK = "Stocks"
INDEX = "Indices"

ASSET_CLASSES: tuple[str, ...] = (CURRENCY, CRYPTO, COMMODITY, STOCK, INDEX)


@dataclass(frozen=True)
class Tick:
    """One price observation for an instrument."""

    ts: int  # epoch ms
    price: float
    direction: int  # -1, 0 or 1 relative to the previous tick


@dataclass(frozen=True)
class CandleData:
    """A single OHLC bar derived from ticks or a close series."""

    time: int  # bucket open, epoch ms
    open: float
    high: float
    low: float
    close: float
    volume: int = 0  # tick count when built from ticks


@dataclass(frozen=True)
class QuoteRecord:
    """Latest quote for a normalized instrument."""

    instrument_id: str
    price: float
    ts: int
    payout: Optional[float] = None


@dataclass(frozen=True)
class PayoutRecord:
    """Payout percentage keyed by normalized id or uppercased raw id."""

    key: str
    payout: float
    ts: int


@dataclass(frozen=True)
class InstrumentQuote:
    """Latest price for a raw instrument id that does not normalize."""

    id: str
    display: str
    asset_class: str
    price: float
    ts: int


@dataclass(frozen=True)
class InstrumentListing:
    """One row of the live instrument list served to the UI."""

    id: str
    symbol: str
    asset_class: str
    price: float
    last_update: int
    payout: Optional[float] = None
