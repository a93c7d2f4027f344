"""Live close-series providers (Finnhub, Alpha Vantage) over httpx.

Optional data source for the signal scorer: 1-minute closes for FX
pairs.  Callers treat every failure as "no live data" and fall back to
tick-derived candles.
"""

import asyncio
import logging
import math
import time
from typing import Optional, Protocol, runtime_checkable

import httpx

from signalforge.config import Config

logger = logging.getLogger("signalforge")

# Retry settings
_MAX_RETRIES = 2
_RETRY_BASE_DELAY = 0.5  # seconds; doubles each attempt
_RETRYABLE_STATUS_CODES = {502, 503, 504, 429}
_TIMEOUT = 10.0

FINNHUB_URL = "https://finnhub.io/api/v1/forex/candle"
ALPHAVANTAGE_URL = "https://www.alphavantage.co/query"


@runtime_checkable
class CloseProvider(Protocol):
    """Source of recent 1-minute closes for a pair."""

    name: str

    async def get_recent_closes(self, pair: str, limit: int) -> list[float]:
        """Return up to *limit* closes, oldest first."""
        ...


def parse_pair(pair: str) -> tuple[str, str]:
    """Split ``EUR/USD_otc`` into ``("EUR", "USD")``.  Raises ``ValueError``."""
    compact = "".join(pair.split()).upper()
    base, sep, rest = compact.partition("/")
    quote = rest.split("_")[0].split("-")[0]
    if not sep or len(base) < 3 or len(quote) < 3:
        raise ValueError(f"not a BASE/QUOTE pair: {pair!r}")
    return base, quote


async def _request_with_retry(url: str, params: dict) -> httpx.Response:
    """GET with exponential-backoff retry on transient errors.

    Retries on 502/503/504/429 and transport errors; other HTTP errors
    are raised immediately.
    """
    last_exc: Optional[Exception] = None

    for attempt in range(_MAX_RETRIES):
        try:
            async with httpx.AsyncClient() as client:
                resp = await client.get(url, params=params, timeout=_TIMEOUT)

            if resp.status_code in _RETRYABLE_STATUS_CODES:
                delay = _RETRY_BASE_DELAY * (2 ** attempt)
                logger.warning(
                    "GET %s returned %d — retry %d/%d in %.1fs",
                    url, resp.status_code, attempt + 1, _MAX_RETRIES, delay,
                )
                last_exc = httpx.HTTPStatusError(
                    f"Server error '{resp.status_code}'",
                    request=resp.request,
                    response=resp,
                )
                await asyncio.sleep(delay)
                continue

            resp.raise_for_status()
            return resp

        except httpx.TransportError as exc:
            delay = _RETRY_BASE_DELAY * (2 ** attempt)
            logger.warning(
                "GET %s transport error (%s) — retry %d/%d in %.1fs",
                url, exc, attempt + 1, _MAX_RETRIES, delay,
            )
            last_exc = exc
            await asyncio.sleep(delay)

    raise last_exc  # type: ignore[misc]


class FinnhubProvider:
    """Finnhub forex candles (OANDA feed), resolution 1 minute."""

    name = "finnhub"

    def __init__(self, api_key: str) -> None:
        self._api_key = api_key

    async def get_recent_closes(self, pair: str, limit: int) -> list[float]:
        base, quote = parse_pair(pair)
        now_sec = int(time.time())
        params = {
            "symbol": f"OANDA:{base}_{quote}",
            "resolution": "1",
            "from": now_sec - (limit + 5) * 60,
            "to": now_sec,
            "token": self._api_key,
        }
        resp = await _request_with_retry(FINNHUB_URL, params)
        data = resp.json()
        if data.get("s") != "ok" or not isinstance(data.get("c"), list):
            raise ValueError("finnhub: bad response")
        closes = [float(c) for c in data["c"] if _finite(c)]
        return closes[-limit:]


class AlphaVantageProvider:
    """Alpha Vantage FX_INTRADAY, 1-minute interval."""

    name = "alphavantage"

    def __init__(self, api_key: str) -> None:
        self._api_key = api_key

    async def get_recent_closes(self, pair: str, limit: int) -> list[float]:
        base, quote = parse_pair(pair)
        params = {
            "function": "FX_INTRADAY",
            "from_symbol": base,
            "to_symbol": quote,
            "interval": "1min",
            "outputsize": "compact",
            "apikey": self._api_key,
        }
        resp = await _request_with_retry(ALPHAVANTAGE_URL, params)
        series = resp.json().get("Time Series FX (1min)")
        if not isinstance(series, dict):
            raise ValueError("alphavantage: bad response")
        closes: list[float] = []
        for ts in sorted(series):
            try:
                value = float(series[ts]["4. close"])
            except (KeyError, TypeError, ValueError):
                continue
            if math.isfinite(value):
                closes.append(value)
        return closes[-limit:]


def _finite(value: object) -> bool:
    return (
        isinstance(value, (int, float))
        and not isinstance(value, bool)
        and math.isfinite(value)
    )


def get_live_provider(config: Config) -> Optional[CloseProvider]:
    """Finnhub when its key is set, else Alpha Vantage, else ``None``."""
    if config.finnhub_api_key:
        return FinnhubProvider(config.finnhub_api_key)
    if config.alphavantage_api_key:
        return AlphaVantageProvider(config.alphavantage_api_key)
    return None
