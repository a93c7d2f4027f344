"""Screener — best expiry per recently priced instrument.

A bounded pool of asyncio workers pulls instruments from a shared queue
and scores each one across a fixed set of expiries.  Completion order is
not guaranteed; the final ranking is (confidence desc, symbol asc).
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Optional

from signalforge.market.clock import Clock, now_ms
from signalforge.market.models import InstrumentListing
from signalforge.market.store import QuoteStore
from signalforge.models.analysis_config import AnalysisConfig
from signalforge.strategy.scorer import SignalScorer

logger = logging.getLogger("signalforge")

SCREENER_EXPIRIES: tuple[str, ...] = ("30s", "1m", "3m", "5m", "15m")
MAX_CANDIDATES = 80
MAX_AGE_MS = 60_000


@dataclass(frozen=True)
class BestSignal:
    expiry: str
    side: str
    confidence: int
    timeframe_used: str


@dataclass(frozen=True)
class ScreenerItem:
    symbol: str
    category: str
    price: float
    last_update: int
    best: BestSignal

    def to_dict(self) -> dict:
        return {
            "symbol": self.symbol,
            "category": self.category,
            "price": self.price,
            "last_update": self.last_update,
            "best": {
                "expiry": self.best.expiry,
                "side": self.best.side,
                "confidence": self.best.confidence,
                "timeframe_used": self.best.timeframe_used,
            },
        }


class Screener:
    """Ranks the live instrument universe by best-expiry confidence.

    Args:
        store: Source of the instrument universe.
        scorer: Scores each (instrument, expiry).
        concurrency: Number of worker tasks.
        max_results: Cap on returned items.
        clock: Returns epoch ms.
    """

    def __init__(
        self,
        store: QuoteStore,
        scorer: SignalScorer,
        concurrency: int = 6,
        max_results: int = 100,
        clock: Optional[Clock] = None,
    ) -> None:
        self._store = store
        self._scorer = scorer
        self._concurrency = max(1, concurrency)
        self._max_results = max_results
        self._clock = clock or now_ms

    def candidates(self, now: int) -> list[InstrumentListing]:
        """Instruments priced within the last 60 s, capped."""
        live = [
            x for x in self._store.get_instruments()
            if x.price > 0 and now - x.last_update < MAX_AGE_MS
        ]
        return live[:MAX_CANDIDATES]

    async def _best_for(
        self,
        inst: InstrumentListing,
        config: Optional[AnalysisConfig],
        now: int,
    ) -> Optional[BestSignal]:
        best: Optional[BestSignal] = None
        for expiry in SCREENER_EXPIRIES:
            res = await self._scorer.score(inst.symbol, expiry, config=config, now_ms=now)
            if best is None or res.confidence > best.confidence:
                best = BestSignal(expiry, res.side, res.confidence, res.timeframe_used)
        return best

    async def screen(
        self,
        config: Optional[AnalysisConfig] = None,
        now_ms: Optional[int] = None,
    ) -> list[ScreenerItem]:
        now = self._clock() if now_ms is None else now_ms
        queue: asyncio.Queue[InstrumentListing] = asyncio.Queue()
        for inst in self.candidates(now):
            queue.put_nowait(inst)
        results: list[ScreenerItem] = []

        async def worker() -> None:
            while True:
                try:
                    inst = queue.get_nowait()
                except asyncio.QueueEmpty:
                    return
                try:
                    best = await self._best_for(inst, config, now)
                except Exception as exc:
                    logger.warning("Screener failed for %s: %s", inst.symbol, exc)
                    continue
                finally:
                    queue.task_done()
                if best is not None:
                    results.append(ScreenerItem(
                        symbol=inst.symbol,
                        category=inst.asset_class.lower(),
                        price=inst.price,
                        last_update=inst.last_update,
                        best=best,
                    ))

        workers = min(self._concurrency, queue.qsize())
        await asyncio.gather(*(worker() for _ in range(workers)))

        results.sort(key=lambda item: (-item.best.confidence, item.symbol))
        logger.debug("Screener ranked %d instruments", len(results))
        return results[: self._max_results]
