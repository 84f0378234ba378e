"""
ATR-based volatility multiplier for grid spreads.
"""

from __future__ import annotations

import json
import logging
import time
from typing import Callable, List, Optional, Sequence

from hypergrid.core.types import Candle

log = logging.getLogger("hypergrid")


def true_ranges(candles: Sequence[Candle]) -> List[float]:
    trs: List[float] = []
    for prev, cur in zip(candles, candles[1:]):
        trs.append(max(cur.high - cur.low, abs(cur.high - prev.close), abs(cur.low - prev.close)))
    return trs


def wilder_atr(candles: Sequence[Candle], period: int) -> Optional[float]:
    """Seed with the mean of the first ``period`` true ranges, then Wilder-smooth the rest."""
    trs = true_ranges(candles)
    if period <= 0 or len(trs) < period:
        return None
    atr = sum(trs[:period]) / period
    for tr in trs[period:]:
        atr = tr / period + atr * (1 - 1 / period)
    return atr


def volatility_multiplier(atr: float, price: float, base_spread: float, lo: float, hi: float) -> float:
    if price <= 0 or base_spread <= 0:
        return 1.0
    raw = (atr / price) / base_spread
    return max(lo, min(hi, raw))


class VolatilityTracker:
    """
    Holds the current multiplier and refreshes it from a candle source at most
    once per ``refresh_sec``.
    """

    def __init__(
        self,
        source,
        symbol: str,
        interval: str = "5m",
        period: int = 14,
        base_spread: float = 0.001,
        mult_min: float = 0.5,
        mult_max: float = 2.0,
        refresh_sec: float = 60.0,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.source = source
        self.symbol = symbol
        self.interval = interval
        self.period = period
        self.base_spread = base_spread
        self.mult_min = mult_min
        self.mult_max = mult_max
        self.refresh_sec = refresh_sec
        self._clock = clock
        self.multiplier: float = 1.0
        self.last_atr: Optional[float] = None
        self._last_refresh: float = 0.0

    @property
    def is_due(self) -> bool:
        return self._clock() - self._last_refresh > self.refresh_sec

    def clamp(self, value: float) -> float:
        return max(self.mult_min, min(self.mult_max, value))

    async def maybe_refresh(self, price: float) -> float:
        if not self.is_due:
            return self.multiplier
        # Stamp before fetching so a failing source is not hammered every tick.
        self._last_refresh = self._clock()
        return await self.refresh(price)

    async def refresh(self, price: float) -> float:
        candles = await self.source.get_candles(self.symbol, self.interval, self.period + 2)
        if len(candles) < self.period + 1:
            self.multiplier = 1.0
            log.info(json.dumps({"event": "volatility_insufficient_candles", "count": len(candles)}))
            return self.multiplier
        atr = wilder_atr(candles, self.period)
        if atr is None:
            return self.multiplier
        self.last_atr = atr
        self.multiplier = volatility_multiplier(atr, price, self.base_spread, self.mult_min, self.mult_max)
        log.info(json.dumps({"event": "volatility_update", "atr": round(atr, 4), "mult": round(self.multiplier, 4)}))
        return self.multiplier
