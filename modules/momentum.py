"""
momentum.py
-----------
Per-ticker sliding time window of trade ticks.

Every ``record()`` appends the tick and then drops everything that has aged
out of the window, so a snapshot always reflects ticks received in
``(now - window, now]``.
"""

from __future__ import annotations

import time
from collections import deque
from typing import Callable, Deque, Dict, List, Optional

from models.signal import MomentumSnapshot
from models.trade import TradeTick


class MomentumWindow:
    def __init__(self, window_seconds: float = 60, clock: Callable[[], float] = time.time) -> None:
        self.window_seconds = window_seconds
        self._clock = clock
        self._ticks: Dict[str, Deque[TradeTick]] = {}

    def record(self, tick: TradeTick, now: Optional[float] = None) -> None:
        now = self._clock() if now is None else now
        ticks = self._ticks.setdefault(tick.ticker, deque())
        ticks.append(tick)
        self._evict(tick.ticker, now)

    def snapshot(self, ticker: str) -> Optional[MomentumSnapshot]:
        ticks = self._ticks.get(ticker)
        if not ticks:
            return None

        total_volume = 0.0
        yes_count = 0
        for tick in ticks:
            total_volume += tick.size
            if tick.side == "yes":
                yes_count += 1

        trade_count = len(ticks)
        return MomentumSnapshot(
            total_volume=total_volume,
            trade_count=trade_count,
            yes_count=yes_count,
            no_count=trade_count - yes_count,
            directional_bias=yes_count / trade_count if trade_count else 0.5,
            price_change=ticks[-1].price - ticks[0].price,
        )

    def clear(self, ticker: str) -> None:
        self._ticks.pop(ticker, None)

    def tickers(self) -> List[str]:
        return list(self._ticks)

    def _evict(self, ticker: str, now: float) -> None:
        cutoff = now - self.window_seconds
        ticks = self._ticks[ticker]
        if all(t.timestamp > cutoff for t in ticks):
            return
        fresh = deque(t for t in ticks if t.timestamp > cutoff)
        if fresh:
            self._ticks[ticker] = fresh
        else:
            del self._ticks[ticker]
