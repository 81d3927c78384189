"""
message_handler.py
==================
Per-tick pipeline for validated trade ticks:

    liquidity pre-filter → momentum window → signal evaluation → open

Ticks arrive here one at a time from the feed consumer, so each ticker's
window is updated in arrival order.
"""
from __future__ import annotations

import logging
from typing import Optional

from models.signal import Thresholds
from models.trade import TradeTick
from modules.executor import ExecutionBridge, ExecutionError
from modules.market_cache import MarketMetadataCache
from modules.momentum import MomentumWindow
from modules.position_ledger import PositionLedger
from modules.signals import evaluate, explain
from utils.event_bus import EventBus, SIGNAL_EVALUATED
from core.signal_handler import handle_new_signal


class TradeHandler:
    def __init__(
        self,
        window: MomentumWindow,
        ledger: PositionLedger,
        market_cache: MarketMetadataCache,
        executor: ExecutionBridge,
        thresholds: Thresholds,
        *,
        size_dollars: float = 1.0,
        min_volume: float = 0,
        bus: Optional[EventBus] = None,
        logger: Optional[logging.Logger] = None,
        show_skipped: bool = False,
        show_building: bool = False,
    ) -> None:
        self.window = window
        self.ledger = ledger
        self.market_cache = market_cache
        self.executor = executor
        self.thresholds = thresholds
        self.size_dollars = size_dollars
        self.min_volume = min_volume
        self.bus = bus
        self.logger = logger or logging.getLogger(self.__class__.__name__)
        self.show_skipped = show_skipped
        self.show_building = show_building
        self.stopped = False

    def stop(self) -> None:
        """No new positions from here on; ticks still in flight are ignored."""
        self.stopped = True

    async def __call__(self, tick: TradeTick) -> None:
        if self.stopped:
            return
        ticker = tick.ticker

        # --------------------------------------------------------------------
        # Liquidity pre-filter
        # --------------------------------------------------------------------
        if not await self.market_cache.meets_min_volume(ticker, self.min_volume):
            if self.show_skipped:
                market = self.market_cache.cached(ticker)
                self.logger.info(
                    "Skipping trade - insufficient volume: %s (volume: %s, min: %s)",
                    ticker,
                    market.volume if market else "unknown",
                    self.min_volume,
                )
            return

        # --------------------------------------------------------------------
        # Momentum
        # --------------------------------------------------------------------
        self.window.record(tick)
        snapshot = self.window.snapshot(ticker)
        reason = explain(snapshot, self.thresholds)
        if self.bus is not None:
            self.bus.publish(
                SIGNAL_EVALUATED,
                {
                    "timestamp": tick.timestamp,
                    "ticker": ticker,
                    "triggered": reason is None,
                    "reason": reason,
                    "snapshot": snapshot,
                },
            )

        signal = evaluate(snapshot, self.thresholds, ticker)
        if signal is None:
            if self.show_building:
                self.logger.info("Momentum building: %s (%s)", ticker, reason)
            return

        if self.stopped or ticker in self.ledger:
            return

        try:
            await handle_new_signal(
                signal,
                tick,
                ledger=self.ledger,
                executor=self.executor,
                size_dollars=self.size_dollars,
                bus=self.bus,
                log=self.logger,
            )
        except ExecutionError:
            pass  # logged by handle_new_signal; nothing was recorded
