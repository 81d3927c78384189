"""
exit_monitor.py
---------------
Periodic re-pricing of open positions and exit rules.

Per position and cycle:

• unfilled live entry   – poll the order status; warn once past max age
• no price, too old     – force close at entry price (pnl 0), "stale data"
• no price, still young – skip; warn once past the notice age
• price                 – profit target, then stop loss; otherwise a progress
                          line when pnl% moved by at least ``pnl_log_delta``
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Callable, List, Optional, Set, Union

from models.trade import ClosedTrade, Position, Rejected
from modules.executor import ExecutionBridge, ExecutionError
from modules.market_cache import MarketMetadataCache
from modules.position_ledger import PositionLedger
from utils.event_bus import EventBus, POSITION_CLOSED


class ExitMonitor:
    def __init__(
        self,
        ledger: PositionLedger,
        market_cache: MarketMetadataCache,
        executor: ExecutionBridge,
        bus: Optional[EventBus] = None,
        logger: Optional[logging.Logger] = None,
        *,
        interval: float = 5.0,
        max_position_age: float = 300.0,
        stale_notice_age: float = 30.0,
        profit_target: Optional[float] = None,
        stop_loss: Optional[float] = None,
        pnl_log_delta: float = 0.5,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.ledger = ledger
        self.market_cache = market_cache
        self.executor = executor
        self.bus = bus
        self.logger = logger or logging.getLogger(self.__class__.__name__)

        self.interval = interval
        self.max_position_age = max_position_age
        self.stale_notice_age = stale_notice_age
        # fractions, e.g. 0.1 = 10 %
        self.profit_target = profit_target
        self.stop_loss = stop_loss
        self.pnl_log_delta = pnl_log_delta
        self._clock = clock

        self._stale_warned: Set[str] = set()
        self._unfilled_warned: Set[str] = set()
        self._stop = asyncio.Event()

    # -------------------------------------------------------------------- #
    # Loop
    # -------------------------------------------------------------------- #
    async def run(self) -> None:
        while not self._stop.is_set():
            try:
                await asyncio.wait_for(self._stop.wait(), timeout=self.interval)
                break
            except asyncio.TimeoutError:
                pass
            try:
                await self.check_positions()
            except Exception:
                self.logger.exception("Error checking positions")

    def stop(self) -> None:
        self._stop.set()

    # -------------------------------------------------------------------- #
    # One cycle
    # -------------------------------------------------------------------- #
    async def check_positions(self) -> List[ClosedTrade]:
        closed: List[ClosedTrade] = []
        for position in self.ledger.open_positions():
            if position.closing:
                continue
            if not position.entry_filled:
                await self._poll_entry_fill(position)
                continue
            trade = await self._check_one(position)
            if trade is not None:
                closed.append(trade)
        return closed

    async def _check_one(self, position: Position) -> Optional[ClosedTrade]:
        ticker = position.ticker
        quote = await self.market_cache.get_mid_price(ticker)
        age = position.age(self._clock())

        if quote is None:
            if age > self.max_position_age:
                reason = (
                    f"Stale data - force closed, unable to fetch price data after "
                    f"{self.max_position_age:.0f}s"
                )
                result = await self._try_close(ticker, position.entry_price, reason)
                if isinstance(result, ClosedTrade):
                    self.logger.warning("⚠️  FORCE CLOSED POSITION: %s (unable to fetch price data)", ticker)
                    return result
                return None
            if age > self.stale_notice_age and ticker not in self._stale_warned:
                self._stale_warned.add(ticker)
                self.logger.warning("⚠️  Cannot fetch price data for %s (position age: %.0fs)", ticker, age)
            return None

        self._stale_warned.discard(ticker)
        current = quote.price_for(position.side)
        pnl_percent = position.pnl_percent(current)

        reason = self.exit_reason(pnl_percent)
        if reason is not None:
            result = await self._try_close(ticker, current, reason)
            return result if isinstance(result, ClosedTrade) else None

        last = position.last_logged_pnl_percent if position.last_logged_pnl_percent is not None else 0.0
        if abs(pnl_percent - last) >= self.pnl_log_delta:
            pnl = position.pnl_cents(current) / 100
            sign = "+" if pnl >= 0 else ""
            self.logger.info("💰 Position update: %s %s%.2f (%s%.2f%%)", ticker, sign, pnl, sign, pnl_percent)
            self.ledger.record_logged_pnl(ticker, pnl_percent)
        return None

    async def _try_close(self, ticker: str, exit_price: float, reason: str):
        try:
            return await self.close_position(ticker, exit_price, reason)
        except ExecutionError:
            return None  # logged; position stays open for the next cycle

    def exit_reason(self, pnl_percent: float) -> Optional[str]:
        """Profit target is checked first and wins when both rules fire."""
        if self.profit_target is not None and pnl_percent >= self.profit_target * 100:
            return f"Profit target reached ({pnl_percent:.2f}% >= {self.profit_target * 100:.2f}%)"
        if self.stop_loss is not None and pnl_percent <= -self.stop_loss * 100:
            return f"Stop loss hit ({pnl_percent:.2f}% <= -{self.stop_loss * 100:.2f}%)"
        return None

    async def _poll_entry_fill(self, position: Position) -> None:
        ticker = position.ticker
        try:
            status = await self.executor.check_order_status(position.entry_tx_ref)
        except ExecutionError as exc:
            self.logger.warning("Order status check failed for %s: %s", ticker, exc)
            self._warn_if_overdue(position)
            return

        if status.status == "closed":
            self._unfilled_warned.discard(ticker)
            self.ledger.mark_filled(ticker)
            self.logger.info("✅ Entry order filled: %s (%s)", ticker, position.entry_tx_ref)
        elif status.status == "failed":
            self._unfilled_warned.discard(ticker)
            self.ledger.discard(ticker)
            self.logger.warning("❌ Entry order failed, position dropped: %s (%s)", ticker, position.entry_tx_ref)
        else:
            self._warn_if_overdue(position)

    def _warn_if_overdue(self, position: Position) -> None:
        """Unfilled entries are never force closed; say so once they pass the max age."""
        age = position.age(self._clock())
        if age > self.max_position_age and position.ticker not in self._unfilled_warned:
            self._unfilled_warned.add(position.ticker)
            self.logger.warning(
                "⚠️  Entry order for %s still unfilled after %.0fs (%s)",
                position.ticker,
                age,
                position.entry_tx_ref,
            )

    # -------------------------------------------------------------------- #
    # Close path shared with manual closes
    # -------------------------------------------------------------------- #
    async def close_position(self, ticker: str, exit_price: float, reason: str) -> Union[ClosedTrade, Rejected]:
        claimed = self.ledger.mark_closing(ticker)
        if isinstance(claimed, Rejected):
            return claimed

        try:
            await self.executor.submit_exit_order(claimed.side, ticker, claimed.contracts)
        except ExecutionError as exc:
            self.ledger.clear_closing(ticker)
            self.logger.error("❌ Exit order failed for %s, will retry: %s", ticker, exc)
            raise

        result = self.ledger.close(ticker, exit_price, reason)
        if isinstance(result, ClosedTrade):
            self._stale_warned.discard(ticker)
            self.logger.info(
                "📉 CLOSED POSITION: %s side=%s entry=%.2f exit=%.2f pnl=$%.2f (%.2f%%) duration=%.1fs reason=%s",
                ticker,
                result.side.upper(),
                result.entry_price,
                result.exit_price,
                result.pnl,
                result.pnl_percent,
                result.duration,
                reason,
            )
            if self.bus is not None:
                self.bus.publish(POSITION_CLOSED, result)
        return result
