"""
position_ledger.py
------------------
Authoritative book of open positions, cooldowns and closed-trade history.

Every mutation runs under one lock and never awaits, so the
duplicate / max-positions / cooldown / sizing checks and the insert that
follows are atomic with respect to any other open or close. Live entries
split that sequence around the order submission with ``reserve()`` →
``commit()`` / ``release()``; a reservation already counts as an open slot.
"""

from __future__ import annotations

import dataclasses
import logging
import math
import threading
import time
from typing import Callable, Dict, List, Optional, Set, Union

from models.signal import MomentumSnapshot, Side
from models.trade import ClosedTrade, CooldownEntry, Position, Rejected, RejectReason


def contracts_for(size_dollars: float, entry_price_cents: float) -> int:
    """Whole contracts a fixed dollar stake buys at ``entry_price_cents``."""
    if entry_price_cents <= 0:
        return 0
    return math.floor(round(size_dollars * 100, 6) / entry_price_cents)


class PositionLedger:
    def __init__(
        self,
        max_open_positions: int = 10,
        cooldown_seconds: float = 60,
        clock: Callable[[], float] = time.time,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.max_open_positions = max_open_positions
        self.cooldown_seconds = cooldown_seconds
        self._clock = clock
        self.logger = logger or logging.getLogger(self.__class__.__name__)

        self._lock = threading.Lock()
        self._positions: Dict[str, Position] = {}
        self._reserved: Set[str] = set()
        self._cooldowns: Dict[str, CooldownEntry] = {}
        self._closed: List[ClosedTrade] = []

    # ------------------------------------------------------------------ #
    # Opening
    # ------------------------------------------------------------------ #
    def open(
        self,
        ticker: str,
        side: Side,
        entry_price: float,
        size_dollars: float,
        trade_id: str,
        snapshot: Optional[MomentumSnapshot] = None,
    ) -> Union[Position, Rejected]:
        with self._lock:
            checked = self._check_open(ticker, entry_price, size_dollars)
            if isinstance(checked, Rejected):
                return checked
            return self._insert(ticker, side, entry_price, checked, trade_id, snapshot, None, True)

    def reserve(self, ticker: str, entry_price: float, size_dollars: float) -> Union[int, Rejected]:
        """Run the open checks and hold the slot; returns the contract count."""
        with self._lock:
            checked = self._check_open(ticker, entry_price, size_dollars)
            if isinstance(checked, Rejected):
                return checked
            self._reserved.add(ticker)
            return checked

    def commit(
        self,
        ticker: str,
        side: Side,
        entry_price: float,
        contracts: int,
        trade_id: str,
        snapshot: Optional[MomentumSnapshot] = None,
        tx_ref: Optional[str] = None,
        filled: bool = True,
    ) -> Position:
        with self._lock:
            if ticker not in self._reserved:
                raise KeyError(f"no reservation for {ticker}")
            self._reserved.discard(ticker)
            return self._insert(ticker, side, entry_price, contracts, trade_id, snapshot, tx_ref, filled)

    def release(self, ticker: str) -> None:
        with self._lock:
            self._reserved.discard(ticker)

    def _check_open(self, ticker: str, entry_price: float, size_dollars: float) -> Union[int, Rejected]:
        if ticker in self._positions or ticker in self._reserved:
            self.logger.debug("[Ledger] %s skipped: position already open", ticker)
            return Rejected(RejectReason.DUPLICATE)

        if len(self._positions) + len(self._reserved) >= self.max_open_positions:
            self.logger.debug("[Ledger] %s skipped: %d positions open", ticker, self.max_open_positions)
            return Rejected(RejectReason.MAX_POSITIONS)

        cooldown = self._cooldowns.get(ticker)
        if cooldown is not None:
            now = self._clock()
            if cooldown.expired(now, self.cooldown_seconds):
                del self._cooldowns[ticker]
            else:
                remaining = self.cooldown_seconds - (now - cooldown.timestamp)
                self.logger.debug("[Ledger] %s skipped: cooldown %.1fs left", ticker, remaining)
                return Rejected(RejectReason.COOLDOWN, f"{remaining:.1f}s remaining")

        contracts = contracts_for(size_dollars, entry_price)
        if contracts <= 0:
            self.logger.warning(
                "⚠️  Cannot open position for %s: entry price %s cents is too high for $%.2f position size",
                ticker,
                entry_price,
                size_dollars,
            )
            return Rejected(RejectReason.ZERO_CONTRACTS, f"entry price {entry_price}")
        return contracts

    def _insert(self, ticker, side, entry_price, contracts, trade_id, snapshot, tx_ref, filled) -> Position:
        position = Position(
            ticker=ticker,
            side=side,
            entry_price=entry_price,
            contracts=contracts,
            entry_time=self._clock(),
            entry_trade_id=trade_id,
            snapshot=snapshot,
            entry_tx_ref=tx_ref,
            entry_filled=filled,
        )
        self._positions[ticker] = position
        self.logger.debug(
            "[Ledger] open %s %s x%d @ %.2f", ticker, side, contracts, entry_price
        )
        return dataclasses.replace(position)

    # ------------------------------------------------------------------ #
    # Closing
    # ------------------------------------------------------------------ #
    def close(self, ticker: str, exit_price: float, reason: str) -> Union[ClosedTrade, Rejected]:
        with self._lock:
            position = self._positions.get(ticker)
            if position is None:
                return Rejected(RejectReason.NOT_FOUND)
            if not position.entry_filled:
                return Rejected(RejectReason.ENTRY_UNFILLED, position.entry_tx_ref or "")

            now = self._clock()
            trade = ClosedTrade(
                ticker=ticker,
                side=position.side,
                entry_price=position.entry_price,
                exit_price=exit_price,
                contracts=position.contracts,
                entry_time=position.entry_time,
                exit_time=now,
                duration=now - position.entry_time,
                pnl=position.pnl_cents(exit_price) / 100,  # cents → dollars
                pnl_percent=position.pnl_percent(exit_price),
                reason=reason,
                snapshot=position.snapshot,
            )
            self._closed.append(trade)
            del self._positions[ticker]
            # every close cools the ticker down, win or loss
            self._cooldowns[ticker] = CooldownEntry(
                ticker=ticker, timestamp=now, was_profitable=trade.was_profitable
            )
            self.logger.debug("[Ledger] close %s pnl=%.2f (%s)", ticker, trade.pnl, reason)
            return trade

    def mark_closing(self, ticker: str) -> Union[Position, Rejected]:
        """Claim the exclusive right to close ``ticker``."""
        with self._lock:
            position = self._positions.get(ticker)
            if position is None:
                return Rejected(RejectReason.NOT_FOUND)
            if not position.entry_filled:
                return Rejected(RejectReason.ENTRY_UNFILLED, position.entry_tx_ref or "")
            if position.closing:
                return Rejected(RejectReason.CLOSING)
            position.closing = True
            return dataclasses.replace(position)

    def clear_closing(self, ticker: str) -> None:
        with self._lock:
            position = self._positions.get(ticker)
            if position is not None:
                position.closing = False

    # ------------------------------------------------------------------ #
    # Live-order bookkeeping
    # ------------------------------------------------------------------ #
    def mark_filled(self, ticker: str) -> bool:
        with self._lock:
            position = self._positions.get(ticker)
            if position is None:
                return False
            position.entry_filled = True
            return True

    def discard(self, ticker: str) -> Optional[Position]:
        """Drop a position whose entry never filled. No history, no cooldown."""
        with self._lock:
            position = self._positions.get(ticker)
            if position is None or position.entry_filled:
                return None
            return self._positions.pop(ticker)

    def record_logged_pnl(self, ticker: str, pnl_percent: float) -> None:
        with self._lock:
            position = self._positions.get(ticker)
            if position is not None:
                position.last_logged_pnl_percent = pnl_percent

    # ------------------------------------------------------------------ #
    # Read side
    # ------------------------------------------------------------------ #
    # positions handed out are copies; state changes go through the methods above
    def get(self, ticker: str) -> Optional[Position]:
        with self._lock:
            position = self._positions.get(ticker)
            return dataclasses.replace(position) if position is not None else None

    def open_positions(self) -> List[Position]:
        with self._lock:
            return [dataclasses.replace(p) for p in self._positions.values()]

    def pending_entries(self) -> int:
        """Live entries reserved but not yet committed or released."""
        with self._lock:
            return len(self._reserved)

    def closed_trades(self) -> List[ClosedTrade]:
        with self._lock:
            return list(self._closed)

    def cooldown(self, ticker: str) -> Optional[CooldownEntry]:
        with self._lock:
            return self._cooldowns.get(ticker)

    def in_cooldown(self, ticker: str) -> bool:
        with self._lock:
            entry = self._cooldowns.get(ticker)
            return entry is not None and not entry.expired(self._clock(), self.cooldown_seconds)

    def __len__(self) -> int:
        with self._lock:
            return len(self._positions)

    def __contains__(self, ticker: str) -> bool:
        with self._lock:
            return ticker in self._positions
