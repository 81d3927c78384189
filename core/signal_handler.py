from __future__ import annotations

import logging
from typing import Optional, Union

from models.signal import Signal
from models.trade import Position, Rejected, TradeTick
from modules.executor import ExecutionBridge, ExecutionError, dollars_to_base_units
from modules.position_ledger import PositionLedger
from utils.event_bus import EventBus, POSITION_OPENED

logger = logging.getLogger(__name__)


async def handle_new_signal(
    signal: Signal,
    tick: TradeTick,
    *,
    ledger: PositionLedger,
    executor: ExecutionBridge,
    size_dollars: float,
    bus: Optional[EventBus] = None,
    log: Optional[logging.Logger] = None,
) -> Union[Position, Rejected]:
    """Turn a momentum signal into an open position.

    Paper mode opens atomically in the ledger. Live mode reserves the slot,
    submits the entry order and only then commits; a failed submission
    releases the reservation and re-raises ``ExecutionError``.
    """
    log = log or logger
    ticker = signal.ticker
    entry_price = tick.entry_price_for(signal.side)

    if not executor.is_live:
        result = ledger.open(ticker, signal.side, entry_price, size_dollars, tick.trade_id, signal.snapshot)
    else:
        reserved = ledger.reserve(ticker, entry_price, size_dollars)
        if isinstance(reserved, Rejected):
            return reserved
        try:
            receipt = await executor.submit_entry_order(signal.side, ticker, dollars_to_base_units(size_dollars))
        except ExecutionError as exc:
            ledger.release(ticker)
            log.error("❌ Entry order failed for %s, position not opened: %s", ticker, exc)
            raise
        result = ledger.commit(
            ticker,
            signal.side,
            entry_price,
            reserved,
            tick.trade_id,
            signal.snapshot,
            tx_ref=receipt.tx_ref,
            filled=receipt.filled,
        )

    if isinstance(result, Rejected):
        return result

    snap = signal.snapshot
    log.info(
        "🚀 MOMENTUM TRIGGERED %s trade=%s volume=%g trades=%d bias=%.1f%% YES priceChange=%g",
        ticker,
        tick.trade_id,
        snap.total_volume,
        snap.trade_count,
        snap.directional_bias * 100,
        snap.price_change,
    )
    log.info(
        "📈 OPENED POSITION: %s side=%s contracts=%d entry=%s¢ ($%.4f) size=$%.2f%s",
        ticker,
        result.side.upper(),
        result.contracts,
        result.entry_price,
        result.entry_price / 100,
        size_dollars,
        "" if result.entry_filled else f" (awaiting fill {result.entry_tx_ref})",
    )
    if bus is not None:
        bus.publish(POSITION_OPENED, result)
    return result
