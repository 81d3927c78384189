"""
core/engine.py
--------------
Owns the long-running pieces (feed, exit monitor, metrics printer) and the
orderly shutdown. Also the narrow interface other processes use to inspect
or close positions.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, List, Optional

from models.trade import ClosedTrade, Position, Rejected
from modules.executor import ExecutionBridge, ExecutionError
from modules.exit_monitor import ExitMonitor
from modules.feed_connector import FeedAuthError, FeedConnector
from modules.market_cache import MarketMetadataCache
from modules.metrics import MetricsAggregator, SessionMetrics, format_report
from modules.momentum import MomentumWindow
from modules.persistence.journal import JsonlJournal
from modules.position_ledger import PositionLedger
from utils.config_manager import ConfigManager
from utils.event_bus import EventBus
from core.message_handler import TradeHandler


class MomentumEngine:
    def __init__(
        self,
        config: ConfigManager,
        *,
        connector: FeedConnector,
        window: MomentumWindow,
        ledger: PositionLedger,
        market_cache: MarketMetadataCache,
        executor: ExecutionBridge,
        exit_monitor: ExitMonitor,
        handler: TradeHandler,
        metrics: MetricsAggregator,
        bus: EventBus,
        journal: Optional[JsonlJournal] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.config = config
        self.connector = connector
        self.window = window
        self.ledger = ledger
        self.market_cache = market_cache
        self.executor = executor
        self.exit_monitor = exit_monitor
        self.handler = handler
        self.metrics = metrics
        self.bus = bus
        self.journal = journal
        self.logger = logger or logging.getLogger(self.__class__.__name__)

        self.metrics_interval = config.get_metrics_interval()
        self.shutdown_grace = config.get_shutdown_grace()

        self._stop_requested = asyncio.Event()
        self._exit_task: Optional[asyncio.Task] = None
        self._metrics_task: Optional[asyncio.Task] = None
        self._started = False
        self._stopped = False

    # ------------------------------------------------------------------ #
    # Lifecycle
    # ------------------------------------------------------------------ #
    def log_banner(self) -> None:
        cfg = self.config
        t = cfg.get_thresholds()
        self.logger.info("=" * 60)
        self.logger.info("🤖 MOMENTUM TRADING ENGINE")
        self.logger.info("=" * 60)
        self.logger.info("Mode:            %s", "PAPER TRADING" if cfg.is_paper_trading() else "LIVE TRADING")
        self.logger.info("Feed:            %s", cfg.get_ws_url())
        self.logger.info("Window:          %ss", cfg.get_window_seconds())
        self.logger.info("Min volume:      %s contracts", t.min_volume)
        self.logger.info("Min trades:      %s", t.min_trades)
        self.logger.info("Min bias:        %.0f%%", t.min_bias * 100)
        self.logger.info("Position size:   $%.2f", cfg.get_position_size())
        self.logger.info("Max positions:   %s", cfg.get_max_open_positions())
        pt, sl = cfg.get_profit_target(), cfg.get_stop_loss()
        self.logger.info("Profit target:   %s", f"{pt * 100:.1f}%" if pt else "disabled")
        self.logger.info("Stop loss:       %s", f"{sl * 100:.1f}%" if sl else "disabled")
        self.logger.info("Max age:         %.0fs", cfg.get_max_position_age())
        self.logger.info("Cooldown:        %.0fs", cfg.get_cooldown_seconds())
        self.logger.info("Trades log:      %s", cfg.get_trades_log())
        self.logger.info("Signals log:     %s", cfg.get_signals_log() or "disabled")
        self.logger.info("=" * 60)

    async def start(self) -> None:
        if self._started:
            return
        self._started = True
        self.log_banner()

        if self.journal is not None:
            self.journal.attach(self.bus)
        self.connector.on_trade(self.handler)

        # recorded now, sent once the session is up (and again on every reconnect)
        tickers = self.config.get_subscribe_tickers()
        if tickers:
            await self.connector.subscribe(tickers)
        else:
            await self.connector.subscribe_all()

        await self.connector.connect()

        loop = asyncio.get_running_loop()
        self._exit_task = loop.create_task(self.exit_monitor.run())
        self._metrics_task = loop.create_task(self._metrics_loop())

    async def run(self) -> int:
        """Start, then block until a stop request or a fatal feed error. Returns an exit code."""
        try:
            await self.start()
        except FeedAuthError:
            await self.shutdown()
            return 1

        stop_wait = asyncio.ensure_future(self._stop_requested.wait())
        fail_wait = asyncio.ensure_future(self.connector.wait_failed())
        done, pending = await asyncio.wait({stop_wait, fail_wait}, return_when=asyncio.FIRST_COMPLETED)
        for task in pending:
            task.cancel()

        await self.shutdown()
        return 1 if fail_wait in done else 0

    def request_stop(self) -> None:
        self.logger.info("🛑 Stop requested")
        self._stop_requested.set()

    async def shutdown(self) -> None:
        if self._stopped:
            return
        self._stopped = True
        self.logger.info("🛑 Shutting down...")

        self.handler.stop()
        await self.connector.disconnect()
        self.exit_monitor.stop()

        if self._metrics_task is not None:
            self._metrics_task.cancel()
            await asyncio.gather(self._metrics_task, return_exceptions=True)
            self._metrics_task = None

        if self._exit_task is not None:
            done, _ = await asyncio.wait({self._exit_task}, timeout=self.shutdown_grace)
            if not done:
                self.logger.warning("Exit check still running after %.1fs, cancelling", self.shutdown_grace)
                self._exit_task.cancel()
            await asyncio.gather(self._exit_task, return_exceptions=True)
            self._exit_task = None

        await self.bus.close()
        await self.market_cache.close()
        await self.executor.close()

        open_count = len(self.ledger)
        if open_count:
            self.logger.warning("⚠️  %d position(s) still open at shutdown", open_count)
        if self.ledger.closed_trades():
            self.logger.info("\n%s", format_report(self.session_metrics()))
        self.logger.info("👋 Engine stopped")

    async def _metrics_loop(self) -> None:
        while True:
            await asyncio.sleep(self.metrics_interval)
            if self.ledger.closed_trades():
                self.logger.info("\n%s", format_report(self.session_metrics()))

    # ------------------------------------------------------------------ #
    # Collaborator interface
    # ------------------------------------------------------------------ #
    def list_open_positions(self) -> List[Position]:
        return self.ledger.open_positions()

    def list_closed_trades(self) -> List[ClosedTrade]:
        return self.ledger.closed_trades()

    def session_metrics(self) -> SessionMetrics:
        return self.metrics.compute(self.ledger.closed_trades())

    async def close_position(self, ticker: str) -> Dict[str, Any]:
        """Manually close ``ticker`` at the current mid price."""
        position = self.ledger.get(ticker)
        if position is None:
            return {"success": False, "error": "Position not found"}

        quote = await self.market_cache.get_mid_price(ticker)
        if quote is None:
            return {"success": False, "error": "Unable to fetch current price"}

        try:
            result = await self.exit_monitor.close_position(ticker, quote.price_for(position.side), "Manual close")
        except ExecutionError as exc:
            return {"success": False, "error": str(exc)}

        if isinstance(result, Rejected):
            return {"success": False, "error": result.reason.value if not result.detail else result.detail}
        return {"success": True, "trade": result.to_record()}
