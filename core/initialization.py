"""
core/initialization.py
----------------------
Loads configuration from .env and wires all runtime components with simple
dependency-injection (DI) overrides.
"""

from __future__ import annotations

import logging
import os
from typing import Any, Callable, Dict, Optional

from dotenv import load_dotenv

from modules.executor import OrderApiExecutor, PaperExecutor
from modules.exit_monitor import ExitMonitor
from modules.feed_connector import FeedConnector
from modules.market_cache import MarketMetadataCache
from modules.metrics import MetricsAggregator
from modules.momentum import MomentumWindow
from modules.persistence.journal import JsonlJournal
from modules.position_ledger import PositionLedger
from utils.config_manager import ConfigManager
from utils.event_bus import EventBus
from utils.logger import setup_logger


_FLOATS = (
    "MIN_VOLUME",
    "MOMENTUM_WINDOW_SECONDS",
    "MOMENTUM_MIN_VOLUME",
    "MOMENTUM_MIN_DIRECTIONAL_BIAS",
    "POSITION_SIZE",
    "PNL_LOG_DELTA",
)
_OPTIONAL_FLOATS = ("PROFIT_TARGET", "STOP_LOSS")
_INTS = (
    "MOMENTUM_MIN_TRADES",
    "MAX_OPEN_POSITIONS",
    "PRICE_CHECK_INTERVAL_MS",
    "MAX_POSITION_AGE_MS",
    "STALE_NOTICE_MS",
    "RECONNECT_DELAY_MS",
    "COOLDOWN_TIME",
    "METRICS_INTERVAL_MS",
    "SHUTDOWN_GRACE_MS",
    "SLIPPAGE_BPS",
)
_STRINGS = ("ENDPOINT", "API_KEY", "ORDER_API_ENDPOINT", "TRADES_LOG", "SIGNALS_LOG", "WEBSOCKET_URL", "API_BASE_URL")
_FLAGS = ("PAPER_TRADE_ONLY", "SHOW_SKIPPED_TRADES", "SHOW_MOMENTUM_BUILDING")


def _pick(overrides: Dict[str, object], key: str, factory: Callable[[], Any]) -> Any:
    # an empty ledger is falsy, so only None counts as "not overridden"
    value = overrides.get(key)
    return factory() if value is None else value


def _as_bool(raw: str) -> bool:
    return raw.strip().lower() in ("1", "true", "yes", "on")


def load_configuration(env_path: str = "config.env") -> Dict[str, Any]:
    """
    Load settings from an .env-style file (process environment wins) and
    return a typed config dict. Unset keys are left out so that the
    ConfigManager defaults apply. Malformed numbers raise ValueError.
    """
    log = logging.getLogger(__name__)
    load_dotenv(dotenv_path=env_path)

    conf: Dict[str, Any] = {}
    for key in _STRINGS:
        value = os.getenv(key, "").strip()
        if value:
            conf[key] = value
    for key in _FLOATS + _OPTIONAL_FLOATS:
        raw = os.getenv(key, "").strip()
        if raw:
            try:
                conf[key] = float(raw)
            except ValueError:
                raise ValueError(f"{key} must be a number, got {raw!r}") from None
    for key in _INTS:
        raw = os.getenv(key, "").strip()
        if raw:
            try:
                conf[key] = int(raw)
            except ValueError:
                raise ValueError(f"{key} must be an integer, got {raw!r}") from None
    for key in _FLAGS:
        raw = os.getenv(key, "").strip()
        if raw:
            conf[key] = _as_bool(raw)

    tickers_raw = os.getenv("SUBSCRIBE_TICKERS", "")
    conf["SUBSCRIBE_TICKERS"] = [t.strip() for t in tickers_raw.split(",") if t.strip()]

    log.debug("Parsed config keys: %s", sorted(conf))
    return conf


def initialize_components(
    config: Dict[str, Any],
    overrides: Optional[Dict[str, object]] = None,
) -> Dict[str, object]:
    """
    Construct and wire together all runtime components (supports DI via overrides).

    Keys you can override:
    {"logger", "bus", "window", "ledger", "market_cache", "executor",
     "connector", "exit_monitor", "journal", "metrics"}
    """
    from core.engine import MomentumEngine  # lazy import to avoid cycles
    from core.message_handler import TradeHandler

    overrides = overrides or {}
    cfg = ConfigManager(config)

    # 1) Logger
    logger = _pick(overrides, "logger", lambda: setup_logger("MomentumEngine"))

    # 2) Shared state
    bus = _pick(overrides, "bus", lambda: EventBus(logger=logger))
    window = _pick(overrides, "window", lambda: MomentumWindow(cfg.get_window_seconds()))
    ledger = _pick(
        overrides,
        "ledger",
        lambda: PositionLedger(
            max_open_positions=cfg.get_max_open_positions(),
            cooldown_seconds=cfg.get_cooldown_seconds(),
            logger=logger,
        ),
    )

    # 3) REST + execution
    market_cache = _pick(
        overrides,
        "market_cache",
        lambda: MarketMetadataCache(cfg.get_api_base_url(), logger=logger, headers=cfg.get_headers()),
    )
    executor = overrides.get("executor")
    if executor is None:
        if cfg.is_paper_trading():
            executor = PaperExecutor()
        else:
            executor = OrderApiExecutor(
                cfg.get_order_api_url(),
                api_key=cfg.get("API_KEY"),
                slippage_bps=cfg.get_slippage_bps(),
                logger=logger,
            )

    # 4) Feed
    connector = _pick(
        overrides,
        "connector",
        lambda: FeedConnector(
            cfg.get_ws_url(), cfg.get_headers(), logger=logger, reconnect_delay=cfg.get_reconnect_delay(),
            shutdown_grace=cfg.get_shutdown_grace(),
        ),
    )

    # 5) Exit rules, journal, metrics
    exit_monitor = _pick(
        overrides,
        "exit_monitor",
        lambda: ExitMonitor(
            ledger,
            market_cache,
            executor,
            bus,
            logger,
            interval=cfg.get_price_check_interval(),
            max_position_age=cfg.get_max_position_age(),
            stale_notice_age=cfg.get_stale_notice_age(),
            profit_target=cfg.get_profit_target(),
            stop_loss=cfg.get_stop_loss(),
            pnl_log_delta=cfg.get_pnl_log_delta(),
        ),
    )
    journal = _pick(overrides, "journal", lambda: JsonlJournal(cfg.get_trades_log(), cfg.get_signals_log()))
    metrics = _pick(overrides, "metrics", MetricsAggregator)

    handler = TradeHandler(
        window,
        ledger,
        market_cache,
        executor,
        cfg.get_thresholds(),
        size_dollars=cfg.get_position_size(),
        min_volume=cfg.get_min_volume(),
        bus=bus,
        logger=logger,
        show_skipped=cfg.show_skipped_trades(),
        show_building=cfg.show_momentum_building(),
    )

    engine = MomentumEngine(
        cfg,
        connector=connector,
        window=window,
        ledger=ledger,
        market_cache=market_cache,
        executor=executor,
        exit_monitor=exit_monitor,
        handler=handler,
        metrics=metrics,
        bus=bus,
        journal=journal,
        logger=logger,
    )

    logger.info("✅ Components initialized (%s mode).", "paper" if not executor.is_live else "live")

    return {
        "logger": logger,
        "config": cfg,
        "bus": bus,
        "window": window,
        "ledger": ledger,
        "market_cache": market_cache,
        "executor": executor,
        "connector": connector,
        "exit_monitor": exit_monitor,
        "journal": journal,
        "metrics": metrics,
        "handler": handler,
        "engine": engine,
    }
