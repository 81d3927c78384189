from typing import Any, Dict, List, Optional

from models.signal import Thresholds


class ConfigManager:
    def __init__(self, config: Dict[str, Any]):
        self.config = config

    def get(self, key: str, default: Any = None) -> Any:
        return self.config.get(key, default)

    # ---------------------------------------------------------- endpoints
    def get_endpoint(self) -> str:
        return str(self.config.get("ENDPOINT") or "").strip()

    def get_ws_url(self) -> str:
        return self.config.get("WEBSOCKET_URL") or f"wss://{self.get_endpoint()}/api/v1/ws"

    def get_api_base_url(self) -> str:
        return self.config.get("API_BASE_URL") or f"https://{self.get_endpoint()}/api/v1"

    def get_headers(self) -> Optional[Dict[str, str]]:
        api_key = self.config.get("API_KEY")
        return {"x-api-key": api_key} if api_key else None

    def get_subscribe_tickers(self) -> List[str]:
        return self.config.get("SUBSCRIBE_TICKERS") or []

    # ---------------------------------------------------------- momentum
    def get_window_seconds(self) -> float:
        return float(self.config.get("MOMENTUM_WINDOW_SECONDS", 60))

    def get_thresholds(self) -> Thresholds:
        return Thresholds(
            min_volume=float(self.config.get("MOMENTUM_MIN_VOLUME", 500)),
            min_trades=int(self.config.get("MOMENTUM_MIN_TRADES", 5)),
            min_bias=float(self.config.get("MOMENTUM_MIN_DIRECTIONAL_BIAS", 0.7)),
        )

    def get_min_volume(self) -> float:
        return float(self.config.get("MIN_VOLUME", 0))

    # ---------------------------------------------------------- positions
    def get_position_size(self) -> float:
        return float(self.config.get("POSITION_SIZE", 1.0))

    def get_max_open_positions(self) -> int:
        return int(self.config.get("MAX_OPEN_POSITIONS", 10))

    def get_profit_target(self) -> Optional[float]:
        return self.config.get("PROFIT_TARGET")

    def get_stop_loss(self) -> Optional[float]:
        return self.config.get("STOP_LOSS")

    def get_cooldown_seconds(self) -> float:
        return self._seconds("COOLDOWN_TIME", 60_000)

    def is_paper_trading(self) -> bool:
        return bool(self.config.get("PAPER_TRADE_ONLY", True))

    # ---------------------------------------------------------- timers
    def get_price_check_interval(self) -> float:
        return self._seconds("PRICE_CHECK_INTERVAL_MS", 5_000)

    def get_max_position_age(self) -> float:
        return self._seconds("MAX_POSITION_AGE_MS", 300_000)

    def get_stale_notice_age(self) -> float:
        return self._seconds("STALE_NOTICE_MS", 30_000)

    def get_pnl_log_delta(self) -> float:
        return float(self.config.get("PNL_LOG_DELTA", 0.5))

    def get_reconnect_delay(self) -> float:
        return self._seconds("RECONNECT_DELAY_MS", 5_000)

    def get_metrics_interval(self) -> float:
        return self._seconds("METRICS_INTERVAL_MS", 300_000)

    def get_shutdown_grace(self) -> float:
        return self._seconds("SHUTDOWN_GRACE_MS", 5_000)

    # ---------------------------------------------------------- output
    def get_trades_log(self) -> str:
        return self.config.get("TRADES_LOG") or "trades.jsonl"

    def get_signals_log(self) -> Optional[str]:
        return self.config.get("SIGNALS_LOG")

    def show_skipped_trades(self) -> bool:
        return bool(self.config.get("SHOW_SKIPPED_TRADES", False))

    def show_momentum_building(self) -> bool:
        return bool(self.config.get("SHOW_MOMENTUM_BUILDING", False))

    # ---------------------------------------------------------- live
    def get_order_api_url(self) -> str:
        return self.config.get("ORDER_API_ENDPOINT") or ""

    def get_slippage_bps(self) -> int:
        return int(self.config.get("SLIPPAGE_BPS", 50))

    def _seconds(self, key: str, default_ms: int) -> float:
        return float(self.config.get(key, default_ms)) / 1000.0
