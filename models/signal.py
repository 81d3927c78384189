from __future__ import annotations
from dataclasses import dataclass
from typing import Literal

Side = Literal["yes", "no"]


@dataclass(frozen=True)
class MomentumSnapshot:
    """Aggregate of the ticks currently inside one instrument's window."""
    total_volume: float
    trade_count: int
    yes_count: int
    no_count: int
    directional_bias: float  # 1 = all YES, 0 = all NO, 0.5 = balanced
    price_change: float

    def summary(self) -> dict:
        return {
            "volume": self.total_volume,
            "trades": self.trade_count,
            "bias": self.directional_bias,
            "priceChange": self.price_change,
        }


@dataclass(frozen=True)
class Thresholds:
    min_volume: float = 500
    min_trades: int = 5
    min_bias: float = 0.7


@dataclass(frozen=True)
class Signal:
    ticker: str
    side: Side
    snapshot: MomentumSnapshot
