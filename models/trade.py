# --------------------------------------------------------------------
# models/trade.py
# Inbound trade ticks (validated with Pydantic) and the ledger records:
# open Position, immutable ClosedTrade, CooldownEntry.
# --------------------------------------------------------------------
from __future__ import annotations
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from models.signal import MomentumSnapshot, Side
from utils.timeutils import normalize_epoch, to_iso


class TradeTick(BaseModel):
    """One trade execution from the feed's `trades` channel."""
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    ticker: str = Field(..., alias="market_ticker", min_length=1)
    trade_id: str = Field(..., min_length=1)
    price: float = Field(..., ge=0)
    size: float = Field(..., alias="count", ge=0)
    side: Side = Field(..., alias="taker_side")
    yes_price: float = Field(..., ge=0)
    no_price: float = Field(..., ge=0)
    created_time: float = 0.0
    # local receive time, what the momentum window ages against
    timestamp: float = Field(default_factory=time.time)

    @field_validator("trade_id", mode="before")
    @classmethod
    def coerce_trade_id(cls, v):
        return str(v) if v is not None else v

    @field_validator("created_time")
    @classmethod
    def normalize_created(cls, v):
        if v < 0:
            raise ValueError("created_time must not be negative")
        return normalize_epoch(v)

    def entry_price_for(self, side: Side) -> float:
        return self.yes_price if side == "yes" else self.no_price


@dataclass
class Position:
    ticker: str
    side: Side
    entry_price: float  # cents (0-100)
    contracts: int
    entry_time: float
    entry_trade_id: str
    last_logged_pnl_percent: Optional[float] = None
    snapshot: Optional[MomentumSnapshot] = None
    entry_tx_ref: Optional[str] = None
    entry_filled: bool = True
    closing: bool = False

    def age(self, now: float) -> float:
        return now - self.entry_time

    def unit_pnl(self, current_price: float) -> float:
        if self.side == "yes":
            return current_price - self.entry_price
        return self.entry_price - current_price

    def pnl_cents(self, current_price: float) -> float:
        return self.unit_pnl(current_price) * self.contracts

    def pnl_percent(self, current_price: float) -> float:
        return self.unit_pnl(current_price) / self.entry_price * 100


@dataclass(frozen=True)
class ClosedTrade:
    ticker: str
    side: Side
    entry_price: float
    exit_price: float
    contracts: int
    entry_time: float
    exit_time: float
    duration: float  # seconds
    pnl: float  # dollars
    pnl_percent: float
    reason: str
    snapshot: Optional[MomentumSnapshot] = None

    @property
    def was_profitable(self) -> bool:
        return self.pnl > 0

    def to_record(self) -> dict:
        """JSON-ready dict with ISO-8601 timestamps."""
        return {
            "ticker": self.ticker,
            "side": self.side,
            "entryPrice": self.entry_price,
            "exitPrice": self.exit_price,
            "contracts": self.contracts,
            "entryTime": to_iso(self.entry_time),
            "exitTime": to_iso(self.exit_time),
            "duration": round(self.duration, 3),
            "pnl": self.pnl,
            "pnlPercent": self.pnl_percent,
            "reason": self.reason,
            "momentumMetrics": self.snapshot.summary() if self.snapshot else None,
        }


@dataclass
class CooldownEntry:
    ticker: str
    timestamp: float
    was_profitable: bool

    def expired(self, now: float, duration: float) -> bool:
        return now - self.timestamp >= duration


class RejectReason(str, Enum):
    DUPLICATE = "position already open"
    MAX_POSITIONS = "max open positions reached"
    COOLDOWN = "cooldown active"
    ZERO_CONTRACTS = "entry price too high for position size"
    NOT_FOUND = "not found"
    ENTRY_UNFILLED = "entry order not filled"
    CLOSING = "close already in progress"


@dataclass(frozen=True)
class Rejected:
    """Business-rule rejection. Returned, never raised."""
    reason: RejectReason
    detail: str = ""

    def __bool__(self) -> bool:
        return False


@dataclass(frozen=True)
class OrderReceipt:
    tx_ref: str
    mode: str = "sync"  # "sync" | "async"

    @property
    def filled(self) -> bool:
        return self.mode == "sync"


@dataclass
class OrderStatus:
    status: str  # open | closed | pendingClose | failed
    fills: list = field(default_factory=list)
