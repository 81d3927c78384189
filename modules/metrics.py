"""
metrics.py
----------
Session performance statistics derived from the closed-trade history.
The only state kept is the session start time.
"""

from __future__ import annotations

import math
import time
from dataclasses import asdict, dataclass
from typing import Callable, Iterable, Optional

import pandas as pd

from models.trade import ClosedTrade


@dataclass(frozen=True)
class SessionMetrics:
    total_trades: int = 0
    winning_trades: int = 0
    losing_trades: int = 0
    total_pnl: float = 0.0
    win_rate: float = 0.0  # percent
    avg_win: float = 0.0
    avg_loss: float = 0.0  # magnitude
    profit_factor: float = 0.0
    largest_win: float = 0.0
    largest_loss: float = 0.0  # most negative pnl
    session_minutes: float = 0.0
    trades_per_hour: float = 0.0

    def to_dict(self) -> dict:
        return asdict(self)


class MetricsAggregator:
    def __init__(self, session_start: Optional[float] = None, clock: Callable[[], float] = time.time) -> None:
        self._clock = clock
        self.session_start = clock() if session_start is None else session_start

    def compute(self, trades: Iterable[ClosedTrade], now: Optional[float] = None) -> SessionMetrics:
        now = self._clock() if now is None else now
        minutes = max(now - self.session_start, 0.0) / 60

        df = pd.DataFrame([{"pnl": t.pnl} for t in trades], columns=["pnl"])
        if df.empty:
            return SessionMetrics(session_minutes=minutes)

        wins = df.loc[df["pnl"] > 0, "pnl"]
        losses = df.loc[df["pnl"] < 0, "pnl"]
        total_wins = float(wins.sum())
        total_losses = abs(float(losses.sum()))

        if total_losses > 0:
            profit_factor = total_wins / total_losses
        else:
            profit_factor = math.inf if total_wins > 0 else 0.0

        count = len(df)
        return SessionMetrics(
            total_trades=count,
            winning_trades=len(wins),
            losing_trades=len(losses),
            total_pnl=float(df["pnl"].sum()),
            win_rate=len(wins) / count * 100,
            avg_win=total_wins / len(wins) if len(wins) else 0.0,
            avg_loss=total_losses / len(losses) if len(losses) else 0.0,
            profit_factor=profit_factor,
            largest_win=float(wins.max()) if len(wins) else 0.0,
            largest_loss=float(losses.min()) if len(losses) else 0.0,
            session_minutes=minutes,
            trades_per_hour=count / minutes * 60 if minutes > 0 else 0.0,
        )


def format_report(m: SessionMetrics) -> str:
    pf = "∞" if math.isinf(m.profit_factor) else f"{m.profit_factor:.2f}"
    lines = [
        "=" * 60,
        "📊 PERFORMANCE METRICS",
        "=" * 60,
        f"Total Trades: {m.total_trades}",
        f"Win Rate: {m.win_rate:.1f}% ({m.winning_trades}W / {m.losing_trades}L)",
        f"Total P&L: ${m.total_pnl:.2f}",
        f"Avg Win: ${m.avg_win:.2f}",
        f"Avg Loss: ${m.avg_loss:.2f}",
        f"Profit Factor: {pf}",
        f"Largest Win: ${m.largest_win:.2f}",
        f"Largest Loss: ${m.largest_loss:.2f}",
        f"Session Duration: {m.session_minutes:.1f} minutes",
    ]
    if m.total_trades > 0:
        lines.append(f"Trades/Hour: {m.trades_per_hour:.1f}")
    lines.append("=" * 60)
    return "\n".join(lines)
