"""
signals.py
----------
Momentum trigger:

• volume in window  >= min_volume
• trades in window  >= min_trades
• bias >= min_bias (strong YES) OR bias <= 1 - min_bias (strong NO)

Side follows the bias; a perfectly balanced window (0.5) goes YES.
"""

from __future__ import annotations
from typing import Optional

from models.signal import MomentumSnapshot, Side, Signal, Thresholds

# absorbs float error in 1 - min_bias so both bounds stay inclusive
_EPS = 1e-9


def side_for(bias: float) -> Side:
    return "yes" if bias >= 0.5 else "no"


def explain(snapshot: Optional[MomentumSnapshot], thresholds: Thresholds) -> Optional[str]:
    """Return why the snapshot does not trigger, or None when it does."""
    if snapshot is None:
        return "no trades in window"
    if snapshot.total_volume < thresholds.min_volume:
        return f"volume {snapshot.total_volume:g} < {thresholds.min_volume:g}"
    if snapshot.trade_count < thresholds.min_trades:
        return f"trades {snapshot.trade_count} < {thresholds.min_trades}"
    bias = snapshot.directional_bias
    if not (bias >= thresholds.min_bias - _EPS or bias <= 1 - thresholds.min_bias + _EPS):
        return f"bias {bias:.2f} inside ({1 - thresholds.min_bias:.2f}, {thresholds.min_bias:.2f})"
    return None


def evaluate(
    snapshot: Optional[MomentumSnapshot],
    thresholds: Thresholds,
    ticker: str = "",
) -> Optional[Signal]:
    if explain(snapshot, thresholds) is not None:
        return None
    return Signal(ticker=ticker, side=side_for(snapshot.directional_bias), snapshot=snapshot)
