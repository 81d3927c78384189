"""
persistence/journal.py
----------------------
Append-only JSON-lines journals for closed trades and signal evaluations.
One JSON object per line, timestamps as ISO-8601 strings.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Dict, Optional

from models.signal import MomentumSnapshot
from models.trade import ClosedTrade
from utils.event_bus import EventBus, POSITION_CLOSED, SIGNAL_EVALUATED
from utils.timeutils import to_iso


class JsonlJournal:
    def __init__(self, trades_path: str = "trades.jsonl", signals_path: Optional[str] = None):
        self.trades_path = Path(trades_path)
        self.signals_path = Path(signals_path) if signals_path else None
        for path in (self.trades_path, self.signals_path):
            if path is not None:
                path.parent.mkdir(parents=True, exist_ok=True)

    def attach(self, bus: EventBus) -> None:
        bus.subscribe(POSITION_CLOSED, self.append_trade)
        if self.signals_path is not None:
            bus.subscribe(SIGNAL_EVALUATED, self.append_signal)

    # ---------------------------- APPENDS -------------------------------- #
    def append_trade(self, trade: ClosedTrade) -> None:
        self._append(self.trades_path, trade.to_record())

    def append_signal(self, evaluation: Dict[str, Any]) -> None:
        if self.signals_path is None:
            return
        snapshot: Optional[MomentumSnapshot] = evaluation.get("snapshot")
        self._append(
            self.signals_path,
            {
                "timestamp": to_iso(evaluation["timestamp"]),
                "ticker": evaluation["ticker"],
                "triggered": evaluation["triggered"],
                "reason": evaluation.get("reason"),
                "momentum": snapshot.summary() if snapshot else None,
            },
        )

    @staticmethod
    def _append(path: Path, record: Dict[str, Any]) -> None:
        with path.open("a", encoding="utf-8") as fh:
            fh.write(json.dumps(record) + "\n")
