# modules/executor.py
"""
Execution bridge between the position lifecycle and an order venue.

* ``PaperExecutor``    – simulation mode; every order "fills" synchronously.
* ``OrderApiExecutor`` – live mode; talks to an order gateway over HTTP:

      POST {base}/order          {side, ticker, amount, kind, slippageBps}
           → {"txRef": "...", "executionMode": "sync" | "async"}
      GET  {base}/order-status?txRef=...
           → {"status": "open" | "closed" | "pendingClose" | "failed",
              "fills": [{"amount": .., "price": ..}]}

Any transport or gateway failure raises ``ExecutionError``; callers must
leave no partial state behind.
"""
from __future__ import annotations

import asyncio
import itertools
import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

import aiohttp

from models.signal import Side
from models.trade import OrderReceipt, OrderStatus

# amounts are sent in the settlement token's smallest unit (6 decimals)
BASE_UNITS_PER_DOLLAR = 1_000_000


def dollars_to_base_units(dollars: float) -> int:
    return int(round(dollars * BASE_UNITS_PER_DOLLAR))


class ExecutionError(Exception):
    """Order could not be submitted or its status could not be read."""


class ExecutionBridge(ABC):
    """Every concrete executor implements the three order calls."""

    @property
    def is_live(self) -> bool:
        return False

    @abstractmethod
    async def submit_entry_order(self, side: Side, ticker: str, amount: int) -> OrderReceipt:
        """Buy ``amount`` base units worth of the ``side`` outcome."""
        raise NotImplementedError

    @abstractmethod
    async def submit_exit_order(self, side: Side, ticker: str, contracts: int) -> OrderReceipt:
        """Sell ``contracts`` of the ``side`` outcome back to settlement."""
        raise NotImplementedError

    @abstractmethod
    async def check_order_status(self, tx_ref: str) -> OrderStatus:
        raise NotImplementedError

    async def close(self) -> None:
        return None


class PaperExecutor(ExecutionBridge):
    """Simulation: no venue, immediate fills."""

    def __init__(self) -> None:
        self._ids = itertools.count(1)

    async def submit_entry_order(self, side: Side, ticker: str, amount: int) -> OrderReceipt:
        return OrderReceipt(tx_ref=f"paper-{next(self._ids)}", mode="sync")

    async def submit_exit_order(self, side: Side, ticker: str, contracts: int) -> OrderReceipt:
        return OrderReceipt(tx_ref=f"paper-{next(self._ids)}", mode="sync")

    async def check_order_status(self, tx_ref: str) -> OrderStatus:
        return OrderStatus(status="closed")


class OrderApiExecutor(ExecutionBridge):
    def __init__(
        self,
        base_url: str,
        api_key: Optional[str] = None,
        slippage_bps: int = 50,
        logger: Optional[logging.Logger] = None,
        *,
        session: Optional[aiohttp.ClientSession] = None,
        request_timeout: float = 15,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.slippage_bps = slippage_bps
        self.logger = logger or logging.getLogger(self.__class__.__name__)
        self.headers = {"x-api-key": api_key} if api_key else {}
        self.timeout = aiohttp.ClientTimeout(total=request_timeout)
        self._session = session
        self._owns_session = session is None

    @property
    def is_live(self) -> bool:
        return True

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or (self._owns_session and self._session.closed):
            self._session = aiohttp.ClientSession(headers=self.headers, timeout=self.timeout)
            self._owns_session = True
        return self._session

    async def close(self) -> None:
        if self._owns_session and self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None

    # -------------------------------------------------------------- #
    async def submit_entry_order(self, side: Side, ticker: str, amount: int) -> OrderReceipt:
        return await self._submit({"kind": "entry", "side": side, "ticker": ticker, "amount": amount})

    async def submit_exit_order(self, side: Side, ticker: str, contracts: int) -> OrderReceipt:
        return await self._submit({"kind": "exit", "side": side, "ticker": ticker, "amount": contracts})

    async def check_order_status(self, tx_ref: str) -> OrderStatus:
        data = await self._request("GET", "/order-status", params={"txRef": tx_ref})
        status = data.get("status")
        if status not in {"open", "closed", "pendingClose", "failed"}:
            raise ExecutionError(f"Unexpected order status for {tx_ref}: {data}")
        return OrderStatus(status=status, fills=list(data.get("fills") or []))

    # -------------------------------------------------------------- #
    async def _submit(self, payload: Dict[str, Any]) -> OrderReceipt:
        payload["slippageBps"] = self.slippage_bps
        data = await self._request("POST", "/order", json=payload)
        tx_ref = data.get("txRef") or data.get("signature")
        mode = data.get("executionMode", "sync")
        if not tx_ref or mode not in ("sync", "async"):
            raise ExecutionError(f"Malformed order response: {data}")
        self.logger.info("🧾 Order %s %s %s x%s → %s (%s)",
                         payload["kind"], payload["ticker"], payload["side"], payload["amount"], tx_ref, mode)
        return OrderReceipt(tx_ref=str(tx_ref), mode=mode)

    async def _request(self, method: str, path: str, **kwargs) -> Dict[str, Any]:
        session = self._get_session()
        try:
            async with session.request(method, f"{self.base_url}{path}", **kwargs) as resp:
                if resp.status != 200:
                    body = await resp.text()
                    raise ExecutionError(f"{method} {path} failed: HTTP {resp.status} {body}")
                data = await resp.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as exc:
            raise ExecutionError(f"{method} {path} failed: {exc}") from exc
        if not isinstance(data, dict):
            raise ExecutionError(f"{method} {path} returned non-object: {data!r}")
        return data
