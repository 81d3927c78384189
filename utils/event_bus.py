# --------------------------------------------------------------------
# utils/event_bus.py
# --------------------------------------------------------------------
"""A super-light, asyncio-based pub/sub. One instance is owned by the engine
and handed to whoever publishes or listens (journal, notifications)."""
from __future__ import annotations
import asyncio
import logging
from collections import defaultdict
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple, Union

_Handler = Callable[[Any], Union[Awaitable[None], None]]

POSITION_OPENED = "position_opened"
POSITION_CLOSED = "position_closed"
SIGNAL_EVALUATED = "signal_evaluated"


class EventBus:
    def __init__(self, logger: Optional[logging.Logger] = None) -> None:
        self.logger = logger or logging.getLogger(self.__class__.__name__)
        self._subs: Dict[str, List[_Handler]] = defaultdict(list)
        self._q: "asyncio.Queue[Tuple[str, Any]]" = asyncio.Queue()
        # background task started lazily on first publish
        self._task: Optional[asyncio.Task] = None

    # -------------------------------------------------------------- #
    def subscribe(self, topic: str, fn: _Handler) -> None:
        self._subs[topic].append(fn)

    def publish(self, topic: str, payload: Any) -> None:
        if self._task is None or self._task.done():
            self._task = asyncio.get_running_loop().create_task(self._worker())
        self._q.put_nowait((topic, payload))

    async def drain(self) -> None:
        """Wait until every published event has been handled."""
        await self._q.join()

    async def close(self) -> None:
        if self._task is None:
            return
        await self.drain()
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None

    # -------------------------------------------------------------- #
    async def _worker(self) -> None:
        while True:
            topic, payload = await self._q.get()
            try:
                for fn in self._subs.get(topic, []):
                    try:
                        res = fn(payload)
                        if asyncio.iscoroutine(res):
                            await res
                    except Exception:  # keep bus alive
                        self.logger.exception("[event_bus] handler error on %s", topic)
            finally:
                self._q.task_done()
