# possync/timers.py
# Keyed, cancellable one-shot timers on the running asyncio loop.

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, Hashable, Optional, Set

logger = logging.getLogger("uvicorn.error")


class TimerRegistry:
    """
    At most one pending timer per key. Scheduling a key again replaces the
    previous timer; cancel() and cancel_all() are safe on unknown keys.
    """

    def __init__(self, name: str = "timers"):
        self.name = name
        self._handles: Dict[Hashable, asyncio.TimerHandle] = {}
        self._delays: Dict[Hashable, float] = {}
        self._tasks: Set[asyncio.Task] = set()

    def schedule(self, key: Hashable, delay_ms: float, callback: Callable[[], Awaitable[Any]]) -> None:
        self.cancel(key)
        loop = asyncio.get_running_loop()
        handle = loop.call_later(max(delay_ms, 0) / 1000.0, self._fire, key, callback)
        self._handles[key] = handle
        self._delays[key] = delay_ms

    def _fire(self, key: Hashable, callback: Callable[[], Awaitable[Any]]) -> None:
        self._handles.pop(key, None)
        self._delays.pop(key, None)
        task = asyncio.ensure_future(self._run(key, callback))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _run(self, key: Hashable, callback: Callable[[], Awaitable[Any]]) -> None:
        try:
            await callback()
        except Exception:
            logger.exception("[%s] timer callback failed for key=%s", self.name.upper(), key)

    def cancel(self, key: Hashable) -> bool:
        handle = self._handles.pop(key, None)
        self._delays.pop(key, None)
        if handle is None:
            return False
        handle.cancel()
        return True

    def cancel_all(self) -> int:
        count = 0
        for key in list(self._handles):
            count += int(self.cancel(key))
        return count

    def cancel_fired(self) -> int:
        """Cancel callbacks that already fired and are still running."""
        tasks = [t for t in self._tasks if not t.done()]
        for task in tasks:
            task.cancel()
        return len(tasks)

    def has(self, key: Hashable) -> bool:
        return key in self._handles

    def delay_ms(self, key: Hashable) -> Optional[float]:
        return self._delays.get(key)

    def pending_keys(self) -> list:
        return list(self._handles)

    def __len__(self) -> int:
        return len(self._handles)

    async def wait_fired(self) -> None:
        """Wait for callbacks that already fired to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
