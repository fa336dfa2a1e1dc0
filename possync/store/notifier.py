# possync/store/notifier.py
# Topic-keyed publish/subscribe used by the store and both engines.

from __future__ import annotations

import asyncio
import inspect
import logging
from typing import Any, Awaitable, Callable, Dict, List, Set, Union

logger = logging.getLogger("uvicorn.error")

# --- Topics ----------------------------------------------------------------
ORDERS_CHANGED = "orders:changed"
CATALOG_CHANGED = "catalog:changed"
OPLOG_QUEUED = "oplog:queued"
OPLOG_DEQUEUED = "oplog:dequeued"
PRINTJOBS_CHANGED = "printjobs:changed"
PRINT_DONE = "print:done"
PRINT_FAILED = "print:failed"
SYNC_STATUS = "sync:status"

TOPICS = frozenset({
    ORDERS_CHANGED,
    CATALOG_CHANGED,
    OPLOG_QUEUED,
    OPLOG_DEQUEUED,
    PRINTJOBS_CHANGED,
    PRINT_DONE,
    PRINT_FAILED,
    SYNC_STATUS,
})

Handler = Callable[[Any], Union[None, Awaitable[None]]]


class ChangeNotifier:
    """
    Delivers each published payload to every current subscriber of a topic.

    A subscriber that raises is logged and skipped; the remaining subscribers
    still receive the payload and the publisher never sees the error.
    Coroutine handlers run as independent tasks so a slow observer cannot
    stall the publisher.
    """

    def __init__(self, strict_topics: bool = True):
        self._subs: Dict[str, List[Handler]] = {}
        self._strict = strict_topics
        self._tasks: Set[asyncio.Task] = set()

    def _check(self, topic: str) -> None:
        if self._strict and topic not in TOPICS:
            raise ValueError(f"unknown topic: {topic!r}")

    def subscribe(self, topic: str, handler: Handler) -> None:
        self._check(topic)
        handlers = self._subs.setdefault(topic, [])
        if handler not in handlers:
            handlers.append(handler)

    def unsubscribe(self, topic: str, handler: Handler) -> None:
        handlers = self._subs.get(topic)
        if handlers and handler in handlers:
            handlers.remove(handler)

    def subscriber_count(self, topic: str) -> int:
        return len(self._subs.get(topic, ()))

    def publish(self, topic: str, payload: Any = None) -> int:
        """Returns how many subscribers were invoked."""
        self._check(topic)
        # snapshot: handlers may (un)subscribe while we iterate
        handlers = list(self._subs.get(topic, ()))
        for handler in handlers:
            try:
                result = handler(payload)
                if inspect.isawaitable(result):
                    self._spawn(topic, result)
            except Exception:
                logger.exception("[NOTIFY] subscriber failed on topic=%s", topic)
        return len(handlers)

    def _spawn(self, topic: str, awaitable: Awaitable[None]) -> None:
        async def _run() -> None:
            try:
                await awaitable
            except Exception:
                logger.exception("[NOTIFY] async subscriber failed on topic=%s", topic)

        task = asyncio.ensure_future(_run())
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def drain(self) -> None:
        """Wait for in-flight async subscribers (used on shutdown and in tests)."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
