#==========================================================================
# possync/sync/engine.py
# Local ⇄ remote reconciliation: push the mutation log, then pull the
# catalog (server wins). One cycle at a time, exponential backoff on failure.
#==========================================================================

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Optional, Set

from possync.connectivity import ConnectivityProvider
from possync.remote.authority import RemoteAuthority, filter_acks
from possync.store.data_store import OfflineDataStore
from possync.store.notifier import SYNC_STATUS
from possync.timers import TimerRegistry

logger = logging.getLogger("uvicorn.error")

IDLE = "idle"
SYNCING = "syncing"
OFFLINE = "offline"
ERROR = "error"

ALREADY_RUNNING = "already running"
RETRY_KEY = "sync:retry"

BACKOFF_FLOOR_MS = 1000
BACKOFF_MAX_MS = 30000
DEFAULT_INTERVAL_MS = 6000


@dataclass
class SyncResult:
    ok: bool
    offline: bool = False
    reason: Optional[str] = None
    error: Optional[BaseException] = None
    pushed: int = 0
    acked: int = 0
    pulled: int = 0

    def as_dict(self) -> dict:
        return {
            "ok": self.ok,
            "offline": self.offline,
            "reason": self.reason,
            "error": str(self.error) if self.error else None,
            "pushed": self.pushed,
            "acked": self.acked,
            "pulled": self.pulled,
        }


class SyncEngine:
    def __init__(
        self,
        store: OfflineDataStore,
        remote: RemoteAuthority,
        connectivity: ConnectivityProvider,
        backoff_floor_ms: int = BACKOFF_FLOOR_MS,
        backoff_max_ms: int = BACKOFF_MAX_MS,
    ):
        self.store = store
        self.remote = remote
        self.connectivity = connectivity
        self.backoff_floor_ms = backoff_floor_ms
        self.max_backoff_ms = backoff_max_ms
        self.backoff_ms = backoff_floor_ms
        self.status = IDLE
        self.last_result: Optional[SyncResult] = None
        self.timers = TimerRegistry("sync")
        self._running = False
        self._auto_task: Optional[asyncio.Task] = None
        self._tasks: Set[asyncio.Task] = set()
        # bumped by stop_auto/shutdown; a cycle started under an older
        # generation must not schedule a retry
        self._generation = 0
        self._closed = False

    @property
    def running(self) -> bool:
        return self._running

    def _set_status(self, status: str) -> None:
        if status == self.status:
            return
        self.status = status
        self.store.publish(SYNC_STATUS, {"status": status, "backoff_ms": self.backoff_ms})

    # ---- Triggers ---------------------------------------------------------

    def _spawn_sync(self) -> None:
        task = asyncio.ensure_future(self.sync_once())
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    def _on_online(self) -> None:
        logger.info("[SYNC] connectivity regained; syncing now")
        self._spawn_sync()

    async def _auto_loop(self, interval_ms: int) -> None:
        while True:
            await asyncio.sleep(interval_ms / 1000.0)
            await self.sync_once()

    def start_auto(self, interval_ms: int = DEFAULT_INTERVAL_MS) -> None:
        """
        Sync now, then every interval_ms and whenever connectivity returns.
        Calling again replaces the previous schedule.
        """
        if self._auto_task is not None:
            self._auto_task.cancel()
        self._closed = False
        self._auto_task = asyncio.ensure_future(self._auto_loop(interval_ms))
        self.connectivity.add_online_listener(self._on_online)
        logger.info("[SYNC] auto sync every %dms", interval_ms)
        self._spawn_sync()

    def stop_auto(self) -> None:
        """
        Stop the periodic trigger, the online trigger and any pending backoff
        retry. A cycle already in flight is left to finish but will not
        schedule another retry.
        """
        self._generation += 1
        if self._auto_task is not None:
            self._auto_task.cancel()
            self._auto_task = None
        self.connectivity.remove_online_listener(self._on_online)
        self.timers.cancel(RETRY_KEY)

    @property
    def auto_running(self) -> bool:
        return self._auto_task is not None and not self._auto_task.done()

    async def shutdown(self) -> None:
        self._closed = True
        self.stop_auto()
        self.timers.cancel_all()
        self.timers.cancel_fired()
        await self.timers.wait_fired()
        for task in list(self._tasks):
            task.cancel()
        await asyncio.gather(*list(self._tasks), return_exceptions=True)

    # ---- One cycle ----------------------------------------------------------

    async def sync_once(self) -> SyncResult:
        """Never raises; the outcome is always in the returned SyncResult."""
        if not self.connectivity.is_online():
            self._set_status(OFFLINE)
            result = SyncResult(ok=False, offline=True, reason=OFFLINE)
            self.last_result = result
            return result
        # check-and-set with no await in between: nothing else can interleave
        if self._running:
            return SyncResult(ok=False, reason=ALREADY_RUNNING)
        self._running = True
        generation = self._generation
        self._set_status(SYNCING)
        result = SyncResult(ok=False)
        try:
            ops = await self.store.drain_oplog()
            result.pushed = len(ops)
            if ops:
                ack = await self.remote.push_mutations(ops)
                acked = filter_acks(ops, ack.acked_ids)
                for op_id in acked:
                    await self.store.remove_oplog_entry(op_id)
                result.acked = len(acked)
                if len(acked) < len(ops):
                    logger.warning("[SYNC] %d of %d mutation(s) not acked; kept for next cycle",
                                   len(ops) - len(acked), len(ops))

            entries = await self.remote.pull_catalog()
            result.pulled = await self.store.bulk_put_catalog(entries)

            self.backoff_ms = self.backoff_floor_ms
            self.timers.cancel(RETRY_KEY)
            self._set_status(IDLE)
            result.ok = True
            logger.info("[SYNC] ok pushed=%d acked=%d pulled=%d", result.pushed, result.acked, result.pulled)
        except Exception as e:
            self.backoff_ms = min(self.backoff_ms * 2, self.max_backoff_ms)
            self._set_status(ERROR)
            result.error = e
            if self._closed or generation != self._generation:
                logger.info("[SYNC] cycle failed (%s) after stop; no retry scheduled", e)
            else:
                logger.warning("[SYNC] cycle failed (%s); retrying in %dms", e, self.backoff_ms)
                self.timers.schedule(RETRY_KEY, self.backoff_ms, self.sync_once)
        finally:
            self._running = False
        self.last_result = result
        return result

    def snapshot(self) -> dict:
        return {
            "status": self.status,
            "backoff_ms": self.backoff_ms,
            "running": self._running,
            "auto": self.auto_running,
            "retry_pending": self.timers.has(RETRY_KEY),
            "last_result": self.last_result.as_dict() if self.last_result else None,
        }
