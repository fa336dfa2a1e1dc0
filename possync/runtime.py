#=================================================================
# possync/runtime.py
# Builds every collaborator explicitly; nothing is a module global.
#=================================================================

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import List, Optional

from sqlalchemy.ext.asyncio import AsyncEngine

from possync.config import Settings
from possync.connectivity import ConnectivityProvider, HttpConnectivityProbe, StaticConnectivity
from possync.db import create_engine_for, init_db
from possync.printing.printers import HttpPrinter, LogPrinter, Printer
from possync.remote.authority import HttpRemoteAuthority, RemoteAuthority
from possync.store.data_store import OfflineDataStore
from possync.store.notifier import ChangeNotifier
from possync.sync.engine import SyncEngine
from possync.workers.print_queue import PrintJobManager
from possync.workers.print_worker import worker_loop

logger = logging.getLogger("uvicorn.error")


@dataclass
class Runtime:
    engine: AsyncEngine
    store: OfflineDataStore
    sync: SyncEngine
    printer: PrintJobManager
    connectivity: ConnectivityProvider
    sync_interval_ms: int = 6000
    print_tick_ms: int = 2000
    auto_sync: bool = True
    _stop: Optional[asyncio.Event] = None
    _tasks: List[asyncio.Task] = field(default_factory=list)

    async def start(self) -> None:
        await init_db(self.engine)
        await self.printer.recover()
        self._stop = asyncio.Event()
        self._tasks.append(asyncio.create_task(worker_loop(self.printer, self._stop, self.print_tick_ms)))
        if isinstance(self.connectivity, HttpConnectivityProbe):
            self._tasks.append(asyncio.create_task(self.connectivity.run(self._stop)))
        if self.auto_sync:
            self.sync.start_auto(self.sync_interval_ms)
        logger.info("[RUNTIME] started")

    async def stop(self) -> None:
        if self._stop:
            self._stop.set()
        await self.sync.shutdown()
        # the worker must be idle before retry timers are cancelled
        for task in self._tasks:
            try:
                await asyncio.wait_for(task, timeout=5.0)
            except Exception:
                task.cancel()
        self._tasks.clear()
        self.printer.shutdown()
        await self.printer.timers.wait_fired()
        await self.store.notifier.drain()
        await self.engine.dispose()
        logger.info("[RUNTIME] stopped")


def build_runtime(
    settings: Settings,
    remote: Optional[RemoteAuthority] = None,
    printer: Optional[Printer] = None,
    connectivity: Optional[ConnectivityProvider] = None,
) -> Runtime:
    engine, sessionmaker = create_engine_for(settings.DATABASE_URL)
    store = OfflineDataStore(sessionmaker, ChangeNotifier())

    if connectivity is None:
        if settings.CONNECTIVITY_PROBE_URL:
            connectivity = HttpConnectivityProbe(
                settings.CONNECTIVITY_PROBE_URL, interval=settings.CONNECTIVITY_PROBE_INTERVAL
            )
        else:
            connectivity = StaticConnectivity(online=True)

    if remote is None:
        remote = HttpRemoteAuthority(settings.REMOTE_URL, settings.REMOTE_API_KEY, settings.REMOTE_TIMEOUT)

    if printer is None:
        if settings.PRINTER_ENDPOINTS:
            printer = HttpPrinter(settings.PRINTER_ENDPOINTS, timeout=settings.PRINTER_TIMEOUT)
        else:
            printer = LogPrinter()

    sync = SyncEngine(
        store,
        remote,
        connectivity,
        backoff_floor_ms=settings.SYNC_BACKOFF_FLOOR_MS,
        backoff_max_ms=settings.SYNC_BACKOFF_MAX_MS,
    )
    manager = PrintJobManager(
        store,
        printer,
        max_retries=settings.PRINT_MAX_RETRIES,
        base_delay_ms=settings.PRINT_BASE_DELAY_MS,
        max_delay_ms=settings.PRINT_MAX_DELAY_MS,
    )
    return Runtime(
        engine=engine,
        store=store,
        sync=sync,
        printer=manager,
        connectivity=connectivity,
        sync_interval_ms=settings.SYNC_INTERVAL_MS,
        print_tick_ms=settings.PRINT_TICK_MS,
        auto_sync=settings.SYNC_AUTO_START,
    )
