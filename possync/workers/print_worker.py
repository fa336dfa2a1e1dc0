# ---------------------------
# possync/workers/print_worker.py
# ---------------------------
import asyncio
import logging

from possync.workers.print_queue import PrintJobManager

logger = logging.getLogger("uvicorn.error")


async def worker_loop(manager: PrintJobManager, stop_event: asyncio.Event, interval_ms: int = 2000) -> None:
    """Periodic dispatch tick until stop_event is set."""
    logger.info("[WORKER] print worker started (tick=%dms)", interval_ms)
    while not stop_event.is_set():
        try:
            await manager.process_loop()
        except Exception as e:
            # store errors surface here; keep ticking
            logger.exception("[WORKER] dispatch tick failed: %s", e)
        try:
            await asyncio.wait_for(stop_event.wait(), timeout=interval_ms / 1000.0)
        except asyncio.TimeoutError:
            continue
    logger.info("[WORKER] print worker stopped")
