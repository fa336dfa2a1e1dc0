# ---------------------------
# possync/workers/print_queue.py
# ---------------------------
from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from possync.errors import JobStateError, JobNotFoundError, PersistenceError
from possync.models.audit_log import AuditLog
from possync.printing.printers import Printer
from possync.schemas import (
    DONE,
    ELIGIBLE_STATUSES,
    FAILED,
    PROCESSING,
    QUEUED,
    RETRY,
    PrintJob,
)
from possync.store.data_store import OfflineDataStore
from possync.store.notifier import PRINT_DONE, PRINT_FAILED
from possync.timers import TimerRegistry

logger = logging.getLogger("uvicorn.error")

MAX_RETRIES = 5
BASE_DELAY_MS = 500
MAX_DELAY_MS = 30000


def retry_delay_ms(retries: int, base_ms: int = BASE_DELAY_MS, cap_ms: int = MAX_DELAY_MS) -> int:
    """Delay before the next attempt once a job has failed `retries` times."""
    return min(cap_ms, base_ms * 2 ** (retries - 1))


def selection_key(job: PrintJob) -> tuple:
    # priority desc, then oldest first; id breaks ties on identical timestamps
    return (-job.priority, job.created_at, job.id)


class PrintJobManager:
    """
    Drives print jobs to `done` or `failed`, one job per tick.

    Jobs flow queued → processing → done | retry | failed, and
    retry → processing once their delay has elapsed. Each retry has its own
    timer keyed by job id; a job reaching a terminal state has its timer
    cancelled.
    """

    def __init__(
        self,
        store: OfflineDataStore,
        printer: Printer,
        max_retries: int = MAX_RETRIES,
        base_delay_ms: int = BASE_DELAY_MS,
        max_delay_ms: int = MAX_DELAY_MS,
        audit: Optional[AuditLog] = None,
    ):
        self.store = store
        self.printer = printer
        self.max_retries = max_retries
        self.base_delay_ms = base_delay_ms
        self.max_delay_ms = max_delay_ms
        self.logs = audit or AuditLog()
        self.timers = TimerRegistry("print")
        self.paused = False
        self.closed = False
        self._processing = False

    @property
    def processing(self) -> bool:
        return self._processing

    def pause(self) -> None:
        self.paused = True
        logger.info("[PRINT] queue paused")

    def resume(self) -> None:
        self.paused = False
        logger.info("[PRINT] queue resumed")

    async def enqueue(
        self,
        destination: str = "receipt",
        priority: int = 0,
        template: str = "",
        meta: Optional[Dict[str, Any]] = None,
    ) -> PrintJob:
        job = await self.store.enqueue_print_job(destination, priority, template, meta)
        logger.info("[PRINT] queued %s#%s priority=%s", job.destination, job.id, job.priority)
        return job

    async def _get_next_queued(self) -> Optional[PrintJob]:
        now = self.store.clock()
        jobs = await self.store.get_print_jobs(statuses=ELIGIBLE_STATUSES)
        # a retry whose delay has not elapsed is skipped, never attempted early
        ready = [j for j in jobs if j.next_attempt_at is None or j.next_attempt_at <= now]
        if not ready:
            return None
        return min(ready, key=selection_key)

    async def process_loop(self) -> Optional[PrintJob]:
        """
        One dispatch tick. Returns the job in its post-attempt state, or None
        when the queue is busy, paused or has nothing ready.
        """
        # check-and-set with no await in between: ticks cannot overlap
        if self._processing or self.paused or self.closed:
            return None
        self._processing = True
        try:
            job = await self._get_next_queued()
            if job is None:
                return None
            return await self._process_job(job)
        finally:
            self._processing = False

    async def _process_job(self, job: PrintJob) -> PrintJob:
        job_id = job.id
        job = await self.store.update_print_job(
            job_id,
            status=PROCESSING,
            last_attempt_at=self.store.clock(),
        )

        try:
            await self.printer.deliver(job)
        except Exception as err:
            return await self._handle_failure(job, err)

        try:
            done = await self.store.update_print_job(
                job_id,
                status=DONE,
                done_at=self.store.clock(),
                next_attempt_at=None,
                error=None,
            )
        except PersistenceError:
            # left in `processing`; recover() will reprint it on next start
            logger.error("[PRINT] %s#%s delivered but not marked done; it will be reprinted after recovery",
                         job.destination, job_id)
            raise
        self.timers.cancel(job_id)
        self.store.publish(PRINT_DONE, done)
        self.logs.add("done", f"{done.destination}#{job_id}")
        logger.info("[PRINT] done %s#%s", done.destination, job_id)
        return done

    async def _handle_failure(self, job: PrintJob, err: Exception) -> PrintJob:
        job_id = job.id
        retries = (job.retries or 0) + 1
        if retries > self.max_retries:
            failed = await self.store.update_print_job(
                job_id,
                status=FAILED,
                error=str(err),
                retries=retries,
                next_attempt_at=None,
            )
            self.timers.cancel(job_id)
            self.store.publish(PRINT_FAILED, {"job": failed, "error": str(err)})
            self.logs.add("failed", f"{job_id} after {retries} attempts")
            logger.error("[PRINT] failed %s#%s after %d attempts: %s", failed.destination, job_id, retries, err)
            return failed

        delay = retry_delay_ms(retries, self.base_delay_ms, self.max_delay_ms)
        retrying = await self.store.update_print_job(
            job_id,
            status=RETRY,
            retries=retries,
            error=str(err),
            next_attempt_at=self.store.clock() + delay,
        )
        if self.closed:
            logger.info("[PRINT] shutting down; %s#%s stays in retry", job.destination, job_id)
        else:
            self.timers.schedule(job_id, delay, self.process_loop)
        self.logs.add("retry", f"{job_id} in {delay}ms (attempt {retries})")
        logger.warning("[PRINT] retry %s#%s in %dms (attempt %d): %s", job.destination, job_id, delay, retries, err)
        return retrying

    # ---- Operator / lifecycle -----------------------------------------------

    async def requeue(self, job_id: int) -> PrintJob:
        """Give a failed job a fresh lifecycle (operator intervention)."""
        job = await self.store.get_print_job(job_id)
        if job is None:
            raise JobNotFoundError(job_id)
        if job.status != FAILED:
            raise JobStateError(job_id, job.status, "requeue")
        job = await self.store.update_print_job(
            job_id, status=QUEUED, retries=0, error=None, next_attempt_at=None,
        )
        logger.info("[PRINT] requeued %s#%s", job.destination, job_id)
        return job

    async def recover(self) -> List[PrintJob]:
        """Jobs a previous process left mid-attempt become retries due now."""
        recovered = []
        for job in await self.store.get_print_jobs(statuses=[PROCESSING]):
            recovered.append(
                await self.store.update_print_job(job.id, status=RETRY, next_attempt_at=self.store.clock())
            )
        if recovered:
            logger.warning("[PRINT] recovered %d interrupted job(s)", len(recovered))
        return recovered

    def shutdown(self) -> int:
        """
        Stop dispatching and cancel all pending retry timers; jobs stay
        persisted as `retry`. A tick still in flight will not schedule a new
        timer.
        """
        self.closed = True
        return self.timers.cancel_all()
