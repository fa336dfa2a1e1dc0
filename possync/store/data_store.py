#===========================================================================
# possync/store/data_store.py
# Durable store adapter: catalog, orders, mutation log and print jobs on
# top of SQLAlchemy (async). Every write announces itself through the
# ChangeNotifier. SQLAlchemy failures surface as PersistenceError.
#===========================================================================

from __future__ import annotations

import logging
import time
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Callable, Dict, Iterable, List, Optional, Sequence, Tuple

from sqlalchemy import delete, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from possync.errors import JobNotFoundError, PersistenceError
from possync.models.catalog import Dish
from possync.models.oplog import MutationRow
from possync.models.orders import OrderRow
from possync.models.print_jobs import PrintJobRow
from possync.schemas import CatalogEntry, MutationRecord, Order, PrintJob, QUEUED
from possync.store.notifier import (
    CATALOG_CHANGED,
    ChangeNotifier,
    OPLOG_DEQUEUED,
    OPLOG_QUEUED,
    ORDERS_CHANGED,
    PRINTJOBS_CHANGED,
)

logger = logging.getLogger("uvicorn.error")

# Columns a caller may patch on a print job
_PRINT_JOB_FIELDS = frozenset({
    "status", "retries", "last_attempt_at", "next_attempt_at", "done_at", "error",
    "priority", "meta",
})


def now_ms() -> int:
    return int(time.time() * 1000)


class OfflineDataStore:
    def __init__(
        self,
        sessionmaker: async_sessionmaker[AsyncSession],
        notifier: Optional[ChangeNotifier] = None,
        clock: Callable[[], int] = now_ms,
    ):
        self._sessionmaker = sessionmaker
        self.notifier = notifier or ChangeNotifier()
        self.clock = clock

    @asynccontextmanager
    async def _tx(self, operation: str) -> AsyncIterator[AsyncSession]:
        """One transaction; commits on success, wraps any SQLAlchemy failure."""
        try:
            async with self._sessionmaker() as session:
                async with session.begin():
                    yield session
        except SQLAlchemyError as e:
            logger.error("[STORE] %s failed: %s", operation, e)
            raise PersistenceError(operation, e) from e

    # ---- Change notification ------------------------------------------------

    def subscribe(self, topic: str, handler) -> None:
        self.notifier.subscribe(topic, handler)

    def unsubscribe(self, topic: str, handler) -> None:
        self.notifier.unsubscribe(topic, handler)

    def publish(self, topic: str, payload: Any = None) -> None:
        self.notifier.publish(topic, payload)

    # ---- Catalog --------------------------------------------------------------

    async def bulk_put_catalog(self, entries: Iterable[CatalogEntry]) -> int:
        """Upsert every entry; local values for matching ids are overwritten."""
        rows = list(entries)
        async with self._tx("bulk_put_catalog") as session:
            for entry in rows:
                await session.merge(Dish(**entry.model_dump()))
        self.publish(CATALOG_CHANGED, len(rows))
        return len(rows)

    async def get_catalog(self) -> List[CatalogEntry]:
        async with self._tx("get_catalog") as session:
            result = await session.execute(select(Dish).order_by(Dish.id))
            return [CatalogEntry.model_validate(d) for d in result.scalars()]

    # ---- Orders ---------------------------------------------------------------

    async def add_order(self, order: Order) -> Tuple[Order, int]:
        """
        Persist the order and its create_order mutation atomically.
        The order is visible locally before the remote has seen it.
        """
        payload = order.model_dump(mode="json")
        async with self._tx("add_order") as session:
            await session.merge(OrderRow(**payload))
            op = MutationRow(ts=self.clock(), type="create_order", payload=payload)
            session.add(op)
            await session.flush()
            record = MutationRecord.model_validate(op)
        logger.info("[STORE] order %s captured (op_id=%s)", order.id, record.op_id)
        self.publish(ORDERS_CHANGED, order)
        self.publish(OPLOG_QUEUED, record)
        return order, record.op_id

    async def get_orders(self, status: Optional[str] = None) -> List[Order]:
        stmt = select(OrderRow).order_by(OrderRow.updated_at.desc())
        if status:
            stmt = stmt.where(OrderRow.status == status)
        async with self._tx("get_orders") as session:
            result = await session.execute(stmt)
            return [Order.model_validate(o) for o in result.scalars()]

    # ---- Mutation log ---------------------------------------------------------

    async def append_mutation(self, type: str, payload: Dict[str, Any]) -> MutationRecord:
        async with self._tx("append_mutation") as session:
            op = MutationRow(ts=self.clock(), type=type, payload=payload)
            session.add(op)
            await session.flush()
            record = MutationRecord.model_validate(op)
        self.publish(OPLOG_QUEUED, record)
        return record

    async def drain_oplog(self) -> List[MutationRecord]:
        """All pending records, oldest first. Nothing is removed here."""
        stmt = select(MutationRow).order_by(MutationRow.ts, MutationRow.op_id)
        async with self._tx("drain_oplog") as session:
            result = await session.execute(stmt)
            return [MutationRecord.model_validate(r) for r in result.scalars()]

    async def remove_oplog_entry(self, op_id: int) -> bool:
        """Idempotent: removing an id that is already gone is a no-op."""
        async with self._tx("remove_oplog_entry") as session:
            result = await session.execute(delete(MutationRow).where(MutationRow.op_id == op_id))
            removed = (result.rowcount or 0) > 0
        if removed:
            self.publish(OPLOG_DEQUEUED, op_id)
        return removed

    # ---- Print jobs -----------------------------------------------------------

    async def enqueue_print_job(
        self,
        destination: str = "receipt",
        priority: int = 0,
        template: str = "",
        meta: Optional[Dict[str, Any]] = None,
    ) -> PrintJob:
        async with self._tx("enqueue_print_job") as session:
            row = PrintJobRow(
                destination=destination,
                priority=int(priority),
                template=template or "",
                meta=dict(meta or {}),
                status=QUEUED,
                retries=0,
                created_at=self.clock(),
            )
            session.add(row)
            await session.flush()
            saved = PrintJob.model_validate(row)
        self.publish(PRINTJOBS_CHANGED, saved)
        return saved

    async def get_print_job(self, job_id: int) -> Optional[PrintJob]:
        async with self._tx("get_print_job") as session:
            row = await session.get(PrintJobRow, job_id)
            return PrintJob.model_validate(row) if row is not None else None

    async def get_print_jobs(self, statuses: Optional[Sequence[str]] = None) -> List[PrintJob]:
        stmt = select(PrintJobRow).order_by(PrintJobRow.id)
        if statuses:
            stmt = stmt.where(PrintJobRow.status.in_(list(statuses)))
        async with self._tx("get_print_jobs") as session:
            result = await session.execute(stmt)
            return [PrintJob.model_validate(r) for r in result.scalars()]

    async def update_print_job(self, job_id: int, **patch: Any) -> PrintJob:
        unknown = set(patch) - _PRINT_JOB_FIELDS
        if unknown:
            raise ValueError(f"cannot patch print job fields: {sorted(unknown)}")
        async with self._tx("update_print_job") as session:
            row = await session.get(PrintJobRow, job_id)
            if row is None:
                raise JobNotFoundError(job_id)
            for key, value in patch.items():
                setattr(row, key, value)
            await session.flush()
            job = PrintJob.model_validate(row)
        self.publish(PRINTJOBS_CHANGED, job)
        return job
