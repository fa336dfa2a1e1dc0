import asyncio

import pytest
from sqlalchemy.exc import OperationalError

from possync.errors import JobNotFoundError, PersistenceError
from possync.schemas import Order, OrderItem
from possync.store.notifier import OPLOG_DEQUEUED, OPLOG_QUEUED, ORDERS_CHANGED, PRINTJOBS_CHANGED

from fakes import dish


def _order(oid="order-1", ts=5):
    return Order(id=oid, items=[OrderItem(dish_id="1", qty=2)], total=200, updated_at=ts)


def test_add_order_writes_order_and_mutation(open_store, clock):
    async def scenario():
        engine, store = await open_store()
        events = []
        store.subscribe(ORDERS_CHANGED, lambda o: events.append(("order", o.id)))
        store.subscribe(OPLOG_QUEUED, lambda r: events.append(("op", r.type)))
        try:
            order, op_id = await store.add_order(_order())
            orders = await store.get_orders()
            ops = await store.drain_oplog()
            return order, op_id, orders, ops, events
        finally:
            await engine.dispose()

    order, op_id, orders, ops, events = asyncio.run(scenario())
    assert [o.id for o in orders] == ["order-1"]
    assert orders[0].items[0].dish_id == "1"
    assert len(ops) == 1
    assert ops[0].op_id == op_id
    assert ops[0].type == "create_order"
    assert ops[0].payload["id"] == "order-1"
    assert events == [("order", "order-1"), ("op", "create_order")]


def test_get_orders_by_status(open_store):
    async def scenario():
        engine, store = await open_store()
        try:
            await store.add_order(_order("a"))
            await store.add_order(Order(id="b", status="paid", updated_at=9))
            return await store.get_orders(status="paid")
        finally:
            await engine.dispose()

    assert [o.id for o in asyncio.run(scenario())] == ["b"]


def test_oplog_order_and_idempotent_removal(open_store, clock):
    async def scenario():
        engine, store = await open_store()
        dequeued = []
        store.subscribe(OPLOG_DEQUEUED, dequeued.append)
        try:
            clock.now = 300
            late = await store.append_mutation("update_order", {"id": "x"})
            clock.now = 100
            early = await store.append_mutation("create_order", {"id": "x"})
            order_before = [r.op_id for r in await store.drain_oplog()]
            first = await store.remove_oplog_entry(early.op_id)
            again = await store.remove_oplog_entry(early.op_id)
            missing = await store.remove_oplog_entry(9999)
            remaining = [r.op_id for r in await store.drain_oplog()]
            return late, early, order_before, first, again, missing, remaining, dequeued
        finally:
            await engine.dispose()

    late, early, order_before, first, again, missing, remaining, dequeued = asyncio.run(scenario())
    assert order_before == [early.op_id, late.op_id]
    assert (first, again, missing) == (True, False, False)
    assert remaining == [late.op_id]
    assert dequeued == [early.op_id]


def test_op_ids_are_never_reused(open_store):
    async def scenario():
        engine, store = await open_store()
        try:
            a = await store.append_mutation("t", {})
            await store.remove_oplog_entry(a.op_id)
            b = await store.append_mutation("t", {})
            return a.op_id, b.op_id
        finally:
            await engine.dispose()

    a, b = asyncio.run(scenario())
    assert b > a


def test_catalog_upsert_overwrites(open_store):
    async def scenario():
        engine, store = await open_store()
        try:
            await store.bulk_put_catalog([dish("1", "Tea", 10), dish("2", "Coffee", 20)])
            await store.bulk_put_catalog([dish("1", "Masala Tea", 15)])
            return await store.get_catalog()
        finally:
            await engine.dispose()

    catalog = asyncio.run(scenario())
    assert [(d.id, d.name, d.price) for d in catalog] == [("1", "Masala Tea", 15), ("2", "Coffee", 20)]


def test_print_job_crud(open_store, clock):
    async def scenario():
        engine, store = await open_store()
        changes = []
        store.subscribe(PRINTJOBS_CHANGED, lambda j: changes.append(j.status))
        try:
            job = await store.enqueue_print_job("kitchen", 2, "=== KITCHEN ===", {"orderId": "o1"})
            updated = await store.update_print_job(job.id, status="processing", last_attempt_at=clock())
            queued = await store.get_print_jobs(statuses=["queued"])
            processing = await store.get_print_jobs(statuses=["processing"])
            fetched = await store.get_print_job(job.id)
            with pytest.raises(JobNotFoundError):
                await store.update_print_job(12345, status="done")
            with pytest.raises(ValueError):
                await store.update_print_job(job.id, template="nope")
            return job, updated, queued, processing, fetched, changes
        finally:
            await engine.dispose()

    job, updated, queued, processing, fetched, changes = asyncio.run(scenario())
    assert job.status == "queued" and job.retries == 0
    assert job.created_at == 1_000_000
    assert job.meta == {"orderId": "o1"}
    assert updated.status == "processing"
    assert queued == []
    assert [j.id for j in processing] == [job.id]
    assert fetched.last_attempt_at == 1_000_000
    assert changes == ["queued", "processing"]


def test_store_failures_propagate_as_persistence_error(open_store):
    async def scenario():
        engine, store = await open_store()
        try:
            async with engine.begin() as conn:
                await conn.exec_driver_sql("DROP TABLE orders")
            await store.add_order(_order())
        finally:
            await engine.dispose()

    with pytest.raises(PersistenceError) as exc:
        asyncio.run(scenario())
    assert exc.value.operation == "add_order"
    assert isinstance(exc.value.__cause__, OperationalError)
