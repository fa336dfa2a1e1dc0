import asyncio

from possync.connectivity import StaticConnectivity
from possync.store.notifier import SYNC_STATUS
from possync.sync.engine import ALREADY_RUNNING, RETRY_KEY, SyncEngine

from fakes import FakeRemote, dish


def _engine(store, remote, online=True):
    return SyncEngine(store, remote, StaticConnectivity(online=online))


def test_sync_pushes_then_pulls(open_store):
    async def scenario():
        engine, store = await open_store()
        remote = FakeRemote(catalog=[dish("1", "Tea"), dish("2", "Coffee")])
        sync = _engine(store, remote)
        try:
            a = await store.append_mutation("create_order", {"id": "a"})
            b = await store.append_mutation("create_order", {"id": "b"})
            result = await sync.sync_once()
            return result, remote, sync, await store.drain_oplog(), await store.get_catalog(), [a.op_id, b.op_id]
        finally:
            await sync.shutdown()
            await engine.dispose()

    result, remote, sync, oplog, catalog, ids = asyncio.run(scenario())
    assert result.ok and (result.pushed, result.acked, result.pulled) == (2, 2, 2)
    assert remote.calls == ["push", "pull"]
    assert remote.batches == [ids]
    assert oplog == []
    assert [d.name for d in catalog] == ["Tea", "Coffee"]
    assert sync.status == "idle"
    assert sync.backoff_ms == 1000


def test_empty_log_skips_push(open_store):
    async def scenario():
        engine, store = await open_store()
        remote = FakeRemote(catalog=[dish("1")])
        sync = _engine(store, remote)
        try:
            return await sync.sync_once(), remote.calls
        finally:
            await engine.dispose()

    result, calls = asyncio.run(scenario())
    assert result.ok and calls == ["pull"]


def test_partial_ack_keeps_unacknowledged_records(open_store):
    async def scenario():
        engine, store = await open_store()
        remote = FakeRemote()
        sync = _engine(store, remote)
        try:
            ops = [await store.append_mutation("create_order", {"n": i}) for i in range(3)]
            remote.ack_only = {ops[0].op_id, ops[2].op_id, 999}
            result = await sync.sync_once()
            return result, [o.op_id for o in ops], [r.op_id for r in await store.drain_oplog()]
        finally:
            await engine.dispose()

    result, ids, remaining = asyncio.run(scenario())
    assert result.ok and result.acked == 2
    assert remaining == [ids[1]]


def test_at_most_one_cycle_in_flight(open_store):
    async def scenario():
        engine, store = await open_store()
        remote = FakeRemote(catalog=[dish("1")])
        remote.gate = asyncio.Event()
        sync = _engine(store, remote)
        try:
            await store.append_mutation("create_order", {"id": "a"})
            first = asyncio.create_task(sync.sync_once())
            while remote.in_flight == 0:
                await asyncio.sleep(0.005)
            assert sync.running and sync.status == "syncing"
            second = await sync.sync_once()
            third = await sync.sync_once()
            remote.gate.set()
            return await first, second, third, remote
        finally:
            await engine.dispose()

    first, second, third, remote = asyncio.run(scenario())
    assert first.ok
    assert not second.ok and second.reason == ALREADY_RUNNING
    assert third.reason == ALREADY_RUNNING
    assert remote.max_in_flight == 1
    assert remote.calls == ["push", "pull"]


def test_backoff_doubles_to_cap_and_resets(open_store):
    async def scenario():
        engine, store = await open_store()
        remote = FakeRemote()
        sync = _engine(store, remote)
        backoffs = []
        try:
            remote.fail_pull = 6
            for _ in range(6):
                result = await sync.sync_once()
                assert not result.ok and isinstance(result.error, ConnectionError)
                backoffs.append(sync.backoff_ms)
            status_after_fail = sync.status
            retry_pending = sync.timers.has(RETRY_KEY)
            ok = await sync.sync_once()
            return backoffs, status_after_fail, retry_pending, ok, sync.backoff_ms, sync.timers.has(RETRY_KEY)
        finally:
            await sync.shutdown()
            await engine.dispose()

    backoffs, status_after_fail, retry_pending, ok, reset, pending_after = asyncio.run(scenario())
    assert backoffs == [min(30000, 1000 * 2 ** n) for n in range(1, 7)]
    assert backoffs[-1] == 30000
    assert status_after_fail == "error"
    assert retry_pending
    assert ok.ok and reset == 1000 and not pending_after


def test_push_failure_loses_nothing(open_store):
    async def scenario():
        engine, store = await open_store()
        remote = FakeRemote()
        remote.fail_push = 1
        sync = _engine(store, remote)
        try:
            op = await store.append_mutation("create_order", {"id": "a"})
            failed = await sync.sync_once()
            kept = [r.op_id for r in await store.drain_oplog()]
            ok = await sync.sync_once()
            return op.op_id, failed, kept, ok, await store.drain_oplog(), remote.calls
        finally:
            await sync.shutdown()
            await engine.dispose()

    op_id, failed, kept, ok, after, calls = asyncio.run(scenario())
    assert not failed.ok and kept == [op_id]
    assert ok.ok and after == []
    # the failed cycle never reached the pull
    assert calls == ["push", "push", "pull"]


def test_failure_schedules_retry_that_runs(open_store):
    async def scenario():
        engine, store = await open_store()
        remote = FakeRemote(catalog=[dish("1")])
        remote.fail_pull = 1
        sync = SyncEngine(store, remote, StaticConnectivity(), backoff_floor_ms=10, backoff_max_ms=40)
        try:
            first = await sync.sync_once()
            assert sync.timers.delay_ms(RETRY_KEY) == 20
            await asyncio.sleep(0.1)
            await sync.timers.wait_fired()
            return first, sync.last_result, sync.status
        finally:
            await sync.shutdown()
            await engine.dispose()

    first, last, status = asyncio.run(scenario())
    assert not first.ok
    assert last.ok and status == "idle"


def test_offline_is_a_no_op_until_connectivity_returns(open_store):
    async def scenario():
        engine, store = await open_store()
        remote = FakeRemote(catalog=[dish("1")])
        net = StaticConnectivity(online=False)
        sync = SyncEngine(store, remote, net)
        try:
            await store.append_mutation("create_order", {"id": "a"})
            backoff_before = sync.backoff_ms
            offline = await sync.sync_once()
            state = (sync.status, sync.backoff_ms == backoff_before, list(remote.calls), sync.timers.has(RETRY_KEY))
            net.set_online(True)
            online = await sync.sync_once()
            return offline, state, online, remote.calls, await store.drain_oplog()
        finally:
            await engine.dispose()

    offline, state, online, calls, oplog = asyncio.run(scenario())
    assert not offline.ok and offline.offline and offline.reason == "offline"
    assert state == ("offline", True, [], False)
    assert online.ok and calls == ["push", "pull"] and oplog == []


def test_pulling_same_catalog_twice_is_idempotent(open_store):
    async def scenario():
        engine, store = await open_store()
        remote = FakeRemote(catalog=[dish("1", "Tea", 10, updated=111), dish("2", "Dal", 80, updated=222)])
        sync = _engine(store, remote)
        try:
            await sync.sync_once()
            first = await store.get_catalog()
            await sync.sync_once()
            second = await store.get_catalog()
            return first, second
        finally:
            await engine.dispose()

    first, second = asyncio.run(scenario())
    assert first == second
    assert [d.source_updated_at for d in first] == [111, 222]


def test_server_wins_over_local_catalog(open_store):
    async def scenario():
        engine, store = await open_store()
        await store.bulk_put_catalog([dish("1", "Local name", 1)])
        sync = _engine(store, FakeRemote(catalog=[dish("1", "Server name", 99)]))
        try:
            await sync.sync_once()
            return await store.get_catalog()
        finally:
            await engine.dispose()

    [d] = asyncio.run(scenario())
    assert (d.name, d.price) == ("Server name", 99)


def test_status_transitions_are_published(open_store):
    async def scenario():
        engine, store = await open_store()
        seen = []
        store.subscribe(SYNC_STATUS, lambda p: seen.append(p["status"]))
        remote = FakeRemote()
        remote.fail_pull = 1
        sync = _engine(store, remote)
        try:
            await sync.sync_once()
            await sync.sync_once()
            return seen
        finally:
            await sync.shutdown()
            await engine.dispose()

    assert asyncio.run(scenario()) == ["syncing", "error", "syncing", "idle"]


def test_start_auto_is_idempotent_and_stop_cancels_everything(open_store):
    async def scenario():
        engine, store = await open_store()
        remote = FakeRemote()
        net = StaticConnectivity(online=True)
        sync = SyncEngine(store, remote, net)
        try:
            sync.start_auto(50)
            first_task = sync._auto_task
            sync.start_auto(50)
            replaced = first_task is not sync._auto_task
            await asyncio.sleep(0.13)
            replaced = replaced and first_task.done()
            pulls_while_running = remote.calls.count("pull")
            remote.fail_pull = 1
            for _ in range(100):
                if sync.timers.has(RETRY_KEY):
                    break
                await asyncio.sleep(0.01)
            retry_pending = sync.timers.has(RETRY_KEY)
            sync.stop_auto()
            sync.stop_auto()
            calls_at_stop = len(remote.calls)
            await asyncio.sleep(0.15)
            return replaced, pulls_while_running, retry_pending, sync, calls_at_stop, len(remote.calls)
        finally:
            await sync.shutdown()
            await engine.dispose()

    replaced, pulls, retry_pending, sync, at_stop, after = asyncio.run(scenario())
    assert replaced
    # immediate runs from both start_auto calls (one may be "already running") plus ticks
    assert pulls >= 2
    assert retry_pending
    assert not sync.auto_running
    assert not sync.timers.has(RETRY_KEY)
    assert after == at_stop


def test_stop_auto_without_start(open_store):
    async def scenario():
        engine, store = await open_store()
        sync = _engine(store, FakeRemote())
        try:
            sync.stop_auto()
            return sync.auto_running
        finally:
            await engine.dispose()

    assert asyncio.run(scenario()) is False


def test_connectivity_regained_triggers_sync(open_store):
    async def scenario():
        engine, store = await open_store()
        remote = FakeRemote()
        net = StaticConnectivity(online=False)
        sync = SyncEngine(store, remote, net)
        try:
            sync.start_auto(60_000)
            await asyncio.sleep(0.02)
            offline_calls = list(remote.calls)
            net.set_online(True)
            await asyncio.sleep(0.05)
            return offline_calls, list(remote.calls)
        finally:
            await sync.shutdown()
            await engine.dispose()

    offline_calls, calls = asyncio.run(scenario())
    assert offline_calls == []
    assert calls == ["pull"]


def test_cycle_failing_after_stop_auto_schedules_no_retry(open_store):
    async def scenario():
        engine, store = await open_store()
        remote = FakeRemote()
        remote.fail_pull = 100
        remote.gate = asyncio.Event()
        sync = SyncEngine(store, remote, StaticConnectivity(), backoff_floor_ms=10, backoff_max_ms=20)
        try:
            sync.start_auto(60_000)
            while remote.in_flight == 0:
                await asyncio.sleep(0.005)
            sync.stop_auto()
            remote.gate.set()
            await asyncio.sleep(0.1)
            after_stop = (list(remote.calls), sync.timers.has(RETRY_KEY), sync.last_result.ok)
            # a manual cycle still retries on failure
            await sync.sync_once()
            return after_stop, sync.timers.has(RETRY_KEY)
        finally:
            await sync.shutdown()
            await engine.dispose()

    (calls, retry_pending, ok), manual_retry = asyncio.run(scenario())
    assert calls == ["pull"]
    assert not retry_pending and not ok
    assert manual_retry


def test_shutdown_cancels_cycle_started_by_retry_timer(open_store):
    async def scenario():
        engine, store = await open_store()
        remote = FakeRemote()
        remote.fail_pull = 100
        sync = SyncEngine(store, remote, StaticConnectivity(), backoff_floor_ms=5, backoff_max_ms=10)
        try:
            await sync.sync_once()
            assert sync.timers.has(RETRY_KEY)
            remote.gate = asyncio.Event()
            while remote.in_flight == 0:
                await asyncio.sleep(0.005)
            await sync.shutdown()
            calls_at_shutdown = len(remote.calls)
            remote.gate.set()
            await asyncio.sleep(0.05)
            return sync, remote, calls_at_shutdown
        finally:
            await engine.dispose()

    sync, remote, calls_at_shutdown = asyncio.run(scenario())
    assert calls_at_shutdown == 2
    assert len(remote.calls) == 2
    assert remote.in_flight == 0
    assert not sync.running
    assert not sync.timers.has(RETRY_KEY)
