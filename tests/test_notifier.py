import asyncio

import pytest

from possync.store.notifier import ChangeNotifier, PRINT_DONE, PRINTJOBS_CHANGED


def test_publish_reaches_every_subscriber():
    n = ChangeNotifier()
    seen = []
    n.subscribe(PRINT_DONE, lambda p: seen.append(("a", p)))
    n.subscribe(PRINT_DONE, lambda p: seen.append(("b", p)))
    assert n.publish(PRINT_DONE, 7) == 2
    assert seen == [("a", 7), ("b", 7)]


def test_failing_subscriber_does_not_block_others():
    n = ChangeNotifier()
    seen = []

    def boom(_):
        raise RuntimeError("observer bug")

    n.subscribe(PRINTJOBS_CHANGED, boom)
    n.subscribe(PRINTJOBS_CHANGED, seen.append)
    n.publish(PRINTJOBS_CHANGED, "job")
    n.publish(PRINTJOBS_CHANGED, "job2")
    assert seen == ["job", "job2"]
    assert n.subscriber_count(PRINTJOBS_CHANGED) == 2


def test_unsubscribe_and_unknown_handler():
    n = ChangeNotifier()
    seen = []
    n.subscribe(PRINT_DONE, seen.append)
    n.unsubscribe(PRINT_DONE, seen.append)
    n.unsubscribe(PRINT_DONE, print)  # never subscribed
    n.publish(PRINT_DONE, 1)
    assert seen == []


def test_unknown_topic_rejected():
    n = ChangeNotifier()
    with pytest.raises(ValueError):
        n.subscribe("dishes:changed", print)
    ChangeNotifier(strict_topics=False).publish("dishes:changed", 1)


def test_async_subscribers_are_isolated():
    async def scenario():
        n = ChangeNotifier()
        seen = []

        async def bad(_):
            raise RuntimeError("async observer bug")

        async def good(p):
            await asyncio.sleep(0)
            seen.append(p)

        n.subscribe(PRINT_DONE, bad)
        n.subscribe(PRINT_DONE, good)
        n.publish(PRINT_DONE, "x")
        await n.drain()
        return seen

    assert asyncio.run(scenario()) == ["x"]
