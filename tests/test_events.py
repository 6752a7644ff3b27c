from __future__ import annotations

import asyncio

from stack_agent.errors import RuntimeUnavailable
from stack_agent.events import END_OF_STREAM, EventHub


def provider(known):
    async def snapshot(app_id):
        if app_id not in known:
            return None
        return {"id": app_id, "status": "running"}

    return snapshot


def test_publish_reaches_only_current_subscribers_of_app():
    async def main():
        hub = EventHub(provider({"a", "b"}))
        first = hub.subscribe("a")
        second = hub.subscribe("a")
        other = hub.subscribe("b")
        gone = hub.subscribe("a")
        hub.unsubscribe(gone.id, "a")

        assert await hub.publish("a") == 2
        assert first.queue.qsize() == 1
        assert second.queue.qsize() == 1
        assert other.queue.empty()
        assert gone.queue.empty()
        assert first.queue.get_nowait() == {"id": "a", "status": "running"}

    asyncio.run(main())


def test_publish_without_subscribers_or_record():
    async def main():
        hub = EventHub(provider(set()))
        assert await hub.publish("a") == 0
        sub = hub.subscribe("a")
        assert await hub.publish("a") == 0
        assert sub.queue.empty()

    asyncio.run(main())


def test_slow_subscriber_is_dropped_and_ended():
    async def main():
        hub = EventHub(provider({"a"}), queue_size=2)
        slow = hub.subscribe("a")
        for _ in range(2):
            await hub.publish("a")
        fast = hub.subscribe("a")

        assert await hub.publish("a") == 1
        assert hub.subscriber_count("a") == 1
        assert slow.queue.qsize() == 1
        assert slow.queue.get_nowait() is END_OF_STREAM
        assert fast.queue.qsize() == 1

    asyncio.run(main())


def test_close_app_ends_every_stream():
    async def main():
        hub = EventHub(provider({"a"}))
        subs = [hub.subscribe("a") for _ in range(3)]
        hub.close_app("a")
        assert hub.subscriber_count("a") == 0
        for sub in subs:
            assert sub.queue.get_nowait() is END_OF_STREAM

    asyncio.run(main())


def test_unsubscribe_unknown_is_noop():
    hub = EventHub()
    hub.unsubscribe("missing", "a")
    assert hub.subscriber_count("a") == 0


def test_failing_snapshot_is_skipped():
    async def snapshot(app_id):
        raise RuntimeUnavailable("cannot connect to docker daemon (is docker running?)")

    async def main():
        hub = EventHub(snapshot)
        sub = hub.subscribe("a")
        assert await hub.publish("a") == 0
        assert sub.queue.empty()
        assert hub.subscriber_count("a") == 1

    asyncio.run(main())
