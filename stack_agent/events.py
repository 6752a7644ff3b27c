import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Optional

from stack_agent.errors import StackAgentError

log = logging.getLogger(__name__)

Snapshot = Dict[str, Any]
SnapshotProvider = Callable[[str], Awaitable[Optional[Snapshot]]]

# pushed to a subscriber's channel when its app goes away
END_OF_STREAM = None


@dataclass
class Subscription:
    app_id: str
    queue: asyncio.Queue
    id: str = field(default_factory=lambda: uuid.uuid4().hex)


class EventHub:
    """
    Per-app registry of live subscribers. Each subscriber owns a bounded
    channel; publishing never waits on a subscriber, a full channel drops it.
    """

    def __init__(self, snapshot: Optional[SnapshotProvider] = None, queue_size: int = 64):
        self._snapshot = snapshot
        self.queue_size = max(1, int(queue_size))
        self._subscribers: Dict[str, Dict[str, Subscription]] = {}

    def bind(self, snapshot: SnapshotProvider) -> None:
        self._snapshot = snapshot

    def subscribe(self, app_id: str) -> Subscription:
        sub = Subscription(app_id=app_id, queue=asyncio.Queue(maxsize=self.queue_size))
        self._subscribers.setdefault(app_id, {})[sub.id] = sub
        log.debug("subscriber added: app=%s sub=%s", app_id, sub.id)
        return sub

    def unsubscribe(self, subscription_id: str, app_id: str) -> None:
        subs = self._subscribers.get(app_id)
        if not subs:
            return
        subs.pop(subscription_id, None)
        if not subs:
            self._subscribers.pop(app_id, None)

    def subscriber_count(self, app_id: str) -> int:
        return len(self._subscribers.get(app_id, {}))

    async def publish(self, app_id: str) -> int:
        """
        Push a fresh snapshot of the app to each of its subscribers. A failing
        snapshot is logged and skipped; the transition that triggered it stands.
        """
        if not self._subscribers.get(app_id) or self._snapshot is None:
            return 0
        try:
            snapshot = await self._snapshot(app_id)
        except StackAgentError as e:
            log.warning("lifecycle event skipped: app=%s err=%s", app_id, e.message)
            return 0
        if snapshot is None:
            return 0
        return self._deliver(app_id, snapshot)

    def close_app(self, app_id: str) -> None:
        self._deliver(app_id, END_OF_STREAM)
        self._subscribers.pop(app_id, None)

    def _deliver(self, app_id: str, item: Optional[Snapshot]) -> int:
        delivered = 0
        for sub in list(self._subscribers.get(app_id, {}).values()):
            try:
                sub.queue.put_nowait(item)
                delivered += 1
            except asyncio.QueueFull:
                log.warning("dropping slow subscriber: app=%s sub=%s", app_id, sub.id)
                self.unsubscribe(sub.id, app_id)
                _end(sub.queue)
        return delivered


def _end(queue: asyncio.Queue) -> None:
    while not queue.empty():
        queue.get_nowait()
    queue.put_nowait(END_OF_STREAM)
