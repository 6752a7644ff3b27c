"""Server-sent event streams for app status and container logs."""

import asyncio
import json
import logging
from typing import Any, AsyncIterator

from fastapi.encoders import jsonable_encoder

from stack_agent.events import END_OF_STREAM, EventHub
from stack_agent.lifecycle import LifecycleOrchestrator

log = logging.getLogger(__name__)

SSE_HEADERS = {"Cache-Control": "no-cache", "Connection": "keep-alive", "X-Accel-Buffering": "no"}


def sse(data: Any) -> str:
    return f"data: {json.dumps(jsonable_encoder(data))}\n\n"


async def status_events(orchestrator: LifecycleOrchestrator, hub: EventHub, app_id: str) -> AsyncIterator[str]:
    """One snapshot right away, then one per lifecycle event, until disconnect."""
    sub = hub.subscribe(app_id)
    try:
        snapshot = await orchestrator.snapshot(app_id)
        if snapshot is None:
            return
        yield sse(snapshot)
        while True:
            item = await sub.queue.get()
            if item is END_OF_STREAM:
                return
            yield sse(item)
    finally:
        hub.unsubscribe(sub.id, app_id)


async def log_events(orchestrator: LifecycleOrchestrator, app_id: str,
                     cancel: asyncio.Event) -> AsyncIterator[str]:
    """Forward each log chunk as it arrives; closing the stream sets ``cancel``."""
    queue: asyncio.Queue = asyncio.Queue()
    task = asyncio.create_task(orchestrator.follow_logs(app_id, queue.put_nowait, cancel))
    task.add_done_callback(lambda _: queue.put_nowait(END_OF_STREAM))
    try:
        while True:
            chunk = await queue.get()
            if chunk is END_OF_STREAM:
                break
            yield sse(chunk)
    finally:
        cancel.set()
        try:
            await task
        except Exception:
            log.exception("log stream ended with an error: app=%s", app_id)
