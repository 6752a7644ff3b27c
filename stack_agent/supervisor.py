import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Iterator, Optional

from stack_agent import settings

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class Backoff:
    """Capped exponential delays; ``factor=1`` gives a fixed interval."""

    initial: float = 1.0
    maximum: float = 1.0
    factor: float = 2.0

    @classmethod
    def from_settings(cls) -> "Backoff":
        return cls(
            initial=settings.STACK_LOG_RETRY_MIN_SECONDS,
            maximum=settings.STACK_LOG_RETRY_MAX_SECONDS,
            factor=settings.STACK_LOG_RETRY_FACTOR,
        )

    def delays(self) -> Iterator[float]:
        delay = max(0.0, min(self.initial, self.maximum))
        while True:
            yield delay
            delay = min(self.maximum, delay * self.factor)


async def _sleep_unless_cancelled(delay: float, cancel: asyncio.Event) -> None:
    try:
        await asyncio.wait_for(cancel.wait(), timeout=delay)
    except asyncio.TimeoutError:
        pass


async def supervise(
    operation: Callable[[asyncio.Event], Awaitable[None]],
    cancel: asyncio.Event,
    backoff: Optional[Backoff] = None,
    on_retry: Optional[Callable[[int, float, Exception], None]] = None,
) -> int:
    """
    Run ``operation`` until it completes or ``cancel`` is set, retrying every
    failure without limit. Returns the number of retries performed.
    """
    delays = (backoff or Backoff.from_settings()).delays()
    retries = 0
    while not cancel.is_set():
        try:
            await operation(cancel)
            return retries
        except Exception as e:
            if cancel.is_set():
                log.debug("operation failed after cancellation: %s", e)
                return retries
            delay = next(delays)
            retries += 1
            if on_retry is not None:
                on_retry(retries, delay, e)
            log.debug("retry #%d in %.2fs after: %s", retries, delay, e)
            await _sleep_unless_cancelled(delay, cancel)
    return retries
