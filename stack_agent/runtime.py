"""
Runtime adapter interface consumed by the lifecycle orchestrator.

Concrete adapters sub-class ``RuntimeAdapter``:

    ● Status:
        - ``container_status(name)``       : running/restarting/exited/absent.
        - ``all_container_statuses()``     : one snapshot, name -> status.
        - ``image_available(tag)``         : is the image present locally.
    ● Stack (idempotent):
        - ``start_stack(directory)``       : bring the compose stack up.
        - ``stop_stack(directory)``        : bring it down.
    ● Compose file:
        - ``read_compose_config(directory)`` / ``write_compose_config(doc, directory)``
        - ``image_from_config(doc)``
    ● Logs:
        - ``stream_logs(name, on_chunk, cancel)``

Every operation may raise ``RuntimeUnavailable`` when the runtime fails.
"""

import asyncio
import time
from abc import ABC, abstractmethod
from enum import Enum
from typing import Any, Callable, Dict, Optional

from stack_agent import settings


class ContainerStatus(str, Enum):
    RUNNING = "running"
    RESTARTING = "restarting"
    EXITED = "exited"
    ABSENT = "absent"

    @property
    def active(self) -> bool:
        return self in (ContainerStatus.RUNNING, ContainerStatus.RESTARTING)

    @property
    def display(self) -> str:
        return ContainerStatus.EXITED.value if self is ContainerStatus.ABSENT else self.value


def container_name(app_id: str) -> str:
    return f"{settings.STACK_CONTAINER_PREFIX}-{app_id}"


def image_tag(build_id: str) -> str:
    return f"{settings.STACK_CONTAINER_PREFIX}-{build_id}"


def build_id_from_image(image: str) -> Optional[str]:
    prefix = f"{settings.STACK_CONTAINER_PREFIX}-"
    if not image or not image.startswith(prefix):
        return None
    return image[len(prefix):] or None


class RuntimeAdapter(ABC):

    @abstractmethod
    async def container_status(self, name: str) -> ContainerStatus: ...

    @abstractmethod
    async def all_container_statuses(self) -> Dict[str, ContainerStatus]: ...

    @abstractmethod
    async def image_available(self, image: str) -> bool: ...

    @abstractmethod
    async def start_stack(self, directory: str) -> None: ...

    @abstractmethod
    async def stop_stack(self, directory: str) -> None: ...

    @abstractmethod
    async def read_compose_config(self, directory: str) -> Optional[Dict[str, Any]]: ...

    @abstractmethod
    async def write_compose_config(self, document: str, directory: str) -> None: ...

    def image_from_config(self, document: Dict[str, Any]) -> Optional[str]:
        services = document.get("services") if isinstance(document, dict) else None
        if not isinstance(services, dict):
            return None
        service = services.get("app")
        if not isinstance(service, dict):
            return None
        image = service.get("image")
        return image if isinstance(image, str) and image else None

    @abstractmethod
    async def stream_logs(self, name: str, on_chunk: Callable[[str], None], cancel: asyncio.Event) -> None:
        """Return when the log stream ends or ``cancel`` is set."""


class StatusCache:
    """Last bulk status snapshot, reused for ``ttl`` seconds."""

    def __init__(self, ttl: float):
        self.ttl = ttl
        self._snapshot: Optional[Dict[str, ContainerStatus]] = None
        self._taken_at = 0.0

    def get(self) -> Optional[Dict[str, ContainerStatus]]:
        if self._snapshot is None or self.ttl <= 0:
            return None
        if time.monotonic() - self._taken_at > self.ttl:
            self._snapshot = None
            return None
        return self._snapshot

    def put(self, snapshot: Dict[str, ContainerStatus]) -> None:
        self._snapshot = dict(snapshot)
        self._taken_at = time.monotonic()

    def invalidate(self) -> None:
        self._snapshot = None
