from __future__ import annotations

import asyncio
import os
from typing import Any, Callable, Dict, List, Optional

import yaml

from stack_agent.builds import BuildTrigger
from stack_agent.errors import RuntimeUnavailable
from stack_agent.runtime import ContainerStatus, RuntimeAdapter, container_name


class FakeRuntime(RuntimeAdapter):
    def __init__(self) -> None:
        self.statuses: Dict[str, ContainerStatus] = {}
        self.images: set[str] = set()
        self.configs: Dict[str, Dict[str, Any]] = {}
        self.written: Dict[str, str] = {}
        self.calls: List[tuple] = []
        self.start_error: Optional[Exception] = None
        # container_status raises once it has been called this many times
        self.fail_status_after: Optional[int] = None
        # each stream_logs call consumes one entry: an exception or a list of chunks
        self.log_script: List[Any] = []

    def ops(self) -> List[str]:
        return [c[0] for c in self.calls]

    def set_status(self, app_id: str, status: ContainerStatus) -> None:
        self.statuses[container_name(app_id)] = status

    async def container_status(self, name: str) -> ContainerStatus:
        self.calls.append(("container_status", name))
        if self.fail_status_after is not None and self.ops().count("container_status") > self.fail_status_after:
            raise RuntimeUnavailable("cannot connect to docker daemon (is docker running?)")
        return self.statuses.get(name, ContainerStatus.ABSENT)

    async def all_container_statuses(self) -> Dict[str, ContainerStatus]:
        self.calls.append(("all_container_statuses",))
        return dict(self.statuses)

    async def image_available(self, image: str) -> bool:
        self.calls.append(("image_available", image))
        return image in self.images

    async def start_stack(self, directory: str) -> None:
        self.calls.append(("start_stack", directory))
        await asyncio.sleep(0)
        if self.start_error is not None:
            raise self.start_error
        self.set_status(os.path.basename(directory), ContainerStatus.RUNNING)

    async def stop_stack(self, directory: str) -> None:
        self.calls.append(("stop_stack", directory))
        await asyncio.sleep(0)
        self.set_status(os.path.basename(directory), ContainerStatus.EXITED)

    async def read_compose_config(self, directory: str) -> Optional[Dict[str, Any]]:
        self.calls.append(("read_compose_config", directory))
        return self.configs.get(directory)

    async def write_compose_config(self, document: str, directory: str) -> None:
        self.calls.append(("write_compose_config", directory))
        self.written[directory] = document
        self.configs[directory] = yaml.safe_load(document)

    async def stream_logs(self, name: str, on_chunk: Callable[[str], None], cancel: asyncio.Event) -> None:
        self.calls.append(("stream_logs", name))
        step = self.log_script.pop(0) if self.log_script else []
        if isinstance(step, Exception):
            raise step
        for chunk in step:
            on_chunk(chunk)


class FakeBuilder(BuildTrigger):
    def __init__(self) -> None:
        self.requests: List[tuple] = []

    async def request_build(self, app, reason: str) -> Dict[str, Any]:
        self.requests.append((app.id, reason))
        return {"status": "queued", "appId": app.id}


def flaky(times: int) -> List[Any]:
    return [RuntimeUnavailable("docker logs exited with 1", "boom") for _ in range(times)]
