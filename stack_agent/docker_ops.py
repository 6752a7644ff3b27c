import asyncio
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

import yaml

from stack_agent import settings
from stack_agent.errors import RuntimeUnavailable
from stack_agent.runtime import ContainerStatus, RuntimeAdapter, StatusCache, container_name

log = logging.getLogger(__name__)

# docker logs lines longer than this fail readline()
LOG_LINE_LIMIT = 4 * 1024 * 1024

_STATES = {
    "running": ContainerStatus.RUNNING,
    "restarting": ContainerStatus.RESTARTING,
}


@dataclass(frozen=True)
class CmdResult:
    code: int
    out: str
    err: str


async def run(cmd: List[str], timeout_sec: int = 60, cwd: Optional[str] = None) -> CmdResult:
    try:
        p = await asyncio.create_subprocess_exec(
            *cmd,
            cwd=cwd,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except FileNotFoundError as e:
        # docker binary missing / not on PATH
        return CmdResult(code=127, out="", err=str(e))
    try:
        out, err = await asyncio.wait_for(p.communicate(), timeout=timeout_sec)
    except asyncio.TimeoutError:
        p.kill()
        await p.wait()
        return CmdResult(code=124, out="", err=f"timed out after {timeout_sec}s: {' '.join(cmd)}")
    return CmdResult(code=p.returncode, out=out.decode(errors="replace"), err=err.decode(errors="replace"))


def docker_bin_name() -> str:
    return (settings.RUNTIME_DOCKER_BIN or "docker").strip()


async def docker(*args: str, timeout_sec: int = 120, cwd: Optional[str] = None) -> CmdResult:
    return await run([docker_bin_name(), *args], timeout_sec=timeout_sec, cwd=cwd)


def _missing(r: CmdResult) -> bool:
    if r.code == 127:
        return False
    msg = (r.err or r.out or "").lower()
    return "no such" in msg or "not found" in msg


def _raise_for(r: CmdResult, what: str) -> None:
    err = (r.err or r.out or "").strip()
    low = err.lower()
    if r.code == 127:
        raise RuntimeUnavailable("docker binary not found (install docker or set RUNTIME_DOCKER_BIN)", err)
    if "cannot connect to the docker daemon" in low or "is the docker daemon running" in low:
        raise RuntimeUnavailable("cannot connect to docker daemon (is docker running?)", err)
    if "permission denied" in low:
        raise RuntimeUnavailable("permission denied to access docker (check /var/run/docker.sock permissions)", err)
    raise RuntimeUnavailable(f"{what} failed: {err}", err)


def _status(state: str) -> ContainerStatus:
    return _STATES.get((state or "").strip().lower(), ContainerStatus.EXITED)


class DockerRuntime(RuntimeAdapter):
    """Drives the docker CLI (``docker compose`` for stacks)."""

    def __init__(self, compose_file: str = "", cache_ttl: Optional[float] = None, log_tail: int = 0):
        self.compose_file = compose_file or settings.STACK_COMPOSE_FILE
        self.cache = StatusCache(settings.STACK_STATUS_CACHE_SECONDS if cache_ttl is None else cache_ttl)
        self.log_tail = log_tail or settings.STACK_LOG_TAIL

    async def container_status(self, name: str) -> ContainerStatus:
        r = await docker("inspect", "--type", "container", "-f", "{{.State.Status}}", name, timeout_sec=10)
        if r.code != 0:
            if _missing(r):
                return ContainerStatus.ABSENT
            _raise_for(r, "docker inspect")
        return _status(r.out)

    async def all_container_statuses(self) -> Dict[str, ContainerStatus]:
        cached = self.cache.get()
        if cached is not None:
            return cached
        r = await docker("ps", "-a", "--format", "{{.Names}}\t{{.State}}", timeout_sec=15)
        if r.code != 0:
            _raise_for(r, "docker ps")
        snapshot: Dict[str, ContainerStatus] = {}
        for line in (r.out or "").splitlines():
            name, _, state = line.strip().partition("\t")
            if name:
                snapshot[name] = _status(state)
        self.cache.put(snapshot)
        return snapshot

    async def image_available(self, image: str) -> bool:
        r = await docker("image", "inspect", image, timeout_sec=10)
        if r.code == 0:
            return True
        if _missing(r):
            return False
        _raise_for(r, "docker image inspect")

    async def start_stack(self, directory: str) -> None:
        self.cache.invalidate()
        r = await docker("compose", "-f", self.compose_file, "up", "-d", "--remove-orphans", timeout_sec=300, cwd=directory)
        self.cache.invalidate()
        if r.code != 0:
            _raise_for(r, "docker compose up")
        log.info("stack started: dir=%s", directory)

    async def stop_stack(self, directory: str) -> None:
        if not (Path(directory) / self.compose_file).exists():
            await self._remove_container(container_name(Path(directory).name))
            return
        self.cache.invalidate()
        r = await docker("compose", "-f", self.compose_file, "down", timeout_sec=120, cwd=directory)
        self.cache.invalidate()
        if r.code != 0:
            _raise_for(r, "docker compose down")
        log.info("stack stopped: dir=%s", directory)

    async def _remove_container(self, name: str) -> None:
        # no compose file to bring down: remove the container by its derived name
        self.cache.invalidate()
        r = await docker("rm", "-f", name, timeout_sec=30)
        self.cache.invalidate()
        if r.code != 0 and not _missing(r):
            _raise_for(r, "docker rm")
        log.info("container removed without compose file: name=%s", name)

    async def read_compose_config(self, directory: str) -> Optional[Dict[str, Any]]:
        path = Path(directory) / self.compose_file
        if not path.is_file():
            return None
        try:
            document = yaml.safe_load(path.read_text(encoding="utf-8"))
        except yaml.YAMLError as e:
            log.warning("unreadable compose file %s: %s", path, e)
            return None
        return document if isinstance(document, dict) else None

    async def write_compose_config(self, document: str, directory: str) -> None:
        path = Path(directory) / self.compose_file
        tmp = path.with_suffix(".tmp")
        tmp.write_text(document, encoding="utf-8")
        os.replace(tmp, path)

    async def stream_logs(self, name: str, on_chunk: Callable[[str], None], cancel: asyncio.Event) -> None:
        try:
            p = await asyncio.create_subprocess_exec(
                docker_bin_name(), "logs", "-f", "--tail", str(self.log_tail), name,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.STDOUT,
                limit=LOG_LINE_LIMIT,
            )
        except FileNotFoundError as e:
            raise RuntimeUnavailable("docker binary not found (install docker or set RUNTIME_DOCKER_BIN)", str(e))

        cancelled = asyncio.ensure_future(cancel.wait())
        last = ""
        try:
            while True:
                line = asyncio.ensure_future(p.stdout.readline())
                done, _ = await asyncio.wait({line, cancelled}, return_when=asyncio.FIRST_COMPLETED)
                if cancelled in done:
                    line.cancel()
                    return
                data = line.result()
                if not data:
                    break
                last = data.decode(errors="replace")
                on_chunk(last)
            code = await p.wait()
            if code != 0:
                raise RuntimeUnavailable(f"docker logs exited with {code}", last.strip())
        finally:
            cancelled.cancel()
            if p.returncode is None:
                p.kill()
                await p.wait()
