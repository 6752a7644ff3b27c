import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

from stack_agent import app_dirs
from stack_agent.builds import BuildTrigger
from stack_agent.compose import create_compose_configuration
from stack_agent.entities import App, Build
from stack_agent.errors import AppConflict, AppNotFound, BuildNotFound, RuntimeUnavailable, StackStartFailed
from stack_agent.events import EventHub
from stack_agent.models import AppConfig
from stack_agent.runtime import ContainerStatus, RuntimeAdapter, build_id_from_image, container_name
from stack_agent.store import AppStore
from stack_agent.supervisor import Backoff, supervise

log = logging.getLogger(__name__)


@dataclass
class StartOutcome:
    started: bool
    status: Optional[ContainerStatus] = None
    reason: Optional[str] = None
    build: Optional[Dict[str, Any]] = None


@dataclass
class ReuseContext:
    """What the reuse checks learned so far about the on-disk configuration."""

    app: App
    directory: Optional[str] = None
    document: Optional[Dict[str, Any]] = None
    image: Optional[str] = None
    build: Optional[Build] = None


ReuseCheck = Tuple[str, Callable[[ReuseContext], Awaitable[bool]]]


def app_payload(app: App, status: Optional[ContainerStatus] = None) -> Dict[str, Any]:
    payload = {
        "id": app.id,
        "name": app.name,
        "repository": app.repository,
        "branch": app.branch,
        "createdAt": app.created_at,
        "updatedAt": app.updated_at,
    }
    if status is not None:
        payload["status"] = status.display
    return payload


class LifecycleOrchestrator:
    """Start/stop/status transitions for apps, one at a time per app."""

    def __init__(self, store: AppStore, runtime: RuntimeAdapter, builder: BuildTrigger, hub: EventHub,
                 apps_root: Optional[str] = None, log_backoff: Optional[Backoff] = None):
        self.store = store
        self.runtime = runtime
        self.builder = builder
        self.hub = hub
        self.apps_root = apps_root
        self.log_backoff = log_backoff
        self._locks: Dict[str, asyncio.Lock] = {}
        self.reuse_checks: List[ReuseCheck] = [
            ("directory", self._has_directory),
            ("compose-file", self._has_compose_file),
            ("image-reference", self._has_image_reference),
            ("build-record", self._has_build_record),
            ("image-present", self._has_image),
        ]
        hub.bind(self.snapshot)

    def _lock(self, app_id: str) -> asyncio.Lock:
        return self._locks.setdefault(app_id, asyncio.Lock())

    async def require_app(self, app_id: str) -> App:
        app = await self.store.get_app(app_id)
        if app is None:
            raise AppNotFound(app_id)
        return app

    # ---------- queries ----------------------------------------------------- #
    async def status(self, app_id: str) -> ContainerStatus:
        return await self.runtime.container_status(container_name(app_id))

    async def snapshot(self, app_id: str) -> Optional[Dict[str, Any]]:
        app = await self.store.get_app(app_id)
        if app is None:
            return None
        return app_payload(app, await self.status(app_id))

    async def list(self) -> List[Dict[str, Any]]:
        apps = await self.store.list_apps()
        containers = await self.runtime.all_container_statuses()
        return [app_payload(app, containers.get(container_name(app.id), ContainerStatus.ABSENT)) for app in apps]

    # ---------- records ----------------------------------------------------- #
    async def create(self, config: AppConfig) -> App:
        if await self.store.find_app_by_name(config.name):
            raise AppConflict("An app with that name already exists")
        return await self.store.create_app(config)

    async def update(self, app_id: str, config: AppConfig) -> App:
        await self.require_app(app_id)
        if await self.store.find_app_by_name(config.name, exclude_id=app_id):
            raise AppConflict("An app with that name already exists")
        updated = await self.store.update_app(app_id, config)
        if updated is None:
            raise AppNotFound(app_id)
        await self.hub.publish(app_id)
        return updated

    async def delete(self, app_id: str, force: bool = False) -> None:
        app = await self.require_app(app_id)
        async with self._lock(app_id):
            if force:
                directory = app_dirs.get_or_create_app_directory(app.id, self.apps_root)
                await self.runtime.stop_stack(directory)
                app_dirs.delete_app_directory(app.id, self.apps_root)
            await self.store.delete_app(app.id)
        self._locks.pop(app_id, None)
        self.hub.close_app(app_id)

    async def register_build(self, app_id: str) -> Build:
        await self.require_app(app_id)
        return await self.store.create_build(app_id)

    async def builds(self, app_id: str) -> List[Build]:
        await self.require_app(app_id)
        return await self.store.list_builds(app_id)

    async def build(self, app_id: str, build_id: str) -> Build:
        await self.require_app(app_id)
        build = await self.store.get_build(build_id)
        if build is None or build.app_id != app_id:
            raise BuildNotFound("There is no build with that id")
        return build

    # ---------- reuse checks ------------------------------------------------ #
    async def _has_directory(self, ctx: ReuseContext) -> bool:
        ctx.directory = app_dirs.get_app_directory(ctx.app.id, self.apps_root)
        return ctx.directory is not None

    async def _has_compose_file(self, ctx: ReuseContext) -> bool:
        ctx.document = await self.runtime.read_compose_config(ctx.directory)
        return ctx.document is not None

    async def _has_image_reference(self, ctx: ReuseContext) -> bool:
        ctx.image = self.runtime.image_from_config(ctx.document)
        return ctx.image is not None

    async def _has_build_record(self, ctx: ReuseContext) -> bool:
        build_id = build_id_from_image(ctx.image)
        if not build_id:
            return False
        ctx.build = await self.store.get_build(build_id)
        # a build of another app is not reusable either
        return ctx.build is not None and ctx.build.app_id == ctx.app.id

    async def _has_image(self, ctx: ReuseContext) -> bool:
        return await self.runtime.image_available(ctx.image)

    async def check_reuse(self, app: App) -> Tuple[Optional[str], ReuseContext]:
        """Run the reuse checks in order; returns the first failing check's name."""
        ctx = ReuseContext(app=app)
        for name, check in self.reuse_checks:
            if not await check(ctx):
                return name, ctx
        return None, ctx

    # ---------- transitions ------------------------------------------------- #
    async def start(self, app_id: str) -> StartOutcome:
        app = await self.require_app(app_id)
        async with self._lock(app_id):
            if await self.status(app_id) == ContainerStatus.RUNNING:
                raise AppConflict("The app is already running")

            failed, ctx = await self.check_reuse(app)
            if failed is not None:
                log.info("start needs a new build: app=%s failed_check=%s", app_id, failed)
                build = await self.builder.request_build(app, failed)
                return StartOutcome(started=False, reason=failed, build=build)

            fragments = await self.store.load_fragments(app_id)
            document = create_compose_configuration(ctx.build, *fragments)
            await self.runtime.write_compose_config(document, ctx.directory)
            try:
                await self.runtime.start_stack(ctx.directory)
            except RuntimeUnavailable as e:
                log.warning("start failed: app=%s err=%s", app_id, e.err)
                raise StackStartFailed(e.err) from e
            log.info("app started: app=%s build=%s", app_id, ctx.build.id)
            try:
                status: Optional[ContainerStatus] = await self.status(app_id)
            except RuntimeUnavailable as e:
                log.warning("status after start unavailable: app=%s err=%s", app_id, e.err)
                status = None
        await self.hub.publish(app_id)
        return StartOutcome(started=True, status=status)

    async def stop(self, app_id: str) -> None:
        app = await self.require_app(app_id)
        async with self._lock(app_id):
            if not (await self.status(app_id)).active:
                raise AppConflict("The app is not running")
            directory = app_dirs.get_or_create_app_directory(app.id, self.apps_root)
            await self.runtime.stop_stack(directory)
            log.info("app stopped: app=%s", app_id)
        await self.hub.publish(app_id)

    # ---------- logs -------------------------------------------------------- #
    async def ensure_streamable(self, app_id: str) -> App:
        app = await self.require_app(app_id)
        if not (await self.status(app_id)).active:
            raise AppConflict("The app is not running")
        return app

    async def follow_logs(self, app_id: str, on_chunk: Callable[[str], None], cancel: asyncio.Event) -> int:
        """Tail the app's logs, reconnecting after runtime errors until ``cancel`` is set."""
        name = container_name(app_id)

        async def tail(signal: asyncio.Event) -> None:
            await self.runtime.stream_logs(name, on_chunk, signal)

        return await supervise(tail, cancel, self.log_backoff)
