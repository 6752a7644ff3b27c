from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Awaitable, Callable

import pytest

from stack_agent import app_dirs, db
from stack_agent.events import EventHub
from stack_agent.lifecycle import LifecycleOrchestrator
from stack_agent.models import AppConfig
from stack_agent.runtime import image_tag
from stack_agent.store import AppStore
from stack_agent.supervisor import Backoff
from tests.fake_runtime import FakeBuilder, FakeRuntime


class Harness:
    def __init__(self, tmp_path: Path) -> None:
        self.engine = db.make_engine(f"sqlite+aiosqlite:///{tmp_path / 'agent.db'}")
        self.store = AppStore(db.make_session_factory(self.engine))
        self.runtime = FakeRuntime()
        self.builder = FakeBuilder()
        self.hub = EventHub(queue_size=8)
        self.apps_root = str(tmp_path / "apps")
        self.orchestrator = LifecycleOrchestrator(
            store=self.store,
            runtime=self.runtime,
            builder=self.builder,
            hub=self.hub,
            apps_root=self.apps_root,
            log_backoff=Backoff(initial=0.001, maximum=0.004, factor=2),
        )

    def run(self, scenario: Callable[[], Awaitable[None]]) -> None:
        async def wrapper():
            await db.create_schema(self.engine)
            try:
                await scenario()
            finally:
                await self.engine.dispose()

        asyncio.run(wrapper())

    async def make_app(self, name: str = "web", **fields):
        return await self.orchestrator.create(AppConfig(name=name, **fields))

    async def make_reusable(self, app):
        """Leave a compose file on disk pointing at a built, present image."""
        build = await self.store.create_build(app.id)
        directory = app_dirs.get_or_create_app_directory(app.id, self.apps_root)
        self.runtime.configs[directory] = {"services": {"app": {"image": image_tag(build.id)}}}
        self.runtime.images.add(image_tag(build.id))
        return build, directory


@pytest.fixture
def harness(tmp_path: Path) -> Harness:
    return Harness(tmp_path)
