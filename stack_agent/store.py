import logging
from typing import List, NamedTuple, Optional, Sequence

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import async_sessionmaker

from stack_agent.entities import (
    FRAGMENT_KINDS,
    App,
    BindMount,
    Build,
    EnvironmentVariable,
    Label,
    Network,
    PortMapping,
)
from stack_agent.models import AppConfig

log = logging.getLogger(__name__)


class Fragments(NamedTuple):
    ports: Sequence[PortMapping]
    volumes: Sequence[BindMount]
    variables: Sequence[EnvironmentVariable]
    networks: Sequence[Network]
    labels: Sequence[Label]


class AppStore:
    """Relational store for apps, their builds and configuration fragments."""

    def __init__(self, session_factory: async_sessionmaker):
        self.sessions = session_factory

    async def list_apps(self) -> List[App]:
        async with self.sessions() as session:
            return list((await session.scalars(select(App).order_by(App.created_at))).all())

    async def get_app(self, app_id: str) -> Optional[App]:
        async with self.sessions() as session:
            return await session.get(App, app_id)

    async def find_app_by_name(self, name: str, exclude_id: Optional[str] = None) -> Optional[App]:
        stmt = select(App).where(App.name == name)
        if exclude_id:
            stmt = stmt.where(App.id != exclude_id)
        async with self.sessions() as session:
            return (await session.scalars(stmt)).first()

    async def create_app(self, config: AppConfig) -> App:
        async with self.sessions.begin() as session:
            app = App(name=config.name, repository=config.repository, branch=config.branch)
            session.add(app)
            await session.flush()
            self._add_fragments(session, app.id, config)
        log.info("app created: id=%s name=%s", app.id, app.name)
        return app

    async def update_app(self, app_id: str, config: AppConfig) -> Optional[App]:
        async with self.sessions.begin() as session:
            app = await session.get(App, app_id)
            if app is None:
                return None
            app.name = config.name
            app.repository = config.repository
            app.branch = config.branch
            for kind in FRAGMENT_KINDS:
                await session.execute(delete(kind).where(kind.app_id == app_id))
            self._add_fragments(session, app_id, config)
        return app

    async def delete_app(self, app_id: str) -> None:
        async with self.sessions.begin() as session:
            for kind in (*FRAGMENT_KINDS, Build):
                await session.execute(delete(kind).where(kind.app_id == app_id))
            await session.execute(delete(App).where(App.id == app_id))
        log.info("app deleted: id=%s", app_id)

    @staticmethod
    def _add_fragments(session, app_id: str, config: AppConfig) -> None:
        session.add_all([PortMapping(app_id=app_id, external=p.external, internal=p.internal) for p in config.ports])
        session.add_all([BindMount(app_id=app_id, host=v.host, internal=v.internal) for v in config.volumes])
        session.add_all([EnvironmentVariable(app_id=app_id, key=v.key, value=v.value) for v in config.variables])
        session.add_all([Network(app_id=app_id, name=n.name, external=n.external) for n in config.networks])
        session.add_all([Label(app_id=app_id, key=lb.key, value=lb.value) for lb in config.labels])

    async def load_fragments(self, app_id: str) -> Fragments:
        """All five fragment kinds for one app, read inside a single transaction."""
        async with self.sessions.begin() as session:
            rows = []
            for kind in FRAGMENT_KINDS:
                stmt = select(kind).where(kind.app_id == app_id).order_by(kind.id)
                rows.append(list((await session.scalars(stmt)).all()))
        return Fragments(*rows)

    async def create_build(self, app_id: str) -> Build:
        async with self.sessions.begin() as session:
            build = Build(app_id=app_id)
            session.add(build)
        log.info("build registered: app=%s build=%s", app_id, build.id)
        return build

    async def get_build(self, build_id: str) -> Optional[Build]:
        async with self.sessions() as session:
            return await session.get(Build, build_id)

    async def list_builds(self, app_id: str) -> List[Build]:
        stmt = select(Build).where(Build.app_id == app_id).order_by(Build.created_at.desc())
        async with self.sessions() as session:
            return list((await session.scalars(stmt)).all())
