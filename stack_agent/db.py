from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy.pool import NullPool

from stack_agent import settings


class Base(DeclarativeBase):
    pass


def make_engine(url: str = "") -> AsyncEngine:
    url = url or settings.STACK_DATABASE_URL
    if url.startswith("sqlite"):
        # aiosqlite connections are bound to the loop that opened them
        return create_async_engine(url, poolclass=NullPool)
    return create_async_engine(url, pool_pre_ping=True)


def make_session_factory(engine: AsyncEngine) -> async_sessionmaker:
    return async_sessionmaker(engine, expire_on_commit=False)


async def create_schema(engine: AsyncEngine) -> None:
    # import for side effect: registers the mapped tables on Base.metadata
    from stack_agent import entities  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
