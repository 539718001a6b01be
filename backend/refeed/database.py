"""Async engine, session factory and declarative base for the score store."""
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from refeed.config import get_settings

settings = get_settings()


def engine_options(database_url: str, echo: bool = False) -> dict:
    """Keyword arguments for create_async_engine; Postgres pings pooled connections."""
    options: dict = {"echo": echo}
    if database_url.startswith("sqlite"):
        # aiosqlite runs the connection in a worker thread
        options["connect_args"] = {"check_same_thread": False}
    else:
        options["pool_pre_ping"] = True
    return options


engine = create_async_engine(settings.database_url, **engine_options(settings.database_url, settings.debug))

async_session_maker = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


class Base(DeclarativeBase):
    pass


async def init_models() -> None:
    """Create the users, daily_metrics, scores and recommendations tables."""
    async with engine.begin() as conn:
        from refeed import models  # noqa: F401
        await conn.run_sync(Base.metadata.create_all)


@asynccontextmanager
async def session_scope() -> AsyncGenerator[AsyncSession, None]:
    """Session that commits on success and rolls back on error."""
    async with async_session_maker() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()
