"""Database engine and session factory construction."""
from __future__ import annotations

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from ..core.config import Settings
from ..models.base import Base


def build_engine(settings: Settings) -> AsyncEngine:
    """Create the async engine described by ``settings``."""

    connect_args: dict[str, object] = {}
    if settings.database_ssl_required:
        connect_args["ssl"] = True

    return create_async_engine(
        settings.database_url,
        echo=False,
        pool_pre_ping=True,
        connect_args=connect_args,
    )


def build_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)


async def init_models(engine: AsyncEngine) -> None:
    """Create all tables that do not exist yet."""

    # Register every mapped class on the metadata before create_all.
    from .. import models  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
