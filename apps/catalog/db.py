"""Async engine, session factory and schema bootstrap."""

import os
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from functools import lru_cache

from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from apps.catalog.config import config
from apps.catalog.models import Base


def create_engine_for(url: str, echo: bool = False) -> AsyncEngine:
    """Build an AsyncEngine. SQLite gets foreign keys switched on so ON DELETE CASCADE applies."""
    if url.startswith("sqlite"):
        engine = create_async_engine(url, echo=echo)

        @event.listens_for(engine.sync_engine, "connect")
        def _enable_foreign_keys(dbapi_connection, _record):
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

        return engine
    return create_async_engine(url, pool_pre_ping=True, echo=echo)


def make_sessionmaker(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, autoflush=False, expire_on_commit=False)


@lru_cache(maxsize=1)
def get_engine() -> AsyncEngine:
    """Process-wide engine for config.database_url. Created on first use, not at import."""
    return create_engine_for(config.database_url, echo=config.sql_echo)


@lru_cache(maxsize=1)
def get_sessionmaker() -> async_sessionmaker[AsyncSession]:
    return make_sessionmaker(get_engine())


@asynccontextmanager
async def get_db(
    session_factory: async_sessionmaker[AsyncSession] | None = None,
) -> AsyncIterator[AsyncSession]:
    """Provide a transactional scope for DB operations. Always filter by tenant_id in queries."""
    session = (session_factory or get_sessionmaker())()
    try:
        yield session
        await session.commit()
    except Exception:
        await session.rollback()
        raise
    finally:
        await session.close()


async def ensure_tables(engine: AsyncEngine | None = None) -> None:
    """Create all tables if they do not exist. Idempotent (checkfirst=True).

    Postgres deployments use Alembic; this only runs against non-Postgres URLs
    (SQLite in tests) unless CATALOG_SCHEMA_STRATEGY=ensure_tables.
    """
    bind = engine if engine is not None else get_engine()
    strategy = (os.environ.get("CATALOG_SCHEMA_STRATEGY") or "alembic").strip().lower()
    if bind.dialect.name == "postgresql" and strategy != "ensure_tables":
        return
    async with bind.begin() as conn:
        await conn.run_sync(Base.metadata.create_all, checkfirst=True)
