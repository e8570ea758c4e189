"""Database configuration for the form pipeline.

Supports async SQLAlchemy with SQLite (dev) and PostgreSQL (prod).
Controlled by DATABASE_URL environment variable.
"""

from __future__ import annotations

import os
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

import sqlalchemy
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

# Default to SQLite for development
DATABASE_URL = os.getenv(
    "DATABASE_URL",
    "sqlite+aiosqlite:///./pipeline.db",
)

# Convert postgres:// to postgresql+asyncpg:// if needed
if DATABASE_URL.startswith("postgres://"):
    DATABASE_URL = DATABASE_URL.replace("postgres://", "postgresql+asyncpg://", 1)
elif DATABASE_URL.startswith("postgresql://"):
    DATABASE_URL = DATABASE_URL.replace("postgresql://", "postgresql+asyncpg://", 1)

engine: AsyncEngine = create_async_engine(
    DATABASE_URL,
    echo=os.getenv("DB_ECHO", "false").lower() == "true",
    # SQLite doesn't support pool settings
    **({} if "sqlite" in DATABASE_URL else {"pool_size": 5, "max_overflow": 10}),
)

async_session_factory = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


class Base(DeclarativeBase):
    """Base class for all ORM models."""
    pass


@asynccontextmanager
async def get_session_ctx(
    factory: Optional[async_sessionmaker] = None,
) -> AsyncGenerator[AsyncSession, None]:
    """Transactional session: commits on success, rolls back on error.

    Args:
        factory: Session factory to use (defaults to the module engine's)
    """
    async with (factory or async_session_factory)() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def init_db(bind: Optional[AsyncEngine] = None):
    """Create all tables. Use for development/testing only."""
    import app.models.db  # noqa: F401  (register models with Base.metadata)

    bind = bind or engine
    # WAL lets concurrent runs read while one of them reserves budget
    if bind.dialect.name == "sqlite" and ":memory:" not in str(bind.url):
        async with bind.begin() as conn:
            await conn.execute(sqlalchemy.text("PRAGMA journal_mode=WAL"))
            await conn.execute(sqlalchemy.text("PRAGMA busy_timeout=5000"))
    async with bind.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def close_db(bind: Optional[AsyncEngine] = None):
    """Close database engine."""
    await (bind or engine).dispose()
