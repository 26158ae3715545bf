"""Database configuration and connection management."""

import re
from collections.abc import AsyncGenerator
from typing import Any

from sqlalchemy import text
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from app.config import settings


def async_database_url(url: str) -> str:
    """Convert a sync PostgreSQL URL to its asyncpg form."""
    if url.startswith("postgresql://"):
        return url.replace("postgresql://", "postgresql+asyncpg://", 1)
    return url


DATABASE_URL = async_database_url(settings.database_url)

engine_options: dict[str, Any] = {"echo": settings.debug, "pool_pre_ping": True}
if DATABASE_URL.startswith("postgresql+asyncpg://"):
    engine_options.update(
        pool_size=10,
        max_overflow=20,
        pool_recycle=3600,
        connect_args={
            "server_settings": {
                "application_name": settings.app_name,
            },
        },
    )

# Create async engine with connection pooling
engine: AsyncEngine = create_async_engine(DATABASE_URL, **engine_options)

# Async session factory
AsyncSessionLocal = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Dependency for getting async database sessions."""
    async with AsyncSessionLocal() as session:
        try:
            yield session
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()


_POSTGRES_KEY_PATTERN = re.compile(r"Key \(([^)]+)\)=")
_SQLITE_UNIQUE_PATTERN = re.compile(r"UNIQUE constraint failed: ([\w., ]+)")


def integrity_error_fields(exc: IntegrityError) -> list[str]:
    """
    Extract the offending column names from a uniqueness violation.

    Args:
        exc: IntegrityError raised by the driver

    Returns:
        Column names named by the driver message, or ``["unknown"]``
    """
    message = str(exc.orig) if exc.orig is not None else str(exc)

    match = _POSTGRES_KEY_PATTERN.search(message)
    if match:
        return [column.strip() for column in match.group(1).split(",")]

    match = _SQLITE_UNIQUE_PATTERN.search(message)
    if match:
        return [column.strip().split(".")[-1] for column in match.group(1).split(",")]

    return ["unknown"]


async def check_database_connection() -> bool:
    """Check if database connection is healthy."""
    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        return True
    except Exception:
        return False
