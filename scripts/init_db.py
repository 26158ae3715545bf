"""Script to initialize the database."""

import asyncio

import structlog

from app.database import engine
from app.middleware.logging import configure_logging
from app.models import metadata

logger = structlog.get_logger()


async def init_db() -> None:
    """Initialize the database by creating all tables."""
    async with engine.begin() as conn:
        await conn.run_sync(metadata.create_all)

    await engine.dispose()
    logger.info("database_initialized", tables=sorted(metadata.tables))


if __name__ == "__main__":
    configure_logging()
    asyncio.run(init_db())
