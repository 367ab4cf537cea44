#!/usr/bin/env python3
"""
Database initialization script.

This script creates the ledger tables in the configured database. Use it for
local development; shared environments run the Alembic migrations instead.
"""

import sys
import logging
import asyncio

from questledger.config import settings
from questledger.database.init_db import initialize_database, create_schema, close_database

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


async def async_main():
    """Initialize the database."""
    try:
        engine = await initialize_database(
            database_url=settings.DATABASE_URL,
            echo=settings.SQL_ECHO,
            pool_size=settings.DB_POOL_SIZE,
            max_overflow=settings.DB_MAX_OVERFLOW,
            pool_timeout=settings.DB_POOL_TIMEOUT
        )

        await create_schema(engine)

        logger.info("Database initialized successfully")

    except Exception as e:
        logger.error(f"Error initializing database: {e}")
        sys.exit(1)
    finally:
        await close_database()

if __name__ == "__main__":
    asyncio.run(async_main())
