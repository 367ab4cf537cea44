"""
Database initialization and connection management.

This module provides functions for:
1. Creating the async engine and session factory
2. Creating the ledger schema (development and tests; production uses Alembic)
3. Disposing of the connection pool

The engine and session factory are handed to the ledger components at
construction; nothing in the ledger reaches for them through module state
except the FastAPI dependency wiring in ``questledger.main``.
"""

from typing import Optional

from sqlalchemy import event, text
from sqlalchemy.ext.asyncio import create_async_engine, AsyncEngine, AsyncSession
from sqlalchemy.orm import sessionmaker

from questledger.common.db.connection import get_database_settings
from questledger.common.logger import app_logger
from questledger.database.base import Base

# Setup module logger
logger = app_logger.getChild("database.init_db")

# Engine owned by the running application
_engine: Optional[AsyncEngine] = None


def create_engine_for_url(
    database_url: str,
    echo: bool = False,
    pool_size: int = 5,
    max_overflow: int = 10,
    pool_timeout: int = 30,
) -> AsyncEngine:
    """
    Create an async engine with options suited to the database type.

    SQLite does not take pool sizing arguments. Its driver is switched to
    explicit BEGIN so that SAVEPOINT, which the event store relies on to
    detect duplicates, nests inside a real transaction.
    """
    kwargs = {"echo": echo, "future": True}
    if database_url.startswith("postgresql"):
        kwargs.update({
            "pool_size": pool_size,
            "max_overflow": max_overflow,
            "pool_timeout": pool_timeout,
            "pool_pre_ping": True,
            "pool_recycle": 300,
        })
    elif database_url.startswith("sqlite"):
        kwargs["connect_args"] = {"timeout": pool_timeout}

    engine = create_async_engine(database_url, **kwargs)

    if database_url.startswith("sqlite"):
        @event.listens_for(engine.sync_engine, "connect")
        def _disable_driver_transactions(dbapi_connection, connection_record):
            dbapi_connection.isolation_level = None

        @event.listens_for(engine.sync_engine, "begin")
        def _emit_begin(conn):
            conn.exec_driver_sql("BEGIN")

    return engine


def create_session_factory(engine: AsyncEngine) -> sessionmaker:
    """Create the AsyncSession factory the ledger components are built with."""
    return sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


def get_engine() -> AsyncEngine:
    """Get the application engine instance."""
    if _engine is None:
        raise RuntimeError("Database engine not initialized. Call initialize_database() first.")
    return _engine


def get_session_factory() -> sessionmaker:
    """Get a session factory bound to the application engine."""
    return create_session_factory(get_engine())


async def initialize_database(
    database_url: Optional[str] = None,
    echo: bool = False,
    pool_size: int = 5,
    max_overflow: int = 10,
    pool_timeout: int = 30,
) -> AsyncEngine:
    """
    Initialize the async database engine.

    Args:
        database_url: Database connection URL; built from DB_* variables when omitted
        echo: Whether to echo SQL statements
        pool_size: Connection pool size
        max_overflow: Maximum number of connections to allow above pool_size
        pool_timeout: Timeout for getting a connection from the pool

    Returns:
        AsyncEngine instance
    """
    global _engine

    if database_url is None:
        database_url = get_database_settings()["database_url"]

    try:
        logger.info(f"Initializing database with URL: {database_url[:10]}... and pool size: {pool_size}")

        _engine = create_engine_for_url(
            database_url,
            echo=echo,
            pool_size=pool_size,
            max_overflow=max_overflow,
            pool_timeout=pool_timeout,
        )

        # Test connection
        async with _engine.connect() as conn:
            await conn.execute(text("SELECT 1"))

        logger.info("Database engine initialized successfully")
        return _engine

    except Exception as e:
        logger.error(f"Failed to initialize async database: {str(e)}")
        raise


async def create_schema(engine: AsyncEngine) -> None:
    """Create all ledger tables that do not exist yet."""
    # Importing the models registers their tables on Base.metadata
    from questledger.ledger import database_models  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Ledger schema created")


async def close_database() -> None:
    """Close the database engine and all connections."""
    global _engine

    if _engine:
        try:
            await _engine.dispose()
            _engine = None
            logger.info("Database engine closed successfully")
        except Exception as e:
            logger.error(f"Error closing database engine: {str(e)}")
            raise
