"""
Database Session Management

This module provides the transaction scope used by the ledger components.
Every component accepts an optional ``session``: when one is passed the work
joins the caller's transaction, otherwise a fresh transaction is opened and
committed (or rolled back) around it.
"""

from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import sessionmaker

from questledger.common.logger import app_logger

# Set up logging
logger = app_logger.getChild("db.session")


@asynccontextmanager
async def transaction_scope(
    session_factory: sessionmaker,
    session: Optional[AsyncSession] = None,
) -> AsyncIterator[AsyncSession]:
    """
    Yield a session inside a transaction.

    Args:
        session_factory: Factory used when no session is supplied
        session: Session of an enclosing unit of work, if any

    Yields:
        AsyncSession: The session to run statements on

    Example:
        async with transaction_scope(factory) as session:
            await session.execute(query)
    """
    if session is not None:
        yield session
        return

    async with session_factory() as own_session:
        try:
            async with own_session.begin():
                yield own_session
        except Exception as e:
            logger.debug(f"Transaction rolled back: {e}")
            raise
