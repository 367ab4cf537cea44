"""
Reward Crediting Gateway

The only writer of learner balances. Crediting is tied to the stored event:
the event row is stamped ``credited_at`` with a conditional update and the
balance moves only when that stamp actually happened, so a unit of work can
be credited at most once however often it is delivered.
"""

import datetime
from typing import Optional

from sqlalchemy import select, insert, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import sessionmaker

from questledger.common.db.session import transaction_scope
from questledger.common.exceptions import ValidationError
from questledger.common.logger import app_logger
from questledger.ledger.database_models import CompletionEventRecord, LedgerAccount
from questledger.ledger.models import (
    AlreadyCredited, Balance, CompletionEvent, CreditResult, Credited
)

# Set up logging
logger = app_logger.getChild("ledger.gateway")


async def lock_learner_account(session: AsyncSession, learner_id: str) -> Balance:
    """
    Create the learner's account row if missing and lock it for the transaction.

    The insert comes first so that on SQLite the transaction takes the write
    lock before reading anything. On PostgreSQL the ``FOR UPDATE`` serializes
    concurrent units of work for the same learner.

    Args:
        session: Session of the enclosing unit of work
        learner_id: The ID of the learner

    Returns:
        The balance as of acquiring the lock
    """
    now = datetime.datetime.now(datetime.timezone.utc)
    try:
        async with session.begin_nested():
            await session.execute(
                insert(LedgerAccount).values(
                    learner_id=learner_id, coins=0, xp=0, created_at=now, updated_at=now
                )
            )
    except IntegrityError:
        pass

    result = await session.execute(
        select(LedgerAccount.coins, LedgerAccount.xp)
        .where(LedgerAccount.learner_id == learner_id)
        .with_for_update()
    )
    coins, xp = result.one()
    return Balance(learner_id=learner_id, coins=coins, xp=xp)


class RewardCreditingGateway:
    """Applies the reward of accepted completion events to learner balances."""

    def __init__(self, session_factory: sessionmaker):
        """
        Initialize the gateway with a session factory.

        Args:
            session_factory: SQLAlchemy session factory for creating database sessions
        """
        self._session_factory = session_factory

    async def credit(self, event: CompletionEvent, session: Optional[AsyncSession] = None) -> CreditResult:
        """
        Credit an accepted event's coins and XP to the learner's balance.

        Args:
            event: An event previously recorded as accepted
            session: Session of an enclosing unit of work, if any

        Returns:
            Credited with the new balance, or AlreadyCredited

        Raises:
            ValidationError: If no event with this dedup key was ever recorded
        """
        async with transaction_scope(self._session_factory, session) as session:
            # Re-entrant: a no-op beyond the row lock when the caller already holds it
            await lock_learner_account(session, event.learner_id)

            now = datetime.datetime.now(datetime.timezone.utc)
            stamped = await session.execute(
                update(CompletionEventRecord)
                .where(
                    CompletionEventRecord.event_id == event.event_id,
                    CompletionEventRecord.learner_id == event.learner_id,
                    CompletionEventRecord.source_unit_id == event.source_unit_id,
                    CompletionEventRecord.origin == event.origin.value,
                    CompletionEventRecord.credited_at.is_(None),
                )
                .values(credited_at=now)
                .execution_options(synchronize_session=False)
            )

            if stamped.rowcount != 1:
                stored = await session.execute(
                    select(CompletionEventRecord.event_id).where(
                        CompletionEventRecord.learner_id == event.learner_id,
                        CompletionEventRecord.source_unit_id == event.source_unit_id,
                        CompletionEventRecord.origin == event.origin.value,
                    )
                )
                if stored.scalar_one_or_none() is None:
                    raise ValidationError(
                        "event must be recorded before it is credited",
                        {"event_id": f"no recorded event for {event.source_unit_id}"},
                    )
                logger.info(
                    f"Completion {event.source_unit_id} for learner {event.learner_id} already credited"
                )
                return AlreadyCredited(learner_id=event.learner_id, source_unit_id=event.source_unit_id)

            await session.execute(
                update(LedgerAccount)
                .where(LedgerAccount.learner_id == event.learner_id)
                .values(
                    coins=LedgerAccount.coins + event.coins_awarded,
                    xp=LedgerAccount.xp + event.xp_awarded,
                    updated_at=now,
                )
                .execution_options(synchronize_session=False)
            )
            balance = await self._read_balance(session, event.learner_id)

        logger.info(
            f"Credited {event.coins_awarded} coins and {event.xp_awarded} XP to learner {event.learner_id}"
        )
        return Credited(balance=balance, coins_delta=event.coins_awarded, xp_delta=event.xp_awarded)

    async def get_balance(self, learner_id: str, session: Optional[AsyncSession] = None) -> Balance:
        """
        Get a learner's current balance; zero when the learner has none yet.

        Args:
            learner_id: The ID of the learner
            session: Session of an enclosing unit of work, if any

        Returns:
            Balance for the learner
        """
        async with transaction_scope(self._session_factory, session) as session:
            return await self._read_balance(session, learner_id)

    async def _read_balance(self, session: AsyncSession, learner_id: str) -> Balance:
        result = await session.execute(
            select(LedgerAccount.coins, LedgerAccount.xp).where(LedgerAccount.learner_id == learner_id)
        )
        row = result.one_or_none()
        if row is None:
            return Balance(learner_id=learner_id)
        return Balance(learner_id=learner_id, coins=row.coins, xp=row.xp)
