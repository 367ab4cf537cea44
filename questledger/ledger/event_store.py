"""
Completion Event Store

This module provides the append-only store of completion events:
1. Idempotent recording keyed on (learner, source unit, origin)
2. An audit row for every submission, accepted or not
3. Ordered reads of a learner's history
"""

from typing import List, Optional

from sqlalchemy import select, insert, func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import sessionmaker

from questledger.common.db.session import transaction_scope
from questledger.common.exceptions import ValidationError
from questledger.common.logger import app_logger
from questledger.ledger.database_models import CompletionEventRecord, CompletionAttempt
from questledger.ledger.models import CompletionEvent, CompletionOrigin, RecordOutcome

# Set up logging
logger = app_logger.getChild("ledger.event_store")


class EventStore:
    """Store for accepted completion events."""

    def __init__(self, session_factory: sessionmaker):
        """
        Initialize the store with a session factory.

        Args:
            session_factory: SQLAlchemy session factory for creating database sessions
        """
        self._session_factory = session_factory

    async def record(self, event: CompletionEvent, session: Optional[AsyncSession] = None) -> RecordOutcome:
        """
        Record a completion event unless its dedup key is already present.

        The insert runs inside a savepoint; a unique violation rolls back
        only that savepoint so the enclosing transaction stays usable. The
        attempt is audited either way.

        Args:
            event: The validated completion event
            session: Session of an enclosing unit of work, if any

        Returns:
            RecordOutcome.ACCEPTED or RecordOutcome.DUPLICATE_REJECTED

        Raises:
            ValidationError: If the event id is already stored for a different dedup key
        """
        async with transaction_scope(self._session_factory, session) as session:
            try:
                async with session.begin_nested():
                    await session.execute(
                        insert(CompletionEventRecord).values(**CompletionEventRecord.values_from_event(event))
                    )
                outcome = RecordOutcome.ACCEPTED
            except IntegrityError:
                stored = await session.get(CompletionEventRecord, event.event_id)
                if stored is not None and stored.dedup_key != event.dedup_key:
                    raise ValidationError(
                        "event id reused for another unit of work",
                        {"event_id": "already used for another unit of work"},
                    )
                outcome = RecordOutcome.DUPLICATE_REJECTED

            await self._log_attempt(session, event, outcome)

        if outcome is RecordOutcome.DUPLICATE_REJECTED:
            logger.info(
                f"Duplicate completion rejected for learner {event.learner_id}: "
                f"{event.source_unit_id} ({event.origin.value})"
            )
        return outcome

    async def _log_attempt(self, session: AsyncSession, event: CompletionEvent, outcome: RecordOutcome) -> None:
        await session.execute(
            insert(CompletionAttempt).values(
                event_id=event.event_id,
                learner_id=event.learner_id,
                source_unit_id=event.source_unit_id,
                origin=event.origin.value,
                outcome=outcome.value,
            )
        )

    async def list_events(self, learner_id: str, session: Optional[AsyncSession] = None) -> List[CompletionEvent]:
        """
        Get a learner's full history, oldest first.

        Args:
            learner_id: The ID of the learner
            session: Session of an enclosing unit of work, if any

        Returns:
            List of completion events ordered by occurrence
        """
        async with transaction_scope(self._session_factory, session) as session:
            result = await session.execute(
                select(CompletionEventRecord)
                .where(CompletionEventRecord.learner_id == learner_id)
                .order_by(CompletionEventRecord.occurred_at, CompletionEventRecord.event_id)
            )
            return [row.to_event() for row in result.scalars().all()]

    async def recent_events(
        self,
        learner_id: str,
        limit: int = 50,
        session: Optional[AsyncSession] = None,
    ) -> List[CompletionEvent]:
        """Get a learner's most recent completions, newest first."""
        async with transaction_scope(self._session_factory, session) as session:
            result = await session.execute(
                select(CompletionEventRecord)
                .where(CompletionEventRecord.learner_id == learner_id)
                .order_by(CompletionEventRecord.occurred_at.desc(), CompletionEventRecord.event_id.desc())
                .limit(limit)
            )
            return [row.to_event() for row in result.scalars().all()]

    async def find_by_dedup_key(
        self,
        learner_id: str,
        source_unit_id: str,
        origin: CompletionOrigin,
        session: Optional[AsyncSession] = None,
    ) -> Optional[CompletionEventRecord]:
        """Get the stored row for a dedup key, if any."""
        async with transaction_scope(self._session_factory, session) as session:
            result = await session.execute(
                select(CompletionEventRecord).where(
                    CompletionEventRecord.learner_id == learner_id,
                    CompletionEventRecord.source_unit_id == source_unit_id,
                    CompletionEventRecord.origin == origin.value,
                )
            )
            return result.scalar_one_or_none()

    async def has_source_unit(
        self,
        learner_id: str,
        source_unit_id: str,
        origin: CompletionOrigin,
        session: Optional[AsyncSession] = None,
    ) -> bool:
        """Check whether the learner already has an accepted event for a unit of work."""
        return await self.find_by_dedup_key(learner_id, source_unit_id, origin, session=session) is not None

    async def count_attempts(self, learner_id: str, session: Optional[AsyncSession] = None) -> int:
        """Count audited submissions for a learner, duplicates included."""
        async with transaction_scope(self._session_factory, session) as session:
            result = await session.execute(
                select(func.count(CompletionAttempt.id)).where(CompletionAttempt.learner_id == learner_id)
            )
            return result.scalar_one()
