"""
Ledger Service

Entry point for reporting completions. One call to ``complete`` is one
transaction that:
1. Locks the learner's account row
2. Records the event (or rejects it as a duplicate, auditing either way)
3. Credits the reward to the balance
4. Recomputes and caches the learner summary, badges and trophies

Either all of it commits or none of it does. Storage failures surface as
``StorageUnavailable``; retrying with the same ids is always safe.
"""

import asyncio
from typing import Optional

from sqlalchemy.exc import DBAPIError
from sqlalchemy.orm import sessionmaker

from questledger.common.db.session import transaction_scope
from questledger.common.exceptions import StorageUnavailable, ValidationError
from questledger.common.logger import LoggerAdapter, app_logger, log_execution_time
from questledger.ledger.aggregator import Aggregator
from questledger.ledger.event_store import EventStore
from questledger.ledger.gateway import RewardCreditingGateway, lock_learner_account
from questledger.ledger.models import AlreadyCredited, CompletionEvent, LedgerOutcome, RecordOutcome

# Set up logging
logger = app_logger.getChild("ledger.service")

DEFAULT_WRITE_TIMEOUT_SECONDS = 10.0


class LedgerService:
    """
    Records completions and credits their rewards exactly once.

    Components default to instances built on the same session factory; pass
    them explicitly to share a clock or timezone with other services.
    """

    def __init__(
        self,
        session_factory: sessionmaker,
        event_store: Optional[EventStore] = None,
        gateway: Optional[RewardCreditingGateway] = None,
        aggregator: Optional[Aggregator] = None,
        write_timeout: float = DEFAULT_WRITE_TIMEOUT_SECONDS,
    ):
        """
        Initialize the ledger service.

        Args:
            session_factory: SQLAlchemy session factory for creating database sessions
            event_store: Completion event store
            gateway: Reward crediting gateway
            aggregator: Summary aggregator
            write_timeout: Upper bound in seconds for one unit of work
        """
        self._session_factory = session_factory
        self.event_store = event_store or EventStore(session_factory)
        self.gateway = gateway or RewardCreditingGateway(session_factory)
        self.aggregator = aggregator or Aggregator(session_factory, event_store=self.event_store)
        self._write_timeout = write_timeout

    @log_execution_time(logger)
    async def complete(self, event: CompletionEvent) -> LedgerOutcome:
        """
        Record a completion and credit its reward.

        Args:
            event: The completion event; validated on construction

        Returns:
            LedgerOutcome describing what happened

        Raises:
            ValidationError: If the event is malformed; nothing is written
            StorageUnavailable: If the store failed or the write timed out
        """
        if not isinstance(event, CompletionEvent):
            raise ValidationError("expected a CompletionEvent", {"event": type(event).__name__})

        log = LoggerAdapter(logger, {
            "learner_id": event.learner_id,
            "event_id": event.event_id,
            "source_unit_id": event.source_unit_id,
            "origin": event.origin.value,
        })

        try:
            outcome = await asyncio.wait_for(self._complete(event), timeout=self._write_timeout)
        except asyncio.TimeoutError as e:
            log.error(f"Ledger write timed out after {self._write_timeout}s")
            raise StorageUnavailable(
                f"ledger write timed out after {self._write_timeout}s",
                original_exception=e,
                outcome_unknown=True,
            )
        except (DBAPIError, OSError) as e:
            log.error(f"Ledger write failed: {e}")
            raise StorageUnavailable(str(e), original_exception=e)

        if outcome.credited:
            log.info(
                f"Completion credited: +{event.coins_awarded} coins, +{event.xp_awarded} XP"
            )
        else:
            log.info(f"Completion not credited ({outcome.record.value})")
        return outcome

    async def _complete(self, event: CompletionEvent) -> LedgerOutcome:
        async with transaction_scope(self._session_factory) as session:
            await lock_learner_account(session, event.learner_id)

            record = await self.event_store.record(event, session=session)
            if record is RecordOutcome.DUPLICATE_REJECTED:
                # The stored event was credited in the transaction that accepted it
                summary = await self.aggregator.load_cached(event.learner_id, session=session)
                credit = AlreadyCredited(learner_id=event.learner_id, source_unit_id=event.source_unit_id)
                return LedgerOutcome(event=event, record=record, credit=credit, summary=summary)

            credit = await self.gateway.credit(event, session=session)
            summary = await self.aggregator.recompute(event.learner_id, session=session)

        return LedgerOutcome(event=event, record=record, credit=credit, summary=summary)
