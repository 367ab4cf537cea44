"""
Progress Query Service

Read-only views of a learner's progress for dashboards. Reads come from the
cached summary and never trigger a recompute.
"""

from typing import Any, Dict, List, Optional

from sqlalchemy.orm import sessionmaker

from questledger.common.logger import app_logger
from questledger.ledger.aggregator import Aggregator, decay_streak
from questledger.ledger.badges import badge_progress
from questledger.ledger.event_store import EventStore
from questledger.ledger.gateway import RewardCreditingGateway
from questledger.ledger.missions import world_progress
from questledger.ledger.models import Balance, CompletionEvent, LearnerSummary

# Set up logging
logger = app_logger.getChild("ledger.query")

MAX_COMPLETIONS_PAGE = 200


class ProgressQueryService:
    """Serves learner summaries, completion history, balances and badge progress."""

    def __init__(
        self,
        session_factory: sessionmaker,
        aggregator: Optional[Aggregator] = None,
        event_store: Optional[EventStore] = None,
        gateway: Optional[RewardCreditingGateway] = None,
    ):
        self._session_factory = session_factory
        self._event_store = event_store or EventStore(session_factory)
        self._aggregator = aggregator or Aggregator(session_factory, event_store=self._event_store)
        self._gateway = gateway or RewardCreditingGateway(session_factory)

    async def get_summary(self, learner_id: str) -> LearnerSummary:
        """
        Get the learner's summary.

        A learner with no history gets a zeroed summary. A current streak
        whose last active day is before yesterday is reported as 0.

        Args:
            learner_id: The ID of the learner

        Returns:
            LearnerSummary for the learner
        """
        cached = await self._aggregator.load_cached(learner_id)
        if cached is None:
            logger.debug(f"No summary cached for learner {learner_id}, returning defaults")
            return LearnerSummary.empty(learner_id)
        return decay_streak(cached, self._aggregator.today(), self._aggregator.tz)

    async def get_completions(self, learner_id: str, limit: int = 50) -> List[CompletionEvent]:
        """Get the learner's most recent completions, newest first."""
        limit = max(1, min(limit, MAX_COMPLETIONS_PAGE))
        return await self._event_store.recent_events(learner_id, limit=limit)

    async def get_balance(self, learner_id: str) -> Balance:
        return await self._gateway.get_balance(learner_id)

    async def get_badge_progress(self, learner_id: str) -> Dict[str, Any]:
        """Get per-badge progress rows and per-world trophy counts."""
        summary = await self.get_summary(learner_id)
        return {
            "learner_id": learner_id,
            "badges": badge_progress(summary),
            "unlocked_trophies": sorted(summary.unlocked_trophies),
            "worlds": world_progress(summary.unlocked_trophies),
        }
