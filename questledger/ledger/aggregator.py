"""
Learner Summary Aggregator

This module derives the per-learner summary from the completion history:
1. Pure folding of events into totals, histograms, accuracy and streaks
2. Incremental application of one event to an existing summary
3. Recomputing and caching the summary inside the ledger unit of work
4. Reconciling the cached summary against a replay of the history
"""

import datetime
from typing import Callable, Dict, Any, Iterable, Optional, Tuple

from sqlalchemy import select, insert, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import sessionmaker

from questledger.common.db.session import transaction_scope
from questledger.common.exceptions import InconsistentState, ValidationError
from questledger.common.logger import app_logger
from questledger.ledger.badges import apply_evaluation
from questledger.ledger.database_models import LearnerSummaryRecord
from questledger.ledger.event_store import EventStore
from questledger.ledger.gateway import lock_learner_account
from questledger.ledger.missions import MISSIONS
from questledger.ledger.models import CompletionEvent, LearnerSummary, accuracy_percent

# Set up logging
logger = app_logger.getChild("ledger.aggregator")

Clock = Callable[[], datetime.date]


def day_of(moment: datetime.datetime, tz: datetime.tzinfo = datetime.timezone.utc) -> datetime.date:
    """Calendar day of a timestamp in the ledger's timezone."""
    return moment.astimezone(tz).date()


def calculate_streaks(days: Iterable[datetime.date], today: datetime.date) -> Tuple[int, int]:
    """
    Calculate the current and longest streak of consecutive active days.

    The current streak is the run ending on the most recent active day, and
    only counts while that day is today or yesterday. The longest streak is
    the longest run anywhere in the history.

    Args:
        days: Days with at least one completion; duplicates are ignored
        today: The reference day

    Returns:
        Tuple of (current_streak, longest_streak)
    """
    distinct = sorted(set(days), reverse=True)
    if not distinct:
        return 0, 0

    current = 0
    if (today - distinct[0]).days <= 1:
        current = 1
        for newer, older in zip(distinct, distinct[1:]):
            if (newer - older).days != 1:
                break
            current += 1

    longest = run = 1
    for newer, older in zip(distinct, distinct[1:]):
        if (newer - older).days == 1:
            run += 1
            longest = max(longest, run)
        else:
            run = 1

    return current, longest


def apply_event(
    summary: LearnerSummary,
    event: CompletionEvent,
    today: datetime.date,
    tz: datetime.tzinfo = datetime.timezone.utc,
) -> LearnerSummary:
    """
    Return a new summary with one more accepted event folded in.

    Args:
        summary: Summary built from the learner's other events
        event: The event to add
        today: Reference day for the current streak
        tz: Timezone that defines calendar days

    Returns:
        Updated copy of the summary, unlocked sets included
    """
    updated = summary.copy()
    _accumulate(updated, event, tz)
    _finish(updated, today)
    return apply_evaluation(updated)


def _accumulate(summary: LearnerSummary, event: CompletionEvent, tz: datetime.tzinfo) -> None:
    if event.learner_id != summary.learner_id:
        raise ValidationError(
            "event belongs to another learner",
            {"learner_id": f"expected {summary.learner_id}, got {event.learner_id}"},
        )

    summary.total_quests_completed += 1
    summary.total_xp += event.xp_awarded
    summary.total_coins += event.coins_awarded
    if event.was_correct:
        summary.correct_count += 1

    category = event.category.value
    summary.quests_by_category[category] = summary.quests_by_category.get(category, 0) + 1
    difficulty = event.difficulty.value
    summary.quests_by_difficulty[difficulty] = summary.quests_by_difficulty.get(difficulty, 0) + 1

    summary.active_days.add(day_of(event.occurred_at, tz))

    if summary.last_completed_at is None or event.occurred_at > summary.last_completed_at:
        summary.last_completed_at = event.occurred_at

    if event.source_unit_id in MISSIONS:
        summary.completed_missions.add(event.source_unit_id)


def _finish(summary: LearnerSummary, today: datetime.date) -> None:
    summary.accuracy_rate = accuracy_percent(summary.correct_count, summary.total_quests_completed)
    summary.current_streak, summary.longest_streak = calculate_streaks(summary.active_days, today)


def fold_events(
    learner_id: str,
    events: Iterable[CompletionEvent],
    today: datetime.date,
    previous: Optional[LearnerSummary] = None,
    tz: datetime.tzinfo = datetime.timezone.utc,
) -> LearnerSummary:
    """
    Build a learner summary from scratch out of the full event history.

    Statistics depend only on the events, never on their order. Badges and
    trophies already unlocked on ``previous`` are kept.

    Args:
        learner_id: The ID of the learner
        events: Every accepted event of the learner
        today: Reference day for the current streak
        previous: The cached summary, if any
        tz: Timezone that defines calendar days

    Returns:
        The recomputed summary
    """
    summary = LearnerSummary.empty(learner_id)
    if previous is not None:
        summary.unlocked_badges = set(previous.unlocked_badges)
        summary.unlocked_trophies = set(previous.unlocked_trophies)

    for event in events:
        _accumulate(summary, event, tz)
    _finish(summary, today)

    return apply_evaluation(summary)


def decay_streak(
    summary: LearnerSummary,
    today: datetime.date,
    tz: datetime.tzinfo = datetime.timezone.utc,
) -> LearnerSummary:
    """Zero a cached current streak whose last active day is before yesterday."""
    if summary.last_completed_at is None or summary.current_streak == 0:
        return summary
    if (today - day_of(summary.last_completed_at, tz)).days <= 1:
        return summary
    decayed = summary.copy()
    decayed.current_streak = 0
    return decayed


def summary_differences(cached: LearnerSummary, replayed: LearnerSummary) -> Dict[str, Any]:
    """Fields where two summaries disagree, as field -> (cached, replayed)."""
    left = cached.to_dict()
    left["correct_count"] = cached.correct_count
    right = replayed.to_dict()
    right["correct_count"] = replayed.correct_count
    return {
        key: (left[key], right[key])
        for key in right
        if left.get(key) != right[key]
    }


class Aggregator:
    """Maintains the cached learner summaries."""

    def __init__(
        self,
        session_factory: sessionmaker,
        event_store: Optional[EventStore] = None,
        clock: Optional[Clock] = None,
        tz: datetime.tzinfo = datetime.timezone.utc,
    ):
        """
        Initialize the aggregator.

        Args:
            session_factory: SQLAlchemy session factory for creating database sessions
            event_store: Source of the learner histories
            clock: Returns the current day; defaults to today in ``tz``
            tz: Timezone that defines calendar days
        """
        self._session_factory = session_factory
        self._event_store = event_store or EventStore(session_factory)
        self._tz = tz
        self._clock = clock or (lambda: datetime.datetime.now(tz).date())

    @property
    def tz(self) -> datetime.tzinfo:
        return self._tz

    def today(self) -> datetime.date:
        return self._clock()

    async def load_cached(self, learner_id: str, session: Optional[AsyncSession] = None) -> Optional[LearnerSummary]:
        """Get the cached summary as stored, or None if the learner has none."""
        async with transaction_scope(self._session_factory, session) as session:
            result = await session.execute(
                select(LearnerSummaryRecord).where(LearnerSummaryRecord.learner_id == learner_id)
            )
            record = result.scalar_one_or_none()
            return record.to_summary() if record else None

    async def recompute(self, learner_id: str, session: Optional[AsyncSession] = None) -> LearnerSummary:
        """
        Recompute a learner's summary from the full history and cache it.

        When called without a session the learner's account row is locked
        first, as the ledger unit of work does.

        Args:
            learner_id: The ID of the learner
            session: Session of an enclosing unit of work, if any

        Returns:
            The recomputed summary
        """
        standalone = session is None
        async with transaction_scope(self._session_factory, session) as session:
            if standalone:
                await lock_learner_account(session, learner_id)
            previous = await self.load_cached(learner_id, session=session)
            events = await self._event_store.list_events(learner_id, session=session)
            summary = fold_events(learner_id, events, self.today(), previous=previous, tz=self._tz)
            await self._save(session, summary, exists=previous is not None)
        return summary

    async def reconcile(self, learner_id: str, strict: bool = False) -> LearnerSummary:
        """
        Compare the cached summary with a replay of the history.

        Args:
            learner_id: The ID of the learner
            strict: Raise instead of repairing when they differ

        Returns:
            The replayed summary, which is now also the cached one

        Raises:
            InconsistentState: In strict mode, when the cache has diverged
        """
        async with transaction_scope(self._session_factory) as session:
            await lock_learner_account(session, learner_id)
            cached = await self.load_cached(learner_id, session=session)
            events = await self._event_store.list_events(learner_id, session=session)
            today = self.today()
            replayed = fold_events(learner_id, events, today, previous=cached, tz=self._tz)

            baseline = decay_streak(cached, today, self._tz) if cached else LearnerSummary.empty(learner_id)
            differences = summary_differences(baseline, replayed)
            if not differences:
                return replayed

            if strict:
                raise InconsistentState(learner_id, differences)

            logger.warning(
                f"Repairing summary for learner {learner_id}; diverged fields: {', '.join(sorted(differences))}"
            )
            await self._save(session, replayed, exists=cached is not None)
        return replayed

    async def _save(self, session: AsyncSession, summary: LearnerSummary, exists: bool) -> None:
        values = LearnerSummaryRecord.values_from_summary(summary)
        if exists:
            await session.execute(
                update(LearnerSummaryRecord)
                .where(LearnerSummaryRecord.learner_id == summary.learner_id)
                .values(**values)
                .execution_options(synchronize_session=False)
            )
        else:
            await session.execute(insert(LearnerSummaryRecord).values(**values))
