"""
SQLAlchemy ORM models for the progress and reward ledger.

This module defines the ledger tables:
- CompletionEventRecord: The append-only completion history, unique per dedup key
- CompletionAttempt: Audit trail of every submission, duplicates included
- LedgerAccount: Spendable coin and XP balance per learner
- LearnerSummaryRecord: Cached aggregate summary per learner
"""

import datetime
from typing import Dict, Any, Tuple

from sqlalchemy import (
    Column, String, Integer, Boolean, DateTime, JSON, Index, CheckConstraint
)
from sqlalchemy.schema import UniqueConstraint

from questledger.database.base import ModelBase
from questledger.ledger.models import (
    CompletionEvent, LearnerSummary, ensure_utc,
    MAX_EVENT_ID_LENGTH, MAX_ID_LENGTH, MAX_TITLE_LENGTH,
    empty_category_histogram, empty_difficulty_histogram
)


def _utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


class CompletionEventRecord(ModelBase):
    """
    Model for accepted completion events.

    Rows are never updated except to stamp ``credited_at`` once. The unique
    constraint on the dedup key is what makes recording idempotent under
    concurrent submissions.
    """
    __tablename__ = 'completion_events'

    event_id = Column(String(MAX_EVENT_ID_LENGTH), primary_key=True)
    learner_id = Column(String(MAX_ID_LENGTH), nullable=False)
    source_unit_id = Column(String(MAX_ID_LENGTH), nullable=False)
    origin = Column(String(32), nullable=False)
    title = Column(String(MAX_TITLE_LENGTH), nullable=False, default="")
    category = Column(String(32), nullable=False)
    difficulty = Column(String(16), nullable=False)
    was_correct = Column(Boolean, nullable=False)
    coins_awarded = Column(Integer, nullable=False)
    xp_awarded = Column(Integer, nullable=False)
    occurred_at = Column(DateTime(timezone=True), nullable=False)
    recorded_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    credited_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        UniqueConstraint('learner_id', 'source_unit_id', 'origin', name='completion_events_dedup_key'),
        CheckConstraint('coins_awarded >= 0', name='coins_non_negative'),
        CheckConstraint('xp_awarded >= 0', name='xp_non_negative'),
        Index('idx_completion_events_learner_occurred', 'learner_id', 'occurred_at'),
    )

    @property
    def dedup_key(self) -> Tuple[str, str, str]:
        return (self.learner_id, self.source_unit_id, self.origin)

    @classmethod
    def values_from_event(cls, event: CompletionEvent) -> Dict[str, Any]:
        """Column values for inserting ``event``."""
        return {
            "event_id": event.event_id,
            "learner_id": event.learner_id,
            "source_unit_id": event.source_unit_id,
            "origin": event.origin.value,
            "title": event.title,
            "category": event.category.value,
            "difficulty": event.difficulty.value,
            "was_correct": event.was_correct,
            "coins_awarded": event.coins_awarded,
            "xp_awarded": event.xp_awarded,
            "occurred_at": event.occurred_at,
            "recorded_at": _utcnow(),
        }

    def to_event(self) -> CompletionEvent:
        """Rebuild the domain event; SQLite hands timestamps back naive."""
        return CompletionEvent(
            event_id=self.event_id,
            learner_id=self.learner_id,
            source_unit_id=self.source_unit_id,
            title=self.title,
            category=self.category,
            difficulty=self.difficulty,
            was_correct=bool(self.was_correct),
            coins_awarded=self.coins_awarded,
            xp_awarded=self.xp_awarded,
            occurred_at=ensure_utc(self.occurred_at),
            origin=self.origin,
        )


class CompletionAttempt(ModelBase):
    """Model for the audit trail of completion submissions."""
    __tablename__ = 'completion_attempts'

    id = Column(Integer, primary_key=True, autoincrement=True)
    event_id = Column(String(MAX_EVENT_ID_LENGTH), nullable=False)
    learner_id = Column(String(MAX_ID_LENGTH), nullable=False, index=True)
    source_unit_id = Column(String(MAX_ID_LENGTH), nullable=False)
    origin = Column(String(32), nullable=False)
    outcome = Column(String(32), nullable=False)
    attempted_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)


class LedgerAccount(ModelBase):
    """
    Model for a learner's spendable balance.

    The row doubles as the per-learner lock: every write path selects it
    ``FOR UPDATE`` before touching the learner's events or summary.
    """
    __tablename__ = 'ledger_accounts'

    learner_id = Column(String(MAX_ID_LENGTH), primary_key=True)
    coins = Column(Integer, nullable=False, default=0)
    xp = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)

    __table_args__ = (
        CheckConstraint('coins >= 0', name='coins_non_negative'),
        CheckConstraint('xp >= 0', name='xp_non_negative'),
    )


class LearnerSummaryRecord(ModelBase):
    """
    Model for the cached learner summary.

    The distinct active days and completed missions are stored with it so an
    incremental update from the cache agrees with a full replay.
    """
    __tablename__ = 'learner_summaries'

    learner_id = Column(String(MAX_ID_LENGTH), primary_key=True)
    total_quests_completed = Column(Integer, nullable=False, default=0)
    total_xp = Column(Integer, nullable=False, default=0)
    total_coins = Column(Integer, nullable=False, default=0)
    correct_count = Column(Integer, nullable=False, default=0)
    quests_by_category = Column(JSON, nullable=False, default=dict)
    quests_by_difficulty = Column(JSON, nullable=False, default=dict)
    accuracy_rate = Column(Integer, nullable=False, default=0)
    current_streak = Column(Integer, nullable=False, default=0)
    longest_streak = Column(Integer, nullable=False, default=0)
    last_completed_at = Column(DateTime(timezone=True), nullable=True)
    unlocked_badges = Column(JSON, nullable=False, default=list)
    unlocked_trophies = Column(JSON, nullable=False, default=list)
    active_days = Column(JSON, nullable=False, default=list)
    completed_missions = Column(JSON, nullable=False, default=list)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)

    @classmethod
    def values_from_summary(cls, summary: LearnerSummary) -> Dict[str, Any]:
        """Column values for persisting ``summary``."""
        return {
            "learner_id": summary.learner_id,
            "total_quests_completed": summary.total_quests_completed,
            "total_xp": summary.total_xp,
            "total_coins": summary.total_coins,
            "correct_count": summary.correct_count,
            "quests_by_category": dict(summary.quests_by_category),
            "quests_by_difficulty": dict(summary.quests_by_difficulty),
            "accuracy_rate": summary.accuracy_rate,
            "current_streak": summary.current_streak,
            "longest_streak": summary.longest_streak,
            "last_completed_at": summary.last_completed_at,
            "unlocked_badges": sorted(summary.unlocked_badges),
            "unlocked_trophies": sorted(summary.unlocked_trophies),
            "active_days": sorted(day.isoformat() for day in summary.active_days),
            "completed_missions": sorted(summary.completed_missions),
            "updated_at": _utcnow(),
        }

    def to_summary(self) -> LearnerSummary:
        by_category = empty_category_histogram()
        by_category.update(self.quests_by_category or {})
        by_difficulty = empty_difficulty_histogram()
        by_difficulty.update(self.quests_by_difficulty or {})

        return LearnerSummary(
            learner_id=self.learner_id,
            total_quests_completed=self.total_quests_completed,
            total_xp=self.total_xp,
            total_coins=self.total_coins,
            correct_count=self.correct_count,
            quests_by_category=by_category,
            quests_by_difficulty=by_difficulty,
            accuracy_rate=self.accuracy_rate,
            current_streak=self.current_streak,
            longest_streak=self.longest_streak,
            last_completed_at=ensure_utc(self.last_completed_at) if self.last_completed_at else None,
            unlocked_badges=set(self.unlocked_badges or []),
            unlocked_trophies=set(self.unlocked_trophies or []),
            active_days={datetime.date.fromisoformat(day) for day in self.active_days or []},
            completed_missions=set(self.completed_missions or []),
        )
