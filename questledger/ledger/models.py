"""
Ledger Domain Models

This module defines the value types that flow through the progress and reward
ledger:
1. Completion events, the immutable facts the ledger is built from
2. Learner summaries, the derived per-learner projection
3. Balances and the typed outcomes of recording and crediting
"""

import enum
import uuid
import datetime
from dataclasses import dataclass, field, replace
from typing import Dict, Any, Optional, Set, Tuple, Union

from questledger.common.exceptions import ValidationError


class QuestCategory(enum.Enum):
    """Subject area of a quest."""
    MATH = "math"
    SCIENCE = "science"
    LANGUAGE = "language"
    SOCIAL_STUDIES = "social_studies"


class QuestDifficulty(enum.Enum):
    """Difficulty tier of a quest."""
    EASY = "easy"
    MEDIUM = "medium"
    HARD = "hard"


class CompletionOrigin(enum.Enum):
    """Where a completion was reported from."""
    INTERACTIVE = "interactive"
    EXTERNAL_SYNC = "external_sync"


class RecordOutcome(enum.Enum):
    """Result of asking the event store to record a completion."""
    ACCEPTED = "accepted"
    DUPLICATE_REJECTED = "duplicate_rejected"


# Column widths of the completion tables
MAX_EVENT_ID_LENGTH = 64
MAX_ID_LENGTH = 255
MAX_TITLE_LENGTH = 500

ID_LIMITS = {
    "event_id": MAX_EVENT_ID_LENGTH,
    "learner_id": MAX_ID_LENGTH,
    "source_unit_id": MAX_ID_LENGTH,
}


def _coerce_enum(enum_cls, value, field_name: str, errors: Dict[str, str]):
    if isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(value)
    except ValueError:
        allowed = ", ".join(member.value for member in enum_cls)
        errors[field_name] = f"must be one of: {allowed}"
        return value


def _is_count(value) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and value >= 0


def utc_now() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


def ensure_utc(value: datetime.datetime) -> datetime.datetime:
    """Treat naive timestamps as UTC and convert aware ones to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=datetime.timezone.utc)
    return value.astimezone(datetime.timezone.utc)


@dataclass(frozen=True)
class CompletionEvent:
    """
    One learner finishing one unit of work.

    ``event_id`` identifies the physical delivery attempt. The crediting
    dedup key is ``(learner_id, source_unit_id, origin)``: the same quest or
    remote assignment reported again is never credited twice.
    """

    event_id: str
    learner_id: str
    source_unit_id: str
    title: str
    category: QuestCategory
    difficulty: QuestDifficulty
    was_correct: bool
    coins_awarded: int
    xp_awarded: int
    occurred_at: datetime.datetime
    origin: CompletionOrigin

    def __post_init__(self):
        """Coerce enum values and reject malformed events."""
        errors: Dict[str, str] = {}

        for name, limit in ID_LIMITS.items():
            value = getattr(self, name)
            if not isinstance(value, str) or not value.strip():
                errors[name] = "must be a non-empty string"
            elif len(value) > limit:
                errors[name] = f"must be at most {limit} characters"

        if not isinstance(self.title, str):
            errors["title"] = "must be a string"
        elif len(self.title) > MAX_TITLE_LENGTH:
            errors["title"] = f"must be at most {MAX_TITLE_LENGTH} characters"

        object.__setattr__(self, "category", _coerce_enum(QuestCategory, self.category, "category", errors))
        object.__setattr__(self, "difficulty", _coerce_enum(QuestDifficulty, self.difficulty, "difficulty", errors))
        object.__setattr__(self, "origin", _coerce_enum(CompletionOrigin, self.origin, "origin", errors))

        if not isinstance(self.was_correct, bool):
            errors["was_correct"] = "must be a boolean"

        for name in ("coins_awarded", "xp_awarded"):
            if not _is_count(getattr(self, name)):
                errors[name] = "must be a non-negative integer"

        if isinstance(self.occurred_at, datetime.datetime):
            object.__setattr__(self, "occurred_at", ensure_utc(self.occurred_at))
        else:
            errors["occurred_at"] = "must be a datetime"

        if errors:
            raise ValidationError("malformed completion event", errors)

    @classmethod
    def create(
        cls,
        learner_id: str,
        source_unit_id: str,
        title: str,
        category: Union[QuestCategory, str],
        difficulty: Union[QuestDifficulty, str],
        was_correct: bool,
        coins_awarded: int,
        xp_awarded: int,
        origin: Union[CompletionOrigin, str] = CompletionOrigin.INTERACTIVE,
        occurred_at: Optional[datetime.datetime] = None,
        event_id: Optional[str] = None,
    ) -> 'CompletionEvent':
        """Build an event, generating the event id and timestamp when not given."""
        return cls(
            event_id=event_id or str(uuid.uuid4()),
            learner_id=learner_id,
            source_unit_id=source_unit_id,
            title=title,
            category=category,
            difficulty=difficulty,
            was_correct=was_correct,
            coins_awarded=coins_awarded,
            xp_awarded=xp_awarded,
            occurred_at=occurred_at or utc_now(),
            origin=origin,
        )

    @property
    def dedup_key(self) -> Tuple[str, str, str]:
        return (self.learner_id, self.source_unit_id, self.origin.value)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "event_id": self.event_id,
            "learner_id": self.learner_id,
            "source_unit_id": self.source_unit_id,
            "title": self.title,
            "category": self.category.value,
            "difficulty": self.difficulty.value,
            "was_correct": self.was_correct,
            "coins_awarded": self.coins_awarded,
            "xp_awarded": self.xp_awarded,
            "occurred_at": self.occurred_at.isoformat(),
            "origin": self.origin.value,
        }


def empty_category_histogram() -> Dict[str, int]:
    return {category.value: 0 for category in QuestCategory}


def empty_difficulty_histogram() -> Dict[str, int]:
    return {difficulty.value: 0 for difficulty in QuestDifficulty}


def accuracy_percent(correct: int, total: int) -> int:
    """
    Percentage of correct completions rounded half up, 0 for no completions.

    3 correct out of 7 gives 43.
    """
    if total <= 0:
        return 0
    return (200 * correct + total) // (2 * total)


@dataclass
class LearnerSummary:
    """
    Aggregate statistics for one learner, derived from the event history.

    ``active_days`` and ``completed_missions`` feed streaks and trophies.
    They are cached with the summary but left out of comparisons and of
    the public representation.
    """

    learner_id: str
    total_quests_completed: int = 0
    total_xp: int = 0
    total_coins: int = 0
    correct_count: int = 0
    quests_by_category: Dict[str, int] = field(default_factory=empty_category_histogram)
    quests_by_difficulty: Dict[str, int] = field(default_factory=empty_difficulty_histogram)
    accuracy_rate: int = 0
    current_streak: int = 0
    longest_streak: int = 0
    last_completed_at: Optional[datetime.datetime] = None
    unlocked_badges: Set[str] = field(default_factory=set)
    unlocked_trophies: Set[str] = field(default_factory=set)
    active_days: Set[datetime.date] = field(default_factory=set, compare=False, repr=False)
    completed_missions: Set[str] = field(default_factory=set, compare=False, repr=False)

    @classmethod
    def empty(cls, learner_id: str) -> 'LearnerSummary':
        return cls(learner_id=learner_id)

    @property
    def streak_high_water(self) -> int:
        """Best streak ever reached; streak badges are judged against this."""
        return max(self.current_streak, self.longest_streak)

    def copy(self) -> 'LearnerSummary':
        return replace(
            self,
            quests_by_category=dict(self.quests_by_category),
            quests_by_difficulty=dict(self.quests_by_difficulty),
            unlocked_badges=set(self.unlocked_badges),
            unlocked_trophies=set(self.unlocked_trophies),
            active_days=set(self.active_days),
            completed_missions=set(self.completed_missions),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "learner_id": self.learner_id,
            "total_quests_completed": self.total_quests_completed,
            "total_xp": self.total_xp,
            "total_coins": self.total_coins,
            "current_streak": self.current_streak,
            "longest_streak": self.longest_streak,
            "quests_by_category": dict(self.quests_by_category),
            "quests_by_difficulty": dict(self.quests_by_difficulty),
            "accuracy_rate": self.accuracy_rate,
            "last_completed_date": self.last_completed_at.isoformat() if self.last_completed_at else None,
            "unlocked_badges": sorted(self.unlocked_badges),
            "unlocked_trophies": sorted(self.unlocked_trophies),
        }


@dataclass(frozen=True)
class Balance:
    """A learner's spendable coins and XP."""
    learner_id: str
    coins: int = 0
    xp: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {"learner_id": self.learner_id, "coins": self.coins, "xp": self.xp}


@dataclass(frozen=True)
class Credited:
    """The event's reward was applied; ``balance`` is the balance afterwards."""
    balance: Balance
    coins_delta: int
    xp_delta: int


@dataclass(frozen=True)
class AlreadyCredited:
    """The unit of work behind the event had already been credited."""
    learner_id: str
    source_unit_id: str


CreditResult = Union[Credited, AlreadyCredited]


@dataclass(frozen=True)
class LedgerOutcome:
    """Everything a caller learns from submitting one completion."""

    event: CompletionEvent
    record: RecordOutcome
    credit: Optional[CreditResult]
    summary: Optional[LearnerSummary]

    @property
    def credited(self) -> bool:
        return isinstance(self.credit, Credited)

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {
            "event_id": self.event.event_id,
            "learner_id": self.event.learner_id,
            "source_unit_id": self.event.source_unit_id,
            "origin": self.event.origin.value,
            "record": self.record.value,
            "credited": self.credited,
            "coins_awarded": 0,
            "xp_awarded": 0,
            "balance": None,
            "summary": self.summary.to_dict() if self.summary else None,
        }
        if isinstance(self.credit, Credited):
            result["coins_awarded"] = self.credit.coins_delta
            result["xp_awarded"] = self.credit.xp_delta
            result["balance"] = self.credit.balance.to_dict()
        return result
