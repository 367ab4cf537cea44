"""
Badge and Trophy Evaluation

This module defines the static badge catalog and the evaluator that derives
unlocked badge and trophy ids from a learner summary:
1. Badge definitions with a threshold over one summary statistic
2. Monotonic evaluation (unlocked ids are never revoked)
3. Per-badge progress rows for the progress dashboard
"""

import enum
from dataclasses import dataclass
from typing import Dict, FrozenSet, List, Any, Optional, Tuple

from questledger.ledger.missions import MISSIONS
from questledger.ledger.models import LearnerSummary, QuestCategory, QuestDifficulty


class BadgeKind(enum.Enum):
    """Which summary statistic a badge measures."""
    QUESTS = "quests"
    STREAK = "streak"
    CATEGORY = "category"
    DIFFICULTY = "difficulty"


class BadgeRarity(enum.Enum):
    """Display rarity tiers for badges."""
    COMMON = "common"
    UNCOMMON = "uncommon"
    RARE = "rare"
    EPIC = "epic"
    LEGENDARY = "legendary"


@dataclass(frozen=True)
class Badge:
    """
    A badge unlocked when a summary statistic reaches ``requirement``.

    ``subject`` names the category or difficulty for the kinds that count
    per bucket.
    """
    id: str
    name: str
    description: str
    icon: str
    rarity: BadgeRarity
    kind: BadgeKind
    requirement: int
    subject: Optional[str] = None

    def measure(self, summary: LearnerSummary) -> int:
        """Current value of the statistic this badge is judged on."""
        if self.kind is BadgeKind.QUESTS:
            return summary.total_quests_completed
        if self.kind is BadgeKind.STREAK:
            return summary.streak_high_water
        if self.kind is BadgeKind.CATEGORY:
            return summary.quests_by_category.get(self.subject, 0)
        return summary.quests_by_difficulty.get(self.subject, 0)

    def is_met(self, summary: LearnerSummary) -> bool:
        return self.measure(summary) >= self.requirement


BADGES: Tuple[Badge, ...] = (
    Badge("first-quest", "First Step", "Complete your first quest", "🎯",
          BadgeRarity.COMMON, BadgeKind.QUESTS, 1),
    Badge("quest-master", "Quest Master", "Complete 10 quests", "🏆",
          BadgeRarity.RARE, BadgeKind.QUESTS, 10),
    Badge("quest-legend", "Quest Legend", "Complete 25 quests", "👑",
          BadgeRarity.EPIC, BadgeKind.QUESTS, 25),
    Badge("quest-champion", "Quest Champion", "Complete 50 quests", "🌟",
          BadgeRarity.LEGENDARY, BadgeKind.QUESTS, 50),
    Badge("math-genius", "Math Genius", "Complete 5 math quests", "🧮",
          BadgeRarity.RARE, BadgeKind.CATEGORY, 5, QuestCategory.MATH.value),
    Badge("science-explorer", "Science Explorer", "Complete 5 science quests", "🔬",
          BadgeRarity.RARE, BadgeKind.CATEGORY, 5, QuestCategory.SCIENCE.value),
    Badge("language-master", "Language Master", "Complete 5 language quests", "📚",
          BadgeRarity.RARE, BadgeKind.CATEGORY, 5, QuestCategory.LANGUAGE.value),
    Badge("social-explorer", "Social Explorer", "Complete 5 social studies quests", "🌍",
          BadgeRarity.RARE, BadgeKind.CATEGORY, 5, QuestCategory.SOCIAL_STUDIES.value),
    Badge("streak-3", "Fire Streak", "Maintain a 3-day streak", "🔥",
          BadgeRarity.UNCOMMON, BadgeKind.STREAK, 3),
    Badge("streak-7", "Perfect Week", "Maintain a 7-day streak", "⭐",
          BadgeRarity.EPIC, BadgeKind.STREAK, 7),
    Badge("streak-14", "Unstoppable", "Maintain a 14-day streak", "⚡",
          BadgeRarity.EPIC, BadgeKind.STREAK, 14),
    Badge("streak-30", "Monthly Legend", "Maintain a 30-day streak", "🌙",
          BadgeRarity.LEGENDARY, BadgeKind.STREAK, 30),
    Badge("hard-mode", "Hard Mode", "Complete 3 hard quests", "💪",
          BadgeRarity.LEGENDARY, BadgeKind.DIFFICULTY, 3, QuestDifficulty.HARD.value),
    Badge("hard-master", "Hard Master", "Complete 10 hard quests", "🏔️",
          BadgeRarity.LEGENDARY, BadgeKind.DIFFICULTY, 10, QuestDifficulty.HARD.value),
)

BADGES_BY_ID: Dict[str, Badge] = {badge.id: badge for badge in BADGES}


@dataclass(frozen=True)
class BadgeEvaluation:
    """Unlocked badge and trophy ids for one summary."""
    badge_ids: FrozenSet[str]
    trophy_ids: FrozenSet[str]


def evaluate(summary: LearnerSummary) -> BadgeEvaluation:
    """
    Derive the unlocked badge and trophy ids for a summary.

    The result always contains the ids already unlocked on the summary, so
    evaluation can only ever add ids.

    Args:
        summary: Learner summary with up-to-date statistics

    Returns:
        BadgeEvaluation with the full unlocked sets
    """
    earned = {badge.id for badge in BADGES if badge.is_met(summary)}
    trophies = {
        MISSIONS[mission_id].trophy_id
        for mission_id in summary.completed_missions
        if mission_id in MISSIONS
    }
    return BadgeEvaluation(
        badge_ids=frozenset(earned | set(summary.unlocked_badges)),
        trophy_ids=frozenset(trophies | set(summary.unlocked_trophies)),
    )


def apply_evaluation(summary: LearnerSummary) -> LearnerSummary:
    """Return a copy of ``summary`` with its unlocked sets brought up to date."""
    evaluation = evaluate(summary)
    updated = summary.copy()
    updated.unlocked_badges = set(evaluation.badge_ids)
    updated.unlocked_trophies = set(evaluation.trophy_ids)
    return updated


def badge_progress(summary: LearnerSummary) -> List[Dict[str, Any]]:
    """Per-badge progress rows, capped at the requirement."""
    rows = []
    for badge in BADGES:
        unlocked = badge.id in summary.unlocked_badges or badge.is_met(summary)
        rows.append({
            "id": badge.id,
            "name": badge.name,
            "description": badge.description,
            "icon": badge.icon,
            "rarity": badge.rarity.value,
            "kind": badge.kind.value,
            "requirement": badge.requirement,
            "progress": badge.requirement if unlocked else min(badge.measure(summary), badge.requirement),
            "unlocked": unlocked,
        })
    return rows
