"""
Classroom Reward Tariffs

How many coins and how much XP a turned-in classroom assignment is worth,
and which quest category it counts towards. The ledger credits whatever the
tariff decides; it has no opinion of its own.
"""

from dataclasses import dataclass
from typing import Any, Dict, Optional

from questledger.common.exceptions import ConfigurationError
from questledger.ledger.models import QuestCategory

WORK_TYPE_MULTIPLIERS = {
    "ASSIGNMENT": 1.5,
    "SHORT_ANSWER_QUESTION": 1.0,
    "MULTIPLE_CHOICE_QUESTION": 0.8,
}

# Checked in order; the first matching keyword wins
CATEGORY_KEYWORDS = (
    (QuestCategory.MATH, ("math", "matemática", "matematica", "algebra", "geometry")),
    (QuestCategory.LANGUAGE, ("english", "inglés", "ingles", "reading", "lectura", "language", "lenguaje")),
    (QuestCategory.SCIENCE, ("science", "ciencia", "biology", "physics", "chemistry")),
    (QuestCategory.SOCIAL_STUDIES, ("history", "historia", "geography", "social")),
)


@dataclass(frozen=True)
class Reward:
    xp: int
    coins: int


def _round_half_up(value: float) -> int:
    return int(value + 0.5)


class FixedTariff:
    """Every assignment is worth the same."""

    def __init__(self, xp: int = 50, coins: int = 20):
        self.reward = Reward(xp=xp, coins=coins)

    def reward_for(self, course_work: Dict[str, Any]) -> Reward:
        return self.reward


class WeightedTariff:
    """
    Scale a base reward by the assignment's points and work type.

    Points contribute ``max_points / 10`` clamped to [0, 3], or 1 when
    the assignment is ungraded.
    """

    def __init__(self, base_xp: int = 50, base_coins: int = 10):
        self.base_xp = base_xp
        self.base_coins = base_coins

    def reward_for(self, course_work: Dict[str, Any]) -> Reward:
        max_points = course_work.get("maxPoints")
        points_multiplier = min(max(max_points, 0) / 10, 3) if max_points else 1
        type_multiplier = WORK_TYPE_MULTIPLIERS.get(course_work.get("workType"), 1.0)
        factor = points_multiplier * type_multiplier
        return Reward(
            xp=_round_half_up(self.base_xp * factor),
            coins=_round_half_up(self.base_coins * factor),
        )


def detect_category(title: str, course_name: Optional[str] = None) -> QuestCategory:
    """Guess the quest category from assignment and course titles; math when nothing matches."""
    haystack = f"{title or ''} {course_name or ''}".lower()
    for category, keywords in CATEGORY_KEYWORDS:
        if any(keyword in haystack for keyword in keywords):
            return category
    return QuestCategory.MATH


def build_tariff(mode: str, xp: int = 50, coins: int = 20):
    """Build the tariff named by the CLASSROOM_TARIFF_MODE setting."""
    if mode == "fixed":
        return FixedTariff(xp=xp, coins=coins)
    if mode == "weighted":
        return WeightedTariff()
    raise ConfigurationError(f"Unknown classroom tariff mode: {mode}", "CLASSROOM_TARIFF_MODE")
