"""Scheduling configuration per education level.

Younger learners get a lower target retention (less pressure) and a shorter
maximum interval so material is consolidated more often.
"""

from dataclasses import dataclass
from typing import Literal

from packages.common.exceptions import ValidationError

Cycle = Literal["cycle2", "cycle3", "cycle4", "lycee"]


@dataclass(frozen=True)
class LearningLevelConfig:
    """Review scheduling parameters for one education level."""

    cards_per_session: int
    target_retention: float
    maximum_interval_days: int
    session_minutes: int
    cycle: Cycle
    age_range: str
    enable_fuzz: bool = True
    enable_short_term: bool = True


LEARNING_LEVELS: dict[str, LearningLevelConfig] = {
    # Cycle 2 (6-8 years): short attention span, frequent consolidation
    "cp": LearningLevelConfig(5, 0.85, 30, 10, "cycle2", "6"),
    "ce1": LearningLevelConfig(6, 0.85, 45, 12, "cycle2", "7"),
    "ce2": LearningLevelConfig(8, 0.85, 60, 15, "cycle2", "8"),
    # Cycle 3 (9-11 years)
    "cm1": LearningLevelConfig(10, 0.87, 90, 20, "cycle3", "9"),
    "cm2": LearningLevelConfig(12, 0.87, 120, 22, "cycle3", "10"),
    "sixieme": LearningLevelConfig(15, 0.88, 150, 25, "cycle3", "11"),
    # Cycle 4 (12-14 years)
    "cinquieme": LearningLevelConfig(15, 0.88, 180, 30, "cycle4", "12"),
    "quatrieme": LearningLevelConfig(18, 0.89, 270, 35, "cycle4", "13"),
    "troisieme": LearningLevelConfig(20, 0.90, 365, 40, "cycle4", "14"),
    # Lycee (15-18 years): exam preparation
    "seconde": LearningLevelConfig(20, 0.90, 365, 45, "lycee", "15"),
    "premiere": LearningLevelConfig(25, 0.91, 545, 50, "lycee", "16-17"),
    "terminale": LearningLevelConfig(30, 0.92, 730, 60, "lycee", "17-18"),
}


def get_level_config(level: str) -> LearningLevelConfig:
    """Look up the scheduling configuration for an education level.

    Raises:
        ValidationError: If the level is unknown.
    """
    try:
        return LEARNING_LEVELS[level]
    except KeyError:
        raise ValidationError(
            f"Unknown education level: {level}",
            context={"level": level, "valid": list(LEARNING_LEVELS)},
        ) from None
