"""Gamification ledger rules — rewards, experience and level-ups.

Pure functions over a GamificationProfile. Persistence lives in
GamificationService, which calls apply_reward inside the transaction of the
action that earned the reward.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import TYPE_CHECKING

from taskdesk.core.errors import ValidationError

if TYPE_CHECKING:
    from taskdesk.data.models import GamificationProfile

logger = logging.getLogger(__name__)

LEVEL_UP_EXPERIENCE_STEP = 100

TASK_POINTS_BASE = 10
TASK_POINTS_PER_IMPACT = 2
TASK_EXPERIENCE_BASE = 20
TASK_EXPERIENCE_PER_IMPACT = 3


@dataclass
class Reward:
    points: int
    experience: int


@dataclass
class RewardOutcome:
    """What a reward did to a profile. level_up drives the client animation."""

    points: int
    experience: int
    level_up: bool
    level: int
    total_experience: int


@dataclass
class LevelProgress:
    level: int
    experience: int
    next_level_experience: int
    progress: float


def task_completion_reward(impact_score: float | None) -> Reward:
    """points = floor(10 + impact*2), experience = floor(20 + impact*3)."""
    impact = impact_score or 0
    return Reward(
        points=math.floor(TASK_POINTS_BASE + impact * TASK_POINTS_PER_IMPACT),
        experience=math.floor(TASK_EXPERIENCE_BASE + impact * TASK_EXPERIENCE_PER_IMPACT),
    )


def level_threshold(level: int) -> int:
    return level * LEVEL_UP_EXPERIENCE_STEP


def apply_reward(
    profile: GamificationProfile, points: int, experience: int,
) -> RewardOutcome:
    """Add a reward to the profile in place.

    At most one level is gained per call, even if experience overshoots
    several thresholds.
    """
    if points < 0 or experience < 0:
        raise ValidationError("rewards cannot be negative")

    profile.action_points += points
    profile.total_points_earned += points
    profile.experience += experience

    level_up = False
    if profile.experience >= level_threshold(profile.level):
        profile.level += 1
        level_up = True
        logger.info("Level up: now level %d (%d xp)", profile.level, profile.experience)

    return RewardOutcome(
        points=points,
        experience=experience,
        level_up=level_up,
        level=profile.level,
        total_experience=profile.experience,
    )


def level_progress(profile: GamificationProfile) -> LevelProgress:
    """Experience progress toward the next level-up threshold, in percent."""
    needed = level_threshold(profile.level)
    return LevelProgress(
        level=profile.level,
        experience=profile.experience,
        next_level_experience=needed,
        progress=profile.experience / needed * 100 if needed else 0.0,
    )
