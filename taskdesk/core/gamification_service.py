"""Gamification service — persists the ledger rules of core.gamification.

add_reward can join the caller's transaction (task completion) or open its
own (badges, manual activities).
"""

from __future__ import annotations

import logging
import sqlite3
from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING, Callable

from taskdesk.core.errors import NotFoundError, ValidationError
from taskdesk.core.gamification import RewardOutcome, apply_reward
from taskdesk.core.timer import to_iso, utcnow
from taskdesk.data.models import Activity, Badge, EarnedBadge, GamificationProfile, Level

if TYPE_CHECKING:
    from taskdesk.data.store import Store

logger = logging.getLogger(__name__)


@dataclass
class BadgeStatus:
    badge: Badge
    earned: bool
    earned_at: str | None = None


class GamificationService:
    def __init__(self, store: Store, clock: Callable[[], datetime] = utcnow) -> None:
        self._store = store
        self._clock = clock

    def get_profile(self, user_id: int) -> GamificationProfile:
        user = self._store.users.get_user(user_id)
        if user is None:
            raise NotFoundError(f"User {user_id} not found")
        return user.gamification

    def add_reward(
        self,
        user_id: int,
        points: int,
        experience: int,
        conn: sqlite3.Connection | None = None,
    ) -> RewardOutcome:
        """Credit points/experience and check for a level-up, atomically."""
        if conn is None:
            with self._store.transaction() as own:
                return self.add_reward(user_id, points, experience, conn=own)

        user = self._store.users.get_user(user_id, conn=conn)
        if user is None:
            raise NotFoundError(f"User {user_id} not found")

        outcome = apply_reward(user.gamification, points, experience)
        self._store.users.save_gamification(user_id, user.gamification, conn=conn)
        logger.info(
            "User %d rewarded +%d pts / +%d xp (level %d%s)",
            user_id, points, experience, outcome.level,
            ", level up" if outcome.level_up else "",
        )
        return outcome

    def record_activity(
        self,
        user_id: int,
        activity_type: str,
        description: str = "",
        points: int = 0,
        experience: int = 0,
        conn: sqlite3.Connection | None = None,
    ) -> tuple[Activity, RewardOutcome | None]:
        """Append to the activity log and apply any attached reward."""
        if not activity_type or not activity_type.strip():
            raise ValidationError("activity type is required")
        if conn is None:
            with self._store.transaction() as own:
                return self.record_activity(
                    user_id, activity_type, description, points, experience, conn=own,
                )

        outcome = None
        if points or experience:
            outcome = self.add_reward(user_id, points, experience, conn=conn)
        activity = self._store.activities.add_activity(
            Activity(
                id=0,
                user_id=user_id,
                type=activity_type.strip(),
                description=description,
                points=points,
                experience=experience,
                timestamp=to_iso(self._clock()),
            ),
            conn=conn,
        )
        return activity, outcome

    def list_activity(self, user_id: int, limit: int = 20) -> list[Activity]:
        return self._store.activities.list_activity(user_id, limit=limit)

    def list_badges(self, user_id: int) -> list[BadgeStatus]:
        profile = self.get_profile(user_id)
        earned = {b.badge_id: b.earned_at for b in profile.badges}
        return [
            BadgeStatus(badge=b, earned=b.id in earned, earned_at=earned.get(b.id))
            for b in self._store.reference.list_badges()
        ]

    def award_badge(self, user_id: int, badge_id: int) -> RewardOutcome:
        """Grant a badge once, crediting its reward through the ledger."""
        with self._store.transaction() as conn:
            badge = self._store.reference.get_badge(badge_id, conn=conn)
            if badge is None:
                raise NotFoundError(f"Badge {badge_id} not found")
            user = self._store.users.get_user(user_id, conn=conn)
            if user is None:
                raise NotFoundError(f"User {user_id} not found")
            if user.gamification.has_badge(badge_id):
                raise ValidationError(f"User already holds badge '{badge.name}'")

            user.gamification.badges.append(
                EarnedBadge(badge_id=badge_id, earned_at=to_iso(self._clock()))
            )
            self._store.users.save_gamification(user_id, user.gamification, conn=conn)
            _, outcome = self.record_activity(
                user_id,
                "badge_earned",
                f"Earned badge '{badge.name}'",
                points=badge.reward_action_points,
                experience=badge.reward_experience,
                conn=conn,
            )

        logger.info("Badge #%d '%s' awarded to user %d", badge_id, badge.name, user_id)
        if outcome is None:
            profile = user.gamification
            outcome = RewardOutcome(0, 0, False, profile.level, profile.experience)
        return outcome

    def list_levels(self) -> list[Level]:
        return self._store.reference.list_levels()
