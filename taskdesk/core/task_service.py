"""
TaskDesk — Task/Client mutation service.

Keeps each Task and its owning Client's metrics consistent. Every mutation
(create, update, complete, delete) runs in one store transaction covering
the task write, the client counter changes and, for completion, the user's
gamification ledger. Either all of it commits or none of it does.

Also hosts the impact workflow: read-only analysis via core.impact_scorer
and a best-effort "apply" batch where each item commits on its own.
"""

from __future__ import annotations

import logging
import sqlite3
from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING, Callable

from taskdesk.core.errors import NotFoundError, TaskDeskError, ValidationError, reject_nulls
from taskdesk.core.gamification import RewardOutcome, task_completion_reward
from taskdesk.core.impact_scorer import (
    ImpactAnalysis,
    ImpactStatistics,
    analyze_impact,
    client_impact_statistics,
    high_impact_cutoff,
    rank_tasks,
    select_high_impact,
)
from taskdesk.core.timer import to_iso, utcnow
from taskdesk.data.models import TASK_PRIORITIES, TASK_STATUSES, Task

if TYPE_CHECKING:
    from taskdesk.core.gamification_service import GamificationService
    from taskdesk.data.store import Store

logger = logging.getLogger(__name__)

_UPDATABLE_FIELDS = frozenset({
    "title", "description", "client_id", "priority", "status", "category",
    "due_date", "estimated_minutes", "actual_minutes", "impact_score",
    "is_high_impact",
})
_NULLABLE_FIELDS = frozenset({"due_date", "estimated_minutes"})


@dataclass
class CompletionResult:
    task: Task
    rewards: RewardOutcome


@dataclass
class ImpactUpdate:
    task_id: int
    is_high_impact: bool
    impact_score: float


@dataclass
class ImpactUpdateResult:
    task_id: int
    success: bool
    error: str = ""
    task: Task | None = None


def _validate_impact_score(score: float) -> None:
    if score is None or not 0 <= score <= 100:
        raise ValidationError("impact_score must be between 0 and 100")


def _validate_fields(fields: dict) -> None:
    if "title" in fields and not (fields["title"] or "").strip():
        raise ValidationError("title is required")
    if "client_id" in fields and fields["client_id"] is None:
        raise ValidationError("client_id is required")
    if "priority" in fields and fields["priority"] not in TASK_PRIORITIES:
        raise ValidationError(f"priority must be one of {', '.join(TASK_PRIORITIES)}")
    if "status" in fields and fields["status"] not in TASK_STATUSES:
        raise ValidationError(f"status must be one of {', '.join(TASK_STATUSES)}")
    if "impact_score" in fields:
        _validate_impact_score(fields["impact_score"])
    for key in ("estimated_minutes", "actual_minutes"):
        if fields.get(key) is not None and fields[key] < 0:
            raise ValidationError(f"{key} must be >= 0")


class TaskService:
    """Task mutations with client-metric and ledger consistency."""

    def __init__(
        self,
        store: Store,
        gamification: GamificationService,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._store = store
        self._gamification = gamification
        self._clock = clock

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_task(self, user_id: int, task_id: int) -> Task:
        task = self._store.tasks.get_task(task_id, user_id=user_id)
        if task is None:
            raise NotFoundError(f"Task {task_id} not found")
        return task

    def list_tasks(
        self, user_id: int, client_id: int | None = None, status: str | None = None,
    ) -> list[Task]:
        return self._store.tasks.list_tasks(user_id, client_id=client_id, status=status)

    def _require_client(self, client_id: int, user_id: int, conn: sqlite3.Connection) -> None:
        if self._store.clients.get_client(client_id, user_id=user_id, conn=conn) is None:
            raise NotFoundError(f"Client {client_id} not found")

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def create_task(
        self,
        user_id: int,
        client_id: int,
        title: str,
        description: str = "",
        priority: str = "medium",
        status: str = "todo",
        category: str = "other",
        due_date: str | None = None,
        estimated_minutes: int | None = None,
        impact_score: float = 0.0,
        is_high_impact: bool = False,
    ) -> Task:
        """Persist a task and count it on its client."""
        _validate_fields({
            "title": title, "priority": priority, "status": status,
            "impact_score": impact_score, "estimated_minutes": estimated_minutes,
        })
        now = to_iso(self._clock())
        task = Task(
            id=0,
            user_id=user_id,
            client_id=client_id,
            title=title.strip(),
            description=description,
            priority=priority,
            status=status,
            category=category,
            due_date=due_date,
            estimated_minutes=estimated_minutes,
            impact_score=impact_score,
            is_high_impact=is_high_impact,
            completed_at=now if status == "done" else None,
            created_at=now,
            updated_at=now,
        )

        with self._store.transaction() as conn:
            self._require_client(client_id, user_id, conn)
            self._store.tasks.add_task(task, conn=conn)
            self._store.clients.adjust_metric(client_id, status, +1, now, conn=conn)

        logger.info("Task created: #%d '%s' on client %d", task.id, task.title, client_id)
        return task

    def update_task(self, user_id: int, task_id: int, changes: dict) -> Task:
        """Apply field changes, moving client counters on status/client change."""
        unknown = set(changes) - _UPDATABLE_FIELDS
        if unknown:
            raise ValidationError(f"Cannot update fields: {', '.join(sorted(unknown))}")
        reject_nulls(changes, _NULLABLE_FIELDS)
        _validate_fields(changes)
        if "title" in changes:
            changes = {**changes, "title": changes["title"].strip()}

        now = to_iso(self._clock())
        with self._store.transaction() as conn:
            existing = self._store.tasks.get_task(task_id, user_id=user_id, conn=conn)
            if existing is None:
                raise NotFoundError(f"Task {task_id} not found")

            old_status, old_client = existing.status, existing.client_id
            new_status = changes.get("status", old_status)
            new_client = changes.get("client_id", old_client)

            fields = dict(changes, updated_at=now)
            if new_status != old_status:
                fields["completed_at"] = now if new_status == "done" else None

            if new_client != old_client:
                self._require_client(new_client, user_id, conn)
                self._store.clients.adjust_metric(old_client, old_status, -1, now, conn=conn)
                self._store.clients.adjust_metric(new_client, new_status, +1, now, conn=conn)
            elif new_status != old_status:
                self._store.clients.adjust_metric(old_client, old_status, -1, now, conn=conn)
                self._store.clients.adjust_metric(old_client, new_status, +1, now, conn=conn)

            self._store.tasks.update_task(task_id, fields, conn=conn)
            updated = self._store.tasks.get_task(task_id, conn=conn)

        logger.info(
            "Task #%d updated (%s -> %s, client %d -> %d)",
            task_id, old_status, new_status, old_client, new_client,
        )
        return updated

    def complete_task(
        self, user_id: int, task_id: int, actual_minutes: int | None = None,
    ) -> CompletionResult:
        """Mark done, move the client counter, and credit the user's ledger."""
        if actual_minutes is not None and actual_minutes < 0:
            raise ValidationError("actual_minutes must be >= 0")

        now = to_iso(self._clock())
        with self._store.transaction() as conn:
            task = self._store.tasks.get_task(task_id, user_id=user_id, conn=conn)
            if task is None:
                raise NotFoundError(f"Task {task_id} not found")
            if task.status == "done":
                raise ValidationError(f"Task {task_id} is already completed")

            fields = {"status": "done", "completed_at": now, "updated_at": now}
            if actual_minutes is not None:
                fields["actual_minutes"] = actual_minutes
            self._store.tasks.update_task(task_id, fields, conn=conn)
            self._store.clients.adjust_metric(task.client_id, task.status, -1, now, conn=conn)
            self._store.clients.adjust_metric(task.client_id, "done", +1, now, conn=conn)

            reward = task_completion_reward(task.impact_score)
            _, outcome = self._gamification.record_activity(
                user_id,
                "task_completed",
                f"Completed task '{task.title}'",
                points=reward.points,
                experience=reward.experience,
                conn=conn,
            )
            completed = self._store.tasks.get_task(task_id, conn=conn)

        logger.info(
            "Task #%d completed: +%d pts, +%d xp%s",
            task_id, outcome.points, outcome.experience,
            " (level up)" if outcome.level_up else "",
        )
        return CompletionResult(task=completed, rewards=outcome)

    def delete_task(self, user_id: int, task_id: int) -> None:
        """Remove a task with its timers and uncount it from its client."""
        now = to_iso(self._clock())
        with self._store.transaction() as conn:
            task = self._store.tasks.get_task(task_id, user_id=user_id, conn=conn)
            if task is None:
                raise NotFoundError(f"Task {task_id} not found")
            self._store.clients.adjust_metric(task.client_id, task.status, -1, now, conn=conn)
            timers_deleted = self._store.timers.delete_for_task(task_id, conn=conn)
            self._store.tasks.delete_task(task_id, conn=conn)
        logger.info(
            "Task #%d deleted (was %s, %d timers removed)", task_id, task.status, timers_deleted,
        )

    # ------------------------------------------------------------------
    # Impact workflow
    # ------------------------------------------------------------------

    def analyze_impact(self, user_id: int) -> ImpactAnalysis:
        return analyze_impact(self._store.tasks.list_tasks(user_id))

    def high_impact_tasks(self, user_id: int) -> list[Task]:
        return select_high_impact(self._store.tasks.list_tasks(user_id))

    def client_impact(self, user_id: int, client_id: int) -> tuple[ImpactStatistics, list[Task]]:
        """Statistics plus the top 20% of all the client's tasks."""
        if self._store.clients.get_client(client_id, user_id=user_id) is None:
            raise NotFoundError(f"Client {client_id} not found")
        tasks = self._store.tasks.list_tasks(user_id, client_id=client_id)
        ranked = rank_tasks(tasks)
        return client_impact_statistics(tasks), ranked[: high_impact_cutoff(len(ranked))]

    def set_impact(
        self,
        user_id: int,
        task_id: int,
        impact_score: float | None = None,
        is_high_impact: bool | None = None,
    ) -> Task:
        fields: dict = {}
        if impact_score is not None:
            _validate_impact_score(impact_score)
            fields["impact_score"] = impact_score
        if is_high_impact is not None:
            fields["is_high_impact"] = is_high_impact
        if not fields:
            raise ValidationError("Nothing to update")

        fields["updated_at"] = to_iso(self._clock())
        with self._store.transaction() as conn:
            if self._store.tasks.get_task(task_id, user_id=user_id, conn=conn) is None:
                raise NotFoundError(f"Task {task_id} not found")
            self._store.tasks.update_task(task_id, fields, conn=conn)
            return self._store.tasks.get_task(task_id, conn=conn)

    def apply_impact_updates(
        self, user_id: int, updates: list[ImpactUpdate],
    ) -> list[ImpactUpdateResult]:
        """Apply each update in its own transaction; failures don't undo others."""
        results: list[ImpactUpdateResult] = []
        for update in updates:
            try:
                task = self.set_impact(
                    user_id, update.task_id,
                    impact_score=update.impact_score,
                    is_high_impact=update.is_high_impact,
                )
            except (TaskDeskError, sqlite3.Error) as exc:
                logger.warning("Impact update for task %s failed: %s", update.task_id, exc)
                results.append(ImpactUpdateResult(update.task_id, False, str(exc)))
                continue
            results.append(ImpactUpdateResult(update.task_id, True, task=task))

        applied = sum(1 for r in results if r.success)
        logger.info("Impact analysis applied: %d/%d tasks updated", applied, len(results))
        return results
