"""Task impact scorer — 80/20 classification of a user's tasks.

Ranks tasks by impact and marks the top HIGH_IMPACT_RATIO of them as
high-impact. Read-only: the "apply" step lives in TaskService.

No I/O: this module only transforms data.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from taskdesk.data.models import Task

logger = logging.getLogger(__name__)

HIGH_IMPACT_RATIO = 0.2

_PRIORITY_RANK = {"urgent": 3, "high": 2, "medium": 1, "low": 0}


@dataclass
class ScoredTask:
    """One task's current vs. recommended impact classification."""

    task_id: int
    title: str
    priority: str
    status: str
    current_impact_score: float
    recommended_impact_score: float
    is_currently_high_impact: bool
    should_be_high_impact: bool = False

    @property
    def needs_change(self) -> bool:
        return self.is_currently_high_impact != self.should_be_high_impact


@dataclass
class ImpactAnalysis:
    all_tasks_with_scores: list[ScoredTask] = field(default_factory=list)
    recommended_high_impact_tasks: list[ScoredTask] = field(default_factory=list)
    other_tasks: list[ScoredTask] = field(default_factory=list)


@dataclass
class ImpactStatistics:
    total_tasks: int
    completed_tasks: int
    completion_rate: float
    average_impact: float


def high_impact_cutoff(count: int) -> int:
    """Number of tasks in the top slice: ceil(20% of count)."""
    return math.ceil(count * HIGH_IMPACT_RATIO)


def recommended_score(task: Task) -> float:
    """Recommended impact score for a task.

    The stored impact_score is the ranking key; priority and status only
    break ties (see _rank_key).
    """
    return float(task.impact_score or 0)


def _rank_key(task: Task) -> tuple:
    return (
        -recommended_score(task),
        -_PRIORITY_RANK.get(task.priority, 0),
        task.status == "done",
        task.id,
    )


def rank_tasks(tasks: list[Task]) -> list[Task]:
    """Sort tasks by recommended score, highest first, deterministically."""
    return sorted(tasks, key=_rank_key)


def analyze_impact(tasks: list[Task]) -> ImpactAnalysis:
    """Classify the top ceil(20%) of tasks as recommended high-impact.

    The recommended and other lists partition the input.
    """
    ranked = rank_tasks(tasks)
    cutoff = high_impact_cutoff(len(ranked))

    analysis = ImpactAnalysis()
    for position, task in enumerate(ranked):
        scored = ScoredTask(
            task_id=task.id,
            title=task.title,
            priority=task.priority,
            status=task.status,
            current_impact_score=float(task.impact_score or 0),
            recommended_impact_score=recommended_score(task),
            is_currently_high_impact=bool(task.is_high_impact),
            should_be_high_impact=position < cutoff,
        )
        analysis.all_tasks_with_scores.append(scored)
        if scored.should_be_high_impact:
            analysis.recommended_high_impact_tasks.append(scored)
        else:
            analysis.other_tasks.append(scored)

    logger.debug(
        "Impact analysis: %d tasks, %d recommended high-impact",
        len(ranked), cutoff,
    )
    return analysis


def select_high_impact(tasks: list[Task]) -> list[Task]:
    """Top 20% of the tasks that are not done yet."""
    open_tasks = rank_tasks([t for t in tasks if t.status != "done"])
    return open_tasks[: high_impact_cutoff(len(open_tasks))]


def client_impact_statistics(tasks: list[Task]) -> ImpactStatistics:
    """Completion and average-impact figures for one client's tasks."""
    total = len(tasks)
    if total == 0:
        return ImpactStatistics(0, 0, 0.0, 0.0)

    completed = sum(1 for t in tasks if t.status == "done")
    return ImpactStatistics(
        total_tasks=total,
        completed_tasks=completed,
        completion_rate=completed / total * 100,
        average_impact=sum(float(t.impact_score or 0) for t in tasks) / total,
    )
