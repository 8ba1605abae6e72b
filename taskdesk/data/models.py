"""
TaskDesk — Data Models.

Document-shaped records: nested parts (client metrics, contacts, timer
breaks, earned badges) live inside their parent record and are stored as
JSON columns by the repositories in taskdesk.data.db.

All timestamps are ISO-8601 strings in UTC.
"""

from __future__ import annotations

from dataclasses import dataclass, field

CLIENT_STATUSES = ("active", "inactive", "archived")
TASK_STATUSES = ("todo", "in-progress", "done")
TASK_PRIORITIES = ("low", "medium", "high", "urgent")
OBJECTIVE_STATUSES = ("todo", "in-progress", "done", "cancelled")

# task status -> ClientMetrics counter column
STATUS_COUNTERS = {
    "todo": "tasks_pending",
    "in-progress": "tasks_in_progress",
    "done": "tasks_completed",
}


@dataclass
class EarnedBadge:
    badge_id: int
    earned_at: str
    displayed: bool = True


@dataclass
class GamificationProfile:
    """Per-user ledger. level only ever goes up."""

    level: int = 1
    experience: int = 0
    action_points: int = 0
    total_points_earned: int = 0
    current_streak: int = 0
    longest_streak: int = 0
    badges: list[EarnedBadge] = field(default_factory=list)
    achievements: list[str] = field(default_factory=list)

    def has_badge(self, badge_id: int) -> bool:
        return any(b.badge_id == badge_id for b in self.badges)


@dataclass
class User:
    """A registered account. Credentials live with the auth gateway."""

    id: int
    username: str
    email: str = ""
    created_at: str = ""
    gamification: GamificationProfile = field(default_factory=GamificationProfile)


@dataclass
class Contact:
    name: str
    role: str = ""
    email: str = ""
    phone: str = ""
    is_main: bool = False


@dataclass
class ClientMetrics:
    """Task counts by status. Written only by TaskService."""

    tasks_pending: int = 0
    tasks_in_progress: int = 0
    tasks_completed: int = 0
    last_activity: str | None = None

    @property
    def total(self) -> int:
        return self.tasks_pending + self.tasks_in_progress + self.tasks_completed


@dataclass
class Client:
    id: int
    user_id: int
    name: str
    description: str = ""
    status: str = "active"
    contacts: list[Contact] = field(default_factory=list)
    notes: str = ""
    tags: list[str] = field(default_factory=list)
    metrics: ClientMetrics = field(default_factory=ClientMetrics)
    last_profitability_update: str | None = None
    created_at: str = ""


@dataclass
class Task:
    id: int
    user_id: int
    client_id: int
    title: str
    description: str = ""
    priority: str = "medium"
    status: str = "todo"
    category: str = "other"
    due_date: str | None = None
    estimated_minutes: int | None = None
    actual_minutes: int = 0
    impact_score: float = 0.0
    is_high_impact: bool = False
    completed_at: str | None = None
    created_at: str = ""
    updated_at: str = ""


@dataclass
class Break:
    """A closed pause interval. duration is in seconds."""

    start: str
    end: str
    duration: int


@dataclass
class Timer:
    """Wall-clock timer. Exactly one of task_id / client_id is set.

    Running state is derived from the stored timestamps on read.
    """

    id: int
    user_id: int
    task_id: int | None = None
    client_id: int | None = None
    description: str = ""
    billable: bool = True
    start_time: str = ""
    end_time: str | None = None
    is_running: bool = True
    paused_at: str | None = None
    breaks: list[Break] = field(default_factory=list)
    duration: int = 0            # seconds, final once end_time is set

    @property
    def is_stopped(self) -> bool:
        return self.end_time is not None


@dataclass
class Profitability:
    """One record per (user, client). Derived fields are never set directly."""

    id: int
    user_id: int
    client_id: int
    hourly_rate: float
    target_hours: float = 0.0
    spent_hours: float = 0.0
    revenue: float = 0.0
    profitability_percentage: float = 0.0
    remaining_hours: float = 0.0
    is_profitable: bool = False
    notes: str = ""
    last_updated: str = ""


@dataclass
class Badge:
    """Reference data: read-only for the services."""

    id: int
    name: str
    description: str
    category: str
    icon: str = ""
    rarity: str = "common"
    requirement_type: str = ""
    requirement_value: int = 0
    reward_experience: int = 0
    reward_action_points: int = 0


@dataclass
class Level:
    level: int
    name: str
    experience_required: int
    reward_action_points: int = 0


@dataclass
class Objective:
    id: int
    user_id: int
    client_id: int
    title: str
    description: str = ""
    current_value: float = 0.0
    target_value: float = 100.0
    unit: str = "%"
    progress: int = 0
    due_date: str | None = None
    is_high_impact: bool = False
    status: str = "todo"
    related_task_ids: list[int] = field(default_factory=list)
    created_at: str = ""
    updated_at: str = ""


@dataclass
class Activity:
    id: int
    user_id: int
    type: str
    description: str = ""
    points: int = 0
    experience: int = 0
    timestamp: str = ""
