"""Request bodies for the HTTP API.

Field-level business rules (ranges, allowed statuses) are enforced by the
services so the same messages come back whether the caller is the API or a
test. These models only fix the JSON shape.
"""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, ConfigDict


class UserIn(BaseModel):
    username: str
    email: str = ""


class ContactIn(BaseModel):
    name: str
    role: str = ""
    email: str = ""
    phone: str = ""
    is_main: bool = False


class ClientIn(BaseModel):
    name: str
    description: str = ""
    status: str = "active"
    contacts: list[ContactIn] = []
    notes: str = ""
    tags: list[str] = []


class ClientUpdate(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    status: Optional[str] = None
    contacts: Optional[list[ContactIn]] = None
    notes: Optional[str] = None
    tags: Optional[list[str]] = None


class TaskIn(BaseModel):
    client_id: int
    title: str
    description: str = ""
    priority: str = "medium"
    status: str = "todo"
    category: str = "other"
    due_date: Optional[str] = None
    estimated_minutes: Optional[int] = None
    impact_score: float = 0.0
    is_high_impact: bool = False


class TaskUpdate(BaseModel):
    client_id: Optional[int] = None
    title: Optional[str] = None
    description: Optional[str] = None
    priority: Optional[str] = None
    status: Optional[str] = None
    category: Optional[str] = None
    due_date: Optional[str] = None
    estimated_minutes: Optional[int] = None
    actual_minutes: Optional[int] = None
    impact_score: Optional[float] = None
    is_high_impact: Optional[bool] = None


class TaskCompleteIn(BaseModel):
    actual_minutes: Optional[int] = None


class ImpactIn(BaseModel):
    impact_score: Optional[float] = None
    is_high_impact: Optional[bool] = None


class ImpactUpdateIn(BaseModel):
    task_id: int
    is_high_impact: bool
    impact_score: float


class ImpactApplyIn(BaseModel):
    updates: list[ImpactUpdateIn]


class ProfitabilityIn(BaseModel):
    hourly_rate: float
    target_hours: float = 0.0
    spent_hours: float = 0.0
    notes: str = ""


class TimerIn(BaseModel):
    task_id: Optional[int] = None
    client_id: Optional[int] = None
    description: str = ""
    billable: bool = True


class ObjectiveIn(BaseModel):
    client_id: int
    title: str
    description: str = ""
    current_value: float = 0.0
    target_value: float = 100.0
    unit: str = "%"
    due_date: Optional[str] = None
    is_high_impact: bool = False
    status: str = "todo"
    related_task_ids: list[int] = []


class ObjectiveUpdate(BaseModel):
    client_id: Optional[int] = None
    title: Optional[str] = None
    description: Optional[str] = None
    current_value: Optional[float] = None
    target_value: Optional[float] = None
    unit: Optional[str] = None
    due_date: Optional[str] = None
    is_high_impact: Optional[bool] = None
    status: Optional[str] = None
    related_task_ids: Optional[list[int]] = None


class ActivityIn(BaseModel):
    """A logged activity. Rewards are granted by the server only, never by the caller."""

    model_config = ConfigDict(extra="forbid")

    type: str
    description: str = ""
