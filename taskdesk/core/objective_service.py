"""Objective service — client objectives with derived progress."""

from __future__ import annotations

import logging
import math
from datetime import datetime
from typing import TYPE_CHECKING, Callable

from taskdesk.core.errors import NotFoundError, ValidationError, reject_nulls
from taskdesk.core.objectives import calculate_progress
from taskdesk.core.timer import to_iso, utcnow
from taskdesk.data.models import OBJECTIVE_STATUSES, Objective

if TYPE_CHECKING:
    from taskdesk.data.store import Store

logger = logging.getLogger(__name__)

_UPDATABLE_FIELDS = frozenset({
    "client_id", "title", "description", "current_value", "target_value",
    "unit", "due_date", "is_high_impact", "status", "related_task_ids",
})


def _is_finite(value, minimum: float | None = None) -> bool:
    if value is None or not math.isfinite(value):
        return False
    return minimum is None or value >= minimum


def _validate(fields: dict) -> None:
    if "title" in fields and not (fields["title"] or "").strip():
        raise ValidationError("title is required")
    if "status" in fields and fields["status"] not in OBJECTIVE_STATUSES:
        raise ValidationError(f"status must be one of {', '.join(OBJECTIVE_STATUSES)}")
    if "target_value" in fields and not _is_finite(fields["target_value"], minimum=0):
        raise ValidationError("target_value must be a finite number >= 0")
    if "current_value" in fields and not _is_finite(fields["current_value"]):
        raise ValidationError("current_value must be a finite number")


class ObjectiveService:
    def __init__(self, store: Store, clock: Callable[[], datetime] = utcnow) -> None:
        self._store = store
        self._clock = clock

    def create(
        self,
        user_id: int,
        client_id: int,
        title: str,
        target_value: float = 100.0,
        current_value: float = 0.0,
        unit: str = "%",
        description: str = "",
        due_date: str | None = None,
        is_high_impact: bool = False,
        status: str = "todo",
        related_task_ids: list[int] | None = None,
    ) -> Objective:
        _validate({
            "title": title, "status": status,
            "target_value": target_value, "current_value": current_value,
        })
        now = to_iso(self._clock())
        objective = Objective(
            id=0,
            user_id=user_id,
            client_id=client_id,
            title=title.strip(),
            description=description,
            current_value=current_value,
            target_value=target_value,
            unit=unit,
            progress=calculate_progress(current_value, target_value),
            due_date=due_date,
            is_high_impact=is_high_impact,
            status=status,
            related_task_ids=list(related_task_ids or []),
            created_at=now,
            updated_at=now,
        )
        with self._store.transaction() as conn:
            if self._store.clients.get_client(client_id, user_id=user_id, conn=conn) is None:
                raise NotFoundError(f"Client {client_id} not found")
            self._store.objectives.add_objective(objective, conn=conn)
            self._store.clients.touch(client_id, now, conn=conn)
        return objective

    def get(self, user_id: int, objective_id: int) -> Objective:
        objective = self._store.objectives.get_objective(objective_id, user_id=user_id)
        if objective is None:
            raise NotFoundError(f"Objective {objective_id} not found")
        return objective

    def list(self, user_id: int, client_id: int | None = None) -> list[Objective]:
        return self._store.objectives.list_objectives(user_id, client_id=client_id)

    def update(self, user_id: int, objective_id: int, changes: dict) -> Objective:
        """Apply changes and recompute progress from the merged values."""
        unknown = set(changes) - _UPDATABLE_FIELDS
        if unknown:
            raise ValidationError(f"Cannot update fields: {', '.join(sorted(unknown))}")
        reject_nulls(changes, frozenset({"due_date"}))
        _validate(changes)

        now = to_iso(self._clock())
        with self._store.transaction() as conn:
            existing = self._store.objectives.get_objective(objective_id, user_id=user_id, conn=conn)
            if existing is None:
                raise NotFoundError(f"Objective {objective_id} not found")

            client_id = changes.get("client_id", existing.client_id)
            if client_id != existing.client_id and self._store.clients.get_client(
                client_id, user_id=user_id, conn=conn,
            ) is None:
                raise NotFoundError(f"Client {client_id} not found")

            fields = dict(changes, updated_at=now)
            if "title" in fields:
                fields["title"] = fields["title"].strip()
            fields["progress"] = calculate_progress(
                changes.get("current_value", existing.current_value),
                changes.get("target_value", existing.target_value),
            )
            self._store.objectives.update_objective(objective_id, fields, conn=conn)
            self._store.clients.touch(client_id, now, conn=conn)
            updated = self._store.objectives.get_objective(objective_id, conn=conn)

        logger.info("Objective #%d updated: progress %d%%", objective_id, updated.progress)
        return updated

    def delete(self, user_id: int, objective_id: int) -> None:
        with self._store.transaction() as conn:
            if self._store.objectives.get_objective(objective_id, user_id=user_id, conn=conn) is None:
                raise NotFoundError(f"Objective {objective_id} not found")
            self._store.objectives.delete_objective(objective_id, conn=conn)
        logger.info("Objective #%d deleted", objective_id)
