"""Error taxonomy shared by services and the HTTP layer.

Services raise these; the API maps them to status codes. Store failures
(sqlite3.Error) are not wrapped: they propagate out of the open transaction,
which rolls it back.
"""

from __future__ import annotations


class TaskDeskError(Exception):
    """Base class for all business-rule failures."""


class ValidationError(TaskDeskError):
    """Input rejected before any write happened."""


class NotFoundError(TaskDeskError):
    """A referenced record (client, task, timer, ...) does not exist for this user."""


def reject_nulls(fields: dict, nullable: frozenset[str] = frozenset()) -> None:
    """Raise ValidationError if a field outside `nullable` is explicitly None."""
    nulls = sorted(k for k, v in fields.items() if v is None and k not in nullable)
    if nulls:
        raise ValidationError(f"Fields cannot be null: {', '.join(nulls)}")
