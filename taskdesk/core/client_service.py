"""Client service — client CRUD and metric repair.

Client metrics are read-only here; only TaskService moves the counters.
recount_metrics rebuilds them from a live count for repairs.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING, Callable

from taskdesk.core.errors import NotFoundError, ValidationError, reject_nulls
from taskdesk.core.timer import to_iso, utcnow
from taskdesk.data.models import CLIENT_STATUSES, STATUS_COUNTERS, Client, ClientMetrics, Contact

if TYPE_CHECKING:
    from taskdesk.data.store import Store

logger = logging.getLogger(__name__)

_MIN_NAME_LENGTH = 2
_UPDATABLE_FIELDS = frozenset({"name", "description", "status", "contacts", "notes", "tags"})


@dataclass
class ClientDeletion:
    client_id: int
    tasks_deleted: int
    timers_deleted: int
    objectives_deleted: int


def _clean_name(name: str | None) -> str:
    cleaned = (name or "").strip()
    if len(cleaned) < _MIN_NAME_LENGTH:
        raise ValidationError(f"Client name must be at least {_MIN_NAME_LENGTH} characters")
    return cleaned


def _check_status(status: str) -> None:
    if status not in CLIENT_STATUSES:
        raise ValidationError(f"status must be one of {', '.join(CLIENT_STATUSES)}")


class ClientService:
    def __init__(self, store: Store, clock: Callable[[], datetime] = utcnow) -> None:
        self._store = store
        self._clock = clock

    def create_client(
        self,
        user_id: int,
        name: str,
        description: str = "",
        status: str = "active",
        contacts: list[Contact] | None = None,
        notes: str = "",
        tags: list[str] | None = None,
    ) -> Client:
        name = _clean_name(name)
        _check_status(status)
        return self._store.clients.add_client(
            user_id=user_id,
            name=name,
            created_at=to_iso(self._clock()),
            description=description,
            status=status,
            contacts=contacts,
            notes=notes,
            tags=tags,
        )

    def get_client(self, user_id: int, client_id: int) -> Client:
        client = self._store.clients.get_client(client_id, user_id=user_id)
        if client is None:
            raise NotFoundError(f"Client {client_id} not found")
        return client

    def list_clients(self, user_id: int, status: str | None = None) -> list[Client]:
        if status is not None:
            _check_status(status)
        return self._store.clients.list_clients(user_id, status=status)

    def update_client(self, user_id: int, client_id: int, changes: dict) -> Client:
        """Update descriptive fields. metrics cannot be set from outside."""
        unknown = set(changes) - _UPDATABLE_FIELDS
        if unknown:
            raise ValidationError(f"Cannot update fields: {', '.join(sorted(unknown))}")
        reject_nulls(changes)
        if "name" in changes:
            changes = {**changes, "name": _clean_name(changes["name"])}
        if "status" in changes:
            _check_status(changes["status"])

        with self._store.transaction() as conn:
            if self._store.clients.get_client(client_id, user_id=user_id, conn=conn) is None:
                raise NotFoundError(f"Client {client_id} not found")
            self._store.clients.update_client(client_id, changes, conn=conn)
            updated = self._store.clients.get_client(client_id, conn=conn)
        logger.info("Client #%d updated: %s", client_id, ", ".join(sorted(changes)))
        return updated

    def delete_client(self, user_id: int, client_id: int) -> ClientDeletion:
        """Delete the client and everything attached to it, in one transaction."""
        with self._store.transaction() as conn:
            if self._store.clients.get_client(client_id, user_id=user_id, conn=conn) is None:
                raise NotFoundError(f"Client {client_id} not found")
            timers = self._store.timers.delete_for_client(client_id, conn=conn)
            tasks = self._store.tasks.delete_for_client(client_id, conn=conn)
            objectives = self._store.objectives.delete_for_client(client_id, conn=conn)
            self._store.profitability.delete_for_client(client_id, conn=conn)
            self._store.clients.delete_client(client_id, conn=conn)

        logger.info(
            "Client #%d deleted with %d tasks, %d timers, %d objectives",
            client_id, tasks, timers, objectives,
        )
        return ClientDeletion(client_id, tasks, timers, objectives)

    def recount_metrics(self, user_id: int, client_id: int) -> Client:
        """Rebuild metrics from the live task count."""
        with self._store.transaction() as conn:
            client = self._store.clients.get_client(client_id, user_id=user_id, conn=conn)
            if client is None:
                raise NotFoundError(f"Client {client_id} not found")
            counts = self._store.tasks.count_by_status(client_id, conn=conn)
            metrics = ClientMetrics(
                **{STATUS_COUNTERS[s]: n for s, n in counts.items() if s in STATUS_COUNTERS}
            )
            stored = client.metrics
            if (stored.tasks_pending, stored.tasks_in_progress, stored.tasks_completed) != (
                metrics.tasks_pending, metrics.tasks_in_progress, metrics.tasks_completed,
            ):
                logger.warning(
                    "Client #%d metrics drifted: stored %s, live %s",
                    client_id, stored, metrics,
                )
            self._store.clients.set_metrics(client_id, metrics, conn=conn)
            return self._store.clients.get_client(client_id, conn=conn)
