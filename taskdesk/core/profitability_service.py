"""Profitability service — per-client records kept in sync with the calculator.

Derived fields are always produced by core.profitability; nothing else
writes them.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import TYPE_CHECKING, Callable

from taskdesk.core.errors import NotFoundError
from taskdesk.core.profitability import (
    PortfolioSummary,
    ProfitabilityResult,
    calculate_profitability,
    summarize_portfolio,
)
from taskdesk.core.timer import to_iso, utcnow
from taskdesk.data.models import Profitability

if TYPE_CHECKING:
    from taskdesk.data.store import Store

logger = logging.getLogger(__name__)


def _with_derived(record: Profitability) -> Profitability:
    result = calculate_profitability(record.hourly_rate, record.spent_hours, record.target_hours)
    record.revenue = result.revenue
    record.profitability_percentage = result.profitability_percentage
    record.remaining_hours = result.remaining_hours
    record.is_profitable = result.is_profitable
    return record


class ProfitabilityService:
    def __init__(self, store: Store, clock: Callable[[], datetime] = utcnow) -> None:
        self._store = store
        self._clock = clock

    def get(self, user_id: int, client_id: int) -> Profitability:
        record = self._store.profitability.get(user_id, client_id)
        if record is None:
            raise NotFoundError(f"No profitability data for client {client_id}")
        return record

    def list(self, user_id: int) -> list[Profitability]:
        return self._store.profitability.list_for_user(user_id)

    def upsert(
        self,
        user_id: int,
        client_id: int,
        hourly_rate: float,
        target_hours: float = 0.0,
        spent_hours: float = 0.0,
        notes: str = "",
    ) -> Profitability:
        """Create or replace the client's inputs and recompute derived fields.

        Validation happens before the transaction opens, so a bad rate never
        leaves a partial write.
        """
        now = to_iso(self._clock())
        record = _with_derived(Profitability(
            id=0,
            user_id=user_id,
            client_id=client_id,
            hourly_rate=hourly_rate,
            target_hours=target_hours,
            spent_hours=spent_hours,
            notes=notes,
            last_updated=now,
        ))

        with self._store.transaction() as conn:
            if self._store.clients.get_client(client_id, user_id=user_id, conn=conn) is None:
                raise NotFoundError(f"Client {client_id} not found")
            self._store.profitability.upsert(record, conn=conn)
            self._store.clients.mark_profitability_update(client_id, now, conn=conn)

        logger.info(
            "Profitability for client %d: %.1f%% (%s)",
            client_id, record.profitability_percentage,
            "profitable" if record.is_profitable else f"{record.remaining_hours:.1f}h to break even",
        )
        return record

    def sync_spent_hours(self, user_id: int, client_id: int) -> Profitability:
        """Set spent_hours from the actual time logged on the client's done tasks."""
        now = to_iso(self._clock())
        with self._store.transaction() as conn:
            record = self._store.profitability.get(user_id, client_id, conn=conn)
            if record is None:
                raise NotFoundError(f"No profitability data for client {client_id}")

            done = self._store.tasks.list_tasks(
                user_id, client_id=client_id, status="done", conn=conn,
            )
            record.spent_hours = sum(t.actual_minutes or 0 for t in done) / 60
            record.last_updated = now
            _with_derived(record)
            self._store.profitability.upsert(record, conn=conn)
            self._store.clients.mark_profitability_update(client_id, now, conn=conn)

        logger.info(
            "Client %d spent hours synced from %d done tasks: %.2fh",
            client_id, len(done), record.spent_hours,
        )
        return record

    def summary(self, user_id: int) -> PortfolioSummary:
        results = [
            ProfitabilityResult(
                revenue=r.revenue,
                profitability_percentage=r.profitability_percentage,
                remaining_hours=r.remaining_hours,
                is_profitable=r.is_profitable,
            )
            for r in self.list(user_id)
        ]
        return summarize_portfolio(results)
