"""Dashboard state — the client-side cache behind a TaskDesk dashboard.

One DashboardState is opened per signed-in user and closed on shutdown.
It keeps the last known tasks, clients, profitability records, impact
analysis and gamification profile, and folds every mutation response back
into those caches so views do not have to refetch everything.
"""

from __future__ import annotations

import asyncio
import logging

from taskdesk.client.api_client import TaskDeskClient
from taskdesk.core.profitability import ProfitabilityResult, calculate_profitability

logger = logging.getLogger(__name__)


class DashboardState:
    def __init__(self, client: TaskDeskClient) -> None:
        self._client = client
        self.tasks: dict[int, dict] = {}
        self.clients: dict[int, dict] = {}
        self.profitability: dict[int, dict] = {}   # keyed by client_id
        self.impact: dict | None = None
        self.profile: dict | None = None
        self.last_rewards: dict | None = None
        self.closed = False

    @classmethod
    async def open(cls, user_id: int, **client_kwargs) -> DashboardState:
        """Connect for user_id and load every cache."""
        state = cls(TaskDeskClient(user_id, **client_kwargs))
        try:
            await state.refresh()
        except Exception:
            await state.close()
            raise
        return state

    async def close(self) -> None:
        if self.closed:
            return
        await self._client.aclose()
        self.closed = True
        logger.info("Dashboard state closed for user %d", self._client.user_id)

    async def refresh(self) -> None:
        tasks, clients, profitability, profile, impact = await asyncio.gather(
            self._client.list_tasks(),
            self._client.list_clients(),
            self._client.list_profitability(),
            self._client.get_profile(),
            self._client.analyze_impact(),
        )
        self.tasks = {t["id"]: t for t in tasks}
        self.clients = {c["id"]: c for c in clients}
        self.profitability = {p["client_id"]: p for p in profitability}
        self.profile = profile
        self.impact = impact
        logger.info(
            "Dashboard loaded: %d tasks, %d clients, %d profitability records",
            len(self.tasks), len(self.clients), len(self.profitability),
        )

    # -- derived views -------------------------------------------------------

    @property
    def high_impact_tasks(self) -> list[dict]:
        """Open tasks flagged high-impact, highest score first."""
        flagged = [t for t in self.tasks.values() if t["is_high_impact"] and t["status"] != "done"]
        return sorted(flagged, key=lambda t: (-t["impact_score"], t["id"]))

    def tasks_for_client(self, client_id: int) -> list[dict]:
        return [t for t in self.tasks.values() if t["client_id"] == client_id]

    @staticmethod
    def preview_profitability(
        hourly_rate: float, spent_hours: float, target_hours: float,
    ) -> ProfitabilityResult:
        """What the server will compute for these inputs, before saving."""
        return calculate_profitability(hourly_rate, spent_hours, target_hours)

    # -- mutations -----------------------------------------------------------

    async def _reload_client(self, client_id: int) -> None:
        self.clients[client_id] = await self._client.get_client(client_id)

    async def create_client(self, name: str, **fields) -> dict:
        client = await self._client.create_client(name, **fields)
        self.clients[client["id"]] = client
        return client

    async def delete_client(self, client_id: int) -> dict:
        result = await self._client.delete_client(client_id)
        self.clients.pop(client_id, None)
        self.profitability.pop(client_id, None)
        self.tasks = {k: t for k, t in self.tasks.items() if t["client_id"] != client_id}
        self.impact = None
        return result

    async def create_task(self, client_id: int, title: str, **fields) -> dict:
        task = await self._client.create_task(client_id, title, **fields)
        self.tasks[task["id"]] = task
        self.impact = None
        await self._reload_client(client_id)
        return task

    async def update_task(self, task_id: int, **changes) -> dict:
        previous = self.tasks.get(task_id)
        task = await self._client.update_task(task_id, **changes)
        self.tasks[task_id] = task
        self.impact = None
        await self._reload_client(task["client_id"])
        if previous is not None and previous["client_id"] != task["client_id"]:
            await self._reload_client(previous["client_id"])
        return task

    async def complete_task(self, task_id: int, actual_minutes: int | None = None) -> dict:
        """Complete a task; returns the rewards (points, experience, level_up)."""
        result = await self._client.complete_task(task_id, actual_minutes=actual_minutes)
        task = result["task"]
        self.tasks[task_id] = task
        self.last_rewards = result["rewards"]
        await self._reload_client(task["client_id"])
        self.profile = await self._client.get_profile()
        if self.last_rewards["level_up"]:
            logger.info("Level up! Now level %d", self.last_rewards["level"])
        return self.last_rewards

    async def delete_task(self, task_id: int) -> None:
        await self._client.delete_task(task_id)
        task = self.tasks.pop(task_id, None)
        self.impact = None
        if task is not None:
            await self._reload_client(task["client_id"])

    async def save_profitability(
        self,
        client_id: int,
        hourly_rate: float,
        target_hours: float = 0.0,
        spent_hours: float = 0.0,
        notes: str = "",
    ) -> dict:
        record = await self._client.save_profitability(
            client_id, hourly_rate, target_hours=target_hours,
            spent_hours=spent_hours, notes=notes,
        )
        self.profitability[client_id] = record
        return record

    async def analyze_impact(self) -> dict:
        self.impact = await self._client.analyze_impact()
        return self.impact

    async def apply_impact(self) -> list[dict]:
        """Push the current recommendations for every task whose flag would change.

        Per-item failures are reported in the returned results; the tasks
        that did update are folded into the cache either way.
        """
        analysis = self.impact or await self.analyze_impact()
        updates = [
            {
                "task_id": s["task_id"],
                "is_high_impact": s["should_be_high_impact"],
                "impact_score": s["recommended_impact_score"],
            }
            for s in analysis["all_tasks_with_scores"]
            if s["is_currently_high_impact"] != s["should_be_high_impact"]
        ]
        if not updates:
            return []

        results = (await self._client.apply_impact(updates))["results"]
        for r in results:
            if r["success"]:
                self.tasks[r["task_id"]] = r["task"]
            else:
                logger.warning("Impact update for task %d failed: %s", r["task_id"], r["error"])
        await self.analyze_impact()
        return results
