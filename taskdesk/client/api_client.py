"""TaskDesk HTTP client — async access to the API for dashboards and scripts.

Reads (GET) are retried on recoverable failures: 5xx responses, transport
errors and timeouts. Backoff is exponential with jitter, capped by
API_BACKOFF_MAX_SECONDS. Writes are sent once; 4xx responses are never
retried. Anything that still fails surfaces as ApiError.
"""

from __future__ import annotations

import asyncio
import logging
import random
from typing import Any, Awaitable, Callable

import httpx

from taskdesk.config import settings

logger = logging.getLogger(__name__)


class ApiError(Exception):
    """Non-2xx response (or no response at all, status_code 0)."""

    def __init__(self, status_code: int, message: str) -> None:
        super().__init__(f"{status_code}: {message}")
        self.status_code = status_code
        self.message = message


def _error_message(resp: httpx.Response) -> str:
    try:
        detail = resp.json().get("detail")
    except ValueError:
        detail = None
    return str(detail) if detail else resp.reason_phrase or "request failed"


class TaskDeskClient:
    def __init__(
        self,
        user_id: int,
        base_url: str | None = None,
        timeout: float | None = None,
        max_retries: int | None = None,
        backoff_base: float | None = None,
        backoff_max: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self.user_id = user_id
        self._max_retries = settings.API_MAX_RETRIES if max_retries is None else max_retries
        self._backoff_base = (
            settings.API_BACKOFF_BASE_SECONDS if backoff_base is None else backoff_base
        )
        self._backoff_max = settings.API_BACKOFF_MAX_SECONDS if backoff_max is None else backoff_max
        self._sleep = sleep
        self._http = httpx.AsyncClient(
            base_url=base_url or settings.API_BASE_URL,
            timeout=settings.API_TIMEOUT_SECONDS if timeout is None else timeout,
            headers={"X-User-Id": str(user_id)},
            transport=transport,
        )

    async def __aenter__(self) -> TaskDeskClient:
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._http.aclose()

    def _backoff(self, attempt: int) -> float:
        delay = min(self._backoff_max, self._backoff_base * 2 ** attempt)
        return delay + random.uniform(0, self._backoff_base)

    async def _request(
        self,
        method: str,
        path: str,
        json: Any = None,
        params: dict | None = None,
    ) -> Any:
        retries = self._max_retries if method == "GET" else 0
        attempt = 0
        while True:
            try:
                resp = await self._http.request(method, path, json=json, params=params)
            except httpx.TransportError as exc:
                # TimeoutException is a TransportError
                if attempt >= retries:
                    raise ApiError(0, f"{method} {path} failed: {exc}") from exc
                reason = type(exc).__name__
            else:
                if resp.status_code < 400:
                    return resp.json()
                if resp.status_code < 500 or attempt >= retries:
                    raise ApiError(resp.status_code, _error_message(resp))
                reason = f"HTTP {resp.status_code}"

            delay = self._backoff(attempt)
            attempt += 1
            logger.warning(
                "%s %s: %s, retry %d/%d in %.2fs",
                method, path, reason, attempt, retries, delay,
            )
            await self._sleep(delay)

    # -- users / health ------------------------------------------------------

    async def health(self) -> dict:
        return await self._request("GET", "/health")

    async def register_user(self, username: str, email: str = "") -> dict:
        return await self._request("POST", "/api/users", json={"username": username, "email": email})

    async def get_me(self) -> dict:
        return await self._request("GET", "/api/users/me")

    # -- clients -------------------------------------------------------------

    async def list_clients(self, status: str | None = None) -> list[dict]:
        params = {"status": status} if status else None
        return await self._request("GET", "/api/clients", params=params)

    async def get_client(self, client_id: int) -> dict:
        return await self._request("GET", f"/api/clients/{client_id}")

    async def create_client(self, name: str, **fields) -> dict:
        return await self._request("POST", "/api/clients", json={"name": name, **fields})

    async def update_client(self, client_id: int, **changes) -> dict:
        return await self._request("PUT", f"/api/clients/{client_id}", json=changes)

    async def delete_client(self, client_id: int) -> dict:
        return await self._request("DELETE", f"/api/clients/{client_id}")

    async def recount_client(self, client_id: int) -> dict:
        return await self._request("POST", f"/api/clients/{client_id}/recount")

    # -- tasks ---------------------------------------------------------------

    async def list_tasks(self, client_id: int | None = None, status: str | None = None) -> list[dict]:
        params = {k: v for k, v in {"client_id": client_id, "status": status}.items() if v is not None}
        return await self._request("GET", "/api/tasks", params=params or None)

    async def get_task(self, task_id: int) -> dict:
        return await self._request("GET", f"/api/tasks/{task_id}")

    async def create_task(self, client_id: int, title: str, **fields) -> dict:
        return await self._request(
            "POST", "/api/tasks", json={"client_id": client_id, "title": title, **fields},
        )

    async def update_task(self, task_id: int, **changes) -> dict:
        return await self._request("PUT", f"/api/tasks/{task_id}", json=changes)

    async def delete_task(self, task_id: int) -> dict:
        return await self._request("DELETE", f"/api/tasks/{task_id}")

    async def complete_task(self, task_id: int, actual_minutes: int | None = None) -> dict:
        """Returns {"task": ..., "rewards": {"points", "experience", "level_up", ...}}."""
        return await self._request(
            "POST", f"/api/tasks/{task_id}/complete", json={"actual_minutes": actual_minutes},
        )

    # -- task impact ---------------------------------------------------------

    async def high_impact_tasks(self) -> list[dict]:
        return await self._request("GET", "/api/task-impact/high-impact")

    async def analyze_impact(self) -> dict:
        return await self._request("GET", "/api/task-impact/analyze")

    async def apply_impact(self, updates: list[dict]) -> dict:
        return await self._request("POST", "/api/task-impact/apply", json={"updates": updates})

    async def set_task_impact(
        self, task_id: int, impact_score: float | None = None, is_high_impact: bool | None = None,
    ) -> dict:
        return await self._request(
            "PUT", f"/api/task-impact/task/{task_id}",
            json={"impact_score": impact_score, "is_high_impact": is_high_impact},
        )

    async def client_impact(self, client_id: int) -> dict:
        return await self._request("GET", f"/api/task-impact/client/{client_id}")

    # -- profitability -------------------------------------------------------

    async def list_profitability(self) -> list[dict]:
        return await self._request("GET", "/api/profitability")

    async def profitability_summary(self) -> dict:
        return await self._request("GET", "/api/profitability/summary")

    async def get_profitability(self, client_id: int) -> dict:
        return await self._request("GET", f"/api/profitability/{client_id}")

    async def save_profitability(
        self,
        client_id: int,
        hourly_rate: float,
        target_hours: float = 0.0,
        spent_hours: float = 0.0,
        notes: str = "",
    ) -> dict:
        return await self._request(
            "PUT", f"/api/profitability/{client_id}",
            json={
                "hourly_rate": hourly_rate,
                "target_hours": target_hours,
                "spent_hours": spent_hours,
                "notes": notes,
            },
        )

    async def sync_spent_hours(self, client_id: int) -> dict:
        return await self._request("POST", f"/api/profitability/{client_id}/sync-hours")

    # -- timers --------------------------------------------------------------

    async def list_timers(self) -> list[dict]:
        return await self._request("GET", "/api/timers")

    async def start_timer(
        self,
        task_id: int | None = None,
        client_id: int | None = None,
        description: str = "",
        billable: bool = True,
    ) -> dict:
        return await self._request(
            "POST", "/api/timers",
            json={
                "task_id": task_id,
                "client_id": client_id,
                "description": description,
                "billable": billable,
            },
        )

    async def timer_action(self, timer_id: int, action: str) -> dict:
        """action is one of pause, resume, stop."""
        return await self._request("POST", f"/api/timers/{timer_id}/{action}")

    async def delete_timer(self, timer_id: int) -> dict:
        return await self._request("DELETE", f"/api/timers/{timer_id}")

    # -- objectives ----------------------------------------------------------

    async def list_objectives(self, client_id: int | None = None) -> list[dict]:
        params = {"client_id": client_id} if client_id is not None else None
        return await self._request("GET", "/api/objectives", params=params)

    async def create_objective(self, client_id: int, title: str, **fields) -> dict:
        return await self._request(
            "POST", "/api/objectives", json={"client_id": client_id, "title": title, **fields},
        )

    async def update_objective(self, objective_id: int, **changes) -> dict:
        return await self._request("PUT", f"/api/objectives/{objective_id}", json=changes)

    async def delete_objective(self, objective_id: int) -> dict:
        return await self._request("DELETE", f"/api/objectives/{objective_id}")

    # -- gamification --------------------------------------------------------

    async def get_profile(self) -> dict:
        return await self._request("GET", "/api/gamification/profile")

    async def list_activity(self, limit: int = 20) -> list[dict]:
        return await self._request("GET", "/api/gamification/activity", params={"limit": limit})

    async def list_badges(self) -> list[dict]:
        return await self._request("GET", "/api/gamification/badges")

    async def award_badge(self, badge_id: int) -> dict:
        return await self._request("POST", f"/api/gamification/badges/{badge_id}/award")

    async def list_levels(self) -> list[dict]:
        return await self._request("GET", "/api/gamification/levels")
