"""
TaskDesk — HTTP API.

FastAPI app over the services. The caller's identity arrives in the
X-User-Id header, set by the auth gateway in front of this process.

Error mapping:
    ValidationError -> 400, NotFoundError -> 404, anything else -> 500
    (logged with traceback; exception text only exposed when DEBUG is on).
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from dataclasses import asdict, dataclass
from datetime import datetime
from typing import Callable, Optional

from fastapi import APIRouter, Depends, FastAPI, Header, HTTPException, Query, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from taskdesk.api.schemas import (
    ActivityIn,
    ClientIn,
    ClientUpdate,
    ImpactApplyIn,
    ImpactIn,
    ObjectiveIn,
    ObjectiveUpdate,
    ProfitabilityIn,
    TaskCompleteIn,
    TaskIn,
    TaskUpdate,
    TimerIn,
    UserIn,
)
from taskdesk.config import settings
from taskdesk.core.client_service import ClientService
from taskdesk.core.errors import NotFoundError, ValidationError
from taskdesk.core.gamification import level_progress
from taskdesk.core.gamification_service import GamificationService
from taskdesk.core.objective_service import ObjectiveService
from taskdesk.core.profitability_service import ProfitabilityService
from taskdesk.core.task_service import ImpactUpdate, TaskService
from taskdesk.core.timer import utcnow
from taskdesk.core.timer_service import TimerService
from taskdesk.core.user_service import UserService
from taskdesk.data.models import Contact, Timer
from taskdesk.data.store import Store

logger = logging.getLogger(__name__)


@dataclass
class Services:
    """Every service, wired to one Store. Lives on app.state."""

    store: Store
    users: UserService
    clients: ClientService
    tasks: TaskService
    gamification: GamificationService
    profitability: ProfitabilityService
    timers: TimerService
    objectives: ObjectiveService

    @classmethod
    def build(cls, store: Store, clock: Callable[[], datetime] = utcnow) -> Services:
        gamification = GamificationService(store, clock)
        return cls(
            store=store,
            users=UserService(store, clock),
            clients=ClientService(store, clock),
            tasks=TaskService(store, gamification, clock),
            gamification=gamification,
            profitability=ProfitabilityService(store, clock),
            timers=TimerService(store, clock),
            objectives=ObjectiveService(store, clock),
        )


# ---------------------------------------------------------------------------
# Dependencies
# ---------------------------------------------------------------------------


def get_services(request: Request) -> Services:
    return request.app.state.services


def current_user_id(x_user_id: Optional[str] = Header(None, alias="X-User-Id")) -> int:
    """The authenticated caller. Missing or malformed identity is a 401."""
    if not x_user_id:
        raise HTTPException(status_code=401, detail="Missing X-User-Id header")
    try:
        user_id = int(x_user_id)
    except ValueError:
        raise HTTPException(status_code=401, detail="Invalid X-User-Id header")
    if user_id <= 0:
        raise HTTPException(status_code=401, detail="Invalid X-User-Id header")
    return user_id


def _timer_out(services: Services, timer: Timer) -> dict:
    return {**asdict(timer), "current_duration": services.timers.current_duration(timer)}


def _changes(payload) -> dict:
    """Only the fields the caller actually sent."""
    return payload.model_dump(exclude_unset=True)


router = APIRouter()


@router.get("/health")
def health():
    return {"status": "ok"}


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------


@router.post("/api/users", status_code=201)
def register_user(payload: UserIn, services: Services = Depends(get_services)):
    return asdict(services.users.register(payload.username, payload.email))


@router.get("/api/users/me")
def get_me(
    user_id: int = Depends(current_user_id),
    services: Services = Depends(get_services),
):
    user = services.users.get(user_id)
    return {**asdict(user), "progress": asdict(level_progress(user.gamification))}


# ---------------------------------------------------------------------------
# Clients
# ---------------------------------------------------------------------------


@router.get("/api/clients")
def list_clients(
    status: Optional[str] = Query(None, description="active | inactive | archived"),
    user_id: int = Depends(current_user_id),
    services: Services = Depends(get_services),
):
    return [asdict(c) for c in services.clients.list_clients(user_id, status=status)]


@router.post("/api/clients", status_code=201)
def create_client(
    payload: ClientIn,
    user_id: int = Depends(current_user_id),
    services: Services = Depends(get_services),
):
    client = services.clients.create_client(
        user_id,
        payload.name,
        description=payload.description,
        status=payload.status,
        contacts=[Contact(**c.model_dump()) for c in payload.contacts],
        notes=payload.notes,
        tags=payload.tags,
    )
    return asdict(client)


@router.get("/api/clients/{client_id}")
def get_client(
    client_id: int,
    user_id: int = Depends(current_user_id),
    services: Services = Depends(get_services),
):
    return asdict(services.clients.get_client(user_id, client_id))


@router.put("/api/clients/{client_id}")
def update_client(
    client_id: int,
    payload: ClientUpdate,
    user_id: int = Depends(current_user_id),
    services: Services = Depends(get_services),
):
    changes = _changes(payload)
    if "contacts" in changes:
        changes["contacts"] = [Contact(**c) for c in changes["contacts"] or []]
    if "tags" in changes:
        changes["tags"] = changes["tags"] or []
    return asdict(services.clients.update_client(user_id, client_id, changes))


@router.delete("/api/clients/{client_id}")
def delete_client(
    client_id: int,
    user_id: int = Depends(current_user_id),
    services: Services = Depends(get_services),
):
    return asdict(services.clients.delete_client(user_id, client_id))


@router.post("/api/clients/{client_id}/recount")
def recount_client(
    client_id: int,
    user_id: int = Depends(current_user_id),
    services: Services = Depends(get_services),
):
    return asdict(services.clients.recount_metrics(user_id, client_id))


# ---------------------------------------------------------------------------
# Tasks
# ---------------------------------------------------------------------------


@router.get("/api/tasks")
def list_tasks(
    client_id: Optional[int] = None,
    status: Optional[str] = None,
    user_id: int = Depends(current_user_id),
    services: Services = Depends(get_services),
):
    tasks = services.tasks.list_tasks(user_id, client_id=client_id, status=status)
    return [asdict(t) for t in tasks]


@router.post("/api/tasks", status_code=201)
def create_task(
    payload: TaskIn,
    user_id: int = Depends(current_user_id),
    services: Services = Depends(get_services),
):
    fields = payload.model_dump()
    return asdict(services.tasks.create_task(user_id, **fields))


@router.get("/api/tasks/{task_id}")
def get_task(
    task_id: int,
    user_id: int = Depends(current_user_id),
    services: Services = Depends(get_services),
):
    return asdict(services.tasks.get_task(user_id, task_id))


@router.put("/api/tasks/{task_id}")
def update_task(
    task_id: int,
    payload: TaskUpdate,
    user_id: int = Depends(current_user_id),
    services: Services = Depends(get_services),
):
    return asdict(services.tasks.update_task(user_id, task_id, _changes(payload)))


@router.delete("/api/tasks/{task_id}")
def delete_task(
    task_id: int,
    user_id: int = Depends(current_user_id),
    services: Services = Depends(get_services),
):
    services.tasks.delete_task(user_id, task_id)
    return {"deleted": task_id}


@router.post("/api/tasks/{task_id}/complete")
def complete_task(
    task_id: int,
    payload: Optional[TaskCompleteIn] = None,
    user_id: int = Depends(current_user_id),
    services: Services = Depends(get_services),
):
    actual = payload.actual_minutes if payload else None
    result = services.tasks.complete_task(user_id, task_id, actual_minutes=actual)
    return {"task": asdict(result.task), "rewards": asdict(result.rewards)}


# ---------------------------------------------------------------------------
# Task impact (80/20)
# ---------------------------------------------------------------------------


@router.get("/api/task-impact/high-impact")
def high_impact_tasks(
    user_id: int = Depends(current_user_id),
    services: Services = Depends(get_services),
):
    return [asdict(t) for t in services.tasks.high_impact_tasks(user_id)]


@router.get("/api/task-impact/analyze")
def analyze_impact(
    user_id: int = Depends(current_user_id),
    services: Services = Depends(get_services),
):
    analysis = services.tasks.analyze_impact(user_id)
    return {
        "all_tasks_with_scores": [
            {**asdict(s), "needs_change": s.needs_change}
            for s in analysis.all_tasks_with_scores
        ],
        "recommended_high_impact_tasks": [asdict(s) for s in analysis.recommended_high_impact_tasks],
        "other_tasks": [asdict(s) for s in analysis.other_tasks],
    }


@router.post("/api/task-impact/apply")
def apply_impact(
    payload: ImpactApplyIn,
    user_id: int = Depends(current_user_id),
    services: Services = Depends(get_services),
):
    updates = [ImpactUpdate(**u.model_dump()) for u in payload.updates]
    results = services.tasks.apply_impact_updates(user_id, updates)
    return {"results": [asdict(r) for r in results]}


@router.put("/api/task-impact/task/{task_id}")
def set_task_impact(
    task_id: int,
    payload: ImpactIn,
    user_id: int = Depends(current_user_id),
    services: Services = Depends(get_services),
):
    task = services.tasks.set_impact(
        user_id, task_id,
        impact_score=payload.impact_score,
        is_high_impact=payload.is_high_impact,
    )
    return asdict(task)


@router.get("/api/task-impact/client/{client_id}")
def client_impact(
    client_id: int,
    user_id: int = Depends(current_user_id),
    services: Services = Depends(get_services),
):
    stats, top = services.tasks.client_impact(user_id, client_id)
    return {"statistics": asdict(stats), "high_impact_tasks": [asdict(t) for t in top]}


# ---------------------------------------------------------------------------
# Profitability
# ---------------------------------------------------------------------------


@router.get("/api/profitability")
def list_profitability(
    user_id: int = Depends(current_user_id),
    services: Services = Depends(get_services),
):
    return [asdict(p) for p in services.profitability.list(user_id)]


# Declared before /{client_id} so "summary" is not parsed as an id.
@router.get("/api/profitability/summary")
def profitability_summary(
    user_id: int = Depends(current_user_id),
    services: Services = Depends(get_services),
):
    return asdict(services.profitability.summary(user_id))


@router.get("/api/profitability/{client_id}")
def get_profitability(
    client_id: int,
    user_id: int = Depends(current_user_id),
    services: Services = Depends(get_services),
):
    return asdict(services.profitability.get(user_id, client_id))


@router.put("/api/profitability/{client_id}")
def upsert_profitability(
    client_id: int,
    payload: ProfitabilityIn,
    user_id: int = Depends(current_user_id),
    services: Services = Depends(get_services),
):
    record = services.profitability.upsert(user_id, client_id, **payload.model_dump())
    return asdict(record)


@router.post("/api/profitability/{client_id}/sync-hours")
def sync_profitability_hours(
    client_id: int,
    user_id: int = Depends(current_user_id),
    services: Services = Depends(get_services),
):
    return asdict(services.profitability.sync_spent_hours(user_id, client_id))


# ---------------------------------------------------------------------------
# Timers
# ---------------------------------------------------------------------------


@router.get("/api/timers")
def list_timers(
    user_id: int = Depends(current_user_id),
    services: Services = Depends(get_services),
):
    return [_timer_out(services, t) for t in services.timers.list(user_id)]


@router.post("/api/timers", status_code=201)
def start_timer(
    payload: TimerIn,
    user_id: int = Depends(current_user_id),
    services: Services = Depends(get_services),
):
    timer = services.timers.start(user_id, **payload.model_dump())
    return _timer_out(services, timer)


@router.get("/api/timers/{timer_id}")
def get_timer(
    timer_id: int,
    user_id: int = Depends(current_user_id),
    services: Services = Depends(get_services),
):
    return _timer_out(services, services.timers.get(user_id, timer_id))


@router.delete("/api/timers/{timer_id}")
def delete_timer(
    timer_id: int,
    user_id: int = Depends(current_user_id),
    services: Services = Depends(get_services),
):
    services.timers.delete(user_id, timer_id)
    return {"deleted": timer_id}


@router.post("/api/timers/{timer_id}/{action}")
def timer_action(
    timer_id: int,
    action: str,
    user_id: int = Depends(current_user_id),
    services: Services = Depends(get_services),
):
    actions = {
        "pause": services.timers.pause,
        "resume": services.timers.resume,
        "stop": services.timers.stop,
    }
    if action not in actions:
        raise HTTPException(status_code=404, detail=f"Unknown timer action '{action}'")
    return _timer_out(services, actions[action](user_id, timer_id))


# ---------------------------------------------------------------------------
# Objectives
# ---------------------------------------------------------------------------


@router.get("/api/objectives")
def list_objectives(
    client_id: Optional[int] = None,
    user_id: int = Depends(current_user_id),
    services: Services = Depends(get_services),
):
    return [asdict(o) for o in services.objectives.list(user_id, client_id=client_id)]


@router.post("/api/objectives", status_code=201)
def create_objective(
    payload: ObjectiveIn,
    user_id: int = Depends(current_user_id),
    services: Services = Depends(get_services),
):
    return asdict(services.objectives.create(user_id, **payload.model_dump()))


@router.get("/api/objectives/{objective_id}")
def get_objective(
    objective_id: int,
    user_id: int = Depends(current_user_id),
    services: Services = Depends(get_services),
):
    return asdict(services.objectives.get(user_id, objective_id))


@router.put("/api/objectives/{objective_id}")
def update_objective(
    objective_id: int,
    payload: ObjectiveUpdate,
    user_id: int = Depends(current_user_id),
    services: Services = Depends(get_services),
):
    return asdict(services.objectives.update(user_id, objective_id, _changes(payload)))


@router.delete("/api/objectives/{objective_id}")
def delete_objective(
    objective_id: int,
    user_id: int = Depends(current_user_id),
    services: Services = Depends(get_services),
):
    services.objectives.delete(user_id, objective_id)
    return {"deleted": objective_id}


# ---------------------------------------------------------------------------
# Gamification
# ---------------------------------------------------------------------------


@router.get("/api/gamification/profile")
def gamification_profile(
    user_id: int = Depends(current_user_id),
    services: Services = Depends(get_services),
):
    profile = services.gamification.get_profile(user_id)
    return {**asdict(profile), "progress": asdict(level_progress(profile))}


@router.get("/api/gamification/activity")
def list_activity(
    limit: int = Query(20, ge=1, le=100),
    user_id: int = Depends(current_user_id),
    services: Services = Depends(get_services),
):
    return [asdict(a) for a in services.gamification.list_activity(user_id, limit=limit)]


@router.post("/api/gamification/activity", status_code=201)
def record_activity(
    payload: ActivityIn,
    user_id: int = Depends(current_user_id),
    services: Services = Depends(get_services),
):
    activity, outcome = services.gamification.record_activity(
        user_id, payload.type, payload.description,
    )
    return {"activity": asdict(activity), "rewards": asdict(outcome) if outcome else None}


@router.get("/api/gamification/badges")
def list_badges(
    user_id: int = Depends(current_user_id),
    services: Services = Depends(get_services),
):
    return [
        {**asdict(s.badge), "earned": s.earned, "earned_at": s.earned_at}
        for s in services.gamification.list_badges(user_id)
    ]


@router.post("/api/gamification/badges/{badge_id}/award")
def award_badge(
    badge_id: int,
    user_id: int = Depends(current_user_id),
    services: Services = Depends(get_services),
):
    return {"rewards": asdict(services.gamification.award_badge(user_id, badge_id))}


@router.get("/api/gamification/levels")
def list_levels(services: Services = Depends(get_services)):
    return [asdict(level) for level in services.gamification.list_levels()]


# ---------------------------------------------------------------------------
# App factory
# ---------------------------------------------------------------------------


def _register_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(ValidationError)
    async def _validation(request: Request, exc: ValidationError):
        return JSONResponse(status_code=400, content={"detail": str(exc)})

    @app.exception_handler(NotFoundError)
    async def _not_found(request: Request, exc: NotFoundError):
        return JSONResponse(status_code=404, content={"detail": str(exc)})

    @app.exception_handler(RequestValidationError)
    async def _bad_request(request: Request, exc: RequestValidationError):
        return JSONResponse(status_code=400, content={"detail": jsonable_encoder(exc.errors())})

    @app.exception_handler(Exception)
    async def _unexpected(request: Request, exc: Exception):
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        detail = str(exc) if settings.DEBUG else "Internal server error"
        return JSONResponse(status_code=500, content={"detail": detail})


def create_app(store: Store | None = None, clock: Callable[[], datetime] = utcnow) -> FastAPI:
    """Build the app. Without a store, one is opened from settings at startup."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if getattr(app.state, "services", None) is None:
            app.state.services = Services.build(Store.open(), clock)
        yield

    app = FastAPI(title="TaskDesk API", lifespan=lifespan)
    if store is not None:
        app.state.services = Services.build(store, clock)

    _register_error_handlers(app)
    app.include_router(router)
    return app
