"""Time-tracking timer arithmetic — pure business logic.

A timer is wall-clock based: start/pause/stop only record timestamps, and
the current duration is computed on read. There is no ticking in-process.

Invariant: once stopped, duration = elapsed seconds - sum of break durations.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from taskdesk.core.errors import ValidationError
from taskdesk.data.models import Break, Timer

logger = logging.getLogger(__name__)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def to_iso(dt: datetime) -> str:
    return dt.isoformat()


def parse_iso(raw: str) -> datetime:
    """Parse an ISO timestamp; naive values are taken as UTC."""
    dt = datetime.fromisoformat(raw)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def _seconds_between(start: str, end: datetime) -> int:
    return max(0, int((end - parse_iso(start)).total_seconds()))


def new_timer(
    user_id: int,
    now: datetime,
    task_id: int | None = None,
    client_id: int | None = None,
    description: str = "",
    billable: bool = True,
) -> Timer:
    """Build a running timer bound to exactly one of task / client."""
    if (task_id is None) == (client_id is None):
        raise ValidationError("a timer needs exactly one of task_id or client_id")

    return Timer(
        id=0,
        user_id=user_id,
        task_id=task_id,
        client_id=client_id,
        description=description,
        billable=billable,
        start_time=to_iso(now),
        is_running=True,
    )


def pause_timer(timer: Timer, now: datetime) -> Timer:
    """Pause a running timer. No-op when already paused or stopped."""
    if timer.is_stopped or not timer.is_running:
        return timer
    timer.paused_at = to_iso(now)
    timer.is_running = False
    return timer


def _close_pause(timer: Timer, now: datetime) -> None:
    if timer.paused_at is None:
        return
    timer.breaks.append(
        Break(
            start=timer.paused_at,
            end=to_iso(now),
            duration=_seconds_between(timer.paused_at, now),
        )
    )
    timer.paused_at = None


def resume_timer(timer: Timer, now: datetime) -> Timer:
    """Resume a paused timer, recording the pause as a break."""
    if timer.is_stopped:
        raise ValidationError("cannot resume a stopped timer")
    if timer.is_running:
        return timer
    _close_pause(timer, now)
    timer.is_running = True
    return timer


def stop_timer(timer: Timer, now: datetime) -> Timer:
    """Stop the timer and freeze its duration."""
    if timer.is_stopped:
        raise ValidationError("timer is already stopped")
    _close_pause(timer, now)
    timer.end_time = to_iso(now)
    timer.is_running = False
    timer.duration = max(0, _seconds_between(timer.start_time, now) - total_break_seconds(timer))
    logger.debug("Timer #%d stopped after %ds", timer.id, timer.duration)
    return timer


def total_break_seconds(timer: Timer) -> int:
    return sum(b.duration for b in timer.breaks)


def current_duration(timer: Timer, now: datetime) -> int:
    """Worked seconds so far; the frozen duration once stopped."""
    if timer.is_stopped:
        return timer.duration

    worked = _seconds_between(timer.start_time, now) - total_break_seconds(timer)
    if timer.paused_at is not None:
        worked -= _seconds_between(timer.paused_at, now)
    return max(0, worked)
