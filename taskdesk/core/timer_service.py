"""Timer service — persists the wall-clock timer operations of core.timer."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import TYPE_CHECKING, Callable

from taskdesk.core import timer as timer_rules
from taskdesk.core.errors import NotFoundError
from taskdesk.data.models import Timer

if TYPE_CHECKING:
    from taskdesk.data.store import Store

logger = logging.getLogger(__name__)


class TimerService:
    def __init__(
        self, store: Store, clock: Callable[[], datetime] = timer_rules.utcnow,
    ) -> None:
        self._store = store
        self._clock = clock

    def start(
        self,
        user_id: int,
        task_id: int | None = None,
        client_id: int | None = None,
        description: str = "",
        billable: bool = True,
    ) -> Timer:
        """Start a timer on exactly one task or client owned by the user."""
        timer = timer_rules.new_timer(
            user_id, self._clock(), task_id=task_id, client_id=client_id,
            description=description, billable=billable,
        )
        with self._store.transaction() as conn:
            if task_id is not None:
                if self._store.tasks.get_task(task_id, user_id=user_id, conn=conn) is None:
                    raise NotFoundError(f"Task {task_id} not found")
            elif self._store.clients.get_client(client_id, user_id=user_id, conn=conn) is None:
                raise NotFoundError(f"Client {client_id} not found")
            return self._store.timers.add_timer(timer, conn=conn)

    def get(self, user_id: int, timer_id: int) -> Timer:
        timer = self._store.timers.get_timer(timer_id)
        # Someone else's timer is reported exactly like a missing one.
        if timer is None or timer.user_id != user_id:
            raise NotFoundError(f"Timer {timer_id} not found")
        return timer

    def list(self, user_id: int) -> list[Timer]:
        return self._store.timers.list_timers(user_id)

    def _transition(
        self, user_id: int, timer_id: int, op: Callable[[Timer, datetime], Timer],
    ) -> Timer:
        with self._store.transaction() as conn:
            timer = self._store.timers.get_timer(timer_id, conn=conn)
            if timer is None or timer.user_id != user_id:
                raise NotFoundError(f"Timer {timer_id} not found")
            op(timer, self._clock())
            self._store.timers.save_timer(timer, conn=conn)
        return timer

    def pause(self, user_id: int, timer_id: int) -> Timer:
        return self._transition(user_id, timer_id, timer_rules.pause_timer)

    def resume(self, user_id: int, timer_id: int) -> Timer:
        return self._transition(user_id, timer_id, timer_rules.resume_timer)

    def stop(self, user_id: int, timer_id: int) -> Timer:
        timer = self._transition(user_id, timer_id, timer_rules.stop_timer)
        logger.info("Timer #%d stopped: %ds worked", timer_id, timer.duration)
        return timer

    def delete(self, user_id: int, timer_id: int) -> None:
        with self._store.transaction() as conn:
            timer = self._store.timers.get_timer(timer_id, conn=conn)
            if timer is None or timer.user_id != user_id:
                raise NotFoundError(f"Timer {timer_id} not found")
            self._store.timers.delete_timer(timer_id, conn=conn)
        logger.info("Timer #%d deleted", timer_id)

    def current_duration(self, timer: Timer) -> int:
        return timer_rules.current_duration(timer, self._clock())
