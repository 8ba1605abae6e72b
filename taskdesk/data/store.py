"""Store — every repository bound to one SQLite file.

Built once at startup and handed to the services, so a service can write
several collections inside a single ``transaction()``.
"""

from __future__ import annotations

import logging
import sqlite3
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Iterator

from taskdesk.data.db import (
    ActivityDB,
    ClientDB,
    ObjectiveDB,
    ProfitabilityDB,
    ReferenceDB,
    TaskDB,
    TimerDB,
    UserDB,
)

logger = logging.getLogger(__name__)


@dataclass
class Store:
    users: UserDB
    clients: ClientDB
    tasks: TaskDB
    timers: TimerDB
    profitability: ProfitabilityDB
    objectives: ObjectiveDB
    reference: ReferenceDB
    activities: ActivityDB

    @classmethod
    def open(cls, db_path: str | None = None) -> Store:
        """Create all tables (if missing) in db_path, default settings.DATABASE_PATH."""
        if db_path is None:
            from taskdesk.config import settings
            db_path = settings.DATABASE_PATH

        store = cls(
            users=UserDB(db_path),
            clients=ClientDB(db_path),
            tasks=TaskDB(db_path),
            timers=TimerDB(db_path),
            profitability=ProfitabilityDB(db_path),
            objectives=ObjectiveDB(db_path),
            reference=ReferenceDB(db_path),
            activities=ActivityDB(db_path),
        )
        logger.info("Store opened at %s", db_path)
        return store

    @property
    def db_path(self) -> str:
        return self.users.db_path

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """All repository calls given this connection commit or roll back together."""
        with self.users.transaction() as conn:
            yield conn
