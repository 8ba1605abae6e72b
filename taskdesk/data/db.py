"""
TaskDesk — SQLite document store.

One repository class per collection. Nested parts of a record (contacts,
tags, timer breaks, the gamification profile) are stored as JSON columns;
client metrics are plain integer columns so counters can be adjusted with
relative UPDATEs.

Every public method takes an optional ``conn``. When given, the call runs
inside the caller's transaction (see ``transaction()``); otherwise it opens
and commits its own.
"""

from __future__ import annotations

import json
import logging
import sqlite3
from contextlib import contextmanager
from dataclasses import asdict
from pathlib import Path
from typing import Iterator

from taskdesk.core.errors import NotFoundError
from taskdesk.data.models import (
    STATUS_COUNTERS,
    Activity,
    Badge,
    Break,
    Client,
    ClientMetrics,
    Contact,
    EarnedBadge,
    GamificationProfile,
    Level,
    Objective,
    Profitability,
    Task,
    Timer,
    User,
)

logger = logging.getLogger(__name__)


def _dump(value) -> str:
    return json.dumps(value)


def _load(raw: str | None, default):
    if raw is None or raw == "":
        return default
    return json.loads(raw)


class _BaseDB:
    """Connection handling shared by all repositories."""

    def __init__(self, db_path: str | None = None) -> None:
        if db_path is None:
            from taskdesk.config import settings
            db_path = settings.DATABASE_PATH

        self._db_path = db_path
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self._init_db()

    @property
    def db_path(self) -> str:
        return self._db_path

    def _connect(self) -> sqlite3.Connection:
        # Transactions are opened explicitly in transaction().
        conn = sqlite3.connect(self._db_path, isolation_level=None)
        conn.row_factory = sqlite3.Row
        return conn

    def _init_db(self) -> None:
        raise NotImplementedError

    @contextmanager
    def transaction(self, immediate: bool = True) -> Iterator[sqlite3.Connection]:
        """Open a connection whose writes commit together or not at all.

        With immediate=True the write lock is taken up front, so reads made
        inside the block cannot go stale before the writes land.
        """
        conn = self._connect()
        try:
            conn.execute("BEGIN IMMEDIATE" if immediate else "BEGIN")
            try:
                yield conn
            except BaseException:
                conn.rollback()
                raise
            conn.commit()
        finally:
            conn.close()

    @contextmanager
    def _session(self, conn: sqlite3.Connection | None) -> Iterator[sqlite3.Connection]:
        if conn is not None:
            yield conn
            return
        with self.transaction() as own:
            yield own

    @staticmethod
    def _update_columns(
        conn: sqlite3.Connection,
        table: str,
        allowed: frozenset[str],
        record_id: int,
        fields: dict,
    ) -> None:
        unknown = set(fields) - allowed
        if unknown:
            raise ValueError(f"Unknown {table} fields: {sorted(unknown)}")
        if not fields:
            return
        assignments = ", ".join(f"{col} = ?" for col in fields)
        conn.execute(
            f"UPDATE {table} SET {assignments} WHERE id = ?",
            (*fields.values(), record_id),
        )


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------


class UserDB(_BaseDB):
    """Registered users and their gamification ledger."""

    def _init_db(self) -> None:
        with self.transaction() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS users (
                    id            INTEGER PRIMARY KEY AUTOINCREMENT,
                    username      TEXT NOT NULL UNIQUE,
                    email         TEXT NOT NULL DEFAULT '',
                    created_at    TEXT NOT NULL,
                    gamification  TEXT NOT NULL
                )
            """)
        logger.debug("Users table initialized at %s", self._db_path)

    @staticmethod
    def _row_to_user(row: sqlite3.Row) -> User:
        raw = _load(row["gamification"], {})
        badges = [EarnedBadge(**b) for b in raw.pop("badges", [])]
        return User(
            id=row["id"],
            username=row["username"],
            email=row["email"],
            created_at=row["created_at"],
            gamification=GamificationProfile(badges=badges, **raw),
        )

    def add_user(
        self, username: str, email: str = "", created_at: str = "",
        conn: sqlite3.Connection | None = None,
    ) -> User:
        """Register a new user with a fresh level-1 profile."""
        profile = GamificationProfile()
        with self._session(conn) as c:
            cursor = c.execute(
                "INSERT INTO users (username, email, created_at, gamification) VALUES (?, ?, ?, ?)",
                (username, email, created_at, _dump(asdict(profile))),
            )
            user_id = cursor.lastrowid
        logger.info("User registered: #%d '%s'", user_id, username)
        return User(id=user_id, username=username, email=email,
                    created_at=created_at, gamification=profile)

    def get_user(self, user_id: int, conn: sqlite3.Connection | None = None) -> User | None:
        with self._session(conn) as c:
            row = c.execute("SELECT * FROM users WHERE id = ?", (user_id,)).fetchone()
        if row is None:
            return None
        return self._row_to_user(row)

    def find_by_username(self, username: str) -> User | None:
        with self._session(None) as c:
            row = c.execute("SELECT * FROM users WHERE username = ?", (username,)).fetchone()
        if row is None:
            return None
        return self._row_to_user(row)

    def save_gamification(
        self, user_id: int, profile: GamificationProfile,
        conn: sqlite3.Connection | None = None,
    ) -> None:
        with self._session(conn) as c:
            c.execute(
                "UPDATE users SET gamification = ? WHERE id = ?",
                (_dump(asdict(profile)), user_id),
            )


# ---------------------------------------------------------------------------
# Clients
# ---------------------------------------------------------------------------


class ClientDB(_BaseDB):
    """Clients with their task-count metrics."""

    _UPDATABLE = frozenset({"name", "description", "status", "contacts", "notes", "tags"})

    def _init_db(self) -> None:
        with self.transaction() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS clients (
                    id                         INTEGER PRIMARY KEY AUTOINCREMENT,
                    user_id                    INTEGER NOT NULL,
                    name                       TEXT    NOT NULL,
                    description                TEXT    NOT NULL DEFAULT '',
                    status                     TEXT    NOT NULL DEFAULT 'active',
                    contacts                   TEXT    NOT NULL DEFAULT '[]',
                    notes                      TEXT    NOT NULL DEFAULT '',
                    tags                       TEXT    NOT NULL DEFAULT '[]',
                    tasks_pending              INTEGER NOT NULL DEFAULT 0,
                    tasks_in_progress          INTEGER NOT NULL DEFAULT 0,
                    tasks_completed            INTEGER NOT NULL DEFAULT 0,
                    last_activity              TEXT,
                    last_profitability_update  TEXT,
                    created_at                 TEXT    NOT NULL
                )
            """)
        logger.debug("Clients table initialized at %s", self._db_path)

    @staticmethod
    def _row_to_client(row: sqlite3.Row) -> Client:
        return Client(
            id=row["id"],
            user_id=row["user_id"],
            name=row["name"],
            description=row["description"],
            status=row["status"],
            contacts=[Contact(**c) for c in _load(row["contacts"], [])],
            notes=row["notes"],
            tags=_load(row["tags"], []),
            metrics=ClientMetrics(
                tasks_pending=row["tasks_pending"],
                tasks_in_progress=row["tasks_in_progress"],
                tasks_completed=row["tasks_completed"],
                last_activity=row["last_activity"],
            ),
            last_profitability_update=row["last_profitability_update"],
            created_at=row["created_at"],
        )

    def add_client(
        self,
        user_id: int,
        name: str,
        created_at: str,
        description: str = "",
        status: str = "active",
        contacts: list[Contact] | None = None,
        notes: str = "",
        tags: list[str] | None = None,
        conn: sqlite3.Connection | None = None,
    ) -> Client:
        contacts = contacts or []
        tags = tags or []
        with self._session(conn) as c:
            cursor = c.execute(
                """
                INSERT INTO clients
                    (user_id, name, description, status, contacts, notes, tags,
                     last_activity, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    user_id, name, description, status,
                    _dump([asdict(ct) for ct in contacts]), notes, _dump(tags),
                    created_at, created_at,
                ),
            )
            client_id = cursor.lastrowid
        logger.info("Client added: #%d '%s' for user %d", client_id, name, user_id)
        return Client(
            id=client_id, user_id=user_id, name=name, description=description,
            status=status, contacts=contacts, notes=notes, tags=tags,
            metrics=ClientMetrics(last_activity=created_at), created_at=created_at,
        )

    def get_client(
        self, client_id: int, user_id: int | None = None,
        conn: sqlite3.Connection | None = None,
    ) -> Client | None:
        """Fetch a client, optionally only if it belongs to user_id."""
        query = "SELECT * FROM clients WHERE id = ?"
        params: list = [client_id]
        if user_id is not None:
            query += " AND user_id = ?"
            params.append(user_id)
        with self._session(conn) as c:
            row = c.execute(query, params).fetchone()
        if row is None:
            return None
        return self._row_to_client(row)

    def list_clients(self, user_id: int, status: str | None = None) -> list[Client]:
        query = "SELECT * FROM clients WHERE user_id = ?"
        params: list = [user_id]
        if status is not None:
            query += " AND status = ?"
            params.append(status)
        query += " ORDER BY name"
        with self._session(None) as c:
            rows = c.execute(query, params).fetchall()
        return [self._row_to_client(r) for r in rows]

    def update_client(
        self, client_id: int, fields: dict, conn: sqlite3.Connection | None = None,
    ) -> None:
        """Update descriptive fields. Metrics are not updatable here."""
        encoded = dict(fields)
        if "contacts" in encoded:
            encoded["contacts"] = _dump([asdict(ct) for ct in encoded["contacts"]])
        if "tags" in encoded:
            encoded["tags"] = _dump(encoded["tags"])
        with self._session(conn) as c:
            self._update_columns(c, "clients", self._UPDATABLE, client_id, encoded)

    def adjust_metric(
        self, client_id: int, task_status: str, delta: int, now: str,
        conn: sqlite3.Connection | None = None,
    ) -> None:
        """Add delta to the counter of task_status and stamp last_activity."""
        column = STATUS_COUNTERS[task_status]
        with self._session(conn) as c:
            cursor = c.execute(
                f"UPDATE clients SET {column} = {column} + ?, last_activity = ? WHERE id = ?",
                (delta, now, client_id),
            )
        if cursor.rowcount == 0:
            raise NotFoundError(f"Client {client_id} not found")

    def touch(self, client_id: int, now: str, conn: sqlite3.Connection | None = None) -> None:
        with self._session(conn) as c:
            c.execute("UPDATE clients SET last_activity = ? WHERE id = ?", (now, client_id))

    def mark_profitability_update(
        self, client_id: int, now: str, conn: sqlite3.Connection | None = None,
    ) -> None:
        with self._session(conn) as c:
            c.execute(
                "UPDATE clients SET last_profitability_update = ? WHERE id = ?",
                (now, client_id),
            )

    def set_metrics(
        self, client_id: int, metrics: ClientMetrics, conn: sqlite3.Connection | None = None,
    ) -> None:
        with self._session(conn) as c:
            c.execute(
                """
                UPDATE clients
                SET tasks_pending = ?, tasks_in_progress = ?, tasks_completed = ?
                WHERE id = ?
                """,
                (metrics.tasks_pending, metrics.tasks_in_progress,
                 metrics.tasks_completed, client_id),
            )

    def delete_client(self, client_id: int, conn: sqlite3.Connection | None = None) -> bool:
        with self._session(conn) as c:
            cursor = c.execute("DELETE FROM clients WHERE id = ?", (client_id,))
        deleted = cursor.rowcount > 0
        if deleted:
            logger.info("Client #%d deleted", client_id)
        return deleted


# ---------------------------------------------------------------------------
# Tasks
# ---------------------------------------------------------------------------


class TaskDB(_BaseDB):
    """Tasks, each owned by a user and attached to one client."""

    _UPDATABLE = frozenset({
        "client_id", "title", "description", "priority", "status", "category",
        "due_date", "estimated_minutes", "actual_minutes", "impact_score",
        "is_high_impact", "completed_at", "updated_at",
    })

    def _init_db(self) -> None:
        with self.transaction() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS tasks (
                    id                 INTEGER PRIMARY KEY AUTOINCREMENT,
                    user_id            INTEGER NOT NULL,
                    client_id          INTEGER NOT NULL,
                    title              TEXT    NOT NULL,
                    description        TEXT    NOT NULL DEFAULT '',
                    priority           TEXT    NOT NULL DEFAULT 'medium',
                    status             TEXT    NOT NULL DEFAULT 'todo',
                    category           TEXT    NOT NULL DEFAULT 'other',
                    due_date           TEXT,
                    estimated_minutes  INTEGER,
                    actual_minutes     INTEGER NOT NULL DEFAULT 0,
                    impact_score       REAL    NOT NULL DEFAULT 0,
                    is_high_impact     INTEGER NOT NULL DEFAULT 0,
                    completed_at       TEXT,
                    created_at         TEXT    NOT NULL,
                    updated_at         TEXT    NOT NULL
                )
            """)
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_tasks_client ON tasks (client_id, status)"
            )
        logger.debug("Tasks table initialized at %s", self._db_path)

    @staticmethod
    def _row_to_task(row: sqlite3.Row) -> Task:
        return Task(
            id=row["id"],
            user_id=row["user_id"],
            client_id=row["client_id"],
            title=row["title"],
            description=row["description"],
            priority=row["priority"],
            status=row["status"],
            category=row["category"],
            due_date=row["due_date"],
            estimated_minutes=row["estimated_minutes"],
            actual_minutes=row["actual_minutes"],
            impact_score=row["impact_score"],
            is_high_impact=bool(row["is_high_impact"]),
            completed_at=row["completed_at"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    def add_task(self, task: Task, conn: sqlite3.Connection | None = None) -> Task:
        """Insert a task; its id is assigned by the store."""
        with self._session(conn) as c:
            cursor = c.execute(
                """
                INSERT INTO tasks
                    (user_id, client_id, title, description, priority, status,
                     category, due_date, estimated_minutes, actual_minutes,
                     impact_score, is_high_impact, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    task.user_id, task.client_id, task.title, task.description,
                    task.priority, task.status, task.category, task.due_date,
                    task.estimated_minutes, task.actual_minutes, task.impact_score,
                    int(task.is_high_impact), task.created_at, task.updated_at,
                ),
            )
            task.id = cursor.lastrowid
        return task

    def get_task(
        self, task_id: int, user_id: int | None = None,
        conn: sqlite3.Connection | None = None,
    ) -> Task | None:
        query = "SELECT * FROM tasks WHERE id = ?"
        params: list = [task_id]
        if user_id is not None:
            query += " AND user_id = ?"
            params.append(user_id)
        with self._session(conn) as c:
            row = c.execute(query, params).fetchone()
        if row is None:
            return None
        return self._row_to_task(row)

    def list_tasks(
        self,
        user_id: int,
        client_id: int | None = None,
        status: str | None = None,
        conn: sqlite3.Connection | None = None,
    ) -> list[Task]:
        conditions = ["user_id = ?"]
        params: list = [user_id]
        if client_id is not None:
            conditions.append("client_id = ?")
            params.append(client_id)
        if status is not None:
            conditions.append("status = ?")
            params.append(status)
        query = "SELECT * FROM tasks WHERE " + " AND ".join(conditions) + " ORDER BY id"
        with self._session(conn) as c:
            rows = c.execute(query, params).fetchall()
        return [self._row_to_task(r) for r in rows]

    def update_task(
        self, task_id: int, fields: dict, conn: sqlite3.Connection | None = None,
    ) -> None:
        encoded = dict(fields)
        if "is_high_impact" in encoded:
            encoded["is_high_impact"] = int(bool(encoded["is_high_impact"]))
        with self._session(conn) as c:
            self._update_columns(c, "tasks", self._UPDATABLE, task_id, encoded)

    def delete_task(self, task_id: int, conn: sqlite3.Connection | None = None) -> bool:
        with self._session(conn) as c:
            cursor = c.execute("DELETE FROM tasks WHERE id = ?", (task_id,))
        return cursor.rowcount > 0

    def delete_for_client(self, client_id: int, conn: sqlite3.Connection | None = None) -> int:
        with self._session(conn) as c:
            cursor = c.execute("DELETE FROM tasks WHERE client_id = ?", (client_id,))
        return cursor.rowcount

    def count_by_status(
        self, client_id: int, conn: sqlite3.Connection | None = None,
    ) -> dict[str, int]:
        """Live task counts for a client, keyed by status."""
        with self._session(conn) as c:
            rows = c.execute(
                "SELECT status, COUNT(*) AS n FROM tasks WHERE client_id = ? GROUP BY status",
                (client_id,),
            ).fetchall()
        counts = {status: 0 for status in STATUS_COUNTERS}
        counts.update({r["status"]: r["n"] for r in rows})
        return counts


# ---------------------------------------------------------------------------
# Timers
# ---------------------------------------------------------------------------


class TimerDB(_BaseDB):
    """Wall-clock timers with their pause history."""

    def _init_db(self) -> None:
        with self.transaction() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS timers (
                    id           INTEGER PRIMARY KEY AUTOINCREMENT,
                    user_id      INTEGER NOT NULL,
                    task_id      INTEGER,
                    client_id    INTEGER,
                    description  TEXT    NOT NULL DEFAULT '',
                    billable     INTEGER NOT NULL DEFAULT 1,
                    start_time   TEXT    NOT NULL,
                    end_time     TEXT,
                    is_running   INTEGER NOT NULL DEFAULT 1,
                    paused_at    TEXT,
                    breaks       TEXT    NOT NULL DEFAULT '[]',
                    duration     INTEGER NOT NULL DEFAULT 0
                )
            """)
        logger.debug("Timers table initialized at %s", self._db_path)

    @staticmethod
    def _row_to_timer(row: sqlite3.Row) -> Timer:
        return Timer(
            id=row["id"],
            user_id=row["user_id"],
            task_id=row["task_id"],
            client_id=row["client_id"],
            description=row["description"],
            billable=bool(row["billable"]),
            start_time=row["start_time"],
            end_time=row["end_time"],
            is_running=bool(row["is_running"]),
            paused_at=row["paused_at"],
            breaks=[Break(**b) for b in _load(row["breaks"], [])],
            duration=row["duration"],
        )

    def add_timer(self, timer: Timer, conn: sqlite3.Connection | None = None) -> Timer:
        with self._session(conn) as c:
            cursor = c.execute(
                """
                INSERT INTO timers
                    (user_id, task_id, client_id, description, billable,
                     start_time, is_running, breaks, duration)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    timer.user_id, timer.task_id, timer.client_id, timer.description,
                    int(timer.billable), timer.start_time, int(timer.is_running),
                    _dump([asdict(b) for b in timer.breaks]), timer.duration,
                ),
            )
            timer.id = cursor.lastrowid
        logger.info("Timer #%d started for user %d", timer.id, timer.user_id)
        return timer

    def save_timer(self, timer: Timer, conn: sqlite3.Connection | None = None) -> None:
        """Persist the timer's mutable state (pause/resume/stop)."""
        with self._session(conn) as c:
            c.execute(
                """
                UPDATE timers
                SET end_time = ?, is_running = ?, paused_at = ?, breaks = ?, duration = ?
                WHERE id = ?
                """,
                (
                    timer.end_time, int(timer.is_running), timer.paused_at,
                    _dump([asdict(b) for b in timer.breaks]), timer.duration, timer.id,
                ),
            )

    def get_timer(self, timer_id: int, conn: sqlite3.Connection | None = None) -> Timer | None:
        with self._session(conn) as c:
            row = c.execute("SELECT * FROM timers WHERE id = ?", (timer_id,)).fetchone()
        if row is None:
            return None
        return self._row_to_timer(row)

    def list_timers(self, user_id: int) -> list[Timer]:
        """Newest first."""
        with self._session(None) as c:
            rows = c.execute(
                "SELECT * FROM timers WHERE user_id = ? ORDER BY start_time DESC, id DESC",
                (user_id,),
            ).fetchall()
        return [self._row_to_timer(r) for r in rows]

    def delete_timer(self, timer_id: int, conn: sqlite3.Connection | None = None) -> bool:
        with self._session(conn) as c:
            cursor = c.execute("DELETE FROM timers WHERE id = ?", (timer_id,))
        return cursor.rowcount > 0

    def delete_for_task(self, task_id: int, conn: sqlite3.Connection | None = None) -> int:
        with self._session(conn) as c:
            cursor = c.execute("DELETE FROM timers WHERE task_id = ?", (task_id,))
        return cursor.rowcount

    def delete_for_client(self, client_id: int, conn: sqlite3.Connection | None = None) -> int:
        """Delete timers on the client or on any of its tasks. Run before tasks go."""
        with self._session(conn) as c:
            cursor = c.execute(
                """
                DELETE FROM timers
                WHERE client_id = ?
                   OR task_id IN (SELECT id FROM tasks WHERE client_id = ?)
                """,
                (client_id, client_id),
            )
        return cursor.rowcount


# ---------------------------------------------------------------------------
# Profitability
# ---------------------------------------------------------------------------


class ProfitabilityDB(_BaseDB):
    """One profitability record per (user, client)."""

    def _init_db(self) -> None:
        with self.transaction() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS profitability (
                    id                        INTEGER PRIMARY KEY AUTOINCREMENT,
                    user_id                   INTEGER NOT NULL,
                    client_id                 INTEGER NOT NULL,
                    hourly_rate               REAL    NOT NULL,
                    target_hours              REAL    NOT NULL DEFAULT 0,
                    spent_hours               REAL    NOT NULL DEFAULT 0,
                    revenue                   REAL    NOT NULL DEFAULT 0,
                    profitability_percentage  REAL    NOT NULL DEFAULT 0,
                    remaining_hours           REAL    NOT NULL DEFAULT 0,
                    is_profitable             INTEGER NOT NULL DEFAULT 0,
                    notes                     TEXT    NOT NULL DEFAULT '',
                    last_updated              TEXT    NOT NULL,
                    UNIQUE (user_id, client_id)
                )
            """)
        logger.debug("Profitability table initialized at %s", self._db_path)

    @staticmethod
    def _row_to_profitability(row: sqlite3.Row) -> Profitability:
        return Profitability(
            id=row["id"],
            user_id=row["user_id"],
            client_id=row["client_id"],
            hourly_rate=row["hourly_rate"],
            target_hours=row["target_hours"],
            spent_hours=row["spent_hours"],
            revenue=row["revenue"],
            profitability_percentage=row["profitability_percentage"],
            remaining_hours=row["remaining_hours"],
            is_profitable=bool(row["is_profitable"]),
            notes=row["notes"],
            last_updated=row["last_updated"],
        )

    def get(
        self, user_id: int, client_id: int, conn: sqlite3.Connection | None = None,
    ) -> Profitability | None:
        with self._session(conn) as c:
            row = c.execute(
                "SELECT * FROM profitability WHERE user_id = ? AND client_id = ?",
                (user_id, client_id),
            ).fetchone()
        if row is None:
            return None
        return self._row_to_profitability(row)

    def list_for_user(self, user_id: int) -> list[Profitability]:
        with self._session(None) as c:
            rows = c.execute(
                "SELECT * FROM profitability WHERE user_id = ? ORDER BY client_id",
                (user_id,),
            ).fetchall()
        return [self._row_to_profitability(r) for r in rows]

    def upsert(
        self, record: Profitability, conn: sqlite3.Connection | None = None,
    ) -> Profitability:
        """Insert or replace the (user, client) record with all fields of record."""
        with self._session(conn) as c:
            c.execute(
                """
                INSERT INTO profitability
                    (user_id, client_id, hourly_rate, target_hours, spent_hours,
                     revenue, profitability_percentage, remaining_hours,
                     is_profitable, notes, last_updated)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT (user_id, client_id) DO UPDATE SET
                    hourly_rate = excluded.hourly_rate,
                    target_hours = excluded.target_hours,
                    spent_hours = excluded.spent_hours,
                    revenue = excluded.revenue,
                    profitability_percentage = excluded.profitability_percentage,
                    remaining_hours = excluded.remaining_hours,
                    is_profitable = excluded.is_profitable,
                    notes = excluded.notes,
                    last_updated = excluded.last_updated
                """,
                (
                    record.user_id, record.client_id, record.hourly_rate,
                    record.target_hours, record.spent_hours, record.revenue,
                    record.profitability_percentage, record.remaining_hours,
                    int(record.is_profitable), record.notes, record.last_updated,
                ),
            )
            row = c.execute(
                "SELECT id FROM profitability WHERE user_id = ? AND client_id = ?",
                (record.user_id, record.client_id),
            ).fetchone()
        record.id = row["id"]
        return record

    def delete_for_client(self, client_id: int, conn: sqlite3.Connection | None = None) -> int:
        with self._session(conn) as c:
            cursor = c.execute("DELETE FROM profitability WHERE client_id = ?", (client_id,))
        return cursor.rowcount


# ---------------------------------------------------------------------------
# Objectives
# ---------------------------------------------------------------------------


class ObjectiveDB(_BaseDB):
    """Client objectives with derived progress."""

    _UPDATABLE = frozenset({
        "client_id", "title", "description", "current_value", "target_value",
        "unit", "progress", "due_date", "is_high_impact", "status",
        "related_task_ids", "updated_at",
    })

    def _init_db(self) -> None:
        with self.transaction() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS objectives (
                    id                INTEGER PRIMARY KEY AUTOINCREMENT,
                    user_id           INTEGER NOT NULL,
                    client_id         INTEGER NOT NULL,
                    title             TEXT    NOT NULL,
                    description       TEXT    NOT NULL DEFAULT '',
                    current_value     REAL    NOT NULL DEFAULT 0,
                    target_value      REAL    NOT NULL DEFAULT 100,
                    unit              TEXT    NOT NULL DEFAULT '%',
                    progress          INTEGER NOT NULL DEFAULT 0,
                    due_date          TEXT,
                    is_high_impact    INTEGER NOT NULL DEFAULT 0,
                    status            TEXT    NOT NULL DEFAULT 'todo',
                    related_task_ids  TEXT    NOT NULL DEFAULT '[]',
                    created_at        TEXT    NOT NULL,
                    updated_at        TEXT    NOT NULL
                )
            """)
        logger.debug("Objectives table initialized at %s", self._db_path)

    @staticmethod
    def _row_to_objective(row: sqlite3.Row) -> Objective:
        return Objective(
            id=row["id"],
            user_id=row["user_id"],
            client_id=row["client_id"],
            title=row["title"],
            description=row["description"],
            current_value=row["current_value"],
            target_value=row["target_value"],
            unit=row["unit"],
            progress=row["progress"],
            due_date=row["due_date"],
            is_high_impact=bool(row["is_high_impact"]),
            status=row["status"],
            related_task_ids=_load(row["related_task_ids"], []),
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    def add_objective(
        self, objective: Objective, conn: sqlite3.Connection | None = None,
    ) -> Objective:
        with self._session(conn) as c:
            cursor = c.execute(
                """
                INSERT INTO objectives
                    (user_id, client_id, title, description, current_value,
                     target_value, unit, progress, due_date, is_high_impact,
                     status, related_task_ids, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    objective.user_id, objective.client_id, objective.title,
                    objective.description, objective.current_value,
                    objective.target_value, objective.unit, objective.progress,
                    objective.due_date, int(objective.is_high_impact),
                    objective.status, _dump(objective.related_task_ids),
                    objective.created_at, objective.updated_at,
                ),
            )
            objective.id = cursor.lastrowid
        logger.info("Objective added: #%d '%s'", objective.id, objective.title)
        return objective

    def get_objective(
        self, objective_id: int, user_id: int | None = None,
        conn: sqlite3.Connection | None = None,
    ) -> Objective | None:
        query = "SELECT * FROM objectives WHERE id = ?"
        params: list = [objective_id]
        if user_id is not None:
            query += " AND user_id = ?"
            params.append(user_id)
        with self._session(conn) as c:
            row = c.execute(query, params).fetchone()
        if row is None:
            return None
        return self._row_to_objective(row)

    def list_objectives(self, user_id: int, client_id: int | None = None) -> list[Objective]:
        query = "SELECT * FROM objectives WHERE user_id = ?"
        params: list = [user_id]
        if client_id is not None:
            query += " AND client_id = ?"
            params.append(client_id)
        query += " ORDER BY id"
        with self._session(None) as c:
            rows = c.execute(query, params).fetchall()
        return [self._row_to_objective(r) for r in rows]

    def update_objective(
        self, objective_id: int, fields: dict, conn: sqlite3.Connection | None = None,
    ) -> None:
        encoded = dict(fields)
        if "related_task_ids" in encoded:
            encoded["related_task_ids"] = _dump(encoded["related_task_ids"])
        if "is_high_impact" in encoded:
            encoded["is_high_impact"] = int(bool(encoded["is_high_impact"]))
        with self._session(conn) as c:
            self._update_columns(c, "objectives", self._UPDATABLE, objective_id, encoded)

    def delete_objective(self, objective_id: int, conn: sqlite3.Connection | None = None) -> bool:
        with self._session(conn) as c:
            cursor = c.execute("DELETE FROM objectives WHERE id = ?", (objective_id,))
        return cursor.rowcount > 0

    def delete_for_client(self, client_id: int, conn: sqlite3.Connection | None = None) -> int:
        with self._session(conn) as c:
            cursor = c.execute("DELETE FROM objectives WHERE client_id = ?", (client_id,))
        return cursor.rowcount


# ---------------------------------------------------------------------------
# Reference data: badges and levels
# ---------------------------------------------------------------------------


class ReferenceDB(_BaseDB):
    """Static badge and level definitions. Seeded, then read-only."""

    def _init_db(self) -> None:
        with self.transaction() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS badges (
                    id                    INTEGER PRIMARY KEY AUTOINCREMENT,
                    name                  TEXT    NOT NULL,
                    description           TEXT    NOT NULL,
                    category              TEXT    NOT NULL,
                    icon                  TEXT    NOT NULL DEFAULT '',
                    rarity                TEXT    NOT NULL DEFAULT 'common',
                    requirement_type      TEXT    NOT NULL DEFAULT '',
                    requirement_value     INTEGER NOT NULL DEFAULT 0,
                    reward_experience     INTEGER NOT NULL DEFAULT 0,
                    reward_action_points  INTEGER NOT NULL DEFAULT 0
                )
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS levels (
                    level                 INTEGER PRIMARY KEY,
                    name                  TEXT    NOT NULL,
                    experience_required   INTEGER NOT NULL,
                    reward_action_points  INTEGER NOT NULL DEFAULT 0
                )
            """)
        logger.debug("Reference tables initialized at %s", self._db_path)

    def add_badge(self, badge: Badge) -> Badge:
        with self._session(None) as c:
            cursor = c.execute(
                """
                INSERT INTO badges
                    (name, description, category, icon, rarity, requirement_type,
                     requirement_value, reward_experience, reward_action_points)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    badge.name, badge.description, badge.category, badge.icon,
                    badge.rarity, badge.requirement_type, badge.requirement_value,
                    badge.reward_experience, badge.reward_action_points,
                ),
            )
            badge.id = cursor.lastrowid
        return badge

    def get_badge(self, badge_id: int, conn: sqlite3.Connection | None = None) -> Badge | None:
        with self._session(conn) as c:
            row = c.execute("SELECT * FROM badges WHERE id = ?", (badge_id,)).fetchone()
        if row is None:
            return None
        return Badge(**dict(row))

    def list_badges(self) -> list[Badge]:
        with self._session(None) as c:
            rows = c.execute("SELECT * FROM badges ORDER BY id").fetchall()
        return [Badge(**dict(r)) for r in rows]

    def add_level(self, level: Level) -> Level:
        with self._session(None) as c:
            c.execute(
                """
                INSERT INTO levels (level, name, experience_required, reward_action_points)
                VALUES (?, ?, ?, ?)
                """,
                (level.level, level.name, level.experience_required, level.reward_action_points),
            )
        return level

    def list_levels(self) -> list[Level]:
        with self._session(None) as c:
            rows = c.execute("SELECT * FROM levels ORDER BY level").fetchall()
        return [Level(**dict(r)) for r in rows]


# ---------------------------------------------------------------------------
# Activity log
# ---------------------------------------------------------------------------


class ActivityDB(_BaseDB):
    """Append-only history of rewarded actions."""

    def _init_db(self) -> None:
        with self.transaction() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS activities (
                    id           INTEGER PRIMARY KEY AUTOINCREMENT,
                    user_id      INTEGER NOT NULL,
                    type         TEXT    NOT NULL,
                    description  TEXT    NOT NULL DEFAULT '',
                    points       INTEGER NOT NULL DEFAULT 0,
                    experience   INTEGER NOT NULL DEFAULT 0,
                    timestamp    TEXT    NOT NULL
                )
            """)
        logger.debug("Activities table initialized at %s", self._db_path)

    def add_activity(self, activity: Activity, conn: sqlite3.Connection | None = None) -> Activity:
        with self._session(conn) as c:
            cursor = c.execute(
                """
                INSERT INTO activities (user_id, type, description, points, experience, timestamp)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (
                    activity.user_id, activity.type, activity.description,
                    activity.points, activity.experience, activity.timestamp,
                ),
            )
            activity.id = cursor.lastrowid
        return activity

    def list_activity(self, user_id: int, limit: int = 20) -> list[Activity]:
        """Newest first."""
        with self._session(None) as c:
            rows = c.execute(
                "SELECT * FROM activities WHERE user_id = ? ORDER BY timestamp DESC, id DESC LIMIT ?",
                (user_id, limit),
            ).fetchall()
        return [Activity(**dict(r)) for r in rows]
