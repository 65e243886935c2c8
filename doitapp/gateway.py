"""Persistence gateway: the storage contract the task store consumes.

:class:`PersistenceGateway` is the port; :class:`SqliteGateway` implements it
on a local SQLite file whose tables mirror the hosted ones.  Rows go in and
out as plain dicts with ISO-8601 timestamp strings.
"""

from __future__ import annotations

import json
import logging
import sqlite3
import uuid
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Any, Iterator, Optional, Protocol

from doitapp.errors import PersistenceError
from doitapp.models import TaskCategory
from doitapp.rows import Row

log = logging.getLogger(__name__)

_CATEGORY_COLUMNS = ",\n".join(
    f"    {c.value}_completed INTEGER NOT NULL DEFAULT 0,\n"
    f"    {c.value}_total     INTEGER NOT NULL DEFAULT 0"
    for c in TaskCategory
)

_SCHEMA = f"""
CREATE TABLE IF NOT EXISTS tasks (
    id                TEXT    PRIMARY KEY,
    user_id           TEXT    NOT NULL,
    title             TEXT    NOT NULL,
    description       TEXT,
    category          TEXT    NOT NULL,
    estimated_time    INTEGER NOT NULL,
    difficulty        INTEGER NOT NULL,
    importance        INTEGER NOT NULL,
    deadline          TEXT    NOT NULL,
    dependencies      TEXT    NOT NULL DEFAULT '[]',
    is_recurring      INTEGER NOT NULL DEFAULT 0,
    recurring_pattern TEXT,
    status            TEXT    NOT NULL DEFAULT 'pending',
    scheduled_start   TEXT,
    scheduled_end     TEXT,
    completed_at      TEXT,
    points_earned     INTEGER,
    created_at        TEXT    NOT NULL,
    updated_at        TEXT    NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_tasks_user ON tasks(user_id);

CREATE TABLE IF NOT EXISTS user_stats (
    user_id         TEXT    PRIMARY KEY,
    total_points    INTEGER NOT NULL DEFAULT 0,
    tasks_completed INTEGER NOT NULL DEFAULT 0,
    tasks_missed    INTEGER NOT NULL DEFAULT 0,
    current_streak  INTEGER NOT NULL DEFAULT 0,
    best_streak     INTEGER NOT NULL DEFAULT 0,
{_CATEGORY_COLUMNS},
    created_at      TEXT    NOT NULL,
    updated_at      TEXT    NOT NULL
);

CREATE TABLE IF NOT EXISTS points_history (
    id         TEXT    PRIMARY KEY,
    user_id    TEXT    NOT NULL,
    task_id    TEXT,
    points     INTEGER NOT NULL,
    reason     TEXT    NOT NULL,
    created_at TEXT    NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_points_user ON points_history(user_id);
"""

_TASK_COLUMNS = (
    "id",
    "title",
    "description",
    "category",
    "estimated_time",
    "difficulty",
    "importance",
    "deadline",
    "dependencies",
    "is_recurring",
    "recurring_pattern",
    "status",
    "scheduled_start",
    "scheduled_end",
    "completed_at",
    "points_earned",
    "created_at",
)

_STATS_COLUMNS = (
    "total_points",
    "tasks_completed",
    "tasks_missed",
    "current_streak",
    "best_streak",
) + tuple(f"{c.value}_{kind}" for c in TaskCategory for kind in ("completed", "total"))


class PersistenceGateway(Protocol):
    """Storage operations the task store depends on."""

    def list_tasks(self, user_id: str) -> list[Row]: ...

    def insert_task(self, user_id: str, fields: Row) -> Row: ...

    def patch_task(self, task_id: str, fields: Row) -> None: ...

    def delete_task(self, task_id: str) -> None: ...

    def get_stats(self, user_id: str) -> Optional[Row]: ...

    def patch_stats(self, user_id: str, fields: Row) -> None: ...

    def insert_points_record(self, user_id: str, record: Row) -> None: ...

    def list_points_records(self, user_id: str) -> list[Row]: ...

    def transaction(self) -> Any: ...


def get_connection(db_path: Path | str) -> sqlite3.Connection:
    """Open a connection and ensure the schema exists."""
    conn = sqlite3.connect(str(db_path))
    conn.row_factory = sqlite3.Row
    conn.executescript(_SCHEMA)
    return conn


def _now_iso() -> str:
    return datetime.now().isoformat()


def _checked_columns(fields: Row, allowed: tuple[str, ...]) -> list[str]:
    unknown = sorted(set(fields) - set(allowed))
    if unknown:
        raise PersistenceError(f"Unknown column(s): {', '.join(unknown)}")
    return [c for c in allowed if c in fields]


class SqliteGateway:
    """SQLite-backed gateway.

    Calls made inside :meth:`transaction` are committed together when the
    outermost block exits, or rolled back together if it raises.  Calls made
    outside a transaction commit immediately.
    """

    def __init__(self, db_path: Path | str) -> None:
        self._db_path = db_path
        try:
            self._conn = get_connection(db_path)
        except sqlite3.Error as exc:
            raise PersistenceError(f"Could not open database {db_path}: {exc}") from exc
        self._depth = 0
        log.debug("SqliteGateway ready db=%s", db_path)

    def close(self) -> None:
        self._conn.close()

    # ---- transactions ----

    @contextmanager
    def transaction(self) -> Iterator["SqliteGateway"]:
        self._depth += 1
        try:
            yield self
        except BaseException:
            self._depth -= 1
            if self._depth == 0:
                self._conn.rollback()
                log.warning("Transaction rolled back db=%s", self._db_path)
            raise
        self._depth -= 1
        if self._depth == 0:
            try:
                self._conn.commit()
            except sqlite3.Error as exc:
                self._conn.rollback()
                raise PersistenceError(f"Commit failed: {exc}", operation="commit") from exc

    def _execute(self, operation: str, sql: str, params: tuple[Any, ...] = ()) -> sqlite3.Cursor:
        try:
            cur = self._conn.execute(sql, params)
        except sqlite3.Error as exc:
            if self._depth == 0:
                self._conn.rollback()
            raise PersistenceError(f"{operation} failed: {exc}", operation=operation) from exc
        if self._depth == 0:
            self._conn.commit()
        return cur

    # ---- tasks ----

    @staticmethod
    def _task_row(row: sqlite3.Row) -> Row:
        data = {c: row[c] for c in _TASK_COLUMNS}
        data["dependencies"] = json.loads(data["dependencies"] or "[]")
        data["is_recurring"] = bool(data["is_recurring"])
        return data

    @staticmethod
    def _encode_task_fields(fields: Row) -> Row:
        encoded = dict(fields)
        if "dependencies" in encoded:
            encoded["dependencies"] = json.dumps(list(encoded["dependencies"] or []))
        if "is_recurring" in encoded:
            encoded["is_recurring"] = int(bool(encoded["is_recurring"]))
        return encoded

    def list_tasks(self, user_id: str) -> list[Row]:
        rows = self._execute(
            "list_tasks",
            "SELECT * FROM tasks WHERE user_id = ? ORDER BY created_at ASC, rowid ASC",
            (user_id,),
        ).fetchall()
        return [self._task_row(r) for r in rows]

    def insert_task(self, user_id: str, fields: Row) -> Row:
        """Insert a task, assigning ``id`` and ``created_at`` when absent."""
        data = self._encode_task_fields(fields)
        data.setdefault("id", uuid.uuid4().hex)
        data.setdefault("created_at", _now_iso())
        columns = _checked_columns(data, _TASK_COLUMNS)
        placeholders = ", ".join("?" for _ in columns)
        self._execute(
            "insert_task",
            f"INSERT INTO tasks (user_id, {', '.join(columns)}, updated_at) "
            f"VALUES (?, {placeholders}, ?)",
            (user_id, *(data[c] for c in columns), _now_iso()),
        )
        row = self._execute(
            "insert_task", "SELECT * FROM tasks WHERE id = ?", (data["id"],)
        ).fetchone()
        return self._task_row(row)

    def patch_task(self, task_id: str, fields: Row) -> None:
        data = self._encode_task_fields(fields)
        data.pop("id", None)
        columns = _checked_columns(data, _TASK_COLUMNS)
        if not columns:
            return
        assignments = ", ".join(f"{c} = ?" for c in columns)
        cur = self._execute(
            "patch_task",
            f"UPDATE tasks SET {assignments}, updated_at = ? WHERE id = ?",
            (*(data[c] for c in columns), _now_iso(), task_id),
        )
        if cur.rowcount == 0:
            raise PersistenceError(f"Task {task_id} does not exist", operation="patch_task")

    def delete_task(self, task_id: str) -> None:
        cur = self._execute("delete_task", "DELETE FROM tasks WHERE id = ?", (task_id,))
        if cur.rowcount == 0:
            raise PersistenceError(f"Task {task_id} does not exist", operation="delete_task")

    # ---- stats ----

    def get_stats(self, user_id: str) -> Optional[Row]:
        row = self._execute(
            "get_stats", "SELECT * FROM user_stats WHERE user_id = ?", (user_id,)
        ).fetchone()
        if row is None:
            return None
        return {c: row[c] for c in _STATS_COLUMNS}

    def patch_stats(self, user_id: str, fields: Row) -> None:
        """Upsert the given stats columns for ``user_id``."""
        columns = _checked_columns(fields, _STATS_COLUMNS)
        now = _now_iso()
        insert_cols = ", ".join(["user_id", *columns, "created_at", "updated_at"])
        placeholders = ", ".join("?" for _ in range(len(columns) + 3))
        updates = ", ".join([*(f"{c} = excluded.{c}" for c in columns), "updated_at = excluded.updated_at"])
        self._execute(
            "patch_stats",
            f"INSERT INTO user_stats ({insert_cols}) VALUES ({placeholders}) "
            f"ON CONFLICT(user_id) DO UPDATE SET {updates}",
            (user_id, *(fields[c] for c in columns), now, now),
        )

    # ---- points history ----

    def insert_points_record(self, user_id: str, record: Row) -> None:
        self._execute(
            "insert_points_record",
            "INSERT INTO points_history (id, user_id, task_id, points, reason, created_at) "
            "VALUES (?, ?, ?, ?, ?, ?)",
            (
                record["id"],
                user_id,
                record.get("task_id"),
                record["points"],
                record["reason"],
                record.get("created_at") or _now_iso(),
            ),
        )

    def list_points_records(self, user_id: str) -> list[Row]:
        """Ledger for ``user_id``, newest first."""
        rows = self._execute(
            "list_points_records",
            "SELECT * FROM points_history WHERE user_id = ? ORDER BY created_at DESC, rowid DESC",
            (user_id,),
        ).fetchall()
        return [
            {
                "id": r["id"],
                "task_id": r["task_id"],
                "points": r["points"],
                "reason": r["reason"],
                "created_at": r["created_at"],
            }
            for r in rows
        ]
