from __future__ import annotations

import datetime as dt
import logging
import os
import sqlite3
import threading
import uuid
from dataclasses import dataclass
from typing import Dict, List, Optional, Set

from stet.errors import StoreError

logger = logging.getLogger('stet')


# -----------------------------
# Rows
# -----------------------------
@dataclass
class Task:
    id: str
    title: str
    description: str
    completed: bool = False


@dataclass
class TaskDefinition:
    id: str
    title: str
    description: str
    active: bool
    created_at: str


@dataclass
class JournalEntry:
    id: str
    entry_date: str
    content: str
    created_at: str = ""
    updated_at: str = ""

    @property
    def date(self) -> dt.date:
        return dt.date.fromisoformat(self.entry_date)


def new_id() -> str:
    return uuid.uuid4().hex


def _now() -> str:
    return dt.datetime.now().isoformat(sep=" ", timespec="seconds")


# -----------------------------
# DB
# -----------------------------
class Store:
    TASK_COLUMNS = ["id", "title", "description", "active", "deleted", "created_at"]
    CREATE_SQL = [
        """
        CREATE TABLE IF NOT EXISTS task_definitions (
            id TEXT PRIMARY KEY,
            title TEXT NOT NULL,
            description TEXT NOT NULL DEFAULT '',
            active INTEGER NOT NULL DEFAULT 1,
            deleted INTEGER NOT NULL DEFAULT 0,
            created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
        )
        """,
        """
        CREATE TABLE IF NOT EXISTS task_history (
            id TEXT PRIMARY KEY,
            task_id TEXT NOT NULL REFERENCES task_definitions(id),
            completed_date TEXT NOT NULL,
            UNIQUE(task_id, completed_date)
        )
        """,
        """
        CREATE TABLE IF NOT EXISTS journal_entries (
            id TEXT PRIMARY KEY,
            entry_date TEXT NOT NULL UNIQUE,
            content TEXT NOT NULL DEFAULT '',
            created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
            updated_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
        )
        """,
    ]
    # Columns added after the first schema; (name, DDL fragment)
    LATE_TASK_COLUMNS = [
        ("active", "INTEGER NOT NULL DEFAULT 1"),
        ("deleted", "INTEGER NOT NULL DEFAULT 0"),
    ]

    def __init__(self, path: str):
        self.path = path
        self.conn = sqlite3.connect(path, check_same_thread=False)
        self.conn.execute("PRAGMA journal_mode=WAL")
        self._lock = threading.Lock()
        self._migrate_if_needed()

    @classmethod
    def open(cls, path: str) -> "Store":
        """Open (creating parent directories) and migrate; any failure is a StoreError."""
        try:
            if path != ":memory:":
                parent = os.path.dirname(os.path.abspath(path))
                os.makedirs(parent, mode=0o700, exist_ok=True)
            store = cls(path)
        except (OSError, sqlite3.Error) as exc:
            raise StoreError(f"cannot open database {path}: {exc}") from exc
        logger.info("opened store %s", path)
        return store

    def close(self) -> None:
        with self._lock:
            self.conn.close()

    def _cols(self, table: str) -> List[str]:
        cur = self.conn.cursor()
        cur.execute(f"PRAGMA table_info({table})")
        return [r[1] for r in cur.fetchall()]

    def _idx(self) -> None:
        self.conn.execute("CREATE INDEX IF NOT EXISTS idx_history_date ON task_history(completed_date)")
        self.conn.execute("CREATE INDEX IF NOT EXISTS idx_journal_date ON journal_entries(entry_date)")

    def _migrate_if_needed(self) -> None:
        cur = self.conn.cursor()
        for ddl in self.CREATE_SQL:
            cur.execute(ddl)
        cols = self._cols("task_definitions")
        for name, decl in self.LATE_TASK_COLUMNS:
            if name not in cols:
                logger.info("migrating task_definitions: adding column %s", name)
                cur.execute(f"ALTER TABLE task_definitions ADD COLUMN {name} {decl}")
        self._idx()
        self.conn.commit()

    # --- Today ---
    def load_today_tasks(self, day: dt.date) -> List[Task]:
        """Active, non-deleted tasks in creation order with completion for `day`."""
        with self._lock:
            cur = self.conn.cursor()
            cur.execute(
                """
                SELECT td.id, td.title, td.description,
                       EXISTS(SELECT 1 FROM task_history th
                              WHERE th.task_id = td.id AND th.completed_date = ?)
                FROM task_definitions td
                WHERE td.active = 1 AND td.deleted = 0
                ORDER BY td.created_at, td.rowid
                """,
                (day.isoformat(),),
            )
            return [Task(r[0], r[1], r[2], bool(r[3])) for r in cur.fetchall()]

    def set_completion(self, task_id: str, day: dt.date, completed: bool) -> None:
        with self._lock:
            cur = self.conn.cursor()
            if completed:
                cur.execute(
                    "INSERT INTO task_history (id, task_id, completed_date) VALUES (?, ?, ?) "
                    "ON CONFLICT(task_id, completed_date) DO NOTHING",
                    (new_id(), task_id, day.isoformat()),
                )
            else:
                cur.execute(
                    "DELETE FROM task_history WHERE task_id=? AND completed_date=?",
                    (task_id, day.isoformat()),
                )
            self.conn.commit()

    # --- Task definitions ---
    def load_task_definitions(self) -> List[TaskDefinition]:
        with self._lock:
            cur = self.conn.cursor()
            cur.execute(
                "SELECT id, title, description, active, created_at FROM task_definitions "
                "WHERE deleted = 0 ORDER BY created_at, rowid"
            )
            return [TaskDefinition(r[0], r[1], r[2], bool(r[3]), r[4]) for r in cur.fetchall()]

    def add_task_definition(self, title: str, description: str = "") -> TaskDefinition:
        title = title.strip()
        if not title:
            raise ValueError("title is required")
        row = TaskDefinition(new_id(), title, description.strip(), True, _now())
        with self._lock:
            self.conn.execute(
                "INSERT INTO task_definitions (id, title, description, active, deleted, created_at) "
                "VALUES (?, ?, ?, 1, 0, ?)",
                (row.id, row.title, row.description, row.created_at),
            )
            self.conn.commit()
        return row

    def _update_definition(self, sql: str, params: tuple, task_id: str) -> None:
        with self._lock:
            cur = self.conn.cursor()
            cur.execute(sql, params)
            self.conn.commit()
            if cur.rowcount == 0:
                raise LookupError(f"task {task_id} not found")

    def update_task_definition(self, task_id: str, title: str, description: str) -> None:
        title = title.strip()
        if not title:
            raise ValueError("title is required")
        self._update_definition(
            "UPDATE task_definitions SET title=?, description=? WHERE id=? AND deleted=0",
            (title, description.strip(), task_id), task_id,
        )

    def set_task_active(self, task_id: str, active: bool) -> None:
        self._update_definition(
            "UPDATE task_definitions SET active=? WHERE id=? AND deleted=0",
            (1 if active else 0, task_id), task_id,
        )

    def delete_task_definition(self, task_id: str) -> None:
        """Soft delete: history rows stay so past heat-maps remain intact."""
        self._update_definition(
            "UPDATE task_definitions SET deleted=1 WHERE id=? AND deleted=0",
            (task_id,), task_id,
        )

    # --- History ---
    def load_active_tasks(self) -> List[Task]:
        with self._lock:
            cur = self.conn.cursor()
            cur.execute(
                "SELECT id, title, description FROM task_definitions "
                "WHERE active = 1 AND deleted = 0 ORDER BY created_at, rowid"
            )
            return [Task(r[0], r[1], r[2]) for r in cur.fetchall()]

    def load_completions(self, start: dt.date, end: dt.date) -> Dict[str, Set[str]]:
        """task id -> set of ISO dates completed within [start, end]."""
        out: Dict[str, Set[str]] = {}
        with self._lock:
            cur = self.conn.cursor()
            cur.execute(
                "SELECT task_id, completed_date FROM task_history "
                "WHERE completed_date >= ? AND completed_date <= ?",
                (start.isoformat(), end.isoformat()),
            )
            for task_id, day in cur.fetchall():
                out.setdefault(task_id, set()).add(day)
        return out

    # --- Journal ---
    def load_or_create_journal_entry(self, day: dt.date) -> JournalEntry:
        key = day.isoformat()
        with self._lock:
            cur = self.conn.cursor()
            cur.execute(
                "INSERT INTO journal_entries (id, entry_date, content, created_at, updated_at) "
                "VALUES (?, ?, '', ?, ?) ON CONFLICT(entry_date) DO NOTHING",
                (new_id(), key, _now(), _now()),
            )
            self.conn.commit()
            cur.execute(
                "SELECT id, entry_date, content, created_at, updated_at FROM journal_entries WHERE entry_date=?",
                (key,),
            )
            r = cur.fetchone()
        return JournalEntry(*r)

    def update_journal_content(self, entry_id: str, content: str) -> None:
        with self._lock:
            cur = self.conn.cursor()
            cur.execute(
                "UPDATE journal_entries SET content=?, updated_at=? WHERE id=?",
                (content, _now(), entry_id),
            )
            self.conn.commit()
            if cur.rowcount == 0:
                raise LookupError(f"journal entry {entry_id} not found")

    def load_journal_entries(self) -> List[JournalEntry]:
        with self._lock:
            cur = self.conn.cursor()
            cur.execute(
                "SELECT id, entry_date, content, created_at, updated_at FROM journal_entries "
                "ORDER BY entry_date DESC"
            )
            return [JournalEntry(*r) for r in cur.fetchall()]
