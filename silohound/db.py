from __future__ import annotations

import os
import sqlite3
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Iterable

from .settings import settings


class ProjectExists(Exception):
    pass


def utc_now() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def _resolve_db_path() -> str:
    """Return a file path usable by sqlite.

    If the configured path is an existing directory the database file is
    placed inside it. Missing parent directories are created.
    """

    p = os.path.abspath(os.path.expanduser(settings.db_path))

    if os.path.isdir(p):
        p = os.path.join(p, "projects.db")

    parent = os.path.dirname(p)
    if parent and not os.path.exists(parent):
        os.makedirs(parent, exist_ok=True)

    return p


def connect() -> sqlite3.Connection:
    conn = sqlite3.connect(_resolve_db_path(), check_same_thread=False)
    conn.row_factory = sqlite3.Row
    return conn


def init_db() -> None:
    """Create tables if they do not exist."""
    with connect() as conn:
        conn.executescript(
            """
            CREATE TABLE IF NOT EXISTS projects (
              id INTEGER PRIMARY KEY AUTOINCREMENT,
              name TEXT NOT NULL UNIQUE,
              path TEXT NOT NULL,
              created_at TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS events (
              id INTEGER PRIMARY KEY AUTOINCREMENT,
              ts TEXT NOT NULL,
              level TEXT NOT NULL,
              project TEXT,
              role TEXT,
              message TEXT NOT NULL
            );

            CREATE INDEX IF NOT EXISTS idx_events_ts ON events(ts);
            CREATE INDEX IF NOT EXISTS idx_events_project ON events(project);
            """
        )


def log_event(level: str, message: str, project: str | None = None, role: str | None = None) -> None:
    init_db()
    with connect() as conn:
        conn.execute(
            "INSERT INTO events (ts, level, project, role, message) VALUES (?, ?, ?, ?, ?)",
            (utc_now(), level.upper(), project, role, message),
        )


@dataclass(frozen=True)
class ProjectRow:
    id: int
    name: str
    path: str
    created_at: str


def _rows_to_dataclass(rows: Iterable[sqlite3.Row], cls: Any) -> list[Any]:
    out: list[Any] = []
    for r in rows:
        out.append(cls(**dict(r)))
    return out


def add_project(name: str, path: str) -> ProjectRow:
    init_db()
    with connect() as conn:
        try:
            conn.execute(
                "INSERT INTO projects (name, path, created_at) VALUES (?, ?, ?)",
                (name, path, utc_now()),
            )
        except sqlite3.IntegrityError as e:
            raise ProjectExists(f"Project '{name}' is already registered.") from e
        row = conn.execute("SELECT * FROM projects WHERE name=?", (name,)).fetchone()
        return ProjectRow(**dict(row))


def get_project(name: str) -> ProjectRow | None:
    init_db()
    with connect() as conn:
        row = conn.execute("SELECT * FROM projects WHERE name=?", (name,)).fetchone()
        return ProjectRow(**dict(row)) if row else None


def list_projects() -> list[ProjectRow]:
    init_db()
    with connect() as conn:
        rows = conn.execute("SELECT * FROM projects ORDER BY name").fetchall()
        return _rows_to_dataclass(rows, ProjectRow)


def update_project_path(name: str, path: str) -> None:
    init_db()
    with connect() as conn:
        cur = conn.execute("UPDATE projects SET path=? WHERE name=?", (path, name))
        if cur.rowcount == 0:
            raise LookupError(f"Project '{name}' not found.")


def delete_project(name: str) -> bool:
    init_db()
    with connect() as conn:
        cur = conn.execute("DELETE FROM projects WHERE name=?", (name,))
        return cur.rowcount > 0


def latest_events(limit: int = 100, project: str | None = None) -> list[dict[str, Any]]:
    init_db()
    with connect() as conn:
        if project:
            rows = conn.execute(
                "SELECT * FROM events WHERE project=? ORDER BY id DESC LIMIT ?", (project, limit)
            ).fetchall()
        else:
            rows = conn.execute("SELECT * FROM events ORDER BY id DESC LIMIT ?", (limit,)).fetchall()
        return [dict(r) for r in rows]
