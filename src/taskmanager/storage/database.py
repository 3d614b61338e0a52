"""SQLite file holding project snapshots (WAL mode)."""

from __future__ import annotations

import sqlite3
from collections.abc import Generator
from contextlib import contextmanager
from pathlib import Path
from typing import Any

from taskmanager.config import DEFAULT_DATA_DIR

DB_FILENAME = "taskmanager.db"
BUSY_TIMEOUT_SECONDS = 5.0
SCHEMA_VERSION = 1


class Database:
    """
    Thin wrapper over one sqlite file under ``<data_dir>/data``.

    Connections run in autocommit mode; writers go through
    ``transaction()``, which takes the write lock up front with
    ``BEGIN IMMEDIATE`` so a read-check-write sequence sees no other writer.
    """

    def __init__(self, data_dir: Path | None = None) -> None:
        self.data_dir = data_dir or DEFAULT_DATA_DIR
        self.db_path = self.data_dir / "data" / DB_FILENAME
        self._schema_ready = False

    def _open(self) -> sqlite3.Connection:
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(str(self.db_path), timeout=BUSY_TIMEOUT_SECONDS, isolation_level=None)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA journal_mode=WAL")
        if not self._schema_ready:
            conn.executescript(_SCHEMA)
            conn.execute("INSERT OR IGNORE INTO schema_version (version) VALUES (?)", (SCHEMA_VERSION,))
            self._schema_ready = True
        return conn

    @contextmanager
    def reader(self) -> Generator[sqlite3.Connection, None, None]:
        conn = self._open()
        try:
            yield conn
        finally:
            conn.close()

    @contextmanager
    def transaction(self) -> Generator[sqlite3.Connection, None, None]:
        """Write transaction; rolled back if the body raises."""
        conn = self._open()
        try:
            conn.execute("BEGIN IMMEDIATE")
            try:
                yield conn
            except BaseException:
                conn.execute("ROLLBACK")
                raise
            conn.execute("COMMIT")
        finally:
            conn.close()

    def fetch_one(self, sql: str, params: tuple[Any, ...] = ()) -> sqlite3.Row | None:
        with self.reader() as conn:
            row: sqlite3.Row | None = conn.execute(sql, params).fetchone()
            return row

    def fetch_all(self, sql: str, params: tuple[Any, ...] = ()) -> list[sqlite3.Row]:
        with self.reader() as conn:
            return conn.execute(sql, params).fetchall()

    def tables(self) -> set[str]:
        rows = self.fetch_all("SELECT name FROM sqlite_master WHERE type = 'table'")
        return {row["name"] for row in rows}


_SCHEMA = """
CREATE TABLE IF NOT EXISTS schema_version (
    version INTEGER PRIMARY KEY,
    applied_at TEXT NOT NULL DEFAULT (datetime('now'))
);

CREATE TABLE IF NOT EXISTS snapshots (
    project_key TEXT PRIMARY KEY,
    version INTEGER NOT NULL DEFAULT 0,
    data TEXT NOT NULL,
    saved_at TEXT NOT NULL DEFAULT (datetime('now'))
);

CREATE TABLE IF NOT EXISTS snapshot_history (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    project_key TEXT NOT NULL,
    version INTEGER NOT NULL,
    saved_at TEXT NOT NULL DEFAULT (datetime('now')),
    task_count INTEGER NOT NULL DEFAULT 0,
    agent_count INTEGER NOT NULL DEFAULT 0
);

CREATE INDEX IF NOT EXISTS idx_snapshot_history_key ON snapshot_history (project_key, version);
"""
