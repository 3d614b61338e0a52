"""Snapshot repository - load/save whole project snapshots with a version token."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

from taskmanager.errors import StaleSnapshot
from taskmanager.storage.database import Database

logger = logging.getLogger(__name__)

DEFAULT_PROJECT_KEY = "default"


class SnapshotRepository:
    """
    Persists one JSON snapshot per project key.

    Each save must name the version it was loaded at. If another process
    saved in between, the save is rejected with StaleSnapshot instead of
    silently overwriting the other writer.
    """

    def __init__(self, data_dir: Path | None = None, project_key: str = DEFAULT_PROJECT_KEY) -> None:
        self.db = Database(data_dir)
        self.project_key = project_key

    def exists(self) -> bool:
        row = self.db.fetch_one("SELECT 1 FROM snapshots WHERE project_key = ?", (self.project_key,))
        return row is not None

    def current_version(self) -> int:
        row = self.db.fetch_one("SELECT version FROM snapshots WHERE project_key = ?", (self.project_key,))
        return int(row["version"]) if row else 0

    def load(self) -> dict[str, Any]:
        """Return the stored snapshot, or an empty one at version 0."""
        row = self.db.fetch_one(
            "SELECT version, data FROM snapshots WHERE project_key = ?", (self.project_key,)
        )
        if row is None:
            return {"version": 0}
        data: dict[str, Any] = json.loads(row["data"])
        data["version"] = int(row["version"])
        return data

    def save(self, snapshot: dict[str, Any], base_version: int | None = None) -> int:
        """
        Store ``snapshot`` if the stored version still equals ``base_version``.

        Args:
            snapshot: Plain snapshot dict (its own ``version`` is used when
                ``base_version`` is omitted)
            base_version: Version the caller loaded

        Returns:
            The new version number

        Raises:
            StaleSnapshot: another writer saved since ``base_version``
        """
        if base_version is None:
            base_version = int(snapshot.get("version") or 0)
        new_version = base_version + 1
        payload = json.dumps({**snapshot, "version": new_version}, sort_keys=True)

        with self.db.transaction() as conn:
            if base_version == 0:
                cursor = conn.execute(
                    "INSERT OR IGNORE INTO snapshots (project_key, version, data) VALUES (?, ?, ?)",
                    (self.project_key, new_version, payload),
                )
            else:
                cursor = conn.execute(
                    """
                    UPDATE snapshots
                    SET version = ?, data = ?, saved_at = datetime('now')
                    WHERE project_key = ? AND version = ?
                    """,
                    (new_version, payload, self.project_key, base_version),
                )
            if cursor.rowcount != 1:
                row = conn.execute(
                    "SELECT version FROM snapshots WHERE project_key = ?", (self.project_key,)
                ).fetchone()
                actual = int(row["version"]) if row else 0
                raise StaleSnapshot(
                    f"Snapshot changed since it was loaded (loaded v{base_version}, now v{actual}); "
                    "reload and retry",
                    expected=base_version,
                    actual=actual,
                )
            conn.execute(
                """
                INSERT INTO snapshot_history (project_key, version, task_count, agent_count)
                VALUES (?, ?, ?, ?)
                """,
                (
                    self.project_key,
                    new_version,
                    len(snapshot.get("tasks") or {}),
                    len(snapshot.get("agents") or {}),
                ),
            )

        logger.debug("Saved snapshot %s v%d", self.project_key, new_version)
        return new_version

    def history(self, limit: int = 20) -> list[dict[str, Any]]:
        rows = self.db.fetch_all(
            """
            SELECT version, saved_at, task_count, agent_count FROM snapshot_history
            WHERE project_key = ? ORDER BY version DESC LIMIT ?
            """,
            (self.project_key, limit),
        )
        return [dict(row) for row in rows]
