"""Tests for snapshot persistence and sessions."""

from __future__ import annotations

from pathlib import Path

import pytest

from taskmanager.config import load_settings
from taskmanager.errors import StaleSnapshot
from taskmanager.session import ProjectSession
from taskmanager.storage.database import Database
from taskmanager.storage.snapshots import SnapshotRepository


class TestDatabase:
    def test_creates_tables(self, tmp_path: Path) -> None:
        db = Database(tmp_path)
        assert {"snapshots", "snapshot_history", "schema_version"} <= db.tables()
        assert db.db_path == tmp_path / "data" / "taskmanager.db"
        assert db.db_path.exists()
        assert db.fetch_one("SELECT version FROM schema_version")["version"] == 1

    def test_transaction_rolls_back(self, tmp_path: Path) -> None:
        db = Database(tmp_path)
        with pytest.raises(RuntimeError):
            with db.transaction() as conn:
                conn.execute("INSERT INTO snapshots (project_key, data) VALUES ('p', '{}')")
                raise RuntimeError("abort")
        assert db.fetch_all("SELECT * FROM snapshots") == []

        with db.transaction() as conn:
            conn.execute("INSERT INTO snapshots (project_key, data) VALUES ('p', '{}')")
        assert db.fetch_one("SELECT project_key FROM snapshots")["project_key"] == "p"


class TestSnapshotRepository:
    def test_empty_load(self, tmp_path: Path) -> None:
        repo = SnapshotRepository(tmp_path)
        assert repo.load() == {"version": 0}
        assert not repo.exists()

    def test_versions_increase(self, tmp_path: Path) -> None:
        repo = SnapshotRepository(tmp_path)
        assert repo.save({"tasks": {}}, base_version=0) == 1
        assert repo.save({"tasks": {"TASK-001": {"title": "A"}}}, base_version=1) == 2
        data = repo.load()
        assert data["version"] == 2
        assert data["tasks"]["TASK-001"]["title"] == "A"
        assert [h["version"] for h in repo.history()] == [2, 1]

    def test_stale_save_is_rejected(self, tmp_path: Path) -> None:
        repo = SnapshotRepository(tmp_path)
        repo.save({}, base_version=0)
        repo.save({}, base_version=1)
        with pytest.raises(StaleSnapshot) as exc_info:
            repo.save({"tasks": {}}, base_version=1)
        assert exc_info.value.expected == 1
        assert exc_info.value.actual == 2
        assert repo.current_version() == 2

    def test_second_initial_save_is_stale(self, tmp_path: Path) -> None:
        repo = SnapshotRepository(tmp_path)
        repo.save({}, base_version=0)
        with pytest.raises(StaleSnapshot):
            repo.save({}, base_version=0)

    def test_project_keys_are_independent(self, tmp_path: Path) -> None:
        SnapshotRepository(tmp_path, "alpha").save({}, base_version=0)
        assert not SnapshotRepository(tmp_path, "beta").exists()


class TestProjectSession:
    def test_initialize_is_idempotent(self, tmp_path: Path) -> None:
        session = ProjectSession(load_settings(tmp_path))
        first = session.initialize(name="Demo")
        second = session.initialize()
        assert first["created"] is True
        assert second["created"] is False
        assert first["version"] == 1
        assert (tmp_path / "config.toml").exists()
        with session.open(write=False) as manager:
            assert manager.store.project.name == "Demo"

    def test_changes_persist(self, tmp_path: Path) -> None:
        session = ProjectSession(load_settings(tmp_path))
        session.initialize()
        with session.open() as manager:
            manager.add_agent({"id": "dev-1", "name": "Dev"})
            manager.create_task({"title": "Persisted", "assignees": ["dev-1"]})
        with session.open(write=False) as manager:
            assert manager.get_task("TASK-001").assignee_ids == ["dev-1"]
            assert manager.store.version == 2

    def test_read_only_open_does_not_bump_version(self, tmp_path: Path) -> None:
        session = ProjectSession(load_settings(tmp_path))
        session.initialize()
        with session.open(write=False) as manager:
            manager.create_task({"title": "Discarded"})
        assert session.repo.current_version() == 1

    def test_error_inside_open_discards_changes(self, tmp_path: Path) -> None:
        session = ProjectSession(load_settings(tmp_path))
        session.initialize()
        with pytest.raises(RuntimeError):
            with session.open() as manager:
                manager.create_task({"title": "Lost"})
                raise RuntimeError("abort")
        with session.open(write=False) as manager:
            assert manager.store.tasks == {}

    def test_concurrent_writers(self, tmp_path: Path) -> None:
        session = ProjectSession(load_settings(tmp_path))
        session.initialize()
        with pytest.raises(StaleSnapshot):
            with session.open() as slow:
                with session.open() as fast:
                    fast.create_task({"title": "Fast"})
                slow.create_task({"title": "Slow"})
        with session.open(write=False) as manager:
            assert [t.title for t in manager.list_tasks()] == ["Fast"]
