"""Load-mutate-save wrapper used by the CLI and the API."""

from __future__ import annotations

from collections.abc import Generator
from contextlib import contextmanager
from typing import Any

from taskmanager.config import Settings, write_default_config
from taskmanager.manager import TaskManager
from taskmanager.storage.snapshots import SnapshotRepository


class ProjectSession:
    """
    Binds Settings to a snapshot repository.

    Each ``open()`` loads a fresh snapshot, hands a TaskManager to the
    caller and, for writes, saves against the loaded version so concurrent
    writers get StaleSnapshot instead of losing updates.
    """

    def __init__(self, settings: Settings) -> None:
        self.settings = settings
        self.repo = SnapshotRepository(settings.data_dir)

    def _manager(self, data: dict[str, Any]) -> TaskManager:
        return TaskManager.from_snapshot(
            data,
            weights=self.settings.weights,
            max_recommendations=self.settings.max_recommendations,
            on_dependency_cancelled=self.settings.on_dependency_cancelled,
        )

    def initialize(self, name: str | None = None, description: str | None = None) -> dict[str, Any]:
        """Create config and an empty project if none exists. Idempotent."""
        config_path = write_default_config(self.settings.data_dir)
        created = not self.repo.exists()
        if created:
            manager = self._manager({"version": 0})
            manager.update_project(name=name or self.settings.project_name, description=description)
            self.repo.save(manager.snapshot(), base_version=0)
        elif name is not None or description is not None:
            with self.open() as manager:
                manager.update_project(name=name, description=description)
        return {
            "created": created,
            "data_dir": str(self.settings.data_dir),
            "database": str(self.repo.db.db_path),
            "config": str(config_path),
            "version": self.repo.current_version(),
        }

    @contextmanager
    def open(self, write: bool = True) -> Generator[TaskManager, None, None]:
        data = self.repo.load()
        base_version = int(data.get("version") or 0)
        manager = self._manager(data)
        yield manager
        if write:
            self.repo.save(manager.snapshot(), base_version=base_version)
