"""Dependency Graph - eligibility, unblock propagation and cycle checks."""

from __future__ import annotations

import logging
from collections import deque
from collections.abc import Iterable
from dataclasses import dataclass, field
from graphlib import CycleError, TopologicalSorter

from taskmanager.engine.store import EntityStore
from taskmanager.errors import CyclicDependency
from taskmanager.models import (
    BlockedReason,
    Task,
    TaskStatus,
    now_iso,
    task_id_sort_key,
)

logger = logging.getLogger(__name__)


@dataclass
class UnblockEvent:
    """A dependent moved from blocked to todo because a dependency completed."""

    task_id: str
    triggered_by: str
    timestamp: str = field(default_factory=now_iso)


class DependencyGraph:
    """
    Reads the ``dependencies`` lists in the store.

    ``blocks`` is treated as a cache: ``rebuild_inverse()`` recomputes it and
    every edge change goes through ``add_edge``/``remove_edge`` so both
    sides stay symmetric.
    """

    def __init__(self, store: EntityStore) -> None:
        self.store = store

    # ── eligibility ────────────────────────────────────────────────────

    def missing_dependencies(self, task: Task) -> list[str]:
        """Dependency ids that do not exist in the store."""
        return [dep for dep in task.dependencies if dep not in self.store.tasks]

    def unmet_dependencies(self, task: Task) -> list[str]:
        """Dependency ids that are missing or not completed."""
        unmet = []
        for dep_id in task.dependencies:
            dep = self.store.find_task(dep_id)
            if dep is None or dep.status != TaskStatus.COMPLETED.value:
                unmet.append(dep_id)
        return unmet

    def is_eligible(self, task: Task) -> bool:
        """True iff every dependency exists and is completed."""
        missing = self.missing_dependencies(task)
        if missing:
            logger.debug("Task %s references unknown dependencies: %s", task.id, missing)
            return False
        return not self.unmet_dependencies(task)

    def blocked_reason(self, task: Task) -> str | None:
        """Diagnostic for why ``task`` cannot start, or None if it can."""
        unmet = self.unmet_dependencies(task)
        if not unmet:
            return None
        if any(
            (dep := self.store.find_task(dep_id)) is not None
            and dep.status == TaskStatus.CANCELLED.value
            for dep_id in unmet
        ):
            return BlockedReason.DEPENDENCY_CANCELLED.value
        if self.missing_dependencies(task):
            return BlockedReason.DEPENDENCY_MISSING.value
        return BlockedReason.DEPENDENCIES_INCOMPLETE.value

    # ── derived state ──────────────────────────────────────────────────

    def refresh(self, task: Task) -> None:
        """
        Bring a non-terminal task's blocked state in line with its dependencies.

        todo with unmet dependencies becomes blocked; blocked with every
        dependency completed becomes todo. Started tasks only get the
        diagnostic updated.
        """
        reason = self.blocked_reason(task)
        if task.status == TaskStatus.TODO.value and reason is not None:
            task.status = TaskStatus.BLOCKED.value
            task.touch()
        elif task.status == TaskStatus.BLOCKED.value and reason is None:
            task.status = TaskStatus.TODO.value
            task.touch()
        if task.is_terminal:
            task.blocked_reason = None
        elif task.blocked_reason != reason:
            task.blocked_reason = reason

    def refresh_dependents(self, task: Task) -> None:
        for dependent_id in task.blocks:
            dependent = self.store.find_task(dependent_id)
            if dependent is not None:
                self.refresh(dependent)

    def rebuild_inverse(self) -> None:
        """Recompute every task's ``blocks`` list from ``dependencies``."""
        inverse: dict[str, list[str]] = {task_id: [] for task_id in self.store.tasks}
        for task in self.store.tasks.values():
            for dep_id in task.dependencies:
                if dep_id in inverse and task.id not in inverse[dep_id]:
                    inverse[dep_id].append(task.id)
        for task_id, dependents in inverse.items():
            self.store.tasks[task_id].blocks = sorted(dependents, key=task_id_sort_key)

    # ── propagation ────────────────────────────────────────────────────

    def on_task_completed(self, task: Task) -> list[UnblockEvent]:
        """
        Re-evaluate the dependents of a completed task.

        Breadth-first over ``blocks``; each task is processed at most once
        per pass so a cycle in stale data cannot loop forever.
        """
        events: list[UnblockEvent] = []
        visited: set[str] = {task.id}
        queue: deque[str] = deque(sorted(task.blocks, key=task_id_sort_key))

        while queue:
            dependent_id = queue.popleft()
            if dependent_id in visited:
                continue
            visited.add(dependent_id)

            dependent = self.store.find_task(dependent_id)
            if dependent is None or task.id not in dependent.dependencies:
                continue

            was_blocked = dependent.status == TaskStatus.BLOCKED.value
            self.refresh(dependent)
            if was_blocked and dependent.status == TaskStatus.TODO.value:
                event = UnblockEvent(task_id=dependent.id, triggered_by=task.id)
                events.append(event)
                logger.info("Auto-unblocked %s (dependency %s completed)", dependent.id, task.id)

        return events

    # ── edges & cycles ─────────────────────────────────────────────────

    def _adjacency(self, extra: Iterable[tuple[str, str]] = ()) -> dict[str, list[str]]:
        graph: dict[str, list[str]] = {
            task_id: list(self.store.tasks[task_id].dependencies)
            for task_id in sorted(self.store.tasks, key=task_id_sort_key)
        }
        for task_id, dep_id in extra:
            deps = graph.setdefault(task_id, [])
            if dep_id not in deps:
                deps.append(dep_id)
        return graph

    def ensure_acyclic(self, extra_edges: Iterable[tuple[str, str]] = ()) -> None:
        """
        Raise CyclicDependency if the graph plus ``extra_edges`` has a cycle.

        Edges are ``(task_id, dependency_id)`` pairs.
        """
        extra = list(extra_edges)
        for task_id, dep_id in extra:
            if task_id == dep_id:
                raise CyclicDependency(f"Task {task_id} cannot depend on itself", [task_id, task_id])
        try:
            TopologicalSorter(self._adjacency(extra)).prepare()
        except CycleError as exc:
            cycle = [str(node) for node in exc.args[1]] if len(exc.args) > 1 else []
            raise CyclicDependency(
                f"Dependency cycle detected: {' -> '.join(cycle)}", cycle
            ) from None

    def check_can_add(self, task_id: str, dependency_ids: Iterable[str]) -> None:
        self.ensure_acyclic((task_id, dep_id) for dep_id in dependency_ids)

    def add_edge(self, task: Task, dependency_id: str) -> None:
        """Record ``task`` depends on ``dependency_id``. Caller checks cycles first."""
        if dependency_id not in task.dependencies:
            task.dependencies.append(dependency_id)
        dependency = self.store.find_task(dependency_id)
        if dependency is not None and task.id not in dependency.blocks:
            dependency.blocks.append(task.id)
            dependency.blocks.sort(key=task_id_sort_key)

    def remove_edge(self, task: Task, dependency_id: str) -> None:
        task.dependencies = [d for d in task.dependencies if d != dependency_id]
        dependency = self.store.find_task(dependency_id)
        if dependency is not None:
            dependency.blocks = [b for b in dependency.blocks if b != task.id]

    def topological_order(self) -> list[str]:
        """Task ids with every dependency before its dependents."""
        self.ensure_acyclic()
        graph = {
            task_id: [d for d in deps if d in self.store.tasks]
            for task_id, deps in self._adjacency().items()
        }
        return list(TopologicalSorter(graph).static_order())
