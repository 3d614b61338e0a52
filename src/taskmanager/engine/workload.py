"""Workload Tracker - per-agent and project views derived from the store.

Nothing here is stored. Every call walks the current tasks so the numbers
can never drift from task state.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from taskmanager.engine.store import EntityStore
from taskmanager.models import (
    ACTIVE_STATUSES,
    AgentType,
    Priority,
    Task,
    TaskStatus,
)


@dataclass
class Workload:
    """Counts and task lists for one agent."""

    agent_id: str
    active_tasks: int = 0
    todo_tasks: int = 0
    completed_tasks: int = 0
    blocked_tasks: int = 0
    total_score: float = 0.0
    active: list[Task] = field(default_factory=list)
    todo: list[Task] = field(default_factory=list)
    completed: list[Task] = field(default_factory=list)
    blocked: list[Task] = field(default_factory=list)

    def to_dict(self, include_tasks: bool = True) -> dict[str, Any]:
        data: dict[str, Any] = {
            "agent_id": self.agent_id,
            "active_tasks": self.active_tasks,
            "todo_tasks": self.todo_tasks,
            "completed_tasks": self.completed_tasks,
            "blocked_tasks": self.blocked_tasks,
            "total_score": self.total_score,
        }
        if include_tasks:
            data["tasks"] = {
                "active": [t.to_dict() for t in self.active],
                "todo": [t.to_dict() for t in self.todo],
                "completed": [t.to_dict() for t in self.completed],
                "blocked": [t.to_dict() for t in self.blocked],
            }
        return data


class WorkloadTracker:
    """Computes workload views from an EntityStore on demand."""

    def __init__(self, store: EntityStore) -> None:
        self.store = store

    def workload(self, agent_id: str) -> Workload:
        """
        Workload for one agent.

        active = in-progress or review; total_score sums the
        ``recommendation_score`` of completed tasks the agent is assigned to.
        """
        self.store.get_agent(agent_id)
        result = Workload(agent_id=agent_id)

        for task in self.store.list_tasks(agent=agent_id):
            if task.status in ACTIVE_STATUSES:
                result.active.append(task)
            elif task.status == TaskStatus.TODO.value:
                result.todo.append(task)
            elif task.status == TaskStatus.COMPLETED.value:
                result.completed.append(task)
                result.total_score += task.recommendation_score
            elif task.status == TaskStatus.BLOCKED.value:
                result.blocked.append(task)

        result.active_tasks = len(result.active)
        result.todo_tasks = len(result.todo)
        result.completed_tasks = len(result.completed)
        result.blocked_tasks = len(result.blocked)
        return result

    def all_workloads(self) -> list[Workload]:
        return [self.workload(agent.id) for agent in self.store.list_agents()]

    def project_status(self) -> dict[str, Any]:
        """Aggregate counts for the whole project."""
        tasks = list(self.store.tasks.values())
        agents = self.store.list_agents()

        by_status = {s.value: 0 for s in TaskStatus}
        by_priority = {p.value: 0 for p in Priority}
        for task in tasks:
            by_status[task.status] = by_status.get(task.status, 0) + 1
            by_priority[task.priority] = by_priority.get(task.priority, 0) + 1

        total = len(tasks)
        completed = by_status[TaskStatus.COMPLETED.value]
        cancelled = by_status[TaskStatus.CANCELLED.value]
        countable = total - cancelled

        return {
            "project": self.store.project.to_dict(),
            "version": self.store.version,
            "progress": {
                "total_tasks": total,
                "completed": completed,
                "in_progress": by_status[TaskStatus.IN_PROGRESS.value],
                "todo": by_status[TaskStatus.TODO.value],
                "completion_percentage": round(completed / countable * 100) if countable else 0,
            },
            "agents": {
                "total": len(agents),
                "active": sum(1 for a in agents if a.is_active),
                "by_type": {t.value: sum(1 for a in agents if a.type == t.value) for t in AgentType},
            },
            "tasks": {
                "total": total,
                "by_status": by_status,
                "by_priority": by_priority,
            },
        }
