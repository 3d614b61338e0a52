"""Entity Store - in-memory agents and tasks keyed by id."""

from __future__ import annotations

import copy
from collections.abc import Callable, Generator
from contextlib import contextmanager
from typing import Any

from taskmanager.errors import NotFound, ReferentialIntegrity
from taskmanager.models import (
    Agent,
    Project,
    Task,
    format_task_id,
    parse_task_number,
    task_id_sort_key,
)

# Statuses that pin an assignee: the agent cannot be removed without force.
PINNING_STATUSES = frozenset({"in-progress", "review"})

HISTORY_LIMIT = 50
NOTIFICATION_LIMIT = 50


class EntityStore:
    """
    Holds the full snapshot of one project in memory.

    Mutation is single-threaded; ``transaction()`` gives callers
    all-or-nothing semantics by restoring a staged copy on error.
    """

    def __init__(
        self,
        project: Project | None = None,
        agents: dict[str, Agent] | None = None,
        tasks: dict[str, Task] | None = None,
        task_sequence: int = 0,
        version: int = 0,
        recommendation_history: list[dict[str, Any]] | None = None,
        notifications: dict[str, list[dict[str, Any]]] | None = None,
    ) -> None:
        self.project = project or Project()
        self.agents: dict[str, Agent] = agents or {}
        self.tasks: dict[str, Task] = tasks or {}
        self.task_sequence = task_sequence
        self.version = version
        self.recommendation_history: list[dict[str, Any]] = recommendation_history or []
        self.notifications: dict[str, list[dict[str, Any]]] = notifications or {}

    # ── tasks ──────────────────────────────────────────────────────────

    def find_task(self, task_id: str) -> Task | None:
        return self.tasks.get(task_id)

    def get_task(self, task_id: str) -> Task:
        task = self.tasks.get(task_id)
        if task is None:
            raise NotFound(f"Task {task_id} not found")
        return task

    def list_tasks(
        self,
        status: str | None = None,
        priority: str | None = None,
        agent: str | None = None,
        phase: str | None = None,
        predicate: Callable[[Task], bool] | None = None,
    ) -> list[Task]:
        """List tasks in id order, optionally filtered."""
        result = []
        for task in self.tasks.values():
            if status is not None and task.status != status:
                continue
            if priority is not None and task.priority != priority:
                continue
            if agent is not None and not task.is_assigned_to(agent):
                continue
            if phase is not None and task.phase != phase:
                continue
            if predicate is not None and not predicate(task):
                continue
            result.append(task)
        result.sort(key=lambda t: task_id_sort_key(t.id))
        return result

    def put_task(self, task: Task) -> Task:
        self.tasks[task.id] = task
        number = parse_task_number(task.id)
        if number is not None and number > self.task_sequence:
            self.task_sequence = number
        return task

    def remove_task(self, task_id: str) -> Task:
        task = self.get_task(task_id)
        del self.tasks[task_id]
        return task

    def next_task_id(self) -> str:
        """Issue the next sequence id; ids are never reused."""
        self.task_sequence += 1
        while format_task_id(self.task_sequence) in self.tasks:
            self.task_sequence += 1
        return format_task_id(self.task_sequence)

    # ── agents ─────────────────────────────────────────────────────────

    def find_agent(self, agent_id: str) -> Agent | None:
        return self.agents.get(agent_id)

    def get_agent(self, agent_id: str) -> Agent:
        agent = self.agents.get(agent_id)
        if agent is None:
            raise NotFound(f"Agent {agent_id} not found")
        return agent

    def list_agents(self, status: str | None = None, agent_type: str | None = None) -> list[Agent]:
        agents = [
            a
            for a in self.agents.values()
            if (status is None or a.status == status)
            and (agent_type is None or a.type == agent_type)
        ]
        agents.sort(key=lambda a: a.id)
        return agents

    def put_agent(self, agent: Agent) -> Agent:
        self.agents[agent.id] = agent
        return agent

    def remove_agent(self, agent_id: str, force: bool = False) -> Agent:
        """
        Remove an agent and detach it from every task.

        Raises:
            ReferentialIntegrity: the agent is assigned to an in-progress or
                review task and ``force`` is not set.
        """
        agent = self.get_agent(agent_id)
        pinned = [
            t.id for t in self.tasks.values() if t.status in PINNING_STATUSES and t.is_assigned_to(agent_id)
        ]
        if pinned and not force:
            raise ReferentialIntegrity(
                f"Agent {agent_id} is assigned to active task(s) {', '.join(sorted(pinned))}; "
                "reassign them or remove with force"
            )
        for task in self.tasks.values():
            if task.is_assigned_to(agent_id):
                task.assignees = [a for a in task.assignees if a.agent_id != agent_id]
                task.touch()
        del self.agents[agent_id]
        self.notifications.pop(agent_id, None)
        return agent

    # ── history & notifications ────────────────────────────────────────

    def record_recommendations(self, entry: dict[str, Any]) -> None:
        self.recommendation_history.append(entry)
        if len(self.recommendation_history) > HISTORY_LIMIT:
            self.recommendation_history = self.recommendation_history[-HISTORY_LIMIT:]

    def push_notification(self, agent_id: str, notification: dict[str, Any]) -> None:
        inbox = self.notifications.setdefault(agent_id, [])
        inbox.append(notification)
        if len(inbox) > NOTIFICATION_LIMIT:
            del inbox[:-NOTIFICATION_LIMIT]

    def notifications_for(self, agent_id: str) -> list[dict[str, Any]]:
        return list(self.notifications.get(agent_id, []))

    def clear_notifications(self, agent_id: str) -> int:
        return len(self.notifications.pop(agent_id, []))

    # ── transactions & snapshots ───────────────────────────────────────

    @contextmanager
    def transaction(self) -> Generator[EntityStore, None, None]:
        """Stage a copy of the state; restore it if the body raises."""
        staged = copy.deepcopy(
            (
                self.project,
                self.agents,
                self.tasks,
                self.task_sequence,
                self.recommendation_history,
                self.notifications,
            )
        )
        try:
            yield self
        except BaseException:
            (
                self.project,
                self.agents,
                self.tasks,
                self.task_sequence,
                self.recommendation_history,
                self.notifications,
            ) = staged
            raise

    def to_snapshot(self) -> dict[str, Any]:
        return {
            "version": self.version,
            "project": self.project.to_dict(),
            "agents": {aid: a.to_dict() for aid, a in sorted(self.agents.items())},
            "tasks": {
                t.id: t.to_dict() for t in sorted(self.tasks.values(), key=lambda t: task_id_sort_key(t.id))
            },
            "task_sequence": self.task_sequence,
            "recommendation_history": list(self.recommendation_history),
            "notifications": {aid: list(items) for aid, items in sorted(self.notifications.items()) if items},
        }

    @classmethod
    def from_snapshot(cls, data: dict[str, Any] | None) -> EntityStore:
        """Build a store from plain records. Derived fields are not trusted here."""
        data = data or {}
        raw_agents = data.get("agents") or {}
        if isinstance(raw_agents, list):
            raw_agents = {a.get("id"): a for a in raw_agents}
        raw_tasks = data.get("tasks") or {}
        if isinstance(raw_tasks, list):
            raw_tasks = {t.get("id"): t for t in raw_tasks}

        agents = {}
        for agent_id, raw in raw_agents.items():
            agent = Agent.from_dict({"id": agent_id, **raw})
            agents[agent.id] = agent

        store = cls(
            project=Project.from_dict(data.get("project")),
            agents=agents,
            task_sequence=int(data.get("task_sequence") or 0),
            version=int(data.get("version") or 0),
            recommendation_history=list(data.get("recommendation_history") or []),
            notifications={str(aid): list(items) for aid, items in (data.get("notifications") or {}).items()},
        )
        for task_id, raw in raw_tasks.items():
            store.put_task(Task.from_dict({"id": task_id, **raw}))
        return store
