"""Assignment Operations - the mutating API over one project snapshot.

Every public mutator runs inside a store transaction: either the whole
call applies (inverse ``blocks`` lists, propagation, score caches) or the
store is left exactly as it was.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Generator
from contextlib import contextmanager
from typing import Any

from taskmanager.engine.graph import DependencyGraph, UnblockEvent
from taskmanager.engine.lifecycle import FLAG_DEPENDENTS, LifecycleStateMachine, TransitionResult
from taskmanager.engine.store import EntityStore
from taskmanager.engine.workload import Workload, WorkloadTracker
from taskmanager.errors import (
    AlreadyAssigned,
    InvalidTransition,
    NotFound,
    ReferentialIntegrity,
    ValidationError,
)
from taskmanager.models import (
    ACTIVE_STATUSES,
    Agent,
    AgentStatus,
    AgentType,
    Assignee,
    AssigneeRole,
    Phase,
    PhaseStatus,
    Task,
    TaskStatus,
    WILDCARD_CAPABILITY,
    coerce_choice,
    now_iso,
    string_list,
)
from taskmanager.scoring.capabilities import CapabilityMatcher
from taskmanager.scoring.recommender import (
    DEFAULT_LIMIT,
    Recommendation,
    RecommendationEngine,
    ScoringWeights,
)

logger = logging.getLogger(__name__)

# Fields update_task may patch directly. ``status``, ``dependencies`` and
# ``assignees`` are handled separately.
PATCHABLE_FIELDS = frozenset(
    {
        "title",
        "description",
        "category",
        "phase",
        "priority",
        "risk_level",
        "completion_criteria",
        "tags",
        "estimated_hours",
        "required_capabilities",
    }
)
DERIVED_FIELDS = frozenset(
    {"id", "blocks", "recommendation_score", "blocked_reason", "created_date", "updated_date", "completed_date"}
)
AGENT_FIELDS = frozenset({"name", "type", "capabilities", "status"})


class TaskManager:
    """
    Task and agent operations for one in-memory project.

    The manager never reads the environment or touches disk; callers load
    a snapshot, call operations, and persist ``snapshot()`` afterwards.
    """

    def __init__(
        self,
        store: EntityStore | None = None,
        weights: ScoringWeights | None = None,
        matcher: CapabilityMatcher | None = None,
        max_recommendations: int = DEFAULT_LIMIT,
        on_dependency_cancelled: str = FLAG_DEPENDENTS,
    ) -> None:
        self.store = store or EntityStore()
        self.graph = DependencyGraph(self.store)
        self.lifecycle = LifecycleStateMachine(self.graph, on_dependency_cancelled)
        self.workloads = WorkloadTracker(self.store)
        self.recommender = RecommendationEngine(self.store, self.graph, weights, matcher)
        self.max_recommendations = max_recommendations
        self.last_unblocked: list[UnblockEvent] = []
        self.recompute_derived()

    @classmethod
    def from_snapshot(cls, data: dict[str, Any] | None, **kwargs: Any) -> TaskManager:
        """Load plain records; derived fields are recomputed, not trusted."""
        return cls(EntityStore.from_snapshot(data), **kwargs)

    def snapshot(self) -> dict[str, Any]:
        return self.store.to_snapshot()

    def recompute_derived(self) -> None:
        """Rebuild ``blocks``, blocked diagnostics and score caches."""
        self.graph.rebuild_inverse()
        for task in self.store.tasks.values():
            self.graph.refresh(task)
        self.recommender.refresh_scores()

    @contextmanager
    def _mutation(self) -> Generator[None, None, None]:
        with self.store.transaction():
            yield
            self.recommender.refresh_scores()

    # ═══════════════════════════════════════════════════════════════════
    # PROJECT & PHASES
    # ═══════════════════════════════════════════════════════════════════

    def update_project(self, name: str | None = None, description: str | None = None) -> dict[str, Any]:
        with self._mutation():
            if name is not None:
                if not name.strip():
                    raise ValidationError("project name cannot be empty")
                self.store.project.name = name.strip()
            if description is not None:
                self.store.project.description = description
        return self.store.project.to_dict()

    def add_phase(self, data: dict[str, Any]) -> Phase:
        with self._mutation():
            phase = Phase.from_dict(data)
            if phase.id in self.store.project.phases:
                raise ValidationError(f"Phase {phase.id} already exists")
            for dep in phase.dependencies:
                if dep not in self.store.project.phases:
                    raise ValidationError(f"Phase {phase.id} depends on unknown phase {dep}")
            self.store.project.phases[phase.id] = phase
            if phase.status == PhaseStatus.ACTIVE.value:
                self._activate_phase(phase.id)
        return phase

    def set_active_phase(self, phase_id: str) -> Phase:
        """Make ``phase_id`` the active phase; the previous one becomes completed."""
        with self._mutation():
            if phase_id not in self.store.project.phases:
                raise NotFound(f"Phase {phase_id} not found")
            self._activate_phase(phase_id)
        return self.store.project.phases[phase_id]

    def _activate_phase(self, phase_id: str) -> None:
        project = self.store.project
        previous = project.active_phase
        if previous and previous != phase_id and previous in project.phases:
            project.phases[previous].status = PhaseStatus.COMPLETED.value
        project.phases[phase_id].status = PhaseStatus.ACTIVE.value
        project.active_phase = phase_id

    # ═══════════════════════════════════════════════════════════════════
    # AGENTS
    # ═══════════════════════════════════════════════════════════════════

    def add_agent(self, data: dict[str, Any]) -> Agent:
        """
        Register an agent.

        Missing ids get an ``agent-xxxxxxxx`` id. Humans without declared
        capabilities get the ``all`` wildcard.
        """
        if not str(data.get("name") or "").strip():
            raise ValidationError("agent name is required")
        record = dict(data)
        record.setdefault("id", f"agent-{uuid.uuid4().hex[:8]}")
        record["status"] = record.get("status") or AgentStatus.ACTIVE.value

        with self._mutation():
            agent = Agent.from_dict(record)
            if agent.id in self.store.agents:
                raise ValidationError(f"Agent {agent.id} already exists")
            if agent.type == AgentType.HUMAN.value and not agent.capabilities:
                agent.capabilities = [WILDCARD_CAPABILITY]
            self.store.put_agent(agent)
        logger.debug("Agent %s added", agent.id)
        return agent

    def get_agent(self, agent_id: str) -> Agent:
        return self.store.get_agent(agent_id)

    def list_agents(self, status: str | None = None, agent_type: str | None = None) -> list[Agent]:
        return self.store.list_agents(status=status, agent_type=agent_type)

    def update_agent(self, agent_id: str, updates: dict[str, Any]) -> Agent:
        agent = self.store.get_agent(agent_id)
        if "id" in updates and updates["id"] != agent_id:
            raise ValidationError("agent id cannot be changed")
        unknown = set(updates) - AGENT_FIELDS - {"id"}
        if unknown:
            raise ValidationError(f"Unknown agent field(s): {', '.join(sorted(unknown))}")

        with self._mutation():
            agent = self.store.get_agent(agent_id)
            merged = Agent.from_dict({**agent.to_dict(), **updates})
            merged.updated_date = now_iso()
            self.store.put_agent(merged)
        return merged

    def remove_agent(self, agent_id: str, force: bool = False) -> Agent:
        with self._mutation():
            agent = self.store.remove_agent(agent_id, force=force)
        logger.debug("Agent %s removed (force=%s)", agent_id, force)
        return agent

    # ═══════════════════════════════════════════════════════════════════
    # TASKS
    # ═══════════════════════════════════════════════════════════════════

    def create_task(self, data: dict[str, Any]) -> Task:
        """
        Create a task.

        Issues a ``TASK-NNN`` id, defaults status to todo (blocked when a
        dependency is unmet) and priority to medium, and records the new
        task in each dependency's ``blocks`` list.

        Raises:
            ValidationError: missing title, bad field values, or unknown
                dependency ids.
            CyclicDependency: the dependencies would form a cycle.
        """
        title = str(data.get("title") or "").strip()
        if not title:
            raise ValidationError("title is required")
        status = coerce_choice(data.get("status") or TaskStatus.TODO.value, TaskStatus, "status")
        if status not in (TaskStatus.TODO.value, TaskStatus.BLOCKED.value):
            raise ValidationError(f"new tasks start as todo; cannot create a task as {status}")

        with self._mutation():
            task_id = str(data.get("id") or "").strip() or self.store.next_task_id()
            if task_id in self.store.tasks:
                raise ValidationError(f"Task {task_id} already exists")

            record = {
                k: v for k, v in data.items() if k not in DERIVED_FIELDS and k not in ("assignees", "dependencies")
            }
            record.update(id=task_id, title=title, status=TaskStatus.TODO.value)
            if not record.get("phase") and self.store.project.active_phase:
                record["phase"] = self.store.project.active_phase
            task = Task.from_dict(record)

            dependencies = string_list(data.get("dependencies"), "dependencies")
            self._validate_dependencies(task_id, dependencies)

            task.assignees = self._resolve_assignees(data.get("assignees"))
            self.store.put_task(task)
            for dep_id in dependencies:
                self.graph.add_edge(task, dep_id)
            self.graph.refresh(task)

        logger.debug("Task %s created (%s)", task.id, task.status)
        return task

    def _validate_dependencies(self, task_id: str, dependencies: list[str]) -> None:
        unknown = [d for d in dependencies if d not in self.store.tasks and d != task_id]
        if unknown:
            raise ValidationError(f"Unknown dependency id(s): {', '.join(unknown)}")
        self.graph.check_can_add(task_id, dependencies)

    def _resolve_assignees(self, raw: Any) -> list[Assignee]:
        if raw is None:
            return []
        if isinstance(raw, (str, dict)):
            raw = [raw]
        assignees: list[Assignee] = []
        for item in raw:
            assignee = Assignee.from_dict(item)
            self.store.get_agent(assignee.agent_id)
            if any(a.agent_id == assignee.agent_id for a in assignees):
                raise AlreadyAssigned(f"Agent {assignee.agent_id} listed twice")
            assignees.append(assignee)
        return assignees

    def get_task(self, task_id: str) -> Task:
        return self.store.get_task(task_id)

    def list_tasks(
        self,
        status: str | None = None,
        priority: str | None = None,
        agent: str | None = None,
        phase: str | None = None,
    ) -> list[Task]:
        if status is not None:
            status = coerce_choice(status, TaskStatus, "status")
        return self.store.list_tasks(status=status, priority=priority, agent=agent, phase=phase)

    def update_task(self, task_id: str, updates: dict[str, Any]) -> Task:
        """
        Patch task fields.

        ``status`` goes through the lifecycle state machine (after the other
        fields are applied); ``dependencies`` are diffed into edge additions
        and removals with a cycle check.
        """
        self.store.get_task(task_id)
        readonly = set(updates) & DERIVED_FIELDS
        if readonly:
            raise ValidationError(f"Read-only field(s): {', '.join(sorted(readonly))}")
        unknown = set(updates) - PATCHABLE_FIELDS - {"status", "dependencies", "assignees"}
        if unknown:
            raise ValidationError(f"Unknown task field(s): {', '.join(sorted(unknown))}")

        with self._mutation():
            task = self.store.get_task(task_id)
            patch = {k: v for k, v in updates.items() if k in PATCHABLE_FIELDS}
            if patch:
                patched = Task.from_dict({**task.to_dict(), **patch})
                for name in patch:
                    setattr(task, name, getattr(patched, name))

            if "assignees" in updates:
                task.assignees = self._resolve_assignees(updates["assignees"] or [])

            if "dependencies" in updates:
                self._replace_dependencies(task, updates["dependencies"] or [])

            task.touch()
            if "status" in updates and updates["status"] != task.status:
                result = self.lifecycle.transition(task, updates["status"])
                self.last_unblocked = result.unblocked
        return task

    def _replace_dependencies(self, task: Task, raw: Any) -> None:
        wanted = string_list(raw, "dependencies")
        added = [d for d in wanted if d not in task.dependencies]
        removed = [d for d in task.dependencies if d not in wanted]
        self._validate_dependencies(task.id, added)
        for dep_id in removed:
            self.graph.remove_edge(task, dep_id)
        for dep_id in added:
            self.graph.add_edge(task, dep_id)
        self._guard_started(task)
        self.graph.refresh(task)

    def _guard_started(self, task: Task) -> None:
        if task.status in ACTIVE_STATUSES or task.status == TaskStatus.COMPLETED.value:
            unmet = self.graph.unmet_dependencies(task)
            if unmet:
                raise InvalidTransition(
                    f"Task {task.id} is {task.status}; cannot add incomplete dependencies {', '.join(unmet)}"
                )

    def add_dependency(self, task_id: str, dependency_id: str) -> Task:
        with self._mutation():
            task = self.store.get_task(task_id)
            self._validate_dependencies(task_id, [dependency_id])
            self.graph.add_edge(task, dependency_id)
            self._guard_started(task)
            self.graph.refresh(task)
            task.touch()
        return task

    def remove_dependency(self, task_id: str, dependency_id: str) -> Task:
        """Drop an edge; a blocked task with nothing left to wait on becomes todo."""
        with self._mutation():
            task = self.store.get_task(task_id)
            if dependency_id not in task.dependencies:
                raise NotFound(f"Task {task_id} does not depend on {dependency_id}")
            self.graph.remove_edge(task, dependency_id)
            self.graph.refresh(task)
            task.touch()
        return task

    def delete_task(self, task_id: str, force: bool = False) -> Task:
        """
        Delete a task.

        Raises:
            ReferentialIntegrity: other tasks depend on it and ``force`` is
                not set. With ``force`` those edges are dropped first.
        """
        with self._mutation():
            task = self.store.get_task(task_id)
            dependents = [d for d in task.blocks if d in self.store.tasks]
            if dependents and not force:
                raise ReferentialIntegrity(
                    f"Task {task_id} is a dependency of {', '.join(dependents)}; delete with force"
                )
            for dep_id in list(task.dependencies):
                self.graph.remove_edge(task, dep_id)
            for dependent_id in dependents:
                dependent = self.store.get_task(dependent_id)
                self.graph.remove_edge(dependent, task_id)
            self.store.remove_task(task_id)
            for dependent_id in dependents:
                self.graph.refresh(self.store.get_task(dependent_id))
        return task

    # ═══════════════════════════════════════════════════════════════════
    # ASSIGNMENT
    # ═══════════════════════════════════════════════════════════════════

    def assign_agent_to_task(
        self,
        task_id: str,
        agent_id: str,
        role: str = AssigneeRole.PRIMARY.value,
        assigned_by: str | None = None,
    ) -> Task:
        """
        Append an agent to a task's assignees and drop a notification in
        the agent's inbox.

        Raises:
            NotFound: unknown task, agent or ``assigned_by`` agent.
            AlreadyAssigned: the agent is already on the task.
            InvalidTransition: the task is completed or cancelled.
        """
        with self._mutation():
            task = self.store.get_task(task_id)
            self.store.get_agent(agent_id)
            if task.is_terminal:
                raise InvalidTransition(f"Task {task_id} is {task.status}; cannot assign agents")
            if task.is_assigned_to(agent_id):
                raise AlreadyAssigned(f"Agent {agent_id} is already assigned to task {task_id}")
            task.assignees.append(
                Assignee(agent_id=agent_id, role=coerce_choice(role, AssigneeRole, "role"))
            )
            task.touch()
            self._notify_assignment(task, agent_id, assigned_by)
        logger.debug("Agent %s assigned to %s", agent_id, task_id)
        return task

    def _notify_assignment(self, task: Task, agent_id: str, assigned_by: str | None) -> None:
        assigner = self.store.get_agent(assigned_by).name if assigned_by else "System"
        self.store.push_notification(
            agent_id,
            {
                "type": "task_assignment",
                "task_id": task.id,
                "task_title": task.title,
                "assigned_by": assigner,
                "assigned_at": now_iso(),
                "priority": task.priority,
                "message": f"You have been assigned to task: {task.title}",
            },
        )

    def unassign_agent_from_task(self, task_id: str, agent_id: str) -> Task:
        with self._mutation():
            task = self.store.get_task(task_id)
            if not task.is_assigned_to(agent_id):
                raise NotFound(f"Agent {agent_id} is not assigned to task {task_id}")
            task.assignees = [a for a in task.assignees if a.agent_id != agent_id]
            task.touch()
        return task

    def transfer_task(self, task_id: str, from_agent_id: str, to_agent_id: str) -> Task:
        """
        Move an assignment from one agent to another.

        The new assignee is added before the old one is removed, and the
        whole call is one transaction, so the task is never seen without
        an assignee.
        """
        with self._mutation():
            task = self.store.get_task(task_id)
            self.store.get_agent(to_agent_id)
            if task.is_terminal:
                raise InvalidTransition(f"Task {task_id} is {task.status}; cannot transfer")
            current = next((a for a in task.assignees if a.agent_id == from_agent_id), None)
            if current is None:
                raise NotFound(f"Agent {from_agent_id} is not assigned to task {task_id}")
            if task.is_assigned_to(to_agent_id):
                raise AlreadyAssigned(f"Agent {to_agent_id} is already assigned to task {task_id}")

            task.assignees.append(Assignee(agent_id=to_agent_id, role=current.role))
            task.assignees = [a for a in task.assignees if a.agent_id != from_agent_id]
            task.touch()
            assigned_by = from_agent_id if from_agent_id in self.store.agents else None
            self._notify_assignment(task, to_agent_id, assigned_by)
        logger.debug("Task %s transferred from %s to %s", task_id, from_agent_id, to_agent_id)
        return task

    def take_task(self, task_id: str, agent_id: str) -> Task:
        """Self-assign as primary."""
        return self.assign_agent_to_task(task_id, agent_id, AssigneeRole.PRIMARY.value, assigned_by=agent_id)

    # ═══════════════════════════════════════════════════════════════════
    # NOTIFICATIONS
    # ═══════════════════════════════════════════════════════════════════

    def get_notifications(self, agent_id: str) -> list[dict[str, Any]]:
        """Assignment notices waiting for ``agent_id``, oldest first."""
        self.store.get_agent(agent_id)
        return self.store.notifications_for(agent_id)

    def clear_notifications(self, agent_id: str) -> int:
        """Empty the agent's inbox and return how many notices were dropped."""
        with self._mutation():
            self.store.get_agent(agent_id)
            cleared = self.store.clear_notifications(agent_id)
        logger.debug("Cleared %d notification(s) for %s", cleared, agent_id)
        return cleared

    # ═══════════════════════════════════════════════════════════════════
    # LIFECYCLE
    # ═══════════════════════════════════════════════════════════════════

    def _check_actor(self, task: Task, agent_id: str | None) -> None:
        if agent_id is None:
            return
        self.store.get_agent(agent_id)
        if not task.is_assigned_to(agent_id):
            raise ValidationError(f"Agent {agent_id} is not assigned to task {task.id}")

    def _apply(self, task_id: str, agent_id: str | None, action: str) -> TransitionResult:
        with self._mutation():
            task = self.store.get_task(task_id)
            self._check_actor(task, agent_id)
            result: TransitionResult = getattr(self.lifecycle, action)(task)
        self.last_unblocked = result.unblocked
        return result

    def start_task(self, task_id: str, agent_id: str | None = None) -> TransitionResult:
        return self._apply(task_id, agent_id, "start")

    def submit_for_review(self, task_id: str, agent_id: str | None = None) -> TransitionResult:
        return self._apply(task_id, agent_id, "submit_for_review")

    def complete_task(self, task_id: str, agent_id: str | None = None) -> TransitionResult:
        """Complete a task and unblock its dependents in the same call."""
        return self._apply(task_id, agent_id, "complete")

    def cancel_task(self, task_id: str) -> TransitionResult:
        return self._apply(task_id, None, "cancel")

    def reopen_task(self, task_id: str) -> TransitionResult:
        return self._apply(task_id, None, "reopen")

    # ═══════════════════════════════════════════════════════════════════
    # QUERIES
    # ═══════════════════════════════════════════════════════════════════

    def get_eligible_tasks(self, agent_id: str) -> list[Task]:
        return self.recommender.get_eligible_tasks(self.store.get_agent(agent_id))

    def get_recommendations_for_agent(
        self, agent_id: str, limit: int | None = None, record: bool = True
    ) -> list[Recommendation]:
        """
        Ranked next tasks for an agent.

        With ``record`` the batch is appended to the snapshot's
        recommendation history (last 50 kept).
        """
        agent = self.store.get_agent(agent_id)
        recommendations = self.recommender.recommend(
            agent, self.max_recommendations if limit is None else limit
        )
        if record:
            self.store.record_recommendations(
                {
                    "agent_id": agent_id,
                    "date": now_iso(),
                    "recommendations": [
                        {"task_id": r.task_id, "score": r.score} for r in recommendations
                    ],
                }
            )
        return recommendations

    def get_agent_workload(self, agent_id: str) -> Workload:
        return self.workloads.workload(agent_id)

    def get_project_status(self) -> dict[str, Any]:
        return self.workloads.project_status()

    def get_my_tasks(self, agent_id: str, status: str | None = None) -> list[Task]:
        self.store.get_agent(agent_id)
        return self.list_tasks(status=status, agent=agent_id)

    def check_in(self, agent_id: str) -> dict[str, Any]:
        """Summary an agent sees when it polls for work."""
        agent = self.store.get_agent(agent_id)
        workload = self.workloads.workload(agent_id)
        recommendations = self.get_recommendations_for_agent(agent_id)
        return {
            "agent": agent.to_dict(),
            "status": {
                "active_tasks": workload.active_tasks,
                "todo_tasks": workload.todo_tasks,
                "blocked_tasks": workload.blocked_tasks,
                "pending_recommendations": len(recommendations),
            },
            "active_tasks": [t.to_dict() for t in workload.active],
            "todo_tasks": [t.to_dict() for t in workload.todo],
            "recommendations": [r.to_dict() for r in recommendations],
        }

    def export(self) -> dict[str, Any]:
        """Snapshot plus the derived project status and dependency order."""
        return {
            **self.snapshot(),
            "status": self.get_project_status(),
            "dependency_order": self.graph.topological_order(),
            "exported_at": now_iso(),
        }
