"""Task, agent and project records exchanged with callers as plain dicts."""

from __future__ import annotations

import re
from dataclasses import asdict, dataclass, field
from datetime import datetime
from enum import StrEnum
from typing import Any

from taskmanager.errors import ValidationError

TASK_ID_PREFIX = "TASK"
WILDCARD_CAPABILITY = "all"

_TASK_ID_RE = re.compile(rf"^{TASK_ID_PREFIX}-(\d+)$")


class AgentType(StrEnum):
    """Who is doing the work."""

    AI = "ai"
    HUMAN = "human"


class AgentStatus(StrEnum):
    ACTIVE = "active"
    INACTIVE = "inactive"


class TaskStatus(StrEnum):
    """Task lifecycle states."""

    TODO = "todo"
    IN_PROGRESS = "in-progress"
    BLOCKED = "blocked"
    REVIEW = "review"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class Priority(StrEnum):
    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class RiskLevel(StrEnum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class AssigneeRole(StrEnum):
    PRIMARY = "primary"
    SECONDARY = "secondary"


class PhaseStatus(StrEnum):
    PENDING = "pending"
    ACTIVE = "active"
    COMPLETED = "completed"


class BlockedReason(StrEnum):
    """Diagnostics attached to a task that cannot start."""

    DEPENDENCIES_INCOMPLETE = "dependencies-incomplete"
    DEPENDENCY_CANCELLED = "dependency-cancelled"
    DEPENDENCY_MISSING = "dependency-missing"


TERMINAL_STATUSES = frozenset({TaskStatus.COMPLETED.value, TaskStatus.CANCELLED.value})
ACTIVE_STATUSES = frozenset({TaskStatus.IN_PROGRESS.value, TaskStatus.REVIEW.value})


def now_iso() -> str:
    return datetime.now().isoformat()


def format_task_id(number: int) -> str:
    return f"{TASK_ID_PREFIX}-{number:03d}"


def parse_task_number(task_id: str) -> int | None:
    """Return the sequence number of a ``TASK-NNN`` id, or None for foreign ids."""
    match = _TASK_ID_RE.match(task_id)
    return int(match.group(1)) if match else None


def task_id_sort_key(task_id: str) -> tuple[int, int, str]:
    """Order sequence ids numerically, foreign ids after them alphabetically."""
    number = parse_task_number(task_id)
    if number is None:
        return (1, 0, task_id)
    return (0, number, task_id)


def coerce_choice(value: Any, choices: type[StrEnum], field_name: str) -> str:
    """Validate ``value`` against an enum and return its string value."""
    try:
        return choices(str(value).lower()).value
    except ValueError:
        allowed = ", ".join(c.value for c in choices)
        raise ValidationError(f"{field_name} must be one of: {allowed} (got {value!r})") from None


def string_list(value: Any, field_name: str) -> list[str]:
    if value is None:
        return []
    if isinstance(value, str):
        value = [value]
    if not isinstance(value, (list, tuple, set, frozenset)):
        raise ValidationError(f"{field_name} must be a list of strings")
    result: list[str] = []
    for item in value:
        if not isinstance(item, str) or not item.strip():
            raise ValidationError(f"{field_name} entries must be non-empty strings (got {item!r})")
        item = item.strip()
        if item not in result:
            result.append(item)
    return result


@dataclass
class Agent:
    """A human or automated collaborator."""

    id: str
    name: str
    type: str = AgentType.AI.value
    capabilities: list[str] = field(default_factory=list)
    status: str = AgentStatus.ACTIVE.value
    created_date: str = field(default_factory=now_iso)
    updated_date: str = field(default_factory=now_iso)

    @property
    def is_active(self) -> bool:
        return self.status == AgentStatus.ACTIVE.value

    def has_capability(self, capability: str) -> bool:
        return WILDCARD_CAPABILITY in self.capabilities or capability in self.capabilities

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Agent:
        agent_id = str(data.get("id") or "").strip()
        if not agent_id:
            raise ValidationError("agent id is required")
        name = str(data.get("name") or agent_id).strip()
        created = data.get("created_date") or data.get("created") or now_iso()
        return cls(
            id=agent_id,
            name=name,
            type=coerce_choice(data.get("type", AgentType.AI.value), AgentType, "type"),
            capabilities=string_list(data.get("capabilities"), "capabilities"),
            status=coerce_choice(data.get("status", AgentStatus.ACTIVE.value), AgentStatus, "status"),
            created_date=created,
            updated_date=data.get("updated_date") or data.get("updated") or created,
        )


@dataclass
class Assignee:
    """One entry of a task's ordered assignee list."""

    agent_id: str
    role: str = AssigneeRole.PRIMARY.value
    assigned_date: str = field(default_factory=now_iso)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any] | str) -> Assignee:
        if isinstance(data, str):
            return cls(agent_id=data)
        agent_id = str(data.get("agent_id") or data.get("id") or "").strip()
        if not agent_id:
            raise ValidationError("assignee agent_id is required")
        return cls(
            agent_id=agent_id,
            role=coerce_choice(data.get("role", AssigneeRole.PRIMARY.value), AssigneeRole, "role"),
            assigned_date=data.get("assigned_date") or now_iso(),
        )


@dataclass
class Task:
    """A unit of work.

    ``blocks``, ``recommendation_score`` and ``blocked_reason`` are caches
    derived by the engine; they are recomputed on load and on every mutation.
    """

    id: str
    title: str
    category: str = "general"
    phase: str | None = None
    status: str = TaskStatus.TODO.value
    priority: str = Priority.MEDIUM.value
    risk_level: str = RiskLevel.MEDIUM.value
    description: str = ""
    assignees: list[Assignee] = field(default_factory=list)
    dependencies: list[str] = field(default_factory=list)
    blocks: list[str] = field(default_factory=list)
    required_capabilities: list[str] = field(default_factory=list)
    completion_criteria: list[str] = field(default_factory=list)
    tags: list[str] = field(default_factory=list)
    estimated_hours: float = 0.0
    recommendation_score: float = 0.0
    blocked_reason: str | None = None
    created_date: str = field(default_factory=now_iso)
    updated_date: str = field(default_factory=now_iso)
    completed_date: str | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def assignee_ids(self) -> list[str]:
        return [a.agent_id for a in self.assignees]

    def is_assigned_to(self, agent_id: str) -> bool:
        return any(a.agent_id == agent_id for a in self.assignees)

    def touch(self) -> None:
        self.updated_date = now_iso()

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["assignees"] = [a.to_dict() for a in self.assignees]
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Task:
        task_id = str(data.get("id") or "").strip()
        if not task_id:
            raise ValidationError("task id is required")
        title = str(data.get("title") or "").strip()
        if not title:
            raise ValidationError(f"task {task_id}: title is required")
        try:
            estimated_hours = float(data.get("estimated_hours") or 0.0)
        except (TypeError, ValueError):
            raise ValidationError(f"task {task_id}: estimated_hours must be a number") from None
        created = data.get("created_date") or data.get("created") or now_iso()
        return cls(
            id=task_id,
            title=title,
            category=str(data.get("category") or "general"),
            phase=data.get("phase") or None,
            status=coerce_choice(data.get("status", TaskStatus.TODO.value), TaskStatus, "status"),
            priority=coerce_choice(data.get("priority", Priority.MEDIUM.value), Priority, "priority"),
            risk_level=coerce_choice(
                data.get("risk_level", RiskLevel.MEDIUM.value), RiskLevel, "risk_level"
            ),
            description=str(data.get("description") or ""),
            assignees=[Assignee.from_dict(a) for a in data.get("assignees") or []],
            dependencies=string_list(data.get("dependencies"), "dependencies"),
            blocks=string_list(data.get("blocks"), "blocks"),
            required_capabilities=string_list(
                data.get("required_capabilities"), "required_capabilities"
            ),
            completion_criteria=string_list(data.get("completion_criteria"), "completion_criteria"),
            tags=string_list(data.get("tags"), "tags"),
            estimated_hours=estimated_hours,
            recommendation_score=float(data.get("recommendation_score") or 0.0),
            blocked_reason=data.get("blocked_reason"),
            created_date=created,
            updated_date=data.get("updated_date") or data.get("updated") or created,
            completed_date=data.get("completed_date") or data.get("completed"),
        )


@dataclass
class Phase:
    """Coarse grouping of tasks; only consulted for scoring and reports."""

    id: str
    name: str
    status: str = PhaseStatus.PENDING.value
    dependencies: list[str] = field(default_factory=list)
    deliverables: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Phase:
        phase_id = str(data.get("id") or "").strip()
        if not phase_id:
            raise ValidationError("phase id is required")
        return cls(
            id=phase_id,
            name=str(data.get("name") or phase_id),
            status=coerce_choice(data.get("status", PhaseStatus.PENDING.value), PhaseStatus, "status"),
            dependencies=string_list(data.get("dependencies"), "dependencies"),
            deliverables=string_list(data.get("deliverables"), "deliverables"),
        )


@dataclass
class Project:
    """Project metadata carried alongside tasks and agents."""

    name: str = "New Project"
    description: str = ""
    active_phase: str | None = None
    phases: dict[str, Phase] = field(default_factory=dict)
    created_date: str = field(default_factory=now_iso)

    def phase_status(self, phase_id: str | None) -> str | None:
        """Status of a phase; the project's ``active_phase`` counts as active."""
        if phase_id is None:
            return None
        if phase_id == self.active_phase:
            return PhaseStatus.ACTIVE.value
        phase = self.phases.get(phase_id)
        return phase.status if phase else None

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description,
            "active_phase": self.active_phase,
            "phases": {pid: p.to_dict() for pid, p in self.phases.items()},
            "created_date": self.created_date,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> Project:
        data = data or {}
        raw_phases = data.get("phases") or {}
        if isinstance(raw_phases, list):
            raw_phases = {p.get("id"): p for p in raw_phases}
        phases = {}
        for phase_id, raw in raw_phases.items():
            phase = Phase.from_dict({"id": phase_id, **raw})
            phases[phase.id] = phase
        return cls(
            name=str(data.get("name") or "New Project"),
            description=str(data.get("description") or ""),
            active_phase=data.get("active_phase"),
            phases=phases,
            created_date=data.get("created_date") or data.get("created") or now_iso(),
        )
