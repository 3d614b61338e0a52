"""Named tools exposed to agents over HTTP.

Each tool takes a JSON object of arguments and returns plain JSON. Tools
that touch project state run inside one ``ProjectSession.open()`` so a
call is a single load-mutate-save.
"""

from __future__ import annotations

import functools
from collections.abc import Callable
from dataclasses import asdict, dataclass, field
from typing import Any

from taskmanager.engine.lifecycle import TransitionResult
from taskmanager.errors import NotFound, ValidationError
from taskmanager.manager import TaskManager
from taskmanager.session import ProjectSession

ToolHandler = Callable[[ProjectSession, dict[str, Any]], Any]


@dataclass(frozen=True)
class Tool:
    name: str
    description: str
    handler: ToolHandler
    required: tuple[str, ...] = field(default_factory=tuple)

    def to_dict(self) -> dict[str, Any]:
        return {"name": self.name, "description": self.description, "required": list(self.required)}


TOOLS: dict[str, Tool] = {}


def tool(name: str, description: str, required: tuple[str, ...] = ()) -> Callable[[ToolHandler], ToolHandler]:
    def register(handler: ToolHandler) -> ToolHandler:
        TOOLS[name] = Tool(name=name, description=description, handler=handler, required=required)
        return handler

    return register


def managed(
    write: bool = True, current_agent: bool = False
) -> Callable[[Callable[[TaskManager, dict[str, Any]], Any]], ToolHandler]:
    """Run a manager-level handler inside a session.

    With ``current_agent`` a missing ``agent_id`` argument falls back to the
    session's configured agent.
    """

    def decorate(func: Callable[[TaskManager, dict[str, Any]], Any]) -> ToolHandler:
        @functools.wraps(func)
        def run(session: ProjectSession, args: dict[str, Any]) -> Any:
            if current_agent and not args.get("agent_id"):
                if not session.settings.agent_id:
                    raise ValidationError("agent_id is required (no current agent configured)")
                args = {**args, "agent_id": session.settings.agent_id}
            with session.open(write=write) as manager:
                return func(manager, args)

        return run

    return decorate


def call_tool(session: ProjectSession, name: str, args: dict[str, Any] | None) -> Any:
    """Dispatch ``name`` with ``args``.

    Raises:
        NotFound: unknown tool name.
        ValidationError: a required argument is missing.
    """
    entry = TOOLS.get(name)
    if entry is None:
        raise NotFound(f"Unknown tool: {name}")
    args = dict(args or {})
    missing = [key for key in entry.required if args.get(key) in (None, "")]
    if missing:
        raise ValidationError(f"{name}: missing argument(s) {', '.join(missing)}")
    return entry.handler(session, args)


def _transition(result: TransitionResult) -> dict[str, Any]:
    return {
        "task": result.task.to_dict(),
        "previous_status": result.previous_status,
        "unblocked": [asdict(event) for event in result.unblocked],
        "flagged": list(result.flagged),
    }


# ═══════════════════════════════════════════════════════════════════════════
# PROJECT
# ═══════════════════════════════════════════════════════════════════════════


@tool("init_task_manager", "Create the project if it does not exist")
def init_task_manager(session: ProjectSession, args: dict[str, Any]) -> Any:
    return session.initialize(name=args.get("name"), description=args.get("description"))


@tool("get_project_status", "Progress, agent and task counts")
@managed(write=False)
def get_project_status(manager: TaskManager, args: dict[str, Any]) -> Any:
    return manager.get_project_status()


@tool("export_project", "Full snapshot plus status and dependency order")
@managed(write=False)
def export_project(manager: TaskManager, args: dict[str, Any]) -> Any:
    return manager.export()


# ═══════════════════════════════════════════════════════════════════════════
# AGENTS
# ═══════════════════════════════════════════════════════════════════════════


@tool("add_agent", "Register an AI or human agent", required=("name",))
@managed()
def add_agent(manager: TaskManager, args: dict[str, Any]) -> Any:
    return manager.add_agent(args).to_dict()


@tool("list_agents", "Registered agents with workload counts")
@managed(write=False)
def list_agents(manager: TaskManager, args: dict[str, Any]) -> Any:
    return [
        {**agent.to_dict(), "workload": manager.get_agent_workload(agent.id).to_dict(include_tasks=False)}
        for agent in manager.list_agents(status=args.get("status"), agent_type=args.get("type"))
    ]


@tool("remove_agent", "Remove an agent; force strips active assignments", required=("agent_id",))
@managed()
def remove_agent(manager: TaskManager, args: dict[str, Any]) -> Any:
    return manager.remove_agent(args["agent_id"], force=bool(args.get("force"))).to_dict()


@tool("get_agent_workload", "Active, todo, blocked and completed tasks for an agent")
@managed(write=False, current_agent=True)
def get_agent_workload(manager: TaskManager, args: dict[str, Any]) -> Any:
    return manager.get_agent_workload(args["agent_id"]).to_dict()


@tool("agent_check_in", "Workload summary plus next recommendations")
@managed(current_agent=True)
def agent_check_in(manager: TaskManager, args: dict[str, Any]) -> Any:
    return manager.check_in(args["agent_id"])


# ═══════════════════════════════════════════════════════════════════════════
# TASKS
# ═══════════════════════════════════════════════════════════════════════════


@tool("create_task", "Create a task", required=("title",))
@managed()
def create_task(manager: TaskManager, args: dict[str, Any]) -> Any:
    return manager.create_task(args).to_dict()


@tool("get_task", "One task by id", required=("task_id",))
@managed(write=False)
def get_task(manager: TaskManager, args: dict[str, Any]) -> Any:
    return manager.get_task(args["task_id"]).to_dict()


@tool("list_tasks", "Tasks filtered by status, priority, agent or phase")
@managed(write=False)
def list_tasks(manager: TaskManager, args: dict[str, Any]) -> Any:
    tasks = manager.list_tasks(
        status=args.get("status"),
        priority=args.get("priority"),
        agent=args.get("agent_id"),
        phase=args.get("phase"),
    )
    return [t.to_dict() for t in tasks]


@tool("get_my_tasks", "Tasks assigned to the current agent")
@managed(write=False, current_agent=True)
def get_my_tasks(manager: TaskManager, args: dict[str, Any]) -> Any:
    return [t.to_dict() for t in manager.get_my_tasks(args["agent_id"], status=args.get("status"))]


@tool("update_task", "Patch task fields; status changes follow the lifecycle", required=("task_id",))
@managed()
def update_task(manager: TaskManager, args: dict[str, Any]) -> Any:
    updates = args.get("updates")
    if updates is None:
        updates = {k: v for k, v in args.items() if k != "task_id"}
    if not isinstance(updates, dict):
        raise ValidationError("updates must be an object")
    task = manager.update_task(args["task_id"], updates)
    return {
        "task": task.to_dict(),
        "unblocked": [asdict(event) for event in manager.last_unblocked],
    }


@tool("delete_task", "Delete a task; force drops dependent edges", required=("task_id",))
@managed()
def delete_task(manager: TaskManager, args: dict[str, Any]) -> Any:
    return manager.delete_task(args["task_id"], force=bool(args.get("force"))).to_dict()


@tool("start_task", "Move a task from todo to in-progress", required=("task_id",))
@managed()
def start_task(manager: TaskManager, args: dict[str, Any]) -> Any:
    return _transition(manager.start_task(args["task_id"], args.get("agent_id")))


@tool("complete_task", "Complete a task and unblock its dependents", required=("task_id",))
@managed()
def complete_task(manager: TaskManager, args: dict[str, Any]) -> Any:
    return _transition(manager.complete_task(args["task_id"], args.get("agent_id")))


# ═══════════════════════════════════════════════════════════════════════════
# ASSIGNMENT
# ═══════════════════════════════════════════════════════════════════════════


@tool("assign_agent", "Add an agent to a task's assignees", required=("task_id", "agent_id"))
@managed()
def assign_agent(manager: TaskManager, args: dict[str, Any]) -> Any:
    return manager.assign_agent_to_task(
        args["task_id"], args["agent_id"], args.get("role") or "primary", args.get("assigned_by")
    ).to_dict()


@tool("unassign_agent", "Remove an agent from a task", required=("task_id", "agent_id"))
@managed()
def unassign_agent(manager: TaskManager, args: dict[str, Any]) -> Any:
    return manager.unassign_agent_from_task(args["task_id"], args["agent_id"]).to_dict()


@tool(
    "transfer_task",
    "Hand a task from one agent to another",
    required=("task_id", "from_agent_id", "to_agent_id"),
)
@managed()
def transfer_task(manager: TaskManager, args: dict[str, Any]) -> Any:
    return manager.transfer_task(args["task_id"], args["from_agent_id"], args["to_agent_id"]).to_dict()


@tool("get_recommendations", "Ranked next tasks for an agent")
@managed(current_agent=True)
def get_recommendations(manager: TaskManager, args: dict[str, Any]) -> Any:
    limit = args.get("limit")
    recommendations = manager.get_recommendations_for_agent(
        args["agent_id"], int(limit) if limit is not None else None
    )
    return [r.to_dict() for r in recommendations]


# ═══════════════════════════════════════════════════════════════════════════
# CURRENT AGENT & NOTIFICATIONS
# ═══════════════════════════════════════════════════════════════════════════


@tool("get_current_agent", "The agent that agent-centric tools default to")
def get_current_agent(session: ProjectSession, args: dict[str, Any]) -> Any:
    agent_id = session.settings.agent_id
    if not agent_id:
        return {"agent_id": None, "agent": None}
    with session.open(write=False) as manager:
        agent = manager.store.find_agent(agent_id)
    return {"agent_id": agent_id, "agent": agent.to_dict() if agent else None}


@tool("set_current_agent", "Set the default agent for this server", required=("agent_id",))
def set_current_agent(session: ProjectSession, args: dict[str, Any]) -> Any:
    with session.open(write=False) as manager:
        agent = manager.get_agent(args["agent_id"])
    session.settings.agent_id = agent.id
    return {"agent_id": agent.id, "agent": agent.to_dict()}


@tool("get_my_notifications", "Assignment notifications for the current agent")
@managed(write=False, current_agent=True)
def get_my_notifications(manager: TaskManager, args: dict[str, Any]) -> Any:
    return manager.get_notifications(args["agent_id"])


@tool("clear_my_notifications", "Empty the current agent's notification inbox")
@managed(current_agent=True)
def clear_my_notifications(manager: TaskManager, args: dict[str, Any]) -> Any:
    return {"agent_id": args["agent_id"], "cleared": manager.clear_notifications(args["agent_id"])}
