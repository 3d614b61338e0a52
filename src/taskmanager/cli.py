"""CLI entry point for the task manager."""

from __future__ import annotations

import functools
import json
import logging
from collections.abc import Callable
from pathlib import Path
from typing import TYPE_CHECKING, Any, TypeVar

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from taskmanager import __version__
from taskmanager.config import ENV_AGENT_ID, ENV_DATA_DIR, load_settings
from taskmanager.errors import TaskManagerError
from taskmanager.models import AgentType, AssigneeRole, Priority, RiskLevel, TaskStatus

if TYPE_CHECKING:
    from taskmanager.models import Agent, Task
    from taskmanager.session import ProjectSession

console = Console()

F = TypeVar("F", bound=Callable[..., Any])

STATUS_STYLE = {
    "todo": "white",
    "in-progress": "cyan",
    "blocked": "red",
    "review": "magenta",
    "completed": "green",
    "cancelled": "dim",
}
PRIORITY_STYLE = {"critical": "bold red", "high": "yellow", "medium": "white", "low": "dim"}


def _handle_errors(func: F) -> F:
    """Print core errors in red and exit with status 1."""

    @functools.wraps(func)
    def wrapper(*args: Any, **kwargs: Any) -> Any:
        try:
            return func(*args, **kwargs)
        except TaskManagerError as exc:
            console.print(f"[red]Error ({exc.kind}):[/red] {exc}")
            raise SystemExit(1) from None

    return wrapper  # type: ignore[return-value]


def _session(ctx: click.Context) -> ProjectSession:
    from taskmanager.session import ProjectSession

    return ProjectSession(ctx.obj["settings"])


def _current_agent(ctx: click.Context, agent_id: str | None) -> str:
    resolved = agent_id or ctx.obj["settings"].agent_id
    if not resolved:
        raise click.UsageError(f"No agent given. Pass --agent or set {ENV_AGENT_ID}.")
    return str(resolved)


def _echo_json(data: Any) -> None:
    click.echo(json.dumps(data, indent=2, default=str))


@click.group()
@click.version_option(version=__version__, prog_name="taskman")
@click.option(
    "--data-dir",
    type=click.Path(file_okay=False, path_type=Path),
    envvar=ENV_DATA_DIR,
    help="Directory holding config.toml and the database",
)
@click.option("--agent", "agent_id", envvar=ENV_AGENT_ID, help="Current agent id")
@click.option("-v", "--verbose", is_flag=True, help="Log engine decisions")
@click.pass_context
def main(ctx: click.Context, data_dir: Path | None, agent_id: str | None, verbose: bool) -> None:
    """Multi-agent task manager with dependency-aware recommendations."""
    if verbose:
        logging.basicConfig(
            level=logging.DEBUG,
            format="%(message)s",
            handlers=[RichHandler(console=console, show_path=False)],
        )
    ctx.ensure_object(dict)
    try:
        ctx.obj["settings"] = load_settings(data_dir, agent_id)
    except TaskManagerError as exc:
        raise click.ClickException(str(exc)) from None


# ═══════════════════════════════════════════════════════════════════════════
# PROJECT
# ═══════════════════════════════════════════════════════════════════════════


@main.command()
@click.option("--name", default=None, help="Project name")
@click.option("--description", default=None, help="Project description")
@click.pass_context
@_handle_errors
def init(ctx: click.Context, name: str | None, description: str | None) -> None:
    """Initialize the data directory, config and an empty project."""
    result = _session(ctx).initialize(name=name, description=description)
    verb = "initialized" if result["created"] else "already initialized"
    console.print(f"[green]Task manager {verb} at {result['data_dir']}[/green]")
    console.print(f"  Database: {result['database']}")
    console.print(f"  Config:   {result['config']}")


@main.command()
@click.option("--json", "as_json", is_flag=True, help="Output JSON")
@click.pass_context
@_handle_errors
def status(ctx: click.Context, as_json: bool) -> None:
    """Show project progress."""
    with _session(ctx).open(write=False) as manager:
        report = manager.get_project_status()

    if as_json:
        _echo_json(report)
        return

    progress = report["progress"]
    console.print(f"[bold]{report['project']['name']}[/bold] (v{report['version']})")
    if report["project"]["active_phase"]:
        console.print(f"Active phase: {report['project']['active_phase']}")
    console.print(
        f"Tasks: {progress['total_tasks']} | Completed: {progress['completed']} "
        f"({progress['completion_percentage']}%) | In progress: {progress['in_progress']}"
    )

    table = Table(title="Tasks by status")
    table.add_column("Status")
    table.add_column("Count", justify="right")
    for name, count in report["tasks"]["by_status"].items():
        table.add_row(f"[{STATUS_STYLE.get(name, 'white')}]{name}[/]", str(count))
    console.print(table)
    agents = report["agents"]
    console.print(
        f"Agents: {agents['total']} ({agents['active']} active) | "
        f"AI: {agents['by_type']['ai']} | Human: {agents['by_type']['human']}"
    )


@main.command()
@click.option("--output", "-o", type=click.Path(dir_okay=False, path_type=Path), default=None)
@click.pass_context
@_handle_errors
def export(ctx: click.Context, output: Path | None) -> None:
    """Export the full project snapshot as JSON."""
    with _session(ctx).open(write=False) as manager:
        data = manager.export()
    if output is None:
        _echo_json(data)
        return
    output.write_text(json.dumps(data, indent=2, default=str))
    console.print(f"[green]Exported to {output}[/green]")


@main.group()
def phase() -> None:
    """Manage project phases."""


@phase.command("add")
@click.argument("phase_id")
@click.option("--name", default=None)
@click.option("--depends-on", multiple=True, help="Phase this one follows")
@click.option("--activate", is_flag=True, help="Make it the active phase")
@click.pass_context
@_handle_errors
def phase_add(
    ctx: click.Context, phase_id: str, name: str | None, depends_on: tuple[str, ...], activate: bool
) -> None:
    """Add a phase."""
    with _session(ctx).open() as manager:
        manager.add_phase(
            {
                "id": phase_id,
                "name": name or phase_id,
                "dependencies": list(depends_on),
                "status": "active" if activate else "pending",
            }
        )
    console.print(f"[green]Phase {phase_id} added[/green]")


@phase.command("activate")
@click.argument("phase_id")
@click.pass_context
@_handle_errors
def phase_activate(ctx: click.Context, phase_id: str) -> None:
    """Make a phase the active one."""
    with _session(ctx).open() as manager:
        manager.set_active_phase(phase_id)
    console.print(f"[green]Active phase: {phase_id}[/green]")


# ═══════════════════════════════════════════════════════════════════════════
# AGENTS
# ═══════════════════════════════════════════════════════════════════════════


@main.group(invoke_without_command=True)
@click.pass_context
def agents(ctx: click.Context) -> None:
    """List or manage agents."""
    if ctx.invoked_subcommand is None:
        ctx.invoke(agents_list)


@agents.command("list")
@click.option("--json", "as_json", is_flag=True, help="Output JSON")
@click.pass_context
@_handle_errors
def agents_list(ctx: click.Context, as_json: bool = False) -> None:
    """List registered agents with their workload."""
    with _session(ctx).open(write=False) as manager:
        registered = manager.list_agents()
        loads = {a.id: manager.get_agent_workload(a.id) for a in registered}

    if as_json:
        _echo_json([{**a.to_dict(), "workload": loads[a.id].to_dict(False)} for a in registered])
        return
    if not registered:
        console.print("[dim]No agents registered.[/dim]")
        return
    _print_agents(registered, {aid: w.active_tasks for aid, w in loads.items()})


@agents.command("add")
@click.option("--id", "agent_id", default=None, help="Agent id (generated if omitted)")
@click.option("--name", required=True)
@click.option("--type", "agent_type", type=click.Choice([t.value for t in AgentType]), default="ai")
@click.option("--capabilities", default="", help="Comma-separated capability tags")
@click.pass_context
@_handle_errors
def agents_add(
    ctx: click.Context, agent_id: str | None, name: str, agent_type: str, capabilities: str
) -> None:
    """Register an agent."""
    data: dict[str, Any] = {
        "name": name,
        "type": agent_type,
        "capabilities": [c.strip() for c in capabilities.split(",") if c.strip()],
    }
    if agent_id:
        data["id"] = agent_id
    with _session(ctx).open() as manager:
        agent = manager.add_agent(data)
    console.print(f"[green]Agent {agent.name} ({agent.id}) added[/green]")


@agents.command("update")
@click.argument("agent_id")
@click.option("--name", default=None)
@click.option("--status", type=click.Choice(["active", "inactive"]), default=None)
@click.option("--capabilities", default=None, help="Comma-separated capability tags")
@click.pass_context
@_handle_errors
def agents_update(
    ctx: click.Context,
    agent_id: str,
    name: str | None,
    status: str | None,
    capabilities: str | None,
) -> None:
    """Update an agent's name, status or capabilities."""
    updates: dict[str, Any] = {}
    if name is not None:
        updates["name"] = name
    if status is not None:
        updates["status"] = status
    if capabilities is not None:
        updates["capabilities"] = [c.strip() for c in capabilities.split(",") if c.strip()]
    with _session(ctx).open() as manager:
        manager.update_agent(agent_id, updates)
    console.print(f"[green]Agent {agent_id} updated[/green]")


@agents.command("remove")
@click.argument("agent_id")
@click.option("--force", is_flag=True, help="Strip active assignments first")
@click.pass_context
@_handle_errors
def agents_remove(ctx: click.Context, agent_id: str, force: bool) -> None:
    """Remove an agent."""
    with _session(ctx).open() as manager:
        manager.remove_agent(agent_id, force=force)
    console.print(f"[green]Agent {agent_id} removed[/green]")


# ═══════════════════════════════════════════════════════════════════════════
# TASKS
# ═══════════════════════════════════════════════════════════════════════════


@main.command()
@click.option("--title", required=True)
@click.option("--description", default="")
@click.option("--category", default="general")
@click.option("--phase", "phase_id", default=None)
@click.option("--priority", type=click.Choice([p.value for p in Priority]), default="medium")
@click.option("--risk", type=click.Choice([r.value for r in RiskLevel]), default="medium")
@click.option("--depends-on", multiple=True, help="Task id this task depends on")
@click.option("--assign", multiple=True, help="Agent id to assign")
@click.option("--capability", multiple=True, help="Required capability tag")
@click.option("--criteria", multiple=True, help="Completion criterion")
@click.pass_context
@_handle_errors
def create(
    ctx: click.Context,
    title: str,
    description: str,
    category: str,
    phase_id: str | None,
    priority: str,
    risk: str,
    depends_on: tuple[str, ...],
    assign: tuple[str, ...],
    capability: tuple[str, ...],
    criteria: tuple[str, ...],
) -> None:
    """Create a task."""
    with _session(ctx).open() as manager:
        task = manager.create_task(
            {
                "title": title,
                "description": description,
                "category": category,
                "phase": phase_id,
                "priority": priority,
                "risk_level": risk,
                "dependencies": list(depends_on),
                "assignees": list(assign),
                "required_capabilities": list(capability),
                "completion_criteria": list(criteria),
            }
        )
    console.print(f"[green]Task {task.id} created:[/green] {task.title} [{task.status}]")


@main.command("list")
@click.option("--status", type=click.Choice([s.value for s in TaskStatus]), default=None)
@click.option("--priority", type=click.Choice([p.value for p in Priority]), default=None)
@click.option("--agent", "agent_filter", default=None, help="Only tasks assigned to this agent")
@click.option("--phase", "phase_id", default=None)
@click.option("--mine", is_flag=True, help="Only tasks assigned to the current agent")
@click.option("--json", "as_json", is_flag=True, help="Output JSON")
@click.pass_context
@_handle_errors
def list_tasks(
    ctx: click.Context,
    status: str | None,
    priority: str | None,
    agent_filter: str | None,
    phase_id: str | None,
    mine: bool,
    as_json: bool,
) -> None:
    """List tasks."""
    if mine:
        agent_filter = _current_agent(ctx, None)
    with _session(ctx).open(write=False) as manager:
        tasks = manager.list_tasks(status=status, priority=priority, agent=agent_filter, phase=phase_id)

    if as_json:
        _echo_json([t.to_dict() for t in tasks])
        return
    if not tasks:
        console.print("[dim]No tasks found.[/dim]")
        return
    _print_tasks(tasks)


@main.command()
@click.argument("task_id")
@click.option("--status", type=click.Choice([s.value for s in TaskStatus]), default=None)
@click.option("--priority", type=click.Choice([p.value for p in Priority]), default=None)
@click.option("--risk", type=click.Choice([r.value for r in RiskLevel]), default=None)
@click.option("--title", default=None)
@click.option("--phase", "phase_id", default=None)
@click.option("--depends-on", multiple=True, help="Replace dependencies")
@click.option("--clear-dependencies", is_flag=True, help="Remove all dependencies")
@click.pass_context
@_handle_errors
def update(
    ctx: click.Context,
    task_id: str,
    status: str | None,
    priority: str | None,
    risk: str | None,
    title: str | None,
    phase_id: str | None,
    depends_on: tuple[str, ...],
    clear_dependencies: bool,
) -> None:
    """Update task fields; status changes follow the task lifecycle."""
    updates: dict[str, Any] = {}
    if status is not None:
        updates["status"] = status
    if priority is not None:
        updates["priority"] = priority
    if risk is not None:
        updates["risk_level"] = risk
    if title is not None:
        updates["title"] = title
    if phase_id is not None:
        updates["phase"] = phase_id
    if depends_on or clear_dependencies:
        updates["dependencies"] = list(depends_on)
    if not updates:
        raise click.UsageError("Nothing to update.")

    with _session(ctx).open() as manager:
        task = manager.update_task(task_id, updates)
        unblocked = [e.task_id for e in manager.last_unblocked]
    console.print(f"[green]Task {task.id} updated[/green] [{task.status}]")
    if unblocked:
        console.print(f"Unblocked: {', '.join(unblocked)}")


@main.command()
@click.argument("task_id")
@click.argument("agent_id", required=False)
@click.option("--role", type=click.Choice([r.value for r in AssigneeRole]), default="primary")
@click.pass_context
@_handle_errors
def assign(ctx: click.Context, task_id: str, agent_id: str | None, role: str) -> None:
    """Assign an agent (default: the current agent) to a task."""
    agent_id = _current_agent(ctx, agent_id)
    with _session(ctx).open() as manager:
        manager.assign_agent_to_task(task_id, agent_id, role)
    console.print(f"[green]Agent {agent_id} assigned to {task_id}[/green]")


@main.command()
@click.argument("task_id")
@click.argument("agent_id")
@click.pass_context
@_handle_errors
def unassign(ctx: click.Context, task_id: str, agent_id: str) -> None:
    """Remove an agent from a task."""
    with _session(ctx).open() as manager:
        manager.unassign_agent_from_task(task_id, agent_id)
    console.print(f"[green]Agent {agent_id} unassigned from {task_id}[/green]")


@main.command()
@click.argument("task_id")
@click.argument("from_agent")
@click.argument("to_agent")
@click.pass_context
@_handle_errors
def transfer(ctx: click.Context, task_id: str, from_agent: str, to_agent: str) -> None:
    """Move a task from one agent to another."""
    with _session(ctx).open() as manager:
        manager.transfer_task(task_id, from_agent, to_agent)
    console.print(f"[green]Task {task_id} transferred: {from_agent} -> {to_agent}[/green]")


def _lifecycle_command(name: str, action: str, help_text: str) -> None:
    @main.command(name, help=help_text)
    @click.argument("task_id")
    @click.pass_context
    @_handle_errors
    def command(ctx: click.Context, task_id: str) -> None:
        agent_id = ctx.obj["settings"].agent_id if action in ("start_task", "complete_task") else None
        with _session(ctx).open() as manager:
            method = getattr(manager, action)
            result = method(task_id, agent_id) if agent_id else method(task_id)
        console.print(f"[green]Task {task_id}: {result.previous_status} -> {result.task.status}[/green]")
        if result.unblocked:
            console.print(f"Unblocked: {', '.join(e.task_id for e in result.unblocked)}")
        if result.flagged:
            console.print(
                f"[yellow]Dependents now blocked by cancellation: {', '.join(result.flagged)}[/yellow]"
            )


_lifecycle_command("start", "start_task", "Start a task (todo -> in-progress).")
_lifecycle_command("review", "submit_for_review", "Submit a task for review.")
_lifecycle_command("complete", "complete_task", "Complete a task and unblock dependents.")
_lifecycle_command("cancel", "cancel_task", "Cancel a task.")
_lifecycle_command("reopen", "reopen_task", "Reopen a completed or cancelled task.")


# ═══════════════════════════════════════════════════════════════════════════
# RECOMMENDATIONS & WORKLOAD
# ═══════════════════════════════════════════════════════════════════════════


@main.command()
@click.argument("agent_id", required=False)
@click.option("--limit", default=None, type=int, help="Number of recommendations")
@click.option("--json", "as_json", is_flag=True, help="Output JSON")
@click.pass_context
@_handle_errors
def recommend(ctx: click.Context, agent_id: str | None, limit: int | None, as_json: bool) -> None:
    """Recommend the next tasks for an agent."""
    agent_id = _current_agent(ctx, agent_id)
    with _session(ctx).open() as manager:
        recommendations = manager.get_recommendations_for_agent(agent_id, limit)

    if as_json:
        _echo_json([r.to_dict() for r in recommendations])
        return
    if not recommendations:
        console.print(f"[dim]No eligible tasks for {agent_id}.[/dim]")
        return

    table = Table(title=f"Recommendations for {agent_id}")
    table.add_column("#", justify="right")
    table.add_column("Task", style="cyan", no_wrap=True)
    table.add_column("Title", max_width=40)
    table.add_column("Score", justify="right", style="bold")
    table.add_column("Why")
    for rank, rec in enumerate(recommendations, 1):
        table.add_row(str(rank), rec.task_id, rec.title, f"{rec.score:.0f}", rec.reason)
    console.print(table)


@main.command()
@click.argument("agent_id", required=False)
@click.option("--json", "as_json", is_flag=True, help="Output JSON")
@click.pass_context
@_handle_errors
def workload(ctx: click.Context, agent_id: str | None, as_json: bool) -> None:
    """Show an agent's workload."""
    agent_id = _current_agent(ctx, agent_id)
    with _session(ctx).open(write=False) as manager:
        load = manager.get_agent_workload(agent_id)

    if as_json:
        _echo_json(load.to_dict())
        return
    console.print(f"[bold]Workload for {agent_id}[/bold]")
    console.print(
        f"Active: {load.active_tasks} | Todo: {load.todo_tasks} | Blocked: {load.blocked_tasks} | "
        f"Completed: {load.completed_tasks} | Score: {load.total_score:.0f}"
    )
    tasks = load.active + load.todo + load.blocked
    if tasks:
        _print_tasks(tasks)


@main.command("check-in")
@click.argument("agent_id", required=False)
@click.pass_context
@_handle_errors
def check_in(ctx: click.Context, agent_id: str | None) -> None:
    """Summarise an agent's work and what to pick up next."""
    agent_id = _current_agent(ctx, agent_id)
    with _session(ctx).open() as manager:
        summary = manager.check_in(agent_id)

    counts = summary["status"]
    console.print(f"[bold]Check-in: {summary['agent']['name']}[/bold] ({agent_id})")
    console.print(
        f"Active: {counts['active_tasks']} | Todo: {counts['todo_tasks']} | "
        f"Blocked: {counts['blocked_tasks']}"
    )
    for rec in summary["recommendations"]:
        console.print(f"  → {rec['task_id']} {rec['title']} ({rec['reason']})")


@main.command()
@click.argument("agent_id", required=False)
@click.option("--clear", is_flag=True, help="Empty the inbox after showing it")
@click.option("--json", "as_json", is_flag=True, help="Output JSON")
@click.pass_context
@_handle_errors
def notifications(ctx: click.Context, agent_id: str | None, clear: bool, as_json: bool) -> None:
    """Show assignment notifications for an agent."""
    agent_id = _current_agent(ctx, agent_id)
    with _session(ctx).open(write=clear) as manager:
        inbox = manager.get_notifications(agent_id)
        if clear:
            manager.clear_notifications(agent_id)

    if as_json:
        _echo_json(inbox)
        return
    if not inbox:
        console.print(f"[dim]No notifications for {agent_id}.[/dim]")
        return
    for note in inbox:
        console.print(
            f"[cyan]{note['task_id']}[/cyan] {note['task_title']} "
            f"[dim]({note['priority']}, from {note['assigned_by']}, {note['assigned_at']})[/dim]"
        )
    if clear:
        console.print(f"[green]Cleared {len(inbox)} notification(s)[/green]")


# ═══════════════════════════════════════════════════════════════════════════
# RENDERING
# ═══════════════════════════════════════════════════════════════════════════


def _print_tasks(tasks: list[Task]) -> None:
    table = Table(title="Tasks")
    table.add_column("ID", style="cyan", no_wrap=True)
    table.add_column("Title", max_width=36)
    table.add_column("Status", no_wrap=True)
    table.add_column("Priority")
    table.add_column("Assignees")
    table.add_column("Depends on")
    for task in tasks:
        status_text = f"[{STATUS_STYLE.get(task.status, 'white')}]{task.status}[/]"
        if task.blocked_reason:
            status_text += f"\n[dim]{task.blocked_reason}[/dim]"
        table.add_row(
            task.id,
            task.title,
            status_text,
            f"[{PRIORITY_STYLE.get(task.priority, 'white')}]{task.priority}[/]",
            ", ".join(task.assignee_ids) or "-",
            ", ".join(task.dependencies) or "-",
        )
    console.print(table)


def _print_agents(registered: list[Agent], active_counts: dict[str, int]) -> None:
    table = Table(title="Agents")
    table.add_column("Agent ID", style="cyan", no_wrap=True)
    table.add_column("Name")
    table.add_column("Type")
    table.add_column("Status")
    table.add_column("Capabilities")
    table.add_column("Active", justify="right")
    for agent in registered:
        table.add_row(
            agent.id,
            agent.name,
            agent.type,
            agent.status,
            ", ".join(agent.capabilities) or "-",
            str(active_counts.get(agent.id, 0)),
        )
    console.print(table)
