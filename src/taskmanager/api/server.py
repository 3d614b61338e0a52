"""FastAPI server exposing the task manager tools."""

from __future__ import annotations

import time
from pathlib import Path
from typing import Any

import click
from fastapi import Body, Depends, FastAPI, Request
from fastapi.responses import JSONResponse

from taskmanager import __version__
from taskmanager.api.tools import TOOLS, call_tool
from taskmanager.config import ENV_AGENT_ID, ENV_DATA_DIR, Settings, load_settings
from taskmanager.errors import (
    CyclicDependency,
    NotEligible,
    NotFound,
    StaleSnapshot,
    TaskManagerError,
    ValidationError,
)
from taskmanager.session import ProjectSession

app = FastAPI(
    title="Multi-Agent Task Manager API",
    version=__version__,
    description="Dependency-aware task assignment and recommendations for AI and human agents",
)

_start_time = time.monotonic()
_settings: dict[str, Settings] = {}


def configure(settings: Settings) -> None:
    """Set the settings used by every request."""
    _settings["current"] = settings


def get_session() -> ProjectSession:
    if "current" not in _settings:
        configure(load_settings())
    return ProjectSession(_settings["current"])


def status_code_for(exc: TaskManagerError) -> int:
    if isinstance(exc, NotFound):
        return 404
    if isinstance(exc, ValidationError):
        return 422
    return 409


@app.exception_handler(TaskManagerError)
async def task_manager_error(request: Request, exc: TaskManagerError) -> JSONResponse:
    body: dict[str, Any] = {"error": str(exc), "kind": exc.kind}
    if isinstance(exc, NotEligible):
        body["unmet"] = exc.unmet
    elif isinstance(exc, CyclicDependency):
        body["cycle"] = exc.cycle
    elif isinstance(exc, StaleSnapshot):
        body["expected"] = exc.expected
        body["actual"] = exc.actual
    return JSONResponse(status_code=status_code_for(exc), content=body)


@app.get("/api/health")
async def health() -> dict[str, Any]:
    """Health check."""
    uptime = time.monotonic() - _start_time
    return {"status": "ok", "version": __version__, "uptime_seconds": round(uptime, 1)}


@app.get("/api/tools")
async def list_tools() -> dict[str, Any]:
    """Tool names, descriptions and required arguments."""
    tools = [entry.to_dict() for entry in TOOLS.values()]
    return {"tools": tools, "count": len(tools)}


@app.post("/api/tools/{name}")
def run_tool(
    name: str,
    args: dict[str, Any] | None = Body(default=None),
    session: ProjectSession = Depends(get_session),
) -> dict[str, Any]:
    """Call one tool with a JSON object of arguments."""
    return {"tool": name, "result": call_tool(session, name, args)}


@click.command()
@click.option("--port", default=3848, help="Port to listen on")
@click.option("--host", default="127.0.0.1", help="Host to bind to")
@click.option(
    "--data-dir",
    type=click.Path(file_okay=False, path_type=Path),
    envvar=ENV_DATA_DIR,
    help="Directory holding config.toml and the database",
)
@click.option("--agent", "agent_id", envvar=ENV_AGENT_ID, help="Default agent for agent-centric tools")
def main(port: int, host: str, data_dir: Path | None, agent_id: str | None) -> None:
    """Start the task manager API server."""
    import uvicorn

    try:
        configure(load_settings(data_dir, agent_id))
    except TaskManagerError as exc:
        raise click.ClickException(str(exc)) from None
    uvicorn.run(app, host=host, port=port)
