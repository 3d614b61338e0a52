"""Tests for the FastAPI tool server."""

from __future__ import annotations

from collections.abc import Iterator
from pathlib import Path
from typing import Any

import pytest
from httpx import ASGITransport, AsyncClient

from taskmanager.api.server import app, get_session
from taskmanager.config import load_settings
from taskmanager.session import ProjectSession


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture
def data_dir(tmp_path: Path) -> Iterator[Path]:
    settings = load_settings(tmp_path, agent_id="dev-1")
    app.dependency_overrides[get_session] = lambda: ProjectSession(settings)
    yield tmp_path
    app.dependency_overrides.clear()


async def call(client: AsyncClient, name: str, /, **args: Any) -> Any:
    response = await client.post(f"/api/tools/{name}", json=args)
    assert response.status_code == 200, response.text
    return response.json()["result"]


@pytest.mark.anyio
async def test_health() -> None:
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        response = await client.get("/api/health")
    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "ok"
    assert "version" in data
    assert "uptime_seconds" in data


@pytest.mark.anyio
async def test_list_tools() -> None:
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        response = await client.get("/api/tools")
    assert response.status_code == 200
    names = {tool["name"] for tool in response.json()["tools"]}
    assert {
        "init_task_manager",
        "create_task",
        "list_tasks",
        "add_agent",
        "assign_agent",
        "get_recommendations",
        "get_project_status",
        "agent_check_in",
        "start_task",
        "complete_task",
        "get_agent_workload",
        "list_agents",
        "update_task",
        "export_project",
        "remove_agent",
        "delete_task",
        "get_task",
        "unassign_agent",
        "transfer_task",
        "get_my_tasks",
        "get_my_notifications",
        "clear_my_notifications",
        "get_current_agent",
        "set_current_agent",
    } <= names


@pytest.mark.anyio
async def test_agent_workflow(data_dir: Path) -> None:
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        init = await call(client, "init_task_manager", name="API Project")
        assert init["created"] is True

        await call(client, "add_agent", id="dev-1", name="Dev", capabilities=["coding"])
        first = await call(client, "create_task", title="Implement core", category="coding", priority="critical")
        second = await call(
            client, "create_task", title="Implement extras", category="coding", dependencies=[first["id"]]
        )
        assert second["status"] == "blocked"

        recs = await call(client, "get_recommendations")
        assert [r["task_id"] for r in recs] == [first["id"]]

        await call(client, "assign_agent", task_id=first["id"], agent_id="dev-1")
        await call(client, "start_task", task_id=first["id"], agent_id="dev-1")
        done = await call(client, "complete_task", task_id=first["id"])
        assert [e["task_id"] for e in done["unblocked"]] == [second["id"]]

        check_in = await call(client, "agent_check_in")
        assert [r["task_id"] for r in check_in["recommendations"]] == [second["id"]]

        status = await call(client, "get_project_status")
        assert status["project"]["name"] == "API Project"
        assert status["progress"]["completed"] == 1


@pytest.mark.anyio
async def test_update_and_transfer(data_dir: Path) -> None:
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        await call(client, "init_task_manager")
        await call(client, "add_agent", id="dev-1", name="Dev")
        await call(client, "add_agent", id="dev-2", name="Other")
        task = await call(client, "create_task", title="Shared", assignees=["dev-1"])

        updated = await call(client, "update_task", task_id=task["id"], updates={"priority": "high"})
        assert updated["task"]["priority"] == "high"

        moved = await call(client, "transfer_task", task_id=task["id"], from_agent_id="dev-1", to_agent_id="dev-2")
        assert [a["agent_id"] for a in moved["assignees"]] == ["dev-2"]
        assert await call(client, "get_my_tasks") == []


@pytest.mark.anyio
async def test_errors_map_to_status_codes(data_dir: Path) -> None:
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        await call(client, "init_task_manager")
        a = await call(client, "create_task", title="A")
        b = await call(client, "create_task", title="B", dependencies=[a["id"]])

        missing = await client.post("/api/tools/get_task", json={"task_id": "TASK-999"})
        assert missing.status_code == 404
        assert missing.json()["kind"] == "not_found"

        invalid = await client.post("/api/tools/create_task", json={})
        assert invalid.status_code == 422
        assert invalid.json()["kind"] == "validation"

        cycle = await client.post(
            "/api/tools/update_task", json={"task_id": a["id"], "dependencies": [b["id"]]}
        )
        assert cycle.status_code == 409
        assert cycle.json()["kind"] == "cyclic_dependency"
        assert set(cycle.json()["cycle"]) == {a["id"], b["id"]}

        unknown = await client.post("/api/tools/teleport", json={})
        assert unknown.status_code == 404


@pytest.mark.anyio
async def test_current_agent_and_notifications(data_dir: Path) -> None:
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        await call(client, "init_task_manager")
        await call(client, "add_agent", id="dev-1", name="Dev")
        await call(client, "add_agent", id="dev-2", name="Reviewer")
        task = await call(client, "create_task", title="Review schema", priority="high")

        current = await call(client, "get_current_agent")
        assert current["agent_id"] == "dev-1"
        assert current["agent"]["name"] == "Dev"

        await call(client, "assign_agent", task_id=task["id"], agent_id="dev-2", assigned_by="dev-1")
        assert await call(client, "get_my_notifications") == []

        switched = await call(client, "set_current_agent", agent_id="dev-2")
        assert switched["agent_id"] == "dev-2"
        inbox = await call(client, "get_my_notifications")
        assert [(n["task_id"], n["assigned_by"]) for n in inbox] == [(task["id"], "Dev")]

        cleared = await call(client, "clear_my_notifications")
        assert cleared == {"agent_id": "dev-2", "cleared": 1}
        assert await call(client, "get_my_notifications") == []

        unknown = await client.post("/api/tools/set_current_agent", json={"agent_id": "ghost"})
        assert unknown.status_code == 404
        assert (await call(client, "get_current_agent"))["agent_id"] == "dev-2"
