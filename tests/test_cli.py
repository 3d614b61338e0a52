"""Tests for the taskman CLI."""

from __future__ import annotations

import json
from pathlib import Path

import pytest
from click.testing import CliRunner

from taskmanager.cli import main


@pytest.fixture
def run(tmp_path: Path):
    runner = CliRunner()

    def invoke(*args: str, agent: str | None = None):
        base = ["--data-dir", str(tmp_path)]
        if agent:
            base += ["--agent", agent]
        return runner.invoke(main, [*base, *args], env={"TASK_MANAGER_AGENT_ID": None})

    return invoke


@pytest.fixture
def seeded(run):
    assert run("init", "--name", "Demo").exit_code == 0
    assert run("agents", "add", "--id", "dev-1", "--name", "Dev", "--capabilities", "coding").exit_code == 0
    assert run("create", "--title", "Implement core", "--category", "coding", "--priority", "critical").exit_code == 0
    assert (
        run(
            "create",
            "--title",
            "Implement extras",
            "--category",
            "coding",
            "--depends-on",
            "TASK-001",
        ).exit_code
        == 0
    )
    return run


def test_version() -> None:
    result = CliRunner().invoke(main, ["--version"])
    assert result.exit_code == 0
    assert "0.1.0" in result.output


def test_init(run, tmp_path: Path) -> None:
    result = run("init")
    assert result.exit_code == 0
    assert "initialized" in result.output.lower()
    assert (tmp_path / "config.toml").exists()
    assert (tmp_path / "data" / "taskmanager.db").exists()


def test_status(seeded) -> None:
    result = seeded("status", "--json")
    assert result.exit_code == 0
    report = json.loads(result.output)
    assert report["project"]["name"] == "Demo"
    assert report["tasks"]["by_status"]["blocked"] == 1


def test_status_table(seeded) -> None:
    result = seeded("status")
    assert result.exit_code == 0
    assert "Demo" in result.output


def test_list_json(seeded) -> None:
    result = seeded("list", "--json")
    assert result.exit_code == 0
    tasks = json.loads(result.output)
    assert [(t["id"], t["status"]) for t in tasks] == [("TASK-001", "todo"), ("TASK-002", "blocked")]


def test_list_table(seeded) -> None:
    result = seeded("list", "--status", "todo")
    assert result.exit_code == 0
    assert "TASK-001" in result.output


def test_recommend_then_complete(seeded) -> None:
    result = seeded("recommend", "dev-1", "--json")
    assert result.exit_code == 0
    assert [r["task_id"] for r in json.loads(result.output)] == ["TASK-001"]

    assert seeded("assign", "TASK-001", "dev-1").exit_code == 0
    assert seeded("start", "TASK-001").exit_code == 0
    result = seeded("complete", "TASK-001")
    assert result.exit_code == 0
    assert "TASK-002" in result.output

    result = seeded("recommend", "--json", agent="dev-1")
    assert [r["task_id"] for r in json.loads(result.output)] == ["TASK-002"]


def test_start_twice_fails(seeded) -> None:
    seeded("assign", "TASK-001", "dev-1")
    assert seeded("start", "TASK-001").exit_code == 0
    result = seeded("start", "TASK-001")
    assert result.exit_code == 1
    assert "invalid_transition" in result.output


def test_unknown_task(seeded) -> None:
    result = seeded("start", "TASK-999")
    assert result.exit_code == 1
    assert "not_found" in result.output


def test_cycle_rejected(seeded) -> None:
    result = seeded("update", "TASK-001", "--depends-on", "TASK-002")
    assert result.exit_code == 1
    assert "cyclic_dependency" in result.output


def test_transfer(seeded) -> None:
    seeded("agents", "add", "--id", "dev-2", "--name", "Other", "--capabilities", "coding")
    seeded("assign", "TASK-001", "dev-1")
    assert seeded("transfer", "TASK-001", "dev-1", "dev-2").exit_code == 0
    tasks = json.loads(seeded("list", "--agent", "dev-2", "--json").output)
    assert [t["id"] for t in tasks] == ["TASK-001"]


def test_workload_and_check_in(seeded) -> None:
    seeded("assign", "TASK-001", "dev-1")
    seeded("start", "TASK-001")
    data = json.loads(seeded("workload", "dev-1", "--json").output)
    assert data["active_tasks"] == 1

    result = seeded("check-in", agent="dev-1")
    assert result.exit_code == 0
    assert "Active: 1" in result.output


def test_assign_needs_agent(seeded) -> None:
    result = seeded("assign", "TASK-001")
    assert result.exit_code != 0
    assert "No agent given" in result.output


def test_agents_list_and_remove(seeded) -> None:
    listed = json.loads(seeded("agents", "list", "--json").output)
    assert [a["id"] for a in listed] == ["dev-1"]
    assert seeded("agents", "remove", "dev-1").exit_code == 0
    assert "No agents registered" in seeded("agents").output


def test_export(seeded, tmp_path: Path) -> None:
    out = tmp_path / "export.json"
    assert seeded("export", "--output", str(out)).exit_code == 0
    data = json.loads(out.read_text())
    assert data["dependency_order"] == ["TASK-001", "TASK-002"]


def test_phases(seeded) -> None:
    assert seeded("phase", "add", "mvp", "--activate").exit_code == 0
    seeded("create", "--title", "Phase work")
    tasks = json.loads(seeded("list", "--phase", "mvp", "--json").output)
    assert [t["title"] for t in tasks] == ["Phase work"]


def test_notifications(seeded) -> None:
    seeded("assign", "TASK-001", "dev-1")
    inbox = json.loads(seeded("notifications", "--json", agent="dev-1").output)
    assert [n["task_id"] for n in inbox] == ["TASK-001"]

    result = seeded("notifications", "dev-1", "--clear")
    assert result.exit_code == 0
    assert "Cleared 1 notification(s)" in result.output
    assert "No notifications" in seeded("notifications", "dev-1").output


def test_bad_policy_in_config(run, tmp_path: Path) -> None:
    (tmp_path / "config.toml").write_text('[policy]\non_dependency_cancelled = "cascade"\n')
    result = run("status")
    assert result.exit_code == 1
    assert "on_dependency_cancelled" in result.output
