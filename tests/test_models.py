"""Tests for task, agent and project records."""

from __future__ import annotations

import pytest

from taskmanager.errors import ValidationError
from taskmanager.models import (
    Agent,
    Assignee,
    Phase,
    Project,
    Task,
    TaskStatus,
    coerce_choice,
    format_task_id,
    parse_task_number,
    string_list,
    task_id_sort_key,
)


class TestTaskIds:
    def test_format_pads_to_three_digits(self) -> None:
        assert format_task_id(1) == "TASK-001"
        assert format_task_id(1234) == "TASK-1234"

    def test_parse_sequence_id(self) -> None:
        assert parse_task_number("TASK-042") == 42
        assert parse_task_number("custom-id") is None

    def test_sort_key_is_numeric_then_foreign(self) -> None:
        ids = ["TASK-010", "zeta", "TASK-002", "alpha", "TASK-1000"]
        assert sorted(ids, key=task_id_sort_key) == [
            "TASK-002",
            "TASK-010",
            "TASK-1000",
            "alpha",
            "zeta",
        ]


class TestCoercion:
    def test_coerce_choice_normalises_case(self) -> None:
        assert coerce_choice("In-Progress", TaskStatus, "status") == "in-progress"

    def test_coerce_choice_rejects_unknown(self) -> None:
        with pytest.raises(ValidationError, match="status must be one of"):
            coerce_choice("done", TaskStatus, "status")

    def test_string_list_dedupes_and_strips(self) -> None:
        assert string_list([" a ", "b", "a"], "tags") == ["a", "b"]
        assert string_list("solo", "tags") == ["solo"]
        assert string_list(None, "tags") == []

    def test_string_list_rejects_blank_entries(self) -> None:
        with pytest.raises(ValidationError):
            string_list(["ok", ""], "dependencies")
        with pytest.raises(ValidationError):
            string_list(42, "dependencies")


class TestTask:
    def test_from_dict_requires_title(self) -> None:
        with pytest.raises(ValidationError, match="title is required"):
            Task.from_dict({"id": "TASK-001", "title": "  "})

    def test_from_dict_applies_defaults(self) -> None:
        task = Task.from_dict({"id": "TASK-001", "title": "Write parser"})
        assert task.status == "todo"
        assert task.priority == "medium"
        assert task.risk_level == "medium"
        assert task.category == "general"
        assert task.blocked_reason is None

    def test_from_dict_accepts_legacy_keys(self) -> None:
        task = Task.from_dict(
            {
                "id": "TASK-003",
                "title": "Ship",
                "created": "2024-01-01T00:00:00",
                "completed": "2024-01-02T00:00:00",
                "assignees": [{"id": "dev-1", "role": "secondary"}, "dev-2"],
            }
        )
        assert task.created_date == "2024-01-01T00:00:00"
        assert task.completed_date == "2024-01-02T00:00:00"
        assert task.assignee_ids == ["dev-1", "dev-2"]
        assert task.assignees[0].role == "secondary"

    def test_to_dict_round_trips_assignees(self) -> None:
        task = Task(id="TASK-001", title="Build", assignees=[Assignee(agent_id="dev-1")])
        again = Task.from_dict(task.to_dict())
        assert again.assignee_ids == ["dev-1"]
        assert again.is_assigned_to("dev-1")
        assert not again.is_assigned_to("dev-2")

    def test_bad_estimate_is_a_validation_error(self) -> None:
        with pytest.raises(ValidationError):
            Task.from_dict({"id": "TASK-001", "title": "x", "estimated_hours": "soon"})


class TestAgent:
    def test_wildcard_capability(self) -> None:
        agent = Agent(id="pm", name="PM", type="human", capabilities=["all"])
        assert agent.has_capability("coding")
        assert agent.is_active

    def test_from_dict_validates_type(self) -> None:
        with pytest.raises(ValidationError):
            Agent.from_dict({"id": "x", "name": "X", "type": "robot"})

    def test_name_defaults_to_id(self) -> None:
        assert Agent.from_dict({"id": "bot-7"}).name == "bot-7"


class TestProject:
    def test_active_phase_reports_active(self) -> None:
        project = Project(
            active_phase="build",
            phases={
                "plan": Phase(id="plan", name="Plan", status="completed"),
                "build": Phase(id="build", name="Build", status="pending"),
            },
        )
        assert project.phase_status("build") == "active"
        assert project.phase_status("plan") == "completed"
        assert project.phase_status("unknown") is None
        assert project.phase_status(None) is None

    def test_from_dict_accepts_phase_list(self) -> None:
        project = Project.from_dict({"phases": [{"id": "p1", "name": "One"}]})
        assert project.phases["p1"].status == "pending"
