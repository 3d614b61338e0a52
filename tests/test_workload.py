"""Tests for workload and project status views."""

from __future__ import annotations

import pytest

from taskmanager.errors import NotFound
from taskmanager.manager import TaskManager


@pytest.fixture
def manager() -> TaskManager:
    manager = TaskManager()
    manager.add_agent({"id": "alice", "name": "Alice", "capabilities": ["coding"]})
    manager.add_agent({"id": "bob", "name": "Bob", "type": "human"})

    done = manager.create_task({"title": "Done", "priority": "critical", "assignees": ["alice"]})
    manager.start_task(done.id)
    manager.complete_task(done.id)

    review = manager.create_task({"title": "Review me", "assignees": ["alice"]})
    manager.start_task(review.id)
    manager.submit_for_review(review.id)

    manager.create_task({"title": "Next", "assignees": ["alice", "bob"]})
    blocker = manager.create_task({"title": "Blocker"})
    manager.create_task({"title": "Waiting", "dependencies": [blocker.id], "assignees": ["alice"]})
    manager.cancel_task(blocker.id)
    return manager


class TestWorkload:
    def test_counts(self, manager: TaskManager) -> None:
        load = manager.get_agent_workload("alice")
        assert load.active_tasks == 1
        assert load.todo_tasks == 1
        assert load.completed_tasks == 1
        assert load.blocked_tasks == 1
        assert [t.title for t in load.active] == ["Review me"]

    def test_total_score_sums_completed(self, manager: TaskManager) -> None:
        load = manager.get_agent_workload("alice")
        assert load.total_score == manager.get_task("TASK-001").recommendation_score
        assert load.total_score > 0

    def test_reflects_current_state(self, manager: TaskManager) -> None:
        manager.complete_task("TASK-002")
        load = manager.get_agent_workload("alice")
        assert load.active_tasks == 0
        assert load.completed_tasks == 2

    def test_to_dict_without_tasks(self, manager: TaskManager) -> None:
        data = manager.get_agent_workload("bob").to_dict(include_tasks=False)
        assert data["todo_tasks"] == 1
        assert "tasks" not in data

    def test_unknown_agent(self, manager: TaskManager) -> None:
        with pytest.raises(NotFound):
            manager.get_agent_workload("ghost")

    def test_all_workloads(self, manager: TaskManager) -> None:
        assert [w.agent_id for w in manager.workloads.all_workloads()] == ["alice", "bob"]


class TestProjectStatus:
    def test_progress(self, manager: TaskManager) -> None:
        status = manager.get_project_status()
        progress = status["progress"]
        assert progress["total_tasks"] == 5
        assert progress["completed"] == 1
        # cancelled tasks are left out of the percentage
        assert progress["completion_percentage"] == 25
        assert status["tasks"]["by_status"]["cancelled"] == 1
        assert status["tasks"]["by_priority"]["critical"] == 1

    def test_agents(self, manager: TaskManager) -> None:
        agents = manager.get_project_status()["agents"]
        assert agents["total"] == 2
        assert agents["by_type"] == {"ai": 1, "human": 1}

    def test_empty_project(self) -> None:
        status = TaskManager().get_project_status()
        assert status["progress"]["completion_percentage"] == 0
