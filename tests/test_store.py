"""Tests for the in-memory entity store."""

from __future__ import annotations

import pytest

from taskmanager.engine.store import HISTORY_LIMIT, EntityStore
from taskmanager.errors import NotFound, ReferentialIntegrity
from taskmanager.models import Agent, Assignee, Task


@pytest.fixture
def store() -> EntityStore:
    store = EntityStore()
    store.put_agent(Agent(id="dev-1", name="Dev One", capabilities=["coding"]))
    store.put_agent(Agent(id="dev-2", name="Dev Two", capabilities=["testing"]))
    store.put_task(Task(id="TASK-002", title="Second", priority="high"))
    store.put_task(
        Task(id="TASK-001", title="First", phase="build", assignees=[Assignee(agent_id="dev-1")])
    )
    store.put_task(Task(id="TASK-010", title="Tenth", status="completed"))
    return store


class TestLookup:
    def test_get_unknown_raises(self, store: EntityStore) -> None:
        with pytest.raises(NotFound):
            store.get_task("TASK-999")
        with pytest.raises(NotFound):
            store.get_agent("ghost")

    def test_find_returns_none(self, store: EntityStore) -> None:
        assert store.find_task("TASK-999") is None
        assert store.find_agent("ghost") is None

    def test_list_is_in_id_order(self, store: EntityStore) -> None:
        assert [t.id for t in store.list_tasks()] == ["TASK-001", "TASK-002", "TASK-010"]

    def test_list_filters(self, store: EntityStore) -> None:
        assert [t.id for t in store.list_tasks(status="completed")] == ["TASK-010"]
        assert [t.id for t in store.list_tasks(priority="high")] == ["TASK-002"]
        assert [t.id for t in store.list_tasks(agent="dev-1")] == ["TASK-001"]
        assert [t.id for t in store.list_tasks(phase="build")] == ["TASK-001"]
        assert [t.id for t in store.list_tasks(predicate=lambda t: "e" in t.title)] == [
            "TASK-002",
            "TASK-010",
        ]


class TestSequence:
    def test_put_advances_sequence(self, store: EntityStore) -> None:
        assert store.task_sequence == 10
        assert store.next_task_id() == "TASK-011"

    def test_ids_are_not_reused_after_removal(self, store: EntityStore) -> None:
        new_id = store.next_task_id()
        store.put_task(Task(id=new_id, title="Temp"))
        store.remove_task(new_id)
        assert store.next_task_id() != new_id


class TestRemoveAgent:
    def test_pinned_agent_needs_force(self, store: EntityStore) -> None:
        store.get_task("TASK-001").status = "in-progress"
        with pytest.raises(ReferentialIntegrity, match="TASK-001"):
            store.remove_agent("dev-1")
        assert "dev-1" in store.agents

    def test_force_strips_assignments(self, store: EntityStore) -> None:
        store.get_task("TASK-001").status = "review"
        store.remove_agent("dev-1", force=True)
        assert "dev-1" not in store.agents
        assert store.get_task("TASK-001").assignees == []

    def test_todo_assignment_is_detached(self, store: EntityStore) -> None:
        store.remove_agent("dev-1")
        assert store.get_task("TASK-001").assignees == []


class TestTransaction:
    def test_rollback_on_error(self, store: EntityStore) -> None:
        with pytest.raises(RuntimeError):
            with store.transaction():
                store.get_task("TASK-001").title = "Changed"
                store.put_task(Task(id=store.next_task_id(), title="Doomed"))
                raise RuntimeError("boom")
        assert store.get_task("TASK-001").title == "First"
        assert "TASK-011" not in store.tasks
        assert store.task_sequence == 10

    def test_commit_keeps_changes(self, store: EntityStore) -> None:
        with store.transaction():
            store.get_task("TASK-002").title = "Kept"
        assert store.get_task("TASK-002").title == "Kept"


class TestSnapshot:
    def test_snapshot_round_trip(self, store: EntityStore) -> None:
        store.version = 4
        loaded = EntityStore.from_snapshot(store.to_snapshot())
        assert loaded.version == 4
        assert loaded.task_sequence == 10
        assert set(loaded.tasks) == set(store.tasks)
        assert loaded.get_task("TASK-001").assignee_ids == ["dev-1"]

    def test_accepts_list_form(self) -> None:
        loaded = EntityStore.from_snapshot(
            {
                "agents": [{"id": "dev-1", "name": "Dev"}],
                "tasks": [{"id": "TASK-003", "title": "Listed"}],
            }
        )
        assert loaded.get_agent("dev-1").name == "Dev"
        assert loaded.task_sequence == 3

    def test_history_is_capped(self, store: EntityStore) -> None:
        for i in range(HISTORY_LIMIT + 5):
            store.record_recommendations({"n": i})
        assert len(store.recommendation_history) == HISTORY_LIMIT
        assert store.recommendation_history[0] == {"n": 5}
