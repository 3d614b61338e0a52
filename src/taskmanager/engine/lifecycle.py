"""Lifecycle State Machine - legal status transitions for a task."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from taskmanager.engine.graph import DependencyGraph, UnblockEvent
from taskmanager.errors import InvalidTransition, NotEligible, ValidationError
from taskmanager.models import Task, TaskStatus, coerce_choice, now_iso

logger = logging.getLogger(__name__)

TODO = TaskStatus.TODO.value
IN_PROGRESS = TaskStatus.IN_PROGRESS.value
BLOCKED = TaskStatus.BLOCKED.value
REVIEW = TaskStatus.REVIEW.value
COMPLETED = TaskStatus.COMPLETED.value
CANCELLED = TaskStatus.CANCELLED.value

# Moves a caller may request. todo <-> blocked is driven by the graph.
TRANSITIONS: dict[str, frozenset[str]] = {
    TODO: frozenset({IN_PROGRESS, BLOCKED, CANCELLED}),
    BLOCKED: frozenset({TODO, CANCELLED}),
    IN_PROGRESS: frozenset({REVIEW, COMPLETED, CANCELLED}),
    REVIEW: frozenset({IN_PROGRESS, COMPLETED, CANCELLED}),
    COMPLETED: frozenset({TODO}),
    CANCELLED: frozenset({TODO}),
}

# What cancelling a task does to its dependents. Only flagging is supported.
FLAG_DEPENDENTS = "flag"
DEPENDENCY_CANCELLED_POLICIES = frozenset({FLAG_DEPENDENTS})


@dataclass
class TransitionResult:
    """Outcome of one lifecycle call."""

    task: Task
    previous_status: str
    unblocked: list[UnblockEvent] = field(default_factory=list)
    flagged: list[str] = field(default_factory=list)


class LifecycleStateMachine:
    """Applies status changes, consulting the dependency graph first."""

    def __init__(self, graph: DependencyGraph, on_dependency_cancelled: str = FLAG_DEPENDENTS) -> None:
        if on_dependency_cancelled not in DEPENDENCY_CANCELLED_POLICIES:
            raise ValidationError(
                f"Unsupported on_dependency_cancelled policy {on_dependency_cancelled!r}; "
                f"expected one of: {', '.join(sorted(DEPENDENCY_CANCELLED_POLICIES))}"
            )
        self.graph = graph
        self.on_dependency_cancelled = on_dependency_cancelled

    def can_transition(self, current: str, target: str) -> bool:
        return target in TRANSITIONS.get(current, frozenset())

    def _require(self, task: Task, target: str, allowed_from: frozenset[str]) -> str:
        if task.status not in allowed_from:
            raise InvalidTransition(
                f"Task {task.id} cannot move from {task.status} to {target}"
            )
        return task.status

    def start(self, task: Task) -> TransitionResult:
        """todo -> in-progress. Needs an assignee and every dependency completed."""
        previous = self._require(task, IN_PROGRESS, frozenset({TODO}))
        if not task.assignees:
            raise InvalidTransition(f"Task {task.id} has no assignee; assign an agent before starting")
        if not self.graph.is_eligible(task):
            unmet = self.graph.unmet_dependencies(task)
            raise NotEligible(
                f"Task {task.id} has unmet dependencies: {', '.join(unmet)}", unmet
            )
        task.status = IN_PROGRESS
        task.blocked_reason = None
        task.touch()
        logger.debug("Task %s started", task.id)
        return TransitionResult(task=task, previous_status=previous)

    def submit_for_review(self, task: Task) -> TransitionResult:
        previous = self._require(task, REVIEW, frozenset({IN_PROGRESS}))
        task.status = REVIEW
        task.touch()
        return TransitionResult(task=task, previous_status=previous)

    def request_changes(self, task: Task) -> TransitionResult:
        """review -> in-progress."""
        previous = self._require(task, IN_PROGRESS, frozenset({REVIEW}))
        task.status = IN_PROGRESS
        task.touch()
        return TransitionResult(task=task, previous_status=previous)

    def complete(self, task: Task) -> TransitionResult:
        """in-progress|review -> completed, then unblock dependents."""
        previous = self._require(task, COMPLETED, frozenset({IN_PROGRESS, REVIEW}))
        if not self.graph.is_eligible(task):
            unmet = self.graph.unmet_dependencies(task)
            raise NotEligible(
                f"Task {task.id} cannot complete before its dependencies: {', '.join(unmet)}", unmet
            )
        task.status = COMPLETED
        task.completed_date = now_iso()
        task.blocked_reason = None
        task.touch()
        logger.debug("Task %s completed", task.id)
        events = self.graph.on_task_completed(task)
        return TransitionResult(task=task, previous_status=previous, unblocked=events)

    def block(self, task: Task) -> TransitionResult:
        """
        todo -> blocked.

        Only allowed when the graph confirms unmet dependencies; a task whose
        dependencies are satisfied cannot be parked in blocked.
        """
        previous = self._require(task, BLOCKED, frozenset({TODO, BLOCKED}))
        reason = self.graph.blocked_reason(task)
        if reason is None:
            raise InvalidTransition(
                f"Task {task.id} has no unmet dependencies and cannot be blocked"
            )
        task.status = BLOCKED
        task.blocked_reason = reason
        task.touch()
        return TransitionResult(task=task, previous_status=previous)

    def unblock(self, task: Task) -> TransitionResult:
        """blocked -> todo, only once dependencies are satisfied."""
        previous = self._require(task, TODO, frozenset({BLOCKED}))
        if not self.graph.is_eligible(task):
            unmet = self.graph.unmet_dependencies(task)
            raise NotEligible(
                f"Task {task.id} is still waiting on: {', '.join(unmet)}", unmet
            )
        task.status = TODO
        task.blocked_reason = None
        task.touch()
        return TransitionResult(task=task, previous_status=previous)

    def cancel(self, task: Task) -> TransitionResult:
        """
        Any non-terminal state -> cancelled.

        Dependents are not unblocked. Under the ``flag`` policy they stay
        blocked with ``dependency-cancelled`` as the reason.
        """
        previous = self._require(task, CANCELLED, frozenset({TODO, BLOCKED, IN_PROGRESS, REVIEW}))
        task.status = CANCELLED
        task.blocked_reason = None
        task.touch()

        flagged = []
        for dependent_id in task.blocks:
            dependent = self.graph.store.find_task(dependent_id)
            if dependent is None or dependent.is_terminal:
                continue
            self.graph.refresh(dependent)
            flagged.append(dependent.id)
        if flagged:
            logger.info("Task %s cancelled; dependents flagged: %s", task.id, ", ".join(flagged))
        return TransitionResult(task=task, previous_status=previous, flagged=flagged)

    def reopen(self, task: Task) -> TransitionResult:
        """completed|cancelled -> todo (or blocked), clearing completion fields."""
        previous = self._require(task, TODO, frozenset({COMPLETED, CANCELLED}))
        started = [
            dependent.id
            for dependent_id in task.blocks
            if (dependent := self.graph.store.find_task(dependent_id)) is not None
            and dependent.status in (IN_PROGRESS, REVIEW, COMPLETED)
        ]
        if started:
            raise InvalidTransition(
                f"Task {task.id} cannot be reopened: dependents already started ({', '.join(started)})"
            )
        task.status = TODO
        task.completed_date = None
        task.touch()
        self.graph.refresh(task)
        # Dependents that relied on this completion lose eligibility again.
        self.graph.refresh_dependents(task)
        return TransitionResult(task=task, previous_status=previous)

    def transition(self, task: Task, target: str) -> TransitionResult:
        """Route a raw status value to the matching lifecycle operation."""
        target = coerce_choice(target, TaskStatus, "status")
        if target == task.status:
            raise InvalidTransition(f"Task {task.id} is already {target}")
        if not self.can_transition(task.status, target):
            raise InvalidTransition(f"Task {task.id} cannot move from {task.status} to {target}")

        if target == IN_PROGRESS:
            if task.status == REVIEW:
                return self.request_changes(task)
            return self.start(task)
        if target == REVIEW:
            return self.submit_for_review(task)
        if target == COMPLETED:
            return self.complete(task)
        if target == CANCELLED:
            return self.cancel(task)
        if target == BLOCKED:
            return self.block(task)
        if task.status == BLOCKED:
            return self.unblock(task)
        return self.reopen(task)
