"""Error kinds raised by the assignment engine."""

from __future__ import annotations


class TaskManagerError(Exception):
    """Base class for every error the core raises to its callers."""

    kind = "error"


class ValidationError(TaskManagerError):
    """Malformed input to a create or update call."""

    kind = "validation"


class NotFound(TaskManagerError):
    """Unknown task or agent id."""

    kind = "not_found"


class InvalidTransition(TaskManagerError):
    """Illegal lifecycle move."""

    kind = "invalid_transition"


class NotEligible(TaskManagerError):
    """Start attempted while dependencies are unmet."""

    kind = "not_eligible"

    def __init__(self, message: str, unmet: list[str] | None = None) -> None:
        super().__init__(message)
        self.unmet = unmet or []


class CyclicDependency(TaskManagerError):
    """Adding the edge would make a task transitively depend on itself."""

    kind = "cyclic_dependency"

    def __init__(self, message: str, cycle: list[str] | None = None) -> None:
        super().__init__(message)
        self.cycle = cycle or []


class AlreadyAssigned(TaskManagerError):
    """Agent is already an assignee of the task."""

    kind = "already_assigned"


class ReferentialIntegrity(TaskManagerError):
    """Removal would leave dangling references."""

    kind = "referential_integrity"


class StaleSnapshot(TaskManagerError):
    """Save attempted on top of a snapshot version that is no longer current."""

    kind = "stale_snapshot"

    def __init__(self, message: str, expected: int = 0, actual: int = 0) -> None:
        super().__init__(message)
        self.expected = expected
        self.actual = actual
