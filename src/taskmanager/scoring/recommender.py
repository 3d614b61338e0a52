"""Recommendation Engine - rank the tasks an agent can pick up next.

score = priority + dependency fan-out + risk + phase activity

All four weights are additive and tunable; only the ordering they produce
matters to callers. Ties are broken by ``created_date`` then task id so the
same snapshot always yields the same list.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Final

from taskmanager.engine.graph import DependencyGraph
from taskmanager.engine.store import EntityStore
from taskmanager.models import Agent, PhaseStatus, Task, TaskStatus, task_id_sort_key

from .capabilities import CapabilityMatcher, agent_satisfies, required_capabilities

logger = logging.getLogger(__name__)

DEFAULT_LIMIT: Final[int] = 3

# ═══════════════════════════════════════════════════════════════════════════
# WEIGHTS
# ═══════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True)
class ScoringWeights:
    """Points contributed by each scoring factor."""

    priority: dict[str, float] = field(
        default_factory=lambda: {"critical": 40.0, "high": 30.0, "medium": 20.0, "low": 10.0}
    )
    fan_out_per_task: float = 5.0
    # Optional ceiling on how many dependents count; None scores every one.
    fan_out_cap: int | None = None
    risk: dict[str, float] = field(
        default_factory=lambda: {"high": 15.0, "medium": 10.0, "low": 5.0}
    )
    phase: dict[str, float] = field(
        default_factory=lambda: {
            PhaseStatus.ACTIVE.value: 20.0,
            PhaseStatus.PENDING.value: 10.0,
            PhaseStatus.COMPLETED.value: 0.0,
        }
    )
    # Tasks without a phase, or in a phase the project does not know.
    unphased: float = 10.0

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> ScoringWeights:
        """Overlay ``data`` on the defaults; unknown keys are ignored."""
        defaults = cls()
        if not data:
            return defaults
        return cls(
            priority={**defaults.priority, **_float_map(data.get("priority"))},
            fan_out_per_task=float(data.get("fan_out_per_task", defaults.fan_out_per_task)),
            fan_out_cap=_optional_int(data.get("fan_out_cap", defaults.fan_out_cap)),
            risk={**defaults.risk, **_float_map(data.get("risk"))},
            phase={**defaults.phase, **_float_map(data.get("phase"))},
            unphased=float(data.get("unphased", defaults.unphased)),
        )


def _float_map(value: Any) -> dict[str, float]:
    if not isinstance(value, dict):
        return {}
    return {str(k): float(v) for k, v in value.items()}


def _optional_int(value: Any) -> int | None:
    return None if value is None else int(value)


# ═══════════════════════════════════════════════════════════════════════════
# RESULTS
# ═══════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True)
class ScoreBreakdown:
    """Per-factor contribution to a task's score."""

    priority: float
    fan_out: float
    risk: float
    phase: float

    @property
    def total(self) -> float:
        return self.priority + self.fan_out + self.risk + self.phase

    def dominant(self) -> str:
        """Name of the largest factor; earlier factors win ties."""
        factors = [
            ("priority", self.priority),
            ("fan_out", self.fan_out),
            ("risk", self.risk),
            ("phase", self.phase),
        ]
        return max(factors, key=lambda f: f[1])[0]


@dataclass(frozen=True)
class Recommendation:
    """One ranked task for an agent."""

    task_id: str
    title: str
    score: float
    reason: str
    breakdown: ScoreBreakdown
    priority: str
    phase: str | None

    def to_dict(self) -> dict[str, Any]:
        return {
            "task_id": self.task_id,
            "title": self.title,
            "score": self.score,
            "reason": self.reason,
            "priority": self.priority,
            "phase": self.phase,
            "breakdown": {
                "priority": self.breakdown.priority,
                "fan_out": self.breakdown.fan_out,
                "risk": self.breakdown.risk,
                "phase": self.breakdown.phase,
            },
        }


# ═══════════════════════════════════════════════════════════════════════════
# ENGINE
# ═══════════════════════════════════════════════════════════════════════════


class RecommendationEngine:
    """Filters eligible tasks for an agent and ranks them."""

    def __init__(
        self,
        store: EntityStore,
        graph: DependencyGraph,
        weights: ScoringWeights | None = None,
        matcher: CapabilityMatcher | None = None,
    ) -> None:
        self.store = store
        self.graph = graph
        self.weights = weights or ScoringWeights()
        self.matcher = matcher

    def required_capabilities(self, task: Task) -> list[str]:
        return required_capabilities(task, self.matcher)

    def get_eligible_tasks(self, agent: Agent) -> list[Task]:
        """
        Tasks the agent could start next.

        Status todo, every dependency completed, not already assigned to this
        agent, and at least one required capability held (or ``all``).
        """
        if not agent.is_active:
            return []
        eligible = []
        for task in self.store.list_tasks(status=TaskStatus.TODO.value):
            if task.is_assigned_to(agent.id):
                continue
            if not self.graph.is_eligible(task):
                continue
            if not agent_satisfies(agent, self.required_capabilities(task)):
                continue
            eligible.append(task)
        return eligible

    def breakdown(self, task: Task) -> ScoreBreakdown:
        w = self.weights
        dependents = len(task.blocks)
        if w.fan_out_cap is not None:
            dependents = min(dependents, w.fan_out_cap)
        fan_out = dependents * w.fan_out_per_task

        phase_status = self.store.project.phase_status(task.phase)
        phase = w.phase.get(phase_status, w.unphased) if phase_status else w.unphased

        return ScoreBreakdown(
            priority=w.priority.get(task.priority, 0.0),
            fan_out=fan_out,
            risk=w.risk.get(task.risk_level, 0.0),
            phase=phase,
        )

    def score(self, task: Task) -> float:
        return self.breakdown(task).total

    def refresh_scores(self) -> None:
        """Recompute the cached ``recommendation_score`` on every task."""
        for task in self.store.tasks.values():
            task.recommendation_score = self.score(task)

    def reason(self, task: Task, breakdown: ScoreBreakdown) -> str:
        """Human-readable summary led by the dominant factor."""
        dominant = breakdown.dominant()
        parts: list[str] = []
        lead = {
            "priority": f"{task.priority.capitalize()} priority",
            "fan_out": f"Unblocks {len(task.blocks)} other task(s)",
            "risk": f"{task.risk_level.capitalize()} risk - resolve early",
            "phase": f"In {self._phase_label(task)} phase",
        }[dominant]
        parts.append(lead)

        if dominant != "fan_out" and task.blocks:
            parts.append(f"unblocks {len(task.blocks)} task(s)")
        if dominant != "phase" and self.store.project.phase_status(task.phase) == PhaseStatus.ACTIVE.value:
            parts.append("in active phase")
        return ", ".join(parts)

    def _phase_label(self, task: Task) -> str:
        status = self.store.project.phase_status(task.phase)
        return status or "unscheduled"

    def _sort_key(self, item: tuple[Task, ScoreBreakdown]) -> tuple[float, str, tuple[int, int, str]]:
        task, breakdown = item
        return (-breakdown.total, task.created_date, task_id_sort_key(task.id))

    def recommend(self, agent: Agent, limit: int | None = DEFAULT_LIMIT) -> list[Recommendation]:
        """Eligible tasks, best first, truncated to ``limit``."""
        scored = [(task, self.breakdown(task)) for task in self.get_eligible_tasks(agent)]
        scored.sort(key=self._sort_key)
        if limit is not None:
            scored = scored[: max(0, limit)]
        logger.debug("Recommending %d task(s) to %s", len(scored), agent.id)

        return [
            Recommendation(
                task_id=task.id,
                title=task.title,
                score=breakdown.total,
                reason=self.reason(task, breakdown),
                breakdown=breakdown,
                priority=task.priority,
                phase=task.phase,
            )
            for task, breakdown in scored
        ]
