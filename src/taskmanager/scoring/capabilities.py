"""Capability requirements - which agent capabilities a task needs.

A task may declare ``required_capabilities`` explicitly. When it does not,
a matcher infers them from the category and title. The matcher is a plain
callable so callers can swap in their own policy.
"""

from __future__ import annotations

import re
from collections.abc import Callable, Mapping
from typing import Final

from taskmanager.models import Agent, Task

CapabilityMatcher = Callable[[Task], list[str]]

# ═══════════════════════════════════════════════════════════════════════════
# KEYWORD SIGNALS
# ═══════════════════════════════════════════════════════════════════════════

# Categories that map straight onto a capability tag.
CATEGORY_CAPABILITIES: Final[dict[str, str]] = {
    "coding": "coding",
    "feature": "coding",
    "bugfix": "coding",
    "testing": "testing",
    "documentation": "documentation",
    "analysis": "analysis",
    "design": "design",
    "research": "analysis",
    "devops": "devops",
}

# Title keywords, checked when the category says nothing.
TITLE_SIGNALS: Final[dict[str, list[str]]] = {
    "coding": ["implement", "refactor", "fix", "bug", "endpoint", "api", "code"],
    "testing": ["test", "tests", "qa", "coverage", "verify"],
    "documentation": ["doc", "docs", "document", "readme", "guide"],
    "analysis": ["analyze", "analyse", "investigate", "research", "audit"],
    "design": ["design", "mockup", "wireframe", "ui", "ux"],
    "devops": ["deploy", "pipeline", "ci", "infrastructure", "docker"],
}


def _words(text: str) -> set[str]:
    return set(re.findall(r"[a-z0-9]+", text.lower()))


class KeywordCapabilityMatcher:
    """
    Default matcher: category first, then title keywords.

    Tables can be replaced per instance to tune the policy without
    subclassing.
    """

    def __init__(
        self,
        category_map: Mapping[str, str] | None = None,
        title_signals: Mapping[str, list[str]] | None = None,
    ) -> None:
        self.category_map = dict(CATEGORY_CAPABILITIES if category_map is None else category_map)
        self.title_signals = dict(TITLE_SIGNALS if title_signals is None else title_signals)

    def __call__(self, task: Task) -> list[str]:
        mapped = self.category_map.get(task.category.lower())
        if mapped:
            return [mapped]

        words = _words(task.title)
        found = []
        for capability, keywords in self.title_signals.items():
            if any(kw in words for kw in keywords):
                found.append(capability)
        return found


def required_capabilities(task: Task, matcher: CapabilityMatcher | None = None) -> list[str]:
    """Explicit requirements win; otherwise ask the matcher."""
    if task.required_capabilities:
        return list(task.required_capabilities)
    return (matcher or KeywordCapabilityMatcher())(task)


def agent_satisfies(agent: Agent, required: list[str]) -> bool:
    """
    True if the agent can take a task with these requirements.

    Any one required tag is enough; ``all`` satisfies everything. A task
    with no requirements is open to every agent.
    """
    if not required:
        return True
    return any(agent.has_capability(cap) for cap in required)
