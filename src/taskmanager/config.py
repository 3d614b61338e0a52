"""Settings for the CLI and API layers.

Resolution order: defaults, then ``<data_dir>/config.toml``, then explicit
arguments (the CLI feeds environment variables in through click). The core
engine never reads this module; callers pass values in.
"""

from __future__ import annotations

import logging
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from taskmanager.engine.lifecycle import DEPENDENCY_CANCELLED_POLICIES, FLAG_DEPENDENTS
from taskmanager.errors import ValidationError
from taskmanager.scoring.recommender import DEFAULT_LIMIT, ScoringWeights

logger = logging.getLogger(__name__)

DEFAULT_DATA_DIR = Path.home() / ".taskmanager"
CONFIG_FILENAME = "config.toml"

ENV_DATA_DIR = "TASK_MANAGER_DATA_DIR"
ENV_AGENT_ID = "TASK_MANAGER_AGENT_ID"

DEFAULT_CONFIG = """\
# Task manager configuration

[project]
name = "New Project"
# current agent for "my tasks" queries; TASK_MANAGER_AGENT_ID overrides
# agent_id = "dev-alice"

[recommendations]
max_recommendations = 3

[policy]
# what cancelling a task does to its dependents; only "flag" is supported
on_dependency_cancelled = "flag"

[scoring.priority]
critical = 40
high = 30
medium = 20
low = 10

[scoring.risk]
high = 15
medium = 10
low = 5

[scoring.phase]
active = 20
pending = 10
completed = 0
"""


@dataclass
class Settings:
    """Resolved runtime settings."""

    data_dir: Path = field(default_factory=lambda: DEFAULT_DATA_DIR)
    agent_id: str | None = None
    project_name: str = "New Project"
    max_recommendations: int = DEFAULT_LIMIT
    on_dependency_cancelled: str = FLAG_DEPENDENTS
    weights: ScoringWeights = field(default_factory=ScoringWeights)

    @property
    def config_path(self) -> Path:
        return self.data_dir / CONFIG_FILENAME


def _read_config(path: Path) -> dict[str, Any]:
    if not path.exists():
        return {}
    try:
        with path.open("rb") as f:
            return tomllib.load(f)
    except tomllib.TOMLDecodeError as exc:
        logger.warning("Ignoring invalid config %s: %s", path, exc)
        return {}


def load_settings(data_dir: Path | str | None = None, agent_id: str | None = None) -> Settings:
    """Build Settings from config.toml under ``data_dir`` plus explicit overrides."""
    base = Path(data_dir).expanduser() if data_dir else DEFAULT_DATA_DIR
    raw = _read_config(base / CONFIG_FILENAME)

    project = raw.get("project", {})
    recommendations = raw.get("recommendations", {})
    policy = raw.get("policy", {})

    on_dependency_cancelled = str(policy.get("on_dependency_cancelled", FLAG_DEPENDENTS))
    if on_dependency_cancelled not in DEPENDENCY_CANCELLED_POLICIES:
        raise ValidationError(
            f"{base / CONFIG_FILENAME}: unsupported on_dependency_cancelled {on_dependency_cancelled!r}"
        )

    return Settings(
        data_dir=base,
        agent_id=agent_id or project.get("agent_id"),
        project_name=str(project.get("name", "New Project")),
        max_recommendations=int(recommendations.get("max_recommendations", DEFAULT_LIMIT)),
        on_dependency_cancelled=on_dependency_cancelled,
        weights=ScoringWeights.from_dict(raw.get("scoring")),
    )


def write_default_config(data_dir: Path) -> Path:
    """Create config.toml if missing and return its path."""
    data_dir.mkdir(parents=True, exist_ok=True)
    path = data_dir / CONFIG_FILENAME
    if not path.exists():
        path.write_text(DEFAULT_CONFIG)
    return path
