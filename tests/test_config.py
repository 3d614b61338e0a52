"""Tests for settings loading."""

from __future__ import annotations

from pathlib import Path

import pytest

from taskmanager.config import DEFAULT_CONFIG, load_settings, write_default_config
from taskmanager.errors import ValidationError


def test_defaults_without_config(tmp_path: Path) -> None:
    settings = load_settings(tmp_path)
    assert settings.data_dir == tmp_path
    assert settings.agent_id is None
    assert settings.max_recommendations == 3
    assert settings.on_dependency_cancelled == "flag"
    assert settings.weights.priority["critical"] == 40.0


def test_write_default_config_does_not_overwrite(tmp_path: Path) -> None:
    path = write_default_config(tmp_path)
    assert path.read_text() == DEFAULT_CONFIG
    path.write_text('[project]\nname = "Mine"\n')
    write_default_config(tmp_path)
    assert "Mine" in path.read_text()


def test_default_config_matches_builtin_weights(tmp_path: Path) -> None:
    write_default_config(tmp_path)
    settings = load_settings(tmp_path)
    assert settings.weights.priority == {"critical": 40.0, "high": 30.0, "medium": 20.0, "low": 10.0}
    assert settings.weights.phase["active"] == 20.0


def test_config_overrides(tmp_path: Path) -> None:
    (tmp_path / "config.toml").write_text(
        """
[project]
name = "Apollo"
agent_id = "dev-1"

[recommendations]
max_recommendations = 5

[scoring]
fan_out_per_task = 2

[scoring.priority]
low = 50
"""
    )
    settings = load_settings(tmp_path)
    assert settings.project_name == "Apollo"
    assert settings.agent_id == "dev-1"
    assert settings.max_recommendations == 5
    assert settings.weights.priority["low"] == 50.0
    assert settings.weights.priority["high"] == 30.0
    assert settings.weights.fan_out_per_task == 2.0


def test_explicit_agent_wins(tmp_path: Path) -> None:
    (tmp_path / "config.toml").write_text('[project]\nagent_id = "from-file"\n')
    assert load_settings(tmp_path, agent_id="from-flag").agent_id == "from-flag"


def test_invalid_toml_falls_back_to_defaults(tmp_path: Path) -> None:
    (tmp_path / "config.toml").write_text("[project\nname = ")
    settings = load_settings(tmp_path)
    assert settings.project_name == "New Project"


def test_dependency_cancelled_policy(tmp_path: Path) -> None:
    write_default_config(tmp_path)
    assert load_settings(tmp_path).on_dependency_cancelled == "flag"

    (tmp_path / "config.toml").write_text('[policy]\non_dependency_cancelled = "cascade"\n')
    with pytest.raises(ValidationError, match="cascade"):
        load_settings(tmp_path)
