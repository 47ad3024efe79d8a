"""
Tests for the configuration cascade.

Run with: pytest tests/test_config_tools.py -v
"""

import pytest
from pathlib import Path
from unittest.mock import patch

import sys
sys.path.insert(0, str(Path(__file__).parent.parent))

from dev_workflow_server.config_tools import (
    _get_global_config_path,
    _get_project_config_path,
    _validate_config,
    config_get_effective,
    config_get_enabled_workflows,
    config_get_commit_behaviour,
    get_home_dir,
    _load_yaml,
    _deep_merge,
    DEFAULT_CONFIG,
)


# ============================================================================
# Paths
# ============================================================================

class TestConfigPaths:
    def test_home_dir_from_env(self, tmp_path, monkeypatch):
        monkeypatch.setenv("DEV_WORKFLOW_HOME", str(tmp_path / "custom"))
        assert get_home_dir() == tmp_path / "custom"

    def test_home_dir_defaults_to_user_home(self, tmp_path, monkeypatch):
        monkeypatch.delenv("DEV_WORKFLOW_HOME", raising=False)
        with patch("dev_workflow_server.config_tools.Path.home", return_value=tmp_path):
            assert get_home_dir() == tmp_path / ".dev-workflow"

    def test_global_config_inside_home_dir(self, tmp_path, monkeypatch):
        monkeypatch.setenv("DEV_WORKFLOW_HOME", str(tmp_path))
        assert _get_global_config_path() == tmp_path / "config.yaml"

    def test_project_config_under_vibe(self, project_dir):
        assert _get_project_config_path(str(project_dir)) == project_dir / ".vibe" / "config.yaml"

    def test_project_config_uses_cwd_when_no_dir(self, tmp_path):
        with patch("dev_workflow_server.config_tools.Path.cwd", return_value=tmp_path):
            assert _get_project_config_path() == tmp_path / ".vibe" / "config.yaml"


# ============================================================================
# Helpers
# ============================================================================

class TestHelpers:
    def test_deep_merge_nested(self):
        base = {"a": {"x": 1, "y": 2}, "b": 1}
        result = _deep_merge(base, {"a": {"y": 3}, "c": 4})
        assert result == {"a": {"x": 1, "y": 3}, "b": 1, "c": 4}
        assert base["a"]["y"] == 2

    def test_load_yaml_missing_file(self, tmp_path):
        assert _load_yaml(tmp_path / "nope.yaml") is None

    def test_load_yaml_invalid_syntax(self, tmp_path):
        path = tmp_path / "bad.yaml"
        path.write_text("key: [unclosed\n")
        assert _load_yaml(path) is None

    def test_load_yaml_non_mapping(self, tmp_path):
        path = tmp_path / "list.yaml"
        path.write_text("- a\n- b\n")
        assert _load_yaml(path) is None

    def test_validate_unknown_key(self):
        warnings = _validate_config({"colour": "blue"}, DEFAULT_CONFIG)
        assert warnings == ["Unknown config key: 'colour'"]

    def test_validate_wrong_type(self):
        warnings = _validate_config({"enabled_workflows": "epcc"}, DEFAULT_CONFIG)
        assert len(warnings) == 1
        assert "expected list" in warnings[0]

    def test_validate_commit_behaviour_value(self):
        warnings = _validate_config({"commit_behaviour": "always"}, DEFAULT_CONFIG)
        assert any("commit_behaviour" in w for w in warnings)

    def test_validate_clean_config(self):
        assert _validate_config({"log_level": "DEBUG", "commit_behaviour": "step"}, DEFAULT_CONFIG) == []


# ============================================================================
# Effective config
# ============================================================================

class TestEffectiveConfig:
    def test_defaults_only(self, project_dir):
        result = config_get_effective(str(project_dir))
        assert result["has_global"] is False
        assert result["has_project"] is False
        assert result["sources"] == []
        assert result["config"]["log_level"] == "INFO"
        assert result["config"]["store_dir"] == str(get_home_dir() / "conversations")

    def test_project_overrides_global(self, project_dir):
        home = get_home_dir()
        home.mkdir(parents=True)
        (home / "config.yaml").write_text("log_level: WARNING\ncommit_behaviour: phase\n")
        (project_dir / ".vibe").mkdir()
        (project_dir / ".vibe" / "config.yaml").write_text("commit_behaviour: step\n")

        result = config_get_effective(str(project_dir))
        assert result["config"]["log_level"] == "WARNING"
        assert result["config"]["commit_behaviour"] == "step"
        assert result["has_global"] and result["has_project"]
        assert len(result["sources"]) == 2

    def test_env_overrides_files(self, project_dir, monkeypatch):
        (project_dir / ".vibe").mkdir()
        (project_dir / ".vibe" / "config.yaml").write_text("log_level: ERROR\n")
        monkeypatch.setenv("LOG_LEVEL", "DEBUG")

        result = config_get_effective(str(project_dir))
        assert result["config"]["log_level"] == "DEBUG"
        assert "environment" in result["sources"]

    def test_explicit_store_dir_kept(self, project_dir, tmp_path):
        (project_dir / ".vibe").mkdir()
        (project_dir / ".vibe" / "config.yaml").write_text(f"store_dir: {tmp_path / 'store'}\n")
        result = config_get_effective(str(project_dir))
        assert result["config"]["store_dir"] == str(tmp_path / "store")

    def test_warnings_reported_not_raised(self, project_dir):
        (project_dir / ".vibe").mkdir()
        (project_dir / ".vibe" / "config.yaml").write_text("unknown_thing: 1\n")
        result = config_get_effective(str(project_dir))
        assert result["warnings"] == ["Unknown config key: 'unknown_thing'"]


class TestConfigAccessors:
    def test_enabled_workflows_empty_by_default(self, project_dir):
        assert config_get_enabled_workflows(str(project_dir)) == []

    def test_enabled_workflows_from_project(self, project_dir):
        (project_dir / ".vibe").mkdir()
        (project_dir / ".vibe" / "config.yaml").write_text(
            "enabled_workflows:\n  - epcc\n  - ' bugfix '\n  - 3\n"
        )
        assert config_get_enabled_workflows(str(project_dir)) == ["epcc", "bugfix"]

    def test_enabled_workflows_wrong_type_ignored(self, project_dir):
        (project_dir / ".vibe").mkdir()
        (project_dir / ".vibe" / "config.yaml").write_text("enabled_workflows: epcc\n")
        assert config_get_enabled_workflows(str(project_dir)) == []

    @pytest.mark.parametrize("value,expected", [
        ("step", "step"),
        ("none", "none"),
        ("sometimes", None),
    ])
    def test_commit_behaviour(self, project_dir, value, expected):
        (project_dir / ".vibe").mkdir()
        (project_dir / ".vibe" / "config.yaml").write_text(f"commit_behaviour: {value}\n")
        assert config_get_commit_behaviour(str(project_dir)) == expected
