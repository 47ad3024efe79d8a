"""
Configuration Tools for Dev Workflow MCP Server

Handles YAML configuration cascade merge:
  1. Global defaults:  <home>/config.yaml  (<home> = $DEV_WORKFLOW_HOME or ~/.dev-workflow)
  2. Project config:   <project>/.vibe/config.yaml
  3. Environment:      PROJECT_PATH, LOG_LEVEL, DEV_WORKFLOW_HOME

Each level overrides the previous.
"""

import os
from pathlib import Path
from typing import Any, Optional

import yaml


DEFAULT_CONFIG = {
    "project_path": None,
    "store_dir": None,
    "log_level": "INFO",
    "enabled_workflows": [],
    "commit_behaviour": None,
}

COMMIT_BEHAVIOURS = ["step", "phase", "end", "none"]

PROJECT_CONFIG_DIR = ".vibe"
HOME_ENV_VAR = "DEV_WORKFLOW_HOME"

ENV_OVERRIDES = {
    "PROJECT_PATH": "project_path",
    "LOG_LEVEL": "log_level",
}


def _validate_config(config: dict, defaults: dict, prefix: str = "") -> list[str]:
    """Validate config against defaults, returning warnings for unknown keys."""
    warnings = []
    for key, value in config.items():
        full_key = f"{prefix}.{key}" if prefix else key
        if key not in defaults:
            warnings.append(f"Unknown config key: '{full_key}'")
        elif isinstance(value, dict) and isinstance(defaults.get(key), dict):
            warnings.extend(_validate_config(value, defaults[key], full_key))
        elif value is not None:
            expected_type = type(defaults.get(key))
            if expected_type is not type(None) and not isinstance(value, expected_type):
                if not (expected_type == int and isinstance(value, bool)):
                    warnings.append(
                        f"Invalid type for '{full_key}': expected {expected_type.__name__}, got {type(value).__name__}"
                    )

    commit = config.get("commit_behaviour")
    if not prefix and commit is not None and commit not in COMMIT_BEHAVIOURS:
        warnings.append(
            f"Invalid value for 'commit_behaviour': {commit!r} (expected one of {', '.join(COMMIT_BEHAVIOURS)})"
        )
    return warnings


def _deep_merge(base: dict, override: dict) -> dict:
    result = base.copy()
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def _load_yaml(path: Path) -> Optional[dict]:
    if not path.exists():
        return None

    try:
        with open(path) as f:
            data = yaml.safe_load(f)
    except (yaml.YAMLError, OSError):
        return None
    return data if isinstance(data, dict) else None


def get_home_dir() -> Path:
    """Per-user directory holding the conversation store and global config."""
    override = os.environ.get(HOME_ENV_VAR)
    if override:
        return Path(override).expanduser()
    return Path.home() / ".dev-workflow"


def _get_global_config_path() -> Path:
    return get_home_dir() / "config.yaml"


def _get_project_config_path(project_dir: Optional[str] = None) -> Path:
    base = Path(project_dir) if project_dir else Path.cwd()
    return base / PROJECT_CONFIG_DIR / "config.yaml"


def _env_overrides() -> dict[str, Any]:
    overrides = {}
    for env_var, key in ENV_OVERRIDES.items():
        value = os.environ.get(env_var)
        if value:
            overrides[key] = value
    return overrides


def config_get_effective(project_dir: Optional[str] = None) -> dict[str, Any]:
    config = DEFAULT_CONFIG.copy()
    warnings = []

    global_path = _get_global_config_path()
    global_config = _load_yaml(global_path)
    if global_config:
        warnings.extend(_validate_config(global_config, DEFAULT_CONFIG))
        config = _deep_merge(config, global_config)

    project_path = _get_project_config_path(project_dir)
    project_config = _load_yaml(project_path)
    if project_config:
        warnings.extend(_validate_config(project_config, DEFAULT_CONFIG))
        config = _deep_merge(config, project_config)

    env_config = _env_overrides()
    config = _deep_merge(config, env_config)

    if not config.get("store_dir"):
        config["store_dir"] = str(get_home_dir() / "conversations")

    sources = []
    if global_config:
        sources.append(str(global_path))
    if project_config:
        sources.append(str(project_path))
    if env_config:
        sources.append("environment")

    return {
        "config": config,
        "sources": sources,
        "warnings": warnings,
        "has_global": global_config is not None,
        "has_project": project_config is not None,
    }


def config_get_enabled_workflows(project_dir: Optional[str] = None) -> list[str]:
    """Workflows the project restricts itself to; empty means all bundled workflows."""
    config = config_get_effective(project_dir)["config"]
    enabled = config.get("enabled_workflows") or []
    if not isinstance(enabled, list):
        return []
    return [w.strip() for w in enabled if isinstance(w, str) and w.strip()]


def config_get_commit_behaviour(project_dir: Optional[str] = None) -> Optional[str]:
    config = config_get_effective(project_dir)["config"]
    value = config.get("commit_behaviour")
    if value in COMMIT_BEHAVIOURS:
        return value
    return None


def config_get_project_path() -> Optional[str]:
    """Project root from ``PROJECT_PATH`` or the global config.

    A project config cannot relocate its own project, so only the global
    level and the environment are consulted.
    """
    env_value = os.environ.get("PROJECT_PATH")
    if env_value:
        return env_value
    global_config = _load_yaml(_get_global_config_path()) or {}
    value = global_config.get("project_path")
    if isinstance(value, str) and value.strip():
        return value
    return None
