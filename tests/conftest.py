import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).parent.parent))


@pytest.fixture(autouse=True)
def isolated_env(tmp_path, monkeypatch):
    """Keep the real home directory and environment out of every test."""
    for var in ("PROJECT_PATH", "LOG_LEVEL"):
        monkeypatch.delenv(var, raising=False)
    monkeypatch.setenv("DEV_WORKFLOW_HOME", str(tmp_path / "dev-home"))


@pytest.fixture
def project_dir(tmp_path):
    path = tmp_path / "my-project"
    path.mkdir()
    return path.resolve()


@pytest.fixture
def no_git():
    """Behave as if the project is not a git repository."""
    from unittest.mock import patch
    with patch("dev_workflow_server.conversation_identity._run_git", return_value=None):
        yield
