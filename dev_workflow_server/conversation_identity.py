"""
Conversation identity.

A conversation is one project directory on one git branch. Its id is derived
from those two values only, so every call made from the same checkout lands
on the same conversation while other branches get their own.
"""

import hashlib
import logging
import os
import re
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from .config_tools import config_get_project_path


logger = logging.getLogger(__name__)

NO_BRANCH = "no-branch"


@dataclass(frozen=True)
class ConversationIdentity:
    project_path: str
    git_branch: str
    conversation_id: str


def normalize_project_path(project_path: Optional[str] = None) -> str:
    """Absolute project root; ``/`` or nothing usable falls back to the home directory.

    Without an explicit path: ``PROJECT_PATH``, then ``project_path`` from the
    global config, then the working directory.
    """
    path = project_path or config_get_project_path() or os.getcwd()
    resolved = str(Path(path).expanduser().resolve()) if path else ""

    if resolved in ("/", ""):
        home = str(Path.home())
        logger.info("Invalid project path %r, using home directory %s", path, home)
        return home

    return resolved


def _run_git(args: list[str], cwd: str) -> Optional[str]:
    try:
        result = subprocess.run(
            ["git", *args],
            cwd=cwd, capture_output=True, text=True, timeout=5
        )
    except (subprocess.TimeoutExpired, FileNotFoundError, OSError):
        return None
    if result.returncode != 0:
        return None
    return result.stdout.strip() or None


def is_git_repository(project_path: str) -> bool:
    return _run_git(["rev-parse", "--is-inside-work-tree"], project_path) == "true"


def get_git_branch(project_path: str) -> str:
    branch = _run_git(["rev-parse", "--abbrev-ref", "HEAD"], project_path)
    if not branch:
        logger.debug("No git branch detected for %s, using %r", project_path, NO_BRANCH)
        return NO_BRANCH
    return branch


def get_current_commit_hash(project_path: str) -> Optional[str]:
    return _run_git(["rev-parse", "HEAD"], project_path)


def slugify_branch(git_branch: str) -> str:
    slug = re.sub(r"[^a-zA-Z0-9-]", "-", git_branch)
    slug = re.sub(r"-+", "-", slug).strip("-")
    return slug or NO_BRANCH


def branch_digest(git_branch: str) -> str:
    """Six hex digits that tell apart branches whose slugs coincide."""
    return hashlib.sha256(git_branch.encode("utf-8")).hexdigest()[:6]


def generate_conversation_id(project_path: str, git_branch: str) -> str:
    project_name = Path(project_path).name or "unknown-project"
    digest = hashlib.sha256(f"{project_path}:{git_branch}".encode("utf-8")).hexdigest()
    return f"{project_name}-{slugify_branch(git_branch)}-{digest[:6]}"


def resolve_identity(project_path: Optional[str] = None) -> ConversationIdentity:
    project_path = normalize_project_path(project_path)
    git_branch = get_git_branch(project_path)
    return ConversationIdentity(
        project_path=project_path,
        git_branch=git_branch,
        conversation_id=generate_conversation_id(project_path, git_branch),
    )
