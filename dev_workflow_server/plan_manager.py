"""
Plan File Manager

Each conversation keeps a markdown development plan inside the project:

    <project>/.vibe/development-plan.md            (no git branch)
    <project>/.vibe/development-plan-<branch-slug>-<hash6>.md   (per branch)

The agent owns the content. This module only creates the skeleton and adds
a section for a phase that has none yet; existing text is never rewritten.
"""

import logging
import re
from datetime import datetime
from pathlib import Path
from typing import Any, Optional

from .config_tools import PROJECT_CONFIG_DIR
from .conversation_identity import NO_BRANCH, branch_digest, slugify_branch
from .workflow_loader import WorkflowDefinition


logger = logging.getLogger(__name__)

PLAN_FILE_PREFIX = "development-plan"
KEY_DECISIONS_HEADING = "## Key Decisions"
NOTES_HEADING = "## Notes"
ENTRANCE_CRITERIA_HEADING = "### Phase Entrance Criteria"


def capitalize_phase(phase: str) -> str:
    """``code_review`` / ``code-review`` -> ``Code Review``."""
    return " ".join(word.capitalize() for word in re.split(r"[_\-\s]+", phase) if word)


def get_plan_file_path(project_path: str, git_branch: str) -> str:
    vibe_dir = Path(project_path) / PROJECT_CONFIG_DIR
    if not git_branch or git_branch == NO_BRANCH:
        return str(vibe_dir / f"{PLAN_FILE_PREFIX}.md")
    # feature/x and feature-x share a slug
    return str(vibe_dir / f"{PLAN_FILE_PREFIX}-{slugify_branch(git_branch)}-{branch_digest(git_branch)}.md")


def _phase_section(workflow: WorkflowDefinition, phase: str) -> str:
    lines = [f"## {capitalize_phase(phase)}"]
    if phase != workflow.initial_state:
        lines += [
            ENTRANCE_CRITERIA_HEADING,
            "- [ ] *To be defined when this phase is planned*",
            "",
        ]
    lines += [
        "### Tasks",
        "- [ ] *To be added when this phase becomes active*",
        "",
        "### Completed",
        "*None yet*",
        "",
    ]
    return "\n".join(lines) + "\n"


def _skeleton(project_path: str, git_branch: str, workflow: WorkflowDefinition) -> str:
    project_name = Path(project_path).name
    header = [
        f"# Development Plan: {project_name} ({git_branch} branch)",
        "",
        f"*Generated on {datetime.now().strftime('%Y-%m-%d')} by dev-workflow-server*",
        f"*Workflow: {workflow.name}*",
        "",
        "## Goal",
        "*Define what you're building or fixing - this will be updated as requirements are gathered*",
        "",
    ]
    sections = "".join(_phase_section(workflow, phase) + "\n" for phase in workflow.phases)
    footer = [
        KEY_DECISIONS_HEADING,
        "*Important decisions will be documented here as they are made*",
        "",
        NOTES_HEADING,
        "*Additional context and observations*",
        "",
        "---",
        "*This plan is maintained by the LLM. Tool responses provide guidance on which section to focus on and what tasks to work on.*",
        "",
    ]
    return "\n".join(header) + "\n" + sections + "\n".join(footer)


def _has_phase_section(content: str, phase: str) -> bool:
    heading = re.escape(f"## {capitalize_phase(phase)}")
    return re.search(rf"^{heading}\s*$", content, re.MULTILINE) is not None


def _append_missing_sections(content: str, workflow: WorkflowDefinition) -> str:
    missing = [p for p in workflow.phases if not _has_phase_section(content, p)]
    if not missing:
        return content

    addition = "".join(_phase_section(workflow, phase) + "\n" for phase in missing)
    match = re.search(rf"^{re.escape(KEY_DECISIONS_HEADING)}\s*$", content, re.MULTILINE)
    if match:
        return content[:match.start()] + addition + content[match.start():]

    if not content.endswith("\n"):
        content += "\n"
    return content + "\n" + addition


def ensure_plan_file(
    plan_file_path: str,
    project_path: str,
    git_branch: str,
    workflow: WorkflowDefinition,
) -> str:
    """Create the plan file, or add the phase sections it is missing.

    Safe to call on every tool invocation: a second call with the same
    workflow leaves the file byte-for-byte unchanged.
    """
    path = Path(plan_file_path)
    if not path.exists():
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(_skeleton(project_path, git_branch, workflow), encoding="utf-8")
        logger.info("Created plan file %s", path)
        return str(path)

    content = path.read_text(encoding="utf-8")
    updated = _append_missing_sections(content, workflow)
    if updated != content:
        path.write_text(updated, encoding="utf-8")
        logger.info("Added missing phase sections to plan file %s", path)
    return str(path)


def get_plan_file_info(plan_file_path: str) -> dict[str, Any]:
    path = Path(plan_file_path)
    if not path.exists():
        return {"path": str(path), "exists": False}
    return {
        "path": str(path),
        "exists": True,
        "content": path.read_text(encoding="utf-8"),
    }


def get_plan_file_content(plan_file_path: str) -> str:
    info = get_plan_file_info(plan_file_path)
    if not info["exists"]:
        return "Plan file does not exist yet. It will be created when you start development."
    return info["content"]


def analyze_plan_file(content: str) -> dict[str, Any]:
    """Summarize a plan: its sections, task checkboxes and recorded decisions.

    Only checkboxes under a ``### Tasks`` or ``### Completed`` heading count as
    tasks; entrance criteria and skeleton placeholders (``*...*``) are skipped.
    """
    sections = []
    active_tasks = []
    completed_tasks = []
    key_decisions = []
    section = ""
    subsection = ""

    for line in content.splitlines():
        stripped = line.strip()
        if stripped.startswith("### "):
            subsection = stripped[4:].strip().lower()
            continue
        if stripped.startswith("## "):
            section = stripped[3:].strip()
            subsection = ""
            sections.append(section)
            continue

        if section == KEY_DECISIONS_HEADING[3:] and stripped.startswith("- "):
            key_decisions.append(stripped[2:].strip())
            continue

        if subsection not in ("tasks", "completed"):
            continue
        match = re.match(r"^- \[([ xX])\]\s*(.*)$", stripped)
        if not match or not match.group(2) or match.group(2).startswith("*"):
            continue
        if match.group(1) == " ":
            active_tasks.append(match.group(2))
        else:
            completed_tasks.append(match.group(2))

    return {
        "sections": sections,
        "active_tasks": active_tasks,
        "completed_tasks": completed_tasks,
        "tasks_completed": len(completed_tasks),
        "tasks_total": len(active_tasks) + len(completed_tasks),
        "key_decisions": key_decisions,
    }


def generate_plan_file_guidance(phase: str, workflow: Optional[WorkflowDefinition] = None) -> str:
    title = capitalize_phase(phase)
    guidance = [
        f"Focus on the \"{title}\" section of the plan file.",
        f"Add the tasks you identify for this phase under \"{title} > Tasks\".",
        "Move finished tasks to \"Completed\" and check them off.",
        "Record important decisions under \"Key Decisions\".",
    ]
    if workflow is not None and workflow.has_state(phase):
        guidance.insert(0, f"Current phase: {workflow.states[phase].description}.")
    return "\n".join(f"- {line}" for line in guidance)


def delete_plan_file(plan_file_path: str) -> bool:
    path = Path(plan_file_path)
    if not path.exists():
        return False
    path.unlink()
    logger.info("Deleted plan file %s", path)
    return True
