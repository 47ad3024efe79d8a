"""
Project documentation references.

Workflows refer to the project's long-lived documents through variables such
as ``$ARCHITECTURE_DOC``. This module owns the fixed variable map, resolves
the variables to files under ``<project>/.vibe/docs/``, and works out which
variables a workflow actually uses so that only those documents are required
before a documentation-heavy workflow may start.
"""

import json
import logging
import re
from pathlib import Path
from typing import Any

from .config_tools import PROJECT_CONFIG_DIR
from .workflow_loader import WorkflowDefinition


logger = logging.getLogger(__name__)

DOCUMENT_VARIABLES = {
    "$ARCHITECTURE_DOC": "architecture",
    "$REQUIREMENTS_DOC": "requirements",
    "$DESIGN_DOC": "design",
}

DOCUMENT_TYPES = list(DOCUMENT_VARIABLES.values())


def get_docs_path(project_path: str) -> Path:
    return Path(project_path) / PROJECT_CONFIG_DIR / "docs"


def _token_pattern(token: str) -> re.Pattern:
    # $DESIGN_DOC must not match inside $DESIGN_DOCS
    return re.compile(re.escape(token) + r"(?![A-Za-z0-9_])")


def find_referenced_variables(workflow: WorkflowDefinition) -> set[str]:
    """Document variables that occur anywhere in the workflow's text."""
    content = json.dumps(workflow.to_dict())
    referenced = {token for token in DOCUMENT_VARIABLES if _token_pattern(token).search(content)}
    logger.debug(
        "Analyzed workflow %s for document references: %s",
        workflow.name, sorted(referenced)
    )
    return referenced


def _find_document(docs_dir: Path, doc_type: str) -> Path:
    default = docs_dir / f"{doc_type}.md"
    if default.exists():
        return default

    if docs_dir.is_dir():
        for entry in sorted(docs_dir.iterdir()):
            if entry.name == doc_type or entry.stem == doc_type:
                return entry
    return default


def get_project_docs_info(project_path: str) -> dict[str, dict[str, Any]]:
    """Where each project document lives and whether it exists.

    Besides ``<type>.md`` a document may exist under another extension
    (``architecture.adoc``) or as a directory (``architecture/``).
    """
    docs_dir = get_docs_path(project_path)
    info = {}
    for doc_type in DOCUMENT_TYPES:
        path = _find_document(docs_dir, doc_type)
        info[doc_type] = {"path": str(path), "exists": path.exists()}
    return info


def get_variable_substitutions(project_path: str) -> dict[str, str]:
    """The document variable map for a project: token -> absolute document path.

    Tokens resolve to the document actually found on disk, so an existing
    ``architecture.adoc`` or ``architecture/`` is what instructions point at.
    Absent documents resolve to the default ``<type>.md``.
    """
    docs_info = get_project_docs_info(project_path)
    return {token: docs_info[doc_type]["path"] for token, doc_type in DOCUMENT_VARIABLES.items()}


def find_missing_documents(referenced_variables: set[str], project_path: str) -> list[str]:
    docs_info = get_project_docs_info(project_path)
    missing = []
    for token in sorted(referenced_variables, key=list(DOCUMENT_VARIABLES).index):
        doc_type = DOCUMENT_VARIABLES.get(token)
        if doc_type and not docs_info[doc_type]["exists"]:
            missing.append(f"{doc_type}.md")
    return missing


def check_documentation_requirements(workflow: WorkflowDefinition, project_path: str) -> dict[str, Any]:
    """Decide whether ``workflow`` may start given the project's documents.

    Workflows that do not declare ``requiresDocumentation`` start without any
    analysis at all.
    """
    if not workflow.metadata.requires_documentation:
        return {
            "ready": True,
            "requires_documentation": False,
            "referenced_variables": [],
            "missing_documents": [],
        }

    referenced = find_referenced_variables(workflow)
    missing = find_missing_documents(referenced, project_path) if referenced else []
    return {
        "ready": not missing,
        "requires_documentation": True,
        "referenced_variables": [t for t in DOCUMENT_VARIABLES if t in referenced],
        "missing_documents": missing,
    }
