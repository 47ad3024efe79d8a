"""
MCP Resources for Dev Workflow Server

Provides URI-based, read-only access to conversation state, the development
plan and workflow definitions.

Resource URIs:
  - state://current        - State of the conversation for this project/branch
  - plan://current         - Development plan markdown
  - workflow://            - List of available workflows
  - workflow://{name}      - Definition of one workflow
  - config://effective     - Fully merged effective config
"""

import json
from typing import Any

from .config_tools import config_get_effective
from .development_tools import (
    ServerContext,
    get_conversation_state,
    get_development_plan,
    list_workflows,
)
from .errors import DevWorkflowError
from .workflow_loader import load_workflow


WORKFLOW_URI_PREFIX = "workflow://"


def get_workflow_definition(ctx: ServerContext, name: str) -> dict[str, Any]:
    workflow = load_workflow(name, ctx.project_path)
    result = workflow.to_dict()
    if workflow.warnings:
        result["warnings"] = list(workflow.warnings)
    return result


def resolve_resource(uri: str, ctx: ServerContext) -> str:
    try:
        if uri == "state://current":
            return json.dumps(get_conversation_state(ctx), indent=2)

        if uri == "plan://current":
            return get_development_plan(ctx)

        if uri == "config://effective":
            return json.dumps(config_get_effective(ctx.project_path), indent=2)

        if uri == WORKFLOW_URI_PREFIX:
            return json.dumps(list_workflows(ctx), indent=2)

        if uri.startswith(WORKFLOW_URI_PREFIX):
            name = uri[len(WORKFLOW_URI_PREFIX):].strip("/")
            return json.dumps(get_workflow_definition(ctx, name), indent=2)

    except DevWorkflowError as e:
        return json.dumps(e.to_dict(), indent=2)

    return json.dumps({"error": f"Unknown resource URI: {uri}"})


RESOURCE_DESCRIPTIONS = {
    "state://current": {
        "name": "Current conversation state",
        "description": "Phase, workflow and plan file of the conversation for this project and branch",
        "mimeType": "application/json"
    },
    "plan://current": {
        "name": "Development plan",
        "description": "Markdown development plan of the current conversation",
        "mimeType": "text/markdown"
    },
    "workflow://": {
        "name": "Available workflows",
        "description": "Workflows that can be passed to start_development",
        "mimeType": "application/json"
    },
    "config://effective": {
        "name": "Effective configuration",
        "description": "Fully merged configuration from all sources",
        "mimeType": "application/json"
    }
}


RESOURCE_TEMPLATES = {
    "workflow://{name}": {
        "name": "Workflow definition",
        "description": "States, transitions and metadata of a workflow",
        "mimeType": "application/json"
    }
}
