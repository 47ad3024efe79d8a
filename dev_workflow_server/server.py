#!/usr/bin/env python3
"""
Dev Workflow MCP Server

An MCP server that guides an LLM agent through a multi-phase development
workflow. It keeps one conversation per project and git branch, tracks the
active phase against a YAML-defined state machine, and answers each tool
call with phase-specific instructions and a maintained development plan.
"""

import asyncio
import json
import logging
import sys
from typing import Any, Optional

from mcp.server import Server
from mcp.server.stdio import stdio_server
from mcp.types import (
    Tool,
    TextContent,
    Resource,
    ResourceTemplate,
)

from .config_tools import COMMIT_BEHAVIOURS, config_get_effective
from .conversation_identity import normalize_project_path
from .development_tools import (
    ServerContext,
    create_server_context,
    list_workflows,
    proceed_to_phase,
    reset_development,
    resume_workflow,
    start_development,
    whats_next,
)
from .errors import DevWorkflowError
from .resources import RESOURCE_DESCRIPTIONS, RESOURCE_TEMPLATES, resolve_resource

logger = logging.getLogger(__name__)

server = Server("dev-workflow-server")

_context: Optional[ServerContext] = None


def get_context() -> ServerContext:
    global _context
    if _context is None:
        _context = create_server_context()
    return _context


def set_context(ctx: Optional[ServerContext]) -> None:
    global _context
    _context = ctx


TOOLS = [
    Tool(
        name="start_development",
        description=(
            "Begin development on the current project and branch with a workflow. "
            "Creates the conversation at the workflow's first phase and the development plan file. "
            "If the workflow needs project documents that are missing, returns phase 'artifact-setup' "
            "with the list of missing documents instead."
        ),
        inputSchema={
            "type": "object",
            "properties": {
                "workflow": {
                    "type": "string",
                    "description": "Workflow name (see list_workflows) or 'custom' for .vibe/workflow.yaml"
                },
                "commit_behaviour": {
                    "type": "string",
                    "enum": COMMIT_BEHAVIOURS,
                    "description": "When to create git commits. Defaults to 'end' in a git repository, else 'none'."
                }
            },
            "required": ["workflow"]
        }
    ),
    Tool(
        name="whats_next",
        description=(
            "Get instructions for the current development phase. Call after each meaningful step. "
            "Never changes the phase; use proceed_to_phase for that."
        ),
        inputSchema={
            "type": "object",
            "properties": {
                "context": {
                    "type": "string",
                    "description": "What you are currently working on"
                },
                "user_input": {
                    "type": "string",
                    "description": "The user's latest message"
                },
                "conversation_summary": {
                    "type": "string",
                    "description": "Summary of the conversation so far"
                },
                "recent_messages": {
                    "type": "array",
                    "items": {
                        "type": "object",
                        "properties": {
                            "role": {"type": "string", "enum": ["user", "assistant"]},
                            "content": {"type": "string"}
                        }
                    },
                    "description": "Recent conversation messages"
                }
            },
            "required": []
        }
    ),
    Tool(
        name="proceed_to_phase",
        description=(
            "Move to another phase of the workflow. Declared transitions return their specific "
            "instructions; other valid phases are entered directly with generic instructions."
        ),
        inputSchema={
            "type": "object",
            "properties": {
                "target_phase": {
                    "type": "string",
                    "description": "Phase to move to"
                },
                "reason": {
                    "type": "string",
                    "description": "Why the transition happens"
                },
                "trigger": {
                    "type": "string",
                    "description": "Name of a transition declared on the current phase"
                }
            },
            "required": ["target_phase"]
        }
    ),
    Tool(
        name="resume_workflow",
        description=(
            "Resume development after losing conversation context. Returns the current phase, "
            "workflow, plan summary, available transitions and the current phase's instructions."
        ),
        inputSchema={
            "type": "object",
            "properties": {
                "include_instructions": {
                    "type": "boolean",
                    "description": "Include the rendered instructions for the current phase (default true)"
                }
            },
            "required": []
        }
    ),
    Tool(
        name="reset_development",
        description=(
            "Reset the conversation for this project and branch: clears the phase state and "
            "interaction history. Requires confirm=true. The plan file is kept unless delete_plan_file=true."
        ),
        inputSchema={
            "type": "object",
            "properties": {
                "confirm": {
                    "type": "boolean",
                    "description": "Must be true to perform the reset"
                },
                "reason": {
                    "type": "string",
                    "description": "Why the conversation is reset"
                },
                "delete_plan_file": {
                    "type": "boolean",
                    "description": "Also delete the development plan file",
                    "default": False
                }
            },
            "required": ["confirm"]
        }
    ),
    Tool(
        name="list_workflows",
        description="List the workflows available for this project with their phases and metadata.",
        inputSchema={
            "type": "object",
            "properties": {},
            "required": []
        }
    ),
]


def dispatch_tool(name: str, arguments: dict[str, Any], ctx: ServerContext) -> dict[str, Any]:
    if name == "start_development":
        return start_development(
            ctx,
            workflow=arguments["workflow"],
            commit_behaviour=arguments.get("commit_behaviour")
        )
    if name == "whats_next":
        return whats_next(
            ctx,
            context=arguments.get("context", ""),
            user_input=arguments.get("user_input", ""),
            conversation_summary=arguments.get("conversation_summary", ""),
            recent_messages=arguments.get("recent_messages")
        )
    if name == "proceed_to_phase":
        return proceed_to_phase(
            ctx,
            target_phase=arguments["target_phase"],
            reason=arguments.get("reason", ""),
            trigger=arguments.get("trigger")
        )
    if name == "resume_workflow":
        return resume_workflow(ctx, include_instructions=arguments.get("include_instructions", True))
    if name == "reset_development":
        return reset_development(
            ctx,
            confirm=arguments.get("confirm", False),
            reason=arguments.get("reason"),
            delete_plan_file=arguments.get("delete_plan_file", False)
        )
    if name == "list_workflows":
        return list_workflows(ctx)
    return {"error": f"Unknown tool: {name}"}


def handle_tool_call(name: str, arguments: Optional[dict[str, Any]], ctx: ServerContext) -> dict[str, Any]:
    try:
        return dispatch_tool(name, arguments or {}, ctx)
    except DevWorkflowError as e:
        logger.warning("Tool %s failed: %s", name, e.message)
        return e.to_dict()
    except Exception as e:
        logger.exception(f"Error executing tool {name}")
        return {"error": str(e), "tool": name}


@server.list_tools()
async def list_tools() -> list[Tool]:
    return TOOLS


@server.call_tool()
async def call_tool(name: str, arguments: dict[str, Any]) -> list[TextContent]:
    result = handle_tool_call(name, arguments, get_context())
    return [TextContent(type="text", text=json.dumps(result, indent=2))]


@server.list_resources()
async def list_resources() -> list[Resource]:
    return [
        Resource(uri=uri, name=info["name"], mimeType=info["mimeType"], description=info["description"])
        for uri, info in RESOURCE_DESCRIPTIONS.items()
    ]


@server.list_resource_templates()
async def list_resource_templates() -> list[ResourceTemplate]:
    return [
        ResourceTemplate(
            uriTemplate=template, name=info["name"], mimeType=info["mimeType"], description=info["description"]
        )
        for template, info in RESOURCE_TEMPLATES.items()
    ]


@server.read_resource()
async def read_resource(uri: Any) -> str:
    return resolve_resource(str(uri), get_context())


def configure_logging() -> None:
    config = config_get_effective(normalize_project_path())["config"]
    level_name = str(config.get("log_level") or "INFO").upper()
    level = getattr(logging, level_name, logging.INFO)
    if not isinstance(level, int):
        level = logging.INFO
    # stdout carries the MCP protocol
    logging.basicConfig(
        level=level,
        stream=sys.stderr,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s"
    )


async def async_main():
    async with stdio_server() as (read_stream, write_stream):
        await server.run(
            read_stream,
            write_stream,
            server.create_initialization_options()
        )


def main():
    """Entry point for the MCP server."""
    configure_logging()
    set_context(create_server_context())
    logger.info("Starting dev-workflow-server for %s", get_context().project_path)
    asyncio.run(async_main())


if __name__ == "__main__":
    main()
