"""
Tests for server.py: tool definitions and dispatch error handling.

Run with: pytest tests/test_server.py -v
"""

import asyncio
import json
import pytest
from pathlib import Path
from unittest.mock import patch

import sys
sys.path.insert(0, str(Path(__file__).parent.parent))

from dev_workflow_server import server
from dev_workflow_server.development_tools import create_server_context


@pytest.fixture
def ctx(project_dir, no_git):
    context = create_server_context(str(project_dir))
    server.set_context(context)
    yield context
    server.set_context(None)


class TestToolDefinitions:
    def test_tool_names(self):
        assert [t.name for t in server.TOOLS] == [
            "start_development",
            "whats_next",
            "proceed_to_phase",
            "resume_workflow",
            "reset_development",
            "list_workflows",
        ]

    def test_required_arguments(self):
        required = {t.name: t.inputSchema["required"] for t in server.TOOLS}
        assert required["start_development"] == ["workflow"]
        assert required["proceed_to_phase"] == ["target_phase"]
        assert required["reset_development"] == ["confirm"]


class TestHandleToolCall:
    def test_success(self, ctx):
        result = server.handle_tool_call("start_development", {"workflow": "bugfix"}, ctx)
        assert result["phase"] == "reproduce"

    def test_domain_error_is_structured(self, ctx):
        result = server.handle_tool_call("reset_development", {"confirm": False}, ctx)
        assert result["success"] is False
        assert result["error_type"] == "ConfirmationRequiredError"

    def test_invalid_phase_lists_valid_phases(self, ctx):
        server.handle_tool_call("start_development", {"workflow": "minor"}, ctx)
        result = server.handle_tool_call("proceed_to_phase", {"target_phase": "deploy"}, ctx)
        assert result["error_type"] == "InvalidPhaseError"
        assert result["valid_phases"] == ["explore", "implement", "finalize"]

    def test_resume_workflow(self, ctx):
        server.handle_tool_call("start_development", {"workflow": "minor"}, ctx)
        result = server.handle_tool_call("resume_workflow", {"include_instructions": False}, ctx)
        assert result["phase"] == "explore"
        assert "instructions" not in result

    def test_missing_argument_reported(self, ctx):
        result = server.handle_tool_call("start_development", {}, ctx)
        assert result["tool"] == "start_development"
        assert "workflow" in result["error"]

    def test_unexpected_error_logged(self, ctx):
        with patch.object(server, "dispatch_tool", side_effect=RuntimeError("disk on fire")), \
             patch.object(server.logger, "exception") as log_exception:
            result = server.handle_tool_call("whats_next", {}, ctx)
        assert result == {"error": "disk on fire", "tool": "whats_next"}
        log_exception.assert_called_once()

    def test_unknown_tool(self, ctx):
        assert server.handle_tool_call("make_coffee", None, ctx) == {"error": "Unknown tool: make_coffee"}


class TestAsyncHandlers:
    def test_call_tool_returns_json_text(self, ctx):
        content = asyncio.run(server.call_tool("list_workflows", {}))
        assert content[0].type == "text"
        assert json.loads(content[0].text)["count"] >= 4

    def test_read_resource(self, ctx):
        text = asyncio.run(server.read_resource("workflow://minor"))
        assert json.loads(text)["initial_state"] == "explore"

    def test_list_resources(self):
        resources = asyncio.run(server.list_resources())
        assert "plan://current" in [str(r.uri) for r in resources]
