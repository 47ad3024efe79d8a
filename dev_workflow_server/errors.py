"""
Error types for the Dev Workflow MCP Server.

Every error raised by a tool operation derives from DevWorkflowError and
carries enough structured detail (offending name, valid alternatives) for
the calling agent to correct its request without human help. None of them
are transient, so nothing here is ever retried.
"""

from typing import Any, Optional


class DevWorkflowError(Exception):
    """Base class for all tool-level failures."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def details(self) -> dict[str, Any]:
        return {}

    def to_dict(self) -> dict[str, Any]:
        result = {
            "success": False,
            "error": self.message,
            "error_type": type(self).__name__,
        }
        result.update(self.details())
        return result


class WorkflowValidationError(DevWorkflowError):
    """A workflow definition is malformed or structurally invalid.

    Fatal to that load. Callers must not fall back to some other workflow.
    """

    def __init__(
        self,
        workflow: str,
        message: str,
        state: Optional[str] = None,
        transition: Optional[str] = None,
    ):
        super().__init__(f"Invalid workflow '{workflow}': {message}")
        self.workflow = workflow
        self.state = state
        self.transition = transition

    def details(self) -> dict[str, Any]:
        return {
            "workflow": self.workflow,
            "state": self.state,
            "transition": self.transition,
        }


class InvalidPhaseError(DevWorkflowError):
    def __init__(self, phase: str, valid_phases: list[str]):
        super().__init__(
            f"Invalid phase: '{phase}'. Valid phases are: {', '.join(valid_phases)}"
        )
        self.phase = phase
        self.valid_phases = list(valid_phases)

    def details(self) -> dict[str, Any]:
        return {"phase": self.phase, "valid_phases": self.valid_phases}


class UnknownTriggerError(DevWorkflowError):
    def __init__(self, trigger: str, state: str, valid_triggers: list[str]):
        available = ", ".join(valid_triggers) if valid_triggers else "none"
        super().__init__(
            f"Trigger '{trigger}' is not declared for phase '{state}'. "
            f"Declared triggers: {available}"
        )
        self.trigger = trigger
        self.state = state
        self.valid_triggers = list(valid_triggers)

    def details(self) -> dict[str, Any]:
        return {
            "trigger": self.trigger,
            "state": self.state,
            "valid_triggers": self.valid_triggers,
        }


class UnknownWorkflowError(DevWorkflowError):
    def __init__(self, workflow: str, available_workflows: list[str]):
        super().__init__(
            f"Invalid workflow: {workflow}. "
            f"Available workflows: {', '.join(available_workflows)}"
        )
        self.workflow = workflow
        self.available_workflows = list(available_workflows)

    def details(self) -> dict[str, Any]:
        return {
            "workflow": self.workflow,
            "available_workflows": self.available_workflows,
        }


class ConversationNotFoundError(DevWorkflowError):
    """No conversation exists yet for the current project/branch.

    Recoverable by calling start_development with one of the listed workflows.
    """

    def __init__(self, conversation_id: str, available_workflows: list[str]):
        super().__init__(
            "No development conversation exists for this project. "
            "Use the start_development tool first to initialize development "
            f"with a workflow. Available workflows: {', '.join(available_workflows)}"
        )
        self.conversation_id = conversation_id
        self.available_workflows = list(available_workflows)

    def details(self) -> dict[str, Any]:
        return {
            "conversation_id": self.conversation_id,
            "available_workflows": self.available_workflows,
        }


class ConfirmationRequiredError(DevWorkflowError):
    def __init__(self):
        super().__init__(
            "Reset operation requires explicit confirmation. "
            "Set confirm parameter to true."
        )
