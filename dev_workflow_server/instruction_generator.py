"""
Instruction Generator

Turns a phase's raw instruction template into the text handed to the agent:
document variables are replaced by real paths and the result is wrapped with
plan-file guidance, project context and phase reminders.
"""

import re
from dataclasses import dataclass
from typing import Any, Mapping, Optional

from .plan_manager import capitalize_phase, generate_plan_file_guidance
from .workflow_loader import WorkflowDefinition


@dataclass
class InstructionContext:
    phase: str
    project_path: str
    git_branch: str
    plan_file_path: str
    transition_reason: str = ""
    is_modeled: bool = False
    plan_file_exists: bool = True
    workflow: Optional[WorkflowDefinition] = None
    variables: Optional[Mapping[str, str]] = None


def render(template: str, variables: Mapping[str, str]) -> str:
    """Replace each known variable token with its value; unknown ``$TOKENS`` stay as written."""
    if not variables:
        return template
    # Longest first so $DESIGN_DOC never eats the prefix of a longer token
    tokens = sorted(variables, key=len, reverse=True)
    pattern = re.compile("|".join(re.escape(t) + r"(?![A-Za-z0-9_])" for t in tokens))
    return pattern.sub(lambda m: variables[m.group(0)], template)


def _phase_context(context: InstructionContext) -> list[str]:
    if context.workflow is None or not context.workflow.has_state(context.phase):
        return []
    description = context.workflow.states[context.phase].description
    return [f"**Context:** {capitalize_phase(context.phase)} phase - {description}"]


def _plan_file_block(context: InstructionContext, guidance: str) -> list[str]:
    lines = ["**Plan File Guidance:**"]
    if context.plan_file_exists:
        lines.append(f"Check your plan file at `{context.plan_file_path}` and focus on the current phase section.")
    else:
        lines.append(f"The plan file at `{context.plan_file_path}` will be created for you; fill it in as you work.")
    lines.append(guidance)
    return lines


def _project_context(context: InstructionContext) -> list[str]:
    return [
        "**Project Context:**",
        f"- Project: {context.project_path}",
        f"- Branch: {context.git_branch}",
        f"- Current Phase: {context.phase}",
    ]


def _transition_context(context: InstructionContext) -> list[str]:
    if not context.is_modeled or not context.transition_reason:
        return []
    return ["**Phase Transition:**", f"- Reason: {context.transition_reason}"]


def _reminders(context: InstructionContext) -> list[str]:
    return [
        "**Remember:**",
        f"- Work only on tasks that belong to the {context.phase} phase",
        "- Mark tasks as complete in the plan file as soon as they are done",
        "- Call whats_next after each meaningful step",
        "- Call proceed_to_phase when the phase is finished and the user agrees",
    ]


def generate_instructions(base_instructions: str, context: InstructionContext) -> dict[str, Any]:
    """Compose the final instructions for one tool response.

    Returns:
        Dict with instructions, plan_file_guidance and metadata
    """
    instructions = render(base_instructions, context.variables or {})
    guidance = generate_plan_file_guidance(context.phase, context.workflow)

    blocks = [
        [instructions],
        _phase_context(context),
        _plan_file_block(context, guidance),
        _project_context(context),
        _transition_context(context),
        _reminders(context),
    ]
    text = "\n\n".join("\n".join(block) for block in blocks if block)

    return {
        "instructions": text,
        "plan_file_guidance": guidance,
        "metadata": {
            "phase": context.phase,
            "plan_file_path": context.plan_file_path,
            "transition_reason": context.transition_reason,
            "is_modeled_transition": context.is_modeled,
        },
    }
