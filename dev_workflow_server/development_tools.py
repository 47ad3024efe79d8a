"""
Development Tools for Dev Workflow MCP Server

The tool operations exposed to the agent. Each one resolves the conversation
for the current project/branch, holds that conversation's operation lock for
its whole duration, and records its request and response in the interaction
log.

Failures are raised as DevWorkflowError subclasses; the server turns them
into structured error responses.
"""

import logging
from dataclasses import dataclass
from typing import Any, Optional

from .config_tools import COMMIT_BEHAVIOURS, config_get_commit_behaviour, config_get_effective
from .conversation_identity import (
    ConversationIdentity,
    get_current_commit_hash,
    is_git_repository,
    normalize_project_path,
    resolve_identity,
)
from .conversation_store import ConversationState, ConversationStore
from .errors import ConfirmationRequiredError, ConversationNotFoundError
from .instruction_generator import InstructionContext, generate_instructions
from .plan_manager import (
    analyze_plan_file,
    capitalize_phase,
    delete_plan_file as remove_plan_file,
    ensure_plan_file,
    get_plan_file_content,
    get_plan_file_info,
    get_plan_file_path,
)
from .project_docs import check_documentation_requirements, get_docs_path, get_variable_substitutions
from .transition_engine import TransitionResult, get_possible_transitions, resolve_transition
from .workflow_loader import WorkflowDefinition, get_workflow_names, load_workflow
from .workflow_loader import list_workflows as _list_workflows


logger = logging.getLogger(__name__)

ARTIFACT_SETUP_PHASE = "artifact-setup"


@dataclass
class ServerContext:
    project_path: str
    store: ConversationStore


def create_server_context(project_path: Optional[str] = None) -> ServerContext:
    project_path = normalize_project_path(project_path)
    config = config_get_effective(project_path)
    for warning in config["warnings"]:
        logger.warning("Config: %s", warning)
    store = ConversationStore(config["config"]["store_dir"])
    logger.info("Project %s, conversation store %s", project_path, store.base_dir)
    return ServerContext(project_path=project_path, store=store)


# =============================================================================
# Helpers
# =============================================================================

def build_commit_config(commit_behaviour: Optional[str], project_path: str) -> dict[str, Any]:
    """Translate a commit behaviour into the stored commit configuration.

    Without an explicit behaviour the project config decides, then ``end``
    inside a git repository and ``none`` elsewhere.
    """
    in_repo = is_git_repository(project_path)
    behaviour = commit_behaviour or config_get_commit_behaviour(project_path) or ("end" if in_repo else "none")
    if behaviour not in COMMIT_BEHAVIOURS:
        raise ValueError(
            f"Invalid commit_behaviour: {behaviour!r}. Expected one of {', '.join(COMMIT_BEHAVIOURS)}"
        )

    enabled = behaviour != "none"
    return {
        "behaviour": behaviour,
        "enabled": enabled,
        "commit_on_step": behaviour == "step",
        "commit_on_phase": behaviour == "phase",
        "commit_on_complete": behaviour == "end",
        "start_commit_hash": get_current_commit_hash(project_path) if enabled and in_repo else None,
    }


def _commit_instruction(message: str, what: str) -> str:
    return (
        f"**Git Commit Required**: Create a commit for this {what} using:\n"
        f"```bash\ngit add . && git commit -m \"{message}\"\n```"
    )


def _require_conversation(ctx: ServerContext, identity: ConversationIdentity) -> ConversationState:
    state = ctx.store.get(identity.conversation_id)
    if state is None:
        raise ConversationNotFoundError(identity.conversation_id, get_workflow_names(identity.project_path))
    return state


def _render(
    state: ConversationState,
    workflow: WorkflowDefinition,
    result: TransitionResult,
) -> str:
    plan_info = get_plan_file_info(state.plan_file_path)
    generated = generate_instructions(
        result.instructions,
        InstructionContext(
            phase=result.next_state,
            project_path=state.project_path,
            git_branch=state.git_branch,
            plan_file_path=state.plan_file_path,
            transition_reason=result.transition_reason,
            is_modeled=result.is_modeled,
            plan_file_exists=plan_info["exists"],
            workflow=workflow,
            variables=get_variable_substitutions(state.project_path),
        ),
    )
    return generated["instructions"]


def _artifact_setup_response(
    identity: ConversationIdentity,
    workflow_name: str,
    docs_check: dict[str, Any],
) -> dict[str, Any]:
    docs_path = get_docs_path(identity.project_path)
    missing = docs_check["missing_documents"]
    instructions = "\n".join([
        f"The {workflow_name} workflow needs project documentation before development can start.",
        "",
        f"Missing documents in `{docs_path}`:",
        *[f"- {name}" for name in missing],
        "",
        "Create these documents together with the user (or link existing files into the docs",
        f"directory), then call start_development with workflow '{workflow_name}' again.",
    ])
    return {
        "success": True,
        "phase": ARTIFACT_SETUP_PHASE,
        "instructions": instructions,
        "missing_documents": missing,
        "referenced_variables": docs_check["referenced_variables"],
        "docs_path": str(docs_path),
        "conversation_id": identity.conversation_id,
        "workflow": workflow_name,
    }


def _entrance_criteria_instructions(workflow: WorkflowDefinition, plan_file_path: str) -> str:
    later_phases = [p for p in workflow.phases if p != workflow.initial_state]
    lines = [
        f"Development started with the {workflow.name} workflow.",
        "",
        f"Before working on the first phase, open the plan file at `{plan_file_path}` and fill in",
        "the \"Phase Entrance Criteria\" of each later phase, so that every transition has clear",
        "conditions:",
        *[f"- {capitalize_phase(p)}" for p in later_phases],
        "",
        "Then call whats_next to receive the instructions for the current phase.",
    ]
    return "\n".join(lines)


# =============================================================================
# Tool operations
# =============================================================================

def start_development(
    ctx: ServerContext,
    workflow: str,
    commit_behaviour: Optional[str] = None,
) -> dict[str, Any]:
    """Begin (or restart) development on the current project/branch.

    Creates the conversation at the workflow's initial phase. An existing
    conversation is reinitialized to the new workflow. When the workflow
    requires project documents that are missing, nothing is stored and the
    response asks for the documents instead (phase ``artifact-setup``).
    """
    identity = resolve_identity(ctx.project_path)
    args = {"workflow": workflow, "commit_behaviour": commit_behaviour}

    with ctx.store.operation_lock(identity.conversation_id):
        definition = load_workflow(workflow, identity.project_path)

        docs_check = check_documentation_requirements(definition, identity.project_path)
        if not docs_check["ready"]:
            logger.info(
                "Workflow %s needs documents %s before starting",
                workflow, ", ".join(docs_check["missing_documents"])
            )
            return _artifact_setup_response(identity, workflow, docs_check)

        commit_config = build_commit_config(commit_behaviour, identity.project_path)
        plan_file_path = get_plan_file_path(identity.project_path, identity.git_branch)

        existing = ctx.store.get(identity.conversation_id)
        state = ConversationState(
            conversation_id=identity.conversation_id,
            project_path=identity.project_path,
            git_branch=identity.git_branch,
            current_phase=definition.initial_state,
            workflow_name=workflow,
            plan_file_path=plan_file_path,
            git_commit_config=commit_config,
        )
        if existing:
            state.created_at = existing.created_at
            logger.info(
                "Reinitializing conversation %s (%s/%s -> %s/%s)",
                identity.conversation_id, existing.workflow_name, existing.current_phase,
                workflow, definition.initial_state
            )

        ensure_plan_file(plan_file_path, identity.project_path, identity.git_branch, definition)
        ctx.store.upsert(state)

        instructions = _entrance_criteria_instructions(definition, plan_file_path)
        if commit_config["commit_on_complete"]:
            instructions += (
                "\n\nWhen development is complete, create a single final commit for the work"
                " (squash intermediate commits if needed)."
            )

        response = {
            "success": True,
            "phase": definition.initial_state,
            "instructions": instructions,
            "plan_file_path": plan_file_path,
            "conversation_id": identity.conversation_id,
            "workflow": {
                "name": workflow,
                "description": definition.description,
                "phases": definition.phases,
                "initial_state": definition.initial_state,
            },
            "commit_behaviour": commit_config["behaviour"],
        }
        ctx.store.log_interaction(
            identity.conversation_id, "start_development", args, response, definition.initial_state
        )
        return response


def whats_next(
    ctx: ServerContext,
    context: str = "",
    user_input: str = "",
    conversation_summary: str = "",
    recent_messages: Optional[list[dict[str, Any]]] = None,
) -> dict[str, Any]:
    """Instructions for continuing the current phase.

    The free-text arguments are only recorded; they never cause a phase change.
    """
    identity = resolve_identity(ctx.project_path)
    args = {
        "context": context,
        "user_input": user_input,
        "conversation_summary": conversation_summary,
        "recent_messages": recent_messages or [],
    }

    with ctx.store.operation_lock(identity.conversation_id):
        state = _require_conversation(ctx, identity)
        definition = load_workflow(state.workflow_name, state.project_path, include_disabled=True)

        result = resolve_transition(definition, state.current_phase)
        ensure_plan_file(state.plan_file_path, state.project_path, state.git_branch, definition)
        instructions = _render(state, definition, result)

        commit_config = state.git_commit_config or {}
        if commit_config.get("enabled") and commit_config.get("commit_on_step"):
            instructions += "\n\n" + _commit_instruction(context or "Step completion", "step")

        response = {
            "success": True,
            "phase": result.next_state,
            "instructions": instructions,
            "plan_file_path": state.plan_file_path,
            "is_modeled_transition": result.is_modeled,
            "conversation_id": state.conversation_id,
        }
        ctx.store.log_interaction(state.conversation_id, "whats_next", args, response, result.next_state)
        return response


def proceed_to_phase(
    ctx: ServerContext,
    target_phase: str,
    reason: str = "",
    trigger: Optional[str] = None,
) -> dict[str, Any]:
    """Move the conversation to ``target_phase``.

    A declared transition (or the given ``trigger``) yields that transition's
    instructions; any other valid phase is entered directly with its generic
    instructions.
    """
    identity = resolve_identity(ctx.project_path)
    args = {"target_phase": target_phase, "reason": reason, "trigger": trigger}

    with ctx.store.operation_lock(identity.conversation_id):
        state = _require_conversation(ctx, identity)
        definition = load_workflow(state.workflow_name, state.project_path, include_disabled=True)

        previous_phase = state.current_phase
        result = resolve_transition(definition, previous_phase, trigger=trigger, target_phase=target_phase)

        # plan first: a failed plan write must leave the stored phase untouched
        ensure_plan_file(state.plan_file_path, state.project_path, state.git_branch, definition)

        state.current_phase = result.next_state
        ctx.store.upsert(state)
        logger.info(
            "Phase transition %s -> %s (%s)%s",
            previous_phase, result.next_state, result.transition_reason,
            f", caller reason: {reason}" if reason else ""
        )

        instructions = _render(state, definition, result)

        commit_config = state.git_commit_config or {}
        if commit_config.get("enabled") and commit_config.get("commit_on_phase"):
            instructions += "\n\n" + _commit_instruction(
                f"Phase transition: {previous_phase} -> {result.next_state}", "phase transition"
            )

        response = {
            "success": True,
            "phase": result.next_state,
            "instructions": instructions,
            "plan_file_path": state.plan_file_path,
            "transition_reason": result.transition_reason,
            "is_modeled_transition": result.is_modeled,
            "conversation_id": state.conversation_id,
        }
        ctx.store.log_interaction(state.conversation_id, "proceed_to_phase", args, response, result.next_state)
        return response


def resume_workflow(ctx: ServerContext, include_instructions: bool = True) -> dict[str, Any]:
    """Everything an agent needs to pick the conversation up again.

    Meant for after the agent lost its context: the stored state, the plan
    and a summary of it, the current phase's instructions and the transitions
    declared on that phase. Never changes the phase.
    """
    identity = resolve_identity(ctx.project_path)
    args = {"include_instructions": include_instructions}

    with ctx.store.operation_lock(identity.conversation_id):
        state = _require_conversation(ctx, identity)
        definition = load_workflow(state.workflow_name, state.project_path, include_disabled=True)

        plan_info = get_plan_file_info(state.plan_file_path)
        analysis = analyze_plan_file(plan_info["content"]) if plan_info["exists"] else None
        transitions = get_possible_transitions(definition, state.current_phase)

        immediate_actions = []
        if not plan_info["exists"]:
            immediate_actions.append("Call whats_next to recreate the plan file and get phase instructions")
        else:
            immediate_actions.append(f"Review the plan file at {state.plan_file_path}")
            if analysis["active_tasks"]:
                immediate_actions.append(
                    f"Continue the {len(analysis['active_tasks'])} open task(s) of the "
                    f"{capitalize_phase(state.current_phase)} phase"
                )
        immediate_actions.append("Call whats_next after each user message to stay in step with the workflow")

        response = {
            "success": True,
            "conversation_id": state.conversation_id,
            "phase": state.current_phase,
            "project_path": state.project_path,
            "git_branch": state.git_branch,
            "workflow": {
                "name": state.workflow_name,
                "description": definition.description,
                "phases": definition.phases,
                "initial_state": definition.initial_state,
                "phase_description": definition.states[state.current_phase].description,
            },
            "plan": {
                "path": state.plan_file_path,
                "exists": plan_info["exists"],
                "analysis": analysis,
            },
            "available_transitions": transitions,
            "recommendations": immediate_actions,
        }
        if include_instructions:
            result = resolve_transition(definition, state.current_phase)
            response["instructions"] = _render(state, definition, result)

        ctx.store.log_interaction(state.conversation_id, "resume_workflow", args, response, state.current_phase)
        return response


def reset_development(
    ctx: ServerContext,
    confirm: bool = False,
    reason: Optional[str] = None,
    delete_plan_file: bool = False,
) -> dict[str, Any]:
    """Clear the conversation's state and interaction history.

    Requires ``confirm`` to be exactly True. The plan file stays on disk
    unless ``delete_plan_file`` is set.
    """
    if confirm is not True:
        raise ConfirmationRequiredError()

    identity = resolve_identity(ctx.project_path)

    with ctx.store.operation_lock(identity.conversation_id):
        state = ctx.store.get(identity.conversation_id)
        plan_file_path = state.plan_file_path if state else get_plan_file_path(
            identity.project_path, identity.git_branch
        )

        reset_items = ctx.store.reset(identity.conversation_id, reason)
        if delete_plan_file and remove_plan_file(plan_file_path):
            reset_items.append("plan_file")

        return {
            "success": True,
            "reset_items": reset_items,
            "conversation_id": identity.conversation_id,
            "plan_file_path": plan_file_path,
            "message": f"Successfully reset conversation {identity.conversation_id}",
        }


def list_workflows(ctx: ServerContext) -> dict[str, Any]:
    workflows = _list_workflows(ctx.project_path)
    return {"success": True, "workflows": workflows, "count": len(workflows)}


def get_conversation_state(ctx: ServerContext) -> dict[str, Any]:
    identity = resolve_identity(ctx.project_path)
    state = _require_conversation(ctx, identity)
    return state.to_dict()


def get_development_plan(ctx: ServerContext) -> str:
    identity = resolve_identity(ctx.project_path)
    state = ctx.store.get(identity.conversation_id)
    plan_file_path = state.plan_file_path if state else get_plan_file_path(
        identity.project_path, identity.git_branch
    )
    return get_plan_file_content(plan_file_path)
