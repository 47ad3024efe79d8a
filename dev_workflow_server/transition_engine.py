"""
Transition Resolution Engine

Maps (current phase, requested trigger/target) onto the next phase of a
workflow and the instructions for entering it. Only explicit requests are
acted on: a named trigger, a target phase, or neither (continue the current
phase).
"""

import logging
from dataclasses import dataclass
from typing import Any, Optional

from .errors import InvalidPhaseError, UnknownTriggerError
from .workflow_loader import TransitionDef, WorkflowDefinition


logger = logging.getLogger(__name__)

ADDITIONAL_CONTEXT_HEADING = "**Additional Context:**"


@dataclass(frozen=True)
class TransitionResult:
    next_state: str
    instructions: str
    transition_reason: str
    is_modeled: bool

    def to_dict(self) -> dict[str, Any]:
        return {
            "next_state": self.next_state,
            "instructions": self.instructions,
            "transition_reason": self.transition_reason,
            "is_modeled": self.is_modeled,
        }


def _modeled_instructions(workflow: WorkflowDefinition, transition: TransitionDef) -> str:
    instructions = transition.instructions or workflow.states[transition.to].default_instructions
    if transition.additional_instructions:
        instructions = f"{instructions}\n\n{ADDITIONAL_CONTEXT_HEADING}\n{transition.additional_instructions}"
    return instructions


def _from_transition(workflow: WorkflowDefinition, transition: TransitionDef) -> TransitionResult:
    return TransitionResult(
        next_state=transition.to,
        instructions=_modeled_instructions(workflow, transition),
        transition_reason=transition.transition_reason,
        is_modeled=True,
    )


def _find_edge(workflow: WorkflowDefinition, from_state: str, to_state: str) -> Optional[TransitionDef]:
    for transition in workflow.states[from_state].transitions:
        if transition.to == to_state:
            return transition
    return None


def get_possible_transitions(workflow: WorkflowDefinition, state: str) -> list[dict[str, Any]]:
    if not workflow.has_state(state):
        raise InvalidPhaseError(state, workflow.phases)
    return [t.to_dict() for t in workflow.states[state].transitions]


def is_modeled_transition(workflow: WorkflowDefinition, from_state: str, to_state: str) -> bool:
    if not workflow.has_state(from_state):
        return False
    return _find_edge(workflow, from_state, to_state) is not None


def resolve_transition(
    workflow: WorkflowDefinition,
    current_state: str,
    trigger: Optional[str] = None,
    target_phase: Optional[str] = None,
) -> TransitionResult:
    """Resolve the next phase and its instructions.

    Args:
        workflow: Loaded workflow definition
        current_state: Phase the conversation is in
        trigger: Name of a transition declared on ``current_state``
        target_phase: Phase to move to, with or without a declared edge

    Raises:
        InvalidPhaseError: current_state or target_phase is not a workflow state
        UnknownTriggerError: trigger is not declared on current_state, or
            leads somewhere other than target_phase
    """
    if not workflow.has_state(current_state):
        raise InvalidPhaseError(current_state, workflow.phases)

    if target_phase and not workflow.has_state(target_phase):
        raise InvalidPhaseError(target_phase, workflow.phases)

    state = workflow.states[current_state]

    if trigger:
        transition = state.find_transition(trigger)
        if transition is None:
            raise UnknownTriggerError(trigger, current_state, [t.trigger for t in state.transitions])
        if target_phase and transition.to != target_phase:
            raise UnknownTriggerError(
                trigger, current_state, [t.trigger for t in state.transitions if t.to == target_phase]
            )
        logger.info("Transition %s --%s--> %s", current_state, trigger, transition.to)
        return _from_transition(workflow, transition)

    if target_phase:
        transition = _find_edge(workflow, current_state, target_phase)
        if transition is not None:
            logger.info("Transition %s --%s--> %s", current_state, transition.trigger, target_phase)
            return _from_transition(workflow, transition)

        logger.warning(
            "Ungated direct transition %s -> %s in workflow %s",
            current_state, target_phase, workflow.name
        )
        return TransitionResult(
            next_state=target_phase,
            instructions=workflow.states[target_phase].default_instructions,
            transition_reason=f"Direct transition to {target_phase} phase",
            is_modeled=False,
        )

    self_transition = _find_edge(workflow, current_state, current_state)
    if self_transition is not None:
        instructions = _modeled_instructions(workflow, self_transition)
    else:
        instructions = state.default_instructions
    return TransitionResult(
        next_state=current_state,
        instructions=instructions,
        transition_reason=f"Continuing work in {current_state} phase",
        is_modeled=False,
    )
