"""
Workflow Definition Loader

Workflows are YAML state machines: a set of named states (phases), each with
default instructions and an ordered list of triggered transitions. They come
either from the bundled catalog (the ``workflows/`` directory next to this
module) or from a project-local override at ``<project>/.vibe/workflow.yaml``
selected with the workflow name ``custom``.

Loading is an explicit parse-and-validate step producing an immutable graph
of frozen dataclasses. Structural problems raise WorkflowValidationError;
softer issues (duplicate triggers, unreachable states) are kept as warnings
on the loaded definition.
"""

import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import Any, Mapping, Optional

import yaml

from .config_tools import PROJECT_CONFIG_DIR, config_get_enabled_workflows
from .errors import UnknownWorkflowError, WorkflowValidationError


logger = logging.getLogger(__name__)

WORKFLOWS_DIR = Path(__file__).resolve().parent / "workflows"
CUSTOM_WORKFLOW_NAME = "custom"
CUSTOM_WORKFLOW_FILES = ["workflow.yaml", "workflow.yml"]
# plan file headings owned by the plan skeleton
RESERVED_SECTION_TITLES = ("goal", "key decisions", "notes")


@dataclass(frozen=True)
class TransitionDef:
    trigger: str
    to: str
    transition_reason: str
    instructions: Optional[str] = None
    additional_instructions: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        result = {
            "trigger": self.trigger,
            "to": self.to,
            "transition_reason": self.transition_reason,
        }
        if self.instructions:
            result["instructions"] = self.instructions
        if self.additional_instructions:
            result["additional_instructions"] = self.additional_instructions
        return result


@dataclass(frozen=True)
class StateDef:
    description: str
    default_instructions: str
    transitions: tuple[TransitionDef, ...] = ()

    def find_transition(self, trigger: str) -> Optional[TransitionDef]:
        """First transition declared with ``trigger``."""
        for transition in self.transitions:
            if transition.trigger == trigger:
                return transition
        return None

    def to_dict(self) -> dict[str, Any]:
        return {
            "description": self.description,
            "default_instructions": self.default_instructions,
            "transitions": [t.to_dict() for t in self.transitions],
        }


@dataclass(frozen=True)
class WorkflowMetadata:
    requires_documentation: bool = False
    domain: Optional[str] = None
    complexity: Optional[str] = None
    best_for: tuple[str, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {"requiresDocumentation": self.requires_documentation}
        if self.domain:
            result["domain"] = self.domain
        if self.complexity:
            result["complexity"] = self.complexity
        if self.best_for:
            result["bestFor"] = list(self.best_for)
        return result


@dataclass(frozen=True)
class WorkflowDefinition:
    name: str
    description: str
    initial_state: str
    states: Mapping[str, StateDef]
    metadata: WorkflowMetadata = field(default_factory=WorkflowMetadata)
    source: Optional[str] = None
    warnings: tuple[str, ...] = ()

    @property
    def phases(self) -> list[str]:
        return list(self.states.keys())

    def has_state(self, name: str) -> bool:
        return name in self.states

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description,
            "initial_state": self.initial_state,
            "metadata": self.metadata.to_dict(),
            "states": {name: state.to_dict() for name, state in self.states.items()},
        }


class _UniqueKeyLoader(yaml.SafeLoader):
    """SafeLoader that refuses mappings with repeated keys."""


def _construct_unique_mapping(loader, node, deep=False):
    seen = set()
    for key_node, _ in node.value:
        key = loader.construct_object(key_node, deep=deep)
        if key in seen:
            raise yaml.constructor.ConstructorError(
                "while constructing a mapping", node.start_mark,
                f"found duplicate key '{key}'", key_node.start_mark
            )
        seen.add(key)
    return loader.construct_mapping(node, deep=deep)


_UniqueKeyLoader.add_constructor(
    yaml.resolver.BaseResolver.DEFAULT_MAPPING_TAG, _construct_unique_mapping
)


def _require_text(value: Any) -> bool:
    return isinstance(value, str) and value.strip() != ""


def _parse_metadata(raw: Any, label: str) -> WorkflowMetadata:
    if raw is None:
        return WorkflowMetadata()
    if not isinstance(raw, dict):
        raise WorkflowValidationError(label, "metadata must be a mapping")

    requires_docs = raw.get("requiresDocumentation", False)
    if not isinstance(requires_docs, bool):
        raise WorkflowValidationError(label, "metadata.requiresDocumentation must be a boolean")

    best_for = raw.get("bestFor") or []
    if isinstance(best_for, str):
        best_for = [best_for]

    return WorkflowMetadata(
        requires_documentation=requires_docs,
        domain=raw.get("domain"),
        complexity=raw.get("complexity"),
        best_for=tuple(str(item) for item in best_for),
    )


def _section_title_key(state_name: str) -> str:
    return " ".join(word.lower() for word in re.split(r"[_\-\s]+", state_name) if word)


def _find_unreachable_states(initial_state: str, states: Mapping[str, StateDef]) -> list[str]:
    reachable = {initial_state}
    frontier = [initial_state]
    while frontier:
        current = frontier.pop()
        for transition in states[current].transitions:
            if transition.to not in reachable:
                reachable.add(transition.to)
                frontier.append(transition.to)
    return [name for name in states if name not in reachable]


def validate_workflow(raw: Any, label: str, source: Optional[str] = None) -> WorkflowDefinition:
    """Validate a parsed YAML document and build the immutable definition.

    Args:
        raw: Result of parsing the workflow YAML
        label: Name used in error messages (catalog name or file path)
        source: File the document was read from

    Raises:
        WorkflowValidationError: naming the offending state/transition
    """
    if not isinstance(raw, dict):
        raise WorkflowValidationError(label, "workflow document must be a mapping")

    missing = [key for key in ("name", "initial_state", "states") if not raw.get(key)]
    if missing:
        raise WorkflowValidationError(
            label, f"workflow is missing required properties: {', '.join(missing)}"
        )

    raw_states = raw["states"]
    if not isinstance(raw_states, dict):
        raise WorkflowValidationError(label, "'states' must be a mapping of state names")

    state_names = [str(name) for name in raw_states]
    initial_state = str(raw["initial_state"])
    if initial_state not in state_names:
        raise WorkflowValidationError(
            label, f"initial state '{initial_state}' is not defined in states",
            state=initial_state
        )

    warnings = []
    states: dict[str, StateDef] = {}
    section_titles: dict[str, str] = {}
    for state_name, raw_state in raw_states.items():
        state_name = str(state_name)
        if not isinstance(raw_state, dict):
            raise WorkflowValidationError(label, f"state '{state_name}' must be a mapping", state=state_name)

        title_key = _section_title_key(state_name)
        if title_key in RESERVED_SECTION_TITLES:
            raise WorkflowValidationError(
                label, f"state name '{state_name}' clashes with the plan file's '{title_key}' section",
                state=state_name
            )
        if title_key in section_titles:
            raise WorkflowValidationError(
                label, f"states '{section_titles[title_key]}' and '{state_name}' share a plan section title",
                state=state_name
            )
        section_titles[title_key] = state_name

        if not _require_text(raw_state.get("description")) or not _require_text(raw_state.get("default_instructions")):
            raise WorkflowValidationError(
                label,
                f"state '{state_name}' is missing required properties (description or default_instructions)",
                state=state_name
            )

        raw_transitions = raw_state.get("transitions", [])
        if raw_transitions is None:
            raw_transitions = []
        if not isinstance(raw_transitions, list):
            raise WorkflowValidationError(
                label, f"state '{state_name}' has invalid transitions property", state=state_name
            )

        transitions = []
        seen_triggers = set()
        for index, raw_transition in enumerate(raw_transitions):
            if not isinstance(raw_transition, dict):
                raise WorkflowValidationError(
                    label, f"transition #{index + 1} of state '{state_name}' must be a mapping",
                    state=state_name
                )

            trigger = raw_transition.get("trigger")
            target = raw_transition.get("to")
            if not _require_text(trigger):
                raise WorkflowValidationError(
                    label, f"transition #{index + 1} of state '{state_name}' is missing a trigger",
                    state=state_name
                )
            if not _require_text(target):
                raise WorkflowValidationError(
                    label, f"transition '{trigger}' of state '{state_name}' is missing a target state",
                    state=state_name, transition=trigger
                )
            if target not in state_names:
                raise WorkflowValidationError(
                    label, f"state '{state_name}' has transition to unknown state '{target}'",
                    state=state_name, transition=trigger
                )
            if not _require_text(raw_transition.get("transition_reason")):
                raise WorkflowValidationError(
                    label, f"transition from '{state_name}' to '{target}' is missing transition_reason",
                    state=state_name, transition=trigger
                )

            if trigger in seen_triggers:
                warnings.append(
                    f"State '{state_name}' declares trigger '{trigger}' more than once; the first declaration wins"
                )
            seen_triggers.add(trigger)

            transitions.append(TransitionDef(
                trigger=trigger,
                to=target,
                transition_reason=raw_transition["transition_reason"],
                instructions=raw_transition.get("instructions") or None,
                additional_instructions=raw_transition.get("additional_instructions") or None,
            ))

        states[state_name] = StateDef(
            description=raw_state["description"],
            default_instructions=raw_state["default_instructions"],
            transitions=tuple(transitions),
        )

    for state_name in _find_unreachable_states(initial_state, states):
        warnings.append(f"State '{state_name}' is not reachable from '{initial_state}'")

    for warning in warnings:
        logger.warning("Workflow %s: %s", label, warning)

    return WorkflowDefinition(
        name=str(raw["name"]),
        description=str(raw.get("description") or ""),
        initial_state=initial_state,
        states=MappingProxyType(states),
        metadata=_parse_metadata(raw.get("metadata"), label),
        source=source,
        warnings=tuple(warnings),
    )


def load_workflow_from_file(path: Path, label: Optional[str] = None) -> WorkflowDefinition:
    label = label or str(path)
    try:
        content = Path(path).read_text(encoding="utf-8")
    except OSError as e:
        raise WorkflowValidationError(label, f"cannot read workflow file: {e}")

    try:
        raw = yaml.load(content, Loader=_UniqueKeyLoader)
    except yaml.YAMLError as e:
        raise WorkflowValidationError(label, f"invalid YAML: {e}")

    return validate_workflow(raw, label, source=str(path))


_bundled_cache: dict[str, WorkflowDefinition] = {}


def get_bundled_workflow_names() -> list[str]:
    if not WORKFLOWS_DIR.exists():
        return []
    names = {p.stem for p in WORKFLOWS_DIR.iterdir() if p.suffix in (".yaml", ".yml")}
    return sorted(names)


def load_bundled_workflow(name: str) -> WorkflowDefinition:
    """Load a catalog workflow. Catalog files never change while running, so they are memoized."""
    if name in _bundled_cache:
        return _bundled_cache[name]

    for suffix in (".yaml", ".yml"):
        path = WORKFLOWS_DIR / f"{name}{suffix}"
        if path.exists():
            workflow = load_workflow_from_file(path, label=name)
            _bundled_cache[name] = workflow
            logger.info("Loaded bundled workflow %s (%d states)", name, len(workflow.states))
            return workflow

    raise UnknownWorkflowError(name, get_bundled_workflow_names())


def find_custom_workflow_file(project_path: str) -> Optional[Path]:
    vibe_dir = Path(project_path) / PROJECT_CONFIG_DIR
    for filename in CUSTOM_WORKFLOW_FILES:
        candidate = vibe_dir / filename
        if candidate.exists():
            return candidate
    return None


def get_workflow_names(project_path: str) -> list[str]:
    """Names a caller may pass to start_development for this project."""
    names = get_bundled_workflow_names()
    enabled = config_get_enabled_workflows(project_path)
    if enabled:
        names = [n for n in names if n in enabled]
    if find_custom_workflow_file(project_path):
        names.append(CUSTOM_WORKFLOW_NAME)
    return names


def load_workflow(workflow_name: str, project_path: str, include_disabled: bool = False) -> WorkflowDefinition:
    """Load the workflow ``workflow_name`` for ``project_path``.

    ``custom`` reads the project-local override on every call so edits are
    picked up immediately. Any other name resolves against the bundled catalog,
    restricted to the project's ``enabled_workflows`` unless ``include_disabled``
    is set (conversations already running on a since-disabled workflow).

    Raises:
        UnknownWorkflowError: name is neither an available bundled workflow nor an existing custom workflow
        WorkflowValidationError: the workflow file is invalid
    """
    if workflow_name == CUSTOM_WORKFLOW_NAME:
        path = find_custom_workflow_file(project_path)
        if path is None:
            raise UnknownWorkflowError(workflow_name, get_workflow_names(project_path))
        logger.info("Loading custom workflow from %s", path)
        return load_workflow_from_file(path, label=CUSTOM_WORKFLOW_NAME)

    allowed = get_bundled_workflow_names() if include_disabled else get_workflow_names(project_path)
    if workflow_name not in allowed:
        raise UnknownWorkflowError(workflow_name, get_workflow_names(project_path))
    return load_bundled_workflow(workflow_name)


def list_workflows(project_path: str) -> list[dict[str, Any]]:
    workflows = []
    for name in get_workflow_names(project_path):
        workflow = load_workflow(name, project_path)
        workflows.append({
            "name": name,
            "display_name": workflow.name,
            "description": workflow.description,
            "initial_state": workflow.initial_state,
            "phases": workflow.phases,
            "metadata": workflow.metadata.to_dict(),
            "resource_uri": f"workflow://{name}",
        })
    return workflows
