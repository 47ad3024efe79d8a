"""
Persistent Conversation Store

Stores one ConversationState per conversation id plus an append-only log of
tool interactions. The store lives in a per-user directory (not inside the
project) with one sub-directory per conversation:

    <store_dir>/<conversation_id>/state.json
    <store_dir>/<conversation_id>/interactions.jsonl

Every file is guarded by its own FileLock. Whole tool operations on one
conversation are serialized with ``operation_lock``; different conversations
use different lock files and never wait on each other.
"""

import json
import logging
from contextlib import contextmanager
from dataclasses import asdict, dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Iterator, Optional

from filelock import FileLock


logger = logging.getLogger(__name__)

STATE_FILE = "state.json"
INTERACTIONS_FILE = "interactions.jsonl"
OPERATION_LOCK_FILE = ".operation.lock"


@dataclass
class ConversationState:
    conversation_id: str
    project_path: str
    git_branch: str
    current_phase: str
    workflow_name: str
    plan_file_path: str
    git_commit_config: Optional[dict[str, Any]] = None
    created_at: str = field(default_factory=lambda: datetime.now().isoformat())
    updated_at: str = field(default_factory=lambda: datetime.now().isoformat())

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ConversationState":
        known = {k: v for k, v in data.items() if k in cls.__dataclass_fields__}
        return cls(**known)


class ConversationStore:
    """File-backed store of conversation states and interaction logs."""

    def __init__(self, base_dir: Path):
        self.base_dir = Path(base_dir)

    def _conversation_dir(self, conversation_id: str) -> Path:
        return self.base_dir / conversation_id

    @contextmanager
    def operation_lock(self, conversation_id: str, timeout: float = 30) -> Iterator[None]:
        """Hold exclusive access to one conversation for the duration of a tool call."""
        conversation_dir = self._conversation_dir(conversation_id)
        conversation_dir.mkdir(parents=True, exist_ok=True)
        with FileLock(str(conversation_dir / OPERATION_LOCK_FILE), timeout=timeout):
            yield

    def get(self, conversation_id: str) -> Optional[ConversationState]:
        conversation_dir = self._conversation_dir(conversation_id)
        state_file = conversation_dir / STATE_FILE
        if not state_file.exists():
            return None

        with FileLock(str(conversation_dir / f"{STATE_FILE}.lock")):
            with open(state_file) as f:
                data = json.load(f)
        return ConversationState.from_dict(data)

    def upsert(self, state: ConversationState) -> ConversationState:
        conversation_dir = self._conversation_dir(state.conversation_id)
        conversation_dir.mkdir(parents=True, exist_ok=True)
        state.updated_at = datetime.now().isoformat()

        with FileLock(str(conversation_dir / f"{STATE_FILE}.lock")):
            with open(conversation_dir / STATE_FILE, "w") as f:
                json.dump(state.to_dict(), f, indent=2)

        logger.debug(
            "Saved conversation %s (phase=%s, workflow=%s)",
            state.conversation_id, state.current_phase, state.workflow_name
        )
        return state

    def delete(self, conversation_id: str) -> bool:
        conversation_dir = self._conversation_dir(conversation_id)
        state_file = conversation_dir / STATE_FILE
        if not state_file.exists():
            return False
        with FileLock(str(conversation_dir / f"{STATE_FILE}.lock")):
            state_file.unlink()
        return True

    def log_interaction(
        self,
        conversation_id: str,
        tool_name: str,
        input_params: Any,
        response_data: Any,
        current_phase: str,
    ) -> dict[str, Any]:
        entry = {
            "conversation_id": conversation_id,
            "tool_name": tool_name,
            "input_params": input_params,
            "response_data": response_data,
            "current_phase": current_phase,
            "timestamp": datetime.now().isoformat(),
            "is_reset": False,
        }

        conversation_dir = self._conversation_dir(conversation_id)
        conversation_dir.mkdir(parents=True, exist_ok=True)
        with FileLock(str(conversation_dir / f"{INTERACTIONS_FILE}.lock"), timeout=5):
            with open(conversation_dir / INTERACTIONS_FILE, "a") as f:
                f.write(json.dumps(entry, default=str) + "\n")
        return entry

    def _read_interactions(self, conversation_dir: Path) -> list[dict[str, Any]]:
        interactions_file = conversation_dir / INTERACTIONS_FILE
        if not interactions_file.exists():
            return []
        entries = []
        with open(interactions_file) as f:
            for line in f:
                line = line.strip()
                if line:
                    entries.append(json.loads(line))
        return entries

    def get_interactions(self, conversation_id: str, include_reset: bool = False) -> list[dict[str, Any]]:
        conversation_dir = self._conversation_dir(conversation_id)
        if not conversation_dir.exists():
            return []
        with FileLock(str(conversation_dir / f"{INTERACTIONS_FILE}.lock"), timeout=5):
            entries = self._read_interactions(conversation_dir)
        if include_reset:
            return entries
        return [e for e in entries if not e.get("is_reset")]

    def has_interactions(self, conversation_id: str) -> bool:
        return len(self.get_interactions(conversation_id)) > 0

    def _soft_delete_interactions(self, conversation_id: str, reason: Optional[str]) -> int:
        conversation_dir = self._conversation_dir(conversation_id)
        reset_at = datetime.now().isoformat()
        marked = 0
        if not conversation_dir.exists():
            return marked
        with FileLock(str(conversation_dir / f"{INTERACTIONS_FILE}.lock"), timeout=5):
            entries = self._read_interactions(conversation_dir)
            for entry in entries:
                if not entry.get("is_reset"):
                    entry["is_reset"] = True
                    entry["reset_at"] = reset_at
                    if reason:
                        entry["reset_reason"] = reason
                    marked += 1
            if entries:
                with open(conversation_dir / INTERACTIONS_FILE, "w") as f:
                    for entry in entries:
                        f.write(json.dumps(entry, default=str) + "\n")
        return marked

    def reset(self, conversation_id: str, reason: Optional[str] = None) -> list[str]:
        """Clear a conversation's state and interaction history.

        Interaction entries are kept on disk but marked as reset, so they stay
        available as an audit trail while no longer counting as history.

        Returns:
            The categories that were reset
        """
        reset_items = []

        marked = self._soft_delete_interactions(conversation_id, reason)
        reset_items.append("interaction_logs")

        self.delete(conversation_id)
        reset_items.append("conversation_state")

        logger.info(
            "Reset conversation %s (%d interaction entries marked)%s",
            conversation_id, marked, f": {reason}" if reason else ""
        )
        return reset_items

    def list_conversations(self) -> list[ConversationState]:
        if not self.base_dir.exists():
            return []
        states = []
        for conversation_dir in sorted(self.base_dir.iterdir()):
            if conversation_dir.is_dir() and (conversation_dir / STATE_FILE).exists():
                state = self.get(conversation_dir.name)
                if state:
                    states.append(state)
        return states
