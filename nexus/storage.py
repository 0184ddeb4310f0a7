"""Progress persistence: load/save boundary between WorkflowState and a key-value store.

The store is an opaque get/set collaborator: last write wins, no locking, no
transactions.
"""

import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Protocol

from nexus.access import is_accessible
from nexus.catalog import StepCatalog, Tier
from nexus.config import get_config
from nexus.state import PersistedProgress, WorkflowState

logger = logging.getLogger(__name__)


class ProgressStore(Protocol):
    def get(self, key: str) -> str | None: ...

    def set(self, key: str, value: str) -> None: ...


class MemoryStore:
    """Dict-backed store, one per process."""

    def __init__(self, initial: dict[str, str] | None = None):
        self._data = dict(initial or {})

    def get(self, key: str) -> str | None:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._data[key] = value


class JsonFileStore:
    """A single JSON object on disk mapping keys to document strings."""

    def __init__(self, path: str | Path | None = None):
        if path is None:
            path = Path(__file__).resolve().parent.parent / get_config()["persistence"]["path"]
        self.path = Path(path)

    def _read_all(self) -> dict[str, str]:
        if not self.path.exists():
            return {}
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except json.JSONDecodeError:
            logger.warning(f"Progress file {self.path} is not valid JSON; treating as empty.")
            return {}
        return data if isinstance(data, dict) else {}

    def get(self, key: str) -> str | None:
        return self._read_all().get(key)

    def set(self, key: str, value: str) -> None:
        data = self._read_all()
        data[key] = value
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(json.dumps(data, indent=2), encoding="utf-8")


def progress_key(user_id: str) -> str:
    """Per-user storage key."""
    prefix = get_config().get("persistence", {}).get("key_prefix", "nexusWorkflowProgress")
    return f"{prefix}:{user_id}"


def to_document(state: WorkflowState, now: datetime | None = None) -> PersistedProgress:
    now = now or datetime.now(timezone.utc)
    return {
        "completedSteps": sorted(state.completed),
        "currentStep": state.current,
        "timestamp": now.isoformat(),
    }


def save_progress(store: ProgressStore, key: str, state: WorkflowState, now: datetime | None = None) -> PersistedProgress:
    """Write the persisted progress document for state. Returns what was written."""
    document = to_document(state, now=now)
    store.set(key, json.dumps(document))
    return document


def load_progress(store: ProgressStore, key: str, catalog: StepCatalog, tier: Tier) -> WorkflowState:
    """Rebuild a WorkflowState from the stored document.

    Missing or unreadable documents start a fresh session. Step ids that are no
    longer in the catalog are dropped.
    """
    raw = store.get(key)
    if raw is None:
        return WorkflowState(catalog, tier)

    try:
        document = json.loads(raw)
        completed_raw = document.get("completedSteps") or []
        if not isinstance(completed_raw, list):
            raise TypeError(f"completedSteps must be a list, got {type(completed_raw).__name__}")
        current_raw = document.get("currentStep")
        completed_ids = [int(s) for s in completed_raw]
        current = int(current_raw) if current_raw is not None else None
    except (json.JSONDecodeError, AttributeError, TypeError, ValueError) as exc:
        logger.warning(f"Failed to load saved progress for '{key}': {exc}. Starting fresh.")
        return WorkflowState(catalog, tier)

    unknown = sorted(s for s in completed_ids if s not in catalog)
    if unknown:
        logger.warning(f"Dropping unknown step ids from saved progress for '{key}': {unknown}")

    completed = [s for s in completed_ids if s in catalog]
    state = WorkflowState(catalog, tier, completed=completed)

    if current is None or current not in catalog:
        return state
    # Completed steps may have been completed out of order; revisiting one is allowed
    if current in state.completed or is_accessible(catalog, state, current):
        return WorkflowState(catalog, tier, completed=completed, current=current)

    logger.warning(f"Saved current step {current} is no longer accessible; using default.")
    return state
