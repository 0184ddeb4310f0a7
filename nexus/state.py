"""Workflow state: single source of truth for one user session.

All mutation goes through complete / select_current / change_tier / reset so
the invariants below hold no matter who calls in:

- ``completed`` only grows until an explicit reset.
- ``current`` always points at a catalog step.
"""

import logging
from types import MappingProxyType
from typing import Any, Iterable, Mapping, TypedDict

from nexus.access import is_accessible, missing_prerequisites, tier_allows
from nexus.catalog import StepCatalog, Tier
from nexus.errors import InaccessibleStepError

logger = logging.getLogger(__name__)


class PersistedProgress(TypedDict):
    completedSteps: list[int]  # Sorted, unique step ids.
    currentStep: int  # Step the user last had open.
    timestamp: str  # ISO 8601, UTC.


class WorkflowState:
    """Mutable session state: tier, completed set, current pointer, per-step payloads."""

    def __init__(
        self,
        catalog: StepCatalog,
        tier: Tier,
        completed: Iterable[int] = (),
        current: int | None = None,
        payload: Mapping[int, Any] | None = None,
    ):
        self._catalog = catalog
        self._tier = tier
        self._completed: set[int] = set()
        self._payload: dict[int, Any] = {}

        for step_id in completed:
            catalog.step(step_id)
            self._completed.add(step_id)
        for step_id, data in (payload or {}).items():
            catalog.step(step_id)
            self._payload[step_id] = data

        if current is None:
            current = default_current(catalog)
        catalog.step(current)
        self._current = current

    @property
    def catalog(self) -> StepCatalog:
        return self._catalog

    @property
    def tier(self) -> Tier:
        return self._tier

    @property
    def completed(self) -> frozenset[int]:
        return frozenset(self._completed)

    @property
    def current(self) -> int:
        return self._current

    @property
    def payload(self) -> Mapping[int, Any]:
        return MappingProxyType(self._payload)

    def select_current(self, step_id: int) -> None:
        """Point the session at step_id.

        Raises InaccessibleStepError unless the step passes both gates.
        """
        if not is_accessible(self._catalog, self, step_id):
            step = self._catalog.step(step_id)
            raise InaccessibleStepError(
                step_id,
                self._tier.id,
                missing_prerequisites(self._catalog, self, step_id),
                tier_blocked=not tier_allows(step, self._tier),
            )
        self._current = step_id

    def complete(self, step_id: int, data: Any = None) -> None:
        """Mark step_id completed and store its payload.

        Idempotent: completing an already-completed step only overwrites its
        payload. Always permitted, even out of order.
        """
        self._catalog.step(step_id)
        if step_id not in self._completed:
            open_prereqs = missing_prerequisites(self._catalog, self, step_id)
            if open_prereqs:
                logger.debug(f"Step {step_id} completed before prerequisites {open_prereqs}")
            self._completed.add(step_id)
        self._payload[step_id] = data

    def change_tier(self, tier: Tier) -> None:
        """Apply a tier change from the profile collaborator. Completion is untouched."""
        self._tier = tier

    def reset(self) -> None:
        """Explicit session reset, the only way ``completed`` shrinks."""
        self._completed.clear()
        self._payload.clear()
        self._current = default_current(self._catalog)

    def __repr__(self) -> str:
        return (
            f"WorkflowState(tier={self._tier.id!r}, completed={sorted(self._completed)}, "
            f"current={self._current})"
        )


def default_current(catalog: StepCatalog) -> int:
    """The step a fresh session starts on: the lowest-id entry step."""
    return min(catalog.entry_steps)
