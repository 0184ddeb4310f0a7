"""Access resolver: decides which steps are reachable for a session.

Everything here is a pure function of (catalog, tier, completed set). Nothing is
cached between calls, which is what lets a persisted session resume exactly
where it stopped.
"""

from enum import Enum

from nexus.catalog import Step, StepCatalog, Tier


class StepStatus(str, Enum):
    LOCKED = "locked"
    UNLOCKED = "unlocked"
    CURRENT = "current"
    COMPLETED = "completed"


def tier_allows(step: Step, tier: Tier) -> bool:
    """Tier gate: higher-rank tiers see everything lower ranks see."""
    return step.required_tier.rank <= tier.rank


def missing_prerequisites(catalog: StepCatalog, state, step_id: int) -> list[int]:
    """Return the direct prerequisite ids of step_id that are not completed, sorted."""
    return sorted(catalog.step(step_id).prerequisites - state.completed)


def is_accessible(catalog: StepCatalog, state, step_id: int) -> bool:
    """Return True if step_id passes both the tier gate and the prerequisite gate.

    Raises UnknownStepError if the step is not in the catalog.
    """
    step = catalog.step(step_id)
    if not tier_allows(step, state.tier):
        return False
    return not missing_prerequisites(catalog, state, step_id)


def available_steps(catalog: StepCatalog, state) -> frozenset[int]:
    """Apply is_accessible to every step in the catalog."""
    return frozenset(step.id for step in catalog if is_accessible(catalog, state, step.id))


def steps_for_tier(catalog: StepCatalog, tier: Tier) -> list[Step]:
    """Every step the tier gate admits, in id order, ignoring prerequisites."""
    return [step for step in catalog if tier_allows(step, tier)]


def step_status(catalog: StepCatalog, state, step_id: int) -> StepStatus:
    """Derive a step's display status.

    Only completion and the current pointer are stored facts; locked and
    unlocked are recomputed on every call.
    """
    catalog.step(step_id)
    if step_id in state.completed:
        return StepStatus.COMPLETED
    if step_id == state.current:
        return StepStatus.CURRENT
    if is_accessible(catalog, state, step_id):
        return StepStatus.UNLOCKED
    return StepStatus.LOCKED


def remaining_required(catalog: StepCatalog, state) -> list[int]:
    """Required steps the tier admits that are not yet completed."""
    return [
        step.id for step in steps_for_tier(catalog, state.tier)
        if step.required and step.id not in state.completed
    ]
