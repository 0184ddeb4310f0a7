"""Step catalog: immutable description of every workflow step and tier.

Built once from config at process start and passed explicitly to everything that
needs step or tier lookups.
"""

from dataclasses import dataclass, field
from functools import lru_cache
from types import MappingProxyType
from typing import Iterator, Mapping

from nexus.config import get_config
from nexus.errors import CatalogError, UnknownStepError, UnknownTierError


@dataclass(frozen=True)
class Tier:
    id: str
    rank: int
    scoring_multiplier: float
    name: str = ""


@dataclass(frozen=True)
class StepWeight:
    opportunity: float = 0
    module: float = 0
    complexity: float = 0


@dataclass(frozen=True)
class Step:
    id: int
    title: str
    required_tier: Tier
    prerequisites: frozenset[int] = frozenset()
    weight: StepWeight = field(default_factory=StepWeight)
    required: bool = True


class StepCatalog:
    """Read-only lookup table of steps and tiers."""

    def __init__(self, steps: list[Step], tiers: list[Tier]):
        issues = _check_invariants(steps, tiers)
        if issues:
            raise CatalogError(issues)

        self._steps: Mapping[int, Step] = MappingProxyType({s.id: s for s in sorted(steps, key=lambda s: s.id)})
        self._tiers: Mapping[str, Tier] = MappingProxyType({t.id: t for t in sorted(tiers, key=lambda t: t.rank)})

    @property
    def steps(self) -> Mapping[int, Step]:
        return self._steps

    @property
    def tiers(self) -> Mapping[str, Tier]:
        return self._tiers

    @property
    def ids(self) -> frozenset[int]:
        return frozenset(self._steps)

    @property
    def lowest_tier(self) -> Tier:
        return next(iter(self._tiers.values()))

    @property
    def entry_steps(self) -> frozenset[int]:
        """Steps reachable from a fresh session at the lowest tier."""
        lowest = self.lowest_tier.rank
        return frozenset(
            s.id for s in self._steps.values()
            if not s.prerequisites and s.required_tier.rank <= lowest
        )

    @property
    def required_ids(self) -> frozenset[int]:
        return frozenset(s.id for s in self._steps.values() if s.required)

    def step(self, step_id: int) -> Step:
        try:
            return self._steps[step_id]
        except (KeyError, TypeError):
            raise UnknownStepError(step_id) from None

    def tier(self, tier_id: str) -> Tier:
        try:
            return self._tiers[tier_id]
        except (KeyError, TypeError):
            raise UnknownTierError(tier_id) from None

    def __contains__(self, step_id) -> bool:
        return step_id in self._steps

    def __iter__(self) -> Iterator[Step]:
        return iter(self._steps.values())

    def __len__(self) -> int:
        return len(self._steps)


def _check_invariants(steps: list[Step], tiers: list[Tier]) -> list[str]:
    """Return every load-time invariant violation. Empty list = valid catalog."""
    issues = []

    if not tiers:
        issues.append("No tiers defined.")
    tier_ids = [t.id for t in tiers]
    if len(set(tier_ids)) != len(tier_ids):
        issues.append("Duplicate tier ids.")
    ranks = [t.rank for t in tiers]
    if len(set(ranks)) != len(ranks):
        issues.append("Duplicate tier ranks; tiers must be totally ordered.")
    for tier in tiers:
        if not tier.scoring_multiplier > 0:
            issues.append(f"Tier '{tier.id}' has non-positive scoring_multiplier.")

    if not steps:
        issues.append("No steps defined.")
        return issues

    step_ids = [s.id for s in steps]
    if len(set(step_ids)) != len(step_ids):
        issues.append("Duplicate step ids.")
    for step in steps:
        if step.id < 1:
            issues.append(f"Step id {step.id} must be a positive integer.")
        if step.required_tier.id not in tier_ids:
            issues.append(f"Step {step.id} requires undefined tier '{step.required_tier.id}'.")
        for prereq in sorted(step.prerequisites):
            if prereq not in step_ids:
                issues.append(f"Step {step.id} has prerequisite {prereq} which is not defined.")

    # --- No prerequisite cycles (DFS cycle detection) ---
    adj = {s.id: [p for p in s.prerequisites if p in step_ids] for s in steps}
    visited = set()
    in_stack = set()

    def _has_cycle(node):
        visited.add(node)
        in_stack.add(node)
        for neighbor in sorted(adj.get(node, [])):
            if neighbor in in_stack:
                issues.append(f"Circular prerequisite: {node} -> {neighbor}.")
                return True
            if neighbor not in visited:
                if _has_cycle(neighbor):
                    return True
        in_stack.discard(node)
        return False

    for node in sorted(adj):
        if node not in visited:
            _has_cycle(node)

    if tiers:
        lowest = min(ranks)
        if not any(not s.prerequisites and s.required_tier.rank <= lowest for s in steps):
            issues.append("No entry step: at least one step needs no prerequisites and the lowest tier.")

    return issues


def load_catalog(config: dict | None = None) -> StepCatalog:
    """Build a StepCatalog from the ``tiers`` and ``steps`` config sections.

    Raises CatalogError listing every problem found.
    """
    config = config if config is not None else get_config()

    tiers = [
        Tier(
            id=str(t["id"]),
            rank=int(t["rank"]),
            scoring_multiplier=float(t["scoring_multiplier"]),
            name=t.get("name", ""),
        )
        for t in config.get("tiers", [])
    ]
    tiers_by_id = {t.id: t for t in tiers}

    steps = []
    for raw in config.get("steps", []):
        tier_id = str(raw.get("required_tier", ""))
        # Undefined tiers are reported by the invariant check
        tier = tiers_by_id.get(tier_id) or Tier(id=tier_id, rank=0, scoring_multiplier=1.0)
        weight = raw.get("weight", {})
        steps.append(Step(
            id=int(raw["id"]),
            title=raw.get("title", ""),
            required_tier=tier,
            prerequisites=frozenset(int(p) for p in raw.get("prerequisites", [])),
            weight=StepWeight(
                opportunity=weight.get("opportunity", 0),
                module=weight.get("module", 0),
                complexity=weight.get("complexity", 0),
            ),
            required=bool(raw.get("required", True)),
        ))

    return StepCatalog(steps, tiers)


@lru_cache(maxsize=1)
def get_catalog() -> StepCatalog:
    """Return the process-wide catalog, resolved once from config."""
    return load_catalog()
