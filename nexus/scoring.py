"""Score aggregation over completed steps.

Deterministic and side-effect free; safe to call on every request without
caching. Only the opportunity component is scaled by the tier multiplier.
"""

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable

from nexus.access import steps_for_tier
from nexus.catalog import StepCatalog, Tier


@dataclass(frozen=True)
class AggregateScores:
    total: int
    opportunities: int  # Multiplier-scaled and rounded independently of total.
    modules: float
    complexity: float
    raw_opportunities: float = 0


@dataclass(frozen=True)
class ProgressPercentages:
    opportunity: int
    module: int
    complexity: int


def _dec(value) -> Decimal:
    return value if isinstance(value, Decimal) else Decimal(repr(value))


def round_half_up(value: float | Decimal) -> int:
    """Round to the nearest integer, halves away from zero (not banker's rounding)."""
    return int(_dec(value).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def aggregate(catalog: StepCatalog, completed: Iterable[int], tier: Tier) -> AggregateScores:
    """Sum the weights of every completed step present in the catalog.

    total = round(sum(opportunity * multiplier + module + complexity)), and the
    displayed opportunities = round(sum(opportunity) * multiplier). The two are
    rounded separately, so opportunities + modules + complexity may differ from
    total by rounding.
    """
    multiplier = _dec(tier.scoring_multiplier)
    opportunities = 0
    modules = 0
    complexity = 0
    scaled_base = Decimal(0)
    total = Decimal(0)

    for step_id in sorted(set(completed)):
        if step_id not in catalog:
            continue
        weight = catalog.step(step_id).weight
        opportunities += weight.opportunity
        scaled_base += _dec(weight.opportunity)
        modules += weight.module
        complexity += weight.complexity
        total += _dec(weight.opportunity) * multiplier + _dec(weight.module) + _dec(weight.complexity)

    return AggregateScores(
        total=round_half_up(total),
        opportunities=round_half_up(scaled_base * multiplier),
        modules=modules,
        complexity=complexity,
        raw_opportunities=opportunities,
    )


def progress_percentages(catalog: StepCatalog, completed: Iterable[int], tier: Tier) -> ProgressPercentages:
    """Completed share of each weight dimension among the steps the tier admits."""
    done = set(completed)
    steps = steps_for_tier(catalog, tier)

    def _percent(dimension: str) -> int:
        possible = sum(_dec(getattr(s.weight, dimension)) for s in steps)
        if not possible:
            return 0
        achieved = sum(_dec(getattr(s.weight, dimension)) for s in steps if s.id in done)
        return round_half_up(achieved * 100 / possible)

    return ProgressPercentages(
        opportunity=_percent("opportunity"),
        module=_percent("module"),
        complexity=_percent("complexity"),
    )
