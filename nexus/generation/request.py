"""Generation request: the immutable value handed to the pipeline for one generate() call."""

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Mapping

from nexus.catalog import StepCatalog, Tier
from nexus.errors import ValidationError
from nexus.scoring import AggregateScores, ProgressPercentages, aggregate, progress_percentages
from nexus.utils.validator import invalid_choice, missing_fields

REQUIRED_PROFILE_FIELDS = ("name", "organization", "country", "goals")

VALID_LENGTHS = ("concise", "standard", "comprehensive")
VALID_FORMATS = ("snapshot", "brief", "standard", "comprehensive")
VALID_STYLES = ("exploratory", "strategic", "comprehensive")


@dataclass(frozen=True)
class GenerationOptions:
    length: str = "standard"
    format: str = "standard"
    style: str = "exploratory"
    include_letter: bool = False


@dataclass(frozen=True)
class GenerationRequest:
    profile: Mapping[str, Any]
    tier: Tier
    completed_count: int
    total_count: int
    scores: AggregateScores
    options: GenerationOptions = field(default_factory=GenerationOptions)
    completed_titles: tuple[str, ...] = ()
    progress: ProgressPercentages | None = None


def validate_options(options: GenerationOptions) -> list[str]:
    issues = [
        invalid_choice(options.length, VALID_LENGTHS, "options.length"),
        invalid_choice(options.format, VALID_FORMATS, "options.format"),
        invalid_choice(options.style, VALID_STYLES, "options.style"),
    ]
    return [i for i in issues if i]


def build_request(
    catalog: StepCatalog,
    state,
    profile: Mapping[str, Any] | None,
    options: GenerationOptions | None = None,
) -> GenerationRequest:
    """Build a fresh GenerationRequest from the session state and profile.

    Raises ValidationError enumerating every missing or invalid field. Nothing
    is sent anywhere until this passes.
    """
    profile = dict(profile or {})
    options = options or GenerationOptions()

    missing = missing_fields(profile, REQUIRED_PROFILE_FIELDS, prefix="profile.")
    missing += validate_options(options)
    if not state.completed:
        missing.append("completed_steps")
    if missing:
        raise ValidationError(missing)

    tier = state.tier
    completed = sorted(state.completed)
    return GenerationRequest(
        profile=MappingProxyType(profile),
        tier=tier,
        completed_count=len(completed),
        total_count=len(catalog),
        scores=aggregate(catalog, completed, tier),
        options=options,
        completed_titles=tuple(catalog.step(s).title for s in completed),
        progress=progress_percentages(catalog, completed, tier),
    )
