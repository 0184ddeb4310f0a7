"""Workflow session: the entry point a UI layer drives.

Owns one WorkflowState, persists it after every completion, and keeps at most
one generation run in flight: starting a new run cancels the previous one.
"""

import logging
from dataclasses import dataclass
from typing import Any, Mapping

from nexus.access import available_steps, remaining_required, step_status, StepStatus
from nexus.catalog import StepCatalog, Tier, get_catalog
from nexus.generation.letter import generate_letter, letter_enabled
from nexus.generation.pipeline import GenerationPipeline, GenerationRun
from nexus.generation.request import GenerationOptions, GenerationRequest, build_request
from nexus.generation.transport import ChatModelTransport
from nexus.scoring import AggregateScores, ProgressPercentages, aggregate, progress_percentages
from nexus.state import WorkflowState
from nexus.storage import JsonFileStore, ProgressStore, load_progress, progress_key, save_progress

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ReportArtifact:
    report: str
    letter: str = ""


class WorkflowSession:
    def __init__(self, catalog: StepCatalog, state: WorkflowState, store: ProgressStore, key: str,
                 pipeline: GenerationPipeline | None = None):
        self._catalog = catalog
        self._state = state
        self._store = store
        self._key = key
        self._pipeline = pipeline
        self._active_run: GenerationRun | None = None

    @classmethod
    def open(cls, user_id: str, tier: Tier | str, store: ProgressStore | None = None,
             catalog: StepCatalog | None = None, pipeline: GenerationPipeline | None = None) -> "WorkflowSession":
        """Start a session, restoring any saved progress for user_id."""
        catalog = catalog or get_catalog()
        if isinstance(tier, str):
            tier = catalog.tier(tier)
        store = store if store is not None else JsonFileStore()
        key = progress_key(user_id)
        state = load_progress(store, key, catalog, tier)
        logger.info(f"Opened session '{key}' at tier '{tier.id}' with {len(state.completed)} completed steps")
        return cls(catalog, state, store, key, pipeline=pipeline)

    @property
    def catalog(self) -> StepCatalog:
        return self._catalog

    @property
    def state(self) -> WorkflowState:
        return self._state

    @property
    def key(self) -> str:
        return self._key

    @property
    def pipeline(self) -> GenerationPipeline:
        if self._pipeline is None:
            self._pipeline = GenerationPipeline(ChatModelTransport())
        return self._pipeline

    @property
    def active_run(self) -> GenerationRun | None:
        if self._active_run is not None and self._active_run.done:
            return None
        return self._active_run

    # --- Workflow transitions ---

    def complete(self, step_id: int, data: Any = None) -> None:
        self._state.complete(step_id, data)
        save_progress(self._store, self._key, self._state)

    def select_current(self, step_id: int) -> None:
        self._state.select_current(step_id)

    def change_tier(self, tier: Tier | str) -> None:
        if isinstance(tier, str):
            tier = self._catalog.tier(tier)
        self._state.change_tier(tier)

    def reset(self) -> None:
        self.cancel_generation()
        self._state.reset()
        save_progress(self._store, self._key, self._state)

    # --- Derived views ---

    def available_steps(self) -> frozenset[int]:
        return available_steps(self._catalog, self._state)

    def step_status(self, step_id: int) -> StepStatus:
        return step_status(self._catalog, self._state, step_id)

    def remaining_required(self) -> list[int]:
        return remaining_required(self._catalog, self._state)

    def scores(self) -> AggregateScores:
        return aggregate(self._catalog, self._state.completed, self._state.tier)

    def progress(self) -> ProgressPercentages:
        return progress_percentages(self._catalog, self._state.completed, self._state.tier)

    # --- Generation ---

    def build_request(self, profile: Mapping[str, Any], options: GenerationOptions | None = None) -> GenerationRequest:
        return build_request(self._catalog, self._state, profile, options)

    def cancel_generation(self) -> None:
        run = self.active_run
        if run is not None:
            logger.info("Cancelling in-flight generation")
            run.cancel()
        self._active_run = None

    def generate(self, profile: Mapping[str, Any], options: GenerationOptions | None = None) -> GenerationRun:
        """Validate, cancel any in-flight run, and start a new one.

        Raises ValidationError before touching the in-flight run if the request
        is incomplete.
        """
        request = self.build_request(profile, options)
        self.cancel_generation()
        self._active_run = self.pipeline.start(request)
        return self._active_run

    async def generate_report(self, profile: Mapping[str, Any], options: GenerationOptions | None = None) -> ReportArtifact:
        """Run generation to completion, plus the introduction letter when requested."""
        run = self.generate(profile, options)
        report = await run.result()
        letter = ""
        if letter_enabled(run.request):
            letter = await generate_letter(run.request)
        return ReportArtifact(report=report, letter=letter)
