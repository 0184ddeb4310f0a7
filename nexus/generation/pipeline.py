"""Generation pipeline: streamed report generation with a bounded retry policy.

Explicit state machine per run:

    IDLE -> ATTEMPTING(n) -> STREAMING -> SUCCEEDED
                                       -> RETRYING -> ATTEMPTING(n + 1)
                                       -> FAILED
    (any non-terminal state) -> CANCELLED

Invariants:
- At most ``max_attempts`` (never more than MAX_ATTEMPTS) ATTEMPTING entries per run.
- Exactly one terminal event per run: SuccessEvent, FailedEvent or CancelledEvent.
- No ChunkEvent after the terminal event.
- Partial text from a failed attempt is discarded, never prepended to a later one.
"""

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import AsyncIterator, Union

from nexus.config import get_config
from nexus.errors import GenerationCancelled, NexusError, TransientGenerationError, ValidationError
from nexus.generation.request import GenerationRequest
from nexus.generation.transport import GenerationTransport, classify_error

logger = logging.getLogger(__name__)

MAX_ATTEMPTS = 3
DEFAULT_BACKOFF_SECONDS = 2.0


class PipelineState(str, Enum):
    IDLE = "idle"
    ATTEMPTING = "attempting"
    STREAMING = "streaming"
    RETRYING = "retrying"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELLED = "cancelled"


TERMINAL_STATES = {PipelineState.SUCCEEDED, PipelineState.FAILED, PipelineState.CANCELLED}


class AttemptStatus(str, Enum):
    PENDING = "pending"
    STREAMING = "streaming"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


@dataclass
class GenerationAttempt:
    attempt_number: int
    status: AttemptStatus = AttemptStatus.PENDING
    accumulated_text: str = ""
    error: NexusError | None = None


# --- Events emitted to the caller ---

@dataclass(frozen=True)
class ChunkEvent:
    attempt: int
    text: str


@dataclass(frozen=True)
class RetryingEvent:
    attempt: int  # The attempt about to start.
    max_attempts: int
    reason: str

    @property
    def message(self) -> str:
        return f"Generation failed. Retrying... ({self.attempt}/{self.max_attempts})"


@dataclass(frozen=True)
class SuccessEvent:
    text: str
    attempts: int


@dataclass(frozen=True)
class FailedEvent:
    error: NexusError
    attempts: int

    @property
    def retryable(self) -> bool:
        return isinstance(self.error, TransientGenerationError)

    @property
    def message(self) -> str:
        if isinstance(self.error, ValidationError):
            return str(self.error)
        return f"Report generation failed after {self.attempts} attempts: {self.error}"


@dataclass(frozen=True)
class CancelledEvent:
    attempt: int


GenerationEvent = Union[ChunkEvent, RetryingEvent, SuccessEvent, FailedEvent, CancelledEvent]
TERMINAL_EVENTS = (SuccessEvent, FailedEvent, CancelledEvent)

_END = object()
_CANCELLED = object()


async def _anext(iterator):
    try:
        return await iterator.__anext__()
    except StopAsyncIteration:
        return _END


class GenerationRun:
    """One generate() invocation. Consume ``events()`` once; ``cancel()`` at any time."""

    def __init__(self, transport: GenerationTransport, request: GenerationRequest,
                 max_attempts: int, backoff_seconds: float):
        self._transport = transport
        self._request = request
        self.max_attempts = max_attempts
        self.backoff_seconds = backoff_seconds
        self._cancel_requested = asyncio.Event()
        self._consumed = False

        self.state = PipelineState.IDLE
        self.states: list[PipelineState] = [PipelineState.IDLE]
        self.attempt: GenerationAttempt | None = None
        self.terminal: GenerationEvent | None = None

    @property
    def request(self) -> GenerationRequest:
        return self._request

    @property
    def attempts(self) -> int:
        """Number of ATTEMPTING transitions so far."""
        return self.states.count(PipelineState.ATTEMPTING)

    @property
    def done(self) -> bool:
        return self.state in TERMINAL_STATES

    @property
    def cancel_requested(self) -> bool:
        return self._cancel_requested.is_set()

    def cancel(self) -> None:
        """Stop chunk emission and any pending retry. Not a failure."""
        if not self.done:
            self._cancel_requested.set()

    def _transition(self, new_state: PipelineState) -> None:
        self.state = new_state
        self.states.append(new_state)

    def _finish(self, event: GenerationEvent, new_state: PipelineState) -> GenerationEvent:
        self._transition(new_state)
        self.terminal = event
        self.attempt = None
        return event

    def _cancelled(self, attempt: int) -> CancelledEvent:
        logger.info(f"Generation cancelled during attempt {attempt}/{self.max_attempts}")
        return self._finish(CancelledEvent(attempt=attempt), PipelineState.CANCELLED)

    async def _next_chunk(self, iterator):
        """Await the next chunk, or return early if cancel() is called first."""
        if self.cancel_requested:
            return _CANCELLED

        next_task = asyncio.ensure_future(_anext(iterator))
        cancel_task = asyncio.ensure_future(self._cancel_requested.wait())
        try:
            await asyncio.wait({next_task, cancel_task}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for task in (next_task, cancel_task):
                if not task.done():
                    task.cancel()
            await asyncio.gather(next_task, cancel_task, return_exceptions=True)

        if self.cancel_requested:
            return _CANCELLED
        return next_task.result()

    async def _wait_backoff(self) -> bool:
        """Sleep the fixed backoff. Returns True if cancelled meanwhile."""
        if self.backoff_seconds <= 0:
            return self.cancel_requested
        try:
            await asyncio.wait_for(self._cancel_requested.wait(), timeout=self.backoff_seconds)
        except asyncio.TimeoutError:
            return False
        return True

    async def _close(self, iterator) -> None:
        aclose = getattr(iterator, "aclose", None)
        if aclose is not None:
            await aclose()

    async def events(self) -> AsyncIterator[GenerationEvent]:
        """Yield chunk/retry events, ending in exactly one terminal event."""
        if self._consumed:
            raise RuntimeError("GenerationRun.events() can only be consumed once.")
        self._consumed = True

        try:
            for n in range(1, self.max_attempts + 1):
                if self.cancel_requested:
                    yield self._cancelled(n)
                    return

                attempt = self.attempt = GenerationAttempt(attempt_number=n)
                self._transition(PipelineState.ATTEMPTING)
                logger.debug(f"Generation attempt {n}/{self.max_attempts}")

                error: NexusError | None = None
                cancelled = False
                iterator = None
                try:
                    iterator = self._transport.stream(self._request).__aiter__()
                    while True:
                        chunk = await self._next_chunk(iterator)
                        if chunk is _CANCELLED:
                            cancelled = True
                            break
                        if chunk is _END:
                            break

                        if attempt.status is AttemptStatus.PENDING:
                            attempt.status = AttemptStatus.STREAMING
                            self._transition(PipelineState.STREAMING)
                        attempt.accumulated_text += chunk
                        yield ChunkEvent(attempt=n, text=chunk)
                except NexusError as exc:
                    error = exc
                except Exception as exc:
                    error = classify_error(exc)
                finally:
                    if iterator is not None:
                        await self._close(iterator)

                if cancelled:
                    yield self._cancelled(n)
                    return

                if error is None and not attempt.accumulated_text:
                    error = TransientGenerationError("Generation service returned no content.")

                if error is None:
                    attempt.status = AttemptStatus.SUCCEEDED
                    logger.info(f"Generation succeeded on attempt {n}/{self.max_attempts}")
                    yield self._finish(
                        SuccessEvent(text=attempt.accumulated_text, attempts=n),
                        PipelineState.SUCCEEDED,
                    )
                    return

                attempt.status = AttemptStatus.FAILED
                attempt.error = error

                if not isinstance(error, TransientGenerationError):
                    logger.error(f"Generation request rejected: {error}")
                    yield self._finish(FailedEvent(error=error, attempts=n), PipelineState.FAILED)
                    return

                error.attempt = n
                if n >= self.max_attempts:
                    logger.error(f"Generation failed after {n} attempts: {error}")
                    yield self._finish(FailedEvent(error=error, attempts=n), PipelineState.FAILED)
                    return

                # Partial text of this attempt is dropped with the attempt record
                self._transition(PipelineState.RETRYING)
                logger.warning(
                    f"Transient generation error: {error}. "
                    f"Retrying in {self.backoff_seconds:g}s (attempt {n + 1}/{self.max_attempts})..."
                )
                yield RetryingEvent(attempt=n + 1, max_attempts=self.max_attempts, reason=str(error))

                if await self._wait_backoff():
                    yield self._cancelled(n + 1)
                    return
        except asyncio.CancelledError:
            if not self.done:
                self._transition(PipelineState.CANCELLED)
                self.attempt = None
                logger.info("Generation task cancelled")
            raise

    async def result(self) -> str:
        """Drain the run and return the final text, or raise the terminal error."""
        async for _ in self.events():
            pass

        if isinstance(self.terminal, SuccessEvent):
            return self.terminal.text
        if isinstance(self.terminal, FailedEvent):
            raise self.terminal.error
        raise GenerationCancelled("Generation was cancelled.")


class GenerationPipeline:
    """Factory for generation runs sharing one transport and retry policy."""

    def __init__(self, transport: GenerationTransport, max_attempts: int | None = None,
                 backoff_seconds: float | None = None, config: dict | None = None):
        gen = (config or get_config()).get("generation", {})
        if max_attempts is None:
            max_attempts = gen.get("max_attempts", MAX_ATTEMPTS)
        if backoff_seconds is None:
            backoff_seconds = gen.get("backoff_seconds", DEFAULT_BACKOFF_SECONDS)
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1.")

        self.transport = transport
        self.max_attempts = min(int(max_attempts), MAX_ATTEMPTS)
        self.backoff_seconds = float(backoff_seconds)

    def start(self, request: GenerationRequest) -> GenerationRun:
        return GenerationRun(self.transport, request, self.max_attempts, self.backoff_seconds)

    def generate(self, request: GenerationRequest) -> AsyncIterator[GenerationEvent]:
        """Start a run and return its event stream."""
        return self.start(request).events()
