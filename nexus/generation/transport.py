"""Generation transport: one logical "request in, stream of UTF-8 text out" call.

The pipeline only depends on the GenerationTransport protocol and on errors
being classified as ValidationError (never retried) or TransientGenerationError
(retried up to the cap). Which model answers is a config detail.
"""

import logging
from typing import AsyncIterator, Protocol

from nexus.config import get_config
from nexus.errors import NexusError, TransientGenerationError, ValidationError
from nexus.generation.request import GenerationRequest
from nexus.utils.parsing import VALIDATION_STATUS_CODES, is_transient, status_code_of

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = """\
You are a regional development intelligence analyst. Write a professional \
intelligence report for the user described below, grounded in the workflow \
steps they have completed and the scores derived from them. Use clear section \
headings and actionable recommendations.
"""


class GenerationTransport(Protocol):
    def stream(self, request: GenerationRequest) -> AsyncIterator[str]: ...


def classify_error(exc: BaseException) -> NexusError:
    """Map a provider/transport exception onto the generation error taxonomy."""
    if isinstance(exc, (ValidationError, TransientGenerationError)):
        return exc
    code = status_code_of(exc)
    if code in VALIDATION_STATUS_CODES:
        return ValidationError(["request"], message=f"Generation service rejected the request ({code}): {exc}")
    if not is_transient(exc):
        # Unclassified service failures still get the bounded retry
        logger.debug(f"Treating unclassified {type(exc).__name__} as transient")
    return TransientGenerationError(f"{type(exc).__name__}: {exc}", cause=exc)


def build_chat_model(config: dict | None = None, max_tokens: int | None = None):
    """Instantiate the configured LangChain chat model for report generation."""
    gen = (config or get_config())["generation"]
    provider = gen.get("provider", "anthropic")
    model = gen["model"]
    temperature = gen.get("temperature", 0.7)

    if provider == "anthropic":
        from langchain_anthropic import ChatAnthropic

        kwargs = {"max_tokens": max_tokens} if max_tokens else {}
        return ChatAnthropic(model=model, temperature=temperature, **kwargs)
    if provider == "google":
        from langchain_google_genai import ChatGoogleGenerativeAI

        kwargs = {"max_output_tokens": max_tokens} if max_tokens else {}
        return ChatGoogleGenerativeAI(model=model, temperature=temperature, **kwargs)
    raise ValueError(f"Unknown generation provider '{provider}'. Must be one of: anthropic, google")


def build_user_prompt(request: GenerationRequest) -> str:
    """Flatten the request into the user message."""
    profile = request.profile
    options = request.options
    scores = request.scores
    parts = [
        "## User Profile",
        *(f"- {key}: {', '.join(value) if isinstance(value, (list, tuple)) else value}"
          for key, value in profile.items()),
        "",
        "## Workflow",
        f"- Tier: {request.tier.id}",
        f"- Completed steps: {request.completed_count}/{request.total_count}",
        *(f"  - {title}" for title in request.completed_titles),
        "",
        "## Scores",
        f"- Total: {scores.total}",
        f"- Opportunities: {scores.opportunities}",
        f"- Modules: {scores.modules}",
        f"- Complexity: {scores.complexity}",
    ]
    if request.progress:
        parts.append(
            f"- Coverage: opportunity {request.progress.opportunity}%, "
            f"module {request.progress.module}%, complexity {request.progress.complexity}%"
        )
    parts += [
        "",
        "## Report Options",
        f"- Length: {options.length}",
        f"- Format: {options.format}",
        f"- Engagement style: {options.style}",
    ]
    return "\n".join(parts)


def build_messages(request: GenerationRequest) -> list[dict]:
    return [
        {"role": "system", "content": SYSTEM_PROMPT},
        {"role": "user", "content": build_user_prompt(request)},
    ]


def message_text(chunk) -> str:
    """Extract plain text from a message or streamed message chunk."""
    content = getattr(chunk, "content", chunk)
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        return "".join(
            part.get("text", "") if isinstance(part, dict) else str(part)
            for part in content
        )
    return str(content or "")


class ChatModelTransport:
    """Streams report text from a LangChain chat model."""

    def __init__(self, llm=None, config: dict | None = None):
        self._llm = llm
        self._config = config

    def _model_for(self, request: GenerationRequest):
        if self._llm is not None:
            return self._llm
        gen = (self._config or get_config())["generation"]
        max_tokens = gen.get("max_tokens", {}).get(request.options.length)
        return build_chat_model(self._config, max_tokens=max_tokens)

    async def stream(self, request: GenerationRequest) -> AsyncIterator[str]:
        llm = self._model_for(request)
        try:
            async for chunk in llm.astream(build_messages(request)):
                text = message_text(chunk)
                if text:
                    yield text
        except NexusError:
            raise
        except Exception as exc:
            raise classify_error(exc) from exc
