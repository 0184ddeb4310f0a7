"""Shared parsing and LLM utilities for model responses."""

import logging
import re

import httpx
from tenacity import retry, retry_if_exception, stop_after_attempt, wait_exponential

logger = logging.getLogger(__name__)

_FENCE_RE = re.compile(r"```(?:json)?\s*\n?(.*?)\n?\s*```", re.DOTALL)

TRANSIENT_STATUS_CODES = {408, 429, 500, 502, 503, 504}
VALIDATION_STATUS_CODES = {400, 422}


def strip_fences(text: str) -> str:
    """Strip markdown code fences from LLM output if present."""
    match = _FENCE_RE.search(text)
    return match.group(1).strip() if match else text.strip()


def status_code_of(exc: BaseException) -> int | None:
    """Best-effort HTTP status code for provider SDK and httpx errors."""
    if isinstance(exc, httpx.HTTPStatusError):
        return exc.response.status_code
    code = getattr(exc, "status_code", None)
    return code if isinstance(code, int) else None


def is_transient(exc: BaseException) -> bool:
    """Return True if the exception is a transient HTTP/network error worth retrying."""
    if isinstance(exc, (httpx.TimeoutException, httpx.ConnectError, httpx.RemoteProtocolError)):
        return True
    if isinstance(exc, (ConnectionError, TimeoutError)):
        return True
    return status_code_of(exc) in TRANSIENT_STATUS_CODES


async def ainvoke_with_retry(llm, messages, max_retries: int = 3):
    """Call ``await llm.ainvoke(messages)`` with exponential backoff on transient errors.

    Non-transient errors (auth failures, bad requests) are raised immediately.
    """
    from nexus.config import get_config

    config = get_config()
    retries = config.get("llm_max_retries", max_retries)
    wait_min = config.get("llm_retry_wait_min", 2)
    wait_max = config.get("llm_retry_wait_max", 16)

    @retry(
        stop=stop_after_attempt(retries + 1),  # +1 because first attempt counts
        wait=wait_exponential(multiplier=1, min=wait_min, max=wait_max),
        retry=retry_if_exception(is_transient),
        reraise=True,
        before_sleep=lambda state: logger.warning(
            f"Transient error: {state.outcome.exception()!r}. "
            f"Retrying in {state.next_action.sleep:.0f}s "
            f"(attempt {state.attempt_number}/{retries})..."
        ),
    )
    async def _invoke():
        return await llm.ainvoke(messages)

    return await _invoke()
