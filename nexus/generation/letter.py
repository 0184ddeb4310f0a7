"""Introduction letter: a short companion to the report, generated in one non-streamed call."""

from nexus.config import get_config
from nexus.generation.request import GenerationRequest
from nexus.generation.transport import build_chat_model, build_user_prompt, classify_error, message_text
from nexus.utils.parsing import ainvoke_with_retry

SYSTEM_PROMPT = """\
You write brief, formal introduction letters that accompany regional \
development intelligence reports. Address the letter from the user below to a \
prospective partner, summarizing why the report is worth reading. Respond with \
the letter text only.
"""


def letter_enabled(request: GenerationRequest) -> bool:
    return bool(request.options.include_letter and get_config().get("letter", {}).get("enabled", True))


async def generate_letter(request: GenerationRequest, llm=None) -> str:
    """Return the letter text for request.

    Transient provider errors are retried with backoff; anything left is mapped
    onto the generation error taxonomy.
    """
    if llm is None:
        max_tokens = get_config().get("letter", {}).get("max_tokens")
        llm = build_chat_model(max_tokens=max_tokens)

    messages = [
        {"role": "system", "content": SYSTEM_PROMPT},
        {"role": "user", "content": build_user_prompt(request)},
    ]
    try:
        response = await ainvoke_with_retry(llm, messages)
    except Exception as exc:
        raise classify_error(exc) from exc

    return message_text(response).strip()
