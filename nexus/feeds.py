"""Supplementary feeds: independent read-only content categories fetched in parallel.

Each category is its own LangGraph branch fanned out from START. A branch that
fails records the failure and returns normally, so one bad category never
aborts the others; the caller gets a partial batch instead.
"""

import json
import logging
import operator
from dataclasses import dataclass, field
from typing import Annotated, Protocol, TypedDict

from langgraph.graph import END, START, StateGraph

from nexus.config import get_config
from nexus.utils.parsing import ainvoke_with_retry, strip_fences

logger = logging.getLogger(__name__)

REQUIRED_ITEM_FIELDS = {"headline", "summary", "source"}
PARTIAL_MESSAGE = "Failed to load some intelligence categories. The feed may be incomplete."

SYSTEM_PROMPT = """\
You are a regional development intelligence analyst producing a dashboard feed.

For the requested category, respond with valid JSON matching this exact schema:
[
  {
    "headline": "string",
    "summary": "string — two or three sentences",
    "implication": "string — what this means for regional investment",
    "source": "string — publication or data source name",
    "url": "string or null"
  }
]

Return between 3 and 5 items. Respond ONLY with the JSON array. No markdown fences, no commentary.
"""


class FeedFetcher(Protocol):
    async def fetch(self, category: str) -> list[dict]: ...


class FeedState(TypedDict):
    items: Annotated[list[dict], operator.add]  # {"category": str, "items": list[dict]}
    failures: Annotated[list[dict], operator.add]  # {"category": str, "error": str}


@dataclass(frozen=True)
class FeedBatch:
    items: dict[str, list[dict]] = field(default_factory=dict)
    failures: dict[str, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.failures

    @property
    def partial(self) -> bool:
        return bool(self.failures) and bool(self.items)

    @property
    def message(self) -> str:
        return "" if self.ok else PARTIAL_MESSAGE


def _validate_items(data, category: str) -> list[dict]:
    """Validate the model's feed items for one category."""
    if isinstance(data, dict) and "items" in data:
        data = data["items"]
    if not isinstance(data, list):
        raise ValueError(f"Feed response for '{category}' is not a JSON array.")

    for i, item in enumerate(data):
        if not isinstance(item, dict):
            raise ValueError(f"Feed item {i} for '{category}' is not an object.")
        missing = REQUIRED_ITEM_FIELDS - set(item.keys())
        if missing:
            raise ValueError(f"Feed item {i} for '{category}' missing required fields: {sorted(missing)}")
        item.setdefault("implication", "")
        item.setdefault("url", None)
    return data


class ChatModelFeedFetcher:
    """Asks a chat model for one category's feed items."""

    def __init__(self, llm=None):
        if llm is None:
            from langchain_anthropic import ChatAnthropic

            llm = ChatAnthropic(model=get_config()["feeds"]["model"], temperature=0)
        self._llm = llm

    async def fetch(self, category: str) -> list[dict]:
        messages = [
            {"role": "system", "content": SYSTEM_PROMPT},
            {"role": "user", "content": f"## Category\n{category}"},
        ]
        response = await ainvoke_with_retry(self._llm, messages)
        data = json.loads(strip_fences(response.content))
        return _validate_items(data, category)


def _fetch_node(category: str, fetcher: FeedFetcher):
    """Build the graph node for one category. Failures stay inside the branch."""

    async def _node(state: FeedState) -> dict:
        try:
            items = await fetcher.fetch(category)
        except Exception as exc:
            logger.error(f"Failed to fetch category '{category}': {exc!r}")
            return {"failures": [{"category": category, "error": str(exc) or type(exc).__name__}]}
        return {"items": [{"category": category, "items": items}]}

    return _node


def build_feed_graph(categories: list[str], fetcher: FeedFetcher):
    """One parallel branch per category, all joined at END."""
    workflow = StateGraph(FeedState)
    for i, category in enumerate(categories):
        name = f"fetch_{i}"
        workflow.add_node(name, _fetch_node(category, fetcher))
        workflow.add_edge(START, name)
        workflow.add_edge(name, END)
    return workflow.compile()


async def fetch_feeds(fetcher: FeedFetcher, categories: list[str] | None = None) -> FeedBatch:
    """Fetch every category in parallel and aggregate whatever succeeded.

    Results are ordered by the configured category order, not completion order.
    """
    if categories is None:
        categories = list(get_config().get("feeds", {}).get("categories", []))
    if not categories:
        return FeedBatch()

    graph = build_feed_graph(categories, fetcher)
    final_state = await graph.ainvoke({"items": [], "failures": []})

    by_category = {entry["category"]: entry["items"] for entry in final_state["items"]}
    failures = {entry["category"]: entry["error"] for entry in final_state["failures"]}

    batch = FeedBatch(
        items={c: by_category[c] for c in categories if c in by_category},
        failures={c: failures[c] for c in categories if c in failures},
    )
    if batch.failures:
        logger.warning(f"{PARTIAL_MESSAGE} Failed: {sorted(batch.failures)}")
    return batch
