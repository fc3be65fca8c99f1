"""Retrieval planning: decide whether and what to search before answering."""

from __future__ import annotations

import json
import logging
from typing import Any

from langchain_core.prompts import PromptTemplate

from rag_editor.config import AgentConfig
from rag_editor.llm.ollama import OllamaClient, OllamaError
from rag_editor.types import QueryPlan

logger = logging.getLogger(__name__)

FALLBACK_THOUGHT = "Planner unavailable; searching with the original request."
NO_DOCUMENTS_THOUGHT = "No reference documents are loaded."

_PLANNER_PROMPT = PromptTemplate.from_template(
    """
You plan document retrieval for a writing assistant.

Reference documents available:
{documents}

User request:
{question}

Decide whether the request needs information from the reference documents.
If it does, write up to 3 short, specific search queries that would find the
relevant passages. If it does not (greetings, pure editing of the user's own
text), return an empty list.

Respond with JSON only, in exactly this shape:
{{"needs_retrieval": true, "queries": ["..."], "thought": "one sentence explaining the plan"}}
""".strip()
)


class QueryPlanner:
    """One low-temperature JSON call; any failure degrades to the raw request."""

    def __init__(self, client: OllamaClient, config: AgentConfig | None = None) -> None:
        self.client = client
        self.config = config or AgentConfig()

    def plan(self, user_query: str, documents_summary: str) -> QueryPlan:
        if not documents_summary.strip():
            return QueryPlan(queries=[], thought=NO_DOCUMENTS_THOUGHT)

        prompt = _PLANNER_PROMPT.format(documents=documents_summary, question=user_query)
        try:
            raw = self.client.generate(
                prompt,
                temperature=self.config.planner_temperature,
                fmt="json",
            )
        except OllamaError as exc:
            logger.warning("Query planning failed: %s", exc)
            return _fallback(user_query)

        payload = _decode_plan(raw)
        if payload is None:
            logger.warning("Planner returned unparsable output: %.120s", raw)
            return _fallback(user_query)

        thought = str(payload.get("thought") or payload.get("reasoning") or "").strip()
        if payload.get("needs_retrieval") is False:
            return QueryPlan(queries=[], thought=thought)
        return QueryPlan(queries=_clean_queries(payload.get("queries")), thought=thought)


def _fallback(user_query: str) -> QueryPlan:
    return QueryPlan(queries=[user_query], thought=FALLBACK_THOUGHT, fallback=True)


def _decode_plan(raw: str) -> dict[str, Any] | None:
    try:
        payload: Any = json.loads(raw)
        # Some models wrap the object in a JSON string.
        if isinstance(payload, str):
            payload = json.loads(payload)
    except ValueError:
        return None
    return payload if isinstance(payload, dict) else None


def _clean_queries(value: Any) -> list[str]:
    if isinstance(value, str):
        value = [value]
    if not isinstance(value, list):
        return []
    queries: list[str] = []
    for item in value:
        if not isinstance(item, str):
            continue
        query = item.strip()
        if query and query not in queries:
            queries.append(query)
    return queries
