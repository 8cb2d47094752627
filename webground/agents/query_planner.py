from __future__ import annotations

from dataclasses import dataclass, field
from typing import Protocol

from loguru import logger

from webground import llm_client
from webground.config import settings
from webground.models.pipeline import QueryPlan

ALLOWED_TARGET_DEPTHS = (15, 30, 50, 100)
RECENT_MESSAGE_LIMIT = 6

SYSTEM_PROMPT = """You are a search query writer for a web search pipeline.
Return JSON only with this shape:
{{ "useWebSearch": boolean, "queries": string[], "reason": string, "targetDepth": number }}
Rules:
- Decide whether web search will materially help answer the prompt.
- If web search will NOT help (purely conversational, personal preference, creative writing, general advice, or app help without external facts), set "useWebSearch": false and return an empty queries array.
- If web search WILL help (facts, stats, current events, prices, schedules, citations), set "useWebSearch": true and produce {count} concise queries.
- Use the prompt as the primary signal. Use recent messages only to disambiguate.
- If the prompt implies recency, use the provided current date to anchor queries.
- Prefer breadth across queries: cover different angles of the same question.
- Queries should be short, specific, and not include quotes.
- If "useWebSearch" is false, include a short reason in "reason" (max 12 words).
- Choose a "targetDepth" from [15, 30, 50, 100] to signal how many URLs to fetch overall. If unsure, pick 30.
- Do not include commentary or extra fields."""


@dataclass(slots=True)
class PlannerRequest:
    prompt: str
    count: int = 2
    recent_messages: list[dict[str, str]] = field(default_factory=list)
    current_date: str | None = None
    location_hint: str | None = None


class QueryPlanner(Protocol):
    async def plan(self, request: PlannerRequest) -> QueryPlan: ...


def dedupe_queries(queries: list[str]) -> list[str]:
    """Trimmed, non-empty queries with case-insensitive duplicates removed, order kept."""
    seen: set[str] = set()
    unique: list[str] = []
    for query in queries:
        cleaned = query.strip() if isinstance(query, str) else ""
        if not cleaned or cleaned.lower() in seen:
            continue
        seen.add(cleaned.lower())
        unique.append(cleaned)
    return unique


def finalize_queries(queries: list[str], prompt: str, count: int) -> list[str]:
    """Cap at ``count`` queries and pad with the prompt itself."""
    final = dedupe_queries(queries)[:count]
    while len(final) < count:
        final.append(prompt.strip())
    return final


def _user_content(request: PlannerRequest) -> str:
    recent = request.recent_messages[-RECENT_MESSAGE_LIMIT:]
    recent_block = "\n".join(f"{m.get('role', 'user')}: {m.get('content', '')}" for m in recent) or "None"
    return "\n".join(
        [
            f"Current date: {request.current_date or 'Unknown'}",
            f"User location: {request.location_hint or 'Unknown'}",
            "Recent messages (for context only):",
            recent_block,
            "User prompt:",
            request.prompt,
        ]
    )


class LLMQueryPlanner:
    """Asks a chat model whether to search and which queries to run."""

    def __init__(self, model: str | None = None):
        self.model = model or settings.planner_model

    async def plan(self, request: PlannerRequest) -> QueryPlan:
        completion = await llm_client.complete_json(
            model=self.model,
            system=SYSTEM_PROMPT.format(count=request.count),
            user=_user_content(request),
            caller="query_planner",
            max_tokens=200,
        )
        parsed = completion.data or {}
        if completion.data is None:
            logger.warning(f"Query planner returned unparseable output: {completion.text[:200]!r}")

        use_web_search = parsed.get("useWebSearch")
        if use_web_search is False:
            reason = parsed.get("reason")
            return QueryPlan(
                queries=[],
                use_web_search=False,
                reason=reason.strip() if isinstance(reason, str) and reason.strip() else "Not needed",
            )

        raw_queries = parsed.get("queries")
        queries = [q for q in raw_queries if isinstance(q, str)] if isinstance(raw_queries, list) else []
        depth = parsed.get("targetDepth")
        target_depth = None
        if isinstance(depth, (int, float)) and not isinstance(depth, bool) and round(depth) in ALLOWED_TARGET_DEPTHS:
            target_depth = int(round(depth))
        return QueryPlan(
            queries=finalize_queries(queries, request.prompt, request.count),
            use_web_search=True,
            target_depth=target_depth,
        )
