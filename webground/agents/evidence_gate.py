from __future__ import annotations

from typing import Protocol

from loguru import logger

from webground import llm_client
from webground.config import settings
from webground.models.pipeline import Chunk, GateDecision

MAX_SUGGESTED_QUERIES = 2
CHUNK_PREVIEW_CHARS = 1200

SYSTEM_PROMPT = """You are an evidence gate for a search pipeline.
Return JSON only with:
{ "enoughEvidence": boolean, "suggestedQueries": string[] }
Rules:
- If the provided chunks contain enough evidence to answer the prompt, return true.
- If the chunks are too thin, off-topic, or missing key details, return false.
- If you return false, propose up to 2 concise alternative queries that try new angles and avoid the previous queries/sources.
- No extra fields or commentary."""


class EvidenceJudge(Protocol):
    async def judge(self, prompt: str, previous_queries: list[str], chunks: list[Chunk]) -> GateDecision: ...


def _chunk_summary(chunks: list[Chunk]) -> str:
    blocks = []
    for index, chunk in enumerate(chunks, start=1):
        content = chunk.text
        if len(content) > CHUNK_PREVIEW_CHARS:
            content = content[:CHUNK_PREVIEW_CHARS] + "..."
        lines = [f"Chunk {index}"]
        if chunk.title:
            lines.append(f"Title: {chunk.title}")
        lines.append(f"URL: {chunk.url}")
        lines.append(content)
        blocks.append("\n".join(lines))
    return "\n\n".join(blocks) or "None"


def parse_gate_decision(data: dict | None) -> GateDecision:
    """Coerce judge output; anything without a boolean verdict is "insufficient"."""
    if not isinstance(data, dict) or not isinstance(data.get("enoughEvidence"), bool):
        return GateDecision(enough_evidence=False, suggested_queries=[], error="unparseable judge output")
    raw = data.get("suggestedQueries")
    suggested = [q.strip() for q in raw if isinstance(q, str) and q.strip()] if isinstance(raw, list) else []
    return GateDecision(
        enough_evidence=data["enoughEvidence"],
        suggested_queries=suggested[:MAX_SUGGESTED_QUERIES],
    )


class LLMEvidenceJudge:
    """Asks a chat model whether the selected chunks can answer the prompt."""

    def __init__(self, model: str | None = None):
        self.model = model or settings.judge_model

    async def judge(self, prompt: str, previous_queries: list[str], chunks: list[Chunk]) -> GateDecision:
        previous = "\n".join(previous_queries) if previous_queries else "None"
        user = f"Prompt:\n{prompt}\n\nPrevious queries:\n{previous}\n\nChunks:\n{_chunk_summary(chunks)}"
        completion = await llm_client.complete_json(
            model=self.model,
            system=SYSTEM_PROMPT,
            user=user,
            caller="evidence_gate",
            max_tokens=120,
        )
        decision = parse_gate_decision(completion.data)
        if decision.error:
            logger.warning(f"Evidence gate returned unparseable output: {completion.text[:200]!r}")
        return decision
