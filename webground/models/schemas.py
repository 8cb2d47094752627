from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field


# --- Requests ---


class RecentMessage(BaseModel):
    role: str = "user"
    content: str = ""


class WebSearchRequest(BaseModel):
    prompt: str
    top_k: int | None = Field(default=None, ge=1)
    query_count: int | None = Field(default=None, ge=1)
    allow_skip: bool = True
    retry_on_gate_failure: bool = True
    recent_messages: list[RecentMessage] = Field(default_factory=list)
    current_date: str | None = None
    location_hint: str | None = None

    def option_overrides(self) -> dict[str, Any]:
        overrides: dict[str, Any] = {
            "allow_skip": self.allow_skip,
            "retry_on_gate_failure": self.retry_on_gate_failure,
            "recent_messages": [m.model_dump() for m in self.recent_messages],
            "current_date": self.current_date,
            "location_hint": self.location_hint,
        }
        if self.top_k is not None:
            overrides["top_k"] = self.top_k
        if self.query_count is not None:
            overrides["query_count"] = self.query_count
        return overrides


# --- Responses ---


class SerpResultResponse(BaseModel):
    url: str
    title: str
    description: str | None = None
    position: int | None = None
    domain: str | None = None


class ChunkResponse(BaseModel):
    text: str
    url: str
    url_key: str
    kind: str
    title: str | None = None
    domain: str | None = None
    score: float = 0.0


class SourceResponse(BaseModel):
    url: str
    title: str | None = None


class GateResponse(BaseModel):
    enough_evidence: bool
    suggested_queries: list[str] = Field(default_factory=list)
    error: str | None = None


class CostResponse(BaseModel):
    serp_requests: int = 0
    serp_cache_hits: int = 0
    page_fetches: int = 0
    page_cache_hits: int = 0
    unlocker_requests: int = 0
    embedding_requests: int = 0
    serp_estimated_usd: float = 0.0
    unlocker_estimated_usd: float = 0.0
    estimated_usd: float = 0.0


class WebSearchResponse(BaseModel):
    queries: list[str]
    results: list[SerpResultResponse]
    chunks: list[ChunkResponse]
    sources: list[SourceResponse]
    gate: GateResponse
    expanded: bool
    skipped: bool
    skip_reason: str | None = None
    cost: CostResponse
