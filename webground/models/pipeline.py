from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any, Literal

from webground.config import settings

ChunkKind = Literal["text", "table", "list"]
FetchTier = Literal["direct", "direct_retry", "headless", "reader", "unlocker", "cache", "none"]


@dataclass(slots=True)
class SerpResult:
    url: str
    title: str
    description: str | None = None
    position: int | None = None
    domain: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "url": self.url,
            "title": self.title,
            "description": self.description,
            "position": self.position,
            "domain": self.domain,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SerpResult | None:
        url = data.get("url")
        if not isinstance(url, str) or not url.strip():
            return None
        position = data.get("position")
        if isinstance(position, bool) or not isinstance(position, (int, float)):
            position = None
        description = data.get("description")
        domain = data.get("domain")
        return cls(
            url=url.strip(),
            title=str(data.get("title") or ""),
            description=description if isinstance(description, str) else None,
            position=int(position) if position is not None else None,
            domain=domain if isinstance(domain, str) else None,
        )


@dataclass(frozen=True, slots=True)
class SerpLocale:
    location_name: str = "United States"
    language_code: str = "en"
    country_code: str = "us"
    device: str = "desktop"


@dataclass(slots=True)
class SerpResponse:
    results: list[SerpResult] = field(default_factory=list)
    task_id: str | None = None
    provider: str = ""
    raw: Any = None

    def to_payload(self) -> dict[str, Any]:
        return {
            "provider": self.provider,
            "task_id": self.task_id,
            "results": [r.to_dict() for r in self.results],
        }

    @classmethod
    def from_payload(cls, payload: Any) -> SerpResponse:
        """Coerce a cached payload into a response; anything malformed is empty."""
        if not isinstance(payload, dict):
            return cls()
        raw_results = payload.get("results")
        if not isinstance(raw_results, list):
            return cls()
        results = [
            parsed
            for item in raw_results
            if isinstance(item, dict) and (parsed := SerpResult.from_dict(item)) is not None
        ]
        task_id = payload.get("task_id")
        provider = payload.get("provider")
        return cls(
            results=results,
            task_id=task_id if isinstance(task_id, str) else None,
            provider=provider if isinstance(provider, str) else "",
        )


@dataclass(slots=True)
class CacheEntry:
    key: str
    payload: dict[str, Any]
    created_at: datetime


@dataclass(slots=True)
class CachedPage:
    url: str
    status: int
    truncated: bool
    html: str
    text: str


@dataclass(slots=True)
class PageFetchResult:
    url: str
    html: str = ""
    text: str = ""
    table_blocks: list[str] = field(default_factory=list)
    list_blocks: list[str] = field(default_factory=list)
    status: int = 0
    truncated: bool = False
    html_length: int = 0
    title: str = ""
    domain: str = ""
    position: int | None = None
    tier: FetchTier = "none"
    from_cache: bool = False
    unlocker_calls: int = 0

    @property
    def content_ratio(self) -> float:
        if self.html_length <= 0:
            return 0.0
        return len(self.text) / self.html_length


@dataclass(frozen=True, slots=True)
class Chunk:
    text: str
    url: str
    url_key: str
    kind: ChunkKind = "text"
    title: str | None = None
    domain: str | None = None
    score: float = 0.0

    def __post_init__(self) -> None:
        if not self.text.strip():
            raise ValueError("chunk text must not be empty")

    def with_score(self, score: float) -> Chunk:
        return replace(self, score=score)

    def to_dict(self) -> dict[str, Any]:
        return {
            "text": self.text,
            "url": self.url,
            "url_key": self.url_key,
            "kind": self.kind,
            "title": self.title,
            "domain": self.domain,
            "score": round(self.score, 6),
        }


@dataclass(slots=True)
class GateDecision:
    enough_evidence: bool
    suggested_queries: list[str] = field(default_factory=list)
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "enough_evidence": self.enough_evidence,
            "suggested_queries": list(self.suggested_queries),
            "error": self.error,
        }


@dataclass(slots=True)
class QueryPlan:
    queries: list[str] = field(default_factory=list)
    use_web_search: bool = True
    reason: str | None = None
    target_depth: int | None = None


@dataclass(slots=True)
class PipelineCost:
    serp_requests: int = 0
    serp_cache_hits: int = 0
    page_fetches: int = 0
    page_cache_hits: int = 0
    unlocker_requests: int = 0
    embedding_requests: int = 0

    def __add__(self, other: PipelineCost) -> PipelineCost:
        return PipelineCost(
            serp_requests=self.serp_requests + other.serp_requests,
            serp_cache_hits=self.serp_cache_hits + other.serp_cache_hits,
            page_fetches=self.page_fetches + other.page_fetches,
            page_cache_hits=self.page_cache_hits + other.page_cache_hits,
            unlocker_requests=self.unlocker_requests + other.unlocker_requests,
            embedding_requests=self.embedding_requests + other.embedding_requests,
        )

    @property
    def serp_estimated_usd(self) -> float:
        return self.serp_requests * settings.serp_request_cost_usd

    @property
    def unlocker_estimated_usd(self) -> float:
        return self.unlocker_requests * settings.unlocker_request_cost_usd

    @property
    def estimated_usd(self) -> float:
        return self.serp_estimated_usd + self.unlocker_estimated_usd

    def to_dict(self) -> dict[str, Any]:
        return {
            "serp_requests": self.serp_requests,
            "serp_cache_hits": self.serp_cache_hits,
            "page_fetches": self.page_fetches,
            "page_cache_hits": self.page_cache_hits,
            "unlocker_requests": self.unlocker_requests,
            "embedding_requests": self.embedding_requests,
            "serp_estimated_usd": round(self.serp_estimated_usd, 6),
            "unlocker_estimated_usd": round(self.unlocker_estimated_usd, 6),
            "estimated_usd": round(self.estimated_usd, 6),
        }


@dataclass(slots=True)
class Source:
    url: str
    title: str | None = None


def sources_for(chunks: list[Chunk]) -> list[Source]:
    """Unique (url, title) pairs of the given chunks, in chunk order."""
    seen: set[tuple[str, str | None]] = set()
    sources: list[Source] = []
    for chunk in chunks:
        key = (chunk.url, chunk.title)
        if key in seen:
            continue
        seen.add(key)
        sources.append(Source(url=chunk.url, title=chunk.title))
    return sources


@dataclass(slots=True)
class PipelineResult:
    queries: list[str] = field(default_factory=list)
    results: list[SerpResult] = field(default_factory=list)
    chunks: list[Chunk] = field(default_factory=list)
    sources: list[Source] = field(default_factory=list)
    gate: GateDecision = field(default_factory=lambda: GateDecision(enough_evidence=False))
    expanded: bool = False
    skipped: bool = False
    skip_reason: str | None = None
    cost: PipelineCost = field(default_factory=PipelineCost)

    def to_dict(self) -> dict[str, Any]:
        return {
            "queries": list(self.queries),
            "results": [r.to_dict() for r in self.results],
            "chunks": [c.to_dict() for c in self.chunks],
            "sources": [{"url": s.url, "title": s.title} for s in self.sources],
            "gate": self.gate.to_dict(),
            "expanded": self.expanded,
            "skipped": self.skipped,
            "skip_reason": self.skip_reason,
            "cost": self.cost.to_dict(),
        }


@dataclass(slots=True)
class PageFetchProgress:
    searched: int
