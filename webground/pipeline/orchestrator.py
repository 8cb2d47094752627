"""Web evidence retrieval: plan -> SERP -> fetch -> filter -> chunk -> rank -> select -> judge.

One request runs at most two full passes (initial plus one retry with the
judge's suggested queries) and at most one single-page expansion, applied
to whichever pass was adopted.
"""
from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Any, Callable

from loguru import logger

from webground.agents.evidence_gate import EvidenceJudge, LLMEvidenceJudge
from webground.agents.query_planner import (
    LLMQueryPlanner,
    PlannerRequest,
    QueryPlanner,
    dedupe_queries,
    finalize_queries,
)
from webground.config import settings
from webground.models.pipeline import (
    Chunk,
    GateDecision,
    PageFetchProgress,
    PageFetchResult,
    PipelineCost,
    PipelineResult,
    QueryPlan,
    SerpLocale,
    SerpResult,
    sources_for,
)
from webground.research_core.chunk.service import build_chunks
from webground.research_core.extract.service import passes_quality, select_pages
from webground.research_core.fetch.service import FetchBudget, FetchProgress, PageFetchService
from webground.research_core.rank.service import ChunkRanker
from webground.research_core.select.service import select_chunks
from webground.research_core.serp.service import SerpService
from webground.services.cache_store import PageCache, SerpCache, cache_store
from webground.services.embeddings import embedding_service
from webground.services.logger import log_cost_summary, log_event, log_stage_timing

MAX_RETRY_QUERIES = 2
MIN_PIPELINE_CHUNK_SIZE = 16


def _setting(name: str) -> Any:
    return field(default_factory=lambda: getattr(settings, name))


@dataclass
class PipelineOptions:
    query_count: int = _setting("pipeline_query_count")
    serp_depth: int = _setting("pipeline_serp_depth")
    fetch_candidate_limit: int = _setting("pipeline_fetch_candidate_limit")
    page_limit: int = _setting("pipeline_page_limit")
    extra_fetch_batch_size: int = _setting("pipeline_extra_fetch_batch_size")
    page_timeout_ms: int = _setting("pipeline_page_timeout_ms")
    page_max_bytes: int = _setting("pipeline_page_max_bytes")
    min_page_text_length: int = _setting("pipeline_min_page_text_length")
    min_content_ratio: float = _setting("pipeline_min_content_ratio")
    chunk_size: int = _setting("pipeline_chunk_size")
    chunk_overlap: int = _setting("pipeline_chunk_overlap")
    top_k: int = _setting("pipeline_top_k")
    max_chunks_per_domain: int = _setting("pipeline_max_chunks_per_domain")
    max_chunks_per_url: int = _setting("pipeline_max_chunks_per_url")
    min_table_list_chunks: int = _setting("pipeline_min_table_list_chunks")
    location_name: str = _setting("pipeline_location_name")
    language_code: str = _setting("pipeline_language_code")
    country_code: str = _setting("pipeline_country_code")
    device: str = _setting("pipeline_device")
    keyword_weight: float = _setting("ranking_keyword_weight")
    kind_boost: float = _setting("ranking_kind_boost")
    max_embed_chunks: int = _setting("ranking_max_embed_chunks")
    retry_on_gate_failure: bool = True
    allow_skip: bool = True
    on_progress: Callable[[PageFetchProgress], None] | None = None
    recent_messages: list[dict[str, str]] = field(default_factory=list)
    current_date: str | None = None
    location_hint: str | None = None

    def __post_init__(self) -> None:
        if self.chunk_size < MIN_PIPELINE_CHUNK_SIZE:
            raise ValueError(f"chunk_size must be at least {MIN_PIPELINE_CHUNK_SIZE}")
        if self.chunk_overlap < 0 or self.chunk_overlap >= self.chunk_size:
            raise ValueError("chunk_overlap must be in [0, chunk_size)")
        for name in (
            "query_count",
            "serp_depth",
            "page_limit",
            "top_k",
            "max_chunks_per_domain",
            "max_chunks_per_url",
            "extra_fetch_batch_size",
            "page_timeout_ms",
            "page_max_bytes",
        ):
            if getattr(self, name) < 1:
                raise ValueError(f"{name} must be positive")
        if self.fetch_candidate_limit < 0:
            raise ValueError("fetch_candidate_limit must not be negative")

    @classmethod
    def from_settings(cls, **overrides: Any) -> PipelineOptions:
        return cls(**overrides)

    @property
    def locale(self) -> SerpLocale:
        return SerpLocale(
            location_name=self.location_name,
            language_code=self.language_code,
            country_code=self.country_code,
            device=self.device,
        )

    @property
    def budget(self) -> FetchBudget:
        return FetchBudget(timeout_ms=self.page_timeout_ms, max_bytes=self.page_max_bytes)


@dataclass(slots=True)
class PassOutcome:
    queries: list[str]
    results: list[SerpResult] = field(default_factory=list)
    remaining: list[SerpResult] = field(default_factory=list)
    pages: list[PageFetchResult] = field(default_factory=list)
    pool: list[Chunk] = field(default_factory=list)
    selected: list[Chunk] = field(default_factory=list)
    gate: GateDecision = field(default_factory=lambda: GateDecision(enough_evidence=False))
    cost: PipelineCost = field(default_factory=PipelineCost)


class _StageTimer:
    def __init__(self) -> None:
        self.started = time.monotonic()

    def done(self, stage: str, **extra: Any) -> None:
        log_stage_timing(stage, int((time.monotonic() - self.started) * 1000), **extra)
        self.started = time.monotonic()


class WebSearchPipeline:
    def __init__(
        self,
        *,
        planner: QueryPlanner,
        judge: EvidenceJudge,
        serp: SerpService,
        fetcher: PageFetchService,
        ranker: ChunkRanker,
    ):
        self.planner = planner
        self.judge = judge
        self.serp = serp
        self.fetcher = fetcher
        self.ranker = ranker

    @classmethod
    def from_settings(cls) -> WebSearchPipeline:
        store = cache_store()
        return cls(
            planner=LLMQueryPlanner(),
            judge=LLMEvidenceJudge(),
            serp=SerpService(SerpCache(store)),
            fetcher=PageFetchService(PageCache(store)),
            ranker=ChunkRanker(embedding_service()),
        )

    async def run(self, prompt: str, options: PipelineOptions) -> PipelineResult:
        """Plan, run one pass, optionally one retry pass, then at most one expansion.

        Expansion happens once per request, on whichever pass was adopted, so a
        request fetches at most one page beyond the passes' own batches.
        """
        if not prompt or not prompt.strip():
            return PipelineResult(skipped=True, skip_reason="Empty prompt")

        log_event("web_search_started", "Web search pipeline started", prompt=prompt[:100])
        timer = _StageTimer()
        plan = await self._plan(prompt, options)
        timer.done("query_planner", queries=len(plan.queries), use_web_search=plan.use_web_search)

        if not plan.use_web_search and options.allow_skip:
            logger.info(f"Web search skipped by planner: {plan.reason}")
            return PipelineResult(skipped=True, skip_reason=plan.reason or "Not needed")

        queries = finalize_queries(plan.queries, prompt, options.query_count)
        progress = FetchProgress(options.on_progress)
        ranker = self._ranker_for(options)

        outcome = await self._run_pass(prompt, queries, [], options, progress, ranker)
        passes = [outcome]
        adopted = outcome

        if self._should_retry(outcome, options):
            used = {q.lower() for q in outcome.queries}
            retry_queries = [q for q in dedupe_queries(outcome.gate.suggested_queries) if q.lower() not in used]
            retry_queries = retry_queries[:MAX_RETRY_QUERIES]
            if retry_queries:
                logger.info(f"Evidence insufficient; retrying with {retry_queries}")
                retry = await self._run_pass(prompt, retry_queries, outcome.queries, options, progress, ranker)
                passes.append(retry)
                if retry.gate.enough_evidence or len(retry.selected) >= len(outcome.selected):
                    adopted = retry
                else:
                    logger.info("Retry pass not adopted")

        expanded = False
        if not adopted.gate.enough_evidence and adopted.gate.error is None and adopted.remaining:
            all_queries = dedupe_queries([q for p in passes for q in p.queries])
            await self._expand(prompt, adopted, all_queries, options, progress, ranker)
            expanded = True

        cost = PipelineCost()
        for p in passes:
            cost = cost + p.cost

        result = PipelineResult(
            queries=dedupe_queries([q for p in passes for q in p.queries]),
            results=adopted.results,
            chunks=adopted.selected,
            sources=sources_for(adopted.selected),
            gate=adopted.gate,
            expanded=expanded,
            cost=cost,
        )
        log_cost_summary(prompt, cost)
        return result

    async def _plan(self, prompt: str, options: PipelineOptions) -> QueryPlan:
        request = PlannerRequest(
            prompt=prompt,
            count=options.query_count,
            recent_messages=options.recent_messages,
            current_date=options.current_date,
            location_hint=options.location_hint,
        )
        try:
            return await self.planner.plan(request)
        except Exception as exc:
            logger.warning(f"Query planner failed; searching with the prompt: {exc}")
            return QueryPlan(queries=[], use_web_search=True)

    def _ranker_for(self, options: PipelineOptions) -> ChunkRanker:
        return ChunkRanker(
            self.ranker.embedder,
            keyword_weight=options.keyword_weight,
            kind_boost=options.kind_boost,
            max_embed_chunks=options.max_embed_chunks,
        )

    @staticmethod
    def _should_retry(outcome: PassOutcome, options: PipelineOptions) -> bool:
        return (
            options.retry_on_gate_failure
            and not outcome.gate.enough_evidence
            and outcome.gate.error is None
            and bool(outcome.gate.suggested_queries)
        )

    async def _judge(self, prompt: str, queries: list[str], chunks: list[Chunk]) -> GateDecision:
        try:
            return await self.judge.judge(prompt, queries, chunks)
        except Exception as exc:
            logger.warning(f"Evidence judge failed: {exc}")
            return GateDecision(enough_evidence=False, suggested_queries=[], error=str(exc) or type(exc).__name__)

    async def _select(self, pool: list[Chunk], queries: list[str], options: PipelineOptions, ranker: ChunkRanker):
        ranked = await ranker.rank(pool, queries)
        selected = select_chunks(
            ranked.chunks,
            top_k=options.top_k,
            max_per_domain=options.max_chunks_per_domain,
            max_per_url=options.max_chunks_per_url,
            min_table_list=options.min_table_list_chunks,
        )
        return selected, ranked.embedding_requests

    async def _run_pass(
        self,
        prompt: str,
        queries: list[str],
        previous_queries: list[str],
        options: PipelineOptions,
        progress: FetchProgress,
        ranker: ChunkRanker,
    ) -> PassOutcome:
        outcome = PassOutcome(queries=list(queries))
        timer = _StageTimer()

        batch = await self.serp.fetch_and_merge(
            dedupe_queries(queries), depth=options.serp_depth, locale=options.locale
        )
        outcome.results = batch.results
        outcome.cost.serp_requests = batch.provider_calls
        outcome.cost.serp_cache_hits = batch.cache_hits
        timer.done("serp_fetch", queries=len(queries), results=len(batch.results))

        remaining = list(batch.results)
        candidates = remaining[: options.fetch_candidate_limit]
        remaining = remaining[options.fetch_candidate_limit :]

        fetched = await self._fetch(candidates, options, progress, outcome.cost)
        good = sum(1 for page in fetched if self._passes(page, options))
        while good < options.page_limit and remaining:
            extra = remaining[: options.extra_fetch_batch_size]
            remaining = remaining[options.extra_fetch_batch_size :]
            logger.debug(f"Fetching {len(extra)} extra pages ({good}/{options.page_limit} pass quality)")
            extra_pages = await self._fetch(extra, options, progress, outcome.cost)
            fetched.extend(extra_pages)
            good += sum(1 for page in extra_pages if self._passes(page, options))
        outcome.remaining = remaining
        timer.done("page_fetch", pages=len(fetched), good=good)

        outcome.pages = select_pages(
            fetched,
            page_limit=options.page_limit,
            min_text_length=options.min_page_text_length,
            min_content_ratio=options.min_content_ratio,
        )
        if good < options.page_limit:
            logger.debug(f"Quality filter shortfall: {good} of {options.page_limit}, backfilled to {len(outcome.pages)}")

        outcome.pool = build_chunks(outcome.pages, chunk_size=options.chunk_size, chunk_overlap=options.chunk_overlap)
        timer.done("chunk_build", chunks=len(outcome.pool))

        outcome.selected, embed_requests = await self._select(outcome.pool, queries, options, ranker)
        outcome.cost.embedding_requests += embed_requests
        timer.done("rank_select", selected=len(outcome.selected))

        outcome.gate = await self._judge(prompt, dedupe_queries(previous_queries + queries), outcome.selected)
        timer.done("evidence_gate", enough=outcome.gate.enough_evidence)
        return outcome

    async def _expand(
        self,
        prompt: str,
        outcome: PassOutcome,
        all_queries: list[str],
        options: PipelineOptions,
        progress: FetchProgress,
        ranker: ChunkRanker,
    ) -> None:
        extra, outcome.remaining = outcome.remaining[:1], outcome.remaining[1:]
        logger.info(f"Expansion fetch: {extra[0].url}")
        pages = await self._fetch(extra, options, progress, outcome.cost)
        eligible = [page for page in pages if self._passes(page, options)]
        if not eligible:
            logger.debug("Expansion page below quality threshold; using it anyway")
        extra_chunks = build_chunks(
            eligible or pages,
            chunk_size=options.chunk_size,
            chunk_overlap=options.chunk_overlap,
        )
        outcome.pool = outcome.pool + extra_chunks
        outcome.selected, embed_requests = await self._select(outcome.pool, outcome.queries, options, ranker)
        outcome.cost.embedding_requests += embed_requests
        outcome.gate = await self._judge(prompt, all_queries, outcome.selected)

    async def _fetch(
        self,
        results: list[SerpResult],
        options: PipelineOptions,
        progress: FetchProgress,
        cost: PipelineCost,
    ) -> list[PageFetchResult]:
        if not results:
            return []
        batch = await self.fetcher.fetch_pages(results, budget=options.budget, progress=progress)
        cost.page_fetches += batch.fetches
        cost.page_cache_hits += batch.cache_hits
        cost.unlocker_requests += batch.unlocker_calls
        return batch.pages

    @staticmethod
    def _passes(page: PageFetchResult, options: PipelineOptions) -> bool:
        return passes_quality(
            page,
            min_text_length=options.min_page_text_length,
            min_content_ratio=options.min_content_ratio,
        )


_pipeline: WebSearchPipeline | None = None


def pipeline() -> WebSearchPipeline:
    """Get or create the process-wide pipeline built from settings."""
    global _pipeline
    if _pipeline is None:
        _pipeline = WebSearchPipeline.from_settings()
    return _pipeline


def reset_pipeline() -> None:
    global _pipeline
    _pipeline = None


async def run_web_search_pipeline(
    prompt: str,
    options: PipelineOptions | None = None,
    *,
    runner: WebSearchPipeline | None = None,
) -> PipelineResult:
    """Run the pipeline; failures surface as an empty, insufficient result, never as exceptions."""
    try:
        options = options or PipelineOptions()
        return await (runner or pipeline()).run(prompt, options)
    except Exception as exc:
        logger.exception(f"Web search pipeline failed: {exc}")
        return PipelineResult(
            gate=GateDecision(enough_evidence=False, suggested_queries=[], error=str(exc) or type(exc).__name__),
        )
