from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Awaitable, Callable

from loguru import logger

from webground.config import settings
from webground.models.pipeline import SerpLocale, SerpResponse, SerpResult
from webground.services.cache_store import SerpCache, serp_cache_key
from webground.tools import search_provider
from webground.tools.url_utils import domain_of, normalize_url_key

SearchFn = Callable[..., Awaitable[SerpResponse]]


@dataclass(slots=True)
class SerpBatch:
    results: list[SerpResult] = field(default_factory=list)
    provider_calls: int = 0
    cache_hits: int = 0


def merge_serp_results(responses: list[list[SerpResult]]) -> list[SerpResult]:
    """Merge per-query result lists by normalized URL, lowest position wins.

    The merged list is sorted ascending by position (missing positions last);
    the sort is stable, so equal positions keep first-seen order.
    """
    merged: dict[str, SerpResult] = {}
    for results in responses:
        for item in results:
            key = normalize_url_key(item.url)
            if not key:
                continue
            existing = merged.get(key)
            if existing is None:
                merged[key] = item
                continue
            if item.position is not None and (
                existing.position is None or item.position < existing.position
            ):
                merged[key] = item

    ordered = list(merged.values())
    ordered.sort(key=lambda r: (r.position is None, r.position or 0))
    for item in ordered:
        if not item.domain:
            item.domain = domain_of(item.url) or None
    return ordered


async def _provider_search(keyword: str, *, depth: int, locale: SerpLocale) -> SerpResponse:
    outcome = await search_provider.search(keyword, depth=depth, locale=locale)
    response = outcome.response
    response.provider = outcome.provider
    return response


class SerpService:
    """Cached, concurrent SERP lookup for a batch of queries."""

    def __init__(
        self,
        cache: SerpCache,
        *,
        search_fn: SearchFn | None = None,
        max_parallel: int | None = None,
    ):
        self.cache = cache
        self._search = search_fn or _provider_search
        self.max_parallel = max(int(max_parallel or settings.serp_max_parallel), 1)

    async def fetch_and_merge(
        self,
        queries: list[str],
        *,
        depth: int,
        locale: SerpLocale,
    ) -> SerpBatch:
        semaphore = asyncio.Semaphore(self.max_parallel)
        batch = SerpBatch()
        provider = settings.search_provider.lower().strip()

        async def one(query: str) -> list[SerpResult]:
            key = serp_cache_key(
                query,
                provider=provider,
                language_code=locale.language_code,
                location_name=locale.location_name,
                depth=depth,
            )
            cached = await self.cache.load(key)
            if cached is not None:
                batch.cache_hits += 1
                logger.debug(f"SERP cache hit: {query!r}")
                return cached.results

            async with semaphore:
                batch.provider_calls += 1
                try:
                    response = await self._search(query, depth=depth, locale=locale)
                except Exception as exc:
                    logger.warning(f"SERP fetch failed for {query!r}: {exc}")
                    return []

            if response.results:
                await self.cache.save(key, query, response)
            return response.results

        per_query = await asyncio.gather(*(one(q) for q in queries))
        batch.results = merge_serp_results(list(per_query))
        return batch
