from __future__ import annotations

import pytest

from webground.models.pipeline import SerpLocale, SerpResponse, SerpResult
from webground.research_core.serp.service import SerpService, merge_serp_results
from webground.services.cache_store import MemoryCacheStore, SerpCache


def test_merge_keeps_lowest_position_per_url():
    first = [SerpResult(url="https://a.com/x", title="A late", position=7)]
    second = [
        SerpResult(url="https://A.com/x/?ref=1", title="A early", position=3),
        SerpResult(url="https://b.com", title="B", position=5),
    ]

    merged = merge_serp_results([first, second])

    assert [r.title for r in merged] == ["A early", "B"]
    assert merged[0].position == 3
    assert merged[0].domain == "a.com"


def test_merge_puts_missing_positions_last_and_is_stable():
    results = [
        SerpResult(url="https://n.com", title="none", position=None),
        SerpResult(url="https://x.com", title="x", position=2),
        SerpResult(url="https://y.com", title="y", position=2),
    ]

    merged = merge_serp_results([results])

    assert [r.title for r in merged] == ["x", "y", "none"]


def _fake_search(results_by_query: dict[str, list[SerpResult]], calls: list[str]):
    async def search(query: str, *, depth: int, locale: SerpLocale) -> SerpResponse:
        calls.append(query)
        return SerpResponse(results=results_by_query.get(query, []), provider="fake")

    return search


@pytest.mark.asyncio
async def test_fetch_and_merge_uses_cache_on_second_run():
    calls: list[str] = []
    search = _fake_search(
        {
            "q1": [SerpResult(url="https://a.com", title="A", position=1)],
            "q2": [SerpResult(url="https://b.com", title="B", position=1)],
        },
        calls,
    )
    service = SerpService(SerpCache(MemoryCacheStore()), search_fn=search)

    first = await service.fetch_and_merge(["q1", "q2"], depth=10, locale=SerpLocale())
    second = await service.fetch_and_merge(["q1", "Q2 "], depth=10, locale=SerpLocale())

    assert first.provider_calls == 2
    assert first.cache_hits == 0
    assert second.provider_calls == 0
    assert second.cache_hits == 2
    assert {r.url for r in second.results} == {"https://a.com", "https://b.com"}


@pytest.mark.asyncio
async def test_fetch_and_merge_does_not_cache_empty_responses():
    calls: list[str] = []
    service = SerpService(SerpCache(MemoryCacheStore()), search_fn=_fake_search({}, calls))

    await service.fetch_and_merge(["nothing"], depth=10, locale=SerpLocale())
    batch = await service.fetch_and_merge(["nothing"], depth=10, locale=SerpLocale())

    assert calls == ["nothing", "nothing"]
    assert batch.provider_calls == 1
    assert batch.results == []


@pytest.mark.asyncio
async def test_fetch_and_merge_survives_provider_errors():
    async def search(query: str, *, depth: int, locale: SerpLocale) -> SerpResponse:
        if query == "bad":
            raise RuntimeError("boom")
        return SerpResponse(results=[SerpResult(url="https://ok.com", title="ok", position=1)])

    service = SerpService(SerpCache(MemoryCacheStore()), search_fn=search)

    batch = await service.fetch_and_merge(["bad", "good"], depth=10, locale=SerpLocale())

    assert [r.url for r in batch.results] == ["https://ok.com"]
    assert batch.provider_calls == 2
