from __future__ import annotations

from unittest.mock import AsyncMock, patch

import pytest

from webground.models.pipeline import SerpResponse, SerpResult
from webground.tools import brightdata_serp, search_provider


def _response(url: str) -> SerpResponse:
    return SerpResponse(results=[SerpResult(url=url, title="t", position=1)])


@pytest.mark.asyncio
async def test_search_provider_uses_configured_provider():
    with patch("webground.tools.search_provider.settings") as mock_settings, patch(
        "webground.tools.brave_search.search", AsyncMock(return_value=_response("https://brave.com"))
    ):
        mock_settings.search_provider = "brave"
        mock_settings.search_fallback_provider = ""

        result = await search_provider.search("query", depth=5)

    assert result.provider == "brave"
    assert result.fallback_from is None
    assert result.response.results[0].url == "https://brave.com"


@pytest.mark.asyncio
async def test_search_provider_raises_when_provider_unsupported():
    with patch("webground.tools.search_provider.settings") as mock_settings:
        mock_settings.search_provider = "unknown-provider"
        mock_settings.search_fallback_provider = ""

        with pytest.raises(ValueError):
            await search_provider.search("query")


@pytest.mark.asyncio
async def test_search_provider_falls_back_on_error():
    with patch("webground.tools.search_provider.settings") as mock_settings, patch(
        "webground.tools.dataforseo_serp.search", AsyncMock(side_effect=RuntimeError("quota"))
    ), patch(
        "webground.tools.brave_search.search", AsyncMock(return_value=_response("https://fallback.com"))
    ):
        mock_settings.search_provider = "dataforseo"
        mock_settings.search_fallback_provider = "brave"

        result = await search_provider.search("query")

    assert result.provider == "brave"
    assert result.fallback_from == "dataforseo"
    assert result.fallback_reason == "quota"


@pytest.mark.asyncio
async def test_search_provider_falls_back_on_zero_results():
    with patch("webground.tools.search_provider.settings") as mock_settings, patch(
        "webground.tools.dataforseo_serp.search", AsyncMock(return_value=SerpResponse())
    ), patch(
        "webground.tools.brightdata_serp.search", AsyncMock(return_value=_response("https://bd.com"))
    ):
        mock_settings.search_provider = "dataforseo"
        mock_settings.search_fallback_provider = "brightdata"

        result = await search_provider.search("query")

    assert result.provider == "brightdata"
    assert "zero results" in result.fallback_reason


def test_brightdata_parse_results_handles_nested_shapes():
    payload = {
        "organic": [
            {"link": "https://www.a.com/1", "title": "A", "rank": 1},
            {"title": "no url"},
        ],
        "data": {"results": [{"url": "https://b.com", "snippet": "b snippet", "position": 2}]},
    }

    results = brightdata_serp.parse_results(payload)

    assert [r.url for r in results] == ["https://www.a.com/1", "https://b.com"]
    assert results[0].domain == "a.com"
    assert results[1].description == "b snippet"


def test_brightdata_unwraps_json_string_body():
    wrapped = {"body": '{"organic": [{"url": "https://c.com", "title": "C"}]}'}

    inner = brightdata_serp._unwrap_body(wrapped)

    assert brightdata_serp.parse_results(inner)[0].url == "https://c.com"
