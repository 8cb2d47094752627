from __future__ import annotations

from typing import Any

import httpx
from loguru import logger

from webground.config import settings
from webground.models.pipeline import SerpLocale, SerpResponse, SerpResult
from webground.tools.url_utils import domain_of

BRAVE_SEARCH_URL = "https://api.search.brave.com/res/v1/web/search"
BRAVE_MAX_COUNT = 20


async def search(keyword: str, *, depth: int, locale: SerpLocale) -> SerpResponse:
    """Execute a Brave web search and normalize results."""
    if not settings.brave_api_key:
        logger.warning("BRAVE_API_KEY is not configured")
        return SerpResponse(provider="brave")

    params: dict[str, Any] = {
        "q": keyword,
        "count": min(max(depth, 1), BRAVE_MAX_COUNT),
        "country": locale.country_code,
        "search_lang": locale.language_code,
    }

    async with httpx.AsyncClient(timeout=settings.serp_request_timeout_s) as client:
        response = await client.get(
            BRAVE_SEARCH_URL,
            params=params,
            headers={
                "Accept": "application/json",
                "X-Subscription-Token": settings.brave_api_key,
            },
        )
        response.raise_for_status()
        payload = response.json()

    raw_results = payload.get("web", {}).get("results", [])
    mapped: list[SerpResult] = []
    for idx, item in enumerate(raw_results):
        url = item.get("url", "")
        if not url:
            continue
        snippets = item.get("extra_snippets", []) or []
        description = (item.get("description", "") or "").strip() or " ".join(snippets).strip()
        mapped.append(
            SerpResult(
                url=url,
                title=item.get("title", "") or url,
                description=description or None,
                # Brave returns results in rank order without an explicit position.
                position=idx + 1,
                domain=domain_of(url) or None,
            )
        )
    return SerpResponse(results=mapped, provider="brave", raw=payload)
