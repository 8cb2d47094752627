from __future__ import annotations

from dataclasses import dataclass
from typing import Awaitable, Callable

from loguru import logger

from webground.config import settings
from webground.models.pipeline import SerpLocale, SerpResponse
from webground.services.http import sanitize_ssl_keylogfile
from webground.tools import brave_search, brightdata_serp, dataforseo_serp

ProviderSearch = Callable[..., Awaitable[SerpResponse]]

PROVIDERS = {
    "dataforseo": dataforseo_serp,
    "brightdata": brightdata_serp,
    "brave": brave_search,
}


@dataclass
class SearchResponse:
    response: SerpResponse
    provider: str
    fallback_from: str | None = None
    fallback_reason: str | None = None


def _resolve(name: str) -> ProviderSearch:
    module = PROVIDERS.get(name)
    if module is None:
        raise ValueError(f"Unsupported SEARCH_PROVIDER: {name}")
    return module.search


async def search(
    keyword: str,
    *,
    depth: int = 10,
    locale: SerpLocale | None = None,
) -> SearchResponse:
    sanitize_ssl_keylogfile()
    locale = locale or SerpLocale()
    primary = settings.search_provider.lower().strip()
    fallback = settings.search_fallback_provider.lower().strip()
    primary_search = _resolve(primary)
    fallback_search = _resolve(fallback) if fallback and fallback != primary else None

    try:
        response = await primary_search(keyword, depth=depth, locale=locale)
        if response.results or fallback_search is None:
            return SearchResponse(response=response, provider=primary)
        reason = f"{primary} returned zero results"
    except Exception as e:
        if fallback_search is None:
            raise
        reason = str(e) or type(e).__name__

    logger.warning(f"SERP provider {primary} failed for {keyword!r}, falling back to {fallback}: {reason}")
    fallback_response = await fallback_search(keyword, depth=depth, locale=locale)
    return SearchResponse(
        response=fallback_response,
        provider=fallback,
        fallback_from=primary,
        fallback_reason=reason,
    )
