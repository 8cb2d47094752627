from __future__ import annotations

import json
from typing import Any

import httpx
from loguru import logger

from webground.config import settings
from webground.models.pipeline import SerpLocale, SerpResponse, SerpResult
from webground.tools.url_utils import domain_of

BRIGHTDATA_REQUEST_URL = "https://api.brightdata.com/request"
GOOGLE_SEARCH_URL = "https://www.google.com/search"


def _first_str(item: dict[str, Any], *keys: str) -> str | None:
    for key in keys:
        value = item.get(key)
        if isinstance(value, str) and value:
            return value
    return None


def _first_int(item: dict[str, Any], *keys: str) -> int | None:
    for key in keys:
        value = item.get(key)
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return int(value)
    return None


def _dig(payload: Any, *path: str) -> Any:
    for key in path:
        if not isinstance(payload, dict):
            return None
        payload = payload.get(key)
    return payload


def parse_results(payload: Any) -> list[SerpResult]:
    """Collect organic results from any of the response shapes the SERP zone returns."""
    candidates: list[Any] = []
    for path in (
        ("organic", "results"),
        ("organic_results",),
        ("organic",),
        ("results",),
        ("data", "results"),
        ("data", "organic_results"),
        ("data", "organic", "results"),
    ):
        found = _dig(payload, *path)
        if isinstance(found, list):
            candidates.extend(found)

    output: list[SerpResult] = []
    for item in candidates:
        if not isinstance(item, dict):
            continue
        url = _first_str(item, "url", "link", "href")
        if not url:
            continue
        output.append(
            SerpResult(
                url=url,
                title=_first_str(item, "title", "name") or url,
                description=_first_str(item, "description", "snippet", "subtitle"),
                position=_first_int(item, "position", "rank", "index"),
                domain=_first_str(item, "domain") or domain_of(url) or None,
            )
        )
    return output


def _unwrap_body(data: Any) -> Any:
    body = data.get("body") if isinstance(data, dict) else None
    if isinstance(body, str):
        try:
            return json.loads(body)
        except json.JSONDecodeError:
            return None
    if isinstance(body, dict):
        return body
    return data


async def search(keyword: str, *, depth: int, locale: SerpLocale) -> SerpResponse:
    """Google results fetched through a Bright Data SERP zone."""
    if not settings.brightdata_serp_api_key or not settings.brightdata_serp_zone:
        logger.warning("Bright Data SERP credentials missing (BRIGHTDATA_SERP_API_KEY / BRIGHTDATA_SERP_ZONE)")
        return SerpResponse(provider="brightdata")

    params = {"q": keyword.strip(), "hl": locale.language_code, "gl": locale.country_code}
    target_url = str(httpx.URL(GOOGLE_SEARCH_URL, params=params))

    async with httpx.AsyncClient(timeout=settings.serp_request_timeout_s) as client:
        response = await client.post(
            BRIGHTDATA_REQUEST_URL,
            json={"zone": settings.brightdata_serp_zone, "url": target_url, "format": "json"},
            headers={"Authorization": f"Bearer {settings.brightdata_serp_api_key}"},
        )

    try:
        data = response.json() if response.content else None
    except ValueError:
        data = None

    if response.status_code >= 400:
        logger.error(
            f"Bright Data SERP error: status={response.status_code} body={response.text[:500]}"
        )
        return SerpResponse(provider="brightdata", raw=data)

    inner = _unwrap_body(data)
    results = parse_results(inner) if inner else []
    if not results:
        logger.warning(f"Bright Data SERP returned no items for {keyword!r}")
    return SerpResponse(results=results[: max(depth, 1)], provider="brightdata", raw=data)
