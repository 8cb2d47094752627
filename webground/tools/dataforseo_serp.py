from __future__ import annotations

from typing import Any

import httpx
from loguru import logger

from webground.config import settings
from webground.models.pipeline import SerpLocale, SerpResponse, SerpResult
from webground.tools.url_utils import domain_of

DATAFORSEO_SERP_URL = "https://api.dataforseo.com/v3/serp/google/organic/live/advanced"
DEFAULT_ENGINE = "google.com"


def _parse_items(data: Any) -> tuple[str | None, list[SerpResult]]:
    tasks = data.get("tasks") if isinstance(data, dict) else None
    task = tasks[0] if isinstance(tasks, list) and tasks and isinstance(tasks[0], dict) else None
    if task is None:
        return None, []
    task_id = task.get("id") if isinstance(task.get("id"), str) else None
    result = task.get("result")
    first = result[0] if isinstance(result, list) and result and isinstance(result[0], dict) else {}
    items = first.get("items") if isinstance(first.get("items"), list) else []

    results: list[SerpResult] = []
    for item in items:
        if not isinstance(item, dict) or item.get("type") != "organic":
            continue
        url = item.get("url")
        if not isinstance(url, str) or not url:
            continue
        rank = item.get("rank_group")
        domain = item.get("domain")
        results.append(
            SerpResult(
                url=url,
                title=item.get("title") if isinstance(item.get("title"), str) else url,
                description=item.get("description") if isinstance(item.get("description"), str) else None,
                position=rank if isinstance(rank, int) and not isinstance(rank, bool) else None,
                domain=domain if isinstance(domain, str) else (domain_of(url) or None),
            )
        )
    return task_id, results


async def search(keyword: str, *, depth: int, locale: SerpLocale) -> SerpResponse:
    """Google organic results through the DataForSEO live/advanced endpoint."""
    if not settings.dataforseo_user or not settings.dataforseo_pass:
        logger.warning("DataForSEO credentials missing (DATAFORSEO_USER / DATAFORSEO_PASS)")
        return SerpResponse(provider="dataforseo")

    payload = [
        {
            "keyword": keyword,
            "location_name": locale.location_name,
            "language_code": locale.language_code,
            "device": locale.device,
            "depth": depth,
            "se_domain": DEFAULT_ENGINE,
        }
    ]
    async with httpx.AsyncClient(timeout=settings.serp_request_timeout_s) as client:
        response = await client.post(
            DATAFORSEO_SERP_URL,
            json=payload,
            auth=(settings.dataforseo_user, settings.dataforseo_pass),
        )

    try:
        data = response.json() if response.content else None
    except ValueError:
        data = None

    if response.status_code >= 400:
        logger.error(
            f"DataForSEO SERP error: status={response.status_code} body={response.text[:500]}"
        )
        return SerpResponse(provider="dataforseo", raw=data)

    task_id, results = _parse_items(data)
    return SerpResponse(results=results, task_id=task_id, provider="dataforseo", raw=data)
