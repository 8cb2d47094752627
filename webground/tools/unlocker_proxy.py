from __future__ import annotations

import httpx
from loguru import logger

from webground.config import settings


def is_configured() -> bool:
    return bool(settings.brightdata_web_unlocker_api_key and settings.brightdata_web_unlocker_zone)


async def fetch_html(url: str, *, timeout_ms: int) -> str:
    """Raw HTML of ``url`` fetched through the Bright Data Web Unlocker (billed per call)."""
    if not is_configured():
        raise RuntimeError("Web Unlocker is not configured")
    timeout_s = max(timeout_ms / 1000.0, 1.0)
    async with httpx.AsyncClient(timeout=timeout_s) as client:
        response = await client.post(
            settings.unlocker_endpoint,
            json={"zone": settings.brightdata_web_unlocker_zone, "url": url, "format": "raw"},
            headers={"Authorization": f"Bearer {settings.brightdata_web_unlocker_api_key}"},
        )
    if response.status_code >= 400:
        logger.warning(f"Web Unlocker failed for {url}: status={response.status_code}")
        return ""
    return response.text
