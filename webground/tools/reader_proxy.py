from __future__ import annotations

from urllib.parse import urlsplit

import httpx
from loguru import logger

from webground.config import settings


def build_reader_url(url: str) -> str | None:
    """Reader proxy URL for ``url``, e.g. ``https://r.jina.ai/https://example.com/a?b``."""
    try:
        parsed = urlsplit(url.strip())
    except ValueError:
        return None
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        return None
    target = f"{parsed.scheme}://{parsed.netloc}{parsed.path}"
    if parsed.query:
        target += f"?{parsed.query}"
    if parsed.fragment:
        target += f"#{parsed.fragment}"
    base = settings.reader_base_url.strip() or "https://r.jina.ai/"
    if "{url}" in base:
        return base.format(url=target)
    return base.rstrip("/") + "/" + target


async def fetch_text(url: str, *, timeout_ms: int) -> str:
    """Plain-text rendition of ``url`` from the reader proxy; empty on any failure."""
    reader_url = build_reader_url(url)
    if not reader_url:
        return ""
    timeout_s = max(timeout_ms / 1000.0, 1.0)
    async with httpx.AsyncClient(timeout=timeout_s, follow_redirects=True) as client:
        response = await client.get(reader_url, headers={"Accept": "text/plain"})
    if response.status_code >= 400:
        logger.warning(f"Reader proxy failed for {url}: status={response.status_code}")
        return ""
    return response.text.strip()
