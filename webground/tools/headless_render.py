"""Headless rendering through a render service or an in-process Playwright browser.

A process-wide circuit breaker stops further render attempts once the
backend has proven unreachable (service down, Playwright missing or unable
to launch). It is only reset explicitly, e.g. between test cases.
"""
from __future__ import annotations

from dataclasses import dataclass

import httpx
from loguru import logger

from webground.config import settings
from webground.services.http import CHROME_USER_AGENT, browser_headers, sanitize_ssl_keylogfile


@dataclass(slots=True)
class RenderedPage:
    html: str
    text: str


class HeadlessCircuitBreaker:
    def __init__(self) -> None:
        self.open = False
        self.reason: str | None = None

    def trip(self, reason: str) -> None:
        if not self.open:
            logger.warning(f"Headless render disabled for this process: {reason}")
        self.open = True
        self.reason = reason

    def reset(self) -> None:
        self.open = False
        self.reason = None


_breaker: HeadlessCircuitBreaker | None = None


def headless_breaker() -> HeadlessCircuitBreaker:
    global _breaker
    if _breaker is None:
        _breaker = HeadlessCircuitBreaker()
    return _breaker


def reset_headless_breaker() -> None:
    headless_breaker().reset()


def backend_name() -> str:
    if not settings.use_headless_render:
        return "off"
    backend = settings.headless_render_backend.lower().strip()
    if backend == "service" and not settings.headless_render_url.strip():
        return "off"
    return backend


def is_available() -> bool:
    return backend_name() in {"service", "playwright"} and not headless_breaker().open


async def render_via_service(url: str, *, timeout_ms: int, max_bytes: int) -> RenderedPage | None:
    endpoint = settings.headless_render_url.strip()
    payload = {"url": url, "timeoutMs": timeout_ms, "maxBytes": max_bytes}
    # the service gets its own navigation budget plus a little slack for the round trip
    timeout_s = max(timeout_ms / 1000.0, 1.0) + 5.0
    try:
        async with httpx.AsyncClient(timeout=timeout_s) as client:
            response = await client.post(endpoint, json=payload)
    except (httpx.ConnectError, httpx.ConnectTimeout) as exc:
        headless_breaker().trip(f"render service unreachable: {exc}")
        return None

    if response.status_code >= 400:
        logger.warning(f"Headless render failed for {url}: status={response.status_code}")
        return None
    data = response.json()
    if not isinstance(data, dict):
        return None
    html = data.get("html") if isinstance(data.get("html"), str) else ""
    text = data.get("text") if isinstance(data.get("text"), str) else ""
    return RenderedPage(html=html[:max_bytes], text=text[:max_bytes])


async def render_via_playwright(url: str, *, timeout_ms: int, max_bytes: int) -> RenderedPage | None:
    try:
        from playwright.async_api import async_playwright
    except ImportError:  # pragma: no cover - depends on optional package
        headless_breaker().trip("Playwright is not installed")
        return None

    async with async_playwright() as playwright:  # pragma: no cover - integration behavior
        try:
            browser = await playwright.chromium.launch(headless=True)
        except Exception as exc:
            headless_breaker().trip(f"browser launch failed: {exc}")
            return None
        try:
            context = await browser.new_context(
                user_agent=CHROME_USER_AGENT,
                locale="en-US",
                viewport={"width": 1366, "height": 768},
            )
            page = await context.new_page()
            headers = browser_headers()
            headers.pop("User-Agent", None)
            await page.set_extra_http_headers(headers)
            await page.goto(url, wait_until="networkidle", timeout=timeout_ms)
            await page.wait_for_timeout(500)
            html = await page.content()
            try:
                text = await page.evaluate("() => document.body ? document.body.innerText : ''")
            except Exception:
                text = ""
            await context.close()
        finally:
            await browser.close()
    return RenderedPage(html=html[:max_bytes], text=(text or "")[:max_bytes])


async def render(url: str, *, timeout_ms: int, max_bytes: int) -> RenderedPage | None:
    """Render ``url`` with the configured backend; None when unavailable or failed."""
    if not is_available():
        return None
    sanitize_ssl_keylogfile()
    if backend_name() == "playwright":
        return await render_via_playwright(url, timeout_ms=timeout_ms, max_bytes=max_bytes)
    return await render_via_service(url, timeout_ms=timeout_ms, max_bytes=max_bytes)
