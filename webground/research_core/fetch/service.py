"""Page fetching through an ordered fallback chain.

Tiers run in order: direct -> direct_retry -> headless -> reader -> unlocker.
A tier only runs when its trigger matches the current state, and the chain
stops as soon as the state is usable (HTTP 200 with at least 80 characters
of text). Every tier failure is logged and leaves the state untouched.
"""
from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from typing import Callable, Protocol

import httpx
from loguru import logger

from webground.config import settings
from webground.models.pipeline import FetchTier, PageFetchProgress, PageFetchResult, SerpResult
from webground.research_core.extract.service import (
    ExtractedPage,
    append_structured,
    compute_js_likelihood,
    extract_page,
    normalize_paragraphs,
)
from webground.services.cache_store import PageCache
from webground.services.http import (
    CHROME_USER_AGENT,
    FIREFOX_USER_AGENT,
    browser_headers,
    sanitize_ssl_keylogfile,
)
from webground.tools import headless_render, reader_proxy, unlocker_proxy
from webground.tools.url_utils import domain_of

BLOCKED_STATUSES = frozenset({403, 429, 503})
USABLE_TEXT_LENGTH = 80
SHORT_BODY_BYTES = 200
RETRY_PAUSE_S = 0.35
# wall-clock allowance on top of the page timeout before a tier is abandoned
TIER_GRACE_S = 1.0
JS_SHELL_THRESHOLD = 2


@dataclass(slots=True)
class FetchBudget:
    timeout_ms: int
    max_bytes: int


@dataclass(slots=True)
class FetchState:
    url: str
    html: str = ""
    text: str = ""
    status: int = 0
    truncated: bool = False
    tier: FetchTier = "none"
    unlocker_calls: int = 0
    attempted: list[str] = field(default_factory=list)
    extracted: ExtractedPage | None = None

    @property
    def usable(self) -> bool:
        return self.status == 200 and len(self.text) >= USABLE_TEXT_LENGTH

    @property
    def js_likelihood(self) -> int:
        return compute_js_likelihood(self.html)


@dataclass(slots=True)
class FetchAttempt:
    tier: FetchTier
    status: int
    text: str
    html: str | None = None  # None keeps the HTML already held by the state
    truncated: bool = False
    extracted: ExtractedPage | None = None


def _is_better(attempt: FetchAttempt, state: FetchState) -> bool:
    if attempt.status == 200 and state.status != 200:
        return True
    if attempt.status == 200:
        return len(attempt.text) > len(state.text)
    # neither is usable: the most recent status is the effective one
    return state.status != 200


def _adopt(state: FetchState, attempt: FetchAttempt) -> None:
    if attempt.html is not None:
        state.html = attempt.html
        state.truncated = attempt.truncated
        state.extracted = attempt.extracted
    state.text = attempt.text
    state.status = attempt.status
    state.tier = attempt.tier


class FetchStrategy(Protocol):
    name: FetchTier

    def should_run(self, state: FetchState) -> bool: ...

    async def run(self, state: FetchState, budget: FetchBudget) -> FetchAttempt | None: ...


class DirectFetch:
    """Streamed GET with browser headers; the byte cap stops the read."""

    name: FetchTier = "direct"
    user_agent = CHROME_USER_AGENT

    def __init__(self, transport: httpx.AsyncBaseTransport | None = None):
        self.transport = transport

    def should_run(self, state: FetchState) -> bool:
        return state.tier == "none"

    async def run(self, state: FetchState, budget: FetchBudget) -> FetchAttempt | None:
        html, status, truncated = await self._get(state.url, budget)
        extracted = await asyncio.to_thread(extract_page, html)
        return FetchAttempt(
            tier=self.name,
            status=status,
            html=html,
            text=extracted.text,
            truncated=truncated,
            extracted=extracted,
        )

    async def _get(self, url: str, budget: FetchBudget) -> tuple[str, int, bool]:
        timeout_s = max(budget.timeout_ms / 1000.0, 0.1)
        async with httpx.AsyncClient(
            timeout=timeout_s,
            follow_redirects=True,
            transport=self.transport,
        ) as client:
            async with client.stream("GET", url, headers=browser_headers(self.user_agent)) as response:
                if not response.is_success:
                    return "", response.status_code, False
                parts: list[bytes] = []
                received = 0
                truncated = False
                async for part in response.aiter_bytes():
                    room = budget.max_bytes - received
                    if len(part) > room:
                        parts.append(part[: max(room, 0)])
                        truncated = True
                        break
                    parts.append(part)
                    received += len(part)
                encoding = response.encoding or "utf-8"
                return b"".join(parts).decode(encoding, errors="replace"), response.status_code, truncated


class RetryFetch(DirectFetch):
    """Second direct attempt with a Firefox identity after a short pause."""

    name: FetchTier = "direct_retry"
    user_agent = FIREFOX_USER_AGENT

    def __init__(self, transport: httpx.AsyncBaseTransport | None = None, pause_s: float = RETRY_PAUSE_S):
        super().__init__(transport)
        self.pause_s = pause_s
        self.grace_s = TIER_GRACE_S + pause_s

    def should_run(self, state: FetchState) -> bool:
        if state.status in BLOCKED_STATUSES:
            return True
        return state.status == 200 and len(state.html.encode("utf-8")) < SHORT_BODY_BYTES

    async def run(self, state: FetchState, budget: FetchBudget) -> FetchAttempt | None:
        if self.pause_s > 0:
            await asyncio.sleep(self.pause_s)
        logger.debug(f"Fetch retry for {state.url} (status={state.status})")
        return await DirectFetch.run(self, state, budget)


class HeadlessFetch:
    name: FetchTier = "headless"
    grace_s = 6.0

    def should_run(self, state: FetchState) -> bool:
        if not headless_render.is_available():
            return False
        if state.status in BLOCKED_STATUSES:
            return True
        return (
            state.status == 200
            and len(state.text) < USABLE_TEXT_LENGTH
            and state.js_likelihood >= JS_SHELL_THRESHOLD
        )

    async def run(self, state: FetchState, budget: FetchBudget) -> FetchAttempt | None:
        rendered = await headless_render.render(
            state.url,
            timeout_ms=budget.timeout_ms,
            max_bytes=budget.max_bytes,
        )
        if rendered is None or not (rendered.html or rendered.text):
            return None
        rendered_text = normalize_paragraphs(rendered.text)
        extracted = await asyncio.to_thread(extract_page, rendered.html)
        html_text = extracted.text
        text = rendered_text if len(rendered_text) >= len(html_text) else html_text
        if not text:
            return None
        logger.debug(f"Headless render used for {state.url} ({len(text)} chars)")
        return FetchAttempt(
            tier=self.name,
            status=200,
            text=text,
            html=rendered.html or None,
            truncated=len(rendered.html.encode("utf-8")) >= budget.max_bytes,
            extracted=extracted if rendered.html else None,
        )


class ReaderFetch:
    name: FetchTier = "reader"

    def should_run(self, state: FetchState) -> bool:
        return (
            settings.use_reader_fallback
            and state.status == 200
            and len(state.text) < USABLE_TEXT_LENGTH
            and state.js_likelihood < JS_SHELL_THRESHOLD
        )

    async def run(self, state: FetchState, budget: FetchBudget) -> FetchAttempt | None:
        text = normalize_paragraphs(await reader_proxy.fetch_text(state.url, timeout_ms=budget.timeout_ms))
        if len(text) <= len(state.text):
            if len(state.html) > 2000:
                logger.debug(f"JS shell or block page suspected: {state.url}")
            return None
        logger.debug(f"Reader fallback used for {state.url} ({len(text)} chars)")
        return FetchAttempt(tier=self.name, status=200, text=text)


class UnlockerFetch:
    name: FetchTier = "unlocker"

    def should_run(self, state: FetchState) -> bool:
        return unlocker_proxy.is_configured() and (
            state.status in BLOCKED_STATUSES or state.status == 0
        )

    async def run(self, state: FetchState, budget: FetchBudget) -> FetchAttempt | None:
        state.unlocker_calls += 1
        html = await unlocker_proxy.fetch_html(state.url, timeout_ms=budget.timeout_ms)
        if not html:
            return None
        logger.info(f"Web Unlocker used for {state.url}")
        raw = html.encode("utf-8")
        truncated = len(raw) > budget.max_bytes
        if truncated:
            html = raw[: budget.max_bytes].decode("utf-8", errors="ignore")
        extracted = await asyncio.to_thread(extract_page, html)
        return FetchAttempt(
            tier=self.name,
            status=200,
            text=extracted.text,
            html=html,
            truncated=truncated,
            extracted=extracted,
        )


def default_strategies(transport: httpx.AsyncBaseTransport | None = None) -> list[FetchStrategy]:
    return [
        DirectFetch(transport),
        RetryFetch(transport),
        HeadlessFetch(),
        ReaderFetch(),
        UnlockerFetch(),
    ]


class FetchProgress:
    """Counts finished pages for one run and notifies an optional observer."""

    def __init__(self, callback: Callable[[PageFetchProgress], None] | None = None):
        self.callback = callback
        self.searched = 0

    def page_done(self) -> None:
        self.searched += 1
        if self.callback is None:
            return
        try:
            self.callback(PageFetchProgress(searched=self.searched))
        except Exception as exc:
            logger.warning(f"Progress callback failed: {exc}")


@dataclass(slots=True)
class FetchBatch:
    pages: list[PageFetchResult] = field(default_factory=list)
    fetches: int = 0
    cache_hits: int = 0
    unlocker_calls: int = 0


class PageFetchService:
    def __init__(
        self,
        cache: PageCache,
        *,
        strategies: list[FetchStrategy] | None = None,
        concurrency: int | None = None,
    ):
        self.cache = cache
        self.strategies = strategies if strategies is not None else default_strategies()
        self.concurrency = max(int(concurrency or settings.fetch_concurrency), 1)

    async def run_chain(self, url: str, budget: FetchBudget) -> FetchState:
        state = FetchState(url=url)
        for strategy in self.strategies:
            if state.usable:
                break
            if not strategy.should_run(state):
                continue
            state.attempted.append(strategy.name)
            try:
                attempt = await asyncio.wait_for(
                    strategy.run(state, budget),
                    timeout=budget.timeout_ms / 1000.0 + getattr(strategy, "grace_s", TIER_GRACE_S),
                )
            except asyncio.TimeoutError:
                logger.warning(f"Fetch tier {strategy.name} timed out for {url}")
                continue
            except Exception as exc:
                logger.warning(f"Fetch tier {strategy.name} failed for {url}: {exc}")
                continue
            if attempt is not None and _is_better(attempt, state):
                _adopt(state, attempt)
        return state

    async def fetch_page(self, result: SerpResult, budget: FetchBudget) -> PageFetchResult:
        cached = await self.cache.load(result.url)
        if cached is not None:
            logger.debug(f"Page cache hit: {result.url}")
            extracted = await asyncio.to_thread(extract_page, cached.html)
            return PageFetchResult(
                url=result.url,
                html=cached.html,
                text=cached.text,
                table_blocks=extracted.table_blocks,
                list_blocks=extracted.list_blocks,
                status=cached.status,
                truncated=cached.truncated,
                html_length=len(cached.html),
                title=result.title or extracted.title,
                domain=result.domain or domain_of(result.url),
                position=result.position,
                tier="cache",
                from_cache=True,
            )

        started = time.monotonic()
        try:
            state = await self.run_chain(result.url, budget)
        except Exception as exc:
            logger.warning(f"Fetch page failed for {result.url}: {exc}")
            state = FetchState(url=result.url)

        extracted = state.extracted
        if extracted is None:
            extracted = await asyncio.to_thread(extract_page, state.html)
        text = append_structured(state.text, extracted.structured)
        page = PageFetchResult(
            url=result.url,
            html=state.html,
            text=text,
            table_blocks=extracted.table_blocks,
            list_blocks=extracted.list_blocks,
            status=state.status,
            truncated=state.truncated,
            html_length=len(state.html),
            title=result.title or extracted.title,
            domain=result.domain or domain_of(result.url),
            position=result.position,
            tier=state.tier,
            unlocker_calls=state.unlocker_calls,
        )
        if page.text:
            await self.cache.save(
                result.url,
                status=page.status,
                truncated=page.truncated,
                html=page.html,
                text=page.text,
            )
        logger.debug(
            f"Page extracted: {result.url} status={page.status} tier={page.tier} "
            f"chars={len(page.text)} html={page.html_length} "
            f"tiers={'>'.join(state.attempted)} ms={int((time.monotonic() - started) * 1000)}"
        )
        return page

    async def fetch_pages(
        self,
        results: list[SerpResult],
        *,
        budget: FetchBudget,
        progress: FetchProgress | None = None,
    ) -> FetchBatch:
        """Fetch every result concurrently; output order matches input order."""
        sanitize_ssl_keylogfile()
        semaphore = asyncio.Semaphore(self.concurrency)

        async def one(result: SerpResult) -> PageFetchResult:
            async with semaphore:
                try:
                    page = await self.fetch_page(result, budget)
                except Exception as exc:
                    logger.warning(f"Fetch page failed for {result.url}: {exc}")
                    page = PageFetchResult(
                        url=result.url,
                        title=result.title,
                        domain=result.domain or domain_of(result.url),
                        position=result.position,
                    )
            if progress is not None:
                progress.page_done()
            return page

        pages = list(await asyncio.gather(*(one(r) for r in results)))
        return FetchBatch(
            pages=pages,
            fetches=sum(1 for p in pages if not p.from_cache),
            cache_hits=sum(1 for p in pages if p.from_cache),
            unlocker_calls=sum(p.unlocker_calls for p in pages),
        )
