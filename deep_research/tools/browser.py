"""Browser collaborator: search execution and rendered page fetch.

The research agents only see the two protocols below. The default adapters
delegate search to the configured web-search provider and render pages with
headless Chromium (Playwright) when it is installed, falling back to a plain
HTTP GET.
"""
from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Protocol

import httpx
from loguru import logger

from deep_research.config import settings
from deep_research.errors import BrowserUnavailableError
from deep_research.models.research import SearchOptions, SearchResult
from deep_research.tools import search_provider
from deep_research.tools.web_utils import filter_video_results, is_valid_url

USER_AGENT = "Mozilla/5.0 (compatible; DeepResearchBot/1.0)"


@dataclass(slots=True)
class RenderedPage:
    url: str
    final_url: str
    title: str
    html: str
    text: str = ""
    status_code: int = 200


class SearchBrowser(Protocol):
    async def execute_search(self, query: str, options: SearchOptions) -> list[SearchResult]: ...


class PageBrowser(Protocol):
    async def fetch_page(self, url: str) -> RenderedPage: ...


class ProviderSearchBrowser:
    """Runs searches through the Brave/Tavily provider chain."""

    async def execute_search(self, query: str, options: SearchOptions) -> list[SearchResult]:
        if not search_provider.available_providers():
            raise BrowserUnavailableError("No search provider is configured (set BRAVE_API_KEY or TAVILY_API_KEY)")

        response = await search_provider.search(query, options)
        if response.fallback_from:
            logger.info(
                f"Search for {query!r} served by {response.provider} "
                f"(fallback from {response.fallback_from}: {response.fallback_reason})"
            )

        hits = [hit for hit in response.results if is_valid_url(hit.url)]
        hits = filter_video_results(hits)
        return [
            SearchResult(
                url=hit.url,
                title=hit.title,
                snippet=hit.content,
                position=idx + 1,
                query=query,
            )
            for idx, hit in enumerate(hits)
        ]


PageFetcher = Callable[[str], Awaitable[RenderedPage]]


class RenderedPageBrowser:
    """Fetches pages through a provider chain: Playwright, then httpx."""

    def __init__(
        self,
        *,
        provider: str | None = None,
        timeout_ms: int | None = None,
        settle_ms: int | None = None,
    ):
        self.provider = (provider or settings.page_fetch_provider).lower().strip() or "auto"
        self.timeout_ms = timeout_ms if timeout_ms is not None else settings.page_timeout_ms
        self.settle_ms = settle_ms if settle_ms is not None else settings.page_settle_ms
        self._playwright: Any = None
        self._browser: Any = None
        self._launch_lock = asyncio.Lock()

    def _attempts(self) -> list[PageFetcher]:
        attempts: list[PageFetcher] = []
        if self.provider in {"playwright", "auto"}:
            attempts.append(self._fetch_with_playwright)
        if self.provider in {"httpx", "auto"}:
            attempts.append(self._fetch_with_httpx)
        if not attempts:
            raise BrowserUnavailableError(f"Unsupported PAGE_FETCH_PROVIDER: {self.provider}")
        return attempts

    async def fetch_page(self, url: str) -> RenderedPage:
        last_error: Exception | None = None
        for fetch_fn in self._attempts():
            try:
                return await fetch_fn(url)
            except BrowserUnavailableError as exc:
                if self.provider != "auto":
                    raise
                last_error = exc
            except Exception as exc:
                last_error = exc
                logger.debug(f"{fetch_fn.__name__} failed for {url}: {exc}")
        raise RuntimeError(f"No page provider succeeded for {url}: {last_error}")

    async def _ensure_browser(self) -> Any:
        if self._browser is not None:
            return self._browser
        async with self._launch_lock:
            if self._browser is not None:
                return self._browser
            try:
                from playwright.async_api import async_playwright
            except Exception as exc:  # pragma: no cover - depends on optional package
                raise BrowserUnavailableError("Playwright is not installed") from exc
            try:
                self._playwright = await async_playwright().start()
                self._browser = await self._playwright.chromium.launch(headless=True)
            except Exception as exc:  # pragma: no cover - integration behavior
                raise BrowserUnavailableError(f"Chromium could not be launched: {exc}") from exc
            logger.info("Launched headless Chromium for page rendering")
            return self._browser

    async def _fetch_with_playwright(self, url: str) -> RenderedPage:
        browser = await self._ensure_browser()
        context = await browser.new_context(user_agent=USER_AGENT)
        try:
            page = await context.new_page()
            response = await page.goto(url, wait_until="domcontentloaded", timeout=self.timeout_ms)
            if self.settle_ms > 0:
                await page.wait_for_timeout(self.settle_ms)
            html = await page.content()
            text = await page.inner_text("body")
            return RenderedPage(
                url=url,
                final_url=page.url,
                title=await page.title(),
                html=html,
                text=text,
                status_code=int(response.status) if response is not None else 200,
            )
        finally:
            await context.close()

    async def _fetch_with_httpx(self, url: str) -> RenderedPage:
        timeout_seconds = max(self.timeout_ms / 1000.0, 1.0)
        async with httpx.AsyncClient(timeout=timeout_seconds, follow_redirects=True) as client:
            response = await client.get(url, headers={"User-Agent": USER_AGENT})
            response.raise_for_status()
        return RenderedPage(
            url=url,
            final_url=str(response.url),
            title="",
            html=response.text,
            status_code=int(response.status_code),
        )

    async def aclose(self) -> None:
        if self._browser is not None:
            await self._browser.close()
            self._browser = None
        if self._playwright is not None:
            await self._playwright.stop()
            self._playwright = None
