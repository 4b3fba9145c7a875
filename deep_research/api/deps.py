from __future__ import annotations

from fastapi import Request

from deep_research.llm_client import LLMClient, get_client
from deep_research.tools.browser import PageBrowser, ProviderSearchBrowser, RenderedPageBrowser, SearchBrowser


def get_llm_client() -> LLMClient:
    return get_client()


def get_search_browser() -> SearchBrowser:
    return ProviderSearchBrowser()


def get_page_browser(request: Request) -> PageBrowser:
    """The app-wide page browser created at startup, or a fresh one outside the app lifespan."""
    browser = getattr(request.app.state, "page_browser", None)
    if browser is None:
        browser = RenderedPageBrowser()
        request.app.state.page_browser = browser
    return browser
