from __future__ import annotations

from dataclasses import dataclass

from loguru import logger

from deep_research.config import settings
from deep_research.models.research import SearchOptions
from deep_research.tools import brave_search, tavily_search
from deep_research.tools.tavily_search import WebHit


@dataclass
class SearchResponse:
    results: list[WebHit]
    provider: str
    fallback_from: str | None = None
    fallback_reason: str | None = None


def available_providers() -> list[str]:
    providers: list[str] = []
    if settings.brave_api_key:
        providers.append("brave")
    if settings.tavily_api_key:
        providers.append("tavily")
    return providers


async def search(query: str, options: SearchOptions) -> SearchResponse:
    provider = settings.search_provider.lower().strip()
    use_fallback = settings.search_fallback_to_tavily and bool(settings.tavily_api_key)

    if provider == "tavily":
        return SearchResponse(results=await tavily_search.search(query, options), provider="tavily")

    if provider != "brave":
        raise ValueError(f"Unsupported SEARCH_PROVIDER: {settings.search_provider}")

    try:
        results = await brave_search.search(query, options)
    except Exception as e:
        if not use_fallback:
            raise
        logger.warning(f"Brave search failed, falling back to Tavily: {e}")
        reason = str(e)
    else:
        if results or not use_fallback:
            return SearchResponse(results=results, provider="brave")
        reason = "brave returned zero results"

    return SearchResponse(
        results=await tavily_search.search(query, options),
        provider="tavily",
        fallback_from="brave",
        fallback_reason=reason,
    )
