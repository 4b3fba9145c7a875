from __future__ import annotations

from fastapi import APIRouter, Depends

from deep_research.agents.orchestrator import DeepResearchEngine
from deep_research.api.deps import get_llm_client, get_page_browser, get_search_browser
from deep_research.llm_client import LLMClient
from deep_research.models.schemas import (
    ConfigureResponse,
    PartialResearchConfig,
    ResearchRequest,
    ResearchResponse,
)
from deep_research.services import logger as log_service
from deep_research.tools.browser import PageBrowser, SearchBrowser

router = APIRouter(prefix="/api/research", tags=["research"])


@router.post("", response_model=ResearchResponse)
async def run_research(
    request: ResearchRequest,
    llm: LLMClient = Depends(get_llm_client),
    search_browser: SearchBrowser = Depends(get_search_browser),
    page_browser: PageBrowser = Depends(get_page_browser),
):
    """Run one research query to completion. Failures come back as success=false."""
    try:
        engine = DeepResearchEngine(
            llm,
            search_browser,
            page_browser,
            config=request.resolved_config(),
            agent_id=request.agent_id,
        )
        result = await engine.research(request.prompt)
    except Exception as e:
        log_service.log_event(
            event_type="research_failed",
            message="Research run failed",
            agent_id=request.agent_id,
            error=str(e),
        )
        return ResearchResponse(success=False, error=str(e))
    return ResearchResponse(success=True, result=result.to_dict())


@router.post("/configure", response_model=ConfigureResponse)
async def configure_research(update: PartialResearchConfig):
    """Accepted for compatibility; configuration travels with each research request."""
    log_service.log_event(
        event_type="research_configure",
        message="Ignoring configuration update; config is per request",
        fields=sorted(update.model_dump(exclude_none=True)),
    )
    return ConfigureResponse(success=True)
