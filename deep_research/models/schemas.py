from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class DeepResearchConfig(BaseModel):
    """Per-run limits. Passed with each call, never held as shared state."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    max_sub_questions: int = Field(default=8, ge=1, alias="maxSubQuestions")
    max_searches_per_question: int = Field(default=3, ge=1, alias="maxSearchesPerQuestion")
    max_pages_to_fetch: int = Field(default=20, ge=0, alias="maxPagesToFetch")
    max_follow_up_searches: int = Field(default=5, ge=0, alias="maxFollowUpSearches")
    min_source_confidence: int = Field(default=60, ge=0, le=100, alias="minSourceConfidence")
    require_multiple_sources: bool = Field(default=True, alias="requireMultipleSources")
    timeout_ms: int = Field(default=120000, ge=0, alias="timeoutMs")


DEFAULT_CONFIG = DeepResearchConfig()


class PartialResearchConfig(BaseModel):
    """Partial config update accepted by the configure endpoint."""

    model_config = ConfigDict(populate_by_name=True)

    max_sub_questions: int | None = Field(default=None, ge=1, alias="maxSubQuestions")
    max_searches_per_question: int | None = Field(default=None, ge=1, alias="maxSearchesPerQuestion")
    max_pages_to_fetch: int | None = Field(default=None, ge=0, alias="maxPagesToFetch")
    max_follow_up_searches: int | None = Field(default=None, ge=0, alias="maxFollowUpSearches")
    min_source_confidence: int | None = Field(default=None, ge=0, le=100, alias="minSourceConfidence")
    require_multiple_sources: bool | None = Field(default=None, alias="requireMultipleSources")
    timeout_ms: int | None = Field(default=None, ge=0, alias="timeoutMs")


# --- Requests ---


class ResearchRequest(BaseModel):
    prompt: str = Field(min_length=1)
    agent_id: str = Field(default="default", alias="agentId")
    config: PartialResearchConfig | None = None

    model_config = ConfigDict(populate_by_name=True)

    def resolved_config(self) -> DeepResearchConfig:
        if self.config is None:
            return DEFAULT_CONFIG
        overrides = self.config.model_dump(exclude_none=True)
        return DEFAULT_CONFIG.model_copy(update=overrides)


# --- Responses ---


class ResearchResponse(BaseModel):
    success: bool
    result: dict[str, Any] | None = None
    error: str | None = None


class ConfigureResponse(BaseModel):
    success: bool
    error: str | None = None
