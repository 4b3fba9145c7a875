"""OpenRouter-backed completion client for planning, extraction and synthesis."""
from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Any, Protocol

from deep_research.config import settings
from deep_research.errors import LLMResponseError
from deep_research.services import logger as log_service


@dataclass(slots=True)
class Completion:
    content: str
    input_tokens: int = 0
    output_tokens: int = 0


class LLMClient(Protocol):
    async def complete(
        self,
        *,
        model: str,
        messages: list[dict[str, Any]],
        max_tokens: int,
        temperature: float,
        caller: str = "research",
    ) -> Completion: ...


class OpenRouterCompletionClient:
    """Single non-streaming chat completion over the OpenAI-compatible SDK."""

    def __init__(self, openai_client: Any):
        self._client = openai_client

    @staticmethod
    def _temperature_for_model(model: str, temperature: float) -> float:
        # Some OpenAI GPT-5-compatible gateways reject anything but the default.
        if "gpt-5" in (model or "").lower():
            return 1
        return temperature

    @staticmethod
    def _to_openai_messages(messages: list[dict[str, Any]]) -> list[dict[str, Any]]:
        mapped: list[dict[str, Any]] = []
        for message in messages:
            role = message.get("role", "user")
            if role not in ("system", "user", "assistant"):
                role = "user"
            content = message.get("content", "")
            if not isinstance(content, str):
                content = str(content)
            mapped.append({"role": role, "content": content})
        return mapped

    async def complete(
        self,
        *,
        model: str,
        messages: list[dict[str, Any]],
        max_tokens: int,
        temperature: float,
        caller: str = "research",
    ) -> Completion:
        t0 = time.monotonic()
        try:
            response = await self._client.chat.completions.create(
                model=model,
                messages=self._to_openai_messages(messages),
                max_tokens=max_tokens,
                temperature=self._temperature_for_model(model, temperature),
            )
        except Exception as e:
            log_service.log_llm_call(
                model=model,
                caller=caller,
                duration_ms=int((time.monotonic() - t0) * 1000),
                status="error",
                error=str(e),
            )
            raise LLMResponseError(f"Completion failed for {caller}: {e}") from e

        elapsed_ms = int((time.monotonic() - t0) * 1000)
        choices = getattr(response, "choices", None) or []
        if not choices:
            log_service.log_llm_call(
                model=model, caller=caller, duration_ms=elapsed_ms, status="error", error="no choices"
            )
            raise LLMResponseError(f"Completion for {caller} returned no choices")

        text = getattr(choices[0].message, "content", None) or ""
        usage = getattr(response, "usage", None)
        input_tokens = getattr(usage, "prompt_tokens", 0) or 0
        output_tokens = getattr(usage, "completion_tokens", 0) or 0
        log_service.log_llm_call(
            model=model,
            caller=caller,
            duration_ms=elapsed_ms,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
        )
        return Completion(content=text, input_tokens=input_tokens, output_tokens=output_tokens)


def get_client() -> OpenRouterCompletionClient:
    """Build a completion client via the OpenAI-compatible SDK."""
    from openai import AsyncOpenAI

    base_url = settings.openrouter_base_url.strip() or "https://openrouter.ai/api/v1"
    openai_client = AsyncOpenAI(
        api_key=settings.openrouter_api_key,
        base_url=base_url,
    )
    return OpenRouterCompletionClient(openai_client)


def get_model() -> str:
    """Get the active OpenRouter model id."""
    if settings.openrouter_model:
        return settings.openrouter_model
    return settings.default_model


def model_for(role: str) -> str:
    """Resolve a per-role override (planner, synthesis) falling back to the active model."""
    override = getattr(settings, f"{role}_model", "")
    if isinstance(override, str) and override.strip():
        return override.strip()
    return get_model()
