from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # OpenRouter
    openrouter_api_key: str = ""
    openrouter_base_url: str = "https://openrouter.ai/api/v1"
    default_model: str = "google/gemini-2.5-flash"
    openrouter_model: str = ""
    planner_model: str = ""  # optional override for decomposition only
    synthesis_model: str = ""  # optional override for the final answer only

    # Search provider
    search_provider: str = "brave"  # brave | tavily
    brave_api_key: str = ""
    tavily_api_key: str = ""
    search_fallback_to_tavily: bool = True
    search_time_range: str = "month"  # applied to recency-sensitive queries

    # Page fetching
    page_fetch_provider: str = "auto"  # playwright | httpx | auto
    page_timeout_ms: int = 8000
    page_settle_ms: int = 1000
    page_retry_wait_ms: int = 1500
    page_min_word_count: int = 50
    page_max_chars: int = 8000
    page_cache_ttl_seconds: int = 300

    # Bounded concurrency against the shared browser / LLM
    search_max_concurrent: int = 3
    page_max_concurrent: int = 5
    evaluation_max_concurrent: int = 5

    # LLM retries
    llm_max_retries: int = 2
    llm_retry_wait_ms: int = 500

    # App
    cors_origins: str = "http://localhost:3000"
    app_log_level: str = "INFO"
    noisy_log_level: str = "WARNING"

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore",
    }

    @property
    def cors_origin_list(self) -> list[str]:
        return [o.strip() for o in self.cors_origins.split(",")]


settings = Settings()
