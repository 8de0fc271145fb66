"""Pydantic Settings: loads configuration from environment variables."""

from functools import lru_cache
from typing import Literal

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    model_config = {"env_file": ".env", "extra": "ignore"}

    api_key: str = ""

    firecrawl_api_key: str = ""
    firecrawl_api_url: str = ""

    llm_provider: Literal["openai", "gemini"] = "openai"
    openai_api_key: str = ""
    gemini_api_key: str = Field(
        default="",
        validation_alias=AliasChoices("gemini_api_key", "google_api_key"),
    )
    openai_model: str = "gpt-4o"
    gemini_model: str = "gemini-2.0-flash"

    tavus_api_key: str = ""
    tavus_api_url: str = "https://tavusapi.com"
    tavus_replica_id: str = ""
    tavus_persona_id: str = ""
    tavus_enable_vision: bool = True

    tavus_timeout_seconds: float = 30.0
    scrape_timeout_seconds: float = 60.0
    summarize_timeout_seconds: float = 60.0

    default_max_pages: int = 10
    page_char_budget: int = 4000
    summary_char_budget: int = 16000
    max_combined_context_chars: int = 200_000

    redis_url: str = "redis://localhost:6379"
    poll_interval_seconds: float = 1.5
    log_level: str = "INFO"


@lru_cache
def get_settings() -> Settings:
    return Settings()


def missing_credentials(settings: Settings) -> list[str]:
    """Return the env var names that still need a value for the configured provider."""
    missing: list[str] = []
    if not settings.firecrawl_api_key:
        missing.append("FIRECRAWL_API_KEY")
    if settings.llm_provider == "openai" and not settings.openai_api_key:
        missing.append("OPENAI_API_KEY")
    if settings.llm_provider == "gemini" and not settings.gemini_api_key:
        missing.append("GEMINI_API_KEY")
    if not settings.tavus_api_key:
        missing.append("TAVUS_API_KEY")
    if not settings.tavus_replica_id:
        missing.append("TAVUS_REPLICA_ID")
    return missing
