"""External API clients: Firecrawl, the LLM provider and Tavus."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import TYPE_CHECKING

from .firecrawl import ContentSource, FirecrawlContentSource
from .summarizer import LLMSummarizer, Summarizer, resolve_model
from .tavus import (
    AvatarClient,
    Conversation,
    ConversationParams,
    PersonaParams,
    TavusClient,
)

if TYPE_CHECKING:
    from src.config import Settings

__all__ = [
    "AvatarClient",
    "Clients",
    "ContentSource",
    "Conversation",
    "ConversationParams",
    "FirecrawlContentSource",
    "LLMSummarizer",
    "PersonaParams",
    "Summarizer",
    "TavusClient",
    "build_default_clients",
]

logger = logging.getLogger(__name__)


@dataclass
class Clients:
    content_source: ContentSource
    summarizer: Summarizer
    avatar: TavusClient


def _export_llm_key(settings: Settings) -> None:
    """PydanticAI reads provider keys from the environment, not from Settings."""
    if settings.llm_provider == "openai" and settings.openai_api_key:
        os.environ.setdefault("OPENAI_API_KEY", settings.openai_api_key)
    elif settings.llm_provider == "gemini" and settings.gemini_api_key:
        # Older PydanticAI Gemini models read GEMINI_API_KEY, the google provider GOOGLE_API_KEY.
        os.environ.setdefault("GEMINI_API_KEY", settings.gemini_api_key)
        os.environ.setdefault("GOOGLE_API_KEY", settings.gemini_api_key)


def build_default_clients(settings: Settings) -> Clients:
    """Build the configured Firecrawl, LLM and Tavus client instances."""
    _export_llm_key(settings)
    model_name = (
        settings.openai_model if settings.llm_provider == "openai" else settings.gemini_model
    )
    model = resolve_model(settings.llm_provider, model_name)
    logger.info(
        "external clients configured",
        extra={"llm_model": model, "tavus_api_url": settings.tavus_api_url},
    )
    return Clients(
        content_source=FirecrawlContentSource(
            api_key=settings.firecrawl_api_key,
            api_url=settings.firecrawl_api_url,
            timeout=settings.scrape_timeout_seconds,
        ),
        summarizer=LLMSummarizer(model, timeout=settings.summarize_timeout_seconds),
        avatar=TavusClient(
            api_key=settings.tavus_api_key,
            api_url=settings.tavus_api_url,
            timeout=settings.tavus_timeout_seconds,
        ),
    )
