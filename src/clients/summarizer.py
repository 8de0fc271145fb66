"""LLM summarization via PydanticAI (OpenAI or Gemini)."""

from __future__ import annotations

import asyncio
import logging
from typing import Protocol

from pydantic_ai import Agent

from src.errors import UpstreamError, UpstreamTimeoutError

logger = logging.getLogger(__name__)

# PydanticAI model-id prefix per configured provider.
PROVIDER_PREFIXES = {
    "openai": "openai",
    "gemini": "google-gla",
}


class Summarizer(Protocol):
    """Protocol for summarizers. Callers enforce the input-length budget."""

    async def summarize(self, text: str, instructions: str) -> str: ...


def resolve_model(provider: str, model_name: str) -> str:
    """Build a ``provider:model`` id, e.g. ``google-gla:gemini-2.0-flash``."""
    try:
        prefix = PROVIDER_PREFIXES[provider]
    except KeyError:
        raise ValueError(f"Unsupported LLM provider: {provider!r}") from None
    return f"{prefix}:{model_name}"


class LLMSummarizer:
    """Sends text plus instructions to the configured model and returns its reply."""

    def __init__(self, model: str, timeout: float = 60.0) -> None:
        self._model = model
        self._timeout = timeout
        self._service = model.split(":", 1)[0]

    async def summarize(self, text: str, instructions: str) -> str:
        try:
            agent = Agent(self._model, system_prompt=instructions)
            result = await asyncio.wait_for(agent.run(text), timeout=self._timeout)
        except asyncio.TimeoutError as exc:
            logger.warning(
                "summarization timed out",
                extra={"model": self._model, "timeout": self._timeout},
            )
            raise UpstreamTimeoutError(self._service, self._timeout) from exc
        except Exception as exc:
            logger.warning(
                "summarization failed", extra={"model": self._model}, exc_info=True
            )
            raise UpstreamError(
                self._service, str(exc) or type(exc).__name__, getattr(exc, "status_code", None)
            ) from exc

        output = result.output
        usage = result.usage()
        logger.debug(
            "summary generated",
            extra={
                "model": self._model,
                "input_chars": len(text),
                "output_chars": len(output),
                "input_tokens": usage.input_tokens or 0,
                "output_tokens": usage.output_tokens or 0,
            },
        )
        return output
