"""Combines finished site contexts into one Tavus conversation."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Iterable

from src.clients.tavus import AvatarClient, Conversation, ConversationParams, PersonaParams
from src.errors import (
    ConcurrencyLimitError,
    ContextTooLargeError,
    InvalidInputError,
    JobNotFoundError,
    JobsNotReadyError,
    NoUsableContentError,
    SessionCreationError,
    UpstreamError,
)
from src.pipeline.models import JobStatus, ScrapeJob, SessionHandle
from src.pipeline.prompts import (
    CONTEXTLESS_CONVERSATION_CONTEXT,
    CONTEXTLESS_GREETING,
    format_greeting,
    format_persona_system_prompt,
)
from src.pipeline.urls import sources_label
from src.store.redis import JobStore

logger = logging.getLogger(__name__)

CONTEXT_SEPARATOR = "\n\n---\n\n"


@dataclass(frozen=True)
class PersonaOutcome:
    """Result of the persona step: an id on success, the failure reason otherwise."""

    persona_id: str | None = None
    error: str | None = None


@dataclass(frozen=True)
class CombinedContext:
    text: str
    sources: list[str]
    failed_sources: list[str]


class SessionAssembler:
    """Reads finished jobs and starts conversations. Never writes jobs or contexts."""

    def __init__(
        self,
        store: JobStore,
        avatar: AvatarClient,
        *,
        replica_id: str,
        default_persona_id: str = "",
        enable_vision: bool = True,
        max_context_chars: int = 200_000,
    ) -> None:
        self._store = store
        self._avatar = avatar
        self._replica_id = replica_id
        self._default_persona_id = default_persona_id
        self._enable_vision = enable_vision
        self._max_context_chars = max_context_chars

    async def _load_terminal_jobs(self, job_ids: list[str]) -> list[ScrapeJob]:
        jobs: list[ScrapeJob] = []
        missing: list[str] = []
        for job_id in job_ids:
            job = await self._store.get_job(job_id)
            if job is None:
                missing.append(job_id)
            else:
                jobs.append(job)
        if missing:
            raise JobNotFoundError(missing)
        pending = [j.id for j in jobs if not j.is_terminal]
        if pending:
            raise JobsNotReadyError(pending)
        return jobs

    async def build_combined_context(self, job_ids: Iterable[str]) -> CombinedContext:
        """Concatenate the context of every completed job, each under its source URL."""
        jobs = await self._load_terminal_jobs(list(job_ids))
        blocks: list[str] = []
        sources: list[str] = []
        for job in jobs:
            if job.status != JobStatus.COMPLETED or not job.final_context:
                continue
            blocks.append(f"Source: {job.source_url}\n\n{job.final_context}")
            sources.append(job.source_url)
        failed = [j.source_url for j in jobs if j.status == JobStatus.ERROR]
        return CombinedContext(text=CONTEXT_SEPARATOR.join(blocks), sources=sources, failed_sources=failed)

    async def assemble_session(
        self,
        job_ids: Iterable[str],
        allow_contextless: bool = True,
    ) -> SessionHandle:
        """Create a persona grounded in the jobs' contexts and start a conversation.

        A failed persona step downgrades to a conversation without a persona.
        When no job completed, a contextless conversation is started unless
        *allow_contextless* is false, in which case NoUsableContentError is raised.
        """
        job_ids = list(job_ids)
        if not job_ids:
            raise InvalidInputError("At least one job id is required")

        combined = await self.build_combined_context(job_ids)
        if combined.failed_sources:
            logger.info(
                "skipping failed sources",
                extra={"failed_sources": combined.failed_sources},
            )

        if not combined.sources:
            if not allow_contextless:
                raise NoUsableContentError("Every job in the requested set ended in error")
            logger.warning("no usable content, starting contextless session", extra={"job_ids": job_ids})
            conversation = await self._create_conversation(
                ConversationParams(
                    replica_id=self._replica_id,
                    persona_id=self._default_persona_id or None,
                    conversation_name="Chat with AI avatar",
                    conversational_context=CONTEXTLESS_CONVERSATION_CONTEXT,
                    custom_greeting=CONTEXTLESS_GREETING,
                )
            )
            return SessionHandle(
                conversation_id=conversation.conversation_id,
                conversation_url=conversation.conversation_url,
                persona_id=self._default_persona_id or None,
            )

        if len(combined.text) > self._max_context_chars:
            raise ContextTooLargeError(len(combined.text), self._max_context_chars)

        label = sources_label(combined.sources)
        greeting = format_greeting(label)
        outcome = await self._create_persona(label, combined, greeting)
        conversation = await self._create_conversation(
            ConversationParams(
                replica_id=self._replica_id,
                persona_id=outcome.persona_id,
                conversation_name=f"Chat about {label}",
                # Without a persona the grounding has to travel with the conversation.
                conversational_context=None if outcome.persona_id else combined.text,
                custom_greeting=greeting,
            )
        )
        logger.info(
            "session assembled",
            extra={
                "conversation_id": conversation.conversation_id,
                "persona_id": outcome.persona_id,
                "sources": combined.sources,
                "context_chars": len(combined.text),
            },
        )
        return SessionHandle(
            conversation_id=conversation.conversation_id,
            conversation_url=conversation.conversation_url,
            persona_id=outcome.persona_id,
            persona_error=outcome.error,
            sources=combined.sources,
        )

    async def _create_persona(
        self, label: str, combined: CombinedContext, greeting: str
    ) -> PersonaOutcome:
        params = PersonaParams(
            replica_id=self._replica_id,
            persona_name=f"{label} Expert",
            system_prompt=format_persona_system_prompt(label, combined.sources),
            context=combined.text,
            default_greeting=greeting,
            enable_vision=self._enable_vision,
        )
        try:
            persona_id = await self._avatar.create_persona(params)
        except UpstreamError as exc:
            logger.warning(
                "persona creation failed, continuing without persona",
                extra={"persona_name": params.persona_name, "error": str(exc)},
                exc_info=True,
            )
            return PersonaOutcome(error=str(exc))
        return PersonaOutcome(persona_id=persona_id)

    async def _create_conversation(self, params: ConversationParams) -> Conversation:
        try:
            return await self._avatar.create_conversation(params)
        except ConcurrencyLimitError:
            raise
        except UpstreamError as exc:
            raise SessionCreationError(f"Could not start conversation: {exc}") from exc

    async def get_session(self, conversation_id: str) -> dict[str, Any]:
        """Current state of a conversation as reported by the avatar service."""
        return await self._avatar.get_conversation(conversation_id)

    async def end_session(self, conversation_id: str) -> None:
        await self._avatar.end_conversation(conversation_id)
        logger.info("session ended", extra={"conversation_id": conversation_id})

    async def list_personas(self) -> list[dict[str, Any]]:
        return await self._avatar.list_personas()

    async def list_replicas(self) -> list[dict[str, Any]]:
        return await self._avatar.list_replicas()

    async def verify_credentials(self) -> dict[str, Any]:
        """Check the API key works and the configured replica exists."""
        replicas = await self._avatar.list_replicas()
        exists = any(r.get("replica_id") == self._replica_id for r in replicas)
        return {
            "api_key_valid": True,
            "replica_id": self._replica_id,
            "replica_exists": exists,
            "total_replicas": len(replicas),
        }
