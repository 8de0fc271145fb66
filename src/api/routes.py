"""Scrape job, persona context and session endpoint handlers."""

from __future__ import annotations

import asyncio
import json
import logging

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse
from sse_starlette.sse import EventSourceResponse

from src.api.schemas import (
    EnvCheckResponse,
    JobListResponse,
    JobStatusRequest,
    JobSummary,
    PageScrapeRequest,
    ScrapeRequest,
    SessionRequest,
)
from src.auth.dependencies import require_api_key
from src.config import Settings, missing_credentials
from src.errors import (
    ConcurrencyLimitError,
    ContextTooLargeError,
    InvalidInputError,
    InvalidTransitionError,
    JobNotFoundError,
    JobsNotReadyError,
    NoUsableContentError,
    PersonaServiceError,
    SessionCreationError,
    StorageError,
    UpstreamError,
    UpstreamTimeoutError,
)
from src.pipeline.assembler import SessionAssembler
from src.pipeline.models import BatchSubmission, PersonaContext, ScrapeJob, ScrapeMode, SessionHandle
from src.pipeline.orchestrator import ScrapeOrchestrator
from src.pipeline.urls import normalize_url
from src.store.redis import JobStore

logger = logging.getLogger(__name__)

router = APIRouter(dependencies=[Depends(require_api_key)])

# Most specific first; the first isinstance match wins.
_ERROR_STATUS: list[tuple[type[PersonaServiceError], int]] = [
    (JobNotFoundError, 404),
    (JobsNotReadyError, 409),
    (ContextTooLargeError, 413),
    (InvalidInputError, 422),
    (NoUsableContentError, 422),
    (InvalidTransitionError, 409),
    (ConcurrencyLimitError, 429),
    (UpstreamTimeoutError, 504),
    (UpstreamError, 502),
    (SessionCreationError, 502),
    (StorageError, 503),
]


def status_for_error(exc: PersonaServiceError) -> int:
    for error_type, code in _ERROR_STATUS:
        if isinstance(exc, error_type):
            return code
    return 500


async def persona_service_error_handler(request: Request, exc: PersonaServiceError) -> JSONResponse:
    code = status_for_error(exc)
    content: dict = {"detail": str(exc), "error": type(exc).__name__}
    if isinstance(exc, InvalidInputError) and exc.rejected:
        content["rejected"] = exc.rejected
    log = logger.warning if code < 500 else logger.error
    log("request failed", extra={"path": request.url.path, "status_code": code, "error": str(exc)})
    return JSONResponse(status_code=code, content=content)


def _get_orchestrator(request: Request) -> ScrapeOrchestrator:
    return request.app.state.orchestrator


def _get_assembler(request: Request) -> SessionAssembler:
    return request.app.state.assembler


def _get_store(request: Request) -> JobStore:
    return request.app.state.store


def _get_settings(request: Request) -> Settings:
    return request.app.state.settings


@router.post("/scrape", status_code=202)
async def start_scrape(
    body: ScrapeRequest,
    orchestrator: ScrapeOrchestrator = Depends(_get_orchestrator),
) -> BatchSubmission:
    return await orchestrator.submit_batch(
        body.urls, mode=ScrapeMode(body.mode), max_pages=body.max_pages
    )


@router.post("/scrape/pages", status_code=202)
async def start_page_scrape(
    body: PageScrapeRequest,
    orchestrator: ScrapeOrchestrator = Depends(_get_orchestrator),
) -> BatchSubmission:
    return await orchestrator.submit_pages(body.site_url, body.page_urls, max_pages=body.max_pages)


@router.get("/jobs")
async def list_jobs(store: JobStore = Depends(_get_store)) -> JobListResponse:
    jobs = await store.list_jobs()
    return JobListResponse(total_jobs=len(jobs), jobs=[JobSummary.from_job(j) for j in jobs])


@router.delete("/jobs")
async def clear_jobs(store: JobStore = Depends(_get_store)) -> dict:
    cleared = await store.clear_all_jobs()
    return {"message": "All scraping jobs cleared", "cleared": cleared}


@router.post("/jobs/status")
async def get_batch_status(
    body: JobStatusRequest,
    orchestrator: ScrapeOrchestrator = Depends(_get_orchestrator),
) -> list[ScrapeJob]:
    return await orchestrator.get_batch_status(body.job_ids)


@router.get("/jobs/{job_id}")
async def get_job(
    job_id: str,
    orchestrator: ScrapeOrchestrator = Depends(_get_orchestrator),
) -> ScrapeJob:
    return await orchestrator.get_job(job_id)


async def job_event_stream(orchestrator: ScrapeOrchestrator, job_id: str, interval: float):
    """Yield a ``status`` event whenever the stored job changes, then ``done``.

    A job removed mid-stream (``DELETE /jobs``) ends it with an ``error`` event.
    """
    last_seen: tuple | None = None
    while True:
        try:
            job = await orchestrator.get_job(job_id)
        except JobNotFoundError as exc:
            logger.warning("job vanished while streaming", extra={"job_id": job_id})
            yield {"event": "error", "data": json.dumps({"detail": str(exc)})}
            yield {"event": "done", "data": json.dumps({"status": None})}
            return
        snapshot = (job.status, len(job.pages), job.updated_at)
        if snapshot != last_seen:
            last_seen = snapshot
            yield {"event": "status", "data": job.model_dump_json()}
        if job.is_terminal:
            yield {"event": "done", "data": json.dumps({"status": job.status.value})}
            return
        await asyncio.sleep(interval)


@router.get("/jobs/{job_id}/events")
async def stream_job_events(
    job_id: str,
    orchestrator: ScrapeOrchestrator = Depends(_get_orchestrator),
    settings: Settings = Depends(_get_settings),
):
    await orchestrator.get_job(job_id)
    return EventSourceResponse(
        job_event_stream(orchestrator, job_id, settings.poll_interval_seconds)
    )


@router.get("/persona-contexts")
async def list_persona_contexts(store: JobStore = Depends(_get_store)) -> list[PersonaContext]:
    return await store.list_persona_contexts()


@router.get("/persona-contexts/lookup")
async def get_persona_context(
    source_url: str,
    store: JobStore = Depends(_get_store),
) -> PersonaContext:
    context = await store.get_persona_context(normalize_url(source_url))
    if context is None:
        raise HTTPException(status_code=404, detail="Context not found for this website")
    return context


@router.post("/sessions")
async def create_session(
    body: SessionRequest,
    assembler: SessionAssembler = Depends(_get_assembler),
) -> SessionHandle:
    return await assembler.assemble_session(body.job_ids, allow_contextless=body.allow_contextless)


@router.get("/sessions/{conversation_id}")
async def get_session(
    conversation_id: str,
    assembler: SessionAssembler = Depends(_get_assembler),
) -> dict:
    return await assembler.get_session(conversation_id)


@router.post("/sessions/{conversation_id}/end")
async def end_session(
    conversation_id: str,
    assembler: SessionAssembler = Depends(_get_assembler),
) -> dict:
    await assembler.end_session(conversation_id)
    return {"conversation_id": conversation_id, "status": "ended"}


@router.get("/personas")
async def list_personas(assembler: SessionAssembler = Depends(_get_assembler)) -> list[dict]:
    return await assembler.list_personas()


@router.get("/replicas")
async def list_replicas(assembler: SessionAssembler = Depends(_get_assembler)) -> list[dict]:
    return await assembler.list_replicas()


@router.get("/replicas/verify")
async def verify_tavus_credentials(assembler: SessionAssembler = Depends(_get_assembler)) -> dict:
    return await assembler.verify_credentials()


@router.get("/env-check")
async def env_check(settings: Settings = Depends(_get_settings)) -> EnvCheckResponse:
    llm_key = settings.openai_api_key if settings.llm_provider == "openai" else settings.gemini_api_key
    return EnvCheckResponse(
        llm_provider=settings.llm_provider,
        missing=missing_credentials(settings),
        has_firecrawl_key=bool(settings.firecrawl_api_key),
        has_llm_key=bool(llm_key),
        has_tavus_api_key=bool(settings.tavus_api_key),
        has_tavus_replica_id=bool(settings.tavus_replica_id),
    )
