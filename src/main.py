"""FastAPI app entrypoint."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from src.api.routes import persona_service_error_handler, router
from src.clients import build_default_clients
from src.config import Settings, get_settings
from src.errors import PersonaServiceError
from src.logging_config import setup_logging
from src.pipeline.assembler import SessionAssembler
from src.pipeline.orchestrator import ScrapeOrchestrator
from src.store.redis import JobStore, create_redis_client

logger = logging.getLogger(__name__)


def build_orchestrator(settings: Settings, store: JobStore, content_source, summarizer) -> ScrapeOrchestrator:
    return ScrapeOrchestrator(
        store,
        content_source,
        summarizer,
        default_max_pages=settings.default_max_pages,
        page_char_budget=settings.page_char_budget,
        summary_char_budget=settings.summary_char_budget,
    )


def build_assembler(settings: Settings, store: JobStore, avatar) -> SessionAssembler:
    return SessionAssembler(
        store,
        avatar,
        replica_id=settings.tavus_replica_id,
        default_persona_id=settings.tavus_persona_id,
        enable_vision=settings.tavus_enable_vision,
        max_context_chars=settings.max_combined_context_chars,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()

    # Initialize logging FIRST so all subsequent operations produce JSON logs
    setup_logging(settings.log_level)
    logger.info("starting persona service")

    redis_client = await create_redis_client(settings.redis_url)
    store = JobStore(redis_client)
    clients = build_default_clients(settings)

    # Attach to app state for dependency injection
    app.state.settings = settings
    app.state.store = store
    app.state.orchestrator = build_orchestrator(
        settings, store, clients.content_source, clients.summarizer
    )
    app.state.assembler = build_assembler(settings, store, clients.avatar)

    logger.info(
        "persona service ready",
        extra={
            "llm_provider": settings.llm_provider,
            "default_max_pages": settings.default_max_pages,
            "tavus_replica_id": settings.tavus_replica_id,
        },
    )

    yield

    logger.info("shutting down persona service")
    await clients.avatar.aclose()
    await redis_client.aclose()


app = FastAPI(title="Persona Service", lifespan=lifespan)
app.include_router(router)
app.add_exception_handler(PersonaServiceError, persona_service_error_handler)


@app.get("/health")
async def health():
    return {"status": "ok"}
