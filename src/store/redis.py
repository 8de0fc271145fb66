"""Redis-backed keyed tables for scrape jobs and persona contexts."""

from __future__ import annotations

import logging

import redis.asyncio as redis
from pydantic import ValidationError
from redis.backoff import ExponentialBackoff
from redis.retry import Retry

from src.errors import StorageError
from src.pipeline.models import PersonaContext, ScrapeJob

logger = logging.getLogger(__name__)

JOBS_KEY = "scrape_jobs"
PERSONA_CONTEXTS_KEY = "persona_contexts"


class JobStore:
    """Thin async wrapper around two Redis hashes.

    ``scrape_jobs`` maps job id to job JSON and ``persona_contexts`` maps source URL
    to context JSON. Entries never expire. Every read goes back to Redis and
    concurrent upserts of the same key are last-writer-wins.
    """

    def __init__(self, client: redis.Redis) -> None:
        self._client = client

    async def upsert_job(self, job: ScrapeJob) -> None:
        try:
            await self._client.hset(JOBS_KEY, job.id, job.model_dump_json())
        except redis.RedisError as exc:
            logger.error("job upsert failed", extra={"job_id": job.id}, exc_info=True)
            raise StorageError(f"could not save job {job.id}: {exc}") from exc
        logger.debug("job saved", extra={"job_id": job.id, "status": job.status.value})

    async def get_job(self, job_id: str) -> ScrapeJob | None:
        """Return the job, or ``None`` if no job has that id."""
        try:
            raw = await self._client.hget(JOBS_KEY, job_id)
        except redis.RedisError as exc:
            logger.error("job read failed", extra={"job_id": job_id}, exc_info=True)
            raise StorageError(f"could not read job {job_id}: {exc}") from exc
        if raw is None:
            return None
        return _load(ScrapeJob, raw)

    async def list_jobs(self) -> list[ScrapeJob]:
        try:
            raw = await self._client.hgetall(JOBS_KEY)
        except redis.RedisError as exc:
            logger.error("job scan failed", exc_info=True)
            raise StorageError(f"could not list jobs: {exc}") from exc
        jobs = [_load(ScrapeJob, value) for value in raw.values()]
        return sorted(jobs, key=lambda j: j.created_at)

    async def clear_all_jobs(self) -> int:
        """Delete every job. Persona contexts are kept. Returns the number removed."""
        try:
            count = await self._client.hlen(JOBS_KEY)
            await self._client.delete(JOBS_KEY)
        except redis.RedisError as exc:
            logger.error("job clear failed", exc_info=True)
            raise StorageError(f"could not clear jobs: {exc}") from exc
        logger.info("all scrape jobs cleared", extra={"count": count})
        return count

    async def upsert_persona_context(self, context: PersonaContext) -> None:
        try:
            await self._client.hset(
                PERSONA_CONTEXTS_KEY, context.source_url, context.model_dump_json()
            )
        except redis.RedisError as exc:
            logger.error(
                "persona context upsert failed",
                extra={"source_url": context.source_url},
                exc_info=True,
            )
            raise StorageError(
                f"could not save persona context for {context.source_url}: {exc}"
            ) from exc
        logger.debug("persona context saved", extra={"source_url": context.source_url})

    async def get_persona_context(self, source_url: str) -> PersonaContext | None:
        try:
            raw = await self._client.hget(PERSONA_CONTEXTS_KEY, source_url)
        except redis.RedisError as exc:
            logger.error(
                "persona context read failed", extra={"source_url": source_url}, exc_info=True
            )
            raise StorageError(
                f"could not read persona context for {source_url}: {exc}"
            ) from exc
        if raw is None:
            return None
        return _load(PersonaContext, raw)

    async def list_persona_contexts(self) -> list[PersonaContext]:
        try:
            raw = await self._client.hgetall(PERSONA_CONTEXTS_KEY)
        except redis.RedisError as exc:
            logger.error("persona context scan failed", exc_info=True)
            raise StorageError(f"could not list persona contexts: {exc}") from exc
        contexts = [_load(PersonaContext, value) for value in raw.values()]
        return sorted(contexts, key=lambda c: c.created_at)


def _load(model, raw: str):
    try:
        return model.model_validate_json(raw)
    except ValidationError as exc:
        raise StorageError(f"corrupt {model.__name__} record: {exc}") from exc


async def create_redis_client(redis_url: str) -> redis.Redis:
    # Strip credentials for logging (everything before @ if present)
    safe_url = redis_url.split("@")[-1] if "@" in redis_url else redis_url
    logger.info("connecting to redis", extra={"redis_url": safe_url})
    retry = Retry(ExponentialBackoff(), retries=3)
    return redis.from_url(
        redis_url,
        decode_responses=True,
        socket_connect_timeout=5,
        socket_timeout=5,
        health_check_interval=30,
        retry=retry,
        retry_on_error=[redis.ConnectionError, redis.TimeoutError],
    )
