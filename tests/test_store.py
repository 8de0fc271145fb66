"""Redis job store tests."""

from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock

import pytest
import redis.asyncio as redis

from src.errors import StorageError
from src.pipeline.models import JobStatus, PersonaContext, ScrapeJob
from src.store.redis import JOBS_KEY, PERSONA_CONTEXTS_KEY, JobStore


pytestmark = pytest.mark.asyncio


def _make_job(job_id: str = "job-1", **overrides) -> ScrapeJob:
    defaults = dict(id=job_id, source_url="https://example.com")
    defaults.update(overrides)
    return ScrapeJob(**defaults)


async def test_upsert_and_get_job(job_store: JobStore):
    job = _make_job()
    await job_store.upsert_job(job)
    assert await job_store.get_job("job-1") == job


async def test_get_missing_job(job_store: JobStore):
    assert await job_store.get_job("nonexistent") is None


async def test_upsert_overwrites(job_store: JobStore):
    job = _make_job()
    await job_store.upsert_job(job)
    job.transition_to(JobStatus.MAPPING)
    await job_store.upsert_job(job)
    stored = await job_store.get_job("job-1")
    assert stored.status == JobStatus.MAPPING


async def test_jobs_have_no_ttl(job_store: JobStore):
    await job_store.upsert_job(_make_job())
    assert await job_store._client.ttl(JOBS_KEY) == -1


async def test_list_jobs_sorted_by_creation(job_store: JobStore):
    now = datetime(2026, 1, 1, tzinfo=timezone.utc)
    await job_store.upsert_job(_make_job("late", created_at=now + timedelta(minutes=5)))
    await job_store.upsert_job(_make_job("early", created_at=now))
    jobs = await job_store.list_jobs()
    assert [j.id for j in jobs] == ["early", "late"]


async def test_clear_all_jobs_keeps_contexts(job_store: JobStore):
    await job_store.upsert_job(_make_job("a"))
    await job_store.upsert_job(_make_job("b"))
    await job_store.upsert_persona_context(
        PersonaContext(source_url="https://example.com", context="kb")
    )
    assert await job_store.clear_all_jobs() == 2
    assert await job_store.list_jobs() == []
    assert await job_store.get_persona_context("https://example.com") is not None


async def test_clear_all_jobs_when_empty(job_store: JobStore):
    assert await job_store.clear_all_jobs() == 0


async def test_persona_context_one_record_per_url(job_store: JobStore):
    await job_store.upsert_persona_context(
        PersonaContext(source_url="https://example.com", context="old")
    )
    await job_store.upsert_persona_context(
        PersonaContext(
            source_url="https://example.com",
            context="new",
            page_summaries={"https://example.com/about": "About us"},
        )
    )
    contexts = await job_store.list_persona_contexts()
    assert len(contexts) == 1
    assert contexts[0].context == "new"
    assert contexts[0].page_summaries == {"https://example.com/about": "About us"}


async def test_get_missing_persona_context(job_store: JobStore):
    assert await job_store.get_persona_context("https://nowhere.example") is None


async def test_corrupt_record_raises_storage_error(job_store: JobStore):
    await job_store._client.hset(JOBS_KEY, "broken", "{not json")
    with pytest.raises(StorageError):
        await job_store.get_job("broken")


async def test_corrupt_context_raises_storage_error(job_store: JobStore):
    await job_store._client.hset(PERSONA_CONTEXTS_KEY, "https://x.com", '{"source_url": "https://x.com"}')
    with pytest.raises(StorageError):
        await job_store.get_persona_context("https://x.com")


async def test_upsert_handles_connection_error(job_store: JobStore):
    job_store._client.hset = AsyncMock(side_effect=redis.ConnectionError("down"))
    with pytest.raises(StorageError):
        await job_store.upsert_job(_make_job())


async def test_get_handles_connection_error(job_store: JobStore):
    job_store._client.hget = AsyncMock(side_effect=redis.ConnectionError("down"))
    with pytest.raises(StorageError):
        await job_store.get_job("job-1")


async def test_list_contexts_handles_connection_error(job_store: JobStore):
    job_store._client.hgetall = AsyncMock(side_effect=redis.ConnectionError("down"))
    with pytest.raises(StorageError):
        await job_store.list_persona_contexts()
