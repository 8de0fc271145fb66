"""Fixtures: mock Redis and the job store on top of it."""

import pytest_asyncio
from fakeredis.aioredis import FakeRedis

from src.store.redis import JobStore


@pytest_asyncio.fixture
async def redis_client():
    client = FakeRedis(decode_responses=True)
    yield client
    await client.aclose()


@pytest_asyncio.fixture
async def job_store(redis_client) -> JobStore:
    """JobStore backed by an in-memory FakeRedis instance."""
    return JobStore(redis_client)
