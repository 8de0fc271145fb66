"""Request/response Pydantic models."""

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field

from src.pipeline.models import JobStatus, ScrapeJob


class ScrapeRequest(BaseModel):
    urls: list[str]
    mode: Literal["crawl", "single"] = "crawl"
    max_pages: int | None = Field(default=None, ge=1, le=100)


class PageScrapeRequest(BaseModel):
    site_url: str
    page_urls: list[str]
    max_pages: int | None = Field(default=None, ge=1, le=100)


class JobStatusRequest(BaseModel):
    job_ids: list[str] = Field(min_length=1)


class SessionRequest(BaseModel):
    job_ids: list[str] = Field(min_length=1)
    allow_contextless: bool = True


class JobSummary(BaseModel):
    id: str
    source_url: str
    status: JobStatus
    pages_count: int
    has_context: bool
    error: str | None = None
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_job(cls, job: ScrapeJob) -> "JobSummary":
        return cls(
            id=job.id,
            source_url=job.source_url,
            status=job.status,
            pages_count=len(job.pages),
            has_context=bool(job.final_context),
            error=job.error,
            created_at=job.created_at,
            updated_at=job.updated_at,
        )


class JobListResponse(BaseModel):
    total_jobs: int
    jobs: list[JobSummary]


class EnvCheckResponse(BaseModel):
    llm_provider: str
    missing: list[str] = []
    has_firecrawl_key: bool = False
    has_llm_key: bool = False
    has_tavus_api_key: bool = False
    has_tavus_replica_id: bool = False
