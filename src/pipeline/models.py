"""Job, page and persona-context models persisted by the job store."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, Field

from src.errors import InvalidTransitionError


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class JobStatus(str, Enum):
    QUEUED = "queued"
    MAPPING = "mapping"
    SCRAPING = "scraping"
    SUMMARIZING = "summarizing"
    COMPLETED = "completed"
    ERROR = "error"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.ERROR)


# Single-page and explicit-page jobs go straight from queued to scraping.
ALLOWED_TRANSITIONS: dict[JobStatus, frozenset[JobStatus]] = {
    JobStatus.QUEUED: frozenset({JobStatus.MAPPING, JobStatus.SCRAPING, JobStatus.ERROR}),
    JobStatus.MAPPING: frozenset({JobStatus.SCRAPING, JobStatus.ERROR}),
    JobStatus.SCRAPING: frozenset({JobStatus.SUMMARIZING, JobStatus.ERROR}),
    JobStatus.SUMMARIZING: frozenset({JobStatus.COMPLETED, JobStatus.ERROR}),
    JobStatus.COMPLETED: frozenset(),
    JobStatus.ERROR: frozenset(),
}


class ScrapeMode(str, Enum):
    CRAWL = "crawl"
    SINGLE = "single"
    PAGES = "pages"


class PageRecord(BaseModel):
    url: str
    title: str = ""
    raw_content: str = ""
    extracted_text: str = ""
    summary: str | None = None


class ScrapeJob(BaseModel):
    """One unit of work for one source URL.

    All mutation goes through the methods below, which enforce the lifecycle:
    statuses only move forward along ``ALLOWED_TRANSITIONS`` and nothing changes
    once the job is ``completed`` or ``error``.
    """

    id: str
    source_url: str
    mode: ScrapeMode = ScrapeMode.CRAWL
    max_pages: int = 10
    status: JobStatus = JobStatus.QUEUED
    pages: list[PageRecord] = Field(default_factory=list)
    final_context: str | None = None
    error: str | None = None
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    def _require_status(self, *statuses: JobStatus) -> None:
        if self.status not in statuses:
            raise InvalidTransitionError(
                f"job {self.id} is {self.status.value}, expected one of "
                f"{', '.join(s.value for s in statuses)}"
            )

    def transition_to(self, status: JobStatus) -> None:
        if status not in ALLOWED_TRANSITIONS[self.status]:
            raise InvalidTransitionError(
                f"job {self.id} cannot move from {self.status.value} to {status.value}"
            )
        self.status = status
        self.updated_at = _utcnow()

    def add_page(self, page: PageRecord) -> None:
        self._require_status(JobStatus.SCRAPING)
        self.pages.append(page)

    def record_summary(self, index: int, summary: str) -> None:
        self._require_status(JobStatus.SUMMARIZING)
        self.pages[index].summary = summary

    def complete(self, final_context: str) -> None:
        if not final_context.strip():
            raise InvalidTransitionError(f"job {self.id} cannot complete with an empty context")
        self._require_status(JobStatus.SUMMARIZING)
        self.final_context = final_context
        self.transition_to(JobStatus.COMPLETED)

    def fail(self, message: str) -> None:
        self.transition_to(JobStatus.ERROR)
        self.error = message or "Unknown error"

    def page_summaries(self) -> dict[str, str]:
        return {p.url: p.summary for p in self.pages if p.summary}


class PersonaContext(BaseModel):
    """Reusable knowledge summary for one source URL (one record per URL)."""

    source_url: str
    context: str = Field(min_length=1)
    page_summaries: dict[str, str] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=_utcnow)


class BatchSubmission(BaseModel):
    job_ids: list[str]
    rejected: dict[str, str] = Field(default_factory=dict)


class SessionHandle(BaseModel):
    conversation_id: str
    conversation_url: str
    persona_id: str | None = None
    persona_error: str | None = None
    sources: list[str] = Field(default_factory=list)
