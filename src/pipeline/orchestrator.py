"""Drives each source URL through map -> scrape -> summarize."""

from __future__ import annotations

import asyncio
import logging
import uuid
from typing import Iterable

from src.clients.firecrawl import ContentSource
from src.clients.summarizer import Summarizer
from src.errors import InvalidInputError, JobNotFoundError, UpstreamError
from src.pipeline.models import (
    BatchSubmission,
    JobStatus,
    PersonaContext,
    ScrapeJob,
    ScrapeMode,
)
from src.pipeline.prompts import (
    KNOWLEDGE_BASE_INSTRUCTIONS,
    PAGE_SUMMARY_INSTRUCTIONS,
    format_knowledge_base_prompt,
    format_page_summary_prompt,
)
from src.pipeline.urls import normalize_url, partition_urls, validate_url
from src.store.redis import JobStore

logger = logging.getLogger(__name__)

NO_PAGES_ERROR = "No pages were successfully scraped"
EMPTY_CONTEXT_ERROR = "Summarizer returned an empty knowledge base"


def _generate_job_id() -> str:
    return uuid.uuid4().hex[:12]


def _truncate(text: str, limit: int) -> str:
    return text if len(text) <= limit else text[:limit]


class ScrapeOrchestrator:
    """Creates one job per URL and runs each job as an independent asyncio task.

    Callers get job ids back immediately and poll :meth:`get_batch_status` until
    every job is ``completed`` or ``error``. Failures inside a job are recorded on
    that job and never raised to the submitter.
    """

    def __init__(
        self,
        store: JobStore,
        content_source: ContentSource,
        summarizer: Summarizer,
        *,
        default_max_pages: int = 10,
        page_char_budget: int = 4000,
        summary_char_budget: int = 16000,
    ) -> None:
        self._store = store
        self._content = content_source
        self._summarizer = summarizer
        self._default_max_pages = default_max_pages
        self._page_char_budget = page_char_budget
        self._summary_char_budget = summary_char_budget
        self._tasks: set[asyncio.Task] = set()

    def _resolve_max_pages(self, max_pages: int | None) -> int:
        if max_pages is None:
            return self._default_max_pages
        if max_pages < 1:
            raise InvalidInputError("max_pages must be at least 1")
        return max_pages

    async def submit_batch(
        self,
        urls: Iterable[str],
        mode: ScrapeMode = ScrapeMode.CRAWL,
        max_pages: int | None = None,
    ) -> BatchSubmission:
        """Create and start one job per valid URL.

        Invalid URLs are dropped and reported in ``rejected``. If every URL is
        invalid the whole batch is refused with :class:`InvalidInputError`.
        """
        urls = list(urls)
        if not urls:
            raise InvalidInputError("At least one URL is required")
        if mode == ScrapeMode.PAGES:
            raise InvalidInputError("Explicit page lists go through submit_pages")
        limit = self._resolve_max_pages(max_pages)

        valid, rejected = partition_urls(urls)
        for url, reason in rejected.items():
            logger.warning("url rejected", extra={"url": url, "reason": reason})
        if not valid:
            raise InvalidInputError("No valid URLs were submitted; no jobs were created", rejected)

        jobs = [
            ScrapeJob(id=_generate_job_id(), source_url=url, mode=mode, max_pages=limit)
            for url in valid
        ]
        for job in jobs:
            await self._store.upsert_job(job)
            self._spawn(job)

        logger.info(
            "scrape batch submitted",
            extra={
                "job_ids": [j.id for j in jobs],
                "mode": mode.value,
                "max_pages": limit,
                "rejected_count": len(rejected),
            },
        )
        return BatchSubmission(job_ids=[j.id for j in jobs], rejected=rejected)

    async def submit_pages(
        self,
        site_url: str,
        page_urls: Iterable[str],
        max_pages: int | None = None,
    ) -> BatchSubmission:
        """Create one job for *site_url* that scrapes exactly the given pages."""
        reason = validate_url(site_url)
        if reason is not None:
            raise InvalidInputError(f"Invalid site URL: {reason}", {site_url: reason})
        limit = self._resolve_max_pages(max_pages)

        pages, rejected = partition_urls(list(page_urls))
        for url, why in rejected.items():
            logger.warning("page url rejected", extra={"url": url, "reason": why})
        if not pages:
            raise InvalidInputError("No valid page URLs were submitted; no jobs were created", rejected)
        if len(pages) > limit:
            logger.info(
                "page list capped",
                extra={"site_url": site_url, "submitted": len(pages), "max_pages": limit},
            )

        job = ScrapeJob(
            id=_generate_job_id(),
            source_url=normalize_url(site_url),
            mode=ScrapeMode.PAGES,
            max_pages=limit,
        )
        await self._store.upsert_job(job)
        self._spawn(job, pages[:limit])
        logger.info(
            "page scrape submitted",
            extra={"job_id": job.id, "source_url": job.source_url, "pages": len(pages[:limit])},
        )
        return BatchSubmission(job_ids=[job.id], rejected=rejected)

    async def get_job(self, job_id: str) -> ScrapeJob:
        job = await self._store.get_job(job_id)
        if job is None:
            raise JobNotFoundError([job_id])
        return job

    async def get_batch_status(self, job_ids: Iterable[str]) -> list[ScrapeJob]:
        """Read every job straight from the store. Unknown ids raise JobNotFoundError."""
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
        return jobs

    async def wait_idle(self) -> None:
        """Wait until every job started by this orchestrator has finished."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks))

    def _spawn(self, job: ScrapeJob, page_urls: list[str] | None = None) -> None:
        task = asyncio.create_task(self._process_job(job, page_urls), name=f"scrape-job-{job.id}")
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _advance(self, job: ScrapeJob, status: JobStatus) -> None:
        job.transition_to(status)
        await self._store.upsert_job(job)
        logger.info(
            "job status changed",
            extra={"job_id": job.id, "source_url": job.source_url, "status": status.value},
        )

    async def _process_job(self, job: ScrapeJob, page_urls: list[str] | None) -> None:
        try:
            await self._run(job, page_urls)
        except Exception as exc:
            await self._fail(job, str(exc) or type(exc).__name__, exc)

    async def _fail(self, job: ScrapeJob, message: str, exc: Exception | None = None) -> None:
        if job.is_terminal:
            logger.error(
                "error after job reached a terminal state",
                extra={"job_id": job.id, "status": job.status.value},
                exc_info=exc,
            )
            return
        job.fail(message)
        logger.warning(
            "job failed",
            extra={"job_id": job.id, "source_url": job.source_url, "error": message},
            exc_info=exc,
        )
        try:
            await self._store.upsert_job(job)
        except Exception:
            logger.exception("could not record job failure", extra={"job_id": job.id})

    async def _run(self, job: ScrapeJob, page_urls: list[str] | None) -> None:
        if job.mode == ScrapeMode.CRAWL:
            await self._advance(job, JobStatus.MAPPING)
            page_urls = await self._content.map_site(job.source_url, job.max_pages)
            logger.info(
                "site mapped",
                extra={"job_id": job.id, "source_url": job.source_url, "pages_found": len(page_urls)},
            )
        elif page_urls is None:
            page_urls = [job.source_url]

        await self._advance(job, JobStatus.SCRAPING)
        for url in page_urls[: job.max_pages]:
            try:
                page = await self._content.scrape_page(url)
            except UpstreamError as exc:
                logger.warning(
                    "page scrape failed, skipping",
                    extra={"job_id": job.id, "url": url, "error": str(exc)},
                )
                continue
            job.add_page(page)
            await self._store.upsert_job(job)

        logger.info(
            "scrape completed",
            extra={"job_id": job.id, "urls_attempted": len(page_urls[: job.max_pages]), "pages_scraped": len(job.pages)},
        )
        if not job.pages:
            await self._fail(job, NO_PAGES_ERROR)
            return

        await self._advance(job, JobStatus.SUMMARIZING)
        for index, page in enumerate(job.pages):
            prompt = format_page_summary_prompt(
                job.source_url,
                page.url,
                page.title,
                _truncate(page.extracted_text, self._page_char_budget),
            )
            summary = await self._summarizer.summarize(prompt, PAGE_SUMMARY_INSTRUCTIONS)
            job.record_summary(index, summary)
            await self._store.upsert_job(job)

        combined = "\n\n".join(
            f"### {page.title or page.url}\nURL: {page.url}\n\n{page.summary}"
            for page in job.pages
        )
        final_context = await self._summarizer.summarize(
            format_knowledge_base_prompt(
                job.source_url, _truncate(combined, self._summary_char_budget)
            ),
            KNOWLEDGE_BASE_INSTRUCTIONS,
        )
        if not final_context.strip():
            await self._fail(job, EMPTY_CONTEXT_ERROR)
            return

        # A completed job always has its persona context stored already.
        await self._store.upsert_persona_context(
            PersonaContext(
                source_url=job.source_url,
                context=final_context,
                page_summaries=job.page_summaries(),
            )
        )
        # The live job stays non-terminal until the completed record is stored.
        completed = job.model_copy(deep=True)
        completed.complete(final_context)
        await self._store.upsert_job(completed)
        job.complete(final_context)
        logger.info(
            "job completed",
            extra={
                "job_id": job.id,
                "source_url": job.source_url,
                "pages": len(job.pages),
                "context_chars": len(final_context),
            },
        )
