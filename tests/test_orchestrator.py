"""Scrape orchestrator tests with in-memory clients."""

import asyncio

import pytest

from src.errors import (
    InvalidInputError,
    JobNotFoundError,
    StorageError,
    UpstreamError,
    UpstreamTimeoutError,
)
from src.pipeline.models import JobStatus, ScrapeMode
from src.pipeline.orchestrator import EMPTY_CONTEXT_ERROR, NO_PAGES_ERROR, ScrapeOrchestrator
from src.store.redis import JobStore
from tests.fakes import EchoSummarizer, FakeContentSource


pytestmark = pytest.mark.asyncio


def _orchestrator(job_store, content=None, summarizer=None, **kwargs) -> ScrapeOrchestrator:
    return ScrapeOrchestrator(
        job_store,
        content or FakeContentSource(),
        summarizer or EchoSummarizer(),
        **kwargs,
    )


class RecordingJobStore(JobStore):
    """Keeps the status of every job write, in order."""

    def __init__(self, client):
        super().__init__(client)
        self.statuses: list[JobStatus] = []

    async def upsert_job(self, job):
        self.statuses.append(job.status)
        await super().upsert_job(job)


class FlakyJobStore(JobStore):
    """Raises StorageError on the Nth write of a job in *status*, once."""

    def __init__(self, client, status: JobStatus, nth: int = 1):
        super().__init__(client)
        self.status = status
        self.remaining = nth

    async def upsert_job(self, job):
        if job.status == self.status and self.remaining > 0:
            self.remaining -= 1
            if self.remaining == 0:
                raise StorageError(f"could not save job {job.id}: connection reset")
        await super().upsert_job(job)


class FailingSummarizer:
    def __init__(self, exc: Exception):
        self.exc = exc

    async def summarize(self, text: str, instructions: str) -> str:
        raise self.exc


class BlankKnowledgeBaseSummarizer:
    """Summarizes pages fine, then returns nothing for the final knowledge base."""

    def __init__(self):
        self.calls = 0

    async def summarize(self, text: str, instructions: str) -> str:
        self.calls += 1
        return "page summary" if "Summarize the page above" in text else "  "


async def test_single_page_echo_run(job_store):
    content = FakeContentSource({"https://example.com": "Hello world"})
    orchestrator = _orchestrator(job_store, content)

    submission = await orchestrator.submit_batch(["https://example.com"], mode=ScrapeMode.SINGLE)
    assert len(submission.job_ids) == 1
    assert submission.rejected == {}

    await orchestrator.wait_idle()
    [job] = await orchestrator.get_batch_status(submission.job_ids)

    assert job.status == JobStatus.COMPLETED
    assert "Hello world" in job.final_context
    assert job.error is None
    assert len(job.pages) == 1
    assert job.pages[0].summary is not None

    context = await job_store.get_persona_context("https://example.com")
    assert context is not None
    assert context.context == job.final_context
    assert list(context.page_summaries) == ["https://example.com"]


async def test_submit_returns_before_work_finishes(job_store):
    content = FakeContentSource({"https://example.com": "Hello world"})
    content.gates["https://example.com"] = asyncio.Event()
    orchestrator = _orchestrator(job_store, content)

    submission = await orchestrator.submit_batch(["https://example.com"], mode=ScrapeMode.SINGLE)
    job = await orchestrator.get_job(submission.job_ids[0])
    assert job.status in (JobStatus.QUEUED, JobStatus.SCRAPING)

    content.gates["https://example.com"].set()
    await orchestrator.wait_idle()
    job = await orchestrator.get_job(submission.job_ids[0])
    assert job.status == JobStatus.COMPLETED


async def test_malformed_url_creates_no_jobs(job_store):
    orchestrator = _orchestrator(job_store)
    with pytest.raises(InvalidInputError) as exc_info:
        await orchestrator.submit_batch(["https://bad..url"])
    assert "https://bad..url" in exc_info.value.rejected
    assert await job_store.list_jobs() == []


async def test_partially_invalid_batch_reports_rejected(job_store):
    content = FakeContentSource({"https://example.com": "Hello"})
    orchestrator = _orchestrator(job_store, content)

    submission = await orchestrator.submit_batch(
        ["https://example.com", "not-a-url"], mode=ScrapeMode.SINGLE
    )
    await orchestrator.wait_idle()

    assert len(submission.job_ids) == 1
    assert list(submission.rejected) == ["not-a-url"]


async def test_empty_batch_rejected(job_store):
    with pytest.raises(InvalidInputError):
        await _orchestrator(job_store).submit_batch([])


async def test_pages_mode_requires_submit_pages(job_store):
    with pytest.raises(InvalidInputError):
        await _orchestrator(job_store).submit_batch(["https://example.com"], mode=ScrapeMode.PAGES)


async def test_max_pages_must_be_positive(job_store):
    with pytest.raises(InvalidInputError):
        await _orchestrator(job_store).submit_batch(["https://example.com"], max_pages=0)


async def test_one_good_one_bad_site(job_store):
    content = FakeContentSource({"https://good.com": "Good content"})
    orchestrator = _orchestrator(job_store, content)

    submission = await orchestrator.submit_batch(
        ["https://good.com", "https://missing.com"], mode=ScrapeMode.SINGLE
    )
    await orchestrator.wait_idle()
    good, bad = await orchestrator.get_batch_status(submission.job_ids)

    assert good.status == JobStatus.COMPLETED
    assert "Good content" in good.final_context
    assert bad.status == JobStatus.ERROR
    assert bad.error == NO_PAGES_ERROR
    assert bad.final_context is None
    assert await job_store.get_persona_context("https://missing.com") is None


async def test_crawl_maps_then_caps_pages(job_store):
    content = FakeContentSource(
        pages={
            "https://example.com": "Home",
            "https://example.com/about": "About",
            "https://example.com/pricing": "Pricing",
        },
        links={"https://example.com": ["https://example.com/about", "https://example.com/pricing"]},
    )
    orchestrator = _orchestrator(job_store, content)

    submission = await orchestrator.submit_batch(["https://example.com"], max_pages=2)
    await orchestrator.wait_idle()
    job = await orchestrator.get_job(submission.job_ids[0])

    assert job.status == JobStatus.COMPLETED
    assert job.max_pages == 2
    assert [p.url for p in job.pages] == ["https://example.com", "https://example.com/about"]
    assert "Home" in job.final_context
    assert "About" in job.final_context
    assert "Pricing" not in job.final_context


async def test_crawl_skips_failed_pages(job_store):
    content = FakeContentSource(
        pages={"https://example.com": "Home"},
        links={"https://example.com": ["https://example.com/broken"]},
    )
    orchestrator = _orchestrator(job_store, content)

    submission = await orchestrator.submit_batch(["https://example.com"])
    await orchestrator.wait_idle()
    job = await orchestrator.get_job(submission.job_ids[0])

    assert job.status == JobStatus.COMPLETED
    assert [p.url for p in job.pages] == ["https://example.com"]
    assert content.scraped == ["https://example.com", "https://example.com/broken"]


async def test_default_max_pages_applied(job_store):
    orchestrator = _orchestrator(
        job_store, FakeContentSource({"https://example.com": "x"}), default_max_pages=3
    )
    submission = await orchestrator.submit_batch(["https://example.com"])
    await orchestrator.wait_idle()
    job = await orchestrator.get_job(submission.job_ids[0])
    assert job.max_pages == 3


async def test_page_text_truncated_to_budget(job_store):
    summarizer = EchoSummarizer()
    content = FakeContentSource({"https://example.com": "a" * 50 + "TAIL"})
    orchestrator = _orchestrator(job_store, content, summarizer, page_char_budget=50)

    await orchestrator.submit_batch(["https://example.com"], mode=ScrapeMode.SINGLE)
    await orchestrator.wait_idle()

    page_prompt = summarizer.calls[0][0]
    assert "a" * 50 in page_prompt
    assert "TAIL" not in page_prompt


async def test_summarizer_timeout_fails_job(job_store):
    content = FakeContentSource({"https://example.com": "Hello"})
    orchestrator = _orchestrator(
        job_store, content, FailingSummarizer(UpstreamTimeoutError("openai", 60))
    )

    submission = await orchestrator.submit_batch(["https://example.com"], mode=ScrapeMode.SINGLE)
    await orchestrator.wait_idle()
    job = await orchestrator.get_job(submission.job_ids[0])

    assert job.status == JobStatus.ERROR
    assert "timed out" in job.error
    assert job.final_context is None


async def test_unexpected_exception_fails_job(job_store):
    content = FakeContentSource({"https://example.com": "Hello"})
    orchestrator = _orchestrator(job_store, content, FailingSummarizer(RuntimeError("kaboom")))

    submission = await orchestrator.submit_batch(["https://example.com"], mode=ScrapeMode.SINGLE)
    await orchestrator.wait_idle()
    job = await orchestrator.get_job(submission.job_ids[0])

    assert job.status == JobStatus.ERROR
    assert job.error == "kaboom"


async def test_blank_knowledge_base_fails_job(job_store):
    content = FakeContentSource({"https://example.com": "Hello"})
    orchestrator = _orchestrator(job_store, content, BlankKnowledgeBaseSummarizer())

    submission = await orchestrator.submit_batch(["https://example.com"], mode=ScrapeMode.SINGLE)
    await orchestrator.wait_idle()
    job = await orchestrator.get_job(submission.job_ids[0])

    assert job.status == JobStatus.ERROR
    assert job.error == EMPTY_CONTEXT_ERROR
    assert await job_store.get_persona_context("https://example.com") is None


async def test_submit_pages_scrapes_exact_list(job_store):
    content = FakeContentSource(
        {
            "https://example.com/a": "Page A",
            "https://example.com/b": "Page B",
            "https://example.com/c": "Page C",
        }
    )
    orchestrator = _orchestrator(job_store, content)

    submission = await orchestrator.submit_pages(
        "https://example.com/",
        ["https://example.com/a", "https://example.com/b", "https://example.com/c", "bogus"],
        max_pages=2,
    )
    await orchestrator.wait_idle()
    job = await orchestrator.get_job(submission.job_ids[0])

    assert list(submission.rejected) == ["bogus"]
    assert job.source_url == "https://example.com"
    assert job.mode == ScrapeMode.PAGES
    assert job.status == JobStatus.COMPLETED
    assert content.scraped == ["https://example.com/a", "https://example.com/b"]


async def test_submit_pages_invalid_site(job_store):
    with pytest.raises(InvalidInputError):
        await _orchestrator(job_store).submit_pages("bad", ["https://example.com/a"])


async def test_batch_status_unknown_id(job_store):
    with pytest.raises(JobNotFoundError) as exc_info:
        await _orchestrator(job_store).get_batch_status(["nope"])
    assert exc_info.value.job_ids == ["nope"]


async def test_get_job_unknown_id(job_store):
    with pytest.raises(JobNotFoundError):
        await _orchestrator(job_store).get_job("nope")


async def test_crawl_status_sequence(redis_client):
    store = RecordingJobStore(redis_client)
    content = FakeContentSource(
        pages={"https://example.com": "Home", "https://example.com/about": "About"},
        links={"https://example.com": ["https://example.com/about"]},
    )
    orchestrator = _orchestrator(store, content)

    await orchestrator.submit_batch(["https://example.com"])
    await orchestrator.wait_idle()

    collapsed = [s for i, s in enumerate(store.statuses) if i == 0 or s != store.statuses[i - 1]]
    assert collapsed == [
        JobStatus.QUEUED,
        JobStatus.MAPPING,
        JobStatus.SCRAPING,
        JobStatus.SUMMARIZING,
        JobStatus.COMPLETED,
    ]


async def test_map_failure_fails_job(job_store):
    content = FakeContentSource({"https://example.com": "Home"})
    content.map_error = UpstreamError("firecrawl", "503 Service Unavailable", 503)
    orchestrator = _orchestrator(job_store, content)

    submission = await orchestrator.submit_batch(["https://example.com"])
    await orchestrator.wait_idle()
    job = await orchestrator.get_job(submission.job_ids[0])

    assert job.status == JobStatus.ERROR
    assert "503 Service Unavailable" in job.error
    assert job.pages == []
    assert content.scraped == []
    assert await job_store.get_persona_context("https://example.com") is None


async def test_slow_job_does_not_hold_back_others(job_store):
    content = FakeContentSource({"https://slow.com": "Slow", "https://fast.com": "Fast"})
    content.gates["https://slow.com"] = asyncio.Event()
    orchestrator = _orchestrator(job_store, content)

    submission = await orchestrator.submit_batch(
        ["https://slow.com", "https://fast.com"], mode=ScrapeMode.SINGLE
    )
    slow_id, fast_id = submission.job_ids

    async def fast_completed():
        while (await orchestrator.get_job(fast_id)).status != JobStatus.COMPLETED:
            await asyncio.sleep(0.01)

    await asyncio.wait_for(fast_completed(), timeout=2)

    slow = await orchestrator.get_job(slow_id)
    assert slow.status in (JobStatus.QUEUED, JobStatus.SCRAPING)
    assert await job_store.get_persona_context("https://slow.com") is None
    assert await job_store.get_persona_context("https://fast.com") is not None

    content.gates["https://slow.com"].set()
    await orchestrator.wait_idle()
    slow = await orchestrator.get_job(slow_id)
    assert slow.status == JobStatus.COMPLETED
    assert await job_store.get_persona_context("https://slow.com") is not None


async def test_failed_completion_write_ends_in_error(redis_client):
    store = FlakyJobStore(redis_client, JobStatus.COMPLETED)
    content = FakeContentSource({"https://example.com": "Hello"})
    orchestrator = _orchestrator(store, content)

    submission = await orchestrator.submit_batch(["https://example.com"], mode=ScrapeMode.SINGLE)
    await orchestrator.wait_idle()
    job = await orchestrator.get_job(submission.job_ids[0])

    assert job.status == JobStatus.ERROR
    assert job.is_terminal
    assert "connection reset" in job.error


async def test_storage_failure_mid_batch_still_runs_saved_jobs(redis_client):
    store = FlakyJobStore(redis_client, JobStatus.QUEUED, nth=2)
    content = FakeContentSource({"https://one.com": "One", "https://two.com": "Two"})
    orchestrator = _orchestrator(store, content)

    with pytest.raises(StorageError):
        await orchestrator.submit_batch(
            ["https://one.com", "https://two.com"], mode=ScrapeMode.SINGLE
        )
    await orchestrator.wait_idle()

    jobs = await store.list_jobs()
    assert [j.source_url for j in jobs] == ["https://one.com"]
    assert jobs[0].status == JobStatus.COMPLETED
