"""Typer CLI for building website knowledge bases and starting avatar sessions."""

import asyncio
import sys
from typing import List, Optional

import questionary
import typer

from src.clients import build_default_clients
from src.config import Settings, get_settings, missing_credentials
from src.errors import ConcurrencyLimitError, PersonaServiceError
from src.logging_config import setup_logging
from src.main import build_assembler, build_orchestrator
from src.pipeline.models import JobStatus, ScrapeJob, ScrapeMode
from src.pipeline.orchestrator import ScrapeOrchestrator
from src.store.redis import JobStore, create_redis_client

app = typer.Typer(help="Create and manage AI avatar persona contexts from websites.")

MODE_CHOICES = [
    questionary.Choice("Crawl website (auto-discover pages)", value=ScrapeMode.CRAWL.value),
    questionary.Choice("Scrape specific pages", value=ScrapeMode.PAGES.value),
    questionary.Choice("Scrape single page", value=ScrapeMode.SINGLE.value),
]


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log pipeline progress to stderr"),
):
    """Create and manage AI avatar persona contexts from websites."""
    setup_logging(get_settings().log_level if verbose else "WARNING", stream=sys.stderr)


def _split_urls(raw: str) -> list[str]:
    return [u.strip() for u in raw.replace("\n", ",").split(",") if u.strip()]


def _select_mode() -> ScrapeMode:
    choice = questionary.select("How would you like to gather content?", choices=MODE_CHOICES).ask()
    if choice is None:
        raise typer.Exit(0)
    return ScrapeMode(choice)


async def _poll_until_terminal(
    orchestrator: ScrapeOrchestrator,
    job_ids: list[str],
    interval: float,
) -> list[ScrapeJob]:
    """Poll job status, echoing each change, until every job is completed or error."""
    last_seen: dict[str, tuple] = {}
    while True:
        jobs = await orchestrator.get_batch_status(job_ids)
        for job in jobs:
            snapshot = (job.status, len(job.pages))
            if last_seen.get(job.id) != snapshot:
                last_seen[job.id] = snapshot
                typer.echo(f"  {job.source_url}: {job.status.value} ({len(job.pages)} pages)")
        if all(job.is_terminal for job in jobs):
            return jobs
        await asyncio.sleep(interval)


async def _run_create(
    settings: Settings,
    mode: ScrapeMode,
    urls: list[str],
    page_urls: list[str],
    max_pages: Optional[int],
    start_session: bool,
) -> int:
    redis_client = await create_redis_client(settings.redis_url)
    clients = build_default_clients(settings)
    store = JobStore(redis_client)
    orchestrator = build_orchestrator(settings, store, clients.content_source, clients.summarizer)
    try:
        if mode == ScrapeMode.PAGES:
            submission = await orchestrator.submit_pages(urls[0], page_urls, max_pages=max_pages)
        else:
            submission = await orchestrator.submit_batch(urls, mode=mode, max_pages=max_pages)
        for url, reason in submission.rejected.items():
            typer.echo(f"✗ Skipping {url}: {reason}", err=True)
        typer.echo(f"Started {len(submission.job_ids)} job(s)")

        jobs = await _poll_until_terminal(
            orchestrator, submission.job_ids, settings.poll_interval_seconds
        )
        completed = [j for j in jobs if j.status == JobStatus.COMPLETED]
        for job in jobs:
            if job.error:
                typer.echo(f"✗ {job.source_url}: {job.error}", err=True)
            else:
                typer.echo(
                    f"✓ {job.source_url}: {len(job.pages)} pages, "
                    f"{len(job.final_context or '') / 1024:.2f} KB of context"
                )
        if not completed:
            typer.echo("✗ No usable content was produced; try again with different URLs", err=True)
            return 1

        if start_session:
            assembler = build_assembler(settings, store, clients.avatar)
            handle = await assembler.assemble_session([j.id for j in completed])
            if handle.persona_error:
                typer.echo(f"! Persona could not be created: {handle.persona_error}", err=True)
            typer.echo(f"✓ Conversation ready: {handle.conversation_url}")
        return 0
    finally:
        await orchestrator.wait_idle()
        await clients.avatar.aclose()
        await redis_client.aclose()


@app.command()
def create(
    url: Optional[List[str]] = typer.Option(
        None, "--url", "-u", help="Website URL (repeat for several sites)"
    ),
    mode: Optional[ScrapeMode] = typer.Option(None, "--mode", "-m", help="crawl, pages or single"),
    page: Optional[List[str]] = typer.Option(
        None, "--page", "-p", help="Page URL to scrape in 'pages' mode (repeatable)"
    ),
    max_pages: Optional[int] = typer.Option(None, "--max-pages", min=1, help="Page limit per site"),
    session: Optional[bool] = typer.Option(
        None, "--session/--no-session", help="Start a conversation once scraping finishes"
    ),
):
    """
    Scrape one or more websites, summarize them into knowledge bases and
    optionally start an avatar conversation grounded in them.

    Anything not passed as an option is asked for interactively.
    """
    settings = get_settings()
    missing = missing_credentials(settings)
    if missing:
        typer.echo(f"✗ Missing configuration: {', '.join(missing)}", err=True)
        typer.echo("  Run 'check-env' for details.", err=True)
        raise typer.Exit(1)

    if mode is None:
        mode = _select_mode()

    urls = list(url or [])
    page_urls = list(page or [])
    if mode == ScrapeMode.PAGES:
        if not urls:
            urls = [typer.prompt("Main website URL (for context)")]
        if not page_urls:
            page_urls = _split_urls(typer.prompt("Page URLs (comma-separated)"))
    elif not urls:
        label = "Website URL(s) to crawl" if mode == ScrapeMode.CRAWL else "Page URL to scrape"
        urls = _split_urls(typer.prompt(f"{label} (comma-separated)"))

    if mode == ScrapeMode.CRAWL and max_pages is None:
        max_pages = typer.prompt(
            "Maximum number of pages to crawl", default=settings.default_max_pages, type=int
        )
    if session is None:
        session = typer.confirm("Start a conversation when done?", default=False)

    try:
        code = asyncio.run(_run_create(settings, mode, urls, page_urls, max_pages, session))
    except ConcurrencyLimitError as e:
        typer.echo(f"✗ {e.message}", err=True)
        raise typer.Exit(1)
    except PersonaServiceError as e:
        typer.echo(f"✗ Error: {e}", err=True)
        raise typer.Exit(1)
    raise typer.Exit(code)


@app.command("check-env")
def check_env():
    """Check that every required API key is configured."""
    settings = get_settings()
    missing = missing_credentials(settings)
    if missing:
        typer.echo("✗ Missing required API keys:")
        for key in missing:
            typer.echo(f"   - {key}")
        typer.echo("\nAdd them to your environment or .env file.")
        raise typer.Exit(1)

    typer.echo("✓ All required API keys are set!")
    typer.echo(f"  LLM Provider: {settings.llm_provider}")
    typer.echo(f"  Tavus API Key: {settings.tavus_api_key[:10]}...")
    typer.echo(f"  Tavus Replica ID: {settings.tavus_replica_id}")


async def _list_contexts(settings: Settings):
    redis_client = await create_redis_client(settings.redis_url)
    try:
        return await JobStore(redis_client).list_persona_contexts()
    finally:
        await redis_client.aclose()


@app.command()
def contexts():
    """List the stored persona contexts."""
    try:
        records = asyncio.run(_list_contexts(get_settings()))
    except PersonaServiceError as e:
        typer.echo(f"✗ Error: {e}", err=True)
        raise typer.Exit(1)
    if not records:
        typer.echo("No persona contexts stored yet. Run 'create' first.")
        return
    for record in records:
        typer.echo(
            f"{record.source_url}  {record.created_at:%Y-%m-%d %H:%M}  "
            f"{len(record.page_summaries)} pages  {len(record.context) / 1024:.2f} KB"
        )


async def _clear_jobs(settings: Settings) -> int:
    redis_client = await create_redis_client(settings.redis_url)
    try:
        return await JobStore(redis_client).clear_all_jobs()
    finally:
        await redis_client.aclose()


@app.command("clear-jobs")
def clear_jobs(yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation")):
    """Delete every stored scrape job (persona contexts are kept)."""
    if not yes and not typer.confirm("Delete all scrape jobs?", default=False):
        raise typer.Exit(0)
    try:
        cleared = asyncio.run(_clear_jobs(get_settings()))
    except PersonaServiceError as e:
        typer.echo(f"✗ Error: {e}", err=True)
        raise typer.Exit(1)
    typer.echo(f"✓ Cleared {cleared} job(s)")


@app.command()
def serve(
    host: str = typer.Option("127.0.0.1", help="Bind address"),
    port: int = typer.Option(8000, help="Bind port"),
    reload: bool = typer.Option(False, help="Reload on code changes"),
):
    """Start the HTTP API server."""
    import uvicorn

    uvicorn.run("src.main:app", host=host, port=port, reload=reload)


if __name__ == "__main__":
    app()
