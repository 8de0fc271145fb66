"""Firecrawl content source: site mapping, single-page and batch scraping."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Protocol, TypeVar

from firecrawl import AsyncFirecrawl

from src.errors import UpstreamError, UpstreamTimeoutError
from src.pipeline.models import PageRecord

logger = logging.getLogger(__name__)

SERVICE = "firecrawl"

T = TypeVar("T")


class ContentSource(Protocol):
    """Protocol for content sources."""

    async def map_site(self, url: str, max_pages: int) -> list[str]: ...

    async def scrape_page(self, url: str) -> PageRecord: ...

    async def batch_scrape(self, urls: list[str]) -> list[PageRecord]: ...


def _field(obj: Any, name: str, default: Any = None) -> Any:
    """Read *name* from an SDK response that may be a dict or a model object."""
    if obj is None:
        return default
    if isinstance(obj, dict):
        return obj.get(name, default)
    return getattr(obj, name, default)


def _to_page(document: Any, fallback_url: str) -> PageRecord:
    metadata = _field(document, "metadata") or {}
    markdown = _field(document, "markdown") or ""
    html = _field(document, "html") or ""
    url = (
        _field(metadata, "source_url")
        or _field(metadata, "sourceURL")
        or _field(metadata, "url")
        or fallback_url
    )
    return PageRecord(
        url=url,
        title=_field(metadata, "title") or "",
        raw_content=html or markdown,
        extracted_text=markdown,
    )


class FirecrawlContentSource:
    """Loads pages using the Firecrawl API."""

    def __init__(self, api_key: str, api_url: str = "", timeout: float = 60.0) -> None:
        kwargs: dict = {"api_key": api_key}
        if api_url:
            kwargs["api_url"] = api_url
        self._client = AsyncFirecrawl(**kwargs)
        self._timeout = timeout

    async def _call(self, operation: str, url: str, awaitable: Awaitable[T]) -> T:
        try:
            return await asyncio.wait_for(awaitable, timeout=self._timeout)
        except asyncio.TimeoutError as exc:
            logger.warning(
                "firecrawl request timed out",
                extra={"operation": operation, "url": url, "timeout": self._timeout},
            )
            raise UpstreamTimeoutError(SERVICE, self._timeout) from exc
        except Exception as exc:
            logger.warning(
                "firecrawl request failed",
                extra={"operation": operation, "url": url},
                exc_info=True,
            )
            raise UpstreamError(
                SERVICE, str(exc) or type(exc).__name__, getattr(exc, "status_code", None)
            ) from exc

    async def map_site(self, url: str, max_pages: int) -> list[str]:
        """Return up to *max_pages* same-site URLs, starting with *url* itself."""
        response = await self._call(
            "map",
            url,
            self._client.map(url, limit=max_pages, include_subdomains=False),
        )
        links: list[str] = [url]
        for link in _field(response, "links") or []:
            link_url = link if isinstance(link, str) else _field(link, "url")
            if link_url and link_url not in links:
                links.append(link_url)
        logger.debug("site mapped", extra={"url": url, "links_found": len(links)})
        return links[:max_pages]

    async def scrape_page(self, url: str) -> PageRecord:
        document = await self._call(
            "scrape",
            url,
            self._client.scrape(url, formats=["markdown", "html"], only_main_content=True),
        )
        page = _to_page(document, url)
        if not page.extracted_text.strip():
            raise UpstreamError(SERVICE, f"no content returned for {url}")
        return page

    async def batch_scrape(self, urls: list[str]) -> list[PageRecord]:
        """Scrape *urls* in one Firecrawl batch job; pages with no content are dropped."""
        if not urls:
            return []
        job = await self._call(
            "batch_scrape",
            urls[0],
            self._client.batch_scrape(urls, formats=["markdown", "html"], only_main_content=True),
        )
        documents = _field(job, "data") or []
        pages = [
            _to_page(doc, urls[i] if i < len(urls) else urls[0])
            for i, doc in enumerate(documents)
        ]
        pages = [p for p in pages if p.extracted_text.strip()]
        logger.debug(
            "batch scrape complete",
            extra={"urls_attempted": len(urls), "pages_returned": len(pages)},
        )
        return pages
