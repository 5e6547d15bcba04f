from __future__ import annotations

import asyncio
import io
import re
from dataclasses import dataclass
from html import unescape
from typing import Iterable

import httpx
from bs4 import BeautifulSoup

from citewise.config import settings
from citewise.errors import ExtractionError
from citewise.models.search import ExtractedDocument
from citewise.services.logger import logger
from citewise.tools import web_utils
from citewise.tools.crawl4ai_client import Crawl4AIClient, CrawlPage

METHOD_LOCAL = "local"
METHOD_CRAWL4AI = "crawl4ai"

FAILED_TITLE = "Extraction Failed"
PDF_TITLE = "PDF Document"

NAV_MARKERS = (
    "main menu",
    "navigation",
    "jump to content",
    "cookie",
    "sign in",
)

TITLE_RE = re.compile(r"<title[^>]*>(.*?)</title>", re.IGNORECASE | re.DOTALL)


@dataclass
class FetchedPage:
    url: str
    body: bytes
    content_type: str
    encoding: str | None = None


def placeholder(url: str, reason: str, method: str) -> ExtractedDocument:
    return ExtractedDocument(
        url=url,
        title=FAILED_TITLE,
        text=f"Failed to retrieve content: {reason}",
        method=method,
        error=reason,
    )


def _looks_low_quality(text: str) -> bool:
    normalized = text.lower()
    marker_hits = sum(normalized.count(marker) for marker in NAV_MARKERS)
    if len(text) < 200:
        return True
    if marker_hits >= 4 and len(text) < 2500:
        return True
    return False


def _extract_title(html: str, url: str) -> str:
    match = TITLE_RE.search(html)
    if match:
        title = web_utils.normalize_whitespace(unescape(match.group(1)))
        if title:
            return title
    return url


def _extract_with_trafilatura(html: str) -> str:
    import trafilatura

    extracted = trafilatura.extract(html, output_format="txt", include_links=False)
    if not isinstance(extracted, str):
        return ""
    return web_utils.normalize_whitespace(extracted)


def _extract_with_soup(html: str) -> str:
    """Whole-page text; anchors keep their text, hrefs are dropped."""
    soup = BeautifulSoup(html, "html.parser")
    for tag in soup(["script", "style", "noscript", "template"]):
        tag.decompose()
    return web_utils.normalize_whitespace(soup.get_text(" "))


def _extract_pdf_text(body: bytes) -> str:
    from pypdf import PdfReader

    reader = PdfReader(io.BytesIO(body))
    pages = [page.extract_text() or "" for page in reader.pages]
    return web_utils.normalize_whitespace(" ".join(pages))


def _is_pdf(page: FetchedPage) -> bool:
    if "application/pdf" in page.content_type.lower():
        return True
    return page.url.lower().split("?", 1)[0].endswith(".pdf")


def parse_page(page: FetchedPage, *, max_chars: int) -> tuple[str, str]:
    """Return (title, text) for a fetched body. Runs off the event loop."""
    if _is_pdf(page):
        return PDF_TITLE, web_utils.clip(_extract_pdf_text(page.body), max_chars)

    html = page.body.decode(page.encoding or "utf-8", errors="replace")
    title = _extract_title(html, page.url)

    text = ""
    try:
        text = _extract_with_trafilatura(html)
    except Exception as exc:
        logger.debug(f"trafilatura failed for {page.url}: {exc}")
    if not text or _looks_low_quality(text):
        fallback = _extract_with_soup(html)
        if len(fallback) > len(text):
            text = fallback
    return title, web_utils.clip(text, max_chars)


class LocalExtractor:
    """Fetch each URL directly and pull readable text out of it."""

    method = METHOD_LOCAL

    def __init__(
        self,
        *,
        timeout_seconds: float | None = None,
        max_chars: int | None = None,
        user_agent: str | None = None,
        max_parallel: int | None = None,
    ):
        self.timeout_seconds = float(timeout_seconds or settings.extract_timeout_seconds)
        self.max_chars = int(max_chars if max_chars is not None else settings.extractor_max_page_chars)
        self.user_agent = user_agent or settings.extract_user_agent
        self.max_parallel = max(int(max_parallel or settings.extract_max_parallel_requests), 1)

    async def fetch(self, client: httpx.AsyncClient, url: str) -> FetchedPage:
        response = await client.get(url)
        response.raise_for_status()
        return FetchedPage(
            url=str(response.url),
            body=response.content,
            content_type=response.headers.get("content-type", ""),
            encoding=response.encoding,
        )

    async def extract_one(self, client: httpx.AsyncClient, url: str) -> ExtractedDocument:
        try:
            page = await self.fetch(client, url)
        except httpx.HTTPStatusError as exc:
            return self._failed(url, f"HTTP {exc.response.status_code}")
        except httpx.TimeoutException:
            return self._failed(url, "request timed out")
        except httpx.HTTPError as exc:
            return self._failed(url, str(exc) or type(exc).__name__)

        try:
            title, text = await asyncio.to_thread(parse_page, page, max_chars=self.max_chars)
        except Exception as exc:
            return self._failed(url, f"could not parse content: {exc}")

        if not text:
            return self._failed(url, "no readable content")
        return ExtractedDocument(url=url, title=title, text=text, method=self.method)

    def _failed(self, url: str, reason: str) -> ExtractedDocument:
        logger.warning(f"Local extraction failed for {url}: {reason}")
        return placeholder(url, reason, self.method)

    async def extract(self, urls: list[str]) -> list[ExtractedDocument]:
        if not urls:
            return []
        semaphore = asyncio.Semaphore(self.max_parallel)

        async with httpx.AsyncClient(
            timeout=self.timeout_seconds,
            follow_redirects=True,
            headers={"User-Agent": self.user_agent},
        ) as client:

            async def run_one(url: str) -> ExtractedDocument:
                async with semaphore:
                    return await self.extract_one(client, url)

            return list(await asyncio.gather(*(run_one(url) for url in urls)))


class ContentExtractor:
    """Turns URLs into documents, one per input URL and in input order.

    With ``crawl4ai`` configured the whole list goes to the remote crawler in
    one batch; a batch-level failure falls back to the local strategy. URLs the
    batch skipped or returned empty become placeholders.
    """

    def __init__(
        self,
        *,
        method: str | None = None,
        local: LocalExtractor | None = None,
        crawler: Crawl4AIClient | None = None,
    ):
        self.method = (method or settings.extraction_method or METHOD_LOCAL).strip().lower()
        self.local = local or LocalExtractor()
        self.crawler = crawler or Crawl4AIClient()

    async def extract(self, urls: Iterable[str]) -> list[ExtractedDocument]:
        targets = [web_utils.ensure_scheme(url) for url in urls if url and url.strip()]
        if not targets:
            return []

        if self.method == METHOD_CRAWL4AI and self.crawler.configured:
            try:
                pages = await self.crawler.crawl(targets)
            except ExtractionError as exc:
                logger.warning(f"Crawl4AI batch failed, falling back to local extraction: {exc}")
            else:
                return self._from_batch(targets, pages)
        elif self.method == METHOD_CRAWL4AI:
            logger.warning("EXTRACTION_METHOD=crawl4ai but CRAWL4AI_API_URL is empty; using local extraction")

        return await self.local.extract(targets)

    def _from_batch(self, targets: list[str], pages: list[CrawlPage]) -> list[ExtractedDocument]:
        by_url: dict[str, CrawlPage] = {}
        for page in pages:
            if page.url:
                by_url.setdefault(web_utils.normalize_url(page.url), page)

        documents: list[ExtractedDocument] = []
        for url in targets:
            page = by_url.get(web_utils.normalize_url(url))
            if page is None:
                documents.append(placeholder(url, "missing from crawl results", METHOD_CRAWL4AI))
                continue
            text = web_utils.clip(
                web_utils.normalize_whitespace(page.content), self.local.max_chars
            )
            if not text:
                documents.append(placeholder(url, "crawler returned no content", METHOD_CRAWL4AI))
                continue
            documents.append(
                ExtractedDocument(url=url, title=page.title or url, text=text, method=METHOD_CRAWL4AI)
            )
        return documents
