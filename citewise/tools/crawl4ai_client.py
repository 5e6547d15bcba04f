from __future__ import annotations

from dataclasses import dataclass
from typing import Any

import httpx

from citewise.config import settings
from citewise.errors import ExtractionError

SOCIAL_MEDIA_DOMAINS = (
    "facebook.com",
    "twitter.com",
    "x.com",
    "linkedin.com",
    "instagram.com",
    "pinterest.com",
    "tiktok.com",
    "snapchat.com",
    "reddit.com",
)

# Batch requests get extra headroom over the crawler's own page timeout.
BATCH_TIMEOUT_PADDING_SECONDS = 20.0


@dataclass
class CrawlPage:
    url: str
    title: str
    content: str


def build_payload(urls: list[str]) -> dict[str, Any]:
    return {
        "urls": urls,
        "crawler_config": {
            "type": "CrawlerRunConfig",
            "params": {
                "scraping_strategy": {"type": "WebScrapingStrategy", "params": {}},
                "exclude_social_media_domains": list(SOCIAL_MEDIA_DOMAINS),
                "stream": False,
            },
        },
    }


def _markdown_text(value: Any) -> str:
    if isinstance(value, str):
        return value
    if isinstance(value, dict):
        for key in ("raw_markdown", "fit_markdown"):
            text = value.get(key)
            if isinstance(text, str) and text.strip():
                return text
    return ""


def parse_page(item: dict[str, Any]) -> CrawlPage:
    """Pick the most LLM-friendly content field a crawl result carries."""
    content = _markdown_text(item.get("markdown"))
    if not content.strip():
        for key in ("cleaned_html", "html", "text"):
            value = item.get(key)
            if isinstance(value, str) and value.strip():
                content = value
                break

    url = str(item.get("url") or "")
    metadata = item.get("metadata") if isinstance(item.get("metadata"), dict) else {}
    title = metadata.get("title") or item.get("title") or url
    return CrawlPage(url=url, title=str(title).strip(), content=content.strip())


class Crawl4AIClient:
    """Remote batch crawler; one POST covers every URL of a request."""

    def __init__(
        self,
        base_url: str | None = None,
        *,
        api_key: str | None = None,
        timeout_seconds: float | None = None,
    ):
        self.base_url = (base_url if base_url is not None else settings.crawl4ai_api_url).strip()
        self.api_key = (api_key if api_key is not None else settings.crawl4ai_api_key).strip()
        self.timeout_seconds = float(timeout_seconds or settings.crawl4ai_timeout_seconds)

    @property
    def configured(self) -> bool:
        return bool(self.base_url)

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json", "Accept": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    async def crawl(self, urls: list[str]) -> list[CrawlPage]:
        """Crawl a batch of URLs. Any batch-level failure raises ExtractionError."""
        if not self.configured:
            raise ExtractionError(",".join(urls), "Crawl4AI API URL is not configured")

        endpoint = self.base_url.rstrip("/") + "/crawl"
        try:
            async with httpx.AsyncClient(
                timeout=self.timeout_seconds + BATCH_TIMEOUT_PADDING_SECONDS
            ) as client:
                response = await client.post(endpoint, json=build_payload(urls), headers=self._headers())
                response.raise_for_status()
                body = response.json()
        except httpx.HTTPStatusError as exc:
            status = exc.response.status_code
            raise ExtractionError(endpoint, f"Crawl4AI batch API error ({status})") from exc
        except httpx.HTTPError as exc:
            raise ExtractionError(endpoint, f"Crawl4AI request failed: {exc!s}") from exc
        except ValueError as exc:
            raise ExtractionError(endpoint, "Crawl4AI returned invalid JSON") from exc

        if not isinstance(body, dict) or not body.get("success"):
            detail = ""
            if isinstance(body, dict):
                detail = body.get("error") or body.get("message") or ""
            raise ExtractionError(endpoint, f"Crawl4AI batch extraction failed: {detail or 'unknown error'}")

        results = body.get("results")
        if not isinstance(results, list) or not results:
            raise ExtractionError(endpoint, "No results returned from Crawl4AI batch processing")

        return [parse_page(item) for item in results if isinstance(item, dict)]
