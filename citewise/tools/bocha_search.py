from __future__ import annotations

from typing import Any

from citewise.config import settings
from citewise.errors import ProviderError, ProviderErrorKind
from citewise.models.search import SearchResponse, SearchResult
from citewise.services.logger import logger
from citewise.tools import web_utils

PROVIDER = "bocha"
BOCHA_SEARCH_URL = "https://api.bochaai.com/v1/web-search"

FRESHNESS_VALUES = ("oneDay", "oneWeek", "oneMonth", "oneYear", "noLimit")


def map_results(payload: Any, max_results: int) -> list[SearchResult]:
    """Map a BochaAI web-search payload; an unexpected shape yields no results."""
    web_pages = None
    if isinstance(payload, dict):
        data = payload.get("data")
        if isinstance(data, dict):
            web_pages = (data.get("webPages") or {}).get("value")
    if not isinstance(web_pages, list):
        logger.warning(f"Unexpected BochaAI response structure: {str(payload)[:200]}")
        return []

    mapped: list[SearchResult] = []
    for item in web_pages:
        if not isinstance(item, dict) or not item.get("url"):
            continue
        mapped.append(
            SearchResult(
                title=item.get("name") or item.get("title") or "",
                url=item["url"],
                content=item.get("summary") or item.get("snippet") or "",
                image_url=item.get("siteIcon") or None,
                published_date=item.get("datePublished") or None,
                provider=PROVIDER,
            )
        )
        if len(mapped) >= max_results:
            break
    return mapped


class BochaSearch:
    """BochaAI web search API adapter."""

    name = PROVIDER

    def __init__(
        self,
        api_key: str | None = None,
        *,
        freshness: str = "noLimit",
        summary: bool = True,
        timeout: float | None = None,
    ):
        if freshness not in FRESHNESS_VALUES:
            raise ValueError(f"Unsupported BochaAI freshness: {freshness}")
        self.api_key = (api_key if api_key is not None else settings.bocha_api_key).strip()
        self.freshness = freshness
        self.summary = summary
        self.timeout = timeout or settings.search_provider_timeout_seconds

    async def search(self, query: str, *, max_results: int = 10, page: int = 1) -> SearchResponse:
        if not self.api_key:
            raise ProviderError(PROVIDER, ProviderErrorKind.AUTH, "BOCHA_API_KEY is not configured")

        payload = await web_utils.request_json(
            PROVIDER,
            "POST",
            BOCHA_SEARCH_URL,
            json={
                "query": query,
                "freshness": self.freshness,
                "summary": self.summary,
                "count": max_results,
                "page": page,
            },
            headers={
                "Authorization": f"Bearer {self.api_key}",
                "Content-Type": "application/json",
            },
            timeout=self.timeout,
        )
        # BochaAI does not provide search suggestions.
        return SearchResponse(results=map_results(payload, max_results), suggestions=[])
