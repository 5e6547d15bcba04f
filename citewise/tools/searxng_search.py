from __future__ import annotations

from typing import Any

from citewise.config import settings
from citewise.errors import ProviderError, ProviderErrorKind
from citewise.models.search import SearchResponse, SearchResult
from citewise.tools import web_utils

PROVIDER = "searxng"


def map_results(payload: dict[str, Any], max_results: int) -> SearchResponse:
    raw_results = payload.get("results")
    if not isinstance(raw_results, list):
        raise ProviderError(PROVIDER, ProviderErrorKind.MALFORMED, "response has no results list")

    mapped: list[SearchResult] = []
    for item in raw_results:
        if not isinstance(item, dict) or not item.get("url"):
            continue
        score = item.get("score")
        mapped.append(
            SearchResult(
                title=item.get("title", "") or "",
                url=item["url"],
                content=item.get("content", "") or "",
                image_url=item.get("img_src") or item.get("thumbnail_src") or None,
                published_date=item.get("publishedDate") or None,
                score=float(score) if isinstance(score, (int, float)) else None,
                provider=PROVIDER,
            )
        )
        if len(mapped) >= max_results:
            break

    suggestions = [s for s in payload.get("suggestions", []) or [] if isinstance(s, str)]
    return SearchResponse(results=mapped, suggestions=suggestions)


class SearxngSearch:
    """Self-hosted SearXNG meta-search over its JSON API."""

    name = PROVIDER

    def __init__(
        self,
        base_url: str | None = None,
        *,
        categories: list[str] | None = None,
        engines: list[str] | None = None,
        language: str | None = None,
        timeout: float | None = None,
    ):
        self.base_url = (base_url if base_url is not None else settings.searxng_api_url).strip()
        self.categories = categories
        self.engines = engines
        self.language = language
        self.timeout = timeout or settings.search_provider_timeout_seconds

    async def search(self, query: str, *, max_results: int = 10, pageno: int = 1) -> SearchResponse:
        if not self.base_url:
            raise ProviderError(PROVIDER, ProviderErrorKind.AUTH, "SEARXNG_API_URL is not configured")

        params: dict[str, Any] = {"q": query, "format": "json", "pageno": pageno}
        if self.categories:
            params["categories"] = ",".join(self.categories)
        if self.engines:
            params["engines"] = ",".join(self.engines)
        if self.language:
            params["language"] = self.language

        payload = await web_utils.request_json(
            PROVIDER,
            "GET",
            self.base_url.rstrip("/") + "/search",
            params=params,
            timeout=self.timeout,
            headers={"Accept": "application/json"},
        )
        if not isinstance(payload, dict):
            raise ProviderError(PROVIDER, ProviderErrorKind.MALFORMED, "response is not an object")
        return map_results(payload, max_results)
