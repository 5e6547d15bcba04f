from __future__ import annotations

from typing import Any

import httpx
from tavily import AsyncTavilyClient
from tavily.errors import (
    BadRequestError,
    ForbiddenError,
    InvalidAPIKeyError,
    MissingAPIKeyError,
    UsageLimitExceededError,
)

from citewise.config import settings
from citewise.errors import ProviderError, ProviderErrorKind
from citewise.models.search import SearchResponse, SearchResult

PROVIDER = "tavily"

TAVILY_ERROR_KINDS: tuple[tuple[type[Exception], ProviderErrorKind], ...] = (
    (MissingAPIKeyError, ProviderErrorKind.AUTH),
    (InvalidAPIKeyError, ProviderErrorKind.AUTH),
    (ForbiddenError, ProviderErrorKind.FORBIDDEN),
    (UsageLimitExceededError, ProviderErrorKind.RATE_LIMITED),
    (BadRequestError, ProviderErrorKind.MALFORMED),
)


def _classify(exc: Exception) -> ProviderError:
    for error_type, kind in TAVILY_ERROR_KINDS:
        if isinstance(exc, error_type):
            return ProviderError(PROVIDER, kind, str(exc) or type(exc).__name__)
    if isinstance(exc, httpx.HTTPStatusError):
        return ProviderError.from_status(PROVIDER, exc.response.status_code, str(exc))
    if isinstance(exc, (httpx.TimeoutException, TimeoutError)):
        return ProviderError(PROVIDER, ProviderErrorKind.TIMEOUT, str(exc) or "timed out")
    if isinstance(exc, httpx.HTTPError):
        return ProviderError(PROVIDER, ProviderErrorKind.NETWORK, str(exc) or type(exc).__name__)
    return ProviderError(PROVIDER, ProviderErrorKind.UNKNOWN, str(exc) or type(exc).__name__)


class TavilySearch:
    """Tavily search API adapter."""

    name = PROVIDER

    def __init__(
        self,
        api_key: str | None = None,
        *,
        search_depth: str = "basic",
        include_images: bool = False,
        include_domains: list[str] | None = None,
        exclude_domains: list[str] | None = None,
    ):
        self.api_key = (api_key if api_key is not None else settings.tavily_api_key).strip()
        self.search_depth = search_depth
        self.include_images = include_images
        self.include_domains = include_domains
        self.exclude_domains = exclude_domains

    async def search(self, query: str, *, max_results: int = 10) -> SearchResponse:
        if not self.api_key:
            raise ProviderError(PROVIDER, ProviderErrorKind.AUTH, "TAVILY_API_KEY is not configured")

        kwargs: dict[str, Any] = {
            "query": query,
            "search_depth": self.search_depth,
            "max_results": max_results,
            "include_images": self.include_images,
        }
        if self.include_domains:
            kwargs["include_domains"] = self.include_domains
        if self.exclude_domains:
            kwargs["exclude_domains"] = self.exclude_domains

        try:
            client = AsyncTavilyClient(api_key=self.api_key)
            response = await client.search(**kwargs)
        except Exception as exc:
            raise _classify(exc) from exc

        if not isinstance(response, dict) or not isinstance(response.get("results"), list):
            raise ProviderError(PROVIDER, ProviderErrorKind.MALFORMED, "response has no results list")

        results: list[SearchResult] = []
        for r in response["results"]:
            if not isinstance(r, dict) or not r.get("url"):
                continue
            score = r.get("score")
            results.append(
                SearchResult(
                    title=r.get("title", "") or "",
                    url=r["url"],
                    content=r.get("content", "") or "",
                    published_date=r.get("published_date") or None,
                    score=float(score) if isinstance(score, (int, float)) else None,
                    provider=PROVIDER,
                )
            )
        # Tavily does not return query suggestions.
        return SearchResponse(results=results, suggestions=[])
