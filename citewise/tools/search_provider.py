from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from typing import Protocol

from citewise.config import Settings, settings
from citewise.errors import (
    AllProvidersFailedError,
    ConfigurationError,
    ProviderError,
    ProviderErrorKind,
)
from citewise.models.search import OptimizationMode, SearchResponse, SearchResult
from citewise.services import logger as log_service
from citewise.tools import web_utils
from citewise.tools.bocha_search import BochaSearch
from citewise.tools.searxng_search import SearxngSearch
from citewise.tools.tavily_search import TavilySearch

CONFIG_ERROR_KINDS = frozenset({ProviderErrorKind.AUTH, ProviderErrorKind.FORBIDDEN})
RETRY_BACKOFF_SECONDS = 0.25


class SearchProvider(Protocol):
    """Capability implemented once per search backend."""

    name: str

    async def search(self, query: str, *, max_results: int = 10) -> SearchResponse:
        ...


@dataclass(slots=True)
class ProviderOutcome:
    provider: str
    results: list[SearchResult] = field(default_factory=list)
    suggestions: list[str] = field(default_factory=list)
    error: ProviderError | None = None
    attempts: int = 0
    duration_ms: int = 0

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass(slots=True)
class FanOutResult:
    results: list[SearchResult]
    outcomes: list[ProviderOutcome]

    @property
    def suggestions(self) -> list[str]:
        merged: list[str] = []
        for outcome in self.outcomes:
            for suggestion in outcome.suggestions:
                if suggestion not in merged:
                    merged.append(suggestion)
        return merged


def merge_results(outcomes: list[ProviderOutcome]) -> list[SearchResult]:
    """Concatenate results in provider order; first-seen wins per normalized URL."""
    merged: list[SearchResult] = []
    seen: set[str] = set()
    for outcome in outcomes:
        for result in outcome.results:
            if not web_utils.is_valid_url(result.url):
                continue
            key = web_utils.normalize_url(result.url)
            if key in seen:
                continue
            seen.add(key)
            merged.append(result)
    return merged


def build_providers(config: Settings) -> dict[str, SearchProvider]:
    """Instantiate adapters for every backend that has credentials/endpoints."""
    providers: dict[str, SearchProvider] = {}
    if config.searxng_api_url.strip():
        providers["searxng"] = SearxngSearch(
            config.searxng_api_url,
            timeout=config.search_provider_timeout_seconds,
        )
    if config.tavily_api_key.strip():
        providers["tavily"] = TavilySearch(config.tavily_api_key)
    if config.bocha_api_key.strip():
        providers["bocha"] = BochaSearch(
            config.bocha_api_key,
            timeout=config.search_provider_timeout_seconds,
        )
    return providers


class ProviderRegistry:
    """Maps optimization modes to providers and fans queries out to them."""

    def __init__(
        self,
        providers: dict[str, SearchProvider] | None = None,
        *,
        config: Settings | None = None,
    ):
        self.config = config or settings
        self.providers = providers if providers is not None else build_providers(self.config)
        self.timeout = float(self.config.search_provider_timeout_seconds)
        self.retry_max = max(int(self.config.search_retry_max), 0)
        self.max_results = max(int(self.config.search_max_results_per_provider), 1)
        self.max_parallel = max(int(self.config.search_max_parallel_requests), 1)

    def select(self, mode: OptimizationMode | str) -> list[str]:
        """Ordered provider ids for a mode, restricted to configured providers."""
        wanted = self.config.providers_for_mode(mode)
        selected = [name for name in wanted if name in self.providers]
        if not selected:
            raise ConfigurationError(
                f"No search provider configured for '{OptimizationMode(mode).value}' mode "
                f"(wanted: {', '.join(wanted) or 'none'})"
            )
        return selected

    async def search(self, query: str, mode: OptimizationMode | str) -> FanOutResult:
        return await self.fan_out(query, self.select(mode))

    async def fan_out(self, query: str, provider_ids: list[str]) -> FanOutResult:
        if not provider_ids:
            raise ConfigurationError("No search providers selected")
        unknown = [p for p in provider_ids if p not in self.providers]
        if unknown:
            raise ConfigurationError(f"Unknown search provider(s): {', '.join(unknown)}")

        semaphore = asyncio.Semaphore(self.max_parallel)

        async def run_one(provider_id: str) -> ProviderOutcome:
            async with semaphore:
                return await self._invoke(provider_id, query)

        # Each task converts its own failure into an outcome, so gather never
        # short-circuits on a single provider.
        outcomes = list(await asyncio.gather(*(run_one(p) for p in provider_ids)))

        failed = [o for o in outcomes if not o.ok]
        if len(failed) == len(outcomes):
            if (
                len(outcomes) == 1
                and len(self.providers) == 1
                and failed[0].error is not None
                and failed[0].error.kind in CONFIG_ERROR_KINDS
            ):
                raise ConfigurationError(str(failed[0].error))
            raise AllProvidersFailedError(outcomes)

        merged = merge_results(outcomes)
        log_service.log_event(
            event_type="search_fan_out",
            message="Search fan-out complete",
            providers=provider_ids,
            failed=[o.provider for o in failed],
            merged_results=len(merged),
        )
        return FanOutResult(results=merged, outcomes=outcomes)

    async def _invoke(self, provider_id: str, query: str) -> ProviderOutcome:
        provider = self.providers[provider_id]
        outcome = ProviderOutcome(provider=provider_id)
        started = time.monotonic()
        max_attempts = self.retry_max + 1

        for attempt in range(1, max_attempts + 1):
            outcome.attempts = attempt
            try:
                response = await asyncio.wait_for(
                    provider.search(query, max_results=self.max_results),
                    timeout=self.timeout,
                )
                outcome.results = list(response.results)
                outcome.suggestions = list(response.suggestions)
                outcome.error = None
                break
            except ProviderError as exc:
                outcome.error = exc
            except asyncio.TimeoutError:
                outcome.error = ProviderError(
                    provider_id,
                    ProviderErrorKind.TIMEOUT,
                    f"no response within {self.timeout:.1f}s",
                )
            except Exception as exc:
                outcome.error = ProviderError(
                    provider_id,
                    ProviderErrorKind.UNKNOWN,
                    str(exc) or type(exc).__name__,
                )
            if not outcome.error.retryable or attempt >= max_attempts:
                break
            await asyncio.sleep(min(RETRY_BACKOFF_SECONDS * attempt, 1.0))

        outcome.duration_ms = int((time.monotonic() - started) * 1000)
        log_service.log_provider_call(
            provider=provider_id,
            query=query,
            results_count=len(outcome.results),
            duration_ms=outcome.duration_ms,
            attempts=outcome.attempts,
            error_kind=outcome.error.kind.value if outcome.error else None,
            error=outcome.error.message if outcome.error else None,
        )
        return outcome
