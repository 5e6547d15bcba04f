from __future__ import annotations

import asyncio

import pytest

from citewise.config import Settings
from citewise.errors import (
    AllProvidersFailedError,
    ConfigurationError,
    ProviderError,
    ProviderErrorKind,
)
from citewise.models.search import OptimizationMode, SearchResponse
from citewise.tools import search_provider
from citewise.tools.search_provider import ProviderOutcome, ProviderRegistry, merge_results

from conftest import FakeProvider, make_result


def _settings(**overrides) -> Settings:
    values = {
        "search_retry_max": 1,
        "search_provider_timeout_seconds": 1.0,
        "search_max_parallel_requests": 4,
    }
    values.update(overrides)
    return Settings(**values)


@pytest.fixture(autouse=True)
def no_backoff(monkeypatch):
    monkeypatch.setattr(search_provider, "RETRY_BACKOFF_SECONDS", 0.0)


def test_merge_results_keeps_first_seen_per_normalized_url():
    outcomes = [
        ProviderOutcome(
            provider="searxng",
            results=[
                make_result("https://www.example.com/a/", title="first"),
                make_result("https://example.com/b"),
            ],
        ),
        ProviderOutcome(
            provider="tavily",
            results=[
                make_result("https://example.com/a?utm=1", title="second"),
                make_result("https://other.org/c"),
            ],
        ),
    ]

    merged = merge_results(outcomes)

    assert [r.url for r in merged] == [
        "https://www.example.com/a/",
        "https://example.com/b",
        "https://other.org/c",
    ]
    assert merged[0].title == "first"


def test_select_filters_to_configured_providers_in_mode_order():
    registry = ProviderRegistry(
        {"bocha": FakeProvider("bocha"), "searxng": FakeProvider("searxng")},
        config=_settings(),
    )

    assert registry.select(OptimizationMode.BALANCED) == ["searxng", "bocha"]
    assert registry.select("speed") == ["searxng"]


def test_select_raises_when_mode_has_no_configured_provider():
    registry = ProviderRegistry({"tavily": FakeProvider("tavily")}, config=_settings())

    with pytest.raises(ConfigurationError):
        registry.select(OptimizationMode.SPEED)


def test_mode_mapping_is_configurable():
    config = _settings(search_mode_quality="bocha, tavily")
    registry = ProviderRegistry(
        {name: FakeProvider(name) for name in ("searxng", "tavily", "bocha")},
        config=config,
    )

    assert registry.select("quality") == ["bocha", "tavily"]


@pytest.mark.asyncio
async def test_fan_out_merges_in_provider_order_and_isolates_failures():
    searxng = FakeProvider(
        "searxng",
        [SearchResponse(results=[make_result("https://a.com")], suggestions=["more a"])],
    )
    tavily = FakeProvider(
        "tavily",
        [ProviderError("tavily", ProviderErrorKind.RATE_LIMITED, "slow down", status_code=429)],
    )
    bocha = FakeProvider(
        "bocha",
        [SearchResponse(results=[make_result("https://a.com/"), make_result("https://b.com")])],
    )
    registry = ProviderRegistry(
        {"searxng": searxng, "tavily": tavily, "bocha": bocha},
        config=_settings(),
    )

    result = await registry.fan_out("query", ["searxng", "tavily", "bocha"])

    assert [r.url for r in result.results] == ["https://a.com", "https://b.com"]
    assert result.suggestions == ["more a"]
    failed = [o for o in result.outcomes if not o.ok]
    assert [o.provider for o in failed] == ["tavily"]
    assert failed[0].error.kind is ProviderErrorKind.RATE_LIMITED
    # Rate limits are never retried within a request.
    assert tavily.calls == ["query"]


@pytest.mark.asyncio
async def test_fan_out_retries_network_errors_once():
    flaky = FakeProvider(
        "searxng",
        [
            ProviderError("searxng", ProviderErrorKind.NETWORK, "connection reset"),
            SearchResponse(results=[make_result("https://a.com")]),
        ],
    )
    registry = ProviderRegistry({"searxng": flaky}, config=_settings())

    result = await registry.fan_out("q", ["searxng"])

    assert len(flaky.calls) == 2
    assert result.outcomes[0].attempts == 2
    assert result.outcomes[0].ok


@pytest.mark.asyncio
async def test_fan_out_does_not_retry_auth_errors():
    provider = FakeProvider(
        "tavily",
        [ProviderError("tavily", ProviderErrorKind.AUTH, "bad key", status_code=401)],
    )
    other = FakeProvider("searxng", [SearchResponse(results=[make_result("https://a.com")])])
    registry = ProviderRegistry({"tavily": provider, "searxng": other}, config=_settings())

    result = await registry.fan_out("q", ["searxng", "tavily"])

    assert provider.calls == ["q"]
    assert [r.url for r in result.results] == ["https://a.com"]


@pytest.mark.asyncio
async def test_fan_out_times_out_slow_provider():
    class SlowProvider:
        name = "searxng"

        async def search(self, query, *, max_results=10):
            await asyncio.sleep(5)
            return SearchResponse()

    fast = FakeProvider("bocha", [SearchResponse(results=[make_result("https://fast.com")])])
    registry = ProviderRegistry(
        {"searxng": SlowProvider(), "bocha": fast},
        config=_settings(search_provider_timeout_seconds=0.05, search_retry_max=0),
    )

    result = await registry.fan_out("q", ["searxng", "bocha"])

    slow_outcome = result.outcomes[0]
    assert slow_outcome.error.kind is ProviderErrorKind.TIMEOUT
    assert [r.url for r in result.results] == ["https://fast.com"]


@pytest.mark.asyncio
async def test_fan_out_wraps_unexpected_exceptions():
    broken = FakeProvider("bocha", [RuntimeError("boom")])
    ok = FakeProvider("searxng", [SearchResponse(results=[make_result("https://a.com")])])
    registry = ProviderRegistry({"bocha": broken, "searxng": ok}, config=_settings())

    result = await registry.fan_out("q", ["searxng", "bocha"])

    assert result.outcomes[1].error.kind is ProviderErrorKind.UNKNOWN
    assert "boom" in result.outcomes[1].error.message


@pytest.mark.asyncio
async def test_all_providers_failed_raises_with_outcomes():
    registry = ProviderRegistry(
        {
            "searxng": FakeProvider(
                "searxng", [ProviderError("searxng", ProviderErrorKind.MALFORMED, "bad json")]
            ),
            "tavily": FakeProvider(
                "tavily", [ProviderError("tavily", ProviderErrorKind.FORBIDDEN, "plan")]
            ),
        },
        config=_settings(),
    )

    with pytest.raises(AllProvidersFailedError) as exc_info:
        await registry.fan_out("q", ["searxng", "tavily"])

    assert [o.provider for o in exc_info.value.outcomes] == ["searxng", "tavily"]


@pytest.mark.asyncio
async def test_single_provider_auth_failure_is_a_configuration_error():
    registry = ProviderRegistry(
        {
            "tavily": FakeProvider(
                "tavily", [ProviderError("tavily", ProviderErrorKind.AUTH, "invalid key")]
            )
        },
        config=_settings(),
    )

    with pytest.raises(ConfigurationError):
        await registry.fan_out("q", ["tavily"])


@pytest.mark.asyncio
async def test_fan_out_respects_parallel_limit():
    active = 0
    peak = 0

    class CountingProvider:
        def __init__(self, name):
            self.name = name

        async def search(self, query, *, max_results=10):
            nonlocal active, peak
            active += 1
            peak = max(peak, active)
            await asyncio.sleep(0.01)
            active -= 1
            return SearchResponse(results=[make_result(f"https://{self.name}.com")])

    names = ["searxng", "tavily", "bocha"]
    registry = ProviderRegistry(
        {name: CountingProvider(name) for name in names},
        config=_settings(search_max_parallel_requests=1),
    )

    result = await registry.fan_out("q", names)

    assert peak == 1
    assert len(result.results) == 3


def test_build_providers_registers_only_configured_backends():
    providers = search_provider.build_providers(
        Settings(searxng_api_url="http://localhost:8080", tavily_api_key="", bocha_api_key="sk-b")
    )

    assert sorted(providers) == ["bocha", "searxng"]


@pytest.mark.asyncio
async def test_speed_mode_queries_only_searxng():
    providers = {
        name: FakeProvider(name, [SearchResponse(results=[make_result(f"https://{name}.com")])])
        for name in ("searxng", "tavily", "bocha")
    }
    registry = ProviderRegistry(providers, config=_settings())

    result = await registry.search("weather in Lyon", "speed")

    assert providers["searxng"].calls == ["weather in Lyon"]
    assert providers["tavily"].calls == []
    assert providers["bocha"].calls == []
    assert [r.url for r in result.results] == ["https://searxng.com"]


@pytest.mark.asyncio
async def test_quality_mode_queries_every_provider_concurrently():
    names = ["searxng", "tavily", "bocha"]
    started: list[str] = []
    all_started = asyncio.Event()

    class BarrierProvider:
        def __init__(self, name):
            self.name = name

        async def search(self, query, *, max_results=10):
            started.append(self.name)
            if len(started) == len(names):
                all_started.set()
            # Completes only if every provider is in flight at the same time.
            await asyncio.wait_for(all_started.wait(), timeout=0.5)
            return SearchResponse(results=[make_result(f"https://{self.name}.com")])

    registry = ProviderRegistry(
        {name: BarrierProvider(name) for name in names},
        config=_settings(search_retry_max=0),
    )

    result = await registry.search("q", OptimizationMode.QUALITY)

    assert sorted(started) == sorted(names)
    assert all(outcome.ok for outcome in result.outcomes)
    assert [r.url for r in result.results] == [
        "https://searxng.com",
        "https://tavily.com",
        "https://bocha.com",
    ]
