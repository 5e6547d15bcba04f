from __future__ import annotations

from unittest.mock import AsyncMock, patch

import httpx
import pytest

from citewise.errors import ProviderError, ProviderErrorKind
from citewise.tools import bocha_search, searxng_search, tavily_search, web_utils


class FakeResponse:
    def __init__(self, payload=None, status_code: int = 200, url: str = "https://api.test"):
        self._payload = payload
        self.status_code = status_code
        self._request = httpx.Request("GET", url)

    def raise_for_status(self):
        if self.status_code >= 400:
            response = httpx.Response(self.status_code, request=self._request)
            raise httpx.HTTPStatusError("error", request=self._request, response=response)
        return None

    def json(self):
        if isinstance(self._payload, Exception):
            raise self._payload
        return self._payload


class FakeClient:
    def __init__(self, response=None, error: Exception | None = None):
        self.response = response
        self.error = error
        self.calls: list[tuple[str, str, dict]] = []

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        return None

    async def request(self, method, url, **kwargs):
        self.calls.append((method, url, kwargs))
        if self.error is not None:
            raise self.error
        return self.response


@pytest.mark.asyncio
async def test_searxng_maps_results_and_suggestions():
    payload = {
        "results": [
            {
                "title": "Result 1",
                "url": "https://example.com/1",
                "content": "Snippet 1",
                "img_src": "https://example.com/1.png",
                "publishedDate": "2026-01-02",
                "score": 2.5,
            },
            {"title": "No url", "content": "skipped"},
            {"title": "Result 2", "url": "https://example.com/2", "thumbnail_src": "https://t/2.png"},
        ],
        "suggestions": ["related query"],
    }
    fake = FakeClient(FakeResponse(payload))

    with patch("citewise.tools.web_utils.httpx.AsyncClient", return_value=fake):
        provider = searxng_search.SearxngSearch("http://searx.local/", engines=["bing", "ddg"])
        response = await provider.search("test query", max_results=5)

    method, url, kwargs = fake.calls[0]
    assert method == "GET"
    assert url == "http://searx.local/search"
    assert kwargs["params"]["format"] == "json"
    assert kwargs["params"]["engines"] == "bing,ddg"
    assert [r.url for r in response.results] == ["https://example.com/1", "https://example.com/2"]
    assert response.results[0].image_url == "https://example.com/1.png"
    assert response.results[0].published_date == "2026-01-02"
    assert response.results[1].image_url == "https://t/2.png"
    assert response.results[0].provider == "searxng"
    assert response.suggestions == ["related query"]


@pytest.mark.asyncio
async def test_searxng_without_url_is_an_auth_error():
    provider = searxng_search.SearxngSearch("")

    with pytest.raises(ProviderError) as exc_info:
        await provider.search("q")

    assert exc_info.value.kind is ProviderErrorKind.AUTH


def test_searxng_missing_results_list_is_malformed():
    with pytest.raises(ProviderError) as exc_info:
        searxng_search.map_results({"answers": []}, 10)

    assert exc_info.value.kind is ProviderErrorKind.MALFORMED


@pytest.mark.asyncio
@pytest.mark.parametrize(
    ("status", "kind"),
    [
        (401, ProviderErrorKind.AUTH),
        (403, ProviderErrorKind.FORBIDDEN),
        (429, ProviderErrorKind.RATE_LIMITED),
        (503, ProviderErrorKind.NETWORK),
    ],
)
async def test_request_json_classifies_http_status(status, kind):
    fake = FakeClient(FakeResponse({}, status_code=status))

    with patch("citewise.tools.web_utils.httpx.AsyncClient", return_value=fake):
        with pytest.raises(ProviderError) as exc_info:
            await web_utils.request_json("searxng", "GET", "https://api.test")

    assert exc_info.value.kind is kind
    assert exc_info.value.status_code == status


@pytest.mark.asyncio
async def test_request_json_classifies_transport_failures():
    timeout = FakeClient(error=httpx.ReadTimeout("slow"))
    broken = FakeClient(error=httpx.ConnectError("refused"))
    garbage = FakeClient(FakeResponse(ValueError("not json")))

    with patch("citewise.tools.web_utils.httpx.AsyncClient", return_value=timeout):
        with pytest.raises(ProviderError) as timed_out:
            await web_utils.request_json("bocha", "POST", "https://api.test")
    with patch("citewise.tools.web_utils.httpx.AsyncClient", return_value=broken):
        with pytest.raises(ProviderError) as refused:
            await web_utils.request_json("bocha", "POST", "https://api.test")
    with patch("citewise.tools.web_utils.httpx.AsyncClient", return_value=garbage):
        with pytest.raises(ProviderError) as malformed:
            await web_utils.request_json("bocha", "POST", "https://api.test")

    assert timed_out.value.kind is ProviderErrorKind.TIMEOUT
    assert timed_out.value.retryable
    assert refused.value.kind is ProviderErrorKind.NETWORK
    assert malformed.value.kind is ProviderErrorKind.MALFORMED
    assert not malformed.value.retryable


@pytest.mark.asyncio
async def test_bocha_posts_with_bearer_and_maps_web_pages():
    payload = {
        "code": 200,
        "data": {
            "webPages": {
                "value": [
                    {
                        "name": "Bocha page",
                        "url": "https://cn.example.com/a",
                        "summary": "Long summary",
                        "snippet": "short",
                        "siteIcon": "https://cn.example.com/icon.png",
                        "datePublished": "2026-03-01T00:00:00Z",
                    }
                ]
            }
        },
    }
    fake = FakeClient(FakeResponse(payload))

    with patch("citewise.tools.web_utils.httpx.AsyncClient", return_value=fake):
        provider = bocha_search.BochaSearch("sk-bocha", freshness="oneWeek")
        response = await provider.search("query", max_results=3)

    method, url, kwargs = fake.calls[0]
    assert method == "POST"
    assert url == bocha_search.BOCHA_SEARCH_URL
    assert kwargs["headers"]["Authorization"] == "Bearer sk-bocha"
    assert kwargs["json"] == {
        "query": "query",
        "freshness": "oneWeek",
        "summary": True,
        "count": 3,
        "page": 1,
    }
    result = response.results[0]
    assert result.title == "Bocha page"
    assert result.content == "Long summary"
    assert result.image_url == "https://cn.example.com/icon.png"
    assert result.provider == "bocha"
    assert response.suggestions == []


def test_bocha_unexpected_shape_yields_no_results():
    assert bocha_search.map_results({"code": 500, "msg": "oops"}, 10) == []
    assert bocha_search.map_results(["not", "a", "dict"], 10) == []


def test_bocha_rejects_unknown_freshness():
    with pytest.raises(ValueError):
        bocha_search.BochaSearch("key", freshness="yesterday")


@pytest.mark.asyncio
async def test_tavily_maps_results():
    fake_client = AsyncMock()
    fake_client.search.return_value = {
        "results": [
            {"title": "T", "url": "https://t.com", "content": "C", "score": 0.8},
            {"title": "missing url"},
        ]
    }

    with patch("citewise.tools.tavily_search.AsyncTavilyClient", return_value=fake_client) as ctor:
        provider = tavily_search.TavilySearch("tvly-key", exclude_domains=["spam.com"])
        response = await provider.search("q", max_results=4)

    ctor.assert_called_once_with(api_key="tvly-key")
    kwargs = fake_client.search.await_args.kwargs
    assert kwargs["max_results"] == 4
    assert kwargs["exclude_domains"] == ["spam.com"]
    assert [r.url for r in response.results] == ["https://t.com"]
    assert response.results[0].score == 0.8
    assert response.results[0].provider == "tavily"


@pytest.mark.asyncio
async def test_tavily_errors_are_classified():
    from tavily.errors import UsageLimitExceededError

    fake_client = AsyncMock()
    fake_client.search.side_effect = UsageLimitExceededError("quota exceeded")

    with patch("citewise.tools.tavily_search.AsyncTavilyClient", return_value=fake_client):
        provider = tavily_search.TavilySearch("tvly-key")
        with pytest.raises(ProviderError) as exc_info:
            await provider.search("q")

    assert exc_info.value.kind is ProviderErrorKind.RATE_LIMITED


@pytest.mark.asyncio
async def test_tavily_without_key_is_an_auth_error():
    provider = tavily_search.TavilySearch("")

    with pytest.raises(ProviderError) as exc_info:
        await provider.search("q")

    assert exc_info.value.kind is ProviderErrorKind.AUTH
