from __future__ import annotations

from typing import Any

import pytest

from citewise.llm_client import MessageResponse, Usage
from citewise.models.search import SearchResponse, SearchResult


class FakeStream:
    def __init__(self, chunks: list[str], error: Exception | None = None, fail_after: int = 0):
        self.chunks = chunks
        self.error = error
        self.fail_after = fail_after
        self.usage = Usage(input_tokens=10, output_tokens=len(chunks))
        self.closed = False

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        self.closed = True

    async def _iter(self):
        for index, chunk in enumerate(self.chunks):
            if self.error is not None and index >= self.fail_after:
                raise self.error
            yield chunk
        if self.error is not None and self.fail_after >= len(self.chunks):
            raise self.error

    @property
    def text_stream(self):
        return self._iter()


class FakeMessages:
    """Stands in for OpenRouterMessagesAdapter."""

    def __init__(
        self,
        reply: str = "<question>\nnot_needed\n</question>",
        chunks: list[str] | None = None,
        create_error: Exception | None = None,
        stream_error: Exception | None = None,
        fail_after: int = 0,
    ):
        self.reply = reply
        self.chunks = chunks if chunks is not None else ["Hello", " there", "!"]
        self.create_error = create_error
        self.stream_error = stream_error
        self.fail_after = fail_after
        self.create_calls: list[dict[str, Any]] = []
        self.stream_calls: list[dict[str, Any]] = []

    async def create(self, **kwargs):
        self.create_calls.append(kwargs)
        if self.create_error is not None:
            raise self.create_error
        return MessageResponse(text=self.reply, usage=Usage(input_tokens=5, output_tokens=3))

    def stream(self, **kwargs):
        self.stream_calls.append(kwargs)
        return FakeStream(self.chunks, self.stream_error, self.fail_after)


class FakeLLMClient:
    def __init__(self, **kwargs):
        self.messages = FakeMessages(**kwargs)


class FakeProvider:
    """SearchProvider double; each entry of `script` is a response or an exception."""

    def __init__(self, name: str, script: list[Any] | None = None):
        self.name = name
        self.script = list(script or [SearchResponse()])
        self.calls: list[str] = []

    async def search(self, query: str, *, max_results: int = 10) -> SearchResponse:
        self.calls.append(query)
        item = self.script[min(len(self.calls), len(self.script)) - 1]
        if isinstance(item, BaseException):
            raise item
        return item


def make_result(url: str, title: str = "", content: str = "", provider: str = "") -> SearchResult:
    return SearchResult(title=title or url, url=url, content=content, provider=provider)


@pytest.fixture
def fake_llm():
    return FakeLLMClient
