"""OpenRouter LLM client factory with a small messages adapter."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, AsyncIterator

from citewise.config import settings
from citewise.errors import ConfigurationError


@dataclass
class Usage:
    input_tokens: int = 0
    output_tokens: int = 0


@dataclass
class MessageResponse:
    text: str
    usage: Usage


class OpenRouterStream:
    """Async context manager over a streamed chat completion."""

    def __init__(self, stream_coro: Any):
        self._stream_coro = stream_coro
        self._stream: Any | None = None
        self._usage = Usage()
        self._finished = False

    async def __aenter__(self) -> "OpenRouterStream":
        self._stream = await self._stream_coro
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        if self._stream is not None:
            await self._stream.close()

    async def _iter_text(self) -> AsyncIterator[str]:
        if self._stream is None:
            return
        async for chunk in self._stream:
            choices = getattr(chunk, "choices", None) or []
            usage = getattr(chunk, "usage", None)
            if usage:
                self._usage = Usage(
                    input_tokens=getattr(usage, "prompt_tokens", 0) or 0,
                    output_tokens=getattr(usage, "completion_tokens", 0) or 0,
                )

            if not choices:
                continue
            delta = getattr(choices[0], "delta", None)
            if not delta:
                continue
            text = getattr(delta, "content", None)
            if text:
                yield text
        self._finished = True

    @property
    def text_stream(self) -> AsyncIterator[str]:
        return self._iter_text()

    @property
    def usage(self) -> Usage:
        return self._usage


class OpenRouterMessagesAdapter:
    def __init__(self, openai_client: Any):
        self._client = openai_client

    @staticmethod
    def _temperature_for_model(model: str) -> float:
        # Some OpenAI GPT-5-compatible gateways reject anything but the default.
        lowered = (model or "").lower()
        if "gpt-5" in lowered:
            return 1
        return 0.7

    @staticmethod
    def _to_openai_messages(system: str, messages: list[dict[str, Any]]) -> list[dict[str, Any]]:
        openai_messages: list[dict[str, Any]] = []
        if system:
            openai_messages.append({"role": "system", "content": system})
        for message in messages:
            role = message.get("role", "user")
            if role not in ("user", "assistant", "system"):
                role = "assistant" if role in ("ai", "bot") else "user"
            openai_messages.append({"role": role, "content": str(message.get("content", ""))})
        return openai_messages

    async def create(
        self,
        *,
        model: str,
        max_tokens: int,
        system: str,
        messages: list[dict[str, Any]],
        temperature: float | None = None,
    ) -> MessageResponse:
        response = await self._client.chat.completions.create(
            model=model,
            messages=self._to_openai_messages(system, messages),
            max_tokens=max_tokens,
            temperature=(
                temperature if temperature is not None else self._temperature_for_model(model)
            ),
        )
        choices = getattr(response, "choices", None) or []
        text = ""
        if choices:
            text = getattr(choices[0].message, "content", None) or ""
        usage = getattr(response, "usage", None)
        return MessageResponse(
            text=text,
            usage=Usage(
                input_tokens=getattr(usage, "prompt_tokens", 0) or 0,
                output_tokens=getattr(usage, "completion_tokens", 0) or 0,
            ),
        )

    def stream(
        self,
        *,
        model: str,
        max_tokens: int,
        system: str,
        messages: list[dict[str, Any]],
    ) -> OpenRouterStream:
        stream = self._client.chat.completions.create(
            model=model,
            messages=self._to_openai_messages(system, messages),
            max_tokens=max_tokens,
            temperature=self._temperature_for_model(model),
            stream=True,
            stream_options={"include_usage": True},
        )
        return OpenRouterStream(stream)


class OpenRouterClientAdapter:
    def __init__(self, openai_client: Any):
        self.messages = OpenRouterMessagesAdapter(openai_client)


def ensure_configured() -> None:
    """Raise ConfigurationError when no usable chat model is configured."""
    if not settings.openrouter_api_key.strip():
        raise ConfigurationError("OPENROUTER_API_KEY is not configured")
    if not get_model():
        raise ConfigurationError("DEFAULT_MODEL is not configured")


def get_client() -> OpenRouterClientAdapter:
    """Get OpenRouter client via OpenAI-compatible SDK."""
    from openai import AsyncOpenAI

    base_url = settings.openrouter_base_url.strip() or "https://openrouter.ai/api/v1"
    openai_client = AsyncOpenAI(
        api_key=settings.openrouter_api_key,
        base_url=base_url,
    )
    return OpenRouterClientAdapter(openai_client)


def get_model() -> str:
    """Get the active chat model id."""
    return settings.default_model.strip()


def get_rephraser_model() -> str:
    return settings.rephraser_model.strip() or get_model()


_client: OpenRouterClientAdapter | None = None


def client() -> OpenRouterClientAdapter:
    """Get or create the LLM client."""
    global _client
    if _client is None:
        _client = get_client()
    return _client
