from __future__ import annotations

import re
import time
from datetime import datetime, timezone
from typing import Any, AsyncGenerator

from citewise.config import settings
from citewise.errors import SynthesisError
from citewise.llm_client import client as llm_client, get_model
from citewise.models.events import SSEEvent
from citewise.models.search import RankedChunk, SearchResult
from citewise.services import logger as log_service
from citewise.services import streaming
from citewise.services.logger import logger
from citewise.services.persistence import ChatStore, get_chat_store
from citewise.services.prompt_store import render_prompt
from citewise.tools import web_utils

CITATION_RE = re.compile(r"\[(\d+)\]")

SNIPPET_CHARS = 300


def citation_indices(text: str) -> list[int]:
    return [int(match) for match in CITATION_RE.findall(text)]


def build_context(
    ranked: list[RankedChunk],
    *,
    top_k: int,
    char_budget: int,
    known_results: dict[str, SearchResult] | None = None,
) -> tuple[str, list[SearchResult]]:
    """Group the top-k chunks by source URL in rank order.

    The n-th group is labelled [n] and is the n-th entry of the returned
    source list. A group that does not fit the character budget is cut, and
    no later group is added.
    """
    known_results = known_results or {}
    groups: dict[str, list[RankedChunk]] = {}
    for item in ranked[: max(top_k, 0)]:
        key = web_utils.normalize_url(item.chunk.source_url)
        groups.setdefault(key, []).append(item)

    blocks: list[str] = []
    sources: list[SearchResult] = []
    used = 0
    for key, items in groups.items():
        first = items[0].chunk
        number = len(sources) + 1
        header = f"[{number}] {first.source_title or first.source_url} ({first.source_url})"
        body = "\n".join(item.chunk.text for item in items)
        block = f"{header}\n{body}"

        remaining = char_budget - used
        if remaining <= len(header):
            break
        if len(block) > remaining:
            block = block[:remaining]

        blocks.append(block)
        used += len(block) + 2
        known = known_results.get(key)
        sources.append(
            SearchResult(
                title=first.source_title or (known.title if known else first.source_url),
                url=first.source_url,
                content=web_utils.clip(body, SNIPPET_CHARS),
                image_url=known.image_url if known else None,
                published_date=known.published_date if known else None,
                score=round(items[0].score, 4),
                provider=known.provider if known else "",
            )
        )
        if len(block) < len(f"{header}\n{body}"):
            break

    return "\n\n".join(blocks), sources


class AnswerSynthesizer:
    """Streams a cited answer for a question over a ranked context."""

    name = "synthesizer"

    def __init__(
        self,
        model: str | None = None,
        *,
        max_tokens: int | None = None,
        top_k: int | None = None,
        char_budget: int | None = None,
        client: Any = None,
        store: ChatStore | None = None,
    ):
        self.model = model or get_model()
        self.max_tokens = int(max_tokens or settings.synthesis_max_tokens)
        self.top_k = int(top_k or settings.rerank_top_k)
        self.char_budget = int(char_budget or settings.synthesis_context_char_budget)
        self.client = client
        self.store = store or get_chat_store()

    def system_prompt(self, context: str, system_instructions: str = "") -> str:
        return render_prompt(
            "synthesizer.system_prompt",
            system_instructions=system_instructions.strip() or "None.",
            context=context,
            date=datetime.now(timezone.utc).isoformat(timespec="seconds"),
        )

    @staticmethod
    def build_messages(
        question: str,
        history: tuple[tuple[str, str], ...] = (),
        *,
        summarize: bool = False,
    ) -> list[dict[str, str]]:
        messages = [{"role": role, "content": text} for role, text in history]
        if summarize:
            question = render_prompt("synthesizer.summarize_instruction")
        messages.append({"role": "user", "content": question})
        return messages

    async def stream(
        self,
        question: str,
        ranked: list[RankedChunk],
        *,
        history: tuple[tuple[str, str], ...] = (),
        system_instructions: str = "",
        summarize: bool = False,
        known_results: dict[str, SearchResult] | None = None,
        started_at: float | None = None,
    ) -> AsyncGenerator[SSEEvent, None]:
        """Yield sources, one data event per LLM increment, then end.

        An LLM failure raises SynthesisError; the caller turns it into the
        terminal error event.
        """
        context, sources = build_context(
            ranked,
            top_k=self.top_k,
            char_budget=self.char_budget,
            known_results=known_results,
        )
        yield streaming.sources(sources)

        active_client = self.client or llm_client()
        answer = ""
        t0 = time.monotonic()
        try:
            async with active_client.messages.stream(
                model=self.model,
                max_tokens=self.max_tokens,
                system=self.system_prompt(context, system_instructions),
                messages=self.build_messages(question, history, summarize=summarize),
            ) as stream:
                async for text in stream.text_stream:
                    answer += text
                    yield streaming.data(text)
                usage = stream.usage
        except Exception as exc:
            log_service.log_llm_call(
                model=self.model,
                caller=self.name,
                duration_ms=int((time.monotonic() - t0) * 1000),
                status="error",
                error=str(exc),
            )
            raise SynthesisError(f"Answer generation failed: {exc}") from exc

        log_service.log_llm_call(
            model=self.model,
            caller=self.name,
            input_tokens=usage.input_tokens,
            output_tokens=usage.output_tokens,
            duration_ms=int((time.monotonic() - t0) * 1000),
        )
        self.audit_citations(answer, len(sources))
        await self._save(answer, sources)

        runtime_ms = int((time.monotonic() - started_at) * 1000) if started_at is not None else None
        yield streaming.end(answer, sources, runtime_ms=runtime_ms)

    async def no_results(self, started_at: float | None = None) -> AsyncGenerator[SSEEvent, None]:
        """Fixed apology when retrieval produced nothing usable."""
        message = render_prompt("synthesizer.no_results_message")
        yield streaming.sources([])
        yield streaming.data(message)
        await self._save(message, [])
        runtime_ms = int((time.monotonic() - started_at) * 1000) if started_at is not None else None
        yield streaming.end(message, [], runtime_ms=runtime_ms)

    @staticmethod
    def audit_citations(answer: str, source_count: int) -> list[int]:
        """Return (and log) citation numbers that point at no source."""
        invalid = sorted({n for n in citation_indices(answer) if n < 1 or n > source_count})
        if invalid:
            log_service.log_event(
                event_type="citation_out_of_range",
                message="Answer cites sources that were not provided",
                invalid=invalid,
                source_count=source_count,
            )
        return invalid

    async def _save(self, answer: str, sources: list[SearchResult]) -> None:
        try:
            await self.store.save_answer(answer, sources)
        except Exception as exc:
            logger.error(f"Failed to persist answer: {exc}")
