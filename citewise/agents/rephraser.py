from __future__ import annotations

import re
import time
from typing import Any, Iterable

from citewise.config import settings
from citewise.llm_client import client as llm_client, get_rephraser_model
from citewise.models.search import (
    NotNeeded,
    RephrasedQuery,
    SearchRequest,
    Standalone,
    Summarize,
)
from citewise.services import logger as log_service
from citewise.services.logger import logger
from citewise.services.prompt_store import render_prompt
from citewise.tools.web_utils import merge_links

QUESTION_RE = re.compile(r"<question>(.*?)</question>", re.IGNORECASE | re.DOTALL)
LINKS_RE = re.compile(r"<links>(.*?)</links>", re.IGNORECASE | re.DOTALL)

NOT_NEEDED = "not_needed"
SUMMARIZE = "summarize"


def format_history(history: Iterable[tuple[str, str]]) -> str:
    return "\n".join(f"{role}: {text}" for role, text in history)


def parse_rephrase_output(
    output: str,
    *,
    raw_query: str,
    explicit_urls: Iterable[str] = (),
) -> RephrasedQuery:
    """Interpret the rephraser's <question>/<links> reply.

    Anything unparseable degrades to searching the user's own words.
    """
    explicit = merge_links(explicit_urls)
    match = QUESTION_RE.search(output or "")
    question = match.group(1).strip() if match else ""
    if not question:
        return Standalone(text=raw_query, links=explicit)

    links_match = LINKS_RE.search(output)
    parsed_links = links_match.group(1).split() if links_match else []
    links = merge_links(parsed_links, explicit)

    lowered = question.lower()
    if lowered == NOT_NEEDED:
        if explicit:
            # The user attached pages; answer from them rather than from nothing.
            return Standalone(text=raw_query, links=links)
        return NotNeeded()
    if lowered == SUMMARIZE:
        if links:
            return Summarize(links=links)
        return Standalone(text=raw_query, links=())
    return Standalone(text=question, links=links)


class QueryRephraser:
    """Turns a follow-up turn into a standalone search query."""

    name = "rephraser"

    def __init__(self, model: str | None = None, max_tokens: int | None = None, client: Any = None):
        self.model = model or get_rephraser_model()
        self.max_tokens = int(max_tokens or settings.rephraser_max_tokens)
        self.client = client

    def build_prompt(self, request: SearchRequest) -> str:
        return render_prompt(
            "rephraser.prompt",
            chat_history=format_history(request.history),
            query=request.raw_query,
        )

    async def rephrase(self, request: SearchRequest) -> RephrasedQuery:
        active_client = self.client or llm_client()
        t0 = time.monotonic()
        try:
            response = await active_client.messages.create(
                model=self.model,
                max_tokens=self.max_tokens,
                system="",
                messages=[{"role": "user", "content": self.build_prompt(request)}],
                temperature=0,
            )
        except Exception as exc:
            log_service.log_llm_call(
                model=self.model,
                caller=self.name,
                duration_ms=int((time.monotonic() - t0) * 1000),
                status="error",
                error=str(exc),
            )
            logger.warning(f"Rephrase failed, searching the raw query instead: {exc}")
            return Standalone(
                text=request.raw_query,
                links=merge_links([], request.explicit_urls),
            )

        log_service.log_llm_call(
            model=self.model,
            caller=self.name,
            input_tokens=response.usage.input_tokens,
            output_tokens=response.usage.output_tokens,
            duration_ms=int((time.monotonic() - t0) * 1000),
        )
        result = parse_rephrase_output(
            response.text,
            raw_query=request.raw_query,
            explicit_urls=request.explicit_urls,
        )
        logger.debug(f"Rephrased {request.raw_query!r} -> {result!r}")
        return result
