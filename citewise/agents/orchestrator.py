from __future__ import annotations

import asyncio
import contextlib
import time
from typing import Any, AsyncIterator

from citewise.agents.rephraser import QueryRephraser
from citewise.agents.synthesizer import AnswerSynthesizer
from citewise.config import Settings, settings
from citewise.errors import (
    AllProvidersFailedError,
    ConfigurationError,
    StreamClosedError,
    SynthesisError,
)
from citewise.llm_client import ensure_configured
from citewise.models.events import SSEEvent
from citewise.models.search import (
    Chunk,
    NotNeeded,
    RankedChunk,
    SearchRequest,
    SearchResult,
    Standalone,
    Summarize,
)
from citewise.retrieval_core.chunker import TextChunker
from citewise.retrieval_core.reranker import Reranker, default_ordering
from citewise.services import logger as log_service
from citewise.services.embeddings import EmbeddingModelCache
from citewise.services.logger import logger
from citewise.services.persistence import ChatStore, get_chat_store
from citewise.services.stream_channel import EventChannel
from citewise.tools import web_utils
from citewise.tools.content_extractor import ContentExtractor
from citewise.tools.search_provider import ProviderRegistry

SEARCH_UNAVAILABLE_MESSAGE = "Web search is unavailable right now. Please try again in a moment."
SYNTHESIS_FAILED_MESSAGE = "The answer could not be generated. Please try again."
UNEXPECTED_ERROR_MESSAGE = "Something went wrong while answering. Please try again."


def snippet_chunks(results: list[SearchResult]) -> list[Chunk]:
    """Search snippets as minimal context when no page could be extracted."""
    return [
        Chunk(source_url=r.url, source_title=r.title or r.url, text=r.content.strip(), ordinal=0)
        for r in results
        if r.content and r.content.strip()
    ]


class AnswerOrchestrator:
    """Runs rephrase -> search -> extract -> chunk -> rerank -> synthesize.

    ``answer`` drives the pipeline in a producer task that writes into an
    EventChannel; closing the consumer side cancels that task and everything
    it is awaiting.
    """

    def __init__(
        self,
        *,
        config: Settings | None = None,
        registry: ProviderRegistry | None = None,
        extractor: ContentExtractor | None = None,
        chunker: TextChunker | None = None,
        reranker: Reranker | None = None,
        embedding_cache: EmbeddingModelCache | None = None,
        rephraser: QueryRephraser | None = None,
        synthesizer: AnswerSynthesizer | None = None,
        store: ChatStore | None = None,
        client: Any = None,
        model: str | None = None,
    ):
        self.config = config or settings
        self.client = client
        self.store = store or get_chat_store()
        self.registry = registry
        self.extractor = extractor or ContentExtractor()
        self.chunker = chunker or TextChunker(self.config.chunk_size, self.config.chunk_overlap)
        self._owns_cache = embedding_cache is None and reranker is None
        self.embedding_cache = embedding_cache or EmbeddingModelCache(self.config)
        self.reranker = reranker
        self.rephraser = rephraser or QueryRephraser(client=client)
        self.synthesizer = synthesizer or AnswerSynthesizer(model, client=client, store=self.store)
        self.max_urls = max(int(self.config.extract_max_urls), 1)

    async def answer(self, request: SearchRequest) -> AsyncIterator[SSEEvent]:
        channel = EventChannel()
        task = asyncio.create_task(self._produce(request, channel))
        try:
            async for event in channel:
                yield event
        finally:
            if not task.done():
                task.cancel()
                logger.info("Answer stream closed early; pipeline cancelled")
            with contextlib.suppress(asyncio.CancelledError):
                await task

    async def collect(self, request: SearchRequest) -> list[SSEEvent]:
        return [event async for event in self.answer(request)]

    async def aclose(self) -> None:
        """Release the embedding services this orchestrator created for itself."""
        if self._owns_cache:
            await self.embedding_cache.aclose()
            self.reranker = None

    async def _produce(self, request: SearchRequest, channel: EventChannel) -> None:
        started = time.monotonic()
        try:
            await self._run(request, channel, started)
        except ConfigurationError as exc:
            logger.error(f"Configuration error: {exc}")
            await channel.fail(f"Configuration error: {exc}", stage="config")
        except AllProvidersFailedError as exc:
            for outcome in exc.outcomes:
                logger.error(f"Provider {outcome.provider} failed: {outcome.error}")
            await channel.fail(SEARCH_UNAVAILABLE_MESSAGE, stage="search")
        except SynthesisError as exc:
            logger.error(str(exc))
            await channel.fail(SYNTHESIS_FAILED_MESSAGE, stage="synthesis")
        except StreamClosedError as exc:
            logger.error(f"Pipeline wrote past the end of the stream: {exc}")
        except Exception:
            logger.exception("Unexpected pipeline failure")
            await channel.fail(UNEXPECTED_ERROR_MESSAGE)
        if not channel.closed:
            await channel.fail(UNEXPECTED_ERROR_MESSAGE)

    def _check_configuration(self, request: SearchRequest) -> None:
        if self.client is None:
            ensure_configured()
        elif not self.synthesizer.model:
            raise ConfigurationError("DEFAULT_MODEL is not configured")
        if self.registry is None:
            self.registry = ProviderRegistry(config=self.config)
        self.registry.select(request.optimization_mode)

    async def _save_user_turn(self, text: str) -> None:
        try:
            await self.store.save_user_turn(text)
        except Exception as exc:
            logger.error(f"Failed to persist user turn: {exc}")

    def _get_reranker(self) -> Reranker:
        if self.reranker is None:
            self.reranker = Reranker(
                self.embedding_cache.get(),
                fallback_score=self.config.rerank_fallback_score,
                max_parallel=self.config.embedding_max_parallel_requests,
            )
        return self.reranker

    async def _run(self, request: SearchRequest, channel: EventChannel, started: float) -> None:
        self._check_configuration(request)
        await self._save_user_turn(request.raw_query)

        rephrased = await self.rephraser.rephrase(request)
        question = request.raw_query
        ranked: list[RankedChunk] = []
        known: dict[str, SearchResult] = {}
        summarize = False

        if isinstance(rephrased, NotNeeded):
            log_service.log_event(event_type="search_skipped", message="No web search needed")
        elif isinstance(rephrased, Summarize):
            summarize = True
            chunks = await self._chunks_for(list(rephrased.links))
            # Summaries follow the pages as written.
            ranked = default_ordering(chunks) if chunks else []
        elif isinstance(rephrased, Standalone):
            question = rephrased.text
            if rephrased.links:
                chunks = await self._chunks_for(list(rephrased.links))
            else:
                fan_out = await self.registry.search(question, request.optimization_mode)
                known = {web_utils.normalize_url(r.url): r for r in fan_out.results}
                chunks = await self._chunks_for([r.url for r in fan_out.results])
                if not chunks and fan_out.results:
                    logger.info("No page content extracted; answering from search snippets")
                    chunks = snippet_chunks(fan_out.results)
            if chunks:
                ranked = await self._get_reranker().rerank(question, chunks)

        if not ranked and not isinstance(rephrased, NotNeeded):
            async for event in self.synthesizer.no_results(started_at=started):
                await channel.send(event)
            return

        async for event in self.synthesizer.stream(
            question,
            ranked,
            history=request.history,
            system_instructions=request.system_instructions,
            summarize=summarize,
            known_results=known,
            started_at=started,
        ):
            await channel.send(event)

    async def _chunks_for(self, urls: list[str]) -> list[Chunk]:
        targets = urls[: self.max_urls]
        if not targets:
            return []
        documents = await self.extractor.extract(targets)
        failed = [d.url for d in documents if d.failed]
        log_service.log_event(
            event_type="extraction_complete",
            message="Content extraction finished",
            requested=len(targets),
            failed=len(failed),
        )
        return self.chunker.chunk_all(documents)
