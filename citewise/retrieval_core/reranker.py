from __future__ import annotations

import asyncio
import math

from citewise.config import settings
from citewise.errors import EmbeddingError
from citewise.models.search import Chunk, RankedChunk
from citewise.services import logger as log_service
from citewise.services.embeddings import EmbeddingService, to_vector
from citewise.services.logger import logger


def cosine_similarity(a: list[float], b: list[float]) -> float:
    """Cosine similarity clamped to [0, 1]. Raises ValueError on length mismatch."""
    if len(a) != len(b):
        raise ValueError(f"vector length mismatch: {len(a)} != {len(b)}")
    norm_a = math.sqrt(sum(x * x for x in a))
    norm_b = math.sqrt(sum(y * y for y in b))
    if norm_a == 0.0 or norm_b == 0.0:
        return 0.0
    dot = sum(x * y for x, y in zip(a, b))
    similarity = dot / (norm_a * norm_b)
    if not math.isfinite(similarity):
        raise ValueError("similarity is not a finite number")
    return min(max(similarity, 0.0), 1.0)


def default_ordering(chunks: list[Chunk]) -> list[RankedChunk]:
    """Input order with strictly decreasing scores in (0, 1]."""
    n = len(chunks)
    return [RankedChunk(chunk=chunk, score=1.0 - i / n) for i, chunk in enumerate(chunks)]


class Reranker:
    def __init__(
        self,
        embedder: EmbeddingService,
        *,
        fallback_score: float | None = None,
        max_parallel: int | None = None,
    ):
        self.embedder = embedder
        score = settings.rerank_fallback_score if fallback_score is None else fallback_score
        self.fallback_score = min(max(float(score), 0.0), 1.0)
        self.max_parallel = max(int(max_parallel or settings.embedding_max_parallel_requests), 1)

    @property
    def _source(self) -> str:
        return f"embedding model {getattr(self.embedder, 'model_name', '') or 'unknown'}"

    async def rerank(self, query: str, chunks: list[Chunk]) -> list[RankedChunk]:
        if not chunks:
            return []

        try:
            query_vector = to_vector(await self.embedder.embed(query), source=self._source)
        except EmbeddingError as exc:
            self._degraded("query embedding failed", exc, len(chunks))
            return default_ordering(chunks)

        semaphore = asyncio.Semaphore(self.max_parallel)

        async def score_one(chunk: Chunk) -> float | None:
            async with semaphore:
                try:
                    vector = to_vector(await self.embedder.embed(chunk.text), source=self._source)
                    return cosine_similarity(query_vector, vector)
                except (EmbeddingError, ValueError) as exc:
                    logger.debug(f"Chunk embedding failed for {chunk.source_url}#{chunk.ordinal}: {exc}")
                    return None

        scores = await asyncio.gather(*(score_one(chunk) for chunk in chunks))
        if all(score is None for score in scores):
            self._degraded("every chunk embedding failed", None, len(chunks))
            return default_ordering(chunks)

        ranked = [
            RankedChunk(chunk=chunk, score=self.fallback_score if score is None else score)
            for chunk, score in zip(chunks, scores)
        ]
        # sorted() is stable, so ties keep input order.
        return sorted(ranked, key=lambda item: item.score, reverse=True)

    def _degraded(self, reason: str, exc: Exception | None, count: int) -> None:
        log_service.log_event(
            event_type="rerank_degraded",
            message=f"Rerank fell back to default ordering: {reason}",
            chunks=count,
            model=getattr(self.embedder, "model_name", ""),
            error=str(exc) if exc else None,
        )
