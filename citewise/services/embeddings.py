from __future__ import annotations

import asyncio
import math
from typing import Any, Protocol

import httpx

from citewise.config import Settings, settings
from citewise.errors import ConfigurationError, EmbeddingError
from citewise.services.logger import logger

BACKEND_OLLAMA = "ollama"
BACKEND_LOCAL = "local"
BACKEND_NONE = "none"


def to_vector(values: Any, *, source: str) -> list[float]:
    """Coerce raw embedding values to floats; non-numeric or non-finite entries fail."""
    try:
        vector = [float(v) for v in values]
    except (TypeError, ValueError) as exc:
        raise EmbeddingError(f"{source} returned a non-numeric embedding: {exc}") from exc
    if not all(math.isfinite(v) for v in vector):
        raise EmbeddingError(f"{source} returned a non-finite embedding")
    return vector


class EmbeddingService(Protocol):
    model_name: str

    async def embed(self, text: str) -> list[float]:
        ...

    async def aclose(self) -> None:
        ...


class OllamaEmbeddingService:
    """Embeddings from an Ollama server (``POST /api/embeddings``)."""

    def __init__(
        self,
        model_name: str | None = None,
        *,
        base_url: str | None = None,
        timeout_seconds: float | None = None,
    ):
        self.model_name = model_name or settings.rerank_model
        self.base_url = (base_url or settings.ollama_api_url).rstrip("/")
        self.timeout_seconds = float(timeout_seconds or settings.embedding_timeout_seconds)
        self._client: httpx.AsyncClient | None = None

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(timeout=self.timeout_seconds)
        return self._client

    async def embed(self, text: str) -> list[float]:
        try:
            response = await self._get_client().post(
                f"{self.base_url}/api/embeddings",
                json={"model": self.model_name, "prompt": text},
            )
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPError as exc:
            raise EmbeddingError(f"Ollama embedding request failed: {exc!s}") from exc
        except ValueError as exc:
            raise EmbeddingError("Ollama returned invalid JSON") from exc

        vector = data.get("embedding") if isinstance(data, dict) else None
        if not isinstance(vector, list) or not vector:
            raise EmbeddingError(f"Ollama returned no embedding for model {self.model_name}")
        return to_vector(vector, source=f"Ollama model {self.model_name}")

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None


class LocalEmbeddingService:
    """In-process sentence-transformers embeddings (optional dependency)."""

    def __init__(self, model_name: str | None = None):
        self.model_name = model_name or settings.local_embed_model
        self._model: Any | None = None
        self._load_error: str | None = None
        self._load_attempted = False
        self._lock = asyncio.Lock()

    async def embed(self, text: str) -> list[float]:
        async with self._lock:
            if not self._load_attempted:
                await asyncio.to_thread(self._load_model)
                self._load_attempted = True
        if self._model is None:
            raise EmbeddingError(self._load_error or f"Embedding model {self.model_name} unavailable")
        return await asyncio.to_thread(self._embed_sync, text)

    def _load_model(self) -> None:
        try:
            from sentence_transformers import SentenceTransformer
        except ImportError:
            self._load_error = "sentence-transformers is not installed"
            return
        try:
            self._model = SentenceTransformer(self.model_name)
        except Exception as exc:
            self._load_error = f"could not load {self.model_name}: {exc}"
            logger.warning(f"Local embedding model failed to load: {exc}")

    def _embed_sync(self, text: str) -> list[float]:
        try:
            vector = self._model.encode(
                [text],
                normalize_embeddings=True,
                show_progress_bar=False,
            )[0]
        except Exception as exc:
            raise EmbeddingError(f"local embedding failed: {exc}") from exc
        return to_vector(vector, source=f"local model {self.model_name}")

    async def aclose(self) -> None:
        self._model = None
        self._load_attempted = False


class NullEmbeddingService:
    """Backend ``none``: every call fails so rerank keeps the default order."""

    model_name = BACKEND_NONE

    async def embed(self, text: str) -> list[float]:
        raise EmbeddingError("Embeddings are disabled (EMBEDDING_BACKEND=none)")

    async def aclose(self) -> None:
        return None


def create_embedding_service(backend: str, model_name: str, config: Settings | None = None) -> EmbeddingService:
    config = config or settings
    backend = backend.strip().lower()
    if backend == BACKEND_OLLAMA:
        return OllamaEmbeddingService(
            model_name,
            base_url=config.ollama_api_url,
            timeout_seconds=config.embedding_timeout_seconds,
        )
    if backend == BACKEND_LOCAL:
        return LocalEmbeddingService(model_name)
    if backend == BACKEND_NONE:
        return NullEmbeddingService()
    raise ConfigurationError(f"Unknown embedding backend: {backend}")


class EmbeddingModelCache:
    """Owns embedding service instances keyed by (backend, model)."""

    def __init__(self, config: Settings | None = None):
        self.config = config or settings
        self._services: dict[tuple[str, str], EmbeddingService] = {}

    def _default_model(self, backend: str) -> str:
        if backend == BACKEND_LOCAL:
            return self.config.local_embed_model
        if backend == BACKEND_NONE:
            return BACKEND_NONE
        return self.config.rerank_model

    def get(self, backend: str | None = None, model: str | None = None) -> EmbeddingService:
        backend = (backend or self.config.embedding_backend).strip().lower()
        model = model or self._default_model(backend)
        key = (backend, model)
        service = self._services.get(key)
        if service is None:
            service = create_embedding_service(backend, model, self.config)
            self._services[key] = service
            logger.debug(f"Embedding service created: backend={backend} model={model}")
        return service

    async def invalidate(self, model: str | None = None) -> None:
        """Drop cached services (all of them, or those for one model name)."""
        keys = [key for key in self._services if model is None or key[1] == model]
        for key in keys:
            service = self._services.pop(key)
            await service.aclose()

    async def aclose(self) -> None:
        await self.invalidate()

    def __len__(self) -> int:
        return len(self._services)
