from __future__ import annotations

import asyncio
import time
from typing import Any, Protocol

from loguru import logger

from webground.config import settings
from webground.services.http import sanitize_ssl_keylogfile


class EmbeddingService(Protocol):
    batch_size: int

    async def embed_texts(self, texts: list[str]) -> list[list[float]]: ...


class DisabledEmbeddingService:
    """Always returns no vectors, so ranking falls back to keyword scores."""

    batch_size = 96

    async def embed_texts(self, texts: list[str]) -> list[list[float]]:
        return []


class OpenAIEmbeddingService:
    """Batched calls to an OpenAI-compatible embeddings endpoint."""

    def __init__(
        self,
        client: Any | None = None,
        *,
        model: str | None = None,
        batch_size: int | None = None,
        max_chars: int | None = None,
    ):
        self._client = client
        self.model = model or settings.embedding_model
        self.batch_size = max(int(batch_size or settings.embedding_batch_size), 1)
        self.max_chars = max(int(max_chars or settings.embedding_max_chars), 1)

    def client(self) -> Any:
        if self._client is None:
            from openai import AsyncOpenAI

            sanitize_ssl_keylogfile()
            kwargs: dict[str, Any] = {"api_key": settings.openai_api_key}
            if settings.openai_base_url.strip():
                kwargs["base_url"] = settings.openai_base_url.strip()
            self._client = AsyncOpenAI(**kwargs)
        return self._client

    async def embed_texts(self, texts: list[str]) -> list[list[float]]:
        if not texts:
            return []
        vectors: list[list[float]] = []
        started = time.monotonic()
        for i in range(0, len(texts), self.batch_size):
            batch = [text[: self.max_chars] for text in texts[i : i + self.batch_size]]
            response = await self.client().embeddings.create(model=self.model, input=batch)
            ordered = sorted(response.data, key=lambda item: item.index)
            vectors.extend(list(item.embedding) for item in ordered)
        logger.debug(
            f"Embedded {len(texts)} texts with {self.model} "
            f"in {int((time.monotonic() - started) * 1000)}ms"
        )
        return vectors


class LocalEmbeddingService:
    """sentence-transformers model loaded lazily in a worker thread."""

    def __init__(self, model_name: str | None = None, batch_size: int | None = None):
        self.model_name = model_name or settings.local_embed_model
        self.batch_size = max(int(batch_size or settings.embedding_batch_size), 1)
        self.max_chars = max(int(settings.embedding_max_chars), 1)
        self._model: Any | None = None
        self._load_attempted = False
        self._lock = asyncio.Lock()

    async def embed_texts(self, texts: list[str]) -> list[list[float]]:
        if not texts:
            return []
        async with self._lock:
            if not self._load_attempted:
                await asyncio.to_thread(self._load_model)
                self._load_attempted = True
        if self._model is None:
            return []
        return await asyncio.to_thread(self._embed_sync, [t[: self.max_chars] for t in texts])

    def _load_model(self) -> None:
        try:
            from sentence_transformers import SentenceTransformer
        except ImportError:
            logger.warning("sentence-transformers is not installed; local embeddings disabled")
            self._model = None
            return
        try:
            self._model = SentenceTransformer(self.model_name)
        except Exception as exc:
            logger.warning(f"Failed to load embedding model {self.model_name}: {exc}")
            self._model = None

    def _embed_sync(self, texts: list[str]) -> list[list[float]]:
        vectors = self._model.encode(
            texts,
            batch_size=self.batch_size,
            normalize_embeddings=True,
            show_progress_bar=False,
        )
        return [list(map(float, row)) for row in vectors]


def build_embedding_service(backend: str | None = None) -> EmbeddingService:
    name = (backend if backend is not None else settings.embedding_backend).lower().strip()
    if name == "openai":
        if not settings.openai_api_key:
            logger.warning("OPENAI_API_KEY not set; embeddings disabled")
            return DisabledEmbeddingService()
        return OpenAIEmbeddingService()
    if name == "local":
        return LocalEmbeddingService()
    if name in {"off", "none", ""}:
        return DisabledEmbeddingService()
    raise ValueError(f"Unsupported EMBEDDING_BACKEND: {backend or settings.embedding_backend}")


_service: EmbeddingService | None = None


def embedding_service() -> EmbeddingService:
    """Get or create the process-wide embedding service."""
    global _service
    if _service is None:
        _service = build_embedding_service()
    return _service


def reset_embedding_service() -> None:
    global _service
    _service = None
