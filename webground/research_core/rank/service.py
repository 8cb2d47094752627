from __future__ import annotations

import math
import re
from dataclasses import dataclass, field

from loguru import logger

from webground.config import settings
from webground.models.pipeline import Chunk
from webground.services.embeddings import EmbeddingService

_TOKEN_SPLIT_RE = re.compile(r"[^a-z0-9]+")
MIN_QUERY_TOKEN_LENGTH = 4


def query_tokens(queries: list[str]) -> list[str]:
    tokens: list[str] = []
    for query in queries:
        tokens.extend(t for t in _TOKEN_SPLIT_RE.split(query.lower()) if len(t) >= MIN_QUERY_TOKEN_LENGTH)
    return tokens


def keyword_score(text: str, tokens: list[str]) -> float:
    """Fraction of query tokens that occur in ``text`` (case-insensitive)."""
    if not tokens:
        return 0.0
    lower = text.lower()
    hits = sum(1 for token in tokens if token in lower)
    return hits / len(tokens)


def cosine_similarity(a: list[float], b: list[float]) -> float:
    if not a or not b or len(a) != len(b):
        return 0.0
    dot = sum(x * y for x, y in zip(a, b))
    norm_a = math.sqrt(sum(x * x for x in a))
    norm_b = math.sqrt(sum(y * y for y in b))
    if not norm_a or not norm_b:
        return 0.0
    return dot / (norm_a * norm_b)


@dataclass(slots=True)
class RankOutcome:
    chunks: list[Chunk] = field(default_factory=list)
    semantic: bool = False
    embedding_requests: int = 0


class ChunkRanker:
    """Hybrid keyword-overlap + embedding similarity ranking with a kind boost."""

    def __init__(
        self,
        embedder: EmbeddingService,
        *,
        keyword_weight: float | None = None,
        kind_boost: float | None = None,
        max_embed_chunks: int | None = None,
    ):
        self.embedder = embedder
        self.keyword_weight = settings.ranking_keyword_weight if keyword_weight is None else keyword_weight
        self.kind_boost = settings.ranking_kind_boost if kind_boost is None else kind_boost
        self.max_embed_chunks = settings.ranking_max_embed_chunks if max_embed_chunks is None else max_embed_chunks

    def _boost(self, chunk: Chunk) -> float:
        return self.kind_boost if chunk.kind in ("table", "list") else 0.0

    async def rank(self, chunks: list[Chunk], queries: list[str]) -> RankOutcome:
        if not chunks:
            return RankOutcome()
        tokens = query_tokens(queries)
        overlaps = [keyword_score(chunk.text, tokens) for chunk in chunks]
        cheap = [
            chunk.with_score(overlap + self._boost(chunk))
            for chunk, overlap in zip(chunks, overlaps)
        ]
        cheap_sorted = sorted(cheap, key=lambda c: -c.score)

        survivors = cheap_sorted[: self.max_embed_chunks] if len(cheap) > self.max_embed_chunks else cheap
        clean_queries = [q for q in queries if q.strip()]

        try:
            query_vectors = await self.embedder.embed_texts(clean_queries)
            chunk_vectors = await self.embedder.embed_texts([c.text for c in survivors]) if query_vectors else []
        except Exception as exc:
            logger.warning(f"Embedding call failed; ranking by keywords only: {exc}")
            query_vectors, chunk_vectors = [], []

        if not query_vectors or len(chunk_vectors) != len(survivors):
            if query_vectors or chunk_vectors:
                logger.warning("Embedding response incomplete; ranking by keywords only")
            else:
                logger.info("Embeddings unavailable; ranking by keywords only")
            return RankOutcome(chunks=cheap_sorted)

        batch = max(int(getattr(self.embedder, "batch_size", 96)), 1)
        requests = math.ceil(len(clean_queries) / batch) + math.ceil(len(survivors) / batch)

        scored: list[Chunk] = []
        for chunk, vector in zip(survivors, chunk_vectors):
            semantic = max(cosine_similarity(q, vector) for q in query_vectors)
            overlap = keyword_score(chunk.text, tokens)
            scored.append(chunk.with_score(semantic + self.keyword_weight * overlap + self._boost(chunk)))
        scored.sort(key=lambda c: -c.score)
        return RankOutcome(chunks=scored, semantic=True, embedding_requests=requests)
