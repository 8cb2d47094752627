from __future__ import annotations

import pytest

from webground.models.pipeline import Chunk
from webground.research_core.rank.service import (
    ChunkRanker,
    cosine_similarity,
    keyword_score,
    query_tokens,
)
from webground.services.embeddings import DisabledEmbeddingService


def _chunk(text: str, kind: str = "text", url: str = "https://a.com") -> Chunk:
    return Chunk(text=text, url=url, url_key=url, kind=kind, domain="a.com")


class FakeEmbedder:
    """Embeds by counting two marker words, so similarity is predictable."""

    def __init__(self, batch_size: int = 2, fail: bool = False, short: bool = False):
        self.batch_size = batch_size
        self.fail = fail
        self.short = short
        self.calls: list[list[str]] = []

    async def embed_texts(self, texts: list[str]) -> list[list[float]]:
        self.calls.append(list(texts))
        if self.fail:
            raise RuntimeError("embedding outage")
        vectors = [[t.lower().count("apple") + 0.01, t.lower().count("banana") + 0.01] for t in texts]
        return vectors[:-1] if self.short and len(texts) > 1 else vectors


def test_query_tokens_keep_long_tokens_only():
    assert query_tokens(["Best laptop for AI, 2024!"]) == ["best", "laptop", "2024"]


def test_keyword_score():
    assert keyword_score("A great Laptop review", ["laptop", "best"]) == 0.5
    assert keyword_score("anything", []) == 0.0


def test_cosine_similarity():
    assert cosine_similarity([1.0, 0.0], [1.0, 0.0]) == pytest.approx(1.0)
    assert cosine_similarity([1.0, 0.0], [0.0, 1.0]) == pytest.approx(0.0)
    assert cosine_similarity([], [1.0]) == 0.0


@pytest.mark.asyncio
async def test_rank_without_embeddings_uses_keyword_scores():
    ranker = ChunkRanker(DisabledEmbeddingService(), keyword_weight=0.15, kind_boost=0.2, max_embed_chunks=80)
    chunks = [
        _chunk("nothing relevant here"),
        _chunk("apple pricing details"),
        _chunk("- apple\n- pear", kind="list"),
    ]

    outcome = await ranker.rank(chunks, ["apple pricing"])

    assert not outcome.semantic
    assert outcome.embedding_requests == 0
    assert [c.text for c in outcome.chunks] == [
        "apple pricing details",
        "- apple\n- pear",
        "nothing relevant here",
    ]
    assert outcome.chunks[1].score == pytest.approx(0.5 + 0.2)


@pytest.mark.asyncio
async def test_rank_with_embeddings_prefers_semantic_match():
    embedder = FakeEmbedder(batch_size=2)
    ranker = ChunkRanker(embedder, keyword_weight=0.15, kind_boost=0.0, max_embed_chunks=80)
    chunks = [_chunk("banana banana bread"), _chunk("apple apple pie"), _chunk("banana split")]

    outcome = await ranker.rank(chunks, ["apple"])

    assert outcome.semantic
    assert outcome.chunks[0].text == "apple apple pie"
    # 1 query in one batch, 3 chunks in two batches of 2
    assert outcome.embedding_requests == 3


@pytest.mark.asyncio
async def test_rank_prefilters_before_embedding():
    embedder = FakeEmbedder()
    ranker = ChunkRanker(embedder, keyword_weight=0.15, kind_boost=0.0, max_embed_chunks=2)
    chunks = [_chunk("zzz one"), _chunk("pricing apple"), _chunk("pricing info"), _chunk("zzz two")]

    outcome = await ranker.rank(chunks, ["pricing apple"])

    assert embedder.calls[1] == ["pricing apple", "pricing info"]
    assert len(outcome.chunks) == 2


@pytest.mark.asyncio
@pytest.mark.parametrize("embedder", [FakeEmbedder(fail=True), FakeEmbedder(short=True)])
async def test_rank_degrades_to_keyword_ranking(embedder):
    ranker = ChunkRanker(embedder, keyword_weight=0.15, kind_boost=0.2, max_embed_chunks=80)
    chunks = [_chunk("plain"), _chunk("apple facts"), _chunk("apple table", kind="table")]

    outcome = await ranker.rank(chunks, ["apple facts"])

    assert not outcome.semantic
    assert len(outcome.chunks) == 3
    assert [c.text for c in outcome.chunks] == ["apple facts", "apple table", "plain"]
