from __future__ import annotations

import pytest

from webground.models.pipeline import PageFetchResult
from webground.research_core.chunk.service import (
    build_chunks,
    chunk_text,
    estimate_tokens,
    overlap_tail,
    split_oversized,
)


def _paragraphs(n: int, words: int = 40) -> str:
    return "\n\n".join(
        " ".join(f"p{i}w{j}" for j in range(words)) for i in range(n)
    )


def test_estimate_tokens():
    assert estimate_tokens("") == 0
    assert estimate_tokens("abcd") == 2
    assert estimate_tokens("a" * 40) == 10


@pytest.mark.parametrize("size,overlap", [(16, 4), (60, 10), (300, 50), (40, 0)])
def test_chunks_stay_within_token_budget(size, overlap):
    text = _paragraphs(12) + "\n\n" + "x" * 900 + "\n\n" + " ".join(["word"] * 500)

    chunks = chunk_text(text, size, overlap)

    assert chunks
    assert all(estimate_tokens(c) <= size for c in chunks)


def test_chunk_text_rejects_tiny_budget():
    with pytest.raises(ValueError):
        chunk_text("hello world", 4, 0)


def test_chunk_text_empty():
    assert chunk_text("   \n\n  ", 100, 10) == []


def test_consecutive_chunks_share_literal_overlap():
    chunks = chunk_text(_paragraphs(6), 120, 20)

    assert len(chunks) > 1
    for previous, current in zip(chunks, chunks[1:]):
        head = current.split("\n\n", 1)[0]
        assert previous.endswith(head)


def test_no_overlap_when_disabled():
    chunks = chunk_text(_paragraphs(6), 120, 0)
    joined = "\n\n".join(chunks)
    assert joined == _paragraphs(6)


def test_split_oversized_splits_long_words():
    pieces = split_oversized("a" * 100, 10)
    assert all(estimate_tokens(p) <= 10 for p in pieces)
    assert "".join(pieces) == "a" * 100


def test_overlap_tail_shrinks_to_fit():
    previous = "one two three four five six"
    assert overlap_tail(previous, 0, 100, "next") == ""
    tail = overlap_tail(previous, 6, 100, "next")
    assert previous.endswith(tail)
    assert estimate_tokens(tail) <= 6
    assert overlap_tail(previous, 6, 2, "next") == ""


def test_build_chunks_tags_kinds_and_prefixes():
    page = PageFetchResult(
        url="https://www.shop.com/item/?ref=x",
        text="Intro paragraph about the item.",
        table_blocks=["Size | Price\nS | $5\nL | $9"],
        list_blocks=["- red\n- blue"],
        status=200,
        title="Item",
    )

    chunks = build_chunks([page], chunk_size=40, chunk_overlap=5)

    assert [c.kind for c in chunks] == ["text", "table", "list"]
    assert chunks[1].text == "Table:\nSize | Price\nS | $5\nL | $9"
    assert chunks[2].text == "List:\n- red\n- blue"
    assert all(c.url_key == "https://www.shop.com/item" for c in chunks)
    assert all(c.domain == "shop.com" for c in chunks)
    assert all(estimate_tokens(c.text) <= 40 for c in chunks)


def test_build_chunks_skips_empty_pages():
    assert build_chunks([PageFetchResult(url="https://a.com")], chunk_size=50, chunk_overlap=5) == []
