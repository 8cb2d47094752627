"""Token-bounded, paragraph-aware chunking with word-aligned overlap.

Token counts are estimated, not tokenized: ``max(ceil(chars / 4),
ceil(words * 1.3))``. Every emitted chunk, including the ``Table:`` /
``List:`` prefix of block chunks, stays within ``chunk_size`` estimated
tokens.
"""
from __future__ import annotations

import math
import re

from webground.models.pipeline import Chunk, ChunkKind, PageFetchResult
from webground.research_core.extract.service import normalize_paragraphs
from webground.tools.url_utils import domain_of, normalize_url_key

MIN_CHUNK_TOKENS = 8
PARAGRAPH_SEPARATOR = "\n\n"
BLOCK_PREFIXES: dict[ChunkKind, str] = {"table": "Table:\n", "list": "List:\n"}

_WORD_RE = re.compile(r"\S+")


def estimate_tokens(text: str) -> int:
    if not text:
        return 0
    words = len(text.split())
    return max(math.ceil(len(text) / 4), math.ceil(words * 1.3))


def _estimate(chars: int, words: int) -> int:
    if chars <= 0:
        return 0
    return max(math.ceil(chars / 4), math.ceil(words * 1.3))


def _split_long_word(word: str, max_tokens: int) -> list[str]:
    # a lone word costs ceil(chars / 4) tokens once it is longer than a few characters
    width = max(max_tokens * 4, 1)
    return [word[i : i + width] for i in range(0, len(word), width)]


def split_oversized(paragraph: str, max_tokens: int) -> list[str]:
    """Split a paragraph into word-aligned pieces of at most ``max_tokens``."""
    pieces: list[str] = []
    current: list[str] = []
    chars = 0

    for word in paragraph.split():
        if _estimate(len(word), 1) > max_tokens:
            if current:
                pieces.append(" ".join(current))
                current, chars = [], 0
            pieces.extend(_split_long_word(word, max_tokens))
            continue
        next_chars = chars + len(word) + (1 if current else 0)
        if current and _estimate(next_chars, len(current) + 1) > max_tokens:
            pieces.append(" ".join(current))
            current, chars = [word], len(word)
        else:
            current.append(word)
            chars = next_chars
    if current:
        pieces.append(" ".join(current))
    return pieces


def overlap_tail(previous: str, overlap: int, chunk_size: int, following: str) -> str:
    """Literal, word-aligned suffix of ``previous`` worth about ``overlap`` tokens.

    The suffix is shortened until ``tail + separator + following`` fits in
    ``chunk_size``; an empty string means no overlap fits.
    """
    if overlap <= 0 or not previous:
        return ""
    starts = [m.start() for m in _WORD_RE.finditer(previous)]
    count = 0
    for k in range(1, len(starts) + 1):
        if estimate_tokens(previous[starts[-k]:]) > overlap:
            break
        count = k
    while count > 0:
        tail = previous[starts[-count]:]
        if estimate_tokens(tail + PARAGRAPH_SEPARATOR + following) <= chunk_size:
            return tail
        count -= 1
    return ""


def chunk_text(text: str, chunk_size: int, chunk_overlap: int) -> list[str]:
    if chunk_size < MIN_CHUNK_TOKENS:
        raise ValueError(f"chunk_size must be at least {MIN_CHUNK_TOKENS} tokens")
    normalized = normalize_paragraphs(text)
    if not normalized:
        return []

    overlap = max(min(chunk_overlap, chunk_size // 2), 0)
    # leave room for the overlap tail in front of pre-split pieces
    split_budget = max(chunk_size - overlap, MIN_CHUNK_TOKENS)
    pieces: list[str] = []
    for paragraph in normalized.split(PARAGRAPH_SEPARATOR):
        if estimate_tokens(paragraph) <= chunk_size:
            pieces.append(paragraph)
        else:
            pieces.extend(split_oversized(paragraph, split_budget))

    chunks: list[str] = []
    current = ""
    for piece in pieces:
        candidate = f"{current}{PARAGRAPH_SEPARATOR}{piece}" if current else piece
        if estimate_tokens(candidate) <= chunk_size:
            current = candidate
            continue
        if current:
            chunks.append(current)
        tail = overlap_tail(current, overlap, chunk_size, piece)
        current = f"{tail}{PARAGRAPH_SEPARATOR}{piece}" if tail else piece
    if current:
        chunks.append(current)
    return chunks


def _block_chunks(block: str, kind: ChunkKind, chunk_size: int, chunk_overlap: int) -> list[str]:
    prefix = BLOCK_PREFIXES[kind]
    reserved = estimate_tokens(prefix.strip())
    # block rows are single lines; treat each row as a paragraph
    rows = PARAGRAPH_SEPARATOR.join(line for line in block.splitlines() if line.strip())
    slices = chunk_text(rows, chunk_size - reserved, chunk_overlap)
    return [prefix + s.replace(PARAGRAPH_SEPARATOR, "\n") for s in slices]


def build_chunks(
    pages: list[PageFetchResult],
    *,
    chunk_size: int,
    chunk_overlap: int,
) -> list[Chunk]:
    chunks: list[Chunk] = []
    for page in pages:
        if not page.text and not page.table_blocks and not page.list_blocks:
            continue
        url_key = normalize_url_key(page.url)
        domain = page.domain or domain_of(page.url) or None
        title = page.title or None

        def emit(text: str, kind: ChunkKind) -> None:
            if text.strip():
                chunks.append(
                    Chunk(text=text, url=page.url, url_key=url_key, kind=kind, title=title, domain=domain)
                )

        for piece in chunk_text(page.text, chunk_size, chunk_overlap):
            emit(piece, "text")
        for block in page.table_blocks:
            for piece in _block_chunks(block, "table", chunk_size, chunk_overlap):
                emit(piece, "table")
        for block in page.list_blocks:
            for piece in _block_chunks(block, "list", chunk_size, chunk_overlap):
                emit(piece, "list")
    return chunks
