from __future__ import annotations

from collections import Counter

from webground.models.pipeline import Chunk
from webground.research_core.extract.service import normalize_whitespace

SIGNATURE_CHARS = 600
UNKNOWN_DOMAIN = "unknown"


def _normalized(text: str) -> str:
    return normalize_whitespace(text).lower()


def is_near_duplicate(text: str, selected: list[Chunk]) -> bool:
    """True when the 600-char signature matches or is contained either way."""
    signature = _normalized(text)[:SIGNATURE_CHARS]
    for existing in selected:
        existing_text = _normalized(existing.text)
        if existing_text[:SIGNATURE_CHARS] == signature:
            return True
        if signature in existing_text or existing_text in signature:
            return True
    return False


def _domain_key(chunk: Chunk) -> str:
    return chunk.domain or UNKNOWN_DOMAIN


def _fits_caps(chunk: Chunk, selected: list[Chunk], max_per_domain: int, max_per_url: int) -> bool:
    domain = _domain_key(chunk)
    domain_count = sum(1 for c in selected if _domain_key(c) == domain)
    url_count = sum(1 for c in selected if c.url_key == chunk.url_key)
    return domain_count < max_per_domain and url_count < max_per_url


def dedupe_and_cap(
    chunks: list[Chunk],
    *,
    top_k: int,
    max_per_domain: int,
    max_per_url: int,
) -> list[Chunk]:
    ordered = sorted(chunks, key=lambda c: -c.score)
    selected: list[Chunk] = []
    domain_counts: Counter[str] = Counter()
    url_counts: Counter[str] = Counter()

    for chunk in ordered:
        if len(selected) >= top_k:
            break
        domain = _domain_key(chunk)
        if domain_counts[domain] >= max_per_domain:
            continue
        if url_counts[chunk.url_key] >= max_per_url:
            continue
        if is_near_duplicate(chunk.text, selected):
            continue
        selected.append(chunk)
        domain_counts[domain] += 1
        url_counts[chunk.url_key] += 1
    return selected


def enforce_table_list_floor(
    selected: list[Chunk],
    ranked: list[Chunk],
    *,
    floor: int,
    top_k: int,
    max_per_domain: int,
    max_per_url: int,
) -> list[Chunk]:
    """Swap the best unselected table/list chunks in for the weakest text chunks.

    Additions go to the end of the list. A swap that would break ``top_k``,
    a per-domain or per-URL cap, or admit a near-duplicate is skipped.
    """
    if floor <= 0 or not selected:
        return selected
    have = sum(1 for c in selected if c.kind != "text")
    if have >= floor:
        return selected

    chosen = {(c.url_key, c.text) for c in selected}
    candidates = sorted(
        (c for c in ranked if c.kind != "text" and (c.url_key, c.text) not in chosen),
        key=lambda c: -c.score,
    )
    result = list(selected)
    needed = floor - have

    for candidate in candidates:
        if needed <= 0:
            break
        if len(result) < top_k:
            if _fits_caps(candidate, result, max_per_domain, max_per_url) and not is_near_duplicate(
                candidate.text, result
            ):
                result.append(candidate)
                needed -= 1
                continue
        removable = sorted((c for c in result if c.kind == "text"), key=lambda c: c.score)
        for drop in removable:
            trial = [c for c in result if c is not drop]
            if not _fits_caps(candidate, trial, max_per_domain, max_per_url):
                continue
            if is_near_duplicate(candidate.text, trial):
                continue
            result = trial + [candidate]
            needed -= 1
            break
    return result


def select_chunks(
    ranked: list[Chunk],
    *,
    top_k: int,
    max_per_domain: int,
    max_per_url: int,
    min_table_list: int = 2,
) -> list[Chunk]:
    selected = dedupe_and_cap(
        ranked,
        top_k=top_k,
        max_per_domain=max_per_domain,
        max_per_url=max_per_url,
    )
    return enforce_table_list_floor(
        selected,
        ranked,
        floor=min_table_list,
        top_k=top_k,
        max_per_domain=max_per_domain,
        max_per_url=max_per_url,
    )
