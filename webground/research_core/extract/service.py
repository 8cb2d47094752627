from __future__ import annotations

import json
import re
from dataclasses import dataclass, field
from typing import Any

from bs4 import BeautifulSoup
from loguru import logger

from webground.models.pipeline import PageFetchResult
from webground.tools.url_utils import normalize_url_key

BOILERPLATE_TAGS = ["nav", "footer", "header", "aside"]
SKIPPED_TAGS = ["script", "style", "noscript", "svg", "img", "template", "iframe", "head"]
BLOCK_TAGS = [
    "p", "div", "section", "article", "main", "blockquote", "pre", "figure", "figcaption",
    "h1", "h2", "h3", "h4", "h5", "h6", "ul", "ol", "li", "dl", "dt", "dd",
    "table", "thead", "tbody", "tr", "form", "fieldset", "address", "hr",
]

STRUCTURED_DATA_MAX_CHARS = 2000
STRUCTURED_DESCRIPTION_MAX_CHARS = 400

_NOSCRIPT_JS_RE = re.compile(r"<noscript[^>]*>[\s\S]*?javascript[\s\S]*?</noscript>", re.IGNORECASE)
_EMPTY_BODY_RE = re.compile(r"<body[^>]*>\s*</body>", re.IGNORECASE)
_SCRIPT_RE = re.compile(r"<script[\s\S]*?</script>", re.IGNORECASE)
_PARAGRAPH_SPLIT_RE = re.compile(r"\n\s*\n")


def normalize_whitespace(text: str) -> str:
    return " ".join(text.replace("\xa0", " ").split())


def normalize_paragraphs(text: str) -> str:
    """Collapse whitespace inside paragraphs and separate paragraphs by one blank line."""
    if not text:
        return ""
    text = text.replace("\xa0", " ").replace("\r\n", "\n").replace("\r", "\n")
    paragraphs = [normalize_whitespace(p) for p in _PARAGRAPH_SPLIT_RE.split(text)]
    return "\n\n".join(p for p in paragraphs if p)


def _flatten_ld(value: Any) -> list[dict[str, Any]]:
    if isinstance(value, list):
        out: list[dict[str, Any]] = []
        for item in value:
            out.extend(_flatten_ld(item))
        return out
    if not isinstance(value, dict):
        return []
    graph = value.get("@graph")
    if isinstance(graph, list):
        return _flatten_ld(graph)
    return [value]


def _as_text(value: Any) -> str:
    if isinstance(value, list):
        return ", ".join(_as_text(v) for v in value if v not in (None, ""))
    if isinstance(value, dict):
        return _as_text(value.get("name") or value.get("@id") or "")
    if value is None:
        return ""
    return str(value).strip()


def _summarize_ld(entry: dict[str, Any]) -> str:
    offers = entry.get("offers")
    if isinstance(offers, list):
        offers = next((o for o in offers if isinstance(o, dict)), None)
    if not isinstance(offers, dict):
        offers = {}
    spec = offers.get("priceSpecification")
    if isinstance(spec, list):
        spec = next((s for s in spec if isinstance(s, dict)), None)
    if not isinstance(spec, dict):
        spec = {}

    price = offers.get("price", spec.get("price"))
    if price is None:
        price = offers.get("lowPrice")
    currency = offers.get("priceCurrency", spec.get("priceCurrency"))
    availability = offers.get("availability")

    segments: list[str] = []
    if entry.get("@type"):
        segments.append(f"Type: {_as_text(entry['@type'])}")
    if entry.get("name"):
        segments.append(f"Name: {_as_text(entry['name'])}")
    if entry.get("description"):
        segments.append(f"Description: {_as_text(entry['description'])[:STRUCTURED_DESCRIPTION_MAX_CHARS]}")
    if price is not None or currency:
        offer = f"{_as_text(price)} {_as_text(currency)}".strip()
        if offer:
            segments.append(f"Offer: {offer}")
    if availability:
        segments.append(f"Availability: {_as_text(availability)}")
    return " | ".join(segments)


@dataclass(slots=True)
class ExtractedPage:
    """Everything read from one page's HTML in a single parse."""

    text: str = ""
    title: str = ""
    structured: str = ""
    table_blocks: list[str] = field(default_factory=list)
    list_blocks: list[str] = field(default_factory=list)

    @property
    def text_with_structured(self) -> str:
        return append_structured(self.text, self.structured)


def _soup(html: str) -> BeautifulSoup:
    return BeautifulSoup(html, "html.parser")


def _strip(soup: BeautifulSoup, names: list[str]) -> None:
    for tag in soup.find_all(names):
        tag.decompose()


def _title(soup: BeautifulSoup) -> str:
    if soup.title and soup.title.string:
        return normalize_whitespace(soup.title.string)
    return ""


def _structured_lines(soup: BeautifulSoup) -> str:
    lines: list[str] = []
    for script in soup.find_all("script", attrs={"type": re.compile(r"application/ld\+json", re.I)}):
        raw = (script.string or script.get_text() or "").strip()
        if not raw:
            continue
        try:
            parsed = json.loads(raw)
        except (json.JSONDecodeError, ValueError):
            continue
        for entry in _flatten_ld(parsed):
            line = _summarize_ld(entry)
            if line:
                lines.append(line)
    return "\n".join(lines)[:STRUCTURED_DATA_MAX_CHARS]


def _table_blocks(soup: BeautifulSoup) -> list[str]:
    blocks: list[str] = []
    for table in soup.find_all("table"):
        lines: list[str] = []
        for row in table.find_all("tr"):
            cells = [
                normalize_whitespace(cell.get_text(" "))
                for cell in row.find_all(["td", "th"])
            ]
            cells = [c for c in cells if c]
            if cells:
                lines.append(" | ".join(cells))
        if lines:
            blocks.append("\n".join(lines))
    return blocks


def _list_blocks(soup: BeautifulSoup) -> list[str]:
    blocks: list[str] = []
    for lst in soup.find_all(["ul", "ol"]):
        # nested lists are already part of their parent item's text
        if lst.find_parent(["ul", "ol"]) is not None:
            continue
        lines = []
        for item in lst.find_all("li", recursive=False):
            text = normalize_whitespace(item.get_text(" "))
            if text:
                lines.append(f"- {text}")
        if lines:
            blocks.append("\n".join(lines))
    return blocks


def _block_text(soup: BeautifulSoup) -> str:
    # mutates the tree: block boundaries become paragraph breaks
    _strip(soup, ["title"])
    root = soup.body or soup
    for br in root.find_all("br"):
        br.replace_with("\n")
    for tag in root.find_all(BLOCK_TAGS):
        tag.insert_before("\n\n")
        tag.insert_after("\n\n")
    for cell in root.find_all(["td", "th"]):
        cell.insert_after(" ")
    return normalize_paragraphs(root.get_text())


def extract_page(html: str) -> ExtractedPage:
    """Parse once and pull title, JSON-LD, tables, lists and prose.

    CPU bound; async callers run it through ``asyncio.to_thread``.
    """
    if not html:
        return ExtractedPage()
    try:
        soup = _soup(html)
        title = _title(soup)
        structured = _structured_lines(soup)
        _strip(soup, SKIPPED_TAGS + BOILERPLATE_TAGS)
        table_blocks = _table_blocks(soup)
        list_blocks = _list_blocks(soup)
        text = _block_text(soup)
    except Exception as exc:
        logger.debug(f"Page extraction failed: {exc}")
        return ExtractedPage()
    return ExtractedPage(
        text=text,
        title=title,
        structured=structured,
        table_blocks=table_blocks,
        list_blocks=list_blocks,
    )


def extract_text(html: str) -> str:
    """Readable prose from HTML: boilerplate dropped, blocks become paragraphs."""
    return extract_page(html).text


def extract_table_blocks(html: str) -> list[str]:
    """One block per <table>, each row's cell texts joined with " | "."""
    return extract_page(html).table_blocks


def extract_list_blocks(html: str) -> list[str]:
    """One block per top-level <ul>/<ol>, one "- item" line per direct list item."""
    return extract_page(html).list_blocks


def extract_structured_data_text(html: str) -> str:
    """Summary lines for the page's JSON-LD objects, capped at 2000 characters."""
    return extract_page(html).structured


def extract_title(html: str) -> str:
    return extract_page(html).title


def append_structured(text: str, structured: str) -> str:
    if not structured:
        return text
    return f"{text}\n\nStructured data:\n{structured}".strip()


def append_structured_data(text: str, html: str) -> str:
    return append_structured(text, extract_structured_data_text(html))


def compute_js_likelihood(html: str) -> int:
    """Heuristic score for a JavaScript-rendered shell; 2 or more means "probably"."""
    if not html:
        return 0
    lower = html.lower()
    score = 0
    if "__next_data__" in lower or "data-reactroot" in lower:
        score += 2
    if "webpackjson" in lower or "vite" in lower:
        score += 1
    if _NOSCRIPT_JS_RE.search(html):
        score += 2
    if _EMPTY_BODY_RE.search(html):
        score += 2
    if len(_SCRIPT_RE.findall(html)) >= 8:
        score += 1
    return score


def passes_quality(page: PageFetchResult, *, min_text_length: int, min_content_ratio: float) -> bool:
    if page.status != 200:
        return False
    if len(page.text) < min_text_length:
        return False
    return page.content_ratio >= min_content_ratio


def select_pages(
    pages: list[PageFetchResult],
    *,
    page_limit: int,
    min_text_length: int,
    min_content_ratio: float,
) -> list[PageFetchResult]:
    """Quality-passing pages in fetch order, then status-200 pages by text length.

    Pages are identified by normalized URL, so a URL is admitted at most once.
    """
    selected: list[PageFetchResult] = []
    seen: set[str] = set()

    def admit(page: PageFetchResult) -> None:
        key = normalize_url_key(page.url)
        if key in seen:
            return
        seen.add(key)
        selected.append(page)

    for page in pages:
        if len(selected) >= page_limit:
            return selected
        if passes_quality(page, min_text_length=min_text_length, min_content_ratio=min_content_ratio):
            admit(page)

    fallback = sorted(
        (p for p in pages if p.status == 200),
        key=lambda p: len(p.text),
        reverse=True,
    )
    for page in fallback:
        if len(selected) >= page_limit:
            break
        admit(page)
    return selected
