from __future__ import annotations

import json

from webground.models.pipeline import PageFetchResult
from webground.research_core.extract.service import (
    ExtractedPage,
    append_structured_data,
    compute_js_likelihood,
    extract_list_blocks,
    extract_page,
    extract_structured_data_text,
    extract_table_blocks,
    extract_text,
    extract_title,
    normalize_paragraphs,
    passes_quality,
    select_pages,
)

PAGE = """
<html>
<head><title> Pricing  Guide </title><style>.x{}</style></head>
<body>
  <nav><a href="/">Home</a> <a href="/about">About</a></nav>
  <h1>Plans</h1>
  <p>The basic plan costs   $10 per month.<br>Billed yearly.</p>
  <table>
    <tr><th>Plan</th><th>Price</th></tr>
    <tr><td>Basic</td><td>$10</td></tr>
  </table>
  <ul><li>Fast <b>support</b></li><li>Free trial</li></ul>
  <footer>Copyright footer</footer>
  <script>var tracking = 1;</script>
</body>
</html>
"""


def test_extract_text_drops_boilerplate_and_keeps_blocks():
    text = extract_text(PAGE)

    assert "Home" not in text
    assert "Copyright" not in text
    assert "tracking" not in text
    assert "Pricing Guide" not in text
    assert "Plans\n\nThe basic plan costs $10 per month." in text
    assert "Basic $10" in text


def test_extract_table_and_list_blocks():
    assert extract_table_blocks(PAGE) == ["Plan | Price\nBasic | $10"]
    assert extract_list_blocks(PAGE) == ["- Fast support\n- Free trial"]


def test_blocks_skip_navigation_lists():
    html = "<nav><ul><li>Home</li></ul></nav><ul><li>Real item</li></ul>"
    assert extract_list_blocks(html) == ["- Real item"]


def test_nested_lists_stay_inside_parent_item():
    html = "<ul><li>Plans<ul><li>Basic</li><li>Pro</li></ul></li><li>Support</li></ul>"
    assert extract_list_blocks(html) == ["- Plans Basic Pro\n- Support"]


def test_extract_page_collects_every_part():
    html = PAGE.replace(
        "</head>",
        '<script type="application/ld+json">{"@type": "Offer", "name": "Basic"}</script></head>',
    )
    page = extract_page(html)

    assert page.title == "Pricing Guide"
    assert page.structured == "Type: Offer | Name: Basic"
    assert page.table_blocks == ["Plan | Price\nBasic | $10"]
    assert page.list_blocks == ["- Fast support\n- Free trial"]
    assert "Plans\n\nThe basic plan costs $10 per month." in page.text
    assert page.text_with_structured.endswith("Structured data:\nType: Offer | Name: Basic")
    assert extract_page("") == ExtractedPage()


def test_extract_title():
    assert extract_title(PAGE) == "Pricing Guide"
    assert extract_title("<p>no title</p>") == ""


def test_normalize_paragraphs():
    assert normalize_paragraphs("a  b\n\n\n  c\xa0d \n \n") == "a b\n\nc d"


def _ld(payload) -> str:
    return f'<script type="application/ld+json">{json.dumps(payload)}</script>'


def test_structured_data_summarizes_offers_and_graph():
    html = _ld(
        {
            "@graph": [
                {
                    "@type": "Product",
                    "name": "Widget",
                    "offers": {"@type": "Offer", "price": "19.99", "priceCurrency": "USD", "availability": "InStock"},
                },
                {"@type": "Organization", "name": "Acme"},
            ]
        }
    ) + "<script type='application/ld+json'>{broken</script>"

    text = extract_structured_data_text(html)

    assert text.splitlines() == [
        "Type: Product | Name: Widget | Offer: 19.99 USD | Availability: InStock",
        "Type: Organization | Name: Acme",
    ]


def test_structured_data_uses_low_price_and_caps_length():
    html = _ld([{"@type": "Product", "offers": [{"lowPrice": 5, "priceCurrency": "EUR"}]}] * 200)

    text = extract_structured_data_text(html)

    assert text.startswith("Type: Product | Offer: 5 EUR")
    assert len(text) <= 2000


def test_append_structured_data():
    html = _ld({"@type": "Event", "name": "Launch"})
    assert append_structured_data("Body", html) == "Body\n\nStructured data:\nType: Event | Name: Launch"
    assert append_structured_data("Body", "<p>x</p>") == "Body"


def test_js_likelihood():
    shell = '<html><body></body><script id="__NEXT_DATA__"></script></html>'
    assert compute_js_likelihood(shell) >= 2
    assert compute_js_likelihood("<html><body><p>Plain article</p></body></html>") == 0


def _page(url: str, text_len: int, status: int = 200, html_len: int = 1000) -> PageFetchResult:
    return PageFetchResult(url=url, text="x" * text_len, status=status, html_length=html_len)


def test_passes_quality():
    assert passes_quality(_page("https://a.com", 50), min_text_length=40, min_content_ratio=0.02)
    assert not passes_quality(_page("https://a.com", 30), min_text_length=40, min_content_ratio=0.02)
    assert not passes_quality(_page("https://a.com", 50, status=404), min_text_length=40, min_content_ratio=0.02)
    assert not passes_quality(
        _page("https://a.com", 50, html_len=100_000), min_text_length=40, min_content_ratio=0.02
    )


def test_select_pages_backfills_by_text_length():
    pages = [
        _page("https://good.com/1", 100),
        _page("https://short.com", 20),
        _page("https://longer.com", 35),
        _page("https://error.com", 500, status=500),
        _page("https://GOOD.com/1/", 100),
    ]

    selected = select_pages(pages, page_limit=3, min_text_length=50, min_content_ratio=0.0)

    assert [p.url for p in selected] == ["https://good.com/1", "https://longer.com", "https://short.com"]


def test_select_pages_respects_limit():
    pages = [_page(f"https://s{i}.com", 100) for i in range(5)]
    assert len(select_pages(pages, page_limit=2, min_text_length=50, min_content_ratio=0.0)) == 2
