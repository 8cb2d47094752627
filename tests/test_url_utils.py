from __future__ import annotations

import pytest

from webground.tools.url_utils import domain_of, normalize_query_key, normalize_url_key


@pytest.mark.parametrize(
    "url,expected",
    [
        ("https://Example.com/Path/?q=1#frag", "https://example.com/Path"),
        ("HTTP://EXAMPLE.COM:80/a//", "http://example.com/a"),
        ("https://example.com:8443/a", "https://example.com:8443/a"),
        ("https://example.com", "https://example.com"),
        ("http://[::1]:8080/x", "http://[::1]:8080/x"),
    ],
)
def test_normalize_url_key(url, expected):
    assert normalize_url_key(url) == expected


def test_normalize_url_key_is_idempotent():
    key = normalize_url_key("https://www.Example.com/docs/?utm=x")
    assert normalize_url_key(key) == key


def test_normalize_url_key_falls_back_for_unparseable_input():
    assert normalize_url_key("Not A URL/?x=1") == "not a url"


def test_domain_of_strips_www():
    assert domain_of("https://www.Example.org/page") == "example.org"
    assert domain_of("not a url") == ""


def test_normalize_query_key():
    assert normalize_query_key("  Best   Laptops\t2024 ") == "best laptops 2024"
