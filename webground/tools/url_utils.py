from __future__ import annotations

import re
from urllib.parse import urlsplit

_DEFAULT_PORTS = {"http": 80, "https": 443}


def normalize_url_key(url: str) -> str:
    """Identity key for a URL: scheme + host + path, no query, fragment or trailing slash.

    Idempotent, so keys can be re-normalized safely.
    """
    value = (url or "").strip()
    try:
        parsed = urlsplit(value)
        host = parsed.hostname
        port = parsed.port
    except ValueError:
        host = None
        port = None
        parsed = None

    if parsed is None or not parsed.scheme or not host:
        bare = re.split(r"[?#]", value, maxsplit=1)[0]
        return bare.lower().rstrip("/")

    scheme = parsed.scheme.lower()
    netloc = host.lower()
    if ":" in netloc:
        netloc = f"[{netloc}]"
    if port is not None and port != _DEFAULT_PORTS.get(scheme):
        netloc = f"{netloc}:{port}"
    return f"{scheme}://{netloc}{parsed.path}".rstrip("/")


def domain_of(url: str) -> str:
    """Hostname without a leading www., or an empty string if unparseable."""
    try:
        host = (urlsplit((url or "").strip()).hostname or "").lower()
    except ValueError:
        return ""
    if host.startswith("www."):
        host = host[4:]
    return host


def normalize_query_key(query: str) -> str:
    return " ".join((query or "").lower().split())
