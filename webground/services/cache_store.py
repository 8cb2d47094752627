"""TTL caches for SERP payloads and fetched pages over pluggable key/value stores.

Stores never expire anything themselves; the ``SerpCache`` / ``PageCache``
wrappers compare each row's ``created_at`` against their TTL and treat
stale rows exactly like missing ones. Every store error is logged and
downgraded to a miss (reads) or a no-op (writes).
"""
from __future__ import annotations

import asyncio
import json
from datetime import datetime, timedelta, timezone
from hashlib import sha256
from pathlib import Path
from typing import Any, Protocol

from loguru import logger

from webground.config import settings
from webground.models.pipeline import CacheEntry, CachedPage, SerpResponse
from webground.services.http import sanitize_ssl_keylogfile
from webground.tools.url_utils import normalize_query_key, normalize_url_key

SERP_TABLE = "web_search_serp_cache"
PAGE_TABLE = "web_search_page_cache"


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _parse_timestamp(value: Any) -> datetime | None:
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str) and value.strip():
        try:
            parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
        except ValueError:
            return None
    else:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class CacheStore(Protocol):
    async def get(self, table: str, key: str) -> CacheEntry | None: ...

    async def upsert(self, table: str, key: str, payload: dict[str, Any]) -> None: ...


class MemoryCacheStore:
    """In-process store, shared by every request in the process."""

    def __init__(self) -> None:
        self._rows: dict[tuple[str, str], CacheEntry] = {}

    async def get(self, table: str, key: str) -> CacheEntry | None:
        return self._rows.get((table, key))

    async def upsert(self, table: str, key: str, payload: dict[str, Any]) -> None:
        self._rows[(table, key)] = CacheEntry(key=key, payload=dict(payload), created_at=_utc_now())

    def clear(self) -> None:
        self._rows.clear()


class NullCacheStore:
    async def get(self, table: str, key: str) -> CacheEntry | None:
        return None

    async def upsert(self, table: str, key: str, payload: dict[str, Any]) -> None:
        return None


class FileCacheStore:
    """One JSON file per key under ``<root>/<table>/<sha256(key)>.json``."""

    def __init__(self, root: str | Path | None = None) -> None:
        self.root = Path(root or settings.cache_dir)

    def path_for(self, table: str, key: str) -> Path:
        digest = sha256(key.encode("utf-8")).hexdigest()
        return self.root / table / f"{digest}.json"

    async def get(self, table: str, key: str) -> CacheEntry | None:
        return await asyncio.to_thread(self._read, table, key)

    async def upsert(self, table: str, key: str, payload: dict[str, Any]) -> None:
        await asyncio.to_thread(self._write, table, key, payload)

    def _read(self, table: str, key: str) -> CacheEntry | None:
        path = self.path_for(table, key)
        if not path.exists():
            return None
        try:
            row = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError):
            return None
        if not isinstance(row, dict) or row.get("key") != key:
            return None
        created_at = _parse_timestamp(row.get("created_at"))
        payload = row.get("payload")
        if created_at is None or not isinstance(payload, dict):
            return None
        return CacheEntry(key=key, payload=payload, created_at=created_at)

    def _write(self, table: str, key: str, payload: dict[str, Any]) -> None:
        path = self.path_for(table, key)
        path.parent.mkdir(parents=True, exist_ok=True)
        row = {
            "key": key,
            "created_at": _utc_now().isoformat(),
            "payload": payload,
        }
        path.write_text(json.dumps(row, ensure_ascii=False), encoding="utf-8")


class SupabaseCacheStore:
    """Rows in the ``web_search_serp_cache`` / ``web_search_page_cache`` tables."""

    def __init__(self, client: Any | None = None) -> None:
        self._client = client

    def client(self) -> Any:
        if self._client is None:
            from supabase import create_client

            sanitize_ssl_keylogfile()
            self._client = create_client(settings.supabase_url, settings.supabase_anon_key)
        return self._client

    async def _execute(self, query: Any) -> Any:
        """Run blocking Supabase query execution in a worker thread."""
        return await asyncio.to_thread(query.execute)

    async def get(self, table: str, key: str) -> CacheEntry | None:
        result = await self._execute(
            self.client().table(table).select("*").eq("cache_key", key).limit(1)
        )
        rows = result.data or []
        if not rows:
            return None
        row = rows[0]
        created_at = _parse_timestamp(row.get("created_at"))
        if created_at is None:
            return None
        if table == PAGE_TABLE:
            payload = {
                "url": row.get("url"),
                "status": row.get("status"),
                "truncated": row.get("truncated"),
                "html": row.get("html"),
                "text": row.get("text_content"),
            }
        else:
            payload = row.get("payload")
            if isinstance(payload, str):
                try:
                    payload = json.loads(payload)
                except json.JSONDecodeError:
                    payload = None
            if not isinstance(payload, dict):
                return None
        return CacheEntry(key=key, payload=payload, created_at=created_at)

    async def upsert(self, table: str, key: str, payload: dict[str, Any]) -> None:
        if table == PAGE_TABLE:
            row = {
                "cache_key": key,
                "url": payload.get("url"),
                "status": payload.get("status"),
                "truncated": bool(payload.get("truncated")),
                "html": payload.get("html"),
                "text_content": payload.get("text"),
            }
        else:
            row = {
                "cache_key": key,
                "query": payload.get("query"),
                "provider": payload.get("provider"),
                "payload": payload,
            }
        # created_at is reset so an overwrite restarts the TTL window
        row["created_at"] = _utc_now().isoformat()
        await self._execute(self.client().table(table).upsert(row, on_conflict="cache_key"))


def build_cache_store(backend: str | None = None) -> CacheStore:
    name = (backend if backend is not None else settings.cache_backend).lower().strip()
    if name == "supabase":
        if not settings.supabase_url or not settings.supabase_anon_key:
            logger.warning("CACHE_BACKEND=supabase but Supabase is not configured; caching disabled")
            return NullCacheStore()
        return SupabaseCacheStore()
    if name == "file":
        return FileCacheStore()
    if name == "memory":
        return MemoryCacheStore()
    if name in {"off", "none", ""}:
        return NullCacheStore()
    raise ValueError(f"Unsupported CACHE_BACKEND: {backend or settings.cache_backend}")


_store: CacheStore | None = None


def cache_store() -> CacheStore:
    """Get or create the process-wide cache store."""
    global _store
    if _store is None:
        _store = build_cache_store()
    return _store


def reset_cache_store() -> None:
    global _store
    _store = None


def serp_cache_key(
    query: str,
    *,
    provider: str,
    language_code: str,
    location_name: str,
    depth: int,
) -> str:
    return (
        f"serp:{provider}:{language_code.lower()}:{location_name.lower()}:{depth}:"
        f"{normalize_query_key(query)}"
    )


def page_cache_key(url: str) -> str:
    return f"page:{normalize_url_key(url)}"


class _TTLCache:
    table = ""

    def __init__(self, store: CacheStore, ttl: timedelta):
        self.store = store
        self.ttl = ttl

    async def _load(self, key: str) -> dict[str, Any] | None:
        if self.ttl <= timedelta(0):
            return None
        try:
            entry = await self.store.get(self.table, key)
        except Exception as exc:
            logger.warning(f"Cache read failed ({self.table}, {key}): {exc}")
            return None
        if entry is None:
            return None
        created_at = entry.created_at
        if created_at.tzinfo is None:
            created_at = created_at.replace(tzinfo=timezone.utc)
        if _utc_now() - created_at > self.ttl:
            return None
        return entry.payload

    async def _save(self, key: str, payload: dict[str, Any]) -> None:
        try:
            await self.store.upsert(self.table, key, payload)
        except Exception as exc:
            logger.warning(f"Cache write failed ({self.table}, {key}): {exc}")


class SerpCache(_TTLCache):
    table = SERP_TABLE

    def __init__(self, store: CacheStore, ttl: timedelta | None = None):
        super().__init__(store, ttl if ttl is not None else timedelta(hours=settings.serp_cache_ttl_hours))

    async def load(self, key: str) -> SerpResponse | None:
        payload = await self._load(key)
        if payload is None:
            return None
        response = SerpResponse.from_payload(payload)
        if not response.results:
            return None
        return response

    async def save(self, key: str, query: str, response: SerpResponse) -> None:
        payload = response.to_payload()
        payload["query"] = query
        await self._save(key, payload)


class PageCache(_TTLCache):
    table = PAGE_TABLE

    def __init__(self, store: CacheStore, ttl: timedelta | None = None):
        super().__init__(store, ttl if ttl is not None else timedelta(hours=settings.page_cache_ttl_hours))

    async def load(self, url: str) -> CachedPage | None:
        payload = await self._load(page_cache_key(url))
        if payload is None:
            return None
        text = payload.get("text")
        if not isinstance(text, str) or not text.strip():
            return None
        html = payload.get("html")
        status = payload.get("status")
        if isinstance(status, bool) or not isinstance(status, int):
            status = 200
        return CachedPage(
            url=url,
            status=status,
            truncated=bool(payload.get("truncated")),
            html=html if isinstance(html, str) else "",
            text=text,
        )

    async def save(self, url: str, *, status: int, truncated: bool, html: str, text: str) -> None:
        if not text.strip():
            return
        await self._save(
            page_cache_key(url),
            {
                "url": url,
                "status": status,
                "truncated": truncated,
                "html": html,
                "text": text,
            },
        )
