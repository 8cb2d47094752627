from __future__ import annotations

from typing import Any

from webground.models.events import EventType, SSEEvent
from webground.models.pipeline import PipelineResult


def web_search_started(prompt: str) -> SSEEvent:
    return SSEEvent(event=EventType.WEB_SEARCH_STARTED, data={"prompt": prompt})


def page_fetch_progress(searched: int) -> SSEEvent:
    return SSEEvent(event=EventType.PAGE_FETCH_PROGRESS, data={"searched": searched})


def web_search_complete(result: PipelineResult, runtime_ms: int | None = None) -> SSEEvent:
    data: dict[str, Any] = result.to_dict()
    if runtime_ms is not None:
        data["runtime_ms"] = runtime_ms
    return SSEEvent(event=EventType.WEB_SEARCH_COMPLETE, data=data)


def error(message: str) -> SSEEvent:
    return SSEEvent(event=EventType.ERROR, data={"message": message})
