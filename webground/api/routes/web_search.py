from __future__ import annotations

import asyncio
import json as _json
import time

from fastapi import APIRouter, HTTPException, Query
from pydantic import ValidationError
from sse_starlette.sse import EventSourceResponse

from webground.models.pipeline import PageFetchProgress
from webground.models.schemas import WebSearchRequest, WebSearchResponse
from webground.pipeline.orchestrator import PipelineOptions, run_web_search_pipeline
from webground.services import logger as log_service
from webground.services import streaming

router = APIRouter(prefix="/api/web-search", tags=["web-search"])


def _options(request: WebSearchRequest, **extra) -> PipelineOptions:
    try:
        return PipelineOptions.from_settings(**request.option_overrides(), **extra)
    except ValueError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc


@router.post("", response_model=WebSearchResponse)
async def web_search(request: WebSearchRequest):
    """Run the pipeline to completion and return the evidence bundle."""
    result = await run_web_search_pipeline(request.prompt, _options(request))
    return result.to_dict()


@router.get("/stream")
async def stream_web_search(
    prompt: str = Query(..., min_length=1),
    top_k: int | None = Query(default=None, ge=1),
    allow_skip: bool = True,
):
    """SSE endpoint: page fetch progress events, then the final result."""
    try:
        request = WebSearchRequest(prompt=prompt, top_k=top_k, allow_skip=allow_skip)
    except ValidationError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc

    queue: asyncio.Queue = asyncio.Queue()

    def on_progress(progress: PageFetchProgress) -> None:
        queue.put_nowait(streaming.page_fetch_progress(progress.searched))

    options = _options(request, on_progress=on_progress)

    async def event_generator():
        log_service.log_event(
            event_type="web_search_stream_started",
            message="Web search stream started",
            prompt=prompt[:100],
        )
        started = time.monotonic()
        yield _sse(streaming.web_search_started(prompt))

        task = asyncio.create_task(run_web_search_pipeline(prompt, options))
        try:
            while not task.done() or not queue.empty():
                getter = asyncio.ensure_future(queue.get())
                done, _ = await asyncio.wait({getter, task}, return_when=asyncio.FIRST_COMPLETED)
                if getter in done:
                    yield _sse(getter.result())
                else:
                    getter.cancel()
            result = task.result()
            runtime_ms = int((time.monotonic() - started) * 1000)
            yield _sse(streaming.web_search_complete(result, runtime_ms=runtime_ms))
        except asyncio.CancelledError:
            task.cancel()
            raise
        except Exception as exc:
            log_service.log_event(
                event_type="web_search_stream_error",
                message="Web search stream failed",
                error=str(exc),
            )
            yield _sse(streaming.error(str(exc)))

    return EventSourceResponse(event_generator())


def _sse(event) -> dict[str, str]:
    return {"event": event.event.value, "data": _json.dumps(event.data)}
