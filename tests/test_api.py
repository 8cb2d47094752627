"""Tests for API routes."""
from unittest.mock import AsyncMock, patch

import pytest

from webground.models.pipeline import Chunk, GateDecision, PipelineResult, sources_for


@pytest.fixture
def client():
    from fastapi.testclient import TestClient

    from webground.main import app

    return TestClient(app)


def _result() -> PipelineResult:
    chunks = [Chunk(text="Widget X costs $10", url="https://a.com", url_key="https://a.com", title="A", domain="a.com", score=0.9)]
    return PipelineResult(
        queries=["widget X price"],
        chunks=chunks,
        sources=sources_for(chunks),
        gate=GateDecision(enough_evidence=True),
    )


def test_health(client):
    response = client.get("/api/health")
    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "ok"
    assert data["service"] == "webground"


def test_web_search_returns_result(client):
    with patch(
        "webground.api.routes.web_search.run_web_search_pipeline", AsyncMock(return_value=_result())
    ) as run:
        response = client.post("/api/web-search", json={"prompt": "widget X price", "top_k": 5})

    assert response.status_code == 200
    data = response.json()
    assert data["gate"]["enough_evidence"] is True
    assert data["chunks"][0]["url"] == "https://a.com"
    assert data["sources"] == [{"url": "https://a.com", "title": "A"}]
    options = run.call_args.args[1]
    assert options.top_k == 5


def test_web_search_rejects_missing_prompt(client):
    response = client.post("/api/web-search", json={})
    assert response.status_code == 422


def test_web_search_stream_emits_progress_then_result(client):
    async def fake_run(prompt, options):
        options.on_progress(type("P", (), {"searched": 1})())
        options.on_progress(type("P", (), {"searched": 2})())
        return _result()

    with patch("webground.api.routes.web_search.run_web_search_pipeline", side_effect=fake_run):
        response = client.get("/api/web-search/stream", params={"prompt": "widget X price"})

    assert response.status_code == 200
    body = response.text
    assert body.index("event: web_search_started") < body.index("event: page_fetch_progress")
    assert body.index("event: page_fetch_progress") < body.index("event: web_search_complete")
    assert '"searched": 2' in body
