from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from webground import llm_client
from webground.agents.evidence_gate import LLMEvidenceJudge, parse_gate_decision
from webground.agents.query_planner import LLMQueryPlanner, PlannerRequest, dedupe_queries, finalize_queries
from webground.llm_client import JsonCompletion, Usage, parse_json_object
from webground.models.pipeline import Chunk


def _completion(data, text: str = "") -> JsonCompletion:
    return JsonCompletion(data=data, text=text, usage=Usage())


def test_parse_json_object_tolerates_fences():
    assert parse_json_object('```json\n{"a": 1}\n```') == {"a": 1}
    assert parse_json_object("no json here") is None
    assert parse_json_object("[1, 2]") is None


def test_dedupe_and_finalize_queries():
    assert dedupe_queries([" A ", "a", "", "b"]) == ["A", "b"]
    assert finalize_queries(["one", "two", "three"], "prompt", 2) == ["one", "two"]
    assert finalize_queries(["one"], " prompt ", 3) == ["one", "prompt", "prompt"]


@pytest.mark.asyncio
async def test_planner_returns_queries_and_depth():
    data = {"useWebSearch": True, "queries": ["q1", "Q1", "q2", 5], "targetDepth": 30}
    with patch("webground.llm_client.complete_json", AsyncMock(return_value=_completion(data))) as complete:
        plan = await LLMQueryPlanner(model="test-model").plan(PlannerRequest(prompt="prompt", count=2))

    assert plan.use_web_search
    assert plan.queries == ["q1", "q2"]
    assert plan.target_depth == 30
    assert "produce 2 concise queries" in complete.call_args.kwargs["system"]
    assert complete.call_args.kwargs["model"] == "test-model"


@pytest.mark.asyncio
async def test_planner_skip_decision():
    data = {"useWebSearch": False, "queries": [], "reason": "Greeting only"}
    with patch("webground.llm_client.complete_json", AsyncMock(return_value=_completion(data))):
        plan = await LLMQueryPlanner().plan(PlannerRequest(prompt="hello"))

    assert not plan.use_web_search
    assert plan.reason == "Greeting only"
    assert plan.queries == []


@pytest.mark.asyncio
async def test_planner_unparseable_output_searches_with_prompt():
    with patch("webground.llm_client.complete_json", AsyncMock(return_value=_completion(None, "oops"))):
        plan = await LLMQueryPlanner().plan(PlannerRequest(prompt="widget price", count=2))

    assert plan.use_web_search
    assert plan.queries == ["widget price", "widget price"]
    assert plan.target_depth is None


@pytest.mark.asyncio
async def test_planner_includes_context_in_user_message():
    request = PlannerRequest(
        prompt="and in Paris?",
        recent_messages=[{"role": "user", "content": "hotel prices in London"}],
        current_date="2025-01-02",
        location_hint="France",
    )
    with patch(
        "webground.llm_client.complete_json", AsyncMock(return_value=_completion({"useWebSearch": True}))
    ) as complete:
        await LLMQueryPlanner().plan(request)

    user = complete.call_args.kwargs["user"]
    assert "Current date: 2025-01-02" in user
    assert "User location: France" in user
    assert "user: hotel prices in London" in user


def test_parse_gate_decision():
    assert parse_gate_decision({"enoughEvidence": True}).enough_evidence
    decision = parse_gate_decision({"enoughEvidence": False, "suggestedQueries": ["a", " ", "b", "c"]})
    assert decision.suggested_queries == ["a", "b"]
    assert decision.error is None
    broken = parse_gate_decision({"enoughEvidence": "yes"})
    assert not broken.enough_evidence
    assert broken.error


@pytest.mark.asyncio
async def test_judge_sends_chunk_previews():
    chunk = Chunk(text="y" * 2000, url="https://a.com", url_key="https://a.com", title="A page")
    with patch(
        "webground.llm_client.complete_json",
        AsyncMock(return_value=_completion({"enoughEvidence": False, "suggestedQueries": ["next"]})),
    ) as complete:
        decision = await LLMEvidenceJudge().judge("prompt", ["old query"], [chunk])

    user = complete.call_args.kwargs["user"]
    assert "Previous queries:\nold query" in user
    assert "Title: A page" in user
    assert "y" * 1200 + "..." in user
    assert "y" * 1201 not in user
    assert decision.suggested_queries == ["next"]


@pytest.mark.asyncio
async def test_complete_json_parses_response_and_logs_usage():
    response = MagicMock()
    response.choices = [MagicMock(message=MagicMock(content='{"ok": true}'))]
    response.usage = MagicMock(prompt_tokens=12, completion_tokens=3)
    fake_client = MagicMock()
    fake_client.chat.completions.create = AsyncMock(return_value=response)

    with patch("webground.llm_client.client", return_value=fake_client), patch(
        "webground.llm_client.log_llm_call"
    ) as log_call:
        completion = await llm_client.complete_json(model="m", system="s", user="u", caller="test")

    assert completion.data == {"ok": True}
    assert completion.usage.input_tokens == 12
    assert log_call.call_args.kwargs["output_tokens"] == 3
    assert fake_client.chat.completions.create.call_args.kwargs["response_format"] == {"type": "json_object"}


@pytest.mark.asyncio
async def test_complete_json_reraises_after_logging():
    fake_client = MagicMock()
    fake_client.chat.completions.create = AsyncMock(side_effect=RuntimeError("rate limited"))

    with patch("webground.llm_client.client", return_value=fake_client), patch(
        "webground.llm_client.log_llm_call"
    ) as log_call:
        with pytest.raises(RuntimeError):
            await llm_client.complete_json(model="m", system="s", user="u", caller="test")

    assert log_call.call_args.kwargs["status"] == "error"
