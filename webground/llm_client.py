"""OpenRouter chat client (OpenAI-compatible SDK) for small JSON-returning calls."""
from __future__ import annotations

import json
import re
import time
from dataclasses import dataclass
from typing import Any

from webground.config import settings
from webground.services.http import sanitize_ssl_keylogfile
from webground.services.logger import log_llm_call

_JSON_OBJECT_RE = re.compile(r"\{[\s\S]*\}")


@dataclass
class Usage:
    input_tokens: int = 0
    output_tokens: int = 0


@dataclass
class JsonCompletion:
    data: dict[str, Any] | None
    text: str
    usage: Usage


def _temperature_for_model(model: str, temperature: float) -> float:
    # Some OpenAI GPT-5-compatible gateways reject temperatures other than 1.
    if "gpt-5" in (model or "").lower():
        return 1
    return temperature


def parse_json_object(text: str) -> dict[str, Any] | None:
    """Parse a JSON object from model output, tolerating code fences or prose around it."""
    if not text:
        return None
    try:
        parsed = json.loads(text)
    except json.JSONDecodeError:
        match = _JSON_OBJECT_RE.search(text)
        if not match:
            return None
        try:
            parsed = json.loads(match.group(0))
        except json.JSONDecodeError:
            return None
    return parsed if isinstance(parsed, dict) else None


def get_client() -> Any:
    """Get OpenRouter client via OpenAI-compatible SDK."""
    from openai import AsyncOpenAI

    sanitize_ssl_keylogfile()
    base_url = settings.openrouter_base_url.strip() or "https://openrouter.ai/api/v1"
    return AsyncOpenAI(api_key=settings.openrouter_api_key, base_url=base_url)


_client: Any | None = None


def client() -> Any:
    """Get or create the LLM client."""
    global _client
    if _client is None:
        _client = get_client()
    return _client


def reset_client() -> None:
    global _client
    _client = None


async def complete_json(
    *,
    model: str,
    system: str,
    user: str,
    caller: str,
    max_tokens: int = 200,
    temperature: float = 0.2,
) -> JsonCompletion:
    """Single chat completion in JSON mode; raises on transport errors."""
    started = time.monotonic()
    try:
        response = await client().chat.completions.create(
            model=model,
            messages=[
                {"role": "system", "content": system},
                {"role": "user", "content": user},
            ],
            max_tokens=max_tokens,
            temperature=_temperature_for_model(model, temperature),
            response_format={"type": "json_object"},
        )
    except Exception as exc:
        log_llm_call(
            model=model,
            caller=caller,
            duration_ms=int((time.monotonic() - started) * 1000),
            status="error",
            error=str(exc),
        )
        raise

    text = ""
    if response.choices:
        text = getattr(response.choices[0].message, "content", None) or ""
    usage = getattr(response, "usage", None)
    mapped_usage = Usage(
        input_tokens=getattr(usage, "prompt_tokens", 0) or 0,
        output_tokens=getattr(usage, "completion_tokens", 0) or 0,
    )
    log_llm_call(
        model=model,
        caller=caller,
        input_tokens=mapped_usage.input_tokens,
        output_tokens=mapped_usage.output_tokens,
        duration_ms=int((time.monotonic() - started) * 1000),
    )
    return JsonCompletion(data=parse_json_object(text), text=text, usage=mapped_usage)
