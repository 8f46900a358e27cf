"""OpenRouter-only LLM client factory and JSON completion helper."""
from __future__ import annotations

import json
import time
from typing import Any

from entityscope.config import settings
from entityscope.services.logger import RunLog


def get_client() -> Any:
    """Get OpenRouter client via OpenAI-compatible SDK."""
    from openai import AsyncOpenAI

    base_url = settings.openrouter_base_url.strip() or "https://openrouter.ai/api/v1"
    return AsyncOpenAI(
        api_key=settings.openrouter_api_key,
        base_url=base_url,
    )


def get_model() -> str:
    """Get the active OpenRouter model id."""
    if settings.openrouter_model:
        return settings.openrouter_model
    return settings.default_model


_client: Any | None = None


def client() -> Any:
    """Get or create the LLM client."""
    global _client
    if _client is None:
        _client = get_client()
    return _client


def extract_json_object(raw_text: str) -> dict[str, Any]:
    """First JSON object in a model reply; code fences are tolerated."""
    text = raw_text.strip()
    if text.startswith("```"):
        parts = text.split("```")
        if len(parts) >= 2:
            text = parts[1]
        if text.startswith("json"):
            text = text[4:]
        text = text.strip()
    start = text.find("{")
    end = text.rfind("}")
    if start < 0 or end <= start:
        raise json.JSONDecodeError("object not found", text, 0)
    parsed = json.loads(text[start : end + 1])
    if not isinstance(parsed, dict):
        raise json.JSONDecodeError("not an object", text, 0)
    return parsed


async def complete_json(
    *,
    system: str,
    prompt: str,
    caller: str,
    model: str | None = None,
    max_tokens: int = 1024,
    run_log: RunLog | None = None,
) -> dict[str, Any]:
    """Single chat completion whose reply is parsed as a JSON object."""
    run_log = run_log or RunLog()
    model_name = model or get_model()
    started = time.monotonic()
    response = await client().chat.completions.create(
        model=model_name,
        messages=[
            {"role": "system", "content": system},
            {"role": "user", "content": prompt},
        ],
        max_tokens=max_tokens,
        temperature=0,
        response_format={"type": "json_object"},
    )
    usage = getattr(response, "usage", None)
    call_data = {
        "caller": caller,
        "model": model_name,
        "input_tokens": getattr(usage, "prompt_tokens", 0) or 0,
        "output_tokens": getattr(usage, "completion_tokens", 0) or 0,
        "duration_ms": int((time.monotonic() - started) * 1000),
    }
    run_log.progress(f"LLM_CALL: {call_data}")
    content = response.choices[0].message.content or ""
    return extract_json_object(content)
