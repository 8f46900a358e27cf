from __future__ import annotations

from typing import Any

import httpx

from entityscope.config import settings
from entityscope.core.models.interfaces import EvidenceSource
from entityscope.errors import ConfigurationError

GOOGLE_SEARCH_URL = "https://www.googleapis.com/customsearch/v1"
MAX_RESULTS_PER_CALL = 10  # Custom Search API ceiling for ``num``


async def search(
    query: str,
    *,
    max_results: int = 5,
    http_client: httpx.AsyncClient | None = None,
) -> list[EvidenceSource]:
    """Run a Google Custom Search query and map ``items`` to evidence sources."""
    if not settings.google_api_key or not settings.google_search_engine_id:
        raise ConfigurationError("GOOGLE_API_KEY and GOOGLE_SEARCH_ENGINE_ID must be configured")

    params: dict[str, Any] = {
        "key": settings.google_api_key,
        "cx": settings.google_search_engine_id,
        "q": query,
        "num": max(1, min(max_results, MAX_RESULTS_PER_CALL)),
    }

    async def _do_request(client: httpx.AsyncClient) -> dict:
        response = await client.get(GOOGLE_SEARCH_URL, params=params)
        response.raise_for_status()
        payload = response.json()
        return payload if isinstance(payload, dict) else {}

    if http_client is None:
        async with httpx.AsyncClient(timeout=30.0) as client:
            payload = await _do_request(client)
    else:
        payload = await _do_request(http_client)

    return [
        EvidenceSource(
            url=str(item.get("link") or ""),
            title=str(item.get("title") or ""),
            snippet=str(item.get("snippet") or ""),
        )
        for item in payload.get("items", []) or []
        if isinstance(item, dict) and item.get("link")
    ]
