from __future__ import annotations

import re
from urllib.parse import quote

import httpx

from entityscope.config import settings
from entityscope.core.models.interfaces import EvidenceSource
from entityscope.errors import ConfigurationError

RESULT_FIELD_PATTERN = re.compile(
    r"\[(\d+)\]\s+(Title|URL Source|Description):\s*(.*?)(?=\[\d+\]|$)",
    re.DOTALL,
)


def parse_search_response(text: str, max_results: int = 10) -> list[EvidenceSource]:
    """Parse Jina's plain-text search response.

    Format::

        [1] Title: ...
        [1] URL Source: ...
        [1] Description: ...
    """
    blocks: dict[int, dict[str, str]] = {}
    for index_str, field_name, value in RESULT_FIELD_PATTERN.findall(text):
        blocks.setdefault(int(index_str), {})[field_name] = value.strip()

    results: list[EvidenceSource] = []
    for index in sorted(blocks):
        block = blocks[index]
        url = block.get("URL Source", "")
        if not url:
            continue
        results.append(
            EvidenceSource(
                url=url,
                title=block.get("Title", ""),
                snippet=block.get("Description", ""),
            )
        )
        if len(results) >= max_results:
            break
    return results


async def search(
    query: str,
    *,
    max_results: int = 5,
) -> list[EvidenceSource]:
    """Execute a web search using the Jina AI search API (``GET https://s.jina.ai/?q=...``)."""
    api_key = settings.jina_api_key
    if not api_key:
        raise ConfigurationError("JINA_API_KEY not configured")

    url = f"https://s.jina.ai/?q={quote(query, safe='')}"

    async with httpx.AsyncClient() as client:
        response = await client.get(
            url,
            headers={
                "Authorization": f"Bearer {api_key}",
                "X-Respond-With": "no-content",
            },
            timeout=30.0,
        )
        response.raise_for_status()

    return parse_search_response(response.text, max_results)
