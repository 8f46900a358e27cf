from __future__ import annotations

from tavily import AsyncTavilyClient
from tavily.errors import InvalidAPIKeyError, UsageLimitExceededError

from entityscope.config import settings
from entityscope.core.models.interfaces import EvidenceSource
from entityscope.errors import ConfigurationError, TransientProviderError


async def search(
    query: str,
    *,
    max_results: int = 5,
    search_depth: str = "basic",
) -> list[EvidenceSource]:
    """Execute a Tavily web search and return evidence sources."""
    if not settings.tavily_api_key:
        raise ConfigurationError("TAVILY_API_KEY not configured")

    client = AsyncTavilyClient(api_key=settings.tavily_api_key)
    try:
        response = await client.search(
            query=query,
            search_depth=search_depth,
            max_results=max_results,
            topic="general",
            include_raw_content=False,
        )
    except (InvalidAPIKeyError, UsageLimitExceededError) as exc:
        raise TransientProviderError("tavily", str(exc) or type(exc).__name__) from exc

    return [
        EvidenceSource(
            url=r.get("url", ""),
            title=r.get("title", ""),
            snippet=r.get("content", ""),
        )
        for r in response.get("results", [])
        if r.get("url")
    ]
