from __future__ import annotations

from dataclasses import dataclass, field

import httpx

from entityscope.config import settings
from entityscope.core.models.interfaces import EvidenceSource
from entityscope.errors import ConfigurationError, TransientProviderError
from entityscope.services.logger import RunLog
from entityscope.tools import google_search, jina_search, tavily_search

SUPPORTED_PROVIDERS = ("google", "jina", "tavily")


@dataclass
class SearchResponse:
    provider: str
    results: list[EvidenceSource] = field(default_factory=list)
    error: str | None = None


async def search(
    query: str,
    *,
    max_results: int = 5,
    run_log: RunLog | None = None,
) -> SearchResponse:
    """Search with the configured provider.

    Provider and transport failures come back as an empty response carrying
    ``error``; only an unknown provider or missing credentials raise.
    """
    run_log = run_log or RunLog()
    provider = settings.search_provider.lower().strip()
    if provider not in SUPPORTED_PROVIDERS:
        raise ConfigurationError(f"Unsupported SEARCH_PROVIDER: {settings.search_provider}")

    try:
        if provider == "google":
            results = await google_search.search(query, max_results=max_results)
        elif provider == "jina":
            results = await jina_search.search(query, max_results=max_results)
        else:
            results = await tavily_search.search(query, max_results=max_results)
    except ConfigurationError:
        raise
    except (httpx.HTTPError, TransientProviderError, ValueError, KeyError) as exc:
        run_log.warning(f"Search via {provider} failed for {query!r}: {exc}")
        return SearchResponse(provider=provider, error=str(exc))

    return SearchResponse(provider=provider, results=results)
