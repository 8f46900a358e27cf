from __future__ import annotations

import asyncio

from entityscope.core.models.interfaces import EvidenceSource
from entityscope.errors import ConfigurationError
from entityscope.services.logger import RunLog, log_run_step
from entityscope.tools import search_provider, web_utils


def dedupe_sources(sources: list[EvidenceSource]) -> list[EvidenceSource]:
    """Drop invalid URLs and repeated URLs, keeping the first occurrence."""
    seen: set[str] = set()
    deduped: list[EvidenceSource] = []
    for source in sources:
        if not web_utils.is_valid_url(source.url):
            continue
        if source.url in seen:
            continue
        seen.add(source.url)
        deduped.append(source)
    return deduped


async def run_searches(
    queries: list[str],
    *,
    fanout_limit: int = 3,
    limiter: asyncio.Semaphore | None = None,
    max_results_per_query: int = 5,
    run_log: RunLog | None = None,
) -> list[EvidenceSource]:
    """Run every query under one concurrency limiter and merge the hits.

    Pass ``limiter`` to share the in-flight budget with other stages; otherwise
    a private one of size ``fanout_limit`` is used. A failing query contributes
    nothing instead of failing the batch.
    """
    run_log = run_log or RunLog()
    semaphore = limiter or asyncio.Semaphore(max(fanout_limit, 1))

    async def run_one(query: str) -> list[EvidenceSource]:
        async with semaphore:
            response = await search_provider.search(
                query,
                max_results=max_results_per_query,
                run_log=run_log,
            )
        run_log.progress(
            f"Search {query!r} via {response.provider}: {len(response.results)} results"
        )
        return response.results

    raw_results = await asyncio.gather(
        *(run_one(query) for query in queries),
        return_exceptions=True,
    )

    merged: list[EvidenceSource] = []
    dropped = 0
    for query, item in zip(queries, raw_results):
        if isinstance(item, ConfigurationError):
            raise item
        if isinstance(item, BaseException):
            dropped += 1
            run_log.warning(f"Dropping search {query!r}: {item}")
            continue
        merged.extend(item)

    sources = dedupe_sources(merged)
    log_run_step(
        run_log,
        "search",
        "completed",
        {"queries": len(queries), "dropped": dropped, "sources": len(sources)},
    )
    return sources
