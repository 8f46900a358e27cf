from __future__ import annotations

from typing import Any

from entityscope import llm_client
from entityscope.config import settings
from entityscope.models.schemas import Query
from entityscope.services.logger import RunLog

MIN_QUERY_CHARS = 10

QUERY_PLANNER_SYSTEM_PROMPT = """You write web search queries that find authoritative pages about one named person or organization:
directories, institutional profiles, academic pages and official registries.
Keep each query short and specific. Reply with a single JSON object."""

QUERY_PLANNER_PROMPT = """Name: {name}
Role or specialty: {role}
Institution hint: {institution}
Location hint: {location}

Write {count} distinct search queries. Cover these angles:
1. name + role + location, for general profile pages
2. name + credential + institution, for affiliation pages
3. name + role + "hospital clinic", for practice locations
4. name + "license" + region, for licensing records
5. name + "faculty" + university, for academic positions

Return JSON: {{"queries": ["...", "..."]}}"""


def _dedupe_queries(candidates: list[str], limit: int) -> list[str]:
    deduped: list[str] = []
    seen: set[str] = set()
    for candidate in candidates:
        normalized = " ".join(str(candidate).split()).strip()
        if len(normalized) < MIN_QUERY_CHARS:
            continue
        key = normalized.lower()
        if key in seen:
            continue
        seen.add(key)
        deduped.append(normalized)
    return deduped[:limit]


def build_entity_queries(query: Query, max_queries: int | None = None) -> list[str]:
    """Deterministic search strings for ``query``."""
    limit = max(int(max_queries if max_queries is not None else settings.search_max_queries), 1)
    name = query.name
    role = query.role or ""
    location = query.location or ""
    institution = query.institution or ""
    templates = [
        f"{name} {role} {location}",
        f"{name} MD {institution}",
        f"{name} {role} hospital clinic",
        f"{name} license {location}",
        f"{name} faculty university {institution}",
        f'"{name}" {role} profile',
    ]
    if query.handle:
        templates.append(f"{name} {query.handle.lstrip('@')}")
    return _dedupe_queries(templates, limit)


class LLMQueryPlanner:
    """Asks the LLM for search queries; falls back to the templates."""

    def __init__(self, *, model: str | None = None, max_queries: int | None = None):
        self.model = model
        self.max_queries = max(int(max_queries if max_queries is not None else settings.search_max_queries), 1)

    async def plan(self, query: Query, *, run_log: RunLog | None = None) -> list[str]:
        run_log = run_log or RunLog()
        fallback = build_entity_queries(query, self.max_queries)
        prompt = QUERY_PLANNER_PROMPT.format(
            name=query.name,
            role=query.role or "not specified",
            institution=query.institution or "not specified",
            location=query.location or "not specified",
            count=self.max_queries,
        )
        try:
            parsed = await llm_client.complete_json(
                system=QUERY_PLANNER_SYSTEM_PROMPT,
                prompt=prompt,
                caller="query_planner",
                model=self.model,
                max_tokens=512,
                run_log=run_log,
            )
        except Exception as exc:
            run_log.warning(f"Query planning failed, using templates: {exc}")
            return fallback

        raw: Any = parsed.get("queries")
        if not isinstance(raw, list):
            run_log.warning("Query planner returned no query list, using templates")
            return fallback
        planned = _dedupe_queries([str(item) for item in raw if isinstance(item, str)], self.max_queries)
        if not planned:
            return fallback
        return planned
