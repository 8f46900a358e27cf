from __future__ import annotations

import asyncio
import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from typing import Any

from entityscope.agents.query_planner import LLMQueryPlanner, build_entity_queries
from entityscope.config import settings
from entityscope.core.aggregate.service import aggregate
from entityscope.core.disambiguation.controller import (
    DisambiguationController,
    DisambiguationSession,
    Registry,
)
from entityscope.core.extract.service import ExtractionAdapter, infer_from_url
from entityscope.core.fetch.service import ContentFetcher
from entityscope.core.models.interfaces import (
    Candidate,
    EvidenceSource,
    FetchFailure,
    VerificationResult,
)
from entityscope.core.verify.service import IdentityVerifier
from entityscope.errors import ConfigurationError
from entityscope.models.schemas import AggregatedRecord, Query
from entityscope.services.logger import RunLog, log_event, log_run_step
from entityscope.services.search_executor import run_searches
from entityscope.services.url_facts import UrlFactTable
from entityscope.tools.npi_registry import NPIRegistry, npi_result_to_record

QUERY_PLANNERS = ("template", "llm")


@dataclass
class ResolutionRun:
    """Everything one resolution run collected, kept for explainability."""

    query: Query
    run_id: str
    queries: list[str] = field(default_factory=list)
    sources: list[EvidenceSource] = field(default_factory=list)
    failures: list[FetchFailure] = field(default_factory=list)
    candidates: list[Candidate] = field(default_factory=list)
    verifications: list[VerificationResult] = field(default_factory=list)
    record: AggregatedRecord | None = None

    def summary(self) -> dict[str, Any]:
        return {
            "run_id": self.run_id,
            "queries": len(self.queries),
            "sources": len(self.sources),
            "fetch_failures": len(self.failures),
            "candidates": len(self.candidates),
            "accepted": sum(1 for result in self.verifications if result.accepted),
            "confidence": self.record.confidence if self.record else 0.0,
        }


class ResolutionOrchestrator:
    """Entry points for entity resolution and registry narrowing.

    Flow for ``run``:
      1. Plan search queries (templates, or the LLM with template fallback)
      2. Fan out searches; dedupe hits by URL
      3. Fetch each hit and extract a candidate, or infer one from the URL
      4. Verify every candidate against the query
      5. Aggregate the accepted candidates into one record

    Search, fetch and extraction calls share one semaphore, so the number of
    outbound requests in flight never exceeds ``max_in_flight``.
    """

    def __init__(
        self,
        *,
        fetcher: ContentFetcher | None = None,
        extraction: ExtractionAdapter | None = None,
        verifier: IdentityVerifier | None = None,
        url_facts: UrlFactTable | None = None,
        registry: Registry | None = None,
        record_builder: Callable[[Mapping[str, Any]], AggregatedRecord] = npi_result_to_record,
        query_planner: str | None = None,
        max_in_flight: int | None = None,
        max_results_per_query: int | None = None,
        verbose: bool = False,
    ):
        self.query_planner = (query_planner or settings.query_planner).lower().strip()
        if self.query_planner not in QUERY_PLANNERS:
            raise ConfigurationError(f"Unsupported QUERY_PLANNER: {self.query_planner}")
        self.fetcher = fetcher or ContentFetcher()
        self.extraction = extraction or ExtractionAdapter()
        self.verifier = verifier or IdentityVerifier()
        self.url_facts = url_facts if url_facts is not None else UrlFactTable.load()
        self.registry = registry or NPIRegistry()
        self.record_builder = record_builder
        self.max_in_flight = max(
            int(max_in_flight if max_in_flight is not None else settings.max_in_flight_requests),
            1,
        )
        self.max_results_per_query = max(
            int(max_results_per_query if max_results_per_query is not None else settings.search_max_results_per_query),
            1,
        )
        self.verbose = verbose
        self.limiter = asyncio.Semaphore(self.max_in_flight)
        self._controller = DisambiguationController(self.registry, run_log=RunLog(verbose=verbose))

    # --- Resolution ---

    async def resolve_entity(self, query: Query) -> AggregatedRecord:
        run = await self.run(query)
        return run.record

    async def run(self, query: Query, *, run_log: RunLog | None = None) -> ResolutionRun:
        if not query.name.strip():
            raise ConfigurationError("Query name must not be empty")
        run_log = run_log or RunLog(verbose=self.verbose)
        started = time.monotonic()
        run = ResolutionRun(query=query, run_id=run_log.run_id)
        log_run_step(run_log, "resolve", "started", {"query": query.model_dump(exclude_none=True)})

        run.queries = await self._plan_queries(query, run_log)
        run_log.progress(f"Planned {len(run.queries)} queries: {run.queries}")

        run.sources = await run_searches(
            run.queries,
            limiter=self.limiter,
            max_results_per_query=self.max_results_per_query,
            run_log=run_log,
        )

        outcomes = await asyncio.gather(
            *(self._candidate_for(source, query, run, run_log) for source in run.sources),
            return_exceptions=True,
        )
        for source, outcome in zip(run.sources, outcomes):
            if isinstance(outcome, BaseException):
                run_log.warning(f"Dropping {source.url}: {outcome}")
                continue
            if outcome is not None:
                run.candidates.append(outcome)

        for candidate in run.candidates:
            result = self.verifier.verify(query, candidate)
            run.verifications.append(result)
            if not result.accepted:
                reason = result.factors[-1] if result.factors else "rejected"
                run_log.progress(f"Rejected {candidate.url}: {reason}")

        run.record = aggregate(query, run.candidates, run.verifications)
        log_run_step(
            run_log,
            "resolve",
            "completed",
            {**run.summary(), "duration_ms": int((time.monotonic() - started) * 1000)},
        )
        return run

    async def _plan_queries(self, query: Query, run_log: RunLog) -> list[str]:
        if self.query_planner == "llm":
            async with self.limiter:
                return await LLMQueryPlanner().plan(query, run_log=run_log)
        return build_entity_queries(query)

    async def _candidate_for(
        self,
        source: EvidenceSource,
        query: Query,
        run: ResolutionRun,
        run_log: RunLog,
    ) -> Candidate | None:
        """One candidate per source: extracted when possible, else inferred from the URL."""
        async with self.limiter:
            outcome = await self.fetcher.fetch(source.url, run_log=run_log)

        if isinstance(outcome, FetchFailure):
            run.failures.append(outcome)
            return infer_from_url(source, self.url_facts)

        has_fact = self.url_facts.lookup(source.url) is not None
        if outcome.thin and has_fact:
            inferred = infer_from_url(source, self.url_facts, text=outcome.text)
            if inferred is not None:
                return inferred

        async with self.limiter:
            extracted = await self.extraction.extract(outcome.text, query, url=source.url, run_log=run_log)
        if extracted is not None and not extracted.is_sparse:
            return extracted
        if has_fact:
            return infer_from_url(source, self.url_facts, text=outcome.text)
        if extracted is not None:
            run_log.progress(f"Dropping {source.url}: extraction found no field values")
        return None

    # --- Progressive disambiguation ---

    async def start_disambiguation(self, base_filters: Mapping[str, Any]) -> DisambiguationSession:
        return await self._controller.start(base_filters)

    async def apply_filter(
        self,
        session: DisambiguationSession,
        dimension: str,
        value: str,
    ) -> DisambiguationSession:
        return await self._controller.apply_filter(session, dimension, value)

    def skip_dimension(
        self,
        session: DisambiguationSession,
        dimension: str | None = None,
    ) -> DisambiguationSession:
        return self._controller.skip_dimension(session, dimension)

    def commit(self, session: DisambiguationSession) -> AggregatedRecord | None:
        """Record for a resolved session; ``None`` while it is not resolved."""
        result = self._controller.resolved_result(session)
        if result is None:
            return None
        record = self.record_builder(result)
        log_event(
            "disambiguation_committed",
            f"Resolved registry match after {session.steps} refinements",
            identifiers=record.identifiers,
            count_history=session.count_history,
        )
        return record
