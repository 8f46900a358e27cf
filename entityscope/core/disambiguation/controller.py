"""Progressive narrowing of a bulk registry result set.

A session starts from two base filters (given name and surname), then asks
the caller for one refinement dimension at a time while the result count
stays above that dimension's threshold. It ends ``resolved`` (one result),
``not_found`` (none) or ``ambiguous`` (several, with every dimension used up).
"""
from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any, Protocol

from entityscope.config import settings
from entityscope.core.models.interfaces import RegistryResponse
from entityscope.errors import ConfigurationError
from entityscope.services.logger import RunLog, log_run_step


class SessionStatus(StrEnum):
    UNFILTERED = "unfiltered"
    NARROWING = "narrowing"
    RESOLVED = "resolved"
    AMBIGUOUS = "ambiguous"
    NOT_FOUND = "not_found"


TERMINAL_STATUSES = frozenset({SessionStatus.RESOLVED, SessionStatus.AMBIGUOUS, SessionStatus.NOT_FOUND})


@dataclass(frozen=True, slots=True)
class RefinementTier:
    dimension: str
    threshold: int  # requested while the result count is above this


DEFAULT_TIERS: tuple[RefinementTier, ...] = (
    RefinementTier("region", 10),
    RefinementTier("locality", 3),
    RefinementTier("category", 1),
)


class Registry(Protocol):
    async def query(self, filters: Mapping[str, str]) -> RegistryResponse: ...


@dataclass
class DisambiguationSession:
    base_filters: dict[str, str]
    applied: list[tuple[str, str]] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    results: list[dict[str, Any]] = field(default_factory=list)
    result_count: int = 0
    count_history: list[int] = field(default_factory=list)
    status: SessionStatus = SessionStatus.UNFILTERED
    pending_dimension: str | None = None  # what the caller is asked for next
    choices: list[dict[str, Any]] = field(default_factory=list)  # capped list once ambiguous

    @property
    def steps(self) -> int:
        return len(self.applied)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def attempted(self) -> set[str]:
        return {dimension for dimension, _ in self.applied} | set(self.skipped)

    def filters(self) -> dict[str, str]:
        return {**self.base_filters, **dict(self.applied)}


def _clean_filters(filters: Mapping[str, Any]) -> dict[str, str]:
    cleaned = {str(key).strip(): " ".join(str(value or "").split()) for key, value in filters.items()}
    return {key: value for key, value in cleaned.items() if key and value}


class DisambiguationController:
    def __init__(
        self,
        registry: Registry,
        *,
        tiers: tuple[RefinementTier, ...] = DEFAULT_TIERS,
        max_choices: int | None = None,
        run_log: RunLog | None = None,
    ):
        self.registry = registry
        self.tiers = tiers
        self.max_choices = max(
            int(max_choices if max_choices is not None else settings.disambiguation_max_choices),
            1,
        )
        self.run_log = run_log or RunLog()

    @property
    def dimensions(self) -> tuple[str, ...]:
        return tuple(tier.dimension for tier in self.tiers)

    async def start(self, base_filters: Mapping[str, Any]) -> DisambiguationSession:
        filters = _clean_filters(base_filters)
        if not filters:
            raise ConfigurationError("At least one non-empty base filter is required")
        overlap = set(filters) & set(self.dimensions)
        if overlap:
            raise ConfigurationError(f"Refinement dimensions cannot be base filters: {sorted(overlap)}")

        response = await self.registry.query(filters)
        session = DisambiguationSession(base_filters=filters)
        self._take_snapshot(session, response)
        self._advance(session)
        log_run_step(
            self.run_log,
            "disambiguation",
            "started",
            {"filters": filters, "result_count": session.result_count, "status": session.status},
        )
        return session

    async def apply_filter(
        self,
        session: DisambiguationSession,
        dimension: str,
        value: str,
    ) -> DisambiguationSession:
        """Re-query with one more refinement dimension.

        A registry failure propagates and leaves ``session`` untouched, so
        the same step can be retried.
        """
        self._check_open(session)
        if dimension not in self.dimensions:
            raise ConfigurationError(
                f"Unknown refinement dimension {dimension!r}; expected one of {list(self.dimensions)}"
            )
        if dimension in session.attempted:
            raise ConfigurationError(f"Dimension {dimension!r} was already used in this session")
        value = " ".join(str(value or "").split())
        if not value:
            raise ConfigurationError(f"A value is required for dimension {dimension!r}")

        response = await self.registry.query({**session.filters(), dimension: value})

        session.applied.append((dimension, value))
        if response.result_count > session.result_count:
            # Keep the narrower snapshot so counts never go up.
            self.run_log.warning(
                f"Filter {dimension}={value!r} returned {response.result_count} results, "
                f"more than the current {session.result_count}; keeping the current list"
            )
            session.count_history.append(session.result_count)
        else:
            self._take_snapshot(session, response)
        self._advance(session)
        log_run_step(
            self.run_log,
            "disambiguation",
            "refined",
            {
                "dimension": dimension,
                "value": value,
                "result_count": session.result_count,
                "status": session.status,
            },
        )
        return session

    def skip_dimension(
        self,
        session: DisambiguationSession,
        dimension: str | None = None,
    ) -> DisambiguationSession:
        """Decline a refinement dimension; it is never requested again."""
        self._check_open(session)
        dimension = dimension or session.pending_dimension
        if dimension is None:
            raise ConfigurationError("No refinement dimension is pending")
        if dimension not in self.dimensions:
            raise ConfigurationError(f"Unknown refinement dimension {dimension!r}")
        if dimension in session.attempted:
            raise ConfigurationError(f"Dimension {dimension!r} was already used in this session")
        session.skipped.append(dimension)
        self._advance(session)
        self.run_log.progress(f"Skipped {dimension}; status {session.status}")
        return session

    @staticmethod
    def resolved_result(session: DisambiguationSession) -> dict[str, Any] | None:
        if session.status != SessionStatus.RESOLVED or not session.results:
            return None
        return session.results[0]

    @staticmethod
    def _check_open(session: DisambiguationSession) -> None:
        if session.is_terminal:
            raise ConfigurationError(f"Session is already {session.status}")

    @staticmethod
    def _take_snapshot(session: DisambiguationSession, response: RegistryResponse) -> None:
        session.results = list(response.results)
        session.result_count = max(int(response.result_count), 0)
        session.count_history.append(session.result_count)

    def _next_dimension(self, session: DisambiguationSession) -> str | None:
        attempted = session.attempted
        for tier in self.tiers:
            if tier.dimension in attempted:
                continue
            if session.result_count > tier.threshold:
                return tier.dimension
        if session.result_count > 1:
            # Still several results: offer any unused dimension.
            for dimension in self.dimensions:
                if dimension not in attempted:
                    return dimension
        return None

    def _advance(self, session: DisambiguationSession) -> None:
        session.pending_dimension = None
        session.choices = []
        if session.result_count == 0:
            session.status = SessionStatus.NOT_FOUND
            return
        if session.result_count == 1:
            session.status = SessionStatus.RESOLVED
            return

        next_dimension = self._next_dimension(session)
        if next_dimension is not None:
            session.pending_dimension = next_dimension
            session.status = SessionStatus.NARROWING if session.steps else SessionStatus.UNFILTERED
            return

        session.status = SessionStatus.AMBIGUOUS
        session.choices = session.results[: self.max_choices]
        self.run_log.progress(
            f"Still {session.result_count} results after {session.steps} refinements; "
            f"returning {len(session.choices)} choices"
        )
