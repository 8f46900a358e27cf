from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import StrEnum
from typing import Any

from entityscope.models.schemas import RECORD_FIELDS, UNKNOWN


class SourceKind(StrEnum):
    REGISTRY = "registry"
    DIRECTORY = "directory"
    INSTITUTIONAL = "institutional"
    ACADEMIC = "academic"
    NEWS = "news"
    OTHER = "other"


class FailureKind(StrEnum):
    UNREACHABLE = "unreachable"
    EMPTY_BODY = "empty_body"
    TIMEOUT = "timeout"


@dataclass(frozen=True, slots=True)
class EvidenceSource:
    """One raw search hit. ``url`` is the identity key."""

    url: str
    title: str = ""
    snippet: str = ""


@dataclass(frozen=True, slots=True)
class FetchedPage:
    url: str
    text: str
    status_code: int
    attempts: int
    thin: bool = False  # below the minimum-content threshold


@dataclass(frozen=True, slots=True)
class FetchFailure:
    url: str
    kind: FailureKind
    detail: str
    attempts: int


FetchOutcome = FetchedPage | FetchFailure


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True, slots=True)
class CandidateBase:
    subject_name: str
    fields: dict[str, str]
    confidence: float
    source_kind: SourceKind
    url: str
    text: str = ""  # evidence text the candidate was derived from
    observed_at: datetime = field(default_factory=_utc_now)

    def __post_init__(self) -> None:
        if not 0.0 <= self.confidence <= 1.0:
            raise ValueError(f"candidate confidence out of range: {self.confidence}")
        for name in RECORD_FIELDS:
            if not self.fields.get(name):
                raise ValueError(f"candidate field missing: {name}")
        if not self.subject_name:
            raise ValueError("candidate subject_name missing")

    def value(self, field_name: str) -> str:
        return self.fields.get(field_name, UNKNOWN)

    @property
    def is_sparse(self) -> bool:
        return all(self.value(name) == UNKNOWN for name in RECORD_FIELDS)


@dataclass(frozen=True, slots=True)
class ExtractedCandidate(CandidateBase):
    """Every field came from the extraction collaborator."""

    extractor: str = "llm"


@dataclass(frozen=True, slots=True)
class InferredCandidate(CandidateBase):
    """Every field came from the URL fact table and the search hit."""

    rule: str = ""  # the table domain that matched


Candidate = ExtractedCandidate | InferredCandidate


@dataclass(frozen=True, slots=True)
class VerificationResult:
    score: float
    accepted: bool
    factors: tuple[str, ...] = ()
    matched_fields: frozenset[str] = frozenset()  # fields whose query hint the candidate matched


@dataclass(slots=True)
class RegistryResponse:
    result_count: int
    results: list[dict[str, Any]] = field(default_factory=list)
