from __future__ import annotations

from collections.abc import Sequence
from datetime import datetime, timezone

from entityscope.core.models.interfaces import Candidate, SourceKind, VerificationResult
from entityscope.models.schemas import RECORD_FIELDS, UNKNOWN, AggregatedRecord, Query

SOURCE_KIND_WEIGHTS: dict[SourceKind, float] = {
    SourceKind.REGISTRY: 1.0,
    SourceKind.DIRECTORY: 0.95,
    SourceKind.INSTITUTIONAL: 0.95,
    SourceKind.ACADEMIC: 0.85,
    SourceKind.NEWS: 0.6,
    SourceKind.OTHER: 0.5,
}

HINT_MATCH_BONUS = 0.10


def base_score(candidate: Candidate) -> float:
    return candidate.confidence * SOURCE_KIND_WEIGHTS.get(candidate.source_kind, SOURCE_KIND_WEIGHTS[SourceKind.OTHER])


def field_score(candidate: Candidate, verification: VerificationResult, field_name: str) -> float:
    bonus = HINT_MATCH_BONUS if field_name in verification.matched_fields else 0.0
    return round(base_score(candidate) + bonus, 6)


def overall_score(candidate: Candidate, verification: VerificationResult) -> float:
    return round(base_score(candidate) + HINT_MATCH_BONUS * len(verification.matched_fields), 6)


def _rank_key(score: float, candidate: Candidate, value: str) -> tuple[float, float, str, str]:
    # Higher score first; then most recent; then URL and value for a total order.
    return (-score, -candidate.observed_at.timestamp(), candidate.url, value)


def empty_record(query: Query, *, now: datetime | None = None, factors: list[str] | None = None) -> AggregatedRecord:
    """Zero-confidence answer used when no candidate survives verification."""
    return AggregatedRecord(
        subject_name=query.name,
        primary={name: UNKNOWN for name in RECORD_FIELDS},
        alternates={name: [] for name in RECORD_FIELDS},
        confidence=0.0,
        sources=[],
        factors=factors or ["no candidate passed identity verification"],
        generated_at=now or datetime.now(timezone.utc),
    )


def aggregate(
    query: Query,
    candidates: Sequence[Candidate],
    verifications: Sequence[VerificationResult],
    *,
    now: datetime | None = None,
) -> AggregatedRecord:
    """Merge verified candidates into one record.

    Each field is ranked independently, so the primary institution and the
    primary role may come from different pages. The result does not depend
    on the order of ``candidates``.
    """
    if len(candidates) != len(verifications):
        raise ValueError(
            f"{len(candidates)} candidates but {len(verifications)} verification results"
        )
    now = now or datetime.now(timezone.utc)

    survivors = [
        (candidate, verification)
        for candidate, verification in zip(candidates, verifications)
        if verification.accepted
    ]
    rejected = sorted(
        {
            f"rejected {candidate.url}: {verification.factors[0] if verification.factors else 'no factors'}"
            for candidate, verification in zip(candidates, verifications)
            if not verification.accepted
        }
    )
    if not survivors:
        return empty_record(query, now=now, factors=["no candidate passed identity verification", *rejected])

    primary: dict[str, str] = {}
    alternates: dict[str, list[str]] = {}
    provenance: dict[str, str] = {}
    factors: list[str] = []

    for field_name in RECORD_FIELDS:
        ranked = sorted(
            _rank_key(field_score(candidate, verification, field_name), candidate, candidate.value(field_name))
            for candidate, verification in survivors
            if candidate.value(field_name) != UNKNOWN
        )
        if not ranked:
            primary[field_name] = UNKNOWN
            alternates[field_name] = []
            continue

        neg_score, _, url, value = ranked[0]
        primary[field_name] = value
        provenance[field_name] = url
        factors.append(f"{field_name}: {value!r} from {url} (score {-neg_score:.2f})")

        seen = {value.casefold()}
        others: list[str] = []
        for *_, other in ranked[1:]:
            if other.casefold() in seen:
                continue
            seen.add(other.casefold())
            others.append(other)
        alternates[field_name] = others

    # Only candidates backing at least one primary value count toward confidence.
    supporting = [
        (candidate, verification)
        for candidate, verification in survivors
        if any(
            primary[name] != UNKNOWN and candidate.value(name).casefold() == primary[name].casefold()
            for name in RECORD_FIELDS
        )
    ]
    if not supporting:
        return empty_record(
            query,
            now=now,
            factors=["no verified candidate supplied a field value", *rejected],
        )

    best_key, best = min(
        (
            (_rank_key(overall_score(candidate, verification), candidate, candidate.subject_name), candidate)
            for candidate, verification in supporting
        ),
        key=lambda item: item[0],
    )
    confidence = round(max(0.0, min(-best_key[0], 1.0)), 4)

    source_scores: dict[str, float] = {}
    for candidate, verification in survivors:
        score = overall_score(candidate, verification)
        source_scores[candidate.url] = max(score, source_scores.get(candidate.url, 0.0))
    sources = sorted(source_scores, key=lambda url: (-source_scores[url], url))

    return AggregatedRecord(
        subject_name=best.subject_name,
        primary=primary,
        alternates=alternates,
        confidence=confidence,
        sources=sources,
        provenance=provenance,
        factors=factors + rejected,
        generated_at=now,
    )
