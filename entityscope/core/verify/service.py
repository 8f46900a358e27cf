"""Identity verification: does a candidate describe the queried entity?

Each factor adds to (or, for a contradicted institution hint, subtracts
from) the score. Three gates force a rejection: too little name overlap, a
partial name that lacks the queried surname, and a final score below
``min_score``.
"""
from __future__ import annotations

import re
import unicodedata
from dataclasses import dataclass

from entityscope.config import settings
from entityscope.core.models.interfaces import Candidate, VerificationResult
from entityscope.models.schemas import RECORD_FIELDS, UNKNOWN, Query

TOKEN_PATTERN = re.compile(r"[a-z0-9]+")

# Stripped from names before comparison; credentials are scored separately.
NAME_NOISE = frozenset({
    "dr", "prof", "professor", "mr", "mrs", "ms", "miss", "sir", "dame",
    "md", "phd", "mbbs", "dds", "dmd", "rn", "np", "facs", "frcs", "mph",
    "jr", "sr", "ii", "iii", "iv",
})

HINT_STOPWORDS = frozenset({"the", "of", "and", "at", "for", "in", "a", "an", "de"})

CREDENTIAL_PATTERNS = (
    re.compile(r"\b(?:M\.D\.|MD|D\.O\.|Ph\.D\.|PhD|MBBS|FACS|FRCS|FRCPC|DDS|DNP)\b"),
    re.compile(r"\bDr\.\s"),
    re.compile(r"\bboard[- ]certified\b", re.IGNORECASE),
)

DOMAIN_KEYWORDS = frozenset({
    "hospital", "clinic", "medical", "medicine", "physician", "surgeon",
    "department", "faculty", "university", "health", "practice", "patients",
})


@dataclass(frozen=True)
class VerificationWeights:
    full_name: float = 0.50
    partial_name: float = 0.30
    weak_name: float = 0.10
    high_name_fraction: float = 0.6
    low_name_fraction: float = 0.34
    institution_strong: float = 0.30
    institution_partial: float = 0.15
    institution_contradiction: float = -0.20
    institution_strong_fraction: float = 0.75
    institution_partial_fraction: float = 0.4
    location_hint: float = 0.10
    role_hint: float = 0.10
    hint_fraction: float = 0.5
    handle: float = 0.15
    credential: float = 0.05
    domain_context: float = 0.03


def _fold(text: str) -> str:
    normalized = unicodedata.normalize("NFKD", text)
    return "".join(ch for ch in normalized if not unicodedata.combining(ch)).lower()


def tokenize(text: str) -> list[str]:
    return TOKEN_PATTERN.findall(_fold(text or ""))


def name_tokens(name: str) -> list[str]:
    if not name or name == UNKNOWN:
        return []
    return [token for token in tokenize(name) if len(token) > 1 and token not in NAME_NOISE]


def hint_tokens(hint: str | None) -> set[str]:
    return {token for token in tokenize(hint or "") if token not in HINT_STOPWORDS}


def _contains_run(haystack: list[str], needle: list[str]) -> bool:
    if not needle or len(needle) > len(haystack):
        return False
    width = len(needle)
    return any(haystack[i : i + width] == needle for i in range(len(haystack) - width + 1))


def _overlap(wanted: set[str], available: set[str]) -> float:
    if not wanted:
        return 0.0
    return len(wanted & available) / len(wanted)


class IdentityVerifier:
    def __init__(
        self,
        *,
        weights: VerificationWeights | None = None,
        min_score: float | None = None,
    ):
        self.weights = weights or VerificationWeights()
        self.min_score = float(min_score if min_score is not None else settings.verify_min_score)

    def verify(self, query: Query, candidate: Candidate) -> VerificationResult:
        w = self.weights
        factors: list[str] = []

        wanted = name_tokens(query.name)
        found = name_tokens(candidate.subject_name)
        fraction = _overlap(set(wanted), set(found))
        if not wanted or fraction < w.low_name_fraction:
            factors.append(
                f"identity mismatch: {candidate.subject_name!r} shares {fraction:.0%} of the name tokens of {query.name!r}"
            )
            return VerificationResult(score=0.0, accepted=False, factors=tuple(factors))

        score = 0.0
        full = (
            _contains_run(found, wanted)
            or (len(found) >= 2 and _contains_run(wanted, found))
            or fraction == 1.0
        )
        if not full and wanted[-1] not in found:
            factors.append(
                f"identity mismatch: {candidate.subject_name!r} lacks the surname {wanted[-1]!r} of {query.name!r}"
            )
            return VerificationResult(score=0.0, accepted=False, factors=tuple(factors))

        if full:
            score += w.full_name
            factors.append(f"full name match {candidate.subject_name!r} ({w.full_name:+.2f})")
        elif fraction >= w.high_name_fraction:
            score += w.partial_name
            factors.append(f"partial name match {fraction:.0%} ({w.partial_name:+.2f})")
        else:
            score += w.weak_name
            factors.append(f"weak name match {fraction:.0%} ({w.weak_name:+.2f})")

        evidence_text = " ".join(
            [candidate.subject_name, *(candidate.value(name) for name in RECORD_FIELDS), candidate.text]
        )
        evidence_tokens = set(tokenize(evidence_text))
        matched_fields = self._matched_fields(query, candidate)

        institution = hint_tokens(query.institution)
        if institution:
            overlap = _overlap(institution, evidence_tokens)
            if overlap >= w.institution_strong_fraction:
                score += w.institution_strong
                factors.append(f"institution hint {query.institution!r} found ({w.institution_strong:+.2f})")
            elif overlap >= w.institution_partial_fraction:
                score += w.institution_partial
                factors.append(
                    f"institution hint {query.institution!r} partly found {overlap:.0%} ({w.institution_partial:+.2f})"
                )
            else:
                score += w.institution_contradiction
                factors.append(
                    f"institution hint {query.institution!r} absent from candidate ({w.institution_contradiction:+.2f})"
                )

        for field_name, bonus in (("location", w.location_hint), ("role", w.role_hint)):
            wanted_hint = hint_tokens(query.hint(field_name))
            if wanted_hint and _overlap(wanted_hint, evidence_tokens) >= w.hint_fraction:
                score += bonus
                factors.append(f"{field_name} hint {query.hint(field_name)!r} found ({bonus:+.2f})")

        handle = (query.handle or "").strip().lstrip("@").lower()
        if len(handle) >= 3 and handle in evidence_text.lower():
            score += w.handle
            factors.append(f"handle @{handle} found verbatim ({w.handle:+.2f})")

        if any(pattern.search(evidence_text) for pattern in CREDENTIAL_PATTERNS):
            score += w.credential
            factors.append(f"credential marker present ({w.credential:+.2f})")

        if evidence_tokens & DOMAIN_KEYWORDS:
            score += w.domain_context
            factors.append(f"domain context keywords present ({w.domain_context:+.2f})")

        score = round(max(0.0, min(score, 1.0)), 4)
        accepted = score >= self.min_score
        if not accepted:
            factors.append(f"below minimum score {self.min_score:.2f}")
        return VerificationResult(
            score=score,
            accepted=accepted,
            factors=tuple(factors),
            matched_fields=matched_fields,
        )

    @staticmethod
    def _matched_fields(query: Query, candidate: Candidate) -> frozenset[str]:
        """Fields whose query hint is fully contained in the candidate's value."""
        matched: set[str] = set()
        for field_name in RECORD_FIELDS:
            wanted = hint_tokens(query.hint(field_name))
            value = candidate.value(field_name)
            if wanted and value != UNKNOWN and wanted <= hint_tokens(value):
                matched.add(field_name)
        return frozenset(matched)
