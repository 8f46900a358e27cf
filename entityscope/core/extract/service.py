from __future__ import annotations

import math
from collections.abc import Mapping
from datetime import datetime
from typing import Any, Protocol

from entityscope import llm_client
from entityscope.config import settings
from entityscope.core.models.interfaces import (
    EvidenceSource,
    ExtractedCandidate,
    InferredCandidate,
    SourceKind,
)
from entityscope.models.schemas import RECORD_FIELDS, UNKNOWN, Query
from entityscope.services.logger import RunLog
from entityscope.services.url_facts import UrlFactTable

INFERRED_CONFIDENCE = 0.6

MISSING_MARKERS = frozenset({
    "",
    "unknown",
    "not found",
    "not specified",
    "not provided",
    "information not found",
    "n/a",
    "na",
    "none",
    "null",
})

SUBJECT_KEYS = ("subject_name", "name", "doctor_name", "institution_name")
FIELD_KEYS: dict[str, tuple[str, ...]] = {
    "institution": ("institution", "workplace", "affiliation"),
    "location": ("location", "locality"),
    "role": ("role", "specialty"),
}

SOURCE_KIND_ALIASES: dict[str, SourceKind] = {
    "registry": SourceKind.REGISTRY,
    "directory": SourceKind.DIRECTORY,
    "medical_directory": SourceKind.DIRECTORY,
    "institutional": SourceKind.INSTITUTIONAL,
    "institutional_profile": SourceKind.INSTITUTIONAL,
    "hospital_website": SourceKind.INSTITUTIONAL,
    "official_website": SourceKind.INSTITUTIONAL,
    "academic": SourceKind.ACADEMIC,
    "academic_profile": SourceKind.ACADEMIC,
    "news": SourceKind.NEWS,
    "news_article": SourceKind.NEWS,
}

EXTRACTION_SYSTEM_PROMPT = """You extract facts about one named person or organization from web page text.
Report only what the text states or clearly implies (an institutional email domain or an author affiliation counts).
Never guess. Use "unknown" for anything the text does not support.
Reply with a single JSON object."""

EXTRACTION_PROMPT = """Target name: {name}
Role hint: {role}
Institution hint: {institution}
Location hint: {location}
Source URL: {url}

Page text:
{text}

Return JSON with these keys:
- "subject_name": the name as written in the text for the person or organization this page describes, or "unknown"
- "institution": current primary affiliation or workplace
- "location": city, region and country of that affiliation
- "role": specialty, title or role
- "confidence": 0.0-1.0, how clearly the text supports these facts
- "source_kind": one of "directory", "institutional", "academic", "registry", "news", "other"
"""


class Extractor(Protocol):
    async def __call__(
        self,
        text: str,
        query: Query,
        *,
        url: str,
        run_log: RunLog,
    ) -> Mapping[str, Any] | None: ...


def normalize_value(value: Any) -> str:
    if value is None:
        return UNKNOWN
    if isinstance(value, (list, tuple)):
        value = next((item for item in value if str(item).strip()), "")
    text = " ".join(str(value).split())
    if text.lower() in MISSING_MARKERS:
        return UNKNOWN
    return text


def clamp_confidence(value: Any) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0.0
    if math.isnan(number):
        return 0.0
    return max(0.0, min(number, 1.0))


def coerce_source_kind(value: Any) -> SourceKind:
    key = str(value or "").strip().lower().replace("-", "_").replace(" ", "_")
    return SOURCE_KIND_ALIASES.get(key, SourceKind.OTHER)


def _first_present(raw: Mapping[str, Any], keys: tuple[str, ...]) -> Any:
    for key in keys:
        if key in raw and normalize_value(raw[key]) != UNKNOWN:
            return raw[key]
    return None


def normalize_extraction(
    raw: Mapping[str, Any],
    *,
    url: str,
    text: str = "",
    extractor: str = "llm",
    observed_at: datetime | None = None,
) -> ExtractedCandidate:
    """Coerce collaborator output into a complete candidate.

    Missing or placeholder fields become ``unknown``; confidence is clamped.
    No identity judgment happens here.
    """
    fields = {name: normalize_value(_first_present(raw, FIELD_KEYS[name])) for name in RECORD_FIELDS}
    kwargs: dict[str, Any] = {}
    if observed_at is not None:
        kwargs["observed_at"] = observed_at
    return ExtractedCandidate(
        subject_name=normalize_value(_first_present(raw, SUBJECT_KEYS)),
        fields=fields,
        confidence=clamp_confidence(raw.get("confidence")),
        source_kind=coerce_source_kind(raw.get("source_kind") or raw.get("source_type")),
        url=url,
        text=text,
        extractor=extractor,
        **kwargs,
    )


def infer_from_url(
    source: EvidenceSource,
    table: UrlFactTable,
    *,
    text: str = "",
) -> InferredCandidate | None:
    """Candidate built only from the URL fact table and the search hit.

    The subject name is the hit's title, so identity is still judged on
    evidence rather than copied from the query.
    """
    fact = table.lookup(source.url)
    if fact is None:
        return None
    subject = normalize_value(source.title)
    if subject == UNKNOWN:
        return None
    return InferredCandidate(
        subject_name=subject,
        fields={
            "institution": normalize_value(fact.institution),
            "location": normalize_value(fact.location),
            "role": UNKNOWN,
        },
        confidence=INFERRED_CONFIDENCE,
        source_kind=SourceKind.INSTITUTIONAL,
        url=source.url,
        text=" ".join(part for part in (source.title, source.snippet, text) if part),
        rule=fact.domain,
    )


class LLMExtractor:
    """Extraction collaborator backed by the OpenRouter chat model."""

    def __init__(self, *, model: str | None = None, max_content_chars: int | None = None):
        self.model = model
        self.max_content_chars = max(
            int(max_content_chars if max_content_chars is not None else settings.extract_max_content_chars),
            500,
        )

    async def __call__(
        self,
        text: str,
        query: Query,
        *,
        url: str,
        run_log: RunLog,
    ) -> Mapping[str, Any] | None:
        prompt = EXTRACTION_PROMPT.format(
            name=query.name,
            role=query.role or "not given",
            institution=query.institution or "not given",
            location=query.location or "not given",
            url=url,
            text=text[: self.max_content_chars],
        )
        return await llm_client.complete_json(
            system=EXTRACTION_SYSTEM_PROMPT,
            prompt=prompt,
            caller="extraction",
            model=self.model,
            run_log=run_log,
        )


class ExtractionAdapter:
    """Boundary around the extraction collaborator."""

    def __init__(
        self,
        extractor: Extractor | None = None,
        *,
        extractor_name: str = "llm",
        min_content_chars: int | None = None,
        max_content_chars: int | None = None,
    ):
        self.extractor = extractor or LLMExtractor(max_content_chars=max_content_chars)
        self.extractor_name = extractor_name
        self.min_content_chars = max(
            int(min_content_chars if min_content_chars is not None else settings.extract_min_content_chars),
            0,
        )
        self.max_content_chars = max(
            int(max_content_chars if max_content_chars is not None else settings.extract_max_content_chars),
            500,
        )

    async def extract(
        self,
        source_text: str,
        query: Query,
        *,
        url: str,
        run_log: RunLog | None = None,
    ) -> ExtractedCandidate | None:
        run_log = run_log or RunLog()
        if len(source_text) < self.min_content_chars:
            run_log.progress(f"Skipping extraction for {url}: {len(source_text)} chars")
            return None
        try:
            raw = await self.extractor(source_text, query, url=url, run_log=run_log)
        except Exception as exc:
            run_log.warning(f"Extraction failed for {url}: {exc}")
            return None
        if not isinstance(raw, Mapping):
            return None

        candidate = normalize_extraction(
            raw,
            url=url,
            text=source_text[: self.max_content_chars],
            extractor=self.extractor_name,
        )
        run_log.progress(
            f"Extracted from {url}: {candidate.subject_name} | "
            + ", ".join(f"{name}={candidate.value(name)}" for name in RECORD_FIELDS)
        )
        return candidate
