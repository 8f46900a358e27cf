from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, patch

import pytest

from entityscope.agents.orchestrator import ResolutionOrchestrator
from entityscope.core.disambiguation.controller import SessionStatus
from entityscope.core.extract.service import ExtractionAdapter
from entityscope.core.models.interfaces import (
    EvidenceSource,
    ExtractedCandidate,
    FailureKind,
    FetchedPage,
    FetchFailure,
    InferredCandidate,
    RegistryResponse,
)
from entityscope.core.verify.service import IdentityVerifier
from entityscope.errors import ConfigurationError
from entityscope.models.schemas import UNKNOWN, Query
from entityscope.services.url_facts import UrlFact, UrlFactTable
from entityscope.tools.search_provider import SearchResponse

LONG_JANE = "Jane Doe, MD is a cardiologist at Springfield General Hospital in Springfield, IL. " * 4
LONG_JOHN = "John Smith, MD is an orthopedic surgeon at Mercy Hospital in Columbus, OH. " * 4

EXTRACTIONS = {
    "https://springfieldgeneral.org/doctors/jane-doe": {
        "subject_name": "Jane Doe",
        "institution": "Springfield General",
        "location": "Springfield, IL",
        "role": "Cardiology",
        "confidence": 0.9,
        "source_kind": "institutional",
    },
    "https://mercy.example.com/john-smith": {
        "subject_name": "John Smith",
        "institution": "Mercy Hospital",
        "location": "Columbus, OH",
        "role": "Orthopedic Surgery",
        "confidence": 0.95,
        "source_kind": "directory",
    },
}


class _Tracker:
    def __init__(self):
        self.in_flight = 0
        self.peak = 0

    async def hold(self, seconds: float = 0.01):
        self.in_flight += 1
        self.peak = max(self.peak, self.in_flight)
        await asyncio.sleep(seconds)
        self.in_flight -= 1


class _FakeFetcher:
    def __init__(self, outcomes, tracker: _Tracker | None = None):
        self.outcomes = outcomes
        self.tracker = tracker
        self.calls: list[str] = []

    async def fetch(self, url: str, *, run_log=None):
        self.calls.append(url)
        if self.tracker is not None:
            await self.tracker.hold()
        return self.outcomes[url]


class _FakeRegistry:
    def __init__(self, count: int):
        self.count = count

    async def query(self, filters):
        return RegistryResponse(
            result_count=self.count,
            results=[
                {
                    "number": "1234567890",
                    "basic": {"first_name": "JOHN", "last_name": "SMITH", "credential": "MD"},
                    "addresses": [{"address_purpose": "LOCATION", "city": "COLUMBUS", "state": "OH"}],
                    "taxonomies": [{"desc": "Family Medicine", "primary": True}],
                }
            ]
            * self.count,
        )


async def _fake_extractor(text, query, *, url, run_log):
    return EXTRACTIONS.get(url)


def _search_returning(*sources: EvidenceSource):
    async def fake_search(query: str, **kwargs):
        return SearchResponse(provider="google", results=list(sources))

    return fake_search


def _orchestrator(fetcher, *, facts=None, registry=None, max_in_flight=3, extractor=_fake_extractor):
    return ResolutionOrchestrator(
        fetcher=fetcher,
        extraction=ExtractionAdapter(extractor, extractor_name="fake"),
        verifier=IdentityVerifier(min_score=0.5),
        url_facts=UrlFactTable(facts or []),
        registry=registry or _FakeRegistry(0),
        query_planner="template",
        max_in_flight=max_in_flight,
    )


@pytest.mark.asyncio
async def test_blank_name_is_rejected_before_any_provider_call():
    fetcher = _FakeFetcher({})
    mock_search = AsyncMock()
    orchestrator = _orchestrator(fetcher)

    with patch("entityscope.services.search_executor.search_provider.search", new=mock_search):
        with pytest.raises(ConfigurationError):
            await orchestrator.resolve_entity(Query(name="   "))

    mock_search.assert_not_awaited()
    assert fetcher.calls == []


def test_unknown_query_planner_is_rejected():
    with pytest.raises(ConfigurationError):
        ResolutionOrchestrator(url_facts=UrlFactTable([]), query_planner="magic")


@pytest.mark.asyncio
async def test_run_accepts_matching_candidate_and_rejects_other_identity():
    jane_url = "https://springfieldgeneral.org/doctors/jane-doe"
    john_url = "https://mercy.example.com/john-smith"
    fetcher = _FakeFetcher(
        {
            jane_url: FetchedPage(url=jane_url, text=LONG_JANE, status_code=200, attempts=1),
            john_url: FetchedPage(url=john_url, text=LONG_JOHN, status_code=200, attempts=1),
        }
    )
    orchestrator = _orchestrator(fetcher)
    search = _search_returning(
        EvidenceSource(url=jane_url, title="Jane Doe, MD"),
        EvidenceSource(url=john_url, title="John Smith, MD"),
    )

    with patch("entityscope.services.search_executor.search_provider.search", new=search):
        run = await orchestrator.run(Query(name="Jane Doe", institution="Springfield General"))

    record = run.record
    assert record.institution == "Springfield General"
    assert record.location == "Springfield, IL"
    assert record.sources == [jane_url]
    assert record.confidence >= 0.9
    assert len(run.candidates) == 2
    assert run.summary()["accepted"] == 1
    assert any(f"rejected {john_url}" in factor for factor in record.factors)


@pytest.mark.asyncio
async def test_thin_page_on_known_domain_is_inferred_without_extraction():
    url = "https://www.mayoclinic.org/biographies/doe-jane"
    fetcher = _FakeFetcher({url: FetchedPage(url=url, text="Jane Doe", status_code=200, attempts=3, thin=True)})
    extractor = AsyncMock(return_value=None)
    orchestrator = _orchestrator(
        fetcher,
        facts=[UrlFact(domain="mayoclinic.org", institution="Mayo Clinic", location="Rochester, MN")],
        extractor=extractor,
    )
    search = _search_returning(EvidenceSource(url=url, title="Dr. Jane Doe - Mayo Clinic", snippet="Cardiology"))

    with patch("entityscope.services.search_executor.search_provider.search", new=search):
        run = await orchestrator.run(Query(name="Jane Doe", institution="Mayo Clinic"))

    extractor.assert_not_awaited()
    assert len(run.candidates) == 1
    assert isinstance(run.candidates[0], InferredCandidate)
    assert run.record.institution == "Mayo Clinic"
    assert run.record.location == "Rochester, MN"
    assert run.record.role == UNKNOWN


@pytest.mark.asyncio
async def test_fetch_failure_falls_back_to_url_inference():
    known = "https://mayoclinic.org/jane"
    unknown = "https://blocked.example.com/jane"
    fetcher = _FakeFetcher(
        {
            known: FetchFailure(known, FailureKind.UNREACHABLE, "HTTP 403", 3),
            unknown: FetchFailure(unknown, FailureKind.TIMEOUT, "timed out", 3),
        }
    )
    orchestrator = _orchestrator(fetcher, facts=[UrlFact(domain="mayoclinic.org", institution="Mayo Clinic")])
    search = _search_returning(
        EvidenceSource(url=known, title="Jane Doe - Mayo Clinic"),
        EvidenceSource(url=unknown, title="Jane Doe"),
    )

    with patch("entityscope.services.search_executor.search_provider.search", new=search):
        run = await orchestrator.run(Query(name="Jane Doe"))

    assert len(run.failures) == 2
    assert [candidate.url for candidate in run.candidates] == [known]
    assert run.record.institution == "Mayo Clinic"


@pytest.mark.asyncio
async def test_sparse_extraction_on_known_domain_uses_inference():
    url = "https://mayoclinic.org/jane"
    fetcher = _FakeFetcher({url: FetchedPage(url=url, text=LONG_JANE, status_code=200, attempts=1)})

    async def sparse_extractor(text, query, *, url, run_log):
        return {"subject_name": "Jane Doe", "confidence": 0.8}

    orchestrator = _orchestrator(
        fetcher,
        facts=[UrlFact(domain="mayoclinic.org", institution="Mayo Clinic")],
        extractor=sparse_extractor,
    )
    search = _search_returning(EvidenceSource(url=url, title="Jane Doe - Mayo Clinic"))

    with patch("entityscope.services.search_executor.search_provider.search", new=search):
        run = await orchestrator.run(Query(name="Jane Doe"))

    assert isinstance(run.candidates[0], InferredCandidate)
    assert not isinstance(run.candidates[0], ExtractedCandidate)


@pytest.mark.asyncio
async def test_sparse_extraction_on_unlisted_domain_is_dropped():
    url = "https://blog.example.com/jane-doe"
    fetcher = _FakeFetcher({url: FetchedPage(url=url, text=LONG_JANE, status_code=200, attempts=1)})

    async def sparse_extractor(text, query, *, url, run_log):
        return {"subject_name": "Jane Doe", "confidence": 0.95, "source_kind": "registry"}

    orchestrator = _orchestrator(fetcher, extractor=sparse_extractor)
    search = _search_returning(EvidenceSource(url=url, title="Jane Doe"))

    with patch("entityscope.services.search_executor.search_provider.search", new=search):
        run = await orchestrator.run(Query(name="Jane Doe"))

    assert run.candidates == []
    assert run.record.confidence == 0.0
    assert run.record.institution == UNKNOWN


@pytest.mark.asyncio
async def test_no_evidence_is_a_zero_confidence_record():
    orchestrator = _orchestrator(_FakeFetcher({}))

    with patch("entityscope.services.search_executor.search_provider.search", new=_search_returning()):
        record = await orchestrator.resolve_entity(Query(name="Jane Doe", institution="Springfield General"))

    assert record.confidence == 0.0
    assert record.institution == UNKNOWN


@pytest.mark.asyncio
async def test_in_flight_calls_never_exceed_limit():
    tracker = _Tracker()
    urls = [f"https://example.com/page-{i}" for i in range(8)]
    fetcher = _FakeFetcher(
        {url: FetchedPage(url=url, text=LONG_JANE, status_code=200, attempts=1) for url in urls},
        tracker=tracker,
    )

    async def tracked_extractor(text, query, *, url, run_log):
        await tracker.hold()
        return None

    async def tracked_search(query: str, **kwargs):
        await tracker.hold()
        return SearchResponse(provider="google", results=[EvidenceSource(url=url, title="Jane Doe") for url in urls])

    orchestrator = _orchestrator(fetcher, max_in_flight=2, extractor=tracked_extractor)

    with patch("entityscope.services.search_executor.search_provider.search", new=tracked_search):
        run = await orchestrator.run(Query(name="Jane Doe", role="Cardiology"))

    assert len(run.sources) == 8
    assert len(fetcher.calls) == 8
    assert 1 <= tracker.peak <= 2


@pytest.mark.asyncio
async def test_disambiguation_commit_builds_registry_record():
    orchestrator = _orchestrator(_FakeFetcher({}), registry=_FakeRegistry(1))

    session = await orchestrator.start_disambiguation({"first_name": "John", "last_name": "Smith"})
    record = orchestrator.commit(session)

    assert session.status == SessionStatus.RESOLVED
    assert record.identifiers == {"npi": "1234567890"}
    assert record.location == "COLUMBUS, OH"


@pytest.mark.asyncio
async def test_commit_returns_none_until_resolved():
    orchestrator = _orchestrator(_FakeFetcher({}), registry=_FakeRegistry(5))

    session = await orchestrator.start_disambiguation({"first_name": "John", "last_name": "Smith"})
    assert orchestrator.commit(session) is None

    assert session.pending_dimension == "locality"
    session = orchestrator.skip_dimension(session)
    assert session.pending_dimension == "category"
    session = orchestrator.skip_dimension(session)
    assert session.pending_dimension == "region"
    session = orchestrator.skip_dimension(session)
    assert session.status == SessionStatus.AMBIGUOUS
    assert len(session.choices) == 5
