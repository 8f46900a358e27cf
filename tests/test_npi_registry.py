from __future__ import annotations

from datetime import datetime, timezone

import httpx
import pytest

from entityscope.errors import ConfigurationError, TransientProviderError
from entityscope.tools.npi_registry import NPIRegistry, choice_label, npi_result_to_record

SAMPLE_RESULT = {
    "number": "1234567890",
    "enumeration_type": "NPI-1",
    "basic": {
        "first_name": "JOHN",
        "middle_name": "A",
        "last_name": "SMITH",
        "credential": "MD",
    },
    "addresses": [
        {"address_purpose": "MAILING", "city": "DUBLIN", "state": "OH"},
        {"address_purpose": "LOCATION", "city": "COLUMBUS", "state": "OH"},
    ],
    "taxonomies": [
        {"desc": "Sports Medicine", "primary": False},
        {"desc": "Family Medicine", "primary": True},
    ],
}


def _registry(handler) -> NPIRegistry:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return NPIRegistry(base_url="https://npiregistry.test/api/", limit=50, http_client=client)


@pytest.mark.asyncio
async def test_query_maps_dimensions_to_api_params():
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"result_count": 1, "results": [SAMPLE_RESULT]})

    registry = _registry(handler)
    response = await registry.query(
        {
            "first_name": "John",
            "last_name": "Smith",
            "region": "Ohio",
            "locality": "Columbus",
            "category": "Family Medicine",
        }
    )

    assert response.result_count == 1
    assert response.results[0]["number"] == "1234567890"
    params = seen[0].url.params
    assert params["version"] == "2.1"
    assert params["limit"] == "50"
    assert params["state"] == "OH"
    assert params["city"] == "Columbus"
    assert params["taxonomy_description"] == "Family Medicine"


@pytest.mark.asyncio
async def test_query_raises_transient_error_on_http_failure():
    registry = _registry(lambda request: httpx.Response(503, text="down"))

    with pytest.raises(TransientProviderError) as excinfo:
        await registry.query({"first_name": "John", "last_name": "Smith"})

    assert excinfo.value.provider == "npi"


@pytest.mark.asyncio
async def test_query_surfaces_registry_validation_errors():
    registry = _registry(
        lambda request: httpx.Response(200, json={"Errors": [{"description": "Invalid state"}]})
    )

    with pytest.raises(ConfigurationError, match="Invalid state"):
        await registry.query({"first_name": "John", "region": "Atlantis"})


@pytest.mark.asyncio
async def test_query_rejects_unknown_filter_without_request():
    calls: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return httpx.Response(200, json={"result_count": 0, "results": []})

    with pytest.raises(ConfigurationError):
        await _registry(handler).query({"shoe_size": "9"})
    assert calls == []


def test_result_to_record_uses_location_address_and_primary_taxonomy():
    now = datetime(2026, 3, 1, tzinfo=timezone.utc)

    record = npi_result_to_record(SAMPLE_RESULT, now=now)

    assert record.subject_name == "JOHN A SMITH, MD"
    assert record.location == "COLUMBUS, OH"
    assert record.role == "Family Medicine"
    assert record.alternates["role"] == ["Sports Medicine"]
    assert record.institution == "unknown"
    assert record.identifiers == {"npi": "1234567890"}
    assert record.confidence == 1.0
    assert record.sources == ["https://npiregistry.cms.hhs.gov/provider-view/1234567890"]
    assert "institution" not in record.provenance


def test_choice_label_is_one_line():
    assert choice_label(SAMPLE_RESULT) == "1234567890 | JOHN A SMITH, MD | Family Medicine | COLUMBUS, OH"
