"""NPPES NPI Registry adapter for progressive disambiguation.

https://npiregistry.cms.hhs.gov/api-page (API version 2.1).
"""
from __future__ import annotations

from collections.abc import Mapping
from datetime import datetime, timezone
from typing import Any

import httpx

from entityscope.config import settings
from entityscope.core.models.interfaces import RegistryResponse
from entityscope.errors import ConfigurationError, TransientProviderError
from entityscope.models.schemas import RECORD_FIELDS, UNKNOWN, AggregatedRecord

API_VERSION = "2.1"
PROVIDER_VIEW_URL = "https://npiregistry.cms.hhs.gov/provider-view/{number}"

# Engine filter names -> NPI API query parameters.
FILTER_PARAMS = {
    "first_name": "first_name",
    "last_name": "last_name",
    "region": "state",
    "locality": "city",
    "category": "taxonomy_description",
    "postal_code": "postal_code",
}

US_STATES = {
    "alabama": "AL", "alaska": "AK", "arizona": "AZ", "arkansas": "AR", "california": "CA",
    "colorado": "CO", "connecticut": "CT", "delaware": "DE", "district of columbia": "DC",
    "florida": "FL", "georgia": "GA", "hawaii": "HI", "idaho": "ID", "illinois": "IL",
    "indiana": "IN", "iowa": "IA", "kansas": "KS", "kentucky": "KY", "louisiana": "LA",
    "maine": "ME", "maryland": "MD", "massachusetts": "MA", "michigan": "MI", "minnesota": "MN",
    "mississippi": "MS", "missouri": "MO", "montana": "MT", "nebraska": "NE", "nevada": "NV",
    "new hampshire": "NH", "new jersey": "NJ", "new mexico": "NM", "new york": "NY",
    "north carolina": "NC", "north dakota": "ND", "ohio": "OH", "oklahoma": "OK", "oregon": "OR",
    "pennsylvania": "PA", "puerto rico": "PR", "rhode island": "RI", "south carolina": "SC",
    "south dakota": "SD", "tennessee": "TN", "texas": "TX", "utah": "UT", "vermont": "VT",
    "virginia": "VA", "washington": "WA", "west virginia": "WV", "wisconsin": "WI", "wyoming": "WY",
}


def state_code(value: str) -> str:
    text = " ".join(value.split())
    if len(text) == 2:
        return text.upper()
    return US_STATES.get(text.lower(), text)


def build_params(filters: Mapping[str, str], *, limit: int) -> dict[str, Any]:
    params: dict[str, Any] = {"version": API_VERSION, "limit": max(1, min(limit, 200))}
    for key, value in filters.items():
        param = FILTER_PARAMS.get(key)
        if param is None:
            raise ConfigurationError(f"Unsupported registry filter {key!r}")
        params[param] = state_code(value) if param == "state" else value
    return params


class NPIRegistry:
    def __init__(
        self,
        *,
        base_url: str | None = None,
        limit: int | None = None,
        http_client: httpx.AsyncClient | None = None,
    ):
        self.base_url = (base_url or settings.npi_registry_base_url).strip()
        self.limit = int(limit if limit is not None else settings.npi_registry_limit)
        self._http_client = http_client

    async def query(self, filters: Mapping[str, str]) -> RegistryResponse:
        params = build_params(filters, limit=self.limit)

        async def _do_request(client: httpx.AsyncClient) -> Any:
            response = await client.get(self.base_url, params=params)
            response.raise_for_status()
            return response.json()

        try:
            if self._http_client is None:
                async with httpx.AsyncClient(timeout=30.0) as client:
                    payload = await _do_request(client)
            else:
                payload = await _do_request(self._http_client)
        except (httpx.HTTPError, ValueError) as exc:
            raise TransientProviderError("npi", str(exc) or type(exc).__name__) from exc

        if not isinstance(payload, dict):
            raise TransientProviderError("npi", "unexpected response shape")
        errors = payload.get("Errors") or []
        if errors:
            descriptions = "; ".join(
                str(error.get("description", error)) if isinstance(error, dict) else str(error)
                for error in errors
            )
            raise ConfigurationError(f"Registry rejected filters {dict(filters)}: {descriptions}")

        results = [item for item in payload.get("results") or [] if isinstance(item, dict)]
        return RegistryResponse(
            result_count=int(payload.get("result_count", len(results)) or 0),
            results=results,
        )


def _basic(result: Mapping[str, Any]) -> Mapping[str, Any]:
    basic = result.get("basic")
    return basic if isinstance(basic, Mapping) else {}


def _location_address(result: Mapping[str, Any]) -> Mapping[str, Any]:
    addresses = [item for item in result.get("addresses") or [] if isinstance(item, Mapping)]
    for address in addresses:
        if str(address.get("address_purpose", "")).upper() == "LOCATION":
            return address
    return addresses[0] if addresses else {}


def _taxonomies(result: Mapping[str, Any]) -> list[str]:
    entries = [item for item in result.get("taxonomies") or [] if isinstance(item, Mapping)]
    entries.sort(key=lambda item: not item.get("primary"))
    names: list[str] = []
    for entry in entries:
        desc = str(entry.get("desc") or "").strip()
        if desc and desc not in names:
            names.append(desc)
    return names


def display_name(result: Mapping[str, Any]) -> str:
    basic = _basic(result)
    if basic.get("organization_name"):
        return str(basic["organization_name"]).strip()
    parts = [basic.get("name_prefix"), basic.get("first_name"), basic.get("middle_name"), basic.get("last_name")]
    name = " ".join(str(part).strip() for part in parts if part and str(part).strip() not in ("--", ""))
    credential = str(basic.get("credential") or "").strip()
    return f"{name}, {credential}" if name and credential else name


def display_location(result: Mapping[str, Any]) -> str:
    address = _location_address(result)
    city = str(address.get("city") or "").strip()
    state = str(address.get("state") or "").strip()
    return ", ".join(part for part in (city, state) if part)


def choice_label(result: Mapping[str, Any]) -> str:
    """One line per ambiguous choice."""
    taxonomies = _taxonomies(result)
    parts = [
        str(result.get("number") or "?"),
        display_name(result) or UNKNOWN,
        taxonomies[0] if taxonomies else UNKNOWN,
        display_location(result) or UNKNOWN,
    ]
    return " | ".join(parts)


def npi_result_to_record(
    result: Mapping[str, Any],
    *,
    now: datetime | None = None,
) -> AggregatedRecord:
    """Record for a registry hit the narrowing session resolved to."""
    number = str(result.get("number") or "").strip()
    source_url = PROVIDER_VIEW_URL.format(number=number) if number else ""
    basic = _basic(result)
    taxonomies = _taxonomies(result)

    primary = {
        "institution": str(basic.get("organization_name") or "").strip() or UNKNOWN,
        "location": display_location(result) or UNKNOWN,
        "role": taxonomies[0] if taxonomies else UNKNOWN,
    }
    alternates = {name: [] for name in RECORD_FIELDS}
    alternates["role"] = taxonomies[1:]

    return AggregatedRecord(
        subject_name=display_name(result) or UNKNOWN,
        primary=primary,
        alternates=alternates,
        confidence=1.0,
        sources=[source_url] if source_url else [],
        provenance={name: source_url for name, value in primary.items() if value != UNKNOWN and source_url},
        identifiers={"npi": number} if number else {},
        factors=["single registry match after progressive narrowing"],
        generated_at=now or datetime.now(timezone.utc),
    )
