from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

UNKNOWN = "unknown"

# Output fields shared by candidates and records; each has a same-named Query hint.
RECORD_FIELDS: tuple[str, ...] = ("institution", "location", "role")


# --- Requests ---


class Query(BaseModel):
    """The entity being searched for. Only ``name`` is required."""

    model_config = ConfigDict(frozen=True, str_strip_whitespace=True)

    name: str
    role: str | None = None  # specialty or role
    institution: str | None = None
    location: str | None = None
    handle: str | None = None  # external cross-reference, e.g. an X username

    def hint(self, field_name: str) -> str | None:
        value = getattr(self, field_name, None)
        return value or None


# --- Responses ---


class AggregatedRecord(BaseModel):
    """Final reconciled answer for one query run. Never mutated after creation."""

    model_config = ConfigDict(frozen=True)

    subject_name: str
    primary: dict[str, str]
    alternates: dict[str, list[str]]
    confidence: float = Field(ge=0.0, le=1.0)
    sources: list[str]
    provenance: dict[str, str] = Field(default_factory=dict)  # field -> backing URL
    identifiers: dict[str, str] = Field(default_factory=dict)
    factors: list[str] = Field(default_factory=list)
    generated_at: datetime

    @property
    def institution(self) -> str:
        return self.primary.get("institution", UNKNOWN)

    @property
    def location(self) -> str:
        return self.primary.get("location", UNKNOWN)

    @property
    def role(self) -> str:
        return self.primary.get("role", UNKNOWN)

    @property
    def found(self) -> bool:
        return self.confidence > 0.0
