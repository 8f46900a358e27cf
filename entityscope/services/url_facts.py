"""Domain -> institution/location lookup table.

The table lives in ``entityscope/data/url_facts.json`` so entries can be
added without code changes; ``settings.url_facts_path`` points at a
replacement file.
"""
from __future__ import annotations

import json
from pathlib import Path

from pydantic import BaseModel, TypeAdapter, ValidationError

from entityscope.config import settings
from entityscope.errors import ConfigurationError
from entityscope.tools.web_utils import normalize_host

BUNDLED_FACTS_PATH = Path(__file__).resolve().parents[1] / "data" / "url_facts.json"


class UrlFact(BaseModel):
    domain: str
    institution: str = ""
    location: str = ""


_FACTS_ADAPTER = TypeAdapter(list[UrlFact])


class UrlFactTable:
    def __init__(self, facts: list[UrlFact]):
        # Longest domain first so a subdomain entry beats its parent.
        self._facts = sorted(
            (fact for fact in facts if fact.domain.strip()),
            key=lambda fact: len(fact.domain),
            reverse=True,
        )

    def __len__(self) -> int:
        return len(self._facts)

    @classmethod
    def load(cls, path: str | Path | None = None) -> "UrlFactTable":
        source = Path(path or settings.url_facts_path or BUNDLED_FACTS_PATH)
        try:
            raw = source.read_text(encoding="utf-8")
            facts = _FACTS_ADAPTER.validate_python(json.loads(raw))
        except (OSError, json.JSONDecodeError, ValidationError) as exc:
            raise ConfigurationError(f"Cannot load URL fact table {source}: {exc}") from exc
        return cls(facts)

    def lookup(self, url: str) -> UrlFact | None:
        host = normalize_host(url)
        if not host:
            return None
        for fact in self._facts:
            domain = fact.domain.lower().strip()
            if host == domain or host.endswith("." + domain):
                return fact
        return None
