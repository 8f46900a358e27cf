"""Exception taxonomy.

Only two conditions are exceptional. A missing answer is a zero-confidence
record, a rejected candidate is a verification factor, and a registry that
runs out of refinement dimensions ends in the ``ambiguous`` session state.
"""
from __future__ import annotations


class EntityScopeError(Exception):
    """Base class for engine errors."""


class ConfigurationError(EntityScopeError, ValueError):
    """Malformed input or settings, rejected before any network call."""


class TransientProviderError(EntityScopeError):
    """A search, fetch, extraction or registry call failed."""

    def __init__(self, provider: str, message: str):
        super().__init__(f"{provider}: {message}")
        self.provider = provider
