"""Candidate materialization and initial ordering.

A title's media entry stores sources as (provider_id, provider_url). Xtream
sources are relative paths that must be joined with each of the provider's
stream base URLs; AGTV sources are absolute.
"""

import logging
from dataclasses import dataclass

from providers.base import ProviderConfig

logger = logging.getLogger(__name__)

TYPE_RANK = {"xtream": 0, "agtv": 1}
UNKNOWN_TYPE_RANK = 999
DEFAULT_PRIORITY = 999


@dataclass(frozen=True)
class SourceCandidate:
    provider_id: str
    provider: ProviderConfig
    url: str
    provider_type: str

    @property
    def priority(self) -> int:
        return self.provider.priority if self.provider.priority is not None else DEFAULT_PRIORITY


@dataclass(frozen=True)
class ScoredCandidate:
    candidate: SourceCandidate
    score: float

    @property
    def provider_id(self) -> str:
        return self.candidate.provider_id


def _is_absolute(url: str) -> bool:
    return url.startswith(("http://", "https://"))


def materialize(sources, directory) -> list[SourceCandidate]:
    """Turn stored sources into probe-able candidates.

    Sources of unknown, disabled or deleted providers and sources without a
    URL are dropped; duplicates (same provider and URL) are collapsed.
    """
    candidates = []
    seen = set()
    for source in sources:
        provider_id = source.get("provider_id")
        url = source.get("provider_url")
        if not provider_id or not url:
            continue
        provider = directory.get(provider_id)
        if provider is None or not provider.usable:
            continue

        if _is_absolute(url):
            urls = [url]
        elif url.startswith("/") and provider.streams_urls:
            urls = [base.rstrip("/") + url for base in provider.streams_urls if base]
        else:
            logger.warning("Provider %s source %s is relative and has no stream base URL",
                           provider_id, url)
            urls = [url]

        for full_url in urls:
            key = (provider_id, full_url)
            if key in seen:
                continue
            seen.add(key)
            candidates.append(SourceCandidate(provider_id, provider, full_url, provider.type))
    return candidates


def initial_order(candidates: list[SourceCandidate]) -> list[SourceCandidate]:
    """Type rank, then Xtream availability (desc), then priority, then provider id."""
    def key(c: SourceCandidate):
        availability = c.provider.availability if c.provider_type == "xtream" else 0.0
        return (
            TYPE_RANK.get(c.provider_type, UNKNOWN_TYPE_RANK),
            -availability,
            c.priority,
            c.provider_id,
        )
    return sorted(candidates, key=key)
