"""Shared ingestion data types."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Optional

from newsharvest.ingestion.url_utils import parse_seen_date


@dataclass(frozen=True)
class WeightedTerm:
    """Topic term with a relevance weight (higher first)."""

    name: str
    weight: float = 1.0


@dataclass(frozen=True)
class DomainRule:
    domain: str
    rule: str  # "allow" | "block"


@dataclass(frozen=True)
class Candidate:
    """Normalized candidate article returned by the article index (pre-scrape)."""

    url: str
    title: Optional[str] = None
    seen_date: Optional[str] = None
    domain: Optional[str] = None
    language: Optional[str] = None
    country: Optional[str] = None
    raw: Optional[Dict[str, Any]] = None

    @property
    def seen_at(self) -> Optional[datetime]:
        return parse_seen_date(self.seen_date)

    def metadata(self) -> Dict[str, Any]:
        return {
            "title": self.title,
            "domain": self.domain,
            "language": self.language,
            "sourcecountry": self.country,
            "seendate": self.seen_date,
        }
