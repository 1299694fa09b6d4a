"""Run query batches against the article index and merge the results."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Callable, Iterable, List, Optional, Sequence

from newsharvest.config import GDELT_MAX_RECORDS_CAP, QueryOverrides
from newsharvest.errors import UpstreamError
from newsharvest.ingestion.article_types import Candidate, DomainRule, WeightedTerm
from newsharvest.ingestion.gdelt_client import GDELTClient, QueryParams
from newsharvest.ingestion.locales import language_name, region_code
from newsharvest.ingestion.query_builder import DEFAULT_MAX_TERM_CHARS, build_queries
from newsharvest.ingestion.url_utils import domain_matches, is_http_url

logger = logging.getLogger(__name__)


@dataclass
class AggregationResult:
    candidates: List[Candidate] = field(default_factory=list)
    found: int = 0
    batches_total: int = 0
    batches_failed: int = 0

    @property
    def upstream_unavailable(self) -> bool:
        """Every batch failed, so an empty result says nothing about matches."""
        return self.batches_total > 0 and self.batches_failed == self.batches_total


def apply_locale_filter(
    candidates: Iterable[Candidate],
    languages: Sequence[str],
    regions: Sequence[str],
) -> List[Candidate]:
    """Drop candidates whose reported language/country is outside the targets.

    Candidates that report no language (or no country) are kept for that check.
    """
    items = list(candidates)
    lang_names = [language_name(code) for code in languages if code]
    region_codes = [code.strip().upper() for code in regions if code]
    if not lang_names and not region_codes:
        return items

    out: List[Candidate] = []
    for c in items:
        if lang_names and c.language:
            reported = c.language.lower()
            if not any(name in reported for name in lang_names):
                continue
        if region_codes and c.country:
            reported_code = region_code(c.country)
            if reported_code not in region_codes and c.country.strip().upper() not in region_codes:
                continue
        out.append(c)
    return out


def apply_domain_filter(candidates: Iterable[Candidate], rules: Sequence[DomainRule]) -> List[Candidate]:
    """Allow-list when any allow rule exists; block rules always win."""
    items = list(candidates)
    if not rules:
        return items
    allowed = [r.domain for r in rules if r.rule == "allow"]
    blocked = [r.domain for r in rules if r.rule == "block"]

    out: List[Candidate] = []
    for c in items:
        if not c.domain:
            if not allowed:
                out.append(c)
            continue
        if any(domain_matches(c.domain, b) for b in blocked):
            continue
        if allowed and not any(domain_matches(c.domain, a) for a in allowed):
            continue
        out.append(c)
    return out


class CandidateAggregator:
    def __init__(
        self,
        client: GDELTClient,
        *,
        max_term_chars: int = DEFAULT_MAX_TERM_CHARS,
        batch_delay: float = 5.0,
        max_records_cap: int = GDELT_MAX_RECORDS_CAP,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.client = client
        self.max_term_chars = max_term_chars
        self.batch_delay = batch_delay
        self.max_records_cap = max_records_cap
        self._sleep = sleep

    def collect(
        self,
        *,
        terms: Sequence[WeightedTerm],
        languages: Sequence[str] = (),
        regions: Sequence[str] = (),
        domain_rules: Sequence[DomainRule] = (),
        max_units: int,
        overrides: Optional[QueryOverrides] = None,
        max_article_age: Optional[str] = None,
    ) -> AggregationResult:
        overrides = overrides or QueryOverrides()
        batches = build_queries(terms, languages, regions, max_term_chars=self.max_term_chars)

        max_records = min(max(1, max_units), self.max_records_cap)
        if overrides.max_records is not None:
            max_records = min(max_records, overrides.max_records)
        timespan = max_article_age or overrides.timespan

        result = AggregationResult(batches_total=len(batches))
        merged: List[Candidate] = []
        seen_urls = set()

        for i, batch in enumerate(batches, 1):
            if i > 1 and self.batch_delay > 0:
                self._sleep(self.batch_delay)
            params = QueryParams(query=batch.query, max_records=max_records, timespan=timespan)
            try:
                articles = self.client.search(params)
            except UpstreamError as e:
                result.batches_failed += 1
                logger.error(f"[gdelt] Batch {i}/{len(batches)} failed: {e}")
                continue
            for a in articles:
                if a.url in seen_urls:
                    continue
                seen_urls.add(a.url)
                merged.append(a)
            logger.info(f"[gdelt] Batch {i}/{len(batches)}: {len(articles)} article(s), {len(merged)} unique so far")

        filtered = [c for c in merged if is_http_url(c.url)]
        before = len(filtered)
        filtered = apply_locale_filter(filtered, languages, regions)
        if len(filtered) != before:
            logger.info(f"[gdelt] Locale filter: {before} -> {len(filtered)}")
        before = len(filtered)
        filtered = apply_domain_filter(filtered, domain_rules)
        if len(filtered) != before:
            logger.info(f"[gdelt] Domain filter: {before} -> {len(filtered)}")

        result.found = len(filtered)
        result.candidates = filtered[: max(0, max_units)]
        return result
