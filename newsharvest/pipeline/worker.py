"""Per-unit extraction: fetch, extract, dedup, persist, notify.

Every path out of ``ExtractionWorker.run`` ends with a completion check on
the parent job, including unexpected exceptions. A unit is never left in
``scraping`` by a normal return or an exception; the outer deadline turns a
hung fetch into ``failed``.

The deadline wraps fetch and extraction, the only steps that wait on remote
hosts. The store calls before and after it are bounded by the store itself
(sqlite busy timeout, Postgres ``lock_timeout``); they are not run on the
deadline thread because an abandoned transaction could still commit after
the unit was marked failed.
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from dataclasses import dataclass
from typing import Callable, Optional

from newsharvest.errors import ExtractionFailure
from newsharvest.extraction.fulltext import (
    METHOD,
    MIN_TEXT_LENGTH,
    FulltextResult,
    content_fingerprint,
    fetch_and_extract,
)
from newsharvest.ingestion.url_utils import canonicalize_url, parse_seen_date, source_domain
from newsharvest.pipeline.budget import BudgetGate
from newsharvest.pipeline.models import NewDocument, ScrapeJob, UnitStatus
from newsharvest.pipeline.status import JobStatusTracker
from newsharvest.storage.job_store import JobStore, utcnow

logger = logging.getLogger(__name__)

FetchFn = Callable[..., FulltextResult]


@dataclass(frozen=True)
class UnitContext:
    theme_id: str
    daily_budget: int


class ExtractionWorker:
    def __init__(
        self,
        store: JobStore,
        budget: BudgetGate,
        tracker: JobStatusTracker,
        *,
        fetch: FetchFn = fetch_and_extract,
        fetch_timeout: float = 15.0,
        extraction_timeout: float = 30.0,
        max_bytes: int = 2_000_000,
        user_agent: str = "NewsHarvest/1.0",
        min_text_length: int = MIN_TEXT_LENGTH,
    ):
        self.store = store
        self.budget = budget
        self.tracker = tracker
        self.fetch = fetch
        self.fetch_timeout = fetch_timeout
        self.extraction_timeout = extraction_timeout
        self.max_bytes = max_bytes
        self.user_agent = user_agent
        self.min_text_length = min_text_length

    def run(self, unit: ScrapeJob, ctx: UnitContext) -> None:
        try:
            self._process(unit, ctx)
        except ExtractionFailure as e:
            self._fail(unit, str(e), e.result)
        except Exception as e:
            logger.exception(f"[worker] Unit {unit.id} crashed: {e}")
            self._fail(unit, f"worker_error: {e}")
        finally:
            try:
                self.tracker.check_completion(unit.ingestion_job_id)
            except Exception as e:
                logger.error(f"[worker] Completion check for job {unit.ingestion_job_id} failed: {e}")

    def _process(self, unit: ScrapeJob, ctx: UnitContext) -> None:
        self.store.mark_unit_scraping(unit.id)
        result = self._extract_with_deadline(unit.url)

        if not result.ok:
            raise ExtractionFailure(result.error or result.status, result)

        text = result.text or ""
        self.store.record_attempt(
            unit.id,
            method=result.method,
            status="ok",
            duration_ms=result.duration_ms,
            text_length=len(text),
        )
        published_at = result.published_at or parse_seen_date(unit.seen_date)
        doc = NewDocument(
            theme_id=ctx.theme_id,
            scrape_job_id=unit.id,
            clean_text=text,
            headline=result.headline,
            canonical_url=canonicalize_url(unit.url),
            source_domain=source_domain(unit.url),
            published_at=published_at,
            scraped_at=utcnow(),
            extraction_method=result.method,
            quality_score=result.confidence,
            dedup_hash=content_fingerprint(text),
        )
        commit = self.store.commit_extraction(
            unit.id,
            doc,
            day=self.budget.today(),
            limit=ctx.daily_budget,
            hard_cap=self.budget.hard_cap,
        )
        if commit.status == UnitStatus.SKIPPED.value:
            logger.info(f"[worker] Duplicate content, skipped {unit.url}")
        else:
            logger.info(f"[worker] Extracted {len(text)} chars from {unit.url}")

    def _extract_with_deadline(self, url: str) -> FulltextResult:
        """Run fetch+extract under the outer deadline, independent of the fetch timeout."""
        executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="extract")
        future = executor.submit(
            self.fetch,
            url,
            timeout=self.fetch_timeout,
            max_bytes=self.max_bytes,
            user_agent=self.user_agent,
            min_text_length=self.min_text_length,
        )
        try:
            return future.result(timeout=self.extraction_timeout)
        except FutureTimeout:
            future.cancel()
            return FulltextResult(
                text=None,
                confidence=0.0,
                status="timeout",
                error=f"extraction_timeout:{self.extraction_timeout:g}s",
                duration_ms=int(self.extraction_timeout * 1000),
            )
        finally:
            # Never join a hung fetch; its result is discarded
            executor.shutdown(wait=False)

    def _fail(self, unit: ScrapeJob, error: str, result: Optional[FulltextResult] = None) -> None:
        # Terminal status first; the attempt log is best effort
        try:
            self.store.mark_unit_terminal(unit.id, UnitStatus.FAILED.value, error=error)
        except Exception as e:
            logger.error(f"[worker] Could not mark unit {unit.id} failed: {e}")
        logger.warning(f"[worker] Unit failed for {unit.url}: {error}")
        try:
            self.store.record_attempt(
                unit.id,
                method=result.method if result else METHOD,
                status=result.status if result else "error",
                duration_ms=result.duration_ms if result else None,
                error=error,
            )
        except Exception as e:
            logger.error(f"[worker] Could not record failed attempt for unit {unit.id}: {e}")
