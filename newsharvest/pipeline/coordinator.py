"""Ingestion run orchestration.

Job lifecycle: ``pending -> running -> completed | failed``.

1. Resolve theme, active config, terms and domain rules. A missing theme or
   config aborts before any job row exists; so does an exhausted budget.
2. ``maxUnits = min(remaining budget, configured daily ceiling)`` via
   ``BudgetGate.admit``. The reported remaining budget subtracts the units
   just dispatched.
3. Collect up to ``maxUnits`` candidates from the aggregator.
4. Zero candidates: the job completes at once with zero units.
5. Otherwise create the units and flip the job to running in one
   transaction, then dispatch one worker per unit without waiting.

Completion is driven by the workers (``JobStatusTracker.check_completion``).
"""

from __future__ import annotations

import logging
from typing import Any, Optional

from newsharvest.errors import BudgetExhausted, ConfigMissing, IngestionError, ThemeNotFound
from newsharvest.ingestion.aggregator import AggregationResult, CandidateAggregator
from newsharvest.pipeline.budget import BudgetGate
from newsharvest.pipeline.dispatch import ThreadDispatcher
from newsharvest.pipeline.models import TRIGGER_TYPES, CompletionReason, JobStatus, Theme, ThemeConfig, TriggerResult
from newsharvest.pipeline.status import JobStatusTracker
from newsharvest.pipeline.worker import ExtractionWorker, UnitContext
from newsharvest.storage.job_store import JobStore

logger = logging.getLogger(__name__)


class IngestionCoordinator:
    def __init__(
        self,
        store: JobStore,
        aggregator: CandidateAggregator,
        budget: BudgetGate,
        worker: ExtractionWorker,
        tracker: JobStatusTracker,
        *,
        dispatcher: Optional[Any] = None,
    ):
        self.store = store
        self.aggregator = aggregator
        self.budget = budget
        self.worker = worker
        self.tracker = tracker
        self.dispatcher = dispatcher or ThreadDispatcher()

    def resolve_theme(self, theme_ref: str) -> Theme:
        theme = self.store.get_theme(theme_ref)
        if theme is None:
            raise ThemeNotFound(f"Theme {theme_ref!r} not found")
        return theme

    def resolve_config(self, theme: Theme) -> ThemeConfig:
        config = self.store.get_active_config(theme.id)
        if config is None:
            raise ConfigMissing(f"Theme {theme.slug!r} has no active config")
        return config

    def trigger(self, theme_ref: str, trigger_type: str = "manual") -> TriggerResult:
        if trigger_type not in TRIGGER_TYPES:
            raise ValueError(f"Unknown trigger type {trigger_type!r} (expected one of {', '.join(TRIGGER_TYPES)})")
        theme = self.resolve_theme(theme_ref)
        config = self.resolve_config(theme)
        terms = self.store.get_topic_terms(theme.id)
        rules = self.store.get_domain_rules(theme.id)

        max_units = self.budget.admit(theme.id, config.daily_budget, config.daily_budget)
        if max_units <= 0:
            usage = self.budget.usage(theme.id, config.daily_budget)
            logger.info(f"[ingest] theme={theme.slug} budget exhausted ({usage.used}/{usage.limit})")
            raise BudgetExhausted(usage.used, usage.limit)

        job = self.store.create_ingestion_job(theme.id, trigger_type, config.version)
        logger.info(f"[ingest] theme={theme.slug} job={job.id} config=v{config.version} max_units={max_units}")

        try:
            found = self.aggregator.collect(
                terms=terms,
                languages=config.target_languages,
                regions=config.target_regions,
                domain_rules=rules,
                max_units=max_units,
                overrides=config.overrides,
                max_article_age=config.max_article_age,
            )
            if not found.candidates:
                return self._finish_empty(job.id, found, max_units)

            units = self.store.start_ingestion_job(job.id, found.candidates[:max_units])
        except Exception as e:
            logger.exception(f"[ingest] job={job.id} failed before dispatch: {e}")
            self.store.finish_ingestion_job(
                job.id,
                JobStatus.FAILED.value,
                reason=CompletionReason.COORDINATOR_FAULT.value,
                error=str(e),
            )
            raise IngestionError(f"Ingestion failed: {e}", job_id=job.id) from e

        ctx = UnitContext(theme_id=theme.id, daily_budget=config.daily_budget)
        for unit in units:
            self.dispatcher.submit(self.worker.run, unit, ctx)
        logger.info(f"[ingest] job={job.id} dispatched {len(units)} unit(s) ({found.found} found)")

        return TriggerResult(
            ingestion_job_id=job.id,
            status=JobStatus.RUNNING.value,
            urls_found=found.found,
            urls_processed=len(units),
            remaining_budget=max(0, max_units - len(units)),
            batches_total=found.batches_total,
            batches_failed=found.batches_failed,
        )

    def _finish_empty(self, job_id: str, found: AggregationResult, remaining: int) -> TriggerResult:
        if found.upstream_unavailable:
            reason = CompletionReason.UPSTREAM_UNAVAILABLE.value
            logger.warning(f"[ingest] job={job_id} all {found.batches_total} batch(es) failed upstream")
        else:
            reason = CompletionReason.NO_CANDIDATES.value
        self.store.finish_ingestion_job(job_id, JobStatus.COMPLETED.value, reason=reason)
        logger.info(f"[ingest] job={job_id} completed with zero units ({reason})")
        return TriggerResult(
            ingestion_job_id=job_id,
            status=JobStatus.COMPLETED.value,
            urls_found=found.found,
            urls_processed=0,
            remaining_budget=remaining,
            completion_reason=reason,
            batches_total=found.batches_total,
            batches_failed=found.batches_failed,
        )
