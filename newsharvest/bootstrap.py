"""Wire settings into a store and a ready coordinator."""

from __future__ import annotations

import logging
from typing import Any, Optional

from newsharvest.config import Settings
from newsharvest.ingestion.aggregator import CandidateAggregator
from newsharvest.ingestion.gdelt_client import GDELTClient
from newsharvest.pipeline.budget import BudgetGate
from newsharvest.pipeline.coordinator import IngestionCoordinator
from newsharvest.pipeline.status import JobStatusTracker
from newsharvest.pipeline.worker import ExtractionWorker
from newsharvest.storage.job_store import JobStore
from newsharvest.storage.postgres_store import PostgresJobStore
from newsharvest.storage.sqlite_store import SqliteJobStore

logger = logging.getLogger(__name__)


def configure_logging(settings: Settings) -> None:
    logging.basicConfig(
        level=getattr(logging, settings.log_level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def build_store(settings: Settings) -> JobStore:
    if settings.store_backend == "postgres":
        return PostgresJobStore(settings.pg_dsn)
    if settings.store_backend != "sqlite":
        raise ValueError(f"Unknown NEWSHARVEST_STORE {settings.store_backend!r} (expected sqlite or postgres)")
    return SqliteJobStore(settings.db_path)


def build_coordinator(
    settings: Settings,
    store: JobStore,
    *,
    dispatcher: Optional[Any] = None,
    client: Optional[GDELTClient] = None,
) -> IngestionCoordinator:
    client = client or GDELTClient(
        settings.gdelt_api_url,
        timeout=settings.gdelt_timeout,
        max_attempts=settings.gdelt_max_retries,
        backoff=settings.gdelt_backoff,
        user_agent=settings.user_agent,
    )
    aggregator = CandidateAggregator(
        client,
        max_term_chars=settings.query_max_term_chars,
        batch_delay=settings.gdelt_batch_delay,
        max_records_cap=settings.gdelt_max_records,
    )
    budget = BudgetGate(store, hard_cap=settings.budget_hard_cap)
    tracker = JobStatusTracker(store)
    worker = ExtractionWorker(
        store,
        budget,
        tracker,
        fetch_timeout=settings.fetch_timeout,
        extraction_timeout=settings.extraction_timeout,
        max_bytes=settings.fetch_max_bytes,
        user_agent=settings.user_agent,
    )
    return IngestionCoordinator(store, aggregator, budget, worker, tracker, dispatcher=dispatcher)
