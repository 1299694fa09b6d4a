"""Job status derivation and the race-safe completion check."""

from __future__ import annotations

import logging
from typing import Dict, Optional

from newsharvest.errors import JobNotFound
from newsharvest.pipeline.models import CompletionReason, IngestionJob, JobStatus, JobStatusView, UnitStatus
from newsharvest.storage.job_store import JobStore

logger = logging.getLogger(__name__)

# Floors so a polling progress bar never sits at 0% once work exists
QUEUED_FLOOR = 2
ACTIVE_FLOOR = 5


def compute_progress(job_status: str, counts: Dict[str, int]) -> int:
    if job_status in (JobStatus.COMPLETED.value, JobStatus.FAILED.value):
        return 100
    total = sum(counts.values())
    if total == 0:
        return ACTIVE_FLOOR if job_status == JobStatus.RUNNING.value else 0
    done = counts.get("extracted", 0) + counts.get("failed", 0) + counts.get("skipped", 0)
    floor = ACTIVE_FLOOR if counts.get("scraping", 0) else QUEUED_FLOOR
    if done == 0:
        return floor
    # 100 is reserved for the terminal job state
    return max(floor, min(round(done / total * 100), 99))


def status_message(job: IngestionJob, counts: Dict[str, int]) -> str:
    total = sum(counts.values())
    extracted = counts.get("extracted", 0)
    failed = counts.get("failed", 0)
    scraping = counts.get("scraping", 0)
    done = extracted + failed + counts.get("skipped", 0)

    if job.status == JobStatus.FAILED.value:
        return f"Extraction failed: {job.error or 'unknown error'}"
    if job.status == JobStatus.COMPLETED.value:
        if job.completion_reason == CompletionReason.UPSTREAM_UNAVAILABLE.value:
            return "Extraction finished: candidate source unavailable, no URLs fetched"
        msg = f"Extraction finished: {extracted} document(s) extracted"
        if failed:
            msg += f", {failed} failure(s)"
        return msg
    if job.status == JobStatus.PENDING.value:
        return "Preparing extraction..."

    if total == 0:
        return "Querying source and preparing URLs..."
    if done == 0 and scraping == 0:
        return f"Preparing {total} URL(s) for extraction..."
    if scraping:
        return f"Extracting {scraping} article(s)... {done} of {total} done"
    if done < total:
        return f"Processing: {done} of {total} done"
    return "Finalizing..."


class JobStatusTracker:
    def __init__(self, store: JobStore):
        self.store = store

    def check_completion(self, job_id: str) -> bool:
        """Complete the job if every unit is terminal. Safe to call concurrently."""
        flipped = self.store.complete_job_if_done(job_id)
        if flipped:
            counts = self.store.unit_status_counts(job_id)
            logger.info(
                f"[ingest] Job {job_id} completed: extracted={counts['extracted']} "
                f"skipped={counts['skipped']} failed={counts['failed']}"
            )
        return flipped

    def status(self, job_id: str, theme_id: Optional[str] = None) -> JobStatusView:
        job = self.store.get_ingestion_job(job_id)
        if job is None or (theme_id is not None and job.theme_id != theme_id):
            raise JobNotFound(f"Ingestion job {job_id} not found")
        counts = self.store.unit_status_counts(job_id)
        return JobStatusView(
            job_id=job.id,
            status=job.status,
            progress=compute_progress(job.status, counts),
            total_units=sum(counts.values()),
            extracted_units=counts[UnitStatus.EXTRACTED.value],
            skipped_units=counts[UnitStatus.SKIPPED.value],
            failed_units=counts[UnitStatus.FAILED.value],
            scraping_units=counts[UnitStatus.SCRAPING.value],
            pending_units=counts[UnitStatus.PENDING.value],
            status_message=status_message(job, counts),
            created_at=job.created_at,
            completed_at=job.completed_at,
            completion_reason=job.completion_reason,
        )
