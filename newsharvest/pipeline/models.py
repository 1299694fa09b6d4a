"""Pipeline records: themes, configs, jobs, units, documents, budget rows."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from newsharvest.config import QueryOverrides


class JobStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class UnitStatus(str, Enum):
    PENDING = "pending"
    SCRAPING = "scraping"
    EXTRACTED = "extracted"
    FAILED = "failed"
    SKIPPED = "skipped"


TERMINAL_JOB_STATUSES = (JobStatus.COMPLETED.value, JobStatus.FAILED.value)
TERMINAL_UNIT_STATUSES = (UnitStatus.EXTRACTED.value, UnitStatus.FAILED.value, UnitStatus.SKIPPED.value)


class CompletionReason(str, Enum):
    ALL_UNITS_TERMINAL = "all_units_terminal"
    NO_CANDIDATES = "no_candidates"
    UPSTREAM_UNAVAILABLE = "upstream_unavailable"
    COORDINATOR_FAULT = "coordinator_fault"


class TriggerType(str, Enum):
    MANUAL = "manual"
    SCHEDULED = "scheduled"


TRIGGER_TYPES = tuple(t.value for t in TriggerType)


@dataclass(frozen=True)
class Theme:
    id: str
    name: str
    slug: str
    description: Optional[str] = None
    created_at: Optional[datetime] = None


@dataclass(frozen=True)
class ThemeConfig:
    """Immutable config snapshot; edits create version N+1."""

    id: str
    theme_id: str
    version: int
    target_languages: List[str] = field(default_factory=list)
    target_regions: List[str] = field(default_factory=list)
    min_text_length: int = 500
    min_quality_score: float = 0.6
    daily_budget: int = 500
    hourly_rate_limit: Optional[int] = None
    max_article_age: Optional[str] = None
    query_overrides: Dict[str, Any] = field(default_factory=dict)
    created_at: Optional[datetime] = None

    @property
    def overrides(self) -> QueryOverrides:
        return QueryOverrides.from_raw(self.query_overrides)


@dataclass(frozen=True)
class IngestionJob:
    id: str
    theme_id: str
    status: str
    trigger_type: str
    config_version: Optional[int]
    created_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    completion_reason: Optional[str] = None
    error: Optional[str] = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_JOB_STATUSES


@dataclass(frozen=True)
class ScrapeJob:
    id: str
    ingestion_job_id: str
    url: str
    status: str
    canonical_url: Optional[str] = None
    seen_date: Optional[str] = None
    error: Optional[str] = None
    created_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_UNIT_STATUSES


@dataclass(frozen=True)
class NewDocument:
    theme_id: str
    scrape_job_id: str
    clean_text: str
    canonical_url: str
    source_domain: str
    extraction_method: str
    quality_score: float
    dedup_hash: str
    headline: Optional[str] = None
    published_at: Optional[datetime] = None
    scraped_at: Optional[datetime] = None

    @property
    def text_length(self) -> int:
        return len(self.clean_text)


@dataclass(frozen=True)
class DocumentSummary:
    id: str
    scrape_job_id: str
    headline: Optional[str]
    canonical_url: Optional[str]
    source_domain: Optional[str]
    published_at: Optional[datetime]
    scraped_at: Optional[datetime]
    extraction_method: str
    text_length: int
    quality_score: Optional[float]
    dedup_hash: str


@dataclass(frozen=True)
class ExtractionCommit:
    """Result of the atomic dedup-and-persist step."""

    status: str  # UnitStatus.EXTRACTED or UnitStatus.SKIPPED
    document_id: Optional[str] = None
    budget_counted: bool = False


@dataclass(frozen=True)
class BudgetUsage:
    theme_id: str
    day: date
    used: int
    limit: int

    @property
    def remaining(self) -> int:
        return max(0, self.limit - self.used)

    @property
    def percent_used(self) -> int:
        if self.limit <= 0:
            return 0
        return round(self.used / self.limit * 100)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "used": self.used,
            "limit": self.limit,
            "remaining": self.remaining,
            "percentUsed": self.percent_used,
        }


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


@dataclass(frozen=True)
class JobStatusView:
    """Polling view of one ingestion job, derived from stored unit statuses."""

    job_id: str
    status: str
    progress: int
    total_units: int
    extracted_units: int
    skipped_units: int
    failed_units: int
    scraping_units: int
    pending_units: int
    status_message: str
    created_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    completion_reason: Optional[str] = None

    @property
    def completed_units(self) -> int:
        return self.extracted_units + self.skipped_units

    def to_dict(self) -> Dict[str, Any]:
        return {
            "jobId": self.job_id,
            "status": self.status,
            "progress": self.progress,
            "totalUnits": self.total_units,
            "completedUnits": self.completed_units,
            "extractedUnits": self.extracted_units,
            "skippedUnits": self.skipped_units,
            "failedUnits": self.failed_units,
            "scrapingUnits": self.scraping_units,
            "pendingUnits": self.pending_units,
            "statusMessage": self.status_message,
            "createdAt": _iso(self.created_at),
            "completedAt": _iso(self.completed_at),
            "completionReason": self.completion_reason,
        }


@dataclass(frozen=True)
class TriggerResult:
    ingestion_job_id: str
    status: str
    urls_found: int
    urls_processed: int
    remaining_budget: int
    completion_reason: Optional[str] = None
    batches_total: int = 0
    batches_failed: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "ingestionJobId": self.ingestion_job_id,
            "status": self.status,
            "urlsFound": self.urls_found,
            "urlsProcessed": self.urls_processed,
            "remainingBudget": self.remaining_budget,
            "completionReason": self.completion_reason,
            "batchesTotal": self.batches_total,
            "batchesFailed": self.batches_failed,
        }
