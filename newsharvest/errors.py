"""Error taxonomy for the ingestion pipeline."""

from __future__ import annotations

from typing import Any, Optional


class NewsharvestError(Exception):
    """Base class for pipeline errors."""


class DatabaseError(NewsharvestError):
    """Storage operation failed."""


class ThemeNotFound(NewsharvestError):
    pass


class JobNotFound(NewsharvestError):
    pass


class ConfigMissing(NewsharvestError):
    """Theme has no active config; the run is aborted before a job exists."""


class BudgetExhausted(NewsharvestError):
    """Daily extraction budget is used up before any work started."""

    def __init__(self, used: int, limit: int):
        super().__init__(f"Daily extraction budget exceeded ({used}/{limit})")
        self.used = used
        self.limit = limit


class UpstreamError(NewsharvestError):
    """Candidate source returned an error, a bad payload, or timed out."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class ExtractionFailure(NewsharvestError):
    """A single URL could not be fetched or produced no usable text."""

    def __init__(self, message: str, result: Optional[Any] = None):
        super().__init__(message)
        self.result = result


class IngestionError(NewsharvestError):
    """Coordinator-level fault after the ingestion job was created."""

    def __init__(self, message: str, job_id: Optional[str] = None):
        super().__init__(message)
        self.job_id = job_id
