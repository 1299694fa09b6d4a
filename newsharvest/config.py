"""Runtime settings loaded from the environment (.env supported)."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional

from dotenv import load_dotenv

logger = logging.getLogger(__name__)

GDELT_MAX_RECORDS_CAP = 250


def _get_str(name: str, default: str) -> str:
    value = os.environ.get(name)
    if value is None or not value.strip():
        return default
    return value.strip()


def _get_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning(f"Ignoring non-integer {name}={raw!r}, using {default}")
        return default


def _get_float(name: str, default: float) -> float:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError:
        logger.warning(f"Ignoring non-numeric {name}={raw!r}, using {default}")
        return default


def _get_bool(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class Settings:
    store_backend: str = "sqlite"
    db_path: str = "newsharvest.db"
    pg_dsn: str = ""

    gdelt_api_url: str = "https://api.gdeltproject.org/api/v2/doc/doc"
    gdelt_timeout: float = 30.0
    gdelt_max_retries: int = 3
    gdelt_backoff: float = 1.0
    gdelt_batch_delay: float = 5.0
    gdelt_max_records: int = GDELT_MAX_RECORDS_CAP
    query_max_term_chars: int = 200

    fetch_timeout: float = 15.0
    extraction_timeout: float = 30.0
    fetch_max_bytes: int = 2_000_000
    user_agent: str = "Mozilla/5.0 (compatible; NewsHarvest/1.0; +https://example.com/bot)"

    budget_hard_cap: bool = True
    log_level: str = "INFO"


def load_settings() -> Settings:
    """Build settings from .env and the process environment."""
    load_dotenv()
    defaults = Settings()
    return Settings(
        store_backend=_get_str("NEWSHARVEST_STORE", defaults.store_backend).lower(),
        db_path=_get_str("NEWSHARVEST_DB_PATH", defaults.db_path),
        pg_dsn=_get_str("PG_DSN", defaults.pg_dsn),
        gdelt_api_url=_get_str("GDELT_API_URL", defaults.gdelt_api_url),
        gdelt_timeout=_get_float("GDELT_TIMEOUT_SEC", defaults.gdelt_timeout),
        gdelt_max_retries=max(1, _get_int("GDELT_MAX_RETRIES", defaults.gdelt_max_retries)),
        gdelt_backoff=_get_float("GDELT_BACKOFF_SEC", defaults.gdelt_backoff),
        gdelt_batch_delay=_get_float("GDELT_BATCH_DELAY_SEC", defaults.gdelt_batch_delay),
        gdelt_max_records=min(GDELT_MAX_RECORDS_CAP, max(1, _get_int("GDELT_MAX_RECORDS", defaults.gdelt_max_records))),
        query_max_term_chars=max(10, _get_int("QUERY_MAX_TERM_CHARS", defaults.query_max_term_chars)),
        fetch_timeout=_get_float("FETCH_TIMEOUT_SEC", defaults.fetch_timeout),
        extraction_timeout=_get_float("EXTRACTION_TIMEOUT_SEC", defaults.extraction_timeout),
        fetch_max_bytes=_get_int("FETCH_MAX_BYTES", defaults.fetch_max_bytes),
        user_agent=_get_str("USER_AGENT", defaults.user_agent),
        budget_hard_cap=_get_bool("BUDGET_HARD_CAP", defaults.budget_hard_cap),
        log_level=_get_str("LOG_LEVEL", defaults.log_level).upper(),
    )


@dataclass(frozen=True)
class QueryOverrides:
    """Recognized per-theme query overrides.

    Only ``timespan`` and ``maxrecords`` are honoured. Anything else in the
    stored override map is reported and dropped.
    """

    timespan: Optional[str] = None
    max_records: Optional[int] = None

    RECOGNIZED_KEYS = ("timespan", "maxrecords")

    @classmethod
    def from_raw(cls, raw: Optional[Mapping[str, Any]]) -> "QueryOverrides":
        if not raw:
            return cls()
        unknown: List[str] = sorted(k for k in raw if k not in cls.RECOGNIZED_KEYS)
        if unknown:
            logger.warning(f"[config] Ignoring unrecognized query override keys: {', '.join(unknown)}")

        timespan = raw.get("timespan")
        if timespan is not None:
            timespan = str(timespan).strip() or None

        max_records = raw.get("maxrecords")
        if max_records is not None:
            try:
                max_records = min(GDELT_MAX_RECORDS_CAP, max(1, int(max_records)))
            except (TypeError, ValueError):
                logger.warning(f"[config] Ignoring non-integer maxrecords override {max_records!r}")
                max_records = None
        return cls(timespan=timespan, max_records=max_records)

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {}
        if self.timespan:
            out["timespan"] = self.timespan
        if self.max_records is not None:
            out["maxrecords"] = self.max_records
        return out
