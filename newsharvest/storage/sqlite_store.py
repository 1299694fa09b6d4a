"""SQLite-backed job store (default backend, used by the tests).

Runs in WAL mode with foreign keys on so theme deletion cascades. Every write
transaction is opened with ``BEGIN IMMEDIATE``: concurrent extraction threads
queue on the write lock instead of failing a lock upgrade halfway through.
"""

from __future__ import annotations

import json
import logging
import sqlite3
import time
from contextlib import contextmanager
from datetime import date, datetime
from pathlib import Path
from typing import Any, Optional

from newsharvest.errors import DatabaseError
from newsharvest.storage.job_store import JobStore

logger = logging.getLogger(__name__)

SCHEMA_STATEMENTS = [
    """
    CREATE TABLE IF NOT EXISTS themes (
        id TEXT PRIMARY KEY,
        name TEXT NOT NULL,
        slug TEXT NOT NULL UNIQUE,
        description TEXT,
        created_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS theme_configs (
        id TEXT PRIMARY KEY,
        theme_id TEXT NOT NULL,
        version INTEGER NOT NULL,
        target_languages TEXT NOT NULL DEFAULT '[]',
        target_regions TEXT NOT NULL DEFAULT '[]',
        min_text_length INTEGER NOT NULL DEFAULT 500,
        min_quality_score REAL NOT NULL DEFAULT 0.6,
        daily_budget INTEGER NOT NULL DEFAULT 500,
        hourly_rate_limit INTEGER,
        max_article_age TEXT,
        query_overrides TEXT NOT NULL DEFAULT '{}',
        created_at TEXT NOT NULL,
        FOREIGN KEY (theme_id) REFERENCES themes(id) ON DELETE CASCADE,
        UNIQUE(theme_id, version)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS topic_terms (
        id TEXT PRIMARY KEY,
        theme_id TEXT NOT NULL,
        name TEXT NOT NULL,
        weight REAL NOT NULL DEFAULT 1.0,
        position INTEGER NOT NULL DEFAULT 0,
        FOREIGN KEY (theme_id) REFERENCES themes(id) ON DELETE CASCADE
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS domain_rules (
        id TEXT PRIMARY KEY,
        theme_id TEXT NOT NULL,
        domain TEXT NOT NULL,
        rule TEXT NOT NULL CHECK (rule IN ('allow', 'block')),
        FOREIGN KEY (theme_id) REFERENCES themes(id) ON DELETE CASCADE,
        UNIQUE(theme_id, domain)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS ingestion_jobs (
        id TEXT PRIMARY KEY,
        theme_id TEXT NOT NULL,
        status TEXT NOT NULL,
        trigger_type TEXT NOT NULL,
        config_version INTEGER,
        completion_reason TEXT,
        error TEXT,
        created_at TEXT NOT NULL,
        completed_at TEXT,
        FOREIGN KEY (theme_id) REFERENCES themes(id) ON DELETE CASCADE
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS scrape_jobs (
        id TEXT PRIMARY KEY,
        ingestion_job_id TEXT NOT NULL,
        url TEXT NOT NULL,
        canonical_url TEXT,
        seen_date TEXT,
        status TEXT NOT NULL,
        metadata TEXT,
        error TEXT,
        created_at TEXT NOT NULL,
        started_at TEXT,
        completed_at TEXT,
        FOREIGN KEY (ingestion_job_id) REFERENCES ingestion_jobs(id) ON DELETE CASCADE
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS extraction_attempts (
        id TEXT PRIMARY KEY,
        scrape_job_id TEXT NOT NULL,
        method TEXT NOT NULL,
        status TEXT NOT NULL,
        duration_ms INTEGER,
        text_length INTEGER,
        error TEXT,
        created_at TEXT NOT NULL,
        FOREIGN KEY (scrape_job_id) REFERENCES scrape_jobs(id) ON DELETE CASCADE
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS extracted_documents (
        id TEXT PRIMARY KEY,
        theme_id TEXT NOT NULL,
        scrape_job_id TEXT NOT NULL UNIQUE,
        clean_text TEXT NOT NULL,
        headline TEXT,
        canonical_url TEXT,
        source_domain TEXT,
        published_at TEXT,
        scraped_at TEXT NOT NULL,
        extraction_method TEXT NOT NULL,
        text_length INTEGER NOT NULL,
        quality_score REAL,
        dedup_hash TEXT NOT NULL,
        FOREIGN KEY (theme_id) REFERENCES themes(id) ON DELETE CASCADE,
        FOREIGN KEY (scrape_job_id) REFERENCES scrape_jobs(id) ON DELETE CASCADE,
        UNIQUE(theme_id, dedup_hash)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS daily_budget_usage (
        id TEXT PRIMARY KEY,
        theme_id TEXT NOT NULL,
        day TEXT NOT NULL,
        used INTEGER NOT NULL DEFAULT 0,
        budget_limit INTEGER NOT NULL,
        FOREIGN KEY (theme_id) REFERENCES themes(id) ON DELETE CASCADE,
        UNIQUE(theme_id, day)
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_ingestion_jobs_theme ON ingestion_jobs(theme_id, created_at)",
    "CREATE INDEX IF NOT EXISTS idx_scrape_jobs_job_status ON scrape_jobs(ingestion_job_id, status)",
    "CREATE INDEX IF NOT EXISTS idx_attempts_unit ON extraction_attempts(scrape_job_id)",
    "CREATE INDEX IF NOT EXISTS idx_documents_theme_scraped ON extracted_documents(theme_id, scraped_at)",
]


class SqliteJobStore(JobStore):
    placeholder = "?"

    def __init__(self, db_path: str = "newsharvest.db", *, max_retries: int = 3, retry_delay: float = 1.0):
        self.db_path = db_path
        self.max_retries = max(1, max_retries)
        self.retry_delay = retry_delay
        self._ensure_db_directory()
        self.init_database()

    def _ensure_db_directory(self) -> None:
        Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)

    def init_database(self) -> None:
        with self.transaction() as conn:
            for stmt in SCHEMA_STATEMENTS:
                conn.execute(stmt)
        logger.info(f"SQLite store ready at {self.db_path}")

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path, timeout=30.0, check_same_thread=False, isolation_level=None)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys=ON;")
        conn.execute("PRAGMA journal_mode=WAL;")
        conn.execute("PRAGMA synchronous=NORMAL;")
        return conn

    def _begin(self, write: bool) -> sqlite3.Connection:
        """Open a connection with a transaction started, retrying while locked."""
        for attempt in range(self.max_retries):
            conn = None
            try:
                conn = self._connect()
                conn.execute("BEGIN IMMEDIATE" if write else "BEGIN")
                return conn
            except sqlite3.OperationalError as e:
                if conn is not None:
                    conn.close()
                if "database is locked" in str(e) and attempt < self.max_retries - 1:
                    logger.warning(f"Database locked, retrying in {self.retry_delay}s (attempt {attempt + 1})")
                    time.sleep(self.retry_delay)
                    continue
                raise DatabaseError(f"Database connection failed: {e}") from e
        raise DatabaseError("Database connection failed")

    @contextmanager
    def transaction(self, write: bool = True):
        conn = self._begin(write)
        try:
            yield conn
            conn.execute("COMMIT")
        except sqlite3.Error as e:
            if conn.in_transaction:
                conn.execute("ROLLBACK")
            raise DatabaseError(f"Database operation failed: {e}") from e
        except BaseException:
            if conn.in_transaction:
                conn.execute("ROLLBACK")
            raise
        finally:
            conn.close()

    def _ts(self, value: Optional[datetime]) -> Any:
        return value.isoformat() if value is not None else None

    def _read_ts(self, value: Any) -> Optional[datetime]:
        if not value:
            return None
        return datetime.fromisoformat(value)

    def _day(self, value: date) -> Any:
        return value.isoformat()

    def _json(self, value: Any) -> Any:
        return json.dumps(value, ensure_ascii=False)

    def _read_json(self, value: Any) -> Any:
        if value is None or value == "":
            return None
        return json.loads(value)
