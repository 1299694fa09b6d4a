"""Postgres schema management for newsharvest.

Schema creation is idempotent (CREATE IF NOT EXISTS), so it is safe to run on
every start.
"""

from __future__ import annotations

from typing import Iterable, Optional

import psycopg


SCHEMA_STATEMENTS: list[str] = [
    """
    CREATE TABLE IF NOT EXISTS themes (
      id TEXT PRIMARY KEY,
      name TEXT NOT NULL,
      slug TEXT NOT NULL UNIQUE,
      description TEXT,
      created_at TIMESTAMPTZ NOT NULL DEFAULT now()
    );
    """,
    # Append-only config history; the highest version is the active one
    """
    CREATE TABLE IF NOT EXISTS theme_configs (
      id TEXT PRIMARY KEY,
      theme_id TEXT NOT NULL REFERENCES themes(id) ON DELETE CASCADE,
      version INTEGER NOT NULL,
      target_languages JSONB NOT NULL DEFAULT '[]'::jsonb,
      target_regions JSONB NOT NULL DEFAULT '[]'::jsonb,
      min_text_length INTEGER NOT NULL DEFAULT 500,
      min_quality_score REAL NOT NULL DEFAULT 0.6,
      daily_budget INTEGER NOT NULL DEFAULT 500,
      hourly_rate_limit INTEGER,
      max_article_age TEXT,
      query_overrides JSONB NOT NULL DEFAULT '{}'::jsonb,
      created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
      UNIQUE (theme_id, version)
    );
    """,
    """
    CREATE TABLE IF NOT EXISTS topic_terms (
      id TEXT PRIMARY KEY,
      theme_id TEXT NOT NULL REFERENCES themes(id) ON DELETE CASCADE,
      name TEXT NOT NULL,
      weight REAL NOT NULL DEFAULT 1.0,
      position INTEGER NOT NULL DEFAULT 0
    );
    """,
    """
    CREATE TABLE IF NOT EXISTS domain_rules (
      id TEXT PRIMARY KEY,
      theme_id TEXT NOT NULL REFERENCES themes(id) ON DELETE CASCADE,
      domain TEXT NOT NULL,
      rule TEXT NOT NULL CHECK (rule IN ('allow', 'block')),
      UNIQUE (theme_id, domain)
    );
    """,
    """
    CREATE TABLE IF NOT EXISTS ingestion_jobs (
      id TEXT PRIMARY KEY,
      theme_id TEXT NOT NULL REFERENCES themes(id) ON DELETE CASCADE,
      status TEXT NOT NULL,
      trigger_type TEXT NOT NULL,
      config_version INTEGER,
      completion_reason TEXT,
      error TEXT,
      created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
      completed_at TIMESTAMPTZ
    );
    """,
    """
    CREATE TABLE IF NOT EXISTS scrape_jobs (
      id TEXT PRIMARY KEY,
      ingestion_job_id TEXT NOT NULL REFERENCES ingestion_jobs(id) ON DELETE CASCADE,
      url TEXT NOT NULL,
      canonical_url TEXT,
      seen_date TEXT,
      status TEXT NOT NULL,
      metadata JSONB,
      error TEXT,
      created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
      started_at TIMESTAMPTZ,
      completed_at TIMESTAMPTZ
    );
    """,
    """
    CREATE TABLE IF NOT EXISTS extraction_attempts (
      id TEXT PRIMARY KEY,
      scrape_job_id TEXT NOT NULL REFERENCES scrape_jobs(id) ON DELETE CASCADE,
      method TEXT NOT NULL,
      status TEXT NOT NULL,
      duration_ms INTEGER,
      text_length INTEGER,
      error TEXT,
      created_at TIMESTAMPTZ NOT NULL DEFAULT now()
    );
    """,
    """
    CREATE TABLE IF NOT EXISTS extracted_documents (
      id TEXT PRIMARY KEY,
      theme_id TEXT NOT NULL REFERENCES themes(id) ON DELETE CASCADE,
      scrape_job_id TEXT NOT NULL UNIQUE REFERENCES scrape_jobs(id) ON DELETE CASCADE,
      clean_text TEXT NOT NULL,
      headline TEXT,
      canonical_url TEXT,
      source_domain TEXT,
      published_at TIMESTAMPTZ,
      scraped_at TIMESTAMPTZ NOT NULL DEFAULT now(),
      extraction_method TEXT NOT NULL,
      text_length INTEGER NOT NULL,
      quality_score REAL,
      dedup_hash TEXT NOT NULL,
      UNIQUE (theme_id, dedup_hash)
    );
    """,
    """
    CREATE TABLE IF NOT EXISTS daily_budget_usage (
      id TEXT PRIMARY KEY,
      theme_id TEXT NOT NULL REFERENCES themes(id) ON DELETE CASCADE,
      day DATE NOT NULL,
      used INTEGER NOT NULL DEFAULT 0,
      budget_limit INTEGER NOT NULL,
      UNIQUE (theme_id, day)
    );
    """,
    "CREATE INDEX IF NOT EXISTS idx_ingestion_jobs_theme ON ingestion_jobs (theme_id, created_at DESC);",
    "CREATE INDEX IF NOT EXISTS idx_scrape_jobs_job_status ON scrape_jobs (ingestion_job_id, status);",
    "CREATE INDEX IF NOT EXISTS idx_attempts_unit ON extraction_attempts (scrape_job_id);",
    "CREATE INDEX IF NOT EXISTS idx_documents_theme_scraped ON extracted_documents (theme_id, scraped_at DESC);",
]


def ensure_postgres_schema(pg_dsn: str, *, statements: Optional[Iterable[str]] = None) -> None:
    """Ensure Postgres schema exists."""
    stmts = list(statements) if statements is not None else SCHEMA_STATEMENTS
    with psycopg.connect(pg_dsn, autocommit=True) as conn:
        with conn.cursor() as cur:
            for s in stmts:
                cur.execute(s)
