"""Shared SQL for the theme/job/document store.

Both backends speak the same statements (``ON CONFLICT`` upserts, conditional
updates). Subclasses supply the connection, the placeholder style and the
column codecs for timestamps, dates and JSON.

Atomicity contract:
- ``commit_extraction`` dedups, persists, marks the unit and bumps the budget
  in one transaction.
- ``complete_job_if_done`` is a single conditional UPDATE; running it twice is
  harmless.
- Unit status writes only ever move a unit forward out of non-terminal states.
"""

from __future__ import annotations

import logging
import uuid
from datetime import date, datetime, timezone
from typing import Any, ContextManager, Dict, List, Optional, Sequence

from newsharvest.ingestion.article_types import Candidate, DomainRule, WeightedTerm
from newsharvest.ingestion.url_utils import canonicalize_url, normalize_rule_domain
from newsharvest.pipeline.models import (
    TERMINAL_UNIT_STATUSES,
    BudgetUsage,
    CompletionReason,
    DocumentSummary,
    ExtractionCommit,
    IngestionJob,
    JobStatus,
    NewDocument,
    ScrapeJob,
    Theme,
    ThemeConfig,
    UnitStatus,
)

logger = logging.getLogger(__name__)

DOMAIN_RULES = ("allow", "block")

_NON_TERMINAL_UNIT = (UnitStatus.PENDING.value, UnitStatus.SCRAPING.value)
_OPEN_JOB = (JobStatus.PENDING.value, JobStatus.RUNNING.value)


def new_id() -> str:
    return str(uuid.uuid4())


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class JobStore:
    """Base class; see ``SqliteJobStore`` and ``PostgresJobStore``."""

    placeholder = "?"

    # -- backend hooks -----------------------------------------------------

    def transaction(self, write: bool = True) -> ContextManager[Any]:
        """Context manager yielding a connection; commits on clean exit."""
        raise NotImplementedError

    def _lock_theme(self, conn, theme_id: str) -> None:
        """Serialize writers for one theme (no-op where transactions already do)."""

    def _ts(self, value: Optional[datetime]) -> Any:
        return value

    def _read_ts(self, value: Any) -> Optional[datetime]:
        return value

    def _day(self, value: date) -> Any:
        return value

    def _json(self, value: Any) -> Any:
        raise NotImplementedError

    def _read_json(self, value: Any) -> Any:
        return value

    # -- helpers -----------------------------------------------------------

    def _sql(self, sql: str) -> str:
        if self.placeholder == "?":
            return sql
        return sql.replace("?", self.placeholder)

    def _exec(self, conn, sql: str, params: Sequence[Any] = ()):
        return conn.execute(self._sql(sql), tuple(params))

    def _one(self, conn, sql: str, params: Sequence[Any] = ()) -> Optional[Dict[str, Any]]:
        row = self._exec(conn, sql, params).fetchone()
        return dict(row) if row is not None else None

    def _all(self, conn, sql: str, params: Sequence[Any] = ()) -> List[Dict[str, Any]]:
        return [dict(r) for r in self._exec(conn, sql, params).fetchall()]

    def _theme(self, row: Dict[str, Any]) -> Theme:
        return Theme(
            id=row["id"],
            name=row["name"],
            slug=row["slug"],
            description=row.get("description"),
            created_at=self._read_ts(row.get("created_at")),
        )

    def _config(self, row: Dict[str, Any]) -> ThemeConfig:
        return ThemeConfig(
            id=row["id"],
            theme_id=row["theme_id"],
            version=int(row["version"]),
            target_languages=list(self._read_json(row.get("target_languages")) or []),
            target_regions=list(self._read_json(row.get("target_regions")) or []),
            min_text_length=int(row["min_text_length"]),
            min_quality_score=float(row["min_quality_score"]),
            daily_budget=int(row["daily_budget"]),
            hourly_rate_limit=row.get("hourly_rate_limit"),
            max_article_age=row.get("max_article_age"),
            query_overrides=dict(self._read_json(row.get("query_overrides")) or {}),
            created_at=self._read_ts(row.get("created_at")),
        )

    def _job(self, row: Dict[str, Any]) -> IngestionJob:
        return IngestionJob(
            id=row["id"],
            theme_id=row["theme_id"],
            status=row["status"],
            trigger_type=row["trigger_type"],
            config_version=row.get("config_version"),
            created_at=self._read_ts(row.get("created_at")),
            completed_at=self._read_ts(row.get("completed_at")),
            completion_reason=row.get("completion_reason"),
            error=row.get("error"),
        )

    def _unit(self, row: Dict[str, Any]) -> ScrapeJob:
        return ScrapeJob(
            id=row["id"],
            ingestion_job_id=row["ingestion_job_id"],
            url=row["url"],
            status=row["status"],
            canonical_url=row.get("canonical_url"),
            seen_date=row.get("seen_date"),
            error=row.get("error"),
            created_at=self._read_ts(row.get("created_at")),
            completed_at=self._read_ts(row.get("completed_at")),
        )

    def _document(self, row: Dict[str, Any]) -> DocumentSummary:
        return DocumentSummary(
            id=row["id"],
            scrape_job_id=row["scrape_job_id"],
            headline=row.get("headline"),
            canonical_url=row.get("canonical_url"),
            source_domain=row.get("source_domain"),
            published_at=self._read_ts(row.get("published_at")),
            scraped_at=self._read_ts(row.get("scraped_at")),
            extraction_method=row["extraction_method"],
            text_length=int(row["text_length"]),
            quality_score=row.get("quality_score"),
            dedup_hash=row["dedup_hash"],
        )

    # -- themes and config -------------------------------------------------

    def create_theme(self, name: str, slug: str, description: Optional[str] = None) -> Theme:
        theme_id = new_id()
        now = utcnow()
        with self.transaction() as conn:
            self._exec(
                conn,
                "INSERT INTO themes (id, name, slug, description, created_at) VALUES (?, ?, ?, ?, ?)",
                (theme_id, name, slug, description, self._ts(now)),
            )
        return Theme(id=theme_id, name=name, slug=slug, description=description, created_at=now)

    def get_theme(self, ref: str) -> Optional[Theme]:
        """Look a theme up by id or slug."""
        with self.transaction(write=False) as conn:
            row = self._one(conn, "SELECT * FROM themes WHERE id = ? OR slug = ? LIMIT 1", (ref, ref))
        return self._theme(row) if row else None

    def delete_theme(self, theme_id: str) -> bool:
        with self.transaction() as conn:
            cur = self._exec(conn, "DELETE FROM themes WHERE id = ?", (theme_id,))
            return cur.rowcount > 0

    def add_config_version(
        self,
        theme_id: str,
        *,
        target_languages: Sequence[str] = (),
        target_regions: Sequence[str] = (),
        min_text_length: int = 500,
        min_quality_score: float = 0.6,
        daily_budget: int = 500,
        hourly_rate_limit: Optional[int] = None,
        max_article_age: Optional[str] = None,
        query_overrides: Optional[Dict[str, Any]] = None,
    ) -> ThemeConfig:
        """Append a config snapshot as version N+1; earlier versions stay untouched."""
        config_id = new_id()
        with self.transaction() as conn:
            self._lock_theme(conn, theme_id)
            row = self._one(
                conn,
                "SELECT COALESCE(MAX(version), 0) + 1 AS next_version FROM theme_configs WHERE theme_id = ?",
                (theme_id,),
            )
            version = int(row["next_version"])
            self._exec(
                conn,
                """
                INSERT INTO theme_configs (
                  id, theme_id, version, target_languages, target_regions, min_text_length,
                  min_quality_score, daily_budget, hourly_rate_limit, max_article_age,
                  query_overrides, created_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    config_id,
                    theme_id,
                    version,
                    self._json(list(target_languages)),
                    self._json(list(target_regions)),
                    int(min_text_length),
                    float(min_quality_score),
                    int(daily_budget),
                    hourly_rate_limit,
                    max_article_age,
                    self._json(dict(query_overrides or {})),
                    self._ts(utcnow()),
                ),
            )
            row = self._one(conn, "SELECT * FROM theme_configs WHERE id = ?", (config_id,))
        return self._config(row)

    def get_active_config(self, theme_id: str) -> Optional[ThemeConfig]:
        with self.transaction(write=False) as conn:
            row = self._one(
                conn,
                "SELECT * FROM theme_configs WHERE theme_id = ? ORDER BY version DESC LIMIT 1",
                (theme_id,),
            )
        return self._config(row) if row else None

    def set_topic_terms(self, theme_id: str, terms: Sequence[WeightedTerm]) -> None:
        """Replace the theme's topic terms."""
        with self.transaction() as conn:
            self._exec(conn, "DELETE FROM topic_terms WHERE theme_id = ?", (theme_id,))
            for position, term in enumerate(terms):
                name = (term.name or "").strip()
                if not name:
                    continue
                self._exec(
                    conn,
                    "INSERT INTO topic_terms (id, theme_id, name, weight, position) VALUES (?, ?, ?, ?, ?)",
                    (new_id(), theme_id, name, float(term.weight), position),
                )

    def get_topic_terms(self, theme_id: str) -> List[WeightedTerm]:
        with self.transaction(write=False) as conn:
            rows = self._all(
                conn,
                "SELECT name, weight FROM topic_terms WHERE theme_id = ? ORDER BY position",
                (theme_id,),
            )
        return [WeightedTerm(name=r["name"], weight=float(r["weight"])) for r in rows]

    def upsert_domain_rule(self, theme_id: str, domain: str, rule: str) -> DomainRule:
        rule = (rule or "").strip().lower()
        if rule not in DOMAIN_RULES:
            raise ValueError(f"Domain rule must be one of {DOMAIN_RULES}, got {rule!r}")
        normalized = normalize_rule_domain(domain)
        if not normalized:
            raise ValueError(f"Invalid domain {domain!r}")
        with self.transaction() as conn:
            self._exec(
                conn,
                """
                INSERT INTO domain_rules (id, theme_id, domain, rule)
                VALUES (?, ?, ?, ?)
                ON CONFLICT (theme_id, domain) DO UPDATE SET rule = excluded.rule
                """,
                (new_id(), theme_id, normalized, rule),
            )
        return DomainRule(domain=normalized, rule=rule)

    def get_domain_rules(self, theme_id: str) -> List[DomainRule]:
        with self.transaction(write=False) as conn:
            rows = self._all(
                conn,
                "SELECT domain, rule FROM domain_rules WHERE theme_id = ? ORDER BY domain",
                (theme_id,),
            )
        return [DomainRule(domain=r["domain"], rule=r["rule"]) for r in rows]

    # -- ingestion jobs ----------------------------------------------------

    def create_ingestion_job(self, theme_id: str, trigger_type: str, config_version: Optional[int]) -> IngestionJob:
        job_id = new_id()
        now = utcnow()
        with self.transaction() as conn:
            self._exec(
                conn,
                """
                INSERT INTO ingestion_jobs (id, theme_id, status, trigger_type, config_version, created_at)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (job_id, theme_id, JobStatus.PENDING.value, trigger_type, config_version, self._ts(now)),
            )
        return IngestionJob(
            id=job_id,
            theme_id=theme_id,
            status=JobStatus.PENDING.value,
            trigger_type=trigger_type,
            config_version=config_version,
            created_at=now,
        )

    def get_ingestion_job(self, job_id: str) -> Optional[IngestionJob]:
        with self.transaction(write=False) as conn:
            row = self._one(conn, "SELECT * FROM ingestion_jobs WHERE id = ?", (job_id,))
        return self._job(row) if row else None

    def start_ingestion_job(self, job_id: str, candidates: Sequence[Candidate]) -> List[ScrapeJob]:
        """Create one pending unit per candidate and move the job to running.

        Both happen in one transaction, so a running job always has its full
        set of units before anything is dispatched.
        """
        now = utcnow()
        units: List[ScrapeJob] = []
        with self.transaction() as conn:
            for c in candidates:
                unit = ScrapeJob(
                    id=new_id(),
                    ingestion_job_id=job_id,
                    url=c.url,
                    status=UnitStatus.PENDING.value,
                    canonical_url=canonicalize_url(c.url),
                    seen_date=c.seen_date,
                    created_at=now,
                )
                self._exec(
                    conn,
                    """
                    INSERT INTO scrape_jobs (
                      id, ingestion_job_id, url, canonical_url, seen_date, status, metadata, created_at
                    )
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        unit.id,
                        job_id,
                        unit.url,
                        unit.canonical_url,
                        unit.seen_date,
                        unit.status,
                        self._json(c.metadata()),
                        self._ts(now),
                    ),
                )
                units.append(unit)
            cur = self._exec(
                conn,
                "UPDATE ingestion_jobs SET status = ? WHERE id = ? AND status = ?",
                (JobStatus.RUNNING.value, job_id, JobStatus.PENDING.value),
            )
            if cur.rowcount != 1:
                raise ValueError(f"Ingestion job {job_id} is not pending")
        return units

    def finish_ingestion_job(
        self,
        job_id: str,
        status: str,
        *,
        reason: Optional[str] = None,
        error: Optional[str] = None,
    ) -> bool:
        """Force a still-open job into a terminal state; False if it already was."""
        with self.transaction() as conn:
            cur = self._exec(
                conn,
                """
                UPDATE ingestion_jobs
                SET status = ?, completed_at = ?, completion_reason = ?, error = ?
                WHERE id = ? AND status IN (?, ?)
                """,
                (status, self._ts(utcnow()), reason, error, job_id, *_OPEN_JOB),
            )
            return cur.rowcount == 1

    def complete_job_if_done(self, job_id: str) -> bool:
        """Flip a running job to completed once no child unit is still open."""
        with self.transaction() as conn:
            cur = self._exec(
                conn,
                """
                UPDATE ingestion_jobs
                SET status = ?, completed_at = ?, completion_reason = ?
                WHERE id = ? AND status = ?
                  AND NOT EXISTS (
                    SELECT 1 FROM scrape_jobs
                    WHERE ingestion_job_id = ? AND status IN (?, ?)
                  )
                """,
                (
                    JobStatus.COMPLETED.value,
                    self._ts(utcnow()),
                    CompletionReason.ALL_UNITS_TERMINAL.value,
                    job_id,
                    JobStatus.RUNNING.value,
                    job_id,
                    *_NON_TERMINAL_UNIT,
                ),
            )
            return cur.rowcount == 1

    # -- scrape units ------------------------------------------------------

    def list_scrape_jobs(self, job_id: str) -> List[ScrapeJob]:
        with self.transaction(write=False) as conn:
            rows = self._all(
                conn,
                "SELECT * FROM scrape_jobs WHERE ingestion_job_id = ? ORDER BY created_at, id",
                (job_id,),
            )
        return [self._unit(r) for r in rows]

    def get_scrape_job(self, unit_id: str) -> Optional[ScrapeJob]:
        with self.transaction(write=False) as conn:
            row = self._one(conn, "SELECT * FROM scrape_jobs WHERE id = ?", (unit_id,))
        return self._unit(row) if row else None

    def unit_status_counts(self, job_id: str) -> Dict[str, int]:
        counts = {s.value: 0 for s in UnitStatus}
        with self.transaction(write=False) as conn:
            rows = self._all(
                conn,
                "SELECT status, COUNT(*) AS n FROM scrape_jobs WHERE ingestion_job_id = ? GROUP BY status",
                (job_id,),
            )
        for r in rows:
            counts[r["status"]] = int(r["n"])
        return counts

    def mark_unit_scraping(self, unit_id: str) -> bool:
        with self.transaction() as conn:
            cur = self._exec(
                conn,
                "UPDATE scrape_jobs SET status = ?, started_at = ? WHERE id = ? AND status = ?",
                (UnitStatus.SCRAPING.value, self._ts(utcnow()), unit_id, UnitStatus.PENDING.value),
            )
            return cur.rowcount == 1

    def mark_unit_terminal(self, unit_id: str, status: str, error: Optional[str] = None) -> bool:
        if status not in TERMINAL_UNIT_STATUSES:
            raise ValueError(f"Not a terminal unit status: {status!r}")
        with self.transaction() as conn:
            cur = self._exec(
                conn,
                """
                UPDATE scrape_jobs SET status = ?, error = ?, completed_at = ?
                WHERE id = ? AND status IN (?, ?)
                """,
                (status, error, self._ts(utcnow()), unit_id, *_NON_TERMINAL_UNIT),
            )
            return cur.rowcount == 1

    def record_attempt(
        self,
        unit_id: str,
        *,
        method: str,
        status: str,
        duration_ms: Optional[int] = None,
        text_length: Optional[int] = None,
        error: Optional[str] = None,
    ) -> str:
        attempt_id = new_id()
        with self.transaction() as conn:
            self._exec(
                conn,
                """
                INSERT INTO extraction_attempts (
                  id, scrape_job_id, method, status, duration_ms, text_length, error, created_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (attempt_id, unit_id, method, status, duration_ms, text_length, error, self._ts(utcnow())),
            )
        return attempt_id

    def commit_extraction(
        self,
        unit_id: str,
        doc: NewDocument,
        *,
        day: date,
        limit: int,
        hard_cap: bool = True,
    ) -> ExtractionCommit:
        """Persist a first-time document or mark the unit as a duplicate.

        Dedup, unit status and the budget increment share one transaction;
        the unique ``(theme_id, dedup_hash)`` key decides the winner when two
        units race on the same content.
        """
        document_id = new_id()
        now = utcnow()
        with self.transaction() as conn:
            cur = self._exec(
                conn,
                """
                INSERT INTO extracted_documents (
                  id, theme_id, scrape_job_id, clean_text, headline, canonical_url, source_domain,
                  published_at, scraped_at, extraction_method, text_length, quality_score, dedup_hash
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT (theme_id, dedup_hash) DO NOTHING
                """,
                (
                    document_id,
                    doc.theme_id,
                    unit_id,
                    doc.clean_text,
                    doc.headline,
                    doc.canonical_url,
                    doc.source_domain,
                    self._ts(doc.published_at),
                    self._ts(doc.scraped_at or now),
                    doc.extraction_method,
                    doc.text_length,
                    doc.quality_score,
                    doc.dedup_hash,
                ),
            )
            inserted = cur.rowcount == 1

            status = UnitStatus.EXTRACTED.value if inserted else UnitStatus.SKIPPED.value
            self._exec(
                conn,
                """
                UPDATE scrape_jobs SET status = ?, error = ?, completed_at = ?
                WHERE id = ? AND status IN (?, ?)
                """,
                (status, None if inserted else "duplicate_content", self._ts(now), unit_id, *_NON_TERMINAL_UNIT),
            )
            if not inserted:
                return ExtractionCommit(status=status)

            counted = self._increment_budget(conn, doc.theme_id, day, limit, hard_cap)
        if not counted:
            logger.warning(f"[budget] Theme {doc.theme_id} at ceiling {limit} on {day}; document kept, counter not moved")
        return ExtractionCommit(status=status, document_id=document_id, budget_counted=counted)

    # -- documents ---------------------------------------------------------

    def list_documents(self, theme_id: str, limit: int = 50) -> List[DocumentSummary]:
        with self.transaction(write=False) as conn:
            rows = self._all(
                conn,
                """
                SELECT id, scrape_job_id, headline, canonical_url, source_domain, published_at,
                       scraped_at, extraction_method, text_length, quality_score, dedup_hash
                FROM extracted_documents
                WHERE theme_id = ?
                ORDER BY scraped_at DESC
                LIMIT ?
                """,
                (theme_id, max(1, int(limit))),
            )
        return [self._document(r) for r in rows]

    # -- daily budget ------------------------------------------------------

    def _ensure_budget_row(self, conn, theme_id: str, day: date, limit: int) -> None:
        self._exec(
            conn,
            """
            INSERT INTO daily_budget_usage (id, theme_id, day, used, budget_limit)
            VALUES (?, ?, ?, 0, ?)
            ON CONFLICT (theme_id, day) DO UPDATE SET budget_limit = excluded.budget_limit
            """,
            (new_id(), theme_id, self._day(day), int(limit)),
        )

    def _increment_budget(self, conn, theme_id: str, day: date, limit: int, hard_cap: bool) -> bool:
        self._ensure_budget_row(conn, theme_id, day, limit)
        sql = "UPDATE daily_budget_usage SET used = used + 1 WHERE theme_id = ? AND day = ?"
        if hard_cap:
            sql += " AND used < budget_limit"
        cur = self._exec(conn, sql, (theme_id, self._day(day)))
        return cur.rowcount == 1

    def increment_budget(self, theme_id: str, day: date, limit: int, *, hard_cap: bool = True) -> bool:
        """Atomically add one to today's counter; False when the hard cap refused it."""
        with self.transaction() as conn:
            return self._increment_budget(conn, theme_id, day, limit, hard_cap)

    def get_budget(self, theme_id: str, day: date, limit: int) -> BudgetUsage:
        """Today's counter, created with ``used = 0`` on first access."""
        with self.transaction() as conn:
            self._ensure_budget_row(conn, theme_id, day, limit)
            row = self._one(
                conn,
                "SELECT used, budget_limit FROM daily_budget_usage WHERE theme_id = ? AND day = ?",
                (theme_id, self._day(day)),
            )
        return BudgetUsage(theme_id=theme_id, day=day, used=int(row["used"]), limit=int(row["budget_limit"]))

    def reset_budget(self, theme_id: str, day: date, limit: int) -> BudgetUsage:
        with self.transaction() as conn:
            self._ensure_budget_row(conn, theme_id, day, limit)
            self._exec(
                conn,
                "UPDATE daily_budget_usage SET used = 0 WHERE theme_id = ? AND day = ?",
                (theme_id, self._day(day)),
            )
        return BudgetUsage(theme_id=theme_id, day=day, used=0, limit=int(limit))
