"""Postgres-backed job store (psycopg 3, plain SQL)."""

from __future__ import annotations

import logging
from contextlib import contextmanager

import psycopg
from psycopg.rows import dict_row
from psycopg.types.json import Jsonb

from newsharvest.errors import DatabaseError
from newsharvest.storage.job_store import JobStore
from newsharvest.storage.postgres_schema import ensure_postgres_schema

logger = logging.getLogger(__name__)


class PostgresJobStore(JobStore):
    placeholder = "%s"

    def __init__(
        self,
        pg_dsn: str,
        *,
        ensure_schema: bool = True,
        connect_timeout: int = 10,
        lock_timeout_ms: int = 30_000,
    ):
        if not pg_dsn:
            raise ValueError("PG_DSN is required for the postgres store")
        self.pg_dsn = pg_dsn
        self.connect_timeout = connect_timeout
        self.lock_timeout_ms = lock_timeout_ms
        if ensure_schema:
            ensure_postgres_schema(pg_dsn)
            logger.info("Postgres schema ensured")

    @contextmanager
    def transaction(self, write: bool = True):
        # psycopg commits on clean exit of the connection block, rolls back otherwise
        try:
            with psycopg.connect(self.pg_dsn, row_factory=dict_row, connect_timeout=self.connect_timeout) as conn:
                # read_only must be set before the first statement opens the transaction
                if not write:
                    conn.read_only = True
                conn.execute("SELECT set_config('lock_timeout', %s, false)", (f"{self.lock_timeout_ms}ms",))
                yield conn
        except psycopg.Error as e:
            raise DatabaseError(f"Database operation failed: {e}") from e

    def _lock_theme(self, conn, theme_id: str) -> None:
        conn.execute("SELECT id FROM themes WHERE id = %s FOR UPDATE", (theme_id,))

    def _json(self, value):
        return Jsonb(value)
