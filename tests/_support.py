"""Shared fixtures for the store-backed tests."""

import os
import shutil
import tempfile
from datetime import date

from newsharvest.extraction.fulltext import FulltextResult
from newsharvest.ingestion.article_types import Candidate, WeightedTerm
from newsharvest.storage.sqlite_store import SqliteJobStore

TODAY = date(2026, 2, 17)

LONG_TEXT = "Markets moved after the central bank decision. " * 10


class TempStoreMixin:
    def setUp(self):
        self.tmpdir = tempfile.mkdtemp(prefix="newsharvest-test-")
        self.store = SqliteJobStore(os.path.join(self.tmpdir, "test.db"), retry_delay=0.05)

    def tearDown(self):
        shutil.rmtree(self.tmpdir, ignore_errors=True)

    def make_theme(self, slug="markets", daily_budget=10, terms=("stock market", "interest rates"), **config):
        theme = self.store.create_theme(slug.title(), slug)
        self.store.add_config_version(theme.id, daily_budget=daily_budget, **config)
        self.store.set_topic_terms(theme.id, [WeightedTerm(t) for t in terms])
        return theme

    def set_budget_used(self, theme_id, used, limit=10, day=TODAY):
        self.store.get_budget(theme_id, day, limit)
        with self.store.transaction() as conn:
            conn.execute(
                "UPDATE daily_budget_usage SET used = ? WHERE theme_id = ? AND day = ?",
                (used, theme_id, day.isoformat()),
            )


class FakeClient:
    """Article index stand-in: one entry per batch call (list of URLs or an exception)."""

    def __init__(self, responses):
        self.responses = list(responses)
        self.calls = []

    def search(self, params):
        self.calls.append(params)
        out = self.responses.pop(0) if self.responses else []
        if isinstance(out, Exception):
            raise out
        return [Candidate(url=u, seen_date="20260217T101500Z", domain="example.com") for u in out]


def ok_result(text=LONG_TEXT, headline="Headline"):
    return FulltextResult(text=text.strip(), confidence=0.55, status="ok", headline=headline)


def failed_result(status="http_500"):
    return FulltextResult(text=None, confidence=0.0, status=status, error=status)


URLS_FOR_API = ["https://example.com/api-1", "https://www.example.com/api-2/"]
