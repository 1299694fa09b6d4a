import random
import threading
import time
import unittest
from unittest import mock

from _support import LONG_TEXT, TODAY, FakeClient, TempStoreMixin, failed_result, ok_result

from newsharvest.errors import (
    BudgetExhausted,
    ConfigMissing,
    DatabaseError,
    IngestionError,
    ThemeNotFound,
    UpstreamError,
)
from newsharvest.ingestion.aggregator import CandidateAggregator
from newsharvest.pipeline.budget import BudgetGate
from newsharvest.pipeline.coordinator import IngestionCoordinator
from newsharvest.pipeline.dispatch import ThreadDispatcher
from newsharvest.pipeline.status import JobStatusTracker
from newsharvest.pipeline.worker import ExtractionWorker

URLS = ["https://example.com/a", "https://example.com/b", "https://example.com/c"]


def unique_fetch(url, **kwargs):
    return ok_result(text=f"{LONG_TEXT} {url}")


class PipelineTestCase(TempStoreMixin, unittest.TestCase):
    def build(self, client, fetch=unique_fetch, extraction_timeout=5.0):
        self.dispatcher = ThreadDispatcher()
        self.budget = BudgetGate(self.store, today=lambda: TODAY)
        self.tracker = JobStatusTracker(self.store)
        worker = ExtractionWorker(
            self.store, self.budget, self.tracker, fetch=fetch, extraction_timeout=extraction_timeout
        )
        aggregator = CandidateAggregator(client, max_term_chars=20, batch_delay=0)
        return IngestionCoordinator(
            self.store, aggregator, self.budget, worker, self.tracker, dispatcher=self.dispatcher
        )

    def run_to_end(self, coordinator, theme):
        result = coordinator.trigger(theme.slug)
        self.assertTrue(self.dispatcher.wait_idle(timeout=15))
        return result, self.tracker.status(result.ingestion_job_id, theme_id=theme.id)

    def count_jobs(self):
        with self.store.transaction(write=False) as conn:
            return conn.execute("SELECT COUNT(*) FROM ingestion_jobs").fetchone()[0]


class TestEndToEnd(PipelineTestCase):
    def test_three_urls_across_two_batches_all_extracted(self):
        theme = self.make_theme(daily_budget=10)
        client = FakeClient([URLS[:2], URLS[2:]])
        result, view = self.run_to_end(self.build(client), theme)

        self.assertEqual(len(client.calls), 2)
        self.assertEqual((result.urls_found, result.urls_processed, result.remaining_budget), (3, 3, 7))
        self.assertEqual(view.status, "completed")
        self.assertEqual(view.total_units, 3)
        self.assertEqual(view.extracted_units, 3)
        self.assertEqual(view.progress, 100)
        self.assertEqual(view.completion_reason, "all_units_terminal")
        self.assertEqual(self.budget.usage(theme.id, 10).used, 3)

        docs = self.store.list_documents(theme.id)
        self.assertEqual(len(docs), 3)
        self.assertEqual({d.source_domain for d in docs}, {"example.com"})
        # no page date, so the candidate's seen date is used
        self.assertEqual(docs[0].published_at.isoformat(), "2026-02-17T10:15:00+00:00")

    def test_hung_fetch_fails_only_that_unit(self):
        theme = self.make_theme()
        release = threading.Event()
        self.addCleanup(release.set)

        def fetch(url, **kwargs):
            if url == URLS[1]:
                release.wait(10)
            return unique_fetch(url)

        _, view = self.run_to_end(self.build(FakeClient([URLS]), fetch=fetch, extraction_timeout=0.3), theme)

        self.assertEqual(view.status, "completed")
        self.assertEqual((view.completed_units, view.failed_units, view.scraping_units), (2, 1, 0))
        failed = [u for u in self.store.list_scrape_jobs(view.job_id) if u.status == "failed"]
        self.assertEqual(failed[0].url, URLS[1])
        self.assertIn("extraction_timeout", failed[0].error)

    def test_worker_exception_still_completes_job(self):
        theme = self.make_theme()

        def fetch(url, **kwargs):
            if url == URLS[0]:
                raise RuntimeError("parser exploded")
            return unique_fetch(url)

        _, view = self.run_to_end(self.build(FakeClient([URLS]), fetch=fetch), theme)
        self.assertEqual(view.status, "completed")
        self.assertEqual((view.extracted_units, view.failed_units), (2, 1))
        self.assertEqual(view.status_message, "Extraction finished: 2 document(s) extracted, 1 failure(s)")

    def test_all_failures_still_complete(self):
        theme = self.make_theme()
        _, view = self.run_to_end(self.build(FakeClient([URLS]), fetch=lambda url, **kw: failed_result()), theme)
        self.assertEqual(view.status, "completed")
        self.assertEqual(view.failed_units, 3)
        self.assertEqual(self.budget.usage(theme.id, 10).used, 0)

    def test_broken_attempt_log_does_not_strand_units(self):
        theme = self.make_theme()
        coordinator = self.build(FakeClient([URLS]), fetch=lambda url, **kw: failed_result())
        with mock.patch.object(self.store, "record_attempt", side_effect=DatabaseError("database is locked")):
            _, view = self.run_to_end(coordinator, theme)

        self.assertEqual(view.status, "completed")
        self.assertEqual((view.failed_units, view.scraping_units), (3, 0))

    def test_duplicate_content_is_skipped(self):
        theme = self.make_theme()
        fetch = lambda url, **kw: ok_result(text=LONG_TEXT)  # noqa: E731
        _, view = self.run_to_end(self.build(FakeClient([URLS]), fetch=fetch), theme)

        self.assertEqual(view.status, "completed")
        self.assertEqual((view.extracted_units, view.skipped_units), (1, 2))
        self.assertEqual(len(self.store.list_documents(theme.id)), 1)
        self.assertEqual(self.budget.usage(theme.id, 10).used, 1)

    def test_randomized_completion_order(self):
        theme = self.make_theme(daily_budget=50)
        urls = [f"https://example.com/{i}" for i in range(12)]

        def fetch(url, **kwargs):
            time.sleep(random.uniform(0, 0.05))
            if url.endswith(("3", "7")):
                raise ValueError("bad page")
            return unique_fetch(url)

        _, view = self.run_to_end(self.build(FakeClient([urls]), fetch=fetch), theme)
        self.assertEqual(view.status, "completed")
        self.assertEqual(view.total_units, 12)
        self.assertEqual((view.extracted_units, view.failed_units), (10, 2))


class TestAdmissionAndDegenerateRuns(PipelineTestCase):
    def test_zero_candidates_complete_immediately(self):
        theme = self.make_theme()
        result = self.build(FakeClient([[], []])).trigger(theme.slug)

        self.assertEqual(result.status, "completed")
        self.assertEqual(result.completion_reason, "no_candidates")
        view = self.tracker.status(result.ingestion_job_id)
        self.assertEqual((view.status, view.total_units, view.progress), ("completed", 0, 100))

    def test_total_upstream_failure_is_distinguished(self):
        theme = self.make_theme()
        result = self.build(FakeClient([UpstreamError("down"), UpstreamError("down")])).trigger(theme.slug)

        self.assertEqual(result.status, "completed")
        self.assertEqual(result.completion_reason, "upstream_unavailable")
        self.assertEqual((result.batches_total, result.batches_failed), (2, 2))

    def test_budget_bounds_unit_count(self):
        theme = self.make_theme(daily_budget=2)
        result, view = self.run_to_end(self.build(FakeClient([URLS])), theme)
        self.assertEqual((result.urls_found, result.urls_processed, result.remaining_budget), (3, 2, 0))
        self.assertEqual(view.total_units, 2)

    def test_exhausted_budget_rejects_without_job(self):
        theme = self.make_theme(daily_budget=1)
        coordinator = self.build(FakeClient([URLS]))
        self.set_budget_used(theme.id, 1, limit=1)

        with self.assertRaises(BudgetExhausted) as ctx:
            coordinator.trigger(theme.slug)
        self.assertEqual((ctx.exception.used, ctx.exception.limit), (1, 1))
        self.assertEqual(self.count_jobs(), 0)

    def test_missing_config_rejects_without_job(self):
        self.store.create_theme("Bare", "bare")
        with self.assertRaises(ConfigMissing):
            self.build(FakeClient([URLS])).trigger("bare")
        self.assertEqual(self.count_jobs(), 0)

    def test_unknown_trigger_type_rejected_without_job(self):
        theme = self.make_theme()
        with self.assertRaises(ValueError):
            self.build(FakeClient([URLS])).trigger(theme.slug, trigger_type="cron")
        self.assertEqual(self.count_jobs(), 0)

    def test_zero_candidates_report_full_remaining_budget(self):
        theme = self.make_theme(daily_budget=10)
        self.set_budget_used(theme.id, 4)
        result = self.build(FakeClient([[], []])).trigger(theme.slug)
        self.assertEqual((result.urls_processed, result.remaining_budget), (0, 6))

    def test_unknown_theme(self):
        with self.assertRaises(ThemeNotFound):
            self.build(FakeClient([])).trigger("missing")

    def test_coordinator_fault_marks_job_failed(self):
        theme = self.make_theme()
        coordinator = self.build(FakeClient([URLS]))
        with mock.patch.object(self.store, "start_ingestion_job", side_effect=RuntimeError("disk full")):
            with self.assertRaises(IngestionError) as ctx:
                coordinator.trigger(theme.slug)

        job = self.store.get_ingestion_job(ctx.exception.job_id)
        self.assertEqual(job.status, "failed")
        self.assertEqual(job.error, "disk full")
        view = self.tracker.status(job.id)
        self.assertEqual(view.status_message, "Extraction failed: disk full")


if __name__ == "__main__":
    unittest.main()
