import unittest

from newsharvest.pipeline.models import IngestionJob
from newsharvest.pipeline.status import compute_progress, status_message


def counts(pending=0, scraping=0, extracted=0, failed=0, skipped=0):
    return {"pending": pending, "scraping": scraping, "extracted": extracted, "failed": failed, "skipped": skipped}


def job(status, **kw):
    return IngestionJob(id="j", theme_id="t", status=status, trigger_type="manual", config_version=1, **kw)


class TestProgress(unittest.TestCase):
    def test_floors(self):
        self.assertEqual(compute_progress("pending", counts()), 0)
        self.assertEqual(compute_progress("running", counts()), 5)
        self.assertEqual(compute_progress("running", counts(pending=4)), 2)
        self.assertEqual(compute_progress("running", counts(pending=3, scraping=1)), 5)

    def test_ratio_until_terminal(self):
        self.assertEqual(compute_progress("running", counts(scraping=1, extracted=2, failed=1)), 75)
        self.assertEqual(compute_progress("running", counts(extracted=4)), 99)
        self.assertEqual(compute_progress("completed", counts(extracted=4)), 100)
        self.assertEqual(compute_progress("completed", counts()), 100)

    def test_large_job_never_drops_below_floor(self):
        self.assertEqual(compute_progress("running", counts(pending=199, scraping=1, extracted=1)), 5)
        self.assertEqual(compute_progress("running", counts(pending=400, failed=1)), 2)


class TestStatusMessage(unittest.TestCase):
    def test_running_messages(self):
        self.assertEqual(status_message(job("pending"), counts()), "Preparing extraction...")
        self.assertEqual(status_message(job("running"), counts()), "Querying source and preparing URLs...")
        self.assertEqual(status_message(job("running"), counts(pending=3)), "Preparing 3 URL(s) for extraction...")
        self.assertEqual(
            status_message(job("running"), counts(scraping=2, extracted=1)),
            "Extracting 2 article(s)... 1 of 3 done",
        )
        self.assertEqual(status_message(job("running"), counts(pending=1, extracted=1)), "Processing: 1 of 2 done")
        self.assertEqual(status_message(job("running"), counts(extracted=2)), "Finalizing...")

    def test_terminal_messages(self):
        self.assertEqual(
            status_message(job("completed"), counts(extracted=3)),
            "Extraction finished: 3 document(s) extracted",
        )
        self.assertEqual(
            status_message(job("completed", completion_reason="upstream_unavailable"), counts()),
            "Extraction finished: candidate source unavailable, no URLs fetched",
        )
        self.assertEqual(status_message(job("failed", error="db down"), counts()), "Extraction failed: db down")


if __name__ == "__main__":
    unittest.main()
