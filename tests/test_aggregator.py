import unittest

from newsharvest.config import QueryOverrides
from newsharvest.errors import UpstreamError
from newsharvest.ingestion.aggregator import CandidateAggregator, apply_domain_filter, apply_locale_filter
from newsharvest.ingestion.article_types import Candidate, DomainRule, WeightedTerm


class FakeClient:
    """Answers queries from a list of per-call results (lists or exceptions)."""

    def __init__(self, responses):
        self.responses = list(responses)
        self.calls = []

    def search(self, params):
        self.calls.append(params)
        out = self.responses.pop(0)
        if isinstance(out, Exception):
            raise out
        return out


def c(url, domain=None, language=None, country=None):
    return Candidate(url=url, domain=domain, language=language, country=country)


# Two terms that never fit one 20-char OR group
TWO_BATCH_TERMS = [WeightedTerm("stock market"), WeightedTerm("interest rates")]


class TestCandidateAggregator(unittest.TestCase):
    def make(self, client, **kw):
        self.sleeps = []
        return CandidateAggregator(client, max_term_chars=20, batch_delay=5.0, sleep=self.sleeps.append, **kw)

    def test_same_url_in_two_batches_is_kept_once(self):
        client = FakeClient([
            [c("http://a.com/1"), c("http://a.com/2")],
            [c("http://a.com/2"), c("http://a.com/3")],
        ])
        result = self.make(client).collect(terms=TWO_BATCH_TERMS, max_units=10)
        self.assertEqual([x.url for x in result.candidates], ["http://a.com/1", "http://a.com/2", "http://a.com/3"])
        self.assertEqual(result.found, 3)
        self.assertEqual(result.batches_total, 2)

    def test_waits_between_batches(self):
        client = FakeClient([[], []])
        self.make(client).collect(terms=TWO_BATCH_TERMS, max_units=10)
        self.assertEqual(self.sleeps, [5.0])

    def test_failed_batch_does_not_abort_others(self):
        client = FakeClient([UpstreamError("boom"), [c("http://a.com/1")]])
        result = self.make(client).collect(terms=TWO_BATCH_TERMS, max_units=10)
        self.assertEqual(len(result.candidates), 1)
        self.assertEqual(result.batches_failed, 1)
        self.assertFalse(result.upstream_unavailable)

    def test_all_batches_failing_is_flagged(self):
        client = FakeClient([UpstreamError("a"), UpstreamError("b")])
        result = self.make(client).collect(terms=TWO_BATCH_TERMS, max_units=10)
        self.assertEqual(result.candidates, [])
        self.assertTrue(result.upstream_unavailable)

    def test_non_http_urls_are_dropped_and_output_is_capped(self):
        client = FakeClient([[c("ftp://a.com/x"), c("http://a.com/1"), c("https://a.com/2"), c("http://a.com/3")]])
        result = self.make(client).collect(terms=[WeightedTerm("gdp")], max_units=2)
        self.assertEqual([x.url for x in result.candidates], ["http://a.com/1", "https://a.com/2"])
        self.assertEqual(result.found, 3)

    def test_record_cap_and_time_window(self):
        client = FakeClient([[]])
        self.make(client).collect(
            terms=[WeightedTerm("gdp")],
            max_units=400,
            overrides=QueryOverrides(timespan="24h", max_records=100),
            max_article_age="7d",
        )
        params = client.calls[0]
        self.assertEqual(params.max_records, 100)
        self.assertEqual(params.timespan, "7d")

        client = FakeClient([[]])
        self.make(client).collect(terms=[WeightedTerm("gdp")], max_units=400)
        self.assertEqual(client.calls[0].max_records, 250)
        self.assertIsNone(client.calls[0].timespan)


class TestFilters(unittest.TestCase):
    def test_locale_filter_keeps_unreported(self):
        items = [
            c("http://a/1", language="Portuguese", country="Brazil"),
            c("http://a/2", language="English", country="United States"),
            c("http://a/3"),
        ]
        out = apply_locale_filter(items, ["pt"], ["BR"])
        self.assertEqual([x.url for x in out], ["http://a/1", "http://a/3"])

    def test_block_wins_over_allow(self):
        rules = [DomainRule("example.com", "allow"), DomainRule("spam.example.com", "block")]
        items = [
            c("http://1", domain="example.com"),
            c("http://2", domain="spam.example.com"),
            c("http://3", domain="other.org"),
            c("http://4"),
        ]
        self.assertEqual([x.url for x in apply_domain_filter(items, rules)], ["http://1"])

    def test_block_only_keeps_unknown_domains(self):
        rules = [DomainRule("spam.com", "block")]
        items = [c("http://1", domain="news.spam.com"), c("http://2", domain="ok.com"), c("http://3")]
        self.assertEqual([x.url for x in apply_domain_filter(items, rules)], ["http://2", "http://3"])


if __name__ == "__main__":
    unittest.main()
