import unittest
from unittest import mock

import requests

from newsharvest.errors import UpstreamError
from newsharvest.ingestion.gdelt_client import GDELTClient, QueryParams, locate_articles


def _response(status=200, body=None, content_type="application/json; charset=utf-8", text=""):
    resp = mock.Mock()
    resp.status_code = status
    resp.headers = {"Content-Type": content_type}
    resp.text = text
    if isinstance(body, Exception):
        resp.json.side_effect = body
    else:
        resp.json.return_value = body
    return resp


def _article(url, **extra):
    rec = {"url": url, "title": "t", "seendate": "20260217T101500Z", "domain": "example.com"}
    rec.update(extra)
    return rec


class TestLocateArticles(unittest.TestCase):
    def test_top_level_list(self):
        self.assertEqual(locate_articles([_article("http://a")]), [_article("http://a")])

    def test_named_fields(self):
        self.assertEqual(len(locate_articles({"articles": [_article("http://a")]})), 1)
        self.assertEqual(len(locate_articles({"results": [_article("http://a")]})), 1)

    def test_first_non_empty_array(self):
        body = {"meta": {"count": 1}, "empty": [], "items": [_article("http://a")]}
        self.assertEqual(len(locate_articles(body)), 1)

    def test_no_array(self):
        self.assertEqual(locate_articles({"status": "ok"}), [])
        self.assertEqual(locate_articles("nope"), [])


class TestGDELTClient(unittest.TestCase):
    def setUp(self):
        self.session = mock.Mock()
        self.sleeps = []
        self.client = GDELTClient(
            "https://gdelt.test/api", session=self.session, sleep=self.sleeps.append, backoff=1.0
        )

    def test_request_parameters(self):
        self.session.get.return_value = _response(body={"articles": [_article("http://a.com/1")]})
        out = self.client.search(QueryParams(query="gdp sourcelang:english", max_records=50, timespan="7d"))

        self.assertEqual([c.url for c in out], ["http://a.com/1"])
        _, kwargs = self.session.get.call_args
        self.assertEqual(
            kwargs["params"],
            {"query": "gdp sourcelang:english", "mode": "artlist", "format": "json", "maxrecords": 50, "timespan": "7d"},
        )
        self.assertIn("User-Agent", kwargs["headers"])

    def test_timespan_omitted_when_unset(self):
        self.assertNotIn("timespan", QueryParams(query="gdp").to_request_params())

    def test_empty_query_is_a_programming_error(self):
        with self.assertRaises(AssertionError):
            self.client.search(QueryParams(query="  "))
        self.session.get.assert_not_called()

    def test_retries_then_succeeds(self):
        self.session.get.side_effect = [
            _response(status=429, body=None, text="slow down"),
            _response(status=200, body=None, content_type="text/html", text="<html>"),
            _response(body=[_article("http://a.com/1")]),
        ]
        out = self.client.search(QueryParams(query="gdp"))
        self.assertEqual(len(out), 1)
        self.assertEqual(self.session.get.call_count, 3)
        self.assertEqual(self.sleeps, [1.0, 2.0])

    def test_exhausted_retries_raise(self):
        self.session.get.return_value = _response(status=503, text="unavailable")
        with self.assertRaises(UpstreamError) as ctx:
            self.client.search(QueryParams(query="gdp"))
        self.assertEqual(ctx.exception.status_code, 503)
        self.assertEqual(self.session.get.call_count, 3)

    def test_non_json_content_type(self):
        self.session.get.return_value = _response(content_type="text/plain", text="Invalid query")
        with self.assertRaises(UpstreamError):
            self.client.search(QueryParams(query="gdp"))

    def test_invalid_json_body(self):
        self.session.get.return_value = _response(body=ValueError("bad json"))
        with self.assertRaises(UpstreamError):
            self.client.search(QueryParams(query="gdp"))

    def test_network_error_is_upstream_error(self):
        self.session.get.side_effect = requests.ConnectionError("refused")
        with self.assertRaises(UpstreamError):
            self.client.search(QueryParams(query="gdp"))

    def test_records_without_url_are_dropped(self):
        self.session.get.return_value = _response(body={"articles": [{"title": "no url"}, _article("http://a.com/2")]})
        out = self.client.search(QueryParams(query="gdp"))
        self.assertEqual([c.url for c in out], ["http://a.com/2"])
        self.assertEqual(out[0].domain, "example.com")


if __name__ == "__main__":
    unittest.main()
