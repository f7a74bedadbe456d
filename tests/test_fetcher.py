import time
import unittest
from datetime import datetime, timezone
from unittest.mock import MagicMock, patch

import httpx

from aviso.errors import FetchError
from aviso.infra.http import get_text
from aviso.models import Source
from aviso.providers.base import HttpTransport
from aviso.providers.newsapi import fetch_newsapi
from aviso.providers.rss import google_news_url, parse_feed
from aviso.services.fetcher import FetcherService


NOW = datetime(2026, 10, 19, 12, 0, tzinfo=timezone.utc)

SAMPLE_RSS = """<?xml version="1.0" encoding="UTF-8"?>
<rss version="2.0" xmlns:media="http://search.yahoo.com/mrss/">
<channel>
  <title>Example Wire</title>
  <item>
    <title>Fed raises rates by 0.25%</title>
    <link>https://wire.example.com/fed-raises</link>
    <guid>wire-1</guid>
    <pubDate>Mon, 19 Oct 2026 09:00:00 GMT</pubDate>
    <description>&lt;img src="https://img.example.com/fed.jpg"&gt; The central bank moved again.</description>
    <category>Business</category>
  </item>
  <item>
    <title>Undated item</title>
    <link>https://wire.example.com/undated</link>
    <guid>wire-2</guid>
    <pubDate>not a date</pubDate>
  </item>
  <item>
    <title>Markets close higher</title>
    <link>https://wire.example.com/markets</link>
    <guid>wire-3</guid>
    <pubDate>Mon, 19 Oct 2026 08:00:00 GMT</pubDate>
    <enclosure url="https://img.example.com/markets.jpg" type="image/jpeg" length="10"/>
  </item>
</channel>
</rss>
"""


class StubTransport(HttpTransport):
    def __init__(self, pages=None, fail=None, delay=None):
        super().__init__(attempts=1, backoff=0.0)
        self.pages = pages or {}
        self.fail = fail or set()
        self.delay = delay or {}
        self.calls = []

    def get_text(self, url, params=None):
        self.calls.append(url)
        if url in self.delay:
            time.sleep(self.delay[url])
        if url in self.fail:
            raise httpx.ConnectError("connection refused")
        return self.pages[url]

    def get_json(self, url, params=None):
        self.calls.append(url)
        return self.pages[url]


def _source(sid, url, **kw):
    return Source(id=sid, name=sid.title(), feed_url=url, **kw)


class ParseFeedTests(unittest.TestCase):
    def test_entries_and_images(self):
        items = parse_feed(SAMPLE_RSS, "wire")
        self.assertEqual(len(items), 3)
        self.assertEqual(items[0].guid, "wire-1")
        self.assertEqual(items[0].categories, ["Business"])
        self.assertIn("https://img.example.com/fed.jpg", items[0].image_candidates)
        self.assertEqual(items[2].image_candidates[0], "https://img.example.com/markets.jpg")

    def test_malformed_payload_fails_the_source(self):
        with self.assertRaises(FetchError) as ctx:
            parse_feed("<<< definitely not a feed", "wire")
        self.assertEqual(ctx.exception.source_id, "wire")

    def test_google_news_topic_url(self):
        url = google_news_url(Source(id="g", name="G", kind="googlenews", topic="technology", country="gb"))
        self.assertIn("/headlines/section/topic/TECHNOLOGY", url)
        self.assertIn("ceid=GB%3Aen", url)


class RetryTests(unittest.TestCase):
    @patch("aviso.infra.http.httpx.Client")
    def test_retries_with_exponential_backoff(self, mock_client):
        client = mock_client.return_value.__enter__.return_value
        client.get.side_effect = httpx.ConnectError("down")
        sleeps = []
        with self.assertRaises(httpx.ConnectError):
            get_text("https://feed.example.com", attempts=3, backoff=0.5, sleep=sleeps.append)
        self.assertEqual(client.get.call_count, 3)
        self.assertEqual(sleeps, [0.5, 1.0])

    @patch("aviso.infra.http.httpx.Client")
    def test_recovers_after_transient_failure(self, mock_client):
        client = mock_client.return_value.__enter__.return_value
        ok = MagicMock()
        ok.text = "body"
        client.get.side_effect = [httpx.ReadTimeout("slow"), ok]
        sleeps = []
        self.assertEqual(get_text("https://feed.example.com", attempts=3, backoff=0.2, sleep=sleeps.append), "body")
        self.assertEqual(sleeps, [0.2])


class FetcherServiceTests(unittest.TestCase):
    def test_unparseable_items_are_dropped_not_fatal(self):
        transport = StubTransport(pages={"https://wire/rss": SAMPLE_RSS})
        outcome = FetcherService(transport=transport).fetch_source(_source("wire", "https://wire/rss"), NOW)
        self.assertTrue(outcome.ok)
        self.assertEqual(len(outcome.drafts), 2)
        self.assertEqual(outcome.result.dropped, 1)
        self.assertEqual(outcome.drafts[0].category, "business")

    def test_one_failing_source_does_not_block_others(self):
        transport = StubTransport(pages={"https://good/rss": SAMPLE_RSS}, fail={"https://bad/rss"})
        service = FetcherService(transport=transport, concurrency=2)
        outcomes = service.fetch_all([_source("zeta", "https://good/rss"), _source("alpha", "https://bad/rss")], NOW)
        self.assertEqual([o.source.id for o in outcomes], ["alpha", "zeta"])
        self.assertFalse(outcomes[0].ok)
        self.assertEqual(outcomes[0].result.error_code, "fetch_error")
        self.assertIn("connection refused", outcomes[0].result.error_msg)
        self.assertTrue(outcomes[1].ok)
        self.assertEqual(len(outcomes[1].drafts), 2)

    def test_deadline_marks_slow_sources_as_timed_out(self):
        transport = StubTransport(
            pages={"https://fast/rss": SAMPLE_RSS, "https://slow/rss": SAMPLE_RSS},
            delay={"https://slow/rss": 1.0},
        )
        service = FetcherService(transport=transport, concurrency=2, deadline_seconds=0.2)
        outcomes = service.fetch_all([_source("fast", "https://fast/rss"), _source("slow", "https://slow/rss")], NOW)
        by_id = {o.source.id: o for o in outcomes}
        self.assertTrue(by_id["fast"].ok)
        self.assertFalse(by_id["slow"].ok)
        self.assertIn("timeout", by_id["slow"].result.error_msg)

    def test_deadline_reports_queued_sources_as_not_started(self):
        transport = StubTransport(
            pages={"https://slow/rss": SAMPLE_RSS, "https://queued/rss": SAMPLE_RSS},
            delay={"https://slow/rss": 1.0},
        )
        service = FetcherService(transport=transport, concurrency=1, deadline_seconds=0.2)
        outcomes = service.fetch_all([_source("slow", "https://slow/rss"), _source("queued", "https://queued/rss")], NOW)
        by_id = {o.source.id: o for o in outcomes}
        self.assertIn("timeout after 0.2s", by_id["slow"].result.error_msg)
        self.assertIn("not started", by_id["queued"].result.error_msg)
        self.assertNotIn("https://queued/rss", transport.calls)

    def test_max_items_caps_drafts(self):
        transport = StubTransport(pages={"https://wire/rss": SAMPLE_RSS})
        outcome = FetcherService(transport=transport).fetch_source(_source("wire", "https://wire/rss", max_items=1), NOW)
        self.assertEqual(len(outcome.drafts), 1)

    @patch.dict("os.environ", {}, clear=True)
    def test_newsapi_without_key_is_a_fetch_error(self):
        source = Source(id="napi", name="NewsAPI", kind="newsapi", category="science")
        with self.assertRaises(FetchError):
            fetch_newsapi(source, StubTransport())

    @patch.dict("os.environ", {"NEWSAPI_KEY": "k"}, clear=True)
    def test_newsapi_articles_become_raw_items(self):
        payload = {
            "status": "ok",
            "articles": [
                {
                    "title": "Lander touches down on moon",
                    "url": "https://space.example.com/lander",
                    "description": "A quiet landing.",
                    "publishedAt": "2026-10-19T07:00:00Z",
                    "urlToImage": "https://img.example.com/lander.jpg",
                    "author": "Staff",
                }
            ],
        }
        transport = StubTransport(pages={"https://newsapi.org/v2/top-headlines": payload})
        items = fetch_newsapi(Source(id="napi", name="NewsAPI", kind="newsapi", category="science"), transport)
        self.assertEqual(len(items), 1)
        self.assertEqual(items[0].link, "https://space.example.com/lander")
        self.assertEqual(items[0].image_candidates, ["https://img.example.com/lander.jpg"])


if __name__ == "__main__":
    unittest.main()
