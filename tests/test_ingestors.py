import os
import tempfile
import unittest
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock, patch

import requests

from newsroom.errors import SourceFetchError
from newsroom.ingestion.article_types import Source
from newsroom.ingestion.ingestors import NewsAPIIngestor, RSSIngestor
from newsroom.storage.sqlite_store import SQLiteArticleStore

RSS_DOCUMENT = b"""<?xml version="1.0" encoding="UTF-8"?>
<rss version="2.0" xmlns:media="http://search.yahoo.com/mrss/">
  <channel>
    <title>Example World</title>
    <link>https://example.com/</link>
    <description>World news</description>
    <item>
      <title>Parliament approves emergency budget</title>
      <link>https://example.com/world/budget</link>
      <description>&lt;p&gt;Officials said the vote passed late on Monday.&lt;/p&gt;</description>
      <pubDate>Mon, 06 May 2024 10:00:00 GMT</pubDate>
      <category>Politics</category>
      <media:content url="https://img.example.com/budget.jpg" medium="image" />
    </item>
    <item>
      <title>An item without a link</title>
      <description>Should be skipped.</description>
    </item>
    <item>
      <title>Floods force evacuations in the valley</title>
      <link>https://example.com/world/floods</link>
      <description>Rivers burst their banks overnight.</description>
      <enclosure url="https://img.example.com/floods.jpg" type="image/jpeg" length="1000" />
    </item>
  </channel>
</rss>
"""

FEED_SOURCE = Source(id="example-world", name="Example World", kind="rss",
                     url="https://example.com/rss.xml", category="world")
API_SOURCE = Source(id="newsapi-business", name="NewsAPI Business", kind="newsapi",
                    url="https://newsapi.org/v2/top-headlines?category=business", category="business")


def _response(content=b"", json_data=None, status_code=200):
    resp = MagicMock()
    resp.status_code = status_code
    resp.content = content
    resp.json.return_value = json_data
    if status_code >= 400:
        resp.raise_for_status.side_effect = requests.HTTPError(f"{status_code} error", response=resp)
    return resp


class TestRSSIngestor(unittest.TestCase):
    def setUp(self):
        self.ingestor = RSSIngestor(store=None)

    def test_parse_document(self):
        items = self.ingestor.parse(RSS_DOCUMENT, FEED_SOURCE)
        self.assertEqual([i.canonical_url for i in items],
                         ["https://example.com/world/budget", "https://example.com/world/floods"])

        first = items[0]
        self.assertEqual(first.title, "Parliament approves emergency budget")
        self.assertEqual(first.source_id, "example-world")
        self.assertEqual(first.category, "world")
        self.assertIn("Officials said the vote passed", first.raw_summary)
        self.assertEqual(first.published_at, datetime(2024, 5, 6, 10, 0, tzinfo=timezone.utc))
        self.assertEqual(first.image_url, "https://img.example.com/budget.jpg")
        self.assertEqual(first.tags, ("politics",))

        self.assertEqual(items[1].image_url, "https://img.example.com/floods.jpg")
        self.assertIsNone(items[1].published_at)

    def test_item_cap(self):
        ingestor = RSSIngestor(store=None, max_items=1)
        self.assertEqual(len(ingestor.parse(RSS_DOCUMENT, FEED_SOURCE)), 1)

    def test_garbage_document_is_a_fetch_error(self):
        with self.assertRaises(SourceFetchError):
            self.ingestor.parse(b"this is not a feed", FEED_SOURCE)

    @patch("newsroom.ingestion.ingestors.requests.get")
    def test_fetch_downloads_and_parses(self, mock_get):
        mock_get.return_value = _response(content=RSS_DOCUMENT)
        items = self.ingestor.fetch(FEED_SOURCE)
        self.assertEqual(len(items), 2)
        self.assertEqual(mock_get.call_args[0][0], "https://example.com/rss.xml")

    @patch("newsroom.ingestion.ingestors.requests.get")
    def test_http_error_is_a_fetch_error(self, mock_get):
        mock_get.return_value = _response(status_code=404)
        with self.assertRaises(SourceFetchError):
            self.ingestor.fetch(FEED_SOURCE)
        self.assertEqual(mock_get.call_count, 1)

    def test_invalid_feed_url(self):
        bad = Source(id="bad", name="Bad", kind="rss", url="ftp://example.com/feed")
        with self.assertRaises(SourceFetchError):
            self.ingestor.fetch(bad)


class TestNewsAPIIngestor(unittest.TestCase):
    def setUp(self):
        self.ingestor = NewsAPIIngestor(store=None, api_key="test-key", endpoint="https://newsapi.example/v2")

    def test_key_is_required(self):
        with self.assertRaises(ValueError):
            NewsAPIIngestor(store=None, api_key="")

    @patch("newsroom.ingestion.ingestors.requests.get")
    def test_fetch_maps_articles(self, mock_get):
        mock_get.return_value = _response(json_data={
            "status": "ok",
            "totalResults": 3,
            "articles": [
                {
                    "source": {"id": "reuters", "name": "Reuters"},
                    "title": "Stocks climb as inflation cools",
                    "description": "Markets rallied after softer inflation data.",
                    "url": "https://reuters.example/markets/stocks",
                    "urlToImage": "https://img.example/stocks.jpg",
                    "publishedAt": "2024-05-06T09:30:00Z",
                    "content": "Markets rallied… [+2100 chars]",
                },
                {"source": {"name": None}, "title": "[Removed]", "url": "https://removed.com"},
                {"source": {"name": "Nobody"}, "title": "No url here", "url": None},
            ],
        })

        items = self.ingestor.fetch(API_SOURCE)

        self.assertEqual(len(items), 1)
        item = items[0]
        self.assertEqual(item.canonical_url, "https://reuters.example/markets/stocks")
        self.assertEqual(item.category, "business")
        self.assertEqual(item.raw_content, "Markets rallied after softer inflation data.")
        self.assertEqual(item.image_url, "https://img.example/stocks.jpg")
        self.assertEqual(item.published_at, datetime(2024, 5, 6, 9, 30, tzinfo=timezone.utc))
        self.assertEqual(item.tags[0], "reuters")

        url = mock_get.call_args[0][0]
        kwargs = mock_get.call_args[1]
        self.assertEqual(url, "https://newsapi.example/v2/top-headlines")
        self.assertEqual(kwargs["params"]["category"], "business")
        self.assertEqual(kwargs["headers"]["X-Api-Key"], "test-key")

    @patch("newsroom.ingestion.ingestors.requests.get")
    def test_error_status_is_a_fetch_error(self, mock_get):
        mock_get.return_value = _response(json_data={"status": "error", "message": "Your API key is invalid."})
        with self.assertRaises(SourceFetchError) as ctx:
            self.ingestor.fetch(API_SOURCE)
        self.assertIn("Your API key is invalid.", str(ctx.exception))


class TestDueSources(unittest.TestCase):
    def setUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        self.store = SQLiteArticleStore(os.path.join(self.tmp.name, "newsroom.db"))

    def tearDown(self):
        self.tmp.cleanup()

    def test_only_due_enabled_sources_of_own_kind(self):
        now = datetime.now(timezone.utc)
        self.store.upsert_source(Source(id="never", name="Never", kind="rss", url="https://a.example/rss",
                                        category="world"))
        self.store.upsert_source(Source(id="stale", name="Stale", kind="rss", url="https://b.example/rss",
                                        category="world", update_interval_minutes=30,
                                        last_fetch_at=now - timedelta(minutes=45)))
        self.store.upsert_source(Source(id="fresh", name="Fresh", kind="rss", url="https://c.example/rss",
                                        category="world", update_interval_minutes=30,
                                        last_fetch_at=now - timedelta(minutes=5)))
        self.store.upsert_source(Source(id="off", name="Off", kind="rss", url="https://d.example/rss",
                                        category="world", enabled=False))
        self.store.upsert_source(Source(id="api", name="Api", kind="newsapi", url="https://e.example",
                                        category="world"))

        due = RSSIngestor(self.store).list_due_sources("world", now=now)
        self.assertEqual([s.id for s in due], ["never", "stale"])


if __name__ == "__main__":
    unittest.main()
