import os
import unittest
import uuid
from dataclasses import replace

from newsroom.errors import DuplicateArticleError
from newsroom.ingestion.article_types import Source
from newsroom.ingestion.url_utils import hash_url
from newsroom.text.normalizer import normalize

PG_DSN = os.environ.get("PG_DSN", "").strip()


@unittest.skipUnless(PG_DSN, "PG_DSN not set")
class TestPostgresArticleStore(unittest.TestCase):
    @classmethod
    def setUpClass(cls):
        from newsroom.storage.postgres_store import PostgresArticleStore

        cls.store = PostgresArticleStore(PG_DSN)
        # Unique per run so repeated runs against one database do not collide.
        cls.run_id = uuid.uuid4().hex[:8]

    def _article(self, title, slug):
        url = f"https://example.com/{self.run_id}/{slug}"
        body = "Officials confirmed the figures on Monday afternoon. More details are expected soon."
        return replace(normalize(title, body), canonical_url=url, tags=("economy",))

    def test_create_roundtrip_and_duplicate(self):
        article = self._article("Central bank holds rates", "rates")
        persisted = self.store.create(article, f"src-{self.run_id}", f"cat-{self.run_id}")

        loaded = self.store.get_article(persisted.id)
        self.assertEqual(loaded.title, "Central bank holds rates")
        self.assertEqual(loaded.tags, ("economy",))
        self.assertEqual([s.order for s in loaded.sentences], [1, 2])
        self.assertIsNotNone(self.store.find_by_url_hash(hash_url(article.canonical_url)))

        with self.assertRaises(DuplicateArticleError):
            self.store.create(article, f"src-{self.run_id}", f"cat-{self.run_id}")

    def test_recent_by_category(self):
        category = f"recent-{self.run_id}"
        self.store.create(self._article("Older story", "older"), "src", category)
        self.store.create(self._article("Newer story", "newer"), "src", category)
        titles = [a.title for a in self.store.find_recent_by_category(category, 10)]
        self.assertEqual(titles, ["Newer story", "Older story"])

    def test_sources(self):
        sid = f"feed-{self.run_id}"
        self.store.upsert_source(Source(id=sid, name="Test Feed", kind="rss", url="https://example.com/rss",
                                        category=f"src-cat-{self.run_id}"))
        sources = self.store.list_sources(category=f"src-cat-{self.run_id}")
        self.assertEqual([s.id for s in sources], [sid])


if __name__ == "__main__":
    unittest.main()
