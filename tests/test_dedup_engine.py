import os
import tempfile
import threading
import unittest
from dataclasses import replace

from newsroom.dedup.engine import DeduplicationEngine, RecencyWindow
from newsroom.ingestion.article_types import CandidateItem
from newsroom.storage.sqlite_store import SQLiteArticleStore
from newsroom.text.normalizer import normalize


def _candidate(title, url, category="world"):
    return CandidateItem(source_id="bbc-world", category=category, title=title, canonical_url=url)


class TestDeduplicationEngine(unittest.TestCase):
    def setUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        self.store = SQLiteArticleStore(os.path.join(self.tmp.name, "newsroom.db"))
        self.engine = DeduplicationEngine(self.store)

    def tearDown(self):
        self.tmp.cleanup()

    def _persist(self, title, url, category="world"):
        article = replace(normalize(title, "Some body text for the stored article."), canonical_url=url)
        return self.store.create(article, "bbc-world", category)

    def test_new_article_is_accepted_and_claimed(self):
        ctx = self.engine.new_context()
        decision = self.engine.should_accept(_candidate("Rates rise again", "https://example.com/a"), ctx)
        self.assertTrue(decision.accepted)
        self.assertEqual(ctx.claimed_count, 1)

    def test_stored_url_is_rejected(self):
        self._persist("Rates rise again", "https://example.com/a")
        ctx = self.engine.new_context()
        decision = self.engine.should_accept(_candidate("Completely different title", "https://example.com/a"), ctx)
        self.assertFalse(decision.accepted)
        self.assertEqual(decision.reason, "url already stored")

    def test_same_url_in_one_run_is_rejected(self):
        ctx = self.engine.new_context()
        first = _candidate("Rates rise again", "https://example.com/a")
        second = _candidate("Election called for spring", "https://example.com/a")
        self.assertTrue(self.engine.should_accept(first, ctx).accepted)
        decision = self.engine.should_accept(second, ctx)
        self.assertFalse(decision.accepted)
        self.assertEqual(decision.reason, "url already accepted in this run")

    def test_similar_title_against_stored_article(self):
        self._persist("Breaking: Major earthquake hits Japan", "https://example.com/quake-1")
        ctx = self.engine.new_context()
        decision = self.engine.should_accept(
            _candidate("Breaking News: Major earthquake hits Japan", "https://other.example/quake"), ctx
        )
        self.assertFalse(decision.accepted)
        self.assertGreater(decision.score, 0.8)
        self.assertEqual(decision.matched_title, "Breaking: Major earthquake hits Japan")

    def test_similar_title_within_run(self):
        ctx = self.engine.new_context()
        self.assertTrue(self.engine.should_accept(
            _candidate("Central bank raises interest rates again", "https://a.example/1"), ctx).accepted)
        decision = self.engine.should_accept(
            _candidate("Central bank raises interest rates once again", "https://b.example/2"), ctx)
        self.assertFalse(decision.accepted)

    def test_similar_title_in_other_category_is_accepted(self):
        self._persist("Breaking: Major earthquake hits Japan", "https://example.com/quake-1", category="world")
        ctx = self.engine.new_context()
        decision = self.engine.should_accept(
            _candidate("Breaking News: Major earthquake hits Japan", "https://other.example/quake", category="science"),
            ctx,
        )
        self.assertTrue(decision.accepted)

    def test_unrelated_title_is_accepted(self):
        self._persist("Breaking: Major earthquake hits Japan", "https://example.com/quake-1")
        ctx = self.engine.new_context()
        decision = self.engine.should_accept(
            _candidate("Scientists discover new species in Amazon", "https://example.com/species"), ctx
        )
        self.assertTrue(decision.accepted)

    def test_release_allows_retry(self):
        ctx = self.engine.new_context()
        candidate = _candidate("Rates rise again", "https://example.com/a")
        self.assertTrue(self.engine.should_accept(candidate, ctx).accepted)
        ctx.release(candidate)
        self.assertEqual(ctx.claimed_count, 0)
        self.assertTrue(self.engine.should_accept(candidate, ctx).accepted)

    def test_release_restores_title_pushed_out_of_full_window(self):
        ctx = self.engine.new_context(window_size=2)
        self.assertTrue(self.engine.should_accept(_candidate("Rates rise again", "https://example.com/a"), ctx).accepted)
        self.assertTrue(self.engine.should_accept(_candidate("Floods hit the valley", "https://example.com/b"), ctx).accepted)
        failed = _candidate("Election results announced", "https://example.com/c")
        self.assertTrue(self.engine.should_accept(failed, ctx).accepted)
        self.assertEqual(ctx.window.titles("world"), ["Floods hit the valley", "Election results announced"])

        ctx.release(failed)
        self.assertEqual(ctx.window.titles("world"), ["Rates rise again", "Floods hit the valley"])

    def test_store_is_read_without_holding_context_lock(self):
        ctx = self.engine.new_context()
        seen = []
        find_by_url_hash = self.store.find_by_url_hash
        find_recent = self.store.find_recent_by_category

        def lookup(url_hash):
            seen.append(ctx.lock.locked())
            return find_by_url_hash(url_hash)

        def recent(category, limit, since=None):
            seen.append(ctx.lock.locked())
            return find_recent(category, limit, since=since)

        self.store.find_by_url_hash = lookup
        self.store.find_recent_by_category = recent
        self.assertTrue(self.engine.should_accept(_candidate("Rates rise again", "https://example.com/a"), ctx).accepted)
        self.assertEqual(seen, [False, False])

    def test_concurrent_same_url_accepted_once(self):
        ctx = self.engine.new_context()
        results = []
        barrier = threading.Barrier(8)

        def worker(i):
            barrier.wait()
            results.append(self.engine.should_accept(_candidate(f"Headline {i}", "https://example.com/same"), ctx))

        threads = [threading.Thread(target=worker, args=(i,)) for i in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        self.assertEqual(sum(1 for d in results if d.accepted), 1)

    def test_invalid_threshold(self):
        with self.assertRaises(ValueError):
            DeduplicationEngine(self.store, threshold=0)


class TestRecencyWindow(unittest.TestCase):
    def test_window_is_bounded_and_keeps_newest(self):
        window = RecencyWindow(size=3)
        for i in range(5):
            window.remember("world", f"title {i}")
        self.assertEqual(window.titles("world"), ["title 2", "title 3", "title 4"])

    def test_seeded_once_from_loader(self):
        calls = []

        def loader(category, size, since):
            calls.append((category, size))
            return ["newest", "older"]

        window = RecencyWindow(loader, size=5)
        self.assertEqual(window.titles("world"), ["older", "newest"])
        window.remember("world", "fresh")
        self.assertEqual(window.titles("world"), ["older", "newest", "fresh"])
        self.assertEqual(calls, [("world", 5)])

    def test_forget_unknown_title_is_noop(self):
        window = RecencyWindow(size=2)
        window.forget("world", "missing")
        window.remember("world", "kept")
        window.forget("world", "missing")
        self.assertEqual(window.titles("world"), ["kept"])

    def test_remember_reports_evicted_title(self):
        window = RecencyWindow(size=2)
        self.assertIsNone(window.remember("world", "first"))
        self.assertIsNone(window.remember("world", "second"))
        self.assertEqual(window.remember("world", "third"), "first")
        window.forget("world", "third", restore="first")
        self.assertEqual(window.titles("world"), ["first", "second"])


if __name__ == "__main__":
    unittest.main()
