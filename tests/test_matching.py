import unittest

from newsroom.dedup.matching import hash_url, levenshtein_distance, normalize_title, similarity


class TestLevenshtein(unittest.TestCase):
    def test_known_distances(self):
        self.assertEqual(levenshtein_distance("hello", "hello"), 0)
        self.assertEqual(levenshtein_distance("hello", "hallo"), 1)
        self.assertEqual(levenshtein_distance("kitten", "sitting"), 3)
        self.assertEqual(levenshtein_distance("hello", ""), 5)
        self.assertEqual(levenshtein_distance("", ""), 0)

    def test_distance_is_symmetric(self):
        self.assertEqual(levenshtein_distance("flaw", "lawn"), levenshtein_distance("lawn", "flaw"))


class TestTitleSimilarity(unittest.TestCase):
    def test_identical_titles_score_one(self):
        self.assertEqual(similarity("Markets rally", "Markets rally"), 1.0)
        self.assertEqual(similarity("", ""), 1.0)

    def test_case_and_punctuation_are_ignored(self):
        self.assertEqual(similarity("Markets Rally!", "markets rally"), 1.0)
        self.assertEqual(normalize_title("  Hello,   World!! "), "hello world")

    def test_symmetric_and_bounded(self):
        pairs = [
            ("Breaking: Major earthquake hits Japan", "Scientists discover new species in Amazon"),
            ("abc", ""),
            ("Oil prices fall", "Oil prices fall sharply"),
        ]
        for a, b in pairs:
            s = similarity(a, b)
            self.assertEqual(s, similarity(b, a))
            self.assertGreaterEqual(s, 0.0)
            self.assertLessEqual(s, 1.0)

    def test_near_duplicate_headline_is_above_threshold(self):
        s = similarity(
            "Breaking: Major earthquake hits Japan",
            "Breaking News: Major earthquake hits Japan",
        )
        self.assertGreater(s, 0.8)

    def test_unrelated_headline_is_far_below_threshold(self):
        s = similarity(
            "Breaking: Major earthquake hits Japan",
            "Scientists discover new species in Amazon",
        )
        self.assertLess(s, 0.3)

    def test_one_side_empty(self):
        self.assertEqual(similarity("abc", ""), 0.0)


class TestUrlHash(unittest.TestCase):
    def test_hash_is_stable(self):
        url = "https://example.com/world/story-1"
        self.assertEqual(hash_url(url), hash_url(url))
        self.assertEqual(len(hash_url(url)), 32)

    def test_query_string_is_part_of_identity(self):
        self.assertNotEqual(
            hash_url("https://example.com/a?id=1"),
            hash_url("https://example.com/a?id=2"),
        )


if __name__ == "__main__":
    unittest.main()
