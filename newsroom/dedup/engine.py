"""Two-stage duplicate detection.

Stage 1 (exact): md5 of the canonical URL against articles accepted earlier in
this run and against the store.
Stage 2 (fuzzy): normalized-title similarity against the recency window of the
candidate's category.

The per-run state lives in an explicit `DedupContext`; the engine itself holds
no mutable state, so one engine can serve any number of runs.
"""

from __future__ import annotations

import logging
import threading
from collections import deque
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Deque, Dict, Iterable, List, Optional, Set

from newsroom.dedup.matching import hash_url, similarity
from newsroom.ingestion.article_types import CandidateItem
from newsroom.storage.base import ArticleStore

logger = logging.getLogger(__name__)

DEFAULT_THRESHOLD = 0.8
DEFAULT_WINDOW_SIZE = 200
DEFAULT_WINDOW_HOURS = 24


@dataclass(frozen=True)
class Decision:
    accepted: bool
    reason: str = ""
    url_hash: str = ""
    score: float = 0.0
    matched_title: Optional[str] = None

    @classmethod
    def accept(cls, url_hash: str) -> "Decision":
        return cls(accepted=True, url_hash=url_hash)

    @classmethod
    def reject(cls, reason: str, url_hash: str, score: float = 1.0, matched_title: Optional[str] = None) -> "Decision":
        return cls(accepted=False, reason=reason, url_hash=url_hash, score=score, matched_title=matched_title)


# loader(category, size, since) -> titles, newest first
TitleLoader = Callable[[str, int, Optional[datetime]], Iterable[str]]


class RecencyWindow:
    """Ring buffer of the last N titles per category.

    Each category is seeded from the loader the first time it is consulted;
    titles accepted afterwards are pushed on top and the oldest fall off.
    `load` and `seed` split the seeding so callers can run the loader outside
    their own lock.
    """

    def __init__(self, loader: Optional[TitleLoader] = None, *, size: int = DEFAULT_WINDOW_SIZE,
                 max_age_hours: int = DEFAULT_WINDOW_HOURS):
        if size < 1:
            raise ValueError("window size must be >= 1")
        self.size = size
        self.max_age_hours = max_age_hours
        self._loader = loader
        self._titles: Dict[str, Deque[str]] = {}

    def titles(self, category: str, now: Optional[datetime] = None) -> List[str]:
        return list(self._bucket(category, now))

    def is_seeded(self, category: str) -> bool:
        return category in self._titles

    def load(self, category: str, now: Optional[datetime] = None) -> List[str]:
        """Recent titles for `category` from the loader, newest first."""
        if self._loader is None:
            return []
        now = now or datetime.now(timezone.utc)
        since = now - timedelta(hours=self.max_age_hours) if self.max_age_hours else None
        return list(self._loader(category, self.size, since))

    def seed(self, category: str, recent: Iterable[str]) -> None:
        """Install loaded titles unless the category was seeded meanwhile."""
        if category in self._titles:
            return
        bucket: Deque[str] = deque(maxlen=self.size)
        # newest first in, newest on the right of the deque
        for title in reversed(list(recent)):
            bucket.append(title)
        self._titles[category] = bucket

    def remember(self, category: str, title: str) -> Optional[str]:
        """Push `title`; returns the title that fell off the full window, if any."""
        bucket = self._bucket(category)
        evicted = bucket[0] if len(bucket) == bucket.maxlen else None
        bucket.append(title)
        return evicted

    def forget(self, category: str, title: str, restore: Optional[str] = None) -> None:
        bucket = self._titles.get(category)
        if bucket is None:
            return
        try:
            bucket.remove(title)
        except ValueError:
            return
        if restore is not None and len(bucket) < bucket.maxlen:
            bucket.appendleft(restore)

    def _bucket(self, category: str, now: Optional[datetime] = None) -> Deque[str]:
        if category not in self._titles:
            self.seed(category, self.load(category, now))
        return self._titles[category]


class DedupContext:
    """Per-run dedup state shared by all source workers.

    `lock` guards the claimed-hash set and the window. Store lookups happen
    outside it; the final check-and-claim happens inside it.
    """

    def __init__(self, window: RecencyWindow):
        self.window = window
        self.lock = threading.Lock()
        self._claimed: Set[str] = set()
        self._evicted: Dict[str, str] = {}

    def is_claimed(self, url_hash: str) -> bool:
        return url_hash in self._claimed

    def claim(self, url_hash: str, category: str, title: str) -> None:
        self._claimed.add(url_hash)
        evicted = self.window.remember(category, title)
        if evicted is not None:
            self._evicted[url_hash] = evicted

    def release(self, candidate: CandidateItem) -> None:
        """Undo a claim after a failed write."""
        url_hash = hash_url(candidate.canonical_url)
        with self.lock:
            self._claimed.discard(url_hash)
            self.window.forget(candidate.category, candidate.title, restore=self._evicted.pop(url_hash, None))

    @property
    def claimed_count(self) -> int:
        return len(self._claimed)


class DeduplicationEngine:
    def __init__(self, store: ArticleStore, *, threshold: float = DEFAULT_THRESHOLD):
        if not 0.0 < threshold <= 1.0:
            raise ValueError("threshold must be in (0, 1]")
        self.store = store
        self.threshold = threshold

    def new_context(self, *, window_size: int = DEFAULT_WINDOW_SIZE,
                    window_hours: int = DEFAULT_WINDOW_HOURS) -> DedupContext:
        window = RecencyWindow(self._load_titles, size=window_size, max_age_hours=window_hours)
        return DedupContext(window)

    def _load_titles(self, category: str, size: int, since: Optional[datetime]) -> List[str]:
        return [a.title for a in self.store.find_recent_by_category(category, size, since=since)]

    def should_accept(self, candidate: CandidateItem, context: DedupContext) -> Decision:
        url_hash = hash_url(candidate.canonical_url)
        category = candidate.category
        with context.lock:
            if context.is_claimed(url_hash):
                return Decision.reject("url already accepted in this run", url_hash)
            seeded = context.window.is_seeded(category)

        if self.store.find_by_url_hash(url_hash) is not None:
            return Decision.reject("url already stored", url_hash)
        recent = None if seeded else context.window.load(category)

        with context.lock:
            if recent is not None:
                context.window.seed(category, recent)
            # another worker may have claimed the url while we were reading the store
            if context.is_claimed(url_hash):
                return Decision.reject("url already accepted in this run", url_hash)

            for existing in context.window.titles(category):
                score = similarity(candidate.title, existing)
                if score >= self.threshold:
                    logger.debug(f"Similar title {score:.2f}: '{candidate.title}' ~ '{existing}'")
                    return Decision.reject(
                        f"title {int(round(score * 100))}% similar to '{existing}'",
                        url_hash,
                        score=score,
                        matched_title=existing,
                    )

            context.claim(url_hash, category, candidate.title)
            return Decision.accept(url_hash)
