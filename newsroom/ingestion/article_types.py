"""Shared ingestion data types.

Candidates come out of the source adapters, get normalized by
`newsroom.text.normalizer` and become `PersistedArticle` rows once the
deduplication engine accepts them.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Tuple


@dataclass(frozen=True)
class CandidateItem:
    """Raw article produced by an adapter for one run (pre-normalization)."""

    source_id: str
    category: str
    title: str
    canonical_url: str
    raw_summary: str = ""
    raw_content: str = ""
    published_at: Optional[datetime] = None
    image_url: Optional[str] = None
    tags: Tuple[str, ...] = ()
    source_name: Optional[str] = None


@dataclass(frozen=True)
class Sentence:
    text: str
    order: int
    word_count: int


@dataclass(frozen=True)
class NormalizedArticle:
    title: str
    summary: str
    content: str
    sentences: Tuple[Sentence, ...]
    word_count: int
    reading_time_seconds: int
    difficulty: int
    # Carried over from the candidate by the orchestrator.
    canonical_url: Optional[str] = None
    published_at: Optional[datetime] = None
    image_url: Optional[str] = None
    tags: Tuple[str, ...] = ()


@dataclass(frozen=True)
class PersistedArticle:
    id: str
    url_hash: str
    source_id: str
    category: str
    title: str
    summary: str
    content: str
    canonical_url: str
    sentences: Tuple[Sentence, ...] = ()
    word_count: int = 0
    reading_time_seconds: int = 0
    difficulty: int = 1
    published_at: Optional[datetime] = None
    image_url: Optional[str] = None
    tags: Tuple[str, ...] = ()
    is_processed: bool = False
    created_at: Optional[datetime] = None


@dataclass
class Source:
    """A configured feed or API endpoint, polled at most once per interval."""

    id: str
    name: str
    kind: str
    url: str
    category: str = "general"
    enabled: bool = True
    update_interval_minutes: int = 60
    last_fetch_at: Optional[datetime] = None

    def is_due(self, now: Optional[datetime] = None) -> bool:
        if self.last_fetch_at is None:
            return True
        now = now or datetime.now(timezone.utc)
        last = self.last_fetch_at
        if last.tzinfo is None:
            last = last.replace(tzinfo=timezone.utc)
        return now - last >= timedelta(minutes=self.update_interval_minutes)


@dataclass
class SourceBreakdown:
    fetched: int = 0
    processed: int = 0


@dataclass
class AggregationResult:
    total_fetched: int = 0
    total_processed: int = 0
    duplicates_found: int = 0
    source_breakdown: Dict[str, SourceBreakdown] = field(default_factory=dict)
    errors: List[str] = field(default_factory=list)
    new_article_ids: List[str] = field(default_factory=list)
    cancelled: bool = False
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "totalFetched": self.total_fetched,
            "totalProcessed": self.total_processed,
            "duplicatesFound": self.duplicates_found,
            "sourceBreakdown": {
                kind: {"fetched": b.fetched, "processed": b.processed}
                for kind, b in self.source_breakdown.items()
            },
            "errors": list(self.errors),
            "newArticleIds": list(self.new_article_ids),
        }
