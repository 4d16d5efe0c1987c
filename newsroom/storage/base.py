"""Persistence boundary required by the aggregation pipeline."""

from __future__ import annotations

from datetime import datetime
from typing import Dict, List, Optional, Protocol

from newsroom.ingestion.article_types import NormalizedArticle, PersistedArticle, Source


class ArticleStore(Protocol):
    def find_by_url_hash(self, url_hash: str) -> Optional[PersistedArticle]:  # pragma: no cover - interface
        ...

    def find_recent_by_category(self, category: str, window_size: int,
                                since: Optional[datetime] = None) -> List[PersistedArticle]:  # pragma: no cover - interface
        ...

    def create(self, article: NormalizedArticle, source_id: str, category: str) -> PersistedArticle:  # pragma: no cover - interface
        ...

    def get_article(self, article_id: str) -> Optional[PersistedArticle]:  # pragma: no cover - interface
        ...

    def update_source_last_fetch(self, source_id: str, timestamp: datetime) -> None:  # pragma: no cover - interface
        ...

    def upsert_source(self, source: Source) -> None:  # pragma: no cover - interface
        ...

    def list_sources(self, *, kind: Optional[str] = None, category: Optional[str] = None,
                     enabled_only: bool = True) -> List[Source]:  # pragma: no cover - interface
        ...

    def count_articles(self) -> int:  # pragma: no cover - interface
        ...

    def count_by_category(self) -> Dict[str, int]:  # pragma: no cover - interface
        ...

    def count_by_source(self) -> Dict[str, int]:  # pragma: no cover - interface
        """Article counts keyed by source display name."""
        ...
