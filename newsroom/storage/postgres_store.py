"""Postgres implementation of the article store (psycopg + SQL).

Selected when PG_DSN is configured. Schema creation is idempotent
(CREATE IF NOT EXISTS) and runs on construction.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Dict, List, Optional

import psycopg
from psycopg.types.json import Jsonb

from newsroom.errors import DuplicateArticleError, PersistenceWriteError, StorageError
from newsroom.ingestion.article_types import NormalizedArticle, PersistedArticle, Sentence, Source
from newsroom.ingestion.url_utils import article_id_for, hash_url

logger = logging.getLogger(__name__)

SCHEMA_STATEMENTS: list[str] = [
    """
    CREATE TABLE IF NOT EXISTS sources (
      id TEXT PRIMARY KEY,
      name TEXT NOT NULL,
      kind TEXT NOT NULL,
      url TEXT NOT NULL,
      category TEXT NOT NULL DEFAULT 'general',
      enabled BOOLEAN NOT NULL DEFAULT TRUE,
      update_interval_minutes INTEGER NOT NULL DEFAULT 60,
      last_fetch_at TIMESTAMPTZ
    );
    """,
    """
    CREATE TABLE IF NOT EXISTS articles (
      id TEXT PRIMARY KEY,
      url_hash TEXT NOT NULL UNIQUE,
      source_id TEXT NOT NULL,
      category TEXT NOT NULL,
      title TEXT NOT NULL,
      summary TEXT,
      content TEXT,
      url TEXT NOT NULL,
      image_url TEXT,
      tags JSONB,
      word_count INTEGER NOT NULL DEFAULT 0,
      reading_time_seconds INTEGER NOT NULL DEFAULT 0,
      difficulty SMALLINT NOT NULL DEFAULT 1,
      published_at TIMESTAMPTZ,
      is_processed BOOLEAN NOT NULL DEFAULT FALSE,
      created_at TIMESTAMPTZ NOT NULL DEFAULT now()
    );
    """,
    """
    CREATE TABLE IF NOT EXISTS sentences (
      article_id TEXT NOT NULL REFERENCES articles(id) ON DELETE CASCADE,
      sentence_order INTEGER NOT NULL,
      text TEXT NOT NULL,
      word_count INTEGER NOT NULL DEFAULT 0,
      PRIMARY KEY (article_id, sentence_order)
    );
    """,
    "CREATE INDEX IF NOT EXISTS idx_articles_category_created ON articles(category, created_at DESC);",
    "CREATE INDEX IF NOT EXISTS idx_articles_source ON articles(source_id);",
]

_ARTICLE_COLUMNS = (
    "id, url_hash, source_id, category, title, summary, content, url, image_url, tags, "
    "word_count, reading_time_seconds, difficulty, published_at, is_processed, created_at"
)


def ensure_postgres_schema(pg_dsn: str) -> None:
    try:
        with psycopg.connect(pg_dsn, autocommit=True) as conn:
            with conn.cursor() as cur:
                for stmt in SCHEMA_STATEMENTS:
                    cur.execute(stmt)
    except psycopg.Error as e:
        raise StorageError(f"Postgres schema setup failed: {e}") from e


class PostgresArticleStore:
    def __init__(self, pg_dsn: str, *, ensure_schema: bool = True):
        self.pg_dsn = pg_dsn
        if ensure_schema:
            ensure_postgres_schema(pg_dsn)

    def _connect(self, **kwargs):
        try:
            return psycopg.connect(self.pg_dsn, **kwargs)
        except psycopg.OperationalError as e:
            raise StorageError(f"Postgres connection failed: {e}") from e

    def create(self, article: NormalizedArticle, source_id: str, category: str) -> PersistedArticle:
        if not article.canonical_url:
            raise PersistenceWriteError("article has no canonical_url")
        created_at = datetime.now(timezone.utc)
        persisted = PersistedArticle(
            id=article_id_for(article.canonical_url),
            url_hash=hash_url(article.canonical_url),
            source_id=source_id,
            category=category,
            title=article.title,
            summary=article.summary,
            content=article.content,
            canonical_url=article.canonical_url,
            sentences=article.sentences,
            word_count=article.word_count,
            reading_time_seconds=article.reading_time_seconds,
            difficulty=article.difficulty,
            published_at=article.published_at,
            image_url=article.image_url,
            tags=tuple(article.tags),
            is_processed=False,
            created_at=created_at,
        )
        try:
            with self._connect() as conn:
                with conn.cursor() as cur:
                    cur.execute(
                        f"""
                        INSERT INTO articles ({_ARTICLE_COLUMNS})
                        VALUES (%(id)s, %(url_hash)s, %(source_id)s, %(category)s, %(title)s, %(summary)s,
                                %(content)s, %(url)s, %(image_url)s, %(tags)s, %(word_count)s,
                                %(reading_time_seconds)s, %(difficulty)s, %(published_at)s, FALSE, %(created_at)s)
                        """,
                        {
                            "id": persisted.id,
                            "url_hash": persisted.url_hash,
                            "source_id": source_id,
                            "category": category,
                            "title": persisted.title,
                            "summary": persisted.summary,
                            "content": persisted.content,
                            "url": persisted.canonical_url,
                            "image_url": persisted.image_url,
                            "tags": Jsonb(list(persisted.tags)),
                            "word_count": persisted.word_count,
                            "reading_time_seconds": persisted.reading_time_seconds,
                            "difficulty": persisted.difficulty,
                            "published_at": persisted.published_at,
                            "created_at": created_at,
                        },
                    )
                    if persisted.sentences:
                        cur.executemany(
                            "INSERT INTO sentences (article_id, sentence_order, text, word_count) VALUES (%s, %s, %s, %s)",
                            [(persisted.id, s.order, s.text, s.word_count) for s in persisted.sentences],
                        )
        except psycopg.errors.UniqueViolation as e:
            raise DuplicateArticleError(f"article already stored: {article.canonical_url}") from e
        except (psycopg.Error, StorageError) as e:
            raise PersistenceWriteError(f"failed to store '{article.title[:60]}': {e}") from e
        return persisted

    def find_by_url_hash(self, url_hash: str) -> Optional[PersistedArticle]:
        with self._connect() as conn:
            with conn.cursor() as cur:
                cur.execute(f"SELECT {_ARTICLE_COLUMNS} FROM articles WHERE url_hash = %s", (url_hash,))
                row = cur.fetchone()
        return self._row_to_article(row) if row else None

    def find_recent_by_category(self, category: str, window_size: int,
                                since: Optional[datetime] = None) -> List[PersistedArticle]:
        where = ["category = %s"]
        params: list = [category]
        if since is not None:
            where.append("created_at >= %s")
            params.append(since)
        params.append(max(1, int(window_size)))
        with self._connect() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    f"SELECT {_ARTICLE_COLUMNS} FROM articles WHERE {' AND '.join(where)} "
                    "ORDER BY created_at DESC LIMIT %s",
                    params,
                )
                rows = cur.fetchall()
        return [self._row_to_article(r) for r in rows]

    def get_article(self, article_id: str) -> Optional[PersistedArticle]:
        with self._connect() as conn:
            with conn.cursor() as cur:
                cur.execute(f"SELECT {_ARTICLE_COLUMNS} FROM articles WHERE id = %s", (article_id,))
                row = cur.fetchone()
                if not row:
                    return None
                cur.execute(
                    "SELECT sentence_order, text, word_count FROM sentences WHERE article_id = %s ORDER BY sentence_order",
                    (article_id,),
                )
                sentence_rows = cur.fetchall()
        sentences = tuple(Sentence(text=t, order=o, word_count=wc) for o, t, wc in sentence_rows)
        return self._row_to_article(row, sentences)

    def _row_to_article(self, row, sentences=()) -> PersistedArticle:
        # Row ordering matches _ARTICLE_COLUMNS.
        (
            aid, url_hash, source_id, category, title, summary, content, url, image_url, tags,
            word_count, reading_time_seconds, difficulty, published_at, is_processed, created_at,
        ) = row
        return PersistedArticle(
            id=aid,
            url_hash=url_hash,
            source_id=source_id,
            category=category,
            title=title,
            summary=summary or "",
            content=content or "",
            canonical_url=url,
            sentences=tuple(sentences),
            word_count=int(word_count or 0),
            reading_time_seconds=int(reading_time_seconds or 0),
            difficulty=int(difficulty or 1),
            published_at=published_at,
            image_url=image_url,
            tags=tuple(tags or ()),
            is_processed=bool(is_processed),
            created_at=created_at,
        )

    def upsert_source(self, source: Source) -> None:
        with self._connect(autocommit=True) as conn:
            with conn.cursor() as cur:
                cur.execute(
                    """
                    INSERT INTO sources (id, name, kind, url, category, enabled, update_interval_minutes, last_fetch_at)
                    VALUES (%s, %s, %s, %s, %s, %s, %s, %s)
                    ON CONFLICT (id) DO UPDATE SET
                      name = EXCLUDED.name,
                      kind = EXCLUDED.kind,
                      url = EXCLUDED.url,
                      category = EXCLUDED.category,
                      enabled = EXCLUDED.enabled,
                      update_interval_minutes = EXCLUDED.update_interval_minutes,
                      last_fetch_at = COALESCE(EXCLUDED.last_fetch_at, sources.last_fetch_at)
                    """,
                    (
                        source.id,
                        source.name,
                        source.kind,
                        source.url,
                        source.category,
                        source.enabled,
                        int(source.update_interval_minutes),
                        source.last_fetch_at,
                    ),
                )

    def list_sources(self, *, kind: Optional[str] = None, category: Optional[str] = None,
                     enabled_only: bool = True) -> List[Source]:
        where = ["1=1"]
        params: list = []
        if kind:
            where.append("kind = %s")
            params.append(kind)
        if category:
            where.append("category = %s")
            params.append(category)
        if enabled_only:
            where.append("enabled")
        with self._connect() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    "SELECT id, name, kind, url, category, enabled, update_interval_minutes, last_fetch_at "
                    f"FROM sources WHERE {' AND '.join(where)} ORDER BY id",
                    params,
                )
                rows = cur.fetchall()
        return [
            Source(
                id=sid,
                name=name,
                kind=kind_,
                url=url,
                category=cat,
                enabled=bool(enabled),
                update_interval_minutes=int(interval),
                last_fetch_at=last_fetch_at,
            )
            for sid, name, kind_, url, cat, enabled, interval, last_fetch_at in rows
        ]

    def update_source_last_fetch(self, source_id: str, timestamp: datetime) -> None:
        with self._connect(autocommit=True) as conn:
            with conn.cursor() as cur:
                cur.execute("UPDATE sources SET last_fetch_at = %s WHERE id = %s", (timestamp, source_id))

    def count_articles(self) -> int:
        with self._connect() as conn:
            with conn.cursor() as cur:
                cur.execute("SELECT COUNT(*) FROM articles")
                return int(cur.fetchone()[0] or 0)

    def count_by_category(self) -> Dict[str, int]:
        with self._connect() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    "SELECT category, COUNT(*) AS count FROM articles GROUP BY category ORDER BY count DESC, category"
                )
                rows = cur.fetchall()
        return {category: int(count) for category, count in rows}

    def count_by_source(self) -> Dict[str, int]:
        with self._connect() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    """
                    SELECT COALESCE(s.name, 'Unknown') AS source, COUNT(*) AS count
                    FROM articles a
                    LEFT JOIN sources s ON s.id = a.source_id
                    GROUP BY COALESCE(s.name, 'Unknown')
                    ORDER BY count DESC, source
                    """
                )
                rows = cur.fetchall()
        return {source: int(count) for source, count in rows}
