"""SQLite implementation of the article store.

One connection per operation (WAL mode), so worker threads can share a store
instance. The UNIQUE constraint on url_hash backs up the dedup engine.
"""

from __future__ import annotations

import json
import logging
import sqlite3
import time
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, Iterator, List, Optional

from newsroom.errors import DuplicateArticleError, PersistenceWriteError, StorageError
from newsroom.ingestion.article_types import NormalizedArticle, PersistedArticle, Sentence, Source
from newsroom.ingestion.url_utils import article_id_for, hash_url

logger = logging.getLogger(__name__)

SCHEMA_STATEMENTS = [
    """
    CREATE TABLE IF NOT EXISTS sources (
        id TEXT PRIMARY KEY,
        name TEXT NOT NULL,
        kind TEXT NOT NULL,
        url TEXT NOT NULL,
        category TEXT NOT NULL DEFAULT 'general',
        enabled INTEGER NOT NULL DEFAULT 1,
        update_interval_minutes INTEGER NOT NULL DEFAULT 60,
        last_fetch_at TEXT
    )
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
        tags TEXT,
        word_count INTEGER DEFAULT 0,
        reading_time_seconds INTEGER DEFAULT 0,
        difficulty INTEGER DEFAULT 1,
        published_at TEXT,
        is_processed INTEGER NOT NULL DEFAULT 0,
        created_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS sentences (
        article_id TEXT NOT NULL,
        sentence_order INTEGER NOT NULL,
        text TEXT NOT NULL,
        word_count INTEGER NOT NULL DEFAULT 0,
        PRIMARY KEY (article_id, sentence_order),
        FOREIGN KEY (article_id) REFERENCES articles(id) ON DELETE CASCADE
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_articles_category_created ON articles(category, created_at)",
    "CREATE INDEX IF NOT EXISTS idx_articles_source ON articles(source_id)",
    "CREATE INDEX IF NOT EXISTS idx_sources_kind ON sources(kind, category)",
]

_ARTICLE_COLUMNS = (
    "id, url_hash, source_id, category, title, summary, content, url, image_url, tags, "
    "word_count, reading_time_seconds, difficulty, published_at, is_processed, created_at"
)


def _ts(dt: Optional[datetime]) -> Optional[str]:
    """Fixed-width UTC ISO format so string comparison orders correctly."""
    if dt is None:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%f+00:00")


def _parse_ts(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class SQLiteArticleStore:
    def __init__(self, db_path: str = "newsroom.db"):
        self.db_path = db_path
        self.max_retries = 3
        self.retry_delay = 0.5
        Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
        self.init_database()

    @contextmanager
    def get_connection(self) -> Iterator[sqlite3.Connection]:
        conn = None
        for attempt in range(self.max_retries):
            try:
                conn = sqlite3.connect(self.db_path, timeout=30.0, check_same_thread=False)
                conn.row_factory = sqlite3.Row
                conn.execute("PRAGMA foreign_keys=ON;")
                conn.execute("PRAGMA journal_mode=WAL;")
                conn.execute("PRAGMA synchronous=NORMAL;")
                break
            except sqlite3.OperationalError as e:
                if conn is not None:
                    conn.close()
                    conn = None
                if "database is locked" in str(e) and attempt < self.max_retries - 1:
                    logger.warning(f"Database locked, retrying in {self.retry_delay}s (attempt {attempt + 1})")
                    time.sleep(self.retry_delay)
                    continue
                raise StorageError(f"Database connection failed: {e}") from e
        try:
            yield conn
        finally:
            conn.close()

    def init_database(self) -> None:
        with self.get_connection() as conn:
            for stmt in SCHEMA_STATEMENTS:
                conn.execute(stmt)
            conn.commit()

    # ------------------------------------------------------------------
    # Articles
    # ------------------------------------------------------------------
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
            with self.get_connection() as conn:
                conn.execute(
                    f"INSERT INTO articles ({_ARTICLE_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                    (
                        persisted.id,
                        persisted.url_hash,
                        source_id,
                        category,
                        persisted.title,
                        persisted.summary,
                        persisted.content,
                        persisted.canonical_url,
                        persisted.image_url,
                        json.dumps(list(persisted.tags)),
                        persisted.word_count,
                        persisted.reading_time_seconds,
                        persisted.difficulty,
                        _ts(persisted.published_at),
                        0,
                        _ts(created_at),
                    ),
                )
                conn.executemany(
                    "INSERT INTO sentences (article_id, sentence_order, text, word_count) VALUES (?, ?, ?, ?)",
                    [(persisted.id, s.order, s.text, s.word_count) for s in persisted.sentences],
                )
                conn.commit()
        except sqlite3.IntegrityError as e:
            raise DuplicateArticleError(f"article already stored: {article.canonical_url}") from e
        except (sqlite3.Error, StorageError) as e:
            raise PersistenceWriteError(f"failed to store '{article.title[:60]}': {e}") from e
        return persisted

    def find_by_url_hash(self, url_hash: str) -> Optional[PersistedArticle]:
        with self.get_connection() as conn:
            row = conn.execute(
                f"SELECT {_ARTICLE_COLUMNS} FROM articles WHERE url_hash = ?", (url_hash,)
            ).fetchone()
        return self._row_to_article(row) if row else None

    def find_recent_by_category(self, category: str, window_size: int,
                                since: Optional[datetime] = None) -> List[PersistedArticle]:
        sql = f"SELECT {_ARTICLE_COLUMNS} FROM articles WHERE category = ?"
        params: list = [category]
        if since is not None:
            sql += " AND created_at >= ?"
            params.append(_ts(since))
        sql += " ORDER BY created_at DESC LIMIT ?"
        params.append(max(1, int(window_size)))
        with self.get_connection() as conn:
            rows = conn.execute(sql, params).fetchall()
        return [self._row_to_article(r) for r in rows]

    def get_article(self, article_id: str) -> Optional[PersistedArticle]:
        with self.get_connection() as conn:
            row = conn.execute(f"SELECT {_ARTICLE_COLUMNS} FROM articles WHERE id = ?", (article_id,)).fetchone()
            if not row:
                return None
            sentence_rows = conn.execute(
                "SELECT sentence_order, text, word_count FROM sentences WHERE article_id = ? ORDER BY sentence_order",
                (article_id,),
            ).fetchall()
        sentences = tuple(
            Sentence(text=r["text"], order=r["sentence_order"], word_count=r["word_count"]) for r in sentence_rows
        )
        return self._row_to_article(row, sentences)

    def _row_to_article(self, row: sqlite3.Row, sentences=()) -> PersistedArticle:
        try:
            tags = tuple(json.loads(row["tags"] or "[]"))
        except ValueError:
            tags = ()
        return PersistedArticle(
            id=row["id"],
            url_hash=row["url_hash"],
            source_id=row["source_id"],
            category=row["category"],
            title=row["title"],
            summary=row["summary"] or "",
            content=row["content"] or "",
            canonical_url=row["url"],
            sentences=tuple(sentences),
            word_count=int(row["word_count"] or 0),
            reading_time_seconds=int(row["reading_time_seconds"] or 0),
            difficulty=int(row["difficulty"] or 1),
            published_at=_parse_ts(row["published_at"]),
            image_url=row["image_url"],
            tags=tags,
            is_processed=bool(row["is_processed"]),
            created_at=_parse_ts(row["created_at"]),
        )

    # ------------------------------------------------------------------
    # Sources
    # ------------------------------------------------------------------
    def upsert_source(self, source: Source) -> None:
        with self.get_connection() as conn:
            conn.execute(
                """
                INSERT INTO sources (id, name, kind, url, category, enabled, update_interval_minutes, last_fetch_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    name = excluded.name,
                    kind = excluded.kind,
                    url = excluded.url,
                    category = excluded.category,
                    enabled = excluded.enabled,
                    update_interval_minutes = excluded.update_interval_minutes,
                    last_fetch_at = COALESCE(excluded.last_fetch_at, sources.last_fetch_at)
                """,
                (
                    source.id,
                    source.name,
                    source.kind,
                    source.url,
                    source.category,
                    1 if source.enabled else 0,
                    int(source.update_interval_minutes),
                    _ts(source.last_fetch_at),
                ),
            )
            conn.commit()

    def list_sources(self, *, kind: Optional[str] = None, category: Optional[str] = None,
                     enabled_only: bool = True) -> List[Source]:
        where = ["1=1"]
        params: list = []
        if kind:
            where.append("kind = ?")
            params.append(kind)
        if category:
            where.append("category = ?")
            params.append(category)
        if enabled_only:
            where.append("enabled = 1")
        with self.get_connection() as conn:
            rows = conn.execute(
                f"SELECT * FROM sources WHERE {' AND '.join(where)} ORDER BY id", params
            ).fetchall()
        return [
            Source(
                id=r["id"],
                name=r["name"],
                kind=r["kind"],
                url=r["url"],
                category=r["category"],
                enabled=bool(r["enabled"]),
                update_interval_minutes=int(r["update_interval_minutes"]),
                last_fetch_at=_parse_ts(r["last_fetch_at"]),
            )
            for r in rows
        ]

    def update_source_last_fetch(self, source_id: str, timestamp: datetime) -> None:
        with self.get_connection() as conn:
            conn.execute("UPDATE sources SET last_fetch_at = ? WHERE id = ?", (_ts(timestamp), source_id))
            conn.commit()

    # ------------------------------------------------------------------
    # Statistics
    # ------------------------------------------------------------------
    def count_articles(self) -> int:
        with self.get_connection() as conn:
            return int(conn.execute("SELECT COUNT(*) FROM articles").fetchone()[0] or 0)

    def count_by_category(self) -> Dict[str, int]:
        with self.get_connection() as conn:
            rows = conn.execute(
                "SELECT category, COUNT(*) AS count FROM articles GROUP BY category ORDER BY count DESC, category"
            ).fetchall()
        return {r["category"]: int(r["count"]) for r in rows}

    def count_by_source(self) -> Dict[str, int]:
        with self.get_connection() as conn:
            rows = conn.execute(
                """
                SELECT COALESCE(s.name, 'Unknown') AS source, COUNT(*) AS count
                FROM articles a
                LEFT JOIN sources s ON s.id = a.source_id
                GROUP BY COALESCE(s.name, 'Unknown')
                ORDER BY count DESC, source
                """
            ).fetchall()
        return {r["source"]: int(r["count"]) for r in rows}
