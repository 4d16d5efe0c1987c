"""Wire store, adapters and aggregator together from an AggregatorConfig."""

from __future__ import annotations

import logging
from typing import List, Optional

from newsroom.aggregation.orchestrator import NewsAggregator
from newsroom.config import AggregatorConfig
from newsroom.ingestion.ingestors import BaseIngestor, NewsAPIIngestor, RSSIngestor
from newsroom.storage.base import ArticleStore

logger = logging.getLogger(__name__)


def build_store(config: AggregatorConfig) -> ArticleStore:
    if config.pg_dsn:
        from newsroom.storage.postgres_store import PostgresArticleStore

        logger.info("Using Postgres article store")
        return PostgresArticleStore(config.pg_dsn)

    from newsroom.storage.sqlite_store import SQLiteArticleStore

    logger.info(f"Using SQLite article store at {config.db_path}")
    return SQLiteArticleStore(config.db_path)


def build_adapters(store, config: AggregatorConfig) -> List[BaseIngestor]:
    adapters: List[BaseIngestor] = []
    if config.enable_rss:
        adapters.append(
            RSSIngestor(store, max_items=config.max_articles_per_source, timeout=config.request_timeout)
        )
    if config.newsapi_active:
        adapters.append(
            NewsAPIIngestor(
                store,
                config.newsapi_key,
                endpoint=config.newsapi_endpoint,
                max_items=config.max_articles_per_source,
                timeout=config.request_timeout,
            )
        )
    elif config.enable_newsapi:
        logger.warning("NEWSAPI_KEY not set; NewsAPI adapter disabled")
    return adapters


def build_aggregator(config: Optional[AggregatorConfig] = None, store=None) -> NewsAggregator:
    config = config or AggregatorConfig.from_env()
    store = store if store is not None else build_store(config)
    return NewsAggregator(store, build_adapters(store, config), config)
