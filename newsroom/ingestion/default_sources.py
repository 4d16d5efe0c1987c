"""Curated starter source set (can be extended via the sources table)."""

from __future__ import annotations

from typing import List

from newsroom.ingestion.article_types import Source

NEWSAPI_CATEGORIES = ("business", "entertainment", "general", "health", "science", "sports", "technology")


def default_rss_sources() -> List[Source]:
    feeds = [
        ("bbc-world", "BBC World News", "http://feeds.bbci.co.uk/news/world/rss.xml", "world"),
        ("bbc-business", "BBC Business News", "http://feeds.bbci.co.uk/news/business/rss.xml", "business"),
        ("bbc-technology", "BBC Technology News", "http://feeds.bbci.co.uk/news/technology/rss.xml", "technology"),
        ("bbc-science", "BBC Science & Environment", "http://feeds.bbci.co.uk/news/science_and_environment/rss.xml", "science"),
        ("bbc-health", "BBC Health News", "http://feeds.bbci.co.uk/news/health/rss.xml", "health"),
        ("cnn-world", "CNN World News", "http://rss.cnn.com/rss/edition_world.rss", "world"),
        ("cnn-business", "CNN Business", "http://rss.cnn.com/rss/money_latest.rss", "business"),
        ("npr-world", "NPR World", "https://feeds.npr.org/1004/rss.xml", "world"),
        ("npr-science", "NPR Science", "https://feeds.npr.org/1007/rss.xml", "science"),
        ("guardian-world", "The Guardian World", "https://www.theguardian.com/world/rss", "world"),
        ("guardian-sport", "The Guardian Sport", "https://www.theguardian.com/sport/rss", "sports"),
        ("aljazeera-all", "Al Jazeera", "https://www.aljazeera.com/xml/rss/all.xml", "general"),
    ]
    return [
        Source(id=sid, name=name, kind="rss", url=url, category=category, update_interval_minutes=30)
        for sid, name, url, category in feeds
    ]


def default_newsapi_sources(endpoint: str = "https://newsapi.org/v2") -> List[Source]:
    return [
        Source(
            id=f"newsapi-{category}",
            name=f"NewsAPI {category.title()}",
            kind="newsapi",
            url=f"{endpoint.rstrip('/')}/top-headlines?category={category}",
            category=category,
            update_interval_minutes=60,
        )
        for category in NEWSAPI_CATEGORIES
    ]


def seed_default_sources(store, *, include_newsapi: bool = True) -> int:
    """Insert/refresh the built-in catalogue. Existing last_fetch_at values are kept."""
    sources = default_rss_sources()
    if include_newsapi:
        sources.extend(default_newsapi_sources())
    for source in sources:
        store.upsert_source(source)
    return len(sources)
