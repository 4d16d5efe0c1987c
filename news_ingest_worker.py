#!/usr/bin/env python3
"""News ingestion worker.

Runs one aggregation cycle (or scheduled cycles) over the configured sources:
- RSS feeds (one row per feed in the sources table)
- NewsAPI top headlines (when NEWSAPI_KEY is set)

Candidates are deduplicated (URL hash + fuzzy title) before normalization and
storage. Store is SQLite by default, Postgres when PG_DSN is set.
"""

from __future__ import annotations

import argparse
import json
import logging
import os
import time
from typing import List, Optional

import schedule
from dotenv import load_dotenv

from newsroom.aggregation.bootstrap import build_aggregator
from newsroom.config import AggregatorConfig
from newsroom.errors import SourceResolutionError
from newsroom.ingestion.default_sources import seed_default_sources

logger = logging.getLogger(__name__)


def _categories_from_env() -> List[str]:
    raw = os.environ.get("INGEST_CATEGORIES", "general")
    return [c.strip() for c in raw.split(",") if c.strip()] or ["general"]


def run_once(categories: Optional[List[str]] = None, aggregator=None) -> None:
    aggregator = aggregator or build_aggregator(AggregatorConfig.from_env())
    categories = categories or _categories_from_env()
    try:
        result = aggregator.aggregate(categories)
    except SourceResolutionError as e:
        logger.error(f"[ingest] nothing to do: {e}")
        return
    for err in result.errors:
        logger.warning(f"[ingest] {err}")
    logger.info(
        f"[ingest] fetched={result.total_fetched} processed={result.total_processed} "
        f"duplicates={result.duplicates_found} errors={len(result.errors)}"
    )


def run_scheduled(categories: Optional[List[str]] = None) -> None:
    interval = int(os.environ.get("INGEST_INTERVAL_MINUTES", "30"))
    aggregator = build_aggregator(AggregatorConfig.from_env())
    categories = categories or _categories_from_env()

    run_once(categories, aggregator)
    schedule.every(interval).minutes.do(run_once, categories, aggregator)
    logger.info(f"[ingest] scheduled every {interval} minutes for {', '.join(categories)}")
    while True:
        schedule.run_pending()
        time.sleep(5)


def main(argv: Optional[List[str]] = None) -> None:
    parser = argparse.ArgumentParser(description="News ingestion worker")
    parser.add_argument("--seed", action="store_true", help="insert the default source catalogue and exit")
    parser.add_argument("--stats", action="store_true", help="print article statistics as JSON and exit")
    parser.add_argument("--categories", help="comma separated categories (overrides INGEST_CATEGORIES)")
    args = parser.parse_args(argv)

    load_dotenv()
    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    )

    if args.seed or args.stats:
        config = AggregatorConfig.from_env()
        aggregator = build_aggregator(config)
        if args.seed:
            count = seed_default_sources(aggregator.store, include_newsapi=config.newsapi_active)
            logger.info(f"[ingest] seeded {count} sources")
        if args.stats:
            print(json.dumps(aggregator.get_statistics(), indent=2))
        return

    categories = [c.strip() for c in args.categories.split(",") if c.strip()] if args.categories else None
    mode = (os.environ.get("INGEST_MODE") or "once").lower().strip()
    if mode in ("scheduled", "daemon"):
        run_scheduled(categories)
    else:
        run_once(categories)


if __name__ == "__main__":
    main()
