"""Runtime configuration loaded from environment variables.

Entry points call `load_dotenv()` first so a local .env file is honoured.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Optional


def _env_bool(name: str, default: str = "true") -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


@dataclass
class AggregatorConfig:
    db_path: str = "newsroom.db"
    pg_dsn: str = ""

    newsapi_key: str = ""
    newsapi_endpoint: str = "https://newsapi.org/v2"
    enable_rss: bool = True
    enable_newsapi: bool = True

    dedup_threshold: float = 0.8
    recency_window_size: int = 200
    recency_window_hours: int = 24

    max_articles_per_source: int = 50
    max_workers: int = 4
    request_timeout: float = 15.0
    run_timeout: Optional[float] = None

    @classmethod
    def from_env(cls) -> "AggregatorConfig":
        """Load and validate configuration from environment variables"""
        run_timeout = os.getenv("RUN_TIMEOUT", "").strip()
        config = cls(
            db_path=os.getenv("DB_PATH", "newsroom.db"),
            pg_dsn=os.getenv("PG_DSN", "").strip(),

            newsapi_key=os.getenv("NEWSAPI_KEY", "").strip(),
            newsapi_endpoint=os.getenv("NEWSAPI_ENDPOINT", "https://newsapi.org/v2"),
            enable_rss=_env_bool("ENABLE_RSS"),
            enable_newsapi=_env_bool("ENABLE_NEWSAPI"),

            dedup_threshold=float(os.getenv("DEDUP_THRESHOLD", "0.8")),
            recency_window_size=int(os.getenv("RECENCY_WINDOW_SIZE", "200")),
            recency_window_hours=int(os.getenv("RECENCY_WINDOW_HOURS", "24")),

            max_articles_per_source=int(os.getenv("MAX_ARTICLES_PER_SOURCE", "50")),
            max_workers=int(os.getenv("MAX_WORKERS", "4")),
            request_timeout=float(os.getenv("REQUEST_TIMEOUT", "15")),
            run_timeout=float(run_timeout) if run_timeout else None,
        )
        config.validate()
        return config

    def validate(self) -> None:
        errors = []

        if not 0.0 < self.dedup_threshold <= 1.0:
            errors.append("DEDUP_THRESHOLD must be in (0, 1]")
        if self.recency_window_size < 1:
            errors.append("RECENCY_WINDOW_SIZE must be >= 1")
        if self.recency_window_hours < 1:
            errors.append("RECENCY_WINDOW_HOURS must be >= 1")
        if not 1 <= self.max_articles_per_source <= 100:
            errors.append("MAX_ARTICLES_PER_SOURCE should be between 1 and 100")
        if not 1 <= self.max_workers <= 32:
            errors.append("MAX_WORKERS should be between 1 and 32")
        if self.request_timeout <= 0:
            errors.append("REQUEST_TIMEOUT must be positive")
        if self.run_timeout is not None and self.run_timeout <= 0:
            errors.append("RUN_TIMEOUT must be positive when set")
        if not self.enable_rss and not (self.enable_newsapi and self.newsapi_key):
            errors.append("No adapter enabled: enable RSS or provide NEWSAPI_KEY")

        if errors:
            error_msg = "Configuration validation failed:\n" + "\n".join(f"  - {error}" for error in errors)
            raise ValueError(error_msg)

    @property
    def newsapi_active(self) -> bool:
        return self.enable_newsapi and bool(self.newsapi_key)
