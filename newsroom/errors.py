"""Error taxonomy for the ingestion pipeline."""

from __future__ import annotations


class NewsroomError(Exception):
    """Base class for pipeline errors"""


class SourceFetchError(NewsroomError):
    """A single source is unreachable or returned malformed data."""


class PersistenceWriteError(NewsroomError):
    """An accepted article could not be stored."""


class DuplicateArticleError(PersistenceWriteError):
    """The store rejected an article whose url_hash already exists."""


class StorageError(NewsroomError):
    """Store-level failure (connection, schema) outside a single write."""


class SourceResolutionError(NewsroomError):
    """Requested categories/sources cannot be resolved; the run cannot start."""
