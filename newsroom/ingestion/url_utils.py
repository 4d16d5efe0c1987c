"""URL helpers for ingestion/dedup.

URLs are compared byte-for-byte: two links that differ only in a query
parameter are different resources here. No canonicalization happens.
"""

from __future__ import annotations

import hashlib
import uuid
from urllib.parse import urlparse


def hash_url(url: str) -> str:
    """Stable md5 hex digest of the URL exactly as the source provided it."""
    return hashlib.md5((url or "").encode("utf-8")).hexdigest()


def article_id_for(url: str) -> str:
    """Deterministic article id, so re-fetching the same URL maps to the same row."""
    return str(uuid.uuid5(uuid.NAMESPACE_URL, url or ""))


def is_http_url(url: str) -> bool:
    try:
        p = urlparse(url or "")
    except ValueError:
        return False
    return p.scheme in ("http", "https") and bool(p.netloc)
