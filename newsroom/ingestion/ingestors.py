"""Source adapters (RSS feeds, NewsAPI headlines).

Every adapter exposes the same two operations to the orchestrator:
- list_due_sources(category) -> sources whose update interval has elapsed
- fetch(source) -> CandidateItem list, in the order the source returned them

Adapters raise SourceFetchError for anything that makes a single source
unusable; retries/backoff for transient network failures happen here, not in
the orchestrator.
"""

from __future__ import annotations

import calendar
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

import feedparser
import requests
from tenacity import retry, retry_if_exception, stop_after_attempt, wait_exponential

from newsroom.errors import SourceFetchError
from newsroom.ingestion.article_types import CandidateItem, Source
from newsroom.ingestion.url_utils import is_http_url
from newsroom.text.normalizer import extract_key_phrases, strip_truncation_marker

logger = logging.getLogger(__name__)

USER_AGENT = "Newsroom/1.0 (+news ingestion)"


def _parse_dt(dt: Any) -> Optional[datetime]:
    if not dt:
        return None
    if isinstance(dt, datetime):
        return dt if dt.tzinfo else dt.replace(tzinfo=timezone.utc)
    s = str(dt).strip()
    if not s:
        return None
    s = s.replace("Z", "+00:00")
    try:
        parsed = datetime.fromisoformat(s)
    except ValueError:
        return None
    # Normalize naive to UTC
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _struct_to_dt(value: Any) -> Optional[datetime]:
    if not value:
        return None
    try:
        return datetime.fromtimestamp(calendar.timegm(value), tz=timezone.utc)
    except (TypeError, ValueError, OverflowError):
        return None


def _is_transient(exc: BaseException) -> bool:
    if isinstance(exc, (requests.ConnectionError, requests.Timeout)):
        return True
    if isinstance(exc, requests.HTTPError) and exc.response is not None:
        return exc.response.status_code == 429 or exc.response.status_code >= 500
    return False


_retry_transient = retry(
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=1, max=8),
    retry=retry_if_exception(_is_transient),
    reraise=True,
)


class BaseIngestor:
    """Capability shared by all adapters; `kind` keys the per-run breakdown."""

    kind: str = "base"

    def __init__(self, store, *, max_items: int = 50, timeout: float = 15.0):
        self.store = store
        self.max_items = max_items
        self.timeout = timeout

    def list_due_sources(self, category: Optional[str] = None, now: Optional[datetime] = None) -> List[Source]:
        now = now or datetime.now(timezone.utc)
        sources = self.store.list_sources(kind=self.kind, category=category)
        return [s for s in sources if s.enabled and s.is_due(now)]

    def fetch(self, source: Source) -> List[CandidateItem]:
        raise NotImplementedError


class RSSIngestor(BaseIngestor):
    """RSS/Atom feeds, one Source row per feed URL."""

    kind = "rss"

    @_retry_transient
    def _download(self, url: str) -> bytes:
        resp = requests.get(
            url,
            headers={"User-Agent": USER_AGENT, "Accept": "application/rss+xml, application/atom+xml, application/xml;q=0.9, */*;q=0.8"},
            timeout=self.timeout,
        )
        resp.raise_for_status()
        return resp.content

    def fetch(self, source: Source) -> List[CandidateItem]:
        if not is_http_url(source.url):
            raise SourceFetchError(f"Invalid RSS feed URL: {source.url}")
        try:
            body = self._download(source.url)
        except requests.RequestException as e:
            raise SourceFetchError(f"Failed to fetch feed: {e}") from e
        return self.parse(body, source)

    def parse(self, body: Any, source: Source) -> List[CandidateItem]:
        feed = feedparser.parse(body)
        entries = list(getattr(feed, "entries", None) or [])
        if getattr(feed, "bozo", 0) and not entries:
            exc = getattr(feed, "bozo_exception", None)
            msg = "Invalid RSS/Atom feed"
            if exc:
                msg += f" ({exc})"
            raise SourceFetchError(msg)
        if not entries:
            raise SourceFetchError("No items found in RSS feed")

        out: List[CandidateItem] = []
        for entry in entries:
            if len(out) >= self.max_items:
                break
            link = (entry.get("link") or entry.get("feedburner_origlink") or "").strip()
            title = (entry.get("title") or "").strip()
            if not link or not title:
                continue
            summary = entry.get("summary") or entry.get("description") or ""
            content = ""
            content_blocks = entry.get("content") or []
            if content_blocks:
                content = content_blocks[0].get("value") or ""
            out.append(
                CandidateItem(
                    source_id=source.id,
                    source_name=source.name,
                    category=source.category,
                    title=title,
                    raw_summary=summary,
                    raw_content=content or summary,
                    canonical_url=link,
                    published_at=_struct_to_dt(entry.get("published_parsed") or entry.get("updated_parsed")),
                    image_url=self._image_url(entry),
                    tags=self._tags(entry),
                )
            )
        return out

    @staticmethod
    def _image_url(entry: Dict[str, Any]) -> Optional[str]:
        for key in ("media_content", "media_thumbnail"):
            media = entry.get(key) or []
            for m in media:
                url = m.get("url") if isinstance(m, dict) else None
                if url:
                    return url
        for link in entry.get("links") or []:
            if link.get("rel") == "enclosure" and str(link.get("type", "")).startswith("image/"):
                return link.get("href")
        return None

    @staticmethod
    def _tags(entry: Dict[str, Any]) -> Tuple[str, ...]:
        tags: List[str] = []
        for t in entry.get("tags") or []:
            term = (t.get("term") or "").strip().lower() if isinstance(t, dict) else ""
            if term and len(term) < 20 and term not in tags:
                tags.append(term)
        return tuple(tags[:10])


class NewsAPIIngestor(BaseIngestor):
    """NewsAPI top headlines; one Source row per category."""

    kind = "newsapi"

    def __init__(self, store, api_key: str, *, endpoint: str = "https://newsapi.org/v2",
                 max_items: int = 50, timeout: float = 15.0, language: str = "en"):
        super().__init__(store, max_items=max_items, timeout=timeout)
        if not api_key:
            raise ValueError("NewsAPI key is required")
        self.api_key = api_key
        self.endpoint = endpoint.rstrip("/")
        self.language = language

    @_retry_transient
    def _get(self, params: Dict[str, Any]) -> requests.Response:
        resp = requests.get(
            f"{self.endpoint}/top-headlines",
            params=params,
            headers={"X-Api-Key": self.api_key, "User-Agent": USER_AGENT},
            timeout=self.timeout,
        )
        resp.raise_for_status()
        return resp

    def fetch(self, source: Source) -> List[CandidateItem]:
        params = {
            "category": source.category,
            "language": self.language,
            "pageSize": min(max(self.max_items, 1), 100),
        }
        try:
            resp = self._get(params)
            data = resp.json() or {}
        except requests.RequestException as e:
            raise SourceFetchError(f"NewsAPI request failed: {e}") from e
        except ValueError as e:
            raise SourceFetchError("NewsAPI returned a non-JSON body") from e

        if data.get("status") != "ok":
            raise SourceFetchError(f"NewsAPI error: {data.get('message') or 'Unknown error'}")

        out: List[CandidateItem] = []
        for a in data.get("articles") or []:
            if not isinstance(a, dict):
                continue
            url = (a.get("url") or "").strip()
            title = (a.get("title") or "").strip()
            if not url or not title or title == "[Removed]":
                continue
            description = a.get("description") or ""
            content = strip_truncation_marker(a.get("content") or "")
            if len(content) < 100 and description:
                content = description
            outlet = None
            src = a.get("source")
            if isinstance(src, dict):
                outlet = src.get("name") or None
            out.append(
                CandidateItem(
                    source_id=source.id,
                    source_name=source.name,
                    category=source.category,
                    title=title,
                    raw_summary=description,
                    raw_content=content,
                    canonical_url=url,
                    published_at=_parse_dt(a.get("publishedAt")),
                    image_url=a.get("urlToImage") or None,
                    tags=self._tags(outlet, title),
                )
            )
            if len(out) >= self.max_items:
                break
        return out

    @staticmethod
    def _tags(outlet: Optional[str], title: str) -> Tuple[str, ...]:
        tags: List[str] = []
        if outlet:
            tags.append(outlet.lower())
        for word in extract_key_phrases(title, limit=3):
            if word not in tags:
                tags.append(word)
        return tuple(tags[:5])
