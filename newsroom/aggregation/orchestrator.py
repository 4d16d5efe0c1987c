"""Aggregation run: sources -> candidates -> dedup -> normalize -> store.

Sources are fetched concurrently (one worker per source, bounded pool). A
worker handles its own candidates in source order; the only state shared
between workers is the run's DedupContext, which serializes decisions.
Per-source tallies are created by the calling thread and merged into the
AggregationResult in submission order, including those of workers cut
short by a timeout.
"""

from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor, wait
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from newsroom.config import AggregatorConfig
from newsroom.dedup.engine import DedupContext, DeduplicationEngine
from newsroom.errors import DuplicateArticleError, PersistenceWriteError, SourceResolutionError
from newsroom.ingestion.article_types import AggregationResult, CandidateItem, Source, SourceBreakdown
from newsroom.ingestion.ingestors import BaseIngestor
from newsroom.storage.base import ArticleStore
from newsroom.text.normalizer import clean_text, normalize

logger = logging.getLogger(__name__)

DEFAULT_CATEGORIES = ("general",)


@dataclass
class _SourceTally:
    source: Source
    kind: str
    polled: bool = False
    fetched: int = 0
    processed: int = 0
    duplicates: int = 0
    errors: List[str] = field(default_factory=list)
    new_ids: List[str] = field(default_factory=list)
    elapsed: float = 0.0
    lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)

    def is_polled(self) -> bool:
        with self.lock:
            return self.polled


class NewsAggregator:
    def __init__(self, store: ArticleStore, adapters: Iterable[BaseIngestor], config: Optional[AggregatorConfig] = None,
                 engine: Optional[DeduplicationEngine] = None):
        self.store = store
        self.adapters = list(adapters)
        self.config = config or AggregatorConfig()
        self.engine = engine or DeduplicationEngine(store, threshold=self.config.dedup_threshold)
        self._lock = threading.Lock()
        self._active_cancel: Optional[threading.Event] = None

    def cancel(self) -> None:
        """Ask the running aggregation (if any) to stop at the next candidate."""
        with self._lock:
            if self._active_cancel is not None:
                self._active_cancel.set()

    # ------------------------------------------------------------------
    # Run
    # ------------------------------------------------------------------
    def aggregate(self, categories: Optional[Sequence[str]] = None, *,
                  timeout: Optional[float] = None) -> AggregationResult:
        """Run one aggregation over the due sources of `categories`.

        Raises SourceResolutionError when no adapter/source can serve the
        request; every other failure is recorded in `result.errors`.
        """
        categories = self._clean_categories(categories)
        timeout = timeout if timeout is not None else self.config.run_timeout

        result = AggregationResult(
            started_at=datetime.now(timezone.utc),
            source_breakdown={a.kind: SourceBreakdown() for a in self.adapters},
        )
        plan = self._resolve(categories)

        cancel = threading.Event()
        with self._lock:
            self._active_cancel = cancel
        context = self.engine.new_context(
            window_size=self.config.recency_window_size,
            window_hours=self.config.recency_window_hours,
        )
        deadline = time.monotonic() + timeout if timeout else None
        polled: List[Source] = []
        timed_out = False

        logger.info(f"Aggregating {sum(len(jobs) for _, jobs in plan)} due source(s) "
                    f"for categories: {', '.join(categories)}")

        pool = ThreadPoolExecutor(max_workers=self.config.max_workers, thread_name_prefix="ingest")
        try:
            for category, jobs in plan:
                if cancel.is_set():
                    break
                if not jobs:
                    logger.info(f"No due sources for category '{category}'")
                    continue
                tallies = [_SourceTally(source=source, kind=adapter.kind) for adapter, source in jobs]
                futures = [
                    pool.submit(self._run_source, adapter, tally, context, cancel)
                    for (adapter, _), tally in zip(jobs, tallies)
                ]
                remaining = None if deadline is None else max(0.0, deadline - time.monotonic())
                _, not_done = wait(futures, timeout=remaining)
                if not_done:
                    # Timed out: queued sources are dropped, sources still fetching are abandoned.
                    timed_out = True
                    cancel.set()
                    for f in not_done:
                        f.cancel()
                    # Workers past their fetch stop after the candidate in hand.
                    draining = [f for f, t in zip(futures, tallies) if f in not_done and t.is_polled()]
                    if draining:
                        wait(draining)
                for tally in tallies:
                    with tally.lock:
                        self._merge(result, tally)
                        if tally.polled:
                            polled.append(tally.source)
        finally:
            pool.shutdown(wait=not cancel.is_set(), cancel_futures=True)
            with self._lock:
                self._active_cancel = None

        if cancel.is_set():
            result.cancelled = True
            if timed_out:
                result.errors.append(f"aggregation cancelled after {timeout:g}s")
            else:
                result.errors.append("aggregation cancelled")

        self._touch_sources(polled, result)
        result.finished_at = datetime.now(timezone.utc)
        logger.info(
            f"Aggregation complete: fetched={result.total_fetched} new={result.total_processed} "
            f"duplicates={result.duplicates_found} errors={len(result.errors)}"
        )
        return result

    @staticmethod
    def _clean_categories(categories: Optional[Sequence[str]]) -> List[str]:
        out: List[str] = []
        for c in categories or DEFAULT_CATEGORIES:
            c = (c or "").strip().lower()
            if c and c not in out:
                out.append(c)
        return out or list(DEFAULT_CATEGORIES)

    def _resolve(self, categories: List[str]) -> List[Tuple[str, List[Tuple[BaseIngestor, Source]]]]:
        if not self.adapters:
            raise SourceResolutionError("no source adapters configured")
        kinds = {a.kind for a in self.adapters}
        try:
            configured = any(
                s.kind in kinds for c in categories for s in self.store.list_sources(category=c)
            )
        except Exception as e:
            raise SourceResolutionError(f"cannot read source configuration: {e}") from e
        if not configured:
            raise SourceResolutionError(f"no enabled sources configured for: {', '.join(categories)}")

        now = datetime.now(timezone.utc)
        plan = []
        for category in categories:
            jobs: List[Tuple[BaseIngestor, Source]] = []
            for adapter in self.adapters:
                try:
                    due = adapter.list_due_sources(category, now=now)
                except Exception as e:
                    raise SourceResolutionError(f"{adapter.kind}: cannot list sources: {e}") from e
                jobs.extend((adapter, s) for s in due)
            plan.append((category, jobs))
        return plan

    # ------------------------------------------------------------------
    # Per-source worker
    # ------------------------------------------------------------------
    def _run_source(self, adapter: BaseIngestor, tally: _SourceTally, context: DedupContext,
                    cancel: threading.Event) -> _SourceTally:
        source = tally.source
        if cancel.is_set():
            return tally
        started = time.monotonic()
        try:
            candidates = adapter.fetch(source)
        except Exception as e:
            # Any adapter failure costs this source only.
            elapsed = time.monotonic() - started
            msg = f"{source.name}: {str(e) or e.__class__.__name__}"
            logger.warning(f"Source failed after {elapsed:.1f}s - {msg}")
            with tally.lock:
                tally.polled = True
                tally.elapsed = elapsed
                tally.errors.append(msg)
            return tally
        with tally.lock:
            tally.polled = True
        logger.info(f"Fetched {len(candidates)} item(s) from {source.name} in {time.monotonic() - started:.1f}s")

        for candidate in candidates:
            if cancel.is_set():
                break
            with tally.lock:
                tally.fetched += 1
            try:
                self._process(candidate, context, tally)
            except Exception as e:
                msg = f"{source.name}: error processing '{candidate.title[:60]}': {e}"
                logger.error(msg)
                with tally.lock:
                    tally.errors.append(msg)
        with tally.lock:
            tally.elapsed = time.monotonic() - started
        return tally

    def _process(self, candidate: CandidateItem, context: DedupContext, tally: _SourceTally) -> None:
        candidate = replace(candidate, title=clean_text(candidate.title))
        decision = self.engine.should_accept(candidate, context)
        if not decision.accepted:
            with tally.lock:
                tally.duplicates += 1
            logger.debug(f"Duplicate skipped ({decision.reason}): {candidate.title}")
            return

        article = normalize(candidate.title, candidate.raw_content or candidate.raw_summary,
                            candidate.raw_summary or None)
        article = replace(
            article,
            canonical_url=candidate.canonical_url,
            published_at=candidate.published_at,
            image_url=candidate.image_url,
            tags=tuple(candidate.tags),
        )
        try:
            persisted = self.store.create(article, candidate.source_id, candidate.category)
        except DuplicateArticleError as e:
            with tally.lock:
                tally.duplicates += 1
            logger.debug(f"Store rejected duplicate: {e}")
            return
        except PersistenceWriteError as e:
            context.release(candidate)
            msg = f"{tally.source.name}: {e}"
            logger.error(msg)
            with tally.lock:
                tally.errors.append(msg)
            return
        with tally.lock:
            tally.processed += 1
            tally.new_ids.append(persisted.id)

    @staticmethod
    def _merge(result: AggregationResult, tally: _SourceTally) -> None:
        result.total_fetched += tally.fetched
        result.total_processed += tally.processed
        result.duplicates_found += tally.duplicates
        result.errors.extend(tally.errors)
        result.new_article_ids.extend(tally.new_ids)
        breakdown = result.source_breakdown.setdefault(tally.kind, SourceBreakdown())
        breakdown.fetched += tally.fetched
        breakdown.processed += tally.processed

    def _touch_sources(self, polled: List[Source], result: AggregationResult) -> None:
        now = datetime.now(timezone.utc)
        for source in polled:
            try:
                self.store.update_source_last_fetch(source.id, now)
            except Exception as e:
                msg = f"{source.name}: failed to record fetch time: {e}"
                logger.error(msg)
                result.errors.append(msg)

    # ------------------------------------------------------------------
    # Statistics
    # ------------------------------------------------------------------
    def get_statistics(self) -> Dict[str, object]:
        return {
            "totalArticles": self.store.count_articles(),
            "articlesByCategory": [
                {"category": category, "count": count}
                for category, count in self.store.count_by_category().items()
            ],
            "articlesBySource": [
                {"source": source, "count": count}
                for source, count in self.store.count_by_source().items()
            ],
        }
