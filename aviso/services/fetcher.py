from __future__ import annotations

import logging
import time
from concurrent.futures import ThreadPoolExecutor, wait
from dataclasses import dataclass
from datetime import datetime
from typing import List

from aviso.engine.normalizer import normalize_item, passes_filters
from aviso.errors import FetchError, ParseError
from aviso.models import Article, Source
from aviso.providers.base import HttpTransport, ProviderResult, RawItem
from aviso.providers.newsapi import fetch_newsapi, fetch_newsdata
from aviso.providers.rss import fetch_rss


logger = logging.getLogger("aviso.fetcher")


@dataclass
class FetchOutcome:
    source: Source
    result: ProviderResult
    filtered: int = 0

    @property
    def ok(self) -> bool:
        return self.result.ok

    @property
    def drafts(self) -> List[Article]:
        return list(self.result.data or []) if self.result.ok else []


class FetcherService:
    def __init__(
        self,
        transport: HttpTransport | None = None,
        max_items: int = 50,
        concurrency: int = 6,
        deadline_seconds: float = 90.0,
    ):
        self.transport = transport or HttpTransport()
        self.max_items = max_items
        self.concurrency = max(1, concurrency)
        self.deadline_seconds = deadline_seconds

    @classmethod
    def from_settings(cls, settings, transport: HttpTransport | None = None) -> "FetcherService":
        transport = transport or HttpTransport(
            timeout=settings.request_timeout,
            attempts=settings.fetch_retries,
            backoff=settings.fetch_backoff_seconds,
            user_agent=settings.user_agent,
        )
        return cls(
            transport=transport,
            max_items=settings.max_items_per_feed,
            concurrency=settings.fetch_concurrency,
            deadline_seconds=settings.fetch_deadline_seconds,
        )

    def fetch_raw(self, source: Source) -> List[RawItem]:
        cap = source.max_items or self.max_items
        if source.kind in ("rss", "googlenews"):
            return fetch_rss(source, self.transport)
        if source.kind == "newsapi":
            return fetch_newsapi(source, self.transport, max_items=cap)
        if source.kind == "newsdata":
            return fetch_newsdata(source, self.transport, max_items=cap)
        raise FetchError(source.id, f"unsupported source kind {source.kind}")

    def fetch_source(self, source: Source, now: datetime) -> FetchOutcome:
        """Fetch and normalize one source. Never raises; failures land in the result."""
        start = time.time()
        try:
            raw_items = self.fetch_raw(source)
        except FetchError as exc:
            return self._failed(source, exc, start)
        except Exception as exc:
            return self._failed(source, FetchError(source.id, str(exc)), start)

        cap = source.max_items or self.max_items
        drafts: List[Article] = []
        dropped = 0
        filtered = 0
        for raw in raw_items:
            if len(drafts) >= cap:
                break
            if not passes_filters(raw, source):
                filtered += 1
                continue
            try:
                drafts.append(normalize_item(raw, source, now))
            except ParseError as exc:
                dropped += 1
                logger.warning("dropped item source=%s reason=%s", exc.source_id, exc.reason)
        result = ProviderResult(
            ok=True,
            source=source.id,
            data=drafts,
            latency_ms=int((time.time() - start) * 1000),
            error_code=None,
            error_msg=None,
            dropped=dropped,
        )
        return FetchOutcome(source=source, result=result, filtered=filtered)

    def _failed(self, source: Source, exc: FetchError, start: float) -> FetchOutcome:
        logger.warning("fetch failed source=%s cause=%s", exc.source_id, exc.cause)
        result = ProviderResult(
            ok=False,
            source=source.id,
            data=None,
            latency_ms=int((time.time() - start) * 1000),
            error_code=exc.code,
            error_msg=exc.cause,
        )
        return FetchOutcome(source=source, result=result)

    def fetch_all(self, sources: List[Source], now: datetime) -> List[FetchOutcome]:
        """Fetch every source on a bounded pool.

        Sources still running when the deadline passes are reported as timed
        out and whatever they return later is discarded. Sources still queued
        behind the pool are reported as not started.
        """
        if not sources:
            return []
        pool = ThreadPoolExecutor(max_workers=min(self.concurrency, len(sources)))
        futures = {pool.submit(self.fetch_source, source, now): source for source in sources}
        start = time.time()
        try:
            done, pending = wait(futures, timeout=self.deadline_seconds)
        finally:
            pool.shutdown(wait=False, cancel_futures=True)

        outcomes: List[FetchOutcome] = []
        for fut, source in futures.items():
            if fut in done:
                outcomes.append(fut.result())
                continue
            if fut.cancelled() or fut.cancel():
                cause = f"not started before {self.deadline_seconds:g}s deadline"
            else:
                cause = f"timeout after {self.deadline_seconds:g}s"
            outcomes.append(self._failed(source, FetchError(source.id, cause), start))
        outcomes.sort(key=lambda o: o.source.id)
        return outcomes
