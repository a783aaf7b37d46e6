"""Search analytics: injected stores plus a fire-and-forget recorder.

One record exists per normalized search term. Each search increments its
``search_count`` and refreshes ``last_searched``; clicks are appended to
``clicked_results``. Aggregations (top terms, daily trend, zero-result
terms) are answered by the store for a time window decided on
``last_searched``.
"""

from __future__ import annotations

import asyncio
import contextlib
import json
from dataclasses import dataclass, field
from datetime import date, datetime
from functools import partial
from typing import Any, Awaitable, Callable, Protocol

import structlog

from content_search.models import (
    AnalyticsSummary,
    AnalyticsWindow,
    ClickEvent,
    RequesterMeta,
    SearchAnalyticsRecord,
    TopSearch,
    TrendPoint,
)
from content_search.services.redis_client import RedisClient
from content_search.utils.dates import days_between, utcnow

logger = structlog.get_logger(__name__)


def normalize_term(term: str) -> str:
    """Case-normalize a search term for aggregation."""
    return term.strip().lower()


class AnalyticsStore(Protocol):
    """Persistence and aggregation for search analytics."""

    name: str

    async def record_search(
        self,
        term: str,
        result_count: int,
        meta: RequesterMeta | None = None,
        at: datetime | None = None,
    ) -> None: ...

    async def record_click(self, term: str, click: ClickEvent, result_count: int = 0) -> None: ...

    async def get_record(self, term: str) -> SearchAnalyticsRecord | None: ...

    async def top_searches(self, window: AnalyticsWindow, limit: int = 20) -> list[TopSearch]: ...

    async def trend(self, window: AnalyticsWindow) -> list[TrendPoint]: ...

    async def zero_result_searches(
        self, window: AnalyticsWindow, limit: int = 50
    ) -> list[SearchAnalyticsRecord]: ...

    async def summary(self, window: AnalyticsWindow) -> AnalyticsSummary: ...

    async def popular(self, limit: int) -> list[TopSearch]: ...

    async def recent_matching(self, partial: str, limit: int) -> list[SearchAnalyticsRecord]: ...

    async def increment_counter(self, name: str, amount: float = 1.0) -> None: ...

    async def get_counters(self) -> dict[str, float]: ...

    async def ping(self) -> bool: ...


def _top_search(record: SearchAnalyticsRecord) -> TopSearch:
    return TopSearch(
        term=record.search_term,
        count=record.search_count,
        avg_result_count=round(record.avg_result_count, 2),
        last_searched=record.last_searched,
    )


def _rank_top(records: list[SearchAnalyticsRecord], limit: int) -> list[TopSearch]:
    ranked = sorted(records, key=lambda r: (r.search_count, r.last_searched), reverse=True)
    return [_top_search(r) for r in ranked[:limit]]


def _summarise(records: list[SearchAnalyticsRecord], total: int, unique: int) -> AnalyticsSummary:
    searches = sum(r.search_count for r in records)
    results = sum(r.total_results for r in records)
    return AnalyticsSummary(
        total_searches=total,
        unique_search_terms=unique,
        avg_results_per_search=round(results / searches, 2) if searches else 0.0,
    )


# ---------------------------------------------------------------------------
# In-memory store
# ---------------------------------------------------------------------------


@dataclass
class _DayBucket:
    searches: int = 0
    terms: set[str] = field(default_factory=set)


class MemoryAnalyticsStore:
    """Process-local store for tests and single-instance deployments.

    Each method mutates state without awaiting, so concurrent coroutines
    cannot interleave inside a find-or-increment.
    """

    name = "memory"

    def __init__(self) -> None:
        self._records: dict[str, SearchAnalyticsRecord] = {}
        self._days: dict[date, _DayBucket] = {}
        self._counters: dict[str, float] = {}

    async def record_search(
        self,
        term: str,
        result_count: int,
        meta: RequesterMeta | None = None,
        at: datetime | None = None,
    ) -> None:
        key = normalize_term(term)
        if not key:
            return
        now = at or utcnow()
        meta = meta or RequesterMeta()

        record = self._records.get(key)
        if record is None:
            self._records[key] = SearchAnalyticsRecord(
                search_term=key,
                result_count=result_count,
                total_results=result_count,
                search_count=1,
                first_searched=now,
                last_searched=now,
                user_agent=meta.user_agent,
                ip_address=meta.ip_address,
                session_id=meta.session_id,
            )
        else:
            record.search_count += 1
            record.total_results += result_count
            record.result_count = result_count
            record.last_searched = max(record.last_searched, now)

        bucket = self._days.setdefault(now.date(), _DayBucket())
        bucket.searches += 1
        bucket.terms.add(key)

    async def record_click(self, term: str, click: ClickEvent, result_count: int = 0) -> None:
        key = normalize_term(term)
        if not key:
            return
        if key not in self._records:
            await self.record_search(key, result_count)
        stamped = click.model_copy(update={"timestamp": click.timestamp or utcnow()})
        self._records[key].clicked_results.append(stamped)

    async def get_record(self, term: str) -> SearchAnalyticsRecord | None:
        record = self._records.get(normalize_term(term))
        return record.model_copy(deep=True) if record else None

    def _in_window(self, window: AnalyticsWindow) -> list[SearchAnalyticsRecord]:
        return [r for r in self._records.values() if window.contains(r.last_searched)]

    async def top_searches(self, window: AnalyticsWindow, limit: int = 20) -> list[TopSearch]:
        return _rank_top(self._in_window(window), limit)

    async def trend(self, window: AnalyticsWindow) -> list[TrendPoint]:
        points: list[TrendPoint] = []
        for day in days_between(window.start, window.end):
            bucket = self._days.get(day)
            if bucket and bucket.searches:
                points.append(
                    TrendPoint(
                        date=day.isoformat(),
                        search_count=bucket.searches,
                        unique_term_count=len(bucket.terms),
                    )
                )
        return points

    async def zero_result_searches(
        self, window: AnalyticsWindow, limit: int = 50
    ) -> list[SearchAnalyticsRecord]:
        zero = [r for r in self._in_window(window) if r.result_count == 0]
        zero.sort(key=lambda r: r.last_searched, reverse=True)
        return [r.model_copy(deep=True) for r in zero[:limit]]

    async def summary(self, window: AnalyticsWindow) -> AnalyticsSummary:
        total = 0
        unique: set[str] = set()
        for day in days_between(window.start, window.end):
            bucket = self._days.get(day)
            if bucket:
                total += bucket.searches
                unique |= bucket.terms
        return _summarise(self._in_window(window), total, len(unique))

    async def popular(self, limit: int) -> list[TopSearch]:
        with_results = [r for r in self._records.values() if r.avg_result_count > 0]
        return _rank_top(with_results, limit)

    async def recent_matching(self, partial: str, limit: int) -> list[SearchAnalyticsRecord]:
        needle = normalize_term(partial)
        found = [
            r for r in self._records.values()
            if needle in r.search_term and r.result_count > 0
        ]
        found.sort(key=lambda r: r.last_searched, reverse=True)
        return [r.model_copy(deep=True) for r in found[:limit]]

    async def increment_counter(self, name: str, amount: float = 1.0) -> None:
        self._counters[name] = self._counters.get(name, 0.0) + amount

    async def get_counters(self) -> dict[str, float]:
        return dict(self._counters)

    async def ping(self) -> bool:
        return True


# ---------------------------------------------------------------------------
# Redis store
# ---------------------------------------------------------------------------

_PREFIX = "analytics"
_RECENT = f"{_PREFIX}:terms:recent"
_POPULAR = f"{_PREFIX}:terms:popular"
_ZERO = f"{_PREFIX}:terms:zero"
_COUNTERS = f"{_PREFIX}:counters"

# Upper bound on terms scanned when matching a partial suggestion.
_RECENT_SCAN = 500


def _term_key(term: str) -> str:
    return f"{_PREFIX}:term:{term}"


def _clicks_key(term: str) -> str:
    return f"{_PREFIX}:clicks:{term}"


def _day_key(day: date) -> str:
    return f"{_PREFIX}:day:{day.isoformat()}"


def _day_terms_key(day: date) -> str:
    return f"{_PREFIX}:day:{day.isoformat()}:terms"


def _record_from_hash(
    data: dict[str, Any], clicks: list[str] | None = None
) -> SearchAnalyticsRecord:
    return SearchAnalyticsRecord(
        search_term=data["search_term"],
        result_count=int(data.get("result_count") or 0),
        total_results=int(data.get("total_results") or 0),
        search_count=int(data.get("search_count") or 1),
        first_searched=data.get("first_searched") or data["last_searched"],
        last_searched=data["last_searched"],
        user_agent=data.get("user_agent") or None,
        ip_address=data.get("ip_address") or None,
        session_id=data.get("session_id") or "anonymous",
        clicked_results=[ClickEvent.model_validate(json.loads(c)) for c in clicks or []],
    )


class RedisAnalyticsStore:
    """Redis-backed store shared by every service instance.

    Layout: one hash per term, sorted sets indexing terms by recency,
    popularity and zero-result status, and per-day counters. Each search is
    written in a single MULTI/EXEC pipeline, so concurrent searches for the
    same term upsert atomically instead of creating duplicate records.
    """

    name = "redis"

    def __init__(self, client: RedisClient) -> None:
        self._client = client

    async def record_search(
        self,
        term: str,
        result_count: int,
        meta: RequesterMeta | None = None,
        at: datetime | None = None,
    ) -> None:
        key = normalize_term(term)
        if not key:
            return
        now = at or utcnow()
        meta = meta or RequesterMeta()
        stamp = now.timestamp()
        term_key = _term_key(key)

        pipe = self._client.redis.pipeline(transaction=True)
        pipe.hincrby(term_key, "search_count", 1)
        pipe.hincrby(term_key, "total_results", result_count)
        pipe.hset(
            term_key,
            mapping={
                "search_term": key,
                "result_count": result_count,
                "last_searched": now.isoformat(),
                "user_agent": meta.user_agent or "",
                "ip_address": meta.ip_address or "",
                "session_id": meta.session_id,
            },
        )
        pipe.hsetnx(term_key, "first_searched", now.isoformat())
        pipe.zadd(_RECENT, {key: stamp})
        pipe.zincrby(_POPULAR, 1, key)
        pipe.hincrby(_day_key(now.date()), "searches", 1)
        pipe.sadd(_day_terms_key(now.date()), key)
        if result_count == 0:
            pipe.zadd(_ZERO, {key: stamp})
        else:
            pipe.zrem(_ZERO, key)
        await pipe.execute()

    async def record_click(self, term: str, click: ClickEvent, result_count: int = 0) -> None:
        key = normalize_term(term)
        if not key:
            return
        if not await self._client.redis.exists(_term_key(key)):
            await self.record_search(key, result_count)
        stamped = click.model_copy(update={"timestamp": click.timestamp or utcnow()})
        await self._client.redis.rpush(_clicks_key(key), stamped.model_dump_json())

    async def _load(
        self, terms: list[str], with_clicks: bool = False
    ) -> list[SearchAnalyticsRecord]:
        if not terms:
            return []
        pipe = self._client.redis.pipeline(transaction=False)
        for term in terms:
            pipe.hgetall(_term_key(term))
            if with_clicks:
                pipe.lrange(_clicks_key(term), 0, -1)
        raw = await pipe.execute()

        step = 2 if with_clicks else 1
        records: list[SearchAnalyticsRecord] = []
        for index in range(0, len(raw), step):
            data = raw[index]
            if not data:
                continue
            clicks = raw[index + 1] if with_clicks else None
            records.append(_record_from_hash(data, clicks))
        return records

    async def get_record(self, term: str) -> SearchAnalyticsRecord | None:
        records = await self._load([normalize_term(term)], with_clicks=True)
        return records[0] if records else None

    async def _terms_in_window(self, window: AnalyticsWindow) -> list[str]:
        return list(
            await self._client.redis.zrangebyscore(
                _RECENT, window.start.timestamp(), window.end.timestamp()
            )
        )

    async def top_searches(self, window: AnalyticsWindow, limit: int = 20) -> list[TopSearch]:
        records = await self._load(await self._terms_in_window(window))
        return _rank_top(records, limit)

    async def trend(self, window: AnalyticsWindow) -> list[TrendPoint]:
        days = days_between(window.start, window.end)
        if not days:
            return []
        pipe = self._client.redis.pipeline(transaction=False)
        for day in days:
            pipe.hget(_day_key(day), "searches")
            pipe.scard(_day_terms_key(day))
        raw = await pipe.execute()

        points: list[TrendPoint] = []
        for offset, day in enumerate(days):
            searches = int(raw[offset * 2] or 0)
            if searches:
                points.append(
                    TrendPoint(
                        date=day.isoformat(),
                        search_count=searches,
                        unique_term_count=int(raw[offset * 2 + 1] or 0),
                    )
                )
        return points

    async def zero_result_searches(
        self, window: AnalyticsWindow, limit: int = 50
    ) -> list[SearchAnalyticsRecord]:
        terms = await self._client.redis.zrevrangebyscore(
            _ZERO, window.end.timestamp(), window.start.timestamp(), start=0, num=limit
        )
        return await self._load(list(terms), with_clicks=True)

    async def summary(self, window: AnalyticsWindow) -> AnalyticsSummary:
        points = await self.trend(window)
        day_keys = [_day_terms_key(date.fromisoformat(p.date)) for p in points]
        unique = len(await self._client.redis.sunion(*day_keys)) if day_keys else 0
        records = await self._load(await self._terms_in_window(window))
        return _summarise(records, sum(p.search_count for p in points), unique)

    async def popular(self, limit: int) -> list[TopSearch]:
        ranked = await self._client.redis.zrevrange(_POPULAR, 0, max(limit * 4, limit) - 1)
        records = [r for r in await self._load(list(ranked)) if r.avg_result_count > 0]
        return _rank_top(records, limit)

    async def recent_matching(self, partial: str, limit: int) -> list[SearchAnalyticsRecord]:
        needle = normalize_term(partial)
        recent = await self._client.redis.zrevrange(_RECENT, 0, _RECENT_SCAN - 1)
        candidates = [t for t in recent if needle in t]
        records = [r for r in await self._load(candidates) if r.result_count > 0]
        return records[:limit]

    async def increment_counter(self, name: str, amount: float = 1.0) -> None:
        await self._client.redis.hincrbyfloat(_COUNTERS, name, amount)

    async def get_counters(self) -> dict[str, float]:
        raw = await self._client.redis.hgetall(_COUNTERS)
        return {name: float(value) for name, value in raw.items()}

    async def ping(self) -> bool:
        try:
            return bool(await self._client.ping())
        except Exception as exc:  # noqa: BLE001
            logger.warning("analytics.ping_failed", error=str(exc))
            return False


# ---------------------------------------------------------------------------
# Recorder
# ---------------------------------------------------------------------------

Job = Callable[[], Awaitable[None]]


class AnalyticsRecorder:
    """Decouples analytics writes from the request path.

    :meth:`record` and :meth:`record_click` only enqueue; a single worker
    task drains the bounded queue into the store. A full queue or a failed
    write is logged and the event dropped.

    Args:
        store:      Destination :class:`AnalyticsStore`.
        queue_size: Maximum number of pending writes.
    """

    def __init__(self, store: AnalyticsStore, queue_size: int = 1000) -> None:
        self.store = store
        self._queue: asyncio.Queue[Job] = asyncio.Queue(maxsize=queue_size)
        self._worker: asyncio.Task[None] | None = None
        self.dropped = 0

    async def start(self) -> None:
        """Spawn the worker task (idempotent)."""
        if self._worker is None or self._worker.done():
            self._worker = asyncio.create_task(self._run(), name="analytics-recorder")
            logger.info("analytics.recorder_started", store=self.store.name)

    async def stop(self, timeout: float = 5.0) -> None:
        """Drain pending writes (bounded by *timeout*) and stop the worker."""
        if self._worker is None:
            return
        try:
            await asyncio.wait_for(self._queue.join(), timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning("analytics.drain_timeout", pending=self._queue.qsize())
        self._worker.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._worker
        self._worker = None
        logger.info("analytics.recorder_stopped", dropped=self.dropped)

    async def join(self) -> None:
        """Wait until every queued write has been attempted."""
        await self._queue.join()

    def _enqueue(self, job: Job, kind: str) -> None:
        try:
            self._queue.put_nowait(job)
        except asyncio.QueueFull:
            self.dropped += 1
            logger.warning("analytics.queue_full", kind=kind, dropped=self.dropped)

    def record(self, term: str, result_count: int, meta: RequesterMeta | None = None) -> None:
        """Queue one search invocation; never blocks or raises."""
        if not normalize_term(term):
            return
        self._enqueue(partial(self.store.record_search, term, result_count, meta), "search")

    def record_click(self, term: str, click: ClickEvent, result_count: int = 0) -> None:
        """Queue one result click; never blocks or raises."""
        if not normalize_term(term):
            return
        self._enqueue(partial(self.store.record_click, term, click, result_count), "click")

    def count(self, name: str, amount: float = 1.0) -> None:
        """Queue a metrics counter increment."""
        self._enqueue(partial(self.store.increment_counter, name, amount), "counter")

    async def _run(self) -> None:
        while True:
            job = await self._queue.get()
            try:
                await job()
            except Exception as exc:  # noqa: BLE001
                logger.warning("analytics.write_failed", store=self.store.name, error=str(exc))
            finally:
                self._queue.task_done()
