"""Short-TTL cache of the two most recent sensor readings.

The store holds a single CacheEntry (current + previous reading). Reads
within the TTL are served from memory; push updates from the sensor table
shift current into previous, unless they land inside the debounce window of
the last committed update.

Overlapping fetches are resolved with a generation counter: every fetch and
every applied push takes a new generation, and a fetch response is only
committed if its generation is still the latest.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Mapping

from coldwatch.data.schemas import SensorSnapshot
from coldwatch.data.validate import normalize_sensor_row
from coldwatch.monitoring.metrics import record_cache_lookup, record_fetch, record_push
from coldwatch.store.base import DataStore, Query, Subscription

logger = logging.getLogger(__name__)

DEFAULT_TTL_MS = 10_000
DEFAULT_DEBOUNCE_MS = 500


def wall_clock_ms() -> float:
    return time.time() * 1000


@dataclass(frozen=True)
class CacheEntry:
    """The cached snapshot and when it was captured (ms)."""

    timestamp: float
    current: dict[str, float | None]
    previous: dict[str, float | None]
    ttl_ms: int
    current_timestamp: datetime | None = None
    previous_timestamp: datetime | None = None

    def is_stale(self, now_ms: float) -> bool:
        return now_ms - self.timestamp >= self.ttl_ms

    def to_snapshot(self) -> SensorSnapshot:
        return SensorSnapshot(
            current=self.current,
            previous=self.previous,
            current_timestamp=self.current_timestamp,
            previous_timestamp=self.previous_timestamp,
        )


@dataclass(frozen=True)
class FetchResult:
    """Outcome of TimeSeriesStore.get()."""

    snapshot: SensorSnapshot = field(default_factory=SensorSnapshot)
    from_cache: bool = False
    ok: bool = True
    error: str | None = None
    superseded: bool = False


class TimeSeriesStore:
    """Owns the snapshot cache for one sensor table.

    Args:
        store: Data store to query and subscribe to.
        table: Sensor table name.
        clock: Returns the current time in milliseconds.
        ttl_ms: Age at which the cache entry is stale.
        debounce_ms: Push updates closer than this to the last commit are dropped.
    """

    def __init__(
        self,
        store: DataStore,
        table: str = "sensor_data",
        clock: Callable[[], float] = wall_clock_ms,
        ttl_ms: int = DEFAULT_TTL_MS,
        debounce_ms: int = DEFAULT_DEBOUNCE_MS,
    ) -> None:
        if debounce_ms >= ttl_ms:
            raise ValueError(f"debounce_ms ({debounce_ms}) must be shorter than ttl_ms ({ttl_ms})")
        self._store = store
        self._table = table
        self._clock = clock
        self._ttl_ms = ttl_ms
        self._debounce_ms = debounce_ms
        self._entry: CacheEntry | None = None
        self._generation = 0
        self._subscription: Subscription | None = None

    @property
    def entry(self) -> CacheEntry | None:
        return self._entry

    @property
    def snapshot(self) -> SensorSnapshot:
        return self._entry.to_snapshot() if self._entry is not None else SensorSnapshot()

    @property
    def latest_query(self) -> Query:
        return Query(self._table).order("timestamp", descending=True).limit(2)

    def is_stale(self) -> bool:
        return self._entry is None or self._entry.is_stale(self._clock())

    def invalidate(self) -> None:
        self._entry = None

    # ──────────────────────────────────────────────
    # Reads
    # ──────────────────────────────────────────────

    def _cached(self, force_refresh: bool) -> FetchResult | None:
        if force_refresh or self._entry is None or self._entry.is_stale(self._clock()):
            record_cache_lookup(hit=False)
            return None
        record_cache_lookup(hit=True)
        return FetchResult(snapshot=self._entry.to_snapshot(), from_cache=True)

    def _begin_fetch(self) -> tuple[int, float]:
        self._generation += 1
        return self._generation, self._clock()

    def _fetch_failed(self, error: Exception, started: float) -> FetchResult:
        record_fetch("snapshot", self._clock() - started, ok=False)
        logger.warning("Sensor snapshot fetch failed: %s", error)
        return FetchResult(snapshot=self.snapshot, ok=False, error=f"fetch failed: {error}")

    def _commit_fetch(self, generation: int, started: float, rows: list[dict[str, Any]]) -> FetchResult:
        record_fetch("snapshot", self._clock() - started, ok=True)

        if generation != self._generation:
            logger.debug("Discarding superseded snapshot fetch (gen %d < %d)", generation, self._generation)
            return FetchResult(snapshot=self.snapshot, superseded=True)

        if not rows:
            logger.info("Sensor table %s is empty", self._table)
            return FetchResult(snapshot=self.snapshot)

        current_ts, current = normalize_sensor_row(rows[0])
        previous_ts, previous = normalize_sensor_row(rows[1]) if len(rows) > 1 else (None, {})

        self._entry = CacheEntry(
            timestamp=started,
            current=current,
            previous=previous,
            ttl_ms=self._ttl_ms,
            current_timestamp=current_ts,
            previous_timestamp=previous_ts,
        )
        return FetchResult(snapshot=self._entry.to_snapshot())

    def get(self, force_refresh: bool = False) -> FetchResult:
        """Return the cached snapshot, fetching the latest two rows when needed.

        A fetch failure leaves the cache untouched and is reported in the
        result rather than raised.
        """
        cached = self._cached(force_refresh)
        if cached is not None:
            return cached

        generation, started = self._begin_fetch()
        try:
            rows = self._store.select(self.latest_query)
        except Exception as e:
            return self._fetch_failed(e, started)
        return self._commit_fetch(generation, started, rows)

    async def aget(self, force_refresh: bool = False) -> FetchResult:
        """Like get(), but runs the query off the event loop.

        Push updates may be applied while the query is in flight; a response
        that was overtaken is discarded.
        """
        cached = self._cached(force_refresh)
        if cached is not None:
            return cached

        generation, started = self._begin_fetch()
        try:
            rows = await asyncio.to_thread(self._store.select, self.latest_query)
        except Exception as e:
            return self._fetch_failed(e, started)
        return self._commit_fetch(generation, started, rows)

    # ──────────────────────────────────────────────
    # Push updates
    # ──────────────────────────────────────────────

    def apply_push(self, row: Mapping[str, Any]) -> bool:
        """Install a newly inserted row as current. Returns False if debounced."""
        now = self._clock()
        if self._entry is not None and now - self._entry.timestamp < self._debounce_ms:
            record_push(applied=False)
            logger.debug("Dropping push update %.0fms after last commit", now - self._entry.timestamp)
            return False

        row_ts, values = normalize_sensor_row(row)
        previous = self._entry.current if self._entry is not None else {}
        previous_ts = self._entry.current_timestamp if self._entry is not None else None

        self._generation += 1
        self._entry = CacheEntry(
            timestamp=now,
            current=values,
            previous=previous,
            ttl_ms=self._ttl_ms,
            current_timestamp=row_ts,
            previous_timestamp=previous_ts,
        )
        record_push(applied=True)
        return True

    def attach(self) -> None:
        """Subscribe to INSERT events on the sensor table."""
        if self._subscription is not None:
            return
        self._subscription = self._store.subscribe(self._table, "INSERT", self.apply_push)
        logger.info("Listening for inserts on %s", self._table)

    def detach(self) -> None:
        if self._subscription is not None:
            self._subscription.unsubscribe()
            self._subscription = None
