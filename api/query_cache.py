"""
Query Cache Layer.

A per-session cache of backend reads addressed by tuple query keys (see
``api.query_keys``). Reads go through ``QueryCache.fetch(key, fetcher)``:

- fresh entry (younger than ``stale_time``, not invalidated): cached data,
  no round trip;
- stale entry: cached data returned immediately and one background refetch
  started (stale-while-revalidate);
- invalidated or empty entry: the read waits for a network fetch.

Concurrent reads of one key share a single in-flight task. A failed fetch
records its error on the entry but keeps whatever data was there and never
marks the entry fresh, so the next read goes back to the network.

Mutations call ``invalidate(prefix)`` afterwards. Every invalidation bumps the
entry's generation; a fetch that started under an older generation may store
its data but leaves the entry invalidated, so it cannot overwrite the effect of
a later invalidation.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional

from .app_config import DEFAULT_GC_TIME, DEFAULT_STALE_TIME
from .query_keys import QueryKey, key_matches
from .shared.logger import get_logger

logger = get_logger(__name__)

Fetcher = Callable[[], Awaitable[Any]]


class QueryEvent(str, Enum):
    """Events delivered to cache subscribers."""

    UPDATED = "updated"
    INVALIDATED = "invalidated"
    ERROR = "error"
    REMOVED = "removed"


Subscriber = Callable[[QueryEvent, QueryKey], None]


@dataclass
class QueryEntry:
    """Cache slot for one query key."""

    key: QueryKey
    fetcher: Optional[Fetcher] = None
    data: Any = None
    has_data: bool = False
    error: Optional[BaseException] = None
    updated_at: Optional[float] = None
    last_used: float = 0.0
    invalidated: bool = False
    generation: int = 0
    data_generation: int = 0
    task: Optional[asyncio.Task] = None
    task_generation: int = -1

    @property
    def is_fetching(self) -> bool:
        return self.task is not None and not self.task.done()


@dataclass
class QueryResult:
    """Snapshot handed to readers."""

    data: Any
    error: Optional[BaseException]
    is_loading: bool
    is_fetching: bool
    is_stale: bool

    @property
    def is_error(self) -> bool:
        return self.error is not None

    def unwrap(self) -> Any:
        """The data, or the fetch error when there is nothing to show."""
        if self.error is not None and self.data is None:
            raise self.error
        return self.data

    def to_dict(self) -> Dict[str, Any]:
        return {
            "is_loading": self.is_loading,
            "is_fetching": self.is_fetching,
            "is_stale": self.is_stale,
            "error": str(self.error) if self.error else None,
        }


class QueryCache:
    """Keyed read cache with staleness, dedup and explicit invalidation.

    Args:
        stale_time: Seconds a successful fetch stays fresh.
        gc_time: Seconds an unused entry is kept before being dropped.
        clock: Monotonic clock, injectable for tests.
    """

    def __init__(
        self,
        stale_time: float = DEFAULT_STALE_TIME,
        gc_time: float = DEFAULT_GC_TIME,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.stale_time = stale_time
        self.gc_time = gc_time
        self._clock = clock
        self._entries: Dict[QueryKey, QueryEntry] = {}
        self._subscribers: List[Subscriber] = []

    # ------------------------------------------------------------------ reads

    async def fetch(self, key: QueryKey, fetcher: Fetcher) -> QueryResult:
        """Read ``key``, going to the network only when needed."""
        self.collect_garbage()
        entry = self._entry(key)
        entry.fetcher = fetcher
        entry.last_used = self._clock()

        if entry.has_data and not entry.invalidated:
            if self._is_stale(entry):
                self._start_fetch(entry)
            return self._result(entry)

        task = self._start_fetch(entry)
        # shield: a cancelled reader must not cancel the fetch other readers share
        await asyncio.shield(task)
        return self._result(entry)

    async def ensure(self, key: QueryKey, fetcher: Fetcher) -> Any:
        """Like ``fetch`` but return the data, raising the fetch error if there is none."""
        result = await self.fetch(key, fetcher)
        if result.error is not None and not self._entries[key].has_data:
            raise result.error
        return result.data

    def peek(self, key: QueryKey) -> Optional[QueryResult]:
        """Current state of ``key`` without triggering a fetch."""
        entry = self._entries.get(key)
        return self._result(entry) if entry else None

    def get_query_data(self, key: QueryKey) -> Any:
        entry = self._entries.get(key)
        return entry.data if entry and entry.has_data else None

    def entries(self, prefix: QueryKey = ()) -> List[tuple]:
        """(key, data) pairs for every populated entry under ``prefix``."""
        return [
            (key, entry.data)
            for key, entry in self._entries.items()
            if entry.has_data and key_matches(key, prefix)
        ]

    # ----------------------------------------------------------------- writes

    def set_query_data(self, key: QueryKey, data: Any) -> None:
        """Replace the cached data for ``key`` (optimistic write)."""
        entry = self._entry(key)
        entry.data = data
        entry.has_data = True
        entry.error = None
        entry.updated_at = self._clock()
        entry.last_used = entry.updated_at
        self._notify(QueryEvent.UPDATED, key)

    def update_query_data(self, key: QueryKey, updater: Callable[[Any], Any]) -> bool:
        """Apply ``updater`` to the cached data of ``key`` if there is any."""
        entry = self._entries.get(key)
        if entry is None or not entry.has_data:
            return False
        entry.data = updater(entry.data)
        entry.last_used = self._clock()
        self._notify(QueryEvent.UPDATED, key)
        return True

    def update_matching(self, prefix: QueryKey, updater: Callable[[Any], Any]) -> List[QueryKey]:
        """Apply ``updater`` to every populated entry under ``prefix``."""
        updated = []
        for key in [k for k in self._entries if key_matches(k, prefix)]:
            if self.update_query_data(key, updater):
                updated.append(key)
        return updated

    def invalidate(self, prefix: QueryKey = ()) -> List[QueryKey]:
        """Mark every entry under ``prefix`` as needing a refetch."""
        invalidated = []
        for key, entry in self._entries.items():
            if key_matches(key, prefix):
                entry.generation += 1
                entry.invalidated = True
                invalidated.append(key)
        for key in invalidated:
            self._notify(QueryEvent.INVALIDATED, key)
        if invalidated:
            logger.debug("Invalidated %d queries under %s", len(invalidated), prefix)
        return invalidated

    def remove(self, prefix: QueryKey) -> List[QueryKey]:
        """Drop entries under ``prefix`` entirely."""
        removed = [key for key in self._entries if key_matches(key, prefix)]
        for key in removed:
            del self._entries[key]
            self._notify(QueryEvent.REMOVED, key)
        return removed

    def collect_garbage(self) -> int:
        """Drop idle entries unused for longer than ``gc_time``."""
        cutoff = self._clock() - self.gc_time
        expired = [
            key
            for key, entry in self._entries.items()
            if not entry.is_fetching and entry.last_used < cutoff
        ]
        for key in expired:
            del self._entries[key]
        return len(expired)

    # ------------------------------------------------------------ subscribers

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        """Register ``callback(event, key)``; returns an unsubscribe function."""
        self._subscribers.append(callback)

        def unsubscribe() -> None:
            try:
                self._subscribers.remove(callback)
            except ValueError:
                pass

        return unsubscribe

    def _notify(self, event: QueryEvent, key: QueryKey) -> None:
        for callback in list(self._subscribers):
            try:
                callback(event, key)
            except Exception as e:
                logger.error("Error in query cache subscriber: %s", e)

    # ---------------------------------------------------------------- internal

    def _entry(self, key: QueryKey) -> QueryEntry:
        entry = self._entries.get(key)
        if entry is None:
            entry = QueryEntry(key=key, last_used=self._clock())
            self._entries[key] = entry
        return entry

    def _is_stale(self, entry: QueryEntry) -> bool:
        if not entry.has_data or entry.invalidated or entry.updated_at is None:
            return True
        return self._clock() - entry.updated_at >= self.stale_time

    def _result(self, entry: QueryEntry) -> QueryResult:
        return QueryResult(
            data=entry.data if entry.has_data else None,
            error=entry.error,
            is_loading=entry.is_fetching and not entry.has_data,
            is_fetching=entry.is_fetching,
            is_stale=self._is_stale(entry),
        )

    def _start_fetch(self, entry: QueryEntry) -> asyncio.Task:
        if entry.is_fetching and entry.task_generation == entry.generation:
            return entry.task
        entry.task_generation = entry.generation
        entry.task = asyncio.create_task(self._run_fetch(entry, entry.generation))
        return entry.task

    async def _run_fetch(self, entry: QueryEntry, generation: int) -> None:
        try:
            data = await entry.fetcher()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            if generation >= entry.data_generation:
                entry.error = e
            logger.warning("Query %s failed: %s", entry.key, e)
            self._notify(QueryEvent.ERROR, entry.key)
            return

        if generation < entry.data_generation:
            # a fetch started after a later invalidation already landed
            return
        entry.data = data
        entry.has_data = True
        entry.error = None
        entry.updated_at = self._clock()
        entry.data_generation = generation
        entry.invalidated = generation != entry.generation
        self._notify(QueryEvent.UPDATED, entry.key)

    def stats(self) -> Dict[str, Any]:
        return {
            "entries": len(self._entries),
            "fetching": sum(1 for e in self._entries.values() if e.is_fetching),
            "invalidated": sum(1 for e in self._entries.values() if e.invalidated),
            "errors": sum(1 for e in self._entries.values() if e.error is not None),
        }

    async def aclose(self) -> None:
        """Cancel running fetches and drop every entry."""
        tasks = [entry.task for entry in self._entries.values() if entry.is_fetching]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._entries.clear()
        self._subscribers.clear()
