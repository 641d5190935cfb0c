"""
Hazard data cache for the Compound Risk service
Implements a type-partitioned, size-bounded TTL cache with stale-while-error
reads, frequency-aware eviction and snapshot persistence
"""

import asyncio
import contextlib
import hashlib
import json
import logging
import threading
import time
from functools import wraps
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Mapping, Optional

from pydantic import BaseModel

from compound_risk.constants import (
    CACHE_TTL_SECONDS,
    EVICTION_HIT_BONUS_SECONDS,
    QUOTA_RELIEF_CACHE_TYPE,
)
from compound_risk.exceptions import QuotaExceededError
from compound_risk.models import CacheItemRef, CacheStats, CacheType
from compound_risk.types import CacheEntryDict
from compound_risk.utils.storage import CacheStorage, InMemoryCacheStorage

logger = logging.getLogger(__name__)


def _encode(value: Any) -> Any:
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json")
    return str(value)


def _dumps(value: Any) -> str:
    return json.dumps(value, sort_keys=True, ensure_ascii=False, default=_encode)


def make_cache_key(key: str, cache_type: CacheType) -> str:
    """Namespace a key by its cache type so clearing by type is exact"""
    return f"{cache_type.value}:{key.lower()}"


def hash_call(name: str, args: Iterable[Any], kwargs: Mapping[str, Any]) -> str:
    """
    Generate a deterministic cache key for a function call

    Args:
        name: Qualified function name
        args: Positional arguments
        kwargs: Keyword arguments

    Returns:
        Hexadecimal SHA-256 of the JSON-encoded call
    """
    call_data = {"fn": name, "args": list(args), "kwargs": dict(kwargs)}
    call_json = _dumps(call_data)
    return hashlib.sha256(call_json.encode("utf-8")).hexdigest()


class CacheEntry:
    """
    One cached value and its bookkeeping

    Attributes:
        data: Cached value
        timestamp: Epoch seconds when the value was stored
        type: Cache type, which fixes the TTL
        source: Optional name of the data source
        hits: Number of successful reads
    """

    def __init__(
        self,
        data: Any,
        timestamp: float,
        type: CacheType,
        source: Optional[str] = None,
        hits: int = 0,
    ):
        self.data = data
        self.timestamp = timestamp
        self.type = type
        self.source = source
        self.hits = hits

    def is_expired(self, now: float) -> bool:
        return now - self.timestamp > CACHE_TTL_SECONDS[self.type]

    @property
    def eviction_score(self) -> float:
        """Lower scores are evicted first; every hit buys an hour"""
        return self.timestamp + self.hits * EVICTION_HIT_BONUS_SECONDS

    def to_dict(self) -> CacheEntryDict:
        return {
            "data": self.data,
            "timestamp": self.timestamp,
            "type": self.type.value,
            "source": self.source,
            "hits": self.hits,
        }

    @classmethod
    def from_dict(cls, value: Any) -> Optional["CacheEntry"]:
        """
        Rebuild an entry from a persisted record

        Returns:
            CacheEntry, or None if the record has an unknown type or a
            malformed shape
        """
        if not isinstance(value, dict):
            return None
        if "data" not in value or "timestamp" not in value or "type" not in value:
            return None
        timestamp = value["timestamp"]
        if isinstance(timestamp, bool) or not isinstance(timestamp, (int, float)):
            return None
        try:
            cache_type = CacheType(value["type"])
        except ValueError:
            return None
        hits = value.get("hits") or 0
        if isinstance(hits, bool) or not isinstance(hits, int) or hits < 0:
            return None
        source = value.get("source")
        if source is not None and not isinstance(source, str):
            return None
        return cls(value["data"], float(timestamp), cache_type, source, hits)


class HazardCache:
    """
    Thread-safe TTL cache keyed by ``"<type>:<lowercased key>"``

    A single re-entrant lock serializes reads, writes, eviction, the expiry
    sweep and snapshotting. The lock is never held across an ``await``.
    """

    def __init__(
        self,
        storage: Optional[CacheStorage] = None,
        max_size: int = 1000,
        cleanup_interval: float = 60 * 60,
        clock: Callable[[], float] = time.time,
    ):
        """
        Initialize the cache and rehydrate it from storage

        Args:
            storage: Persistence backend (default: in-memory)
            max_size: Maximum number of entries (default: 1000)
            cleanup_interval: Seconds between background expiry sweeps
            clock: Source of epoch seconds
        """
        self.storage = storage or InMemoryCacheStorage()
        self.max_size = max_size
        self.cleanup_interval = cleanup_interval
        self._clock = clock
        self._entries: Dict[str, CacheEntry] = {}
        self._lock = threading.RLock()
        self._sweeper: Optional[asyncio.Task] = None
        self._load()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    # ------------------------------------------------------------------
    # Reads and writes
    # ------------------------------------------------------------------

    async def get_or_fetch(
        self,
        key: str,
        fetcher: Callable[[], Awaitable[Any]],
        cache_type: CacheType,
        force_refresh: bool = False,
        source: Optional[str] = None,
    ) -> Any:
        """
        Return the cached value or fetch, store and return a fresh one

        If the fetch fails while any entry (even an expired one) exists for
        the key, that stale value is returned instead of the error.

        Args:
            key: Caller key, case-insensitive
            fetcher: Coroutine function producing the value
            cache_type: Cache type of the value
            force_refresh: Skip the cached value and fetch
            source: Optional data source name stored with the entry

        Returns:
            Cached or freshly fetched value
        """
        cache_key = make_cache_key(key, cache_type)

        with self._lock:
            existing = self._entries.get(cache_key)
            if existing is not None and not force_refresh:
                if not existing.is_expired(self._clock()):
                    existing.hits += 1
                    logger.debug(f"Cache hit: {cache_key}")
                    return existing.data

        logger.debug(f"Cache miss: {cache_key} (force_refresh={force_refresh})")
        try:
            data = await fetcher()
        except Exception as e:
            if existing is not None:
                logger.warning(
                    f"Using stale cache for {cache_key} due to fetch error: {e}",
                    extra={"cache_key": cache_key},
                )
                return existing.data
            raise

        self.set(key, data, cache_type, source=source)
        return data

    def get(self, key: str, cache_type: CacheType) -> Optional[Any]:
        """
        Get a cached value if present and not expired

        Expired entries are deleted on read. A successful read increments
        the entry's hit count.

        Args:
            key: Caller key, case-insensitive
            cache_type: Cache type of the value

        Returns:
            Cached value, or None on miss or expiry
        """
        cache_key = make_cache_key(key, cache_type)
        with self._lock:
            entry = self._entries.get(cache_key)
            if entry is None:
                return None
            if entry.is_expired(self._clock()):
                del self._entries[cache_key]
                logger.debug(f"Cache entry {cache_key} expired and removed")
                return None
            entry.hits += 1
            return entry.data

    def set(
        self, key: str, data: Any, cache_type: CacheType, source: Optional[str] = None
    ) -> None:
        """
        Store a value, evicting one entry first if the cache is full

        Args:
            key: Caller key, case-insensitive
            data: Value to cache
            cache_type: Cache type of the value
            source: Optional data source name
        """
        cache_key = make_cache_key(key, cache_type)
        with self._lock:
            if len(self._entries) >= self.max_size and cache_key not in self._entries:
                self._evict_one()
            self._entries[cache_key] = CacheEntry(
                data, self._clock(), cache_type, source=source, hits=0
            )
            logger.debug(f"Cached {cache_key} (cache size: {len(self._entries)})")
            self._persist()

    def clear(self, cache_type: Optional[CacheType] = None) -> int:
        """
        Clear all entries or only those of one type

        Args:
            cache_type: Type to clear; None clears everything

        Returns:
            Number of removed entries
        """
        with self._lock:
            removed = self._remove_type(cache_type)
            logger.info(
                f"Cache cleared ({cache_type.value if cache_type else 'all'}): "
                f"{removed} entries removed"
            )
            self._persist()
            return removed

    async def batch_get(
        self,
        keys: List[str],
        fetcher: Callable[[List[str]], Awaitable[Mapping[str, Any]]],
        cache_type: CacheType,
    ) -> Dict[str, Any]:
        """
        Get many values with a single fetch for all misses

        Args:
            keys: Caller keys
            fetcher: Coroutine function fetching the missing keys at once
            cache_type: Cache type of the values

        Returns:
            Mapping of key to value; only cache hits if the batch fetch fails
        """
        results: Dict[str, Any] = {}
        missing: List[str] = []

        for key in keys:
            cached = self.get(key, cache_type)
            if cached is not None:
                results[key] = cached
            else:
                missing.append(key)

        if not missing:
            return results

        try:
            fetched = await fetcher(missing)
        except Exception as e:
            logger.error(
                f"Batch fetch failed for {len(missing)} {cache_type.value} keys: {e}"
            )
            return results

        for key, data in fetched.items():
            self.set(key, data, cache_type)
            results[key] = data

        return results

    # ------------------------------------------------------------------
    # Observability
    # ------------------------------------------------------------------

    def get_stats(self) -> CacheStats:
        """
        Compute a statistics snapshot

        Returns:
            CacheStats with counts per type, hit rate and age extremes
        """
        with self._lock:
            items_by_type = {cache_type: 0 for cache_type in CacheType}
            total_hits = 0
            oldest: Optional[CacheItemRef] = None
            newest: Optional[CacheItemRef] = None
            size = 0

            for cache_key, entry in self._entries.items():
                items_by_type[entry.type] += 1
                total_hits += entry.hits
                if oldest is None or entry.timestamp < oldest.timestamp:
                    oldest = CacheItemRef(key=cache_key, timestamp=entry.timestamp)
                if newest is None or entry.timestamp > newest.timestamp:
                    newest = CacheItemRef(key=cache_key, timestamp=entry.timestamp)
                size += self._estimate_entry_size(cache_key, entry)

            # Every entry counts one initial fetch
            total_requests = total_hits + len(self._entries)
            hit_rate = total_hits / total_requests if total_requests > 0 else 0.0

            return CacheStats(
                total_items=len(self._entries),
                size_in_bytes=size,
                items_by_type=items_by_type,
                hit_rate=round(hit_rate, 4),
                oldest_item=oldest,
                newest_item=newest,
            )

    # ------------------------------------------------------------------
    # Expiry sweep
    # ------------------------------------------------------------------

    def cleanup(self) -> int:
        """
        Remove all expired entries

        Returns:
            Number of removed entries
        """
        with self._lock:
            now = self._clock()
            expired = [
                cache_key
                for cache_key, entry in self._entries.items()
                if entry.is_expired(now)
            ]
            for cache_key in expired:
                del self._entries[cache_key]

            if expired:
                logger.info(f"Cache cleanup: removed {len(expired)} expired items")
                self._persist()
            return len(expired)

    def start_sweeper(self) -> asyncio.Task:
        """Start the periodic expiry sweep on the running event loop"""
        if self._sweeper is None or self._sweeper.done():
            self._sweeper = asyncio.get_running_loop().create_task(self._sweep_forever())
            logger.info(f"Cache sweeper started (interval={self.cleanup_interval}s)")
        return self._sweeper

    async def stop_sweeper(self) -> None:
        """Cancel the periodic expiry sweep"""
        if self._sweeper is None:
            return
        self._sweeper.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._sweeper
        self._sweeper = None
        logger.info("Cache sweeper stopped")

    async def _sweep_forever(self) -> None:
        while True:
            await asyncio.sleep(self.cleanup_interval)
            self.cleanup()

    # ------------------------------------------------------------------
    # Internals (call with self._lock held)
    # ------------------------------------------------------------------

    def _evict_one(self) -> None:
        if not self._entries:
            return
        victim = min(self._entries, key=lambda k: self._entries[k].eviction_score)
        entry = self._entries.pop(victim)
        logger.debug(f"Cache eviction: removed {victim} (hits={entry.hits})")

    def _remove_type(self, cache_type: Optional[CacheType]) -> int:
        if cache_type is None:
            removed = len(self._entries)
            self._entries.clear()
            return removed
        doomed = [k for k, entry in self._entries.items() if entry.type == cache_type]
        for cache_key in doomed:
            del self._entries[cache_key]
        return len(doomed)

    def _snapshot(self) -> bytes:
        now = self._clock()
        return _dumps(
            {
                cache_key: entry.to_dict()
                for cache_key, entry in self._entries.items()
                if not entry.is_expired(now)
            }
        ).encode("utf-8")

    def _persist(self) -> None:
        """
        Write a snapshot of all live entries

        On quota exhaustion the shortest-TTL type is dropped and the write is
        retried once; after that persistence is skipped for this cycle and the
        in-memory cache stays authoritative.
        """
        try:
            self.storage.save(self._snapshot())
            return
        except QuotaExceededError as e:
            logger.warning(
                f"Cache persistence quota exceeded ({e.message}); "
                f"clearing {QUOTA_RELIEF_CACHE_TYPE.value} entries and retrying"
            )
        except (OSError, ValueError) as e:
            logger.error(f"Failed to save cache to storage: {e}")
            return

        self._remove_type(QUOTA_RELIEF_CACHE_TYPE)
        try:
            self.storage.save(self._snapshot())
        except QuotaExceededError as e:
            logger.warning(f"Giving up on cache persistence for this cycle: {e.message}")
        except (OSError, ValueError) as e:
            logger.error(f"Failed to save cache to storage: {e}")

    def _load(self) -> None:
        try:
            payload = self.storage.load()
        except OSError as e:
            logger.error(f"Failed to load cache from storage: {e}")
            return
        if not payload:
            return

        try:
            records = json.loads(payload)
        except ValueError as e:
            logger.error(f"Discarding unreadable cache snapshot: {e}")
            return
        if not isinstance(records, dict):
            logger.error("Discarding cache snapshot with unexpected layout")
            return

        dropped = 0
        for cache_key, record in records.items():
            entry = CacheEntry.from_dict(record)
            if entry is None or not cache_key.startswith(f"{entry.type.value}:"):
                dropped += 1
                continue
            self._entries[cache_key] = entry

        logger.info(
            f"Rehydrated {len(self._entries)} cache entries from storage"
            + (f" ({dropped} invalid records dropped)" if dropped else "")
        )

    @staticmethod
    def _estimate_entry_size(cache_key: str, entry: CacheEntry) -> int:
        try:
            data_size = len(_dumps(entry.data).encode("utf-8"))
        except ValueError:
            data_size = len(str(entry.data))
        # 50 bytes of metadata overhead per entry
        return len(cache_key.encode("utf-8")) + data_size + 50


def with_cache(
    fn: Callable[..., Awaitable[Any]],
    cache: HazardCache,
    cache_type: CacheType,
    key_builder: Optional[Callable[..., str]] = None,
) -> Callable[..., Awaitable[Any]]:
    """
    Wrap a coroutine function so its results go through the cache

    Args:
        fn: Coroutine function to wrap
        cache: Cache instance
        cache_type: Cache type of fn's results
        key_builder: Optional function of fn's arguments returning the key;
            defaults to a hash of the qualified name and arguments

    Returns:
        Coroutine function with fn's call signature
    """

    @wraps(fn)
    async def wrapper(*args: Any, **kwargs: Any) -> Any:
        if key_builder is not None:
            key = key_builder(*args, **kwargs)
        else:
            key = hash_call(fn.__qualname__, args, kwargs)
        return await cache.get_or_fetch(key, lambda: fn(*args, **kwargs), cache_type)

    return wrapper
