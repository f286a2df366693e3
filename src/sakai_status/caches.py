"""Named in-process caches and their statistics."""

import math
import sys
import threading
import time
from collections.abc import Callable, Hashable
from dataclasses import dataclass
from enum import Enum
from typing import Any, TextIO

import structlog
import cachetools
from cachetools import FIFOCache, LFUCache, LRUCache, RRCache

from sakai_status.errors import CacheNotFoundError
from sakai_status.models import CacheDescriptor

logger = structlog.get_logger(__name__)


class EvictionPolicy(Enum):
    """Which entry goes when a cache is full."""

    LRU = "LRU"
    LFU = "LFU"
    FIFO = "FIFO"
    RANDOM = "RANDOM"


class PersistenceStrategy(Enum):
    NONE = "NONE"
    LOCALTEMPSWAP = "LOCALTEMPSWAP"
    LOCALRESTARTABLE = "LOCALRESTARTABLE"
    DISTRIBUTED = "DISTRIBUTED"


class _CountingStore:
    """Mixin reporting capacity evictions back to the owning cache."""

    on_evict: Callable[[], None]

    def popitem(self):
        item = super().popitem()
        self.on_evict()
        return item


class _LRUStore(_CountingStore, LRUCache):
    pass


class _LFUStore(_CountingStore, LFUCache):
    pass


class _FIFOStore(_CountingStore, FIFOCache):
    pass


class _RandomStore(_CountingStore, RRCache):
    pass


_STORES = {
    EvictionPolicy.LRU: _LRUStore,
    EvictionPolicy.LFU: _LFUStore,
    EvictionPolicy.FIFO: _FIFOStore,
    EvictionPolicy.RANDOM: _RandomStore,
}


@dataclass(slots=True)
class _Entry:
    value: Any
    created: float
    accessed: float


class Cache:
    """
    A named, bounded cache that keeps hit/miss/eviction statistics.

    Entries expire after ``ttl`` seconds from creation or ``tti`` seconds
    without access (0 disables either), unless the cache is eternal.
    Expiry is checked when an entry is read.
    """

    def __init__(
        self,
        name: str,
        max_entries: int = 10000,
        eviction_policy: EvictionPolicy | str = EvictionPolicy.LRU,
        ttl: int = 0,
        tti: int = 0,
        eternal: bool = False,
        persistence_strategy: PersistenceStrategy | str = PersistenceStrategy.NONE,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """
        Initialize the Cache.

        Args:
            name: Registry name of the cache.
            max_entries: Capacity; 0 means unbounded.
            eviction_policy: Policy applied when the cache is full.
            ttl: Time to live in seconds.
            tti: Time to idle in seconds.
            eternal: Entries never expire; ttl and tti are ignored.
            persistence_strategy: Reported as configured; entries are
                only ever kept in memory.
            clock: Time source for expiry, in seconds.
        """
        if max_entries < 0 or ttl < 0 or tti < 0:
            raise ValueError("max_entries, ttl and tti must not be negative")
        self._name = name
        self._max_entries = max_entries
        if isinstance(eviction_policy, str):
            eviction_policy = EvictionPolicy(eviction_policy.upper())
        self._policy = eviction_policy
        self._ttl = ttl
        self._tti = tti
        self._eternal = eternal
        if isinstance(persistence_strategy, str):
            persistence_strategy = PersistenceStrategy(persistence_strategy.upper())
        self._persistence = persistence_strategy
        self._clock = clock

        self._store = self._new_store()
        self._lock = threading.RLock()

        self._hits = 0
        self._misses = 0
        self._evictions = 0
        self._get_count = 0
        self._get_time = 0.0

    @property
    def name(self) -> str:
        return self._name

    @property
    def max_entries(self) -> int:
        return self._max_entries

    @property
    def eviction_policy(self) -> EvictionPolicy:
        return self._policy

    @property
    def ttl(self) -> int:
        return self._ttl

    @property
    def tti(self) -> int:
        return self._tti

    @property
    def eternal(self) -> bool:
        return self._eternal

    @property
    def persistence_strategy(self) -> PersistenceStrategy:
        return self._persistence

    @property
    def hits(self) -> int:
        return self._hits

    @property
    def misses(self) -> int:
        return self._misses

    @property
    def evictions(self) -> int:
        return self._evictions

    @property
    def average_get_time(self) -> float:
        """Mean duration of ``get`` in milliseconds."""
        if self._get_count == 0:
            return 0.0
        return self._get_time / self._get_count * 1000.0

    def _new_store(self):
        store = _STORES[self._policy](maxsize=self._max_entries or math.inf)
        store.on_evict = self._record_eviction
        return store

    def _record_eviction(self) -> None:
        self._evictions += 1

    def _expired(self, entry: _Entry, now: float) -> bool:
        if self._eternal:
            return False
        if self._ttl and now - entry.created >= self._ttl:
            return True
        if self._tti and now - entry.accessed >= self._tti:
            return True
        return False

    def get(self, key: Hashable, default: Any = None) -> Any:
        started = time.perf_counter()
        with self._lock:
            now = self._clock()
            entry = self._store.get(key)
            if entry is not None and self._expired(entry, now):
                del self._store[key]
                entry = None
            if entry is None:
                self._misses += 1
                value = default
            else:
                entry.accessed = now
                self._hits += 1
                value = entry.value
            self._get_count += 1
            self._get_time += time.perf_counter() - started
        return value

    def put(self, key: Hashable, value: Any) -> None:
        with self._lock:
            now = self._clock()
            self._store[key] = _Entry(value, now, now)

    def remove(self, key: Hashable) -> bool:
        with self._lock:
            return self._store.pop(key, None) is not None

    def clear(self) -> None:
        with self._lock:
            self._store = self._new_store()

    def __len__(self) -> int:
        with self._lock:
            return len(self._store)

    def __contains__(self, key: Hashable) -> bool:
        with self._lock:
            return key in self._store

    def memory_size(self) -> int:
        """Approximate bytes held by keys and values."""
        with self._lock:
            store = self._store
            # plain lookups, so measuring does not count as an access
            entries = [(k, cachetools.Cache.__getitem__(store, k)) for k in store]
        return sum(sys.getsizeof(k) + sys.getsizeof(e.value) for k, e in entries)


class CacheManager:
    """Registry of named caches."""

    def __init__(self) -> None:
        self._caches: dict[str, Cache] = {}
        self._lock = threading.Lock()

    def add_cache(self, cache: Cache) -> Cache:
        with self._lock:
            if cache.name in self._caches:
                raise ValueError(f"Cache {cache.name!r} already exists")
            self._caches[cache.name] = cache
        logger.info("cache_added", cache=cache.name, policy=cache.eviction_policy.value)
        return cache

    def create_cache(self, name: str, **options: Any) -> Cache:
        return self.add_cache(Cache(name, **options))

    def remove_cache(self, name: str) -> None:
        with self._lock:
            self._caches.pop(name, None)

    def get_cache(self, name: str) -> Cache | None:
        with self._lock:
            return self._caches.get(name)

    def cache_names(self) -> list[str]:
        with self._lock:
            return sorted(self._caches)


def describe(manager: CacheManager | None, name: str) -> CacheDescriptor:
    """Configuration and counters of one cache. Raises if it cannot be found."""
    if manager is None:
        raise CacheNotFoundError("Could not get CacheManager bean.")
    cache = manager.get_cache(name)
    if cache is None:
        raise CacheNotFoundError(f"No such cache name: {name}")
    return CacheDescriptor(
        name=cache.name,
        memory_size=cache.memory_size(),
        eviction_policy=cache.eviction_policy.value,
        max_entries=cache.max_entries,
        ttl=cache.ttl,
        tti=cache.tti,
        eternal=cache.eternal,
        persistence_strategy=cache.persistence_strategy.value,
        object_count=len(cache),
        hits=cache.hits,
        misses=cache.misses,
        evictions=cache.evictions,
        average_get_time=cache.average_get_time,
    )


def render_cache_details(d: CacheDescriptor, out: TextIO) -> None:
    out.write(f"name: {d.name}\n")
    out.write(f"memory: {d.memory_size}\n")
    out.write(f"objects: {d.object_count}\n")
    out.write(f"maxobjects: {d.max_entries}\n")
    out.write(f"time-to-live: {d.ttl}\n")
    out.write(f"time-to-idle: {d.tti}\n")
    out.write(f"eviction-policy: {d.eviction_policy}\n")
    out.write(f"eternal: {str(d.eternal).lower()}\n")
    out.write(f"persistence strategy: {d.persistence_strategy}\n")
    out.write(f"evictions: {d.evictions}\n")
    out.write(f"latency: {d.average_get_time}\n")
    out.write(f"hits: {d.hits}\n")
    out.write(f"misses: {d.misses}\n")
    out.write(f"total: {d.total}\n")
    out.write(f"hitratio: {d.hit_ratio}%\n")
