from __future__ import annotations

import logging
import sys
import time
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Any, Callable, Iterable, Mapping, Optional

from procurement.config import CacheConfig, EvictionPolicy

logger = logging.getLogger(__name__)

_MISSING = object()


@dataclass
class CacheEntry:
    value: Any
    expires_at: float
    tags: frozenset[str]
    created_at: float
    last_access: float
    hits: int = 0
    size: int = 0


@dataclass
class CacheStats:
    hits: int = 0
    misses: int = 0
    sets: int = 0
    deletes: int = 0
    evictions: int = 0
    expirations: int = 0

    @property
    def lookups(self) -> int:
        return self.hits + self.misses

    @property
    def hit_rate(self) -> float:
        return float(self.hits / self.lookups) if self.lookups else 0.0


class TaggedCache:
    """
    Key/value store with per-write TTL and tag-based bulk invalidation.

    TTL is fixed at write time and is not renewed by reads. When the cache is
    full, one entry is evicted per insert according to the configured policy.
    """

    def __init__(
        self,
        config: Optional[CacheConfig] = None,
        *,
        name: str = "default",
        clock: Callable[[], float] = time.monotonic,
    ):
        self.config = config or CacheConfig()
        self.name = name
        self._clock = clock
        self._entries: OrderedDict[str, CacheEntry] = OrderedDict()
        self._tag_index: dict[str, set[str]] = {}
        self._stats = CacheStats()

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: str) -> bool:
        return self.has(key)

    def keys(self) -> list[str]:
        return list(self._entries.keys())

    # --- reads ---

    def get(self, key: str, default: Any = None) -> Any:
        entry = self._live_entry(key)
        if entry is None:
            self._stats.misses += 1
            return default
        self._stats.hits += 1
        entry.hits += 1
        entry.last_access = self._clock()
        self._entries.move_to_end(key)
        return entry.value

    def mget(self, keys: Iterable[str]) -> dict[str, Any]:
        """Returns only the keys that are present and unexpired."""
        out: dict[str, Any] = {}
        for key in keys:
            value = self.get(key, _MISSING)
            if value is not _MISSING:
                out[key] = value
        return out

    def has(self, key: str) -> bool:
        return self._live_entry(key) is not None

    # --- writes ---

    def set(self, key: str, value: Any, *, ttl: Optional[float] = None, tags: Iterable[str] = ()) -> None:
        now = self._clock()
        ttl = self.config.default_ttl_s if ttl is None else float(ttl)
        if key in self._entries:
            self._remove(key)
        elif len(self._entries) >= self.config.max_size:
            self._evict_one()
        entry = CacheEntry(
            value=value,
            expires_at=now + ttl,
            tags=frozenset(tags),
            created_at=now,
            last_access=now,
            size=sys.getsizeof(value),
        )
        self._entries[key] = entry
        for tag in entry.tags:
            self._tag_index.setdefault(tag, set()).add(key)
        self._stats.sets += 1

    def mset(self, items: Mapping[str, Any], *, ttl: Optional[float] = None, tags: Iterable[str] = ()) -> None:
        tags = tuple(tags)
        for key, value in items.items():
            self.set(key, value, ttl=ttl, tags=tags)

    def get_or_set(
        self,
        key: str,
        factory: Callable[[], Any],
        *,
        ttl: Optional[float] = None,
        tags: Iterable[str] = (),
    ) -> Any:
        value = self.get(key, _MISSING)
        if value is _MISSING:
            value = factory()
            self.set(key, value, ttl=ttl, tags=tags)
        return value

    def delete(self, key: str) -> bool:
        if key not in self._entries:
            return False
        self._remove(key)
        self._stats.deletes += 1
        return True

    def invalidate_tags(self, tags: Iterable[str]) -> int:
        keys: set[str] = set()
        for tag in tags:
            keys |= self._tag_index.get(tag, set())
        for key in keys:
            self._remove(key)
        self._stats.deletes += len(keys)
        if keys:
            logger.debug(f"cache={self.name} invalidated={len(keys)}")
        return len(keys)

    def cleanup(self) -> int:
        now = self._clock()
        expired = [k for k, e in self._entries.items() if e.expires_at <= now]
        for key in expired:
            self._remove(key)
        self._stats.expirations += len(expired)
        return len(expired)

    def clear(self) -> None:
        self._entries.clear()
        self._tag_index.clear()

    # --- introspection ---

    def stats(self) -> dict[str, Any]:
        s = self._stats
        return {
            "name": self.name,
            "size": len(self._entries),
            "max_size": self.config.max_size,
            "hits": s.hits,
            "misses": s.misses,
            "sets": s.sets,
            "deletes": s.deletes,
            "evictions": s.evictions,
            "expirations": s.expirations,
            "hit_rate": s.hit_rate,
            "memory_bytes": sum(e.size for e in self._entries.values()),
        }

    def health_check(self) -> dict[str, Any]:
        issues: list[str] = []
        usage = len(self._entries) / self.config.max_size if self.config.max_size else 0.0
        if usage > 0.9:
            issues.append(f"cache {self.name} usage {usage:.0%} above 90%")
        if self._stats.lookups > 100 and self._stats.hit_rate < 0.5:
            issues.append(f"cache {self.name} hit rate {self._stats.hit_rate:.0%} below 50%")
        return {"healthy": not issues, "issues": issues}

    # --- internals ---

    def _live_entry(self, key: str) -> Optional[CacheEntry]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        if entry.expires_at <= self._clock():
            self._remove(key)
            self._stats.expirations += 1
            return None
        return entry

    def _remove(self, key: str) -> None:
        entry = self._entries.pop(key)
        for tag in entry.tags:
            keys = self._tag_index.get(tag)
            if keys is not None:
                keys.discard(key)
                if not keys:
                    del self._tag_index[tag]

    def _evict_one(self) -> None:
        if not self._entries:
            return
        policy = self.config.eviction_policy
        if policy == EvictionPolicy.LRU:
            victim = next(iter(self._entries))
        elif policy == EvictionPolicy.LFU:
            victim = min(self._entries, key=lambda k: (self._entries[k].hits, self._entries[k].last_access))
        elif policy == EvictionPolicy.TTL:
            victim = min(self._entries, key=lambda k: self._entries[k].expires_at)
        else:
            victim = max(self._entries, key=lambda k: self._entries[k].size)
        self._remove(victim)
        self._stats.evictions += 1


@dataclass
class CacheManager:
    """Named caches used by the orchestrator: computed paths, price and inventory lookups."""

    config: CacheConfig = field(default_factory=CacheConfig)
    clock: Callable[[], float] = time.monotonic

    def __post_init__(self) -> None:
        self.paths = TaggedCache(self.config, name="paths", clock=self.clock)
        self.prices = TaggedCache(self.config, name="prices", clock=self.clock)
        self.inventory = TaggedCache(self.config, name="inventory", clock=self.clock)

    @property
    def caches(self) -> tuple[TaggedCache, ...]:
        return (self.paths, self.prices, self.inventory)

    def invalidate_tags(self, tags: Iterable[str]) -> int:
        tags = tuple(tags)
        return sum(c.invalidate_tags(tags) for c in self.caches)

    def cleanup(self) -> int:
        return sum(c.cleanup() for c in self.caches)

    def clear(self) -> None:
        for c in self.caches:
            c.clear()

    def stats(self) -> dict[str, Any]:
        return {c.name: c.stats() for c in self.caches}

    def health_check(self) -> dict[str, Any]:
        issues: list[str] = []
        for c in self.caches:
            issues.extend(c.health_check()["issues"])
        return {"healthy": not issues, "issues": issues}
